"""Domain models for users, investments and identity tokens."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"


class InvestmentCategory(str, Enum):
    STOCKS = "stocks"
    BONDS = "bonds"
    REAL_ESTATE = "real-estate"
    CRYPTO = "crypto"
    MUTUAL_FUNDS = "mutual-funds"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class InvestmentStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class User:
    """Represents a user account stored in the credential store.

    ``password_hash`` is only populated when the store is explicitly asked for
    the secret.
    """

    id: str
    email: str
    first_name: str
    last_name: str
    phone: Optional[str]
    role: Role
    is_verified: bool
    balance: float
    created_at: datetime
    updated_at: datetime
    investment_ids: Tuple[str, ...] = ()
    password_hash: Optional[str] = field(default=None, repr=False, compare=False)

    def without_secret(self) -> "User":
        if self.password_hash is None:
            return self
        return replace(self, password_hash=None)


@dataclass(frozen=True)
class Investment:
    """An investment record owned by exactly one user."""

    id: str
    user_id: str
    title: str
    description: str
    category: InvestmentCategory
    amount: float
    expected_return: float
    duration: int
    risk_level: RiskLevel
    status: InvestmentStatus
    start_date: datetime
    end_date: datetime
    current_value: float
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class TokenPayload:
    """Identity carried by a signed token."""

    user_id: str
    email: str
    role: Role
    expires_at: Optional[datetime] = None

    @classmethod
    def for_user(cls, user: User) -> "TokenPayload":
        return cls(user_id=user.id, email=user.email, role=user.role)


__all__ = [
    "Investment",
    "InvestmentCategory",
    "InvestmentStatus",
    "RiskLevel",
    "Role",
    "TokenPayload",
    "User",
]
