"""SQLite-backed persistence for users and their investments."""
from __future__ import annotations

import secrets
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, List, Mapping, Optional, Union

from passlib.context import CryptContext

from .config import DEFAULT_BCRYPT_ROUNDS
from .errors import NotFound, ValidationError
from .models import (
    Investment,
    InvestmentCategory,
    InvestmentStatus,
    RiskLevel,
    Role,
    User,
)
from .validation import RegistrationForm, parse_form


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def _current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _generate_id() -> str:
    return secrets.token_hex(12)


class Database:
    """Wrapper around SQLite for persisting users and investments.

    Every investment query takes the owning user id; there is deliberately no
    lookup by investment id alone.
    """

    def __init__(
        self,
        path: Path,
        *,
        bcrypt_rounds: int = DEFAULT_BCRYPT_ROUNDS,
        timeout: float = 5.0,
    ) -> None:
        _ensure_directory(path)
        self._path = path
        self._timeout = timeout
        self._pwd_context = CryptContext(
            schemes=["bcrypt"],
            deprecated="auto",
            bcrypt__rounds=bcrypt_rounds,
        )

    @property
    def path(self) -> Path:
        return self._path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._path, check_same_thread=False, timeout=self._timeout)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create the required tables if they do not already exist."""

        with self._connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    email TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    first_name TEXT NOT NULL,
                    last_name TEXT NOT NULL,
                    phone TEXT,
                    role TEXT NOT NULL DEFAULT 'user',
                    is_verified INTEGER NOT NULL DEFAULT 0,
                    balance REAL NOT NULL DEFAULT 0 CHECK (balance >= 0),
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS investments (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL REFERENCES users(id),
                    title TEXT NOT NULL,
                    description TEXT NOT NULL,
                    category TEXT NOT NULL,
                    amount REAL NOT NULL,
                    expected_return REAL NOT NULL,
                    duration INTEGER NOT NULL,
                    risk_level TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'active',
                    start_date TEXT NOT NULL,
                    end_date TEXT NOT NULL,
                    current_value REAL NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_investments_user_id ON investments(user_id, created_at);
                """
            )

    # ------------------------------------------------------------------
    # Password hashing
    # ------------------------------------------------------------------
    def hash_password(self, password: str) -> str:
        if not password:
            raise ValueError("Password must not be empty")
        return self._pwd_context.hash(password)

    def _check_password(self, password: str, hashed: Optional[str]) -> bool:
        if not hashed:
            self._pwd_context.dummy_verify()
            return False
        try:
            return self._pwd_context.verify(password, hashed)
        except ValueError:
            return False

    # ------------------------------------------------------------------
    # User management
    # ------------------------------------------------------------------
    def create_user(
        self,
        registration: Union[RegistrationForm, Mapping[str, Any]],
        *,
        role: Role = Role.USER,
    ) -> User:
        """Validate and persist a new user; the plaintext password is hashed before storage."""

        if not isinstance(registration, RegistrationForm):
            registration = parse_form(RegistrationForm, registration)

        if self.get_user_by_email(registration.email) is not None:
            raise ValidationError.for_field("email", "User with this email already exists")

        user_id = _generate_id()
        created_at = _serialize_datetime(_current_timestamp())
        password_hash = self.hash_password(registration.password)

        with self._connect() as conn:
            try:
                conn.execute(
                    """
                    INSERT INTO users (
                        id, email, password_hash, first_name, last_name, phone,
                        role, is_verified, balance, created_at, updated_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, 0, 0, ?, ?)
                    """,
                    (
                        user_id,
                        registration.email,
                        password_hash,
                        registration.first_name,
                        registration.last_name,
                        registration.phone,
                        role.value,
                        created_at,
                        created_at,
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise ValidationError.for_field("email", "User with this email already exists") from exc

        user = self.get_user(user_id)
        if user is None:
            raise RuntimeError("Failed to load user after creation")
        return user

    def get_user(self, user_id: str, *, include_secret: bool = False) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
            if row is None:
                return None
            return self._row_to_user(conn, row, include_secret=include_secret)

    def get_user_by_email(self, email: str, *, include_secret: bool = False) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE email = ?",
                (email.strip().lower(),),
            ).fetchone()
            if row is None:
                return None
            return self._row_to_user(conn, row, include_secret=include_secret)

    def verify_password(self, user: User, candidate: str) -> bool:
        """Return ``True`` if ``candidate`` matches the user's stored hash."""

        hashed = user.password_hash
        if hashed is None:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT password_hash FROM users WHERE id = ?",
                    (user.id,),
                ).fetchone()
            hashed = row["password_hash"] if row is not None else None
        return self._check_password(candidate, hashed)

    def authenticate_user(self, email: str, password: str) -> Optional[User]:
        user = self.get_user_by_email(email, include_secret=True)
        if user is None:
            self._check_password(password, None)
            return None
        if not self._check_password(password, user.password_hash):
            return None
        return user.without_secret()

    def update_user_profile(
        self,
        user_id: str,
        *,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> User:
        """Update the name/phone fields that were supplied."""

        updates: List[str] = []
        values: List[object] = []
        for column, value in (("first_name", first_name), ("last_name", last_name), ("phone", phone)):
            if value is None:
                continue
            updates.append(f"{column} = ?")
            values.append(value)

        if updates:
            updates.append("updated_at = ?")
            values.extend([_serialize_datetime(_current_timestamp()), user_id])
            with self._connect() as conn:
                cursor = conn.execute(f"UPDATE users SET {', '.join(updates)} WHERE id = ?", values)
                if cursor.rowcount == 0:
                    raise NotFound("User not found")

        refreshed = self.get_user(user_id)
        if refreshed is None:
            raise NotFound("User not found")
        return refreshed

    def set_user_password(self, user_id: str, password: str) -> None:
        password_hash = self.hash_password(password)
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE users SET password_hash = ?, updated_at = ? WHERE id = ?",
                (password_hash, _serialize_datetime(_current_timestamp()), user_id),
            )
            if cursor.rowcount == 0:
                raise NotFound("User not found")

    def adjust_balance(self, user_id: str, delta: float) -> User:
        """Atomically add ``delta`` to the balance, refusing to go below zero."""

        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE users
                   SET balance = balance + ?, updated_at = ?
                 WHERE id = ? AND balance + ? >= 0
                """,
                (delta, _serialize_datetime(_current_timestamp()), user_id, delta),
            )
            if cursor.rowcount == 0:
                exists = conn.execute("SELECT 1 FROM users WHERE id = ?", (user_id,)).fetchone()
                if exists is None:
                    raise NotFound("User not found")
                raise ValidationError.for_field("balance", "Balance cannot be negative")

        refreshed = self.get_user(user_id)
        if refreshed is None:
            raise NotFound("User not found")
        return refreshed

    # ------------------------------------------------------------------
    # Investment management
    # ------------------------------------------------------------------
    def create_investment(
        self,
        user_id: str,
        *,
        title: str,
        description: str,
        category: InvestmentCategory,
        amount: float,
        expected_return: float,
        duration: int,
        risk_level: RiskLevel,
        start_date: datetime,
        end_date: datetime,
        current_value: float,
        status: InvestmentStatus = InvestmentStatus.ACTIVE,
    ) -> Investment:
        investment_id = _generate_id()
        created_at = _serialize_datetime(_current_timestamp())
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO investments (
                    id, user_id, title, description, category, amount, expected_return,
                    duration, risk_level, status, start_date, end_date, current_value,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    investment_id,
                    user_id,
                    title,
                    description,
                    InvestmentCategory(category).value,
                    float(amount),
                    float(expected_return),
                    int(duration),
                    RiskLevel(risk_level).value,
                    InvestmentStatus(status).value,
                    _serialize_datetime(start_date),
                    _serialize_datetime(end_date),
                    float(current_value),
                    created_at,
                    created_at,
                ),
            )

        investment = self.get_investment_for_user(user_id, investment_id)
        if investment is None:
            raise RuntimeError("Failed to load investment after creation")
        return investment

    def list_investments_for_user(self, user_id: str) -> List[Investment]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM investments WHERE user_id = ? ORDER BY created_at DESC, rowid DESC",
                (user_id,),
            ).fetchall()
        return [self._row_to_investment(row) for row in rows]

    def get_investment_for_user(self, user_id: str, investment_id: str) -> Optional[Investment]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM investments WHERE user_id = ? AND id = ?",
                (user_id, investment_id),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_investment(row)

    def update_investment(
        self,
        user_id: str,
        investment_id: str,
        **fields: object,
    ) -> Optional[Investment]:
        if not fields:
            return self.get_investment_for_user(user_id, investment_id)

        converters = {
            "title": str,
            "description": str,
            "status": lambda value: InvestmentStatus(value).value,
            "current_value": float,
            "expected_return": float,
            "risk_level": lambda value: RiskLevel(value).value,
        }

        updates: List[str] = []
        values: List[object] = []
        for column, convert in converters.items():
            if column not in fields or fields[column] is None:
                continue
            updates.append(f"{column} = ?")
            values.append(convert(fields[column]))

        if not updates:
            return self.get_investment_for_user(user_id, investment_id)

        updates.append("updated_at = ?")
        values.append(_serialize_datetime(_current_timestamp()))
        values.extend([user_id, investment_id])
        query = f"UPDATE investments SET {', '.join(updates)} WHERE user_id = ? AND id = ?"

        with self._connect() as conn:
            cursor = conn.execute(query, values)
            if cursor.rowcount == 0:
                return None

        return self.get_investment_for_user(user_id, investment_id)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _row_to_user(self, conn: sqlite3.Connection, row: sqlite3.Row, *, include_secret: bool) -> User:
        investment_rows = conn.execute(
            "SELECT id FROM investments WHERE user_id = ? ORDER BY created_at, rowid",
            (row["id"],),
        ).fetchall()
        return User(
            id=str(row["id"]),
            email=str(row["email"]),
            first_name=str(row["first_name"]),
            last_name=str(row["last_name"]),
            phone=row["phone"],
            role=Role(row["role"]),
            is_verified=bool(row["is_verified"]),
            balance=float(row["balance"]),
            created_at=_parse_datetime(str(row["created_at"])),
            updated_at=_parse_datetime(str(row["updated_at"])),
            investment_ids=tuple(str(item["id"]) for item in investment_rows),
            password_hash=str(row["password_hash"]) if include_secret else None,
        )

    def _row_to_investment(self, row: sqlite3.Row) -> Investment:
        return Investment(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            title=str(row["title"]),
            description=str(row["description"]),
            category=InvestmentCategory(row["category"]),
            amount=float(row["amount"]),
            expected_return=float(row["expected_return"]),
            duration=int(row["duration"]),
            risk_level=RiskLevel(row["risk_level"]),
            status=InvestmentStatus(row["status"]),
            start_date=_parse_datetime(str(row["start_date"])),
            end_date=_parse_datetime(str(row["end_date"])),
            current_value=float(row["current_value"]),
            created_at=_parse_datetime(str(row["created_at"])),
            updated_at=_parse_datetime(str(row["updated_at"])),
        )


__all__ = ["Database"]
