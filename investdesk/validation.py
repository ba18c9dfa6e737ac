"""Input forms for registration, profile changes and investments.

Every form collects *all* offending fields before failing, so a client can
fix a request in one round trip. Field names in error reports use the
camelCase names clients send.
"""
from __future__ import annotations

import re
from datetime import MAXYEAR, date, datetime, timezone
from typing import Any, ClassVar, Dict, Iterable, List, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import FieldError, ValidationError
from .models import InvestmentCategory, InvestmentStatus, RiskLevel

EMAIL_PATTERN = re.compile(r"^[\w.+-]+@[\w-]+(\.[\w-]+)*\.[A-Za-z]{2,}$")
PHONE_PATTERN = re.compile(r"^\+?[\d\s\-()]+$")

MIN_PASSWORD_LENGTH = 6
MAX_NAME_LENGTH = 50
MAX_TITLE_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 500
MIN_INVESTMENT_AMOUNT = 1000
MIN_DURATION_MONTHS = 1
MAX_DURATION_MONTHS = 120

FormT = TypeVar("FormT", bound="Form")


class Form(BaseModel):
    """Base class for request forms."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", allow_inf_nan=False)

    required_messages: ClassVar[Dict[str, str]] = {}

    @model_validator(mode="before")
    @classmethod
    def _drop_blank_values(cls, data: Any) -> Any:
        # null and "" count as "not supplied"
        if isinstance(data, Mapping):
            return {key: value for key, value in data.items() if value is not None and value != ""}
        return data


def _required_string(value: str, message: str) -> str:
    stripped = value.strip()
    if not stripped:
        raise ValueError(message)
    return stripped


def _limit_length(value: str, limit: int, message: str) -> str:
    if len(value) > limit:
        raise ValueError(message)
    return value


def _normalise_email(value: str) -> str:
    normalised = value.strip().lower()
    if not EMAIL_PATTERN.match(normalised):
        raise ValueError("Please enter a valid email")
    return normalised


def _normalise_phone(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    stripped = value.strip()
    if not stripped:
        return None
    if not PHONE_PATTERN.match(stripped):
        raise ValueError("Please enter a valid phone number")
    return stripped


def _normalise_name(value: str, label: str) -> str:
    stripped = _required_string(value, f"{label} is required")
    return _limit_length(stripped, MAX_NAME_LENGTH, f"{label} cannot exceed {MAX_NAME_LENGTH} characters")


def _coerce_datetime(value: Any) -> Any:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError as exc:
            raise ValueError("Start date must be an ISO-8601 date") from exc
    else:
        return value
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    try:
        return parsed.astimezone(timezone.utc)
    except OverflowError as exc:
        raise ValueError("Start date is out of range") from exc


class RegistrationForm(Form):
    required_messages: ClassVar[Dict[str, str]] = {
        "email": "Email is required",
        "password": "Password is required",
        "firstName": "First name is required",
        "lastName": "Last name is required",
    }

    email: str
    password: str
    first_name: str = Field(alias="firstName")
    last_name: str = Field(alias="lastName")
    phone: Optional[str] = None

    @field_validator("email")
    @classmethod
    def _validate_email(cls, value: str) -> str:
        return _normalise_email(value)

    @field_validator("password")
    @classmethod
    def _validate_password(cls, value: str) -> str:
        if len(value) < MIN_PASSWORD_LENGTH:
            raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        return value

    @field_validator("first_name")
    @classmethod
    def _validate_first_name(cls, value: str) -> str:
        return _normalise_name(value, "First name")

    @field_validator("last_name")
    @classmethod
    def _validate_last_name(cls, value: str) -> str:
        return _normalise_name(value, "Last name")

    @field_validator("phone")
    @classmethod
    def _validate_phone(cls, value: Optional[str]) -> Optional[str]:
        return _normalise_phone(value)


class LoginForm(Form):
    required_messages: ClassVar[Dict[str, str]] = {
        "email": "Email is required",
        "password": "Password is required",
    }

    email: str
    password: str

    @field_validator("email")
    @classmethod
    def _normalise(cls, value: str) -> str:
        return value.strip().lower()


class ProfileUpdateForm(Form):
    first_name: Optional[str] = Field(default=None, alias="firstName")
    last_name: Optional[str] = Field(default=None, alias="lastName")
    phone: Optional[str] = None

    @field_validator("first_name")
    @classmethod
    def _validate_first_name(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else _normalise_name(value, "First name")

    @field_validator("last_name")
    @classmethod
    def _validate_last_name(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else _normalise_name(value, "Last name")

    @field_validator("phone")
    @classmethod
    def _validate_phone(cls, value: Optional[str]) -> Optional[str]:
        return _normalise_phone(value)

    @model_validator(mode="after")
    def _ensure_non_empty(self):  # type: ignore[override]
        if self.first_name is None and self.last_name is None and self.phone is None:
            raise ValueError("Profile update must include at least one field")
        return self


class PasswordChangeForm(Form):
    required_messages: ClassVar[Dict[str, str]] = {
        "currentPassword": "Current password is required",
        "newPassword": "New password is required",
    }

    current_password: str = Field(alias="currentPassword")
    new_password: str = Field(alias="newPassword")

    @field_validator("new_password")
    @classmethod
    def _validate_new_password(cls, value: str) -> str:
        if len(value) < MIN_PASSWORD_LENGTH:
            raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        return value


class InvestmentForm(Form):
    required_messages: ClassVar[Dict[str, str]] = {
        "title": "Investment title is required",
        "description": "Investment description is required",
        "category": "Investment category is required",
        "amount": "Investment amount is required",
        "expectedReturn": "Expected return is required",
        "duration": "Investment duration is required",
        "riskLevel": "Risk level is required",
    }

    title: str
    description: str
    category: InvestmentCategory
    amount: float
    expected_return: float = Field(alias="expectedReturn")
    duration: int
    risk_level: RiskLevel = Field(alias="riskLevel")
    start_date: Optional[datetime] = Field(default=None, alias="startDate")

    @field_validator("title")
    @classmethod
    def _validate_title(cls, value: str) -> str:
        stripped = _required_string(value, "Investment title is required")
        return _limit_length(stripped, MAX_TITLE_LENGTH, f"Title cannot exceed {MAX_TITLE_LENGTH} characters")

    @field_validator("description")
    @classmethod
    def _validate_description(cls, value: str) -> str:
        _required_string(value, "Investment description is required")
        return _limit_length(
            value, MAX_DESCRIPTION_LENGTH, f"Description cannot exceed {MAX_DESCRIPTION_LENGTH} characters"
        )

    @field_validator("amount")
    @classmethod
    def _validate_amount(cls, value: float) -> float:
        if value < MIN_INVESTMENT_AMOUNT:
            raise ValueError(f"Minimum investment amount is {MIN_INVESTMENT_AMOUNT:,}")
        return value

    @field_validator("expected_return")
    @classmethod
    def _validate_expected_return(cls, value: float) -> float:
        if value < 0:
            raise ValueError("Expected return cannot be negative")
        return value

    @field_validator("duration")
    @classmethod
    def _validate_duration(cls, value: int) -> int:
        if value < MIN_DURATION_MONTHS:
            raise ValueError(f"Minimum duration is {MIN_DURATION_MONTHS} month")
        if value > MAX_DURATION_MONTHS:
            raise ValueError(f"Maximum duration is {MAX_DURATION_MONTHS} months")
        return value

    @field_validator("start_date", mode="before")
    @classmethod
    def _parse_start_date(cls, value: Any) -> Any:
        return _coerce_datetime(value)

    @field_validator("start_date")
    @classmethod
    def _check_end_date_fits(cls, value: Optional[datetime], info: ValidationInfo) -> Optional[datetime]:
        # duration is declared first, so it is in info.data when it validated
        duration = info.data.get("duration")
        if value is None or duration is None:
            return value
        if value.year + (value.month - 1 + duration) // 12 > MAXYEAR:
            raise ValueError("Start date is out of range")
        return value


class InvestmentUpdateForm(Form):
    """Fields an owner may change after an investment has been created."""

    locked_fields: ClassVar[Dict[str, str]] = {
        "amount": "Amount cannot be changed after creation",
        "duration": "Duration cannot be changed after creation",
        "startDate": "Start date cannot be changed after creation",
        "endDate": "End date is derived and cannot be changed",
        "category": "Category cannot be changed after creation",
        "userId": "Owner cannot be changed",
    }

    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[InvestmentStatus] = None
    current_value: Optional[float] = Field(default=None, alias="currentValue")
    expected_return: Optional[float] = Field(default=None, alias="expectedReturn")
    risk_level: Optional[RiskLevel] = Field(default=None, alias="riskLevel")

    @field_validator("title")
    @classmethod
    def _validate_title(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        stripped = _required_string(value, "Investment title is required")
        return _limit_length(stripped, MAX_TITLE_LENGTH, f"Title cannot exceed {MAX_TITLE_LENGTH} characters")

    @field_validator("description")
    @classmethod
    def _validate_description(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        _required_string(value, "Investment description is required")
        return _limit_length(
            value, MAX_DESCRIPTION_LENGTH, f"Description cannot exceed {MAX_DESCRIPTION_LENGTH} characters"
        )

    @field_validator("current_value")
    @classmethod
    def _validate_current_value(cls, value: Optional[float]) -> Optional[float]:
        if value is not None and value < 0:
            raise ValueError("Current value cannot be negative")
        return value

    @field_validator("expected_return")
    @classmethod
    def _validate_expected_return(cls, value: Optional[float]) -> Optional[float]:
        if value is not None and value < 0:
            raise ValueError("Expected return cannot be negative")
        return value

    @model_validator(mode="after")
    def _ensure_non_empty(self):  # type: ignore[override]
        if not self.changes():
            raise ValueError("Update must include at least one editable field")
        return self

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


def _error_field(error: Mapping[str, Any]) -> str:
    loc = error.get("loc") or ()
    if not loc:
        return "body"
    return ".".join(str(part) for part in loc)


def _error_message(form_cls: Type[Form], field: str, error: Mapping[str, Any]) -> str:
    if error.get("type") == "missing":
        return form_cls.required_messages.get(field, f"{field} is required")
    if error.get("type") == "value_error":
        ctx = error.get("ctx") or {}
        if "error" in ctx:
            return str(ctx["error"])
    return str(error.get("msg", "Invalid value"))


def parse_form(
    form_cls: Type[FormT],
    data: Any,
    *,
    extra_errors: Iterable[FieldError] = (),
) -> FormT:
    """Validate ``data`` against ``form_cls`` or raise one :class:`ValidationError` listing every problem."""

    errors: List[FieldError] = list(extra_errors)
    if not isinstance(data, Mapping):
        errors.append(FieldError(field="body", message="Request body must be a JSON object"))
        raise ValidationError(errors)

    try:
        form = form_cls.model_validate(dict(data))
    except PydanticValidationError as exc:
        for error in exc.errors():
            field = _error_field(error)
            errors.append(FieldError(field=field, message=_error_message(form_cls, field, error)))
        raise ValidationError(errors) from None

    if errors:
        raise ValidationError(errors)
    return form


__all__ = [
    "InvestmentForm",
    "InvestmentUpdateForm",
    "LoginForm",
    "PasswordChangeForm",
    "ProfileUpdateForm",
    "RegistrationForm",
    "parse_form",
]
