"""Error taxonomy shared by the stores, the lifecycle manager and the HTTP layer."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    INTERNAL = "internal"


HTTP_STATUS_BY_KIND: Dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INTERNAL: 500,
}


@dataclass(frozen=True)
class FieldError:
    """A single offending input field."""

    field: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"field": self.field, "message": self.message}


class ServiceError(Exception):
    """Base class for every failure the service reports to its callers.

    ``kind`` is the discriminant the HTTP layer uses to pick a status code;
    callers never need to inspect the concrete subclass.
    """

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str, *, details: Optional[Any] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    @property
    def http_status(self) -> int:
        return HTTP_STATUS_BY_KIND[self.kind]

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": False, "error": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class ValidationError(ServiceError):
    kind = ErrorKind.VALIDATION

    def __init__(self, errors: List[FieldError], message: str = "Validation failed") -> None:
        if not errors:
            raise ValueError("ValidationError requires at least one field error")
        super().__init__(message, details=[error.to_dict() for error in errors])
        self.errors = list(errors)

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        return cls([FieldError(field=field, message=message)])

    @property
    def fields(self) -> List[str]:
        return [error.field for error in self.errors]


class Unauthorized(ServiceError):
    kind = ErrorKind.UNAUTHORIZED

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


class NotFound(ServiceError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, message: str = "Resource not found") -> None:
        super().__init__(message)


class InternalError(ServiceError):
    kind = ErrorKind.INTERNAL

    def __init__(self, message: str = "Internal server error", *, details: Optional[Any] = None) -> None:
        super().__init__(message, details=details)


__all__ = [
    "ErrorKind",
    "FieldError",
    "HTTP_STATUS_BY_KIND",
    "InternalError",
    "NotFound",
    "ServiceError",
    "Unauthorized",
    "ValidationError",
]
