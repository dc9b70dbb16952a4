from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorKind(str, Enum):
    """Failure categories surfaced to API clients, each with a fixed HTTP status."""

    VALIDATION_FAILED = "validation_failed"
    NOT_FOUND = "not_found"
    INVALID_OR_EXPIRED = "invalid_or_expired"
    NOT_VERIFIED = "not_verified"
    UNAUTHORIZED = "unauthorized"
    RATE_LIMITED = "rate_limited"
    INTERNAL = "internal"

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self]


_STATUS_CODES = {
    ErrorKind.VALIDATION_FAILED: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INVALID_OR_EXPIRED: 400,
    ErrorKind.NOT_VERIFIED: 403,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.INTERNAL: 500,
}


@dataclass
class ServiceResult:
    """Outcome of a service operation.

    Services never raise for expected failures; they return a result carrying
    the ErrorKind and a stable, client-safe message.
    """

    success: bool
    message: str
    data: Any = None
    error: Optional[ErrorKind] = None
    errors: Optional[Dict[str, List[str]]] = field(default=None)
    status_code: int = 200

    @classmethod
    def ok(cls, message: str, data: Any = None, status_code: int = 200) -> "ServiceResult":
        return cls(success=True, message=message, data=data, status_code=status_code)

    @classmethod
    def fail(cls, kind: ErrorKind, message: str, errors: Optional[Dict[str, List[str]]] = None) -> "ServiceResult":
        return cls(success=False, message=message, error=kind, errors=errors, status_code=kind.status_code)


class CredentialStoreError(Exception):
    """Raised by a credential store when the backing database fails."""


class DuplicateEmailError(CredentialStoreError):
    """Raised when creating an account whose email is already registered."""
