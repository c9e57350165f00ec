"""Domain error taxonomy shared by services and the HTTP layer."""
from __future__ import annotations

from typing import Any


class LedgerError(Exception):
    """Base class for errors raised by the ledger services."""

    status_code = 400
    default_code = "LEDGER_ERROR"

    def __init__(self, message: str, *, code: str | None = None, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details

    def to_payload(self) -> dict[str, Any]:
        return error_response(self.code, self.message, self.details)


def error_response(code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    """Build the `{"error": {...}}` envelope every failing response uses."""

    body: dict[str, Any] = {"code": code, "message": message}
    if details:
        body["details"] = details
    return {"error": body}


class ValidationError(LedgerError):
    """Malformed or out-of-range input."""

    status_code = 400
    default_code = "VALIDATION_ERROR"


class PermissionDeniedError(LedgerError):
    status_code = 403
    default_code = "FORBIDDEN"


class NotFoundError(LedgerError):
    """A referenced entity id does not resolve."""

    status_code = 404
    default_code = "NOT_FOUND"


class ConflictError(LedgerError):
    status_code = 409
    default_code = "CONFLICT"


class StateError(LedgerError):
    """Operation attempted against an entity in an incompatible lifecycle state."""

    status_code = 409
    default_code = "INVALID_STATE"


class InsufficientFundsError(LedgerError):
    status_code = 409
    default_code = "INSUFFICIENT_FUNDS"


class ConnectivityError(LedgerError):
    """The backing store could not be reached within the retry budget."""

    status_code = 503
    default_code = "STORE_UNAVAILABLE"


__all__ = [
    "error_response",
    "LedgerError",
    "ValidationError",
    "PermissionDeniedError",
    "NotFoundError",
    "ConflictError",
    "StateError",
    "InsufficientFundsError",
    "ConnectivityError",
]
