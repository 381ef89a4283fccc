"""
symbolica.errors — Error Taxonomy
==================================

Every failure the sync layer surfaces is one of:

* :class:`ValidationError`    — rejected before any network call.
* :class:`TransportError`     — network/database unreachable; retried.
* :class:`RemoteTimeoutError` — a remote call exceeded its overall bound.
* :class:`AuthorizationError` — not signed in / not allowed; never retried.
* :class:`BusinessError`      — the server refused the operation.
* :class:`RealtimeError`      — a realtime channel failed.

Queries and mutations expose these as data (``state.error``) instead of
raising them at the consumer.
"""

from __future__ import annotations

from symbolica.constants import GENERIC_ERROR_MESSAGE, SAFE_ERROR_MESSAGES


class SymbolicaError(Exception):
    """Base class for all errors surfaced by the sync layer."""

    code = "unknown_error"

    def __init__(self, message: str = "", *, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"code": self.code, "message": safe_error_message(self)}


class ValidationError(SymbolicaError):
    code = "validation_error"

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message, details={"field": field} if field else None)
        self.field = field

    def to_dict(self) -> dict:
        # Validation messages are generated locally and always safe to show.
        data = {"code": self.code, "message": self.message}
        if self.field:
            data["field"] = self.field
        return data


class TransportError(SymbolicaError):
    code = "transport_error"


class RemoteTimeoutError(SymbolicaError):
    code = "timeout"

    def __init__(self, operation: str, timeout: float) -> None:
        super().__init__(f"{operation} timed out after {timeout:.1f}s")
        self.operation = operation
        self.timeout = timeout


class AuthorizationError(SymbolicaError):
    code = "authorization_error"

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)


class BusinessError(SymbolicaError):
    code = "business_error"


class RealtimeError(SymbolicaError):
    code = "realtime_error"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def is_retryable(exc: BaseException) -> bool:
    """Return True only for transport failures (timeouts are not retried)."""
    return isinstance(exc, TransportError)


def safe_error_message(exc: BaseException) -> str:
    """Return a message that is safe to show to the user.

    Server messages pass through only when they contain one of
    :data:`SAFE_ERROR_MESSAGES`; everything else becomes a generic message.
    """
    if isinstance(exc, ValidationError):
        return exc.message
    if isinstance(exc, RemoteTimeoutError):
        return "Service temporarily unavailable"
    message = str(exc)
    if any(safe in message for safe in SAFE_ERROR_MESSAGES):
        return message
    return GENERIC_ERROR_MESSAGE
