# backend/app/core/errors.py
"""
Error taxonomy for the passkey ceremonies.

Every failure a ceremony can hit maps to one subclass here. Each carries a
stable machine code, an HTTP status class and a short public message that
never leaks account existence. Extra keyword context is rendered alongside
the message by the API exception handler.
"""
from typing import Any, Dict, Optional


class PassbindError(Exception):
    """Base class for all expected service failures."""

    error_code: str = "upstream_error"
    status_code: int = 500
    default_message: str = "Request failed"

    def __init__(self, message: Optional[str] = None, **extra: Any):
        self.message = message or self.default_message
        self.extra: Dict[str, Any] = extra
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.error_code, "detail": self.message}
        body.update(self.extra)
        return body


class NotFound(PassbindError):
    error_code = "not_found"
    status_code = 404
    default_message = "Not found"


class Expired(PassbindError):
    error_code = "expired"
    status_code = 400
    default_message = "Expired. Please try again."


class AlreadyUsed(PassbindError):
    error_code = "already_used"
    status_code = 409
    default_message = "Already used. Please try again."


class MismatchedCeremony(PassbindError):
    error_code = "mismatched_ceremony"
    status_code = 400
    default_message = "Invalid challenge for this request"


class Invalid(PassbindError):
    error_code = "invalid"
    status_code = 400
    default_message = "Invalid request"


class SessionExpired(PassbindError):
    error_code = "session_expired"
    status_code = 401
    default_message = "Your session has expired. Please sign in again."


class Unauthorized(PassbindError):
    error_code = "unauthorized"
    status_code = 401
    default_message = "Authentication required"


class Forbidden(PassbindError):
    error_code = "forbidden"
    status_code = 403
    default_message = "Forbidden"


class Conflict(PassbindError):
    error_code = "conflict"
    status_code = 409
    default_message = "Conflict"


class RateLimited(PassbindError):
    error_code = "rate_limited"
    status_code = 429
    default_message = "Too many attempts. Please try again later."


class RescueAvailable(PassbindError):
    """Unknown credential whose derived address already owns an account."""

    error_code = "rescue_available"
    status_code = 400
    default_message = "We found your account! Your passkey needs to be re-linked."


class Upstream(PassbindError):
    error_code = "upstream_error"
    status_code = 500
    default_message = "Something went wrong. Please try again."


class OwnershipUnavailable(Exception):
    """Raised by ownership checkers when wallet ownership cannot be determined."""
