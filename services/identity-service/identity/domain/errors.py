"""Error taxonomy for the account lifecycle and credential flows.

Every error carries the HTTP status the API layer answers with, so routes can
map them without inspecting messages.
"""

from __future__ import annotations


class IdentityError(Exception):
    """Base class for errors surfaced by identity workflows."""

    status_code: int = 400
    default_message: str = "request failed"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self.args[0])


class ValidationError(IdentityError):
    default_message = "invalid email format"


class WeakPassword(ValidationError):
    default_message = "password too weak"


class ConflictError(IdentityError):
    default_message = "email already exists"


class InvalidToken(IdentityError):
    default_message = "invalid token"


class ExpiredToken(IdentityError):
    default_message = "token expired"


class RateLimitError(IdentityError):
    status_code = 429
    default_message = "rate limited"

    def __init__(self, message: str | None = None, *, retry_after: int | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class InvalidCredentials(IdentityError):
    status_code = 401
    default_message = "invalid email or password"


class UnconfirmedEmail(IdentityError):
    status_code = 403
    default_message = "email not confirmed"


class RegistrationIncomplete(IdentityError):
    status_code = 403
    default_message = "registration incomplete"


class InternalError(IdentityError):
    """Opaque failure of a collaborator (store or mail transport)."""

    status_code = 500
    default_message = "internal error"


class NotificationError(Exception):
    """Raised by notifiers when a message could not be handed to the transport."""
