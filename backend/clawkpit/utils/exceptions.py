"""
Custom exception classes for the Clawkpit application.

Each exception carries the HTTP status and envelope code it maps to, plus an
``error_kind`` naming the precise failure (``DoneNoteRequired``,
``CodeExpired`` ...) so clients can branch on it without parsing messages.
"""

from typing import Optional


class ClawkpitException(Exception):
    """Base exception for all Clawkpit errors."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, detail: Optional[str] = None):
        self.message = message
        self.detail = detail
        super().__init__(self.message)

    @property
    def error_kind(self) -> str:
        return self.__class__.__name__


class ValidationError(ClawkpitException):
    """Raised when input validation fails."""

    status_code = 400
    code = "BAD_REQUEST"

    def __init__(self, message: str, field: Optional[str] = None, detail: Optional[str] = None):
        if field:
            message = f"Validation error for field '{field}': {message}"
        super().__init__(message, detail)
        self.field = field


class AuthenticationError(ClawkpitException):
    """Raised when authentication fails."""

    status_code = 401
    code = "UNAUTHORIZED"

    def __init__(self, message: str = "Unauthorized", detail: Optional[str] = None):
        super().__init__(message, detail)


class NotFoundError(ClawkpitException):
    """Raised when an entity is absent or owned by someone else."""

    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, message: str = "Not found", detail: Optional[str] = None):
        super().__init__(message, detail)


class ForbiddenError(ClawkpitException):
    """Raised when a policy forbids the requested mutation."""

    status_code = 403
    code = "FORBIDDEN"


class RateLimitedError(ClawkpitException):
    """Raised when a caller exhausts a quota."""

    status_code = 429
    code = "RATE_LIMITED"

    def __init__(self, message: str, retry_after: int, detail: Optional[str] = None):
        super().__init__(message, detail)
        self.retry_after = max(1, int(retry_after))


# Precondition failures: state unchanged, caller can remediate and retry.

class PreconditionFailedError(ClawkpitException):
    status_code = 400
    code = "BAD_REQUEST"


class DoneNoteRequired(PreconditionFailedError):
    def __init__(self):
        super().__init__("Add a note with your reflection before marking this item done.")


class DropNoteRequired(PreconditionFailedError):
    def __init__(self):
        super().__init__("Add a short note explaining why you are dropping this item.")


class NoFieldsProvided(PreconditionFailedError):
    def __init__(self):
        super().__init__("No fields provided")


class NotAForm(PreconditionFailedError):
    def __init__(self):
        super().__init__("Content is not a form")


class AiEditForbidden(ForbiddenError):
    def __init__(self):
        super().__init__("AI cannot edit existing notes")


# Device pairing protocol errors. Terminal for the code in question: the
# agent has to restart the flow.

class PairingError(ClawkpitException):
    status_code = 400
    code = "BAD_REQUEST"


class UserNotFound(PairingError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self):
        super().__init__("No account found for this email.")


class InvalidCode(PairingError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self):
        super().__init__("Invalid or unknown code.")


class CodeAlreadyUsed(PairingError):
    def __init__(self):
        super().__init__("This code was already used.")


class CodeExpired(PairingError):
    def __init__(self):
        super().__init__("Code expired. Start a new connection from your agent.")


class InvalidDeviceCode(PairingError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self):
        super().__init__("Invalid or unknown device code.")


class Expired(PairingError):
    status_code = 410
    code = "GONE"

    def __init__(self):
        super().__init__("Code expired. Start a new connection.")


class AlreadyConsumed(PairingError):
    status_code = 410
    code = "GONE"

    def __init__(self):
        super().__init__("Token already received. Use your stored token.")


class DisplayCodeUnavailable(PairingError):
    status_code = 503
    code = "SERVICE_UNAVAILABLE"

    def __init__(self):
        super().__init__("Could not allocate a pairing code. Try again.")
