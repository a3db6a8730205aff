"""Typed application errors.

Domain operations raise these; the exception handlers registered in
``chat_backend.main`` are the single place that maps an error to an HTTP
status and the response envelope.
"""

from typing import Any, Optional


class AppError(Exception):
    """Base class for every classified application error."""

    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(
        self,
        message: Optional[str] = None,
        errors: Optional[list[Any]] = None,
    ):
        self.message = message or self.default_message
        self.errors = errors or []
        super().__init__(self.message)


class ValidationError(AppError):
    """Malformed or out-of-range input."""

    status_code = 400
    default_message = "Validation error"


class AlreadyExistsError(AppError):
    """A unique identity (email or username) is already taken."""

    status_code = 400
    default_message = "User with this email or username already exists"


class InvalidTokenError(AppError):
    """A token could not be verified (bad signature, malformed, expired).

    Deliberately carries no detail about which check failed.
    """

    status_code = 400
    default_message = "Invalid or expired token"


class InvalidOrExpiredTokenError(InvalidTokenError):
    """A one-time token matched no stored, unexpired hash."""

    default_message = "Token is invalid or expired"


class InvalidCredentialsError(AppError):
    """Unknown user or wrong password; never says which."""

    status_code = 401
    default_message = "Invalid credentials"


class UnauthorizedError(AppError):
    """Missing or rejected bearer/refresh credential."""

    status_code = 401
    default_message = "Unauthorized request"


class ForbiddenError(AppError):
    """Authenticated but not allowed, e.g. not the chat admin."""

    status_code = 403
    default_message = "Forbidden"


class NotFoundError(AppError):
    status_code = 404
    default_message = "Resource not found"


class RateLimitedError(AppError):
    status_code = 429
    default_message = "Too many requests, please try again later."

    def __init__(self, message: Optional[str] = None, retry_after: int = 0):
        super().__init__(message)
        self.retry_after = retry_after


class InternalError(AppError):
    status_code = 500


class SelfChatError(ValidationError):
    default_message = "You cannot chat with yourself."


class InsufficientMembersError(ValidationError):
    default_message = "Group must have at least 3 participants."


class NotAGroupChatError(ValidationError):
    default_message = "Not a group chat"
