"""Auth request and response models with validation."""

import re
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from chat_backend.models.user import PublicUser

USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9_.-]+$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# bcrypt only reads the first 72 bytes and bcrypt>=5 rejects anything longer
MAX_PASSWORD_BYTES = 72


def _normalize_email(v: str) -> str:
    v = v.strip().lower()
    if not EMAIL_PATTERN.match(v):
        raise ValueError("Invalid email address")
    return v


def _password_not_blank(v: str) -> str:
    if not v.strip():
        raise ValueError("Password cannot be empty or whitespace only")
    return password_within_limit(v)


def password_within_limit(v: str) -> str:
    """Reject passwords longer than bcrypt accepts, counted in UTF-8 bytes."""
    if len(v.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password cannot be longer than {MAX_PASSWORD_BYTES} bytes")
    return v


class RegisterRequest(BaseModel):
    """New account registration.

    Attributes:
        username: Unique handle (3-50 chars, alphanumeric plus ``_.-``), stored lower-cased
        email: Unique email address, stored lower-cased
        password: Plain password (min 6 chars)
    """

    username: str = Field(..., min_length=3, max_length=50)
    email: str = Field(..., max_length=320)
    password: str = Field(..., min_length=6, max_length=MAX_PASSWORD_BYTES)

    @field_validator("username")
    @classmethod
    def username_valid_chars(cls, v: str) -> str:
        """Normalize and check the username characters."""
        v = v.strip().lower()
        if not USERNAME_PATTERN.match(v):
            raise ValueError(
                "Username must contain only alphanumeric characters, "
                "dots, underscores, or hyphens"
            )
        return v

    @field_validator("email")
    @classmethod
    def email_valid(cls, v: str) -> str:
        return _normalize_email(v)

    @field_validator("password")
    @classmethod
    def password_not_empty(cls, v: str) -> str:
        return _password_not_blank(v)


class LoginRequest(BaseModel):
    """Login with either email or username plus password."""

    email: Optional[str] = None
    username: Optional[str] = None
    password: str = Field(..., min_length=1)

    @field_validator("email")
    @classmethod
    def email_valid(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return _normalize_email(v)

    @field_validator("username")
    @classmethod
    def username_lower(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return v.strip().lower()

    @model_validator(mode="after")
    def identifier_required(self) -> "LoginRequest":
        """Require at least one of email or username."""
        if not self.email and not self.username:
            raise ValueError("Either email or username is required")
        return self


class RefreshRequest(BaseModel):
    """Exchange a refresh token for a new token pair.

    The token may also arrive in the refresh cookie, so it is optional here.
    """

    refresh_token: Optional[str] = None


class ForgotPasswordRequest(BaseModel):
    email: str = Field(..., max_length=320)

    @field_validator("email")
    @classmethod
    def email_valid(cls, v: str) -> str:
        return _normalize_email(v)


class ResetPasswordRequest(BaseModel):
    """New password for the reset-token flow.

    Minimum length is checked by the service against ``min_password_length``
    so the rule lives in one place.
    """

    new_password: str

    @field_validator("new_password")
    @classmethod
    def new_password_within_limit(cls, v: str) -> str:
        return password_within_limit(v)


class ChangePasswordRequest(BaseModel):
    old_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=1)

    @field_validator("new_password")
    @classmethod
    def new_password_within_limit(cls, v: str) -> str:
        return password_within_limit(v)


class RegistrationResult(BaseModel):
    """Created user plus the plaintext verification token for out-of-band delivery."""

    user: PublicUser
    verification_token: str


class LoginResult(BaseModel):
    """Sanitized user plus a fresh token pair."""

    user: PublicUser
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int = Field(ge=1, description="Access token lifetime in seconds")
