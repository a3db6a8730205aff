"""User and authentication models."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel

DEFAULT_AVATAR_URL = "https://via.placeholder.com/200x200.png"


class Role(str, Enum):
    """Directory-level role of a user."""

    USER = "user"
    ADMIN = "admin"


class OneTimeTokenKind(str, Enum):
    """Kinds of hashed one-time tokens stored on a user record."""

    EMAIL_VERIFICATION = "email_verification"
    PASSWORD_RESET = "password_reset"


class PublicUser(BaseModel):
    """A sanitized user: no password hash and no token fields."""

    id: UUID
    username: str
    email: str
    role: Role = Role.USER
    is_email_verified: bool = False
    avatar_url: str = DEFAULT_AVATAR_URL
    created_at: datetime
    updated_at: datetime


class UserRecord(PublicUser):
    """Full user row as stored, including secrets.

    Never returned to a caller directly; use ``sanitize()``.
    """

    password_hash: str
    refresh_token: Optional[str] = None
    email_verification_token_hash: Optional[str] = None
    email_verification_token_expiry: Optional[datetime] = None
    password_reset_token_hash: Optional[str] = None
    password_reset_token_expiry: Optional[datetime] = None

    def sanitize(self) -> PublicUser:
        """Strip the password hash and all token fields."""
        return PublicUser(**self.model_dump(include=set(PublicUser.model_fields)))
