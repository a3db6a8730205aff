"""Authentication service for JWT tokens, password hashing, and one-time tokens."""

import asyncio
import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import UUID

import bcrypt
import jwt
import structlog
from pydantic import BaseModel

from chat_backend.config import get_settings
from chat_backend.errors import InvalidTokenError, ValidationError
from chat_backend.models.auth import MAX_PASSWORD_BYTES
from chat_backend.models.user import Role

logger = structlog.get_logger(__name__)

# Constants
JWT_ALGORITHM = "HS256"
ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"
ONE_TIME_TOKEN_BYTES = 20


class TokenClaims(BaseModel):
    """Verified claims carried by an access or refresh token."""

    user_id: UUID
    role: Role
    token_type: str
    expires_at: datetime


@dataclass(frozen=True)
class OneTimeToken:
    """A freshly generated one-time token.

    ``plain_value`` goes to the user out-of-band; only ``token_hash`` is stored.
    """

    plain_value: str
    token_hash: str
    expires_at: datetime


def hash_token(plain_value: str) -> str:
    """One-way SHA-256 hex digest of a one-time token."""
    return hashlib.sha256(plain_value.encode("utf-8")).hexdigest()


class AuthService:
    """Pure credential computations: passwords, JWTs, and one-time tokens.

    Nothing here touches storage; callers persist the results.
    """

    def __init__(self):
        self.settings = get_settings()

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    def hash_password(self, password: str) -> str:
        """Hash a password using bcrypt.

        Args:
            password: Plain-text password to hash

        Returns:
            Bcrypt hash string

        Raises:
            ValidationError: Password longer than bcrypt accepts
        """
        encoded = password.encode("utf-8")
        if len(encoded) > MAX_PASSWORD_BYTES:
            raise ValidationError(f"Password cannot be longer than {MAX_PASSWORD_BYTES} bytes")
        salt = bcrypt.gensalt(rounds=self.settings.bcrypt_rounds)
        hashed = bcrypt.hashpw(encoded, salt)
        return hashed.decode("utf-8")

    def verify_password(self, password: str, password_hash: str) -> bool:
        """Verify a password against a bcrypt hash.

        Args:
            password: Plain-text password to check
            password_hash: Bcrypt hash to verify against

        Returns:
            True if the password matches, False otherwise (including a malformed hash)
        """
        encoded = password.encode("utf-8")
        # No stored hash can match input bcrypt refuses to hash
        if len(encoded) > MAX_PASSWORD_BYTES:
            return False
        try:
            return bcrypt.checkpw(
                encoded,
                password_hash.encode("utf-8"),
            )
        except ValueError:
            logger.warning("password_hash_malformed")
            return False

    async def hash_password_async(self, password: str) -> str:
        """Hash off the event loop; bcrypt is deliberately slow."""
        return await asyncio.to_thread(self.hash_password, password)

    async def verify_password_async(self, password: str, password_hash: str) -> bool:
        return await asyncio.to_thread(self.verify_password, password, password_hash)

    # ------------------------------------------------------------------
    # JWTs
    # ------------------------------------------------------------------

    def _encode(
        self,
        user_id: UUID,
        role: Role,
        token_type: str,
        lifetime: timedelta,
        secret: str,
    ) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": str(user_id),
            "role": Role(role).value,
            "type": token_type,
            "iat": now,
            "exp": now + lifetime,
        }
        if token_type == REFRESH_TOKEN_TYPE:
            # Distinguishes two refresh tokens issued within the same second
            payload["jti"] = secrets.token_urlsafe(16)
        return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)

    def create_access_token(self, user_id: UUID, role: Role) -> str:
        """Create a short-lived signed access token.

        Args:
            user_id: User UUID (placed in 'sub' claim)
            role: Directory role to include in the payload

        Returns:
            Encoded JWT string
        """
        token = self._encode(
            user_id,
            role,
            ACCESS_TOKEN_TYPE,
            timedelta(minutes=self.settings.access_token_expire_minutes),
            self.settings.jwt_access_secret,
        )
        logger.debug(
            "access_token_created",
            user_id=str(user_id),
            expires_minutes=self.settings.access_token_expire_minutes,
        )
        return token

    def create_refresh_token(self, user_id: UUID, role: Role) -> str:
        """Create a long-lived signed refresh token.

        The caller stores it as the user's single active refresh value, which
        implicitly revokes any previous one.
        """
        token = self._encode(
            user_id,
            role,
            REFRESH_TOKEN_TYPE,
            timedelta(days=self.settings.refresh_token_expire_days),
            self.settings.jwt_refresh_secret,
        )
        logger.debug(
            "refresh_token_created",
            user_id=str(user_id),
            expires_days=self.settings.refresh_token_expire_days,
        )
        return token

    def _decode(self, token: str, secret: str, expected_type: str) -> TokenClaims:
        """Verify signature, expiry, type, and claim shape.

        Raises:
            InvalidTokenError: For any failure. The reason is logged, never returned.
        """
        reason = None
        try:
            payload = jwt.decode(
                token,
                secret,
                algorithms=[JWT_ALGORITHM],
                options={"require": ["exp", "sub"]},
            )
        except jwt.ExpiredSignatureError:
            reason = "expired"
        except jwt.InvalidSignatureError:
            reason = "bad_signature"
        except jwt.InvalidTokenError:
            reason = "malformed"

        if reason is None:
            if payload.get("type") != expected_type:
                reason = "wrong_type"
            else:
                try:
                    return TokenClaims(
                        user_id=UUID(payload["sub"]),
                        role=Role(payload.get("role", Role.USER.value)),
                        token_type=payload["type"],
                        expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
                    )
                except (TypeError, ValueError):
                    reason = "malformed"

        logger.info("token_rejected", token_type=expected_type, reason=reason)
        raise InvalidTokenError()

    def validate_access_token(self, token: str) -> TokenClaims:
        """Decode and validate a JWT access token.

        Raises:
            InvalidTokenError: If the token is invalid, expired, or malformed
        """
        return self._decode(token, self.settings.jwt_access_secret, ACCESS_TOKEN_TYPE)

    def validate_refresh_token(self, token: str) -> TokenClaims:
        """Decode and validate a JWT refresh token (signature and expiry only).

        Revocation is checked separately against the stored value.
        """
        return self._decode(token, self.settings.jwt_refresh_secret, REFRESH_TOKEN_TYPE)

    # ------------------------------------------------------------------
    # One-time tokens
    # ------------------------------------------------------------------

    def generate_one_time_token(self, expire_minutes: int = 20) -> OneTimeToken:
        """Generate a random one-time token with its hash and expiry.

        Args:
            expire_minutes: Validity window from now

        Returns:
            OneTimeToken with the plain value, its SHA-256 hash, and expiry
        """
        plain_value = secrets.token_hex(ONE_TIME_TOKEN_BYTES)
        return OneTimeToken(
            plain_value=plain_value,
            token_hash=hash_token(plain_value),
            expires_at=datetime.now(timezone.utc) + timedelta(minutes=expire_minutes),
        )
