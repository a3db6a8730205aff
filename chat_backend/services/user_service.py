"""User directory: lookup, creation, and credential-state updates."""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

import asyncpg
import structlog

from chat_backend.database import get_pool
from chat_backend.errors import AlreadyExistsError
from chat_backend.models.user import OneTimeTokenKind, Role, UserRecord
from chat_backend.services.auth_service import AuthService, OneTimeToken

logger = structlog.get_logger(__name__)

USER_COLUMNS = """
    id, username, email, password_hash, role, is_email_verified, avatar_url,
    refresh_token,
    email_verification_token_hash, email_verification_token_expiry,
    password_reset_token_hash, password_reset_token_expiry,
    created_at, updated_at
"""

# Column pair (hash, expiry) per one-time token kind
TOKEN_COLUMNS = {
    OneTimeTokenKind.EMAIL_VERIFICATION: (
        "email_verification_token_hash",
        "email_verification_token_expiry",
    ),
    OneTimeTokenKind.PASSWORD_RESET: (
        "password_reset_token_hash",
        "password_reset_token_expiry",
    ),
}


def _to_user(row) -> Optional[UserRecord]:
    if row is None:
        return None
    return UserRecord(**dict(row))


class UserService:
    """Service for user records.

    Passwords are hashed here, explicitly, on creation and on replacement.
    Uniqueness of email and username is enforced by the database.
    """

    def __init__(self):
        self.auth_service = AuthService()

    async def _fetch_one(self, query: str, *args) -> Optional[UserRecord]:
        pool = await get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(query, *args)
        return _to_user(row)

    async def create_user(
        self,
        username: str,
        email: str,
        password: str,
        role: Role = Role.USER,
        verification_token: Optional[OneTimeToken] = None,
    ) -> UserRecord:
        """Create a new user with a hashed password.

        The verification token, when given, is stored by the same INSERT so
        an account never exists without one.

        Args:
            username: Unique username (normalized to lower case)
            email: Unique email (normalized to lower case)
            password: Plain-text password (will be hashed)
            role: Directory role
            verification_token: Email-verification token to store with the user

        Returns:
            Created UserRecord

        Raises:
            AlreadyExistsError: If the email or username is already taken
        """
        user_id = uuid4()
        now = datetime.now(timezone.utc)
        password_hash = await self.auth_service.hash_password_async(password)

        pool = await get_pool()

        try:
            async with pool.acquire() as conn:
                row = await conn.fetchrow(
                    f"""
                    INSERT INTO users (
                        id, username, email, password_hash, role,
                        email_verification_token_hash, email_verification_token_expiry,
                        created_at, updated_at
                    )
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                    RETURNING {USER_COLUMNS}
                    """,
                    user_id,
                    username.strip().lower(),
                    email.strip().lower(),
                    password_hash,
                    Role(role).value,
                    verification_token.token_hash if verification_token else None,
                    verification_token.expires_at if verification_token else None,
                    now,
                    now,
                )
        except asyncpg.UniqueViolationError:
            logger.warning("user_create_duplicate", username=username, email=email)
            raise AlreadyExistsError()

        logger.info("user_created", user_id=str(user_id), username=username)
        return _to_user(row)

    async def find_by_email_or_username(
        self, email: Optional[str], username: Optional[str]
    ) -> Optional[UserRecord]:
        """Get the first user whose email or username matches.

        Either argument may be None; matching is case-insensitive.
        """
        return await self._fetch_one(
            f"""
            SELECT {USER_COLUMNS}
            FROM users
            WHERE email = LOWER($1) OR username = LOWER($2)
            LIMIT 1
            """,
            email,
            username,
        )

    async def get_by_email(self, email: str) -> Optional[UserRecord]:
        return await self._fetch_one(
            f"SELECT {USER_COLUMNS} FROM users WHERE email = LOWER($1)",
            email.strip(),
        )

    async def get_by_id(self, user_id: UUID) -> Optional[UserRecord]:
        """Get a user by UUID.

        Args:
            user_id: User UUID

        Returns:
            UserRecord or None if not found
        """
        return await self._fetch_one(
            f"SELECT {USER_COLUMNS} FROM users WHERE id = $1",
            user_id,
        )

    async def get_existing_ids(self, user_ids: list[UUID]) -> set[UUID]:
        """Return the subset of ``user_ids`` that belong to existing users."""
        if not user_ids:
            return set()
        pool = await get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT id FROM users WHERE id = ANY($1::uuid[])",
                list(user_ids),
            )
        return {row["id"] for row in rows}

    async def get_by_refresh_token(self, token: str) -> Optional[UserRecord]:
        """Get the user whose currently stored refresh token is exactly ``token``."""
        return await self._fetch_one(
            f"SELECT {USER_COLUMNS} FROM users WHERE refresh_token = $1",
            token,
        )

    async def _get_by_token_hash(
        self, kind: OneTimeTokenKind, token_hash: str
    ) -> Optional[UserRecord]:
        hash_column, expiry_column = TOKEN_COLUMNS[kind]
        return await self._fetch_one(
            f"""
            SELECT {USER_COLUMNS}
            FROM users
            WHERE {hash_column} = $1 AND {expiry_column} > $2
            """,
            token_hash,
            datetime.now(timezone.utc),
        )

    async def get_by_verification_token_hash(self, token_hash: str) -> Optional[UserRecord]:
        """Get the user holding this unexpired email-verification hash."""
        return await self._get_by_token_hash(OneTimeTokenKind.EMAIL_VERIFICATION, token_hash)

    async def get_by_reset_token_hash(self, token_hash: str) -> Optional[UserRecord]:
        """Get the user holding this unexpired password-reset hash."""
        return await self._get_by_token_hash(OneTimeTokenKind.PASSWORD_RESET, token_hash)

    async def update_refresh_token(self, user_id: UUID, token: Optional[str]) -> None:
        """Store (or clear with None) the user's single active refresh token."""
        pool = await get_pool()
        async with pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE users SET refresh_token = $1, updated_at = $2 WHERE id = $3
                """,
                token,
                datetime.now(timezone.utc),
                user_id,
            )
        logger.debug("refresh_token_updated", user_id=str(user_id), cleared=token is None)

    async def rotate_refresh_token(
        self, user_id: UUID, expected: str, new_token: str
    ) -> bool:
        """Atomically replace the refresh token only if it still equals ``expected``.

        Returns:
            True if rotated, False if the stored value changed in the meantime
        """
        pool = await get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE users
                SET refresh_token = $1, updated_at = $2
                WHERE id = $3 AND refresh_token = $4
                RETURNING id
                """,
                new_token,
                datetime.now(timezone.utc),
                user_id,
                expected,
            )
        return row is not None

    async def set_one_time_token(
        self,
        user_id: UUID,
        kind: OneTimeTokenKind,
        token_hash: str,
        expires_at: datetime,
    ) -> None:
        """Store a one-time token hash, overwriting any previous one of the same kind."""
        hash_column, expiry_column = TOKEN_COLUMNS[kind]
        pool = await get_pool()
        async with pool.acquire() as conn:
            await conn.execute(
                f"""
                UPDATE users
                SET {hash_column} = $1, {expiry_column} = $2, updated_at = $3
                WHERE id = $4
                """,
                token_hash,
                expires_at,
                datetime.now(timezone.utc),
                user_id,
            )
        logger.info("one_time_token_set", user_id=str(user_id), kind=kind.value)

    async def clear_one_time_token(self, user_id: UUID, kind: OneTimeTokenKind) -> None:
        hash_column, expiry_column = TOKEN_COLUMNS[kind]
        pool = await get_pool()
        async with pool.acquire() as conn:
            await conn.execute(
                f"""
                UPDATE users
                SET {hash_column} = NULL, {expiry_column} = NULL, updated_at = $1
                WHERE id = $2
                """,
                datetime.now(timezone.utc),
                user_id,
            )

    async def mark_email_verified(self, user_id: UUID) -> Optional[UserRecord]:
        """Set the verified flag and clear the verification token in one statement."""
        user = await self._fetch_one(
            f"""
            UPDATE users
            SET is_email_verified = TRUE,
                email_verification_token_hash = NULL,
                email_verification_token_expiry = NULL,
                updated_at = $1
            WHERE id = $2
            RETURNING {USER_COLUMNS}
            """,
            datetime.now(timezone.utc),
            user_id,
        )
        if user is not None:
            logger.info("email_verified", user_id=str(user_id))
        return user

    async def update_password(self, user_id: UUID, new_password: str) -> bool:
        """Re-hash and replace the password, revoking the refresh token.

        Also clears any outstanding password-reset token.

        Returns:
            True if the user existed and was updated
        """
        password_hash = await self.auth_service.hash_password_async(new_password)
        pool = await get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE users
                SET password_hash = $1,
                    refresh_token = NULL,
                    password_reset_token_hash = NULL,
                    password_reset_token_expiry = NULL,
                    updated_at = $2
                WHERE id = $3
                RETURNING id
                """,
                password_hash,
                datetime.now(timezone.utc),
                user_id,
            )

        updated = row is not None
        if updated:
            logger.info("password_updated", user_id=str(user_id))
        return updated
