"""Account flows: registration, login, token refresh, verification, and passwords."""

from typing import Optional
from uuid import UUID

import structlog

from chat_backend.config import get_settings
from chat_backend.errors import (
    AlreadyExistsError,
    InvalidCredentialsError,
    InvalidOrExpiredTokenError,
    InvalidTokenError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from chat_backend.models.auth import (
    MAX_PASSWORD_BYTES,
    LoginRequest,
    LoginResult,
    RegisterRequest,
    RegistrationResult,
)
from chat_backend.models.user import OneTimeTokenKind, PublicUser, UserRecord
from chat_backend.services.auth_service import AuthService, hash_token
from chat_backend.services.email_service import EmailService
from chat_backend.services.user_service import UserService

logger = structlog.get_logger(__name__)


class AccountService:
    """Orchestrates the auth flows over the token model and the user directory.

    Login state is the presence of a stored refresh token: login sets it,
    refresh rotates it, and logout or any password change clears it.
    """

    def __init__(
        self,
        user_service: Optional[UserService] = None,
        auth_service: Optional[AuthService] = None,
        email_service: Optional[EmailService] = None,
    ):
        self.settings = get_settings()
        self.users = user_service or UserService()
        self.auth = auth_service or AuthService()
        self.email = email_service or EmailService()

    def _check_password_length(self, password: str) -> None:
        if not password or len(password) < self.settings.min_password_length:
            raise ValidationError(
                f"Password must be at least {self.settings.min_password_length} characters"
            )
        if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValidationError(f"Password cannot be longer than {MAX_PASSWORD_BYTES} bytes")

    def _issue_tokens(self, user: UserRecord) -> tuple[str, str]:
        access_token = self.auth.create_access_token(user.id, user.role)
        refresh_token = self.auth.create_refresh_token(user.id, user.role)
        return access_token, refresh_token

    def _login_result(self, user: UserRecord, access_token: str, refresh_token: str) -> LoginResult:
        return LoginResult(
            user=user.sanitize(),
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=self.settings.access_token_expire_minutes * 60,
        )

    async def _issue_one_time_token(self, user_id: UUID, kind: OneTimeTokenKind) -> str:
        if kind is OneTimeTokenKind.EMAIL_VERIFICATION:
            minutes = self.settings.email_verification_token_expire_minutes
        else:
            minutes = self.settings.password_reset_token_expire_minutes
        token = self.auth.generate_one_time_token(minutes)
        await self.users.set_one_time_token(user_id, kind, token.token_hash, token.expires_at)
        return token.plain_value

    async def register(self, request: RegisterRequest) -> RegistrationResult:
        """Create an unverified account and issue its email-verification token.

        Raises:
            AlreadyExistsError: If the email or username is taken
        """
        self._check_password_length(request.password)
        logger.info("registration_attempt", username=request.username, email=request.email)

        existing = await self.users.find_by_email_or_username(request.email, request.username)
        if existing is not None:
            logger.warning("registration_duplicate", username=request.username, email=request.email)
            raise AlreadyExistsError()

        token = self.auth.generate_one_time_token(
            self.settings.email_verification_token_expire_minutes
        )
        user = await self.users.create_user(
            username=request.username,
            email=request.email,
            password=request.password,
            verification_token=token,
        )
        await self.email.send_verification_email(user.email, token.plain_value)

        logger.info("user_registered", user_id=str(user.id), username=user.username)
        return RegistrationResult(user=user.sanitize(), verification_token=token.plain_value)

    async def login(self, request: LoginRequest) -> LoginResult:
        """Authenticate by email or username and issue a token pair.

        Raises:
            InvalidCredentialsError: Unknown user or wrong password
        """
        user = await self.users.find_by_email_or_username(request.email, request.username)
        if user is None:
            logger.warning("login_unknown_user", email=request.email, username=request.username)
            raise InvalidCredentialsError()

        if not await self.auth.verify_password_async(request.password, user.password_hash):
            logger.warning("login_bad_password", user_id=str(user.id))
            raise InvalidCredentialsError()

        access_token, refresh_token = self._issue_tokens(user)
        await self.users.update_refresh_token(user.id, refresh_token)

        logger.info("user_logged_in", user_id=str(user.id))
        return self._login_result(user, access_token, refresh_token)

    async def logout(self, user_id: UUID) -> None:
        """Revoke the stored refresh token. Safe to call when already logged out."""
        await self.users.update_refresh_token(user_id, None)
        logger.info("user_logged_out", user_id=str(user_id))

    async def refresh_access_token(self, incoming_token: Optional[str]) -> LoginResult:
        """Exchange a refresh token for a new pair, rotating the stored value.

        A refresh token is single-use: once rotated away it no longer matches
        the stored value and is rejected.

        Raises:
            UnauthorizedError: Missing, revoked, invalid, or expired token
        """
        if not incoming_token:
            logger.warning("refresh_token_missing")
            raise UnauthorizedError("Refresh token missing")

        user = await self.users.get_by_refresh_token(incoming_token)
        if user is None:
            logger.warning("refresh_token_not_current")
            raise UnauthorizedError("Invalid refresh token")

        try:
            claims = self.auth.validate_refresh_token(incoming_token)
        except InvalidTokenError:
            raise UnauthorizedError("Invalid refresh token")

        if claims.user_id != user.id:
            logger.warning("refresh_token_subject_mismatch", user_id=str(user.id))
            raise UnauthorizedError("Invalid refresh token")

        access_token, refresh_token = self._issue_tokens(user)
        rotated = await self.users.rotate_refresh_token(user.id, incoming_token, refresh_token)
        if not rotated:
            logger.warning("refresh_token_rotation_lost", user_id=str(user.id))
            raise UnauthorizedError("Invalid refresh token")

        logger.info("access_token_refreshed", user_id=str(user.id))
        return self._login_result(user, access_token, refresh_token)

    async def verify_email(self, token: Optional[str]) -> PublicUser:
        """Mark the email verified for the holder of an unexpired verification token.

        Raises:
            InvalidTokenError: Missing token, or no unexpired match
        """
        if not token:
            raise InvalidTokenError("Verification token missing")

        user = await self.users.get_by_verification_token_hash(hash_token(token))
        if user is None:
            logger.warning("email_verification_token_invalid")
            raise InvalidTokenError("Invalid or expired verification token")

        verified = await self.users.mark_email_verified(user.id)
        return (verified or user).sanitize()

    async def resend_email_verification(self, user_id: UUID) -> str:
        """Issue a fresh verification token, replacing any outstanding one.

        Raises:
            NotFoundError: User missing
            ValidationError: Email already verified
        """
        user = await self.users.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found")
        if user.is_email_verified:
            raise ValidationError("Email is already verified")

        token = await self._issue_one_time_token(user.id, OneTimeTokenKind.EMAIL_VERIFICATION)
        await self.email.send_verification_email(user.email, token)
        logger.info("email_verification_resent", user_id=str(user.id))
        return token

    async def forgot_password(self, email: str) -> Optional[str]:
        """Start a password reset.

        Returns the plaintext reset token, or None when no account matches.
        Callers must answer identically in both cases.
        """
        user = await self.users.get_by_email(email)
        if user is None:
            logger.info("password_reset_unknown_email")
            return None

        token = await self._issue_one_time_token(user.id, OneTimeTokenKind.PASSWORD_RESET)
        await self.email.send_password_reset_email(user.email, token)
        logger.info("password_reset_token_issued", user_id=str(user.id))
        return token

    async def reset_forgotten_password(self, token: Optional[str], new_password: str) -> None:
        """Set a new password with a reset token and end every session.

        Raises:
            ValidationError: Password too short
            InvalidOrExpiredTokenError: Missing token, or no unexpired match
        """
        self._check_password_length(new_password)
        if not token:
            raise InvalidOrExpiredTokenError("Reset token is missing")

        user = await self.users.get_by_reset_token_hash(hash_token(token))
        if user is None:
            logger.warning("password_reset_token_invalid")
            raise InvalidOrExpiredTokenError()

        # update_password also clears the reset token and the refresh token
        await self.users.update_password(user.id, new_password)
        logger.info("password_reset_completed", user_id=str(user.id))

    async def change_current_password(
        self, user_id: UUID, old_password: str, new_password: str
    ) -> None:
        """Change the password after checking the old one; ends every session.

        Raises:
            NotFoundError: User missing
            InvalidCredentialsError: Old password mismatch
            ValidationError: New password too short
        """
        user = await self.users.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found")

        if not await self.auth.verify_password_async(old_password, user.password_hash):
            logger.warning("change_password_bad_old_password", user_id=str(user_id))
            raise InvalidCredentialsError("Invalid old password")

        self._check_password_length(new_password)

        await self.users.update_password(user.id, new_password)
        logger.info("password_changed", user_id=str(user_id))

    async def get_current_user(self, user_id: UUID) -> PublicUser:
        user = await self.users.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user.sanitize()
