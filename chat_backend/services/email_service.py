"""Email service for out-of-band delivery of one-time tokens."""

import structlog

from chat_backend.config import get_settings

logger = structlog.get_logger(__name__)


class EmailService:
    """Sends verification and password-reset links over SMTP.

    Delivery failures are logged and reported as False; they never fail
    the auth flow that triggered them.
    """

    def __init__(self):
        self.settings = get_settings()

    async def _send(self, to_email: str, subject: str, body: str, kind: str) -> bool:
        if not self.settings.email_enabled or not self.settings.smtp_host:
            logger.info("email_delivery_skipped", to=to_email, kind=kind)
            return False

        try:
            import aiosmtplib

            message = (
                f"From: {self.settings.email_from}\r\n"
                f"To: {to_email}\r\n"
                f"Subject: {subject}\r\n"
                f"Content-Type: text/plain; charset=utf-8\r\n"
                f"\r\n"
                f"{body}"
            )

            await aiosmtplib.send(
                message,
                sender=self.settings.email_from,
                recipients=[to_email],
                hostname=self.settings.smtp_host,
                port=self.settings.smtp_port,
                username=self.settings.smtp_username or None,
                password=self.settings.smtp_password or None,
                use_tls=self.settings.smtp_use_tls,
            )

            logger.info("email_sent", to=to_email, kind=kind)
            return True

        except Exception as e:
            logger.error("email_send_failed", to=to_email, kind=kind, error=str(e))
            return False

    async def send_verification_email(self, to_email: str, token: str) -> bool:
        """Send the email-verification link."""
        url = f"{self.settings.app_base_url}/api/v1/auth/verify-email/{token}"
        body = (
            "Welcome! Please verify your email address by opening this link:\n\n"
            f"{url}\n\n"
            f"The link expires in {self.settings.email_verification_token_expire_minutes} minutes."
        )
        return await self._send(to_email, "Verify your email", body, "email_verification")

    async def send_password_reset_email(self, to_email: str, token: str) -> bool:
        """Send the password-reset link."""
        url = f"{self.settings.app_base_url}/api/v1/auth/reset-password/{token}"
        body = (
            "We received a request to reset your password. Use this link:\n\n"
            f"{url}\n\n"
            f"The link expires in {self.settings.password_reset_token_expire_minutes} minutes. "
            "If you did not ask for a reset, ignore this email."
        )
        return await self._send(to_email, "Reset your password", body, "password_reset")
