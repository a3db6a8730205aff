"""Authentication API endpoints."""

from fastapi import APIRouter, Depends, Request, Response, status
import structlog

from chat_backend.api.dependencies import get_account_service, get_current_user, rate_limit
from chat_backend.config import get_settings
from chat_backend.models.auth import (
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    LoginResult,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordRequest,
)
from chat_backend.models.response import ApiResponse
from chat_backend.models.user import PublicUser
from chat_backend.services.account_service import AccountService

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/auth", tags=["Auth"])

FORGOT_PASSWORD_MESSAGE = "If an account with that email exists, a password reset link has been sent."


def _cookie_kwargs(max_age_seconds: int) -> dict:
    settings = get_settings()
    return dict(
        httponly=True,
        secure=settings.cookie_secure,
        samesite=settings.cookie_samesite,
        path="/",
        max_age=max_age_seconds,
    )


def _set_auth_cookies(response: Response, result: LoginResult) -> None:
    settings = get_settings()
    response.set_cookie(
        settings.access_cookie_name,
        result.access_token,
        **_cookie_kwargs(settings.access_token_expire_minutes * 60),
    )
    response.set_cookie(
        settings.refresh_cookie_name,
        result.refresh_token,
        **_cookie_kwargs(settings.refresh_token_expire_days * 24 * 3600),
    )


def _clear_auth_cookies(response: Response) -> None:
    settings = get_settings()
    response.delete_cookie(settings.access_cookie_name, path="/")
    response.delete_cookie(settings.refresh_cookie_name, path="/")


@router.post(
    "/register",
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("registration"))],
)
async def register(
    request: RegisterRequest,
    service: AccountService = Depends(get_account_service),
) -> ApiResponse:
    """Register a new account.

    The verification token is included in the response only when
    ``expose_one_time_tokens`` is enabled; otherwise it is delivered by email.
    """
    result = await service.register(request)

    data: dict = {"user": result.user}
    if get_settings().expose_one_time_tokens:
        data["verification_token"] = result.verification_token

    return ApiResponse(
        data=data,
        message="User registered successfully. Please verify your email.",
    )


@router.post("/login", dependencies=[Depends(rate_limit("login"))])
async def login(
    request: LoginRequest,
    response: Response,
    service: AccountService = Depends(get_account_service),
) -> ApiResponse:
    """Login with email or username and password.

    Sets httpOnly access and refresh cookies and returns both tokens.
    """
    result = await service.login(request)
    _set_auth_cookies(response, result)
    return ApiResponse(data=result, message="User logged in successfully")


@router.post("/logout", dependencies=[Depends(rate_limit("auth"))])
async def logout(
    response: Response,
    current_user: PublicUser = Depends(get_current_user),
    service: AccountService = Depends(get_account_service),
) -> ApiResponse:
    """Revoke the refresh token and clear auth cookies."""
    await service.logout(current_user.id)
    _clear_auth_cookies(response)
    return ApiResponse(message="User logged out successfully")


@router.post("/refresh-token")
async def refresh_token(
    http_request: Request,
    response: Response,
    request: RefreshRequest = RefreshRequest(),
    service: AccountService = Depends(get_account_service),
) -> ApiResponse:
    """Exchange a refresh token (body or cookie) for a rotated token pair."""
    incoming = request.refresh_token or http_request.cookies.get(
        get_settings().refresh_cookie_name
    )
    result = await service.refresh_access_token(incoming)
    _set_auth_cookies(response, result)
    return ApiResponse(data=result, message="Access token refreshed")


@router.get("/verify-email/{verification_token}")
async def verify_email(
    verification_token: str,
    service: AccountService = Depends(get_account_service),
) -> ApiResponse:
    user = await service.verify_email(verification_token)
    return ApiResponse(
        data={"is_email_verified": user.is_email_verified},
        message="Email verified successfully",
    )


@router.post(
    "/resend-email-verification",
    dependencies=[Depends(rate_limit("auth"))],
)
async def resend_email_verification(
    current_user: PublicUser = Depends(get_current_user),
    service: AccountService = Depends(get_account_service),
) -> ApiResponse:
    token = await service.resend_email_verification(current_user.id)
    data = {"verification_token": token} if get_settings().expose_one_time_tokens else None
    return ApiResponse(data=data, message="Verification email sent")


@router.post("/forgot-password", dependencies=[Depends(rate_limit("password_reset"))])
async def forgot_password(
    request: ForgotPasswordRequest,
    service: AccountService = Depends(get_account_service),
) -> ApiResponse:
    """Start a password reset. The answer is the same whether or not the email exists."""
    token = await service.forgot_password(request.email)

    data = None
    if token is not None and get_settings().expose_one_time_tokens:
        data = {"reset_token": token}
    return ApiResponse(data=data, message=FORGOT_PASSWORD_MESSAGE)


@router.post(
    "/reset-password/{reset_token}",
    dependencies=[Depends(rate_limit("password_reset"))],
)
async def reset_password(
    reset_token: str,
    request: ResetPasswordRequest,
    service: AccountService = Depends(get_account_service),
) -> ApiResponse:
    """Set a new password using a reset token; all sessions end."""
    await service.reset_forgotten_password(reset_token, request.new_password)
    return ApiResponse(message="Password reset successfully")


@router.post("/change-password", dependencies=[Depends(rate_limit("auth"))])
async def change_password(
    request: ChangePasswordRequest,
    response: Response,
    current_user: PublicUser = Depends(get_current_user),
    service: AccountService = Depends(get_account_service),
) -> ApiResponse:
    """Change the password of the current user; all sessions end."""
    await service.change_current_password(
        current_user.id, request.old_password, request.new_password
    )
    _clear_auth_cookies(response)
    return ApiResponse(message="Password changed successfully")


@router.get("/me")
async def get_me(current_user: PublicUser = Depends(get_current_user)) -> ApiResponse:
    """Get current authenticated user info."""
    return ApiResponse(data=current_user, message="Current user fetched")
