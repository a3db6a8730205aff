"""FastAPI dependencies for authentication, services, and rate limiting."""

from typing import Callable, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from chat_backend.config import get_settings
from chat_backend.errors import InvalidTokenError, RateLimitedError, UnauthorizedError
from chat_backend.models.user import PublicUser
from chat_backend.services.account_service import AccountService
from chat_backend.services.auth_service import AuthService
from chat_backend.services.chat_service import ChatService
from chat_backend.services.redis_service import RateLimitService
from chat_backend.services.user_service import UserService

bearer_scheme = HTTPBearer(auto_error=False)


def get_account_service() -> AccountService:
    return AccountService()


def get_chat_service() -> ChatService:
    return ChatService()


def extract_access_token(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials],
) -> Optional[str]:
    """Bearer header first, then the access-token cookie."""
    if credentials is not None and credentials.credentials:
        return credentials.credentials
    return request.cookies.get(get_settings().access_cookie_name) or None


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> PublicUser:
    """Extract and validate the current user from the access token.

    Returns:
        Sanitized user

    Raises:
        UnauthorizedError: If the token is missing, invalid, expired, or the user is gone
    """
    token = extract_access_token(request, credentials)
    if not token:
        raise UnauthorizedError("Unauthorized request")

    try:
        claims = AuthService().validate_access_token(token)
    except InvalidTokenError:
        raise UnauthorizedError("Invalid or expired access token")

    user = await UserService().get_by_id(claims.user_id)
    if user is None:
        raise UnauthorizedError("Invalid token")

    return user.sanitize()


def client_key(request: Request) -> str:
    """Rate-limit identity of a request.

    The peer address, unless the peer is a configured trusted proxy. Then
    X-Forwarded-For is walked from the right and the first hop that is not
    itself a trusted proxy wins.
    """
    peer = request.client.host if request.client else "unknown"
    trusted = get_settings().trusted_proxies_list
    if peer not in trusted:
        return peer

    forwarded = request.headers.get("X-Forwarded-For", "")
    hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
    for hop in reversed(hops):
        if hop not in trusted:
            return hop
    return hops[0] if hops else peer


def rate_limit(policy: str) -> Callable:
    """Build a dependency that counts the request against a named policy.

    Raises:
        RateLimitedError: When the client exceeded the policy's window
    """

    async def dependency(request: Request) -> None:
        result = await RateLimitService().hit(policy, client_key(request))
        if not result.allowed:
            raise RateLimitedError(retry_after=result.retry_after)

    return dependency
