"""Services package exports."""

from chat_backend.services.account_service import AccountService
from chat_backend.services.auth_service import AuthService
from chat_backend.services.chat_service import ChatService
from chat_backend.services.logging_service import configure_logging, get_logger
from chat_backend.services.user_service import UserService

__all__ = [
    "AccountService",
    "AuthService",
    "ChatService",
    "UserService",
    "configure_logging",
    "get_logger",
]
