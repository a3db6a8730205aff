"""Models package exports."""

from chat_backend.models.auth import LoginRequest, LoginResult, RegisterRequest, RegistrationResult
from chat_backend.models.chat import Attachment, Chat, Message
from chat_backend.models.response import ApiResponse
from chat_backend.models.user import OneTimeTokenKind, PublicUser, Role, UserRecord

__all__ = [
    "ApiResponse",
    "Attachment",
    "Chat",
    "LoginRequest",
    "LoginResult",
    "Message",
    "OneTimeTokenKind",
    "PublicUser",
    "RegisterRequest",
    "RegistrationResult",
    "Role",
    "UserRecord",
]
