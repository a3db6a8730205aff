"""API package exports."""

from chat_backend.api.auth import router as auth_router
from chat_backend.api.chats import router as chats_router
from chat_backend.api.middleware import CorrelationIdMiddleware
from chat_backend.api.realtime import router as realtime_router
from chat_backend.api.routes import router

__all__ = [
    "router",
    "auth_router",
    "chats_router",
    "realtime_router",
    "CorrelationIdMiddleware",
]
