"""Real-time session gateway: authenticated WebSocket sessions and chat rooms.

Single-node only. Rooms live in process memory; broadcasts are best-effort
and unacknowledged.
"""

from typing import Any, Optional
from uuid import UUID, uuid4

import structlog
from fastapi.encoders import jsonable_encoder

from chat_backend.errors import AppError, InvalidTokenError, UnauthorizedError, ValidationError
from chat_backend.models.chat import Attachment
from chat_backend.models.user import PublicUser
from chat_backend.services.auth_service import AuthService
from chat_backend.services.chat_service import ChatService
from chat_backend.services.user_service import UserService

logger = structlog.get_logger(__name__)

# Client -> server
JOIN_CHAT = "join-chat"
LEAVE_CHAT = "leave-chat"
TYPING = "typing"
STOP_TYPING = "stop-typing"
SEND_MESSAGE = "send-message"

# Server -> client
MESSAGE_RECEIVED = "message-received"
MESSAGE_SENT = "message-sent"
USER_JOINED = "user-joined"
USER_LEFT = "user-left"
ERROR = "error"


class ClientSession:
    """One authenticated WebSocket connection bound to a user."""

    def __init__(self, websocket, user: PublicUser):
        self.id = uuid4()
        self.websocket = websocket
        self.user = user
        self.rooms: set[str] = set()

    @property
    def user_id(self) -> UUID:
        return self.user.id

    async def send(self, event: str, data: Any) -> None:
        await self.websocket.send_json({"event": event, "data": jsonable_encoder(data)})

    async def send_error(self, message: str, event: Optional[str] = None) -> None:
        """Send an error frame to this client only; delivery failures are logged."""
        try:
            await self.send(ERROR, {"event": event, "message": message})
        except Exception as e:
            logger.warning("realtime_error_send_failed", session_id=str(self.id), error=str(e))


class RoomHub:
    """Chat-scoped rooms of client sessions."""

    def __init__(self):
        self.rooms: dict[str, set[ClientSession]] = {}

    def join(self, session: ClientSession, room: str) -> None:
        self.rooms.setdefault(room, set()).add(session)
        session.rooms.add(room)

    def leave(self, session: ClientSession, room: str) -> None:
        members = self.rooms.get(room)
        if members is not None:
            members.discard(session)
            if not members:
                del self.rooms[room]
        session.rooms.discard(room)

    def leave_all(self, session: ClientSession) -> list[str]:
        """Remove a session from every room it joined; returns those rooms."""
        rooms = list(session.rooms)
        for room in rooms:
            self.leave(session, room)
        return rooms

    def evict(self, room: str, user_id: UUID) -> int:
        """Drop every session of ``user_id`` from a room; returns how many were dropped."""
        evicted = [s for s in self.members(room) if s.user_id == user_id]
        for session in evicted:
            self.leave(session, room)
        return len(evicted)

    def close_room(self, room: str) -> int:
        """Drop every session from a room, e.g. once its chat is deleted."""
        members = self.members(room)
        for session in members:
            self.leave(session, room)
        return len(members)

    def members(self, room: str) -> set[ClientSession]:
        return set(self.rooms.get(room, ()))

    async def broadcast(
        self,
        room: str,
        event: str,
        data: Any,
        exclude: Optional[ClientSession] = None,
    ) -> int:
        """Send an event to every session in a room except ``exclude``.

        A session whose send fails is dropped from all rooms; the others
        still receive the event.

        Returns:
            Number of sessions the event was delivered to
        """
        delivered = 0
        for session in self.members(room):
            if session is exclude:
                continue
            try:
                await session.send(event, data)
                delivered += 1
            except Exception as e:
                logger.warning(
                    "realtime_send_failed",
                    session_id=str(session.id),
                    room=room,
                    error=str(e),
                )
                self.leave_all(session)
        return delivered


_hub: Optional[RoomHub] = None


def get_room_hub() -> RoomHub:
    """Process-wide room hub shared by the WebSocket and HTTP layers."""
    global _hub
    if _hub is None:
        _hub = RoomHub()
    return _hub


def _parse_chat_id(data: Any) -> UUID:
    raw = data.get("chatId") if isinstance(data, dict) else data
    try:
        return UUID(str(raw))
    except (TypeError, ValueError):
        raise ValidationError("A valid chatId is required")


class RealtimeGateway:
    """Authenticates connections and brokers room events on top of chat membership."""

    def __init__(
        self,
        hub: Optional[RoomHub] = None,
        auth_service: Optional[AuthService] = None,
        user_service: Optional[UserService] = None,
        chat_service: Optional[ChatService] = None,
    ):
        self.hub = hub or get_room_hub()
        self.auth = auth_service or AuthService()
        self.users = user_service or UserService()
        self.chats = chat_service or ChatService(user_service=self.users)

    async def authenticate(self, token: Optional[str]) -> PublicUser:
        """Resolve the user behind a handshake credential.

        Raises:
            UnauthorizedError: Missing or invalid token, or unknown user
        """
        if not token:
            raise UnauthorizedError("Socket token missing")
        try:
            claims = self.auth.validate_access_token(token)
        except InvalidTokenError:
            raise UnauthorizedError("Socket authentication failed")

        user = await self.users.get_by_id(claims.user_id)
        if user is None:
            logger.warning("realtime_user_not_found", user_id=str(claims.user_id))
            raise UnauthorizedError("Socket user not found")
        return user.sanitize()

    def open_session(self, websocket, user: PublicUser) -> ClientSession:
        session = ClientSession(websocket, user)
        logger.info("realtime_connected", session_id=str(session.id), user_id=str(user.id))
        return session

    async def close_session(self, session: ClientSession) -> None:
        """Release every room the session joined and tell the remaining members."""
        for room in self.hub.leave_all(session):
            await self.hub.broadcast(room, USER_LEFT, {"chatId": room, "userId": session.user_id})
        logger.info(
            "realtime_disconnected",
            session_id=str(session.id),
            user_id=str(session.user_id),
        )

    async def handle_event(self, session: ClientSession, event: str, data: Any) -> None:
        """Dispatch one client frame. Classified errors go back to the sender only."""
        handlers = {
            JOIN_CHAT: self._join_chat,
            LEAVE_CHAT: self._leave_chat,
            TYPING: self._typing,
            STOP_TYPING: self._typing,
            SEND_MESSAGE: self._send_message,
        }
        handler = handlers.get(event)
        if handler is None:
            await session.send_error(f"Unknown event: {event}", event=event)
            return

        try:
            await handler(session, event, data)
        except AppError as e:
            logger.info(
                "realtime_event_rejected",
                event=event,
                user_id=str(session.user_id),
                error=e.message,
            )
            await session.send_error(e.message, event=event)

    async def _join_chat(self, session: ClientSession, event: str, data: Any) -> None:
        chat_id = _parse_chat_id(data)
        # Membership is checked before granting room access
        await self.chats.get_chat_details(chat_id, requester_id=session.user_id)
        room = str(chat_id)
        if room in session.rooms:
            return
        self.hub.join(session, room)
        logger.debug("realtime_joined", chat_id=room, user_id=str(session.user_id))
        await self.hub.broadcast(
            room, USER_JOINED, {"chatId": room, "userId": session.user_id}, exclude=session
        )

    async def _leave_chat(self, session: ClientSession, event: str, data: Any) -> None:
        room = str(_parse_chat_id(data))
        if room not in session.rooms:
            return
        self.hub.leave(session, room)
        await self.hub.broadcast(room, USER_LEFT, {"chatId": room, "userId": session.user_id})

    async def _typing(self, session: ClientSession, event: str, data: Any) -> None:
        room = str(_parse_chat_id(data))
        if room not in session.rooms:
            raise ValidationError("Join the chat first")
        await self.hub.broadcast(
            room, event, {"chatId": room, "userId": session.user_id}, exclude=session
        )

    async def _send_message(self, session: ClientSession, event: str, data: Any) -> None:
        if not isinstance(data, dict):
            raise ValidationError("Message payload must be an object")
        chat_id = _parse_chat_id(data)
        try:
            attachments = [Attachment(**a) for a in data.get("attachments") or []]
        except (TypeError, ValueError):
            raise ValidationError("Invalid attachments")

        message = await self.chats.send_message(
            chat_id,
            session.user_id,
            content=str(data.get("content") or ""),
            attachments=attachments,
        )
        await self.hub.broadcast(str(chat_id), MESSAGE_RECEIVED, message, exclude=session)
        await session.send(MESSAGE_SENT, message)
