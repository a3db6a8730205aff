"""WebSocket endpoint for live chat events."""

import json
from typing import Optional
from uuid import uuid4

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
import structlog

from chat_backend.config import get_settings
from chat_backend.errors import UnauthorizedError
from chat_backend.services.logging_service import bind_request_context
from chat_backend.services.realtime_service import RealtimeGateway

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["Realtime"])

# Application-defined close code for a rejected handshake
WS_UNAUTHORIZED = 4401


def get_gateway() -> RealtimeGateway:
    return RealtimeGateway()


def handshake_token(websocket: WebSocket) -> Optional[str]:
    """Credential from ``?token=``, an ``Authorization: Bearer`` header, or the access cookie."""
    token = websocket.query_params.get("token")
    if token:
        return token

    authorization = websocket.headers.get("authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()

    return websocket.cookies.get(get_settings().access_cookie_name)


@router.websocket("/ws")
async def chat_socket(websocket: WebSocket) -> None:
    """Authenticated event stream.

    Frames in both directions are JSON objects ``{"event": ..., "data": ...}``.
    """
    gateway = get_gateway()
    bind_request_context(
        websocket.headers.get("X-Correlation-Id", str(uuid4())), path=websocket.url.path
    )

    try:
        user = await gateway.authenticate(handshake_token(websocket))
    except UnauthorizedError as e:
        logger.info("realtime_handshake_rejected", reason=e.message)
        await websocket.close(code=WS_UNAUTHORIZED)
        return

    await websocket.accept()
    session = gateway.open_session(websocket, user)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
            except json.JSONDecodeError:
                await session.send_error("Frames must be JSON")
                continue

            if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
                await session.send_error("Frames must carry an event name")
                continue

            await gateway.handle_event(session, frame["event"], frame.get("data"))
    except WebSocketDisconnect as e:
        logger.debug("realtime_client_closed", session_id=str(session.id), code=e.code)
    finally:
        await gateway.close_session(session)
