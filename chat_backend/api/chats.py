"""Chat and message API endpoints."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
import structlog

from chat_backend.api.dependencies import get_chat_service, get_current_user, rate_limit
from chat_backend.models.chat import (
    CreateGroupChatRequest,
    RenameGroupChatRequest,
    SendMessageRequest,
)
from chat_backend.models.response import ApiResponse
from chat_backend.models.user import PublicUser
from chat_backend.services.chat_service import ChatService
from chat_backend.services.realtime_service import MESSAGE_RECEIVED, USER_LEFT, get_room_hub

logger = structlog.get_logger(__name__)

router = APIRouter(
    prefix="/api/v1/chats",
    tags=["Chats"],
    dependencies=[Depends(rate_limit("api"))],
)


async def _evict_from_room(chat_id: UUID, user_id: UUID) -> None:
    """Stop live delivery to a user who is no longer a participant."""
    room = str(chat_id)
    hub = get_room_hub()
    if hub.evict(room, user_id):
        logger.info("realtime_member_evicted", chat_id=room, user_id=str(user_id))
        await hub.broadcast(room, USER_LEFT, {"chatId": room, "userId": user_id})


def _close_room(chat_id: UUID) -> None:
    closed = get_room_hub().close_room(str(chat_id))
    if closed:
        logger.info("realtime_room_closed", chat_id=str(chat_id), sessions=closed)


@router.get("")
async def list_chats(
    current_user: PublicUser = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
) -> ApiResponse:
    """List chats the current user participates in, most recently active first."""
    chats = await service.get_user_chats(current_user.id)
    return ApiResponse(data=chats, message="User chats fetched successfully")


@router.post("/one/{receiver_id}")
async def create_or_get_one_on_one_chat(
    receiver_id: UUID,
    current_user: PublicUser = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
) -> ApiResponse:
    """Return the private chat with ``receiver_id``, creating it on first use."""
    chat = await service.create_or_get_one_on_one_chat(current_user.id, receiver_id)
    return ApiResponse(data=chat, message="Chat retrieved successfully")


@router.post("/group", status_code=status.HTTP_201_CREATED)
async def create_group_chat(
    request: CreateGroupChatRequest,
    current_user: PublicUser = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
) -> ApiResponse:
    chat = await service.create_group_chat(
        request.name, current_user.id, request.participants
    )
    return ApiResponse(data=chat, message="Group chat created successfully")


@router.get("/{chat_id}")
async def get_chat(
    chat_id: UUID,
    current_user: PublicUser = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
) -> ApiResponse:
    chat = await service.get_chat_details(chat_id, requester_id=current_user.id)
    return ApiResponse(data=chat, message="Chat fetched successfully")


@router.patch("/group/{chat_id}/rename")
async def rename_group_chat(
    chat_id: UUID,
    request: RenameGroupChatRequest,
    current_user: PublicUser = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
) -> ApiResponse:
    chat = await service.rename_group_chat(chat_id, current_user.id, request.name)
    return ApiResponse(data=chat, message="Group chat name updated successfully")


@router.post("/group/{chat_id}/participants/{participant_id}")
async def add_participant(
    chat_id: UUID,
    participant_id: UUID,
    current_user: PublicUser = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
) -> ApiResponse:
    """Add a member to a group chat (admin only)."""
    chat = await service.add_participant(chat_id, current_user.id, participant_id)
    return ApiResponse(data=chat, message="Participant added successfully")


@router.delete("/group/{chat_id}/participants/{participant_id}")
async def remove_participant(
    chat_id: UUID,
    participant_id: UUID,
    current_user: PublicUser = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
) -> ApiResponse:
    """Remove a member from a group chat (admin only)."""
    chat = await service.remove_participant(chat_id, current_user.id, participant_id)
    await _evict_from_room(chat_id, participant_id)
    return ApiResponse(data=chat, message="Participant removed successfully")


@router.post("/group/{chat_id}/leave")
async def leave_group_chat(
    chat_id: UUID,
    current_user: PublicUser = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
) -> ApiResponse:
    """Leave a group chat. ``data`` is null when the chat was deleted as a result."""
    chat = await service.leave_group(chat_id, current_user.id)
    if chat is None:
        _close_room(chat_id)
    else:
        await _evict_from_room(chat_id, current_user.id)
    return ApiResponse(data=chat, message="Left group successfully")


@router.delete("/{chat_id}")
async def delete_chat(
    chat_id: UUID,
    current_user: PublicUser = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
) -> ApiResponse:
    await service.delete_chat(chat_id, current_user.id)
    _close_room(chat_id)
    return ApiResponse(message="Chat deleted successfully")


@router.get("/{chat_id}/messages")
async def list_messages(
    chat_id: UUID,
    limit: int = Query(default=50, ge=1, le=100),
    before: Optional[datetime] = Query(default=None),
    current_user: PublicUser = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
) -> ApiResponse:
    """List messages of a chat, newest first.

    Pass the ``created_at`` of the oldest message seen as ``before`` to page back.
    """
    messages = await service.get_chat_messages(
        chat_id, current_user.id, limit=limit, before=before
    )
    return ApiResponse(data=messages, message="Messages fetched successfully")


@router.post("/{chat_id}/messages", status_code=status.HTTP_201_CREATED)
async def send_message(
    chat_id: UUID,
    request: SendMessageRequest,
    current_user: PublicUser = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
) -> ApiResponse:
    """Persist a message and push it to sockets joined to the chat."""
    message = await service.send_message(
        chat_id,
        current_user.id,
        content=request.content,
        attachments=request.attachments,
    )

    delivered = await get_room_hub().broadcast(str(chat_id), MESSAGE_RECEIVED, message)
    logger.debug(
        "message_broadcast",
        chat_id=str(chat_id),
        message_id=str(message.id),
        delivered=delivered,
    )
    return ApiResponse(data=message, message="Message sent successfully")


@router.delete("/messages/{message_id}")
async def delete_message(
    message_id: UUID,
    current_user: PublicUser = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
) -> ApiResponse:
    """Delete one of your own messages."""
    message = await service.delete_message(message_id, current_user.id)
    return ApiResponse(data=message, message="Message deleted successfully")
