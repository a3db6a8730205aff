"""Chat lifecycle, membership rules, and message creation."""

from datetime import datetime
from typing import Optional
from uuid import UUID

import structlog

from chat_backend.errors import (
    ForbiddenError,
    InsufficientMembersError,
    NotAGroupChatError,
    NotFoundError,
    SelfChatError,
    ValidationError,
)
from chat_backend.models.chat import MIN_GROUP_NAME_LENGTH, Attachment, Chat, Message
from chat_backend.services.chat_repository import ChatRepository
from chat_backend.services.user_service import UserService

logger = structlog.get_logger(__name__)

MIN_GROUP_MEMBERS = 3
MAX_MESSAGE_PAGE = 100


class ChatService:
    """Enforces chat invariants and admin-only mutation of group chats.

    Group admin is the only participant who may add, remove, or rename.
    The admin itself cannot be removed by another call; when the admin
    leaves, the first remaining participant takes over.
    """

    def __init__(
        self,
        repository: Optional[ChatRepository] = None,
        user_service: Optional[UserService] = None,
    ):
        self.repository = repository or ChatRepository()
        self.users = user_service or UserService()

    async def _require_chat(self, chat_id: UUID) -> Chat:
        chat = await self.repository.get_chat(chat_id)
        if chat is None:
            raise NotFoundError("Chat does not exist")
        return chat

    async def _require_group_admin(self, chat_id: UUID, requester_id: UUID, action: str) -> Chat:
        chat = await self._require_chat(chat_id)
        if not chat.is_group_chat:
            raise NotAGroupChatError()
        if chat.admin_id != requester_id:
            logger.warning(
                "chat_admin_required",
                chat_id=str(chat_id),
                requester_id=str(requester_id),
                action=action,
            )
            raise ForbiddenError(f"Only admin can {action}")
        return chat

    async def _require_users_exist(self, user_ids: list[UUID]) -> None:
        existing = await self.users.get_existing_ids(user_ids)
        missing = [str(u) for u in user_ids if u not in existing]
        if missing:
            raise NotFoundError("User not found", errors=[{"user_ids": missing}])

    async def create_or_get_one_on_one_chat(self, user_id: UUID, receiver_id: UUID) -> Chat:
        """Return the pair's one-on-one chat, creating it on first request.

        Raises:
            SelfChatError: If both ids are the same
            NotFoundError: If the receiver does not exist
        """
        if user_id == receiver_id:
            raise SelfChatError()

        existing = await self.repository.find_one_on_one_chat(user_id, receiver_id)
        if existing is not None:
            return existing

        await self._require_users_exist([receiver_id])
        return await self.repository.create_one_on_one_chat(user_id, receiver_id)

    async def create_group_chat(
        self, name: str, creator_id: UUID, participant_ids: list[UUID]
    ) -> Chat:
        """Create a group chat administered by its creator.

        Raises:
            InsufficientMembersError: Fewer than 3 distinct members including the creator
            ValidationError: Name too short
        """
        name = (name or "").strip()
        if len(name) < MIN_GROUP_NAME_LENGTH:
            raise ValidationError(
                f"Group name must be at least {MIN_GROUP_NAME_LENGTH} characters"
            )

        # dict.fromkeys dedupes while keeping the creator first
        members = list(dict.fromkeys([creator_id, *participant_ids]))
        if len(members) < MIN_GROUP_MEMBERS:
            raise InsufficientMembersError()

        await self._require_users_exist(members[1:])
        return await self.repository.create_group_chat(name, members, creator_id)

    async def get_user_chats(self, user_id: UUID) -> list[Chat]:
        return await self.repository.list_user_chats(user_id)

    async def get_chat_details(
        self, chat_id: UUID, requester_id: Optional[UUID] = None
    ) -> Chat:
        """Fetch a chat; when ``requester_id`` is given it must be a participant.

        Raises:
            NotFoundError: Chat missing
            ForbiddenError: Requester is not a participant
        """
        chat = await self._require_chat(chat_id)
        if requester_id is not None and not chat.has_participant(requester_id):
            raise ForbiddenError("You are not a participant of this chat")
        return chat

    async def add_participant(
        self, chat_id: UUID, requester_id: UUID, participant_id: UUID
    ) -> Chat:
        """Admin-only, idempotent member add."""
        chat = await self._require_group_admin(chat_id, requester_id, "add participants")
        if chat.has_participant(participant_id):
            return chat

        await self._require_users_exist([participant_id])
        updated = await self.repository.add_participant(chat_id, participant_id)
        if updated is None:
            raise NotFoundError("Chat does not exist")

        logger.info(
            "participant_added",
            chat_id=str(chat_id),
            participant_id=str(participant_id),
        )
        return updated

    async def remove_participant(
        self, chat_id: UUID, requester_id: UUID, participant_id: UUID
    ) -> Chat:
        """Admin-only, idempotent member removal. The admin cannot remove itself here."""
        chat = await self._require_group_admin(chat_id, requester_id, "remove participants")
        if participant_id == chat.admin_id:
            raise ForbiddenError("Admin cannot be removed from the group; leave instead")
        if not chat.has_participant(participant_id):
            return chat

        updated = await self.repository.remove_participant(chat_id, participant_id)
        if updated is None:
            raise NotFoundError("Chat does not exist")

        logger.info(
            "participant_removed",
            chat_id=str(chat_id),
            participant_id=str(participant_id),
        )
        return updated

    async def leave_group(self, chat_id: UUID, user_id: UUID) -> Optional[Chat]:
        """Leave a group chat.

        Returns:
            The updated chat, or None if the last member left and the chat was deleted

        Raises:
            NotFoundError: Chat missing
            NotAGroupChatError: One-on-one chats cannot be left
        """
        chat = await self._require_chat(chat_id)
        if not chat.is_group_chat:
            raise NotAGroupChatError("Cannot leave a private chat")
        if not chat.has_participant(user_id):
            return chat

        updated = await self.repository.remove_participant(chat_id, user_id)
        logger.info("participant_left", chat_id=str(chat_id), user_id=str(user_id))

        if updated is not None and not updated.participants:
            await self.repository.delete_chat(chat_id)
            logger.info("empty_group_chat_deleted", chat_id=str(chat_id))
            return None
        if updated is not None and chat.admin_id == user_id:
            logger.info(
                "group_admin_transferred",
                chat_id=str(chat_id),
                admin_id=str(updated.admin_id),
            )
        return updated

    async def rename_group_chat(
        self, chat_id: UUID, requester_id: UUID, new_name: str
    ) -> Chat:
        """Admin-only rename.

        Raises:
            ValidationError: Name shorter than the minimum
        """
        await self._require_group_admin(chat_id, requester_id, "rename group")

        new_name = (new_name or "").strip()
        if len(new_name) < MIN_GROUP_NAME_LENGTH:
            raise ValidationError(
                f"Group name must be at least {MIN_GROUP_NAME_LENGTH} characters"
            )

        updated = await self.repository.rename_chat(chat_id, new_name)
        if updated is None:
            raise NotFoundError("Chat does not exist")

        logger.info("group_chat_renamed", chat_id=str(chat_id))
        return updated

    async def delete_chat(self, chat_id: UUID, requester_id: UUID) -> None:
        """Delete a group chat; admin only."""
        await self._require_group_admin(chat_id, requester_id, "delete group")
        await self.repository.delete_chat(chat_id)

    async def send_message(
        self,
        chat_id: UUID,
        sender_id: UUID,
        content: str = "",
        attachments: Optional[list[Attachment]] = None,
    ) -> Message:
        """Persist a message from a participant.

        Raises:
            NotFoundError: Chat missing
            ForbiddenError: Sender is not a participant
            ValidationError: Neither content nor attachments
        """
        attachments = attachments or []
        content = content or ""
        if not content.strip() and not attachments:
            raise ValidationError("Message must have content or attachments")

        await self.get_chat_details(chat_id, requester_id=sender_id)
        return await self.repository.create_message(chat_id, sender_id, content, attachments)

    async def get_chat_messages(
        self,
        chat_id: UUID,
        requester_id: UUID,
        limit: int = 50,
        before: Optional[datetime] = None,
    ) -> list[Message]:
        """Messages visible to a participant, newest first."""
        await self.get_chat_details(chat_id, requester_id=requester_id)
        limit = max(1, min(limit, MAX_MESSAGE_PAGE))
        return await self.repository.list_messages(chat_id, limit=limit, before=before)

    async def delete_message(self, message_id: UUID, requester_id: UUID) -> Message:
        """Delete a message; only its sender may.

        Returns:
            The deleted message
        """
        message = await self.repository.get_message(message_id)
        if message is None:
            raise NotFoundError("Message not found")
        if message.sender_id != requester_id:
            raise ForbiddenError("Only the sender can delete this message")

        await self.repository.delete_message(message_id)
        logger.info("message_deleted", message_id=str(message_id), chat_id=str(message.chat_id))
        return message
