"""Chat, message, and chat request models."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

ONE_ON_ONE_CHAT_NAME = "Private Chat"
MIN_GROUP_NAME_LENGTH = 2


class Attachment(BaseModel):
    """A stored file reference on a message."""

    url: str
    local_path: str = ""


class Chat(BaseModel):
    """A one-on-one or group chat.

    Attributes:
        participants: Member user ids (set semantics, order irrelevant)
        admin_id: Participant authorized to mutate a group chat
        last_message_id: Most recent message, for display only
    """

    id: UUID
    name: str
    is_group_chat: bool = False
    participants: list[UUID]
    admin_id: Optional[UUID] = None
    last_message_id: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime

    def has_participant(self, user_id: UUID) -> bool:
        return user_id in self.participants


class Message(BaseModel):
    """An immutable chat message."""

    id: UUID
    chat_id: UUID
    sender_id: UUID
    content: str = ""
    attachments: list[Attachment] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class CreateGroupChatRequest(BaseModel):
    """Group creation; the creator is added automatically and becomes admin."""

    name: str = Field(..., min_length=MIN_GROUP_NAME_LENGTH, max_length=100)
    participants: list[UUID] = Field(
        ..., min_length=2, description="Other members, excluding the creator"
    )

    @field_validator("name")
    @classmethod
    def name_stripped(cls, v: str) -> str:
        return v.strip()


class RenameGroupChatRequest(BaseModel):
    """New group name; length is enforced by the chat service."""

    name: str


class SendMessageRequest(BaseModel):
    content: str = Field(default="", max_length=5000)
    attachments: list[Attachment] = Field(default_factory=list)
