"""Chat and message persistence.

Participant mutations are single atomic UPDATE statements so concurrent
requests on the same chat cannot lose each other's changes.
"""

import json
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

import structlog

from chat_backend.database import get_pool
from chat_backend.models.chat import ONE_ON_ONE_CHAT_NAME, Attachment, Chat, Message

logger = structlog.get_logger(__name__)

CHAT_COLUMNS = """
    id, name, is_group_chat, participants, admin_id, last_message_id, created_at, updated_at
"""

MESSAGE_COLUMNS = "id, chat_id, sender_id, content, attachments, created_at, updated_at"


def direct_chat_key(user_a: UUID, user_b: UUID) -> str:
    """Order-independent key identifying the one-on-one chat of a pair."""
    first, second = sorted((str(user_a), str(user_b)))
    return f"{first}:{second}"


def _to_chat(row) -> Optional[Chat]:
    if row is None:
        return None
    data = dict(row)
    data["participants"] = list(data["participants"] or [])
    return Chat(**data)


def _to_message(row) -> Optional[Message]:
    if row is None:
        return None
    data = dict(row)
    attachments = data["attachments"]
    if isinstance(attachments, str):
        attachments = json.loads(attachments)
    data["attachments"] = [Attachment(**a) for a in attachments or []]
    return Message(**data)


class ChatRepository:
    """asyncpg-backed storage for chats and messages."""

    async def _fetch_chat(self, query: str, *args) -> Optional[Chat]:
        pool = await get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(query, *args)
        return _to_chat(row)

    async def find_one_on_one_chat(self, user_a: UUID, user_b: UUID) -> Optional[Chat]:
        return await self._fetch_chat(
            f"SELECT {CHAT_COLUMNS} FROM chats WHERE direct_key = $1",
            direct_chat_key(user_a, user_b),
        )

    async def create_one_on_one_chat(self, user_id: UUID, receiver_id: UUID) -> Chat:
        """Insert the pair's chat, or return the one a concurrent request created.

        The unique ``direct_key`` makes the insert idempotent per unordered pair.
        """
        key = direct_chat_key(user_id, receiver_id)
        now = datetime.now(timezone.utc)
        pool = await get_pool()

        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO chats (id, name, is_group_chat, participants, admin_id, direct_key, created_at, updated_at)
                VALUES ($1, $2, FALSE, $3, $4, $5, $6, $6)
                ON CONFLICT (direct_key) DO NOTHING
                RETURNING {CHAT_COLUMNS}
                """,
                uuid4(),
                ONE_ON_ONE_CHAT_NAME,
                [user_id, receiver_id],
                user_id,
                key,
                now,
            )
            if row is None:
                row = await conn.fetchrow(
                    f"SELECT {CHAT_COLUMNS} FROM chats WHERE direct_key = $1",
                    key,
                )
                logger.info("one_on_one_chat_create_conflict", direct_key=key)
            else:
                logger.info("one_on_one_chat_created", chat_id=str(row["id"]))

        return _to_chat(row)

    async def create_group_chat(
        self, name: str, participants: list[UUID], admin_id: UUID
    ) -> Chat:
        now = datetime.now(timezone.utc)
        chat = await self._fetch_chat(
            f"""
            INSERT INTO chats (id, name, is_group_chat, participants, admin_id, created_at, updated_at)
            VALUES ($1, $2, TRUE, $3, $4, $5, $5)
            RETURNING {CHAT_COLUMNS}
            """,
            uuid4(),
            name,
            participants,
            admin_id,
            now,
        )
        logger.info(
            "group_chat_created",
            chat_id=str(chat.id),
            admin_id=str(admin_id),
            participant_count=len(participants),
        )
        return chat

    async def get_chat(self, chat_id: UUID) -> Optional[Chat]:
        return await self._fetch_chat(
            f"SELECT {CHAT_COLUMNS} FROM chats WHERE id = $1",
            chat_id,
        )

    async def list_user_chats(self, user_id: UUID) -> list[Chat]:
        """All chats the user participates in, most recently active first."""
        pool = await get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {CHAT_COLUMNS}
                FROM chats
                WHERE $1 = ANY(participants)
                ORDER BY updated_at DESC
                """,
                user_id,
            )
        return [_to_chat(row) for row in rows]

    async def add_participant(self, chat_id: UUID, user_id: UUID) -> Optional[Chat]:
        """Add a member; a no-op when already present."""
        return await self._fetch_chat(
            f"""
            UPDATE chats
            SET participants = CASE
                    WHEN $2 = ANY(participants) THEN participants
                    ELSE array_append(participants, $2)
                END,
                updated_at = $3
            WHERE id = $1
            RETURNING {CHAT_COLUMNS}
            """,
            chat_id,
            user_id,
            datetime.now(timezone.utc),
        )

    async def remove_participant(self, chat_id: UUID, user_id: UUID) -> Optional[Chat]:
        """Remove a member; a no-op when absent.

        If the removed member was the admin, the first remaining participant
        becomes admin.
        """
        return await self._fetch_chat(
            f"""
            UPDATE chats
            SET participants = array_remove(participants, $2),
                admin_id = CASE
                    WHEN admin_id = $2 THEN (array_remove(participants, $2))[1]
                    ELSE admin_id
                END,
                updated_at = $3
            WHERE id = $1
            RETURNING {CHAT_COLUMNS}
            """,
            chat_id,
            user_id,
            datetime.now(timezone.utc),
        )

    async def rename_chat(self, chat_id: UUID, name: str) -> Optional[Chat]:
        return await self._fetch_chat(
            f"""
            UPDATE chats SET name = $2, updated_at = $3
            WHERE id = $1
            RETURNING {CHAT_COLUMNS}
            """,
            chat_id,
            name,
            datetime.now(timezone.utc),
        )

    async def delete_chat(self, chat_id: UUID) -> bool:
        """Delete a chat and, by cascade, its messages."""
        pool = await get_pool()
        async with pool.acquire() as conn:
            result = await conn.execute("DELETE FROM chats WHERE id = $1", chat_id)

        deleted = result == "DELETE 1"
        if deleted:
            logger.info("chat_deleted", chat_id=str(chat_id))
        return deleted

    async def create_message(
        self,
        chat_id: UUID,
        sender_id: UUID,
        content: str,
        attachments: list[Attachment],
    ) -> Message:
        """Store a message and make it the chat's last message."""
        message_id = uuid4()
        now = datetime.now(timezone.utc)
        payload = json.dumps([a.model_dump() for a in attachments])
        pool = await get_pool()

        async with pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    f"""
                    INSERT INTO messages (id, chat_id, sender_id, content, attachments, created_at, updated_at)
                    VALUES ($1, $2, $3, $4, $5::jsonb, $6, $6)
                    RETURNING {MESSAGE_COLUMNS}
                    """,
                    message_id,
                    chat_id,
                    sender_id,
                    content,
                    payload,
                    now,
                )
                await conn.execute(
                    """
                    UPDATE chats SET last_message_id = $1, updated_at = $2 WHERE id = $3
                    """,
                    message_id,
                    now,
                    chat_id,
                )

        logger.debug(
            "message_created",
            message_id=str(message_id),
            chat_id=str(chat_id),
            content_length=len(content),
            attachment_count=len(attachments),
        )
        return _to_message(row)

    async def list_messages(
        self,
        chat_id: UUID,
        limit: int = 50,
        before: Optional[datetime] = None,
    ) -> list[Message]:
        """Messages of a chat, newest first, optionally older than ``before``."""
        pool = await get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {MESSAGE_COLUMNS}
                FROM messages
                WHERE chat_id = $1 AND ($2::timestamptz IS NULL OR created_at < $2)
                ORDER BY created_at DESC
                LIMIT $3
                """,
                chat_id,
                before,
                limit,
            )
        return [_to_message(row) for row in rows]

    async def get_message(self, message_id: UUID) -> Optional[Message]:
        pool = await get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {MESSAGE_COLUMNS} FROM messages WHERE id = $1",
                message_id,
            )
        return _to_message(row)

    async def delete_message(self, message_id: UUID) -> bool:
        pool = await get_pool()
        async with pool.acquire() as conn:
            result = await conn.execute("DELETE FROM messages WHERE id = $1", message_id)
        return result == "DELETE 1"
