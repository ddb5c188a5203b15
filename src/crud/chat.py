"""CRUD operations for chat conversations and messages."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import ConversationNotFoundError
from models.chat_conversations import ChatConversation
from models.chat_messages import ChatMessage
from services.automation.store import ConversationRecord, MessageRole, StoredMessage


def _as_uuid(value: str | UUID) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError as exc:
        raise ConversationNotFoundError(f"invalid conversation id {value!r}") from exc


def _aware(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; they were written as UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def to_stored_message(message: ChatMessage) -> StoredMessage:
    return StoredMessage(
        id=str(message.id),
        conversation_id=str(message.conversation_id),
        role=message.role,  # type: ignore[arg-type]
        content=message.content,
        payload=message.payload,
        created_at=_aware(message.created_at) or datetime.now(UTC),
    )


async def create_conversation(
    db: AsyncSession,
    *,
    conversation_id: UUID | None = None,
    title: str | None = None,
) -> ChatConversation:
    """Create a conversation, optionally with a client-chosen id."""
    conversation = ChatConversation(id=conversation_id or uuid.uuid4(), title=title)
    db.add(conversation)
    await db.commit()
    await db.refresh(conversation)
    return conversation


async def get_conversation(
    db: AsyncSession, conversation_id: str | UUID
) -> ChatConversation | None:
    result = await db.execute(
        select(ChatConversation).where(
            ChatConversation.id == _as_uuid(conversation_id)
        )
    )
    return result.scalar_one_or_none()


async def get_or_create_conversation(
    db: AsyncSession,
    *,
    conversation_id: UUID,
    title: str | None = None,
) -> ChatConversation:
    conversation = await get_conversation(db, conversation_id)
    if conversation is not None:
        return conversation
    return await create_conversation(db, conversation_id=conversation_id, title=title)


async def list_messages(
    db: AsyncSession,
    conversation_id: str | UUID,
    *,
    limit: int = 100,
) -> list[ChatMessage]:
    """Durable messages of a conversation, oldest first."""
    result = await db.execute(
        select(ChatMessage)
        .where(ChatMessage.conversation_id == _as_uuid(conversation_id))
        .order_by(ChatMessage.created_at.asc())
        .limit(limit)
    )
    return list(result.scalars().all())


class SqlAlchemyMessageStore:
    """:class:`~services.automation.store.MessageStore` backed by an AsyncSession."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def insert_message(
        self,
        conversation_id: str,
        role: MessageRole,
        content: str,
        payload: dict[str, Any] | None,
    ) -> StoredMessage:
        message = ChatMessage(
            conversation_id=_as_uuid(conversation_id),
            role=role,
            content=content,
            payload=payload,
        )
        self.db.add(message)
        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        await self.db.refresh(message)
        return to_stored_message(message)

    async def update_conversation(
        self,
        conversation_id: str,
        *,
        title: str | None = None,
        updated_at: datetime | None = None,
    ) -> None:
        conversation = await get_conversation(self.db, conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)
        if title is not None:
            conversation.title = title
        if updated_at is not None:
            conversation.updated_at = updated_at
        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

    async def get_conversation(self, conversation_id: str) -> ConversationRecord | None:
        conversation = await get_conversation(self.db, conversation_id)
        if conversation is None:
            return None
        return ConversationRecord(
            id=str(conversation.id),
            title=conversation.title,
            updated_at=_aware(conversation.updated_at),
        )
