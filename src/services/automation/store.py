"""Message-store contract the reconciliation controller writes through."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal, Protocol


MessageRole = Literal["user", "assistant"]


@dataclass(frozen=True)
class StoredMessage:
    """A persisted chat message; the assistant one is the exchange outcome."""

    id: str
    conversation_id: str
    role: MessageRole
    content: str
    payload: dict[str, Any] | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def failed(self) -> bool:
        return self.role == "assistant" and self.payload is None


# The single assistant message recorded for one prompt.
DurableOutcomeMessage = StoredMessage


@dataclass(frozen=True)
class ConversationRecord:
    id: str
    title: str | None
    updated_at: datetime | None = None


class MessageStore(Protocol):
    async def insert_message(
        self,
        conversation_id: str,
        role: MessageRole,
        content: str,
        payload: dict[str, Any] | None,
    ) -> StoredMessage: ...

    async def update_conversation(
        self,
        conversation_id: str,
        *,
        title: str | None = None,
        updated_at: datetime | None = None,
    ) -> None: ...

    async def get_conversation(self, conversation_id: str) -> ConversationRecord | None: ...
