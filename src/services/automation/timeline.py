"""In-memory visible message list per conversation.

The list mixes persisted messages with at most one provisional assistant
message per exchange. Swapping a provisional entry for its durable message
happens in one synchronous step, so readers never see both, or neither.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass

from services.automation.store import StoredMessage
from services.automation.temp_ids import is_provisional_id


@dataclass
class ProvisionalMessage:
    """Assistant reply still being streamed; never persisted."""

    id: str
    conversation_id: str
    content: str = ""
    role: str = "assistant"


TimelineEntry = StoredMessage | ProvisionalMessage


class ConversationTimeline:
    def __init__(self) -> None:
        self._entries: dict[str, list[TimelineEntry]] = defaultdict(list)

    def messages(self, conversation_id: str) -> list[TimelineEntry]:
        """Copy of the visible list, oldest first."""
        return list(self._entries.get(conversation_id, ()))

    def append(self, message: TimelineEntry) -> None:
        self._entries[message.conversation_id].append(message)

    def update_provisional(self, message: ProvisionalMessage, content: str) -> None:
        message.content = content

    def replace(self, provisional: ProvisionalMessage, durable: StoredMessage) -> None:
        """Swap ``provisional`` for ``durable`` in place."""
        entries = self._entries[provisional.conversation_id]
        for index, entry in enumerate(entries):
            if entry is provisional:
                entries[index] = durable
                return
        entries.append(durable)

    def discard(self, provisional: ProvisionalMessage) -> None:
        entries = self._entries.get(provisional.conversation_id)
        if entries is None:
            return
        self._entries[provisional.conversation_id] = [
            entry for entry in entries if entry is not provisional
        ]

    def provisional(self, conversation_id: str) -> list[ProvisionalMessage]:
        return [
            entry
            for entry in self._entries.get(conversation_id, ())
            if isinstance(entry, ProvisionalMessage) and is_provisional_id(entry.id)
        ]

    def forget(self, conversation_id: str) -> None:
        self._entries.pop(conversation_id, None)
