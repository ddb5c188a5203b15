"""Schemas for chat SSE streaming and conversation history."""

from __future__ import annotations

from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


MAX_SSE_EVENT_BYTES: int = 65_536
# Worst case is 6 bytes per character (a \u-escaped control character).
MAX_SSE_DELTA_CHARS: int = 8_000


class SseEventTooLargeError(ValueError):
    """A serialized event would exceed MAX_SSE_EVENT_BYTES."""


class ChatSseEvent(BaseModel):
    """Canonical SSE envelope for relayed automation replies.

    ``message.delta`` carries only new text: ``{"content": ..., "replace":
    false}`` appends to the provisional message, ``"replace": true`` starts it
    over (a responder reply or a failure explanation). Long text is split over
    several deltas.
    """

    event: Literal[
        "status",
        "message.delta",
        "message.complete",
        "error",
        "done",
    ]
    conversation_id: UUID
    message_id: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid")

    def to_sse(self) -> str:
        """Serialize event to SSE format with size validation."""
        payload = self.model_dump_json()
        if len(payload.encode("utf-8")) > MAX_SSE_EVENT_BYTES:
            raise SseEventTooLargeError("SSE payload exceeded MAX_SSE_EVENT_BYTES")
        return f"data: {payload}\n\n"


class ChatStreamRequest(BaseModel):
    """Request payload for sending a prompt to the automation service."""

    content: str = Field(..., min_length=1, max_length=4000)

    model_config = ConfigDict(extra="forbid")


class ConversationCreateRequest(BaseModel):
    title: str | None = Field(default=None, max_length=200)

    model_config = ConfigDict(extra="forbid")


# -----------------------------------------------------------------------------
# Conversation History Response Schemas
# -----------------------------------------------------------------------------


class ConversationSummary(BaseModel):
    """Summary of a chat conversation."""

    id: UUID
    title: str | None = None
    created_at: str
    updated_at: str

    model_config = ConfigDict(from_attributes=True)


class MessageSummary(BaseModel):
    """A durable chat message as shown in history views."""

    id: str
    role: str
    content: str
    payload: dict[str, Any] | None = None
    created_at: str

    model_config = ConfigDict(from_attributes=True)


class MessageHistoryResponse(BaseModel):
    """Response for fetching message history."""

    messages: list[MessageSummary]

    model_config = ConfigDict(extra="forbid")
