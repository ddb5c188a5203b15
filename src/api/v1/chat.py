"""Chat endpoints relaying prompts to the automation webhook."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Query, status
from fastapi.responses import StreamingResponse

from core.config import get_settings
from core.exceptions import (
    ConversationNotFoundError,
    ExchangeCancelledError,
    MessagePersistenceError,
    OutcomePersistenceError,
)
from crud import chat as chat_crud
from dependencies.automation import Controller
from dependencies.db import DbSession
from models.chat_conversations import ChatConversation
from schemas.chat_streaming import (
    MAX_SSE_DELTA_CHARS,
    ChatSseEvent,
    ChatStreamRequest,
    ConversationCreateRequest,
    ConversationSummary,
    MessageHistoryResponse,
    MessageSummary,
    SseEventTooLargeError,
)
from services.automation.store import StoredMessage


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])

# Queue item signalling the exchange task has finished.
_DONE = object()


def _conversation_summary(conversation: ChatConversation) -> ConversationSummary:
    return ConversationSummary(
        id=conversation.id,
        title=conversation.title,
        created_at=conversation.created_at.isoformat(),
        updated_at=conversation.updated_at.isoformat(),
    )


def _message_summary(message: StoredMessage) -> MessageSummary:
    return MessageSummary(
        id=message.id,
        role=message.role,
        content=message.content,
        payload=message.payload,
        created_at=message.created_at.isoformat(),
    )


@router.post(
    "/conversations",
    response_model=ConversationSummary,
    status_code=status.HTTP_201_CREATED,
)
async def create_conversation(
    db: DbSession,
    payload: ConversationCreateRequest | None = None,
) -> ConversationSummary:
    """Start a conversation; it is titled after its first prompt if untitled."""
    title = payload.title if payload and payload.title else None
    conversation = await chat_crud.create_conversation(
        db, title=title or get_settings().UNTITLED_CONVERSATION_TITLE
    )
    return _conversation_summary(conversation)


@router.get(
    "/conversations/{conversation_id}/messages",
    response_model=MessageHistoryResponse,
)
async def get_message_history(
    conversation_id: UUID,
    db: DbSession,
    limit: Annotated[int, Query(ge=1, le=200)] = 100,
) -> MessageHistoryResponse:
    """Durable messages of a conversation, oldest first."""
    conversation = await chat_crud.get_conversation(db, conversation_id)
    if conversation is None:
        raise ConversationNotFoundError(str(conversation_id))
    messages = await chat_crud.list_messages(db, conversation_id, limit=limit)
    return MessageHistoryResponse(
        messages=[
            _message_summary(chat_crud.to_stored_message(message))
            for message in messages
        ]
    )


@router.post(
    "/conversations/{conversation_id}/messages/stream",
    response_class=StreamingResponse,
)
async def stream_chat_message(
    conversation_id: UUID,
    payload: ChatStreamRequest,
    db: DbSession,
    controller: Controller,
) -> StreamingResponse:
    """Relay a prompt and stream the provisional reply as server-sent events."""
    # If the conversation doesn't exist yet, create it so the client can
    # choose the UUID and begin streaming immediately.
    await chat_crud.get_or_create_conversation(
        db,
        conversation_id=conversation_id,
        title=get_settings().UNTITLED_CONVERSATION_TITLE,
    )

    async def event_stream() -> AsyncGenerator[str, None]:
        queue: asyncio.Queue[object] = asyncio.Queue()
        cancel_event = asyncio.Event()
        provisional_id: list[str | None] = [None]

        async def on_content_update(content: str) -> None:
            if provisional_id[0] is None:
                pending = controller.timeline.provisional(str(conversation_id))
                provisional_id[0] = pending[-1].id if pending else None
            await queue.put(("delta", content))

        async def run_exchange() -> None:
            try:
                outcome = await controller.send(
                    payload.content,
                    str(conversation_id),
                    on_content_update=on_content_update,
                    cancel_event=cancel_event,
                )
                await queue.put(("complete", outcome))
            except Exception as exc:
                await queue.put(("error", exc))
            finally:
                await queue.put(_DONE)

        yield ChatSseEvent(
            event="status",
            conversation_id=conversation_id,
            data={"status": "thinking"},
        ).to_sse()

        task = asyncio.create_task(run_exchange())
        shown = ""
        try:
            while True:
                item = await queue.get()
                if item is _DONE:
                    break
                kind, value = item  # type: ignore[misc]
                if kind == "delta":
                    for event in _delta_events(
                        conversation_id, provisional_id[0], shown, value
                    ):
                        yield event.to_sse()
                    shown = value
                elif kind == "complete":
                    yield _complete_event(conversation_id, value, provisional_id[0])
                else:
                    yield ChatSseEvent(
                        event="error",
                        conversation_id=conversation_id,
                        message_id=provisional_id[0],
                        data={"message": _error_message(value)},
                    ).to_sse()
        finally:
            if not task.done():
                # Client went away mid-stream: stop reads and writes.
                cancel_event.set()
                task.cancel()
                try:
                    await task
                except (asyncio.CancelledError, ExchangeCancelledError):
                    logger.info("Exchange cancelled by client disconnect")

        yield ChatSseEvent(
            event="done",
            conversation_id=conversation_id,
            data={"state": str(controller.state)},
        ).to_sse()

    return StreamingResponse(event_stream(), media_type="text/event-stream")


def _delta_events(
    conversation_id: UUID, message_id: str | None, shown: str, content: str
) -> list[ChatSseEvent]:
    """Deltas turning the client's ``shown`` text into ``content``."""
    replace = not content.startswith(shown)
    text = content if replace else content[len(shown) :]
    if not text and not replace:
        return []
    pieces = [
        text[start : start + MAX_SSE_DELTA_CHARS]
        for start in range(0, max(len(text), 1), MAX_SSE_DELTA_CHARS)
    ]
    return [
        ChatSseEvent(
            event="message.delta",
            conversation_id=conversation_id,
            message_id=message_id,
            data={"content": piece, "replace": replace and index == 0},
        )
        for index, piece in enumerate(pieces)
    ]


def _complete_event(
    conversation_id: UUID, outcome: StoredMessage, replaces: str | None
) -> str:
    data = {
        "message": _message_summary(outcome).model_dump(),
        "failed": outcome.failed,
        "replaces": replaces,
    }
    event = ChatSseEvent(
        event="message.complete",
        conversation_id=conversation_id,
        message_id=outcome.id,
        data=data,
    )
    try:
        return event.to_sse()
    except SseEventTooLargeError:
        # The streamed deltas already carried the text; clients reload history.
        logger.info("Completed message too large for one event; omitting its content")
        data["message"] = _message_summary(outcome).model_dump(
            exclude={"content", "payload"}
        )
        data["content_omitted"] = True
        return event.model_copy(update={"data": data}).to_sse()


def _error_message(exc: object) -> str:
    if isinstance(exc, MessagePersistenceError | OutcomePersistenceError):
        return exc.user_message
    if isinstance(exc, ExchangeCancelledError):
        return exc.user_message
    logger.error("Unhandled chat exchange error: %s", type(exc).__name__)
    return "Something went wrong. Please try again."
