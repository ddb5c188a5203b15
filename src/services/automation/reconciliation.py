"""Drive one prompt through the automation webhook to a durable reply.

Per exchange::

    Idle -> UserMessageRecorded -> (Streaming -> Draining -> Finalizing
         | OneShotParsing) -> OutcomeRecorded -> MetadataUpdated -> Idle

Exactly one assistant message is persisted per prompt, on success and on
failure. A streamed reply is shown through a provisional ``temp-`` message
that is swapped for the durable one as soon as it is written.
"""

from __future__ import annotations

import asyncio
import enum
import inspect
import json
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

import httpx

from core.config import Settings, get_settings
from core.exceptions import (
    AutomationError,
    AutomationTransportError,
    ExchangeCancelledError,
    MessagePersistenceError,
    OutcomePersistenceError,
    PayloadNormalizationError,
)
from schemas.automation import NormalizedResponsePayload
from services.automation.client import AutomationClient, is_event_stream
from services.automation.normalizer import normalize_payload
from services.automation.store import DurableOutcomeMessage, MessageStore
from services.automation.stream_interpreter import (
    DEFAULT_RESPONDER_MARKER,
    StreamDecoder,
)
from services.automation.temp_ids import TempIdAllocator
from services.automation.timeline import ConversationTimeline, ProvisionalMessage
from services.automation.titles import (
    DEFAULT_TITLE_MAX_LENGTH,
    UNTITLED_CONVERSATION_TITLE,
    maybe_retitle,
)


logger = logging.getLogger(__name__)

ContentCallback = Callable[[str], Awaitable[None] | None]

OUTCOME_PERSISTENCE_FAILURE_TEMPLATE = (
    "Sorry, I got a reply but couldn't save it: {detail}"
)


class ExchangeState(enum.StrEnum):
    IDLE = "idle"
    USER_MESSAGE_RECORDED = "user_message_recorded"
    STREAMING = "streaming"
    DRAINING = "draining"
    FINALIZING = "finalizing"
    ONE_SHOT_PARSING = "one_shot_parsing"
    OUTCOME_RECORDED = "outcome_recorded"
    METADATA_UPDATED = "metadata_updated"


class ReconciliationController:
    """Owns the provisional message and is the only writer of the outcome."""

    def __init__(
        self,
        *,
        store: MessageStore,
        client: AutomationClient,
        timeline: ConversationTimeline | None = None,
        id_allocator: TempIdAllocator | None = None,
        responder_marker: str = DEFAULT_RESPONDER_MARKER,
        title_max_length: int = DEFAULT_TITLE_MAX_LENGTH,
        untitled_title: str = UNTITLED_CONVERSATION_TITLE,
    ) -> None:
        self.store = store
        self.client = client
        self.timeline = timeline or ConversationTimeline()
        self.id_allocator = id_allocator or TempIdAllocator.default()
        self.responder_marker = responder_marker
        self.title_max_length = title_max_length
        self.untitled_title = untitled_title
        self.state = ExchangeState.IDLE

    @classmethod
    def from_settings(
        cls,
        store: MessageStore,
        *,
        settings: Settings | None = None,
        client: AutomationClient | None = None,
        timeline: ConversationTimeline | None = None,
    ) -> ReconciliationController:
        settings = settings or get_settings()
        return cls(
            store=store,
            client=client or AutomationClient.from_settings(settings),
            timeline=timeline,
            responder_marker=settings.AUTOMATION_RESPONDER_MARKER,
            title_max_length=settings.CONVERSATION_TITLE_MAX_LENGTH,
            untitled_title=settings.UNTITLED_CONVERSATION_TITLE,
        )

    async def send(
        self,
        prompt: str,
        conversation_id: str,
        *,
        on_content_update: ContentCallback | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> DurableOutcomeMessage:
        """Record ``prompt``, fetch the reply and persist exactly one outcome.

        Raises:
            MessagePersistenceError: the prompt itself could not be stored
            OutcomePersistenceError: neither reply nor failure could be stored
            ExchangeCancelledError: ``cancel_event`` was set mid-exchange
        """
        self.state = ExchangeState.IDLE
        try:
            user_message = await self.store.insert_message(
                conversation_id, "user", prompt, None
            )
        except Exception as exc:
            logger.exception("Failed to record user message")
            raise MessagePersistenceError(str(exc) or type(exc).__name__) from exc
        self.timeline.append(user_message)
        self.state = ExchangeState.USER_MESSAGE_RECORDED

        provisional: ProvisionalMessage | None = None
        try:
            try:
                async with self.client.open(prompt, conversation_id) as response:
                    if is_event_stream(response):
                        provisional = ProvisionalMessage(
                            id=self.id_allocator.allocate(),
                            conversation_id=conversation_id,
                        )
                        self.timeline.append(provisional)
                        payload = await self._consume_stream(
                            response, provisional, on_content_update, cancel_event
                        )
                    else:
                        payload = await self._parse_one_shot(response)
            except ExchangeCancelledError:
                raise
            except (AutomationError, httpx.HTTPError) as exc:
                outcome = await self._record_failure(
                    conversation_id, exc, provisional, on_content_update
                )
            else:
                self.state = ExchangeState.FINALIZING
                outcome = await self._record_success(
                    conversation_id, payload, provisional, on_content_update
                )
        except BaseException:
            # Cancellation or an unexpected error: never leave a provisional entry.
            if provisional is not None:
                self.timeline.discard(provisional)
            self.state = ExchangeState.IDLE
            raise

        self.state = ExchangeState.OUTCOME_RECORDED
        await self._update_metadata(conversation_id, prompt)
        # Back to IDLE when the next send starts.
        self.state = ExchangeState.METADATA_UPDATED
        return outcome

    async def _consume_stream(
        self,
        response: httpx.Response,
        provisional: ProvisionalMessage,
        on_content_update: ContentCallback | None,
        cancel_event: asyncio.Event | None,
    ) -> NormalizedResponsePayload:
        self.state = ExchangeState.STREAMING
        decoder = StreamDecoder(marker=self.responder_marker)
        async for chunk in response.aiter_bytes():
            if cancel_event is not None and cancel_event.is_set():
                raise ExchangeCancelledError()
            for snapshot in decoder.feed(chunk):
                await self._show(provisional, snapshot.content, on_content_update)

        self.state = ExchangeState.DRAINING
        for snapshot in decoder.finish():
            await self._show(provisional, snapshot.content, on_content_update)

        state = decoder.state
        logger.info(
            "Automation stream drained: %d events, %d malformed lines",
            state.events_seen,
            state.malformed_lines,
        )
        payload = decoder.outcome()
        if payload.chat_response != state.content:
            # Unframed document, or tokens that trailed the final reply.
            await self._show(provisional, payload.chat_response, on_content_update)
        return payload

    async def _parse_one_shot(self, response: httpx.Response) -> NormalizedResponsePayload:
        self.state = ExchangeState.ONE_SHOT_PARSING
        body = await response.aread()
        try:
            document = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise PayloadNormalizationError("the response was not valid JSON") from exc
        payload = normalize_payload(document)
        if payload is None:
            raise PayloadNormalizationError("the response held no chat reply")
        return payload

    async def _show(
        self,
        provisional: ProvisionalMessage,
        content: str,
        on_content_update: ContentCallback | None,
    ) -> None:
        self.timeline.update_provisional(provisional, content)
        if on_content_update is None:
            return
        result = on_content_update(content)
        if inspect.isawaitable(result):
            await result

    async def _record_success(
        self,
        conversation_id: str,
        payload: NormalizedResponsePayload,
        provisional: ProvisionalMessage | None,
        on_content_update: ContentCallback | None = None,
    ) -> DurableOutcomeMessage:
        try:
            outcome = await self.store.insert_message(
                conversation_id,
                "assistant",
                payload.chat_response,
                payload.model_dump(mode="json"),
            )
        except Exception as exc:
            logger.exception("Failed to persist assistant reply")
            explanation = OUTCOME_PERSISTENCE_FAILURE_TEMPLATE.format(
                detail=str(exc) or type(exc).__name__
            )
            return await self._persist_failure(
                conversation_id, explanation, provisional, on_content_update
            )
        self._settle(provisional, outcome)
        return outcome

    async def _record_failure(
        self,
        conversation_id: str,
        exc: BaseException,
        provisional: ProvisionalMessage | None,
        on_content_update: ContentCallback | None = None,
    ) -> DurableOutcomeMessage:
        if isinstance(exc, AutomationError):
            explanation = exc.user_message
        else:
            explanation = AutomationTransportError(str(exc) or type(exc).__name__).user_message
        logger.warning("Automation exchange failed: %s", type(exc).__name__)
        return await self._persist_failure(
            conversation_id, explanation, provisional, on_content_update
        )

    async def _persist_failure(
        self,
        conversation_id: str,
        explanation: str,
        provisional: ProvisionalMessage | None,
        on_content_update: ContentCallback | None = None,
    ) -> DurableOutcomeMessage:
        if provisional is not None:
            await self._show(provisional, explanation, on_content_update)
        try:
            outcome = await self.store.insert_message(
                conversation_id, "assistant", explanation, None
            )
        except Exception as exc:
            logger.exception("Failed to persist failure message")
            if provisional is not None:
                self.timeline.discard(provisional)
            raise OutcomePersistenceError(str(exc) or type(exc).__name__) from exc
        self._settle(provisional, outcome)
        return outcome

    def _settle(
        self, provisional: ProvisionalMessage | None, outcome: DurableOutcomeMessage
    ) -> None:
        if provisional is None:
            self.timeline.append(outcome)
        else:
            self.timeline.replace(provisional, outcome)

    async def _update_metadata(self, conversation_id: str, prompt: str) -> None:
        try:
            conversation = await self.store.get_conversation(conversation_id)
            current_title = conversation.title if conversation else None
            new_title = maybe_retitle(
                current_title,
                prompt,
                max_length=self.title_max_length,
                placeholder=self.untitled_title,
            )
            await self.store.update_conversation(
                conversation_id,
                title=new_title if new_title != current_title else None,
                updated_at=datetime.now(UTC),
            )
        except Exception:
            logger.exception("Failed to update conversation metadata")
