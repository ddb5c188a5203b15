"""Interpret the automation webhook's newline-delimited JSON event stream.

Each line is one :class:`~schemas.automation.StreamEvent`. Plain ``item``
events are reply tokens and are concatenated in order. The ``item`` emitted by
the responder stage (its ``metadata.nodeName`` contains the responder marker)
carries the authoritative reply, which replaces whatever was accumulated. An
``error`` event fails the exchange once the stream has drained.

A webhook that answers with a single JSON document but no Content-Length
looks like a stream with no events at all; :class:`StreamDecoder` falls back
to normalizing that document as a one-shot reply.

State is an immutable :class:`StreamState`; :func:`apply_event` returns the
next state instead of mutating shared buffers.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterable, AsyncIterator
from dataclasses import dataclass, replace

from pydantic import ValidationError

from core.exceptions import EmptyStreamError, StreamReportedError
from schemas.automation import NormalizedResponsePayload, StreamEvent
from services.automation.line_framer import LineFramer
from services.automation.normalizer import normalize_payload


logger = logging.getLogger(__name__)

DEFAULT_RESPONDER_MARKER = "respond"
DEFAULT_STREAM_ERROR_MESSAGE = "The automation workflow reported an error."

# Upper bound on text kept for the plain-document fallback.
MAX_UNFRAMED_DOCUMENT_CHARS = 1_048_576


@dataclass(frozen=True)
class StreamState:
    """Snapshot of one stream decode."""

    content: str = ""
    final_payload: NormalizedResponsePayload | None = None
    error: str | None = None
    events_seen: int = 0
    malformed_lines: int = 0


def parse_line(line: str) -> StreamEvent | None:
    """Decode one framed line; None for blank or malformed lines."""
    text = line.strip()
    if not text:
        return None
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        logger.warning("Skipping malformed stream line (%s at pos %d)", exc.msg, exc.pos)
        return None
    if not isinstance(data, dict):
        logger.warning("Skipping stream line holding %s", type(data).__name__)
        return None
    try:
        return StreamEvent.model_validate(data)
    except ValidationError as exc:
        logger.warning(
            "Skipping stream line with unknown event shape (type=%r, %d errors)",
            data.get("type"),
            exc.error_count(),
        )
        return None


def is_responder_event(event: StreamEvent, marker: str = DEFAULT_RESPONDER_MARKER) -> bool:
    node_name = event.metadata.node_name if event.metadata else None
    if not node_name or not marker:
        return False
    return marker.lower() in node_name.lower()


def apply_event(
    event: StreamEvent,
    state: StreamState,
    *,
    marker: str = DEFAULT_RESPONDER_MARKER,
) -> StreamState:
    """Return the state after ``event``."""
    state = replace(state, events_seen=state.events_seen + 1)

    if event.type == "error":
        if state.error is not None:
            # First reported error wins; keep draining.
            return state
        message = event.text.strip() if event.text else ""
        logger.warning("Automation stream reported an error event")
        return replace(state, error=message or DEFAULT_STREAM_ERROR_MESSAGE)

    token = event.text
    if event.type != "item" or token is None:
        return state

    if is_responder_event(event, marker):
        payload = normalize_payload(_decode_json_or_raw(token))
        if payload is None:
            logger.warning(
                "Responder event from node %r did not hold a usable reply",
                event.metadata.node_name if event.metadata else None,
            )
            return state
        return replace(state, final_payload=payload, content=payload.chat_response)

    # Tokens keep appending after a final payload; the durable reply is still
    # the payload, see resolve_outcome.
    return replace(state, content=state.content + token)


def resolve_outcome(state: StreamState) -> NormalizedResponsePayload:
    """Turn a drained stream into its reply, or raise the stream's failure."""
    if state.error is not None:
        raise StreamReportedError(state.error)
    if state.final_payload is not None:
        return state.final_payload
    if state.content.strip():
        return NormalizedResponsePayload(chat_response=state.content)
    raise EmptyStreamError()


def _decode_json_or_raw(content: str) -> object:
    try:
        return json.loads(content)
    except json.JSONDecodeError:
        return content


class StreamDecoder:
    """Feed raw chunks, get back a snapshot for every visible content change."""

    def __init__(self, *, marker: str = DEFAULT_RESPONDER_MARKER) -> None:
        self._framer = LineFramer()
        self._marker = marker
        self._state = StreamState()
        # Non-event lines seen before the first event, in case the whole body
        # is one plain JSON document.
        self._unframed: list[str] = []
        self._unframed_chars = 0

    @property
    def state(self) -> StreamState:
        return self._state

    def feed(self, chunk: bytes | str) -> list[StreamState]:
        return self._apply_lines(self._framer.feed(chunk))

    def finish(self) -> list[StreamState]:
        """Flush the trailing line once the byte stream has ended."""
        tail = self._framer.flush()
        return self._apply_lines([tail] if tail is not None else [])

    def outcome(self) -> NormalizedResponsePayload:
        document = self._unframed_document()
        if document is not None:
            return document
        return resolve_outcome(self._state)

    def _unframed_document(self) -> NormalizedResponsePayload | None:
        if self._state.events_seen or not self._unframed:
            return None
        try:
            document = json.loads("\n".join(self._unframed))
        except json.JSONDecodeError:
            return None
        payload = normalize_payload(document)
        if payload is not None:
            logger.info(
                "Stream held no events; treating %d line(s) as a plain reply document",
                len(self._unframed),
            )
        return payload

    def _apply_lines(self, lines: list[str]) -> list[StreamState]:
        changes: list[StreamState] = []
        for line in lines:
            event = parse_line(line)
            if event is None:
                if line.strip():
                    self._state = replace(
                        self._state, malformed_lines=self._state.malformed_lines + 1
                    )
                    self._keep_unframed(line)
                continue
            previous = self._state.content
            self._state = apply_event(event, self._state, marker=self._marker)
            if self._state.content != previous:
                changes.append(self._state)
        return changes

    def _keep_unframed(self, line: str) -> None:
        if self._state.events_seen or self._unframed_chars > MAX_UNFRAMED_DOCUMENT_CHARS:
            self._unframed.clear()
            return
        self._unframed.append(line)
        self._unframed_chars += len(line)


async def decode_stream(
    chunks: AsyncIterable[bytes],
    *,
    marker: str = DEFAULT_RESPONDER_MARKER,
) -> AsyncIterator[StreamState]:
    """Yield a state snapshot per content change, then the final state."""
    decoder = StreamDecoder(marker=marker)
    async for chunk in chunks:
        for snapshot in decoder.feed(chunk):
            yield snapshot
    for snapshot in decoder.finish():
        yield snapshot
    yield decoder.state
