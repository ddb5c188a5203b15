"""Automation webhook exchange: stream decoding and reply reconciliation."""

from .client import AutomationClient, is_event_stream
from .normalizer import normalize_payload
from .reconciliation import ExchangeState, ReconciliationController
from .store import ConversationRecord, DurableOutcomeMessage, MessageStore, StoredMessage
from .stream_interpreter import (
    StreamDecoder,
    StreamState,
    apply_event,
    decode_stream,
    parse_line,
    resolve_outcome,
)
from .temp_ids import TempIdAllocator, is_provisional_id
from .timeline import ConversationTimeline, ProvisionalMessage
from .titles import format_title, maybe_retitle


__all__ = [
    "AutomationClient",
    "ConversationRecord",
    "ConversationTimeline",
    "DurableOutcomeMessage",
    "ExchangeState",
    "MessageStore",
    "ProvisionalMessage",
    "ReconciliationController",
    "StoredMessage",
    "StreamDecoder",
    "StreamState",
    "TempIdAllocator",
    "apply_event",
    "decode_stream",
    "format_title",
    "is_event_stream",
    "is_provisional_id",
    "maybe_retitle",
    "normalize_payload",
    "parse_line",
    "resolve_outcome",
]
