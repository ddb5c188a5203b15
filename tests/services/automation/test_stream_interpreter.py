"""Tests for stream event parsing, state transitions and outcome resolution."""

from __future__ import annotations

import json

import pytest

from core.exceptions import EmptyStreamError, StreamReportedError
from schemas.automation import NormalizedResponsePayload, StreamEvent
from services.automation.stream_interpreter import (
    DEFAULT_STREAM_ERROR_MESSAGE,
    StreamDecoder,
    StreamState,
    apply_event,
    decode_stream,
    is_responder_event,
    parse_line,
    resolve_outcome,
)


def item(content: object, node_name: str | None = None) -> StreamEvent:
    data: dict[str, object] = {"type": "item", "content": content}
    if node_name is not None:
        data["metadata"] = {"nodeId": "n1", "nodeName": node_name, "itemIndex": 0}
    return StreamEvent.model_validate(data)


def respond(reply: object, node_name: str = "Respond to Webhook") -> StreamEvent:
    return item(json.dumps(reply) if not isinstance(reply, str) else reply, node_name)


class TestParseLine:
    def test_valid_event(self) -> None:
        event = parse_line(
            '{"type":"item","content":"Hi","metadata":{"nodeName":"Agent","runIndex":2}}'
        )
        assert event is not None
        assert event.type == "item"
        assert event.text == "Hi"
        assert event.metadata is not None
        assert event.metadata.node_name == "Agent"
        assert event.metadata.run_index == 2

    @pytest.mark.parametrize("line", ["", "   ", "\t"])
    def test_blank_lines_are_skipped(self, line: str) -> None:
        assert parse_line(line) is None

    @pytest.mark.parametrize(
        "line",
        ["{not json", "[1, 2]", '"just a string"', '{"type":"progress"}', '{"content":"x"}'],
    )
    def test_malformed_lines_are_skipped(self, line: str, caplog) -> None:
        with caplog.at_level("WARNING"):
            assert parse_line(line) is None
        assert "Skipping" in caplog.text

    def test_non_string_content_has_no_text(self) -> None:
        event = parse_line('{"type":"item","content":{"a":1}}')
        assert event is not None
        assert event.text is None

    def test_numeric_node_id_is_kept_as_text(self) -> None:
        event = parse_line('{"type":"item","content":"Hel","metadata":{"nodeId":7}}')
        assert event is not None
        assert event.text == "Hel"
        assert event.metadata is not None
        assert event.metadata.node_id == "7"

    @pytest.mark.parametrize(
        "metadata",
        ['"Agent"', '{"itemIndex":"first"}', '{"nodeName":["a","b"]}', "[1]"],
    )
    def test_unusable_metadata_keeps_the_event(self, metadata: str, caplog) -> None:
        with caplog.at_level("WARNING"):
            event = parse_line(
                '{"type":"item","content":"Hel","metadata":' + metadata + "}"
            )
        assert event is not None
        assert event.text == "Hel"
        assert event.metadata is None
        assert "Dropping unusable stream event metadata" in caplog.text


class TestApplyEvent:
    def test_tokens_concatenate_in_order(self) -> None:
        state = StreamState()
        for token in ["Hel", "lo", " ", "world"]:
            state = apply_event(item(token), state)
        assert state.content == "Hello world"
        assert state.events_seen == 4

    def test_tokens_are_not_trimmed(self) -> None:
        state = apply_event(item("  a "), StreamState())
        state = apply_event(item("\nb"), state)
        assert state.content == "  a \nb"

    def test_apply_event_does_not_mutate_input(self) -> None:
        before = StreamState(content="x")
        after = apply_event(item("y"), before)
        assert before.content == "x"
        assert after.content == "xy"

    @pytest.mark.parametrize("event_type", ["begin", "end"])
    def test_begin_and_end_change_nothing(self, event_type: str) -> None:
        state = StreamState(content="kept")
        event = StreamEvent.model_validate({"type": event_type, "content": "ignored"})
        assert apply_event(event, state).content == "kept"

    def test_item_without_string_content_is_ignored(self) -> None:
        state = apply_event(item(None), StreamState(content="a"))
        state = apply_event(item({"nested": True}), state)
        assert state.content == "a"

    def test_responder_event_replaces_content(self) -> None:
        state = StreamState()
        for token in ["thinking ", "about it"]:
            state = apply_event(item(token, "AI Agent"), state)
        state = apply_event(respond({"chat_response": "Final answer"}), state)

        assert state.content == "Final answer"
        assert state.final_payload == NormalizedResponsePayload(
            chat_response="Final answer"
        )

    def test_responder_marker_is_case_insensitive(self) -> None:
        assert is_responder_event(item("x", "RESPOND TO WEBHOOK"))
        assert is_responder_event(item("x", "respond"), marker="Respond")
        assert not is_responder_event(item("x", "AI Agent"))
        assert not is_responder_event(item("x"))

    def test_responder_with_wrapped_payload(self) -> None:
        wrapped = [{"output": {"chat_response": "Wrapped", "invoice_from_xero": None}}]
        state = apply_event(respond(wrapped), StreamState())
        assert state.content == "Wrapped"

    def test_responder_with_plain_text(self) -> None:
        state = apply_event(respond("Plain final text"), StreamState(content="tok"))
        assert state.content == "Plain final text"

    def test_invalid_responder_payload_is_ignored(self, caplog) -> None:
        state = StreamState(content="partial")
        with caplog.at_level("WARNING"):
            after = apply_event(respond({"chat_response": "  "}), state)
        assert after.content == "partial"
        assert after.final_payload is None
        assert "did not hold a usable reply" in caplog.text

    def test_tokens_after_final_reply_still_append(self) -> None:
        state = apply_event(respond({"chat_response": "Done"}), StreamState())
        state = apply_event(item(" trailing"), state)

        assert state.content == "Done trailing"
        assert state.final_payload == NormalizedResponsePayload(chat_response="Done")
        assert resolve_outcome(state).chat_response == "Done"

    def test_error_event_is_captured(self) -> None:
        event = StreamEvent.model_validate({"type": "error", "content": "Node failed"})
        state = apply_event(event, StreamState(content="partial"))
        assert state.error == "Node failed"
        assert state.content == "partial"

    def test_error_without_content_uses_fallback(self) -> None:
        state = apply_event(StreamEvent(type="error"), StreamState())
        assert state.error == DEFAULT_STREAM_ERROR_MESSAGE

    def test_first_error_wins(self) -> None:
        state = apply_event(StreamEvent(type="error", content="first"), StreamState())
        state = apply_event(StreamEvent(type="error", content="second"), state)
        assert state.error == "first"


class TestResolveOutcome:
    def test_error_takes_precedence(self) -> None:
        state = StreamState(
            content="Hello",
            final_payload=NormalizedResponsePayload(chat_response="Hello"),
            error="boom",
        )
        with pytest.raises(StreamReportedError, match="boom"):
            resolve_outcome(state)

    def test_final_payload(self) -> None:
        payload = NormalizedResponsePayload(chat_response="Final")
        assert resolve_outcome(StreamState(content="Final", final_payload=payload)) is payload

    def test_accumulated_content(self) -> None:
        outcome = resolve_outcome(StreamState(content="Hello"))
        assert outcome == NormalizedResponsePayload(chat_response="Hello")

    @pytest.mark.parametrize("content", ["", "   "])
    def test_nothing_received(self, content: str) -> None:
        with pytest.raises(EmptyStreamError):
            resolve_outcome(StreamState(content=content))


class TestStreamDecoder:
    def test_malformed_line_does_not_stop_processing(self) -> None:
        decoder = StreamDecoder()
        snapshots = decoder.feed(
            b'{"type":"item","content":"a"}\n{not json\n{"type":"item","content":"b"}\n'
        )
        assert [s.content for s in snapshots] == ["a", "ab"]
        assert decoder.state.malformed_lines == 1
        assert decoder.outcome().chat_response == "ab"

    def test_error_event_fails_even_after_content(self) -> None:
        decoder = StreamDecoder()
        decoder.feed(b'{"type":"item","content":"Hello"}\n')
        decoder.feed(b'{"type":"error","content":"Workflow crashed"}\n')
        decoder.feed(b'{"type":"end"}\n')
        with pytest.raises(StreamReportedError, match="Workflow crashed"):
            decoder.outcome()

    def test_trailing_line_without_newline(self) -> None:
        decoder = StreamDecoder()
        assert decoder.feed(b'{"type":"item","content":"x"}') == []
        assert [s.content for s in decoder.finish()] == ["x"]

    def test_custom_marker(self) -> None:
        decoder = StreamDecoder(marker="final")
        decoder.feed(
            b'{"type":"item","content":"Final text","metadata":{"nodeName":"Final Step"}}\n'
        )
        assert decoder.state.final_payload is not None

    @pytest.mark.asyncio
    async def test_decode_stream_yields_snapshots(self) -> None:
        async def chunks():
            yield b'{"type":"begin"}\n{"type":"item","content":"Hel'
            yield b'"}\n{"type":"item","content":"lo"}\n'
            yield b'{"type":"end"}'

        states = [state async for state in decode_stream(chunks())]

        assert [s.content for s in states[:-1]] == ["Hel", "Hello"]
        assert states[-1].events_seen == 4
        assert resolve_outcome(states[-1]).chat_response == "Hello"

    def test_odd_metadata_does_not_cost_content(self) -> None:
        decoder = StreamDecoder()
        decoder.feed(b'{"type":"item","content":"Hel","metadata":{"nodeId":7}}\n')
        decoder.feed(b'{"type":"item","content":"lo"}\n')

        assert decoder.state.content == "Hello"
        assert decoder.state.malformed_lines == 0
        assert decoder.outcome().chat_response == "Hello"


class TestPlainDocumentBody:
    def test_single_document_is_a_reply(self) -> None:
        decoder = StreamDecoder()
        assert decoder.feed(b'{"chat_response": "Hello"}') == []
        decoder.finish()

        outcome = decoder.outcome()
        assert outcome.chat_response == "Hello"
        assert decoder.state.events_seen == 0

    def test_pretty_printed_wrapped_document(self) -> None:
        body = json.dumps(
            [
                {
                    "output": {
                        "chat_response": "Order shipped",
                        "order_from_sparklayer": {
                            "orderId": 1042,
                            "customer": "Acme",
                            "date": "2026-03-01",
                        },
                    }
                }
            ],
            indent=2,
        ).encode()
        decoder = StreamDecoder()
        decoder.feed(body[:10])
        decoder.feed(body[10:])
        decoder.finish()

        outcome = decoder.outcome()
        assert outcome.chat_response == "Order shipped"
        assert outcome.order_reference is not None
        assert outcome.order_reference.order_id == "1042"

    def test_garbage_body_is_still_empty(self) -> None:
        decoder = StreamDecoder()
        decoder.feed(b"<html>gateway timeout</html>\n")
        decoder.finish()

        assert decoder.state.malformed_lines == 1
        with pytest.raises(EmptyStreamError):
            decoder.outcome()

    def test_document_without_reply_is_still_empty(self) -> None:
        decoder = StreamDecoder()
        decoder.feed(b'{"status": "accepted"}\n')
        decoder.finish()

        with pytest.raises(EmptyStreamError):
            decoder.outcome()

    def test_unframed_lines_ignored_once_events_arrive(self) -> None:
        decoder = StreamDecoder()
        decoder.feed(b'{"chat_response": "stray"}\n')
        decoder.feed(b'{"type":"item","content":"Real"}\n')
        decoder.finish()

        assert decoder.outcome().chat_response == "Real"
