"""Tests for the incremental event-stream decoder."""

from __future__ import annotations

import json
import unittest

from gateway_console.decoder import (
    EventStreamDecoder,
    StreamEvent,
    decode_events,
    interpret_payload,
)


def _frame(payload: object) -> bytes:
    return f"data: {json.dumps(payload)}\n".encode("utf-8")


class EventStreamDecoderTests(unittest.TestCase):
    """Validate line buffering and frame classification."""

    def test_line_split_across_chunks_is_reassembled(self) -> None:
        decoder = EventStreamDecoder()
        self.assertEqual(decoder.feed(b'data: {"content": "Hel'), [])
        events = decoder.feed(b'lo"}\n')
        self.assertEqual(events, [StreamEvent.delta("Hello")])

    def test_multibyte_character_split_across_chunks(self) -> None:
        decoder = EventStreamDecoder()
        encoded = 'data: {"content": "café"}\n'.encode("utf-8")
        split = encoded.index(b"\xc3") + 1
        self.assertEqual(decoder.feed(encoded[:split]), [])
        events = decoder.feed(encoded[split:])
        self.assertEqual([event.text for event in events], ["café"])

    def test_done_sentinel_closes_decoder(self) -> None:
        decoder = EventStreamDecoder()
        events = decoder.feed(b"data: [DONE]\n" + _frame({"content": "late"}))
        self.assertEqual(events, [StreamEvent.done()])
        self.assertTrue(decoder.closed)
        self.assertEqual(decoder.feed(_frame({"content": "ignored"})), [])
        self.assertEqual(decoder.finish(), [])

    def test_malformed_and_empty_frames_are_skipped(self) -> None:
        decoder = EventStreamDecoder()
        events = decoder.feed(
            b"data: {not json\n" + b"data:\n" + _frame({"content": "ok"})
        )
        self.assertEqual(events, [StreamEvent.delta("ok")])
        self.assertFalse(decoder.closed)

    def test_error_event_closes_decoder(self) -> None:
        decoder = EventStreamDecoder()
        events = decoder.feed(
            _frame({"error": {"message": "rate limited"}}) + _frame({"content": "x"})
        )
        self.assertEqual(events, [StreamEvent.error("rate limited")])
        self.assertTrue(decoder.closed)

    def test_crlf_and_missing_space_after_prefix(self) -> None:
        decoder = EventStreamDecoder()
        events = decoder.feed(b'data:{"content": "a"}\r\ndata: {"content": "b"}\r\n')
        self.assertEqual([event.text for event in events], ["a", "b"])

    def test_non_data_lines_are_ignored(self) -> None:
        decoder = EventStreamDecoder()
        events = decoder.feed(
            b": keep-alive\n" + b"event: message\n" + b"\n" + _frame({"content": "x"})
        )
        self.assertEqual(events, [StreamEvent.delta("x")])

    def test_finish_flushes_trailing_line_without_newline(self) -> None:
        decoder = EventStreamDecoder()
        self.assertEqual(decoder.feed(b'data: {"content": "tail"}'), [])
        self.assertEqual(decoder.finish(), [StreamEvent.delta("tail")])


class InterpretPayloadTests(unittest.TestCase):
    """Validate mapping from decoded JSON payloads to events."""

    def test_openai_delta_with_reasoning(self) -> None:
        payload = {
            "id": "gen-1",
            "choices": [{"delta": {"content": "Hi", "reasoning_content": "think"}}],
        }
        events = interpret_payload(payload)
        self.assertEqual(
            events,
            [
                StreamEvent.meta(generation_id="gen-1"),
                StreamEvent.delta("Hi", "think"),
            ],
        )

    def test_empty_choices_yields_only_meta(self) -> None:
        events = interpret_payload({"id": "gen-2", "choices": []})
        self.assertEqual(events, [StreamEvent.meta(generation_id="gen-2")])

    def test_meta_only_payload(self) -> None:
        events = interpret_payload({"conversation_id": "c-1", "generation_id": "g-1"})
        self.assertEqual(
            events, [StreamEvent.meta(conversation_id="c-1", generation_id="g-1")]
        )
        self.assertEqual(interpret_payload({"object": "chat.completion.chunk"}), [])

    def test_message_id_is_carried_in_meta(self) -> None:
        events = interpret_payload({"message_id": "srv-7", "generation_id": "gen-1"})
        self.assertEqual(
            events, [StreamEvent.meta(generation_id="gen-1", message_id="srv-7")]
        )
        events = interpret_payload({"message_id": "srv-8", "content": "hi"})
        self.assertEqual(
            events, [StreamEvent.meta(message_id="srv-8"), StreamEvent.delta("hi")]
        )

    def test_string_payload_is_plain_text(self) -> None:
        self.assertEqual(interpret_payload("hello"), [StreamEvent.delta("hello")])
        self.assertEqual(interpret_payload(""), [])

    def test_unknown_dict_is_rendered_as_json(self) -> None:
        events = interpret_payload({"status": "warming"})
        self.assertEqual(events, [StreamEvent.delta('{"status": "warming"}')])

    def test_non_dict_json_is_rendered_as_json(self) -> None:
        self.assertEqual(interpret_payload([1, 2]), [StreamEvent.delta("[1, 2]")])

    def test_error_string_and_response_shapes(self) -> None:
        self.assertEqual(interpret_payload({"error": "boom"}), [StreamEvent.error("boom")])
        self.assertEqual(
            interpret_payload({"response": "plain reply"}), [StreamEvent.delta("plain reply")]
        )
        self.assertEqual(
            interpret_payload({"delta": {"content": "d"}}), [StreamEvent.delta("d")]
        )

    def test_falsy_error_field_is_not_an_error(self) -> None:
        self.assertEqual(
            interpret_payload({"error": None, "content": "fine"}),
            [StreamEvent.delta("fine")],
        )


class DecodeEventsTests(unittest.IsolatedAsyncioTestCase):
    """Validate the async wrapper stops at terminal events."""

    async def test_stops_after_done(self) -> None:
        consumed: list[bytes] = []

        async def _chunks():
            for chunk in (
                _frame({"content": "a"}),
                b"data: [DONE]\n",
                _frame({"content": "never"}),
            ):
                consumed.append(chunk)
                yield chunk

        events = [event async for event in decode_events(_chunks())]
        self.assertEqual(events, [StreamEvent.delta("a"), StreamEvent.done()])
        self.assertEqual(len(consumed), 2)

    async def test_flushes_tail_at_end_of_transport(self) -> None:
        async def _chunks():
            yield _frame({"content": "a"})
            yield b'data: {"content": "b"}'

        events = [event async for event in decode_events(_chunks())]
        self.assertEqual([event.text for event in events], ["a", "b"])


if __name__ == "__main__":
    unittest.main()
