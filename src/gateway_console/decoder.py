"""Incremental decoder for the gateway's ``data:`` event-stream protocol."""

from __future__ import annotations

from collections.abc import AsyncIterable, AsyncIterator
import codecs
from dataclasses import dataclass
import json
import logging
from typing import Any, Literal

from .exceptions import ProtocolError

LOGGER = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"

_META_ONLY_KEYS = frozenset(
    {"conversation_id", "generation_id", "message_id", "id", "object", "created", "model"}
)


@dataclass
class StreamEvent:
    """A single decoded event handed to a response channel."""

    kind: Literal["delta", "error", "done", "meta"]
    text: str = ""
    reasoning: str = ""
    conversation_id: str | None = None
    generation_id: str | None = None
    message_id: str | None = None

    @classmethod
    def delta(cls, text: str, reasoning: str = "") -> StreamEvent:
        return cls(kind="delta", text=text, reasoning=reasoning)

    @classmethod
    def error(cls, message: str) -> StreamEvent:
        return cls(kind="error", text=message)

    @classmethod
    def done(cls) -> StreamEvent:
        return cls(kind="done")

    @classmethod
    def meta(
        cls,
        conversation_id: str | None = None,
        generation_id: str | None = None,
        message_id: str | None = None,
    ) -> StreamEvent:
        return cls(
            kind="meta",
            conversation_id=conversation_id,
            generation_id=generation_id,
            message_id=message_id,
        )


def _error_message(raw: Any) -> str:
    if isinstance(raw, dict):
        for key in ("message", "detail", "error"):
            value = raw.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
        return json.dumps(raw, ensure_ascii=False)
    if isinstance(raw, str) and raw.strip():
        return raw.strip()
    return "Unknown upstream error."


def _as_text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _openai_delta(payload: dict[str, Any]) -> tuple[str, str] | None:
    choices = payload.get("choices")
    if not isinstance(choices, list):
        return None
    if not choices:
        return "", ""
    first = choices[0]
    if not isinstance(first, dict):
        return None
    delta = first.get("delta")
    if not isinstance(delta, dict):
        # Non-streaming completion bodies carry ``message`` instead of ``delta``.
        delta = first.get("message")
    if not isinstance(delta, dict):
        return "", ""
    return _as_text(delta.get("content")), _as_text(delta.get("reasoning_content"))


def _extract_text(payload: dict[str, Any]) -> tuple[str, str] | None:
    """Return (text, reasoning) for a recognized shape, or None."""
    top_reasoning = _as_text(payload.get("reasoning_content"))
    if "choices" in payload:
        extracted = _openai_delta(payload)
        if extracted is not None:
            text, reasoning = extracted
            return text, top_reasoning or reasoning
    if "content" in payload:
        return _as_text(payload["content"]), top_reasoning
    delta = payload.get("delta")
    if isinstance(delta, dict):
        return (
            _as_text(delta.get("content")),
            top_reasoning or _as_text(delta.get("reasoning_content")),
        )
    if "response" in payload:
        return _as_text(payload["response"]), top_reasoning
    if top_reasoning:
        return "", top_reasoning
    return None


def _meta_event(payload: dict[str, Any]) -> StreamEvent | None:
    conversation_id = payload.get("conversation_id")
    generation_id = payload.get("generation_id")
    if not isinstance(generation_id, str) and isinstance(payload.get("id"), str):
        if "choices" in payload:
            generation_id = payload["id"]
    message_id = payload.get("message_id")
    conversation_id = conversation_id if isinstance(conversation_id, str) else None
    generation_id = generation_id if isinstance(generation_id, str) else None
    message_id = message_id if isinstance(message_id, str) and message_id.strip() else None
    if conversation_id is None and generation_id is None and message_id is None:
        return None
    return StreamEvent.meta(
        conversation_id=conversation_id,
        generation_id=generation_id,
        message_id=message_id,
    )


def interpret_payload(payload: Any) -> list[StreamEvent]:
    """Map one decoded JSON payload to zero or more events."""
    if isinstance(payload, str):
        return [StreamEvent.delta(payload)] if payload else []
    if not isinstance(payload, dict):
        return [StreamEvent.delta(json.dumps(payload, ensure_ascii=False))]

    if "error" in payload and payload["error"]:
        return [StreamEvent.error(_error_message(payload["error"]))]

    meta = _meta_event(payload)
    extracted = _extract_text(payload)
    if extracted is None:
        if payload and set(payload) <= _META_ONLY_KEYS:
            return [meta] if meta is not None else []
        return [StreamEvent.delta(json.dumps(payload, ensure_ascii=False))]

    events = [meta] if meta is not None else []
    text, reasoning = extracted
    if text or reasoning:
        events.append(StreamEvent.delta(text, reasoning))
    return events


class EventStreamDecoder:
    """Turn arbitrary byte chunks into typed stream events.

    Multi-byte characters split across chunks and partial lines are held back
    until the rest arrives. After ``[DONE]`` or an error event the decoder is
    closed and ignores further input.
    """

    def __init__(self) -> None:
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def feed(self, chunk: bytes) -> list[StreamEvent]:
        """Decode a chunk and return every event completed by it."""
        if self._closed or not chunk:
            return []
        self._buffer += self._utf8.decode(chunk)
        return self._drain_lines(final=False)

    def finish(self) -> list[StreamEvent]:
        """Flush the decoder at end of transport."""
        if self._closed:
            return []
        self._buffer += self._utf8.decode(b"", final=True)
        return self._drain_lines(final=True)

    def _drain_lines(self, *, final: bool) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        while not self._closed:
            newline = self._buffer.find("\n")
            if newline < 0:
                if final and self._buffer:
                    line, self._buffer = self._buffer, ""
                    events.extend(self._handle_line(line))
                break
            line = self._buffer[:newline]
            self._buffer = self._buffer[newline + 1 :]
            events.extend(self._handle_line(line))
        if self._closed:
            self._buffer = ""
        return events

    def _handle_line(self, raw_line: str) -> list[StreamEvent]:
        line = raw_line.rstrip("\r")
        if not line.startswith(DATA_PREFIX):
            return []
        data = line[len(DATA_PREFIX) :]
        if data.startswith(" "):
            data = data[1:]
        if data.strip() == DONE_SENTINEL:
            self._closed = True
            return [StreamEvent.done()]
        try:
            payload = self._parse(data)
        except ProtocolError as exc:
            LOGGER.debug(
                "decoder.frame.skipped",
                extra={"event": "decoder.frame.skipped", "reason": str(exc)},
            )
            return []
        events = interpret_payload(payload)
        if any(event.kind == "error" for event in events):
            self._closed = True
        return events

    @staticmethod
    def _parse(data: str) -> Any:
        if not data.strip():
            raise ProtocolError("Empty data frame.")
        try:
            return json.loads(data)
        except json.JSONDecodeError as exc:
            raise ProtocolError(f"Malformed data frame: {data[:80]!r}") from exc


async def decode_events(byte_stream: AsyncIterable[bytes]) -> AsyncIterator[StreamEvent]:
    """Yield events from an async byte stream until ``done`` or an error event."""
    decoder = EventStreamDecoder()
    async for chunk in byte_stream:
        for event in decoder.feed(chunk):
            yield event
            if event.kind in ("done", "error"):
                return
    for event in decoder.finish():
        yield event
