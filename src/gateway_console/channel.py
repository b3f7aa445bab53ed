"""One model's streaming response: transport, decoding, accumulation, throttled updates."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from contextlib import aclosing
from dataclasses import dataclass
from enum import Enum
import logging
import time
from typing import Any, Protocol
from uuid import uuid4

import httpx

from .client import CONVERSATION_HEADER, ChatRequest
from .decoder import StreamEvent, decode_events
from .exceptions import GatewayConsoleError, UpstreamModelError

LOGGER = logging.getLogger(__name__)


class ChannelState(str, Enum):
    PENDING = "PENDING"
    STREAMING = "STREAMING"
    COMPLETED = "COMPLETED"
    ERRORED = "ERRORED"
    CANCELLED = "CANCELLED"

    @property
    def terminal(self) -> bool:
        return self in (
            ChannelState.COMPLETED,
            ChannelState.ERRORED,
            ChannelState.CANCELLED,
        )


@dataclass(frozen=True)
class ChannelSnapshot:
    """Point-in-time view of a channel handed to observers."""

    channel_id: str
    model_id: str
    state: ChannelState
    text: str
    reasoning: str
    final: bool = False


@dataclass(frozen=True)
class Completed:
    text: str
    reasoning: str = ""
    generation_id: str | None = None
    message_id: str | None = None


@dataclass(frozen=True)
class Errored:
    reason: str
    error: BaseException | None = None
    partial_text: str = ""


@dataclass(frozen=True)
class Cancelled:
    partial_text: str = ""
    reasoning: str = ""
    message_id: str | None = None


ChannelResult = Completed | Errored | Cancelled
SnapshotCallback = Callable[[ChannelSnapshot], None]


class StreamingClient(Protocol):
    def stream_chat(
        self,
        request: ChatRequest,
        on_headers: Callable[[httpx.Headers], None] | None = None,
    ) -> Any: ...


class ModelChannel:
    """Stream a single model's reply for one dispatch.

    Text and reasoning only ever grow until the channel is terminal. Once
    ``cancel()`` is called no further delta changes the accumulated text, and
    the channel settles as CANCELLED with whatever had already arrived.
    """

    def __init__(
        self,
        client: StreamingClient,
        request: ChatRequest,
        min_update_interval_seconds: float = 0.1,
        channel_id: str | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.id = channel_id or uuid4().hex
        self.request = request
        self._client = client
        self._interval = max(0.0, min_update_interval_seconds)
        self._clock = clock
        self._state = ChannelState.PENDING
        self._text_parts: list[str] = []
        self._reasoning_parts: list[str] = []
        self.generation_id: str | None = None
        self.message_id: str | None = None
        self.conversation_id: str | None = None
        self.result: ChannelResult | None = None
        self._subscribers: list[SnapshotCallback] = []
        self._cancel_requested = False
        self._started = False
        self._task: asyncio.Task[Any] | None = None
        self._last_publish: float | None = None
        self._pending_handle: asyncio.TimerHandle | None = None

    @property
    def model_id(self) -> str:
        return self.request.model

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def text(self) -> str:
        return "".join(self._text_parts)

    @property
    def reasoning(self) -> str:
        return "".join(self._reasoning_parts)

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested

    def subscribe(self, callback: SnapshotCallback) -> None:
        self._subscribers.append(callback)

    def snapshot(self) -> ChannelSnapshot:
        return ChannelSnapshot(
            channel_id=self.id,
            model_id=self.model_id,
            state=self._state,
            text=self.text,
            reasoning=self.reasoning,
            final=self._state.terminal,
        )

    def cancel(self) -> None:
        """Request cancellation and abort the transport if it is open."""
        if self._state.terminal or self._cancel_requested:
            return
        self._cancel_requested = True
        LOGGER.info(
            "channel.cancel.requested",
            extra={"event": "channel.cancel.requested", "model": self.model_id},
        )
        task = self._task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def run(self) -> ChannelResult:
        """Drive the stream to a terminal state. May only be called once."""
        if self._started:
            raise RuntimeError("A response channel can only be run once.")
        self._started = True
        if self._cancel_requested:
            return self._finish(Cancelled())

        self._task = asyncio.current_task()
        self._state = ChannelState.STREAMING
        LOGGER.debug(
            "channel.stream.start",
            extra={"event": "channel.stream.start", "model": self.model_id},
        )
        try:
            byte_stream = self._client.stream_chat(self.request, on_headers=self._on_headers)
            async with aclosing(byte_stream), aclosing(decode_events(byte_stream)) as events:
                async for event in events:
                    if self._cancel_requested or event.kind == "done":
                        break
                    self._apply(event)
        except asyncio.CancelledError:
            if not self._cancel_requested:
                self._finish(Cancelled(self.text, self.reasoning, self.message_id))
                raise
            current = asyncio.current_task()
            if current is not None:
                current.uncancel()
        except GatewayConsoleError as exc:
            if self._cancel_requested:
                return self._finish(Cancelled(self.text, self.reasoning, self.message_id))
            return self._finish(Errored(str(exc), exc, self.text))
        except Exception as exc:  # noqa: BLE001 - surfaced as a per-channel failure.
            if self._cancel_requested:
                return self._finish(Cancelled(self.text, self.reasoning, self.message_id))
            LOGGER.exception(
                "channel.stream.unexpected",
                extra={"event": "channel.stream.unexpected", "model": self.model_id},
            )
            return self._finish(Errored(f"Unexpected streaming failure: {exc}", exc, self.text))
        finally:
            self._task = None

        if self._cancel_requested:
            return self._finish(Cancelled(self.text, self.reasoning, self.message_id))
        return self._finish(
            Completed(self.text, self.reasoning, self.generation_id, self.message_id)
        )

    def _on_headers(self, headers: httpx.Headers) -> None:
        conversation_id = headers.get(CONVERSATION_HEADER)
        if conversation_id:
            self.conversation_id = conversation_id.strip() or self.conversation_id

    def _apply(self, event: StreamEvent) -> None:
        if event.kind == "error":
            raise UpstreamModelError(event.text)
        if event.kind == "meta":
            if event.conversation_id:
                self.conversation_id = event.conversation_id
            if event.generation_id:
                self.generation_id = event.generation_id
            if event.message_id:
                self.message_id = event.message_id
            return
        if event.kind == "delta":
            if event.text:
                self._text_parts.append(event.text)
            if event.reasoning:
                self._reasoning_parts.append(event.reasoning)
            self._publish()

    def _publish(self, *, force: bool = False) -> None:
        now = self._clock()
        due = (
            force
            or self._last_publish is None
            or now - self._last_publish >= self._interval
        )
        if not due:
            self._schedule_pending(self._interval - (now - self._last_publish))
            return
        self._cancel_pending()
        self._last_publish = now
        snapshot = self.snapshot()
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception:  # noqa: BLE001 - observers must not break the stream.
                LOGGER.exception(
                    "channel.subscriber.failed",
                    extra={"event": "channel.subscriber.failed", "model": self.model_id},
                )

    def _schedule_pending(self, delay: float) -> None:
        if self._pending_handle is not None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._pending_handle = loop.call_later(max(0.0, delay), self._flush_pending)

    def _flush_pending(self) -> None:
        self._pending_handle = None
        if not self._state.terminal and not self._cancel_requested:
            self._publish(force=True)

    def _cancel_pending(self) -> None:
        if self._pending_handle is not None:
            self._pending_handle.cancel()
            self._pending_handle = None

    def _finish(self, result: ChannelResult) -> ChannelResult:
        if self.result is not None:
            return self.result
        if isinstance(result, Completed):
            self._state = ChannelState.COMPLETED
        elif isinstance(result, Errored):
            self._state = ChannelState.ERRORED
            LOGGER.warning(
                "channel.stream.failed",
                extra={
                    "event": "channel.stream.failed",
                    "model": self.model_id,
                    "reason": result.reason,
                },
            )
        else:
            self._state = ChannelState.CANCELLED
        self.result = result
        self._publish(force=True)
        return result
