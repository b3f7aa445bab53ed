"""Fan a single user turn out to one or more models and commit the results."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
import logging
from typing import Any
from uuid import uuid4

from .channel import (
    Cancelled,
    ChannelResult,
    ChannelSnapshot,
    Completed,
    Errored,
    ModelChannel,
    StreamingClient,
)
from .client import ChatRequest
from .exceptions import AggregateSendError, DispatchBusyError, SendValidationError
from .message_store import MessageStore
from .models import Message
from .state import DispatchState, StateManager
from .task_manager import TaskManager

LOGGER = logging.getLogger(__name__)

ChannelFactory = Callable[[ChatRequest], ModelChannel]


@dataclass
class GenerationConfig:
    """Per-send generation options forwarded to every channel."""

    temperature: float | None = None
    history_limit: int | None = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class ComposeBuffer:
    """Text the user is composing; cleared on send and restored on total failure."""

    text: str = ""

    def clear(self) -> None:
        self.text = ""

    def restore(self, text: str) -> None:
        self.text = text


@dataclass
class ChannelOutcome:
    channel_id: str
    model_id: str
    result: ChannelResult


@dataclass
class DispatchOutcome:
    """Everything a finished send produced."""

    user_message: Message
    assistant_messages: list[Message]
    channels: list[ChannelOutcome]
    group_id: str | None = None
    conversation_id: str | None = None

    @property
    def cancelled(self) -> bool:
        return bool(self.channels) and all(
            isinstance(item.result, Cancelled) for item in self.channels
        )

    @property
    def failures(self) -> dict[str, str]:
        return {
            item.model_id: item.result.reason
            for item in self.channels
            if isinstance(item.result, Errored)
        }


def _normalize_models(model_ids: list[str] | tuple[str, ...]) -> list[str]:
    normalized: list[str] = []
    for model_id in model_ids:
        candidate = str(model_id).strip()
        if candidate and candidate not in normalized:
            normalized.append(candidate)
    return normalized


class MultiModelDispatcher:
    """Run one send at a time for a tab, with one channel per selected model."""

    def __init__(
        self,
        client: StreamingClient,
        store: MessageStore,
        *,
        conversation_id: str | None = None,
        compose: ComposeBuffer | None = None,
        state: StateManager | None = None,
        task_manager: TaskManager | None = None,
        update_interval_seconds: float = 0.1,
        channel_factory: ChannelFactory | None = None,
    ) -> None:
        self._client = client
        self.store = store
        self.compose = compose or ComposeBuffer()
        self.state = state or StateManager()
        self._tasks = task_manager or TaskManager()
        self._update_interval = update_interval_seconds
        self._channel_factory = channel_factory or self._default_channel
        self._conversation_id = conversation_id
        self._channels: list[ModelChannel] = []
        self._in_flight: dict[str, ChannelSnapshot] = {}
        self._update_callbacks: list[Callable[[ChannelSnapshot], None]] = []
        self._bound_callbacks: list[Callable[[str], None]] = []

    def _default_channel(self, request: ChatRequest) -> ModelChannel:
        return ModelChannel(
            self._client,
            request,
            min_update_interval_seconds=self._update_interval,
        )

    @property
    def conversation_id(self) -> str | None:
        return self._conversation_id

    @property
    def is_sending(self) -> bool:
        return self.state.current != DispatchState.IDLE

    @property
    def in_flight(self) -> dict[str, ChannelSnapshot]:
        """Latest snapshot per in-flight channel, keyed by channel id."""
        return dict(self._in_flight)

    def on_stream_update(self, callback: Callable[[ChannelSnapshot], None]) -> None:
        self._update_callbacks.append(callback)

    def on_conversation_bound(self, callback: Callable[[str], None]) -> None:
        self._bound_callbacks.append(callback)

    def bind_conversation(self, conversation_id: str | None, *, notify: bool = True) -> None:
        """Point subsequent sends at ``conversation_id``."""
        if conversation_id == self._conversation_id:
            return
        self._conversation_id = conversation_id
        if conversation_id is None or not notify:
            return
        LOGGER.info(
            "dispatch.conversation.bound",
            extra={"event": "dispatch.conversation.bound", "conversation_id": conversation_id},
        )
        for callback in list(self._bound_callbacks):
            callback(conversation_id)

    def _forward(self, snapshot: ChannelSnapshot) -> None:
        if snapshot.channel_id not in self._in_flight:
            return
        self._in_flight[snapshot.channel_id] = snapshot
        for callback in list(self._update_callbacks):
            try:
                callback(snapshot)
            except Exception:  # noqa: BLE001 - a broken view must not stop the stream.
                LOGGER.exception(
                    "dispatch.update_callback.failed",
                    extra={"event": "dispatch.update_callback.failed"},
                )

    async def send(
        self,
        turn_text: str,
        model_ids: list[str] | tuple[str, ...],
        config: GenerationConfig | None = None,
    ) -> DispatchOutcome:
        """Send ``turn_text`` to every model in ``model_ids`` concurrently.

        Raises ``SendValidationError`` for empty input or no models,
        ``DispatchBusyError`` while another send is running and
        ``AggregateSendError`` when every channel failed.
        """
        text = turn_text.strip()
        models = _normalize_models(model_ids)
        if not text:
            raise SendValidationError("Message must not be empty.")
        if not models:
            raise SendValidationError("Select at least one model before sending.")
        if not await self.state.transition_if(DispatchState.IDLE, DispatchState.SENDING):
            raise DispatchBusyError("A response is already streaming for this tab.")

        config = config or GenerationConfig()
        try:
            user_message = Message.user(text)
            staged = self.store.stage(user_message)
            composed = self.compose.text
            self.compose.clear()
            group_id = uuid4().hex if len(models) > 1 else None

            channels = [
                self._channel_factory(
                    ChatRequest(
                        message=text,
                        model=model_id,
                        conversation_id=self._conversation_id,
                        group_id=group_id,
                        temperature=config.temperature,
                        history_limit=config.history_limit,
                        extra=dict(config.extra),
                    )
                )
                for model_id in models
            ]
            self._channels = channels
            for channel in channels:
                self._in_flight[channel.id] = channel.snapshot()
                channel.subscribe(self._forward)

            LOGGER.info(
                "dispatch.send.start",
                extra={
                    "event": "dispatch.send.start",
                    "models": models,
                    "group_id": group_id,
                    "conversation_id": self._conversation_id,
                },
            )
            tasks = [
                self._tasks.spawn(channel.run(), name=f"channel:{channel.id}")
                for channel in channels
            ]
            try:
                raw_results = await asyncio.gather(*tasks, return_exceptions=True)
            except asyncio.CancelledError:
                for channel in channels:
                    channel.cancel()
                self.store.commit(staged)
                raise

            outcomes: list[ChannelOutcome] = []
            for channel, raw in zip(channels, raw_results):
                result: ChannelResult
                if isinstance(raw, BaseException):
                    result = Errored(str(raw) or raw.__class__.__name__, raw)
                else:
                    result = raw
                outcomes.append(ChannelOutcome(channel.id, channel.model_id, result))

            for channel in channels:
                if channel.conversation_id and not self._conversation_id:
                    self.bind_conversation(channel.conversation_id)
                    break

            if all(isinstance(item.result, Errored) for item in outcomes):
                self.store.rollback(staged)
                self.compose.restore(composed or text)
                error = AggregateSendError(
                    {item.model_id: item.result.reason for item in outcomes}  # type: ignore[union-attr]
                )
                LOGGER.warning(
                    "dispatch.send.failed",
                    extra={"event": "dispatch.send.failed", "reasons": error.reasons},
                )
                raise error

            replies = [
                reply
                for item in outcomes
                if (reply := self._reply_for(item, group_id)) is not None
            ]
            self.store.commit(staged, replies)
            outcome = DispatchOutcome(
                user_message=user_message,
                assistant_messages=replies,
                channels=outcomes,
                group_id=group_id,
                conversation_id=self._conversation_id,
            )
            LOGGER.info(
                "dispatch.send.complete",
                extra={
                    "event": "dispatch.send.complete",
                    "replies": len(replies),
                    "failed": sorted(outcome.failures),
                    "cancelled": outcome.cancelled,
                },
            )
            return outcome
        finally:
            self._channels = []
            self._in_flight.clear()
            await self.state.transition_to(DispatchState.IDLE)

    @staticmethod
    def _reply_for(item: ChannelOutcome, group_id: str | None) -> Message | None:
        result = item.result
        if isinstance(result, Completed):
            content, reasoning, generation_id = result.text, result.reasoning, result.generation_id
        elif isinstance(result, Cancelled) and result.partial_text.strip():
            content, reasoning, generation_id = result.partial_text, result.reasoning, None
        else:
            return None
        # A local id stands in until the gateway streams its own.
        server_id = result.message_id
        return Message(
            id=server_id or str(uuid4()),
            role="assistant",
            content=content,
            model_id=item.model_id,
            reasoning=reasoning or None,
            generation_id=generation_id,
            group_id=group_id,
            persisted=server_id is not None,
        )

    async def stop(self) -> bool:
        """Cancel every channel of the in-flight send. Returns False when idle."""
        channels = list(self._channels)
        if not channels:
            return False
        await self.state.transition_if(DispatchState.SENDING, DispatchState.CANCELLING)
        LOGGER.info(
            "dispatch.stop.requested",
            extra={"event": "dispatch.stop.requested", "channels": len(channels)},
        )
        for channel in channels:
            channel.cancel()
        return True
