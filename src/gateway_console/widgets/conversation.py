"""Scrollable conversation view widget and its scroll-anchor viewport."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Coroutine, Iterable
import logging
from typing import Any

from textual.containers import VerticalScroll
from textual.message import Message as TextualMessage

from ..channel import ChannelSnapshot
from ..message_store import ChangeKind
from ..models import Message
from .message import MessageBubble

LOGGER = logging.getLogger(__name__)


class ConversationView(VerticalScroll):
    """A scrollable container that hosts message bubbles.

    Mutations are queued and applied one at a time so bubbles always land in
    the order the store announced them.
    """

    class Scrolled(TextualMessage):
        """Posted whenever the vertical offset changes."""

        def __init__(self, offset: float) -> None:
            super().__init__()
            self.offset = offset

    def __init__(
        self,
        *,
        show_timestamps: bool = True,
        show_reasoning: bool = True,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.show_timestamps = show_timestamps
        self.show_reasoning = show_reasoning
        self._render_lock = asyncio.Lock()
        self._renders: set[asyncio.Task[Any]] = set()
        self._streams: dict[str, MessageBubble] = {}
        self.styler: Callable[[MessageBubble], None] | None = None

    def watch_scroll_y(self, old_value: float, new_value: float) -> None:
        super().watch_scroll_y(old_value, new_value)
        self.post_message(self.Scrolled(new_value))

    def schedule(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        """Queue a render coroutine behind the ones already scheduled."""

        async def _serialized() -> None:
            async with self._render_lock:
                await coro

        task = asyncio.create_task(_serialized())
        self._renders.add(task)
        task.add_done_callback(self._render_done)
        return task

    def _render_done(self, task: asyncio.Task[Any]) -> None:
        self._renders.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error(
                "conversation.render.failed",
                extra={
                    "event": "conversation.render.failed",
                    "error_type": exc.__class__.__name__,
                },
                exc_info=exc,
            )

    async def wait_for_renders(self) -> None:
        while self._renders:
            await asyncio.gather(*list(self._renders), return_exceptions=True)

    def _bubble(self, message: Message) -> MessageBubble:
        bubble = MessageBubble.from_message(
            message,
            show_timestamp=self.show_timestamps,
            show_reasoning=self.show_reasoning,
        )
        bubble.add_class(f"message-{message.role}")
        if self.styler is not None:
            self.styler(bubble)
        return bubble

    @property
    def bubbles(self) -> list[MessageBubble]:
        """Committed bubbles in display order."""
        return [bubble for bubble in self.query(MessageBubble) if not bubble.streaming]

    def bubble_for(self, message_id: str) -> MessageBubble | None:
        for bubble in self.query(MessageBubble):
            if bubble.message_id == message_id:
                return bubble
        return None

    def _first_stream(self) -> MessageBubble | None:
        return next(iter(self._streams.values()), None)

    def _stream_for_model(self, model_id: str | None) -> str | None:
        for key, bubble in self._streams.items():
            if bubble.model_id == model_id and bubble.error is None:
                return key
        return None

    async def add_messages(self, messages: Iterable[Message]) -> None:
        for message in messages:
            if self.bubble_for(message.id) is not None:
                continue
            key = self._stream_for_model(message.model_id) if message.role == "assistant" else None
            if key is not None:
                self._streams.pop(key).bind_message(
                    message, show_timestamp=self.show_timestamps
                )
                continue
            anchor = self._first_stream()
            if anchor is not None:
                await self.mount(self._bubble(message), before=anchor)
            else:
                await self.mount(self._bubble(message))

    async def prepend_messages(self, messages: Iterable[Message]) -> None:
        bubbles = [self._bubble(m) for m in messages if self.bubble_for(m.id) is None]
        if not bubbles:
            return
        if self.children:
            await self.mount(*bubbles, before=0)
        else:
            await self.mount(*bubbles)

    async def render_messages(self, messages: Iterable[Message]) -> None:
        """Replace every bubble, streams included."""
        self._streams.clear()
        await self.remove_children()
        bubbles = [self._bubble(m) for m in messages]
        if bubbles:
            await self.mount(*bubbles)

    async def remove_message(self, message_id: str) -> None:
        bubble = self.bubble_for(message_id)
        if bubble is not None:
            await bubble.remove()

    def update_message(self, message: Message) -> None:
        bubble = self.bubble_for(message.id)
        if bubble is not None:
            bubble.set_rating(message.rating)

    async def apply_change(
        self, kind: ChangeKind, affected: list[Message], ordered: list[Message]
    ) -> None:
        """Mirror one store change. ``ordered`` is the store content afterwards."""
        if kind == "append":
            await self.add_messages(affected)
        elif kind == "prepend":
            await self.prepend_messages(affected)
        elif kind == "remove":
            for message in affected:
                await self.remove_message(message.id)
        elif kind == "update":
            for message in affected:
                self.update_message(message)
        else:
            await self.render_messages(ordered)

    async def upsert_stream(self, snapshot: ChannelSnapshot) -> MessageBubble:
        """Create or refresh the in-flight bubble of one channel."""
        bubble = self._streams.get(snapshot.channel_id)
        if bubble is None:
            bubble = MessageBubble(
                content=snapshot.text,
                role="assistant",
                model_id=snapshot.model_id,
                reasoning=snapshot.reasoning,
                stream_key=snapshot.channel_id,
                show_reasoning=self.show_reasoning,
            )
            bubble.add_class("message-assistant")
            if self.styler is not None:
                self.styler(bubble)
            self._streams[snapshot.channel_id] = bubble
            await self.mount(bubble)
        else:
            bubble.set_content(snapshot.text, snapshot.reasoning)
        return bubble

    async def finish_streams(self, failures: dict[str, str] | None = None) -> None:
        """Settle in-flight bubbles once a send is over.

        Bubbles of failed models that produced text stay visible, marked with
        the failure reason. Every other leftover is removed.
        """
        failures = failures or {}
        leftovers = list(self._streams.values())
        self._streams.clear()
        for bubble in leftovers:
            reason = failures.get(bubble.model_id or "")
            if reason is not None and bubble.message_content.strip():
                bubble.mark_failed(reason)
            else:
                await bubble.remove()


class ConversationViewport:
    """Expose a :class:`ConversationView` as a scroll-anchor viewport."""

    def __init__(self, view: ConversationView) -> None:
        self.view = view

    @property
    def scroll_offset(self) -> float:
        return float(self.view.scroll_y)

    @property
    def content_height(self) -> float:
        return float(self.view.virtual_size.height)

    @property
    def viewport_height(self) -> float:
        return float(self.view.scrollable_content_region.height)

    def scroll_to(self, offset: float, *, animate: bool = False) -> None:
        self.view.scroll_to(y=max(0.0, offset), animate=animate)

    async def settle(self) -> None:
        """Wait for queued renders and the layout pass that follows them."""
        await self.view.wait_for_renders()
        refreshed: asyncio.Future[None] = asyncio.get_running_loop().create_future()

        def _resolve() -> None:
            if not refreshed.done():
                refreshed.set_result(None)

        self.view.call_after_refresh(_resolve)
        await refreshed
