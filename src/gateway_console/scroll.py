"""Scroll anchoring for a conversation viewport.

The controller is UI agnostic: it drives any object implementing
:class:`Viewport`. It keeps the reader's place when older history is
prepended, follows new messages while the reader is at the bottom, and
decides when a "jump to latest" affordance should be shown.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Coroutine
import logging
from typing import Any, Protocol

from .models import Message

LOGGER = logging.getLogger(__name__)

DEFAULT_TOP_THRESHOLD = 50.0
DEFAULT_BOTTOM_THRESHOLD = 100.0


class Viewport(Protocol):
    @property
    def scroll_offset(self) -> float: ...

    @property
    def content_height(self) -> float: ...

    @property
    def viewport_height(self) -> float: ...

    def scroll_to(self, offset: float, *, animate: bool = False) -> None: ...

    async def settle(self) -> None: ...


class OlderPageSource(Protocol):
    @property
    def has_more(self) -> bool: ...

    @property
    def loading(self) -> bool: ...

    async def load_older_page(self) -> list[Message] | None: ...


Spawner = Callable[[Coroutine[Any, Any, Any]], Any]


class ScrollAnchorController:
    def __init__(
        self,
        viewport: Viewport,
        loader: OlderPageSource | None = None,
        *,
        top_threshold: float = DEFAULT_TOP_THRESHOLD,
        bottom_threshold: float = DEFAULT_BOTTOM_THRESHOLD,
        spawn: Spawner | None = None,
    ) -> None:
        self.viewport = viewport
        self.loader = loader
        self.top_threshold = top_threshold
        self.bottom_threshold = bottom_threshold
        self._spawn = spawn
        self.stuck_to_bottom = True
        self.show_scroll_to_bottom = False
        self.last_message_id: str | None = None
        self.current_offset = 0.0
        self._loading = False
        self._affordance_callbacks: list[Callable[[bool], None]] = []

    def on_affordance_change(self, callback: Callable[[bool], None]) -> None:
        self._affordance_callbacks.append(callback)

    def _set_affordance(self, visible: bool) -> None:
        if visible == self.show_scroll_to_bottom:
            return
        self.show_scroll_to_bottom = visible
        for callback in list(self._affordance_callbacks):
            callback(visible)

    @property
    def bottom_offset(self) -> float:
        return max(0.0, self.viewport.content_height - self.viewport.viewport_height)

    @property
    def loading(self) -> bool:
        return self._loading or bool(self.loader is not None and self.loader.loading)

    def mount(
        self,
        saved_position: float | None,
        last_message_id: str | None = None,
    ) -> None:
        """Restore the saved offset, or start at the bottom."""
        # Existing messages at mount time are not "new".
        self.last_message_id = last_message_id
        if saved_position is not None:
            self.viewport.scroll_to(saved_position, animate=False)
            self.current_offset = saved_position
        elif last_message_id is not None:
            self.viewport.scroll_to(self.bottom_offset, animate=False)
            self.current_offset = self.bottom_offset

    def teardown(self) -> float | None:
        """Return the offset worth persisting, or None when at the very top."""
        offset = self.viewport.scroll_offset
        return offset if offset > 0 else None

    def on_scroll(self, offset: float, message_count: int) -> bool:
        """React to a user scroll. Returns True when an older page load was scheduled."""
        self.current_offset = offset
        distance_from_bottom = (
            self.viewport.content_height - offset - self.viewport.viewport_height
        )
        at_bottom = distance_from_bottom < self.bottom_threshold
        self.stuck_to_bottom = at_bottom
        self._set_affordance(not at_bottom)

        if (
            offset < self.top_threshold
            and message_count > 0
            and self.loader is not None
            and self.loader.has_more
            and not self.loading
        ):
            coro = self.load_older_preserving_anchor()
            if self._spawn is not None:
                self._spawn(coro)
            else:
                asyncio.ensure_future(coro)
            return True
        return False

    async def load_older_preserving_anchor(self) -> list[Message] | None:
        """Prepend an older page without moving the content under the reader."""
        if self.loader is None or self._loading:
            return None
        self._loading = True
        try:
            old_height = self.viewport.content_height
            old_offset = self.viewport.scroll_offset
            inserted = await self.loader.load_older_page()
            if not inserted:
                return inserted
            await self.viewport.settle()
            new_height = self.viewport.content_height
            target = old_offset + (new_height - old_height)
            self.viewport.scroll_to(target, animate=False)
            self.current_offset = target
            LOGGER.debug(
                "scroll.anchor.preserved",
                extra={
                    "event": "scroll.anchor.preserved",
                    "inserted": len(inserted),
                    "height_delta": new_height - old_height,
                },
            )
            return inserted
        finally:
            self._loading = False

    def on_messages_changed(self, last_message_id: str | None) -> None:
        """Follow a new last message, or keep pinned to the bottom while stuck."""
        if last_message_id is None:
            return
        if last_message_id != self.last_message_id:
            self.last_message_id = last_message_id
            self.stuck_to_bottom = True
            self._set_affordance(False)
            self.viewport.scroll_to(self.bottom_offset, animate=True)
        elif self.stuck_to_bottom:
            self.viewport.scroll_to(self.bottom_offset, animate=False)

    def on_content_grew(self) -> None:
        """Keep streaming text in view while the reader is at the bottom."""
        if self.stuck_to_bottom:
            self.viewport.scroll_to(self.bottom_offset, animate=False)

    def scroll_to_bottom(self) -> None:
        self.stuck_to_bottom = True
        self._set_affordance(False)
        self.viewport.scroll_to(self.bottom_offset, animate=True)
