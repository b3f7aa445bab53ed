"""Backward pagination of a conversation's history into the message store."""

from __future__ import annotations

import logging
from typing import Protocol

from .exceptions import GatewayConsoleError
from .message_store import MessageStore
from .models import Message, Page, PageCursor

LOGGER = logging.getLogger(__name__)

NEWEST_FIRST = "-created_at"


class MessagePager(Protocol):
    async def list_messages(
        self,
        conversation_id: str,
        page: int = 1,
        page_size: int = 20,
        sort: str = NEWEST_FIRST,
    ) -> Page[Message]: ...


class HistoryLoader:
    """Load older pages on demand; at most one load per binding is in flight.

    Every :meth:`bind` starts a new binding. A page requested under an earlier
    binding is dropped when it arrives and never blocks loads for the new one.
    """

    def __init__(
        self,
        client: MessagePager,
        store: MessageStore,
        page_size: int = 20,
    ) -> None:
        self._client = client
        self._store = store
        self.cursor = PageCursor(page_size=max(1, page_size))
        self.conversation_id: str | None = None
        self._generation = 0
        self._loading_generation: int | None = None

    @property
    def loading(self) -> bool:
        """True while a page for the current binding is in flight."""
        return self._loading_generation == self._generation

    @property
    def has_more(self) -> bool:
        return self.conversation_id is not None and not self.cursor.exhausted

    def bind(self, conversation_id: str | None, seeded_count: int = 0) -> None:
        """Attach to a conversation and reposition the cursor.

        ``seeded_count`` is how many of the newest messages are already in the
        store (for example the initial page loaded when a tab opens).
        """
        if conversation_id != self.conversation_id:
            LOGGER.debug(
                "history.bind",
                extra={
                    "event": "history.bind",
                    "conversation_id": conversation_id,
                    "seeded": seeded_count,
                },
            )
        self.conversation_id = conversation_id
        # Any page still in flight belongs to the previous binding.
        self._generation += 1
        self.cursor.reset(seeded_count)

    async def load_latest(self) -> list[Message] | None:
        """Fetch the newest page into an empty store and seed the cursor from it."""
        if self.conversation_id is None:
            return None
        self.bind(self.conversation_id, 0)
        return await self.load_older_page()

    async def load_older_page(self) -> list[Message] | None:
        """Fetch the next older page and merge it ahead of the store.

        Returns the newly inserted messages, or ``None`` when nothing was
        attempted or the fetch failed.
        """
        conversation_id = self.conversation_id
        if self.loading or conversation_id is None or self.cursor.exhausted:
            return None

        generation = self._generation
        self._loading_generation = generation
        page_number = self.cursor.next_page
        try:
            page = await self._client.list_messages(
                conversation_id,
                page=page_number,
                page_size=self.cursor.page_size,
                sort=NEWEST_FIRST,
            )
        except GatewayConsoleError as exc:
            LOGGER.warning(
                "history.page.failed",
                extra={
                    "event": "history.page.failed",
                    "conversation_id": conversation_id,
                    "page": page_number,
                    "error_type": exc.__class__.__name__,
                },
            )
            return None
        finally:
            if self._loading_generation == generation:
                self._loading_generation = None

        if generation != self._generation:
            LOGGER.debug(
                "history.page.stale",
                extra={
                    "event": "history.page.stale",
                    "conversation_id": conversation_id,
                    "page": page_number,
                },
            )
            return None

        received = len(page.items)
        self.cursor.advance(received)
        inserted = self._store.prepend_page(list(reversed(page.items)))
        LOGGER.debug(
            "history.page.loaded",
            extra={
                "event": "history.page.loaded",
                "conversation_id": conversation_id,
                "page": page_number,
                "received": received,
                "inserted": len(inserted),
                "exhausted": self.cursor.exhausted,
            },
        )
        return inserted
