"""Ordered, deduplicated message history for one playground tab."""

from __future__ import annotations

from bisect import bisect_right
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
import logging
from typing import Literal

from .models import Message, Rating

LOGGER = logging.getLogger(__name__)

ChangeKind = Literal["append", "prepend", "remove", "update", "clear", "replace"]
ChangeListener = Callable[[ChangeKind, list[Message]], None]


def _created_key(message: Message):
    return message.created_at


@dataclass
class StagedAppend:
    """Handle for an optimistic append that is later committed or rolled back."""

    message: Message
    committed: bool = False
    rolled_back: bool = False

    @property
    def open(self) -> bool:
        return not (self.committed or self.rolled_back)


class MessageStore:
    """Hold committed history unique by id and ascending by ``created_at``.

    Writers are the dispatcher (staged user turn, committed replies), the
    history loader (older pages) and explicit user edits (rating, feedback,
    clear). Streaming text never lands here until its channel is terminal.
    """

    def __init__(self, messages: Iterable[Message] = ()) -> None:
        self._messages: list[Message] = []
        self._ids: set[str] = set()
        self._listeners: list[ChangeListener] = []
        if messages:
            self._load(messages)

    @property
    def messages(self) -> list[Message]:
        """Return a shallow copy of the ordered history."""
        return list(self._messages)

    @property
    def message_count(self) -> int:
        return len(self._messages)

    @property
    def last_message(self) -> Message | None:
        return self._messages[-1] if self._messages else None

    @property
    def first_message(self) -> Message | None:
        return self._messages[0] if self._messages else None

    def __len__(self) -> int:
        return len(self._messages)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._ids

    def get(self, message_id: str) -> Message | None:
        for message in self._messages:
            if message.id == message_id:
                return message
        return None

    def subscribe(self, listener: ChangeListener) -> None:
        """Register a callback invoked with (kind, affected messages) after each change."""
        self._listeners.append(listener)

    def unsubscribe(self, listener: ChangeListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def _notify(self, kind: ChangeKind, affected: list[Message]) -> None:
        for listener in list(self._listeners):
            try:
                listener(kind, affected)
            except Exception:  # noqa: BLE001 - a broken observer must not corrupt the store.
                LOGGER.exception(
                    "store.listener.failed",
                    extra={"event": "store.listener.failed", "kind": kind},
                )

    def _load(self, messages: Iterable[Message]) -> list[Message]:
        accepted: list[Message] = []
        for message in messages:
            if message.id in self._ids:
                continue
            self._ids.add(message.id)
            accepted.append(message)
        self._messages.extend(accepted)
        # list.sort is stable, so equal timestamps keep arrival order.
        self._messages.sort(key=_created_key)
        return accepted

    def _insert(self, message: Message) -> None:
        last = self.last_message
        if last is None or last.created_at <= message.created_at:
            self._messages.append(message)
        else:
            index = bisect_right(self._messages, message.created_at, key=_created_key)
            self._messages.insert(index, message)
        self._ids.add(message.id)

    def append(self, message: Message) -> bool:
        """Append a message, keeping time order. Returns False for a duplicate id."""
        if message.id in self._ids:
            LOGGER.debug(
                "store.append.duplicate",
                extra={"event": "store.append.duplicate", "message_id": message.id},
            )
            return False
        self._insert(message)
        self._notify("append", [message])
        return True

    def extend(self, messages: Iterable[Message]) -> list[Message]:
        """Append several messages at once and notify observers a single time."""
        added: list[Message] = []
        for message in messages:
            if message.id in self._ids:
                continue
            self._insert(message)
            added.append(message)
        if added:
            self._notify("append", added)
        return added

    def stage(self, message: Message) -> StagedAppend:
        """Optimistically append a message that may later be rolled back."""
        if not self.append(message):
            raise ValueError(f"Message id {message.id!r} is already in the store.")
        return StagedAppend(message=message)

    def commit(self, staged: StagedAppend, replies: Iterable[Message] = ()) -> list[Message]:
        """Keep a staged message and append its replies."""
        if not staged.open:
            raise ValueError("Staged append is already resolved.")
        staged.committed = True
        return self.extend(replies)

    def rollback(self, staged: StagedAppend) -> bool:
        """Remove a staged message, restoring the pre-stage history."""
        if not staged.open:
            raise ValueError("Staged append is already resolved.")
        staged.rolled_back = True
        return self.remove(staged.message.id)

    def remove(self, message_id: str) -> bool:
        if message_id not in self._ids:
            return False
        for index, message in enumerate(self._messages):
            if message.id == message_id:
                del self._messages[index]
                self._ids.discard(message_id)
                self._notify("remove", [message])
                return True
        return False

    def prepend_page(self, messages: Iterable[Message]) -> list[Message]:
        """Merge an older page (ascending order) ahead of the current history.

        Ids already present are dropped. Messages that turn out to be newer than
        the current head are merged into place instead of blindly prepended.
        """
        fresh = [m for m in messages if m.id not in self._ids]
        # Dedup inside the page itself, keeping the first occurrence.
        seen: set[str] = set()
        unique: list[Message] = []
        for message in fresh:
            if message.id not in seen:
                seen.add(message.id)
                unique.append(message)
        if not unique:
            return []

        unique.sort(key=_created_key)
        head = self.first_message
        if head is None or unique[-1].created_at <= head.created_at:
            self._messages[:0] = unique
            self._ids.update(seen)
        else:
            self._load(unique)
        self._notify("prepend", unique)
        return unique

    def replace_messages(self, messages: Iterable[Message]) -> None:
        """Replace the whole history (e.g. after a conversation switch)."""
        self._messages = []
        self._ids = set()
        self._load(messages)
        self._notify("replace", self.messages)

    def clear(self) -> None:
        removed = self.messages
        self._messages = []
        self._ids = set()
        self._notify("clear", removed)

    def _update(self, message_id: str, **changes: object) -> Message | None:
        for index, message in enumerate(self._messages):
            if message.id == message_id:
                updated = replace(message, **changes)  # type: ignore[arg-type]
                self._messages[index] = updated
                self._notify("update", [updated])
                return updated
        return None

    def set_rating(self, message_id: str, rating: Rating | None) -> Message | None:
        return self._update(message_id, rating=rating)

    def set_feedback(self, message_id: str, feedback: str | None) -> Message | None:
        normalized = feedback.strip() if isinstance(feedback, str) else None
        return self._update(message_id, feedback=normalized or None)

    def first_exchange(self) -> tuple[Message, Message] | None:
        """Return the first user message and the first assistant reply after it."""
        user: Message | None = None
        for message in self._messages:
            if user is None and message.role == "user":
                user = message
            elif user is not None and message.role == "assistant":
                return user, message
        return None
