"""Best-effort background title generation after a conversation's first exchange."""

from __future__ import annotations

import logging
from typing import Protocol

from .message_store import MessageStore
from .models import DEFAULT_TITLES, Message
from .task_manager import TaskManager

LOGGER = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 80


class TitleClient(Protocol):
    async def summarize_title(
        self, model: str, user_content: str, assistant_content: str
    ) -> str: ...

    async def rename_conversation(self, conversation_id: str, title: str) -> None: ...


class TitleTarget(Protocol):
    """The slice of a playground session the generator reads and writes."""

    @property
    def conversation_id(self) -> str | None: ...

    @property
    def title(self) -> str: ...

    @property
    def store(self) -> MessageStore: ...

    @property
    def is_sending(self) -> bool: ...

    def apply_title(self, title: str) -> None: ...


def is_default_title(title: str | None) -> bool:
    return (title or "").strip().lower() in DEFAULT_TITLES


def clean_title(raw: str) -> str:
    """Collapse whitespace, strip quotes and clamp the length."""
    title = " ".join(raw.split()).strip().strip("\"'").strip()
    if len(title) > MAX_TITLE_LENGTH:
        title = title[: MAX_TITLE_LENGTH - 1].rstrip() + "…"
    return title


class TitleGenerator:
    """Fire at most one title job per conversation id for this generator's lifetime."""

    def __init__(
        self,
        client: TitleClient,
        *,
        summary_model: str | None = None,
        min_assistant_chars: int = 10,
        task_manager: TaskManager | None = None,
    ) -> None:
        self._client = client
        self.summary_model = (summary_model or "").strip() or None
        self.min_assistant_chars = max(1, min_assistant_chars)
        self._tasks = task_manager or TaskManager()
        self.handled: set[str] = set()

    def _first_pair(self, target: TitleTarget) -> tuple[Message, Message] | None:
        pair = target.store.first_exchange()
        if pair is None:
            return None
        user, assistant = pair
        if len(assistant.content.strip()) < self.min_assistant_chars:
            return None
        return pair

    def is_eligible(self, target: TitleTarget) -> bool:
        conversation_id = target.conversation_id
        return (
            conversation_id is not None
            and conversation_id not in self.handled
            and is_default_title(target.title)
            and not target.is_sending
            and self._first_pair(target) is not None
        )

    def maybe_generate(self, target: TitleTarget) -> bool:
        """Schedule a title job when ``target`` qualifies. Returns True when scheduled."""
        conversation_id = target.conversation_id
        pair = self._first_pair(target)
        if conversation_id is None or pair is None or not self.is_eligible(target):
            return False
        user, assistant = pair
        model = self.summary_model or assistant.model_id
        # Mark before any await so re-evaluation cannot schedule a second job.
        self.handled.add(conversation_id)
        if not model:
            LOGGER.info(
                "title.skipped.no_model",
                extra={"event": "title.skipped.no_model", "conversation_id": conversation_id},
            )
            return False
        self._tasks.spawn(
            self._generate(target, conversation_id, model, user.content, assistant.content),
            name=f"title:{conversation_id}",
        )
        return True

    async def _generate(
        self,
        target: TitleTarget,
        conversation_id: str,
        model: str,
        user_content: str,
        assistant_content: str,
    ) -> str | None:
        try:
            raw = await self._client.summarize_title(model, user_content, assistant_content)
        except Exception as exc:  # noqa: BLE001 - title generation never surfaces errors.
            LOGGER.warning(
                "title.summarize.failed",
                extra={
                    "event": "title.summarize.failed",
                    "conversation_id": conversation_id,
                    "error_type": exc.__class__.__name__,
                },
            )
            return None

        title = clean_title(raw or "")
        if not title:
            return None
        if target.conversation_id == conversation_id:
            target.apply_title(title)
        try:
            await self._client.rename_conversation(conversation_id, title)
        except Exception as exc:  # noqa: BLE001 - the local title still stands.
            LOGGER.warning(
                "title.rename.failed",
                extra={
                    "event": "title.rename.failed",
                    "conversation_id": conversation_id,
                    "error_type": exc.__class__.__name__,
                },
            )
        else:
            LOGGER.info(
                "title.applied",
                extra={"event": "title.applied", "conversation_id": conversation_id},
            )
        return title
