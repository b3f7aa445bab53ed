"""One playground tab's engine: store, dispatcher, history and title wiring."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
import logging
from typing import Any

from .client import GatewayClient
from .dispatcher import ComposeBuffer, DispatchOutcome, GenerationConfig, MultiModelDispatcher
from .exceptions import GatewayConsoleError
from .history import HistoryLoader
from .message_store import MessageStore
from .models import Message, Rating, Tab
from .scroll import ScrollAnchorController
from .task_manager import TaskManager
from .title import TitleGenerator

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlaygroundSettings:
    page_size: int = 20
    update_interval_seconds: float = 0.1
    default_temperature: float = 0.7
    default_history_limit: int = 10
    summary_model: str | None = None
    title_min_assistant_chars: int = 10
    scroll_top_threshold: float = 2
    scroll_bottom_threshold: float = 3

    @classmethod
    def from_config(cls, playground: dict[str, Any]) -> PlaygroundSettings:
        return cls(
            page_size=int(playground.get("page_size", 20)),
            update_interval_seconds=int(playground.get("stream_update_interval_ms", 100)) / 1000,
            default_temperature=float(playground.get("default_temperature", 0.7)),
            default_history_limit=int(playground.get("default_history_limit", 10)),
            summary_model=str(playground.get("summary_model") or "").strip() or None,
            title_min_assistant_chars=int(playground.get("title_min_assistant_chars", 10)),
            scroll_top_threshold=float(playground.get("scroll_top_threshold", 2)),
            scroll_bottom_threshold=float(playground.get("scroll_bottom_threshold", 3)),
        )


class PlaygroundSession:
    """Own the engine behind one tab.

    Tab metadata changes (conversation binding, title, models, scroll
    position) are announced through ``on_tab_changed`` so the caller can
    persist them.
    """

    def __init__(
        self,
        tab: Tab,
        client: GatewayClient,
        settings: PlaygroundSettings | None = None,
        *,
        task_manager: TaskManager | None = None,
        title_generator: TitleGenerator | None = None,
    ) -> None:
        self.tab = tab
        self.settings = settings or PlaygroundSettings()
        self._client = client
        self.tasks = task_manager or TaskManager()
        self.store = MessageStore(tab.messages)
        tab.messages = []
        self.compose = ComposeBuffer()
        self.dispatcher = MultiModelDispatcher(
            client,
            self.store,
            conversation_id=tab.conversation_id,
            compose=self.compose,
            task_manager=self.tasks,
            update_interval_seconds=self.settings.update_interval_seconds,
        )
        self.history = HistoryLoader(client, self.store, page_size=self.settings.page_size)
        self.history.bind(tab.conversation_id, self.store.message_count)
        self.title_generator = title_generator or TitleGenerator(
            client,
            summary_model=self.settings.summary_model,
            min_assistant_chars=self.settings.title_min_assistant_chars,
            task_manager=self.tasks,
        )
        self.scroll: ScrollAnchorController | None = None
        self._tab_listeners: list[Callable[[Tab], None]] = []
        self.dispatcher.on_conversation_bound(self._on_conversation_bound)

    @property
    def conversation_id(self) -> str | None:
        return self.tab.conversation_id

    @property
    def title(self) -> str:
        return self.tab.title

    @property
    def is_sending(self) -> bool:
        return self.dispatcher.is_sending

    def on_tab_changed(self, callback: Callable[[Tab], None]) -> None:
        self._tab_listeners.append(callback)

    def _tab_changed(self) -> None:
        for callback in list(self._tab_listeners):
            callback(self.tab)

    def _on_conversation_bound(self, conversation_id: str) -> None:
        self.tab.conversation_id = conversation_id
        # A conversation created by this session has nothing older to page in.
        self.history.bind(conversation_id, self.store.message_count)
        self.history.cursor.exhausted = True
        self._tab_changed()

    def apply_title(self, title: str) -> None:
        normalized = title.strip()
        if not normalized or normalized == self.tab.title:
            return
        self.tab.title = normalized
        self._tab_changed()

    def set_models(self, model_ids: list[str]) -> None:
        self.tab.selected_model_ids = [m for m in dict.fromkeys(model_ids) if m]
        self._tab_changed()

    def generation_config(self) -> GenerationConfig:
        temperature = self.tab.temperature
        return GenerationConfig(
            temperature=self.settings.default_temperature if temperature is None else temperature,
            history_limit=self.tab.history_limit,
        )

    async def send(self, text: str | None = None) -> DispatchOutcome:
        """Send the compose buffer (or ``text``) to the tab's selected models."""
        turn = self.compose.text if text is None else text
        if text is not None:
            self.compose.text = text
        try:
            return await self.dispatcher.send(
                turn, self.tab.selected_model_ids, self.generation_config()
            )
        finally:
            self.evaluate_title()

    async def stop(self) -> bool:
        return await self.dispatcher.stop()

    def evaluate_title(self) -> bool:
        return self.title_generator.maybe_generate(self)

    async def open_conversation(self, conversation_id: str, title: str = "") -> list[Message]:
        """Switch the tab to an existing conversation and load its newest page."""
        self.tab.conversation_id = conversation_id
        if title.strip():
            self.tab.title = title.strip()
        self.tab.scroll_position = None
        self.dispatcher.bind_conversation(conversation_id, notify=False)
        self.store.replace_messages([])
        self.history.bind(conversation_id, 0)
        self._tab_changed()
        loaded = await self.reload()
        return loaded

    async def reload(self) -> list[Message]:
        """Fetch the newest page of the bound conversation into an empty store."""
        if self.tab.conversation_id is None:
            return []
        self.store.replace_messages([])
        loaded = await self.history.load_latest()
        self.evaluate_title()
        return loaded or []

    def new_conversation(self) -> None:
        """Detach from the current conversation; the next send creates a new one."""
        self.tab.conversation_id = None
        self.tab.title = "New Chat"
        self.tab.scroll_position = None
        self.dispatcher.bind_conversation(None, notify=False)
        self.history.bind(None)
        self.store.clear()
        self.compose.clear()
        self._tab_changed()

    async def rate(self, message_id: str, rating: Rating | None) -> bool:
        """Rate an assistant message; the local change is reverted if the gateway refuses."""
        message = self.store.get(message_id)
        if message is None or not message.rateable:
            return False
        previous = message.rating
        self.store.set_rating(message_id, rating)
        try:
            await self._client.rate_message(message_id, rating)
        except GatewayConsoleError as exc:
            self.store.set_rating(message_id, previous)
            LOGGER.warning(
                "session.rate.failed",
                extra={
                    "event": "session.rate.failed",
                    "message_id": message_id,
                    "error_type": exc.__class__.__name__,
                },
            )
            return False
        return True

    async def submit_feedback(self, message_id: str, text: str) -> bool:
        message = self.store.get(message_id)
        if message is None or not message.rateable or not text.strip():
            return False
        try:
            await self._client.submit_feedback(message_id, text.strip())
        except GatewayConsoleError as exc:
            LOGGER.warning(
                "session.feedback.failed",
                extra={
                    "event": "session.feedback.failed",
                    "message_id": message_id,
                    "error_type": exc.__class__.__name__,
                },
            )
            return False
        self.store.set_feedback(message_id, text)
        return True

    async def rename(self, title: str) -> bool:
        """Rename locally, then persist to the gateway when a conversation exists."""
        normalized = title.strip()
        if not normalized:
            return False
        self.apply_title(normalized)
        conversation_id = self.tab.conversation_id
        if conversation_id is None:
            return True
        # A manual title must never be replaced by a generated one.
        self.title_generator.handled.add(conversation_id)
        try:
            await self._client.rename_conversation(conversation_id, normalized)
        except GatewayConsoleError as exc:
            LOGGER.warning(
                "session.rename.failed",
                extra={
                    "event": "session.rename.failed",
                    "conversation_id": conversation_id,
                    "error_type": exc.__class__.__name__,
                },
            )
            return False
        return True

    def last_assistant_message(self) -> Message | None:
        for message in reversed(self.store.messages):
            if message.role == "assistant":
                return message
        return None

    def attach_scroll(self, controller: ScrollAnchorController) -> None:
        self.scroll = controller
        last = self.store.last_message
        controller.mount(self.tab.scroll_position, last.id if last else None)

    def detach_scroll(self) -> None:
        if self.scroll is None:
            return
        position = self.scroll.teardown()
        if position is not None:
            self.tab.scroll_position = position
            self._tab_changed()
        self.scroll = None

    async def close(self) -> None:
        self.detach_scroll()
        await self.dispatcher.stop()
        await self.tasks.cancel_all()
