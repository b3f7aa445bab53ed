"""Main Textual application: a tabbed multi-model playground for the gateway."""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from functools import partial
import logging
from pathlib import Path
import sys
from typing import Any

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Container
from textual.widgets import Button, Footer, Header, Input

from .channel import ChannelSnapshot
from .client import GatewayClient
from .config import load_config
from .exceptions import (
    AggregateSendError,
    DispatchBusyError,
    GatewayConsoleError,
    SendValidationError,
)
from .logging_utils import configure_logging
from .message_store import ChangeKind
from .models import Conversation, Message, Rating, Tab
from .persistence import PersistenceError, TabStatePersistence
from .registry import ModelRegistry
from .screens import (
    ConversationPickerScreen,
    InfoScreen,
    ModelPickerScreen,
    TextPromptScreen,
)
from .scroll import ScrollAnchorController
from .session import PlaygroundSession, PlaygroundSettings
from .task_manager import TaskManager
from .widgets.conversation import ConversationView, ConversationViewport
from .widgets.input_box import InputBox
from .widgets.message import MessageBubble
from .widgets.status_bar import StatusBar

LOGGER = logging.getLogger(__name__)

CONVERSATION_PICKER_PAGE_SIZE = 50
UNSAVED_REPLY_HINT = "This reply has no gateway id yet; reopen the conversation to rate it."


class GatewayConsoleApp(App[None]):
    """Playground console: one tab per session, many models per turn."""

    CSS = """
    Screen {
        layout: vertical;
        background: $background;
    }

    #app-root {
        layout: vertical;
        width: 100%;
        height: 1fr;
        background: $background;
    }

    Header {
        border-bottom: solid $panel;
        background: $surface;
    }

    Footer {
        border-top: solid $panel;
        background: $surface;
    }

    #conversation {
        height: 1fr;
        padding: 1;
    }

    InputBox {
        height: auto;
        padding: 0 1 1 1;
        border-top: solid $panel;
        background: $surface;
    }

    #message_input {
        width: 1fr;
    }

    #send_button {
        margin-left: 1;
        min-width: 10;
    }

    #stop_button {
        margin-left: 1;
        min-width: 10;
    }

    #input_row {
        height: auto;
    }

    #status_bar {
        height: auto;
        padding: 0 1;
        border-top: solid $panel;
        background: $surface;
    }

    MessageBubble {
        width: 85%;
        margin: 1 0;
        padding: 1 2;
        border: round $panel;
    }

    .message-user {
        align-horizontal: right;
        background: $primary;
    }

    .message-assistant {
        align-horizontal: left;
        background: $surface;
    }
    """

    DEFAULT_ACTION_DESCRIPTIONS: dict[str, str] = {
        "send_message": "Send",
        "stop_stream": "Stop",
        "quit": "Quit",
        "new_tab": "New Tab",
        "next_tab": "Next Tab",
        "close_tab": "Close Tab",
        "select_models": "Models",
        "open_conversation": "Conversations",
        "rename_conversation": "Rename",
        "new_conversation": "New Chat",
        "rate_up": "👍",
        "rate_down": "👎",
        "scroll_to_bottom": "Latest",
        "feedback": "Feedback",
        "show_help": "Help",
    }

    def __init__(
        self,
        config_path: Path | None = None,
        *,
        client: GatewayClient | None = None,
    ) -> None:
        self.config = load_config(config_path)
        self.window_title = str(self.config["app"]["title"])
        configure_logging(self.config["logging"])
        LOGGER.info(
            "app.python",
            extra={
                "event": "app.python",
                "executable": sys.executable,
                "version": sys.version.split()[0],
            },
        )

        gateway_cfg = self.config["gateway"]
        self.client = client or GatewayClient(
            base_url=str(gateway_cfg["base_url"]),
            timeout=float(gateway_cfg["timeout"]),
            auth_header=str(gateway_cfg.get("auth_header") or "") or None,
        )
        self._default_models: list[str] = list(gateway_cfg.get("default_models") or [])
        self.registry = ModelRegistry(self.client)
        self.playground_settings = PlaygroundSettings.from_config(self.config["playground"])

        persistence_cfg = self.config["persistence"]
        self.persistence = TabStatePersistence(
            enabled=bool(persistence_cfg["enabled"]),
            path=str(persistence_cfg["tabs_path"]),
        )
        self._task_manager = TaskManager()
        self._connection_state = "unknown"
        self.sessions: list[PlaygroundSession] = []
        self._active_index = 0
        self._restore_tabs()

        # Cached widget references, populated in on_mount() after compose().
        self._w_input: Input | None = None
        self._w_input_box: InputBox | None = None
        self._w_status: StatusBar | None = None
        self._w_conversation: ConversationView | None = None

        self._binding_specs = self._binding_specs_from_config(self.config)
        super().__init__()

    @classmethod
    def _binding_specs_from_config(
        cls, config: dict[str, dict[str, Any]]
    ) -> list[Binding]:
        keybinds = config.get("keybinds", {})
        bindings: list[Binding] = []
        for action_name in cls.DEFAULT_ACTION_DESCRIPTIONS:
            binding_key = keybinds.get(action_name)
            if isinstance(binding_key, str) and binding_key.strip():
                bindings.append(
                    Binding(
                        key=binding_key.strip(),
                        action=action_name,
                        description=cls.DEFAULT_ACTION_DESCRIPTIONS[action_name],
                        show=True,
                    )
                )
        return bindings

    # -- tabs -----------------------------------------------------------------

    def _new_tab(self) -> Tab:
        return Tab(
            selected_model_ids=list(self._default_models),
            history_limit=self.playground_settings.default_history_limit,
        )

    def _make_session(self, tab: Tab) -> PlaygroundSession:
        session = PlaygroundSession(tab, self.client, self.playground_settings)
        session.on_tab_changed(self._on_tab_changed)
        session.store.subscribe(partial(self._on_store_change, session))
        session.dispatcher.on_stream_update(partial(self._on_stream_update, session))
        return session

    def _restore_tabs(self) -> None:
        tabs, active_id = self.persistence.load()
        if not tabs:
            tabs = [self._new_tab()]
        self.sessions = [self._make_session(tab) for tab in tabs]
        self._active_index = next(
            (index for index, tab in enumerate(tabs) if tab.id == active_id), 0
        )
        LOGGER.info(
            "app.tabs.restored",
            extra={"event": "app.tabs.restored", "tabs": len(self.sessions)},
        )

    @property
    def active_session(self) -> PlaygroundSession:
        return self.sessions[self._active_index]

    def _is_active(self, session: PlaygroundSession) -> bool:
        return bool(self.sessions) and session is self.active_session

    def _persist_tabs(self) -> None:
        if not self.persistence.enabled or not self.sessions:
            return
        try:
            self.persistence.save(
                [session.tab for session in self.sessions], self.active_session.tab.id
            )
        except PersistenceError as exc:
            LOGGER.warning(
                "app.tabs.save_failed",
                extra={"event": "app.tabs.save_failed", "reason": str(exc)},
            )

    def _on_tab_changed(self, tab: Tab) -> None:
        self._persist_tabs()
        if self.is_running and tab is self.active_session.tab:
            self.sub_title = tab.title
            self._update_status_bar()

    # -- rendering ------------------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        return self._task_manager.spawn(coro)

    def _style_bubble(self, bubble: MessageBubble) -> None:
        """Apply user-configured colours when no Textual theme is active."""
        if getattr(self, "theme", ""):
            return
        ui_cfg = self.config["ui"]
        if bubble.role == "user":
            bubble.styles.background = str(ui_cfg["user_message_color"])
        else:
            bubble.styles.background = str(ui_cfg["assistant_message_color"])
        bubble.styles.border = ("round", str(ui_cfg["border_color"]))

    def _on_store_change(
        self, session: PlaygroundSession, kind: ChangeKind, affected: list[Message]
    ) -> None:
        view = self._w_conversation
        if view is None or not self._is_active(session):
            return
        ordered = session.store.messages
        view.schedule(self._apply_store_change(session, kind, affected, ordered))

    async def _apply_store_change(
        self,
        session: PlaygroundSession,
        kind: ChangeKind,
        affected: list[Message],
        ordered: list[Message],
    ) -> None:
        view = self._w_conversation
        if view is None:
            return
        await view.apply_change(kind, affected, ordered)
        last = ordered[-1].id if ordered else None
        if kind != "prepend":
            view.call_after_refresh(self._follow_messages, session, last)
        self._update_status_bar()

    def _follow_messages(self, session: PlaygroundSession, last_id: str | None) -> None:
        if session.scroll is not None:
            session.scroll.on_messages_changed(last_id)

    def _on_stream_update(self, session: PlaygroundSession, snapshot: ChannelSnapshot) -> None:
        view = self._w_conversation
        if view is None or not self._is_active(session) or snapshot.final:
            return
        view.schedule(self._render_stream(session, snapshot))

    async def _render_stream(self, session: PlaygroundSession, snapshot: ChannelSnapshot) -> None:
        view = self._w_conversation
        if view is None or not session.is_sending:
            return
        await view.upsert_stream(snapshot)
        if session.scroll is not None:
            view.call_after_refresh(session.scroll.on_content_grew)

    async def _show_session(self, session: PlaygroundSession) -> None:
        """Render ``session`` into the conversation view and restore its scroll."""
        view = self._w_conversation
        if view is None:
            return
        if session.conversation_id and session.store.message_count == 0:
            self.sub_title = "Loading conversation..."
            await session.reload()
        view.schedule(view.render_messages(session.store.messages))
        viewport = ConversationViewport(view)
        await viewport.settle()
        controller = ScrollAnchorController(
            viewport,
            session.history,
            top_threshold=self.playground_settings.scroll_top_threshold,
            bottom_threshold=self.playground_settings.scroll_bottom_threshold,
            spawn=self._spawn,
        )
        controller.on_affordance_change(self._on_affordance_change)
        session.attach_scroll(controller)
        self.sub_title = session.title
        if self._w_input_box is not None:
            self._w_input_box.set_sending(session.is_sending)
        if self._w_input is not None:
            self._w_input.value = session.compose.text
        self._on_affordance_change(False)
        self._update_status_bar()

    async def _activate(self, index: int) -> None:
        if not self.sessions:
            return
        index %= len(self.sessions)
        current = self.active_session
        if self._w_input is not None:
            current.compose.text = self._w_input.value
        current.detach_scroll()
        self._active_index = index
        self._persist_tabs()
        await self._show_session(self.active_session)

    def _on_affordance_change(self, visible: bool) -> None:
        if self._w_status is not None:
            self._w_status.set_scroll_affordance(visible)

    def _update_status_bar(self) -> None:
        if self._w_status is None or not self.sessions:
            return
        session = self.active_session
        self._w_status.set_status(
            connection_state=self._connection_state,
            tab_index=self._active_index,
            tab_count=len(self.sessions),
            models=session.tab.selected_model_ids,
            message_count=session.store.message_count,
            streaming=session.is_sending,
        )

    # -- lifecycle ------------------------------------------------------------

    def compose(self) -> ComposeResult:
        """Compose app widgets."""
        ui_cfg = self.config["ui"]
        yield Header(name=self.window_title)
        with Container(id="app-root"):
            yield ConversationView(
                id="conversation",
                show_timestamps=bool(ui_cfg["show_timestamps"]),
                show_reasoning=bool(ui_cfg["show_reasoning"]),
            )
            yield InputBox()
            yield StatusBar(id="status_bar")
        yield Footer()

    async def on_mount(self) -> None:
        """Register runtime keybindings, cache widgets and show the active tab."""
        self.title = self.window_title
        for binding in self._binding_specs:
            self.bind(
                binding.key,
                binding.action,
                description=binding.description,
                show=binding.show,
                key_display=binding.key_display,
            )

        self._w_input = self.query_one("#message_input", Input)
        self._w_input_box = self.query_one(InputBox)
        self._w_status = self.query_one("#status_bar", StatusBar)
        self._w_conversation = self.query_one(ConversationView)
        self._w_conversation.styler = self._style_bubble
        self._update_status_bar()
        self._w_input.focus()

        self._task_manager.add(
            asyncio.create_task(self._prepare_startup()), name="startup"
        )

    async def _prepare_startup(self) -> None:
        """Load the model registry, then render the active tab."""
        self.sub_title = "Connecting to gateway..."
        await self.registry.refresh()
        self._connection_state = "online" if self.registry.loaded else "offline"
        LOGGER.info(
            "app.connection.state",
            extra={"event": "app.connection.state", "connection_state": self._connection_state},
        )
        if self.registry.loaded:
            for session in self.sessions:
                selectable = self.registry.filter_selectable(session.tab.selected_model_ids)
                if selectable != session.tab.selected_model_ids:
                    session.set_models(selectable)
        await self._show_session(self.active_session)
        if not self.registry.loaded:
            self.sub_title = "Gateway unreachable; model list unavailable."

    async def on_unmount(self) -> None:
        """Persist tabs, stop streams and release the HTTP client."""
        if self.sessions:
            self.active_session.detach_scroll()
        self._persist_tabs()
        for session in self.sessions:
            await session.close()
        await self._task_manager.cancel_all()
        await self.client.aclose()

    # -- events ---------------------------------------------------------------

    async def on_input_submitted(self, event: Input.Submitted) -> None:
        if event.input.id == "message_input":
            await self.action_send_message()

    def on_input_changed(self, event: Input.Changed) -> None:
        if event.input.id == "message_input" and self.sessions:
            session = self.active_session
            if not session.is_sending:
                session.compose.text = event.value

    async def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "send_button":
            await self.action_send_message()

    async def on_input_box_stop_requested(self, _message: InputBox.StopRequested) -> None:
        await self.action_stop_stream()

    async def on_status_bar_model_picker_requested(
        self, _message: StatusBar.ModelPickerRequested
    ) -> None:
        await self.action_select_models()

    def on_status_bar_scroll_to_bottom_requested(
        self, _message: StatusBar.ScrollToBottomRequested
    ) -> None:
        self.action_scroll_to_bottom()

    def on_conversation_view_scrolled(self, message: ConversationView.Scrolled) -> None:
        session = self.active_session
        if session.scroll is not None:
            session.scroll.on_scroll(message.offset, session.store.message_count)

    # -- sending --------------------------------------------------------------

    async def action_send_message(self) -> None:
        """Send the compose text of the active tab to its selected models."""
        session = self.active_session
        if session.is_sending:
            self.sub_title = "A response is already streaming for this tab."
            return
        if self._w_input is not None:
            session.compose.text = self._w_input.value
            self._w_input.value = ""
        self._task_manager.add(
            asyncio.create_task(self._run_send(session)), name=f"send:{session.tab.id}"
        )

    def _restore_compose(self, session: PlaygroundSession) -> None:
        if self._is_active(session) and self._w_input is not None and not self._w_input.value:
            self._w_input.value = session.compose.text

    async def _run_send(self, session: PlaygroundSession) -> None:
        if self._is_active(session) and self._w_input_box is not None:
            self._w_input_box.set_sending(True)
        failures: dict[str, str] = {}
        try:
            outcome = await session.send()
        except (SendValidationError, DispatchBusyError) as exc:
            self._restore_compose(session)
            self.sub_title = str(exc)
        except AggregateSendError as exc:
            self._restore_compose(session)
            self.sub_title = "All models failed to respond."
            self.notify(str(exc), severity="error", timeout=8)
        else:
            failures = outcome.failures
            if outcome.cancelled:
                self.sub_title = "Response stopped."
            elif failures:
                self.sub_title = f"Some models failed: {', '.join(sorted(failures))}"
                for model_id, reason in failures.items():
                    self.notify(f"{model_id}: {reason}", severity="warning", timeout=8)
            else:
                self.sub_title = session.title
        finally:
            if self._is_active(session):
                view = self._w_conversation
                if view is not None:
                    view.schedule(view.finish_streams(failures))
                if self._w_input_box is not None:
                    self._w_input_box.set_sending(False)
            self._update_status_bar()

    async def action_stop_stream(self) -> None:
        """Cancel every in-flight channel of the active tab."""
        if not await self.active_session.stop():
            self.sub_title = "No response to stop."
            return
        self.sub_title = "Stopping response..."

    # -- tabs actions ---------------------------------------------------------

    async def action_new_tab(self) -> None:
        self.sessions.append(self._make_session(self._new_tab()))
        await self._activate(len(self.sessions) - 1)

    async def action_next_tab(self) -> None:
        if len(self.sessions) > 1:
            await self._activate(self._active_index + 1)

    async def action_close_tab(self) -> None:
        session = self.active_session
        session.detach_scroll()
        await session.close()
        self.sessions.remove(session)
        if not self.sessions:
            self.sessions.append(self._make_session(self._new_tab()))
        self._active_index = min(self._active_index, len(self.sessions) - 1)
        self._persist_tabs()
        await self._show_session(self.active_session)

    # -- conversation actions -------------------------------------------------

    async def action_new_conversation(self) -> None:
        session = self.active_session
        if session.is_sending:
            self.sub_title = "New chat is available only when idle."
            return
        session.new_conversation()
        if self._w_input is not None:
            self._w_input.value = ""
        self.sub_title = session.title

    async def _search_conversations(self, keyword: str) -> list[Conversation]:
        page = await self.client.list_conversations(
            page=1, page_size=CONVERSATION_PICKER_PAGE_SIZE, keyword=keyword
        )
        return page.items

    async def _delete_conversation(self, conversation_id: str) -> bool:
        try:
            await self.client.delete_conversation(conversation_id)
        except GatewayConsoleError as exc:
            self.sub_title = f"Delete failed: {exc}"
            return False
        for session in self.sessions:
            if session.conversation_id == conversation_id and not session.is_sending:
                session.new_conversation()
        return True

    async def action_open_conversation(self) -> None:
        """Open the conversation picker for the active tab."""
        if self.active_session.is_sending:
            self.sub_title = "Conversation picker is available only when idle."
            return
        self.push_screen(
            ConversationPickerScreen(self._search_conversations, self._delete_conversation),
            callback=self._on_conversation_picked,
        )

    def _on_conversation_picked(self, conversation: Conversation | None) -> None:
        if conversation is None:
            return
        self._spawn(self._open_conversation(self.active_session, conversation))

    async def _open_conversation(
        self, session: PlaygroundSession, conversation: Conversation
    ) -> None:
        if session.is_sending:
            return
        session.detach_scroll()
        self.sub_title = "Loading conversation..."
        await session.open_conversation(conversation.id, conversation.title)
        if self._is_active(session):
            await self._show_session(session)

    async def action_rename_conversation(self) -> None:
        session = self.active_session
        self.push_screen(
            TextPromptScreen("Rename conversation", value=session.title),
            callback=partial(self._on_rename_dismissed, session),
        )

    def _on_rename_dismissed(self, session: PlaygroundSession, value: str | None) -> None:
        if value:
            self._spawn(session.rename(value))

    async def action_select_models(self) -> None:
        session = self.active_session
        if session.is_sending:
            self.sub_title = "Model selection is available only when idle."
            return
        if not self.registry.loaded:
            await self.registry.refresh()
        models = self.registry.chat_models()
        if not models:
            self.sub_title = "No chat models available from the gateway."
            return
        self.push_screen(
            ModelPickerScreen(models, session.tab.selected_model_ids),
            callback=partial(self._on_models_picked, session),
        )

    def _on_models_picked(self, session: PlaygroundSession, selected: list[str] | None) -> None:
        if selected is None:
            return
        session.set_models(selected)
        self.sub_title = (
            f"Models: {', '.join(selected)}" if selected else "No models selected."
        )

    # -- message actions ------------------------------------------------------

    def _rate(self, rating: Rating) -> None:
        session = self.active_session
        message = session.last_assistant_message()
        if message is None:
            self.sub_title = "No assistant reply to rate."
            return
        if not message.rateable:
            self.sub_title = UNSAVED_REPLY_HINT
            return
        new_rating: Rating | None = None if message.rating == rating else rating
        self._spawn(session.rate(message.id, new_rating))

    def action_rate_up(self) -> None:
        self._rate("up")

    def action_rate_down(self) -> None:
        self._rate("down")

    async def action_feedback(self) -> None:
        session = self.active_session
        message = session.last_assistant_message()
        if message is None:
            self.sub_title = "No assistant reply to comment on."
            return
        if not message.rateable:
            self.sub_title = UNSAVED_REPLY_HINT
            return
        self.push_screen(
            TextPromptScreen("Feedback on the last reply", value=message.feedback or ""),
            callback=partial(self._on_feedback_dismissed, session, message.id),
        )

    def _on_feedback_dismissed(
        self, session: PlaygroundSession, message_id: str, value: str | None
    ) -> None:
        if value:
            self._spawn(session.submit_feedback(message_id, value))

    def action_scroll_to_bottom(self) -> None:
        session = self.active_session
        if session.scroll is not None:
            session.scroll.scroll_to_bottom()

    async def action_show_help(self) -> None:
        lines = ["Keybind actions:", ""]
        for binding in self._binding_specs:
            lines.append(f"{binding.key.upper()} - {binding.description} ({binding.action})")
        await self.push_screen(InfoScreen("\n".join(lines)))

    async def action_quit(self) -> None:
        """Exit the app."""
        self.exit()
