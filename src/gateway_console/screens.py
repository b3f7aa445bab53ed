"""Reusable modal screens for pickers, prompts and info dialogs."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
import logging
from typing import Any

from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Container
from textual.screen import ModalScreen
from textual.widgets import Button, Input, OptionList, SelectionList, Static

from .exceptions import GatewayConsoleError
from .models import Conversation, ModelEntry

LOGGER = logging.getLogger(__name__)

ConversationSearch = Callable[[str], Awaitable[list[Conversation]]]
ConversationDelete = Callable[[str], Awaitable[bool]]


def _selected_index(event: OptionList.OptionSelected) -> int:
    idx = getattr(event, "option_index", None)
    if idx is None:
        idx = getattr(event, "index", -1)
    try:
        return int(idx if idx is not None else -1)
    except (TypeError, ValueError):
        return -1


class InfoScreen(ModalScreen[None]):
    """Modal that shows a block of text and closes on Escape/OK."""

    CSS = """
    InfoScreen {
        align: center middle;
    }

    #info-dialog {
        width: 80;
        max-width: 120;
        max-height: 28;
        padding: 1 2;
        border: round $panel;
        background: $surface;
    }

    #info-body {
        height: auto;
    }

    #info-actions {
        dock: bottom;
        height: 3;
        align: right middle;
    }
    """

    def __init__(self, text: str) -> None:
        super().__init__()
        self._text = text

    def compose(self) -> ComposeResult:
        with Container(id="info-dialog"):
            yield Static(self._text, id="info-body")
            with Container(id="info-actions"):
                yield Button("OK", id="info-ok", variant="primary")

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "info-ok":
            event.stop()
            self.dismiss(None)

    def on_key(self, event: Any) -> None:  # noqa: ANN401
        key = str(getattr(event, "key", "")).lower()
        if key in {"escape", "enter"}:
            self.dismiss(None)


class TextPromptScreen(ModalScreen[str | None]):
    """Modal screen to prompt for a single line of text."""

    CSS = """
    TextPromptScreen {
        align: center middle;
    }

    #text-prompt-dialog {
        width: 60;
        height: auto;
        padding: 1 2;
        border: round $panel;
        background: $surface;
    }

    #text-prompt-title {
        padding-bottom: 1;
        text-style: bold;
    }

    #text-prompt-input {
        width: 100%;
        margin-bottom: 1;
    }
    """

    def __init__(self, title: str, placeholder: str = "", value: str = "") -> None:
        super().__init__()
        self._title = title
        self._placeholder = placeholder
        self._value = value

    def compose(self) -> ComposeResult:
        with Container(id="text-prompt-dialog"):
            yield Static(self._title, id="text-prompt-title")
            yield Input(
                value=self._value,
                placeholder=self._placeholder,
                id="text-prompt-input",
            )
            yield Static("Enter to confirm | Esc to cancel", id="text-prompt-help")

    def on_mount(self) -> None:
        self.query_one("#text-prompt-input", Input).focus()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        if event.input.id != "text-prompt-input":
            return
        event.stop()
        self.dismiss(event.value.strip())

    def on_key(self, event: Any) -> None:  # noqa: ANN401
        if str(getattr(event, "key", "")).lower() == "escape":
            self.dismiss(None)


class ModelPickerScreen(ModalScreen[list[str] | None]):
    """Multi-select picker over the gateway's chat models."""

    CSS = """
    ModelPickerScreen {
        align: center middle;
    }

    #model-picker-dialog {
        width: 70;
        max-height: 26;
        padding: 1 2;
        border: round $panel;
        background: $surface;
    }

    #model-picker-title {
        padding-bottom: 1;
        text-style: bold;
    }

    #model-picker-help {
        padding-top: 1;
    }
    """

    BINDINGS = [
        Binding("escape", "cancel", "Close", show=False),
        Binding("enter", "confirm", "Apply", show=False, priority=True),
    ]

    def __init__(self, models: list[ModelEntry], selected: list[str]) -> None:
        super().__init__()
        self.models = [entry for entry in models if entry.is_chat]
        self.selected = set(selected)

    @staticmethod
    def _label(entry: ModelEntry) -> str:
        label = f"{entry.name}  ({entry.provider})"
        if entry.context_window:
            label += f"  {entry.context_window:,} ctx"
        return label

    def compose(self) -> ComposeResult:
        with Container(id="model-picker-dialog"):
            yield Static("Select models for this tab", id="model-picker-title")
            yield SelectionList[str](
                *(
                    (self._label(entry), entry.name, entry.name in self.selected)
                    for entry in self.models
                ),
                id="model-picker-options",
            )
            yield Static(
                "Space to toggle  |  Enter to apply  |  Esc to cancel",
                id="model-picker-help",
            )

    def on_mount(self) -> None:
        self.query_one("#model-picker-options", SelectionList).focus()

    def action_confirm(self) -> None:
        options = self.query_one("#model-picker-options", SelectionList)
        chosen = set(options.selected)
        # Keep registry order so the dispatcher fans out predictably.
        self.dismiss([entry.name for entry in self.models if entry.name in chosen])

    def action_cancel(self) -> None:
        self.dismiss(None)


class ConversationPickerScreen(ModalScreen[Conversation | None]):
    """Searchable picker over the gateway's saved conversations."""

    CSS = """
    ConversationPickerScreen {
        align: center middle;
    }

    #conv-dialog {
        width: 80;
        max-height: 28;
        padding: 1 2;
        border: round $panel;
        background: $surface;
    }

    #conv-title {
        padding-bottom: 1;
        text-style: bold;
    }

    #conv-search {
        margin-bottom: 1;
    }

    #conv-help {
        padding-top: 1;
    }
    """

    BINDINGS = [
        Binding("escape", "cancel", "Close", show=False),
        Binding("ctrl+d", "delete_highlighted", "Delete", show=False),
    ]

    def __init__(
        self,
        search: ConversationSearch,
        delete: ConversationDelete | None = None,
    ) -> None:
        super().__init__()
        self._search = search
        self._delete = delete
        self._items: list[Conversation] = []
        self._search_task: asyncio.Task[None] | None = None

    def compose(self) -> ComposeResult:
        with Container(id="conv-dialog"):
            yield Static("Conversations", id="conv-title")
            yield Input(placeholder="Filter by keyword", id="conv-search")
            yield OptionList(id="conv-options")
            yield Static(
                "Enter/click to open | Ctrl+D to delete | Esc to cancel", id="conv-help"
            )

    def on_mount(self) -> None:
        self.query_one("#conv-search", Input).focus()
        self._refresh("")

    @staticmethod
    def _label(conversation: Conversation) -> str:
        title = conversation.title.strip() or "Untitled"
        stamp = conversation.updated_at.astimezone().strftime("%Y-%m-%d %H:%M")
        return f"{title}  ·  {stamp}"

    def _refresh(self, keyword: str) -> None:
        if self._search_task is not None and not self._search_task.done():
            self._search_task.cancel()
        self._search_task = asyncio.create_task(self._load(keyword))

    async def _load(self, keyword: str) -> None:
        try:
            items = await self._search(keyword)
        except GatewayConsoleError as exc:
            LOGGER.warning(
                "screens.conversations.failed",
                extra={
                    "event": "screens.conversations.failed",
                    "error_type": exc.__class__.__name__,
                },
            )
            self.query_one("#conv-title", Static).update("Conversations (unavailable)")
            return
        self._items = items
        options = self.query_one("#conv-options", OptionList)
        options.clear_options()
        options.add_options([self._label(item) for item in items])
        title = "Conversations" if items else "Conversations (none found)"
        self.query_one("#conv-title", Static).update(title)

    def on_input_changed(self, event: Input.Changed) -> None:
        if event.input.id == "conv-search":
            self._refresh(event.value)

    def on_input_submitted(self, event: Input.Submitted) -> None:
        if event.input.id != "conv-search":
            return
        event.stop()
        if self._items:
            self.dismiss(self._items[0])

    def on_option_list_option_selected(self, event: OptionList.OptionSelected) -> None:
        selected = _selected_index(event)
        if 0 <= selected < len(self._items):
            self.dismiss(self._items[selected])

    async def action_delete_highlighted(self) -> None:
        if self._delete is None:
            return
        highlighted = self.query_one("#conv-options", OptionList).highlighted
        if highlighted is None or not 0 <= highlighted < len(self._items):
            return
        target = self._items[highlighted]
        if await self._delete(target.id):
            self._refresh(self.query_one("#conv-search", Input).value)

    def action_cancel(self) -> None:
        self.dismiss(None)

    def on_unmount(self) -> None:
        if self._search_task is not None and not self._search_task.done():
            self._search_task.cancel()
