"""Status bar widget for connection and playground telemetry."""

from __future__ import annotations

from textual import events
from textual.app import ComposeResult
from textual.message import Message
from textual.widgets import Label, Static


class StatusBar(Static):
    """Render compact runtime status information.

    Segments (left to right):
        🟢 online  |  Tab 1/2  |  Models: gpt-4o, claude  |  Messages: 4  |  ⏳ streaming  |  ↓ latest
    Clicking the models segment asks for the model picker; clicking the
    "latest" segment asks to jump to the newest message.
    """

    DEFAULT_CSS = """
    StatusBar {
        layout: horizontal;
        height: auto;
    }
    StatusBar Label {
        margin-right: 1;
    }
    StatusBar #status_streaming {
        color: $warning;
    }
    StatusBar #status_latest {
        color: $accent;
        text-style: bold;
    }
    """

    class ModelPickerRequested(Message):
        """Posted when the models segment is clicked."""

    class ScrollToBottomRequested(Message):
        """Posted when the jump-to-latest segment is clicked."""

    def compose(self) -> ComposeResult:
        yield Label("⚪ unknown", id="status_connection")
        yield Label("|", id="status_sep1")
        yield Label("Tab 1/1", id="status_tab")
        yield Label("|", id="status_sep2")
        yield Label("Models: -", id="status_models")
        yield Label("|", id="status_sep3")
        yield Label("Messages: 0", id="status_messages")
        yield Label("", id="status_streaming")
        yield Label("↓ latest", id="status_latest")

    def on_mount(self) -> None:
        """Cache label references once after the DOM is ready."""
        self._lbl_connection = self.query_one("#status_connection", Label)
        self._lbl_tab = self.query_one("#status_tab", Label)
        self._lbl_models = self.query_one("#status_models", Label)
        self._lbl_messages = self.query_one("#status_messages", Label)
        self._lbl_streaming = self.query_one("#status_streaming", Label)
        self._lbl_latest = self.query_one("#status_latest", Label)
        self._lbl_streaming.display = False
        self._lbl_latest.display = False

    def set_status(
        self,
        *,
        connection_state: str,
        tab_index: int,
        tab_count: int,
        models: list[str],
        message_count: int,
        streaming: bool,
    ) -> None:
        """Update all status segment labels."""
        icon = {"online": "🟢", "offline": "🔴"}.get(connection_state, "⚪")
        self._lbl_connection.update(f"{icon} {connection_state}")
        self._lbl_tab.update(f"Tab {tab_index + 1}/{tab_count}")
        self._lbl_models.update(f"Models: {', '.join(models) if models else '-'}")
        self._lbl_messages.update(f"Messages: {message_count}")
        self._lbl_streaming.update("⏳ streaming" if streaming else "")
        self._lbl_streaming.display = streaming

    def set_scroll_affordance(self, visible: bool) -> None:
        self._lbl_latest.display = visible

    def on_click(self, event: events.Click) -> None:
        event.stop()
        widget = getattr(event, "widget", None)
        if widget is not None and getattr(widget, "id", None) == "status_latest":
            self.post_message(self.ScrollToBottomRequested())
            return
        self.post_message(self.ModelPickerRequested())
