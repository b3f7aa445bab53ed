"""Compose row: message field with send and stop buttons."""

from __future__ import annotations

from textual.containers import Horizontal, Vertical
from textual.message import Message
from textual.widgets import Button, Input


class InputBox(Vertical):
    """Input region with message field, send button and stop button."""

    class StopRequested(Message):
        """Posted when the user clicks the stop button."""

    def compose(self):  # type: ignore[override]
        with Horizontal(id="input_row"):
            yield Input(
                placeholder="Type your message... (Enter to send)",
                id="message_input",
            )
            yield Button("Send", id="send_button", variant="success")
            yield Button("Stop", id="stop_button", variant="error", disabled=True)

    def set_sending(self, sending: bool) -> None:
        """Swap which of send and stop is usable."""
        self.query_one("#send_button", Button).disabled = sending
        self.query_one("#stop_button", Button).disabled = not sending

    def on_button_pressed(self, event: Button.Pressed) -> None:
        """Forward stop clicks as StopRequested messages."""
        if event.button.id == "stop_button":
            event.stop()
            self.post_message(self.StopRequested())
