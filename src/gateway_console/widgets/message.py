"""Message bubble widget for conversation rendering."""

from __future__ import annotations

from typing import Any

from rich.markdown import Markdown
from rich.text import Text
from textual.app import ComposeResult
from textual.containers import Vertical
from textual.widgets import Static

from ..models import Message

RATING_ICONS = {"up": "👍", "down": "👎"}


class MessageBubble(Vertical):
    """Render one message: header (role, model, time, rating), reasoning, content.

    A bubble is either bound to a committed :class:`Message` or is a
    streaming bubble for an in-flight channel, keyed by ``stream_key``.
    """

    DEFAULT_CSS = """
    MessageBubble {
        height: auto;
    }
    MessageBubble > #header-block {
        padding: 0;
    }
    MessageBubble > #reasoning-block {
        color: $text-muted;
        padding: 0 1;
        border-left: solid $panel;
        margin-bottom: 1;
    }
    MessageBubble > #content-block {
        height: auto;
    }
    MessageBubble.streaming > #header-block {
        color: $text-muted;
    }
    MessageBubble.failed {
        border: round $error;
    }
    """

    def __init__(
        self,
        content: str,
        role: str,
        *,
        model_id: str | None = None,
        timestamp: str = "",
        reasoning: str = "",
        rating: str | None = None,
        message_id: str | None = None,
        stream_key: str | None = None,
        show_reasoning: bool = True,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)  # type: ignore[arg-type]
        self.message_content = content
        self.role = role
        self.model_id = model_id
        self.timestamp = timestamp
        self.reasoning = reasoning
        self.rating = rating
        self.message_id = message_id
        self.stream_key = stream_key
        self.show_reasoning = show_reasoning
        self.error: str | None = None
        self.add_class(f"role-{role}")
        if stream_key is not None:
            self.add_class("streaming")

        self._header_widget: Static | None = None
        self._reasoning_widget: Static | None = None
        self._content_widget: Static | None = None

    @classmethod
    def from_message(
        cls,
        message: Message,
        *,
        show_timestamp: bool = True,
        show_reasoning: bool = True,
    ) -> MessageBubble:
        timestamp = ""
        if show_timestamp:
            timestamp = message.created_at.astimezone().strftime("%H:%M")
        return cls(
            content=message.content,
            role=message.role,
            model_id=message.model_id,
            timestamp=timestamp,
            reasoning=message.reasoning or "",
            rating=message.rating,
            message_id=message.id,
            show_reasoning=show_reasoning,
        )

    @property
    def streaming(self) -> bool:
        return self.stream_key is not None

    @property
    def role_prefix(self) -> str:
        """Return a human-friendly role label."""
        if self.role == "user":
            return "You"
        if self.role == "assistant":
            return self.model_id or "Assistant"
        return self.role.capitalize()

    def _compose_header(self) -> str:
        parts = [f"**{self.role_prefix}**"]
        if self.timestamp:
            parts.append(f"_{self.timestamp}_")
        if self.streaming and self.error is None:
            parts.append("_streaming…_")
        if self.error is not None:
            parts.append(f"**failed:** {self.error}")
        icon = RATING_ICONS.get(self.rating or "")
        if icon:
            parts.append(icon)
        return "  ".join(parts)

    def compose(self) -> ComposeResult:
        self._header_widget = Static(Markdown(self._compose_header()), id="header-block")
        self._reasoning_widget = Static("", id="reasoning-block")
        self._content_widget = Static("", id="content-block")
        yield self._header_widget
        if self.show_reasoning:
            yield self._reasoning_widget
        yield self._content_widget

    def on_mount(self) -> None:
        self._refresh_header()
        self._refresh_reasoning()
        self._refresh_content()

    def _refresh_header(self) -> None:
        if self._header_widget is None:
            return
        self._header_widget.update(Markdown(self._compose_header()))

    def _refresh_reasoning(self) -> None:
        if not self.show_reasoning or self._reasoning_widget is None:
            return
        if self.reasoning:
            label = "Thinking" if self.streaming else "Thought"
            self._reasoning_widget.update(
                Text(f"{label}:\n{self.reasoning}", style="dim italic")
            )
            self._reasoning_widget.display = True
        else:
            self._reasoning_widget.display = False

    def _refresh_content(self) -> None:
        if self._content_widget is None:
            return
        text = self.message_content.rstrip()
        self._content_widget.update(Markdown(text) if text else "")

    def set_content(self, content: str, reasoning: str | None = None) -> None:
        """Replace the rendered text; streaming updates arrive as full snapshots."""
        self.message_content = content
        self._refresh_content()
        if reasoning is not None and reasoning != self.reasoning:
            self.reasoning = reasoning
            self._refresh_reasoning()

    def set_rating(self, rating: str | None) -> None:
        if rating == self.rating:
            return
        self.rating = rating
        self._refresh_header()

    def mark_failed(self, reason: str) -> None:
        self.error = reason
        self.add_class("failed")
        self._refresh_header()

    def bind_message(self, message: Message, *, show_timestamp: bool = True) -> None:
        """Turn a streaming bubble into the bubble of its committed message."""
        self.stream_key = None
        self.remove_class("streaming")
        self.message_id = message.id
        self.model_id = message.model_id
        self.rating = message.rating
        if show_timestamp:
            self.timestamp = message.created_at.astimezone().strftime("%H:%M")
        self.set_content(message.content, message.reasoning or "")
        self._refresh_reasoning()
        self._refresh_header()
