"""Unit tests for individual widget classes."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from types import SimpleNamespace
import unittest

from gateway_console.models import Message

try:
    from gateway_console.widgets.conversation import ConversationViewport
    from gateway_console.widgets.message import MessageBubble
except ModuleNotFoundError:
    ConversationViewport = None  # type: ignore[assignment,misc]
    MessageBubble = None  # type: ignore[assignment,misc]


@unittest.skipIf(MessageBubble is None, "textual is not installed")
class MessageBubbleTests(unittest.TestCase):
    """Validate MessageBubble state without mounting it."""

    def _make_bubble(self, content: str = "", role: str = "user", **kwargs) -> MessageBubble:
        assert MessageBubble is not None
        return MessageBubble(content=content, role=role, **kwargs)

    def test_initial_content_stored(self) -> None:
        bubble = self._make_bubble(content="hello", role="user")
        self.assertEqual(bubble.message_content, "hello")
        self.assertIn("role-user", bubble.classes)

    def test_role_prefix(self) -> None:
        self.assertEqual(self._make_bubble(role="user").role_prefix, "You")
        self.assertEqual(self._make_bubble(role="assistant").role_prefix, "Assistant")
        self.assertEqual(
            self._make_bubble(role="assistant", model_id="gpt-4o").role_prefix, "gpt-4o"
        )
        self.assertEqual(self._make_bubble(role="system").role_prefix, "System")

    def test_set_content_replaces_text_and_reasoning(self) -> None:
        bubble = self._make_bubble(content="initial", role="assistant")
        bubble.set_content("updated", "thinking")
        self.assertEqual(bubble.message_content, "updated")
        self.assertEqual(bubble.reasoning, "thinking")
        bubble.set_content("again")
        self.assertEqual(bubble.reasoning, "thinking")

    def test_from_message_copies_fields(self) -> None:
        assert MessageBubble is not None
        message = Message(
            id="a1",
            role="assistant",
            content="answer",
            created_at=datetime(2024, 5, 1, 12, 0, tzinfo=UTC),
            model_id="m1",
            reasoning="why",
            rating="up",
        )
        bubble = MessageBubble.from_message(message, show_timestamp=False)
        self.assertEqual(bubble.message_id, "a1")
        self.assertEqual(bubble.model_id, "m1")
        self.assertEqual(bubble.reasoning, "why")
        self.assertEqual(bubble.timestamp, "")
        self.assertFalse(bubble.streaming)
        self.assertIn("👍", bubble._compose_header())

        with_time = MessageBubble.from_message(message, show_timestamp=True)
        self.assertRegex(with_time.timestamp, r"^\d{2}:\d{2}$")

    def test_streaming_bubble_binds_to_committed_message(self) -> None:
        bubble = self._make_bubble(content="par", role="assistant", stream_key="ch-1")
        self.assertTrue(bubble.streaming)
        self.assertIn("streaming", bubble.classes)
        self.assertIn("streaming", bubble._compose_header())

        bubble.bind_message(
            Message(id="a1", role="assistant", content="partial done", model_id="m1"),
            show_timestamp=False,
        )
        self.assertFalse(bubble.streaming)
        self.assertNotIn("streaming", bubble.classes)
        self.assertEqual(bubble.message_id, "a1")
        self.assertEqual(bubble.message_content, "partial done")

    def test_mark_failed_shows_reason(self) -> None:
        bubble = self._make_bubble(content="par", role="assistant", stream_key="ch-1")
        bubble.mark_failed("HTTP 500")
        self.assertIn("failed", bubble.classes)
        header = bubble._compose_header()
        self.assertIn("HTTP 500", header)
        self.assertNotIn("streaming", header)

    def test_set_rating(self) -> None:
        bubble = self._make_bubble(role="assistant")
        bubble.set_rating("down")
        self.assertEqual(bubble.rating, "down")
        self.assertIn("👎", bubble._compose_header())


class FakeView:
    """Just enough of ConversationView for the viewport adapter."""

    def __init__(self) -> None:
        self.scroll_y = 12.0
        self.virtual_size = SimpleNamespace(height=400)
        self.scrollable_content_region = SimpleNamespace(height=30)
        self.scrolls: list[dict] = []
        self.renders_awaited = False

    def scroll_to(self, **kwargs) -> None:
        self.scrolls.append(kwargs)

    async def wait_for_renders(self) -> None:
        self.renders_awaited = True

    def call_after_refresh(self, callback) -> None:
        asyncio.get_running_loop().call_soon(callback)


@unittest.skipIf(ConversationViewport is None, "textual is not installed")
class ConversationViewportTests(unittest.IsolatedAsyncioTestCase):
    """Validate the scroll-anchor adapter over a conversation view."""

    async def test_geometry_and_scrolling(self) -> None:
        view = FakeView()
        viewport = ConversationViewport(view)  # type: ignore[arg-type,misc]
        self.assertEqual(viewport.scroll_offset, 12.0)
        self.assertEqual(viewport.content_height, 400.0)
        self.assertEqual(viewport.viewport_height, 30.0)

        viewport.scroll_to(-5.0)
        viewport.scroll_to(50.0, animate=True)
        self.assertEqual(
            view.scrolls, [{"y": 0.0, "animate": False}, {"y": 50.0, "animate": True}]
        )

    async def test_settle_waits_for_renders_and_refresh(self) -> None:
        view = FakeView()
        viewport = ConversationViewport(view)  # type: ignore[arg-type,misc]
        await asyncio.wait_for(viewport.settle(), timeout=1.0)
        self.assertTrue(view.renders_awaited)


if __name__ == "__main__":
    unittest.main()
