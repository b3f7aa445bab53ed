"""Tests for the ordered, deduplicated message store."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
import unittest

from gateway_console.message_store import MessageStore
from gateway_console.models import Message

BASE = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


def _msg(index: int, role: str = "user", content: str | None = None) -> Message:
    return Message(
        id=f"m{index}",
        role=role,  # type: ignore[arg-type]
        content=content if content is not None else f"message {index}",
        created_at=BASE + timedelta(seconds=index),
    )


class MessageStoreTests(unittest.TestCase):
    """Validate ordering, uniqueness and change notifications."""

    def setUp(self) -> None:
        self.store = MessageStore()
        self.changes: list[tuple[str, list[str]]] = []
        self.store.subscribe(
            lambda kind, affected: self.changes.append((kind, [m.id for m in affected]))
        )

    def test_append_rejects_duplicate_ids(self) -> None:
        self.assertTrue(self.store.append(_msg(1)))
        self.assertFalse(self.store.append(_msg(1, content="other")))
        self.assertEqual(self.store.message_count, 1)
        self.assertEqual(self.store.get("m1").content, "message 1")
        self.assertIn("m1", self.store)
        self.assertEqual(self.changes, [("append", ["m1"])])

    def test_out_of_order_append_is_placed_by_timestamp(self) -> None:
        self.store.append(_msg(1))
        self.store.append(_msg(3))
        self.store.append(_msg(2))
        self.assertEqual([m.id for m in self.store.messages], ["m1", "m2", "m3"])

    def test_extend_notifies_once(self) -> None:
        self.store.append(_msg(1))
        added = self.store.extend([_msg(1), _msg(2), _msg(3)])
        self.assertEqual([m.id for m in added], ["m2", "m3"])
        self.assertEqual(self.changes[-1], ("append", ["m2", "m3"]))

    def test_stage_then_commit_appends_replies(self) -> None:
        staged = self.store.stage(_msg(1))
        self.store.commit(staged, [_msg(2, "assistant")])
        self.assertEqual([m.id for m in self.store.messages], ["m1", "m2"])
        self.assertTrue(staged.committed)
        with self.assertRaises(ValueError):
            self.store.rollback(staged)

    def test_stage_then_rollback_restores_history(self) -> None:
        self.store.append(_msg(1))
        before = self.store.messages
        staged = self.store.stage(_msg(2))
        self.assertTrue(self.store.rollback(staged))
        self.assertEqual(self.store.messages, before)
        self.assertNotIn("m2", self.store)
        with self.assertRaises(ValueError):
            self.store.commit(staged)

    def test_stage_duplicate_raises(self) -> None:
        self.store.append(_msg(1))
        with self.assertRaises(ValueError):
            self.store.stage(_msg(1))

    def test_prepend_page_drops_overlap(self) -> None:
        self.store.extend([_msg(5), _msg(6)])
        inserted = self.store.prepend_page([_msg(3), _msg(4), _msg(5), _msg(4)])
        self.assertEqual([m.id for m in inserted], ["m3", "m4"])
        self.assertEqual(
            [m.id for m in self.store.messages], ["m3", "m4", "m5", "m6"]
        )
        self.assertEqual(self.changes[-1], ("prepend", ["m3", "m4"]))

    def test_prepend_page_merges_newer_messages_into_place(self) -> None:
        self.store.extend([_msg(2), _msg(6)])
        self.store.prepend_page([_msg(1), _msg(4)])
        self.assertEqual(
            [m.id for m in self.store.messages], ["m1", "m2", "m4", "m6"]
        )

    def test_prepend_page_of_known_ids_is_silent(self) -> None:
        self.store.append(_msg(1))
        self.changes.clear()
        self.assertEqual(self.store.prepend_page([_msg(1)]), [])
        self.assertEqual(self.changes, [])

    def test_replace_and_clear(self) -> None:
        self.store.extend([_msg(1), _msg(2)])
        self.store.replace_messages([_msg(9), _msg(8), _msg(8)])
        self.assertEqual([m.id for m in self.store.messages], ["m8", "m9"])
        self.assertEqual(self.changes[-1][0], "replace")

        self.store.clear()
        self.assertEqual(self.store.message_count, 0)
        self.assertIsNone(self.store.last_message)
        self.assertEqual(self.changes[-1], ("clear", ["m8", "m9"]))

    def test_rating_and_feedback_replace_message(self) -> None:
        self.store.append(_msg(1, "assistant"))
        original = self.store.get("m1")

        rated = self.store.set_rating("m1", "up")
        self.assertEqual(rated.rating, "up")
        self.assertIsNone(original.rating)

        with_feedback = self.store.set_feedback("m1", "  great answer ")
        self.assertEqual(with_feedback.feedback, "great answer")
        self.assertEqual(self.store.set_feedback("m1", "   ").feedback, None)
        self.assertIsNone(self.store.set_rating("missing", "down"))
        self.assertEqual(self.changes[-1][0], "update")

    def test_first_exchange(self) -> None:
        self.assertIsNone(self.store.first_exchange())
        self.store.extend([_msg(1, "assistant"), _msg(2, "user"), _msg(3, "assistant")])
        user, assistant = self.store.first_exchange()
        self.assertEqual((user.id, assistant.id), ("m2", "m3"))

    def test_failing_listener_is_logged_not_raised(self) -> None:
        def _broken(_kind, _affected) -> None:
            raise RuntimeError("listener bug")

        self.store.subscribe(_broken)
        with self.assertLogs("gateway_console.message_store", level="ERROR"):
            self.assertTrue(self.store.append(_msg(1)))
        self.assertEqual(self.store.message_count, 1)

        self.store.unsubscribe(_broken)
        self.store.unsubscribe(_broken)


if __name__ == "__main__":
    unittest.main()
