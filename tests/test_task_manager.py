"""Tests for the TaskManager lifecycle helper."""

from __future__ import annotations

import asyncio
import unittest

from gateway_console.task_manager import TaskManager


class TaskManagerTests(unittest.IsolatedAsyncioTestCase):
    """Validate named and anonymous task lifecycle management."""

    async def test_add_anonymous_and_cancel_all(self) -> None:
        tm = TaskManager()
        cancelled: list[bool] = []

        async def _worker() -> None:
            try:
                await asyncio.sleep(9999)
            except asyncio.CancelledError:
                cancelled.append(True)
                raise

        task = asyncio.create_task(_worker())
        tm.add(task)
        await asyncio.sleep(0)  # Let the task start.
        await tm.cancel_all()
        self.assertTrue(task.done())
        self.assertTrue(cancelled)

    async def test_spawn_named_and_cancel_by_name(self) -> None:
        tm = TaskManager()

        task = tm.spawn(asyncio.sleep(9999), name="channel:1")
        await asyncio.sleep(0)
        self.assertIs(tm.get("channel:1"), task)
        self.assertEqual(tm.active_count, 1)

        await tm.cancel("channel:1")
        self.assertTrue(task.cancelled())
        self.assertIsNone(tm.get("channel:1"))

    async def test_named_task_is_forgotten_when_done(self) -> None:
        tm = TaskManager()

        async def _quick() -> int:
            return 7

        task = tm.spawn(_quick(), name="quick")
        self.assertEqual(await task, 7)
        await asyncio.sleep(0)  # Let done callbacks run.
        self.assertIsNone(tm.get("quick"))
        self.assertEqual(tm.active_count, 0)

    async def test_cancel_nonexistent_name_is_noop(self) -> None:
        tm = TaskManager()
        await tm.cancel("does_not_exist")

    async def test_failed_task_is_logged(self) -> None:
        tm = TaskManager()

        async def _boom() -> None:
            raise ValueError("bad")

        with self.assertLogs("gateway_console.task_manager", level="ERROR") as logs:
            task = tm.spawn(_boom(), name="boom")
            with self.assertRaises(ValueError):
                await task
            await asyncio.sleep(0)
        self.assertTrue(any("task.failed" in line for line in logs.output))

    async def test_await_all_waits_without_cancelling(self) -> None:
        tm = TaskManager()
        finished: list[int] = []

        async def _work(value: int) -> None:
            await asyncio.sleep(0)
            finished.append(value)

        tm.spawn(_work(1))
        tm.spawn(_work(2), name="second")
        await tm.await_all()
        self.assertEqual(sorted(finished), [1, 2])

    async def test_discard_removes_without_cancelling(self) -> None:
        tm = TaskManager()
        task = tm.spawn(asyncio.sleep(0.01), name="kept")
        tm.discard("kept")
        self.assertIsNone(tm.get("kept"))
        await task
        self.assertFalse(task.cancelled())


if __name__ == "__main__":
    unittest.main()
