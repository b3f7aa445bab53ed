"""Structured lifecycle manager for asyncio background tasks."""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
import logging
from typing import Any

LOGGER = logging.getLogger(__name__)


class TaskManager:
    """Track named and anonymous background tasks and log their failures."""

    def __init__(self) -> None:
        self._named: dict[str, asyncio.Task[Any]] = {}
        self._anonymous: set[asyncio.Task[Any]] = set()

    def spawn(
        self,
        coro: Coroutine[Any, Any, Any],
        name: str | None = None,
    ) -> asyncio.Task[Any]:
        """Schedule ``coro`` on the running loop and start tracking it."""
        task = asyncio.create_task(coro, name=name)
        self.add(task, name=name)
        return task

    def add(self, task: asyncio.Task[Any], name: str | None = None) -> None:
        """Register a task, optionally under a unique name.

        A named task replaces any prior task registered under the same name
        without cancelling it. Anonymous tasks drop out once they complete.
        """
        task.add_done_callback(self._log_failure)
        if name is not None:
            self._named[name] = task
            task.add_done_callback(lambda done, key=name: self._forget(key, done))
        else:
            self._anonymous.add(task)
            task.add_done_callback(self._anonymous.discard)

    def _forget(self, name: str, task: asyncio.Task[Any]) -> None:
        if self._named.get(name) is task:
            del self._named[name]

    @staticmethod
    def _log_failure(task: asyncio.Task[Any]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        LOGGER.error(
            "task.failed",
            extra={
                "event": "task.failed",
                "task": task.get_name(),
                "error_type": exc.__class__.__name__,
                "error": str(exc),
            },
        )

    def get(self, name: str) -> asyncio.Task[Any] | None:
        return self._named.get(name)

    @property
    def active_count(self) -> int:
        named = sum(1 for task in self._named.values() if not task.done())
        anonymous = sum(1 for task in self._anonymous if not task.done())
        return named + anonymous

    async def cancel(self, name: str) -> None:
        """Cancel a named task and wait for it to finish."""
        task = self._named.pop(name, None)
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def cancel_all(self) -> None:
        """Cancel every tracked task and await them all."""
        all_tasks: list[asyncio.Task[Any]] = list(self._named.values()) + [
            t for t in self._anonymous if not t.done()
        ]
        for task in all_tasks:
            if not task.done():
                task.cancel()
        for task in all_tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception:  # noqa: BLE001 - already logged by the done callback.
                pass
        self._named.clear()
        self._anonymous.clear()

    async def await_all(self) -> None:
        """Await every tracked task without cancelling it."""
        all_tasks: list[asyncio.Task[Any]] = list(self._named.values()) + list(
            self._anonymous
        )
        for task in all_tasks:
            if not task.done():
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                except Exception:  # noqa: BLE001 - already logged by the done callback.
                    pass

    def discard(self, name: str) -> None:
        """Stop tracking a named task without cancelling it."""
        self._named.pop(name, None)
