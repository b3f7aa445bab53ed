"""Dispatch state machine and lock-protected transitions."""

from __future__ import annotations

import asyncio
from enum import Enum


class DispatchState(str, Enum):
    """Lifecycle of the single in-flight send a tab may have."""

    IDLE = "IDLE"
    SENDING = "SENDING"
    CANCELLING = "CANCELLING"


class StateManager:
    """Manage state transitions with async lock semantics."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._state = DispatchState.IDLE

    @property
    def current(self) -> DispatchState:
        """Return the last observed state without waiting on the lock."""
        return self._state

    async def get_state(self) -> DispatchState:
        async with self._lock:
            return self._state

    async def transition_to(self, new_state: DispatchState) -> DispatchState:
        """Force a transition and return the new state."""
        async with self._lock:
            self._state = new_state
            return self._state

    async def transition_if(
        self,
        expected_state: DispatchState,
        new_state: DispatchState,
    ) -> bool:
        """Transition only when the current state matches ``expected_state``."""
        async with self._lock:
            if self._state != expected_state:
                return False
            self._state = new_state
            return True

    async def can_send(self) -> bool:
        async with self._lock:
            return self._state == DispatchState.IDLE
