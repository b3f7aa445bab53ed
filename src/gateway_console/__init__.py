"""Top-level package for gateway-console."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .app import GatewayConsoleApp
    from .client import GatewayClient
    from .config import ensure_config_dir, load_config
    from .decoder import EventStreamDecoder
    from .dispatcher import MultiModelDispatcher
    from .exceptions import (
        AggregateSendError,
        ConfigValidationError,
        DispatchBusyError,
        GatewayConnectionError,
        GatewayConsoleError,
        GatewayHTTPError,
        SendValidationError,
    )
    from .message_store import MessageStore
    from .persistence import TabStatePersistence
    from .session import PlaygroundSession
    from .state import DispatchState, StateManager

__all__ = [
    "AggregateSendError",
    "ConfigValidationError",
    "DispatchBusyError",
    "DispatchState",
    "EventStreamDecoder",
    "GatewayClient",
    "GatewayConnectionError",
    "GatewayConsoleApp",
    "GatewayConsoleError",
    "GatewayHTTPError",
    "MessageStore",
    "MultiModelDispatcher",
    "PlaygroundSession",
    "SendValidationError",
    "StateManager",
    "TabStatePersistence",
    "ensure_config_dir",
    "load_config",
]

_EXCEPTION_NAMES = {
    "AggregateSendError",
    "ConfigValidationError",
    "DispatchBusyError",
    "GatewayConnectionError",
    "GatewayConsoleError",
    "GatewayHTTPError",
    "SendValidationError",
}


def __getattr__(name: str) -> Any:
    """Lazily import symbols to keep optional UI dependencies optional at import time."""
    if name == "GatewayClient":
        from .client import GatewayClient

        return GatewayClient
    if name in {"ensure_config_dir", "load_config"}:
        from .config import ensure_config_dir, load_config

        return {"ensure_config_dir": ensure_config_dir, "load_config": load_config}[name]
    if name in _EXCEPTION_NAMES:
        from . import exceptions

        return getattr(exceptions, name)
    if name in {"DispatchState", "StateManager"}:
        from .state import DispatchState, StateManager

        return {"DispatchState": DispatchState, "StateManager": StateManager}[name]
    if name == "EventStreamDecoder":
        from .decoder import EventStreamDecoder

        return EventStreamDecoder
    if name == "MessageStore":
        from .message_store import MessageStore

        return MessageStore
    if name == "MultiModelDispatcher":
        from .dispatcher import MultiModelDispatcher

        return MultiModelDispatcher
    if name == "PlaygroundSession":
        from .session import PlaygroundSession

        return PlaygroundSession
    if name == "TabStatePersistence":
        from .persistence import TabStatePersistence

        return TabStatePersistence
    if name == "GatewayConsoleApp":
        from .app import GatewayConsoleApp

        return GatewayConsoleApp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
