"""Read-only model registry lookup keyed by model name."""

from __future__ import annotations

import logging
from typing import Protocol

from .exceptions import GatewayConsoleError
from .models import ModelEntry

LOGGER = logging.getLogger(__name__)


class ModelLister(Protocol):
    async def list_models(self) -> list[ModelEntry]: ...


class ModelRegistry:
    """Cache of the gateway's model list; only chat models are selectable."""

    def __init__(self, client: ModelLister) -> None:
        self._client = client
        self._entries: dict[str, ModelEntry] = {}
        self.loaded = False

    async def refresh(self) -> list[ModelEntry]:
        """Reload the registry. On failure the previous cache is kept."""
        try:
            entries = await self._client.list_models()
        except GatewayConsoleError as exc:
            LOGGER.warning(
                "registry.refresh.failed",
                extra={"event": "registry.refresh.failed", "error_type": exc.__class__.__name__},
            )
            return self.entries
        self._entries = {entry.name: entry for entry in entries if entry.name}
        self.loaded = True
        LOGGER.info(
            "registry.refreshed",
            extra={"event": "registry.refreshed", "models": len(self._entries)},
        )
        return self.entries

    @property
    def entries(self) -> list[ModelEntry]:
        return list(self._entries.values())

    def get(self, name: str) -> ModelEntry | None:
        return self._entries.get(name)

    def chat_models(self) -> list[ModelEntry]:
        return sorted(
            (entry for entry in self._entries.values() if entry.is_chat),
            key=lambda entry: (entry.provider.lower(), entry.name.lower()),
        )

    def is_selectable(self, name: str) -> bool:
        entry = self._entries.get(name)
        return entry is not None and entry.is_chat

    def filter_selectable(self, names: list[str]) -> list[str]:
        """Drop names that are unknown or not chat models.

        Before the first successful refresh every name is passed through
        unchanged, since nothing is known yet.
        """
        if not self.loaded:
            return list(names)
        return [name for name in names if self.is_selectable(name)]
