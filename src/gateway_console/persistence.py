"""On-disk persistence of open playground tabs."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from .exceptions import GatewayConsoleError
from .models import Tab

LOGGER = logging.getLogger(__name__)

STATE_VERSION = 1


class PersistenceError(GatewayConsoleError):
    """Raised when persistence operations fail."""


class PersistenceDisabledError(PersistenceError):
    """Raised when persistence is disabled in configuration."""


class PersistenceFormatError(PersistenceError):
    """Raised when a persisted payload cannot be decoded safely."""


class TabStatePersistence:
    """Save and restore tab metadata. Message bodies are never written."""

    def __init__(self, enabled: bool, path: str) -> None:
        self.enabled = enabled
        self.path = Path(path).expanduser()

    def _enforce_permissions(self, path: Path, mode: int = 0o600) -> None:
        """Set POSIX permissions on a file or directory; silently ignores failures."""
        if os.name != "posix":
            return
        try:
            path.chmod(mode)
        except OSError:
            pass

    def _ensure_parent(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._enforce_permissions(self.path.parent, 0o700)

    def _decode(self, payload: Any) -> tuple[list[Tab], str | None]:
        if not isinstance(payload, dict):
            raise PersistenceFormatError("Tab state payload is not an object.")
        raw_tabs = payload.get("tabs")
        if not isinstance(raw_tabs, list):
            raise PersistenceFormatError("Tab state payload has no tab list.")
        tabs: list[Tab] = []
        seen: set[str] = set()
        for item in raw_tabs:
            if not isinstance(item, dict):
                continue
            tab = Tab.from_dict(item)
            if tab.id in seen:
                continue
            seen.add(tab.id)
            tabs.append(tab)
        active = payload.get("active_tab_id")
        if not isinstance(active, str) or active not in seen:
            active = tabs[0].id if tabs else None
        return tabs, active

    def load(self) -> tuple[list[Tab], str | None]:
        """Return saved tabs and the active tab id; unreadable state yields no tabs."""
        if not self.enabled or not self.path.exists():
            return [], None
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
            return self._decode(payload)
        except (OSError, ValueError, PersistenceFormatError) as exc:
            LOGGER.warning(
                "persistence.load.failed",
                extra={
                    "event": "persistence.load.failed",
                    "path": str(self.path),
                    "reason": str(exc),
                },
            )
            return [], None

    def save(self, tabs: list[Tab], active_tab_id: str | None) -> Path:
        """Write tab state atomically with private permissions."""
        if not self.enabled:
            raise PersistenceDisabledError("Persistence is disabled in configuration.")
        self._ensure_parent()
        payload: dict[str, Any] = {
            "version": STATE_VERSION,
            "active_tab_id": active_tab_id,
            "tabs": [tab.to_dict() for tab in tabs],
        }
        temporary = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            temporary.write_text(
                json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True),
                encoding="utf-8",
            )
            self._enforce_permissions(temporary)
            temporary.replace(self.path)
        except OSError as exc:
            raise PersistenceError(f"Unable to save tab state to {self.path}: {exc}") from exc
        self._enforce_permissions(self.path)
        return self.path

    def clear(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as exc:
            raise PersistenceError(f"Unable to remove tab state at {self.path}: {exc}") from exc
