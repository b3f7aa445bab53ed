"""Configuration loading and validation for the gateway console."""

from __future__ import annotations

from copy import deepcopy
import logging
import os
from pathlib import Path
import re
from typing import Any
from urllib.parse import urlparse

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
)

from .exceptions import ConfigValidationError

import tomllib  # stdlib since Python 3.11 (project requires >=3.11)

LOGGER = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".config" / "gateway-console"
CONFIG_PATH = CONFIG_DIR / "config.toml"

HEX_COLOR_PATTERN = re.compile(r"^#(?:[0-9a-fA-F]{3}){1,2}$")
VALID_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


def _required_string(value: Any) -> str:
    if not isinstance(value, str):
        raise ValueError("Expected a string value.")
    normalized = value.strip()
    if not normalized:
        raise ValueError("String value must not be empty.")
    return normalized


class AppConfig(BaseModel):
    """Application metadata and terminal integration options."""

    model_config = ConfigDict(populate_by_name=True)
    title: str = "Gateway Console"
    window_class: str = Field(default="gateway-console", alias="class")

    @field_validator("title", "window_class", mode="before")
    @classmethod
    def _validate_non_empty_string(cls, value: Any) -> str:
        return _required_string(value)


class GatewayConfig(BaseModel):
    """Gateway endpoint, credentials and default model selection."""

    base_url: str = "http://localhost:8000"
    timeout: int = Field(default=120, ge=1, le=3600)
    auth_header: str = ""
    default_models: list[str] = Field(default_factory=list)

    @field_validator("base_url", mode="before")
    @classmethod
    def _validate_base_url(cls, value: Any) -> str:
        normalized = _required_string(value).rstrip("/")
        parsed = urlparse(normalized)
        if parsed.scheme.lower() not in {"http", "https"}:
            raise ValueError("gateway.base_url must use http or https scheme.")
        if not parsed.hostname:
            raise ValueError("gateway.base_url must include a hostname.")
        return normalized

    @field_validator("auth_header", mode="before")
    @classmethod
    def _normalize_auth_header(cls, value: Any) -> str:
        if value is None:
            return ""
        if not isinstance(value, str):
            raise ValueError("auth_header must be a string.")
        return value.strip()

    @field_validator("default_models", mode="before")
    @classmethod
    def _validate_models(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if not isinstance(value, list):
            raise ValueError("default_models must be a list of model names.")

        normalized: list[str] = []
        for item in value:
            if not isinstance(item, str):
                raise ValueError("Each model name in default_models must be a string.")
            candidate = item.strip()
            if not candidate:
                raise ValueError("Model names in default_models must not be empty.")
            if candidate not in normalized:
                normalized.append(candidate)
        return normalized


class PlaygroundConfig(BaseModel):
    """Streaming, pagination, scrolling and title generation tunables."""

    page_size: int = Field(default=20, ge=1, le=500)
    default_temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    default_history_limit: int = Field(default=10, ge=0, le=1000)
    stream_update_interval_ms: int = Field(default=100, ge=0, le=5000)
    title_min_assistant_chars: int = Field(default=10, ge=1, le=10_000)
    summary_model: str = ""
    scroll_top_threshold: int = Field(default=2, ge=0, le=1000)
    scroll_bottom_threshold: int = Field(default=3, ge=0, le=1000)

    @field_validator("summary_model", mode="before")
    @classmethod
    def _normalize_summary_model(cls, value: Any) -> str:
        if value is None:
            return ""
        if not isinstance(value, str):
            raise ValueError("summary_model must be a string.")
        return value.strip()


class UIConfig(BaseModel):
    """Visual settings for Textual rendering."""

    background_color: str = "#1a1b26"
    user_message_color: str = "#7aa2f7"
    assistant_message_color: str = "#9ece6a"
    border_color: str = "#565f89"
    show_timestamps: bool = True
    show_reasoning: bool = True

    @field_validator(
        "background_color",
        "user_message_color",
        "assistant_message_color",
        "border_color",
        mode="before",
    )
    @classmethod
    def _validate_hex_color(cls, value: Any) -> str:
        normalized = _required_string(value)
        if not HEX_COLOR_PATTERN.match(normalized):
            raise ValueError("Color must use #RGB or #RRGGBB format.")
        return normalized


class KeybindsConfig(BaseModel):
    """Keyboard action mapping."""

    send_message: str = "ctrl+s"
    stop_stream: str = "escape"
    quit: str = "ctrl+q"
    new_tab: str = "ctrl+t"
    next_tab: str = "ctrl+l"
    close_tab: str = "f4"
    select_models: str = "f2"
    open_conversation: str = "ctrl+o"
    rename_conversation: str = "ctrl+r"
    new_conversation: str = "ctrl+n"
    rate_up: str = "f7"
    rate_down: str = "f8"
    scroll_to_bottom: str = "ctrl+b"
    feedback: str = "f9"
    show_help: str = "f1"

    @field_validator("*", mode="before")
    @classmethod
    def _validate_keybind(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("Keybind must be a string.")
        normalized = value.strip()
        if not normalized:
            raise ValueError("Keybind must not be empty.")
        return normalized


class LoggingConfig(BaseModel):
    """Logging behavior and output destinations."""

    level: str = "INFO"
    structured: bool = True
    log_to_file: bool = False
    log_file_path: str = "~/.local/state/gateway-console/app.log"

    @field_validator("level", mode="before")
    @classmethod
    def _validate_level(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("Logging level must be a string.")
        normalized = value.strip().upper()
        if normalized not in VALID_LOG_LEVELS:
            raise ValueError(f"Unsupported log level {normalized!r}.")
        return normalized

    @field_validator("log_file_path", mode="before")
    @classmethod
    def _validate_log_file_path(cls, value: Any) -> str:
        return _required_string(value)


class PersistenceConfig(BaseModel):
    """Where open tabs are remembered between runs."""

    enabled: bool = True
    tabs_path: str = "~/.local/state/gateway-console/tabs.json"

    @field_validator("tabs_path", mode="before")
    @classmethod
    def _validate_path_string(cls, value: Any) -> str:
        return _required_string(value)


class Config(BaseModel):
    """Root configuration model for all sections."""

    model_config = ConfigDict(populate_by_name=True)
    app: AppConfig = AppConfig()
    gateway: GatewayConfig = GatewayConfig()
    playground: PlaygroundConfig = PlaygroundConfig()
    ui: UIConfig = UIConfig()
    keybinds: KeybindsConfig = KeybindsConfig()
    logging: LoggingConfig = LoggingConfig()
    persistence: PersistenceConfig = PersistenceConfig()


DEFAULT_CONFIG: dict[str, dict[str, Any]] = Config().model_dump(by_alias=True)


def ensure_config_dir(config_dir: Path | None = None) -> Path:
    """Ensure that the config directory exists and return its path."""
    directory = config_dir or CONFIG_DIR
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        LOGGER.warning("Unable to create config directory %s: %s", directory, exc)
    return directory


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override values onto base values."""
    merged: dict[str, Any] = deepcopy(base)
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _enforce_private_permissions(path: Path) -> None:
    """Best-effort enforcement of private file permissions on POSIX systems."""
    if os.name != "posix" or not path.exists():
        return
    try:
        path.chmod(0o600)
    except OSError as exc:
        LOGGER.warning("Unable to enforce 0600 permissions for %s: %s", path, exc)


def _safe_default_config() -> dict[str, dict[str, Any]]:
    return deepcopy(DEFAULT_CONFIG)


def _validate_config(raw: dict[str, Any]) -> dict[str, dict[str, Any]]:
    """Validate merged config and fallback to safe defaults when possible."""
    try:
        config = Config.model_validate(raw)
        return config.model_dump(by_alias=True)
    except ValidationError as exc:
        LOGGER.warning("Configuration validation failed, using safe defaults: %s", exc)
        return _safe_default_config()
    except Exception as exc:  # noqa: BLE001 - unexpected model construction failure.
        raise ConfigValidationError(f"Unable to validate configuration: {exc}") from exc


def load_config(config_path: Path | None = None) -> dict[str, dict[str, Any]]:
    """
    Load configuration from TOML, merge with defaults, and validate.

    The optional ``config_path`` argument is intended for tests and the
    ``--config`` command line flag.
    """
    target_path = config_path or CONFIG_PATH
    ensure_config_dir(target_path.parent)

    raw_data: dict[str, Any] = {}
    if target_path.exists():
        _enforce_private_permissions(target_path)
        try:
            raw_data = tomllib.loads(target_path.read_text(encoding="utf-8"))
        except (
            Exception
        ) as exc:  # noqa: BLE001 - we must not crash on invalid user config.
            LOGGER.warning("Failed to parse config at %s: %s", target_path, exc)
            raw_data = {}

    merged = (
        _deep_merge(DEFAULT_CONFIG, raw_data)
        if isinstance(raw_data, dict)
        else _safe_default_config()
    )
    return _validate_config(merged)
