"""Playground domain records and their wire-format mapping."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
import json
from typing import Any, Generic, Literal, TypeVar
from uuid import uuid4

Role = Literal["user", "assistant", "system", "tool"]
Rating = Literal["up", "down"]

VALID_ROLES: frozenset[str] = frozenset({"user", "assistant", "system", "tool"})
DEFAULT_TITLES: frozenset[str] = frozenset({"", "new chat", "new tab", "untitled"})

T = TypeVar("T")


def utc_now() -> datetime:
    return datetime.now(UTC)


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 timestamp from the backend; naive values are treated as UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError:
            return utc_now()
    else:
        return utc_now()
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _content_text(raw: Any) -> str:
    """Flatten backend content (plain text or a list of typed parts) to a string."""
    if isinstance(raw, str):
        return raw
    if isinstance(raw, list) and raw:
        first = raw[0]
        if isinstance(first, dict) and isinstance(first.get("text"), str):
            return first["text"]
    if raw is None:
        return ""
    return json.dumps(raw, ensure_ascii=False)


def _optional_str(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


@dataclass(frozen=True)
class Message:
    """One committed conversation message.

    Only ``rating`` and ``feedback`` change after a message is committed, and
    they change by replacement inside the store, never in place.
    """

    id: str
    role: Role
    content: str
    created_at: datetime = field(default_factory=utc_now)
    model_id: str | None = None
    reasoning: str | None = None
    rating: Rating | None = None
    feedback: str | None = None
    generation_id: str | None = None
    group_id: str | None = None
    # False for ids minted locally; the gateway cannot rate or annotate those.
    persisted: bool = field(default=False, compare=False)

    @property
    def rateable(self) -> bool:
        return self.role == "assistant" and self.persisted

    @classmethod
    def user(cls, content: str, *, message_id: str | None = None) -> Message:
        """Build an optimistic user message with a locally generated id."""
        return cls(id=message_id or str(uuid4()), role="user", content=content)

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> Message:
        role = str(payload.get("role") or "user").strip().lower()
        if role not in VALID_ROLES:
            role = "user"
        rating = payload.get("rating")
        return cls(
            id=str(payload.get("id") or uuid4()),
            role=role,  # type: ignore[arg-type]
            content=_content_text(payload.get("content")),
            created_at=parse_timestamp(payload.get("created_at")),
            model_id=_optional_str(payload.get("model_id") or payload.get("model")),
            reasoning=_optional_str(payload.get("reasoning_content")),
            rating=rating if rating in ("up", "down") else None,
            feedback=_optional_str(payload.get("feedback")),
            generation_id=_optional_str(payload.get("generation_id")),
            group_id=_optional_str(payload.get("group_id")),
            persisted=bool(payload.get("id")),
        )


@dataclass
class Conversation:
    """Cached projection of a backend-owned conversation."""

    id: str
    title: str = ""
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def has_default_title(self) -> bool:
        return self.title.strip().lower() in DEFAULT_TITLES

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> Conversation:
        return cls(
            id=str(payload.get("id", "")),
            title=str(payload.get("title") or ""),
            created_at=parse_timestamp(payload.get("created_at")),
            updated_at=parse_timestamp(
                payload.get("updated_at") or payload.get("created_at")
            ),
        )


@dataclass(frozen=True)
class ModelEntry:
    """A selectable model from the gateway registry."""

    name: str
    provider: str = "unknown"
    type: str = "chat"
    description: str | None = None
    context_window: int | None = None

    @property
    def is_chat(self) -> bool:
        return self.type == "chat"

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> ModelEntry:
        window = payload.get("context_window")
        return cls(
            name=str(payload.get("name", "")).strip(),
            provider=str(payload.get("provider") or "unknown"),
            type=str(payload.get("type") or "chat").strip().lower(),
            description=_optional_str(payload.get("description")),
            context_window=window if isinstance(window, int) else None,
        )


@dataclass
class Page(Generic[T]):
    """Paginated list envelope shared by list endpoints."""

    items: list[T]
    total: int
    page: int
    page_size: int


@dataclass
class PageCursor:
    """Bookmark for backward history pagination."""

    page_size: int = 20
    next_page: int = 1
    exhausted: bool = False

    def reset(self, seeded_count: int = 0) -> None:
        """Reposition the cursor for a freshly bound conversation."""
        if seeded_count <= 0:
            self.next_page = 1
            self.exhausted = False
        elif seeded_count < self.page_size:
            self.next_page = 2
            self.exhausted = True
        else:
            self.next_page = seeded_count // self.page_size + 1
            self.exhausted = False

    def advance(self, received: int) -> None:
        if received > 0:
            self.next_page += 1
        if received < self.page_size:
            self.exhausted = True


@dataclass
class Tab:
    """One open playground session; the unit of persisted UI state."""

    id: str = field(default_factory=lambda: str(uuid4()))
    title: str = "New Chat"
    conversation_id: str | None = None
    selected_model_ids: list[str] = field(default_factory=list)
    temperature: float | None = None
    history_limit: int = 10
    scroll_position: float | None = None
    # Seed messages for the first render; never persisted.
    messages: list[Message] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "conversation_id": self.conversation_id,
            "selected_model_ids": list(self.selected_model_ids),
            "temperature": self.temperature,
            "history_limit": self.history_limit,
            "scroll_position": self.scroll_position,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Tab:
        models = payload.get("selected_model_ids")
        temperature = payload.get("temperature")
        scroll = payload.get("scroll_position")
        history_limit = payload.get("history_limit")
        return cls(
            id=str(payload.get("id") or uuid4()),
            title=str(payload.get("title") or "New Chat"),
            conversation_id=_optional_str(payload.get("conversation_id")),
            selected_model_ids=[
                str(item).strip()
                for item in (models if isinstance(models, list) else [])
                if str(item).strip()
            ],
            temperature=float(temperature)
            if isinstance(temperature, (int, float))
            else None,
            history_limit=int(history_limit)
            if isinstance(history_limit, int) and history_limit >= 0
            else 10,
            scroll_position=float(scroll) if isinstance(scroll, (int, float)) else None,
        )
