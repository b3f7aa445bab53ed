"""Async REST and streaming client for the gateway's playground API."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
import logging
from typing import Any

import httpx

from .exceptions import GatewayConnectionError, GatewayConsoleError, GatewayHTTPError
from .models import Conversation, Message, ModelEntry, Page

LOGGER = logging.getLogger(__name__)

CONVERSATION_HEADER = "x-conversation-id"


@dataclass
class ChatRequest:
    """Body of one ``POST /playground/chat`` call for a single model."""

    message: str
    model: str
    conversation_id: str | None = None
    group_id: str | None = None
    temperature: float | None = None
    history_limit: int | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = dict(self.extra)
        payload.update({"message": self.message, "model": self.model, "stream": True})
        if self.conversation_id:
            payload["conversation_id"] = self.conversation_id
        if self.group_id:
            payload["group_id"] = self.group_id
        if self.temperature is not None:
            payload["temperature"] = self.temperature
        if self.history_limit is not None:
            payload["conv_history_limit"] = self.history_limit
        return payload


def _items(body: Any) -> list[Any]:
    if isinstance(body, list):
        return body
    if isinstance(body, dict):
        for key in ("items", "data"):
            value = body.get(key)
            if isinstance(value, list):
                return value
    return []


def _int_or(value: Any, default: int) -> int:
    return value if isinstance(value, int) and not isinstance(value, bool) else default


class GatewayClient:
    """Thin wrapper over ``httpx.AsyncClient`` speaking the gateway API.

    Every httpx failure is mapped to the console's exception hierarchy at this
    boundary; callers never see raw transport exceptions.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 120.0,
        auth_header: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        headers = {"Accept": "application/json"}
        if auth_header:
            headers["Authorization"] = auth_header
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            headers=headers,
            follow_redirects=True,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> GatewayClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    def _map_exception(self, exc: Exception) -> GatewayConsoleError:
        if isinstance(exc, GatewayConsoleError):
            return exc
        if isinstance(exc, httpx.HTTPStatusError):
            detail = exc.response.text.strip() if exc.response is not None else ""
            status = exc.response.status_code if exc.response is not None else 0
            return GatewayHTTPError(
                f"Gateway returned HTTP {status}: {detail[:200] or exc}",
                status_code=status,
            )
        if isinstance(
            exc,
            (
                httpx.ConnectError,
                httpx.ConnectTimeout,
                httpx.ReadTimeout,
                httpx.NetworkError,
            ),
        ):
            return GatewayConnectionError(
                f"Unable to connect to gateway at {self.base_url}."
            )
        return GatewayConnectionError(f"Gateway request failed: {exc}")

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
            response.raise_for_status()
        except Exception as exc:  # noqa: BLE001 - transport can fail in many ways.
            mapped = self._map_exception(exc)
            LOGGER.warning(
                "client.request.failed",
                extra={
                    "event": "client.request.failed",
                    "method": method,
                    "path": path,
                    "error_type": mapped.__class__.__name__,
                },
            )
            raise mapped from exc
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    async def stream_chat(
        self,
        request: ChatRequest,
        on_headers: Callable[[httpx.Headers], None] | None = None,
    ) -> AsyncIterator[bytes]:
        """Open a streaming chat request and yield raw body bytes.

        The stream stays open while the caller iterates and closes when the
        generator is exhausted or closed. Streams are never retried.
        """
        payload = request.to_payload()
        try:
            async with self._client.stream(
                "POST",
                "/playground/chat",
                json=payload,
                headers={"Accept": "text/event-stream"},
            ) as response:
                if response.is_error:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise GatewayHTTPError(
                        body.strip()[:200] or f"Gateway returned HTTP {response.status_code}",
                        status_code=response.status_code,
                    )
                if on_headers is not None:
                    on_headers(response.headers)
                async for chunk in response.aiter_bytes():
                    yield chunk
        except GatewayConsoleError:
            raise
        except httpx.HTTPError as exc:
            raise self._map_exception(exc) from exc

    async def list_conversations(
        self,
        page: int = 1,
        page_size: int = 20,
        keyword: str | None = None,
    ) -> Page[Conversation]:
        params: dict[str, Any] = {"page": page, "page_size": page_size}
        if keyword and keyword.strip():
            params["keyword"] = keyword.strip()
        body = await self._request("GET", "/playground/conversations", params=params)
        items = [
            Conversation.from_api(item)
            for item in _items(body)
            if isinstance(item, dict) and item.get("id")
        ]
        meta = body if isinstance(body, dict) else {}
        return Page(
            items=items,
            total=_int_or(meta.get("total"), len(items)),
            page=_int_or(meta.get("page"), page),
            page_size=_int_or(meta.get("page_size"), page_size),
        )

    async def list_messages(
        self,
        conversation_id: str,
        page: int = 1,
        page_size: int = 20,
        sort: str = "-created_at",
    ) -> Page[Message]:
        body = await self._request(
            "GET",
            f"/playground/conversations/{conversation_id}/messages",
            params={"page": page, "page_size": page_size, "sort": sort},
        )
        items = [Message.from_api(item) for item in _items(body) if isinstance(item, dict)]
        meta = body if isinstance(body, dict) else {}
        return Page(
            items=items,
            total=_int_or(meta.get("total"), len(items)),
            page=_int_or(meta.get("page"), page),
            page_size=_int_or(meta.get("page_size"), page_size),
        )

    async def delete_conversation(self, conversation_id: str) -> None:
        try:
            await self._request("DELETE", f"/playground/conversations/{conversation_id}")
        except GatewayHTTPError as exc:
            if exc.status_code != 404:
                raise

    async def rename_conversation(self, conversation_id: str, title: str) -> None:
        await self._request(
            "PATCH",
            f"/playground/conversations/{conversation_id}",
            json={"title": title},
        )

    async def summarize_title(
        self,
        model: str,
        user_content: str,
        assistant_content: str,
    ) -> str:
        body = await self._request(
            "POST",
            "/playground/summarize-title",
            json={
                "model": model,
                "user_content": user_content,
                "assistant_content": assistant_content,
            },
        )
        if isinstance(body, dict):
            title = body.get("title")
            return title.strip() if isinstance(title, str) else ""
        if isinstance(body, str):
            return body.strip().strip('"')
        return ""

    async def list_models(self) -> list[ModelEntry]:
        body = await self._request("GET", "/models")
        entries: list[ModelEntry] = []
        for item in _items(body):
            if isinstance(item, dict):
                entry = ModelEntry.from_api(item)
                if entry.name:
                    entries.append(entry)
        return entries

    async def rate_message(self, message_id: str, rating: str | None) -> None:
        await self._request(
            "POST",
            f"/playground/messages/{message_id}/rate",
            json={"rating": rating or "none"},
        )

    async def submit_feedback(self, message_id: str, text: str) -> None:
        await self._request(
            "POST",
            f"/playground/messages/{message_id}/feedback",
            json={"feedback": text},
        )
