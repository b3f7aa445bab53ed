"""Tests for the gateway REST and streaming client."""

from __future__ import annotations

import json
import unittest

import httpx

from gateway_console.client import ChatRequest, GatewayClient
from gateway_console.exceptions import GatewayConnectionError, GatewayHTTPError


class RecordingHandler:
    """MockTransport handler that records requests and replies from a route table."""

    def __init__(self, routes: dict[tuple[str, str], httpx.Response | Exception]) -> None:
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        reply = self.routes.get((request.method, request.url.path))
        if reply is None:
            return httpx.Response(404, json={"detail": "not found"})
        if isinstance(reply, Exception):
            raise reply
        # A fresh response per call, since routes may be hit more than once.
        return httpx.Response(reply.status_code, headers=reply.headers, content=reply.content)

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]

    def last_json(self) -> dict:
        return json.loads(self.last.content)


class ChatRequestTests(unittest.TestCase):
    def test_payload_includes_only_set_fields(self) -> None:
        payload = ChatRequest(message="hi", model="m1").to_payload()
        self.assertEqual(payload, {"message": "hi", "model": "m1", "stream": True})

    def test_payload_maps_history_limit_and_extras(self) -> None:
        payload = ChatRequest(
            message="hi",
            model="m1",
            conversation_id="c1",
            group_id="g1",
            temperature=0.0,
            history_limit=6,
            extra={"top_p": 0.9, "stream": False},
        ).to_payload()
        self.assertEqual(payload["conv_history_limit"], 6)
        self.assertEqual(payload["temperature"], 0.0)
        self.assertEqual(payload["conversation_id"], "c1")
        self.assertEqual(payload["group_id"], "g1")
        self.assertEqual(payload["top_p"], 0.9)
        self.assertTrue(payload["stream"])


class GatewayClientTests(unittest.IsolatedAsyncioTestCase):
    """Validate request shapes and error mapping against a mock transport."""

    def _client(self, routes, **kwargs) -> tuple[GatewayClient, RecordingHandler]:
        handler = RecordingHandler(routes)
        client = GatewayClient(
            "http://gateway.test/",
            transport=httpx.MockTransport(handler),
            **kwargs,
        )
        self.addAsyncCleanup(client.aclose)
        return client, handler

    async def test_stream_chat_yields_body_and_reports_headers(self) -> None:
        body = b'data: {"content": "Hi"}\n\ndata: [DONE]\n\n'
        client, handler = self._client(
            {
                ("POST", "/playground/chat"): httpx.Response(
                    200, content=body, headers={"x-conversation-id": "conv-3"}
                )
            },
            auth_header="Bearer secret",
        )
        seen_headers: list[httpx.Headers] = []
        chunks = [
            chunk
            async for chunk in client.stream_chat(
                ChatRequest(message="hi", model="m1"), on_headers=seen_headers.append
            )
        ]
        self.assertEqual(b"".join(chunks), body)
        self.assertEqual(seen_headers[0]["x-conversation-id"], "conv-3")
        self.assertEqual(handler.last.headers["authorization"], "Bearer secret")
        self.assertEqual(handler.last.headers["accept"], "text/event-stream")
        self.assertEqual(handler.last_json()["model"], "m1")

    async def test_stream_chat_error_status_raises_http_error(self) -> None:
        client, _ = self._client(
            {("POST", "/playground/chat"): httpx.Response(500, text="upstream exploded")}
        )
        with self.assertRaises(GatewayHTTPError) as ctx:
            async for _chunk in client.stream_chat(ChatRequest(message="hi", model="m1")):
                pass
        self.assertEqual(ctx.exception.status_code, 500)
        self.assertEqual(str(ctx.exception), "upstream exploded")

    async def test_stream_chat_connect_error_is_mapped(self) -> None:
        client, _ = self._client(
            {("POST", "/playground/chat"): httpx.ConnectError("refused")}
        )
        with self.assertRaises(GatewayConnectionError) as ctx:
            async for _chunk in client.stream_chat(ChatRequest(message="hi", model="m1")):
                pass
        self.assertNotIsInstance(ctx.exception, GatewayHTTPError)

    async def test_list_conversations_sends_keyword_and_parses_page(self) -> None:
        client, handler = self._client(
            {
                ("GET", "/playground/conversations"): httpx.Response(
                    200,
                    json={
                        "items": [{"id": "c1", "title": "Trip"}, {"title": "no id"}],
                        "total": 7,
                        "page": 2,
                        "page_size": 5,
                    },
                )
            }
        )
        page = await client.list_conversations(page=2, page_size=5, keyword=" trip ")
        self.assertEqual([c.id for c in page.items], ["c1"])
        self.assertEqual((page.total, page.page, page.page_size), (7, 2, 5))
        self.assertEqual(handler.last.url.params["keyword"], "trip")

        await client.list_conversations(keyword="   ")
        self.assertNotIn("keyword", handler.last.url.params)

    async def test_list_messages_requests_newest_first(self) -> None:
        client, handler = self._client(
            {
                ("GET", "/playground/conversations/c1/messages"): httpx.Response(
                    200,
                    json=[
                        {"id": "m2", "role": "assistant", "content": [{"type": "text", "text": "B"}]},
                        {"id": "m1", "role": "user", "content": "A"},
                    ],
                )
            }
        )
        page = await client.list_messages("c1", page=3, page_size=10)
        self.assertEqual([m.content for m in page.items], ["B", "A"])
        self.assertEqual(page.total, 2)
        params = handler.last.url.params
        self.assertEqual(
            (params["page"], params["page_size"], params["sort"]), ("3", "10", "-created_at")
        )

    async def test_delete_conversation_ignores_missing(self) -> None:
        client, _ = self._client({})
        await client.delete_conversation("gone")

        failing, _ = self._client(
            {("DELETE", "/playground/conversations/c1"): httpx.Response(500, text="db down")}
        )
        with self.assertRaises(GatewayHTTPError) as ctx:
            await failing.delete_conversation("c1")
        self.assertEqual(ctx.exception.status_code, 500)

    async def test_rename_rate_and_feedback_bodies(self) -> None:
        client, handler = self._client(
            {
                ("PATCH", "/playground/conversations/c1"): httpx.Response(200, json={}),
                ("POST", "/playground/messages/m1/rate"): httpx.Response(204),
                ("POST", "/playground/messages/m1/feedback"): httpx.Response(204),
            }
        )
        await client.rename_conversation("c1", "New title")
        self.assertEqual(handler.last_json(), {"title": "New title"})

        await client.rate_message("m1", None)
        self.assertEqual(handler.last_json(), {"rating": "none"})
        await client.rate_message("m1", "up")
        self.assertEqual(handler.last_json(), {"rating": "up"})

        await client.submit_feedback("m1", "too long")
        self.assertEqual(handler.last_json(), {"feedback": "too long"})

    async def test_summarize_title_accepts_object_or_text(self) -> None:
        client, handler = self._client(
            {("POST", "/playground/summarize-title"): httpx.Response(200, json={"title": " Trip "})}
        )
        self.assertEqual(await client.summarize_title("m1", "q", "a"), "Trip")
        self.assertEqual(
            handler.last_json(),
            {"model": "m1", "user_content": "q", "assistant_content": "a"},
        )

        handler.routes[("POST", "/playground/summarize-title")] = httpx.Response(
            200, text="Paris weather"
        )
        self.assertEqual(await client.summarize_title("m1", "q", "a"), "Paris weather")

    async def test_list_models_skips_nameless_entries(self) -> None:
        client, _ = self._client(
            {
                ("GET", "/models"): httpx.Response(
                    200,
                    json={
                        "data": [
                            {"name": "gpt-4o", "provider": "openai", "type": "chat"},
                            {"name": "text-embed", "type": "Embedding"},
                            {"provider": "broken"},
                        ]
                    },
                )
            }
        )
        models = await client.list_models()
        self.assertEqual([m.name for m in models], ["gpt-4o", "text-embed"])
        self.assertFalse(models[1].is_chat)

    async def test_request_errors_are_mapped(self) -> None:
        client, _ = self._client({("GET", "/models"): httpx.ReadTimeout("slow")})
        with self.assertLogs("gateway_console.client", level="WARNING"):
            with self.assertRaises(GatewayConnectionError):
                await client.list_models()


if __name__ == "__main__":
    unittest.main()
