"""Tests for single-model response channels."""

from __future__ import annotations

import asyncio
import json
import unittest

import httpx

from gateway_console.channel import (
    Cancelled,
    ChannelState,
    Completed,
    Errored,
    ModelChannel,
)
from gateway_console.client import ChatRequest
from gateway_console.exceptions import GatewayConnectionError, UpstreamModelError


def _frame(payload: object) -> bytes:
    return f"data: {json.dumps(payload)}\n".encode("utf-8")


class FakeStreamClient:
    """Stand-in for GatewayClient.stream_chat driven by a fixed chunk list."""

    def __init__(
        self,
        chunks: list[bytes] | None = None,
        *,
        headers: dict[str, str] | None = None,
        error: Exception | None = None,
        hang: bool = False,
    ) -> None:
        self.chunks = chunks or []
        self.headers = headers
        self.error = error
        self.hang = hang
        self.calls: list[ChatRequest] = []

    def stream_chat(self, request, on_headers=None):
        self.calls.append(request)
        return self._stream(on_headers)

    async def _stream(self, on_headers):
        if self.error is not None:
            raise self.error
        if on_headers is not None and self.headers:
            on_headers(httpx.Headers(self.headers))
        for chunk in self.chunks:
            yield chunk
            await asyncio.sleep(0)
        if self.hang:
            await asyncio.Event().wait()


async def _wait_for(predicate, attempts: int = 200) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition was never met")


class ModelChannelTests(unittest.IsolatedAsyncioTestCase):
    """Validate accumulation, terminal states and cancellation."""

    def _channel(self, client: FakeStreamClient, **kwargs) -> ModelChannel:
        return ModelChannel(client, ChatRequest(message="hi", model="m1"), **kwargs)

    async def test_completes_with_text_and_generation_id(self) -> None:
        client = FakeStreamClient(
            [
                _frame({"id": "gen-9", "choices": [{"delta": {"content": "Hel"}}]}),
                _frame({"id": "gen-9", "choices": [{"delta": {"content": "lo"}}]}),
                b"data: [DONE]\n",
            ]
        )
        channel = self._channel(client)
        result = await channel.run()
        self.assertEqual(result, Completed("Hello", "", "gen-9"))
        self.assertEqual(channel.state, ChannelState.COMPLETED)
        self.assertTrue(channel.state.terminal)
        self.assertEqual(channel.model_id, "m1")

    async def test_conversation_id_from_response_header(self) -> None:
        client = FakeStreamClient(
            [_frame({"content": "x"})], headers={"x-conversation-id": "conv-7"}
        )
        channel = self._channel(client)
        await channel.run()
        self.assertEqual(channel.conversation_id, "conv-7")

    async def test_server_message_id_reaches_result(self) -> None:
        client = FakeStreamClient(
            [
                _frame({"message_id": "srv-7", "generation_id": "gen-1"}),
                _frame({"content": "Hi"}),
                b"data: [DONE]\n",
            ]
        )
        result = await self._channel(client).run()
        self.assertEqual(result, Completed("Hi", "", "gen-1", "srv-7"))

    async def test_cancelled_result_keeps_server_message_id(self) -> None:
        client = FakeStreamClient(
            [_frame({"message_id": "srv-7"}), _frame({"content": "Hi"})], hang=True
        )
        channel = self._channel(client)
        task = asyncio.create_task(channel.run())
        await _wait_for(lambda: channel.text == "Hi")
        channel.cancel()
        self.assertEqual(await task, Cancelled("Hi", "", "srv-7"))

    async def test_error_event_keeps_partial_text_for_display(self) -> None:
        client = FakeStreamClient(
            [_frame({"content": "par"}), _frame({"error": {"message": "boom"}})]
        )
        channel = self._channel(client)
        result = await channel.run()
        self.assertIsInstance(result, Errored)
        self.assertEqual(result.reason, "boom")
        self.assertEqual(result.partial_text, "par")
        self.assertIsInstance(result.error, UpstreamModelError)
        self.assertEqual(channel.state, ChannelState.ERRORED)

    async def test_transport_error_is_errored(self) -> None:
        client = FakeStreamClient(error=GatewayConnectionError("gateway down"))
        channel = self._channel(client)
        result = await channel.run()
        self.assertIsInstance(result, Errored)
        self.assertEqual(result.reason, "gateway down")
        self.assertEqual(result.partial_text, "")

    async def test_cancel_mid_stream_keeps_received_text(self) -> None:
        client = FakeStreamClient([_frame({"content": "Hi"})], hang=True)
        channel = self._channel(client)
        task = asyncio.create_task(channel.run())
        await _wait_for(lambda: channel.text == "Hi")

        channel.cancel()
        result = await task
        self.assertEqual(result, Cancelled("Hi", ""))
        self.assertEqual(channel.state, ChannelState.CANCELLED)
        self.assertFalse(task.cancelled())

    async def test_cancel_before_start_skips_transport(self) -> None:
        client = FakeStreamClient([_frame({"content": "never"})])
        channel = self._channel(client)
        channel.cancel()
        self.assertTrue(channel.cancel_requested)

        result = await channel.run()
        self.assertEqual(result, Cancelled())
        self.assertEqual(client.calls, [])

    async def test_run_twice_raises(self) -> None:
        channel = self._channel(FakeStreamClient([b"data: [DONE]\n"]))
        await channel.run()
        with self.assertRaises(RuntimeError):
            await channel.run()

    async def test_updates_are_throttled_and_final_snapshot_is_forced(self) -> None:
        client = FakeStreamClient(
            [_frame({"content": "a"}), _frame({"content": "b"}), _frame({"content": "c"})]
        )
        channel = self._channel(client, min_update_interval_seconds=1.0, clock=lambda: 0.0)
        snapshots = []
        channel.subscribe(snapshots.append)

        await channel.run()

        self.assertEqual(len(snapshots), 2)
        self.assertEqual(snapshots[0].text, "a")
        self.assertFalse(snapshots[0].final)
        self.assertEqual(snapshots[1].text, "abc")
        self.assertTrue(snapshots[1].final)

    async def test_failing_subscriber_does_not_break_stream(self) -> None:
        client = FakeStreamClient([_frame({"content": "ok"})])
        channel = self._channel(client)

        def _broken(_snapshot) -> None:
            raise ValueError("view gone")

        channel.subscribe(_broken)
        with self.assertLogs("gateway_console.channel", level="ERROR"):
            result = await channel.run()
        self.assertEqual(result, Completed("ok"))


if __name__ == "__main__":
    unittest.main()
