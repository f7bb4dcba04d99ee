"""Tests for the repair-service HTTP client (httpx.MockTransport, no network)."""
from __future__ import annotations

import json

import httpx
import pytest

from question_validator.llm.client import (
    ANTHROPIC_VERSION,
    RepairAuthError,
    RepairClient,
    RepairConnectionError,
    RepairResponseError,
    RepairTimeoutError,
)


def _client(handler) -> RepairClient:
    return RepairClient(
        api_key="sk-test-key-0123456789",
        model="claude-test",
        base_url="https://repair.test",
        max_tokens=123,
        temperature=0.1,
        timeout_s=5,
        transport=httpx.MockTransport(handler),
    )


def _message(*texts: str) -> dict:
    return {"content": [{"type": "text", "text": text} for text in texts]}


# ---------------------------------------------------------------------------
# complete()
# ---------------------------------------------------------------------------


class TestComplete:
    async def test_sends_messages_request(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=_message("hello"))

        async with _client(handler) as client:
            assert await client.complete("fix this") == "hello"

        request = seen[0]
        assert request.method == "POST"
        assert request.url == "https://repair.test/v1/messages"
        assert request.headers["x-api-key"] == "sk-test-key-0123456789"
        assert request.headers["anthropic-version"] == ANTHROPIC_VERSION
        body = json.loads(request.content)
        assert body["model"] == "claude-test"
        assert body["max_tokens"] == 123
        assert body["temperature"] == 0.1
        assert body["messages"] == [{"role": "user", "content": "fix this"}]

    async def test_text_blocks_are_concatenated(self):
        def handler(request):
            payload = _message("{\"a\":", " 1}")
            payload["content"].insert(1, {"type": "tool_use", "id": "x"})
            return httpx.Response(200, json=payload)

        async with _client(handler) as client:
            assert await client.complete("p") == '{"a": 1}'
            assert client.last_latency_ms is not None

    async def test_empty_content_raises(self):
        async with _client(lambda request: httpx.Response(200, json={"content": []})) as client:
            with pytest.raises(RepairResponseError, match="No text content"):
                await client.complete("p")

    @pytest.mark.parametrize("status", [401, 403])
    async def test_auth_errors(self, status):
        async with _client(lambda request: httpx.Response(status, json={})) as client:
            with pytest.raises(RepairAuthError):
                await client.complete("p")

    async def test_server_error_carries_message(self):
        def handler(request):
            return httpx.Response(529, json={"error": {"type": "overloaded_error", "message": "Overloaded"}})

        async with _client(handler) as client:
            with pytest.raises(RepairResponseError, match="Overloaded"):
                await client.complete("p")

    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        async with _client(handler) as client:
            with pytest.raises(RepairTimeoutError):
                await client.complete("p")

    async def test_connect_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with _client(handler) as client:
            with pytest.raises(RepairConnectionError):
                await client.complete("p")


# ---------------------------------------------------------------------------
# is_available()
# ---------------------------------------------------------------------------


class TestIsAvailable:
    async def test_true_on_200(self):
        async with _client(lambda request: httpx.Response(200, json={"data": []})) as client:
            assert await client.is_available() is True

    async def test_false_on_error_status(self):
        async with _client(lambda request: httpx.Response(401)) as client:
            assert await client.is_available() is False

    async def test_never_raises(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with _client(handler) as client:
            assert await client.is_available() is False
