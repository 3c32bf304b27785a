"""Wire-level tests for the model client using httpx.MockTransport."""
from __future__ import annotations

import json

import httpx
import pytest

from pitchreview.errors import (
    EmptyCompletion,
    LLMCallError,
    TransportError,
    UpstreamError,
    UpstreamPaymentRequired,
    UpstreamRateLimited,
    UpstreamTimeout,
)
from pitchreview.llm import LLMClient, status_error


def _gemini_reply(text: str) -> dict:
    return {"candidates": [{"content": {"role": "model", "parts": [{"text": text}]}}]}


def _openai_reply(text: str) -> dict:
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "created": 0,
        "model": "gpt-test",
        "choices": [{"index": 0, "message": {"role": "assistant", "content": text}, "finish_reason": "stop"}],
    }


def _anthropic_reply(text: str) -> dict:
    return {
        "id": "msg_1",
        "type": "message",
        "role": "assistant",
        "model": "claude-test",
        "content": [{"type": "text", "text": text}],
        "stop_reason": "end_turn",
        "stop_sequence": None,
        "usage": {"input_tokens": 1, "output_tokens": 1},
    }


class Recorder:
    """Mock transport handler replaying a script of responses or exceptions."""

    def __init__(self, *script):
        self.script = list(script)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        step = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(step, type) and issubclass(step, Exception):
            raise step("simulated", request=request)
        status, body = step
        return httpx.Response(status, json=body)

    @property
    def calls(self) -> int:
        return len(self.requests)


def _client(provider: str, recorder: Recorder, **kwargs) -> LLMClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(recorder))
    defaults = {"api_key": "test-key", "max_retries": 2, "backoff": 0, "timeout": 5}
    if provider != "gemini":
        defaults["base_url"] = "https://llm.test/v1" if provider == "openai" else "https://llm.test"
    defaults.update(kwargs)
    return LLMClient(provider=provider, http_client=http, **defaults)


class TestStatusError:
    def test_rate_limited(self):
        assert isinstance(status_error(429), UpstreamRateLimited)

    def test_payment_required(self):
        assert isinstance(status_error(402), UpstreamPaymentRequired)

    def test_server_error_retryable(self):
        err = status_error(503, "unavailable")
        assert isinstance(err, UpstreamError)
        assert err.status == 503
        assert err.retryable

    def test_client_error_not_retryable(self):
        assert not status_error(400, "bad").retryable


class TestGemini:
    @pytest.mark.asyncio
    async def test_success_request_shape(self):
        rec = Recorder((200, _gemini_reply('{"a": 1}')))
        client = _client("gemini", rec, model="gemini-test")
        text = await client.complete("sys", "user prompt", temperature=0.2, max_tokens=100)
        assert text == '{"a": 1}'
        req = rec.requests[0]
        assert req.url.path.endswith("/models/gemini-test:generateContent")
        assert req.headers["x-goog-api-key"] == "test-key"
        payload = json.loads(req.content)
        assert payload["generationConfig"] == {"temperature": 0.2, "maxOutputTokens": 100}
        assert payload["systemInstruction"]["parts"][0]["text"] == "sys"
        assert payload["contents"][0]["parts"][0]["text"] == "user prompt"

    @pytest.mark.asyncio
    async def test_rate_limit_not_retried(self):
        rec = Recorder((429, {"error": "slow down"}))
        with pytest.raises(UpstreamRateLimited):
            await _client("gemini", rec).complete("s", "u")
        assert rec.calls == 1

    @pytest.mark.asyncio
    async def test_payment_required_not_retried(self):
        rec = Recorder((402, {"error": "no credits"}))
        with pytest.raises(UpstreamPaymentRequired):
            await _client("gemini", rec).complete("s", "u")
        assert rec.calls == 1

    @pytest.mark.asyncio
    async def test_server_error_retried_then_succeeds(self):
        rec = Recorder((503, {"error": "busy"}), (200, _gemini_reply("ok")))
        assert await _client("gemini", rec).complete("s", "u") == "ok"
        assert rec.calls == 2

    @pytest.mark.asyncio
    async def test_server_error_gives_up_after_max_retries(self):
        rec = Recorder((500, {"error": "boom"}))
        with pytest.raises(UpstreamError) as info:
            await _client("gemini", rec, max_retries=2).complete("s", "u")
        assert info.value.status == 500
        assert rec.calls == 3

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        rec = Recorder((400, {"error": "bad request"}))
        with pytest.raises(UpstreamError):
            await _client("gemini", rec).complete("s", "u")
        assert rec.calls == 1

    @pytest.mark.asyncio
    async def test_timeout_not_retried(self):
        rec = Recorder(httpx.ReadTimeout)
        with pytest.raises(UpstreamTimeout):
            await _client("gemini", rec).complete("s", "u")
        assert rec.calls == 1

    @pytest.mark.asyncio
    async def test_connection_error_retried(self):
        rec = Recorder(httpx.ConnectError, (200, _gemini_reply("ok")))
        assert await _client("gemini", rec).complete("s", "u") == "ok"
        assert rec.calls == 2

    @pytest.mark.asyncio
    async def test_connection_error_exhausted(self):
        rec = Recorder(httpx.ConnectError)
        with pytest.raises(TransportError):
            await _client("gemini", rec, max_retries=1).complete("s", "u")
        assert rec.calls == 2

    @pytest.mark.asyncio
    async def test_empty_reply(self):
        rec = Recorder((200, _gemini_reply("   ")))
        with pytest.raises(EmptyCompletion):
            await _client("gemini", rec).complete("s", "u")

    @pytest.mark.asyncio
    async def test_unexpected_shape(self):
        rec = Recorder((200, {"candidates": [{"nothing": True}]}))
        with pytest.raises(UpstreamError):
            await _client("gemini", rec, max_retries=0).complete("s", "u")


class TestOpenAI:
    @pytest.mark.asyncio
    async def test_success(self):
        rec = Recorder((200, _openai_reply("hello")))
        client = _client("openai", rec, model="gpt-test")
        assert await client.complete("sys", "usr", temperature=0.3, max_tokens=50) == "hello"
        req = rec.requests[0]
        assert req.url.path == "/v1/chat/completions"
        body = json.loads(req.content)
        assert body["model"] == "gpt-test"
        assert body["temperature"] == 0.3
        assert body["max_tokens"] == 50
        assert [m["role"] for m in body["messages"]] == ["system", "user"]

    @pytest.mark.asyncio
    async def test_rate_limit_not_retried(self):
        rec = Recorder((429, {"error": {"message": "rate limited"}}))
        with pytest.raises(UpstreamRateLimited):
            await _client("openai", rec).complete("s", "u")
        assert rec.calls == 1

    @pytest.mark.asyncio
    async def test_server_error_retried(self):
        rec = Recorder((502, {"error": {"message": "bad gateway"}}), (200, _openai_reply("ok")))
        assert await _client("openai", rec).complete("s", "u") == "ok"
        assert rec.calls == 2


class TestAnthropic:
    @pytest.mark.asyncio
    async def test_success(self):
        rec = Recorder((200, _anthropic_reply("bonjour")))
        client = _client("anthropic", rec, model="claude-test")
        assert await client.complete("sys", "usr") == "bonjour"
        body = json.loads(rec.requests[0].content)
        assert body["system"] == "sys"
        assert body["messages"] == [{"role": "user", "content": "usr"}]

    @pytest.mark.asyncio
    async def test_payment_required(self):
        rec = Recorder((402, {"type": "error", "error": {"type": "billing_error", "message": "no credits"}}))
        with pytest.raises(UpstreamPaymentRequired):
            await _client("anthropic", rec).complete("s", "u")
        assert rec.calls == 1


class TestConstruction:
    @pytest.mark.asyncio
    async def test_missing_api_key_fails_on_first_call(self, monkeypatch):
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        client = LLMClient(provider="gemini", api_key="")
        with pytest.raises(LLMCallError) as info:
            await client.complete("s", "u")
        assert "GEMINI_API_KEY" in info.value.message
        assert not info.value.retryable
        await client.aclose()

    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            LLMClient(provider="carrier-pigeon", api_key="k")

    def test_default_model(self):
        client = _client("gemini", Recorder((200, _gemini_reply("x"))), model=None)
        assert client.model


class TestClose:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("provider", ["gemini", "openai", "anthropic"])
    async def test_injected_http_client_left_open(self, provider):
        rec = Recorder((200, _gemini_reply("ok")))
        http = httpx.AsyncClient(transport=httpx.MockTransport(rec))
        client = LLMClient(provider=provider, api_key="k", base_url="https://llm.test", http_client=http)
        client._init_client()
        await client.aclose()
        assert not http.is_closed
        await http.aclose()

    @pytest.mark.asyncio
    async def test_owned_gemini_client_closed(self):
        client = LLMClient(provider="gemini", api_key="k")
        client._init_client()
        owned = client._client
        await client.aclose()
        assert owned.is_closed

    @pytest.mark.asyncio
    async def test_close_before_first_call(self):
        await LLMClient(provider="gemini", api_key="k").aclose()
