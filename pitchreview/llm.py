"""Async model client: one logical generation call with typed failures.

Retry policy
------------
Only transient failures are retried, with exponential backoff:

- HTTP 5xx responses (:class:`UpstreamError` with ``retryable=True``)
- connection failures (:class:`TransportError`)

Rate limiting (429) and exhausted quota (402) are surfaced to the caller on the
first occurrence. Timeouts are not retried either; the timeout is the budget
for the whole call. SDK-level retries are disabled so this is the only policy.
"""
from __future__ import annotations

import asyncio
import logging
import os
from typing import Any

import httpx

from pitchreview.config import get_settings
from pitchreview.errors import (
    EmptyCompletion,
    LLMCallError,
    TransportError,
    UpstreamError,
    UpstreamPaymentRequired,
    UpstreamRateLimited,
    UpstreamTimeout,
)

log = logging.getLogger(__name__)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

DEFAULT_MODELS = {
    "anthropic": "claude-haiku-4-5-20251001",
    "openai": "gpt-4o-mini",
    "openai_compatible": "google/gemini-2.5-flash",
    "gemini": "gemini-2.5-flash",
}

_API_KEY_ENV = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
    "openai_compatible": "OPENAI_API_KEY",
    "gemini": "GEMINI_API_KEY",
}


def status_error(status: int, body: str = "") -> LLMCallError:
    """Map a non-2xx provider status to its typed error."""
    if status == 429:
        return UpstreamRateLimited()
    if status == 402:
        return UpstreamPaymentRequired()
    return UpstreamError(status, body)


def _extract_content(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        parts = []
        for item in value:
            text = item.get("text") if isinstance(item, dict) else getattr(item, "text", None)
            if text:
                parts.append(str(text))
        return "\n".join(parts)
    return str(value or "")


class LLMClient:
    """Unified async LLM client supporting OpenAI(-compatible), Anthropic and Gemini."""

    def __init__(
        self,
        provider: str | None = None,
        model: str | None = None,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff: float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        settings = get_settings()
        self.provider = (provider or settings.llm_provider).strip().lower()
        if self.provider not in DEFAULT_MODELS:
            raise ValueError(f"Unknown LLM provider: {self.provider!r}")
        self.model = model or settings.llm_model or DEFAULT_MODELS[self.provider]
        self.timeout = timeout if timeout is not None else settings.llm_timeout_seconds
        self.max_retries = max_retries if max_retries is not None else settings.llm_max_retries
        self.backoff = backoff if backoff is not None else settings.llm_backoff_seconds
        self._api_key = api_key or os.environ.get(_API_KEY_ENV[self.provider], "")
        self._base_url = base_url or settings.llm_base_url or None
        self._http = http_client
        self._client: Any = None

    def _init_client(self) -> None:
        if not self._api_key:
            raise LLMCallError(f"Missing API key: set {_API_KEY_ENV[self.provider]}")
        if self.provider == "anthropic":
            import anthropic
            kwargs: dict[str, Any] = {"api_key": self._api_key, "timeout": self.timeout, "max_retries": 0}
            if self._base_url:
                kwargs["base_url"] = self._base_url
            if self._http is not None:
                kwargs["http_client"] = self._http
            self._client = anthropic.AsyncAnthropic(**kwargs)
        elif self.provider in ("openai", "openai_compatible"):
            import openai
            kwargs = {"api_key": self._api_key, "timeout": self.timeout, "max_retries": 0}
            if self._base_url:
                kwargs["base_url"] = self._base_url
            if self._http is not None:
                kwargs["http_client"] = self._http
            self._client = openai.AsyncOpenAI(**kwargs)
        else:
            self._client = self._http or httpx.AsyncClient(timeout=self.timeout)

    async def aclose(self) -> None:
        # An injected http_client belongs to the caller, including the one wrapped by an SDK client.
        client, self._client = self._client, None
        if client is None or self._http is not None:
            return
        if self.provider == "gemini":
            await client.aclose()
        else:
            await client.close()

    async def complete(
        self,
        system: str,
        user: str,
        *,
        temperature: float = 0.3,
        max_tokens: int = 2048,
    ) -> str:
        """Send system+user messages and return the raw reply text."""
        attempt = 0
        while True:
            try:
                text = await self._complete_once(system, user, temperature, max_tokens)
            except LLMCallError as exc:
                if not exc.retryable or attempt >= self.max_retries:
                    raise
                delay = self.backoff * (2 ** attempt)
                attempt += 1
                log.warning(
                    "Model call failed (%s), retry %d/%d in %.1fs",
                    exc, attempt, self.max_retries, delay,
                )
                await asyncio.sleep(delay)
                continue
            if not text.strip():
                raise EmptyCompletion()
            return text

    async def _complete_once(self, system: str, user: str, temperature: float, max_tokens: int) -> str:
        if self._client is None:
            self._init_client()
        if self.provider == "anthropic":
            return await self._complete_anthropic(system, user, temperature, max_tokens)
        if self.provider == "gemini":
            return await self._complete_gemini(system, user, temperature, max_tokens)
        return await self._complete_openai(system, user, temperature, max_tokens)

    async def _complete_openai(self, system: str, user: str, temperature: float, max_tokens: int) -> str:
        import openai
        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                temperature=temperature,
                max_tokens=max_tokens,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
            )
        except openai.APITimeoutError as exc:
            raise UpstreamTimeout(f"Model call timed out after {self.timeout:.0f}s") from exc
        except openai.APIConnectionError as exc:
            raise TransportError(f"Failed to reach model provider: {exc}") from exc
        except openai.APIStatusError as exc:
            raise status_error(exc.status_code, exc.message) from exc
        if not response.choices:
            raise EmptyCompletion("Model provider returned no choices")
        return _extract_content(response.choices[0].message.content)

    async def _complete_anthropic(self, system: str, user: str, temperature: float, max_tokens: int) -> str:
        import anthropic
        try:
            response = await self._client.messages.create(
                model=self.model,
                max_tokens=max_tokens,
                temperature=temperature,
                system=system,
                messages=[{"role": "user", "content": user}],
            )
        except anthropic.APITimeoutError as exc:
            raise UpstreamTimeout(f"Model call timed out after {self.timeout:.0f}s") from exc
        except anthropic.APIConnectionError as exc:
            raise TransportError(f"Failed to reach model provider: {exc}") from exc
        except anthropic.APIStatusError as exc:
            raise status_error(exc.status_code, exc.message) from exc
        return _extract_content(response.content)

    async def _complete_gemini(self, system: str, user: str, temperature: float, max_tokens: int) -> str:
        base = (self._base_url or GEMINI_BASE_URL).rstrip("/")
        payload = {
            "systemInstruction": {"parts": [{"text": system}]},
            "contents": [{"role": "user", "parts": [{"text": user}]}],
            "generationConfig": {"temperature": temperature, "maxOutputTokens": max_tokens},
        }
        try:
            resp = await self._client.post(
                f"{base}/models/{self.model}:generateContent",
                headers={"x-goog-api-key": self._api_key},
                json=payload,
                timeout=self.timeout,
            )
        except httpx.TimeoutException as exc:
            raise UpstreamTimeout(f"Model call timed out after {self.timeout:.0f}s") from exc
        except httpx.TransportError as exc:
            raise TransportError(f"Failed to reach model provider: {exc}") from exc
        if resp.status_code >= 400:
            raise status_error(resp.status_code, resp.text)
        try:
            candidates = resp.json().get("candidates") or []
            parts = candidates[0]["content"]["parts"] if candidates else []
        except (ValueError, KeyError, TypeError) as exc:
            raise UpstreamError(resp.status_code, f"Unexpected response shape: {resp.text[:200]}") from exc
        return _extract_content(parts)
