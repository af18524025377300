"""OpenRouter provider using httpx streaming (OpenAI-compatible SSE)."""

from __future__ import annotations

import json
from typing import AsyncIterator

import httpx
import structlog

from chat_server.errors import UpstreamError

from .base import NO_RESPONSE, ChatProvider

logger = structlog.get_logger()


def parse_sse_line(line: str) -> str | None:
    """Return the delta text carried by one ``data:`` line, if any.

    Non-data lines, malformed JSON and frames without content give None.
    The ``[DONE]`` sentinel is handled by the caller.
    """
    if not line.startswith("data: "):
        return None
    try:
        chunk = json.loads(line[6:])
    except json.JSONDecodeError:
        return None
    if not isinstance(chunk, dict):
        return None
    choices = chunk.get("choices") or []
    if not choices:
        return None
    delta = choices[0].get("delta") or {}
    return delta.get("content") or None


class OpenRouterProvider(ChatProvider):
    name = "openrouter"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://openrouter.ai/api/v1",
        *,
        max_tokens: int = 1000,
        temperature: float = 0.7,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        if not self.api_key:
            raise UpstreamError("OpenRouter API key not configured")
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _payload(self, messages: list[dict], model: str, *, stream: bool) -> dict:
        payload = {
            "model": model,
            "messages": messages,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }
        if stream:
            payload["stream"] = True
        return payload

    async def complete(self, messages: list[dict], model: str) -> str:
        headers = self._headers()
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(60.0, connect=10.0),
                transport=self._transport,
            ) as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    json=self._payload(messages, model, stream=False),
                    headers=headers,
                )
        except httpx.HTTPError as exc:
            logger.error("openrouter_transport_error", model=model, error=str(exc))
            raise UpstreamError(f"OpenRouter request failed: {exc}") from exc

        if response.status_code // 100 != 2:
            logger.error("openrouter_api_error", status=response.status_code, body=response.text[:500])
            raise UpstreamError(f"OpenRouter API error: {response.status_code}")

        try:
            data = response.json()
            text = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError):
            text = ""
        return text or NO_RESPONSE

    async def stream(self, messages: list[dict], model: str) -> AsyncIterator[str]:
        headers = self._headers()
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(60.0, connect=10.0),
                transport=self._transport,
            ) as client:
                async with client.stream(
                    "POST",
                    f"{self.base_url}/chat/completions",
                    json=self._payload(messages, model, stream=True),
                    headers=headers,
                ) as response:
                    if response.status_code // 100 != 2:
                        body = await response.aread()
                        logger.error(
                            "openrouter_api_error",
                            status=response.status_code,
                            body=body.decode(errors="replace")[:500],
                        )
                        raise UpstreamError(f"OpenRouter API error: {response.status_code}")

                    async for line in response.aiter_lines():
                        if line.strip() == "data: [DONE]":
                            break
                        content = parse_sse_line(line)
                        if content:
                            yield content
        except httpx.HTTPError as exc:
            logger.error("openrouter_transport_error", model=model, error=str(exc))
            raise UpstreamError(f"OpenRouter request failed: {exc}") from exc
