"""Google Generative Language provider over plain REST.

The generateContent endpoint answers in one piece, so ``stream`` fetches the
full text and then replays it word by word with a small pause between words.
The pacing is cosmetic; the concatenated increments always equal the text
the API returned.
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator

import httpx
import structlog

from chat_server.errors import UpstreamError

from .base import NO_RESPONSE, ChatProvider

logger = structlog.get_logger()


def flatten_prompt(messages: list[dict]) -> str:
    """Collapse the chat history into ``role: content`` lines."""
    return "\n".join(f"{m['role']}: {m['content']}" for m in messages)


class GoogleProvider(ChatProvider):
    name = "google"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        *,
        max_tokens: int = 1000,
        temperature: float = 0.7,
        stream_delay: float = 0.05,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.stream_delay = stream_delay
        self._transport = transport

    def build_payload(self, messages: list[dict]) -> dict:
        return {
            "contents": [{"parts": [{"text": flatten_prompt(messages)}]}],
            "generationConfig": {
                "temperature": self.temperature,
                "maxOutputTokens": self.max_tokens,
            },
        }

    async def complete(self, messages: list[dict], model: str) -> str:
        if not self.api_key:
            raise UpstreamError("Google AI API key not configured")

        url = f"{self.base_url}/models/{model}:generateContent"
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(60.0, connect=10.0),
                transport=self._transport,
            ) as client:
                response = await client.post(
                    url,
                    params={"key": self.api_key},
                    json=self.build_payload(messages),
                    headers={"Content-Type": "application/json"},
                )
        except httpx.HTTPError as exc:
            logger.error("google_transport_error", model=model, error=str(exc))
            raise UpstreamError(f"Google AI request failed: {exc}") from exc

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code // 100 != 2:
            detail = (data.get("error") or {}).get("message", "Unknown error") if isinstance(data, dict) else "Unknown error"
            logger.error("google_api_error", status=response.status_code, detail=detail[:500])
            raise UpstreamError(f"Google AI API error: {detail}")

        try:
            text = data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError):
            text = ""
        return text or NO_RESPONSE

    async def stream(self, messages: list[dict], model: str) -> AsyncIterator[str]:
        text = await self.complete(messages, model)
        for i, word in enumerate(text.split(" ")):
            if i > 0:
                await asyncio.sleep(self.stream_delay)
                word = " " + word
            if word:
                yield word
