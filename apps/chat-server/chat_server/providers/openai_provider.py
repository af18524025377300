"""OpenAI chat completions provider using the official async SDK."""

from __future__ import annotations

from typing import AsyncIterator

import openai
import structlog
from openai import AsyncOpenAI

from chat_server.errors import UpstreamError

from .base import NO_RESPONSE, ChatProvider

logger = structlog.get_logger()


class OpenAIProvider(ChatProvider):
    name = "openai"

    def __init__(
        self,
        api_key: str,
        base_url: str = "",
        *,
        max_tokens: int = 1000,
        temperature: float = 0.7,
        client: AsyncOpenAI | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url or None
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._client = client

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self.api_key:
                raise UpstreamError("OpenAI API key not configured")
            self._client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url)
        return self._client

    async def complete(self, messages: list[dict], model: str) -> str:
        client = self._get_client()
        try:
            response = await client.chat.completions.create(
                model=model,
                messages=messages,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except openai.OpenAIError as exc:
            logger.error("openai_api_error", model=model, error=str(exc))
            raise UpstreamError(f"OpenAI request failed: {exc}") from exc

        if not response.choices:
            return NO_RESPONSE
        return response.choices[0].message.content or NO_RESPONSE

    async def stream(self, messages: list[dict], model: str) -> AsyncIterator[str]:
        client = self._get_client()
        try:
            response = await client.chat.completions.create(
                model=model,
                messages=messages,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                stream=True,
            )
            try:
                async for chunk in response:
                    if not chunk.choices:
                        continue
                    content = chunk.choices[0].delta.content
                    if content:
                        yield content
            finally:
                # Releases the HTTP connection when the consumer stops early
                await response.close()
        except openai.OpenAIError as exc:
            logger.error("openai_api_error", model=model, error=str(exc))
            raise UpstreamError(f"OpenAI request failed: {exc}") from exc
