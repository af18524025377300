"""Provider gateway: one strategy per upstream chat API.

Usage:
    from chat_server.providers import get_provider

    provider = get_provider("openrouter", settings)
    async for increment in provider.stream(history, "meta-llama/llama-3.3-70b-instruct"):
        ...
"""

from __future__ import annotations

from typing import Callable

from chat_server.config import Settings
from chat_server.errors import UnsupportedProviderError

from .base import NO_RESPONSE, ChatProvider
from .google_provider import GoogleProvider
from .openai_provider import OpenAIProvider
from .openrouter import OpenRouterProvider

_FACTORIES: dict[str, Callable[[Settings], ChatProvider]] = {
    "openai": lambda s: OpenAIProvider(
        api_key=s.OPENAI_API_KEY,
        base_url=s.OPENAI_BASE_URL,
        max_tokens=s.MAX_TOKENS,
        temperature=s.TEMPERATURE,
    ),
    "google": lambda s: GoogleProvider(
        api_key=s.GOOGLE_AI_API_KEY,
        base_url=s.GOOGLE_AI_BASE_URL,
        max_tokens=s.MAX_TOKENS,
        temperature=s.TEMPERATURE,
        stream_delay=s.SIMULATED_STREAM_DELAY_SECONDS,
    ),
    "openrouter": lambda s: OpenRouterProvider(
        api_key=s.OPENROUTER_API_KEY,
        base_url=s.OPENROUTER_BASE_URL,
        max_tokens=s.MAX_TOKENS,
        temperature=s.TEMPERATURE,
    ),
}

SUPPORTED_PROVIDERS = tuple(_FACTORIES)


def get_provider(name: str, settings: Settings) -> ChatProvider:
    """Build the strategy for *name*; never falls back to another provider."""
    factory = _FACTORIES.get(name)
    if factory is None:
        raise UnsupportedProviderError(name)
    return factory(settings)


__all__ = [
    "ChatProvider",
    "GoogleProvider",
    "NO_RESPONSE",
    "OpenAIProvider",
    "OpenRouterProvider",
    "SUPPORTED_PROVIDERS",
    "get_provider",
]
