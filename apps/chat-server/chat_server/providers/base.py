"""Abstract base class for AI chat providers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import AsyncIterator

NO_RESPONSE = "No response generated"


class ChatProvider(ABC):
    """Provider interface for chat completions.

    ``messages`` are ``{"role": ..., "content": ...}`` dicts in chat order.
    ``stream`` yields plain text increments; joining them gives the full
    answer.  The iterator is finite and cannot be restarted.  Failures of
    any kind raise ``UpstreamError``.
    """

    name: str = ""

    @abstractmethod
    async def complete(self, messages: list[dict], model: str) -> str:
        ...

    @abstractmethod
    def stream(self, messages: list[dict], model: str) -> AsyncIterator[str]:
        ...
