"""
Shared fixtures for the chat-server test suite.

Provides:
- A file-backed SQLite database (aiosqlite) with the chat tables created
- Ledger, orchestrator and dispatcher wired over that database
- Scripted fake providers that stand in for the upstream chat APIs
"""

import asyncio

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine

from chat_server.db import ChatStore, init_db
from chat_server.dispatch import Dispatcher
from chat_server.errors import UnsupportedProviderError, UpstreamError
from chat_server.ledger import ConversationLedger
from chat_server.orchestrator import StreamingOrchestrator
from chat_server.providers import NO_RESPONSE, ChatProvider

OWNER = "user_alice"
INTRUDER = "user_mallory"


class FakeProvider(ChatProvider):
    """Scripted provider.

    Yields *increments* in order.  With *fail_at* set, raises UpstreamError
    instead of yielding the increment at that index (``len(increments)``
    fails after the last one).  With *gate* set, pauses before the second
    increment until the gate opens, setting *reached* first.
    """

    name = "fake"

    def __init__(self, increments=("Hello", ", ", "world"), fail_at=None, gate=None):
        self.increments = list(increments)
        self.fail_at = fail_at
        self.gate = gate
        self.reached = asyncio.Event()
        self.calls: list[list[dict]] = []

    async def complete(self, messages, model):
        self.calls.append(list(messages))
        if self.fail_at is not None:
            raise UpstreamError("upstream exploded")
        return "".join(self.increments) or NO_RESPONSE

    async def stream(self, messages, model):
        self.calls.append(list(messages))
        for i, increment in enumerate(self.increments):
            if self.fail_at == i:
                raise UpstreamError("upstream exploded")
            if self.gate is not None and i == 1:
                self.reached.set()
                await self.gate.wait()
            yield increment
        if self.fail_at is not None and self.fail_at >= len(self.increments):
            raise UpstreamError("upstream exploded")


@pytest_asyncio.fixture
async def engine(tmp_path):
    """Async engine on a throwaway SQLite file with the chat tables created."""
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'chat.db'}")
    await init_db(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def store(engine):
    return ChatStore(engine)


@pytest.fixture
def ledger(store):
    return ConversationLedger(store)


@pytest.fixture
def providers():
    """Provider strategies by name; tests replace entries as needed."""
    return {"openai": FakeProvider()}


@pytest.fixture
def resolve(providers):
    def _resolve(name):
        if name not in providers:
            raise UnsupportedProviderError(name)
        return providers[name]

    return _resolve


@pytest.fixture
def orchestrator(ledger, resolve):
    return StreamingOrchestrator(ledger, resolve)


@pytest.fixture
def dispatcher(ledger, orchestrator):
    return Dispatcher(ledger, orchestrator)


@pytest_asyncio.fixture
async def chat_id(ledger):
    """A chat owned by OWNER bound to the fake openai provider."""
    return await ledger.create_chat(OWNER, "Test", "gpt-4o-mini", "openai")
