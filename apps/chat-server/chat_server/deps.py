"""Service wiring and FastAPI dependencies.

The authentication proxy in front of the service resolves the caller and
forwards the opaque user id in a header (``X-User-Id`` unless configured
otherwise).  Requests without it are unauthenticated.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import partial

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine

from chat_server.config import Settings
from chat_server.db import ChatStore
from chat_server.dispatch import Dispatcher
from chat_server.errors import Unauthenticated
from chat_server.ledger import ConversationLedger
from chat_server.orchestrator import StreamingOrchestrator
from chat_server.providers import get_provider
from chat_server.publisher import MessageEventPublisher


@dataclass
class ChatServices:
    ledger: ConversationLedger
    orchestrator: StreamingOrchestrator
    dispatcher: Dispatcher
    publisher: MessageEventPublisher | None = None
    auth_header: str = "X-User-Id"


def build_services(
    engine: AsyncEngine,
    settings: Settings,
    publisher: MessageEventPublisher | None = None,
) -> ChatServices:
    """Assemble ledger, orchestrator and dispatcher over one engine."""
    ledger = ConversationLedger(
        ChatStore(engine),
        publisher,
        default_model=settings.DEFAULT_MODEL,
        default_provider=settings.DEFAULT_PROVIDER,
    )
    orchestrator = StreamingOrchestrator(ledger, partial(get_provider, settings=settings))
    return ChatServices(
        ledger=ledger,
        orchestrator=orchestrator,
        dispatcher=Dispatcher(ledger, orchestrator),
        publisher=publisher,
        auth_header=settings.AUTH_USER_HEADER,
    )


def get_services(request: Request) -> ChatServices:
    return request.app.state.services


def get_ledger(request: Request) -> ConversationLedger:
    return get_services(request).ledger


def get_dispatcher(request: Request) -> Dispatcher:
    return get_services(request).dispatcher


def current_user_id(request: Request) -> str:
    """Return the caller's user id or raise Unauthenticated."""
    user_id = request.headers.get(get_services(request).auth_header, "").strip()
    if not user_id:
        raise Unauthenticated()
    return user_id
