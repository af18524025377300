"""Public read-only access to shared chats.  No authentication."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from chat_server.deps import get_ledger
from chat_server.ledger import ConversationLedger
from chat_server.models import Chat, Message

router = APIRouter(prefix="/shared", tags=["shared"])


@router.get("/{share_token}")
async def get_shared_chat(
    share_token: str,
    ledger: ConversationLedger = Depends(get_ledger),
) -> Chat:
    return await ledger.get_shared_chat(share_token)


@router.get("/{share_token}/messages")
async def get_shared_chat_messages(
    share_token: str,
    ledger: ConversationLedger = Depends(get_ledger),
) -> list[Message]:
    return await ledger.get_shared_chat_messages(share_token)
