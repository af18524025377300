"""Per-user defaults applied to new chats."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from chat_server.deps import current_user_id, get_ledger
from chat_server.ledger import ConversationLedger
from chat_server.models import UserPreferences

router = APIRouter(prefix="/preferences", tags=["preferences"])


@router.get("")
async def get_preferences(
    user_id: str = Depends(current_user_id),
    ledger: ConversationLedger = Depends(get_ledger),
) -> UserPreferences:
    return await ledger.get_preferences(user_id)


@router.put("")
async def set_preferences(
    body: UserPreferences,
    user_id: str = Depends(current_user_id),
    ledger: ConversationLedger = Depends(get_ledger),
) -> UserPreferences:
    return await ledger.set_preferences(user_id, body.default_model, body.default_provider)
