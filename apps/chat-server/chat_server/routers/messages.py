"""Message endpoints: read, edit, delete and retry."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from chat_server.deps import current_user_id, get_dispatcher, get_ledger
from chat_server.dispatch import Dispatcher
from chat_server.ledger import ConversationLedger
from chat_server.models import DispatchAck, Message, MessageEdit

router = APIRouter(prefix="/messages", tags=["messages"])


@router.get("/{message_id}")
async def get_message(
    message_id: int,
    user_id: str = Depends(current_user_id),
    ledger: ConversationLedger = Depends(get_ledger),
) -> Message:
    return await ledger.get_message(user_id, message_id)


@router.patch("/{message_id}")
async def edit_message(
    message_id: int,
    body: MessageEdit,
    user_id: str = Depends(current_user_id),
    ledger: ConversationLedger = Depends(get_ledger),
) -> Message:
    """Replace the message text; the first edit keeps the original."""
    await ledger.edit_message(user_id, message_id, body.content)
    return await ledger.get_message(user_id, message_id)


@router.delete("/{message_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_message(
    message_id: int,
    user_id: str = Depends(current_user_id),
    ledger: ConversationLedger = Depends(get_ledger),
) -> None:
    await ledger.delete_message(user_id, message_id)


@router.post("/{message_id}/retry", status_code=status.HTTP_202_ACCEPTED)
async def retry_message(
    message_id: int,
    user_id: str = Depends(current_user_id),
    dispatcher: Dispatcher = Depends(get_dispatcher),
) -> DispatchAck:
    """Regenerate an assistant message from the history before it."""
    return await dispatcher.retry_message(user_id, message_id)
