"""Chat endpoints: CRUD, message listing, sending and share links."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from chat_server.deps import current_user_id, get_dispatcher, get_ledger
from chat_server.dispatch import Dispatcher
from chat_server.ledger import ConversationLedger
from chat_server.models import (
    Chat,
    ChatCreate,
    ChatTitleUpdate,
    DispatchAck,
    Message,
    MessageSend,
    ShareResponse,
)

router = APIRouter(prefix="/chats", tags=["chats"])


@router.get("")
async def list_chats(
    user_id: str = Depends(current_user_id),
    ledger: ConversationLedger = Depends(get_ledger),
) -> list[Chat]:
    """Return the caller's chats, newest first."""
    return await ledger.list_chats(user_id)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_chat(
    body: ChatCreate,
    user_id: str = Depends(current_user_id),
    ledger: ConversationLedger = Depends(get_ledger),
) -> Chat:
    chat_id = await ledger.create_chat(user_id, body.title, body.model, body.provider)
    return await ledger.get_chat(user_id, chat_id)


@router.get("/{chat_id}")
async def get_chat(
    chat_id: int,
    user_id: str = Depends(current_user_id),
    ledger: ConversationLedger = Depends(get_ledger),
) -> Chat:
    return await ledger.get_chat(user_id, chat_id)


@router.patch("/{chat_id}")
async def update_chat_title(
    chat_id: int,
    body: ChatTitleUpdate,
    user_id: str = Depends(current_user_id),
    ledger: ConversationLedger = Depends(get_ledger),
) -> Chat:
    await ledger.update_chat_title(user_id, chat_id, body.title)
    return await ledger.get_chat(user_id, chat_id)


@router.delete("/{chat_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_chat(
    chat_id: int,
    user_id: str = Depends(current_user_id),
    ledger: ConversationLedger = Depends(get_ledger),
) -> None:
    """Delete the chat and every message in it."""
    await ledger.delete_chat(user_id, chat_id)


@router.get("/{chat_id}/messages")
async def get_chat_messages(
    chat_id: int,
    user_id: str = Depends(current_user_id),
    ledger: ConversationLedger = Depends(get_ledger),
) -> list[Message]:
    """Return the chat's messages in conversation order.

    Poll this (or hold the WebSocket stream open) to watch an assistant
    reply grow while ``is_streaming`` is true.
    """
    return await ledger.get_chat_messages(user_id, chat_id)


@router.post("/{chat_id}/messages", status_code=status.HTTP_202_ACCEPTED)
async def send_message(
    chat_id: int,
    body: MessageSend,
    user_id: str = Depends(current_user_id),
    dispatcher: Dispatcher = Depends(get_dispatcher),
) -> DispatchAck:
    """Append a user message and start streaming the assistant reply."""
    return await dispatcher.send_message(user_id, chat_id, body.content)


@router.post("/{chat_id}/share")
async def share_chat(
    chat_id: int,
    user_id: str = Depends(current_user_id),
    ledger: ConversationLedger = Depends(get_ledger),
) -> ShareResponse:
    return ShareResponse(share_token=await ledger.share_chat(user_id, chat_id))


@router.delete("/{chat_id}/share", status_code=status.HTTP_204_NO_CONTENT)
async def unshare_chat(
    chat_id: int,
    user_id: str = Depends(current_user_id),
    ledger: ConversationLedger = Depends(get_ledger),
) -> None:
    await ledger.unshare_chat(user_id, chat_id)
