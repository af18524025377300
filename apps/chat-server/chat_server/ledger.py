"""Conversation ledger: chat and message lifecycle with ownership checks.

Every operation except the shared-link reads takes the caller's user id and
re-validates ownership of the target chat before reading or mutating it.
A chat that does not exist raises ``NotFound``; a chat owned by someone else
raises ``NotAuthorized``.  Both render identically over HTTP.
"""

from __future__ import annotations

import secrets
from typing import Any

import structlog

from chat_server.db import ChatStore
from chat_server.errors import InvalidOperation, NotAuthorized, NotFound, Unauthenticated
from chat_server.models import Chat, Message, UserPreferences
from chat_server.publisher import (
    MESSAGE_CREATED,
    MESSAGE_DELETED,
    MESSAGE_UPDATED,
    MessageEventPublisher,
)
from chat_server.tables import chats, messages, user_preferences

logger = structlog.get_logger()

_ROLES = ("user", "assistant")
_SHARED_NOT_FOUND = "Shared chat not found"


def _require_user(user_id: str | None) -> str:
    if not user_id:
        raise Unauthenticated()
    return user_id


def new_share_token() -> str:
    """Unguessable public identifier for a shared chat."""
    return secrets.token_urlsafe(24)


class ConversationLedger:
    """Owns chats, messages and per-user preferences."""

    def __init__(
        self,
        store: ChatStore,
        publisher: MessageEventPublisher | None = None,
        *,
        default_model: str = "gpt-4o-mini",
        default_provider: str = "openai",
    ) -> None:
        self._store = store
        self._publisher = publisher
        self._default_model = default_model
        self._default_provider = default_provider

    # ------------------------------------------------------------------
    # Ownership helpers
    # ------------------------------------------------------------------

    async def _owned_chat(self, user_id: str | None, chat_id: int) -> dict[str, Any]:
        user_id = _require_user(user_id)
        chat = await self._store.get(chats, chat_id)
        if chat is None:
            raise NotFound()
        if chat["user_id"] != user_id:
            logger.warning("chat_access_denied", chat_id=chat_id, user_id=user_id)
            raise NotAuthorized()
        return chat

    async def _owned_message(self, user_id: str | None, message_id: int) -> dict[str, Any]:
        user_id = _require_user(user_id)
        message = await self._store.get(messages, message_id)
        if message is None:
            raise NotFound()
        await self._owned_chat(user_id, message["chat_id"])
        return message

    async def _shared_chat(self, share_token: str) -> dict[str, Any]:
        chat = await self._store.first_by_index(chats, "share_token", share_token) if share_token else None
        if chat is None or not chat["is_shared"]:
            raise NotFound(_SHARED_NOT_FOUND)
        return chat

    async def _notify(self, event: str, message: dict[str, Any]) -> None:
        if self._publisher is None:
            return
        try:
            await self._publisher.publish_message(event, message)
        except Exception:
            # Readers re-query on reconnect; a lost notification is not fatal
            logger.warning("message_event_publish_failed", event=event, message_id=message["id"], exc_info=True)

    # ------------------------------------------------------------------
    # Chats
    # ------------------------------------------------------------------

    async def create_chat(
        self,
        user_id: str | None,
        title: str,
        model: str | None = None,
        provider: str | None = None,
    ) -> int:
        """Insert a chat owned by the caller; return its id.

        When *model* or *provider* is omitted the caller's preferences fill
        the gap.
        """
        user_id = _require_user(user_id)
        if model is None or provider is None:
            prefs = await self.get_preferences(user_id)
            model = model or prefs.default_model
            provider = provider or prefs.default_provider
        chat_id = await self._store.insert(
            chats,
            {
                "user_id": user_id,
                "title": title,
                "model": model,
                "provider": provider,
                "is_shared": False,
                "share_token": None,
            },
        )
        logger.info("chat_created", chat_id=chat_id, user_id=user_id, model=model, provider=provider)
        return chat_id

    async def get_chat(self, user_id: str | None, chat_id: int) -> Chat:
        return Chat(**await self._owned_chat(user_id, chat_id))

    async def list_chats(self, user_id: str | None) -> list[Chat]:
        """Return the caller's chats, most recent first."""
        user_id = _require_user(user_id)
        rows = await self._store.query_by_index(chats, "user_id", user_id, descending=True)
        return [Chat(**row) for row in rows]

    async def get_chat_messages(self, user_id: str | None, chat_id: int) -> list[Message]:
        await self._owned_chat(user_id, chat_id)
        rows = await self._store.query_by_index(messages, "chat_id", chat_id)
        return [Message(**row) for row in rows]

    async def update_chat_title(self, user_id: str | None, chat_id: int, title: str) -> None:
        await self._owned_chat(user_id, chat_id)
        await self._store.patch(chats, chat_id, {"title": title})

    async def share_chat(self, user_id: str | None, chat_id: int) -> str:
        """Publish a read-only link; every call issues a fresh token."""
        await self._owned_chat(user_id, chat_id)
        share_token = new_share_token()
        await self._store.patch(chats, chat_id, {"is_shared": True, "share_token": share_token})
        logger.info("chat_shared", chat_id=chat_id)
        return share_token

    async def unshare_chat(self, user_id: str | None, chat_id: int) -> None:
        await self._owned_chat(user_id, chat_id)
        await self._store.patch(chats, chat_id, {"is_shared": False, "share_token": None})
        logger.info("chat_unshared", chat_id=chat_id)

    async def delete_chat(self, user_id: str | None, chat_id: int) -> None:
        """Delete every message of the chat, then the chat itself."""
        await self._owned_chat(user_id, chat_id)
        deleted = await self._store.delete_by_index(messages, "chat_id", chat_id)
        await self._store.delete(chats, chat_id)
        logger.info("chat_deleted", chat_id=chat_id, messages_deleted=deleted)

    # ------------------------------------------------------------------
    # Public read path
    # ------------------------------------------------------------------

    async def get_shared_chat(self, share_token: str) -> Chat:
        return Chat(**await self._shared_chat(share_token))

    async def get_shared_chat_messages(self, share_token: str) -> list[Message]:
        chat = await self._shared_chat(share_token)
        rows = await self._store.query_by_index(messages, "chat_id", chat["id"])
        return [Message(**row) for row in rows]

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def get_message(self, user_id: str | None, message_id: int) -> Message:
        return Message(**await self._owned_message(user_id, message_id))

    async def add_message(
        self,
        user_id: str | None,
        chat_id: int,
        role: str,
        content: str,
        model: str | None = None,
        provider: str | None = None,
        is_streaming: bool | None = None,
        streaming_complete: bool | None = None,
    ) -> int:
        if role not in _ROLES:
            raise InvalidOperation(f"Unknown message role: {role}")
        await self._owned_chat(user_id, chat_id)
        fields = {
            "chat_id": chat_id,
            "role": role,
            "content": content,
            "model": model,
            "provider": provider,
            "is_streaming": is_streaming,
            "streaming_complete": streaming_complete,
        }
        message_id = await self._store.insert(messages, fields)
        await self._notify(MESSAGE_CREATED, {"id": message_id, **fields})
        return message_id

    async def update_message_content(
        self,
        user_id: str | None,
        message_id: int,
        content: str,
        is_streaming: bool | None = None,
        streaming_complete: bool | None = None,
    ) -> None:
        """Replace the message content and streaming flags wholesale."""
        message = await self._owned_message(user_id, message_id)
        fields = {
            "content": content,
            "is_streaming": is_streaming,
            "streaming_complete": streaming_complete,
        }
        await self._store.patch(messages, message_id, fields)
        await self._notify(MESSAGE_UPDATED, {**message, **fields})

    async def edit_message(self, user_id: str | None, message_id: int, new_content: str) -> int:
        """Overwrite content, keeping the pristine text from before the first edit."""
        message = await self._owned_message(user_id, message_id)
        original_content = message["original_content"] if message["is_edited"] else message["content"]
        fields = {
            "content": new_content,
            "is_edited": True,
            "original_content": original_content,
        }
        await self._store.patch(messages, message_id, fields)
        await self._notify(MESSAGE_UPDATED, {**message, **fields})
        return message_id

    async def delete_message(self, user_id: str | None, message_id: int) -> None:
        message = await self._owned_message(user_id, message_id)
        await self._store.delete(messages, message_id)
        await self._notify(MESSAGE_DELETED, message)

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------

    async def get_preferences(self, user_id: str | None) -> UserPreferences:
        user_id = _require_user(user_id)
        row = await self._store.first_by_index(user_preferences, "user_id", user_id)
        if row is None:
            return UserPreferences(
                default_model=self._default_model,
                default_provider=self._default_provider,
            )
        return UserPreferences(
            default_model=row["default_model"],
            default_provider=row["default_provider"],
        )

    async def set_preferences(
        self,
        user_id: str | None,
        default_model: str,
        default_provider: str,
    ) -> UserPreferences:
        user_id = _require_user(user_id)
        fields = {"default_model": default_model, "default_provider": default_provider}
        row = await self._store.first_by_index(user_preferences, "user_id", user_id)
        if row is None:
            await self._store.insert(user_preferences, {"user_id": user_id, **fields})
        else:
            await self._store.patch(user_preferences, row["id"], fields)
        return UserPreferences(**fields)
