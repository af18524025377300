"""Pydantic models for chats, messages and request bodies."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

Role = Literal["user", "assistant"]


class Chat(BaseModel):
    """A conversation thread with a fixed owner and a model/provider choice.

    ``model`` and ``provider`` are free-form strings so new models need no
    schema change.
    """

    id: int
    user_id: str
    title: str
    model: str
    provider: str
    is_shared: bool = False
    share_token: str | None = None
    created_at: datetime | None = None


class Message(BaseModel):
    """One turn in a chat.  Assistant rows carry the model that produced them."""

    id: int
    chat_id: int
    role: Role
    content: str
    model: str | None = None
    provider: str | None = None
    is_streaming: bool | None = None
    streaming_complete: bool | None = None
    is_edited: bool | None = None
    original_content: str | None = None
    created_at: datetime | None = None


class UserPreferences(BaseModel):
    default_model: str
    default_provider: str


# ---------------------------------------------------------------------------
# Request / response bodies
# ---------------------------------------------------------------------------


class ChatCreate(BaseModel):
    """Body for POST /chats.  Missing model/provider fall back to preferences."""

    title: str = Field(min_length=1)
    model: str | None = None
    provider: str | None = None


class ChatTitleUpdate(BaseModel):
    title: str = Field(min_length=1)


class MessageSend(BaseModel):
    content: str = Field(min_length=1)


class MessageEdit(BaseModel):
    content: str


class ShareResponse(BaseModel):
    share_token: str


class DispatchAck(BaseModel):
    """Returned by send/retry once the streaming run is scheduled."""

    status: str
    chat_id: int
    message_id: int
