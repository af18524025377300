"""Database tables for chats, messages and user preferences.

These tables use their own MetaData instance (chat_metadata) so the service
can create them on startup without touching unrelated schemas.
"""

from __future__ import annotations

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    func,
)

chat_metadata = MetaData()

# ---------------------------------------------------------------------------
# Chats
# ---------------------------------------------------------------------------

chats = Table(
    "chats",
    chat_metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String, nullable=False),
    Column("title", String, nullable=False),
    Column("model", String, nullable=False),  # "gpt-4o-mini", "gemini-2.5-flash", "meta-llama/..."
    Column("provider", String, nullable=False),  # "openai", "google", "openrouter"
    Column("is_shared", Boolean, nullable=False, default=False),
    Column("share_token", String, nullable=True, unique=True),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Index("ix_chats_user_id", "user_id"),
)

# ---------------------------------------------------------------------------
# Messages
#
# No sequence column: the autoincrement id is the order within a chat.
# ---------------------------------------------------------------------------

messages = Table(
    "messages",
    chat_metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("chat_id", Integer, ForeignKey("chats.id"), nullable=False),
    Column("role", String, nullable=False),  # "user" or "assistant"
    Column("content", Text, nullable=False),
    Column("model", String, nullable=True),
    Column("provider", String, nullable=True),
    Column("is_streaming", Boolean, nullable=True),
    Column("streaming_complete", Boolean, nullable=True),
    Column("is_edited", Boolean, nullable=True),
    Column("original_content", Text, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Index("ix_messages_chat_id", "chat_id"),
)

# ---------------------------------------------------------------------------
# Per-user defaults for new chats
# ---------------------------------------------------------------------------

user_preferences = Table(
    "user_preferences",
    chat_metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String, nullable=False, unique=True),
    Column("default_model", String, nullable=False),
    Column("default_provider", String, nullable=False),
)
