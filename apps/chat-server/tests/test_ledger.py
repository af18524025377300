"""Tests for chat_server.ledger.ConversationLedger against a SQLite store."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from chat_server.errors import InvalidOperation, NotAuthorized, NotFound, Unauthenticated
from chat_server.ledger import ConversationLedger
from chat_server.publisher import MESSAGE_CREATED, MESSAGE_DELETED, MESSAGE_UPDATED

OWNER = "user_alice"
INTRUDER = "user_mallory"


# ---------------------------------------------------------------------------
# Chats
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_and_get_chat(ledger):
    chat_id = await ledger.create_chat(OWNER, "Test", "gpt-4o-mini", "openai")
    chat = await ledger.get_chat(OWNER, chat_id)

    assert chat.id == chat_id
    assert chat.user_id == OWNER
    assert chat.title == "Test"
    assert chat.model == "gpt-4o-mini"
    assert chat.provider == "openai"
    assert chat.is_shared is False
    assert chat.share_token is None


@pytest.mark.asyncio
async def test_list_chats_newest_first_and_scoped_to_caller(ledger):
    first = await ledger.create_chat(OWNER, "first", "gpt-4o", "openai")
    second = await ledger.create_chat(OWNER, "second", "gemini-2.5-flash", "google")
    await ledger.create_chat(INTRUDER, "theirs", "gpt-4o", "openai")

    chats = await ledger.list_chats(OWNER)
    assert [c.id for c in chats] == [second, first]


@pytest.mark.asyncio
async def test_provider_is_free_form(ledger):
    """Unknown providers are stored as-is; only a run against them fails."""
    chat_id = await ledger.create_chat(OWNER, "x", "some-model", "unsupported")
    assert (await ledger.get_chat(OWNER, chat_id)).provider == "unsupported"


@pytest.mark.asyncio
async def test_missing_chat_is_not_found(ledger):
    with pytest.raises(NotFound):
        await ledger.get_chat(OWNER, 999)


@pytest.mark.asyncio
async def test_unauthenticated_caller_rejected(ledger, chat_id):
    with pytest.raises(Unauthenticated):
        await ledger.list_chats(None)
    with pytest.raises(Unauthenticated):
        await ledger.get_chat("", chat_id)
    with pytest.raises(Unauthenticated):
        await ledger.create_chat(None, "t", "m", "openai")


@pytest.mark.asyncio
async def test_every_operation_denied_to_non_owner(ledger, chat_id):
    message_id = await ledger.add_message(OWNER, chat_id, "assistant", "hi")

    attempts = [
        ledger.get_chat(INTRUDER, chat_id),
        ledger.get_chat_messages(INTRUDER, chat_id),
        ledger.update_chat_title(INTRUDER, chat_id, "pwned"),
        ledger.share_chat(INTRUDER, chat_id),
        ledger.unshare_chat(INTRUDER, chat_id),
        ledger.delete_chat(INTRUDER, chat_id),
        ledger.add_message(INTRUDER, chat_id, "user", "sneaky"),
        ledger.get_message(INTRUDER, message_id),
        ledger.update_message_content(INTRUDER, message_id, "x"),
        ledger.edit_message(INTRUDER, message_id, "x"),
        ledger.delete_message(INTRUDER, message_id),
    ]
    for attempt in attempts:
        with pytest.raises(NotAuthorized):
            await attempt

    # Nothing changed
    chat = await ledger.get_chat(OWNER, chat_id)
    assert chat.title == "Test"
    assert chat.is_shared is False
    msgs = await ledger.get_chat_messages(OWNER, chat_id)
    assert [m.content for m in msgs] == ["hi"]


@pytest.mark.asyncio
async def test_update_chat_title(ledger, chat_id):
    await ledger.update_chat_title(OWNER, chat_id, "Renamed")
    assert (await ledger.get_chat(OWNER, chat_id)).title == "Renamed"


@pytest.mark.asyncio
async def test_delete_chat_cascades_to_messages(ledger, store, chat_id):
    from chat_server.tables import messages

    for i in range(5):
        await ledger.add_message(OWNER, chat_id, "user" if i % 2 == 0 else "assistant", f"m{i}")

    other_chat = await ledger.create_chat(OWNER, "keep", "gpt-4o", "openai")
    await ledger.add_message(OWNER, other_chat, "user", "survivor")

    await ledger.delete_chat(OWNER, chat_id)

    assert await store.query_by_index(messages, "chat_id", chat_id) == []
    with pytest.raises(NotFound):
        await ledger.get_chat(OWNER, chat_id)
    remaining = await ledger.get_chat_messages(OWNER, other_chat)
    assert [m.content for m in remaining] == ["survivor"]


# ---------------------------------------------------------------------------
# Sharing
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_share_then_read_publicly(ledger, chat_id):
    await ledger.add_message(OWNER, chat_id, "user", "hello")
    token = await ledger.share_chat(OWNER, chat_id)

    shared = await ledger.get_shared_chat(token)
    assert shared.id == chat_id
    assert shared.is_shared is True
    assert shared.share_token == token

    msgs = await ledger.get_shared_chat_messages(token)
    assert [m.content for m in msgs] == ["hello"]


@pytest.mark.asyncio
async def test_unshare_revokes_token(ledger, chat_id):
    token = await ledger.share_chat(OWNER, chat_id)
    await ledger.unshare_chat(OWNER, chat_id)

    chat = await ledger.get_chat(OWNER, chat_id)
    assert chat.is_shared is False
    assert chat.share_token is None

    with pytest.raises(NotFound):
        await ledger.get_shared_chat(token)
    with pytest.raises(NotFound):
        await ledger.get_shared_chat_messages(token)


@pytest.mark.asyncio
async def test_reshare_issues_fresh_unique_token(ledger, chat_id):
    other = await ledger.create_chat(OWNER, "other", "gpt-4o", "openai")
    first = await ledger.share_chat(OWNER, chat_id)
    second = await ledger.share_chat(OWNER, chat_id)
    third = await ledger.share_chat(OWNER, other)

    assert len({first, second, third}) == 3
    with pytest.raises(NotFound):
        await ledger.get_shared_chat(first)
    assert (await ledger.get_shared_chat(second)).id == chat_id
    assert (await ledger.get_shared_chat(third)).id == other


@pytest.mark.asyncio
async def test_wrong_token_and_unshared_fail_identically(ledger, chat_id):
    token = await ledger.share_chat(OWNER, chat_id)
    await ledger.unshare_chat(OWNER, chat_id)

    with pytest.raises(NotFound) as unshared:
        await ledger.get_shared_chat(token)
    with pytest.raises(NotFound) as wrong:
        await ledger.get_shared_chat("no-such-token")
    with pytest.raises(NotFound):
        await ledger.get_shared_chat("")
    assert unshared.value.message == wrong.value.message


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_foreign_and_missing_message_errors_match(ledger, chat_id):
    message_id = await ledger.add_message(OWNER, chat_id, "user", "hello")

    with pytest.raises(NotAuthorized) as foreign:
        await ledger.get_message(INTRUDER, message_id)
    with pytest.raises(NotFound) as missing:
        await ledger.get_message(INTRUDER, 999999)

    assert foreign.value.status_code == missing.value.status_code == 404
    assert foreign.value.message == missing.value.message


@pytest.mark.asyncio
async def test_messages_listed_in_insertion_order(ledger, chat_id):
    ids = [
        await ledger.add_message(OWNER, chat_id, "user", "one"),
        await ledger.add_message(OWNER, chat_id, "assistant", "two", model="gpt-4o-mini", provider="openai"),
        await ledger.add_message(OWNER, chat_id, "user", "three"),
    ]
    msgs = await ledger.get_chat_messages(OWNER, chat_id)
    assert [m.id for m in msgs] == ids
    assert msgs[1].model == "gpt-4o-mini"
    assert msgs[0].model is None


@pytest.mark.asyncio
async def test_add_message_rejects_unknown_role(ledger, chat_id):
    with pytest.raises(InvalidOperation):
        await ledger.add_message(OWNER, chat_id, "system", "nope")


@pytest.mark.asyncio
async def test_update_message_content_replaces_text_and_flags(ledger, chat_id):
    message_id = await ledger.add_message(
        OWNER, chat_id, "assistant", "", is_streaming=True, streaming_complete=False,
    )
    await ledger.update_message_content(OWNER, message_id, "partial", is_streaming=True, streaming_complete=False)
    await ledger.update_message_content(OWNER, message_id, "done", is_streaming=False, streaming_complete=True)

    msg = await ledger.get_message(OWNER, message_id)
    assert msg.content == "done"
    assert msg.is_streaming is False
    assert msg.streaming_complete is True


@pytest.mark.asyncio
async def test_edit_keeps_content_from_before_first_edit(ledger, chat_id):
    message_id = await ledger.add_message(OWNER, chat_id, "user", "pristine")

    await ledger.edit_message(OWNER, message_id, "x")
    await ledger.edit_message(OWNER, message_id, "y")

    msg = await ledger.get_message(OWNER, message_id)
    assert msg.content == "y"
    assert msg.is_edited is True
    assert msg.original_content == "pristine"


@pytest.mark.asyncio
async def test_delete_message(ledger, chat_id):
    keep = await ledger.add_message(OWNER, chat_id, "user", "keep")
    drop = await ledger.add_message(OWNER, chat_id, "assistant", "drop")

    await ledger.delete_message(OWNER, drop)

    msgs = await ledger.get_chat_messages(OWNER, chat_id)
    assert [m.id for m in msgs] == [keep]
    with pytest.raises(NotFound):
        await ledger.get_message(OWNER, drop)


# ---------------------------------------------------------------------------
# Preferences
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_preferences_default_then_override(ledger):
    prefs = await ledger.get_preferences(OWNER)
    assert prefs.default_model == "gpt-4o-mini"
    assert prefs.default_provider == "openai"

    await ledger.set_preferences(OWNER, "gemini-2.5-flash", "google")
    await ledger.set_preferences(OWNER, "anthropic/claude-3-haiku", "openrouter")

    prefs = await ledger.get_preferences(OWNER)
    assert prefs.default_model == "anthropic/claude-3-haiku"
    assert prefs.default_provider == "openrouter"
    # Other users still see the defaults
    assert (await ledger.get_preferences(INTRUDER)).default_provider == "openai"


@pytest.mark.asyncio
async def test_create_chat_falls_back_to_preferences(ledger):
    await ledger.set_preferences(OWNER, "gemini-2.5-flash", "google")
    chat_id = await ledger.create_chat(OWNER, "untitled")

    chat = await ledger.get_chat(OWNER, chat_id)
    assert chat.model == "gemini-2.5-flash"
    assert chat.provider == "google"


# ---------------------------------------------------------------------------
# Live update notifications
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_message_changes_are_published(store):
    publisher = MagicMock()
    publisher.publish_message = AsyncMock()
    ledger = ConversationLedger(store, publisher)

    chat_id = await ledger.create_chat(OWNER, "Test", "gpt-4o-mini", "openai")
    message_id = await ledger.add_message(OWNER, chat_id, "assistant", "")
    await ledger.update_message_content(OWNER, message_id, "Hi", is_streaming=True, streaming_complete=False)
    await ledger.delete_message(OWNER, message_id)

    events = [c.args[0] for c in publisher.publish_message.await_args_list]
    assert events == [MESSAGE_CREATED, MESSAGE_UPDATED, MESSAGE_DELETED]

    updated = publisher.publish_message.await_args_list[1].args[1]
    assert updated["id"] == message_id
    assert updated["chat_id"] == chat_id
    assert updated["content"] == "Hi"
    assert updated["is_streaming"] is True


@pytest.mark.asyncio
async def test_publish_failure_does_not_fail_the_write(store):
    publisher = MagicMock()
    publisher.publish_message = AsyncMock(side_effect=ConnectionError("redis down"))
    ledger = ConversationLedger(store, publisher)

    chat_id = await ledger.create_chat(OWNER, "Test", "gpt-4o-mini", "openai")
    message_id = await ledger.add_message(OWNER, chat_id, "user", "still saved")

    assert (await ledger.get_message(OWNER, message_id)).content == "still saved"
