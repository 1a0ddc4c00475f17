from __future__ import annotations

from pathlib import Path

import pytest
from sqlalchemy.exc import OperationalError

from parley.directory import ConversationDirectory
from parley.models.base import Role
from parley.schemas.conversation import ConversationSummary, TurnCreate
from parley.store import MessageStore


@pytest.mark.anyio
async def test_list_with_metadata_summarises_conversation(store: MessageStore) -> None:
    """Two turns in c1 should produce count 2, last activity 2000 and preview 'hi'."""
    await store.append(TurnCreate(conversation_id="c1", role=Role.USER, content="hi", timestamp=1000))
    await store.append(TurnCreate(conversation_id="c1", role=Role.ASSISTANT, content="hello", timestamp=2000))

    summaries = await ConversationDirectory(store).list_with_metadata()

    assert ConversationSummary(
        conversation_id="c1",
        message_count=2,
        last_activity=2000,
        first_message_preview="hi",
    ) in summaries


@pytest.mark.anyio
async def test_list_with_metadata_most_recent_first(store: MessageStore) -> None:
    await store.append(TurnCreate(conversation_id="old", role=Role.USER, content="a", timestamp=1000))
    await store.append(TurnCreate(conversation_id="new", role=Role.USER, content="b", timestamp=5000))
    await store.append(TurnCreate(conversation_id="mid", role=Role.USER, content="c", timestamp=3000))

    summaries = await ConversationDirectory(store).list_with_metadata()

    assert [s.conversation_id for s in summaries] == ["new", "mid", "old"]


@pytest.mark.anyio
async def test_preview_is_first_user_turn_truncated(store: MessageStore) -> None:
    """The preview should skip assistant turns and cut user text to 100 characters."""
    await store.append(TurnCreate(conversation_id="c1", role=Role.ASSISTANT, content="greeting", timestamp=1000))
    await store.append(TurnCreate(conversation_id="c1", role=Role.USER, content="x" * 250, timestamp=2000))

    summary = await ConversationDirectory(store).summary("c1")

    assert summary.first_message_preview == "x" * 100


@pytest.mark.anyio
async def test_preview_missing_without_user_turn(store: MessageStore) -> None:
    await store.append(TurnCreate(conversation_id="c1", role=Role.SYSTEM, content="setup", timestamp=1000))

    summary = await ConversationDirectory(store).summary("c1")

    assert summary.first_message_preview is None
    assert summary.message_count == 1


@pytest.mark.anyio
async def test_summary_of_unknown_conversation_is_empty(store: MessageStore) -> None:
    summary = await ConversationDirectory(store).summary("ghost")

    assert summary.message_count == 0
    assert summary.last_activity == 0


@pytest.mark.anyio
async def test_deleted_conversation_disappears_from_listing(store: MessageStore) -> None:
    await store.append(TurnCreate(conversation_id="c1", role=Role.USER, content="hi", timestamp=1000))
    directory = ConversationDirectory(store)
    assert [s.conversation_id for s in await directory.list_with_metadata()] == ["c1"]

    await store.delete_conversation("c1")

    assert await directory.list_with_metadata() == []


@pytest.mark.anyio
async def test_listing_degrades_when_store_unavailable(tmp_path: Path) -> None:
    """An unopened store should give an empty listing instead of raising."""
    directory = ConversationDirectory(MessageStore(f"sqlite+aiosqlite:///{tmp_path / 'x.db'}"))

    assert await directory.list_with_metadata() == []
    assert (await directory.summary("c1")).message_count == 0


@pytest.mark.anyio
async def test_listing_degrades_on_database_error(store: MessageStore, monkeypatch: pytest.MonkeyPatch) -> None:
    async def locked(*args, **kwargs) -> list:
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    monkeypatch.setattr(store, "all_turns", locked)
    monkeypatch.setattr(store, "by_conversation", locked)
    directory = ConversationDirectory(store)

    assert await directory.list_with_metadata() == []
    assert (await directory.summary("c1")).message_count == 0
