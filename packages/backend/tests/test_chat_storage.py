"""Tests for chat session persistence."""

import json
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from persistence.models import ChatSession, MessageRole
from services.chat_storage import SessionStore


def _session(title: str | None = None, *messages: str, updated_offset: int = 0) -> ChatSession:
    created = datetime(2025, 3, 5, 9, 0, tzinfo=timezone.utc)
    session = ChatSession(title=title, created_at=created)
    for i, content in enumerate(messages):
        if i % 2 == 0:
            session.append_user_message(content)
        else:
            session.append_assistant_message(content)
    session.updated_at = created + timedelta(minutes=updated_offset)
    return session


@pytest_asyncio.fixture
async def store(settings):
    session_store = SessionStore(settings.SESSIONS_DIR)
    await session_store.initialize()
    return session_store


@pytest.mark.asyncio
async def test_save_and_load_round_trip(store):
    session = _session("Trip planning", "Where should I go?", "Try Lisbon.")

    await store.save(session)
    loaded = await store.load(session.id)

    assert loaded == session
    assert [m.role for m in loaded.messages] == [MessageRole.USER, MessageRole.ASSISTANT]


@pytest.mark.asyncio
async def test_record_is_one_json_file_per_session(store, settings):
    session = _session(None, "hello")

    await store.save(session)

    path = settings.SESSIONS_DIR / f"{session.id}.json"
    assert json.loads(path.read_text())["id"] == session.id
    assert list(settings.SESSIONS_DIR.glob("*.tmp")) == []


@pytest.mark.asyncio
async def test_load_missing_returns_none(store):
    assert await store.load("missing") is None


@pytest.mark.asyncio
async def test_list_is_most_recent_first(store):
    older = _session("older", "a", updated_offset=1)
    newer = _session("newer", "b", updated_offset=5)
    await store.save(older)
    await store.save(newer)

    assert [s.id for s in store.list_sessions()] == [newer.id, older.id]


@pytest.mark.asyncio
async def test_save_replaces_existing_record(store):
    session = _session(None, "first")
    await store.save(session)

    session.append_assistant_message("reply")
    await store.save(session)

    summaries = store.list_sessions()
    assert len(summaries) == 1
    assert summaries[0].message_count == 2
    assert (await store.load(session.id)).message_count == 2


@pytest.mark.asyncio
async def test_summary_preview_is_truncated(store):
    session = _session(None, "q", "x" * 150)
    await store.save(session)

    summary = store.list_sessions()[0]
    assert summary.last_message_preview == "x" * 100 + "..."
    assert summary.display_title == "q"


@pytest.mark.asyncio
async def test_delete_is_idempotent(store, settings):
    session = _session(None, "hello")
    await store.save(session)

    await store.delete(session.id)
    await store.delete(session.id)

    assert store.list_sessions() == []
    assert not (settings.SESSIONS_DIR / f"{session.id}.json").exists()


@pytest.mark.asyncio
async def test_initialize_indexes_existing_and_skips_corrupt(store, settings, caplog):
    session = _session("Kept", "hello")
    await store.save(session)
    (settings.SESSIONS_DIR / "broken.json").write_text("{not json")

    reopened = SessionStore(settings.SESSIONS_DIR)
    await reopened.initialize()

    assert [s.id for s in reopened.list_sessions()] == [session.id]
    assert "broken.json" in caplog.text


@pytest.mark.asyncio
async def test_corrupt_record_loads_as_none(store, settings):
    (settings.SESSIONS_DIR / "broken.json").write_text("[]")

    assert await store.load("broken") is None


@pytest.mark.asyncio
async def test_ids_that_are_not_file_names_are_rejected(store):
    assert await store.load("../memories") is None

    with pytest.raises(ValueError):
        await store.save(ChatSession(id="../escape"))


@pytest.mark.asyncio
async def test_search_matches_display_title(store):
    france = _session("Capital of France?", "What is the capital of France?")
    untitled = _session(None, "Recipe for pancakes")
    await store.save(france)
    await store.save(untitled)

    assert [s.id for s in store.search("france")] == [france.id]
    assert [s.id for s in store.search("PANCAKE")] == [untitled.id]
    assert len(store.search("  ")) == 2


@pytest.mark.asyncio
async def test_export_as_text_is_idempotent(store):
    session = _session("Title", "hi", "hello")

    assert store.export_as_text(session) == store.export_as_text(session)
