"""Tests for the live chat endpoints."""

import asyncio
import json

import pytest
from httpx import AsyncClient


def _events(response) -> list[dict]:
    return [json.loads(line[len("data: "):]) for line in response.text.splitlines() if line.startswith("data: ")]


@pytest.mark.asyncio
async def test_chat_state(client: AsyncClient, ready_services):
    response = await client.get("/api/chat")

    assert response.status_code == 200
    data = response.json()
    assert data["session"]["messages"] == []
    assert data["is_responding"] is False
    assert data["error"] is None
    assert data["model_status"] == "ready"
    assert data["loaded_model"] == "qwen3-0.6b"
    assert data["max_context_tokens"] == 8192


@pytest.mark.asyncio
async def test_send_without_model_is_503(client: AsyncClient):
    response = await client.post("/api/chat/messages", json={"content": "Hi"})

    assert response.status_code == 503
    assert response.json()["error"] == "ModelNotReadyError"


@pytest.mark.asyncio
async def test_send_empty_message_is_400(client: AsyncClient, ready_services):
    response = await client.post("/api/chat/messages", json={"content": "   "})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_send_streams_tokens_then_done(client: AsyncClient, ready_services):
    response = await client.post("/api/chat/messages", json={"content": "What is the capital of France?"})

    assert response.status_code == 200
    events = _events(response)
    assert [e["content"] for e in events if e["type"] == "token"] == ["Hello", " there", "!"]
    done = events[-1]
    assert done["type"] == "done"
    assert done["message"]["role"] == "assistant"
    assert done["message"]["content"] == "Hello there!"
    assert done["title"] == "What is the capital of France?"
    assert done["session_id"] == ready_services.orchestrator.current_session.id


@pytest.mark.asyncio
async def test_generation_error_is_streamed(client: AsyncClient, ready_services, engine):
    engine.stream_error = RuntimeError("engine crashed")

    response = await client.post("/api/chat/messages", json={"content": "Hi"})

    events = _events(response)
    assert events[-1] == {"type": "error", "error": "engine crashed", "error_type": "GenerationFailedError"}

    state = (await client.get("/api/chat")).json()
    assert state["error_type"] == "GenerationFailedError"
    assert (await client.delete("/api/chat/errors")).status_code == 200
    assert (await client.get("/api/chat")).json()["error"] is None


@pytest.mark.asyncio
async def test_stop_keeps_partial_reply(client: AsyncClient, ready_services, engine):
    engine.tokens = ["Hel", "lo"]
    engine.hold_after = 1

    send = asyncio.create_task(client.post("/api/chat/messages", json={"content": "Hi"}))
    await asyncio.wait_for(engine.holding.wait(), timeout=2)

    assert (await client.post("/api/chat/messages", json={"content": "Again"})).status_code == 409
    stop = await client.post("/api/chat/stop")
    assert stop.json() == {"status": "stopping"}

    events = _events(await send)
    assert events[-1]["type"] == "done"
    assert events[-1]["message"]["content"] == "Hel"


@pytest.mark.asyncio
async def test_stop_when_idle(client: AsyncClient, ready_services):
    response = await client.post("/api/chat/stop")
    assert response.json() == {"status": "idle"}


@pytest.mark.asyncio
async def test_regenerate(client: AsyncClient, ready_services, engine):
    await client.post("/api/chat/messages", json={"content": "Hi"})
    engine.tokens = ["Another", " answer"]

    response = await client.post("/api/chat/regenerate")

    assert _events(response)[-1]["message"]["content"] == "Another answer"
    messages = ready_services.orchestrator.current_session.messages
    assert [m.content for m in messages] == ["Hi", "Another answer"]


@pytest.mark.asyncio
async def test_regenerate_empty_session_is_400(client: AsyncClient, ready_services):
    response = await client.post("/api/chat/regenerate")
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_new_and_load_session(client: AsyncClient, ready_services):
    await client.post("/api/chat/messages", json={"content": "Hi"})
    previous = ready_services.orchestrator.current_session.id

    new = await client.post("/api/chat/new")
    assert new.status_code == 200
    assert new.json()["messages"] == []
    assert new.json()["id"] != previous

    loaded = await client.post(f"/api/chat/load/{previous}")
    assert loaded.status_code == 200
    assert [m["content"] for m in loaded.json()["messages"]] == ["Hi", "Hello there!"]


@pytest.mark.asyncio
async def test_load_missing_session_is_404(client: AsyncClient, ready_services):
    response = await client.post("/api/chat/load/missing")

    assert response.status_code == 404
    assert response.json()["error"] == "NotFoundError"


@pytest.mark.asyncio
async def test_clear_conversation(client: AsyncClient, ready_services):
    await client.post("/api/chat/messages", json={"content": "Hi"})
    await ready_services.orchestrator.flush()
    previous = ready_services.orchestrator.current_session.id

    response = await client.delete("/api/chat")

    assert response.status_code == 200
    assert await ready_services.sessions.load(previous) is None
    assert (await client.get("/api/chat")).json()["session"]["messages"] == []


@pytest.mark.asyncio
async def test_export_current(client: AsyncClient, ready_services):
    await client.post("/api/chat/messages", json={"content": "Hi"})

    response = await client.get("/api/chat/export")

    assert response.status_code == 200
    assert "Hello there!" in response.text
