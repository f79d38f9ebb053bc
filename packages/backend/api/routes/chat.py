"""Live chat endpoints driving the conversation orchestrator."""

import asyncio
import json
import logging
from typing import Awaitable, Callable

from fastapi import APIRouter, HTTPException
from fastapi.responses import PlainTextResponse, StreamingResponse
from pydantic import BaseModel

from api.deps import Services
from api.routes.conversations import ConversationDetailResponse, MessageResponse
from core.exceptions import GenerationInProgressError, ModelNotReadyError
from core.factory import AppServices

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/chat", tags=["chat"])


class SendMessageRequest(BaseModel):
    content: str


class ChatStateResponse(BaseModel):
    """Current conversation state for the chat view."""

    session: ConversationDetailResponse
    is_responding: bool
    current_response: str
    error: str | None
    error_type: str | None
    context_tokens: int
    max_context_tokens: int
    model_status: str
    loaded_model: str | None


def _sse(payload: dict) -> str:
    return f"data: {json.dumps(payload, default=str)}\n\n"


def _ensure_can_generate(services: AppServices) -> None:
    if not services.lifecycle.is_ready:
        raise ModelNotReadyError("No model is loaded")
    if services.orchestrator.is_responding:
        raise GenerationInProgressError("A response is still being generated")


def _stream_generation(
    services: AppServices,
    run: Callable[[Callable[[str], None]], Awaitable[bool]],
) -> StreamingResponse:
    """Run a generation in the background and stream its tokens via SSE.

    The generation outlives a disconnected client; its reply is still saved.
    """
    orchestrator = services.orchestrator
    queue: asyncio.Queue[str | None] = asyncio.Queue()
    generation = asyncio.create_task(run(queue.put_nowait))

    def _on_generation_done(task: asyncio.Task) -> None:
        queue.put_nowait(None)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Generation task failed", exc_info=task.exception())

    generation.add_done_callback(_on_generation_done)

    async def _events():
        while (token := await queue.get()) is not None:
            yield _sse({"type": "token", "content": token})

        accepted = not generation.cancelled() and generation.exception() is None and generation.result()
        if orchestrator.last_error is not None:
            yield _sse({
                "type": "error",
                "error": orchestrator.error_message,
                "error_type": type(orchestrator.last_error).__name__,
            })
            return
        if not accepted:
            yield _sse({"type": "error", "error": "Message was not sent", "error_type": None})
            return

        session = orchestrator.current_session
        last = session.last_message
        yield _sse({
            "type": "done",
            "session_id": session.id,
            "title": session.title,
            "context_tokens": orchestrator.context_tokens,
            "message": MessageResponse(
                id=last.id, role=last.role.value, content=last.content, created_at=last.created_at
            ).model_dump(mode="json") if last else None,
        })

    return StreamingResponse(_events(), media_type="text/event-stream")


@router.get("", response_model=ChatStateResponse)
async def get_chat_state(services: Services) -> ChatStateResponse:
    """Get the current session and generation state."""
    orchestrator = services.orchestrator
    error = orchestrator.last_error
    return ChatStateResponse(
        session=ConversationDetailResponse.from_session(orchestrator.current_session),
        is_responding=orchestrator.is_responding,
        current_response=orchestrator.current_response,
        error=orchestrator.error_message,
        error_type=type(error).__name__ if error is not None else None,
        context_tokens=orchestrator.context_tokens,
        max_context_tokens=orchestrator.max_context_tokens,
        model_status=services.lifecycle.loading_state.status.value,
        loaded_model=services.lifecycle.loaded_model,
    )


@router.post("/messages")
async def send_message(request: SendMessageRequest, services: Services) -> StreamingResponse:
    """Send a user message and stream the assistant's reply."""
    if not request.content.strip():
        raise HTTPException(status_code=400, detail="Message is empty")
    _ensure_can_generate(services)
    orchestrator = services.orchestrator
    return _stream_generation(
        services,
        lambda on_token: orchestrator.send_user_message(request.content, on_token=on_token),
    )


@router.post("/regenerate")
async def regenerate(services: Services) -> StreamingResponse:
    """Replace the last assistant reply, streaming the new one."""
    _ensure_can_generate(services)
    if services.orchestrator.current_session.is_empty:
        raise HTTPException(status_code=400, detail="Nothing to regenerate")
    orchestrator = services.orchestrator
    return _stream_generation(
        services,
        lambda on_token: orchestrator.regenerate_last_response(on_token=on_token),
    )


@router.post("/stop")
async def stop_generation(services: Services):
    """Stop the running generation, keeping what was produced so far."""
    was_responding = services.orchestrator.is_responding
    services.orchestrator.stop_generation()
    return {"status": "stopping" if was_responding else "idle"}


@router.post("/new", response_model=ConversationDetailResponse)
async def new_session(services: Services) -> ConversationDetailResponse:
    """Save the current session and start an empty one."""
    session = await services.orchestrator.start_new_session()
    return ConversationDetailResponse.from_session(session)


@router.post("/load/{session_id}", response_model=ConversationDetailResponse)
async def load_session(session_id: str, services: Services) -> ConversationDetailResponse:
    """Continue a saved session."""
    session = await services.orchestrator.load_session(session_id)
    return ConversationDetailResponse.from_session(session)


@router.delete("")
async def clear_conversation(services: Services):
    """Delete the current session and start an empty one."""
    await services.orchestrator.clear_conversation()
    return {"status": "cleared"}


@router.delete("/errors")
async def dismiss_error(services: Services):
    """Dismiss the current error."""
    services.orchestrator.dismiss_error()
    return {"status": "dismissed"}


@router.get("/export", response_class=PlainTextResponse)
async def export_current(services: Services) -> str:
    """Export the current session as plain text."""
    return services.orchestrator.export_conversation()
