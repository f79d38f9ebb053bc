"""Conversations API routes for saved chat sessions."""

from datetime import datetime

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from api.deps import Services
from persistence.models import ChatSession

router = APIRouter(prefix="/conversations", tags=["conversations"])


class MessageResponse(BaseModel):
    """Single message in a conversation."""

    id: str
    role: str
    content: str
    created_at: datetime


class ConversationListItem(BaseModel):
    """Conversation summary for list view."""

    id: str
    title: str | None
    display_title: str
    created_at: datetime
    updated_at: datetime
    message_count: int
    last_message_preview: str | None


class ConversationListResponse(BaseModel):
    items: list[ConversationListItem]
    total: int


class ConversationDetailResponse(BaseModel):
    """Full conversation with messages."""

    id: str
    title: str | None
    display_title: str
    created_at: datetime
    updated_at: datetime
    messages: list[MessageResponse]

    @classmethod
    def from_session(cls, session: ChatSession) -> "ConversationDetailResponse":
        return cls(
            id=session.id,
            title=session.title,
            display_title=session.display_title,
            created_at=session.created_at,
            updated_at=session.updated_at,
            messages=[
                MessageResponse(id=m.id, role=m.role.value, content=m.content, created_at=m.created_at)
                for m in session.messages
            ],
        )


@router.get("", response_model=ConversationListResponse)
async def list_conversations(
    services: Services,
    q: str | None = Query(None, description="Filter by title"),
) -> ConversationListResponse:
    """List saved conversations, most recently updated first."""
    summaries = services.sessions.search(q) if q else services.sessions.list_sessions()
    items = [
        ConversationListItem(
            id=s.id,
            title=s.title,
            display_title=s.display_title,
            created_at=s.created_at,
            updated_at=s.updated_at,
            message_count=s.message_count,
            last_message_preview=s.last_message_preview,
        )
        for s in summaries
    ]
    return ConversationListResponse(items=items, total=len(items))


async def _load_or_404(services, conversation_id: str) -> ChatSession:
    session = await services.sessions.load(conversation_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return session


@router.get("/{conversation_id}", response_model=ConversationDetailResponse)
async def get_conversation(conversation_id: str, services: Services) -> ConversationDetailResponse:
    """Get a conversation with all its messages."""
    session = await _load_or_404(services, conversation_id)
    return ConversationDetailResponse.from_session(session)


@router.delete("/{conversation_id}")
async def delete_conversation(conversation_id: str, services: Services):
    """Delete a conversation."""
    orchestrator = services.orchestrator
    if orchestrator.current_session.id == conversation_id and not orchestrator.is_responding:
        await orchestrator.clear_conversation()
        return {"status": "deleted", "id": conversation_id}

    await _load_or_404(services, conversation_id)
    await services.sessions.delete(conversation_id)
    return {"status": "deleted", "id": conversation_id}


@router.get("/{conversation_id}/export", response_class=PlainTextResponse)
async def export_conversation(conversation_id: str, services: Services) -> str:
    """Export a conversation as plain text."""
    session = await _load_or_404(services, conversation_id)
    return services.sessions.export_as_text(session)
