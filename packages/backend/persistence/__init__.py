"""JSON document persistence models."""

from .models import (
    ChatMessage,
    ChatSession,
    MemoryBlock,
    MemoryFolder,
    MessageRole,
    generate_uuid,
)

__all__ = [
    "ChatMessage",
    "ChatSession",
    "MemoryBlock",
    "MemoryFolder",
    "MessageRole",
    "generate_uuid",
]
