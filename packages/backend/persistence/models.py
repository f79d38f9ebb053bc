"""Persisted data models.

Chat sessions and memory folders are stored as JSON documents; these pydantic
models define their shape and the small amount of behaviour that belongs to
the data itself.
"""

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


def generate_uuid() -> str:
    """Generate a UUID string."""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(UTC)


def _default_timestamps(data: Any, created_key: str, updated_key: str) -> Any:
    """Make a new record's updated timestamp equal its created timestamp."""
    if isinstance(data, dict):
        data = dict(data)
        created = data.get(created_key) or utcnow()
        data[created_key] = created
        data.setdefault(updated_key, created)
    return data


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ChatMessage(BaseModel):
    """A single message in a chat conversation. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=generate_uuid)
    role: MessageRole
    content: str
    created_at: datetime = Field(default_factory=utcnow)


class ChatSession(BaseModel):
    """A chat session containing an ordered list of messages."""

    id: str = Field(default_factory=generate_uuid)
    title: str | None = None
    messages: list[ChatMessage] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    @model_validator(mode="before")
    @classmethod
    def _timestamps(cls, data: Any) -> Any:
        return _default_timestamps(data, "created_at", "updated_at")

    @property
    def display_title(self) -> str:
        """Custom title, else a preview of the first user message."""
        if self.title:
            return self.title
        first = self.first_user_message
        if first is not None:
            content = first.content
            if len(content) > 35:
                return content[:35] + "..."
            return content
        return "New Chat"

    @property
    def first_user_message(self) -> ChatMessage | None:
        return next((m for m in self.messages if m.role == MessageRole.USER), None)

    @property
    def message_count(self) -> int:
        return len(self.messages)

    @property
    def is_empty(self) -> bool:
        return not self.messages

    @property
    def last_message(self) -> ChatMessage | None:
        return self.messages[-1] if self.messages else None

    def touch(self) -> None:
        self.updated_at = utcnow()

    def append_message(self, role: MessageRole, content: str) -> ChatMessage:
        message = ChatMessage(role=role, content=content)
        self.messages.append(message)
        self.touch()
        return message

    def append_user_message(self, content: str) -> ChatMessage:
        return self.append_message(MessageRole.USER, content)

    def append_assistant_message(self, content: str) -> ChatMessage:
        return self.append_message(MessageRole.ASSISTANT, content)

    def append_system_message(self, content: str) -> ChatMessage:
        return self.append_message(MessageRole.SYSTEM, content)

    def remove_last_message(self) -> ChatMessage | None:
        """Remove the last message (used by regenerate)."""
        if not self.messages:
            return None
        removed = self.messages.pop()
        self.touch()
        return removed

    def clear_messages(self) -> None:
        self.messages.clear()
        self.touch()

    def trim_to_recent(self, max_message_count: int) -> None:
        """Keep only the most recent messages."""
        if len(self.messages) <= max_message_count:
            return
        self.messages = self.messages[-max_message_count:]
        self.touch()


class MemoryBlock(BaseModel):
    """A memory block containing reusable context/knowledge."""

    id: str = Field(default_factory=generate_uuid)
    title: str
    content: str
    created_at: datetime
    updated_at: datetime
    enabled: bool = True

    @model_validator(mode="before")
    @classmethod
    def _timestamps(cls, data: Any) -> Any:
        return _default_timestamps(data, "created_at", "updated_at")

    @property
    def estimated_tokens(self) -> int:
        # Rough estimate: 1 token ~ 4 characters
        return (len(self.title) + len(self.content)) // 4


class MemoryFolder(BaseModel):
    """A folder containing related memory blocks."""

    id: str = Field(default_factory=generate_uuid)
    name: str
    icon: str = "folder.fill"
    color: str = "blue"
    blocks: list[MemoryBlock] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    enabled: bool = True

    @property
    def enabled_blocks(self) -> list[MemoryBlock]:
        return [b for b in self.blocks if b.enabled]

    @property
    def total_estimated_tokens(self) -> int:
        return sum(b.estimated_tokens for b in self.enabled_blocks)

    def find_block(self, block_id: str) -> MemoryBlock | None:
        return next((b for b in self.blocks if b.id == block_id), None)

    def format_for_prompt(self) -> str:
        """Format enabled blocks for inclusion in the system prompt."""
        blocks = self.enabled_blocks
        if not blocks:
            return ""
        lines = [f"[{self.name} Knowledge]:\n"]
        for block in blocks:
            lines.append(f"• {block.title}: {block.content}\n")
        return "".join(lines)
