"""Inference engine interface definitions.

This module defines the contract for local LLM inference, allowing different
implementations (llama.cpp, a test fake, etc.) to be swapped transparently.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator


@dataclass
class PromptMessage:
    """A message as sent to the engine."""

    role: str  # system, user, assistant
    content: str


@dataclass
class ChatOptions:
    """Options for chat completion."""

    temperature: float = 0.7
    max_tokens: int | None = None
    top_p: float = 0.9
    stop: list[str] | None = None


@dataclass
class ChatStreamChunk:
    """A chunk from streaming chat completion."""

    content: str
    finish_reason: str | None = None


class IInferenceEngine(ABC):
    """Interface for local LLM inference.

    Implementations wrap a model runtime. The engine holds at most one model
    in memory at a time.
    """

    @abstractmethod
    async def load(self, model_path: str) -> None:
        """Load a model file, replacing any previously loaded model.

        Raises:
            Exception: Any failure to initialize the model.
        """
        ...

    @abstractmethod
    async def unload(self) -> None:
        """Release the loaded model. Safe to call when nothing is loaded."""
        ...

    @abstractmethod
    def chat_stream(
        self,
        messages: list[PromptMessage],
        options: ChatOptions | None = None,
    ) -> AsyncIterator[ChatStreamChunk]:
        """Stream a chat completion.

        Cancellation requested through cancel() is observed between chunks;
        the stream then ends normally.

        Args:
            messages: Full prompt, system message first
            options: Chat options

        Yields:
            ChatStreamChunk with content pieces
        """
        ...

    @abstractmethod
    def cancel(self) -> None:
        """Request the current stream to stop."""
        ...

    @property
    @abstractmethod
    def is_loaded(self) -> bool:
        """True when a model is resident."""
        ...

    @abstractmethod
    async def get_service_info(self) -> dict[str, str | int | float | bool]:
        """Get information about the engine.

        Returns:
            Dict with engine details (name, model path, status, etc.)
        """
        ...
