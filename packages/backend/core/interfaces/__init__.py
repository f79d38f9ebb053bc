"""Core interfaces for the adapter pattern.

These interfaces define contracts that allow swapping the inference runtime
without touching the services that drive it.
"""

from .ai import (
    ChatOptions,
    ChatStreamChunk,
    IInferenceEngine,
    PromptMessage,
)

__all__ = [
    "IInferenceEngine",
    "ChatOptions",
    "ChatStreamChunk",
    "PromptMessage",
]
