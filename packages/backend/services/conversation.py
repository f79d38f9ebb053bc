"""Conversation orchestration.

The orchestrator owns the current chat session. It turns user input into
generations against the loaded model, streams tokens back to the caller,
keeps the session titled and persisted, and records failures as
user-visible state instead of raising them.
"""

import asyncio
import inspect
import logging
import time
from contextlib import aclosing
from typing import Any, Awaitable, Callable, Iterable

from core.exceptions import (
    ChatError,
    EmptyGenerationError,
    GenerationFailedError,
    GenerationInProgressError,
    NotFoundError,
    RateLimitedError,
)
from core.interfaces import ChatOptions, PromptMessage
from core.model_catalog import get_model
from persistence.models import ChatMessage, ChatSession, MessageRole
from services.chat_storage import SessionStore
from services.debounce import Debouncer
from services.memory_storage import MemoryStore
from services.model_lifecycle import ModelLifecycleController

logger = logging.getLogger(__name__)

TokenCallback = Callable[[str], Awaitable[Any] | Any]

DEFAULT_MAX_CONTEXT_TOKENS = 4096
TITLE_PLACEHOLDER = "New Chat"
TITLE_MAX_LENGTH = 35
QUESTION_TITLE_MAX_LENGTH = 40


# -- Token estimates ---------------------------------------------------------


def estimate_tokens(text: str) -> int:
    """Rough token count: one token per four characters, at least one."""
    return max(1, len(text) // 4)


def estimate_conversation_tokens(messages: Iterable[ChatMessage]) -> int:
    """Token estimate for a conversation, with per-message overhead."""
    return sum(estimate_tokens(m.content) + 4 for m in messages)


# -- Titles ------------------------------------------------------------------


def _wrap_words(text: str, limit: int) -> str:
    """Leading words of text that fit in limit characters.

    A first word longer than the limit is cut at the limit.
    """
    result = ""
    for word in text.split(" "):
        if len(result) + len(word) + 1 > limit:
            break
        result = f"{result} {word}" if result else word
    if not result:
        result = text[:limit]
    return result


def create_smart_title(content: str) -> str:
    """Short session title derived from the first user message."""
    cleaned = content.strip().replace("\n", " ")
    if not cleaned:
        return TITLE_PLACEHOLDER

    if "?" in cleaned:
        question = cleaned.split("?", 1)[0].strip()
        if question:
            if len(question) <= QUESTION_TITLE_MAX_LENGTH:
                return question + "?"
            return _wrap_words(question, TITLE_MAX_LENGTH) + "...?"

    title = _wrap_words(cleaned, TITLE_MAX_LENGTH)
    if len(title) < len(cleaned):
        title += "..."
    return title


def title_for_session(session: ChatSession) -> str:
    first = session.first_user_message
    if first is None:
        return TITLE_PLACEHOLDER
    return create_smart_title(first.content)


# -- Orchestrator ------------------------------------------------------------


class ConversationOrchestrator:
    """Drives one chat session at a time."""

    def __init__(
        self,
        lifecycle: ModelLifecycleController,
        sessions: SessionStore,
        memory: MemoryStore,
        system_prompt: str,
        options: ChatOptions | None = None,
        save_delay: float = 1.0,
        min_generation_interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._lifecycle = lifecycle
        self._sessions = sessions
        self._memory = memory
        self._system_prompt = system_prompt
        self._options = options or ChatOptions()
        self._min_generation_interval = min_generation_interval
        self._clock = clock
        self._saver = Debouncer(save_delay, self._save_current)

        self._session = ChatSession()
        self.input_text = ""
        self.is_responding = False
        self.current_response = ""
        self.last_error: ChatError | None = None
        self.context_tokens = 0
        self.max_context_tokens = DEFAULT_MAX_CONTEXT_TOKENS

        self._last_generation_started: float | None = None
        self._last_title_update_count = 0
        self._stop_requested = False

    @property
    def current_session(self) -> ChatSession:
        """A copy of the current session."""
        return self._session.model_copy(deep=True)

    @property
    def error_message(self) -> str | None:
        return str(self.last_error) if self.last_error is not None else None

    def can_send(self) -> bool:
        return bool(self.input_text.strip()) and not self.is_responding and self._lifecycle.is_ready

    # -- Sending ----------------------------------------------------------

    async def send_user_message(self, text: str | None = None, on_token: TokenCallback | None = None) -> bool:
        """Send the input text and generate a reply.

        Args:
            text: Replaces the current input text when given
            on_token: Called with each generated token as it arrives

        Returns:
            True if the message was accepted and a generation ran.
        """
        if text is not None:
            self.input_text = text
        if not self.can_send():
            return False

        if self._last_generation_started is not None:
            elapsed = self._clock() - self._last_generation_started
            if elapsed < self._min_generation_interval:
                self.last_error = RateLimitedError("Please wait a moment before sending another message")
                return False

        content = self.input_text.strip()
        self.input_text = ""
        self.last_error = None
        self._session.append_user_message(content)
        self._saver.schedule()

        await self._generate(on_token)
        return True

    async def regenerate_last_response(self, on_token: TokenCallback | None = None) -> bool:
        """Replace the trailing assistant reply with a new one."""
        if self.is_responding or not self._lifecycle.is_ready:
            return False

        last = self._session.last_message
        if last is not None and last.role == MessageRole.ASSISTANT:
            self._session.remove_last_message()
        if self._session.is_empty:
            return False

        await self._generate(on_token)
        return True

    def stop_generation(self) -> None:
        """Ask the running generation to stop; its partial text is kept."""
        if not self.is_responding:
            return
        logger.info("Stopping generation")
        self._stop_requested = True
        self._lifecycle.engine.cancel()

    def _build_prompt(self) -> list[PromptMessage]:
        system_content = self._system_prompt + self._memory.formatted_context()
        messages = [PromptMessage(role=MessageRole.SYSTEM.value, content=system_content)]
        messages.extend(PromptMessage(role=m.role.value, content=m.content) for m in self._session.messages)
        return messages

    async def _generate(self, on_token: TokenCallback | None) -> None:
        self.is_responding = True
        self.current_response = ""
        self._stop_requested = False
        self._last_generation_started = self._clock()

        if self._memory.enabled_block_count:
            logger.info("Including %d memory blocks in context", self._memory.enabled_block_count)

        try:
            async with aclosing(self._lifecycle.engine.chat_stream(self._build_prompt(), self._options)) as stream:
                async for chunk in stream:
                    if self._stop_requested:
                        break
                    if not chunk.content:
                        continue
                    self.current_response += chunk.content
                    await self._emit_token(on_token, chunk.content)
        except asyncio.CancelledError:
            self._lifecycle.engine.cancel()
            self._finalize_response()
            raise
        except Exception as exc:
            logger.exception("Generation failed")
            self.current_response = ""
            self.is_responding = False
            self.last_error = GenerationFailedError(str(exc) or type(exc).__name__)
            return

        self._finalize_response()

    async def _emit_token(self, on_token: TokenCallback | None, token: str) -> None:
        if on_token is None:
            return
        result = on_token(token)
        if inspect.isawaitable(result):
            await result

    def _finalize_response(self) -> None:
        text = self.current_response.strip()
        stopped = self._stop_requested
        self.current_response = ""
        self.is_responding = False
        self._stop_requested = False

        if not text:
            if not stopped:
                logger.warning("Empty response received")
                self.last_error = EmptyGenerationError("Assistant generated an empty response")
            return

        self._session.append_assistant_message(text)
        self.context_tokens = estimate_conversation_tokens(self._session.messages)
        self._maybe_update_title()
        self._saver.schedule()

    def _maybe_update_title(self) -> None:
        count = self._session.message_count
        initial = count >= 2 and self._session.title is None
        refresh = count >= 4 and count - self._last_title_update_count >= 4
        if not (initial or refresh):
            return
        self._last_title_update_count = count
        self._session.title = title_for_session(self._session)
        logger.info("Auto-generated title: %s", self._session.title)

    # -- Sessions ---------------------------------------------------------

    async def _save_current(self) -> None:
        if self._session.is_empty:
            return
        await self._sessions.save(self._session.model_copy(deep=True))

    async def flush(self) -> None:
        """Write a pending save now."""
        await self._saver.flush()

    def _ensure_idle(self) -> None:
        if self.is_responding:
            raise GenerationInProgressError("A response is still being generated")

    def _reset(self, session: ChatSession) -> None:
        self._session = session
        self.input_text = ""
        self.current_response = ""
        self.last_error = None
        self.context_tokens = estimate_conversation_tokens(session.messages) if session.messages else 0
        self._last_title_update_count = session.message_count if session.title else 0

    async def start_new_session(self) -> ChatSession:
        """Save the current session if it has messages and start a fresh one.

        Raises:
            GenerationInProgressError: A response is being generated.
        """
        self._ensure_idle()
        await self._saver.cancel()
        if not self._session.is_empty:
            await self._sessions.save(self._session.model_copy(deep=True))
        logger.info("Starting new session")
        self._reset(ChatSession())
        return self.current_session

    async def load_session(self, session_id: str) -> ChatSession:
        """Make a stored session current.

        Raises:
            NotFoundError: No readable session with that id.
            GenerationInProgressError: A response is being generated.
        """
        self._ensure_idle()
        session = await self._sessions.load(session_id)
        if session is None:
            raise NotFoundError(f"Session not found: {session_id}")
        await self.flush()
        logger.info("Loading session: %s", session_id)
        self._reset(session)
        return self.current_session

    async def clear_conversation(self) -> None:
        """Delete the current session from storage and start over."""
        self._ensure_idle()
        await self._saver.cancel()
        await self._sessions.delete(self._session.id)
        logger.info("Cleared conversation %s", self._session.id)
        self._reset(ChatSession())

    def dismiss_error(self) -> None:
        self.last_error = None

    def export_conversation(self) -> str:
        return self._sessions.export_as_text(self._session)

    async def handle_active_model_changed(self, model_id: str, **kwargs) -> None:
        """Event handler: size the context for the new model and load it."""
        model = get_model(model_id)
        self.max_context_tokens = model.context_length if model else DEFAULT_MAX_CONTEXT_TOKENS
        try:
            await self._lifecycle.load_model(model_id)
        except ChatError as exc:
            logger.warning("Could not load active model %s: %s", model_id, exc)
            self.last_error = exc
