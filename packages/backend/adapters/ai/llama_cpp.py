"""Llama.cpp inference engine adapter.

Implements IInferenceEngine for local LLM inference using llama-cpp-python.
Uses create_chat_completion() for correct chat template handling.
"""

import asyncio
import gc
import logging
from collections.abc import AsyncIterator
from pathlib import Path

from core.interfaces import (
    ChatOptions,
    ChatStreamChunk,
    IInferenceEngine,
    PromptMessage,
)

logger = logging.getLogger(__name__)


class LlamaCppEngine(IInferenceEngine):
    """Llama.cpp-based engine for local LLM inference.

    Imports llama_cpp lazily so the backend starts without it installed.
    """

    def __init__(self, n_ctx: int = 4096, n_gpu_layers: int = 0):
        self._n_ctx = n_ctx
        self._n_gpu_layers = n_gpu_layers
        self._model_path: str | None = None
        self._llm = None
        self._cancel_requested = False

    @property
    def is_loaded(self) -> bool:
        return self._llm is not None

    async def load(self, model_path: str) -> None:
        """Load a GGUF file, releasing any previously loaded model first."""
        path = Path(model_path)
        if not path.exists():
            raise FileNotFoundError(f"Model file not found: {model_path}")

        try:
            from llama_cpp import Llama
        except ImportError as e:
            raise ImportError(
                "llama-cpp-python is not installed. Install with: pip install llama-cpp-python"
            ) from e

        await self.unload()

        logger.info(
            "Loading llama.cpp model: %s (context=%dK tokens, gpu_layers=%d)",
            path.name,
            self._n_ctx // 1024,
            self._n_gpu_layers,
        )
        self._llm = await asyncio.to_thread(
            Llama,
            model_path=str(path),
            n_ctx=self._n_ctx,
            n_gpu_layers=self._n_gpu_layers,
            verbose=False,
        )
        self._model_path = str(path)
        logger.info("Model loaded successfully: %s", path.name)

    async def unload(self) -> None:
        """Delete the llama.cpp model from memory."""
        if self._llm is None:
            return
        logger.info("Unloading llama.cpp model %s", self._model_path)
        del self._llm
        self._llm = None
        self._model_path = None
        gc.collect()

    def cancel(self) -> None:
        self._cancel_requested = True

    async def chat_stream(
        self,
        messages: list[PromptMessage],
        options: ChatOptions | None = None,
    ) -> AsyncIterator[ChatStreamChunk]:
        """Stream a chat completion, stopping early when cancel() is called."""
        if self._llm is None:
            raise RuntimeError("No model loaded")

        options = options or ChatOptions()
        self._cancel_requested = False
        msgs = [{"role": m.role, "content": m.content} for m in messages]

        stream = await asyncio.to_thread(
            self._llm.create_chat_completion,
            messages=msgs,
            max_tokens=options.max_tokens or 512,
            temperature=options.temperature,
            top_p=options.top_p,
            stop=options.stop,
            stream=True,
        )

        # Iterate over the synchronous generator using to_thread for each chunk
        def _next_chunk(iterator):
            try:
                return next(iterator)
            except StopIteration:
                return None

        try:
            while not self._cancel_requested:
                chunk = await asyncio.to_thread(_next_chunk, stream)
                if chunk is None:
                    break

                delta = chunk["choices"][0].get("delta", {})
                content = delta.get("content") or ""
                finish_reason = chunk["choices"][0].get("finish_reason")
                if not content and not finish_reason:
                    continue

                yield ChatStreamChunk(content=content, finish_reason=finish_reason)
        finally:
            if self._cancel_requested:
                logger.info("Generation cancelled")
            stream.close()
            self._cancel_requested = False

    async def get_service_info(self) -> dict[str, str | int | float | bool]:
        """Get information about the engine."""
        info: dict[str, str | int | float | bool] = {
            "name": "llama.cpp",
            "model_loaded": self._llm is not None,
            "n_ctx": self._n_ctx,
            "n_gpu_layers": self._n_gpu_layers,
        }
        if self._model_path:
            info["model_path"] = self._model_path
        return info
