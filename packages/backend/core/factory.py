"""Composition root.

Builds the inference engine and every service as explicitly injected
dependencies, and wires event subscriptions between them. Nothing else in the
backend constructs services or reaches for a global one.

Usage:
    from core.config import settings
    from core.factory import build_services

    services = build_services(settings)
    await services.startup()
    ...
    await services.shutdown()
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import httpx

from .config import Settings
from .events import MODEL_ACTIVATED, MODEL_DELETED, EventBus
from .interfaces import ChatOptions

if TYPE_CHECKING:
    from core.interfaces import IInferenceEngine
    from services.chat_storage import SessionStore
    from services.conversation import ConversationOrchestrator
    from services.downloads import DownloadManager
    from services.memory_storage import MemoryStore
    from services.model_lifecycle import ModelLifecycleController

logger = logging.getLogger(__name__)


@dataclass
class AdapterConfig:
    """Configuration for the inference engine adapter."""

    n_ctx: int = 4096
    n_gpu_layers: int = 0  # 0 = CPU only, -1 = offload all layers


class AdapterFactory:
    """Creates adapter instances from configuration."""

    def __init__(self, config: AdapterConfig):
        self._config = config

    @property
    def config(self) -> AdapterConfig:
        return self._config

    def create_inference_engine(self) -> "IInferenceEngine":
        """Create the llama.cpp inference engine.

        The engine imports llama_cpp only when a model is loaded, so this
        works without llama-cpp-python installed.
        """
        from adapters.ai.llama_cpp import LlamaCppEngine

        logger.info(
            "Creating llama.cpp inference engine (n_ctx=%d, n_gpu_layers=%d)",
            self._config.n_ctx,
            self._config.n_gpu_layers,
        )
        return LlamaCppEngine(n_ctx=self._config.n_ctx, n_gpu_layers=self._config.n_gpu_layers)


def create_factory_from_settings(settings: Settings) -> AdapterFactory:
    """Create an AdapterFactory from application settings."""
    return AdapterFactory(AdapterConfig(n_ctx=settings.AI_N_CTX, n_gpu_layers=settings.AI_N_GPU_LAYERS))


@dataclass
class AppServices:
    """Every long-lived service of the backend."""

    settings: Settings
    bus: EventBus
    engine: "IInferenceEngine"
    downloads: "DownloadManager"
    lifecycle: "ModelLifecycleController"
    sessions: "SessionStore"
    memory: "MemoryStore"
    orchestrator: "ConversationOrchestrator"

    async def startup(self, load_model: bool = True) -> None:
        """Read persisted state and load the active model.

        A model that fails to load leaves the services usable; the failure
        shows up in the lifecycle state and the orchestrator's error.
        """
        await self.downloads.initialize()
        await self.sessions.initialize()
        await self.memory.load()
        active = self.downloads.active_model
        if load_model and active is not None:
            await self.orchestrator.handle_active_model_changed(model_id=active)

    async def shutdown(self) -> None:
        """Flush the pending save, stop transfers and release the model."""
        await self.orchestrator.flush()
        await self.downloads.shutdown()
        await self.lifecycle.unload_model()
        self.bus.clear()
        logger.info("Services shut down")


def build_services(
    settings: Settings,
    engine: "IInferenceEngine | None" = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> AppServices:
    """Build the service graph.

    Args:
        settings: Application settings
        engine: Inference engine; the llama.cpp engine when omitted
        transport: httpx transport for model downloads (tests pass a mock)
    """
    from services.active_model import ActiveModelStore
    from services.chat_storage import SessionStore
    from services.conversation import ConversationOrchestrator
    from services.downloads import DownloadManager
    from services.export import ExportService
    from services.memory_storage import MemoryStore
    from services.model_lifecycle import ModelLifecycleController

    if engine is None:
        engine = create_factory_from_settings(settings).create_inference_engine()

    bus = EventBus()
    downloads = DownloadManager(
        settings.MODELS_DIR,
        ActiveModelStore(settings.MODELS_DIR),
        bus,
        transport=transport,
        timeout=settings.DOWNLOAD_TIMEOUT_SECONDS,
    )
    lifecycle = ModelLifecycleController(engine, downloads)
    sessions = SessionStore(settings.SESSIONS_DIR, ExportService())
    memory = MemoryStore(settings.MEMORY_FILE)
    orchestrator = ConversationOrchestrator(
        lifecycle,
        sessions,
        memory,
        system_prompt=settings.SYSTEM_PROMPT,
        options=ChatOptions(
            temperature=settings.AI_TEMPERATURE,
            max_tokens=settings.AI_MAX_TOKENS,
            top_p=settings.AI_TOP_P,
        ),
        save_delay=settings.SAVE_DEBOUNCE_SECONDS,
        min_generation_interval=settings.MIN_SECONDS_BETWEEN_GENERATIONS,
    )

    bus.on(MODEL_DELETED, lifecycle.handle_model_deleted)
    bus.on(MODEL_ACTIVATED, orchestrator.handle_active_model_changed)

    return AppServices(
        settings=settings,
        bus=bus,
        engine=engine,
        downloads=downloads,
        lifecycle=lifecycle,
        sessions=sessions,
        memory=memory,
        orchestrator=orchestrator,
    )
