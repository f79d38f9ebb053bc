"""Loading and unloading models in the inference engine."""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum

from core.exceptions import ModelInitializationError, ModelNotFoundError
from core.interfaces import IInferenceEngine
from core.model_catalog import get_model
from services.downloads import DownloadManager

logger = logging.getLogger(__name__)


class LoadingStatus(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


@dataclass(frozen=True)
class LoadingState:
    status: LoadingStatus = LoadingStatus.UNINITIALIZED
    error: str | None = None

    @property
    def is_ready(self) -> bool:
        return self.status == LoadingStatus.READY


class ModelLifecycleController:
    """Keeps at most one downloaded model loaded in the engine.

    Loads are serialized. Changing the active model does not load it; the
    conversation orchestrator asks for that when it sees the change.
    """

    def __init__(self, engine: IInferenceEngine, downloads: DownloadManager):
        self._engine = engine
        self._downloads = downloads
        self._loaded_model: str | None = None
        self._state = LoadingState()
        self._lock = asyncio.Lock()

    @property
    def engine(self) -> IInferenceEngine:
        return self._engine

    @property
    def loaded_model(self) -> str | None:
        return self._loaded_model

    @property
    def loading_state(self) -> LoadingState:
        return self._state

    @property
    def active_model(self) -> str | None:
        return self._downloads.active_model

    @property
    def is_ready(self) -> bool:
        return self._state.is_ready

    async def load_model(self, model_id: str) -> None:
        """Load a downloaded model, replacing whatever is loaded.

        Raises:
            ModelNotFoundError: The model is unknown or not downloaded.
            ModelInitializationError: The engine could not load the file.
        """
        if get_model(model_id) is None or not self._downloads.is_downloaded(model_id):
            raise ModelNotFoundError(f"Model is not downloaded: {model_id}")

        async with self._lock:
            if self._loaded_model == model_id and self._state.is_ready:
                return

            self._state = LoadingState(LoadingStatus.LOADING)
            path = self._downloads.local_path(model_id)
            try:
                if self._loaded_model is not None:
                    await self._engine.unload()
                    self._loaded_model = None
                await self._engine.load(str(path))
            except asyncio.CancelledError:
                logger.info("Loading of %s was cancelled", model_id)
                self._loaded_model = None
                self._state = LoadingState()
                raise
            except Exception as exc:
                reason = str(exc) or type(exc).__name__
                logger.exception("Failed to load model %s", model_id)
                self._loaded_model = None
                self._state = LoadingState(LoadingStatus.ERROR, reason)
                raise ModelInitializationError(reason) from exc

            self._loaded_model = model_id
            self._state = LoadingState(LoadingStatus.READY)
            logger.info("Model loaded: %s", model_id)

    async def load_active_model(self) -> bool:
        """Load the active model, if there is one.

        Returns:
            True if a model ended up loaded.
        """
        model_id = self.active_model
        if model_id is None:
            return False
        await self.load_model(model_id)
        return True

    async def unload_model(self) -> None:
        """Release the loaded model. Always succeeds."""
        async with self._lock:
            try:
                await self._engine.unload()
            except Exception:
                logger.exception("Engine failed to unload cleanly")
            if self._loaded_model is not None:
                logger.info("Model unloaded: %s", self._loaded_model)
            self._loaded_model = None
            self._state = LoadingState()

    async def handle_model_deleted(self, model_id: str, **kwargs) -> None:
        """Event handler: unload a model whose file was deleted."""
        if model_id == self._loaded_model:
            await self.unload_model()
