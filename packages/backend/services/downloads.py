"""Model download manager.

Downloads catalog models from HuggingFace into the models directory, one
background task per model. Transfers stream into ``<filename>.part`` and are
resumed with an HTTP byte range when a partial file and its resume data
(``<filename>.resume.json``) are present.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable

import aiofiles
import aiofiles.os
import httpx
from pydantic import BaseModel, ValidationError

from core.events import DOWNLOAD_FAILED, DOWNLOAD_PROGRESS, MODEL_ACTIVATED, MODEL_DELETED, MODEL_DOWNLOADED, EventBus
from core.exceptions import AlreadyDownloadingError, DownloadCancelledError, ModelNotFoundError, TransferFailedError
from core.model_catalog import MODEL_CATALOG, ModelDescriptor
from persistence.files import write_json_atomic
from services.active_model import ActiveModelStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], Awaitable[Any] | Any]


class DownloadStatus(str, Enum):
    NOT_DOWNLOADED = "not_downloaded"
    DOWNLOADING = "downloading"
    DOWNLOADED = "downloaded"
    FAILED = "failed"


@dataclass(frozen=True)
class DownloadState:
    """Download status of one model."""

    status: DownloadStatus = DownloadStatus.NOT_DOWNLOADED
    progress: float = 0.0
    error: str | None = None
    downloaded_bytes: int = 0
    total_bytes: int | None = None


class ResumeData(BaseModel):
    """What is needed to continue a partial transfer."""

    url: str
    offset: int = 0
    etag: str | None = None
    last_modified: str | None = None

    @property
    def validator(self) -> str | None:
        return self.etag or self.last_modified


class _RangeNotSatisfiable(Exception):
    pass


def _content_range_total(value: str | None) -> int | None:
    """Total size from a ``Content-Range: bytes a-b/total`` header."""
    if not value or "/" not in value:
        return None
    total = value.rsplit("/", 1)[1].strip()
    return int(total) if total.isdigit() else None


def _describe_failure(exc: Exception) -> str:
    if isinstance(exc, httpx.HTTPStatusError):
        return f"HTTP {exc.response.status_code} from {exc.request.url.host}"
    return str(exc) or type(exc).__name__


class DownloadManager:
    """Tracks and runs model downloads."""

    def __init__(
        self,
        models_dir: Path,
        active_models: ActiveModelStore,
        bus: EventBus,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float | None = None,
    ):
        self._dir = Path(models_dir)
        self._active_models = active_models
        self._bus = bus
        self._transport = transport
        self._timeout = timeout
        self._states: dict[str, DownloadState] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._notifications: set[asyncio.Task] = set()
        self._active_model: str | None = None

    # -- Queries --------------------------------------------------------------

    def _descriptor(self, model_id: str) -> ModelDescriptor:
        model = MODEL_CATALOG.get(model_id)
        if model is None:
            raise ModelNotFoundError(f"Model not in catalog: {model_id}")
        return model

    def local_path(self, model_id: str) -> Path:
        return self._dir / self._descriptor(model_id).filename

    def _part_path(self, model: ModelDescriptor) -> Path:
        return self._dir / f"{model.filename}.part"

    def _resume_path(self, model: ModelDescriptor) -> Path:
        return self._dir / f"{model.filename}.resume.json"

    def state(self, model_id: str) -> DownloadState:
        self._descriptor(model_id)
        return self._states.get(model_id, DownloadState())

    def states(self) -> dict[str, DownloadState]:
        return {model_id: self.state(model_id) for model_id in MODEL_CATALOG}

    def progress(self, model_id: str) -> float:
        return self.state(model_id).progress

    def is_downloaded(self, model_id: str) -> bool:
        return self.state(model_id).status == DownloadStatus.DOWNLOADED

    def has_partial(self, model_id: str) -> bool:
        """Whether a partial file from an interrupted transfer exists."""
        return self._part_path(self._descriptor(model_id)).exists()

    def downloaded_models(self) -> list[str]:
        """Downloaded model ids in catalog order."""
        return [model_id for model_id in MODEL_CATALOG if self.is_downloaded(model_id)]

    @property
    def active_model(self) -> str | None:
        return self._active_model

    # -- Startup --------------------------------------------------------------

    async def initialize(self) -> None:
        """Scan the models directory and restore the active model."""
        await aiofiles.os.makedirs(self._dir, exist_ok=True)
        for model in MODEL_CATALOG.values():
            if (self._dir / model.filename).exists():
                self._states[model.id] = DownloadState(DownloadStatus.DOWNLOADED, 1.0)
            else:
                self._states[model.id] = DownloadState()

        stored = await self._active_models.read()
        if stored is not None and stored in MODEL_CATALOG and self.is_downloaded(stored):
            self._active_model = stored
        else:
            downloaded = self.downloaded_models()
            self._active_model = downloaded[0] if downloaded else None
            if self._active_model is not None:
                await self._active_models.write(self._active_model)
            elif stored is not None:
                await self._active_models.clear()
        logger.info(
            "Found %d downloaded models, active model: %s",
            len(self.downloaded_models()),
            self._active_model,
        )

    # -- Transfers ------------------------------------------------------------

    async def start_download(self, model_id: str, on_progress: ProgressCallback | None = None) -> Path:
        """Download a model and return its local path.

        Raises:
            ModelNotFoundError: Unknown model id.
            AlreadyDownloadingError: A transfer for this model is in flight.
            TransferFailedError: The transfer failed; a retry resumes it.
            DownloadCancelledError: The transfer was cancelled.
        """
        model = self._descriptor(model_id)
        if self.state(model_id).status == DownloadStatus.DOWNLOADING:
            raise AlreadyDownloadingError(f"{model.display_name} is already downloading")

        dest = self.local_path(model_id)
        if dest.exists():
            self._states[model_id] = DownloadState(DownloadStatus.DOWNLOADED, 1.0)
            return dest

        self._states[model_id] = DownloadState(DownloadStatus.DOWNLOADING, 0.0)
        task = asyncio.get_running_loop().create_task(
            self._run_transfer(model, on_progress), name=f"download:{model_id}"
        )
        self._tasks[model_id] = task
        task.add_done_callback(lambda t: self._on_transfer_done(model_id, t))

        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                raise DownloadCancelledError(f"Download of {model_id} was cancelled") from None
            raise

    def _on_transfer_done(self, model_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(model_id) is task:
            del self._tasks[model_id]
        if task.cancelled():
            if self._states.get(model_id, DownloadState()).status == DownloadStatus.DOWNLOADING:
                self._states[model_id] = DownloadState()
            return
        # Mark the outcome as retrieved; the caller may have stopped waiting.
        task.exception()

    async def cancel_download(self, model_id: str) -> bool:
        """Cancel an in-flight transfer, keeping its partial data for resume.

        Returns False when nothing was downloading.
        """
        self._descriptor(model_id)
        task = self._tasks.get(model_id)
        if task is None or task.done() or not self._is_transferring(model_id):
            return False
        task.cancel()
        await asyncio.wait([task])
        logger.info("Download cancelled: %s", model_id)
        return True

    async def _run_transfer(self, model: ModelDescriptor, on_progress: ProgressCallback | None) -> Path:
        dest = self._dir / model.filename
        try:
            await aiofiles.os.makedirs(self._dir, exist_ok=True)
            try:
                await self._stream(model, on_progress)
            except _RangeNotSatisfiable:
                logger.info("Server rejected resume range for %s, restarting", model.id)
                await self._discard_partial(model)
                await self._stream(model, on_progress)
            await aiofiles.os.replace(self._part_path(model), dest)
        except asyncio.CancelledError:
            await self._capture_resume_data(model)
            self._states[model.id] = DownloadState()
            raise DownloadCancelledError(f"Download of {model.id} was cancelled") from None
        except Exception as exc:
            reason = _describe_failure(exc)
            logger.exception("Model download failed: %s", model.id)
            await self._capture_resume_data(model)
            self._states[model.id] = DownloadState(DownloadStatus.FAILED, error=reason)
            await self._bus.emit(DOWNLOAD_FAILED, model_id=model.id, error=reason)
            raise TransferFailedError(reason) from exc

        await self._clear_resume_data(model)
        current = self._states.get(model.id, DownloadState())
        if current.progress != 1.0:
            await self._notify(on_progress, 1.0)
        self._states[model.id] = DownloadState(
            DownloadStatus.DOWNLOADED,
            1.0,
            downloaded_bytes=current.downloaded_bytes,
            total_bytes=current.total_bytes,
        )
        logger.info("Download complete: %s -> %s", model.id, dest)
        await self._bus.emit(MODEL_DOWNLOADED, model_id=model.id, path=dest)

        if self._active_model is None:
            self._active_model = model.id
            await self._active_models.write(model.id)
            logger.info("Active model set to %s", model.id)
            self._notify_later(MODEL_ACTIVATED, model_id=model.id)
        return dest

    def _is_transferring(self, model_id: str) -> bool:
        return self._states.get(model_id, DownloadState()).status == DownloadStatus.DOWNLOADING

    def _notify_later(self, event_name: str, **kwargs) -> None:
        """Emit an event from its own task so handlers never run inside a transfer."""
        task = asyncio.get_running_loop().create_task(self._bus.emit(event_name, **kwargs))
        self._notifications.add(task)
        task.add_done_callback(self._notifications.discard)

    async def _stream(self, model: ModelDescriptor, on_progress: ProgressCallback | None) -> None:
        """Stream the model body into the partial file."""
        url = model.download_url
        part = self._part_path(model)
        headers: dict[str, str] = {}
        offset = 0

        resume = await self._read_resume_data(model)
        if resume is not None and resume.url == url and part.exists():
            offset = part.stat().st_size
        if offset > 0:
            headers["Range"] = f"bytes={offset}-"
            if resume.validator:
                headers["If-Range"] = resume.validator
            logger.info("Resuming download of %s at byte %d", model.id, offset)
        else:
            logger.info("Starting download of %s from %s", model.id, url)

        async with httpx.AsyncClient(
            transport=self._transport, follow_redirects=True, timeout=self._timeout
        ) as client:
            async with client.stream("GET", url, headers=headers) as resp:
                if resp.status_code == 416 and offset > 0:
                    raise _RangeNotSatisfiable()
                resp.raise_for_status()

                if offset > 0 and resp.status_code != 206:
                    logger.info("Server ignored range request for %s, restarting", model.id)
                    offset = 0

                content_length = resp.headers.get("content-length")
                if resp.status_code == 206:
                    total = _content_range_total(resp.headers.get("content-range"))
                    if total is None and content_length:
                        total = offset + int(content_length)
                else:
                    total = int(content_length) if content_length else None
                expected = total or model.size_bytes

                await self._write_resume_data(
                    model,
                    ResumeData(
                        url=url,
                        offset=offset,
                        etag=resp.headers.get("etag"),
                        last_modified=resp.headers.get("last-modified"),
                    ),
                )

                written = offset
                last_pct = -1
                async with aiofiles.open(part, "ab" if offset else "wb") as f:
                    async for chunk in resp.aiter_bytes():
                        await f.write(chunk)
                        written += len(chunk)
                        progress = min(written / expected, 1.0)
                        self._states[model.id] = DownloadState(
                            DownloadStatus.DOWNLOADING,
                            progress,
                            downloaded_bytes=written,
                            total_bytes=total,
                        )
                        await self._notify(on_progress, progress)
                        pct = int(progress * 100)
                        if pct != last_pct:
                            last_pct = pct
                            await self._bus.emit(
                                DOWNLOAD_PROGRESS,
                                model_id=model.id,
                                progress=progress,
                                downloaded_bytes=written,
                                total_bytes=total,
                            )

        if total is not None and written != total:
            raise TransferFailedError(f"Incomplete download: received {written} of {total} bytes")

    async def _notify(self, on_progress: ProgressCallback | None, progress: float) -> None:
        if on_progress is None:
            return
        try:
            result = on_progress(progress)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Download progress callback failed")

    # -- Resume data ----------------------------------------------------------

    async def _read_resume_data(self, model: ModelDescriptor) -> ResumeData | None:
        path = self._resume_path(model)
        if not path.exists():
            return None
        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                return ResumeData.model_validate_json(await f.read())
        except (OSError, ValidationError, ValueError):
            logger.warning("Ignoring unreadable resume data for %s", model.id, exc_info=True)
            return None

    async def _write_resume_data(self, model: ModelDescriptor, data: ResumeData) -> None:
        await write_json_atomic(self._resume_path(model), data.model_dump_json())

    async def _capture_resume_data(self, model: ModelDescriptor) -> None:
        """Record the partial file size so a later start can resume."""
        part = self._part_path(model)
        try:
            if not part.exists():
                await self._clear_resume_data(model)
                return
            data = await self._read_resume_data(model) or ResumeData(url=model.download_url)
            data.offset = part.stat().st_size
            await self._write_resume_data(model, data)
        except OSError:
            logger.warning("Could not save resume data for %s", model.id, exc_info=True)

    async def _clear_resume_data(self, model: ModelDescriptor) -> None:
        path = self._resume_path(model)
        if path.exists():
            await aiofiles.os.remove(path)

    async def _discard_partial(self, model: ModelDescriptor) -> None:
        part = self._part_path(model)
        if part.exists():
            await aiofiles.os.remove(part)
        await self._clear_resume_data(model)

    # -- Model management -----------------------------------------------------

    async def delete_model(self, model_id: str) -> None:
        """Remove a model's file and any partial data.

        If the model was active, the first other downloaded model becomes
        active, or no model at all.
        """
        model = self._descriptor(model_id)
        await self.cancel_download(model_id)

        dest = self._dir / model.filename
        if dest.exists():
            await aiofiles.os.remove(dest)
        await self._discard_partial(model)
        self._states[model_id] = DownloadState()
        logger.info("Deleted model %s", model_id)
        await self._bus.emit(MODEL_DELETED, model_id=model_id)

        if self._active_model == model_id:
            remaining = self.downloaded_models()
            if remaining:
                await self.set_active_model(remaining[0])
            else:
                self._active_model = None
                await self._active_models.clear()

    async def set_active_model(self, model_id: str) -> None:
        """Make a downloaded model the active one.

        Raises:
            ModelNotFoundError: The model is unknown or not downloaded.
        """
        self._descriptor(model_id)
        if not self.is_downloaded(model_id):
            raise ModelNotFoundError(f"Model is not downloaded: {model_id}")
        self._active_model = model_id
        await self._active_models.write(model_id)
        logger.info("Active model set to %s", model_id)
        await self._bus.emit(MODEL_ACTIVATED, model_id=model_id)

    async def shutdown(self) -> None:
        """Cancel every transfer, keeping resume data."""
        tasks = [t for model_id, t in self._tasks.items() if not t.done() and self._is_transferring(model_id)]
        tasks.extend(t for t in self._notifications if not t.done())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Cancelled %d downloads on shutdown", len(tasks))
