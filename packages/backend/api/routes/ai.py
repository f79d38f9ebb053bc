"""Model catalog, download and lifecycle endpoints."""

import asyncio
import json
import logging

from fastapi import APIRouter, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from api.deps import Services
from core.exceptions import ChatError, DownloadCancelledError
from core.model_catalog import MODEL_CATALOG, get_model
from services.downloads import DownloadStatus

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/ai", tags=["ai"])


class AIModelInfo(BaseModel):
    """Info about a catalog model."""

    id: str
    display_name: str
    description: str
    category: str
    category_label: str
    repo: str
    filename: str
    size_bytes: int
    context_length: int
    ram_usage: str
    status: DownloadStatus
    progress: float
    error: str | None
    downloaded: bool
    active: bool
    loaded: bool


class AIModelListResponse(BaseModel):
    models: list[AIModelInfo]
    active_model: str | None
    loaded_model: str | None


class LoadModelRequest(BaseModel):
    """Model to load; the active model when omitted."""

    model_id: str | None = None


class AIStatusResponse(BaseModel):
    """Response model for AI service status."""

    active_model: str | None
    loaded_model: str | None
    loading_status: str
    loading_error: str | None
    engine: dict


def _sse(payload: dict) -> str:
    return f"data: {json.dumps(payload)}\n\n"


def _require_catalog_model(model_id: str) -> None:
    if get_model(model_id) is None:
        raise HTTPException(status_code=404, detail="Model not in catalog")


@router.get("/models", response_model=AIModelListResponse)
async def list_models(services: Services) -> AIModelListResponse:
    """Return the model catalog merged with download, active and loaded status."""
    downloads = services.downloads
    loaded = services.lifecycle.loaded_model
    models = []
    for model in MODEL_CATALOG.values():
        state = downloads.state(model.id)
        models.append(
            AIModelInfo(
                id=model.id,
                display_name=model.display_name,
                description=model.description,
                category=model.category.value,
                category_label=model.category.label,
                repo=model.repo,
                filename=model.filename,
                size_bytes=model.size_bytes,
                context_length=model.context_length,
                ram_usage=model.ram_usage_formatted,
                status=state.status,
                progress=state.progress,
                error=state.error,
                downloaded=state.status == DownloadStatus.DOWNLOADED,
                active=downloads.active_model == model.id,
                loaded=loaded == model.id,
            )
        )
    return AIModelListResponse(models=models, active_model=downloads.active_model, loaded_model=loaded)


@router.post("/models/{model_id}/download")
async def download_model(model_id: str, services: Services) -> StreamingResponse:
    """Download a model from HuggingFace, streaming progress via SSE.

    The transfer keeps running if the client disconnects; a later request
    for the same model reports it as already downloading.
    """
    _require_catalog_model(model_id)
    downloads = services.downloads
    if downloads.is_downloaded(model_id):
        raise HTTPException(status_code=409, detail="Model already downloaded")
    if downloads.state(model_id).status == DownloadStatus.DOWNLOADING:
        raise HTTPException(status_code=409, detail="Model is already downloading")

    queue: asyncio.Queue[float | None] = asyncio.Queue()
    was_active = downloads.active_model
    transfer = asyncio.create_task(downloads.start_download(model_id, on_progress=queue.put_nowait))

    def _on_transfer_done(task: asyncio.Task) -> None:
        queue.put_nowait(None)
        if not task.cancelled():
            task.exception()

    transfer.add_done_callback(_on_transfer_done)

    async def _stream_progress():
        yield _sse({"status": "starting", "model_id": model_id})

        last_pct = -1
        while (progress := await queue.get()) is not None:
            pct = int(progress * 100)
            if pct != last_pct:
                last_pct = pct
                state = downloads.state(model_id)
                yield _sse({
                    "status": "progress",
                    "model_id": model_id,
                    "progress": progress,
                    "downloaded_bytes": state.downloaded_bytes,
                    "total_bytes": state.total_bytes,
                })

        try:
            path = transfer.result()
        except DownloadCancelledError:
            yield _sse({"status": "cancelled", "model_id": model_id})
            return
        except ChatError as exc:
            yield _sse({"status": "error", "model_id": model_id, "error": str(exc)})
            return

        yield _sse({"status": "complete", "model_id": model_id, "path": str(path)})
        if was_active is None and downloads.active_model == model_id:
            yield _sse({"status": "activated", "model_id": model_id})

    return StreamingResponse(_stream_progress(), media_type="text/event-stream")


@router.post("/models/{model_id}/cancel")
async def cancel_download(model_id: str, services: Services):
    """Cancel an in-flight download. Partial data is kept for resume."""
    _require_catalog_model(model_id)
    if not await services.downloads.cancel_download(model_id):
        raise HTTPException(status_code=404, detail="Model is not downloading")
    return {"status": "cancelled", "model_id": model_id}


@router.post("/models/{model_id}/activate")
async def activate_model(model_id: str, services: Services):
    """Set a downloaded model as the active model."""
    _require_catalog_model(model_id)
    if not services.downloads.is_downloaded(model_id):
        raise HTTPException(status_code=400, detail="Model is not downloaded")

    await services.downloads.set_active_model(model_id)
    return {
        "status": "activated",
        "model_id": model_id,
        "loaded": services.lifecycle.loaded_model == model_id,
    }


@router.delete("/models/{model_id}")
async def delete_model(model_id: str, services: Services):
    """Delete a downloaded model and any partial download."""
    _require_catalog_model(model_id)
    downloads = services.downloads
    if (
        downloads.state(model_id).status == DownloadStatus.NOT_DOWNLOADED
        and not downloads.has_partial(model_id)
    ):
        raise HTTPException(status_code=404, detail="Model file not found")

    await downloads.delete_model(model_id)
    return {
        "status": "deleted",
        "model_id": model_id,
        "active_model": downloads.active_model,
    }


@router.post("/models/load")
async def load_model(services: Services, request: LoadModelRequest | None = None):
    """Load a model into the inference engine (the active model by default)."""
    model_id = request.model_id if request else None
    if model_id is None:
        model_id = services.downloads.active_model
    if model_id is None:
        raise HTTPException(status_code=400, detail="No active model")

    await services.lifecycle.load_model(model_id)
    return {"status": "loaded", "model_id": model_id}


@router.post("/models/unload")
async def unload_model(services: Services):
    """Release the loaded model."""
    await services.lifecycle.unload_model()
    return {"status": "unloaded"}


@router.get("/status", response_model=AIStatusResponse)
async def get_ai_status(services: Services) -> AIStatusResponse:
    """Get inference engine status."""
    state = services.lifecycle.loading_state
    return AIStatusResponse(
        active_model=services.downloads.active_model,
        loaded_model=services.lifecycle.loaded_model,
        loading_status=state.status.value,
        loading_error=state.error,
        engine=await services.engine.get_service_info(),
    )
