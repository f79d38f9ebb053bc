"""Tests for the model download manager."""

import asyncio
import json

import httpx
import pytest
import pytest_asyncio

from conftest import ModelServer, wait_until
from core.events import DOWNLOAD_FAILED, DOWNLOAD_PROGRESS, MODEL_ACTIVATED, MODEL_DELETED, MODEL_DOWNLOADED, EventBus
from core.exceptions import (
    AlreadyDownloadingError,
    DownloadCancelledError,
    ModelNotFoundError,
    TransferFailedError,
)
from core.model_catalog import get_model
from services.active_model import ActiveModelStore
from services.downloads import DownloadManager, DownloadStatus

MODEL_ID = "qwen3-0.6b"
FILENAME = get_model(MODEL_ID).filename


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def events(bus):
    """Record every event emitted on the bus."""
    recorded: list[tuple[str, dict]] = []

    def _recorder(name):
        async def _handler(**kwargs):
            recorded.append((name, kwargs))
        return _handler

    for name in (DOWNLOAD_PROGRESS, DOWNLOAD_FAILED, MODEL_DOWNLOADED, MODEL_ACTIVATED, MODEL_DELETED):
        bus.on(name, _recorder(name))
    return recorded


@pytest_asyncio.fixture
async def manager(settings, bus, model_server):
    downloads = DownloadManager(
        settings.MODELS_DIR,
        ActiveModelStore(settings.MODELS_DIR),
        bus,
        transport=httpx.MockTransport(model_server.handler),
    )
    await downloads.initialize()
    yield downloads
    await downloads.shutdown()


def _names(events):
    return [name for name, _ in events]


class TestStartDownload:
    @pytest.mark.asyncio
    async def test_download_completes(self, manager, model_server, settings, events):
        progress = []

        path = await manager.start_download(MODEL_ID, on_progress=progress.append)

        assert path == settings.MODELS_DIR / FILENAME
        assert path.read_bytes() == model_server.body
        assert manager.is_downloaded(MODEL_ID)
        assert manager.state(MODEL_ID).status == DownloadStatus.DOWNLOADED
        assert manager.progress(MODEL_ID) == 1.0
        assert progress[-1] == 1.0
        assert progress == sorted(progress)
        assert not (settings.MODELS_DIR / f"{FILENAME}.part").exists()
        assert not (settings.MODELS_DIR / f"{FILENAME}.resume.json").exists()
        assert "range" not in model_server.last_request.headers
        assert MODEL_DOWNLOADED in _names(events)

    @pytest.mark.asyncio
    async def test_progress_events_are_throttled_to_whole_percent(self, manager, model_server, events):
        model_server.chunk_size = 16  # 320 chunks

        await manager.start_download(MODEL_ID)

        percents = [int(kw["progress"] * 100) for name, kw in events if name == DOWNLOAD_PROGRESS]
        assert len(percents) == len(set(percents))
        assert percents[-1] == 100

    @pytest.mark.asyncio
    async def test_first_download_becomes_active(self, manager, settings, events):
        assert manager.active_model is None

        await manager.start_download(MODEL_ID)

        assert manager.active_model == MODEL_ID
        stored = json.loads((settings.MODELS_DIR / "active_model.json").read_text())
        assert stored == {"model_id": MODEL_ID}
        await wait_until(lambda: (MODEL_ACTIVATED, {"model_id": MODEL_ID}) in events)

    @pytest.mark.asyncio
    async def test_second_download_keeps_active_model(self, manager):
        await manager.start_download(MODEL_ID)
        await manager.start_download("tinyllama-1.1b")

        assert manager.active_model == MODEL_ID

    @pytest.mark.asyncio
    async def test_existing_file_returns_immediately(self, manager, model_server, install_model):
        path = install_model(MODEL_ID)

        assert await manager.start_download(MODEL_ID) == path
        assert model_server.requests == []
        assert manager.is_downloaded(MODEL_ID)

    @pytest.mark.asyncio
    async def test_unknown_model(self, manager):
        with pytest.raises(ModelNotFoundError):
            await manager.start_download("nope")

    @pytest.mark.asyncio
    async def test_second_start_while_downloading_fails_fast(self, manager, model_server):
        model_server.gate = asyncio.Event()
        first = asyncio.create_task(manager.start_download(MODEL_ID))
        await wait_until(lambda: manager.state(MODEL_ID).downloaded_bytes > 0)

        with pytest.raises(AlreadyDownloadingError):
            await manager.start_download(MODEL_ID)

        model_server.gate.set()
        await first
        assert manager.is_downloaded(MODEL_ID)

    @pytest.mark.asyncio
    async def test_different_models_download_concurrently(self, manager):
        paths = await asyncio.gather(
            manager.start_download(MODEL_ID),
            manager.start_download("tinyllama-1.1b"),
        )

        assert all(p.exists() for p in paths)
        assert manager.downloaded_models() == [MODEL_ID, "tinyllama-1.1b"]

    @pytest.mark.asyncio
    async def test_caller_going_away_does_not_stop_transfer(self, manager, model_server):
        model_server.gate = asyncio.Event()
        waiter = asyncio.create_task(manager.start_download(MODEL_ID))
        await wait_until(lambda: manager.state(MODEL_ID).downloaded_bytes > 0)

        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter
        assert manager.state(MODEL_ID).status == DownloadStatus.DOWNLOADING

        model_server.gate.set()
        await wait_until(lambda: manager.is_downloaded(MODEL_ID))


class TestCancelAndResume:
    @pytest.mark.asyncio
    async def test_cancel_keeps_partial_and_resume_data(self, manager, model_server, settings):
        model_server.gate = asyncio.Event()
        task = asyncio.create_task(manager.start_download(MODEL_ID))
        await wait_until(lambda: manager.state(MODEL_ID).downloaded_bytes > 0)

        assert await manager.cancel_download(MODEL_ID)

        with pytest.raises(DownloadCancelledError):
            await task
        assert manager.state(MODEL_ID).status == DownloadStatus.NOT_DOWNLOADED
        part = settings.MODELS_DIR / f"{FILENAME}.part"
        assert part.stat().st_size == model_server.chunk_size
        resume = json.loads((settings.MODELS_DIR / f"{FILENAME}.resume.json").read_text())
        assert resume["offset"] == model_server.chunk_size
        assert resume["etag"] == model_server.etag
        assert manager.has_partial(MODEL_ID)

    @pytest.mark.asyncio
    async def test_resume_requests_remaining_bytes(self, manager, model_server):
        model_server.gate = asyncio.Event()
        task = asyncio.create_task(manager.start_download(MODEL_ID))
        await wait_until(lambda: manager.state(MODEL_ID).downloaded_bytes > 0)
        await manager.cancel_download(MODEL_ID)
        with pytest.raises(DownloadCancelledError):
            await task

        model_server.gate = None
        path = await manager.start_download(MODEL_ID)

        request = model_server.last_request
        assert request.headers["range"] == f"bytes={model_server.chunk_size}-"
        assert request.headers["if-range"] == model_server.etag
        assert path.read_bytes() == model_server.body

    @pytest.mark.asyncio
    async def test_cancel_when_idle_returns_false(self, manager):
        assert not await manager.cancel_download(MODEL_ID)

    @pytest.mark.asyncio
    async def test_server_ignoring_range_restarts_from_zero(self, manager, model_server, settings):
        (settings.MODELS_DIR / f"{FILENAME}.part").write_bytes(b"stale bytes")
        (settings.MODELS_DIR / f"{FILENAME}.resume.json").write_text(
            json.dumps({"url": get_model(MODEL_ID).download_url, "offset": 11})
        )
        model_server.ignore_range = True

        path = await manager.start_download(MODEL_ID)

        assert model_server.last_request.headers["range"] == "bytes=11-"
        assert path.read_bytes() == model_server.body

    @pytest.mark.asyncio
    async def test_unsatisfiable_range_discards_partial_and_restarts(self, manager, model_server, settings):
        (settings.MODELS_DIR / f"{FILENAME}.part").write_bytes(b"x" * (len(model_server.body) + 10))
        (settings.MODELS_DIR / f"{FILENAME}.resume.json").write_text(
            json.dumps({"url": get_model(MODEL_ID).download_url, "offset": 0})
        )

        path = await manager.start_download(MODEL_ID)

        assert len(model_server.requests) == 2
        assert "range" not in model_server.last_request.headers
        assert path.read_bytes() == model_server.body

    @pytest.mark.asyncio
    async def test_partial_without_resume_data_starts_over(self, manager, model_server, settings):
        (settings.MODELS_DIR / f"{FILENAME}.part").write_bytes(b"orphan")

        path = await manager.start_download(MODEL_ID)

        assert "range" not in model_server.last_request.headers
        assert path.read_bytes() == model_server.body


class TestFailures:
    @pytest.mark.asyncio
    async def test_http_error_marks_failed(self, manager, model_server, events):
        model_server.fail_status = 503

        with pytest.raises(TransferFailedError, match="HTTP 503"):
            await manager.start_download(MODEL_ID)

        state = manager.state(MODEL_ID)
        assert state.status == DownloadStatus.FAILED
        assert "503" in state.error
        assert DOWNLOAD_FAILED in _names(events)
        assert manager.active_model is None

    @pytest.mark.asyncio
    async def test_short_body_fails_and_can_resume(self, manager, model_server, settings):
        model_server.truncate = True

        with pytest.raises(TransferFailedError, match="Incomplete download"):
            await manager.start_download(MODEL_ID)
        received = (settings.MODELS_DIR / f"{FILENAME}.part").stat().st_size
        assert received == len(model_server.body) // 2

        model_server.truncate = False
        path = await manager.start_download(MODEL_ID)

        assert model_server.last_request.headers["range"] == f"bytes={received}-"
        assert path.read_bytes() == model_server.body
        assert manager.is_downloaded(MODEL_ID)


    @pytest.mark.asyncio
    async def test_unexpected_error_marks_failed_and_can_retry(self, settings, bus, model_server):
        attempts = []

        async def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            if len(attempts) == 1:
                raise RuntimeError("socket exploded")
            return await model_server.handler(request)

        downloads = DownloadManager(
            settings.MODELS_DIR,
            ActiveModelStore(settings.MODELS_DIR),
            bus,
            transport=httpx.MockTransport(handler),
        )
        await downloads.initialize()

        with pytest.raises(TransferFailedError, match="socket exploded"):
            await downloads.start_download(MODEL_ID)
        state = downloads.state(MODEL_ID)
        assert state.status == DownloadStatus.FAILED
        assert state.error == "socket exploded"

        path = await downloads.start_download(MODEL_ID)

        assert path.read_bytes() == model_server.body
        await downloads.shutdown()


class TestDeleteAndActivate:
    @pytest.mark.asyncio
    async def test_delete_removes_file_and_emits(self, manager, settings, events):
        path = await manager.start_download(MODEL_ID)

        await manager.delete_model(MODEL_ID)

        assert not path.exists()
        assert manager.state(MODEL_ID).status == DownloadStatus.NOT_DOWNLOADED
        assert (MODEL_DELETED, {"model_id": MODEL_ID}) in events
        assert manager.active_model is None
        assert not (settings.MODELS_DIR / "active_model.json").exists()

    @pytest.mark.asyncio
    async def test_delete_active_falls_back_to_other_download(self, manager):
        await manager.start_download(MODEL_ID)
        await manager.start_download("gemma2-2b")

        await manager.delete_model(MODEL_ID)

        assert manager.active_model == "gemma2-2b"

    @pytest.mark.asyncio
    async def test_delete_cancels_transfer_and_removes_partial(self, manager, model_server, settings):
        model_server.gate = asyncio.Event()
        task = asyncio.create_task(manager.start_download(MODEL_ID))
        await wait_until(lambda: manager.state(MODEL_ID).downloaded_bytes > 0)

        await manager.delete_model(MODEL_ID)

        with pytest.raises(DownloadCancelledError):
            await task
        assert not (settings.MODELS_DIR / f"{FILENAME}.part").exists()
        assert not (settings.MODELS_DIR / f"{FILENAME}.resume.json").exists()

    @pytest.mark.asyncio
    async def test_set_active_requires_download(self, manager):
        with pytest.raises(ModelNotFoundError):
            await manager.set_active_model(MODEL_ID)

    @pytest.mark.asyncio
    async def test_set_active_persists_and_emits(self, manager, install_model, events):
        install_model("mistral-7b")
        await manager.initialize()

        await manager.set_active_model("mistral-7b")

        assert manager.active_model == "mistral-7b"
        assert await ActiveModelStore(manager.local_path("mistral-7b").parent).read() == "mistral-7b"
        assert (MODEL_ACTIVATED, {"model_id": "mistral-7b"}) in events


class TestInitialize:
    @pytest.mark.asyncio
    async def test_restores_stored_active_model(self, settings, bus, install_model):
        install_model(MODEL_ID)
        install_model("phi3-mini")
        await ActiveModelStore(settings.MODELS_DIR).write("phi3-mini")

        manager = DownloadManager(settings.MODELS_DIR, ActiveModelStore(settings.MODELS_DIR), bus)
        await manager.initialize()

        assert manager.active_model == "phi3-mini"
        assert manager.downloaded_models() == [MODEL_ID, "phi3-mini"]

    @pytest.mark.asyncio
    async def test_missing_active_model_falls_back_to_first_downloaded(self, settings, bus, install_model):
        install_model("phi3-mini")
        await ActiveModelStore(settings.MODELS_DIR).write("mistral-7b")

        manager = DownloadManager(settings.MODELS_DIR, ActiveModelStore(settings.MODELS_DIR), bus)
        await manager.initialize()

        assert manager.active_model == "phi3-mini"

    @pytest.mark.asyncio
    async def test_no_downloads_clears_active_model(self, settings, bus):
        store = ActiveModelStore(settings.MODELS_DIR)
        await store.write("mistral-7b")

        manager = DownloadManager(settings.MODELS_DIR, store, bus)
        await manager.initialize()

        assert manager.active_model is None
        assert await store.read() is None


@pytest.mark.asyncio
async def test_shutdown_cancels_transfers_keeping_resume_data(settings, bus):
    server = ModelServer(body=b"a" * 4096)
    server.gate = asyncio.Event()
    manager = DownloadManager(
        settings.MODELS_DIR,
        ActiveModelStore(settings.MODELS_DIR),
        bus,
        transport=httpx.MockTransport(server.handler),
    )
    await manager.initialize()
    task = asyncio.create_task(manager.start_download(MODEL_ID))
    await wait_until(lambda: manager.state(MODEL_ID).downloaded_bytes > 0)

    await manager.shutdown()

    with pytest.raises(DownloadCancelledError):
        await task
    assert (settings.MODELS_DIR / f"{FILENAME}.resume.json").exists()


class TestActivationAfterDownload:
    @pytest.mark.asyncio
    async def test_activation_handlers_run_outside_the_transfer(self, manager, bus):
        gate = asyncio.Event()
        started = asyncio.Event()

        async def slow_handler(**kwargs):
            started.set()
            await gate.wait()

        bus.on(MODEL_ACTIVATED, slow_handler)

        path = await asyncio.wait_for(manager.start_download(MODEL_ID), timeout=2)
        await asyncio.wait_for(started.wait(), timeout=2)

        assert path.exists()
        assert manager.is_downloaded(MODEL_ID)
        assert not await manager.cancel_download(MODEL_ID)
        assert manager.is_downloaded(MODEL_ID)
        gate.set()

    @pytest.mark.asyncio
    async def test_shutdown_stops_pending_activation_handlers(self, manager, bus):
        gate = asyncio.Event()
        started = asyncio.Event()
        cancelled = []

        async def slow_handler(**kwargs):
            started.set()
            try:
                await gate.wait()
            except asyncio.CancelledError:
                cancelled.append(kwargs["model_id"])
                raise

        bus.on(MODEL_ACTIVATED, slow_handler)
        await manager.start_download(MODEL_ID)
        await asyncio.wait_for(started.wait(), timeout=2)

        await manager.shutdown()

        assert cancelled == [MODEL_ID]
        assert manager.is_downloaded(MODEL_ID)
