"""Pytest configuration and fixtures."""

import asyncio
from collections.abc import AsyncGenerator, AsyncIterator, Callable
from pathlib import Path

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from core.config import Settings
from core.factory import AppServices, build_services
from core.interfaces import ChatOptions, ChatStreamChunk, IInferenceEngine, PromptMessage
from core.model_catalog import get_model


class FakeEngine(IInferenceEngine):
    """Inference engine that streams canned tokens.

    With ``hold_after`` set, the stream pauses after that many tokens until
    cancel() is called.
    """

    def __init__(self, tokens: list[str] | None = None):
        self.tokens = tokens if tokens is not None else ["Hello", " there", "!"]
        self.hold_after: int | None = None
        self.load_error: Exception | None = None
        self.load_gate: asyncio.Event | None = None
        self.stream_error: Exception | None = None
        self.loaded_path: str | None = None
        self.load_calls: list[str] = []
        self.unload_calls = 0
        self.cancel_calls = 0
        self.prompts: list[list[PromptMessage]] = []
        self.holding = asyncio.Event()
        self._cancelled = asyncio.Event()

    @property
    def is_loaded(self) -> bool:
        return self.loaded_path is not None

    async def load(self, model_path: str) -> None:
        self.load_calls.append(model_path)
        if self.load_gate is not None:
            await self.load_gate.wait()
        if self.load_error is not None:
            raise self.load_error
        self.loaded_path = model_path

    async def unload(self) -> None:
        self.unload_calls += 1
        self.loaded_path = None

    def cancel(self) -> None:
        self.cancel_calls += 1
        self._cancelled.set()

    async def chat_stream(
        self,
        messages: list[PromptMessage],
        options: ChatOptions | None = None,
    ) -> AsyncIterator[ChatStreamChunk]:
        self.prompts.append(list(messages))
        self._cancelled.clear()
        self.holding.clear()
        if self.stream_error is not None:
            raise self.stream_error
        for i, token in enumerate(self.tokens):
            if self.hold_after is not None and i == self.hold_after:
                self.holding.set()
                await self._cancelled.wait()
                return
            yield ChatStreamChunk(content=token)
        yield ChatStreamChunk(content="", finish_reason="stop")

    async def get_service_info(self) -> dict:
        return {"name": "fake", "model_loaded": self.is_loaded}


class ModelServer:
    """Serves a model body over httpx.MockTransport, honouring byte ranges."""

    def __init__(self, body: bytes, chunk_size: int = 1024, etag: str = '"model-v1"'):
        self.body = body
        self.chunk_size = chunk_size
        self.etag = etag
        self.requests: list[httpx.Request] = []
        self.fail_status: int | None = None
        self.ignore_range = False
        self.truncate = False
        self.gate: asyncio.Event | None = None

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_status is not None:
            return httpx.Response(self.fail_status)

        status = 200
        start = 0
        headers = {"etag": self.etag}
        range_header = request.headers.get("range")
        if range_header and not self.ignore_range:
            start = int(range_header.removeprefix("bytes=").rstrip("-"))
            if start >= len(self.body):
                return httpx.Response(416, headers={"content-range": f"bytes */{len(self.body)}"})
            status = 206
            headers["content-range"] = f"bytes {start}-{len(self.body) - 1}/{len(self.body)}"

        payload = self.body[start:]
        headers["content-length"] = str(len(payload))
        if self.truncate:
            payload = payload[: len(payload) // 2]
        return httpx.Response(status, headers=headers, content=self._chunks(payload))

    async def _chunks(self, payload: bytes) -> AsyncIterator[bytes]:
        for offset in range(0, len(payload), self.chunk_size):
            yield payload[offset:offset + self.chunk_size]
            if self.gate is not None:
                await self.gate.wait()

    @property
    def last_request(self) -> httpx.Request:
        return self.requests[-1]


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll until predicate() is true."""
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.005)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings rooted in a temporary data directory."""
    test_settings = Settings(
        DATA_DIR=tmp_path / "data",
        SAVE_DEBOUNCE_SECONDS=0.05,
        MIN_SECONDS_BETWEEN_GENERATIONS=0.0,
        _env_file=None,
    )
    test_settings.ensure_directories()
    return test_settings


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def model_server() -> ModelServer:
    return ModelServer(body=bytes(range(256)) * 20)


@pytest.fixture
def install_model(settings: Settings) -> Callable[[str], Path]:
    """Place a model file in the models directory as if it were downloaded."""

    def _install(model_id: str, content: bytes = b"GGUF") -> Path:
        path = settings.MODELS_DIR / get_model(model_id).filename
        path.write_bytes(content)
        return path

    return _install


@pytest_asyncio.fixture
async def services(
    settings: Settings,
    engine: FakeEngine,
    model_server: ModelServer,
) -> AsyncGenerator[AppServices, None]:
    """Fully wired services over temporary storage and the fake engine."""
    app_services = build_services(
        settings,
        engine=engine,
        transport=httpx.MockTransport(model_server.handler),
    )
    await app_services.startup()
    yield app_services
    await app_services.shutdown()


@pytest_asyncio.fixture
async def ready_services(services: AppServices, install_model) -> AppServices:
    """Services with a downloaded, active and loaded model."""
    install_model("qwen3-0.6b")
    await services.downloads.initialize()
    await services.orchestrator.handle_active_model_changed(model_id="qwen3-0.6b")
    assert services.lifecycle.is_ready
    return services


@pytest_asyncio.fixture
async def client(services: AppServices) -> AsyncGenerator[AsyncClient, None]:
    """Test client over the app with the test services installed."""
    from api.main import app

    app.state.services = services
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
