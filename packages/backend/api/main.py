"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.errors import chat_error_handler
from api.routes import ai, chat, conversations, health, memory
from core.config import settings
from core.exceptions import ChatError
from core.factory import build_services

logger = logging.getLogger(__name__)


def _get_version() -> str:
    """Read the version from pyproject.toml at startup."""
    try:
        import tomllib

        pyproject_path = Path(__file__).resolve().parents[3] / "pyproject.toml"
        if pyproject_path.exists():
            with open(pyproject_path, "rb") as f:
                data = tomllib.load(f)
            version = data.get("project", {}).get("version")
            if version:
                return f"v{version}"
    except (OSError, ValueError, KeyError):
        pass
    return "dev"


APP_VERSION = _get_version()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    settings.ensure_directories()
    services = build_services(settings)
    app.state.services = services
    await services.startup()
    logger.info("Offline AI Chat API started (data dir: %s)", settings.DATA_DIR)

    yield

    # Shutdown
    await services.shutdown()


app = FastAPI(
    title="Offline AI Chat API",
    description="Local backend for offline chat with on-device language models",
    version=APP_VERSION,
    lifespan=lifespan,
)

# CORS - wide open. This API only binds to 127.0.0.1 and is accessed by
# the local UI process.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(ChatError, chat_error_handler)

# Routes
app.include_router(health.router)
app.include_router(ai.router, prefix="/api")
app.include_router(conversations.router, prefix="/api")
app.include_router(chat.router, prefix="/api")
app.include_router(memory.router, prefix="/api")


@app.get("/api/info")
async def api_info():
    """API info endpoint."""
    return {
        "name": "Offline AI Chat API",
        "version": APP_VERSION,
    }


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Offline AI Chat API",
        "version": APP_VERSION,
    }


def run() -> None:
    """Run the API server with uvicorn."""
    import uvicorn

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run(app, host=settings.API_HOST, port=settings.API_PORT)


if __name__ == "__main__":
    run()
