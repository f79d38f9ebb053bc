"""Application configuration."""

import os
import sys
from pathlib import Path

from pydantic_settings import BaseSettings


def _default_data_dir() -> Path:
    """Return the platform-specific default data directory."""
    if sys.platform == "win32":
        base = os.environ.get("APPDATA", str(Path.home() / "AppData" / "Roaming"))
        return Path(base) / "Offline AI Chat"
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / "Offline AI Chat"
    base = os.environ.get("XDG_DATA_HOME", str(Path.home() / ".local" / "share"))
    return Path(base) / "offline-ai-chat"


class Settings(BaseSettings):
    """Application settings."""

    # API settings
    API_HOST: str = "127.0.0.1"
    API_PORT: int = 52790

    # Data paths
    DATA_DIR: Path = _default_data_dir()
    MODELS_DIR: Path | None = None
    SESSIONS_DIR: Path | None = None
    MEMORY_FILE: Path | None = None

    # Inference settings (llama.cpp)
    AI_N_CTX: int = 4096  # Context window size
    AI_N_GPU_LAYERS: int = 0  # GPU layers to offload (0 = CPU, -1 = all)
    AI_MAX_TOKENS: int = 512  # Maximum tokens per response
    AI_TEMPERATURE: float = 0.7
    AI_TOP_P: float = 0.9
    SYSTEM_PROMPT: str = "You are a helpful AI assistant. Respond concisely and helpfully."

    # Conversation behaviour
    SAVE_DEBOUNCE_SECONDS: float = 1.0
    MIN_SECONDS_BETWEEN_GENERATIONS: float = 1.0

    # Downloads
    DOWNLOAD_TIMEOUT_SECONDS: float | None = None  # None = no timeout for large files

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # Set derived paths
        if self.MODELS_DIR is None:
            self.MODELS_DIR = self.DATA_DIR / "models"
        if self.SESSIONS_DIR is None:
            self.SESSIONS_DIR = self.DATA_DIR / "sessions"
        if self.MEMORY_FILE is None:
            self.MEMORY_FILE = self.DATA_DIR / "memories.json"

    def ensure_directories(self) -> None:
        """Create required directories."""
        self.DATA_DIR.mkdir(parents=True, exist_ok=True)
        self.MODELS_DIR.mkdir(parents=True, exist_ok=True)
        self.SESSIONS_DIR.mkdir(parents=True, exist_ok=True)
        self.MEMORY_FILE.parent.mkdir(parents=True, exist_ok=True)

    model_config = {"env_prefix": "OFFLINECHAT_", "env_file": ".env"}


settings = Settings()
