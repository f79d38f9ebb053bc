"""Services layer."""

from .chat_storage import SessionStore, SessionSummary
from .conversation import ConversationOrchestrator
from .downloads import DownloadManager, DownloadState, DownloadStatus
from .export import ExportService
from .memory_storage import MemoryStore
from .model_lifecycle import LoadingState, LoadingStatus, ModelLifecycleController

__all__ = [
    "ConversationOrchestrator",
    "DownloadManager",
    "DownloadState",
    "DownloadStatus",
    "ExportService",
    "LoadingState",
    "LoadingStatus",
    "MemoryStore",
    "ModelLifecycleController",
    "SessionStore",
    "SessionSummary",
]
