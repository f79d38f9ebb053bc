"""Chat session persistence.

One JSON document per session under the sessions directory, named by session
id. An in-memory index of session summaries is kept sorted by last update so
listing does not touch the disk.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

import aiofiles
import aiofiles.os
from pydantic import ValidationError

from persistence.files import write_json_atomic
from persistence.models import ChatSession
from services.export import ExportService

logger = logging.getLogger(__name__)


@dataclass
class SessionSummary:
    """Session metadata for list views."""

    id: str
    title: str | None
    display_title: str
    created_at: datetime
    updated_at: datetime
    message_count: int
    last_message_preview: str | None

    @classmethod
    def from_session(cls, session: ChatSession) -> "SessionSummary":
        preview = None
        last = session.last_message
        if last is not None:
            preview = last.content[:100] + "..." if len(last.content) > 100 else last.content
        return cls(
            id=session.id,
            title=session.title,
            display_title=session.display_title,
            created_at=session.created_at,
            updated_at=session.updated_at,
            message_count=session.message_count,
            last_message_preview=preview,
        )


class SessionStore:
    """Stores chat sessions as JSON files."""

    def __init__(self, sessions_dir: Path, export_service: ExportService | None = None):
        self._dir = Path(sessions_dir)
        self._export = export_service or ExportService()
        self._index: dict[str, SessionSummary] = {}

    @property
    def directory(self) -> Path:
        return self._dir

    def _session_path(self, session_id: str) -> Path | None:
        """Record path for an id, or None if the id is not a plain file name."""
        if not session_id or Path(session_id).name != session_id or session_id.startswith("."):
            return None
        return self._dir / f"{session_id}.json"

    async def initialize(self) -> None:
        """Create the directory and index every readable session record."""
        await aiofiles.os.makedirs(self._dir, exist_ok=True)
        self._index.clear()
        for path in sorted(self._dir.glob("*.json")):
            session = await self._read(path)
            if session is not None:
                self._index[session.id] = SessionSummary.from_session(session)
        logger.info("Loaded %d chat sessions from %s", len(self._index), self._dir)

    async def _read(self, path: Path) -> ChatSession | None:
        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                data = await f.read()
            return ChatSession.model_validate_json(data)
        except (OSError, ValidationError, ValueError):
            logger.warning("Skipping unreadable session record %s", path.name, exc_info=True)
            return None

    async def save(self, session: ChatSession) -> None:
        """Insert or replace a session record."""
        path = self._session_path(session.id)
        if path is None:
            raise ValueError(f"Invalid session id: {session.id!r}")
        await aiofiles.os.makedirs(self._dir, exist_ok=True)
        await write_json_atomic(path, session.model_dump_json(indent=2))
        self._index[session.id] = SessionSummary.from_session(session)
        logger.info("Saved session %s (%d messages)", session.id, session.message_count)

    async def load(self, session_id: str) -> ChatSession | None:
        """Load a session. Returns None if missing or corrupt."""
        path = self._session_path(session_id)
        if path is None or not path.exists():
            logger.info("Session file not found: %s", session_id)
            return None
        return await self._read(path)

    async def delete(self, session_id: str) -> None:
        """Delete a session record. Does nothing if it does not exist."""
        path = self._session_path(session_id)
        if path is not None and path.exists():
            await aiofiles.os.remove(path)
            logger.info("Deleted session %s", session_id)
        self._index.pop(session_id, None)

    def list_sessions(self) -> list[SessionSummary]:
        """All sessions, most recently updated first."""
        return sorted(self._index.values(), key=lambda s: s.updated_at, reverse=True)

    def search(self, query: str) -> list[SessionSummary]:
        """Sessions whose display title contains the query (case-insensitive)."""
        needle = query.strip().casefold()
        if not needle:
            return self.list_sessions()
        return [s for s in self.list_sessions() if needle in s.display_title.casefold()]

    def export_as_text(self, session: ChatSession) -> str:
        """Render a session as plain text."""
        return self._export.export_txt(session)
