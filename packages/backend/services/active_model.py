"""Persisted record of the active model.

The active model is the one the user selected for chat. It is stored as
``{"model_id": ...}`` in ``active_model.json`` inside the models directory.
"""

import logging
from pathlib import Path

import aiofiles
import aiofiles.os
from pydantic import BaseModel, ValidationError

from persistence.files import write_json_atomic

logger = logging.getLogger(__name__)


class ActiveModelRecord(BaseModel):
    model_id: str


class ActiveModelStore:
    """Reads and writes the active model identifier."""

    def __init__(self, models_dir: Path):
        self._path = Path(models_dir) / "active_model.json"

    @property
    def path(self) -> Path:
        return self._path

    async def read(self) -> str | None:
        """Return the stored model id, or None when unset or unreadable."""
        if not self._path.exists():
            return None
        try:
            async with aiofiles.open(self._path, "r", encoding="utf-8") as f:
                record = ActiveModelRecord.model_validate_json(await f.read())
        except (OSError, ValidationError):
            logger.warning("Ignoring unreadable active model file %s", self._path, exc_info=True)
            return None
        return record.model_id

    async def write(self, model_id: str) -> None:
        """Persist the active model id."""
        await aiofiles.os.makedirs(self._path.parent, exist_ok=True)
        await write_json_atomic(self._path, ActiveModelRecord(model_id=model_id).model_dump_json())

    async def clear(self) -> None:
        """Forget the active model."""
        if self._path.exists():
            await aiofiles.os.remove(self._path)
