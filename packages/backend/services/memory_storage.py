"""Memory folder and block persistence.

All folders live in a single JSON array file. Every mutation rewrites the file
before returning. Mutations that reference an unknown folder or block change
nothing and return False instead of raising.
"""

import logging
from pathlib import Path

import aiofiles
import aiofiles.os
from pydantic import TypeAdapter, ValidationError

from persistence.defaults import folder_from_template
from persistence.files import write_json_atomic
from persistence.models import MemoryBlock, MemoryFolder, utcnow

logger = logging.getLogger(__name__)

KNOWLEDGE_BASE_HEADER = "\n\n[User's Personal Knowledge Base]:\n"

_folders_adapter = TypeAdapter(list[MemoryFolder])


class MemoryStore:
    """Owns the memory folder collection."""

    def __init__(self, storage_file: Path):
        self._path = Path(storage_file)
        self._folders: list[MemoryFolder] = []

    @property
    def folders(self) -> list[MemoryFolder]:
        """Copies of all folders, in creation order."""
        return [f.model_copy(deep=True) for f in self._folders]

    def get_folder(self, folder_id: str) -> MemoryFolder | None:
        folder = self._find_folder(folder_id)
        return folder.model_copy(deep=True) if folder else None

    def _find_folder(self, folder_id: str) -> MemoryFolder | None:
        return next((f for f in self._folders if f.id == folder_id), None)

    async def load(self) -> None:
        """Read folders from disk. A missing or unreadable file leaves the store empty."""
        if not self._path.exists():
            logger.info("No existing memories file at %s", self._path)
            return
        try:
            async with aiofiles.open(self._path, "r", encoding="utf-8") as f:
                data = await f.read()
            self._folders = _folders_adapter.validate_json(data)
            logger.info("Loaded %d memory folders", len(self._folders))
        except (OSError, ValidationError, ValueError):
            logger.warning("Failed to read memories file %s", self._path, exc_info=True)

    async def _save(self) -> None:
        await aiofiles.os.makedirs(self._path.parent, exist_ok=True)
        payload = _folders_adapter.dump_json(self._folders, indent=2).decode("utf-8")
        await write_json_atomic(self._path, payload)
        logger.debug("Saved %d memory folders", len(self._folders))

    # -- Folders --------------------------------------------------------------

    async def create_folder(self, folder: MemoryFolder) -> MemoryFolder:
        stored = folder.model_copy(deep=True)
        self._folders.append(stored)
        await self._save()
        return stored.model_copy(deep=True)

    async def create_folder_from_template(self, template: str) -> MemoryFolder:
        """Create an empty folder from a preset template key."""
        return await self.create_folder(folder_from_template(template))

    async def update_folder(self, folder: MemoryFolder) -> bool:
        for i, existing in enumerate(self._folders):
            if existing.id == folder.id:
                self._folders[i] = folder.model_copy(deep=True)
                await self._save()
                return True
        return False

    async def delete_folder(self, folder_id: str) -> bool:
        remaining = [f for f in self._folders if f.id != folder_id]
        if len(remaining) == len(self._folders):
            return False
        self._folders = remaining
        await self._save()
        return True

    async def toggle_folder(self, folder_id: str) -> bool:
        """Flip a folder's enabled flag."""
        folder = self._find_folder(folder_id)
        if folder is None:
            return False
        folder.enabled = not folder.enabled
        await self._save()
        return True

    async def toggle_folder_enabled(self, folder_id: str, enabled: bool) -> bool:
        """Set a folder's enabled flag explicitly."""
        folder = self._find_folder(folder_id)
        if folder is None:
            return False
        folder.enabled = enabled
        await self._save()
        return True

    # -- Blocks ---------------------------------------------------------------

    async def add_block(self, folder_id: str, block: MemoryBlock) -> bool:
        folder = self._find_folder(folder_id)
        if folder is None:
            return False
        folder.blocks.append(block.model_copy(deep=True))
        await self._save()
        return True

    async def update_block(self, folder_id: str, block: MemoryBlock) -> bool:
        folder = self._find_folder(folder_id)
        if folder is None:
            return False
        for i, existing in enumerate(folder.blocks):
            if existing.id == block.id:
                folder.blocks[i] = block.model_copy(update={"updated_at": utcnow()}, deep=True)
                await self._save()
                return True
        return False

    async def delete_block(self, folder_id: str, block_id: str) -> bool:
        folder = self._find_folder(folder_id)
        if folder is None or folder.find_block(block_id) is None:
            return False
        folder.blocks = [b for b in folder.blocks if b.id != block_id]
        await self._save()
        return True

    async def toggle_block(self, folder_id: str, block_id: str) -> bool:
        """Flip a block's enabled flag."""
        folder = self._find_folder(folder_id)
        block = folder.find_block(block_id) if folder else None
        if block is None:
            return False
        block.enabled = not block.enabled
        await self._save()
        return True

    async def toggle_block_enabled(self, folder_id: str, block_id: str, enabled: bool) -> bool:
        """Set a block's enabled flag explicitly."""
        folder = self._find_folder(folder_id)
        block = folder.find_block(block_id) if folder else None
        if block is None:
            return False
        block.enabled = enabled
        await self._save()
        return True

    # -- Prompt context -------------------------------------------------------

    def formatted_context(self) -> str:
        """Enabled memories formatted for the system prompt, or "" if none qualify."""
        qualifying = [f for f in self._folders if f.enabled and f.enabled_blocks]
        if not qualifying:
            return ""
        parts = [KNOWLEDGE_BASE_HEADER]
        for folder in qualifying:
            parts.append(folder.format_for_prompt())
            parts.append("\n")
        return "".join(parts)

    @property
    def total_enabled_tokens(self) -> int:
        return sum(f.total_estimated_tokens for f in self._folders if f.enabled)

    @property
    def enabled_block_count(self) -> int:
        return sum(len(f.enabled_blocks) for f in self._folders if f.enabled)
