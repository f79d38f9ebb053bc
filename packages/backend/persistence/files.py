"""File helpers for JSON document persistence."""

from pathlib import Path

import aiofiles
import aiofiles.os


async def write_json_atomic(path: Path, payload: str) -> None:
    """Write text to a sibling temp file, then replace the target.

    A reader never observes a half-written document; the previous version
    stays in place until the replace succeeds.
    """
    tmp_path = path.with_name(path.name + ".tmp")
    async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
        await f.write(payload)
    await aiofiles.os.replace(tmp_path, path)
