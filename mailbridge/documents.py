"""Local storage for rendered documents and the retention sweep.

All filesystem calls are wrapped with ``asyncio.to_thread()`` to avoid
blocking the event loop.
"""

from __future__ import annotations

import asyncio
import secrets
import time
from pathlib import Path

import structlog

logger = structlog.get_logger()


class DocumentStore:
    """Write rendered PDFs to a working directory and sweep old ones.

    Files are never deleted right after delivery; ``cleanup()`` removes
    anything older than the retention threshold regardless of whether
    the delivery succeeded.
    """

    def __init__(self, directory: str | Path) -> None:
        self._dir = Path(directory)

    @property
    def directory(self) -> Path:
        return self._dir

    async def save(self, data: bytes, *, prefix: str = "email", suffix: str = ".pdf") -> Path:
        """Persist *data* under a collision-free name.  Returns the path."""
        name = f"{prefix}_{int(time.time() * 1000)}_{secrets.token_hex(4)}{suffix}"
        path = self._dir / name
        await asyncio.to_thread(self._write_sync, path, data)
        logger.debug("document_saved", path=str(path), size=len(data))
        return path

    def _write_sync(self, path: Path, data: bytes) -> None:
        self._dir.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    async def delete(self, path: str | Path) -> bool:
        """Delete *path*.  A file that is already gone counts as deleted."""
        await asyncio.to_thread(Path(path).unlink, missing_ok=True)
        return True

    async def cleanup(self, max_age_hours: float = 24.0) -> int:
        """Delete files older than *max_age_hours*.  Returns the count."""
        deleted = await asyncio.to_thread(self._cleanup_sync, max_age_hours)
        logger.info(
            "documents_cleanup_complete",
            directory=str(self._dir),
            deleted=deleted,
            max_age_hours=max_age_hours,
        )
        return deleted

    def _cleanup_sync(self, max_age_hours: float) -> int:
        if not self._dir.is_dir():
            return 0

        cutoff = time.time() - max_age_hours * 3600
        deleted = 0
        for path in self._dir.iterdir():
            try:
                if not path.is_file() or path.stat().st_mtime > cutoff:
                    continue
                path.unlink(missing_ok=True)
                deleted += 1
            except FileNotFoundError:
                continue
            except OSError as exc:
                logger.warning("document_cleanup_failed", path=str(path), error=str(exc))
        return deleted
