"""JSON-backed settings files with read-or-create and atomic replace."""

from __future__ import annotations

import json
import os
import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import Any

import structlog

logger = structlog.get_logger()


class JsonFileStore:
    """One JSON document on disk.

    ``read()`` creates the file with the default value when it is missing.
    ``write()`` serializes to a temp file in the same directory and then
    ``os.replace``s it, so readers never observe a half-written file.
    Concurrent writers are last-write-wins.
    """

    def __init__(self, path: str | Path, default_factory: Callable[[], Any]) -> None:
        self._path = Path(path)
        self._default_factory = default_factory

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.is_file()

    def read(self) -> Any:
        if not self.exists():
            value = self._default_factory()
            self.write(value)
            return value
        try:
            with self._path.open("r", encoding="utf-8") as fh:
                return json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            logger.error("settings_read_failed", path=str(self._path), error=str(exc))
            return self._default_factory()

    def write(self, value: Any) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=self._path.parent,
            prefix=f".{self._path.name}.",
            suffix=".tmp",
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(value, fh, indent=2, ensure_ascii=False)
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug("settings_written", path=str(self._path))
