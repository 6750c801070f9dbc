"""JSON document storage on the local filesystem.

Each collection is one pretty-printed JSON file. A mutation reads the whole
document, changes it in memory and writes it back, so every read-modify-write
must run under the document's lock.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
from collections import Counter
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from mychat.errors import StorageError

logger = logging.getLogger(__name__)

_SAFE_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")


def is_safe_id(value: str) -> bool:
    """True if value can be used as a file name inside the data directory."""
    return bool(_SAFE_ID_RE.fullmatch(value))


class JsonDatabase:
    """Owns the data directory layout, document I/O and per-document locks."""

    def __init__(self, data_dir: str | Path) -> None:
        self._data_dir = Path(data_dir)
        self._locks: dict[Path, asyncio.Lock] = {}
        self._lock_users: Counter[Path] = Counter()

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    @property
    def sessions_file(self) -> Path:
        return self._data_dir / "sessions.json"

    @property
    def settings_file(self) -> Path:
        return self._data_dir / "settings.json"

    @property
    def messages_dir(self) -> Path:
        return self._data_dir / "messages"

    def messages_file(self, session_id: str) -> Path:
        if not is_safe_id(session_id):
            raise StorageError(f"Invalid session id: {session_id!r}")
        return self.messages_dir / f"{session_id}.json"

    def ensure_directories(self) -> None:
        try:
            self.messages_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to create data directory {self._data_dir}: {e}") from e

    @asynccontextmanager
    async def lock(self, path: Path) -> AsyncIterator[None]:
        """Hold the lock guarding one document.

        A lock lives only while some caller holds or waits for it.
        """
        lock = self._locks.setdefault(path, asyncio.Lock())
        self._lock_users[path] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[path] -= 1
            if not self._lock_users[path]:
                del self._lock_users[path]
                del self._locks[path]

    @property
    def active_locks(self) -> int:
        return len(self._locks)

    def read(self, path: Path, default: Any) -> Any:
        """Load a document, returning default if it does not exist yet."""
        try:
            with open(path, "r", encoding="utf-8") as fh:
                return json.load(fh)
        except FileNotFoundError:
            return default
        except json.JSONDecodeError as e:
            raise StorageError(f"Corrupt storage document {path}: {e}") from e
        except OSError as e:
            raise StorageError(f"Failed to read {path}: {e}") from e

    def write(self, path: Path, data: Any) -> None:
        """Replace a document. The old content stays intact if the write fails."""
        tmp_path = path.with_name(path.name + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2, ensure_ascii=False)
            os.replace(tmp_path, path)
        except OSError as e:
            logger.error("Failed to write file %s: %s", path, e)
            raise StorageError(f"Failed to write {path}: {e}") from e

    def remove(self, path: Path) -> bool:
        """Delete a document. Returns False if it did not exist."""
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(f"Failed to delete {path}: {e}") from e
        return True

    async def is_healthy(self) -> bool:
        """Check the data directory is writable and the core documents load."""
        try:
            self.ensure_directories()
            if not os.access(self._data_dir, os.W_OK):
                logger.error("Storage health check failed: %s is not writable", self._data_dir)
                return False
            self.read(self.sessions_file, [])
            self.read(self.settings_file, {})
        except StorageError as e:
            logger.error("Storage health check failed: %s", e)
            return False
        return True
