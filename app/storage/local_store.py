"""
Local Key-Value Store with Volatile Mirror

Durable string storage for the local fallback mode:
- One JSON file per key under the data directory
- File locking so several processes never interleave writes
- In-memory mirror that keeps the current process working when the
  disk is not accessible (read-only volume, permission denied,
  lock timeout)

Every value is written to the mirror first; disk failures are logged
and otherwise ignored.

Version: 1.0.0
"""

import logging
import os
from pathlib import Path
from typing import Optional

from filelock import FileLock, Timeout

logger = logging.getLogger(__name__)


class LocalKeyValueStore:
    """Process-wide string store backed by files and a memory mirror."""

    def __init__(self, directory: Path, prefix: str = "", lock_timeout: float = 5.0):
        self.directory = Path(directory)
        self.prefix = prefix
        self.lock_timeout = lock_timeout
        self._memory: dict[str, str] = {}
        # Keys whose last write or delete never reached the disk
        self._memory_only: set[str] = set()

    def _path(self, key: str) -> Path:
        name = f"{self.prefix}_{key}" if self.prefix else key
        return self.directory / f"{name}.json"

    def _lock(self, key: str) -> FileLock:
        return FileLock(str(self._path(key)) + ".lock", timeout=self.lock_timeout)

    def _ensure_directory(self) -> None:
        if not self.directory.exists():
            self.directory.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created local store directory: {self.directory}")

    def get_item(self, key: str) -> Optional[str]:
        """
        Read a value.

        A key whose last change only reached memory is served from the
        mirror until a later disk write succeeds. Otherwise the file wins,
        so writes from other processes are picked up, and a missing file
        falls back to the mirror.
        """
        if key in self._memory_only:
            return self._memory.get(key)
        try:
            path = self._path(key)
            if not path.exists():
                return self._memory.get(key)
            with self._lock(key):
                return path.read_text(encoding="utf-8")
        except (OSError, Timeout) as e:
            logger.debug(f"Local store read of '{key}' fell back to memory: {e}")
            return self._memory.get(key)

    def set_item(self, key: str, value: str) -> None:
        """Write a value to memory, then to disk if possible."""
        self._memory[key] = value
        try:
            self._ensure_directory()
            path = self._path(key)
            tmp_path = path.with_suffix(".json.tmp")
            with self._lock(key):
                tmp_path.write_text(value, encoding="utf-8")
                os.replace(tmp_path, path)
        except (OSError, Timeout) as e:
            if key not in self._memory_only:
                logger.warning(f"Local store write of '{key}' kept in memory only: {e}")
            self._memory_only.add(key)
            return
        if key in self._memory_only:
            logger.info(f"Local store write of '{key}' reached the disk again")
            self._memory_only.discard(key)

    def remove_item(self, key: str) -> None:
        """Delete a value everywhere. Missing keys are ignored."""
        self._memory.pop(key, None)
        try:
            path = self._path(key)
            if path.exists():
                with self._lock(key):
                    path.unlink(missing_ok=True)
        except (OSError, Timeout) as e:
            logger.warning(f"Local store delete of '{key}' failed on disk: {e}")
            self._memory_only.add(key)
            return
        self._memory_only.discard(key)

    def is_persistent(self) -> bool:
        """
        Check whether values actually reach the disk.

        Writes, reads back and removes a probe file directly, bypassing
        the mirror.
        """
        probe = self._path("__probe__")
        try:
            self._ensure_directory()
            probe.write_text("ok", encoding="utf-8")
            value = probe.read_text(encoding="utf-8")
            probe.unlink()
            return value == "ok"
        except OSError as e:
            logger.warning(f"Local store is not writable: {e}")
            return False
