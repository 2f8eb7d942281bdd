"""Durable key-value backends used by the contacts gateway.

The gateway and the migration runner only talk to the
:class:`KeyValueBackend` protocol (string keys, string values, async).

- :class:`JsonFileBackend`: one file per key under a directory, written
  atomically (temp file + ``replace``). Blocking I/O is pushed to a worker
  thread so the event loop keeps serving store reads.
- :class:`MemoryBackend`: dict-backed, for tests and ephemeral sessions.
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol
from urllib.parse import quote, unquote

logger = logging.getLogger(__name__)

__all__ = ["KeyValueBackend", "JsonFileBackend", "MemoryBackend"]

_SUFFIX = ".json"


class KeyValueBackend(Protocol):
    """Async string key-value storage."""

    async def get_item(self, key: str) -> Optional[str]:
        ...

    async def set_item(self, key: str, value: str) -> None:
        ...

    async def remove_item(self, key: str) -> None:
        ...

    async def get_all_keys(self) -> List[str]:
        ...

    async def multi_remove(self, keys: Iterable[str]) -> None:
        ...


class MemoryBackend:
    """In-process backend; nothing survives the process."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})

    async def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set_item(self, key: str, value: str) -> None:
        self._data[key] = value

    async def remove_item(self, key: str) -> None:
        self._data.pop(key, None)

    async def get_all_keys(self) -> List[str]:
        return list(self._data.keys())

    async def multi_remove(self, keys: Iterable[str]) -> None:
        for key in list(keys):
            self._data.pop(key, None)


class JsonFileBackend:
    """File-per-key backend rooted at *directory*.

    Keys are percent-encoded into file names, so ``@firstaid:emergency_contacts:u1``
    lands in ``%40firstaid%3Aemergency_contacts%3Au1.json``.

    Every write or removal takes a per-key generation on the event loop
    before its worker thread starts. A thread that reaches the file after a
    newer generation has landed drops its value, so a write abandoned by a
    caller timeout can never replace newer data.
    """

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)
        self._issued: Dict[str, int] = {}
        self._landed: Dict[str, int] = {}
        self._file_lock = threading.Lock()

    def _path_for(self, key: str) -> Path:
        return self.directory / (quote(key, safe="") + _SUFFIX)

    def _next_generation(self, key: str) -> int:
        generation = self._issued.get(key, 0) + 1
        self._issued[key] = generation
        return generation

    def _is_stale(self, key: str, generation: int) -> bool:
        """Caller must hold ``_file_lock``."""
        if generation < self._landed.get(key, 0):
            logger.debug("[storage] Dropping stale write for %s (generation %d)", key, generation)
            return True
        self._landed[key] = generation
        return False

    # ------------------------------------------------------------------
    # Blocking helpers (run in a worker thread)
    # ------------------------------------------------------------------

    def _read(self, key: str) -> Optional[str]:
        path = self._path_for(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def _write(self, key: str, value: str, generation: int) -> None:
        path = self._path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_fd, tmp_name = tempfile.mkstemp(prefix="kv_", suffix=".tmp", dir=str(path.parent))
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as f:
                f.write(value)
            with self._file_lock:
                if not self._is_stale(key, generation):
                    Path(tmp_name).replace(path)
        finally:
            Path(tmp_name).unlink(missing_ok=True)

    def _remove(self, key: str, generation: int) -> None:
        with self._file_lock:
            if not self._is_stale(key, generation):
                self._path_for(key).unlink(missing_ok=True)

    def _keys(self) -> List[str]:
        if not self.directory.exists():
            return []
        return sorted(
            unquote(p.name[: -len(_SUFFIX)])
            for p in self.directory.iterdir()
            if p.is_file() and p.name.endswith(_SUFFIX)
        )

    # ------------------------------------------------------------------
    # KeyValueBackend
    # ------------------------------------------------------------------

    async def get_item(self, key: str) -> Optional[str]:
        return await asyncio.to_thread(self._read, key)

    async def set_item(self, key: str, value: str) -> None:
        await asyncio.to_thread(self._write, key, value, self._next_generation(key))

    async def remove_item(self, key: str) -> None:
        await asyncio.to_thread(self._remove, key, self._next_generation(key))

    async def get_all_keys(self) -> List[str]:
        return await asyncio.to_thread(self._keys)

    async def multi_remove(self, keys: Iterable[str]) -> None:
        for key in list(keys):
            await asyncio.to_thread(self._remove, key, self._next_generation(key))
        logger.debug("[storage] Removed keys under %s", self.directory)
