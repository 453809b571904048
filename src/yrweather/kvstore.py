"""Persistent key/value store with flat string values, no TTL, no transactions.

Every other layer talks to storage only through the four async operations of
``KeyValueStore``. Values are JSON-encoded strings written by the callers.
"""

import asyncio
import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Protocol

from yrweather.logging_config import get_logger

logger = get_logger("yrweather.kvstore")


class KeyValueStore(Protocol):
    """Async get/set/remove/list-all primitive."""

    async def get_item(self, key: str) -> str | None: ...

    async def set_item(self, key: str, value: str) -> None: ...

    async def remove_item(self, key: str) -> None: ...

    async def all_items(self) -> dict[str, str]: ...


class MemoryStore:
    """Process-local store. Used by tests and throwaway sessions."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._items: dict[str, str] = dict(initial or {})

    async def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    async def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    async def all_items(self) -> dict[str, str]:
        return dict(self._items)


class StoreCorruptError(OSError):
    """Store file exists but does not hold a JSON object."""


class JsonFileStore:
    """Single JSON object file on disk.

    Blocking file I/O runs in a worker thread so the event loop is never held.
    Writes go to a sibling temp file and are moved into place with
    ``os.replace`` so a crash mid-write leaves the previous file intact.
    A missing or unreadable file reads as an empty store, but writes refuse
    to rebuild an unreadable file: a write raises ``OSError`` and the file is
    left as it was.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        # Serializes read-modify-write cycles across worker threads
        self._write_lock = threading.Lock()

    def _read(self) -> dict[str, Any]:
        """Parsed file contents. Only a missing file counts as empty."""
        try:
            with self.path.open(encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except ValueError as e:
            raise StoreCorruptError(f"Store file {self.path} is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise StoreCorruptError(f"Store file {self.path} is not a JSON object")
        return data

    def _load(self) -> dict[str, str]:
        try:
            data = self._read()
        except OSError as e:
            logger.warning(f"Store file {self.path} unreadable, treating as empty: {e}")
            return {}
        return {k: v for k, v in data.items() if isinstance(v, str)}

    def _dump(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".store-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False)
            os.replace(tmp, self.path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def _set(self, key: str, value: str) -> None:
        with self._write_lock:
            data = self._read()
            data[key] = value
            self._dump(data)

    def _remove(self, key: str) -> None:
        with self._write_lock:
            data = self._read()
            if key in data:
                del data[key]
                self._dump(data)

    async def get_item(self, key: str) -> str | None:
        data = await asyncio.to_thread(self._load)
        return data.get(key)

    async def set_item(self, key: str, value: str) -> None:
        await asyncio.to_thread(self._set, key, value)

    async def remove_item(self, key: str) -> None:
        await asyncio.to_thread(self._remove, key)

    async def all_items(self) -> dict[str, str]:
        return await asyncio.to_thread(self._load)
