"""Generic TTL cache over the key/value store.

Entries are stored as ``{"savedAtMs": <epoch ms>, "value": <json>}`` under the
``cache:`` prefix. Expiry is checked lazily on read and expired records are left
in place; explicit clears are the only deletion path. The cache is fail-open:
any storage or parse problem on read is a miss, never an exception.
"""

import json
import time
from typing import Any

from yrweather.kvstore import KeyValueStore
from yrweather.logging_config import get_logger
from yrweather.models import CacheEntry

logger = get_logger("yrweather.cache")

KEY_PREFIX = "cache:"


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def parse_entry(raw: str | None) -> CacheEntry[Any] | None:
    """Validate a stored record. Anything that is not a well-formed entry is None."""
    if not raw:
        return None
    try:
        parsed = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(parsed, dict):
        return None
    saved_at = parsed.get("savedAtMs")
    # bool is an int subclass; reject it explicitly
    if isinstance(saved_at, bool) or not isinstance(saved_at, (int, float)):
        return None
    if "value" not in parsed:
        return None
    return CacheEntry(saved_at_ms=int(saved_at), value=parsed["value"])


class TTLCache:
    """Age-stamped, best-effort cache. Correctness never depends on it being warm."""

    def __init__(self, store: KeyValueStore, prefix: str = KEY_PREFIX) -> None:
        self.store = store
        self.prefix = prefix

    def storage_key(self, key: str) -> str:
        return self.prefix + key

    async def get(self, key: str, ttl_ms: int) -> Any | None:
        """Return the cached value, or None when absent, malformed, or older than ``ttl_ms``."""
        try:
            raw = await self.store.get_item(self.storage_key(key))
        except Exception as e:
            logger.warning(f"Cache read failed for {key}: {e}")
            return None
        entry = parse_entry(raw)
        if entry is None:
            return None
        if now_ms() - entry.saved_at_ms > ttl_ms:
            return None
        return entry.value

    async def set(self, key: str, value: Any) -> None:
        """Stamp the current time and overwrite unconditionally (last write wins)."""
        record = {"savedAtMs": now_ms(), "value": value}
        try:
            await self.store.set_item(self.storage_key(key), json.dumps(record))
        except Exception as e:
            # A failed write only costs a future miss
            logger.warning(f"Cache write failed for {key}: {e}")

    async def remove(self, key: str) -> None:
        await self.store.remove_item(self.storage_key(key))

    async def entries(self, prefix: str = "") -> dict[str, str]:
        """Raw stored strings for every key under ``cache:<prefix>``, keyed by storage key."""
        storage_prefix = self.prefix + prefix
        all_items = await self.store.all_items()
        return {k: v for k, v in all_items.items() if k.startswith(storage_prefix)}

    async def clear_by_prefix(self, prefix: str) -> int:
        """Remove every entry whose internal key starts with ``prefix``.

        A storage failure stops the sweep; it is logged, not raised.

        Returns:
            Number of entries removed before any failure.
        """
        removed = 0
        try:
            for storage_key in list(await self.entries(prefix)):
                await self.store.remove_item(storage_key)
                removed += 1
        except Exception as e:
            logger.warning(f"Cache clear of {prefix!r} stopped after {removed} entries: {e}")
        return removed

    async def clear_all(self) -> int:
        """Remove every entry under the cache prefix. Other store keys are untouched."""
        return await self.clear_by_prefix("")
