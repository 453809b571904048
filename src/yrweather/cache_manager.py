"""Two-tier cache: an in-process memory map in front of the persistent TTL cache.

Store round-trips dominate latency when the same artifacts are looked up
repeatedly within one session, while persistence is what survives restarts.
The memory tier has its own fixed TTL, independent of the persistent TTL.
"""

import json
import time
from dataclasses import dataclass
from typing import Any

from yrweather.cache import TTLCache
from yrweather.config import CACHE_THRESHOLDS, MEMORY_CACHE_TTL_MS, CacheThresholds
from yrweather.kvstore import KeyValueStore
from yrweather.location_key import coord_part
from yrweather.logging_config import get_logger
from yrweather.models import LocationKey

logger = get_logger("yrweather.cache_manager")


class CacheKeyGenerator:
    """Deterministic cache keys. Every key is reproducible from its inputs alone."""

    @staticmethod
    def graph(
        location_key: LocationKey,
        mode: str,
        target_date: str | None = None,
        data_hash: str | None = None,
        palette: str = "light",
    ) -> str:
        """``graph:<locationKey>:<mode>:<palette>`` plus ``:<targetDate>`` or else ``:<dataHash>``."""
        base_key = f"graph:{location_key}:{mode}:{palette}"
        if target_date:
            return f"{base_key}:{target_date}"
        if data_hash:
            return f"{base_key}:{data_hash}"
        return base_key

    @staticmethod
    def api(prefix: str, suffix: str) -> str:
        return f"{prefix}:{suffix}"

    @staticmethod
    def coords(lat: float, lon: float) -> str:
        return f"{coord_part(lat)},{coord_part(lon)}"

    @staticmethod
    def weather(lat: float, lon: float) -> str:
        return f"weather:{CacheKeyGenerator.coords(lat, lon)}"

    @staticmethod
    def sunrise(lat: float, lon: float, date: str) -> str:
        return f"sunrise:{CacheKeyGenerator.coords(lat, lon)}:{date}"


@dataclass
class _MemoryEntry:
    value: Any
    stored_at: float  # time.monotonic() seconds


class CacheManager:
    """Memory-first lookups with write-through to the persistent cache."""

    def __init__(
        self,
        ttl_cache: TTLCache,
        memory_ttl_ms: int = MEMORY_CACHE_TTL_MS,
        thresholds: CacheThresholds = CACHE_THRESHOLDS,
    ) -> None:
        self.ttl_cache = ttl_cache
        self.memory_ttl_ms = memory_ttl_ms
        self.thresholds = thresholds
        self._memory: dict[str, _MemoryEntry] = {}

    def _memory_age_ms(self, entry: _MemoryEntry) -> float:
        return (time.monotonic() - entry.stored_at) * 1000

    def default_ttl(self, key: str) -> int:
        """Persistent TTL chosen by key namespace. Unknown namespaces use the weather TTL."""
        if key.startswith("graph:"):
            return self.thresholds.GRAPH
        if key.startswith("weather:"):
            return self.thresholds.WEATHER
        if key.startswith("sunrise:"):
            return self.thresholds.SUNRISE
        if key.startswith("location:"):
            return self.thresholds.LOCATION_SEARCH
        return self.thresholds.WEATHER

    async def get(self, key: str, ttl_ms: int | None = None) -> Any | None:
        """Memory tier first, then the persistent tier. A persistent hit warms memory.

        Args:
            key: Internal cache key (without the ``cache:`` storage prefix).
            ttl_ms: Persistent TTL override; defaults to ``default_ttl(key)``.

        Returns:
            The cached value, or None on a miss in both tiers.
        """
        entry = self._memory.get(key)
        if entry is not None:
            if self._memory_age_ms(entry) < self.memory_ttl_ms:
                logger.debug(f"Cache hit (memory): {key}")
                return entry.value
            del self._memory[key]

        value = await self.ttl_cache.get(key, ttl_ms or self.default_ttl(key))
        if value is not None:
            logger.debug(f"Cache hit (persistent): {key}")
            self._memory[key] = _MemoryEntry(value=value, stored_at=time.monotonic())
            return value

        logger.debug(f"Cache miss: {key}")
        return None

    async def set(self, key: str, value: Any) -> None:
        """Write-through to both tiers."""
        self._memory[key] = _MemoryEntry(value=value, stored_at=time.monotonic())
        await self.ttl_cache.set(key, value)
        logger.debug(f"Cache set: {key}")

    async def clear(self, key: str) -> None:
        """Forget ``key`` in memory only; the persistent record ages out via its TTL."""
        self._memory.pop(key, None)
        logger.debug(f"Cache cleared (memory): {key}")

    def clear_memory_cache(self) -> None:
        self._memory.clear()
        logger.debug("Memory cache cleared")

    def memory_keys(self) -> list[str]:
        return list(self._memory)

    def get_stats(self) -> dict[str, int]:
        """Memory tier entry count and aggregate serialized size."""
        memory_size = sum(len(json.dumps(e.value, default=str)) for e in self._memory.values())
        return {"memory_entries": len(self._memory), "memory_size": memory_size}


class CacheClearingUtility:
    """User-facing clears. Each one removes persisted records, not just memory."""

    def __init__(self, manager: CacheManager) -> None:
        self.manager = manager

    async def clear_all_caches(self) -> int:
        """Clear memory and every ``cache:`` record. Returns the persisted count removed."""
        self.manager.clear_memory_cache()
        removed = await self.manager.ttl_cache.clear_all()
        logger.info(f"All caches cleared ({removed} persisted entries removed)")
        return removed

    async def clear_graph_caches(self) -> int:
        for key in self.manager.memory_keys():
            if key.startswith("graph:"):
                await self.manager.clear(key)
        removed = await self.manager.ttl_cache.clear_by_prefix("graph:")
        logger.info(f"Graph caches cleared ({removed} persisted entries removed)")
        return removed

    async def clear_caches_for_sun_times_change(self) -> int:
        """Sun times feed every detailed graph, so all graphs go."""
        self.manager.clear_memory_cache()
        removed = await self.manager.ttl_cache.clear_by_prefix("graph:")
        logger.debug(f"Cleared {removed} graph cache entries after a sunrise/sunset change")
        return removed


_default_manager: CacheManager | None = None


def get_cache_manager(store: KeyValueStore) -> CacheManager:
    """Process-scoped manager, created on first use and kept until process exit."""
    global _default_manager
    if _default_manager is None:
        _default_manager = CacheManager(TTLCache(store))
    return _default_manager


def reset_cache_manager() -> None:
    """Drop the process-scoped manager (tests, or when the backing store changes)."""
    global _default_manager
    _default_manager = None
