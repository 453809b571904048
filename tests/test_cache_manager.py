"""Tests for the two-tier cache manager and key generation."""

import pytest

from yrweather.cache import TTLCache
from yrweather.cache_manager import (
    CacheClearingUtility,
    CacheKeyGenerator,
    CacheManager,
    get_cache_manager,
    reset_cache_manager,
)
from yrweather.config import CacheThresholds
from yrweather.kvstore import MemoryStore

THRESHOLDS = CacheThresholds(
    WEATHER=1_000,
    SUNRISE=2_000,
    LOCATION_SEARCH=3_000,
    GRAPH=4_000,
    GRAPH_VERSION="test",
)


@pytest.fixture
def manager(ttl_cache: TTLCache) -> CacheManager:
    return CacheManager(ttl_cache, thresholds=THRESHOLDS)


class TestKeys:
    """Keys are reproducible from their inputs"""

    def test_graph_key_with_date_ignores_hash(self):
        key = CacheKeyGenerator.graph("osm:1", "detailed", "2024-06-01", "abc", "dark")
        assert key == "graph:osm:1:detailed:dark:2024-06-01"

    def test_graph_key_with_hash(self):
        assert CacheKeyGenerator.graph("osm:1", "summary", data_hash="abc") == "graph:osm:1:summary:light:abc"

    def test_graph_key_bare(self):
        assert CacheKeyGenerator.graph("osm:1", "summary") == "graph:osm:1:summary:light"

    def test_coordinate_keys(self):
        assert CacheKeyGenerator.weather(59.9139, 10.7522) == "weather:59.914,10.752"
        assert CacheKeyGenerator.sunrise(59.9139, 10.7522, "2024-06-01") == "sunrise:59.914,10.752:2024-06-01"


class TestTwoTier:
    """Memory first, persistent second, write-through"""

    @pytest.mark.parametrize(
        "key,ttl",
        [
            ("graph:x", 4_000),
            ("weather:x", 1_000),
            ("sunrise:x", 2_000),
            ("location:x", 3_000),
            ("other:x", 1_000),
        ],
    )
    def test_default_ttl_by_prefix(self, manager, key, ttl):
        assert manager.default_ttl(key) == ttl

    @pytest.mark.asyncio
    async def test_set_writes_through(self, manager, ttl_cache):
        await manager.set("weather:k", {"v": 1})
        assert manager.memory_keys() == ["weather:k"]
        assert await ttl_cache.get("weather:k", 1_000) == {"v": 1}

    @pytest.mark.asyncio
    async def test_persistent_hit_populates_memory(self, manager, ttl_cache):
        await ttl_cache.set("weather:k", "v")
        assert await manager.get("weather:k") == "v"
        assert "weather:k" in manager.memory_keys()

    @pytest.mark.asyncio
    async def test_memory_hit_outlives_persistent_ttl(self, manager, clock):
        """Memory tier age is independent of the persistent TTL"""
        await manager.set("weather:k", "v")
        clock.advance(5_000)
        assert await manager.get("weather:k") == "v"

    @pytest.mark.asyncio
    async def test_expired_memory_falls_through(self, ttl_cache, clock):
        manager = CacheManager(ttl_cache, memory_ttl_ms=0, thresholds=THRESHOLDS)
        await manager.set("weather:k", "v")
        clock.advance(1_001)
        assert await manager.get("weather:k") is None
        assert manager.memory_keys() == []

    @pytest.mark.asyncio
    async def test_explicit_ttl_overrides_default(self, manager, ttl_cache, clock):
        await ttl_cache.set("weather:k", "v")
        clock.advance(1_500)
        assert await manager.get("weather:k") is None
        assert await manager.get("weather:k", ttl_ms=2_000) == "v"

    @pytest.mark.asyncio
    async def test_clear_only_touches_memory(self, manager, store):
        await manager.set("weather:k", "v")
        await manager.clear("weather:k")
        assert manager.memory_keys() == []
        assert "cache:weather:k" in await store.all_items()

    @pytest.mark.asyncio
    async def test_stats(self, manager):
        await manager.set("weather:k", [1, 2, 3])
        assert manager.get_stats() == {"memory_entries": 1, "memory_size": len("[1, 2, 3]")}


class TestClearingUtility:
    """User-facing clears remove persisted records"""

    @pytest.mark.asyncio
    async def test_clear_graph_caches(self, manager, store):
        await manager.set("graph:osm:1:detailed:light", "g")
        await manager.set("weather:k", "w")
        removed = await CacheClearingUtility(manager).clear_graph_caches()
        assert removed == 1
        assert manager.memory_keys() == ["weather:k"]
        assert set(await store.all_items()) == {"cache:weather:k"}

    @pytest.mark.asyncio
    async def test_clear_all_caches(self, manager, store):
        await store.set_item("favorite-locations", "[]")
        await manager.set("graph:a", "g")
        await manager.set("weather:b", "w")
        assert await CacheClearingUtility(manager).clear_all_caches() == 2
        assert manager.memory_keys() == []
        assert set(await store.all_items()) == {"favorite-locations"}

    @pytest.mark.asyncio
    async def test_sun_times_change_clears_graphs(self, manager, store):
        await manager.set("graph:a", "g")
        await manager.set("sunrise:b", "s")
        assert await CacheClearingUtility(manager).clear_caches_for_sun_times_change() == 1
        assert set(await store.all_items()) == {"cache:sunrise:b"}


class TestProcessScope:
    def test_default_manager_is_reused_until_reset(self):
        reset_cache_manager()
        try:
            first = get_cache_manager(MemoryStore())
            assert get_cache_manager(MemoryStore()) is first
            reset_cache_manager()
            assert get_cache_manager(MemoryStore()) is not first
        finally:
            reset_cache_manager()
