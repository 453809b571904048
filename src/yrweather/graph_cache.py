"""Rendered forecast graphs keyed by location, mode, palette and date/content hash.

A stored graph is served only while its TTL holds, its schema version matches
the current ``GRAPH_VERSION`` and its data hash matches a hash recomputed from
the current render inputs. Any mismatch is a miss, never an error.

The data hash summarizes the inputs (series length, first/last timestamps,
name, hour count, sun times) rather than hashing every series value, so a
mid-series change that leaves those fields alone is not detected.
"""

import hashlib
import json
from collections.abc import Callable, Mapping
from typing import Any

from yrweather.cache import TTLCache, now_ms, parse_entry
from yrweather.cache_manager import CacheKeyGenerator
from yrweather.config import CACHE_THRESHOLDS, GRAPH_CLEANUP_MAX_AGE_MS, CacheThresholds
from yrweather.logging_config import get_logger
from yrweather.models import GraphCacheEntry, GraphCacheStats, LocationKey, SunTimes, TimeseriesEntry
from yrweather.renderers.graph_svg import render_graph_markdown

logger = get_logger("yrweather.graph_cache")

GRAPH_PREFIX = "graph:"
PALETTES = ("light", "dark")

# (name, series, hours, title, smooth, sun_by_date, palette) -> markdown
GraphRenderer = Callable[..., str]


def _sun_payload(sun_by_date: Mapping[str, SunTimes | dict] | None) -> dict[str, Any] | None:
    if sun_by_date is None:
        return None
    return {d: s.to_dict() if isinstance(s, SunTimes) else s for d, s in sun_by_date.items()}


def graph_title(mode: str, target_date: str | None) -> str:
    if target_date:
        return "1-day forecast"
    return "48h forecast" if mode == "detailed" else "9-day summary"


def split_graph_key(internal_key: str) -> tuple[str, str, str, str | None] | None:
    """``graph:<loc>:<mode>:<palette>[:<tail>]`` -> (loc, mode, palette, tail).

    The location key may itself contain colons, so the key is read from the
    right: the palette is the last or second-to-last segment. Returns None for
    keys that do not have that shape.
    """
    if not internal_key.startswith(GRAPH_PREFIX):
        return None
    parts = internal_key[len(GRAPH_PREFIX) :].split(":")
    if len(parts) >= 3 and parts[-1] in PALETTES:
        return ":".join(parts[:-2]), parts[-2], parts[-1], None
    if len(parts) >= 4 and parts[-2] in PALETTES:
        return ":".join(parts[:-3]), parts[-3], parts[-2], parts[-1]
    return None


class GraphCache:
    """Versioned, content-validated cache of rendered graph markdown.

    Args:
        ttl_cache: Persistent TTL cache the entries live in (under ``graph:``).
        renderer: Pure ``render_graph_markdown``-compatible function.
        thresholds: Supplies the graph TTL and the current schema version.
    """

    def __init__(
        self,
        ttl_cache: TTLCache,
        renderer: GraphRenderer = render_graph_markdown,
        thresholds: CacheThresholds = CACHE_THRESHOLDS,
    ) -> None:
        self.ttl_cache = ttl_cache
        self.renderer = renderer
        self.thresholds = thresholds

    @staticmethod
    def generate_key(
        location_key: LocationKey,
        mode: str,
        target_date: str | None = None,
        data_hash: str | None = None,
        palette: str = "light",
    ) -> str:
        return CacheKeyGenerator.graph(location_key, mode, target_date, data_hash, palette)

    @staticmethod
    def compute_data_hash(
        series: list[TimeseriesEntry],
        name: str,
        hours: int,
        sun_by_date: Mapping[str, SunTimes | dict] | None = None,
    ) -> str:
        """40-char hex digest of a canonical summary of the render inputs."""
        sun = _sun_payload(sun_by_date)
        summary = {
            "seriesLength": len(series),
            "name": name,
            "hours": hours,
            "firstTime": series[0].get("time") if series else None,
            "lastTime": series[-1].get("time") if series else None,
            "sunByDate": json.dumps(sun, sort_keys=True) if sun is not None else "empty",
        }
        canonical = json.dumps(summary, sort_keys=True, separators=(",", ":"))
        return hashlib.blake2b(canonical.encode("utf-8"), digest_size=20).hexdigest()

    async def get_cached_graph(
        self,
        location_key: LocationKey,
        mode: str,
        series: list[TimeseriesEntry],
        name: str,
        hours: int,
        sun_by_date: Mapping[str, SunTimes | dict] | None = None,
        target_date: str | None = None,
        palette: str = "light",
    ) -> str | None:
        """Cached markdown for these inputs, or None on miss/expiry/version or hash mismatch."""
        try:
            data_hash = self.compute_data_hash(series, name, hours, sun_by_date)
        except (TypeError, ValueError) as e:
            logger.warning(f"Failed to get cached graph: {e}")
            return None
        key = self.generate_key(location_key, mode, target_date, data_hash, palette)

        cached = await self.ttl_cache.get(key, self.thresholds.GRAPH)
        if not isinstance(cached, dict):
            return None
        if cached.get("version") != self.thresholds.GRAPH_VERSION:
            logger.debug(f"Graph cache version mismatch: {key}")
            return None
        if cached.get("dataHash") != data_hash:
            logger.debug(f"Graph cache data hash mismatch: {key}")
            return None
        markdown = cached.get("markdown")
        return markdown if isinstance(markdown, str) else None

    async def set_cached_graph(
        self,
        location_key: LocationKey,
        mode: str,
        series: list[TimeseriesEntry],
        name: str,
        hours: int,
        markdown: str,
        sun_by_date: Mapping[str, SunTimes | dict] | None = None,
        target_date: str | None = None,
        palette: str = "light",
    ) -> None:
        try:
            data_hash = self.compute_data_hash(series, name, hours, sun_by_date)
        except (TypeError, ValueError) as e:
            logger.warning(f"Failed to cache graph: {e}")
            return
        entry = GraphCacheEntry(
            markdown=markdown,
            version=self.thresholds.GRAPH_VERSION,
            data_hash=data_hash,
            generated_at=now_ms(),
        )
        key = self.generate_key(location_key, mode, target_date, data_hash, palette)
        await self.ttl_cache.set(key, entry.to_dict())

    async def generate_and_cache_graph(
        self,
        location_key: LocationKey,
        mode: str,
        series: list[TimeseriesEntry],
        name: str,
        hours: int,
        sun_by_date: Mapping[str, SunTimes | dict] | None = None,
        target_date: str | None = None,
        force_regenerate: bool = False,
        palette: str = "light",
    ) -> str:
        """Return cached markdown, or render, cache and return it.

        Args:
            location_key: Canonical key of the location shown.
            mode: ``"detailed"`` or ``"summary"``.
            series: Forecast timeseries to plot.
            name: Location display name.
            hours: Number of series entries to plot.
            sun_by_date: Sun times keyed by ISO date, if known.
            target_date: ISO date for a single-day graph.
            force_regenerate: Skip the cache lookup and re-render.
            palette: ``"light"`` or ``"dark"``.

        Returns:
            Graph markdown.
        """
        if not force_regenerate:
            cached = await self.get_cached_graph(
                location_key, mode, series, name, hours, sun_by_date, target_date, palette
            )
            if cached:
                logger.debug(f"Using cached graph for {location_key} ({mode})")
                return cached
        else:
            logger.debug("Bypassing graph cache (forced regeneration)")

        # Sun markers only make sense on hourly plots
        render_sun = (sun_by_date or {}) if mode == "detailed" or target_date else None
        markdown = self.renderer(
            name,
            series,
            hours,
            title=graph_title(mode, target_date),
            smooth=True,
            sun_by_date=render_sun,
            palette=palette,
        )
        await self.set_cached_graph(
            location_key, mode, series, name, hours, markdown, sun_by_date, target_date, palette
        )
        return markdown

    async def _graph_records(self) -> dict[str, str]:
        """Raw persisted graph records keyed by internal key."""
        entries = await self.ttl_cache.entries(GRAPH_PREFIX)
        return {k[len(self.ttl_cache.prefix) :]: v for k, v in entries.items()}

    async def _remove_where(self, predicate: Callable[[str, str], bool]) -> int:
        """Remove graph records for which ``predicate(internal_key, raw)`` holds.

        A storage failure stops the sweep; it is logged and the count so far returned.
        """
        removed = 0
        try:
            for internal_key, raw in (await self._graph_records()).items():
                if predicate(internal_key, raw):
                    await self.ttl_cache.remove(internal_key)
                    removed += 1
        except Exception as e:
            logger.warning(f"Graph cache sweep stopped after {removed} entries: {e}")
        return removed

    async def invalidate_location(self, location_key: LocationKey) -> int:
        """Remove every persisted graph for ``location_key``. Other locations are untouched."""
        removed = await self.ttl_cache.clear_by_prefix(f"{GRAPH_PREFIX}{location_key}:")
        logger.info(f"Cleared {removed} graph cache entries for location {location_key}")
        return removed

    async def invalidate_mode(self, mode: str) -> int:
        def matches(key: str, _raw: str) -> bool:
            parts = split_graph_key(key)
            return parts is not None and parts[1] == mode

        removed = await self._remove_where(matches)
        logger.info(f"Cleared {removed} graph cache entries for mode {mode}")
        return removed

    async def invalidate_date(self, target_date: str) -> int:
        def matches(key: str, _raw: str) -> bool:
            parts = split_graph_key(key)
            return parts is not None and parts[3] == target_date

        removed = await self._remove_where(matches)
        logger.info(f"Cleared {removed} graph cache entries for date {target_date}")
        return removed

    async def clear_all(self) -> int:
        removed = await self.ttl_cache.clear_by_prefix(GRAPH_PREFIX)
        logger.info(f"Cleared {removed} graph cache entries")
        return removed

    async def cleanup_old(self, max_age_ms: int = GRAPH_CLEANUP_MAX_AGE_MS) -> int:
        """Remove graphs older than ``max_age_ms``, and any record that is not valid JSON.

        Valid JSON without a numeric ``savedAtMs`` is left alone.

        Returns:
            Number of removed records.
        """
        now = now_ms()

        def expired(_key: str, raw: str) -> bool:
            try:
                parsed = json.loads(raw)
            except ValueError:
                return True
            saved_at = parsed.get("savedAtMs") if isinstance(parsed, dict) else None
            if isinstance(saved_at, bool) or not isinstance(saved_at, (int, float)):
                return False
            return now - saved_at > max_age_ms

        removed = await self._remove_where(expired)
        logger.debug(f"Graph cache cleanup removed {removed} entries older than {max_age_ms}ms")
        return removed

    async def get_stats(self) -> GraphCacheStats:
        """Entry count, oldest/newest ``savedAtMs`` and total size. Empty stats if the store fails."""
        try:
            records = await self._graph_records()
        except Exception as e:
            logger.warning(f"Failed to get graph cache stats: {e}")
            return GraphCacheStats(total_entries=0, oldest_entry=None, newest_entry=None, total_size=0)
        saved_at = [e.saved_at_ms for e in map(parse_entry, records.values()) if e is not None]
        return GraphCacheStats(
            total_entries=len(records),
            oldest_entry=min(saved_at) if saved_at else None,
            newest_entry=max(saved_at) if saved_at else None,
            total_size=sum(len(raw) for raw in records.values()),
        )
