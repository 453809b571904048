"""The user's ordered, de-duplicated list of saved locations.

The whole list lives under one store key and every mutation is
read-list -> change -> write-list. The store has no transactions, so two
mutations interleaved across an ``await`` can lose one update. That is an
accepted limitation: duplicate adds and removes are no-ops, so replaying a lost
operation is always safe, and each mutation keeps its read-to-write window to a
single pair of store calls.
"""

import json
import math
from collections.abc import Iterable
from dataclasses import replace
from typing import Any

from yrweather.kvstore import KeyValueStore
from yrweather.location_key import key_for
from yrweather.logging_config import get_logger
from yrweather.models import FavoriteLocation, LocationKey, LocationResult

logger = get_logger("yrweather.favorites")

STORAGE_KEY = "favorite-locations"
FIRST_TIME_KEY = "first-time-user"


def _coerce_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


def _coerce_favorite(raw: Any) -> FavoriteLocation | None:
    """Schema check + coercion for one persisted record. None means drop it."""
    if not isinstance(raw, dict):
        return None
    lat = _coerce_float(raw.get("lat"))
    lon = _coerce_float(raw.get("lon"))
    if not (math.isfinite(lat) and math.isfinite(lon)):
        return None
    raw_id = raw.get("id")
    name = raw.get("name")
    return FavoriteLocation(
        id=raw_id if isinstance(raw_id, str) else None,
        name=str(name) if name is not None else "Unknown",
        lat=lat,
        lon=lon,
    )


def _parse_favorites(raw: str | None) -> list[FavoriteLocation]:
    if not raw:
        return []
    try:
        parsed = json.loads(raw)
    except ValueError:
        logger.warning("Favorites record is not valid JSON, treating as empty")
        return []
    if not isinstance(parsed, list):
        return []
    return [fav for fav in map(_coerce_favorite, parsed) if fav is not None]


def _migrate(loaded: list[FavoriteLocation]) -> tuple[list[FavoriteLocation], bool]:
    """Rewrite ids to canonical form and collapse duplicate keys (first occurrence wins).

    Returns:
        The migrated list and whether anything changed.
    """
    deduped: list[FavoriteLocation] = []
    seen: set[LocationKey] = set()
    changed = False

    for fav in loaded:
        canonical_id = key_for(fav)
        if fav.id != canonical_id:
            changed = True
        if canonical_id in seen:
            changed = True
            logger.warning(
                f"Duplicate favorite collapsed during migration: kept {canonical_id}, dropped {fav.name!r}"
            )
            continue
        seen.add(canonical_id)
        deduped.append(replace(fav, id=canonical_id))

    return deduped, changed


class FavoritesStore:
    """Persisted favorites keyed by canonical LocationKey, in user-chosen order."""

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    async def _set_favorites(self, favorites: list[FavoriteLocation]) -> None:
        await self.store.set_item(STORAGE_KEY, json.dumps([f.to_dict() for f in favorites]))

    async def _save(self, favorites: list[FavoriteLocation]) -> bool:
        """Persist a mutated list. A failed write is logged and leaves the stored list as it was."""
        try:
            await self._set_favorites(favorites)
        except OSError as e:
            logger.warning(f"Could not save favorites: {e}")
            return False
        return True

    async def _load(self) -> list[FavoriteLocation]:
        """Read, validate and migrate the persisted list. Store read errors propagate."""
        raw = await self.store.get_item(STORAGE_KEY)
        favorites, changed = _migrate(_parse_favorites(raw))
        if changed:
            try:
                await self._set_favorites(favorites)
            except OSError as e:
                # The migrated view is still correct; the fix-up retries on the next read
                logger.warning(f"Could not persist migrated favorites: {e}")
        return favorites

    async def _load_for_update(self) -> list[FavoriteLocation] | None:
        """List to mutate, or None when it could not be read and nothing may be written."""
        try:
            return await self._load()
        except Exception as e:
            logger.warning(f"Favorites read failed, leaving the stored list unchanged: {e}")
            return None

    async def get_favorites(self) -> list[FavoriteLocation]:
        """Load, validate, and migrate the persisted list.

        Every read canonicalizes ids and drops duplicate keys. When that changes
        anything the corrected list is written back before returning, so each
        stale record is fixed at most once. A failed store read shows as an
        empty list; it never reaches the mutators, which re-read on their own.

        Returns:
            Favorites in display order, each with a canonical ``id``.
        """
        try:
            return await self._load()
        except Exception as e:
            logger.warning(f"Favorites read failed, treating as empty: {e}")
            return []

    async def add_favorite(self, candidate: FavoriteLocation) -> bool:
        """Append ``candidate`` unless a favorite with the same key exists.

        Returns:
            True if added. False if it was already a favorite (nothing written)
            or the list could not be read or saved.
        """
        favorites = await self._load_for_update()
        if favorites is None:
            return False
        key = key_for(candidate)
        if any(f.id == key for f in favorites):
            return False
        favorites.append(replace(candidate, id=key))
        return await self._save(favorites)

    async def remove_favorite(self, candidate: FavoriteLocation) -> None:
        """Drop every favorite matching ``candidate``'s key. Missing entries are a no-op."""
        favorites = await self._load_for_update()
        if favorites is None:
            return
        key = key_for(candidate)
        await self._save([f for f in favorites if f.id != key])

    async def is_favorite(self, candidate: FavoriteLocation) -> bool:
        key = key_for(candidate)
        return any(f.id == key for f in await self.get_favorites())

    async def _swap(self, candidate: FavoriteLocation, offset: int) -> None:
        favorites = await self._load_for_update()
        if favorites is None:
            return
        key = key_for(candidate)
        index = next((i for i, f in enumerate(favorites) if f.id == key), -1)
        target = index + offset
        if index < 0 or not 0 <= target < len(favorites):
            return
        favorites[index], favorites[target] = favorites[target], favorites[index]
        await self._save(favorites)

    async def move_favorite_up(self, candidate: FavoriteLocation) -> None:
        """Swap with the previous favorite. First element or unknown location: no-op."""
        await self._swap(candidate, -1)

    async def move_favorite_down(self, candidate: FavoriteLocation) -> None:
        """Swap with the next favorite. Last element or unknown location: no-op."""
        await self._swap(candidate, 1)

    async def favorite_key_map(self, locations: Iterable[LocationResult]) -> dict[str, bool]:
        """Which search results are already favorites, keyed by the result's raw id."""
        favorite_keys = {f.id for f in await self.get_favorites()}
        return {
            loc.id: key_for(FavoriteLocation(id=loc.id, name=loc.display_name, lat=loc.lat, lon=loc.lon))
            in favorite_keys
            for loc in locations
        }

    async def is_first_time_user(self) -> bool:
        """True until ``mark_as_not_first_time`` has run. Only the key's presence matters."""
        return await self.store.get_item(FIRST_TIME_KEY) is None

    async def mark_as_not_first_time(self) -> None:
        await self.store.set_item(FIRST_TIME_KEY, "false")
