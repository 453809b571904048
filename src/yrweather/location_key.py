"""Canonical location identity, one stable key across favorites, caches, and graphs.

Stable upstream ids (Nominatim place_id) win when available; otherwise the key
is a namespaced coordinate pair at fixed precision. Two locations are the same
location exactly when their keys are equal. No name or distance matching.
"""

import math
import re
from decimal import ROUND_HALF_UP, Decimal

from yrweather.config import COORD_PRECISION
from yrweather.models import FavoriteLocation, LocationKey

_CANONICAL_PREFIXES = ("osm:", "coord:", "id:")
# Placeholder id the forecast view used for ad-hoc favorites: "favorite-<lat>-<lon>"
_LEGACY_PLACEHOLDER_PREFIX = "favorite-"
_NUMERIC_ID = re.compile(r"[0-9]+")


def coord_part(value: float) -> str:
    """Fixed-precision coordinate text. Exact halves round away from zero, zero has no sign."""
    if not math.isfinite(value):
        return str(value)
    if value == 0:
        value = 0.0
    rounded = Decimal(value).quantize(Decimal(1).scaleb(-COORD_PRECISION), rounding=ROUND_HALF_UP)
    return f"{rounded:f}"


def location_key_from_coords(lat: float, lon: float) -> LocationKey:
    """Coordinate-based key, e.g. ``coord:59.914,10.752``."""
    return f"coord:{coord_part(lat)},{coord_part(lon)}"


def _parse_lat_lon_pair(raw_id: str) -> tuple[float, float] | None:
    """Parse a legacy ``"<lat>,<lon>"`` id. Returns None unless both parts are finite numbers."""
    parts = [p.strip() for p in raw_id.split(",")]
    if len(parts) != 2:
        return None
    try:
        lat = float(parts[0])
        lon = float(parts[1])
    except ValueError:
        return None
    if not (math.isfinite(lat) and math.isfinite(lon)):
        return None
    return lat, lon


def resolve(raw_id: str | None, lat: float, lon: float) -> LocationKey:
    """Map any legacy/loose id plus coordinates to the canonical LocationKey.

    Callers do not need to pre-prefix ids:

    - already canonical (``osm:``/``coord:``/``id:``) -> returned unchanged
    - ``favorite-...`` placeholder -> coordinate key from ``lat``/``lon``
    - ``"<lat>,<lon>"`` string -> coordinate key from the parsed string
    - digits only (Nominatim place_id) -> ``osm:<id>``
    - anything else -> ``id:<raw_id>``
    - no id -> coordinate key from ``lat``/``lon``

    Args:
        raw_id: Optional id as received from storage, the geocoder, or the UI.
        lat: Latitude used when the id carries no identity of its own.
        lon: Longitude used when the id carries no identity of its own.

    Returns:
        The canonical LocationKey.
    """
    if raw_id:
        if raw_id.startswith(_CANONICAL_PREFIXES):
            return raw_id

        if raw_id.startswith(_LEGACY_PLACEHOLDER_PREFIX):
            return location_key_from_coords(lat, lon)

        # The string itself was the source of truth for these legacy ids
        pair = _parse_lat_lon_pair(raw_id)
        if pair is not None:
            return location_key_from_coords(*pair)

        if _NUMERIC_ID.fullmatch(raw_id):
            return f"osm:{raw_id}"

        return f"id:{raw_id}"

    return location_key_from_coords(lat, lon)


def key_for(location: FavoriteLocation) -> LocationKey:
    """Canonical key of a favorite (or any id/lat/lon carrier)."""
    return resolve(location.id, location.lat, location.lon)


def is_same_location(a: FavoriteLocation, b: FavoriteLocation) -> bool:
    """Canonical identity only. Nearby but distinct places never merge."""
    return key_for(a) == key_for(b)
