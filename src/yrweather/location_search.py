"""Nominatim (OpenStreetMap) search and coordinate timezone resolution."""

import math
from typing import Any
from urllib.parse import quote

import httpx
from timezonefinder import TimezoneFinder

from yrweather.api_client import ApiClient, ResponseShapeError
from yrweather.cache_manager import CacheManager
from yrweather.config import CACHE_THRESHOLDS, NOMINATIM_SEARCH_URL, REQUEST_TIMEOUT_S
from yrweather.models import LocationResult

_tf = TimezoneFinder()


def make_location_client(cache: CacheManager, http_client: httpx.AsyncClient | None = None) -> ApiClient:
    return ApiClient(NOMINATIM_SEARCH_URL, "location", CACHE_THRESHOLDS.LOCATION_SEARCH, cache, http_client)


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


def _place_records(raw: Any) -> list[dict[str, Any]]:
    """Nominatim place records -> cacheable LocationResult dicts."""
    if not isinstance(raw, list):
        raise ResponseShapeError("Unexpected response shape: expected a list of places")
    results: list[dict[str, Any]] = []
    for place in raw:
        if not isinstance(place, dict) or "place_id" not in place:
            continue
        lat, lon = _to_float(place.get("lat")), _to_float(place.get("lon"))
        # Nominatim occasionally returns rows without usable coordinates
        if not (math.isfinite(lat) and math.isfinite(lon)):
            continue
        results.append(
            {
                "id": str(place["place_id"]),
                "display_name": place.get("display_name", ""),
                "lat": lat,
                "lon": lon,
                "address": place.get("address"),
                "osm_type": place.get("osm_type"),
                "type": place.get("type"),
                "class": place.get("class"),
                "addresstype": place.get("addresstype"),
            }
        )
    return results


async def search_locations(
    client: ApiClient, query: str, timeout_s: float = REQUEST_TIMEOUT_S
) -> list[LocationResult]:
    """Search places by free text.

    Args:
        client: Location ApiClient from ``make_location_client``.
        query: Free-text place name or address. Blank queries return [] without I/O.
        timeout_s: Per-attempt request timeout.

    Returns:
        Matching places with finite coordinates, in geocoder rank order.

    Raises:
        ApiError: Network/HTTP failure after retries, or an unexpected payload.
    """
    trimmed = query.strip()
    if not trimmed:
        return []

    records = await client.request(
        {"format": "json", "q": trimmed, "addressdetails": 1},
        f"search:{quote(trimmed.lower(), safe='')}",
        lambda raw, _response: _place_records(raw),
        timeout_s=timeout_s,
    )

    return [LocationResult.from_dict(r) for r in records]


def location_timezone(lat: float, lon: float) -> str:
    """IANA timezone name for a coordinate, falling back to UTC (e.g. open ocean)."""
    return _tf.timezone_at(lat=lat, lng=lon) or "UTC"
