"""MET Norway sunrise client: sunrise/sunset for one date at one coordinate."""

from datetime import date as date_type
from datetime import datetime, timedelta
from typing import Any

import httpx
from pytz import timezone

from yrweather.api_client import ApiClient, ApiError, ResponseShapeError
from yrweather.cache_manager import CacheKeyGenerator, CacheManager
from yrweather.config import CACHE_THRESHOLDS, REQUEST_TIMEOUT_S, SUNRISE_API_URL
from yrweather.logging_config import get_logger
from yrweather.models import SunTimes

logger = get_logger("yrweather.sunrise_client")


def make_sunrise_client(cache: CacheManager, http_client: httpx.AsyncClient | None = None) -> ApiClient:
    return ApiClient(SUNRISE_API_URL, "sunrise", CACHE_THRESHOLDS.SUNRISE, cache, http_client)


def _utc_offset(tz_name: str, day: date_type) -> str:
    """``+HH:MM`` offset of ``tz_name`` at local noon on ``day`` (DST-aware)."""
    noon = timezone(tz_name).localize(datetime(day.year, day.month, day.day, 12))
    offset = noon.utcoffset() or timedelta(0)
    minutes = int(offset.total_seconds() // 60)
    sign = "+" if minutes >= 0 else "-"
    minutes = abs(minutes)
    return f"{sign}{minutes // 60:02d}:{minutes % 60:02d}"


def _sun_times(raw: Any) -> dict[str, str | None]:
    props = raw.get("properties") if isinstance(raw, dict) else None
    if not isinstance(props, dict):
        raise ResponseShapeError("Unexpected response shape: missing properties")
    # Polar day/night: the event object is present but its time is null
    return {
        "sunrise": (props.get("sunrise") or {}).get("time"),
        "sunset": (props.get("sunset") or {}).get("time"),
    }


async def get_sun_times(
    client: ApiClient,
    lat: float,
    lon: float,
    day: date_type,
    tz_name: str = "UTC",
    timeout_s: float = REQUEST_TIMEOUT_S,
) -> SunTimes:
    """Sunrise and sunset for ``day`` at the coordinate, expressed in ``tz_name``.

    Args:
        client: Sunrise ApiClient from ``make_sunrise_client``.
        lat: Latitude (decimal degrees).
        lon: Longitude (decimal degrees).
        day: Local calendar date.
        tz_name: IANA timezone the returned timestamps are offset to.
        timeout_s: Per-attempt request timeout.

    Returns:
        SunTimes; either field is None when the sun does not rise/set that day.

    Raises:
        ApiError: Network/HTTP failure after retries, or an unexpected payload.
    """
    date_str = day.isoformat()
    raw = await client.request(
        {
            "lat": round(lat, 4),
            "lon": round(lon, 4),
            "date": date_str,
            "offset": _utc_offset(tz_name, day),
        },
        f"{CacheKeyGenerator.coords(lat, lon)}:{date_str}",
        lambda data, _response: _sun_times(data),
        timeout_s=timeout_s,
    )
    return SunTimes(sunrise=raw.get("sunrise"), sunset=raw.get("sunset"))


async def get_sun_times_by_date(
    client: ApiClient,
    lat: float,
    lon: float,
    days: list[date_type],
    tz_name: str = "UTC",
) -> dict[str, SunTimes]:
    """Sun times for several dates, keyed by ISO date. Dates whose lookup fails are left out."""
    result: dict[str, SunTimes] = {}
    for day in days:
        try:
            result[day.isoformat()] = await get_sun_times(client, lat, lon, day, tz_name)
        except ApiError as e:
            logger.warning(f"Sun times unavailable for {day.isoformat()}: {e}")
    return result
