"""MET Norway locationforecast client: current conditions and full forecast series."""

from typing import Any

import httpx

from yrweather.api_client import ApiClient, ResponseShapeError
from yrweather.cache_manager import CacheKeyGenerator, CacheManager
from yrweather.config import CACHE_THRESHOLDS, REQUEST_TIMEOUT_S, WEATHER_API_URL
from yrweather.models import TimeseriesEntry, WeatherDataWithMetadata


def make_weather_client(cache: CacheManager, http_client: httpx.AsyncClient | None = None) -> ApiClient:
    return ApiClient(WEATHER_API_URL, "weather", CACHE_THRESHOLDS.WEATHER, cache, http_client)


def _coords_params(lat: float, lon: float) -> dict[str, float]:
    # MET Norway rejects coordinates with more than 4 decimals
    return {"lat": round(lat, 4), "lon": round(lon, 4)}


def _timeseries(raw: Any) -> list[TimeseriesEntry]:
    series = raw.get("properties", {}).get("timeseries") if isinstance(raw, dict) else None
    if not isinstance(series, list):
        raise ResponseShapeError("Unexpected response shape: missing timeseries array")
    return series


def _first_entry(raw: Any) -> TimeseriesEntry:
    series = _timeseries(raw)
    if not series or not isinstance(series[0], dict):
        raise ResponseShapeError("Unexpected response shape: missing timeseries[0]")
    return series[0]


def _metadata(raw: Any, response: httpx.Response) -> dict[str, str | None]:
    return {
        "updated_at": (raw.get("meta") or {}).get("updated_at"),
        "last_modified": response.headers.get("Last-Modified"),
        "expires": response.headers.get("Expires"),
    }


async def get_weather(
    client: ApiClient, lat: float, lon: float, timeout_s: float = REQUEST_TIMEOUT_S
) -> TimeseriesEntry:
    """Current conditions: the first entry of the forecast series.

    Raises:
        ApiError: Network/HTTP failure after retries, or an unexpected payload.
    """
    return await client.request(
        _coords_params(lat, lon),
        f"current:{CacheKeyGenerator.coords(lat, lon)}",
        lambda raw, _response: _first_entry(raw),
        timeout_s=timeout_s,
    )


async def get_weather_with_metadata(
    client: ApiClient, lat: float, lon: float, timeout_s: float = REQUEST_TIMEOUT_S
) -> WeatherDataWithMetadata:
    raw = await client.request(
        _coords_params(lat, lon),
        f"current-meta:{CacheKeyGenerator.coords(lat, lon)}",
        lambda data, response: {"data": _first_entry(data), "metadata": _metadata(data, response)},
        timeout_s=timeout_s,
    )
    return WeatherDataWithMetadata.from_dict(raw)


async def get_forecast(
    client: ApiClient, lat: float, lon: float, timeout_s: float = REQUEST_TIMEOUT_S
) -> list[TimeseriesEntry]:
    """Full time-ordered forecast series for a coordinate.

    Args:
        client: Weather ApiClient from ``make_weather_client``.
        lat: Latitude (decimal degrees).
        lon: Longitude (decimal degrees).
        timeout_s: Per-attempt request timeout.

    Returns:
        Timeseries entries as returned by the API.

    Raises:
        ApiError: Network/HTTP failure after retries, or an unexpected payload.
    """
    return await client.request(
        _coords_params(lat, lon),
        f"forecast:{CacheKeyGenerator.coords(lat, lon)}",
        lambda raw, _response: _timeseries(raw),
        timeout_s=timeout_s,
    )


async def get_forecast_with_metadata(
    client: ApiClient, lat: float, lon: float, timeout_s: float = REQUEST_TIMEOUT_S
) -> WeatherDataWithMetadata:
    raw = await client.request(
        _coords_params(lat, lon),
        f"forecast-meta:{CacheKeyGenerator.coords(lat, lon)}",
        lambda data, response: {"data": _timeseries(data), "metadata": _metadata(data, response)},
        timeout_s=timeout_s,
    )
    return WeatherDataWithMetadata.from_dict(raw)
