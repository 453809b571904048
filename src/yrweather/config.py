"""Centralized configuration — cache thresholds, API endpoints, request defaults.

Values are read from the environment once at import time. Entry points call
``load_dotenv()`` before importing this module so a local ``.env`` applies.
"""

import os
from dataclasses import dataclass
from pathlib import Path

_MINUTE_MS = 60 * 1000
_HOUR_MS = 60 * _MINUTE_MS
_DAY_MS = 24 * _HOUR_MS


def _env_int(name: str, default: int) -> int:
    """Integer environment override; malformed values fall back to the default."""
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class CacheThresholds:
    """Persistent cache TTLs (milliseconds) per key namespace."""

    WEATHER: int  # weather:* forecast responses
    SUNRISE: int  # sunrise:* daily sun times
    LOCATION_SEARCH: int  # location:* geocoder search results
    GRAPH: int  # graph:* rendered markdown
    GRAPH_VERSION: str  # Bump when the rendered graph format changes


CACHE_THRESHOLDS = CacheThresholds(
    WEATHER=_env_int("YRWEATHER_TTL_WEATHER_MS", 30 * _MINUTE_MS),
    SUNRISE=_env_int("YRWEATHER_TTL_SUNRISE_MS", _DAY_MS),
    LOCATION_SEARCH=_env_int("YRWEATHER_TTL_LOCATION_MS", 7 * _DAY_MS),
    GRAPH=_env_int("YRWEATHER_TTL_GRAPH_MS", 30 * _MINUTE_MS),
    GRAPH_VERSION="1.0.0",
)

# In-process layer in front of the persistent cache
MEMORY_CACHE_TTL_MS: int = 5 * _MINUTE_MS

# Age-based graph housekeeping
GRAPH_CLEANUP_MAX_AGE_MS: int = _DAY_MS

# Location keys: decimal places kept for coordinate-based identities
COORD_PRECISION: int = 3

# Persistent key/value store
STORE_PATH: Path = Path(
    os.environ.get("YRWEATHER_STORE_PATH", str(Path.home() / ".yrweather" / "store.json"))
).expanduser()

# Upstream APIs
WEATHER_API_URL = "https://api.met.no/weatherapi/locationforecast/2.0/compact"
SUNRISE_API_URL = "https://api.met.no/weatherapi/sunrise/3.0/sun"
NOMINATIM_SEARCH_URL = "https://nominatim.openstreetmap.org/search"

# Both MET Norway and Nominatim reject requests without an identifying User-Agent
USER_AGENT: str = os.environ.get(
    "YRWEATHER_USER_AGENT", "yrweather/0.1 (https://github.com/yrweather/yrweather)"
)

# Request defaults
REQUEST_TIMEOUT_S: float = 10.0
REQUEST_RETRIES: int = 1
RETRY_DELAY_S: float = 0.5

# Forecast shaping
REPRESENTATIVE_HOURS: tuple[int, ...] = (3, 9, 15, 21)
DETAILED_HOURS: int = 48
SUMMARY_DAYS: int = 9
