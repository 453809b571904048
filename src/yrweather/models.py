"""Data model definitions — explicit boundaries between storage, API, and render layers."""

from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

T = TypeVar("T")

# Canonical location identity: "osm:<id>", "coord:<lat>,<lon>" or "id:<raw>"
LocationKey = str

# A single MET Norway timeseries entry, kept as the upstream JSON object
TimeseriesEntry = dict[str, Any]


@dataclass(frozen=True)
class FavoriteLocation:
    """A user-saved location. ``id`` is canonical once it has been through the store."""

    name: str  # Display name
    lat: float  # Latitude (decimal degrees)
    lon: float  # Longitude (decimal degrees)
    id: str | None = None  # LocationKey, or a legacy/raw id before migration

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "lat": self.lat, "lon": self.lon}


@dataclass(frozen=True)
class LocationResult:
    """A single geocoder search hit."""

    id: str  # Stringified Nominatim place_id
    display_name: str  # Full display name returned by the geocoder
    lat: float
    lon: float
    address: dict[str, str] | None = None  # city/town/county/state/country/... parts
    osm_type: str | None = None
    type: str | None = None
    class_: str | None = None  # "class" in the upstream payload
    addresstype: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "display_name": self.display_name,
            "lat": self.lat,
            "lon": self.lon,
            "address": self.address,
            "osm_type": self.osm_type,
            "type": self.type,
            "class": self.class_,
            "addresstype": self.addresstype,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "LocationResult":
        return cls(
            id=str(raw["id"]),
            display_name=str(raw.get("display_name", "")),
            lat=float(raw["lat"]),
            lon=float(raw["lon"]),
            address=raw.get("address"),
            osm_type=raw.get("osm_type"),
            type=raw.get("type"),
            class_=raw.get("class"),
            addresstype=raw.get("addresstype"),
        )


@dataclass(frozen=True)
class SunTimes:
    """Sunrise/sunset for one date at one coordinate. Either may be absent (polar day/night)."""

    sunrise: str | None = None  # ISO 8601 timestamp
    sunset: str | None = None  # ISO 8601 timestamp

    def to_dict(self) -> dict[str, str | None]:
        return {"sunrise": self.sunrise, "sunset": self.sunset}


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """Age-stamped persisted cache record."""

    saved_at_ms: int  # Epoch milliseconds at write time
    value: T


@dataclass(frozen=True)
class GraphCacheEntry:
    """Rendered graph plus the validity stamps checked on read."""

    markdown: str
    version: str  # Graph schema version at render time
    data_hash: str  # Hash of the render inputs
    generated_at: int  # Epoch milliseconds

    def to_dict(self) -> dict[str, Any]:
        return {
            "markdown": self.markdown,
            "version": self.version,
            "dataHash": self.data_hash,
            "generatedAt": self.generated_at,
        }


@dataclass(frozen=True)
class GraphCacheStats:
    """Observability snapshot of persisted graph entries."""

    total_entries: int
    oldest_entry: int | None  # savedAtMs of the oldest entry
    newest_entry: int | None  # savedAtMs of the newest entry
    total_size: int  # Sum of serialized record lengths


@dataclass(frozen=True)
class WeatherMetadata:
    """Freshness information reported by the weather API."""

    updated_at: str | None = None  # meta.updated_at from the payload
    last_modified: str | None = None  # Last-Modified response header
    expires: str | None = None  # Expires response header


@dataclass(frozen=True)
class WeatherDataWithMetadata:
    """Weather payload (single entry or full series) with freshness metadata."""

    data: TimeseriesEntry | list[TimeseriesEntry]
    metadata: WeatherMetadata = field(default_factory=WeatherMetadata)

    def to_dict(self) -> dict[str, Any]:
        return {
            "data": self.data,
            "metadata": {
                "updated_at": self.metadata.updated_at,
                "last_modified": self.metadata.last_modified,
                "expires": self.metadata.expires,
            },
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "WeatherDataWithMetadata":
        meta = raw.get("metadata") or {}
        return cls(
            data=raw["data"],
            metadata=WeatherMetadata(
                updated_at=meta.get("updated_at"),
                last_modified=meta.get("last_modified"),
                expires=meta.get("expires"),
            ),
        )
