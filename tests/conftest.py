"""Shared pytest fixtures and utilities for all tests."""

from datetime import datetime, timedelta, timezone

import pytest

from yrweather.cache import TTLCache
from yrweather.kvstore import MemoryStore

START_MS = 1_717_200_000_000  # 2024-06-01T00:00:00Z


class FakeClock:
    """Wall clock in epoch milliseconds, advanced by hand."""

    def __init__(self, now: int = START_MS) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def clock(monkeypatch: pytest.MonkeyPatch) -> FakeClock:
    fake = FakeClock()
    monkeypatch.setattr("yrweather.cache.now_ms", fake)
    monkeypatch.setattr("yrweather.graph_cache.now_ms", fake)
    return fake


@pytest.fixture
def ttl_cache(store: MemoryStore, clock: FakeClock) -> TTLCache:
    return TTLCache(store)


def make_entry(when: datetime, temp: float = 12.0, precip: float = 0.0, wind_dir: float = 180.0) -> dict:
    """One MET Norway compact timeseries entry."""
    return {
        "time": when.strftime("%Y-%m-%dT%H:%M:%SZ"),
        "data": {
            "instant": {
                "details": {
                    "air_temperature": temp,
                    "wind_speed": 3.4,
                    "wind_from_direction": wind_dir,
                }
            },
            "next_1_hours": {
                "summary": {"symbol_code": "partlycloudy_day"},
                "details": {"precipitation_amount": precip},
            },
        },
    }


def make_series(hours: int, start: datetime | None = None) -> list[dict]:
    """Hourly series with a gentle temperature curve and some rain in the afternoon."""
    start = start or datetime(2024, 6, 1, tzinfo=timezone.utc)
    return [
        make_entry(
            start + timedelta(hours=i),
            temp=10.0 + (i % 24) / 2,
            precip=0.6 if 14 <= (i % 24) <= 16 else 0.0,
        )
        for i in range(hours)
    ]


@pytest.fixture
def series() -> list[dict]:
    return make_series(48)
