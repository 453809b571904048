"""Tests for the MET Norway weather/sunrise clients and the Nominatim search client."""

from datetime import date

import httpx
import pytest

from tests.conftest import make_series
from yrweather.api_client import ResponseShapeError
from yrweather.cache_manager import CacheManager
from yrweather.location_search import location_timezone, make_location_client, search_locations
from yrweather.sunrise_client import get_sun_times, get_sun_times_by_date, make_sunrise_client
from yrweather.weather_client import (
    get_forecast,
    get_forecast_with_metadata,
    get_weather,
    make_weather_client,
)


class Recorder:
    """MockTransport handler that delegates to ``respond`` and keeps every request."""

    def __init__(self, respond) -> None:
        self.respond = respond
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.respond(request)


@pytest.fixture
def cache(ttl_cache) -> CacheManager:
    return CacheManager(ttl_cache)


def _http(recorder: Recorder) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(recorder))


FORECAST_BODY = {
    "meta": {"updated_at": "2024-06-01T08:12:40Z"},
    "properties": {"timeseries": make_series(3)},
}


class TestWeatherClient:
    @pytest.mark.asyncio
    async def test_forecast_series_and_cache_key(self, cache, store):
        recorder = Recorder(lambda r: httpx.Response(200, json=FORECAST_BODY))
        client = make_weather_client(cache, _http(recorder))

        series = await get_forecast(client, 59.91391, 10.75226)

        assert series == FORECAST_BODY["properties"]["timeseries"]
        params = recorder.requests[0].url.params
        assert (params["lat"], params["lon"]) == ("59.9139", "10.7523")
        assert "cache:weather:forecast:59.914,10.752" in await store.all_items()

    @pytest.mark.asyncio
    async def test_current_is_first_entry(self, cache):
        recorder = Recorder(lambda r: httpx.Response(200, json=FORECAST_BODY))
        entry = await get_weather(make_weather_client(cache, _http(recorder)), 59.9, 10.7)
        assert entry == FORECAST_BODY["properties"]["timeseries"][0]

    @pytest.mark.asyncio
    async def test_metadata_from_body_and_headers(self, cache):
        headers = {"Last-Modified": "Sat, 01 Jun 2024 08:12:40 GMT", "Expires": "Sat, 01 Jun 2024 08:42:00 GMT"}
        recorder = Recorder(lambda r: httpx.Response(200, json=FORECAST_BODY, headers=headers))
        result = await get_forecast_with_metadata(make_weather_client(cache, _http(recorder)), 59.9, 10.7)

        assert len(result.data) == 3
        assert result.metadata.updated_at == "2024-06-01T08:12:40Z"
        assert result.metadata.last_modified == headers["Last-Modified"]
        assert result.metadata.expires == headers["Expires"]

    @pytest.mark.asyncio
    async def test_missing_timeseries_is_a_shape_error(self, cache):
        recorder = Recorder(lambda r: httpx.Response(200, json={"properties": {}}))
        with pytest.raises(ResponseShapeError):
            await get_forecast(make_weather_client(cache, _http(recorder)), 59.9, 10.7)

    @pytest.mark.asyncio
    async def test_empty_series_has_no_current_entry(self, cache):
        recorder = Recorder(lambda r: httpx.Response(200, json={"properties": {"timeseries": []}}))
        with pytest.raises(ResponseShapeError):
            await get_weather(make_weather_client(cache, _http(recorder)), 59.9, 10.7)


def _sun_body(sunrise: str | None, sunset: str | None) -> dict:
    return {
        "properties": {
            "body": "Sun",
            "sunrise": {"time": sunrise, "azimuth": 40.1},
            "sunset": {"time": sunset, "azimuth": 319.9},
        }
    }


class TestSunriseClient:
    @pytest.mark.asyncio
    async def test_sun_times_with_local_offset(self, cache, store):
        recorder = Recorder(
            lambda r: httpx.Response(
                200, json=_sun_body("2024-06-01T03:54+02:00", "2024-06-01T22:31+02:00")
            )
        )
        client = make_sunrise_client(cache, _http(recorder))

        sun = await get_sun_times(client, 59.9139, 10.7522, date(2024, 6, 1), "Europe/Oslo")

        assert sun.sunrise == "2024-06-01T03:54+02:00"
        assert sun.sunset == "2024-06-01T22:31+02:00"
        params = recorder.requests[0].url.params
        assert params["date"] == "2024-06-01"
        assert params["offset"] == "+02:00"
        assert "cache:sunrise:59.914,10.752:2024-06-01" in await store.all_items()

    @pytest.mark.asyncio
    async def test_winter_offset(self, cache):
        recorder = Recorder(lambda r: httpx.Response(200, json=_sun_body(None, None)))
        await get_sun_times(make_sunrise_client(cache, _http(recorder)), 40.7, -74.0, date(2024, 1, 15), "America/New_York")
        assert recorder.requests[0].url.params["offset"] == "-05:00"

    @pytest.mark.asyncio
    async def test_polar_night_has_no_times(self, cache):
        recorder = Recorder(lambda r: httpx.Response(200, json=_sun_body(None, None)))
        sun = await get_sun_times(make_sunrise_client(cache, _http(recorder)), 78.2, 15.6, date(2024, 12, 21))
        assert (sun.sunrise, sun.sunset) == (None, None)

    @pytest.mark.asyncio
    async def test_missing_properties_is_a_shape_error(self, cache):
        recorder = Recorder(lambda r: httpx.Response(200, json={"type": "Feature"}))
        with pytest.raises(ResponseShapeError):
            await get_sun_times(make_sunrise_client(cache, _http(recorder)), 59.9, 10.7, date(2024, 6, 1))

    @pytest.mark.asyncio
    async def test_by_date_skips_failed_days(self, cache):
        def respond(request: httpx.Request) -> httpx.Response:
            day = request.url.params["date"]
            if day == "2024-06-02":
                return httpx.Response(404)
            return httpx.Response(200, json=_sun_body(f"{day}T04:00Z", f"{day}T20:00Z"))

        client = make_sunrise_client(cache, _http(Recorder(respond)))
        result = await get_sun_times_by_date(
            client, 59.9, 10.7, [date(2024, 6, 1), date(2024, 6, 2), date(2024, 6, 3)]
        )
        assert list(result) == ["2024-06-01", "2024-06-03"]
        assert result["2024-06-03"].sunrise == "2024-06-03T04:00Z"


PLACES = [
    {
        "place_id": 240109189,
        "osm_type": "relation",
        "lat": "59.9133301",
        "lon": "10.7389701",
        "class": "boundary",
        "type": "administrative",
        "addresstype": "city",
        "display_name": "Oslo, Norway",
        "address": {"city": "Oslo", "country": "Norway"},
    },
    {"place_id": 2, "lat": "not-a-number", "lon": "10.0", "display_name": "Broken"},
    {"lat": "1", "lon": "2", "display_name": "No id"},
]


class TestLocationSearch:
    @pytest.mark.asyncio
    async def test_blank_query_does_no_io(self, cache):
        recorder = Recorder(lambda r: httpx.Response(200, json=PLACES))
        assert await search_locations(make_location_client(cache, _http(recorder)), "   ") == []
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_results_are_parsed_and_filtered(self, cache, store):
        recorder = Recorder(lambda r: httpx.Response(200, json=PLACES))
        results = await search_locations(make_location_client(cache, _http(recorder)), " Oslo Sentrum ")

        assert len(results) == 1
        oslo = results[0]
        assert oslo.id == "240109189"
        assert (oslo.lat, oslo.lon) == (59.9133301, 10.7389701)
        assert oslo.class_ == "boundary"
        assert oslo.address == {"city": "Oslo", "country": "Norway"}

        params = recorder.requests[0].url.params
        assert params["q"] == "Oslo Sentrum"
        assert params["format"] == "json"
        assert params["addressdetails"] == "1"
        assert "cache:location:search:oslo%20sentrum" in await store.all_items()

    @pytest.mark.asyncio
    async def test_same_query_any_case_hits_cache(self, cache):
        recorder = Recorder(lambda r: httpx.Response(200, json=PLACES))
        client = make_location_client(cache, _http(recorder))
        await search_locations(client, "Oslo")
        await search_locations(client, "OSLO")
        assert len(recorder.requests) == 1

    @pytest.mark.asyncio
    async def test_non_list_body_is_a_shape_error(self, cache):
        recorder = Recorder(lambda r: httpx.Response(200, json={"error": "nope"}))
        with pytest.raises(ResponseShapeError):
            await search_locations(make_location_client(cache, _http(recorder)), "Oslo")

    def test_location_timezone(self):
        assert location_timezone(59.9139, 10.7522) == "Europe/Oslo"
        assert location_timezone(40.7128, -74.0060) == "America/New_York"
