"""Tests for the shared cached request helper (retry, error taxonomy, caching)."""

import asyncio

import httpx
import pytest

from yrweather.api_client import (
    ApiClient,
    ClientApiError,
    ResponseShapeError,
    TransientApiError,
)
from yrweather.cache_manager import CacheManager
from yrweather.config import USER_AGENT

URL = "https://api.example.test/data"


class Upstream:
    """Scripted MockTransport handler: returns (or raises) the queued outcomes in order."""

    def __init__(self, *outcomes) -> None:
        self.outcomes = list(outcomes)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        # Fresh response per request; a response object cannot be sent twice
        return httpx.Response(outcome.status_code, headers=outcome.headers, content=outcome.content)


def _client(upstream: Upstream, cache: CacheManager) -> ApiClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
    return ApiClient(URL, "test", 60_000, cache, http)


@pytest.fixture
def cache(ttl_cache) -> CacheManager:
    return CacheManager(ttl_cache)


def _identity(data, _response):
    return data


class TestRetry:
    """Only transient failures are retried"""

    @pytest.mark.asyncio
    async def test_retries_5xx_then_succeeds(self, cache):
        upstream = Upstream(httpx.Response(503), httpx.Response(200, json={"ok": True}))
        data, _ = await _client(upstream, cache).fetch_json_with_retry({}, retry_delay_s=0)
        assert data == {"ok": True}
        assert len(upstream.requests) == 2

    @pytest.mark.asyncio
    async def test_429_exhausts_budget(self, cache):
        upstream = Upstream(httpx.Response(429))
        with pytest.raises(TransientApiError) as exc_info:
            await _client(upstream, cache).fetch_json_with_retry({}, retries=2, retry_delay_s=0)
        assert exc_info.value.status == 429
        assert len(upstream.requests) == 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize("retries", [0, -1])
    async def test_no_retry_budget_makes_one_attempt(self, cache, retries):
        upstream = Upstream(httpx.Response(502))
        with pytest.raises(TransientApiError) as exc_info:
            await _client(upstream, cache).fetch_json_with_retry({}, retries=retries, retry_delay_s=0)
        assert exc_info.value.status == 502
        assert len(upstream.requests) == 1

    @pytest.mark.asyncio
    async def test_4xx_is_not_retried(self, cache):
        upstream = Upstream(httpx.Response(404))
        with pytest.raises(ClientApiError) as exc_info:
            await _client(upstream, cache).fetch_json_with_retry({}, retry_delay_s=0)
        assert exc_info.value.status == 404
        assert len(upstream.requests) == 1

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self, cache):
        upstream = Upstream(httpx.ReadTimeout("slow"))
        with pytest.raises(TransientApiError) as exc_info:
            await _client(upstream, cache).fetch_json_with_retry({}, retry_delay_s=0)
        assert exc_info.value.status is None
        assert len(upstream.requests) == 2

    @pytest.mark.asyncio
    async def test_connection_error_then_success(self, cache):
        upstream = Upstream(httpx.ConnectError("refused"), httpx.Response(200, json=[1]))
        data, _ = await _client(upstream, cache).fetch_json_with_retry({}, retry_delay_s=0)
        assert data == [1]

    @pytest.mark.asyncio
    async def test_invalid_json_is_a_shape_error(self, cache):
        upstream = Upstream(httpx.Response(200, text="<html>"))
        with pytest.raises(ResponseShapeError):
            await _client(upstream, cache).fetch_json_with_retry({}, retry_delay_s=0)
        assert len(upstream.requests) == 1

    @pytest.mark.asyncio
    async def test_cancellation_during_backoff(self, cache):
        """Cancelling the caller stops the retry loop"""
        upstream = Upstream(httpx.Response(503))
        task = asyncio.create_task(_client(upstream, cache).fetch_json_with_retry({}, retry_delay_s=30))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert len(upstream.requests) == 1

    @pytest.mark.asyncio
    async def test_sends_user_agent_and_params(self, cache):
        upstream = Upstream(httpx.Response(200, json={}))
        await _client(upstream, cache).fetch_json_with_retry({"lat": 1.5, "q": "x"})
        request = upstream.requests[0]
        assert request.headers["User-Agent"] == USER_AGENT
        assert request.url.params["lat"] == "1.5"
        assert request.url.params["q"] == "x"


class TestRequest:
    """Cache check, validation, transform, write-back"""

    @pytest.mark.asyncio
    async def test_result_is_cached(self, cache, store):
        upstream = Upstream(httpx.Response(200, json={"v": 1}))
        client = _client(upstream, cache)

        first = await client.request({}, "thing", lambda data, _r: data["v"] + 1)
        cache.clear_memory_cache()
        second = await client.request({}, "thing", lambda data, _r: data["v"] + 1)

        assert first == second == 2
        assert len(upstream.requests) == 1
        assert "cache:test:thing" in await store.all_items()

    @pytest.mark.asyncio
    async def test_scalar_json_is_rejected(self, cache):
        upstream = Upstream(httpx.Response(200, json=42))
        with pytest.raises(ResponseShapeError):
            await _client(upstream, cache).request({}, "thing", _identity)

    @pytest.mark.asyncio
    async def test_transformer_shape_error_is_not_cached(self, cache, store):
        def strict(data, _response):
            raise ResponseShapeError("missing field")

        upstream = Upstream(httpx.Response(200, json={}))
        with pytest.raises(ResponseShapeError):
            await _client(upstream, cache).request({}, "thing", strict)
        assert await store.all_items() == {}

    @pytest.mark.asyncio
    async def test_none_result_is_rejected(self, cache):
        upstream = Upstream(httpx.Response(200, json={}))
        with pytest.raises(ResponseShapeError):
            await _client(upstream, cache).request({}, "thing", lambda data, _r: None)

    @pytest.mark.asyncio
    async def test_request_safe_returns_fallback(self, cache):
        upstream = Upstream(httpx.Response(400))
        result = await _client(upstream, cache).request_safe({}, "thing", _identity, fallback=[])
        assert result == []

    @pytest.mark.asyncio
    async def test_close_owned_client(self, cache):
        client = ApiClient(URL, "test", 60_000, cache)
        client._get_client()
        await client.close()
        assert client._client is None
