"""Shared HTTP request helper with cache lookup, timeout, bounded retry, shape validation.

Only idempotent GETs go through here. Timeouts, transport errors, 5xx and 429
are retried with exponential backoff. Any other 4xx and any response-shape
problem fails immediately. Cancelling the calling task cancels the request and
any pending backoff sleep.
"""

import asyncio
from collections.abc import Callable, Mapping
from typing import Any, TypeVar

import httpx

from yrweather.cache_manager import CacheKeyGenerator, CacheManager
from yrweather.config import REQUEST_RETRIES, REQUEST_TIMEOUT_S, RETRY_DELAY_S, USER_AGENT
from yrweather.logging_config import get_logger

logger = get_logger("yrweather.api_client")

T = TypeVar("T")

# (decoded JSON body, raw response) -> transformed result
ResponseTransformer = Callable[[Any, httpx.Response], T]


class ApiError(Exception):
    """Upstream API call failure."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class TransientApiError(ApiError):
    """Timeout, transport error, 5xx or 429 that outlasted the retry budget."""


class ClientApiError(ApiError):
    """4xx other than 429. Retrying will not help."""


class ResponseShapeError(ApiError):
    """Response is missing expected fields or has the wrong type."""


def _should_retry_status(status: int) -> bool:
    return status == 429 or 500 <= status <= 599


class ApiClient:
    """Cached GET client for one upstream endpoint.

    Args:
        base_url: Endpoint URL; query parameters are appended per request.
        cache_key_prefix: Cache namespace, e.g. ``"weather"``.
        cache_ttl_ms: Persistent TTL for this endpoint's responses.
        cache: Two-tier cache used for lookups and write-back.
        http_client: Shared ``httpx.AsyncClient``; created lazily if omitted.
    """

    def __init__(
        self,
        base_url: str,
        cache_key_prefix: str,
        cache_ttl_ms: int,
        cache: CacheManager,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url
        self.cache_key_prefix = cache_key_prefix
        self.cache_ttl_ms = cache_ttl_ms
        self.cache = cache
        self._client = http_client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(headers={"User-Agent": USER_AGENT})
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def fetch_json_with_retry(
        self,
        params: Mapping[str, str | int | float],
        timeout_s: float = REQUEST_TIMEOUT_S,
        retries: int = REQUEST_RETRIES,
        retry_delay_s: float = RETRY_DELAY_S,
        headers: Mapping[str, str] | None = None,
    ) -> tuple[Any, httpx.Response]:
        """GET ``base_url`` with ``params`` and decode the JSON body.

        Raises:
            TransientApiError: Retryable failure on the final attempt.
            ClientApiError: Non-retryable 4xx.
            ResponseShapeError: Body is not valid JSON.
        """
        client = self._get_client()
        request_headers = {"User-Agent": USER_AGENT, **(headers or {})}
        attempt = 0

        while True:
            try:
                response = await client.get(
                    self.base_url, params=dict(params), headers=request_headers, timeout=timeout_s
                )
            except httpx.TimeoutException as e:
                last_error = TransientApiError(f"Request to {self.base_url} timed out: {e}")
            except httpx.TransportError as e:
                last_error = TransientApiError(f"Request to {self.base_url} failed: {e}")
            else:
                status = response.status_code
                if response.is_success:
                    try:
                        return response.json(), response
                    except ValueError as e:
                        raise ResponseShapeError(f"Invalid JSON from {self.base_url}: {e}") from e
                message = f"API responded {status} {response.reason_phrase}"
                if not _should_retry_status(status):
                    raise ClientApiError(message, status=status)
                last_error = TransientApiError(message, status=status)

            if attempt >= retries:
                raise last_error
            delay = retry_delay_s * (2**attempt)
            logger.debug(f"Retrying {self.base_url} in {delay:.2f}s after: {last_error}")
            await asyncio.sleep(delay)
            attempt += 1

    async def request(
        self,
        params: Mapping[str, str | int | float],
        cache_key_suffix: str,
        transformer: ResponseTransformer[T],
        **fetch_options: Any,
    ) -> T:
        """Cached request: return a fresh cached result, or fetch, validate, transform and cache.

        Args:
            params: Query parameters.
            cache_key_suffix: Stable suffix under this client's cache prefix.
            transformer: Maps ``(json, response)`` to the cached result. Raises
                ``ResponseShapeError`` when expected fields are missing.
            **fetch_options: Passed to ``fetch_json_with_retry``.

        Returns:
            The transformed (JSON-serializable) result.
        """
        cache_key = CacheKeyGenerator.api(self.cache_key_prefix, cache_key_suffix)

        cached = await self.cache.get(cache_key, self.cache_ttl_ms)
        if cached is not None:
            return cached

        data, response = await self.fetch_json_with_retry(params, **fetch_options)
        if not isinstance(data, (dict, list)):
            raise ResponseShapeError("Invalid API response: expected object")

        result = transformer(data, response)
        if result is None:
            raise ResponseShapeError("Response transformer returned no result")

        await self.cache.set(cache_key, result)
        return result

    async def request_safe(
        self,
        params: Mapping[str, str | int | float],
        cache_key_suffix: str,
        transformer: ResponseTransformer[T],
        fallback: T,
        **fetch_options: Any,
    ) -> T:
        """Like ``request`` but returns ``fallback`` on any ``ApiError``."""
        try:
            return await self.request(params, cache_key_suffix, transformer, **fetch_options)
        except ApiError as e:
            logger.warning(f"API request failed for {cache_key_suffix}: {e}")
            return fallback
