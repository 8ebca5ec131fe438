"""Cache-aside, rate-limited base client for every outbound integration."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping

import httpx

from ..utils import serialize_cache_key
from .cache import CacheStore

logger = logging.getLogger(__name__)

DEFAULT_ROLLING_BUFFER = 10.0


class IntegrationError(Exception):
    """Raised when an upstream integration call fails or returns garbage."""

    def __init__(
        self,
        integration: str,
        endpoint: str,
        message: str,
        *,
        status_code: int | None = None,
    ) -> None:
        super().__init__(f"[{integration}] {endpoint}: {message}")
        self.integration = integration
        self.endpoint = endpoint
        self.message = message
        self.status_code = status_code


@dataclass(slots=True, frozen=True)
class RateLimitOptions:
    """Caps applied to outbound calls; ``None`` disables a cap."""

    max_requests: int | None = None
    per_seconds: float = 1.0
    max_rps: int | None = None


class RateLimiter:
    """Simple async sliding-window limiter.

    Calls beyond ``max_requests`` within ``period_seconds`` wait for the oldest
    slot to fall out of the window instead of failing.
    """

    def __init__(
        self,
        max_requests: int,
        period_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        self.max_requests = max_requests
        self.period_seconds = period_seconds
        self._clock = clock
        self._sleep = sleep
        self._events: deque[float] = deque()
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        while True:
            async with self._lock:
                now = self._clock()
                while self._events and now - self._events[0] >= self.period_seconds:
                    self._events.popleft()

                if len(self._events) < self.max_requests:
                    self._events.append(now)
                    return

                wait_for = self.period_seconds - (now - self._events[0])
                wait_for = max(0.001, wait_for)

            await self._sleep(wait_for)


def build_limiters(options: RateLimitOptions | None) -> list[RateLimiter]:
    if options is None:
        return []
    limiters: list[RateLimiter] = []
    if options.max_requests:
        limiters.append(RateLimiter(options.max_requests, options.per_seconds))
    if options.max_rps:
        limiters.append(RateLimiter(options.max_rps, 1.0))
    return limiters


def build_proxy_mounts(
    proxies: Mapping[str, str] | None,
) -> dict[str, httpx.AsyncBaseTransport] | None:
    """Translate ``{"http://": url}`` style proxy settings into httpx mounts."""

    if not proxies:
        return None
    return {
        scheme: httpx.AsyncHTTPTransport(proxy=url)
        for scheme, url in proxies.items()
        if url
    }


class ExternalAPI:
    """Thin wrapper around ``httpx.AsyncClient`` adding caching and throttling."""

    def __init__(
        self,
        name: str,
        base_url: str,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        cache: CacheStore | None = None,
        rate_limit: RateLimitOptions | None = None,
        timeout: float = 20.0,
        proxies: Mapping[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        rolling_buffer: float = DEFAULT_ROLLING_BUFFER,
    ) -> None:
        self.name = name
        self.base_url = base_url.rstrip("/")
        self._cache = cache
        self._limiters = build_limiters(rate_limit)
        self._rolling_buffer = rolling_buffer
        self._refresh_tasks: dict[str, asyncio.Task[None]] = {}

        client_kwargs: dict[str, Any] = {
            "base_url": self.base_url,
            "params": dict(params or {}),
            "headers": {
                "Content-Type": "application/json",
                "Accept": "application/json",
                **dict(headers or {}),
            },
            "timeout": httpx.Timeout(timeout, connect=min(timeout, 10.0)),
        }
        if transport is not None:
            client_kwargs["transport"] = transport
        else:
            mounts = build_proxy_mounts(proxies)
            if mounts:
                client_kwargs["mounts"] = mounts
        self._client = httpx.AsyncClient(**client_kwargs)

    @property
    def cache(self) -> CacheStore | None:
        return self._cache

    @property
    def pending_refreshes(self) -> tuple[asyncio.Task[None], ...]:
        """Background rolling refreshes that have not finished yet."""

        return tuple(task for task in self._refresh_tasks.values() if not task.done())

    async def __aenter__(self) -> "ExternalAPI":
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        for task in self.pending_refreshes:
            task.cancel()
        await self._client.aclose()

    async def request(
        self,
        method: str,
        endpoint: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        """Perform an uncached call and return the decoded JSON payload."""

        for limiter in self._limiters:
            await limiter.acquire()

        try:
            response = await self._client.request(
                method, endpoint, params=dict(params) if params else None, json=json
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            raise IntegrationError(
                self.name, endpoint, f"HTTP {status}", status_code=status
            ) from exc
        except httpx.HTTPError as exc:
            raise IntegrationError(
                self.name, endpoint, str(exc) or exc.__class__.__name__
            ) from exc

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise IntegrationError(
                self.name,
                endpoint,
                "Malformed JSON response",
                status_code=response.status_code,
            ) from exc

    async def get(
        self,
        endpoint: str,
        params: Mapping[str, Any] | None = None,
        ttl: float | None = None,
    ) -> Any:
        """Return a cached payload, fetching and storing it on a miss."""

        cache_key = self._cache_key(endpoint, params)
        if self._cache is not None:
            entry = self._cache.get_entry(cache_key)
            if entry is not None:
                logger.debug("Loaded item from cache: %s", cache_key)
                return entry.value

        data = await self.request("GET", endpoint, params=params)
        if self._cache is not None:
            self._cache.set(cache_key, data, ttl)
        return data

    async def get_rolling(
        self,
        endpoint: str,
        params: Mapping[str, Any] | None = None,
        ttl: float | None = None,
    ) -> Any:
        """Like :meth:`get` but refresh aging entries in the background.

        Once an entry is older than the rolling buffer a refresh task is fired
        and the cached value is still returned straight away.
        """

        cache_key = self._cache_key(endpoint, params)
        if self._cache is not None:
            entry = self._cache.get_entry(cache_key)
            if entry is not None:
                resolved_ttl = self._cache.default_ttl if ttl is None else ttl
                remaining = entry.expires_at - self._cache.now()
                if remaining < resolved_ttl - self._rolling_buffer:
                    self._schedule_refresh(cache_key, endpoint, params, ttl)
                return entry.value

        data = await self.request("GET", endpoint, params=params)
        if self._cache is not None:
            self._cache.set(cache_key, data, ttl)
        return data

    async def post(
        self,
        endpoint: str,
        body: Any = None,
        params: Mapping[str, Any] | None = None,
        ttl: float | None = None,
    ) -> Any:
        """Write-through call: always hits upstream, then caches the result."""

        data = await self.request("POST", endpoint, params=params, json=body)
        if self._cache is not None:
            self._cache.set(self._cache_key(endpoint, params, body), data, ttl)
        return data

    def _cache_key(
        self,
        endpoint: str,
        params: Mapping[str, Any] | None = None,
        body: Any = None,
    ) -> str:
        return serialize_cache_key(f"{self.base_url}{endpoint}", params, body)

    def _schedule_refresh(
        self,
        cache_key: str,
        endpoint: str,
        params: Mapping[str, Any] | None,
        ttl: float | None,
    ) -> None:
        existing = self._refresh_tasks.get(cache_key)
        if existing and not existing.done():
            return

        async def _runner() -> None:
            try:
                data = await self.request("GET", endpoint, params=params)
                if self._cache is not None:
                    self._cache.set(cache_key, data, ttl)
                    logger.debug("Refreshed rolling cache entry: %s", cache_key)
            except IntegrationError as exc:
                logger.warning("Background refresh of %s failed: %s", cache_key, exc)
            except Exception as exc:  # pragma: no cover - background safety net
                logger.exception("Background refresh of %s crashed: %s", cache_key, exc)
            finally:
                if self._refresh_tasks.get(cache_key) is asyncio.current_task():
                    self._refresh_tasks.pop(cache_key, None)

        self._refresh_tasks[cache_key] = asyncio.create_task(_runner())
