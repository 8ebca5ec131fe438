"""Tests for the cache-aside, rate-limited HTTP client."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from app.services.cache import CacheStore
from app.services.external_api import (
    ExternalAPI,
    IntegrationError,
    RateLimiter,
    build_proxy_mounts,
)


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


class FakeClock:
    def __init__(self) -> None:
        self.now = 500.0

    def __call__(self) -> float:
        return self.now


def build_api(handler, cache: CacheStore | None = None) -> ExternalAPI:
    return ExternalAPI(
        "Test",
        "https://api.example.com/v3/",
        params={"apikey": "secret"},
        cache=cache,
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.anyio("asyncio")
async def test_get_serves_repeat_calls_from_cache() -> None:
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={"id": 1})

    cache = CacheStore("tmdb", "TMDB", clock=FakeClock())
    async with build_api(handler, cache) as api:
        first = await api.get("/movie/1", {"language": "en"})
        second = await api.get("/movie/1", {"language": "en"})

    assert first == second == {"id": 1}
    assert len(calls) == 1
    assert calls[0].url.params["apikey"] == "secret"
    assert calls[0].url.path == "/v3/movie/1"


@pytest.mark.anyio("asyncio")
async def test_get_refetches_after_expiry() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(200, json={"call": calls})

    clock = FakeClock()
    cache = CacheStore("tmdb", "TMDB", default_ttl=60, clock=clock)
    async with build_api(handler, cache) as api:
        assert await api.get("/movie/1") == {"call": 1}
        clock.now += 61
        assert await api.get("/movie/1") == {"call": 2}


@pytest.mark.anyio("asyncio")
async def test_rolling_get_returns_stale_value_and_refreshes_once() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(200, json={"version": calls})

    clock = FakeClock()
    cache = CacheStore("radarr", "Radarr API", default_ttl=300, clock=clock)
    async with build_api(handler, cache) as api:
        assert await api.get_rolling("/qualityProfile") == {"version": 1}

        clock.now += 5
        assert await api.get_rolling("/qualityProfile") == {"version": 1}
        assert api.pending_refreshes == ()

        clock.now += 6
        assert await api.get_rolling("/qualityProfile") == {"version": 1}
        assert await api.get_rolling("/qualityProfile") == {"version": 1}
        assert len(api.pending_refreshes) == 1

        await asyncio.gather(*api.pending_refreshes)

        assert calls == 2
        assert await api.get_rolling("/qualityProfile") == {"version": 2}


@pytest.mark.anyio("asyncio")
async def test_failed_rolling_refresh_keeps_cached_value() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        if calls > 1:
            return httpx.Response(503)
        return httpx.Response(200, json=["root"])

    clock = FakeClock()
    cache = CacheStore("sonarr", "Sonarr API", default_ttl=300, clock=clock)
    async with build_api(handler, cache) as api:
        await api.get_rolling("/rootfolder")
        clock.now += 30
        assert await api.get_rolling("/rootfolder") == ["root"]
        await asyncio.gather(*api.pending_refreshes)

        assert calls == 2
        assert await api.get_rolling("/rootfolder") == ["root"]


@pytest.mark.anyio("asyncio")
async def test_post_always_calls_upstream_and_caches_result() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(201, json={"id": calls, "label": "availarr"})

    cache = CacheStore("radarr", "Radarr API", clock=FakeClock())
    async with build_api(handler, cache) as api:
        await api.post("/tag", {"label": "availarr"})
        result = await api.post("/tag", {"label": "availarr"})

    assert calls == 2
    assert result == {"id": 2, "label": "availarr"}
    assert len(cache) == 1


@pytest.mark.anyio("asyncio")
async def test_http_errors_become_integration_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"message": "missing"})

    async with build_api(handler) as api:
        with pytest.raises(IntegrationError) as excinfo:
            await api.get("/movie/404")

    assert excinfo.value.status_code == 404
    assert str(excinfo.value) == "[Test] /movie/404: HTTP 404"


@pytest.mark.anyio("asyncio")
async def test_malformed_json_is_reported() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"<html>")

    async with build_api(handler) as api:
        with pytest.raises(IntegrationError, match="Malformed JSON response"):
            await api.request("GET", "/system/status")


@pytest.mark.anyio("asyncio")
async def test_failed_calls_are_not_cached() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        if calls == 1:
            return httpx.Response(500)
        return httpx.Response(200, json={"ok": True})

    cache = CacheStore("tmdb", "TMDB", clock=FakeClock())
    async with build_api(handler, cache) as api:
        with pytest.raises(IntegrationError):
            await api.get("/configuration")
        assert await api.get("/configuration") == {"ok": True}


@pytest.mark.anyio("asyncio")
async def test_rate_limiter_waits_for_window() -> None:
    clock = FakeClock()
    waits: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        waits.append(seconds)
        clock.now += seconds

    limiter = RateLimiter(2, 1.0, clock=clock, sleep=fake_sleep)
    for _ in range(3):
        await limiter.acquire()

    assert waits == [pytest.approx(1.0)]


def test_proxy_mounts_only_built_for_configured_schemes() -> None:
    assert build_proxy_mounts({}) is None

    mounts = build_proxy_mounts({"https://": "http://proxy.local:3128"})

    assert mounts is not None
    assert list(mounts) == ["https://"]
    assert isinstance(mounts["https://"], httpx.AsyncHTTPTransport)
