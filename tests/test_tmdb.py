"""Tests for the TMDB lookup client."""

from __future__ import annotations

import httpx
import pytest

from app.config import Settings
from app.services.cache import CacheManager
from app.services.external_api import IntegrationError
from app.services.tmdb import TMDBClient


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


@pytest.mark.anyio("asyncio")
async def test_lookups_send_api_key_and_use_cache() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"id": 550, "title": "Fight Club", "imdb_id": "tt0137523"})

    caches = CacheManager()
    async with TMDBClient(
        Settings(_env_file=None, TMDB_API_KEY="tmdb-key"),
        caches=caches,
        transport=httpx.MockTransport(handler),
    ) as client:
        first = await client.get_movie(550)
        second = await client.get_movie(550)

    assert first == second
    assert first.imdb_id == "tt0137523"
    assert len(requests) == 1
    assert requests[0].url.params["api_key"] == "tmdb-key"
    assert requests[0].url.params["append_to_response"] == "external_ids"
    assert len(caches.get_cache("tmdb")) == 1


@pytest.mark.anyio("asyncio")
async def test_unknown_external_ids_raise() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"movie_results": [], "tv_results": []})

    async with TMDBClient(
        Settings(_env_file=None, TMDB_API_KEY="tmdb-key"),
        caches=CacheManager(),
        transport=httpx.MockTransport(handler),
    ) as client:
        with pytest.raises(IntegrationError, match="No movie returned for IMDb ID tt0000001"):
            await client.get_movie_by_imdb_id("tt0000001")
        with pytest.raises(IntegrationError, match="No show returned for TVDB ID 42"):
            await client.get_show_by_tvdb_id(42)


@pytest.mark.anyio("asyncio")
async def test_unexpected_shape_is_an_integration_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"name": "no id"})

    async with TMDBClient(
        Settings(_env_file=None, TMDB_API_KEY="tmdb-key"),
        caches=CacheManager(),
        transport=httpx.MockTransport(handler),
    ) as client:
        with pytest.raises(IntegrationError, match="Unexpected response structure"):
            await client.get_tv_show(1)
