"""Utilities for resolving metadata from The Movie Database (TMDB)."""

from __future__ import annotations

import logging
from typing import Literal

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..models import TmdbExternalIdResponse, TmdbMovieDetails, TmdbTvDetails
from .cache import CacheManager, cache_manager
from .external_api import ExternalAPI, IntegrationError, RateLimitOptions

logger = logging.getLogger(__name__)

ExternalSource = Literal["imdb", "tvdb"]


class TMDBClient(ExternalAPI):
    """Client responsible for mapping DVR identifiers onto TMDB titles."""

    def __init__(
        self,
        settings: Settings,
        *,
        caches: CacheManager | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        params = {"api_key": settings.tmdb_api_key} if settings.tmdb_api_key else {}
        if not params:
            logger.warning("TMDB_API_KEY is not set; TMDB lookups will be rejected")
        super().__init__(
            "TMDB",
            str(settings.tmdb_api_url),
            params=params,
            cache=(caches or cache_manager).get_cache("tmdb"),
            rate_limit=RateLimitOptions(max_rps=settings.tmdb_max_rps),
            timeout=settings.http_timeout_seconds,
            proxies=settings.proxy_urls,
            transport=transport,
            rolling_buffer=settings.cache_rolling_buffer_seconds,
        )

    async def get_movie(self, movie_id: int, *, language: str = "en") -> TmdbMovieDetails:
        data = await self.get(
            f"/movie/{movie_id}",
            {"language": language, "append_to_response": "external_ids"},
            ttl=43_200,
        )
        return self._parse(TmdbMovieDetails, data, f"/movie/{movie_id}")

    async def get_tv_show(self, tv_id: int, *, language: str = "en") -> TmdbTvDetails:
        data = await self.get(
            f"/tv/{tv_id}",
            {"language": language, "append_to_response": "external_ids"},
            ttl=43_200,
        )
        return self._parse(TmdbTvDetails, data, f"/tv/{tv_id}")

    async def get_by_external_id(
        self,
        external_id: str | int,
        source: ExternalSource,
        *,
        language: str = "en",
    ) -> TmdbExternalIdResponse:
        endpoint = f"/find/{external_id}"
        data = await self.get(
            endpoint,
            {
                "external_source": "imdb_id" if source == "imdb" else "tvdb_id",
                "language": language,
            },
        )
        return self._parse(TmdbExternalIdResponse, data, endpoint)

    async def get_movie_by_imdb_id(self, imdb_id: str) -> TmdbMovieDetails:
        """Resolve an IMDb ID to the TMDB movie it belongs to."""

        response = await self.get_by_external_id(imdb_id, "imdb")
        if not response.movie_results:
            raise IntegrationError(
                self.name, f"/find/{imdb_id}", f"No movie returned for IMDb ID {imdb_id}"
            )
        return await self.get_movie(response.movie_results[0].id)

    async def get_show_by_tvdb_id(self, tvdb_id: int) -> TmdbTvDetails:
        """Resolve a TVDB ID to the TMDB series it belongs to."""

        response = await self.get_by_external_id(tvdb_id, "tvdb")
        if not response.tv_results:
            raise IntegrationError(
                self.name, f"/find/{tvdb_id}", f"No show returned for TVDB ID {tvdb_id}"
            )
        return await self.get_tv_show(response.tv_results[0].id)

    def _parse(self, model, data: object, endpoint: str):
        try:
            return model.model_validate(data)
        except ValidationError as exc:
            raise IntegrationError(
                self.name, endpoint, f"Unexpected response structure: {exc.error_count()} error(s)"
            ) from exc
