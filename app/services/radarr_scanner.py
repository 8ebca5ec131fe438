"""Reconcile movie availability from configured Radarr servers."""

from __future__ import annotations

import logging
from typing import Callable, Sequence

from ..config import DVRServerSettings, Settings
from ..models import RadarrMovie
from .availability import AvailabilityReconciler
from .external_api import IntegrationError
from .scanner import ServerScanner
from .servarr import RadarrClient
from .tmdb import TMDBClient

RadarrClientFactory = Callable[[DVRServerSettings], RadarrClient]


class RadarrScanner(ServerScanner[RadarrMovie]):
    service_name = "Radarr"

    def __init__(
        self,
        settings: Settings,
        reconciler: AvailabilityReconciler,
        tmdb: TMDBClient,
        *,
        client_factory: RadarrClientFactory | None = None,
        **kwargs,
    ) -> None:
        kwargs.setdefault("bundle_size", settings.scan_bundle_size)
        kwargs.setdefault("update_rate", settings.scan_update_rate_seconds)
        super().__init__("Radarr Scan", settings, reconciler, **kwargs)
        self._tmdb = tmdb
        self._client_factory = client_factory or (
            lambda server: RadarrClient(server, settings)
        )

    def configured_servers(self) -> list[DVRServerSettings]:
        return list(self._settings.radarr_servers)

    async def fetch_items(self, server: DVRServerSettings) -> Sequence[RadarrMovie]:
        async with self._client_factory(server) as client:
            return await client.get_movies()

    async def process_item(self, server: DVRServerSettings, movie: RadarrMovie) -> None:
        if not movie.monitored and not movie.has_file:
            self.log(
                "Title is unmonitored and has not been downloaded. Skipping item.",
                title=movie.title,
            )
            return

        try:
            tmdb_id = await self._resolve_tmdb_id(movie)
            if tmdb_id is None:
                self.log(
                    "Unable to determine a TMDB ID. Skipping item.",
                    logging.WARNING,
                    server=server.display_name,
                    title=movie.title,
                    externalId=movie.id,
                )
                return

            await self._reconciler.reconcile_movie(
                tmdb_id,
                is_4k=self.enable_4k_movie and server.is_4k,
                enable_4k=self.enable_4k_movie,
                processing=not movie.has_file,
                media_added_at=movie.added_at,
                imdb_id=movie.imdb_id,
                service_id=server.id,
                external_service_id=movie.id,
                external_service_slug=movie.title_slug,
                title=movie.title,
            )
        except IntegrationError as exc:
            self.log(
                "Failed to process Radarr media",
                logging.ERROR,
                server=server.display_name,
                title=movie.title,
                externalId=movie.id,
                error=str(exc),
            )
        except Exception as exc:
            self.log(
                "Failed to process Radarr media",
                logging.ERROR,
                exc_info=True,
                server=server.display_name,
                title=movie.title,
                externalId=movie.id,
                error=str(exc),
            )

    async def _resolve_tmdb_id(self, movie: RadarrMovie) -> int | None:
        if movie.tmdb_id:
            return movie.tmdb_id
        if not movie.imdb_id:
            return None
        details = await self._tmdb.get_movie_by_imdb_id(movie.imdb_id)
        return details.id
