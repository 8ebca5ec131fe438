"""Reconcile series and season availability from configured Sonarr servers."""

from __future__ import annotations

import logging
from typing import Callable, Sequence

from ..config import DVRServerSettings, Settings
from ..models import ProcessableSeason, SonarrSeries, TmdbTvDetails
from .availability import AvailabilityReconciler
from .external_api import IntegrationError
from .scanner import ServerScanner
from .servarr import SonarrClient
from .tmdb import TMDBClient

SonarrClientFactory = Callable[[DVRServerSettings], SonarrClient]


class SonarrScanner(ServerScanner[SonarrSeries]):
    service_name = "Sonarr"

    def __init__(
        self,
        settings: Settings,
        reconciler: AvailabilityReconciler,
        tmdb: TMDBClient,
        *,
        client_factory: SonarrClientFactory | None = None,
        **kwargs,
    ) -> None:
        kwargs.setdefault("bundle_size", settings.scan_bundle_size)
        kwargs.setdefault("update_rate", settings.scan_update_rate_seconds)
        super().__init__("Sonarr Scan", settings, reconciler, **kwargs)
        self._tmdb = tmdb
        self._client_factory = client_factory or (
            lambda server: SonarrClient(server, settings)
        )

    def configured_servers(self) -> list[DVRServerSettings]:
        return list(self._settings.sonarr_servers)

    async def fetch_items(self, server: DVRServerSettings) -> Sequence[SonarrSeries]:
        async with self._client_factory(server) as client:
            return await client.get_series()

    async def process_item(self, server: DVRServerSettings, series: SonarrSeries) -> None:
        try:
            server_4k = self.enable_4k_show and server.is_4k
            show = await self._lookup_show(series)

            seasons: list[ProcessableSeason] = []
            for season in series.seasons:
                if season.season_number == 0 or not show.has_season(season.season_number):
                    continue
                statistics = season.statistics
                episode_files = statistics.episode_file_count if statistics else 0
                seasons.append(
                    ProcessableSeason(
                        season_number=season.season_number,
                        total_episodes=statistics.total_episode_count if statistics else 0,
                        episodes=0 if server_4k else episode_files,
                        episodes_4k=episode_files if server_4k else 0,
                        processing=season.monitored and episode_files == 0,
                    )
                )

            await self._reconciler.reconcile_series(
                show.id,
                series.tvdb_id,
                seasons,
                is_4k=server_4k,
                enable_4k=self.enable_4k_show,
                media_added_at=series.added,
                service_id=server.id,
                external_service_id=series.id,
                external_service_slug=series.title_slug,
                title=series.title,
            )
        except IntegrationError as exc:
            self.log(
                "Failed to process Sonarr media",
                logging.ERROR,
                server=server.display_name,
                title=series.title,
                externalId=series.id,
                error=str(exc),
            )
        except Exception as exc:
            self.log(
                "Failed to process Sonarr media",
                logging.ERROR,
                exc_info=True,
                server=server.display_name,
                title=series.title,
                externalId=series.id,
                error=str(exc),
            )

    async def _lookup_show(self, series: SonarrSeries) -> TmdbTvDetails:
        tmdb_id = await self._reconciler.find_tmdb_id_by_tvdb_id(series.tvdb_id)
        if tmdb_id is None:
            return await self._tmdb.get_show_by_tvdb_id(series.tvdb_id)
        return await self._tmdb.get_tv_show(tmdb_id)
