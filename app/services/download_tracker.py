"""In-memory snapshots of what each DVR server is currently downloading."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from ..config import DVRServerSettings, Settings
from ..models import DownloadingItem, MediaType, RadarrQueueItem, SonarrQueueItem
from ..utils import matching_servers, unique_servers
from .servarr import RadarrClient, SonarrClient

logger = logging.getLogger(__name__)

RadarrClientFactory = Callable[[DVRServerSettings], RadarrClient]
SonarrClientFactory = Callable[[DVRServerSettings], SonarrClient]


class DownloadTracker:
    """Poll DVR queues and answer "what is downloading for this title?".

    Snapshots are keyed by configured server ID. Entries that point at the
    same instance (host, port and base path) are only polled once; the result
    is copied to the other entries so lookups by any of their IDs succeed.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        radarr_factory: RadarrClientFactory | None = None,
        sonarr_factory: SonarrClientFactory | None = None,
    ) -> None:
        self._settings = settings
        self._radarr_factory = radarr_factory or (
            lambda server: RadarrClient(server, settings)
        )
        self._sonarr_factory = sonarr_factory or (
            lambda server: SonarrClient(server, settings)
        )
        self._radarr_servers: dict[int, list[DownloadingItem]] = {}
        self._sonarr_servers: dict[int, list[DownloadingItem]] = {}

    async def update_downloads(self) -> None:
        await asyncio.gather(self._update_radarr(), self._update_sonarr())

    def get_movie_progress(self, server_id: int, external_id: int) -> list[DownloadingItem]:
        return [
            item
            for item in self._radarr_servers.get(server_id, [])
            if item.external_id == external_id
        ]

    def get_series_progress(self, server_id: int, external_id: int) -> list[DownloadingItem]:
        return [
            item
            for item in self._sonarr_servers.get(server_id, [])
            if item.external_id == external_id
        ]

    def get_progress(
        self, media_type: MediaType, server_id: int, external_id: int
    ) -> list[DownloadingItem]:
        if media_type == MediaType.MOVIE:
            return self.get_movie_progress(server_id, external_id)
        return self.get_series_progress(server_id, external_id)

    def reset(self) -> None:
        self._radarr_servers = {}
        self._sonarr_servers = {}

    async def _update_radarr(self) -> None:
        servers = self._settings.radarr_servers
        enabled = unique_servers(server for server in servers if server.sync_enabled)
        await asyncio.gather(*(self._poll_radarr(server, servers) for server in enabled))

    async def _update_sonarr(self) -> None:
        servers = self._settings.sonarr_servers
        enabled = unique_servers(server for server in servers if server.sync_enabled)
        await asyncio.gather(*(self._poll_sonarr(server, servers) for server in enabled))

    async def _poll_radarr(
        self, server: DVRServerSettings, servers: list[DVRServerSettings]
    ) -> None:
        try:
            async with self._radarr_factory(server) as client:
                queue = await client.get_queue()
        except Exception as exc:
            logger.error(
                "Unable to retrieve queue from Radarr server %s: %s",
                server.display_name,
                exc,
            )
            return

        items = [self._movie_item(record) for record in queue]
        self._publish(self._radarr_servers, server, servers, items)
        if items:
            logger.debug(
                "Found %d item(s) in progress on Radarr server: %s",
                len(items),
                server.display_name,
            )

    async def _poll_sonarr(
        self, server: DVRServerSettings, servers: list[DVRServerSettings]
    ) -> None:
        try:
            async with self._sonarr_factory(server) as client:
                queue = await client.get_queue()
        except Exception as exc:
            logger.error(
                "Unable to retrieve queue from Sonarr server %s: %s",
                server.display_name,
                exc,
            )
            return

        items = [self._series_item(record) for record in queue]
        self._publish(self._sonarr_servers, server, servers, items)
        if items:
            logger.debug(
                "Found %d item(s) in progress on Sonarr server: %s",
                len(items),
                server.display_name,
            )

    @staticmethod
    def _publish(
        snapshots: dict[int, list[DownloadingItem]],
        server: DVRServerSettings,
        servers: list[DVRServerSettings],
        items: list[DownloadingItem],
    ) -> None:
        snapshots[server.id] = items
        for mirror in matching_servers(server, servers):
            if mirror.sync_enabled:
                logger.debug(
                    "Matching download data to %s server with id %s",
                    mirror.display_name,
                    mirror.id,
                )
                snapshots[mirror.id] = list(items)

    @staticmethod
    def _movie_item(record: RadarrQueueItem) -> DownloadingItem:
        return DownloadingItem(
            media_type=MediaType.MOVIE,
            external_id=record.movie_id,
            size=record.size,
            size_left=record.sizeleft,
            status=record.status,
            time_left=record.timeleft,
            estimated_completion_time=record.estimated_completion_time,
            title=record.title,
        )

    @staticmethod
    def _series_item(record: SonarrQueueItem) -> DownloadingItem:
        return DownloadingItem(
            media_type=MediaType.TV,
            external_id=record.series_id,
            size=record.size,
            size_left=record.sizeleft,
            status=record.status,
            time_left=record.timeleft,
            estimated_completion_time=record.estimated_completion_time,
            title=record.title,
            episode=record.episode,
        )
