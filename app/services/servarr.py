"""Clients for the Radarr and Sonarr v3 APIs."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Generic, Literal, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from ..config import DVRServerSettings, Settings
from ..models import (
    QualityProfile,
    QueueItem,
    RadarrMovie,
    RadarrQueueItem,
    RootFolder,
    SonarrQueueItem,
    SonarrSeries,
    Tag,
)
from .cache import CacheId, CacheManager, cache_manager
from .external_api import ExternalAPI, IntegrationError

logger = logging.getLogger(__name__)

QueueItemT = TypeVar("QueueItemT", bound=QueueItem)
ModelT = TypeVar("ModelT", bound=BaseModel)

API_PATH = "/api/v3"
QUEUE_PAGE_SIZE = 100


class ServarrClient(ExternalAPI, Generic[QueueItemT]):
    """Endpoints shared by every *arr service."""

    cache_id: CacheId
    api_name: str
    queue_item_model: type[QueueItemT]
    queue_params: dict[str, Any] = {}

    def __init__(
        self,
        server: DVRServerSettings,
        settings: Settings,
        *,
        caches: CacheManager | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.server = server
        super().__init__(
            self.api_name,
            server.build_url(API_PATH),
            params={"apikey": server.api_key},
            cache=(caches or cache_manager).get_cache(self.cache_id),
            timeout=settings.http_timeout_seconds,
            proxies=settings.proxy_urls,
            transport=transport,
            rolling_buffer=settings.cache_rolling_buffer_seconds,
        )

    async def get_system_status(self) -> dict[str, Any]:
        data = await self.request("GET", "/system/status")
        if not isinstance(data, dict):
            raise IntegrationError(self.name, "/system/status", "Unexpected response")
        return data

    async def get_profiles(self) -> list[QualityProfile]:
        data = await self.get_rolling("/qualityProfile", ttl=3_600)
        return self._parse_list(QualityProfile, data, "/qualityProfile")

    async def get_root_folders(self) -> list[RootFolder]:
        data = await self.get_rolling("/rootfolder", ttl=3_600)
        return self._parse_list(RootFolder, data, "/rootfolder")

    async def get_tags(self) -> list[Tag]:
        data = await self.request("GET", "/tag")
        return self._parse_list(Tag, data, "/tag")

    async def create_tag(self, label: str) -> Tag:
        data = await self.post("/tag", {"label": label})
        try:
            return Tag.model_validate(data)
        except ValidationError as exc:
            raise IntegrationError(self.name, "/tag", "Unexpected response") from exc

    async def get_queue(self) -> list[QueueItemT]:
        """Return every record of the download queue, following pagination."""

        records: list[QueueItemT] = []
        page = 1
        while True:
            data = await self.request(
                "GET",
                "/queue",
                params={**self.queue_params, "page": page, "pageSize": QUEUE_PAGE_SIZE},
            )
            if not isinstance(data, dict):
                raise IntegrationError(self.name, "/queue", "Unexpected response")
            page_records = self._parse_list(
                self.queue_item_model, data.get("records") or [], "/queue"
            )
            records.extend(page_records)
            total = data.get("totalRecords")
            if not page_records:
                break
            if isinstance(total, int) and len(records) >= total:
                break
            if len(page_records) < QUEUE_PAGE_SIZE:
                break
            page += 1
        return records

    def _parse_list(
        self, model: type[ModelT], data: object, endpoint: str
    ) -> list[ModelT]:
        """Validate each record on its own, dropping the ones that do not fit."""

        if not isinstance(data, list):
            raise IntegrationError(self.name, endpoint, "Expected a JSON array")
        parsed: list[ModelT] = []
        for raw in data:
            try:
                parsed.append(model.model_validate(raw))
            except ValidationError as exc:
                logger.warning(
                    "[%s] Skipping malformed %s record from %s (id=%s): %s error(s)",
                    self.name,
                    endpoint,
                    self.server.display_name,
                    raw.get("id") if isinstance(raw, dict) else None,
                    exc.error_count(),
                )
        return parsed


class RadarrClient(ServarrClient[RadarrQueueItem]):
    cache_id = "radarr"
    api_name = "Radarr"
    queue_item_model = RadarrQueueItem
    queue_params = {"includeMovie": False}

    async def get_movies(self) -> list[RadarrMovie]:
        data = await self.request("GET", "/movie")
        return self._parse_list(RadarrMovie, data, "/movie")


class SonarrClient(ServarrClient[SonarrQueueItem]):
    cache_id = "sonarr"
    api_name = "Sonarr"
    queue_item_model = SonarrQueueItem
    queue_params = {"includeEpisode": True}

    async def get_series(self) -> list[SonarrSeries]:
        data = await self.request("GET", "/series")
        return self._parse_list(SonarrSeries, data, "/series")


ServiceName = Literal["radarr", "sonarr"]
ClientFactory = Callable[[DVRServerSettings], ServarrClient]


class ServarrClients:
    """Long-lived clients per configured server, used by the admin endpoints.

    Clients stay open so rolling cache refreshes can finish in the background.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        radarr_factory: ClientFactory | None = None,
        sonarr_factory: ClientFactory | None = None,
    ) -> None:
        self._settings = settings
        self._factories: dict[str, ClientFactory] = {
            "radarr": radarr_factory or (lambda server: RadarrClient(server, settings)),
            "sonarr": sonarr_factory or (lambda server: SonarrClient(server, settings)),
        }
        self._clients: dict[tuple[str, int], ServarrClient] = {}

    def servers(self, service: ServiceName) -> list[DVRServerSettings]:
        if service == "radarr":
            return list(self._settings.radarr_servers)
        if service == "sonarr":
            return list(self._settings.sonarr_servers)
        raise KeyError(f"Unknown service: {service}")

    def get(self, service: ServiceName, server_id: int) -> ServarrClient:
        key = (service, server_id)
        client = self._clients.get(key)
        if client is not None:
            return client
        for server in self.servers(service):
            if server.id == server_id:
                client = self._factories[service](server)
                self._clients[key] = client
                return client
        raise KeyError(f"Unknown {service} server: {server_id}")

    async def check(self, service: ServiceName) -> list[dict[str, Any]]:
        """Report reachability and version of every configured server."""

        async def _check(server: DVRServerSettings) -> dict[str, Any]:
            payload: dict[str, Any] = {
                "id": server.id,
                "name": server.display_name,
                "is4k": server.is_4k,
                "syncEnabled": server.sync_enabled,
            }
            try:
                status = await self.get(service, server.id).get_system_status()
            except IntegrationError as exc:
                logger.warning("Status check failed for %s: %s", server.display_name, exc)
                return {**payload, "online": False, "error": str(exc)}
            return {**payload, "online": True, "version": status.get("version")}

        return list(await asyncio.gather(*(_check(server) for server in self.servers(service))))

    async def aclose(self) -> None:
        clients = list(self._clients.values())
        self._clients.clear()
        for client in clients:
            await client.aclose()
