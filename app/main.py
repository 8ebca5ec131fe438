"""Entry point for the FastAPI-powered availability service."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException

from .config import settings
from .database import Database
from .models import MediaType, TagCreate
from .services.async_lock import KeyedLock
from .services.availability import AvailabilityReconciler
from .services.cache import CacheManager, cache_manager
from .services.download_tracker import DownloadTracker
from .services.external_api import IntegrationError
from .services.radarr_scanner import RadarrScanner
from .services.scanner import BaseScanner
from .services.scheduler import JobScheduler, ScheduledJob
from .services.servarr import ServarrClient, ServarrClients, ServiceName
from .services.sonarr_scanner import SonarrScanner
from .services.tmdb import TMDBClient

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app: FastAPI


def build_jobs(
    radarr_scanner: RadarrScanner,
    sonarr_scanner: SonarrScanner,
    download_tracker: DownloadTracker,
) -> list[ScheduledJob]:
    return [
        ScheduledJob(
            id="radarr-scan",
            name="Radarr Scan",
            interval_seconds=settings.radarr_scan_interval_seconds,
            run=radarr_scanner.run,
            running=lambda: radarr_scanner.running,
            cancel=radarr_scanner.cancel,
        ),
        ScheduledJob(
            id="sonarr-scan",
            name="Sonarr Scan",
            interval_seconds=settings.sonarr_scan_interval_seconds,
            run=sonarr_scanner.run,
            running=lambda: sonarr_scanner.running,
            cancel=sonarr_scanner.cancel,
        ),
        ScheduledJob(
            id="download-sync",
            name="Download Sync",
            interval_seconds=settings.download_sync_interval_seconds,
            run=download_tracker.update_downloads,
        ),
    ]


@asynccontextmanager
async def lifespan(_: FastAPI):
    exit_stack = AsyncExitStack()
    database = Database(settings.database_url)
    await database.create_all()

    tmdb = await exit_stack.enter_async_context(TMDBClient(settings))
    reconciler = AvailabilityReconciler(database, KeyedLock())
    radarr_scanner = RadarrScanner(settings, reconciler, tmdb)
    sonarr_scanner = SonarrScanner(settings, reconciler, tmdb)
    download_tracker = DownloadTracker(settings)
    scheduler = JobScheduler(build_jobs(radarr_scanner, sonarr_scanner, download_tracker))
    servarr_clients = ServarrClients(settings)

    app.state.database = database
    app.state.reconciler = reconciler
    app.state.scanners = {"radarr": radarr_scanner, "sonarr": sonarr_scanner}
    app.state.download_tracker = download_tracker
    app.state.scheduler = scheduler
    app.state.cache_manager = cache_manager
    app.state.servarr_clients = servarr_clients
    await scheduler.start()

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await scheduler.stop()
        await servarr_clients.aclose()
        await exit_stack.aclose()
        await database.dispose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Media availability sync for Radarr and Sonarr",
        version="1.0.0",
        lifespan=lifespan,
    )
    register_routes(fastapi_app)
    return fastapi_app


def get_scheduler(app: FastAPI) -> JobScheduler:
    scheduler = getattr(app.state, "scheduler", None)
    if scheduler is None:
        raise RuntimeError("Job scheduler not initialised")
    return scheduler


def get_reconciler(app: FastAPI) -> AvailabilityReconciler:
    reconciler = getattr(app.state, "reconciler", None)
    if reconciler is None:
        raise RuntimeError("Availability reconciler not initialised")
    return reconciler


def get_download_tracker(app: FastAPI) -> DownloadTracker:
    tracker = getattr(app.state, "download_tracker", None)
    if tracker is None:
        raise RuntimeError("Download tracker not initialised")
    return tracker


def get_scanner(app: FastAPI, service: str) -> BaseScanner:
    scanners = getattr(app.state, "scanners", None)
    if scanners is None:
        raise RuntimeError("Scanners not initialised")
    try:
        return scanners[service]
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=f"Unknown scanner: {service}") from exc


def get_cache_manager(app: FastAPI) -> CacheManager:
    return getattr(app.state, "cache_manager", None) or cache_manager


def get_servarr_clients(app: FastAPI) -> ServarrClients:
    clients = getattr(app.state, "servarr_clients", None)
    if clients is None:
        raise RuntimeError("Servarr clients not initialised")
    return clients


def get_servarr_client(app: FastAPI, service: ServiceName, server_id: int) -> ServarrClient:
    try:
        return get_servarr_clients(app).get(service, server_id)
    except KeyError as exc:
        raise HTTPException(
            status_code=404, detail=f"Unknown {service} server: {server_id}"
        ) from exc


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/jobs")
    async def list_jobs() -> list[dict[str, Any]]:
        scheduler = get_scheduler(fastapi_app)
        return [job.to_payload() for job in scheduler.list_jobs()]

    @fastapi_app.post("/jobs/{job_id}/run", status_code=202)
    async def run_job(job_id: str) -> dict[str, Any]:
        scheduler = get_scheduler(fastapi_app)
        try:
            scheduler.run_job(job_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=f"Unknown job: {job_id}") from exc
        return scheduler.get_job(job_id).to_payload()

    @fastapi_app.post("/jobs/{job_id}/cancel")
    async def cancel_job(job_id: str) -> dict[str, Any]:
        scheduler = get_scheduler(fastapi_app)
        try:
            job = scheduler.cancel_job(job_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=f"Unknown job: {job_id}") from exc
        return job.to_payload()

    @fastapi_app.get("/scans/{service}")
    async def scan_status(service: str) -> dict[str, Any]:
        return get_scanner(fastapi_app, service).status().to_payload()

    @fastapi_app.get("/cache")
    async def list_caches() -> list[dict[str, Any]]:
        caches = get_cache_manager(fastapi_app).get_all_caches()
        return [
            {"id": cache.id, "name": cache.name, "stats": cache.stats().to_payload()}
            for cache in caches.values()
        ]

    @fastapi_app.post("/cache/{cache_id}/flush", status_code=204)
    async def flush_cache(cache_id: str) -> None:
        try:
            cache = get_cache_manager(fastapi_app).get_cache(cache_id)  # type: ignore[arg-type]
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=f"Unknown cache: {cache_id}") from exc
        cache.flush()

    @fastapi_app.get("/servers/{service}")
    async def server_status(service: ServiceName) -> list[dict[str, Any]]:
        return await get_servarr_clients(fastapi_app).check(service)

    @fastapi_app.get("/servers/{service}/{server_id}")
    async def server_options(service: ServiceName, server_id: int) -> dict[str, Any]:
        client = get_servarr_client(fastapi_app, service, server_id)
        try:
            profiles = await client.get_profiles()
            folders = await client.get_root_folders()
            tags = await client.get_tags()
        except IntegrationError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return {
            "profiles": [profile.model_dump(by_alias=True) for profile in profiles],
            "rootFolders": [folder.model_dump(by_alias=True) for folder in folders],
            "tags": [tag.model_dump(by_alias=True) for tag in tags],
        }

    @fastapi_app.post("/servers/{service}/{server_id}/tags", status_code=201)
    async def server_create_tag(
        service: ServiceName, server_id: int, body: TagCreate
    ) -> dict[str, Any]:
        client = get_servarr_client(fastapi_app, service, server_id)
        try:
            tag = await client.create_tag(body.label)
        except IntegrationError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return tag.model_dump(by_alias=True)

    @fastapi_app.get("/downloads/{media_type}/{server_id}/{external_id}")
    async def download_progress(
        media_type: MediaType, server_id: int, external_id: int
    ) -> list[dict[str, Any]]:
        tracker = get_download_tracker(fastapi_app)
        return [
            item.to_payload()
            for item in tracker.get_progress(media_type, server_id, external_id)
        ]

    @fastapi_app.get("/media/{media_type}/{tmdb_id}")
    async def media_status(media_type: MediaType, tmdb_id: int) -> dict[str, Any]:
        record = await get_reconciler(fastapi_app).get_media(tmdb_id, media_type)
        if record is None:
            raise HTTPException(status_code=404, detail="Media not found")
        return record.to_payload()

    @fastapi_app.post("/media/{media_type}/{tmdb_id}/available")
    async def media_available(
        media_type: MediaType, tmdb_id: int, is4k: bool = False
    ) -> dict[str, Any]:
        try:
            record = await get_reconciler(fastapi_app).mark_available(
                tmdb_id, media_type, is_4k=is4k
            )
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="Media not found") from exc
        return record.to_payload()

    @fastapi_app.post("/media/{media_type}/{tmdb_id}/deleted")
    async def media_deleted(
        media_type: MediaType, tmdb_id: int, is4k: bool = False
    ) -> dict[str, Any]:
        try:
            record = await get_reconciler(fastapi_app).mark_deleted(
                tmdb_id, media_type, is_4k=is4k
            )
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="Media not found") from exc
        return record.to_payload()


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
