"""Generic scan engine shared by the DVR scanners.

A scan run walks a list of externally sourced items in fixed-size bundles.
Every item of a bundle is processed concurrently, then the loop sleeps before
the next bundle so upstream services are not hammered. Each run gets a fresh
session ID; starting a new run (or calling :meth:`BaseScanner.cancel`) makes
the previous loop abort at its next bundle boundary.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Sequence, TypeVar

from ..config import DVRServerSettings, Settings
from ..utils import unique_servers
from .availability import AvailabilityReconciler

logger = logging.getLogger(__name__)

T = TypeVar("T")

BUNDLE_SIZE = 20
UPDATE_RATE = 4.0


class ScanAborted(Exception):
    """Raised inside the bundle loop when its session is no longer current."""


@dataclass(frozen=True)
class ScanStatus:
    """Read-only view of a scanner's progress."""

    running: bool
    progress: int
    total: int
    session_id: str | None = None
    current_server: DVRServerSettings | None = None
    servers: tuple[DVRServerSettings, ...] = field(default_factory=tuple)

    def to_payload(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "progress": self.progress,
            "total": self.total,
            "currentServer": (
                _server_payload(self.current_server) if self.current_server else None
            ),
            "servers": [_server_payload(server) for server in self.servers],
        }


def _server_payload(server: DVRServerSettings) -> dict[str, Any]:
    return {
        "id": server.id,
        "name": server.display_name,
        "is4k": server.is_4k,
        "syncEnabled": server.sync_enabled,
    }


class BaseScanner(Generic[T]):
    """Session lifecycle and the cancellable bundle loop."""

    def __init__(
        self,
        name: str,
        settings: Settings,
        reconciler: AvailabilityReconciler,
        *,
        bundle_size: int | None = None,
        update_rate: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.name = name
        self._settings = settings
        self._reconciler = reconciler
        self.bundle_size = bundle_size or BUNDLE_SIZE
        self.update_rate = UPDATE_RATE if update_rate is None else update_rate
        self._sleep = sleep
        self._session_id: str | None = None
        self._running = False
        self._progress = 0
        self._items: Sequence[T] = ()
        self._servers: tuple[DVRServerSettings, ...] = ()
        self._current_server: DVRServerSettings | None = None
        self.enable_4k_movie = False
        self.enable_4k_show = False

    @property
    def running(self) -> bool:
        return self._running

    def status(self) -> ScanStatus:
        return ScanStatus(
            running=self._running,
            progress=self._progress,
            total=len(self._items),
            session_id=self._session_id,
            current_server=self._current_server,
            servers=self._servers,
        )

    def start_run(self) -> str:
        """Open a new session, superseding any run still in progress."""

        session_id = uuid.uuid4().hex
        self._session_id = session_id
        self._progress = 0
        self._items = ()
        self.log("Scan starting", logging.INFO, session_id=session_id)

        self.enable_4k_movie = self._settings.enable_4k_movie
        if self.enable_4k_movie:
            self.log(
                "At least one 4K Radarr server was detected. "
                "4K movie detection is now enabled",
                logging.INFO,
            )
        self.enable_4k_show = self._settings.enable_4k_show
        if self.enable_4k_show:
            self.log(
                "At least one 4K Sonarr server was detected. "
                "4K series detection is now enabled",
                logging.INFO,
            )

        self._running = True
        return session_id

    def end_run(self, session_id: str) -> None:
        """Close ``session_id``; a newer session keeps the running flag."""

        if self._session_id == session_id:
            self._running = False
            self._current_server = None

    def cancel(self) -> None:
        self._running = False

    def _ensure_active(self, session_id: str) -> None:
        if not self._running:
            raise ScanAborted("Sync was aborted.")
        if self._session_id != session_id:
            raise ScanAborted("New session was started. Old session aborted.")

    async def loop(
        self,
        process_item: Callable[[T], Awaitable[None]],
        items: Sequence[T],
        *,
        session_id: str,
        start: int = 0,
        end: int | None = None,
    ) -> None:
        """Drive ``process_item`` over ``items`` one bundle at a time."""

        end = start + self.bundle_size if end is None else end
        self._ensure_active(session_id)
        self._items = items

        while True:
            self._ensure_active(session_id)
            if start >= len(items):
                return
            self._progress = start
            await self._process_bundle(process_item, items[start:end])
            start += self.bundle_size
            end += self.bundle_size
            if start >= len(items):
                return
            await self._sleep(self.update_rate)

    async def _process_bundle(
        self,
        process_item: Callable[[T], Awaitable[None]],
        bundle: Sequence[T],
    ) -> None:
        results = await asyncio.gather(
            *(process_item(item) for item in bundle), return_exceptions=True
        )
        for result in results:
            if isinstance(result, Exception):
                self.log(
                    "Unhandled error while processing item",
                    logging.ERROR,
                    error=str(result),
                    exc_info=result,
                )

    def log(
        self,
        message: str,
        level: int = logging.DEBUG,
        *,
        exc_info: BaseException | bool | None = None,
        **context: Any,
    ) -> None:
        if context:
            details = ", ".join(f"{key}={value}" for key, value in context.items())
            logger.log(level, "[%s] %s (%s)", self.name, message, details, exc_info=exc_info)
        else:
            logger.log(level, "[%s] %s", self.name, message, exc_info=exc_info)


class ServerScanner(BaseScanner[T], ABC):
    """Scanner whose items come from a list of configured DVR servers."""

    service_name: str

    @abstractmethod
    def configured_servers(self) -> list[DVRServerSettings]:
        """Return the ordered server list for this service."""

    @abstractmethod
    async def fetch_items(self, server: DVRServerSettings) -> Sequence[T]:
        """Load the full item list from one server."""

    @abstractmethod
    async def process_item(self, server: DVRServerSettings, item: T) -> None:
        """Reconcile a single item; must log and swallow its own failures."""

    async def run(self) -> None:
        session_id = self.start_run()
        try:
            self._servers = tuple(unique_servers(self.configured_servers()))

            for server in self._servers:
                self._ensure_active(session_id)
                self._current_server = server
                if not server.sync_enabled:
                    self.log(
                        f"Sync not enabled. Skipping {self.service_name} server: "
                        f"{server.display_name}"
                    )
                    continue

                self.log(
                    f"Beginning to process {self.service_name} server: "
                    f"{server.display_name}",
                    logging.INFO,
                )
                items = await self.fetch_items(server)

                async def _process(item: T, server: DVRServerSettings = server) -> None:
                    await self.process_item(server, item)

                await self.loop(_process, items, session_id=session_id)

            self.log(f"{self.service_name} scan complete", logging.INFO)
        except ScanAborted as exc:
            self.log("Scan interrupted", logging.INFO, reason=str(exc))
        except Exception as exc:
            self.log("Scan interrupted", logging.ERROR, error=str(exc), exc_info=True)
        finally:
            self.end_run(session_id)
