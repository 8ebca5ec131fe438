"""Periodic background jobs (library scans and download sync)."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Iterable

from ..utils import utcnow

logger = logging.getLogger(__name__)


def _never_running() -> bool:
    return False


def _no_cancel() -> None:
    return None


@dataclass(slots=True)
class ScheduledJob:
    id: str
    name: str
    interval_seconds: float
    run: Callable[[], Awaitable[None]]
    running: Callable[[], bool] = _never_running
    cancel: Callable[[], None] = _no_cancel
    next_run_at: datetime | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "intervalSeconds": self.interval_seconds,
            "running": self.running(),
            "nextExecutionTime": (
                self.next_run_at.isoformat() if self.next_run_at else None
            ),
        }


class JobScheduler:
    """Run each registered job on its own interval until stopped."""

    def __init__(
        self,
        jobs: Iterable[ScheduledJob],
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._jobs: dict[str, ScheduledJob] = {}
        for job in jobs:
            if job.id in self._jobs:
                raise ValueError(f"Duplicate job id: {job.id}")
            self._jobs[job.id] = job
        self._sleep = sleep
        self._loops: dict[str, asyncio.Task[None]] = {}
        self._manual_runs: set[asyncio.Task[None]] = set()

    @property
    def started(self) -> bool:
        return bool(self._loops)

    async def start(self) -> None:
        for job in self._jobs.values():
            if job.id in self._loops:
                continue
            self._loops[job.id] = asyncio.create_task(self._job_loop(job))
            logger.info(
                "Scheduled job %s every %s seconds", job.name, job.interval_seconds
            )

    async def stop(self) -> None:
        """Cancel every loop and manual run, and signal running jobs to stop."""

        for job in self._jobs.values():
            if job.running():
                job.cancel()
        tasks = [*self._loops.values(), *self._manual_runs]
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError):
                await task
        self._loops.clear()
        self._manual_runs.clear()

    def list_jobs(self) -> list[ScheduledJob]:
        return list(self._jobs.values())

    def get_job(self, job_id: str) -> ScheduledJob:
        try:
            return self._jobs[job_id]
        except KeyError as exc:
            raise KeyError(f"Unknown job: {job_id}") from exc

    def run_job(self, job_id: str) -> asyncio.Task[None]:
        """Start ``job_id`` now in the background and return its task."""

        job = self.get_job(job_id)
        logger.info("Starting job %s manually", job.name)
        task = asyncio.create_task(self._execute(job))
        self._manual_runs.add(task)
        task.add_done_callback(self._manual_runs.discard)
        return task

    def cancel_job(self, job_id: str) -> ScheduledJob:
        job = self.get_job(job_id)
        logger.info("Cancelling job %s", job.name)
        job.cancel()
        return job

    async def _job_loop(self, job: ScheduledJob) -> None:
        while True:
            job.next_run_at = utcnow() + timedelta(seconds=job.interval_seconds)
            await self._sleep(job.interval_seconds)
            await self._execute(job)

    async def _execute(self, job: ScheduledJob) -> None:
        try:
            await job.run()
        except Exception as exc:
            logger.exception("Job %s failed: %s", job.name, exc)
