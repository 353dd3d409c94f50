"""Interval scheduler with a per-key overlap guard."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from ai_signals.utils.logging import get_logger

_logger = get_logger("ai_signals.scheduler")


@dataclass(slots=True)
class ScheduledJob:
    key: str
    interval: float
    func: Callable[[], Awaitable[Any]]
    last_run: float | None = None
    last_run_at: datetime | None = None
    task: asyncio.Task[None] | None = None
    runs: int = 0
    failures: int = 0
    skipped: int = 0

    @property
    def running(self) -> bool:
        return self.task is not None and not self.task.done()

    def is_due(self, now: float) -> bool:
        return self.last_run is None or now - self.last_run >= self.interval


class Scheduler:
    """Polls a list of interval jobs from one driver loop.

    Each job runs as its own task, so different keys run concurrently. A
    job whose previous run is still in flight when it comes due again is
    skipped for that interval.
    """

    def __init__(
        self,
        *,
        tick: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._tick = tick
        self._clock = clock
        self._sleep = sleep
        self._jobs: dict[str, ScheduledJob] = {}
        self._running = False

    @property
    def jobs(self) -> list[ScheduledJob]:
        return list(self._jobs.values())

    def add_job(
        self,
        key: str,
        interval: float,
        func: Callable[[], Awaitable[Any]],
        *,
        run_immediately: bool = True,
    ) -> ScheduledJob:
        if key in self._jobs:
            raise ValueError(f"duplicate_job_key: {key}")
        if interval <= 0:
            raise ValueError("interval must be > 0")
        job = ScheduledJob(key=key, interval=interval, func=func)
        if not run_immediately:
            job.last_run = self._clock()
        self._jobs[key] = job
        return job

    def run_pending(self) -> list[str]:
        """Start every due job that is not already running; returns started keys."""
        now = self._clock()
        started: list[str] = []
        for job in self._jobs.values():
            if not job.is_due(now):
                continue
            if job.running:
                job.last_run = now
                job.skipped += 1
                _logger.warning("job_overlap_skipped", job=job.key)
                continue
            job.last_run = now
            job.last_run_at = datetime.now(UTC)
            job.task = asyncio.create_task(self._run_job(job), name=f"job:{job.key}")
            started.append(job.key)
        return started

    async def run_forever(self) -> None:
        self._running = True
        _logger.info("scheduler_started", jobs=[job.key for job in self._jobs.values()])
        try:
            while self._running:
                self.run_pending()
                await self._sleep(self._tick)
        finally:
            await self.wait_idle()
            _logger.info("scheduler_stopped")

    def stop(self) -> None:
        self._running = False

    async def wait_idle(self) -> None:
        """Wait for in-flight job runs to finish."""
        tasks = [job.task for job in self._jobs.values() if job.task is not None and job.running]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def status(self) -> dict[str, dict[str, Any]]:
        return {
            job.key: {
                "interval_s": job.interval,
                "last_run_at": job.last_run_at.isoformat() if job.last_run_at else None,
                "running": job.running,
                "runs": job.runs,
                "failures": job.failures,
                "skipped": job.skipped,
            }
            for job in self._jobs.values()
        }

    async def _run_job(self, job: ScheduledJob) -> None:
        started = time.perf_counter()
        try:
            await job.func()
        except Exception:  # noqa: BLE001
            job.failures += 1
            _logger.exception("job_failed", job=job.key)
            return
        job.runs += 1
        _logger.debug(
            "job_completed",
            job=job.key,
            elapsed_ms=round((time.perf_counter() - started) * 1000, 2),
        )
