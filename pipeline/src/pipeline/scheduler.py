"""Fixed-interval job scheduler with an explicit stop token."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class ScheduledJob:
    name: str
    interval: float
    func: Callable[[], Awaitable[Any]]
    runs: int = 0
    failures: int = 0


class IntervalScheduler:
    """Runs each job immediately, then every ``interval`` seconds until stopped.

    Jobs are never preempted. When a run outlasts its interval the next run
    starts as soon as it completes, so one slow cycle delays the next one
    instead of overlapping with it.
    """

    def __init__(self, stop_event: asyncio.Event | None = None) -> None:
        self._stop = stop_event or asyncio.Event()
        self._jobs: dict[str, ScheduledJob] = {}

    @property
    def jobs(self) -> dict[str, ScheduledJob]:
        return dict(self._jobs)

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def add_job(self, name: str, interval: float, func: Callable[[], Awaitable[Any]]) -> ScheduledJob:
        if interval <= 0:
            raise ValueError(f"Interval for job '{name}' must be > 0, got {interval}")
        if name in self._jobs:
            raise ValueError(f"Job '{name}' is already scheduled")
        job = ScheduledJob(name=name, interval=interval, func=func)
        self._jobs[name] = job
        return job

    def stop(self) -> None:
        if not self._stop.is_set():
            logger.info("Scheduler stop requested")
        self._stop.set()

    async def run_job_once(self, name: str) -> Any:
        """Run one job to completion; failures are logged and return None."""
        job = self._jobs[name]
        job.runs += 1
        try:
            return await job.func()
        except Exception as exc:
            job.failures += 1
            logger.error("Job %s failed: %s", name, exc)
            return None

    async def _sleep_until_stopped(self, seconds: float) -> None:
        if seconds <= 0:
            return
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
        except TimeoutError:
            pass

    async def _loop(self, job: ScheduledJob) -> None:
        loop = asyncio.get_running_loop()
        while not self._stop.is_set():
            started = loop.time()
            await self.run_job_once(job.name)
            elapsed = loop.time() - started
            if elapsed > job.interval:
                logger.warning(
                    "Job %s took %.1fs, longer than its %.1fs interval; starting next run now",
                    job.name,
                    elapsed,
                    job.interval,
                )
            await self._sleep_until_stopped(job.interval - elapsed)

    async def run(self) -> None:
        if not self._jobs:
            raise ValueError("No jobs scheduled")
        for job in self._jobs.values():
            logger.info("Scheduling %s every %.0fs", job.name, job.interval)
        await asyncio.gather(*(self._loop(job) for job in self._jobs.values()))
        logger.info("Scheduler stopped")
