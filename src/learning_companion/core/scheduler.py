"""
Ticker for interval-driven background jobs.

Cache maintenance, batch draining, weekly bundle generation, inactivity
cleanup and queued replay all run as named periodic jobs that are cancelled
together on shutdown.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

JobFn = Callable[[], Awaitable[object]]


@dataclass
class TickerJob:
    """A periodic job definition."""

    name: str
    interval_s: float
    func: JobFn
    run_immediately: bool = False
    runs: int = 0
    failures: int = 0


class Ticker:
    """Runs registered jobs on fixed intervals until stopped."""

    def __init__(self) -> None:
        self._jobs: Dict[str, TickerJob] = {}
        self._tasks: Dict[str, "asyncio.Task[None]"] = {}
        self._running = False

    def add_job(
        self,
        name: str,
        interval_s: float,
        func: JobFn,
        run_immediately: bool = False,
    ) -> TickerJob:
        """Register a job. Jobs added while running start right away."""
        if name in self._jobs:
            raise ValueError(f"Job already registered: {name}")
        if interval_s <= 0:
            raise ValueError(f"Job interval must be positive: {interval_s}")

        job = TickerJob(name, interval_s, func, run_immediately)
        self._jobs[name] = job
        if self._running:
            self._tasks[name] = asyncio.create_task(self._loop(job), name=name)
        return job

    @property
    def running(self) -> bool:
        return self._running

    def jobs(self) -> List[TickerJob]:
        return list(self._jobs.values())

    def get_job(self, name: str) -> Optional[TickerJob]:
        return self._jobs.get(name)

    def start(self) -> None:
        """Start every registered job. Requires a running event loop."""
        if self._running:
            return
        self._running = True
        for job in self._jobs.values():
            self._tasks[job.name] = asyncio.create_task(self._loop(job), name=job.name)
        logger.info(f"Ticker started with {len(self._jobs)} jobs")

    async def stop(self) -> None:
        """Cancel all jobs and wait for them to unwind."""
        if not self._running:
            return
        self._running = False
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Ticker stopped")

    async def run_now(self, name: str) -> None:
        """Run a job once, outside its schedule."""
        job = self._jobs[name]
        await self._run_once(job)

    async def _loop(self, job: TickerJob) -> None:
        if job.run_immediately:
            await self._run_once(job)
        while True:
            await asyncio.sleep(job.interval_s)
            await self._run_once(job)

    async def _run_once(self, job: TickerJob) -> None:
        try:
            await job.func()
            job.runs += 1
        except asyncio.CancelledError:
            raise
        except Exception as e:
            job.failures += 1
            logger.error(f"Ticker job '{job.name}' failed: {e}")
