"""
Recurring background jobs.

The host application owns a Scheduler, registers interval jobs on it and
starts/stops it explicitly. Nothing runs on import. Tests call ``run_job``
to execute exactly one pass deterministically.

All jobs share the process's event loop, so sweeps run on a single
timeline. Running the same sweep in several processes at once needs an
external lock.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class ScheduledJob:
    """A coroutine function run every ``interval_seconds``."""

    name: str
    interval_seconds: float
    func: Callable[[], Awaitable[Any]]
    run_on_start: bool = False
    runs: int = 0
    consecutive_failures: int = 0
    last_run_at: Optional[datetime] = None
    last_error: Optional[str] = None
    last_result: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "interval_seconds": self.interval_seconds,
            "runs": self.runs,
            "consecutive_failures": self.consecutive_failures,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_error": self.last_error,
        }


class Scheduler:
    """Runs registered jobs as asyncio tasks until stopped."""

    def __init__(self):
        self._jobs: Dict[str, ScheduledJob] = {}
        self._tasks: List[asyncio.Task] = []
        self._stopping = asyncio.Event()

    def add_job(
        self,
        name: str,
        interval_seconds: float,
        func: Callable[[], Awaitable[Any]],
        run_on_start: bool = False,
    ) -> ScheduledJob:
        if name in self._jobs:
            raise ValueError(f"Job already registered: {name}")
        if interval_seconds <= 0:
            raise ValueError(f"Invalid interval for {name}: {interval_seconds}")

        job = ScheduledJob(name, interval_seconds, func, run_on_start)
        self._jobs[name] = job
        return job

    @property
    def jobs(self) -> List[ScheduledJob]:
        return list(self._jobs.values())

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    async def run_job(self, name: str) -> Any:
        """Execute one pass of a job. Failures are recorded, not raised."""
        job = self._jobs[name]
        job.last_run_at = datetime.now(timezone.utc)
        job.runs += 1
        try:
            job.last_result = await job.func()
        except Exception as e:
            job.consecutive_failures += 1
            job.last_error = f"{type(e).__name__}: {e}"
            logger.exception(f"Scheduled job '{name}' failed ({job.consecutive_failures} in a row)")
            return None

        job.consecutive_failures = 0
        job.last_error = None
        return job.last_result

    async def _loop(self, job: ScheduledJob) -> None:
        if job.run_on_start:
            await self.run_job(job.name)

        while not self._stopping.is_set():
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=job.interval_seconds)
            except asyncio.TimeoutError:
                await self.run_job(job.name)

    def start(self) -> None:
        if self._tasks:
            return
        self._stopping.clear()
        for job in self._jobs.values():
            self._tasks.append(asyncio.create_task(self._loop(job), name=f"job:{job.name}"))
        logger.info(f"Scheduler started with {len(self._tasks)} jobs")

    async def stop(self) -> None:
        if not self._tasks:
            return
        self._stopping.set()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Scheduler stopped")
