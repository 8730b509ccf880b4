"""
Background Jobs
===============

Wrapper around APScheduler for the periodic jobs of the mirror:
SLA check, warmup drain and incremental table sync.
"""

from typing import Awaitable, Callable, Dict, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from ticket_mirror.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

JobFunc = Callable[[], Awaitable[object]]


class JobScheduler:
    """
    Manages the lifecycle of the scheduler and its interval jobs.

    Jobs are registered with ``add_interval_job`` before ``start``; every
    job runs at most once at a time.
    """

    def __init__(self):
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._jobs: Dict[str, tuple] = {}
        self._running = False

    def add_interval_job(self, job_id: str, func: JobFunc, seconds: int, name: Optional[str] = None) -> None:
        """Register ``func`` to run every ``seconds``."""
        self._jobs[job_id] = (func, seconds, name or job_id)
        if self._scheduler is not None:
            self._schedule(job_id)

    def _schedule(self, job_id: str) -> None:
        func, seconds, name = self._jobs[job_id]
        self._scheduler.add_job(
            self._guarded(job_id, func),
            "interval",
            seconds=seconds,
            id=job_id,
            name=name,
            misfire_grace_time=60,
            max_instances=1,
            replace_existing=True
        )

    @staticmethod
    def _guarded(job_id: str, func: JobFunc) -> JobFunc:
        async def run() -> None:
            try:
                await func()
            except Exception:
                # Keep the job scheduled; the next run retries.
                logger.exception("Background job failed", extra={"job_id": job_id})
        return run

    async def start(self) -> None:
        """Start the scheduler with every registered job."""
        if self._running:
            logger.warning("Job scheduler already running")
            return

        self._scheduler = AsyncIOScheduler()
        for job_id in self._jobs:
            self._schedule(job_id)

        self._scheduler.start()
        self._running = True

        logger.info(
            "Job scheduler started",
            extra={"jobs": {job_id: job[1] for job_id, job in self._jobs.items()}}
        )

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

        self._running = False
        logger.info("Job scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def job_ids(self) -> List[str]:
        return list(self._jobs)
