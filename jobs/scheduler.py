"""
Nightly scheduler - APScheduler cron trigger that enqueues the nightly research job.

The scheduler only enqueues; the JobQueue worker runs the job, so a manual trigger and
a scheduled run never execute concurrently.
"""

from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from db.store import utc_now
from utils.logger import get_logger

from .queue import JobQueue

logger = get_logger(__name__)

NIGHTLY_JOB_ID = "nightly-research"
NIGHTLY_JOB_NAME = "collect-research"


class NightlyScheduler:
    def __init__(
        self,
        queue: JobQueue,
        cron: str = "0 2 * * *",
        scheduler: AsyncIOScheduler | None = None,
    ):
        self.queue = queue
        self.cron = cron
        self.scheduler = scheduler or AsyncIOScheduler(timezone="UTC")

    def start(self) -> None:
        """Start the underlying scheduler. Must be called with an event loop running."""
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("Nightly scheduler started")

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Nightly scheduler stopped")

    async def trigger(self) -> dict[str, Any]:
        job = await self.queue.enqueue({"date": utc_now().isoformat()}, name=NIGHTLY_JOB_NAME)
        return job.to_dict()

    def schedule(self) -> dict[str, Any]:
        """Register (or replace) the recurring nightly run."""
        self.start()
        trigger = CronTrigger.from_crontab(self.cron, timezone="UTC")
        self.scheduler.add_job(
            self.trigger,
            trigger,
            id=NIGHTLY_JOB_ID,
            name=NIGHTLY_JOB_NAME,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.info(
            "Nightly research agent scheduled",
            extra={"extra_fields": {"cron": self.cron}},
        )
        return self.status()

    def status(self) -> dict[str, Any]:
        job = self.scheduler.get_job(NIGHTLY_JOB_ID)
        next_run = getattr(job, "next_run_time", None) if job else None
        return {
            "scheduled": job is not None,
            "cron": self.cron,
            "next_run": next_run.isoformat() if next_run else None,
        }
