"""
Scheduler infrastructure for running generation jobs.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger
from croniter import croniter


logger = logging.getLogger(__name__)


class Scheduler:
    """Async task scheduler wrapper around APScheduler.

    Jobs are in-memory: a generation job is a bound coroutine and is
    re-registered on every start-up.
    """

    def __init__(self, timezone: str = "UTC"):
        job_defaults = {
            "coalesce": True,
            # one generation at a time; the run controller enforces it too
            "max_instances": 1,
            "misfire_grace_time": 300,  # seconds
        }

        self.timezone = timezone
        self._scheduler = AsyncIOScheduler(job_defaults=job_defaults, timezone=timezone)
        self._started = False

    @property
    def running(self) -> bool:
        return self._started

    async def start(self) -> None:
        """Start the scheduler."""
        if not self._started:
            self._scheduler.start()
            self._started = True
            logger.info("Scheduler started")

    async def stop(self) -> None:
        """Stop the scheduler."""
        if self._started:
            self._scheduler.shutdown(wait=False)
            self._started = False
            logger.info("Scheduler stopped")

    def enqueue(self, func: Callable, job_id: str, **kwargs) -> None:
        """Run ``func`` once, as soon as the event loop gets to it."""
        self._scheduler.add_job(
            func,
            trigger=DateTrigger(run_date=datetime.now(timezone.utc)),
            id=job_id,
            replace_existing=True,
            **kwargs,
        )
        logger.info(f"Enqueued one-off job: {job_id}")

    def add_interval_job(self, func: Callable, minutes: float, job_id: str, **kwargs) -> None:
        """Run ``func`` every ``minutes`` minutes."""
        if not minutes or minutes <= 0:
            raise ValueError(f"Interval must be a positive number of minutes, got {minutes!r}")
        self._scheduler.add_job(
            func,
            trigger=IntervalTrigger(minutes=minutes, timezone=self.timezone),
            id=job_id,
            replace_existing=True,
            **kwargs,
        )
        logger.info(f"Scheduled {job_id} every {minutes} minutes")

    def add_cron_job(self, func: Callable, cron_expression: str, job_id: str, **kwargs) -> None:
        """Run ``func`` on a five-field crontab schedule."""
        if not validate_cron_expression(cron_expression):
            raise ValueError(f"Invalid cron expression: {cron_expression}")
        self._scheduler.add_job(
            func,
            trigger=CronTrigger.from_crontab(cron_expression, timezone=self.timezone),
            id=job_id,
            replace_existing=True,
            **kwargs,
        )
        logger.info(f"Scheduled {job_id} on cron '{cron_expression}'")

    def remove_job(self, job_id: str) -> bool:
        """Remove a job by ID. Returns False when no such job is pending."""
        try:
            self._scheduler.remove_job(job_id)
        except JobLookupError:
            return False
        logger.debug(f"Removed job {job_id}")
        return True

    def has_job(self, job_id: str) -> bool:
        return self._scheduler.get_job(job_id) is not None

    def list_jobs(self) -> Dict[str, Dict[str, Any]]:
        return {
            job.id: {
                "trigger": str(job.trigger),
                "next_run": getattr(job, "next_run_time", None),
            }
            for job in self._scheduler.get_jobs()
        }


def validate_cron_expression(cron_expression: str) -> bool:
    """True if croniter accepts the expression and it has exactly five fields."""
    if len(cron_expression.split()) != 5:
        return False
    try:
        croniter(cron_expression)
    except (ValueError, KeyError) as e:
        logger.debug(f"Rejected cron expression '{cron_expression}': {e}")
        return False
    return True
