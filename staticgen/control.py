"""
Run control: start, cancel and observe generation runs.

Starting is guarded by two separate records in the state store: a short-lived
start lock that serialises the start transition itself, and the running flag
that marks a run as active until the generator clears it.
"""

from __future__ import annotations

import logging
import math
import time
import uuid
from typing import Any, Awaitable, Callable, Dict, Optional

from .cache import PageCache
from .config import Settings
from .errors import AlreadyRunningError, ConfigError
from .infra.scheduler import Scheduler
from .infra.state import StateStore
from .interfaces import ContentSource, ProgressSink
from .models import RunState


logger = logging.getLogger(__name__)

LOCK_KEY = "start_lock"
RUNNING_KEY = "running"
CANCEL_KEY = "cancel_requested"
STATE_KEY = "run_state"
ERROR_NOTIFICATION_KEY = "error_notification"

RUN_JOB_ID = "staticgen-run"
SCHEDULE_JOB_ID = "staticgen-schedule"
RUNNING_TTL = 3600

TRIGGER_STATUSES = ("publish", "trash", "draft", "private")

Job = Callable[[], Awaitable[Any]]


class RunController:
    """Owns the run state machine shared by the CLI, the scheduler and the generator."""

    def __init__(
        self,
        settings: Settings,
        state: StateStore,
        log: ProgressSink,
        scheduler: Scheduler,
        job: Job,
        cache: Optional[PageCache] = None,
        source: Optional[ContentSource] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.state = state
        self.log = log
        self.scheduler = scheduler
        self.job = job
        self.cache = cache
        self.source = source
        self._clock = clock

    # ---------------------------------------------- #
    # Start lock
    async def _acquire_lock(self) -> Dict[str, Any]:
        lock = {"value": str(uuid.uuid4()), "time": self._clock()}
        if await self.state.add(LOCK_KEY, lock):
            return lock

        current = await self.state.get(LOCK_KEY)
        if current is not None:
            started = current.get("time") if isinstance(current, dict) else None
            age = self._clock() - started if isinstance(started, (int, float)) else math.inf
            if age < self.settings.run.lock_timeout:
                raise AlreadyRunningError("Another run is being started")
            logger.warning(f"Reclaiming stale start lock ({age:.0f}s old)")
            await self.state.delete_if(LOCK_KEY, current)

        if not await self.state.add(LOCK_KEY, lock):
            raise AlreadyRunningError("Another run is being started")
        return lock

    # ---------------------------------------------- #
    # Public API
    async def is_running(self) -> bool:
        return bool(await self.state.get(RUNNING_KEY))

    async def should_stop(self) -> bool:
        return bool(await self.state.get(CANCEL_KEY))

    async def start(self) -> None:
        """Mark a run active and enqueue it. Raises AlreadyRunningError."""
        lock = await self._acquire_lock()
        try:
            if await self.is_running():
                raise AlreadyRunningError("A generation run is already in progress")

            self.scheduler.remove_job(RUN_JOB_ID)
            await self.state.delete(CANCEL_KEY)
            self.log.clear_progress()
            self.log.clear_logs()
            await self.state.set(RUNNING_KEY, {"started": self._clock()}, ttl=RUNNING_TTL)
            await self.state.set(STATE_KEY, RunState.RUNNING.value)
            self.scheduler.enqueue(self.job, RUN_JOB_ID)
            logger.info("Generation run enqueued")
        finally:
            await self.state.delete_if(LOCK_KEY, lock)

    async def cancel(self) -> None:
        await self.state.set(CANCEL_KEY, True, ttl=RUNNING_TTL)
        self.scheduler.remove_job(RUN_JOB_ID)
        await self.state.delete(RUNNING_KEY)
        self.log.clear_logs()
        self.log.clear_progress()
        await self.state.set(STATE_KEY, RunState.CANCEL_REQUESTED.value)
        logger.info("Cancellation requested")

    async def status(self) -> Dict[str, Any]:
        return {
            "state": await self.state.get(STATE_KEY, RunState.IDLE.value),
            "running": await self.is_running(),
            "cancel_requested": await self.should_stop(),
            "error_notification": await self.state.get(ERROR_NOTIFICATION_KEY),
        }

    # ---------------------------------------------- #
    # Automatic runs
    def _is_public_type(self, content_type: str) -> bool:
        if content_type in ("post", "page"):
            return True
        if self.source is None:
            return False
        return any(t.name == content_type and t.public for t in self.source.content_types())

    async def on_content_changed(
        self,
        entity_id: int,
        new_status: str,
        old_status: str,
        content_type: str = "post",
    ) -> bool:
        """Queue a rebuild after a publish-state change. Returns True if one was queued."""
        if not self.settings.run.auto_generate:
            return False
        if not self._is_public_type(content_type):
            return False
        if new_status not in TRIGGER_STATUSES and old_status not in TRIGGER_STATUSES:
            return False
        if await self.is_running():
            logger.info(f"Run in progress, ignoring change to entity {entity_id}")
            return False

        if self.cache:
            self.cache.delete_by_content_id(entity_id)
        self.scheduler.remove_job(RUN_JOB_ID)
        self.log.clear_logs()
        self.log.clear_progress()
        self.scheduler.enqueue(self.job, RUN_JOB_ID)
        logger.info(f"Entity {entity_id} changed ({old_status} -> {new_status}), rebuild enqueued")
        return True

    async def _scheduled_start(self) -> None:
        try:
            await self.start()
        except AlreadyRunningError as e:
            logger.info(f"Skipping scheduled run: {e}")

    def schedule_periodic(self) -> bool:
        """Register the configured cron or interval rebuild. Returns False when none is set."""
        schedule = self.settings.run.schedule
        if schedule is None:
            return False
        try:
            if schedule.cron:
                self.scheduler.add_cron_job(self._scheduled_start, schedule.cron, job_id=SCHEDULE_JOB_ID)
            elif schedule.interval_minutes:
                self.scheduler.add_interval_job(
                    self._scheduled_start, minutes=schedule.interval_minutes, job_id=SCHEDULE_JOB_ID
                )
            else:
                logger.warning("Schedule configured without cron or interval_minutes")
                return False
        except ValueError as e:
            raise ConfigError(f"Invalid schedule: {e}") from e
        return True
