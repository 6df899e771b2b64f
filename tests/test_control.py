import asyncio

import pytest

from staticgen.cache import PageCache
from staticgen.control import (
    CANCEL_KEY,
    ERROR_NOTIFICATION_KEY,
    LOCK_KEY,
    RUN_JOB_ID,
    RUNNING_KEY,
    SCHEDULE_JOB_ID,
    RunController,
)
from staticgen.errors import AlreadyRunningError, ConfigError
from staticgen.infra.state import StateStore


class FakeScheduler:
    def __init__(self):
        self.jobs = {}
        self.removed = []

    def enqueue(self, func, job_id, **kwargs):
        self.jobs[job_id] = ("once", func)

    def remove_job(self, job_id):
        self.removed.append(job_id)
        return self.jobs.pop(job_id, None) is not None

    def add_cron_job(self, func, cron_expression, job_id, **kwargs):
        if len(cron_expression.split()) != 5:
            raise ValueError(f"Invalid cron expression: {cron_expression}")
        self.jobs[job_id] = ("cron", cron_expression)

    def add_interval_job(self, func, minutes, job_id, **kwargs):
        self.jobs[job_id] = ("interval", minutes)


class Clock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


async def job():
    pass


def controller_for(tmp_path, make_settings, log, source=None, cache=None, clock=None, **run):
    settings = make_settings(run=run) if run else make_settings()
    clock = clock or Clock()
    state = StateStore(str(tmp_path / "state.db"), clock=clock)
    scheduler = FakeScheduler()
    controller = RunController(settings, state, log, scheduler, job, cache=cache, source=source, clock=clock)
    return controller, state, scheduler


def run(coro_factory, state):
    async def main():
        try:
            return await coro_factory()
        finally:
            await state.close()
    return asyncio.run(main())


def test_start_enqueues_and_marks_running(tmp_path, make_settings, log):
    controller, state, scheduler = controller_for(tmp_path, make_settings, log)

    async def scenario():
        await state.set(CANCEL_KEY, True)
        await controller.start()
        return await controller.status(), await state.get(LOCK_KEY)

    status, lock = run(scenario, state)

    assert RUN_JOB_ID in scheduler.jobs
    assert status["state"] == "running"
    assert status["running"] is True
    assert status["cancel_requested"] is False
    assert lock is None
    assert log.cleared == 1


def test_second_start_is_rejected(tmp_path, make_settings, log):
    controller, state, scheduler = controller_for(tmp_path, make_settings, log)

    async def scenario():
        await controller.start()
        scheduler.jobs.clear()
        with pytest.raises(AlreadyRunningError):
            await controller.start()
        return await state.get(LOCK_KEY)

    assert run(scenario, state) is None
    assert scheduler.jobs == {}


def test_fresh_lock_blocks_start(tmp_path, make_settings, log):
    controller, state, scheduler = controller_for(tmp_path, make_settings, log)

    async def scenario():
        await state.set(LOCK_KEY, {"value": "other", "time": 990.0})
        with pytest.raises(AlreadyRunningError):
            await controller.start()

    run(scenario, state)
    assert scheduler.jobs == {}


def test_stale_lock_is_reclaimed(tmp_path, make_settings, log):
    clock = Clock(10000.0)
    controller, state, scheduler = controller_for(tmp_path, make_settings, log, clock=clock, lock_timeout=60)

    async def scenario():
        await state.set(LOCK_KEY, {"value": "crashed", "time": 100.0})
        await controller.start()
        return await state.get(LOCK_KEY)

    assert run(scenario, state) is None
    assert RUN_JOB_ID in scheduler.jobs


def test_running_flag_expires(tmp_path, make_settings, log):
    clock = Clock()
    controller, state, scheduler = controller_for(tmp_path, make_settings, log, clock=clock)

    async def scenario():
        await controller.start()
        clock.now += 3601
        await controller.start()

    run(scenario, state)
    assert RUN_JOB_ID in scheduler.jobs


def test_cancel(tmp_path, make_settings, log):
    controller, state, scheduler = controller_for(tmp_path, make_settings, log)

    async def scenario():
        await controller.start()
        await controller.cancel()
        return await controller.status(), await controller.should_stop()

    status, stop = run(scenario, state)

    assert RUN_JOB_ID not in scheduler.jobs
    assert status["state"] == "cancel_requested"
    assert status["running"] is False
    assert stop is True


def test_status_reports_error_notification(tmp_path, make_settings, log):
    controller, state, _ = controller_for(tmp_path, make_settings, log)

    async def scenario():
        await state.set(ERROR_NOTIFICATION_KEY, {"count": 2, "timestamp": "2024-05-06T00:00:00"})
        return await controller.status()

    status = run(scenario, state)
    assert status["state"] == "idle"
    assert status["error_notification"]["count"] == 2


def test_content_change_triggers_rebuild(tmp_path, make_settings, log, source):
    cache = PageCache(tmp_path / "cache", source.modified_time, clock=lambda: 1000.0)
    cache.set("https://example.com/about/", "<html></html>", content_id=10)
    controller, state, scheduler = controller_for(
        tmp_path, make_settings, log, source=source, cache=cache, auto_generate=True
    )

    async def scenario():
        return await controller.on_content_changed(10, "publish", "draft", content_type="page")

    assert run(scenario, state) is True
    assert RUN_JOB_ID in scheduler.jobs
    assert cache.stats()["count"] == 0


@pytest.mark.parametrize("new_status, old_status, content_type", [
    ("inherit", "inherit", "post"),
    ("publish", "publish", "internal"),
    ("publish", "draft", "unknown"),
])
def test_content_change_ignored(tmp_path, make_settings, log, source, new_status, old_status, content_type):
    controller, state, scheduler = controller_for(tmp_path, make_settings, log, source=source, auto_generate=True)

    async def scenario():
        return await controller.on_content_changed(1, new_status, old_status, content_type=content_type)

    assert run(scenario, state) is False
    assert scheduler.jobs == {}


def test_content_change_ignored_when_disabled_or_running(tmp_path, make_settings, log, source):
    disabled, state, scheduler = controller_for(tmp_path, make_settings, log, source=source)
    assert run(lambda: disabled.on_content_changed(1, "publish", "draft"), state) is False

    enabled, state, scheduler = controller_for(
        tmp_path / "b", make_settings, log, source=source, auto_generate=True
    )

    async def scenario():
        await state.set(RUNNING_KEY, {"started": 1})
        return await enabled.on_content_changed(1, "publish", "draft")

    assert run(scenario, state) is False
    assert scheduler.jobs == {}


def test_custom_public_type_triggers(tmp_path, make_settings, log, source):
    controller, state, scheduler = controller_for(tmp_path, make_settings, log, source=source, auto_generate=True)
    assert run(lambda: controller.on_content_changed(20, "trash", "publish", content_type="product"), state)


def test_schedule_periodic(tmp_path, make_settings, log):
    none, _, scheduler = controller_for(tmp_path, make_settings, log)
    assert none.schedule_periodic() is False

    cron, _, scheduler = controller_for(tmp_path, make_settings, log, schedule={"cron": "0 3 * * *"})
    assert cron.schedule_periodic() is True
    assert scheduler.jobs[SCHEDULE_JOB_ID] == ("cron", "0 3 * * *")

    interval, _, scheduler = controller_for(tmp_path, make_settings, log, schedule={"interval_minutes": 30})
    assert interval.schedule_periodic() is True
    assert scheduler.jobs[SCHEDULE_JOB_ID] == ("interval", 30)

    bad, _, _ = controller_for(tmp_path, make_settings, log, schedule={"cron": "nonsense"})
    with pytest.raises(ConfigError):
        bad.schedule_periodic()


def test_scheduled_start_skips_when_running(tmp_path, make_settings, log):
    controller, state, scheduler = controller_for(tmp_path, make_settings, log)

    async def scenario():
        await state.set(RUNNING_KEY, {"started": 1})
        await controller._scheduled_start()

    run(scenario, state)
    assert scheduler.jobs == {}
