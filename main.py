#!/usr/bin/env python3
"""
staticgen - generate a static snapshot of a CMS site and publish it.

Usage: python main.py <command> [--config PATH] [--debug]

Commands:
    run             - Generate the site once and publish it
    serve           - Run the scheduler for periodic rebuilds
    cancel          - Ask the active run to stop
    status          - Show run state, progress and the latest log lines
    clear-cache     - Delete every cached page
    cache-stats     - Show cached page count and size
"""

import asyncio
import logging
import os
import signal
import sys
from pathlib import Path
from typing import List, Optional, Tuple

from dotenv import load_dotenv

# Add project root to PYTHONPATH so imports work when running this script directly
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from staticgen.cache import PageCache
from staticgen.config import Settings, load_settings
from staticgen.content import YamlContentSource
from staticgen.control import RunController
from staticgen.errors import AlreadyRunningError, StaticGenError
from staticgen.generator import Generator
from staticgen.infra.scheduler import Scheduler
from staticgen.infra.state import StateStore
from staticgen.runlog import RunLog


logger = logging.getLogger("staticgen")

STATUS_LOG_LINES = 20


def parse_args(argv: List[str]) -> Tuple[str, Optional[str], bool]:
    """Return ``(command, config_path, debug)``."""
    command = argv[1].lower() if len(argv) > 1 else ""
    config_path = None
    debug = "--debug" in argv
    if "--config" in argv:
        index = argv.index("--config")
        if index + 1 < len(argv):
            config_path = argv[index + 1]
    return command, config_path, debug


def open_state(settings: Settings) -> Tuple[StateStore, RunLog]:
    state_dir = Path(settings.run.state_dir)
    state = StateStore(str(state_dir / "state.db"))
    log = RunLog(state_dir, debug=settings.run.debug)
    return state, log


def build_controller(
    settings: Settings,
    state: StateStore,
    log: RunLog,
    scheduler: Scheduler,
    done: Optional[asyncio.Event] = None,
) -> RunController:
    source = YamlContentSource.from_settings(settings)
    generator = Generator(settings, source, state, log)
    cache = PageCache(settings.run.cache_path, source.modified_time) if settings.run.cache_enabled else None

    async def job():
        try:
            await generator.run()
        finally:
            if done is not None:
                done.set()

    return RunController(settings, state, log, scheduler, job, cache=cache, source=source)


# ---------------------------------------------- #
# Commands
async def run_once(settings: Settings) -> int:
    state, log = open_state(settings)
    scheduler = Scheduler()
    done = asyncio.Event()
    controller = build_controller(settings, state, log, scheduler, done)

    def on_signal():
        logger.info("Received shutdown signal, cancelling run")
        asyncio.create_task(controller.cancel())

    for sig in (signal.SIGTERM, signal.SIGINT):
        asyncio.get_running_loop().add_signal_handler(sig, on_signal)

    try:
        await scheduler.start()
        await controller.start()
        await done.wait()
        result = await controller.status()
    except AlreadyRunningError as e:
        print(f"❌ {e}")
        return 1
    finally:
        await scheduler.stop()
        await state.close()

    print(f"Run finished: {result['state']}")
    return 0 if result["state"] == "completed" else 1


async def serve(settings: Settings) -> int:
    state, log = open_state(settings)
    scheduler = Scheduler(timezone=os.getenv("SCHEDULER_TIMEZONE", "UTC"))
    controller = build_controller(settings, state, log, scheduler)

    stop_event = asyncio.Event()

    def signal_handler():
        logger.info("Received shutdown signal")
        stop_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        asyncio.get_running_loop().add_signal_handler(sig, signal_handler)

    try:
        await scheduler.start()
        if controller.schedule_periodic():
            for job_id, info in scheduler.list_jobs().items():
                logger.info(f"  - {job_id}: {info['trigger']} (next run {info['next_run']})")
        else:
            logger.warning("No schedule configured (run.schedule), idling until stopped")
        await stop_event.wait()
    finally:
        logger.info("Shutting down...")
        await scheduler.stop()
        await state.close()
        logger.info("Shutdown complete")
    return 0


async def cancel(settings: Settings) -> int:
    state, log = open_state(settings)
    scheduler = Scheduler()
    controller = RunController(settings, state, log, scheduler, job=lambda: asyncio.sleep(0))
    try:
        await controller.cancel()
    finally:
        await state.close()
    print("Cancellation requested")
    return 0


async def show_status(settings: Settings) -> int:
    state, log = open_state(settings)
    scheduler = Scheduler()
    controller = RunController(settings, state, log, scheduler, job=lambda: asyncio.sleep(0))
    try:
        info = await controller.status()
    finally:
        await state.close()

    progress = log.get_progress()
    print(f"State:    {info['state']}")
    print(f"Running:  {'yes' if info['running'] else 'no'}")
    print(f"Progress: {progress.percentage}% {progress.status}")
    notification = info["error_notification"]
    if notification:
        print(f"Errors:   {notification['count']} in the last run ({notification['timestamp']})")

    entries = log.get_logs()[-STATUS_LOG_LINES:]
    if entries:
        print("\nRecent log:")
        for entry in entries:
            print(f"  {entry.elapsed or '':>8} [{entry.level.value}] {entry.message}")
    return 0


def cache_command(settings: Settings, command: str) -> int:
    cache = PageCache(settings.run.cache_path, lambda _id: None)
    if command == "clear-cache":
        removed = cache.clear_all()
        print(f"Removed {removed} cached pages")
    else:
        stats = cache.stats()
        print(f"Cached pages: {stats['count']}")
        print(f"Cache size:   {stats['size'] / 1024 / 1024:.2f}MB")
    return 0


async def main() -> int:
    """Main CLI entry point."""
    load_dotenv()

    command, config_path, debug = parse_args(sys.argv)
    if not command or command.startswith("-"):
        print(__doc__)
        return 0

    try:
        settings = load_settings(config_path)
    except StaticGenError as e:
        print(f"❌ {e}")
        return 2

    logging.basicConfig(
        level=logging.DEBUG if debug or settings.run.debug else logging.INFO,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s"
    )
    if debug:
        settings.run.debug = True

    try:
        if command == "run":
            return await run_once(settings)
        elif command == "serve":
            return await serve(settings)
        elif command == "cancel":
            return await cancel(settings)
        elif command == "status":
            return await show_status(settings)
        elif command in ("clear-cache", "cache-stats"):
            return cache_command(settings, command)
        else:
            print(f"Unknown command: {command}")
            print(__doc__)
            return 2
    except StaticGenError as e:
        logger.error(f"{command} failed: {e}")
        return 1


def cli():
    """Entry point that can be called from other scripts."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
