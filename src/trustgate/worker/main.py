"""trustgate worker entry point.

Commands:
- daily-archive: run the daily archive sweep once
- monthly-cleanup: run the monthly archive purge once
- serve: run both on their intervals until SIGTERM/SIGINT
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any, NoReturn

from trustgate.core.logging import configure_logging
from trustgate.db import close_engine
from trustgate.worker.handlers.archive import run_daily_archive, run_monthly_archive_cleanup

if TYPE_CHECKING:
    from collections.abc import Callable, Coroutine, Sequence

logger = logging.getLogger(__name__)


@dataclass
class ScheduledTask:
    """A periodic maintenance task.

    Attributes:
        name: Task name used in logs.
        interval: Time between runs.
        handler: Coroutine function running the task once.
        last_run: When the task last started, None before the first run.
    """

    name: str
    interval: timedelta
    handler: Callable[[], Coroutine[Any, Any, dict[str, Any]]]
    last_run: datetime | None = None

    def is_due(self, now: datetime) -> bool:
        return self.last_run is None or now - self.last_run >= self.interval


def default_schedule() -> list[ScheduledTask]:
    return [
        ScheduledTask(
            name="daily-archive",
            interval=timedelta(days=1),
            handler=run_daily_archive,
        ),
        ScheduledTask(
            name="monthly-cleanup",
            interval=timedelta(days=30),
            handler=run_monthly_archive_cleanup,
        ),
    ]


async def run_due_tasks(tasks: Sequence[ScheduledTask], now: datetime | None = None) -> int:
    """Run every task that is due; failures are logged and retried next interval.

    Returns:
        Number of tasks started.
    """
    now = now or datetime.now(UTC)
    started = 0
    for task in tasks:
        if not task.is_due(now):
            continue
        task.last_run = now
        started += 1
        try:
            summary = await task.handler()
            logger.info("Task completed: name=%s, summary=%s", task.name, summary)
        except Exception:
            logger.exception("Task failed: name=%s", task.name)
    return started


# Global shutdown event for signal handlers
_shutdown_event: asyncio.Event | None = None


def _handle_shutdown(signum: int, _frame: object) -> None:
    """Handle shutdown signals gracefully."""
    logger.info("Shutdown signal received (signal=%d)", signum)
    if _shutdown_event is not None:
        _shutdown_event.set()


async def _serve(shutdown_event: asyncio.Event, poll_interval: float) -> None:
    tasks = default_schedule()
    logger.info("Scheduler started: tasks=%s", ",".join(task.name for task in tasks))
    try:
        while not shutdown_event.is_set():
            await run_due_tasks(tasks)
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(shutdown_event.wait(), timeout=poll_interval)
    finally:
        await close_engine()


async def _run_once(command: str, dry_run: bool) -> dict[str, Any]:
    try:
        if command == "daily-archive":
            return await run_daily_archive(dry_run=dry_run)
        return await run_monthly_archive_cleanup(dry_run=dry_run)
    finally:
        await close_engine()


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="trustgate-worker",
        description="Session archival and retention jobs",
    )
    parser.add_argument(
        "command",
        choices=["daily-archive", "monthly-cleanup", "serve"],
        help="Job to run",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report what would change without writing",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=60.0,
        help="Seconds between schedule checks in serve mode (default: 60)",
    )
    return parser.parse_args(argv)


def run(argv: Sequence[str] | None = None) -> NoReturn:
    """Run the worker process.

    Sets up logging from settings, then either runs a single job or, in
    serve mode, registers signal handlers and runs the scheduler loop.
    """
    global _shutdown_event

    args = _parse_args(argv)

    from trustgate.core.settings import get_settings

    settings = get_settings()
    configure_logging(settings.log_level)

    if args.command != "serve":
        try:
            summary = asyncio.run(_run_once(args.command, args.dry_run))
        except Exception as e:
            logger.exception("Job failed: %s", e)
            sys.exit(1)
        logger.info("Job finished: command=%s, summary=%s", args.command, summary)
        sys.exit(0)

    signal.signal(signal.SIGTERM, _handle_shutdown)
    signal.signal(signal.SIGINT, _handle_shutdown)

    logger.info("trustgate worker starting...")

    async def _run_with_event() -> None:
        global _shutdown_event
        _shutdown_event = asyncio.Event()
        await _serve(_shutdown_event, args.poll_interval)

    try:
        asyncio.run(_run_with_event())
    except KeyboardInterrupt:
        logger.info("Worker interrupted")
    except Exception as e:
        logger.exception("Worker failed: %s", e)
        sys.exit(1)

    logger.info("trustgate worker shutdown complete")
    sys.exit(0)


if __name__ == "__main__":
    run()
