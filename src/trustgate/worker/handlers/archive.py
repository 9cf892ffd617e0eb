"""Session archive job handlers.

run_daily_archive:
- Terminates sessions past their expiry with reason timeout
- Archives sessions terminated more than max_terminated_days ago

run_monthly_archive_cleanup:
- Deletes archives past their retention deadline

Both return a summary dict and can be driven by any external scheduler.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from trustgate.db.unit_of_work import unit_of_work
from trustgate.services.archive import SessionArchiver

if TYPE_CHECKING:
    from trustgate.core.config import Settings
    from trustgate.db.unit_of_work import Repositories

logger = logging.getLogger(__name__)


def _settings(settings: Settings | None) -> Settings:
    if settings is not None:
        return settings
    from trustgate.core.settings import get_settings

    return get_settings()


async def run_daily_archive(
    uow: Repositories | None = None,
    settings: Settings | None = None,
    *,
    dry_run: bool = False,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Run the daily archive sweep.

    Args:
        uow: Unit of work to run against; a new one is opened when omitted.
        settings: Configuration (defaults to get_settings()).
        dry_run: Count what would be archived without changing anything.
        now: Current time (defaults to now in UTC).

    Returns:
        Summary with timed_out, archived, skipped and dry_run keys.
    """
    if uow is None:
        async with unit_of_work() as opened:
            return await run_daily_archive(opened, settings, dry_run=dry_run, now=now)

    settings = _settings(settings)
    now = now or datetime.now(UTC)
    archiver = SessionArchiver(uow.sessions, uow.archives)

    logger.info("Starting daily session archiving")
    timed_out = 0
    async with uow.transaction():
        if not dry_run:
            timed_out = await archiver.terminate_expired_sessions(
                batch_size=settings.archive.batch_size, now=now
            )
        result = await archiver.archive_terminated_sessions(
            max_terminated_days=settings.archive.max_terminated_days,
            batch_size=settings.archive.batch_size,
            dry_run=dry_run,
            now=now,
        )

    summary = {"timed_out": timed_out, **result.to_dict()}
    logger.info(
        "Daily session archiving completed: timed_out=%d, archived=%d, skipped=%d",
        timed_out,
        result.archived,
        result.skipped,
    )
    return summary


async def run_monthly_archive_cleanup(
    uow: Repositories | None = None,
    *,
    dry_run: bool = False,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Run the monthly purge of archives past retention.

    Returns:
        Summary with deleted and dry_run keys.
    """
    if uow is None:
        async with unit_of_work() as opened:
            return await run_monthly_archive_cleanup(opened, dry_run=dry_run, now=now)

    archiver = SessionArchiver(uow.sessions, uow.archives)

    logger.info("Starting monthly archive cleanup")
    async with uow.transaction():
        result = await archiver.cleanup_expired_archives(dry_run=dry_run, now=now)

    logger.info(
        "Monthly archive cleanup completed: deleted=%d, dry_run=%s",
        result.deleted,
        result.dry_run,
    )
    return result.to_dict()
