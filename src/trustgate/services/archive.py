"""Archival of terminated sessions.

Terminated sessions older than a cutoff are copied to session_archives and
removed from the live table. Each archive keeps a retention deadline that
depends on why the session ended:

    logout                  365 days
    timeout                 730 days
    revoked                1825 days
    device_removed         1095 days
    session_limit_enforced  365 days
    archived / unknown     2555 days

Archives past their deadline are purged by the monthly cleanup.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from trustgate.core.errors import DuplicateRecordError
from trustgate.db.models.base import EventSeverity, TerminationReason
from trustgate.services.audit import AuditEvent, SecurityEventType

if TYPE_CHECKING:
    from uuid import UUID

    from trustgate.db.models import Session, SessionArchive
    from trustgate.db.repositories import SessionArchiveRepository, SessionRepository
    from trustgate.services.audit import AuditSink

logger = logging.getLogger(__name__)

RETENTION_DAYS: dict[TerminationReason, int] = {
    TerminationReason.LOGOUT: 365,
    TerminationReason.TIMEOUT: 730,
    TerminationReason.REVOKED: 1825,
    TerminationReason.DEVICE_REMOVED: 1095,
    TerminationReason.SESSION_LIMIT_ENFORCED: 365,
    TerminationReason.ARCHIVED: 2555,
}
DEFAULT_RETENTION_DAYS = 2555

# Window used by get_archive_stats() for "expiring soon"
EXPIRING_SOON_DAYS = 30


def retention_days_for(reason: TerminationReason | None) -> int:
    """Retention period in days for a termination reason."""
    if reason is None:
        return DEFAULT_RETENTION_DAYS
    return RETENTION_DAYS.get(reason, DEFAULT_RETENTION_DAYS)


@dataclass(frozen=True, slots=True)
class ArchiveResult:
    archived: int
    skipped: int
    dry_run: bool

    def to_dict(self) -> dict[str, Any]:
        return {"archived": self.archived, "skipped": self.skipped, "dry_run": self.dry_run}


@dataclass(frozen=True, slots=True)
class CleanupResult:
    deleted: int
    dry_run: bool

    def to_dict(self) -> dict[str, Any]:
        return {"deleted": self.deleted, "dry_run": self.dry_run}


@dataclass(frozen=True, slots=True)
class ArchiveStats:
    """Summary of the archive table."""

    total_archives: int
    archives_by_reason: dict[str, int] = field(default_factory=dict)
    oldest_archive: datetime | None = None
    newest_archive: datetime | None = None
    retention_expiring_soon: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_archives": self.total_archives,
            "archives_by_reason": dict(self.archives_by_reason),
            "oldest_archive": self.oldest_archive.isoformat() if self.oldest_archive else None,
            "newest_archive": self.newest_archive.isoformat() if self.newest_archive else None,
            "retention_expiring_soon": self.retention_expiring_soon,
        }


class SessionArchiver:
    """Service moving terminated sessions into the archive table.

    Sweeps only read terminated or expired rows and are safe to re-run:
    a session whose archive already exists is removed from the live table
    and counted as skipped.

    Example:
        archiver = SessionArchiver(uow.sessions, uow.archives)
        async with uow.transaction():
            result = await archiver.archive_terminated_sessions(max_terminated_days=7)
    """

    def __init__(
        self,
        sessions: SessionRepository,
        archives: SessionArchiveRepository,
        audit: AuditSink | None = None,
    ) -> None:
        self._sessions = sessions
        self._archives = archives
        self._audit = audit

    async def archive_terminated_sessions(
        self,
        *,
        max_terminated_days: int = 7,
        batch_size: int = 100,
        dry_run: bool = False,
        now: datetime | None = None,
    ) -> ArchiveResult:
        """Archive sessions terminated more than max_terminated_days ago.

        Batches are processed until one comes back short. Each session is
        moved inside its own savepoint, so a failure rolls back only that
        session and the sweep carries on. A dry run only counts the first
        batch and changes nothing.

        Args:
            max_terminated_days: Minimum age of the termination.
            batch_size: Sessions fetched per batch.
            dry_run: Report what would be archived without writing.
            now: Current time (defaults to now in UTC).

        Returns:
            ArchiveResult with archived and skipped counts.
        """
        now = now or datetime.now(UTC)
        cutoff = now - timedelta(days=max_terminated_days)
        archived = 0
        skipped = 0

        logger.info(
            "Starting session archiving: cutoff=%s, batch_size=%d, dry_run=%s",
            cutoff.isoformat(),
            batch_size,
            dry_run,
        )

        while True:
            batch = await self._sessions.find_terminated_before(cutoff, batch_size)
            if dry_run:
                archived = len(batch)
                break

            progressed = 0
            for session in batch:
                try:
                    async with self._sessions.savepoint():
                        written = await self._archive_session(session, now)
                except Exception:
                    logger.exception("Failed to archive session: session_id=%s", session.session_id)
                    skipped += 1
                    continue
                progressed += 1
                if written:
                    archived += 1
                else:
                    skipped += 1

            if len(batch) < batch_size or progressed == 0:
                break

        result = ArchiveResult(archived=archived, skipped=skipped, dry_run=dry_run)
        logger.info(
            "Session archiving completed: archived=%d, skipped=%d, dry_run=%s",
            result.archived,
            result.skipped,
            result.dry_run,
        )
        return result

    async def cleanup_expired_archives(
        self,
        *,
        dry_run: bool = False,
        now: datetime | None = None,
    ) -> CleanupResult:
        """Delete archives whose retention deadline has passed."""
        now = now or datetime.now(UTC)
        if dry_run:
            deleted = await self._archives.count_expired(now)
            logger.info("Dry run: %d expired archives would be deleted", deleted)
        else:
            deleted = await self._archives.delete_expired(now)
            logger.info("Deleted %d expired archives", deleted)
        return CleanupResult(deleted=deleted, dry_run=dry_run)

    async def terminate_expired_sessions(
        self,
        *,
        batch_size: int = 100,
        now: datetime | None = None,
    ) -> int:
        """Mark live sessions past their expiry as terminated by timeout.

        Returns:
            Number of sessions terminated.
        """
        now = now or datetime.now(UTC)
        expired = await self._sessions.find_expired_unterminated(now, batch_size)
        for session in expired:
            await self._sessions.update(
                session,
                terminated_at=now,
                termination_reason=TerminationReason.TIMEOUT,
                updated_at=now,
            )
        if expired:
            logger.info("Terminated %d expired sessions", len(expired))
        return len(expired)

    async def restore_archived_session(
        self,
        original_session_id: UUID,
        *,
        now: datetime | None = None,
    ) -> Session | None:
        """Copy an archived session back into the live table.

        The archive itself is left untouched. The restored row keeps the
        archived timestamps and termination state, so the next daily sweep
        archives it again under a new archive id.

        Returns:
            The restored session, or None if no archive exists.

        Raises:
            DuplicateRecordError: If the session token is live again already.
        """
        now = now or datetime.now(UTC)
        archive = await self._archives.find_by_original_session(original_session_id)
        if archive is None:
            return None

        try:
            session = await self._sessions.create(
                session_id=uuid.uuid4(),
                session_token=archive.session_token,
                user_id=archive.user_id,
                device_id=archive.device_id,
                created_at=archive.session_created_at,
                updated_at=now,
                last_activity_at=archive.last_activity_at,
                expires_at=archive.expires_at,
                max_expires_at=archive.max_expires_at,
                terminated_at=archive.terminated_at,
                termination_reason=archive.termination_reason,
                remember_me=archive.remember_me,
                ip_address=archive.ip_address,
                user_agent=archive.user_agent,
            )
        except DuplicateRecordError:
            logger.warning(
                "Cannot restore archived session, token already live: original_session_id=%s",
                original_session_id,
            )
            raise

        logger.info(
            "Restored archived session: original_session_id=%s, session_id=%s",
            original_session_id,
            session.session_id,
        )
        if self._audit is not None:
            await self._audit.record(
                AuditEvent(
                    event_type=SecurityEventType.SESSION_RESTORED,
                    severity=EventSeverity.WARNING,
                    user_id=session.user_id,
                    session_id=session.session_id,
                    device_id=session.device_id,
                    details={"original_session_id": str(original_session_id)},
                    occurred_at=now,
                )
            )
        return session

    async def get_archive_stats(self, *, now: datetime | None = None) -> ArchiveStats:
        now = now or datetime.now(UTC)
        by_reason = await self._archives.count_by_reason()
        oldest, newest = await self._archives.archived_range()
        expiring = await self._archives.count_expiring_before(
            now + timedelta(days=EXPIRING_SOON_DAYS)
        )
        return ArchiveStats(
            total_archives=sum(by_reason.values()),
            archives_by_reason={
                (reason.value if reason is not None else "unknown"): count
                for reason, count in by_reason.items()
            },
            oldest_archive=oldest,
            newest_archive=newest,
            retention_expiring_soon=expiring,
        )

    async def get_archives_by_user(self, user_id: UUID) -> list[SessionArchive]:
        return await self._archives.find(user_id=user_id)

    async def get_archives_by_device(self, device_id: UUID) -> list[SessionArchive]:
        return await self._archives.find(device_id=device_id)

    async def get_archives_by_reason(self, reason: TerminationReason) -> list[SessionArchive]:
        return await self._archives.find(termination_reason=reason)

    async def get_archives_by_date_range(
        self, start: datetime, end: datetime
    ) -> list[SessionArchive]:
        """Archives created in [start, end)."""
        return await self._archives.find_archived_between(start, end)

    async def _archive_session(self, session: Session, now: datetime) -> bool:
        """Archive one session and delete the live row.

        Returns:
            True if an archive row was written, False if one already existed.
        """
        retention = retention_days_for(session.termination_reason)
        try:
            await self._archives.create(
                archive_id=uuid.uuid4(),
                original_session_id=session.session_id,
                session_token=session.session_token,
                user_id=session.user_id,
                device_id=session.device_id,
                session_created_at=session.created_at,
                last_activity_at=session.last_activity_at,
                expires_at=session.expires_at,
                max_expires_at=session.max_expires_at,
                terminated_at=session.terminated_at,
                termination_reason=session.termination_reason,
                remember_me=session.remember_me,
                ip_address=session.ip_address,
                user_agent=session.user_agent,
                archived_at=now,
                retention_days=retention,
                retention_expires_at=now + timedelta(days=retention),
            )
            written = True
        except DuplicateRecordError:
            logger.info("Session already archived: session_id=%s", session.session_id)
            written = False

        await self._sessions.delete(session)
        return written
