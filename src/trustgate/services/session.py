"""Session admission and lifecycle.

Admission enforces two ceilings on live sessions (not terminated, not
expired): one per device and one per user. When a ceiling is reached the
least recently active sessions are terminated with reason
session_limit_enforced until the new session fits. Device sessions are
evicted first; user sessions are recounted afterwards.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
import uuid
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from trustgate.core.errors import SessionInvalidError, SessionLimitError
from trustgate.db.models.base import EventSeverity, TerminationReason
from trustgate.services.audit import AuditEvent, SecurityEventType

if TYPE_CHECKING:
    from uuid import UUID

    from trustgate.core.config import SessionSettings
    from trustgate.db.models import Session
    from trustgate.db.repositories import SessionRepository
    from trustgate.services.audit import AuditSink

logger = logging.getLogger(__name__)

SESSION_TOKEN_BYTES = 32


def generate_session_token() -> str:
    """Return a fresh opaque session token."""
    return secrets.token_urlsafe(SESSION_TOKEN_BYTES)


def hash_token(token: str) -> str:
    """SHA-256 hex digest under which bearer tokens are stored."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class SessionAdmissionController:
    """Creates, refreshes and terminates sessions under capacity limits.

    Example:
        admission = SessionAdmissionController(uow.sessions, settings.session, audit)
        session = await admission.admit(user.user_id, device.device_id, ip_address=ip)
    """

    def __init__(
        self,
        sessions: SessionRepository,
        settings: SessionSettings,
        audit: AuditSink,
    ) -> None:
        self._sessions = sessions
        self._settings = settings
        self._audit = audit

    async def admit(
        self,
        user_id: UUID,
        device_id: UUID | None,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
        remember_me: bool = False,
        now: datetime | None = None,
    ) -> Session:
        """Admit a new session, evicting older ones when over capacity.

        Args:
            user_id: Owner of the session.
            device_id: Device the session runs on, if known.
            ip_address: Client address.
            user_agent: Client user agent.
            remember_me: Whether the client asked to be remembered.
            now: Current time (defaults to now in UTC).

        Returns:
            The new session.

        Raises:
            SessionLimitError: If a ceiling is reached and eviction is disabled.
        """
        now = now or datetime.now(UTC)

        if self._settings.enforce_session_limits:
            if device_id is not None:
                await self._make_room(
                    await self._sessions.find_active_for_device(device_id, now),
                    self._settings.max_sessions_per_device,
                    scope="device",
                    now=now,
                )
            await self._make_room(
                await self._sessions.find_active_for_user(user_id, now),
                self._settings.max_sessions_per_user,
                scope="user",
                now=now,
            )

        session = await self._sessions.create(
            session_id=uuid.uuid4(),
            session_token=generate_session_token(),
            user_id=user_id,
            device_id=device_id,
            created_at=now,
            updated_at=now,
            last_activity_at=now,
            expires_at=now + timedelta(hours=self._settings.session_expiry_hours),
            max_expires_at=now + timedelta(days=self._settings.max_session_expiry_days),
            remember_me=remember_me,
            ip_address=ip_address,
            user_agent=user_agent,
        )

        logger.info(
            "Session admitted: session_id=%s, user_id=%s, device_id=%s",
            session.session_id,
            user_id,
            device_id,
        )
        return session

    async def refresh(
        self,
        session: Session,
        *,
        access_token_hash: str | None = None,
        refresh_token_hash: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        now: datetime | None = None,
    ) -> Session:
        """Extend a live session, never past its absolute ceiling.

        Raises:
            SessionInvalidError: If the session is terminated, expired or
                already at its ceiling.
        """
        now = now or datetime.now(UTC)
        if not session.is_active_at(now) or now >= session.max_expires_at:
            raise SessionInvalidError()

        expires_at = min(
            now + timedelta(hours=self._settings.session_expiry_hours),
            session.max_expires_at,
        )
        patch: dict[str, object] = {
            "last_activity_at": now,
            "expires_at": expires_at,
            "updated_at": now,
        }
        if access_token_hash is not None:
            patch["access_token_hash"] = access_token_hash
        if refresh_token_hash is not None:
            patch["refresh_token_hash"] = refresh_token_hash
        if ip_address is not None:
            patch["ip_address"] = ip_address
        if user_agent is not None:
            patch["user_agent"] = user_agent

        session = await self._sessions.update(session, **patch)
        logger.debug(
            "Session refreshed: session_id=%s, expires_at=%s",
            session.session_id,
            expires_at.isoformat(),
        )
        return session

    async def terminate(
        self,
        session: Session,
        reason: TerminationReason,
        *,
        now: datetime | None = None,
    ) -> Session:
        """Terminate a session; terminating an already terminated one is a no-op."""
        if session.is_terminated:
            return session
        now = now or datetime.now(UTC)
        session = await self._sessions.update(
            session,
            terminated_at=now,
            termination_reason=reason,
            updated_at=now,
        )
        logger.info(
            "Session terminated: session_id=%s, reason=%s",
            session.session_id,
            reason.value,
        )
        return session

    async def terminate_all_for_user(
        self,
        user_id: UUID,
        reason: TerminationReason,
        *,
        now: datetime | None = None,
    ) -> int:
        """Terminate every live session of a user.

        Returns:
            Number of sessions terminated.
        """
        now = now or datetime.now(UTC)
        sessions = await self._sessions.find_active_for_user(user_id, now)
        for session in sessions:
            await self.terminate(session, reason, now=now)
        if sessions:
            logger.info(
                "Terminated all sessions: user_id=%s, count=%d, reason=%s",
                user_id,
                len(sessions),
                reason.value,
            )
        return len(sessions)

    async def find_active_by_token(
        self,
        session_token: str,
        *,
        now: datetime | None = None,
    ) -> Session | None:
        """Return the session for a token if it is still live."""
        now = now or datetime.now(UTC)
        session = await self._sessions.find_by_token(session_token)
        if session is None or not session.is_active_at(now):
            return None
        return session

    async def _make_room(
        self,
        active: list[Session],
        limit: int,
        *,
        scope: str,
        now: datetime,
    ) -> None:
        # active is ordered by last_activity_at, oldest first
        overflow = len(active) - limit + 1
        if overflow <= 0:
            return

        if not self._settings.terminate_oldest_on_limit:
            logger.warning(
                "Session limit reached: scope=%s, limit=%d, active=%d",
                scope,
                limit,
                len(active),
            )
            raise SessionLimitError(scope, limit)

        for session in active[:overflow]:
            await self.terminate(session, TerminationReason.SESSION_LIMIT_ENFORCED, now=now)
            await self._audit.record(
                AuditEvent(
                    event_type=SecurityEventType.SESSION_EVICTED,
                    severity=EventSeverity.INFO,
                    user_id=session.user_id,
                    session_id=session.session_id,
                    device_id=session.device_id,
                    details={
                        "scope": scope,
                        "limit": limit,
                        "last_activity_at": session.last_activity_at.isoformat(),
                    },
                    occurred_at=now,
                )
            )
