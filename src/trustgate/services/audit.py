"""Structured security audit events.

Services describe what happened as an AuditEvent and hand it to an
AuditSink. Recording is best effort: a sink that fails logs the failure
and returns, so auditing never breaks the flow it observes.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol

from trustgate.db.models.base import EventSeverity

if TYPE_CHECKING:
    from uuid import UUID

    from trustgate.db.repositories import SecurityEventRepository

logger = logging.getLogger(__name__)


class SecurityEventType(str, Enum):
    """Security event types recorded by the trust and session core."""

    # OTP
    OTP_SENT = "otp_sent"
    OTP_VERIFICATION_FAILED = "otp_verification_failed"

    # Authentication
    LOGIN_SUCCESS = "login_success"
    LOGOUT = "logout"
    TOKEN_REFRESHED = "token_refreshed"  # noqa: S105 - not a password
    RATE_LIMITED = "rate_limited"

    # Risk and device decisions
    RISK_FLAGGED = "risk_flagged"
    RISK_REJECTED = "risk_rejected"
    DEVICE_DECISION = "device_decision"

    # Sessions
    SESSION_EVICTED = "session_evicted"
    SESSION_RESTORED = "session_restored"


@dataclass(frozen=True, slots=True)
class AuditEvent:
    """One security event.

    Attributes:
        event_type: What happened.
        severity: How much attention it deserves.
        user_id: Affected user, if known.
        session_id: Affected session, if any.
        device_id: Affected device, if any.
        ip_address: Client address of the request.
        user_agent: Client user agent of the request.
        details: Event-specific structured fields.
        occurred_at: When the event happened.
    """

    event_type: SecurityEventType
    severity: EventSeverity = EventSeverity.INFO
    user_id: UUID | None = None
    session_id: UUID | None = None
    device_id: UUID | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "user_id": str(self.user_id) if self.user_id else None,
            "session_id": str(self.session_id) if self.session_id else None,
            "device_id": str(self.device_id) if self.device_id else None,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "details": self.details,
            "occurred_at": self.occurred_at.isoformat(),
        }


class AuditSink(Protocol):
    """Append-only destination for audit events."""

    async def record(self, event: AuditEvent) -> None: ...


class LoggingAuditSink:
    """Sink writing one JSON log line per event."""

    _LEVELS = {
        EventSeverity.INFO: logging.INFO,
        EventSeverity.WARNING: logging.WARNING,
        EventSeverity.CRITICAL: logging.CRITICAL,
    }

    def __init__(self, audit_logger: logging.Logger | None = None) -> None:
        self._logger = audit_logger or logging.getLogger("trustgate.audit")

    async def record(self, event: AuditEvent) -> None:
        self._logger.log(
            self._LEVELS[event.severity],
            "AUDIT %s %s",
            event.event_type.value,
            json.dumps(event.to_dict(), default=str, sort_keys=True),
        )


class SecurityEventSink:
    """Sink persisting events to the security_events table.

    Writes go through the repository's SAVEPOINT, so a failed insert does
    not abort the transaction that produced the event.
    """

    def __init__(self, events: SecurityEventRepository) -> None:
        self._events = events

    async def record(self, event: AuditEvent) -> None:
        try:
            await self._events.create(
                event_type=event.event_type.value,
                severity=event.severity,
                user_id=event.user_id,
                session_id=event.session_id,
                device_id=event.device_id,
                ip_address=event.ip_address,
                user_agent=event.user_agent,
                payload=json.loads(json.dumps(event.details, default=str)),
                created_at=event.occurred_at,
            )
        except Exception:
            logger.warning(
                "Failed to persist security event: type=%s, user_id=%s",
                event.event_type.value,
                event.user_id,
                exc_info=True,
            )


class BufferedAuditSink:
    """Sink holding events until the surrounding transaction settles.

    The login flow records into a buffer and flushes it to the real sink
    just before commit. When a policy rejection rolls the transaction
    back, the buffer is flushed in a fresh transaction instead, so the
    rejection stays on record.
    """

    def __init__(self) -> None:
        self._events: list[AuditEvent] = []

    @property
    def pending(self) -> tuple[AuditEvent, ...]:
        return tuple(self._events)

    async def record(self, event: AuditEvent) -> None:
        self._events.append(event)

    async def flush(self, sink: AuditSink) -> int:
        """Forward buffered events to sink in order and clear the buffer."""
        events, self._events = self._events, []
        for event in events:
            await sink.record(event)
        return len(events)

    def discard(self) -> int:
        count = len(self._events)
        self._events = []
        return count
