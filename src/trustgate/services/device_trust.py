"""Device trust decisions.

Given the fingerprint of a login request and the requesting user, the
engine decides whether the matching device record is refreshed, created,
reactivated, transferred or rejected. Branches are evaluated in order:

1. Active device of the same owner: refresh it, keep its trust flag.
2. Blocked device of the same owner: depends on the block reason.
   - logout / timeout / session_limit_enforced: unblock as trusted.
   - security_violation / compromised / suspicious_activity: reject for
     24 hours after the block, then unblock as untrusted.
   - admin_blocked / policy_violation: reject until reviewed.
   - anything else: reject for 1 hour, then unblock as untrusted.
3. Active device of another owner: reject.
4. Blocked device of another owner: transfer it if blocked more than
   30 days ago, otherwise reject.
5. No device: create one, untrusted.

Rejections never tell the caller which branch was taken; the audit event
recorded before returning or raising carries the full story.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any

from trustgate.core.errors import DeviceRejectedError, DuplicateRecordError
from trustgate.db.models.base import BlockReason, EventSeverity
from trustgate.services.audit import AuditEvent, SecurityEventType

if TYPE_CHECKING:
    from uuid import UUID

    from trustgate.db.models import Device
    from trustgate.db.repositories import DeviceRepository
    from trustgate.services.audit import AuditSink
    from trustgate.services.fingerprint import DeviceFingerprint
    from trustgate.services.risk import RiskAnalysis

logger = logging.getLogger(__name__)

ROUTINE_BLOCK_REASONS = frozenset(
    {BlockReason.LOGOUT, BlockReason.TIMEOUT, BlockReason.SESSION_LIMIT_ENFORCED}
)
SECURITY_BLOCK_REASONS = frozenset(
    {BlockReason.SECURITY_VIOLATION, BlockReason.COMPROMISED, BlockReason.SUSPICIOUS_ACTIVITY}
)
PERMANENT_BLOCK_REASONS = frozenset({BlockReason.ADMIN_BLOCKED, BlockReason.POLICY_VIOLATION})

SECURITY_COOLDOWN = timedelta(hours=24)
UNKNOWN_REASON_COOLDOWN = timedelta(hours=1)
TRANSFER_AFTER = timedelta(days=30)

FINGERPRINT_PREFIX_LENGTH = 8


class DeviceOutcome(str, Enum):
    """Branch taken by the device decision."""

    REFRESHED = "refreshed"
    CREATED = "created"
    NORMAL_RETURN = "normal_return"
    POST_COOLDOWN_REACTIVATION = "post_cooldown_reactivation"
    UNKNOWN_REASON_REACTIVATION = "unknown_reason_reactivation"
    TRANSFERRED = "transferred"
    REJECTED_SECURITY_COOLDOWN = "rejected_security_cooldown"
    REJECTED_PERMANENT_BLOCK = "rejected_permanent_block"
    REJECTED_UNKNOWN_BLOCK = "rejected_unknown_block"
    REJECTED_OWNER_COLLISION = "rejected_owner_collision"
    REJECTED_RECENT_CROSS_OWNER_BLOCK = "rejected_recent_cross_owner_block"


@dataclass(frozen=True, slots=True)
class DeviceDecision:
    """Result of a successful device decision."""

    device: Device
    outcome: DeviceOutcome

    @property
    def created(self) -> bool:
        return self.outcome is DeviceOutcome.CREATED


def parse_block_reason(value: str | None) -> BlockReason | None:
    """Map a stored block reason to a known BlockReason, or None if unknown."""
    if value is None:
        return None
    try:
        return BlockReason(value)
    except ValueError:
        return None


class DeviceTrustEngine:
    """State machine over (fingerprint, owner) device lookups.

    Example:
        engine = DeviceTrustEngine(uow.devices, audit_sink)
        decision = await engine.resolve(user.user_id, fingerprint, analysis)
        session = await admission.admit(user.user_id, decision.device.device_id)
    """

    def __init__(self, devices: DeviceRepository, audit: AuditSink) -> None:
        self._devices = devices
        self._audit = audit

    async def resolve(
        self,
        user_id: UUID,
        fingerprint: DeviceFingerprint,
        risk: RiskAnalysis,
        *,
        ip_address: str | None = None,
        force_untrusted: bool = False,
        now: datetime | None = None,
    ) -> DeviceDecision:
        """Decide what happens to the device presenting this fingerprint.

        Args:
            user_id: User attempting to log in.
            fingerprint: Fingerprint of the request.
            risk: Risk analysis of the request, snapshotted into device metadata.
            ip_address: Client address, stored as the device's last address.
            force_untrusted: Leave the resulting device untrusted (high risk).
            now: Current time (defaults to now in UTC).

        Returns:
            DeviceDecision with the refreshed, created or reactivated device.

        Raises:
            DeviceRejectedError: If policy forbids this device for this user.
        """
        now = now or datetime.now(UTC)
        context = _DecisionContext(
            user_id=user_id,
            fingerprint=fingerprint,
            risk=risk,
            ip_address=ip_address,
            force_untrusted=force_untrusted,
            now=now,
        )

        existing = await self._devices.find_by_fingerprint(fingerprint.primary)
        if existing is None:
            try:
                return await self._create(context)
            except DuplicateRecordError:
                # A concurrent request inserted the same fingerprint first
                logger.info(
                    "Concurrent device creation detected, re-evaluating: prefix=%s",
                    fingerprint.primary[:FINGERPRINT_PREFIX_LENGTH],
                )
                existing = await self._devices.find_by_fingerprint(fingerprint.primary)
                if existing is None:
                    raise

        if existing.user_id == user_id:
            if not existing.is_blocked:
                return await self._refresh(existing, context, DeviceOutcome.REFRESHED)
            return await self._resolve_own_blocked(existing, context)
        return await self._resolve_foreign(existing, context)

    async def block_device(
        self,
        device: Device,
        reason: BlockReason | str,
        *,
        now: datetime | None = None,
    ) -> Device:
        """Block a device with the given reason.

        Args:
            device: Device to block.
            reason: Known BlockReason or a free-text reason.
            now: Current time (defaults to now in UTC).

        Returns:
            The updated device.
        """
        now = now or datetime.now(UTC)
        reason_value = reason.value if isinstance(reason, BlockReason) else reason
        device = await self._devices.update(
            device,
            blocked_at=now,
            block_reason=reason_value,
            updated_at=now,
        )
        logger.info(
            "Device blocked: device_id=%s, reason=%s",
            device.device_id,
            reason_value,
        )
        return device

    async def _resolve_own_blocked(
        self, device: Device, context: _DecisionContext
    ) -> DeviceDecision:
        reason = parse_block_reason(device.block_reason)
        elapsed = context.now - device.blocked_at

        if reason in ROUTINE_BLOCK_REASONS:
            return await self._reactivate(
                device, context, DeviceOutcome.NORMAL_RETURN, trusted=True
            )

        if reason in SECURITY_BLOCK_REASONS:
            if elapsed < SECURITY_COOLDOWN:
                await self._reject(
                    device, context, DeviceOutcome.REJECTED_SECURITY_COOLDOWN, elapsed
                )
                raise DeviceRejectedError(retryable=True)
            return await self._reactivate(
                device, context, DeviceOutcome.POST_COOLDOWN_REACTIVATION, trusted=False
            )

        if reason in PERMANENT_BLOCK_REASONS:
            await self._reject(device, context, DeviceOutcome.REJECTED_PERMANENT_BLOCK, elapsed)
            raise DeviceRejectedError(retryable=False)

        if elapsed < UNKNOWN_REASON_COOLDOWN:
            await self._reject(device, context, DeviceOutcome.REJECTED_UNKNOWN_BLOCK, elapsed)
            raise DeviceRejectedError(retryable=True)
        return await self._reactivate(
            device, context, DeviceOutcome.UNKNOWN_REASON_REACTIVATION, trusted=False
        )

    async def _resolve_foreign(self, device: Device, context: _DecisionContext) -> DeviceDecision:
        if not device.is_blocked:
            await self._reject(device, context, DeviceOutcome.REJECTED_OWNER_COLLISION, None)
            raise DeviceRejectedError(retryable=False)

        elapsed = context.now - device.blocked_at
        if elapsed <= TRANSFER_AFTER:
            await self._reject(
                device, context, DeviceOutcome.REJECTED_RECENT_CROSS_OWNER_BLOCK, elapsed
            )
            raise DeviceRejectedError(retryable=False)

        previous_owner = device.user_id
        device = await self._devices.update(
            device,
            user_id=context.user_id,
            blocked_at=None,
            block_reason=None,
            is_trusted=False,
            **self._sighting_patch(context),
        )
        await self._record(
            device,
            context,
            DeviceOutcome.TRANSFERRED,
            elapsed=elapsed,
            extra={"previous_owner": str(previous_owner)},
        )
        logger.info(
            "Device transferred: device_id=%s, from_user=%s, to_user=%s",
            device.device_id,
            previous_owner,
            context.user_id,
        )
        return DeviceDecision(device=device, outcome=DeviceOutcome.TRANSFERRED)

    async def _create(self, context: _DecisionContext) -> DeviceDecision:
        fingerprint = context.fingerprint
        device = await self._devices.create(
            device_id=uuid.uuid4(),
            user_id=context.user_id,
            primary_fingerprint=fingerprint.primary,
            is_trusted=False,
            created_at=context.now,
            **self._sighting_patch(context),
        )
        await self._record(device, context, DeviceOutcome.CREATED)
        logger.info(
            "Device created: device_id=%s, user_id=%s, confidence=%s",
            device.device_id,
            context.user_id,
            fingerprint.confidence.value,
        )
        return DeviceDecision(device=device, outcome=DeviceOutcome.CREATED)

    async def _refresh(
        self, device: Device, context: _DecisionContext, outcome: DeviceOutcome
    ) -> DeviceDecision:
        patch = self._sighting_patch(context)
        if context.force_untrusted:
            patch["is_trusted"] = False
        device = await self._devices.update(device, **patch)
        await self._record(device, context, outcome)
        return DeviceDecision(device=device, outcome=outcome)

    async def _reactivate(
        self,
        device: Device,
        context: _DecisionContext,
        outcome: DeviceOutcome,
        *,
        trusted: bool,
    ) -> DeviceDecision:
        elapsed = context.now - device.blocked_at
        previous_reason = device.block_reason
        device = await self._devices.update(
            device,
            blocked_at=None,
            block_reason=None,
            is_trusted=trusted and not context.force_untrusted,
            **self._sighting_patch(context),
        )
        await self._record(
            device,
            context,
            outcome,
            elapsed=elapsed,
            block_reason=previous_reason,
        )
        logger.info(
            "Device reactivated: device_id=%s, outcome=%s, previous_reason=%s",
            device.device_id,
            outcome.value,
            previous_reason,
        )
        return DeviceDecision(device=device, outcome=outcome)

    async def _reject(
        self,
        device: Device,
        context: _DecisionContext,
        outcome: DeviceOutcome,
        elapsed: timedelta | None,
    ) -> None:
        logger.warning(
            "Device rejected: outcome=%s, device_id=%s, requester=%s",
            outcome.value,
            device.device_id,
            context.user_id,
        )
        await self._record(
            device,
            context,
            outcome,
            elapsed=elapsed,
            block_reason=device.block_reason,
            extra={"device_owner": str(device.user_id)},
        )

    def _sighting_patch(self, context: _DecisionContext) -> dict[str, Any]:
        fingerprint = context.fingerprint
        descriptor = fingerprint.describe()
        return {
            "secondary_fingerprint": fingerprint.secondary,
            "confidence": fingerprint.confidence,
            "last_seen_at": context.now,
            "last_ip_address": context.ip_address,
            "user_agent": fingerprint.components.user_agent or None,
            "device_type": descriptor.device_type,
            "device_name": descriptor.device_name,
            "os_name": descriptor.os_name,
            "os_version": descriptor.os_version,
            "browser_name": descriptor.browser_name,
            "browser_version": descriptor.browser_version,
            "device_metadata": {
                "detection": fingerprint.snapshot(),
                "risk_analysis": context.risk.to_dict(),
                "analyzed_at": context.now.isoformat(),
            },
            "updated_at": context.now,
        }

    async def _record(
        self,
        device: Device,
        context: _DecisionContext,
        outcome: DeviceOutcome,
        *,
        elapsed: timedelta | None = None,
        block_reason: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        rejected = outcome.value.startswith("rejected_")
        unknown_path = outcome in (
            DeviceOutcome.REJECTED_UNKNOWN_BLOCK,
            DeviceOutcome.UNKNOWN_REASON_REACTIVATION,
        )
        if outcome is DeviceOutcome.REJECTED_OWNER_COLLISION:
            severity = EventSeverity.CRITICAL
        elif rejected or unknown_path:
            severity = EventSeverity.WARNING
        else:
            severity = EventSeverity.INFO

        details: dict[str, Any] = {
            "outcome": outcome.value,
            "fingerprint_prefix": context.fingerprint.primary[:FINGERPRINT_PREFIX_LENGTH],
            "fingerprint_source": context.fingerprint.source.value,
            "owner": str(context.user_id),
            "block_reason": block_reason,
            "elapsed_seconds": int(elapsed.total_seconds()) if elapsed is not None else None,
            "risk": context.risk.to_dict(),
        }
        if extra:
            details.update(extra)

        await self._audit.record(
            AuditEvent(
                event_type=SecurityEventType.DEVICE_DECISION,
                severity=severity,
                user_id=context.user_id,
                device_id=device.device_id,
                ip_address=context.ip_address,
                user_agent=context.fingerprint.components.user_agent or None,
                details=details,
                occurred_at=context.now,
            )
        )


@dataclass(frozen=True, slots=True)
class _DecisionContext:
    user_id: UUID
    fingerprint: DeviceFingerprint
    risk: RiskAnalysis
    ip_address: str | None
    force_untrusted: bool
    now: datetime
