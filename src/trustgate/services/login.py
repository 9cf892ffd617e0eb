"""Phone OTP login orchestration.

Login runs in stages, each in its own transaction:

1. Rate-limit pre-check on the destination.
2. OTP verification. A wrong code is counted against both the challenge
   and the login rate limit, and committed before the error is raised.
3. The atomic login transaction: risk analysis and gate, user lookup or
   creation, device decision, session admission, token issuance and the
   audit trail. Any failure rolls all of it back.

Audit events raised during stage 3 are buffered. They are written with
the commit, or, when a policy error (rejected device, exhausted session
limit) aborts the transaction, in a follow-up transaction of their own.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from trustgate.core.errors import (
    InvalidOtpError,
    RateLimitedError,
    SessionInvalidError,
    TrustGateError,
)
from trustgate.db.models.base import BlockReason, EventSeverity, TerminationReason
from trustgate.services.audit import (
    AuditEvent,
    BufferedAuditSink,
    SecurityEventSink,
    SecurityEventType,
)
from trustgate.services.client_ip import extract_client_ip
from trustgate.services.collaborators import (
    LoggingOtpNotifier,
    OpaqueTokenIssuer,
    StaticReputationLookup,
    mask_destination,
)
from trustgate.services.device_trust import DeviceTrustEngine
from trustgate.services.fingerprint import FingerprintGenerator
from trustgate.services.otp import OtpService, format_destination
from trustgate.services.rate_limit import RateLimiter
from trustgate.services.risk import BehavioralRiskAnalyzer, RiskGate, RiskLevel
from trustgate.services.session import SessionAdmissionController, hash_token

if TYPE_CHECKING:
    from collections.abc import Mapping
    from uuid import UUID

    from trustgate.core.config import Settings
    from trustgate.db.models import Session, User
    from trustgate.db.unit_of_work import Repositories
    from trustgate.services.audit import AuditSink
    from trustgate.services.collaborators import OtpNotifier, ReputationLookup, TokenIssuer
    from trustgate.services.fingerprint import DeviceFingerprint
    from trustgate.services.risk import RiskAnalysis

logger = logging.getLogger(__name__)


class LoginAction(str, Enum):
    """Whether the login also registered the user."""

    LOGIN = "login"
    REGISTER_LOGIN = "register/login"


@dataclass(frozen=True, slots=True)
class OtpDispatch:
    destination: str
    expires_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "destination": mask_destination(self.destination),
            "expires_at": self.expires_at.isoformat(),
        }


@dataclass(frozen=True, slots=True)
class TokenPair:
    """Bearer tokens bound to one session."""

    session_id: UUID
    access_token: str
    refresh_token: str
    expires_in: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": str(self.session_id),
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "token_type": "Bearer",
            "expires_in": self.expires_in,
        }


@dataclass(frozen=True, slots=True)
class LoginResult:
    """Outcome of a successful login."""

    action: LoginAction
    user_id: UUID
    device_id: UUID
    device_trusted: bool
    session_token: str
    tokens: TokenPair
    risk_level: RiskLevel

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action.value,
            "user_id": str(self.user_id),
            "device_id": str(self.device_id),
            "device_trusted": self.device_trusted,
            "session_token": self.session_token,
            "risk_level": self.risk_level.value,
            **self.tokens.to_dict(),
        }


class LoginService:
    """Request-scoped login orchestrator.

    Components are wired in the constructor from one unit of work, so a
    LoginService instance must not outlive its request.

    Example:
        async with unit_of_work() as uow:
            service = LoginService(uow, get_settings())
            result = await service.login("+33", "612345678", "042117", request.headers)
    """

    def __init__(
        self,
        uow: Repositories,
        settings: Settings,
        *,
        token_issuer: TokenIssuer | None = None,
        notifier: OtpNotifier | None = None,
        audit_sink: AuditSink | None = None,
        geographic: ReputationLookup | None = None,
        network: ReputationLookup | None = None,
    ) -> None:
        self._uow = uow
        self._settings = settings
        self._tokens = token_issuer or OpaqueTokenIssuer()
        self._sink = audit_sink or SecurityEventSink(uow.security_events)
        self._buffer = BufferedAuditSink()

        self._fingerprints = FingerprintGenerator()
        self._analyzer = BehavioralRiskAnalyzer(
            geographic=geographic or StaticReputationLookup(settings.risk.default_geographic_score),
            network=network or StaticReputationLookup(settings.risk.default_network_score),
        )
        self._gate = RiskGate()
        self._limiter = RateLimiter(uow.rate_limits, settings.rate_limit)
        self._otp = OtpService(uow.otps, settings.otp, notifier or LoggingOtpNotifier())
        self._devices = DeviceTrustEngine(uow.devices, self._buffer)
        self._admission = SessionAdmissionController(uow.sessions, settings.session, self._buffer)

    async def send_otp(
        self,
        country_code: str,
        phone_number: str,
        headers: Mapping[str, str],
        *,
        peer_address: str | None = None,
        now: datetime | None = None,
    ) -> OtpDispatch:
        """Issue an OTP for a phone number.

        Raises:
            RateLimitedError: If too many codes were sent recently.
            NotificationError: If the code could not be delivered.
        """
        now = now or datetime.now(UTC)
        destination = format_destination(country_code, phone_number)
        ip_address = extract_client_ip(headers, peer_address)

        try:
            async with self._uow.transaction():
                await self._limiter.check_otp_send(destination, now=now)
        except RateLimitedError:
            await self._record_now(
                AuditEvent(
                    event_type=SecurityEventType.RATE_LIMITED,
                    severity=EventSeverity.WARNING,
                    ip_address=ip_address,
                    details={"scope": "otp", "destination": mask_destination(destination)},
                    occurred_at=now,
                )
            )
            raise

        async with self._uow.transaction():
            challenge = await self._otp.send(destination, now=now)
            await self._sink.record(
                AuditEvent(
                    event_type=SecurityEventType.OTP_SENT,
                    ip_address=ip_address,
                    details={"destination": mask_destination(destination)},
                    occurred_at=now,
                )
            )

        return OtpDispatch(destination=destination, expires_at=challenge.expires_at)

    async def login(
        self,
        country_code: str,
        phone_number: str,
        code: str,
        headers: Mapping[str, str],
        *,
        peer_address: str | None = None,
        remember_me: bool = False,
        now: datetime | None = None,
    ) -> LoginResult:
        """Log a user in with an OTP, registering them on first login.

        Args:
            country_code: Country calling code, e.g. "+33".
            phone_number: National phone number.
            code: OTP code received by the user.
            headers: Request headers used for fingerprinting and client address.
            peer_address: TCP peer address, used when no proxy header is present.
            remember_me: Whether the client asked to be remembered.
            now: Current time (defaults to now in UTC).

        Returns:
            LoginResult with the session and bearer tokens.

        Raises:
            RateLimitedError: If failed logins for this number are exhausted.
            InvalidOtpError: If the code is wrong or expired.
            DeviceRejectedError: If risk or device policy refuses the request.
            SessionLimitError: If a session ceiling is reached and eviction is off.
        """
        now = now or datetime.now(UTC)
        destination = format_destination(country_code, phone_number)
        ip_address = extract_client_ip(headers, peer_address)
        fingerprint = self._fingerprints.generate(headers)
        user_agent = fingerprint.components.user_agent or None

        try:
            async with self._uow.transaction():
                await self._limiter.check_login(destination, now=now)
        except RateLimitedError:
            await self._record_now(
                AuditEvent(
                    event_type=SecurityEventType.RATE_LIMITED,
                    severity=EventSeverity.WARNING,
                    ip_address=ip_address,
                    user_agent=user_agent,
                    details={"scope": "login", "destination": mask_destination(destination)},
                    occurred_at=now,
                )
            )
            raise

        async with self._uow.transaction():
            challenge = await self._otp.verify(destination, code, now=now)
            if challenge is None:
                attempts = await self._limiter.record_failed_login(destination, now=now)
                await self._sink.record(
                    AuditEvent(
                        event_type=SecurityEventType.OTP_VERIFICATION_FAILED,
                        severity=EventSeverity.WARNING,
                        ip_address=ip_address,
                        user_agent=user_agent,
                        details={
                            "destination": mask_destination(destination),
                            "failed_attempts": attempts,
                        },
                        occurred_at=now,
                    )
                )
        if challenge is None:
            raise InvalidOtpError()

        try:
            async with self._uow.transaction():
                result = await self._complete_login(
                    country_code,
                    phone_number,
                    fingerprint,
                    ip_address=ip_address,
                    remember_me=remember_me,
                    now=now,
                )
                await self._buffer.flush(self._sink)
        except TrustGateError:
            await self._flush_after_rollback()
            raise
        except Exception:
            dropped = self._buffer.discard()
            logger.warning("Login transaction failed, dropped %d audit events", dropped)
            raise

        logger.info(
            "Login succeeded: user_id=%s, action=%s, device_id=%s, risk=%s",
            result.user_id,
            result.action.value,
            result.device_id,
            result.risk_level.value,
        )
        return result

    async def refresh(
        self,
        refresh_token: str,
        headers: Mapping[str, str],
        *,
        peer_address: str | None = None,
        now: datetime | None = None,
    ) -> TokenPair:
        """Rotate the tokens of a live session.

        Raises:
            SessionInvalidError: If the token is unknown or its session is no longer live.
        """
        now = now or datetime.now(UTC)
        ip_address = extract_client_ip(headers, peer_address)
        user_agent = {k.lower(): v for k, v in headers.items()}.get("user-agent")

        async with self._uow.transaction():
            session = await self._uow.sessions.find_by_refresh_hash(hash_token(refresh_token))
            if session is None:
                raise SessionInvalidError()

            session = await self._admission.refresh(
                session, ip_address=ip_address, user_agent=user_agent, now=now
            )
            tokens = await self._issue_tokens(session)
            await self._sink.record(
                AuditEvent(
                    event_type=SecurityEventType.TOKEN_REFRESHED,
                    user_id=session.user_id,
                    session_id=session.session_id,
                    device_id=session.device_id,
                    ip_address=ip_address,
                    user_agent=user_agent,
                    details={"expires_at": session.expires_at.isoformat()},
                    occurred_at=now,
                )
            )
        return tokens

    async def logout(
        self,
        access_token: str,
        headers: Mapping[str, str],
        *,
        peer_address: str | None = None,
        now: datetime | None = None,
    ) -> None:
        """End the session of an access token and block its device.

        Raises:
            SessionInvalidError: If the token does not belong to a live session.
        """
        now = now or datetime.now(UTC)
        ip_address = extract_client_ip(headers, peer_address)

        async with self._uow.transaction():
            session = await self._uow.sessions.find_one(access_token_hash=hash_token(access_token))
            if session is None or not session.is_active_at(now):
                raise SessionInvalidError()

            await self._admission.terminate(session, TerminationReason.LOGOUT, now=now)
            if session.device_id is not None:
                device = await self._uow.devices.find_one(device_id=session.device_id)
                if device is not None and not device.is_blocked:
                    await self._devices.block_device(device, BlockReason.LOGOUT, now=now)

            await self._sink.record(
                AuditEvent(
                    event_type=SecurityEventType.LOGOUT,
                    user_id=session.user_id,
                    session_id=session.session_id,
                    device_id=session.device_id,
                    ip_address=ip_address,
                    occurred_at=now,
                )
            )
        logger.info("Logout: session_id=%s, user_id=%s", session.session_id, session.user_id)

    async def _complete_login(
        self,
        country_code: str,
        phone_number: str,
        fingerprint: DeviceFingerprint,
        *,
        ip_address: str | None,
        remember_me: bool,
        now: datetime,
    ) -> LoginResult:
        known_device = await self._uow.devices.find_by_fingerprint(fingerprint.primary)
        analysis = await self._analyzer.analyze(
            fingerprint,
            ip_address=ip_address,
            previous_seen_at=known_device.last_seen_at if known_device else None,
            now=now,
        )
        await self._apply_gate(analysis, fingerprint, ip_address, now)

        user, action = await self._find_or_register(country_code, phone_number, now)
        decision = await self._devices.resolve(
            user.user_id,
            fingerprint,
            analysis,
            ip_address=ip_address,
            force_untrusted=self._gate.evaluate(analysis).force_untrusted,
            now=now,
        )
        session = await self._admission.admit(
            user.user_id,
            decision.device.device_id,
            ip_address=ip_address,
            user_agent=fingerprint.components.user_agent or None,
            remember_me=remember_me,
            now=now,
        )
        tokens = await self._issue_tokens(session)

        await self._buffer.record(
            AuditEvent(
                event_type=SecurityEventType.LOGIN_SUCCESS,
                user_id=user.user_id,
                session_id=session.session_id,
                device_id=decision.device.device_id,
                ip_address=ip_address,
                user_agent=fingerprint.components.user_agent or None,
                details={
                    "action": action.value,
                    "device_outcome": decision.outcome.value,
                    "device_trusted": decision.device.is_trusted,
                    "risk_level": analysis.level.value,
                },
                occurred_at=now,
            )
        )

        return LoginResult(
            action=action,
            user_id=user.user_id,
            device_id=decision.device.device_id,
            device_trusted=decision.device.is_trusted,
            session_token=session.session_token,
            tokens=tokens,
            risk_level=analysis.level,
        )

    async def _apply_gate(
        self,
        analysis: RiskAnalysis,
        fingerprint: DeviceFingerprint,
        ip_address: str | None,
        now: datetime,
    ) -> None:
        verdict = self._gate.evaluate(analysis)
        if not verdict.audit:
            return

        event_type = (
            SecurityEventType.RISK_FLAGGED if verdict.allowed else SecurityEventType.RISK_REJECTED
        )
        severity = EventSeverity.WARNING if verdict.allowed else EventSeverity.CRITICAL
        await self._buffer.record(
            AuditEvent(
                event_type=event_type,
                severity=severity,
                ip_address=ip_address,
                user_agent=fingerprint.components.user_agent or None,
                details={
                    "fingerprint_prefix": fingerprint.primary[:8],
                    "force_untrusted": verdict.force_untrusted,
                    "risk": analysis.to_dict(),
                },
                occurred_at=now,
            )
        )
        self._gate.enforce(analysis)

    async def _find_or_register(
        self, country_code: str, phone_number: str, now: datetime
    ) -> tuple[User, LoginAction]:
        user = await self._uow.users.find_by_phone(country_code, phone_number)
        if user is not None:
            patch: dict[str, Any] = {"last_login_at": now, "updated_at": now}
            if user.phone_verified_at is None:
                patch["phone_verified_at"] = now
            return await self._uow.users.update(user, **patch), LoginAction.LOGIN

        user = await self._uow.users.create(
            user_id=uuid.uuid4(),
            country_code=country_code,
            phone_number=phone_number,
            phone_verified_at=now,
            last_login_at=now,
            created_at=now,
            updated_at=now,
        )
        logger.info("User registered: user_id=%s", user.user_id)
        return user, LoginAction.REGISTER_LOGIN

    async def _issue_tokens(self, session: Session) -> TokenPair:
        access_token = self._tokens.issue_access_token(session.user_id, session)
        refresh_token, expires_in = self._tokens.issue_refresh_token(session.user_id, session)
        await self._uow.sessions.update(
            session,
            access_token_hash=hash_token(access_token),
            refresh_token_hash=hash_token(refresh_token),
        )
        return TokenPair(
            session_id=session.session_id,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=expires_in,
        )

    async def _record_now(self, event: AuditEvent) -> None:
        async with self._uow.transaction():
            await self._sink.record(event)

    async def _flush_after_rollback(self) -> None:
        if not self._buffer.pending:
            return
        async with self._uow.transaction():
            await self._buffer.flush(self._sink)
