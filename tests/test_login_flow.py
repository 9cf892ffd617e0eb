"""End-to-end tests for the login flow over the in-memory unit of work.

Tests cover:
- First login of a new phone number (registration)
- Returning logins from the same browser
- Session eviction at the per-user ceiling
- Rejection of automation clients before any mutation
- Wrong codes, rate limiting and the audit trail
- Token refresh and logout
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from tests.factories import CURL_UA, NOW, browser_headers
from tests.fakes import CapturingNotifier, FakeUnitOfWork, FixedReputationLookup
from trustgate.core.config import SessionSettings, Settings
from trustgate.core.errors import (
    DeviceRejectedError,
    InvalidOtpError,
    RateLimitedError,
    RequestValidationError,
    SessionInvalidError,
    SessionLimitError,
)
from trustgate.db.models import TerminationReason
from trustgate.services.audit import SecurityEventType
from trustgate.services.login import LoginAction, LoginResult, LoginService
from trustgate.services.risk import RiskLevel
from trustgate.services.session import hash_token

COUNTRY = "+33"
PHONE = "612345678"
DESTINATION = COUNTRY + PHONE


class LoginDriver:
    """Builds one LoginService per call, as the API does per request."""

    def __init__(
        self,
        uow: FakeUnitOfWork,
        settings: Settings,
        notifier: CapturingNotifier,
        **collaborators,
    ) -> None:
        self.uow = uow
        self.settings = settings
        self.notifier = notifier
        self.collaborators = collaborators

    def service(self) -> LoginService:
        return LoginService(
            self.uow, self.settings, notifier=self.notifier, **self.collaborators
        )

    async def login(self, headers, *, now, phone: str = PHONE) -> LoginResult:
        await self.service().send_otp(COUNTRY, phone, headers, now=now)
        code = self.notifier.codes[COUNTRY + phone]
        return await self.service().login(COUNTRY, phone, code, headers, now=now)

    async def wrong_login(self, headers, *, now) -> None:
        code = self.notifier.codes.get(DESTINATION, "")
        wrong = "000000" if code != "000000" else "111111"
        await self.service().login(COUNTRY, PHONE, wrong, headers, now=now)


@pytest.fixture
def driver(uow: FakeUnitOfWork, settings: Settings, notifier: CapturingNotifier) -> LoginDriver:
    return LoginDriver(uow, settings, notifier)


def _event_types(uow: FakeUnitOfWork) -> list[str]:
    return [row.event_type for row in uow.security_events.rows]


class TestFirstLogin:
    """A fresh phone number with a legitimate browser."""

    @pytest.mark.asyncio
    async def test_registers_user_device_and_session(
        self, driver: LoginDriver, uow: FakeUnitOfWork
    ) -> None:
        result = await driver.login(browser_headers(), now=NOW)

        assert result.action is LoginAction.REGISTER_LOGIN
        assert result.risk_level is RiskLevel.LOW
        assert result.device_trusted is False

        (user,) = uow.users.rows
        assert (user.country_code, user.phone_number) == (COUNTRY, PHONE)
        assert user.phone_verified_at == NOW
        (device,) = uow.devices.rows
        assert device.user_id == user.user_id
        assert device.is_trusted is False
        (session,) = uow.sessions.rows
        assert session.device_id == device.device_id
        assert session.session_token == result.session_token
        assert session.access_token_hash == hash_token(result.tokens.access_token)
        assert session.refresh_token_hash == hash_token(result.tokens.refresh_token)

    @pytest.mark.asyncio
    async def test_audit_trail(self, driver: LoginDriver, uow: FakeUnitOfWork) -> None:
        result = await driver.login(browser_headers(), now=NOW)

        assert _event_types(uow) == ["otp_sent", "device_decision", "login_success"]
        (success,) = uow.security_events.of_type(SecurityEventType.LOGIN_SUCCESS)
        assert success.user_id == result.user_id
        assert success.payload["action"] == "register/login"
        assert success.payload["device_outcome"] == "created"

    @pytest.mark.asyncio
    async def test_result_serialization(self, driver: LoginDriver) -> None:
        data = (await driver.login(browser_headers(), now=NOW)).to_dict()

        assert data["action"] == "register/login"
        assert data["token_type"] == "Bearer"
        assert data["risk_level"] == "low"
        assert set(data) >= {"user_id", "device_id", "session_id", "access_token"}


class TestReturningLogin:
    """The same user coming back from the same browser."""

    @pytest.mark.asyncio
    async def test_reuses_device_and_adds_session(
        self, driver: LoginDriver, uow: FakeUnitOfWork
    ) -> None:
        first = await driver.login(browser_headers(), now=NOW)
        second = await driver.login(browser_headers(), now=NOW + timedelta(minutes=5))

        assert second.action is LoginAction.LOGIN
        assert second.user_id == first.user_id
        assert second.device_id == first.device_id
        assert len(uow.devices.rows) == 1
        assert uow.devices.rows[0].last_seen_at == NOW + timedelta(minutes=5)
        assert len(uow.sessions.rows) == 2
        assert all(row.terminated_at is None for row in uow.sessions.rows)

    @pytest.mark.asyncio
    async def test_sixth_login_evicts_least_recently_active(
        self, uow: FakeUnitOfWork, notifier: CapturingNotifier
    ) -> None:
        settings = Settings(
            session=SessionSettings(max_sessions_per_user=5, max_sessions_per_device=10)
        )
        driver = LoginDriver(uow, settings, notifier)

        for minutes in range(0, 30, 5):
            await driver.login(browser_headers(), now=NOW + timedelta(minutes=minutes))

        first, *others = sorted(uow.sessions.rows, key=lambda row: row.created_at)
        assert first.termination_reason is TerminationReason.SESSION_LIMIT_ENFORCED
        assert first.terminated_at == NOW + timedelta(minutes=25)
        assert [row.terminated_at for row in others] == [None] * 5
        (evicted,) = uow.security_events.of_type(SecurityEventType.SESSION_EVICTED)
        assert evicted.session_id == first.session_id

    @pytest.mark.asyncio
    async def test_eviction_disabled_rolls_back_login(
        self, uow: FakeUnitOfWork, notifier: CapturingNotifier
    ) -> None:
        settings = Settings(
            session=SessionSettings(
                max_sessions_per_user=1,
                max_sessions_per_device=1,
                terminate_oldest_on_limit=False,
            )
        )
        driver = LoginDriver(uow, settings, notifier)
        await driver.login(browser_headers(), now=NOW)

        with pytest.raises(SessionLimitError):
            await driver.login(browser_headers(), now=NOW + timedelta(minutes=5))

        assert len(uow.sessions.rows) == 1
        assert uow.devices.rows[0].last_seen_at == NOW
        assert uow.users.rows[0].last_login_at == NOW
        # The device decision of the refused attempt is still on record
        decisions = uow.security_events.of_type(SecurityEventType.DEVICE_DECISION)
        assert [row.payload["outcome"] for row in decisions] == ["created", "refreshed"]


class TestRiskRejection:
    """Automation clients and suspicious requests."""

    @pytest.mark.asyncio
    async def test_curl_is_rejected_before_mutation(
        self, driver: LoginDriver, uow: FakeUnitOfWork
    ) -> None:
        with pytest.raises(DeviceRejectedError):
            await driver.login({"User-Agent": CURL_UA}, now=NOW)

        assert uow.users.rows == []
        assert uow.devices.rows == []
        assert uow.sessions.rows == []
        (rejected,) = uow.security_events.of_type(SecurityEventType.RISK_REJECTED)
        assert rejected.payload["risk"]["score"] > 0.9
        assert rejected.payload["risk"]["level"] == "critical"

    @pytest.mark.asyncio
    async def test_medium_risk_is_flagged_and_allowed(
        self, uow: FakeUnitOfWork, settings: Settings, notifier: CapturingNotifier
    ) -> None:
        driver = LoginDriver(
            uow,
            settings,
            notifier,
            geographic=FixedReputationLookup(1.0),
            network=FixedReputationLookup(1.0),
        )
        headers = {"User-Agent": "python-requests/2.31.0", "X-Timezone": "UTC"}

        result = await driver.login(headers, now=NOW)

        assert result.risk_level is RiskLevel.MEDIUM
        (flagged,) = uow.security_events.of_type(SecurityEventType.RISK_FLAGGED)
        assert flagged.payload["risk"]["score"] == pytest.approx(0.55)
        assert flagged.payload["force_untrusted"] is False

    @pytest.mark.asyncio
    async def test_device_of_another_user_is_rejected(
        self, driver: LoginDriver, uow: FakeUnitOfWork
    ) -> None:
        await driver.login(browser_headers(), now=NOW)

        with pytest.raises(DeviceRejectedError):
            await driver.login(browser_headers(), now=NOW, phone="698765432")

        assert len(uow.users.rows) == 1
        assert len(uow.sessions.rows) == 1
        decisions = uow.security_events.of_type(SecurityEventType.DEVICE_DECISION)
        assert decisions[-1].payload["outcome"] == "rejected_owner_collision"


class TestWrongCodes:
    """Wrong codes and the failed login limit."""

    @pytest.mark.asyncio
    async def test_wrong_code_is_counted_and_audited(
        self, driver: LoginDriver, uow: FakeUnitOfWork
    ) -> None:
        await driver.service().send_otp(COUNTRY, PHONE, browser_headers(), now=NOW)

        with pytest.raises(InvalidOtpError):
            await driver.wrong_login(browser_headers(), now=NOW)

        assert uow.users.rows == []
        (challenge,) = uow.otps.rows
        assert challenge.attempts == 1
        (failed,) = uow.security_events.of_type(SecurityEventType.OTP_VERIFICATION_FAILED)
        assert failed.payload == {"destination": "+33*******78", "failed_attempts": 1}

    @pytest.mark.asyncio
    async def test_failed_logins_are_rate_limited(
        self, driver: LoginDriver, uow: FakeUnitOfWork
    ) -> None:
        await driver.service().send_otp(COUNTRY, PHONE, browser_headers(), now=NOW)
        for _ in range(5):
            with pytest.raises(InvalidOtpError):
                await driver.wrong_login(browser_headers(), now=NOW)

        with pytest.raises(RateLimitedError):
            await driver.wrong_login(browser_headers(), now=NOW + timedelta(minutes=1))

        (limited,) = uow.security_events.of_type(SecurityEventType.RATE_LIMITED)
        assert limited.payload["scope"] == "login"

    @pytest.mark.asyncio
    async def test_otp_sends_are_rate_limited(
        self, driver: LoginDriver, uow: FakeUnitOfWork
    ) -> None:
        for _ in range(3):
            await driver.service().send_otp(COUNTRY, PHONE, browser_headers(), now=NOW)

        with pytest.raises(RateLimitedError):
            await driver.service().send_otp(COUNTRY, PHONE, browser_headers(), now=NOW)

        assert len(uow.otps.rows) == 3
        (limited,) = uow.security_events.of_type(SecurityEventType.RATE_LIMITED)
        assert limited.payload["scope"] == "otp"

    @pytest.mark.asyncio
    async def test_malformed_phone_number_is_refused_before_any_write(
        self, driver: LoginDriver, uow: FakeUnitOfWork
    ) -> None:
        with pytest.raises(RequestValidationError) as exc_info:
            await driver.service().send_otp(COUNTRY, "06-12-34", browser_headers(), now=NOW)

        assert exc_info.value.detail == {"field": "phone_number"}
        assert uow.rate_limits.rows == []
        assert uow.otps.rows == []
        assert driver.notifier.codes == {}

    @pytest.mark.asyncio
    async def test_malformed_country_code_is_refused_at_login(
        self, driver: LoginDriver, uow: FakeUnitOfWork
    ) -> None:
        with pytest.raises(RequestValidationError) as exc_info:
            await driver.service().login("0033", PHONE, "123456", browser_headers(), now=NOW)

        assert exc_info.value.detail == {"field": "country_code"}
        assert uow.rate_limits.rows == []
        assert uow.users.rows == []


class TestRefreshAndLogout:
    """Token rotation and logout."""

    @pytest.mark.asyncio
    async def test_refresh_rotates_tokens(self, driver: LoginDriver, uow: FakeUnitOfWork) -> None:
        result = await driver.login(browser_headers(), now=NOW)
        later = NOW + timedelta(hours=1)

        tokens = await driver.service().refresh(
            result.tokens.refresh_token, browser_headers(), now=later
        )

        (session,) = uow.sessions.rows
        assert tokens.session_id == session.session_id
        assert session.refresh_token_hash == hash_token(tokens.refresh_token)
        assert session.expires_at == later + timedelta(hours=24)
        with pytest.raises(SessionInvalidError):
            await driver.service().refresh(
                result.tokens.refresh_token, browser_headers(), now=later
            )

    @pytest.mark.asyncio
    async def test_refresh_unknown_token(self, driver: LoginDriver) -> None:
        with pytest.raises(SessionInvalidError):
            await driver.service().refresh("not-a-token", browser_headers(), now=NOW)

    @pytest.mark.asyncio
    async def test_logout_then_return_is_trusted(
        self, driver: LoginDriver, uow: FakeUnitOfWork
    ) -> None:
        result = await driver.login(browser_headers(), now=NOW)

        await driver.service().logout(
            result.tokens.access_token, browser_headers(), now=NOW + timedelta(hours=1)
        )

        (session,) = uow.sessions.rows
        assert session.termination_reason is TerminationReason.LOGOUT
        (device,) = uow.devices.rows
        assert device.block_reason == "logout"

        again = await driver.login(browser_headers(), now=NOW + timedelta(hours=2))

        assert again.device_id == result.device_id
        assert again.device_trusted is True
        assert device.is_blocked is False
        decisions = uow.security_events.of_type(SecurityEventType.DEVICE_DECISION)
        assert decisions[-1].payload["outcome"] == "normal_return"

    @pytest.mark.asyncio
    async def test_logout_twice_fails(self, driver: LoginDriver) -> None:
        result = await driver.login(browser_headers(), now=NOW)
        later = NOW + timedelta(minutes=10)
        await driver.service().logout(result.tokens.access_token, browser_headers(), now=later)

        with pytest.raises(SessionInvalidError):
            await driver.service().logout(
                result.tokens.access_token, browser_headers(), now=later
            )
