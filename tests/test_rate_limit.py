"""Tests for fixed-window rate limiting.

Tests cover:
- OTP sends counted on every check
- The check/record contract for failed logins
- Window roll-over at the half-open boundary
- Losing the counter creation race
"""

from __future__ import annotations

import uuid
from datetime import timedelta

import pytest

from tests.factories import NOW
from tests.fakes import FakeRateLimitRepository
from trustgate.core.config import RateLimitSettings
from trustgate.core.errors import RateLimitedError
from trustgate.db.models import RateLimitCounter, RateLimitType
from trustgate.services.rate_limit import RateLimiter

PHONE = "+33612345678"


@pytest.fixture
def counters() -> FakeRateLimitRepository:
    return FakeRateLimitRepository()


@pytest.fixture
def limiter(counters: FakeRateLimitRepository) -> RateLimiter:
    return RateLimiter(counters, RateLimitSettings())


class TestOtpSend:
    """Tests for OTP send limits (3 per 10 minutes by default)."""

    @pytest.mark.asyncio
    async def test_counts_each_send(
        self, limiter: RateLimiter, counters: FakeRateLimitRepository
    ) -> None:
        assert await limiter.check_otp_send(PHONE, now=NOW) == 1
        assert await limiter.check_otp_send(PHONE, now=NOW + timedelta(minutes=1)) == 2
        assert await limiter.check_otp_send(PHONE, now=NOW + timedelta(minutes=2)) == 3

        (counter,) = counters.rows
        assert counter.limit_type is RateLimitType.OTP
        assert counter.window_end == NOW + timedelta(minutes=10)

    @pytest.mark.asyncio
    async def test_exhausted_window_reports_retry_after(self, limiter: RateLimiter) -> None:
        for _ in range(3):
            await limiter.check_otp_send(PHONE, now=NOW)

        with pytest.raises(RateLimitedError) as exc_info:
            await limiter.check_otp_send(PHONE, now=NOW + timedelta(minutes=4))

        assert exc_info.value.retry_after_seconds == 360
        assert exc_info.value.detail == {"retry_after_minutes": 6}
        assert "6 minutes" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_rejection_does_not_count(
        self, limiter: RateLimiter, counters: FakeRateLimitRepository
    ) -> None:
        for _ in range(3):
            await limiter.check_otp_send(PHONE, now=NOW)
        with pytest.raises(RateLimitedError):
            await limiter.check_otp_send(PHONE, now=NOW)

        assert counters.rows[0].attempts == 3

    @pytest.mark.asyncio
    async def test_window_end_is_exclusive(
        self, limiter: RateLimiter, counters: FakeRateLimitRepository
    ) -> None:
        for _ in range(3):
            await limiter.check_otp_send(PHONE, now=NOW)

        attempts = await limiter.check_otp_send(PHONE, now=NOW + timedelta(minutes=10))

        assert attempts == 1
        (counter,) = counters.rows
        assert counter.window_start == NOW + timedelta(minutes=10)
        assert counter.window_end == NOW + timedelta(minutes=20)

    @pytest.mark.asyncio
    async def test_identifiers_are_independent(self, limiter: RateLimiter) -> None:
        for _ in range(3):
            await limiter.check_otp_send(PHONE, now=NOW)

        assert await limiter.check_otp_send("+33698765432", now=NOW) == 1


class TestLogin:
    """Tests for failed login limits (5 per 15 minutes by default)."""

    @pytest.mark.asyncio
    async def test_check_does_not_count(
        self, limiter: RateLimiter, counters: FakeRateLimitRepository
    ) -> None:
        for _ in range(10):
            await limiter.check_login(PHONE, now=NOW)

        (counter,) = counters.rows
        assert counter.attempts == 0
        assert counter.limit_type is RateLimitType.LOGIN

    @pytest.mark.asyncio
    async def test_failures_exhaust_the_window(self, limiter: RateLimiter) -> None:
        await limiter.check_login(PHONE, now=NOW)
        for expected in range(1, 6):
            assert await limiter.record_failed_login(PHONE, now=NOW) == expected

        with pytest.raises(RateLimitedError) as exc_info:
            await limiter.check_login(PHONE, now=NOW + timedelta(minutes=1))

        assert exc_info.value.retry_after_seconds == 14 * 60

    @pytest.mark.asyncio
    async def test_record_without_prior_check(
        self, limiter: RateLimiter, counters: FakeRateLimitRepository
    ) -> None:
        assert await limiter.record_failed_login(PHONE, now=NOW) == 1
        assert counters.rows[0].attempts == 1

    @pytest.mark.asyncio
    async def test_check_after_window_rolls_to_zero(
        self, limiter: RateLimiter, counters: FakeRateLimitRepository
    ) -> None:
        for _ in range(5):
            await limiter.record_failed_login(PHONE, now=NOW)

        await limiter.check_login(PHONE, now=NOW + timedelta(minutes=15))

        assert counters.rows[0].attempts == 0

    @pytest.mark.asyncio
    async def test_failure_after_window_rolls_to_one(
        self, limiter: RateLimiter, counters: FakeRateLimitRepository
    ) -> None:
        for _ in range(5):
            await limiter.record_failed_login(PHONE, now=NOW)

        assert await limiter.record_failed_login(PHONE, now=NOW + timedelta(hours=1)) == 1

    @pytest.mark.asyncio
    async def test_otp_and_login_counters_are_separate(
        self, limiter: RateLimiter, counters: FakeRateLimitRepository
    ) -> None:
        await limiter.check_otp_send(PHONE, now=NOW)
        await limiter.record_failed_login(PHONE, now=NOW)

        assert {row.limit_type for row in counters.rows} == {
            RateLimitType.OTP,
            RateLimitType.LOGIN,
        }


class TestCreationRace:
    @pytest.mark.asyncio
    async def test_lost_insert_continues_with_winner(self) -> None:
        """A concurrent insert of the same counter is picked up and counted."""

        class RacingCounters(FakeRateLimitRepository):
            lookups = 0

            async def find_for_update(self, identifier, limit_type):
                self.lookups += 1
                if self.lookups == 1:
                    return None
                return await super().find_for_update(identifier, limit_type)

        counters = RacingCounters()
        counters.rows.append(
            RateLimitCounter(
                counter_id=uuid.uuid4(),
                identifier=PHONE,
                limit_type=RateLimitType.OTP,
                attempts=1,
                max_attempts=3,
                window_seconds=600,
                window_start=NOW,
                window_end=NOW + timedelta(minutes=10),
                created_at=NOW,
                updated_at=NOW,
            )
        )
        limiter = RateLimiter(counters, RateLimitSettings())

        assert await limiter.check_otp_send(PHONE, now=NOW) == 2
        assert len(counters.rows) == 1
