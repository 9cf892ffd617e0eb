"""Fixed-window rate limiting for credential issuance.

One counter row exists per (identifier, limit type). A counter is inside
its window while window_start <= now < window_end; once outside, the next
check rolls the window forward and resets the attempt count. OTP sends
count on every check. Login checks only read the counter; failed logins
are counted separately through record_failed_login().
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from trustgate.core.errors import DuplicateRecordError, RateLimitedError
from trustgate.db.models.base import RateLimitType

if TYPE_CHECKING:
    from trustgate.core.config import RateLimitSettings
    from trustgate.db.models import RateLimitCounter
    from trustgate.db.repositories import RateLimitRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RateLimitPolicy:
    limit_type: RateLimitType
    max_attempts: int
    window_seconds: int

    @property
    def window(self) -> timedelta:
        return timedelta(seconds=self.window_seconds)


class RateLimiter:
    """Rate limiter backed by counter rows locked for update.

    Example:
        limiter = RateLimiter(uow.rate_limits, settings.rate_limit)
        await limiter.check_otp_send("+33612345678")
    """

    def __init__(self, counters: RateLimitRepository, settings: RateLimitSettings) -> None:
        self._counters = counters
        self._otp = RateLimitPolicy(
            RateLimitType.OTP, settings.otp_max_attempts, settings.otp_window_seconds
        )
        self._login = RateLimitPolicy(
            RateLimitType.LOGIN, settings.login_max_attempts, settings.login_window_seconds
        )

    async def check_otp_send(self, identifier: str, *, now: datetime | None = None) -> int:
        """Count an OTP send for this identifier.

        Returns:
            Attempts used in the current window, including this one.

        Raises:
            RateLimitedError: If the window's attempts are exhausted.
        """
        now = now or datetime.now(UTC)
        counter = await self._load(identifier, self._otp, baseline=1, now=now)
        if counter is None:
            return 1

        if not counter.in_window(now):
            counter = await self._roll(counter, self._otp, baseline=1, now=now)
            return counter.attempts

        self._reject_if_exhausted(identifier, counter, now)
        counter = await self._counters.update(
            counter, attempts=counter.attempts + 1, updated_at=now
        )
        return counter.attempts

    async def check_login(self, identifier: str, *, now: datetime | None = None) -> None:
        """Refuse a login attempt when failed attempts are exhausted.

        Does not count the attempt itself.

        Raises:
            RateLimitedError: If the window's attempts are exhausted.
        """
        now = now or datetime.now(UTC)
        counter = await self._load(identifier, self._login, baseline=0, now=now)
        if counter is None:
            return

        if not counter.in_window(now):
            await self._roll(counter, self._login, baseline=0, now=now)
            return

        self._reject_if_exhausted(identifier, counter, now)

    async def record_failed_login(self, identifier: str, *, now: datetime | None = None) -> int:
        """Count one failed login.

        Returns:
            Failed attempts in the current window, including this one.
        """
        now = now or datetime.now(UTC)
        counter = await self._load(identifier, self._login, baseline=1, now=now)
        if counter is None:
            return 1

        if not counter.in_window(now):
            counter = await self._roll(counter, self._login, baseline=1, now=now)
        else:
            counter = await self._counters.update(
                counter, attempts=counter.attempts + 1, updated_at=now
            )

        logger.info(
            "Failed login recorded: identifier=%s, attempts=%d/%d",
            identifier,
            counter.attempts,
            counter.max_attempts,
        )
        return counter.attempts

    async def _load(
        self,
        identifier: str,
        policy: RateLimitPolicy,
        *,
        baseline: int,
        now: datetime,
    ) -> RateLimitCounter | None:
        """Return the locked counter, or create it with the baseline and return None."""
        counter = await self._counters.find_for_update(identifier, policy.limit_type)
        if counter is not None:
            return counter

        try:
            await self._counters.create(
                counter_id=uuid.uuid4(),
                identifier=identifier,
                limit_type=policy.limit_type,
                attempts=baseline,
                max_attempts=policy.max_attempts,
                window_seconds=policy.window_seconds,
                window_start=now,
                window_end=now + policy.window,
                created_at=now,
                updated_at=now,
            )
        except DuplicateRecordError:
            # Lost the insert race; continue with the winner's row
            counter = await self._counters.find_for_update(identifier, policy.limit_type)
            if counter is None:
                raise
            return counter
        return None

    async def _roll(
        self,
        counter: RateLimitCounter,
        policy: RateLimitPolicy,
        *,
        baseline: int,
        now: datetime,
    ) -> RateLimitCounter:
        return await self._counters.update(
            counter,
            attempts=baseline,
            max_attempts=policy.max_attempts,
            window_seconds=policy.window_seconds,
            window_start=now,
            window_end=now + policy.window,
            updated_at=now,
        )

    def _reject_if_exhausted(
        self, identifier: str, counter: RateLimitCounter, now: datetime
    ) -> None:
        if counter.attempts < counter.max_attempts:
            return
        retry_after = (counter.window_end - now).total_seconds()
        logger.warning(
            "Rate limit exceeded: identifier=%s, type=%s, attempts=%d, retry_after=%.0fs",
            identifier,
            counter.limit_type.value,
            counter.attempts,
            retry_after,
        )
        raise RateLimitedError(retry_after)
