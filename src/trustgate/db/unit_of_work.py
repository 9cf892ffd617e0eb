"""Unit of work bundling one database session with every repository.

The login flow (user lookup or creation, device decision, session
admission, token issuance, audit write) runs inside a single
``transaction()`` block: all of it commits, or none of it does.

Usage:
    async with unit_of_work() as uow:
        async with uow.transaction():
            user = await uow.users.find_by_phone("+33", "612345678")
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Protocol, Self

from trustgate.db import get_async_session
from trustgate.db.repositories import (
    SqlDeviceRepository,
    SqlOtpRepository,
    SqlRateLimitRepository,
    SqlSecurityEventRepository,
    SqlSessionArchiveRepository,
    SqlSessionRepository,
    SqlUserRepository,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from contextlib import AbstractAsyncContextManager

    from sqlalchemy.ext.asyncio import AsyncSession

    from trustgate.db.repositories import (
        DeviceRepository,
        OtpRepository,
        RateLimitRepository,
        SecurityEventRepository,
        SessionArchiveRepository,
        SessionRepository,
        UserRepository,
    )

logger = logging.getLogger(__name__)


class Repositories(Protocol):
    """What services need from a unit of work."""

    users: UserRepository
    devices: DeviceRepository
    sessions: SessionRepository
    archives: SessionArchiveRepository
    rate_limits: RateLimitRepository
    otps: OtpRepository
    security_events: SecurityEventRepository

    def transaction(self) -> AbstractAsyncContextManager[Self]: ...


class UnitOfWork:
    """SQLAlchemy-backed unit of work."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.users = SqlUserRepository(session)
        self.devices = SqlDeviceRepository(session)
        self.sessions = SqlSessionRepository(session)
        self.archives = SqlSessionArchiveRepository(session)
        self.rate_limits = SqlRateLimitRepository(session)
        self.otps = SqlOtpRepository(session)
        self.security_events = SqlSecurityEventRepository(session)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Self]:
        """Commit on success, roll back everything on any error."""
        try:
            yield self
            await self.session.commit()
        except Exception:
            logger.debug("Rolling back transaction")
            await self.session.rollback()
            raise


@asynccontextmanager
async def unit_of_work() -> AsyncIterator[UnitOfWork]:
    """Open a database session and wrap it in a UnitOfWork."""
    async with get_async_session() as session:
        yield UnitOfWork(session)
