"""Repository contracts and their SQLAlchemy implementations.

Services depend on the Protocol classes only, so they can be exercised
against in-memory stores in tests. Every repository offers the generic
create / find_one / find / update / delete operations plus a handful of
entity-specific queries.

Inserts run inside a SAVEPOINT so a unique-constraint violation surfaces
as DuplicateRecordError without poisoning the surrounding transaction.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, ClassVar, Generic, Protocol, TypeVar

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError

from trustgate.core.errors import DuplicateRecordError
from trustgate.db.models import (
    Device,
    OtpChallenge,
    RateLimitCounter,
    SecurityEvent,
    Session,
    SessionArchive,
    User,
)

if TYPE_CHECKING:
    from contextlib import AbstractAsyncContextManager
    from datetime import datetime
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

    from trustgate.db.models import OtpPurpose, RateLimitType, TerminationReason

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT")


# =============================================================================
# Contracts
# =============================================================================


class Repository(Protocol[ModelT]):
    """Generic persistence contract shared by all entities."""

    async def create(self, **fields: Any) -> ModelT:
        """Insert a new row; raises DuplicateRecordError on a unique violation."""
        ...

    async def find_one(self, **criteria: Any) -> ModelT | None:
        """Return the first row whose columns equal the given values."""
        ...

    async def find(self, **criteria: Any) -> list[ModelT]:
        """Return every row whose columns equal the given values."""
        ...

    async def update(self, entity: ModelT, **patch: Any) -> ModelT:
        """Apply column changes to an existing row."""
        ...

    async def delete(self, entity: ModelT) -> None:
        """Remove a row."""
        ...

    def savepoint(self) -> AbstractAsyncContextManager[Any]:
        """Nested transaction undone on its own when its block raises.

        Covers every repository sharing the same unit of work.
        """
        ...


class UserRepository(Repository[User], Protocol):
    async def find_by_phone(self, country_code: str, phone_number: str) -> User | None: ...


class DeviceRepository(Repository[Device], Protocol):
    async def find_by_fingerprint(self, primary_fingerprint: str) -> Device | None: ...


class SessionRepository(Repository[Session], Protocol):
    async def find_active_for_user(self, user_id: UUID, now: datetime) -> list[Session]: ...

    async def find_active_for_device(self, device_id: UUID, now: datetime) -> list[Session]: ...

    async def find_by_token(self, session_token: str) -> Session | None: ...

    async def find_by_refresh_hash(self, refresh_token_hash: str) -> Session | None: ...

    async def find_terminated_before(self, cutoff: datetime, limit: int) -> list[Session]: ...

    async def find_expired_unterminated(self, now: datetime, limit: int) -> list[Session]: ...


class SessionArchiveRepository(Repository[SessionArchive], Protocol):
    async def find_by_original_session(self, session_id: UUID) -> SessionArchive | None: ...

    async def find_archived_between(
        self, start: datetime, end: datetime
    ) -> list[SessionArchive]: ...

    async def count_expired(self, now: datetime) -> int: ...

    async def delete_expired(self, now: datetime) -> int: ...

    async def count_by_reason(self) -> dict[TerminationReason | None, int]: ...

    async def count_expiring_before(self, cutoff: datetime) -> int: ...

    async def archived_range(self) -> tuple[datetime | None, datetime | None]: ...


class RateLimitRepository(Repository[RateLimitCounter], Protocol):
    async def find_for_update(
        self, identifier: str, limit_type: RateLimitType
    ) -> RateLimitCounter | None: ...


class OtpRepository(Repository[OtpChallenge], Protocol):
    async def find_latest_open(
        self, destination: str, purpose: OtpPurpose, now: datetime
    ) -> OtpChallenge | None: ...


class SecurityEventRepository(Repository[SecurityEvent], Protocol):
    pass


# =============================================================================
# SQLAlchemy implementations
# =============================================================================


class SqlAlchemyRepository(Generic[ModelT]):
    """Generic repository over one mapped class."""

    model: ClassVar[type]
    entity_name: ClassVar[str] = "record"

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, **fields: Any) -> ModelT:
        entity = self.model(**fields)
        try:
            async with self._session.begin_nested():
                self._session.add(entity)
                await self._session.flush()
        except IntegrityError as exc:
            logger.debug("Unique constraint rejected %s insert: %s", self.entity_name, exc.orig)
            raise DuplicateRecordError(self.entity_name, str(exc.orig)) from exc
        return entity

    async def find_one(self, **criteria: Any) -> ModelT | None:
        result = await self._session.execute(select(self.model).filter_by(**criteria).limit(1))
        return result.scalar_one_or_none()

    async def find(self, **criteria: Any) -> list[ModelT]:
        result = await self._session.execute(select(self.model).filter_by(**criteria))
        return list(result.scalars().all())

    async def update(self, entity: ModelT, **patch: Any) -> ModelT:
        for key, value in patch.items():
            setattr(entity, key, value)
        await self._session.flush()
        return entity

    async def delete(self, entity: ModelT) -> None:
        await self._session.delete(entity)
        await self._session.flush()

    def savepoint(self) -> AbstractAsyncContextManager[Any]:
        return self._session.begin_nested()


class SqlUserRepository(SqlAlchemyRepository[User]):
    model = User
    entity_name = "user"

    async def find_by_phone(self, country_code: str, phone_number: str) -> User | None:
        return await self.find_one(country_code=country_code, phone_number=phone_number)


class SqlDeviceRepository(SqlAlchemyRepository[Device]):
    model = Device
    entity_name = "device"

    async def find_by_fingerprint(self, primary_fingerprint: str) -> Device | None:
        return await self.find_one(primary_fingerprint=primary_fingerprint)


class SqlSessionRepository(SqlAlchemyRepository[Session]):
    model = Session
    entity_name = "session"

    async def find_active_for_user(self, user_id: UUID, now: datetime) -> list[Session]:
        query = (
            select(Session)
            .where(
                Session.user_id == user_id,
                Session.terminated_at.is_(None),
                Session.expires_at > now,
            )
            .order_by(Session.last_activity_at.asc())
        )
        result = await self._session.execute(query)
        return list(result.scalars().all())

    async def find_active_for_device(self, device_id: UUID, now: datetime) -> list[Session]:
        query = (
            select(Session)
            .where(
                Session.device_id == device_id,
                Session.terminated_at.is_(None),
                Session.expires_at > now,
            )
            .order_by(Session.last_activity_at.asc())
        )
        result = await self._session.execute(query)
        return list(result.scalars().all())

    async def find_by_token(self, session_token: str) -> Session | None:
        return await self.find_one(session_token=session_token)

    async def find_by_refresh_hash(self, refresh_token_hash: str) -> Session | None:
        return await self.find_one(refresh_token_hash=refresh_token_hash)

    async def find_terminated_before(self, cutoff: datetime, limit: int) -> list[Session]:
        query = (
            select(Session)
            .where(Session.terminated_at.is_not(None), Session.terminated_at < cutoff)
            .order_by(Session.terminated_at.asc())
            .limit(limit)
        )
        result = await self._session.execute(query)
        return list(result.scalars().all())

    async def find_expired_unterminated(self, now: datetime, limit: int) -> list[Session]:
        query = (
            select(Session)
            .where(Session.terminated_at.is_(None), Session.expires_at <= now)
            .order_by(Session.expires_at.asc())
            .limit(limit)
        )
        result = await self._session.execute(query)
        return list(result.scalars().all())


class SqlSessionArchiveRepository(SqlAlchemyRepository[SessionArchive]):
    model = SessionArchive
    entity_name = "session archive"

    async def find_by_original_session(self, session_id: UUID) -> SessionArchive | None:
        return await self.find_one(original_session_id=session_id)

    async def find_archived_between(
        self, start: datetime, end: datetime
    ) -> list[SessionArchive]:
        query = (
            select(SessionArchive)
            .where(SessionArchive.archived_at >= start, SessionArchive.archived_at < end)
            .order_by(SessionArchive.archived_at.asc())
        )
        result = await self._session.execute(query)
        return list(result.scalars().all())

    async def count_expired(self, now: datetime) -> int:
        query = select(func.count()).where(SessionArchive.retention_expires_at < now)
        result = await self._session.execute(query)
        return int(result.scalar_one())

    async def delete_expired(self, now: datetime) -> int:
        query = delete(SessionArchive).where(SessionArchive.retention_expires_at < now)
        result = await self._session.execute(query)
        return result.rowcount or 0

    async def count_by_reason(self) -> dict[TerminationReason | None, int]:
        query = select(SessionArchive.termination_reason, func.count()).group_by(
            SessionArchive.termination_reason
        )
        result = await self._session.execute(query)
        return {reason: int(count) for reason, count in result.all()}

    async def count_expiring_before(self, cutoff: datetime) -> int:
        query = select(func.count()).where(SessionArchive.retention_expires_at < cutoff)
        result = await self._session.execute(query)
        return int(result.scalar_one())

    async def archived_range(self) -> tuple[datetime | None, datetime | None]:
        query = select(func.min(SessionArchive.archived_at), func.max(SessionArchive.archived_at))
        result = await self._session.execute(query)
        oldest, newest = result.one()
        return oldest, newest


class SqlRateLimitRepository(SqlAlchemyRepository[RateLimitCounter]):
    model = RateLimitCounter
    entity_name = "rate limit counter"

    async def find_for_update(
        self, identifier: str, limit_type: RateLimitType
    ) -> RateLimitCounter | None:
        query = (
            select(RateLimitCounter)
            .where(
                RateLimitCounter.identifier == identifier,
                RateLimitCounter.limit_type == limit_type,
            )
            .with_for_update()
        )
        result = await self._session.execute(query)
        return result.scalar_one_or_none()


class SqlOtpRepository(SqlAlchemyRepository[OtpChallenge]):
    model = OtpChallenge
    entity_name = "otp challenge"

    async def find_latest_open(
        self, destination: str, purpose: OtpPurpose, now: datetime
    ) -> OtpChallenge | None:
        query = (
            select(OtpChallenge)
            .where(
                OtpChallenge.destination == destination,
                OtpChallenge.purpose == purpose,
                OtpChallenge.is_used.is_(False),
                OtpChallenge.expires_at > now,
            )
            .order_by(OtpChallenge.created_at.desc())
            .limit(1)
            .with_for_update()
        )
        result = await self._session.execute(query)
        return result.scalar_one_or_none()


class SqlSecurityEventRepository(SqlAlchemyRepository[SecurityEvent]):
    model = SecurityEvent
    entity_name = "security event"
