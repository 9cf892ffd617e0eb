"""Tests for the SQLAlchemy repositories and unit of work against a mocked session."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import IntegrityError

from tests.factories import NOW
from trustgate.core.config import DatabaseSettings
from trustgate.core.errors import DuplicateRecordError
from trustgate.db import build_engine, psycopg_url
from trustgate.db.models import User
from trustgate.db.repositories import SqlSessionArchiveRepository, SqlUserRepository
from trustgate.db.unit_of_work import UnitOfWork


class _Savepoint:
    """Stand-in for the object returned by ``AsyncSession.begin_nested()``."""

    def __init__(self) -> None:
        self.exited_with = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        self.exited_with = exc_type
        return False


@pytest.fixture
def savepoint() -> _Savepoint:
    return _Savepoint()


@pytest.fixture
def mock_session(savepoint: _Savepoint) -> MagicMock:
    session = MagicMock()
    session.begin_nested = MagicMock(return_value=savepoint)
    session.add = MagicMock()
    session.flush = AsyncMock()
    session.execute = AsyncMock()
    session.delete = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    return session


class TestCreate:
    """Tests for inserts inside a savepoint."""

    @pytest.mark.asyncio
    async def test_adds_and_flushes(self, mock_session: MagicMock) -> None:
        users = SqlUserRepository(mock_session)

        user = await users.create(country_code="+33", phone_number="612345678")

        assert isinstance(user, User)
        assert user.phone_number == "612345678"
        mock_session.add.assert_called_once_with(user)
        mock_session.flush.assert_awaited_once()
        mock_session.begin_nested.assert_called_once()

    @pytest.mark.asyncio
    async def test_integrity_error_becomes_duplicate(
        self, mock_session: MagicMock, savepoint: _Savepoint
    ) -> None:
        mock_session.flush.side_effect = IntegrityError(
            "INSERT INTO users", {}, Exception("duplicate key value")
        )
        users = SqlUserRepository(mock_session)

        with pytest.raises(DuplicateRecordError) as exc_info:
            await users.create(country_code="+33", phone_number="612345678")

        assert exc_info.value.entity == "user"
        assert exc_info.value.detail == "duplicate key value"
        assert savepoint.exited_with is IntegrityError


class TestQueries:
    """Tests for lookups, updates and bulk operations."""

    @pytest.mark.asyncio
    async def test_find_by_phone(self, mock_session: MagicMock) -> None:
        existing = User(country_code="+33", phone_number="612345678")
        result = MagicMock()
        result.scalar_one_or_none.return_value = existing
        mock_session.execute.return_value = result

        found = await SqlUserRepository(mock_session).find_by_phone("+33", "612345678")

        assert found is existing
        mock_session.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_update_sets_attributes(self, mock_session: MagicMock) -> None:
        user = User(country_code="+33", phone_number="612345678")

        await SqlUserRepository(mock_session).update(user, last_login_at=NOW)

        assert user.last_login_at == NOW
        mock_session.flush.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_delete(self, mock_session: MagicMock) -> None:
        user = User(country_code="+33", phone_number="612345678")

        await SqlUserRepository(mock_session).delete(user)

        mock_session.delete.assert_awaited_once_with(user)
        mock_session.flush.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_savepoint_is_a_nested_transaction(
        self, mock_session: MagicMock, savepoint: _Savepoint
    ) -> None:
        archives = SqlSessionArchiveRepository(mock_session)

        with pytest.raises(RuntimeError):
            async with archives.savepoint():
                raise RuntimeError("flush failed")

        mock_session.begin_nested.assert_called_once_with()
        assert savepoint.exited_with is RuntimeError

    @pytest.mark.asyncio
    @pytest.mark.parametrize(("rowcount", "expected"), [(4, 4), (None, 0)])
    async def test_delete_expired_archives(
        self, mock_session: MagicMock, rowcount: int | None, expected: int
    ) -> None:
        mock_session.execute.return_value = MagicMock(rowcount=rowcount)

        deleted = await SqlSessionArchiveRepository(mock_session).delete_expired(NOW)

        assert deleted == expected

    @pytest.mark.asyncio
    async def test_count_by_reason(self, mock_session: MagicMock) -> None:
        result = MagicMock()
        result.all.return_value = [("logout", 3), (None, 1)]
        mock_session.execute.return_value = result

        counts = await SqlSessionArchiveRepository(mock_session).count_by_reason()

        assert counts == {"logout": 3, None: 1}


class TestUnitOfWork:
    """Tests for transaction boundaries."""

    @pytest.mark.asyncio
    async def test_commits_on_success(self, mock_session: MagicMock) -> None:
        uow = UnitOfWork(mock_session)

        async with uow.transaction() as active:
            assert active is uow

        mock_session.commit.assert_awaited_once()
        mock_session.rollback.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rolls_back_on_error(self, mock_session: MagicMock) -> None:
        uow = UnitOfWork(mock_session)

        with pytest.raises(RuntimeError, match="boom"):
            async with uow.transaction():
                raise RuntimeError("boom")

        mock_session.rollback.assert_awaited_once()
        mock_session.commit.assert_not_awaited()

    def test_repositories_share_the_session(self, mock_session: MagicMock) -> None:
        uow = UnitOfWork(mock_session)

        assert uow.users._session is mock_session
        assert uow.archives._session is mock_session
        assert uow.security_events._session is mock_session


class TestEngineConfiguration:
    """Tests for URL rewriting and engine construction."""

    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("postgresql://u:p@db:5432/tg", "postgresql+psycopg://u:p@db:5432/tg"),
            ("postgres://u:p@db/tg", "postgresql+psycopg://u:p@db/tg"),
            ("postgresql+psycopg://u:p@db/tg", "postgresql+psycopg://u:p@db/tg"),
        ],
    )
    def test_psycopg_url(self, url: str, expected: str) -> None:
        assert psycopg_url(url) == expected

    def test_rejects_non_url(self) -> None:
        with pytest.raises(ValueError, match="Not a database URL"):
            psycopg_url("localhost:5432")

    @pytest.mark.asyncio
    async def test_build_engine_uses_psycopg_and_pool_settings(self) -> None:
        engine = build_engine(
            DatabaseSettings(url="postgresql://u:p@db:5432/tg", pool_size=7)
        )
        try:
            assert engine.url.drivername == "postgresql+psycopg"
            assert engine.sync_engine.pool.size() == 7
        finally:
            await engine.dispose()
