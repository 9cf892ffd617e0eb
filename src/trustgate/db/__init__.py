"""trustgate database module.

- SQLAlchemy 2.x ORM models
- Repository contracts and implementations
- Unit of work for the atomic login transaction
- Alembic migration configuration
- Connection pooling via psycopg
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from sqlalchemy.ext.asyncio import AsyncEngine

    from trustgate.core.config import DatabaseSettings

PSYCOPG_SCHEME = "postgresql+psycopg"

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def psycopg_url(url: str) -> str:
    """Rewrite a plain PostgreSQL URL to use the psycopg 3 driver.

    The psycopg dialect serves both the async engine and Alembic's
    synchronous runs, so one URL works for both.
    """
    scheme, sep, rest = url.partition("://")
    if not sep:
        msg = f"Not a database URL: {url!r}"
        raise ValueError(msg)
    if scheme in ("postgres", "postgresql"):
        return f"{PSYCOPG_SCHEME}://{rest}"
    return url


def build_engine(database: DatabaseSettings) -> AsyncEngine:
    """Create an async engine from the database settings section."""
    return create_async_engine(
        psycopg_url(str(database.url)),
        pool_size=database.pool_size,
        max_overflow=database.max_overflow,
        pool_timeout=database.pool_timeout,
        pool_pre_ping=True,
        echo=database.echo,
    )


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the process-wide session factory, creating the engine on first use."""
    global _engine, _session_factory

    if _session_factory is None:
        from trustgate.core.settings import get_settings

        _engine = build_engine(get_settings().database)
        # Services keep reading rows after commit (login result, archive summaries)
        _session_factory = async_sessionmaker(bind=_engine, expire_on_commit=False)
    return _session_factory


@asynccontextmanager
async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Get an async database session.

    Rolls back on error and always closes the session. Committing is up to
    the caller, normally through ``UnitOfWork.transaction()``.
    """
    session = get_session_factory()()
    try:
        yield session
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def close_engine() -> None:
    """Dispose of the engine; the next session request builds a fresh one."""
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
