"""Alembic environment for the trustgate schema.

The URL comes from TRUSTGATE_DATABASE__URL when it is set (the same
variable the services read), otherwise from ``sqlalchemy.url`` in
alembic.ini. Online migrations run through the async psycopg engine.
"""

import asyncio
import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.ext.asyncio import create_async_engine

from trustgate.core.config import DatabaseSettings
from trustgate.db import psycopg_url
from trustgate.db.models import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

COMPARE_OPTIONS = {"compare_type": True, "compare_server_default": True}


def migration_url() -> str:
    if os.environ.get("TRUSTGATE_DATABASE__URL"):
        return psycopg_url(str(DatabaseSettings().url))
    return psycopg_url(config.get_main_option("sqlalchemy.url", ""))


def run_migrations_offline() -> None:
    """Emit SQL to stdout without connecting."""
    context.configure(
        url=migration_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **COMPARE_OPTIONS,
    )

    with context.begin_transaction():
        context.run_migrations()


def _apply(connection) -> None:
    context.configure(connection=connection, target_metadata=target_metadata, **COMPARE_OPTIONS)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    """Apply migrations over a single short-lived async connection."""
    engine = create_async_engine(migration_url(), poolclass=pool.NullPool)
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_apply)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
