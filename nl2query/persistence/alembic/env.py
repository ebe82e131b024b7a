from __future__ import annotations

import asyncio

from alembic import context
from sqlalchemy.engine import Connection

from nl2query.core.config import get_settings
from nl2query.domain.models import Base
from nl2query.persistence.db import build_engine


config = context.config
target_metadata = Base.metadata


def _database_url() -> str:
    # Settings win over alembic.ini so migrations follow the app's environment.
    return get_settings().database_url or config.get_main_option("sqlalchemy.url")


def run_migrations_offline() -> None:
    context.configure(
        url=_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def _run_sync_migrations(connection: Connection) -> None:
    context.configure(connection=connection, target_metadata=target_metadata)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    engine = build_engine(_database_url())
    async with engine.connect() as connection:
        await connection.run_sync(_run_sync_migrations)
    await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
