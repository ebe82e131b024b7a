from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine


def build_engine(database_url: str) -> AsyncEngine:
    _engine_kwargs: dict[str, Any] = {"pool_pre_ping": True}
    # Configure bounded pools for predictable latency under load.
    if not database_url.startswith("sqlite"):
        _engine_kwargs["pool_size"] = 5
        _engine_kwargs["max_overflow"] = 5
        _engine_kwargs["pool_timeout"] = 30
        _engine_kwargs["pool_recycle"] = 1800
    return create_async_engine(database_url, **_engine_kwargs)


def build_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)

