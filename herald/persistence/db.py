from __future__ import annotations

from functools import lru_cache
from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from herald.core.config import get_settings
from herald.domain.models import Base


def build_engine(database_url: str) -> AsyncEngine:
    # Bounded asyncpg pools in production; sqlite (tests, local runs) keeps SQLAlchemy defaults.
    settings = get_settings()
    engine_kwargs: dict[str, Any] = {"pool_pre_ping": True}
    if not database_url.startswith("sqlite"):
        engine_kwargs["pool_size"] = max(1, int(settings.db_pool_size))
        engine_kwargs["max_overflow"] = max(0, int(settings.db_max_overflow))
        engine_kwargs["pool_timeout"] = 30
        engine_kwargs["pool_recycle"] = 1800
    return create_async_engine(database_url, **engine_kwargs)


def build_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


@lru_cache
def get_engine() -> AsyncEngine:
    # Created lazily so importing services never opens a database driver.
    return build_engine(get_settings().database_url)


@lru_cache
def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    return build_sessionmaker(get_engine())


async def create_tables(engine: AsyncEngine) -> None:
    # Create queue/receipt/history tables when missing; used by local runs and tests.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
