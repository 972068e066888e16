from __future__ import annotations

from collections.abc import AsyncIterator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from gatehouse.settings import get_settings


def create_engine(database_url: str) -> AsyncEngine:
    return create_async_engine(database_url, future=True)


def create_sessionmaker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Login flows read users back after commit.
    return async_sessionmaker(bind, expire_on_commit=False)


engine: AsyncEngine = create_engine(get_settings().database_url)

# Tests swap `gatehouse.db.SessionMaker`; `get_session()` and the CLI read it
# at call time.
SessionMaker: async_sessionmaker[AsyncSession] = create_sessionmaker(engine)


async def get_session() -> AsyncIterator[AsyncSession]:
    async with SessionMaker() as session:
        yield session


__all__ = [
    "SessionMaker",
    "create_engine",
    "create_sessionmaker",
    "engine",
    "get_session",
]
