from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from .config import settings


def _engine_options() -> dict[str, Any]:
    options: dict[str, Any] = {"echo": settings.debug, "future": True}
    # aiosqlite uses a static/NullPool; pool sizing only applies to asyncpg
    if not settings.is_sqlite:
        options.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_recycle=settings.db_pool_recycle,
            pool_pre_ping=settings.db_pool_pre_ping,
        )
    return options


engine = create_async_engine(settings.database_url, **_engine_options())

# expire_on_commit=False keeps ORM objects readable after commit.
# Objects are NOT refreshed from the database afterwards: re-query or
# `await session.refresh(obj)` before trusting their state post-commit.
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        yield session
