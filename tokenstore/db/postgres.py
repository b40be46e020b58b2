"""Async PostgreSQL engine and token store session factory."""

from typing import Final

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from tokenstore.core.config import settings
from tokenstore.models.base import Base

POOL_SIZE: Final[int] = settings.DATABASE_POOL_SIZE
MAX_OVERFLOW: Final[int] = settings.DATABASE_MAX_OVERFLOW
POOL_TIMEOUT: Final[int] = settings.DATABASE_POOL_TIMEOUT_SECS


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory used by the token store.

    Objects stay readable after commit and nothing is flushed implicitly; the
    store owns every transaction boundary.
    """
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine: AsyncEngine = create_async_engine(
    settings.DATABASE_URI.unicode_string(),
    pool_pre_ping=True,
    pool_size=POOL_SIZE,
    max_overflow=MAX_OVERFLOW,
    pool_timeout=POOL_TIMEOUT,
)

AsyncSessionLocal = create_session_factory(engine)


async def init_database(bind: AsyncEngine = engine) -> None:
    """Create the token tables if they do not exist."""
    try:
        async with bind.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    except Exception as e:
        raise RuntimeError(f"Failed to initialize database: {e}") from e


async def close_database(bind: AsyncEngine = engine) -> None:
    """Dispose of pooled connections."""
    await bind.dispose()
