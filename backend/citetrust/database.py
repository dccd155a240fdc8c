"""
Database connection using SQLAlchemy + asyncpg.

The verification store and the known-sources registry both live in
PostgreSQL. Every write goes through its own session and commits as one
transaction, so a record is either fully written or not written at all.

When DATABASE_URL is empty no engine is ever created; the service falls back
to in-memory stores (see services/verification_store.py).
"""

from functools import lru_cache

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from citetrust.config import get_settings


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


@lru_cache
def get_engine() -> AsyncEngine:
    """
    Connection pool to PostgreSQL, created on first use.

    Raises:
        RuntimeError: if DATABASE_URL is not configured
    """
    settings = get_settings()
    if not settings.database_url:
        raise RuntimeError("DATABASE_URL is not configured")
    return create_async_engine(settings.database_url, echo=settings.database_echo)


@lru_cache
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    Factory that creates database sessions.

    expire_on_commit=False keeps ORM objects readable after commit (needed
    for async, where lazy refreshes are not allowed).
    """
    return async_sessionmaker(get_engine(), class_=AsyncSession, expire_on_commit=False)


async def create_tables(engine: AsyncEngine) -> None:
    """Create all tables defined on Base. Existing tables are left alone."""
    # Imported for their side effect of registering tables on Base.metadata
    from citetrust.models import known_source, verification  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
