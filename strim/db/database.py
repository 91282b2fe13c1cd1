"""Database engine, session factory and dialect helpers."""

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool

from strim.config import Settings

# Base class for models
Base = declarative_base()


def create_engine(settings: Settings) -> AsyncEngine:
    """Create the async engine for the configured database."""
    # Always disable SQL echo - it creates massive log spam
    if settings.database_url.startswith("sqlite"):
        # No pooling: each session gets a fresh connection on the current loop
        return create_async_engine(settings.database_url, echo=False, poolclass=NullPool)

    return create_async_engine(
        settings.database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        echo=False,
        pool_pre_ping=True,  # Verify connections before use to avoid stale connections
        pool_recycle=300,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to an engine."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def init_db(engine: AsyncEngine):
    """Create tables that don't exist yet (dev/test; production uses alembic)."""
    # Import models so they register on Base.metadata
    from strim.db import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all, checkfirst=True)


def upsert_insert(session: AsyncSession, model):
    """
    INSERT construct supporting ON CONFLICT for the session's dialect.

    PostgreSQL in production, SQLite in tests. Both expose the same
    on_conflict_do_update / on_conflict_do_nothing API.
    """
    if session.bind.dialect.name == "sqlite":
        return sqlite.insert(model)
    return postgresql.insert(model)
