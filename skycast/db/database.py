"""Async database connection and session management."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    AsyncEngine,
    create_async_engine,
    async_sessionmaker,
)

from .models import Base


DEFAULT_ASYNC_DATABASE_URL = "sqlite+aiosqlite:///./data/skycast.db"

# db_url -> (engine, session factory)
_engines: dict[str, tuple[AsyncEngine, async_sessionmaker[AsyncSession]]] = {}


def get_async_engine(database_url: str = DEFAULT_ASYNC_DATABASE_URL) -> AsyncEngine:
    """Get or create the asynchronous engine for ``database_url``."""
    return _get(database_url)[0]


def get_async_session_factory(
    database_url: str = DEFAULT_ASYNC_DATABASE_URL,
) -> async_sessionmaker[AsyncSession]:
    """Get async session factory."""
    return _get(database_url)[1]


def _get(database_url: str) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    if database_url not in _engines:
        kwargs = {"echo": False}
        if database_url.startswith("sqlite") and ":memory:" in database_url:
            # One shared connection, otherwise every session sees an empty db.
            from sqlalchemy.pool import StaticPool
            kwargs["poolclass"] = StaticPool
        engine = create_async_engine(database_url, **kwargs)
        factory = async_sessionmaker(
            bind=engine,
            class_=AsyncSession,
            autoflush=False,
            expire_on_commit=False,
        )
        _engines[database_url] = (engine, factory)
    return _engines[database_url]


@asynccontextmanager
async def get_session(
    database_url: str = DEFAULT_ASYNC_DATABASE_URL,
) -> AsyncGenerator[AsyncSession, None]:
    """Async session as a unit of work: commit on exit, roll back on error."""
    factory = get_async_session_factory(database_url)
    session = factory()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def init_db_async(database_url: str = DEFAULT_ASYNC_DATABASE_URL) -> None:
    """Initialize the database asynchronously by creating all tables."""
    engine = get_async_engine(database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db_async() -> None:
    """Dispose every cached engine."""
    for engine, _ in list(_engines.values()):
        await engine.dispose()
    _engines.clear()


def reset_engines() -> None:
    """Forget cached engines without disposing them. Useful for testing.

    Each in-memory URL then gets a fresh, empty database on next use.
    """
    _engines.clear()
