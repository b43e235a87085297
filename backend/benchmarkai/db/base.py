"""Async engine and session factory shared by the API, background generation and scripts."""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from benchmarkai.core.config import get_settings


class Base(DeclarativeBase):
    pass


_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def engine_options(url: str) -> dict:
    """Engine keyword arguments for ``url``.

    SQLite (dev and tests) waits on the single writer lock instead of failing
    with "database is locked"; Postgres gets a pinged, bounded pool.
    """
    settings = get_settings()
    if url.startswith("sqlite"):
        return {"echo": settings.db_echo, "connect_args": {"timeout": 30}}
    return {
        "echo": settings.db_echo,
        "pool_pre_ping": True,
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
    }


async def init_db(url: str | None = None, create_tables: bool = True) -> AsyncEngine:
    """Create the engine and session factory once per process.

    Args:
        url: Database URL (defaults to settings.database_url)
        create_tables: Run ``create_all`` for the report tables
    """
    global _engine, _session_factory

    if _engine is not None:
        return _engine

    db_url = url or get_settings().database_url
    _engine = create_async_engine(db_url, **engine_options(db_url))
    _session_factory = async_sessionmaker(_engine, class_=AsyncSession, expire_on_commit=False)

    if create_tables:
        import benchmarkai.db.models  # noqa: F401

        async with _engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    return _engine


async def close_db() -> None:
    """Dispose of the engine and release all connections."""
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


def get_engine() -> AsyncEngine:
    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the configured session factory.

    Raises RuntimeError if init_db() has not been called.
    """
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _session_factory


async def ping_db() -> None:
    """Round-trip ``SELECT 1``; raises if the database is unreachable."""
    async with get_engine().connect() as conn:
        await conn.execute(text("SELECT 1"))
