"""Async engine and sessions for the portal database.

The URL comes from ``DATABASE_URL`` or the ``database`` config section.
SQLite (aiosqlite) is the default; PostgreSQL runs on asyncpg.
"""

import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from portal.config import DatabaseConfig, get_config
from portal.db.models import Base

_ASYNC_DRIVERS = {
    "postgres://": "postgresql+asyncpg://",
    "postgresql://": "postgresql+asyncpg://",
    "sqlite://": "sqlite+aiosqlite://",
}


def get_database_url(settings: DatabaseConfig | None = None) -> str:
    """Resolve the URL and pin it to an async driver."""
    settings = settings or get_config().database
    url = os.getenv("DATABASE_URL") or settings.url
    for prefix, replacement in _ASYNC_DRIVERS.items():
        if url.startswith(prefix):
            return replacement + url[len(prefix):]
    return url


def _sqlite_file(url: str) -> Path | None:
    if not url.startswith("sqlite") or ":///" not in url:
        return None
    name = url.split(":///", 1)[1]
    if not name or name == ":memory:":
        return None
    return Path(name)


def _on_sqlite_connect(dbapi_conn, connection_record) -> None:
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


def _engine_options(url: str, settings: DatabaseConfig) -> dict:
    options = {"echo": settings.echo or os.getenv("DB_ECHO", "").lower() == "true"}
    if url.startswith("postgresql"):
        options.update(pool_size=settings.pool_size, max_overflow=settings.max_overflow)
    return options


_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        settings = get_config().database
        url = get_database_url(settings)
        db_file = _sqlite_file(url)
        if db_file is not None:
            db_file.parent.mkdir(parents=True, exist_ok=True)
        _engine = create_async_engine(url, **_engine_options(url, settings))
        if url.startswith("sqlite"):
            event.listen(_engine.sync_engine, "connect", _on_sqlite_connect)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        # Objects keep their loaded state after commit.
        _session_factory = async_sessionmaker(
            get_engine(), class_=AsyncSession, expire_on_commit=False
        )
    return _session_factory


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Unit of work: commit when the block exits cleanly, roll back on error."""
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one unit of work per request."""
    async with get_session() as session:
        yield session


async def init_db() -> None:
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
