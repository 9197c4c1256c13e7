"""Database engine and session utilities.

Attributes:
    engine (AsyncEngine): Primary SQLModel async engine connected to the configured database.
    SessionLocal (async_sessionmaker): Factory for yielding AsyncSession objects.

Functions:
    init_db(): Create database tables and apply SQLite connection pragmas.
    get_session(): Dependency that yields an AsyncSession for request handlers.
"""

import logging
from collections.abc import AsyncGenerator
from pathlib import Path

from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from conversation_analysis.core.config import get_settings

# Registers every table on SQLModel.metadata before create_all runs.
import conversation_analysis.models  # noqa: F401

_settings = get_settings()
_LOGGER = logging.getLogger(__name__)

if _settings.database_url.startswith("sqlite+aiosqlite:///") and ":memory:" not in _settings.database_url:
    _db_path = Path(_settings.database_url.replace("sqlite+aiosqlite:///", "")).resolve()
    if _db_path.parent.name:
        _db_path.parent.mkdir(parents=True, exist_ok=True)


engine: AsyncEngine = create_async_engine(
    _settings.database_url,
    echo=False,
    future=True,
    connect_args=(
        {"check_same_thread": False}
        if _settings.database_url.startswith("sqlite")
        else {}
    ),
)

SessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
        if _settings.database_url.startswith("sqlite"):
            await _apply_sqlite_pragmas(conn)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with SessionLocal() as session:
        yield session


async def _apply_sqlite_pragmas(conn) -> None:
    """Enable WAL so the API and workers can read while a stage commits."""

    try:
        await conn.exec_driver_sql("PRAGMA journal_mode=WAL")
        await conn.exec_driver_sql("PRAGMA synchronous=NORMAL")
    except OperationalError:
        _LOGGER.warning("Unable to apply SQLite pragmas", exc_info=True)
