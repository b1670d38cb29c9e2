"""
Submission database. One async SQLAlchemy engine per process.

DATABASE_URL may be PostgreSQL (asyncpg) or SQLite (aiosqlite); plain
postgresql:// URLs are upgraded to the asyncpg driver.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from .config import get_settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def _async_url(url: str) -> str:
    for plain in ("postgresql://", "postgres://"):
        if url.startswith(plain):
            return "postgresql+asyncpg://" + url[len(plain):]
    return url


def _engine_options(url: str, echo: bool) -> dict:
    if url.startswith("sqlite"):
        return {"echo": echo}
    # Connection pool sizing for the Postgres deployment
    return {"echo": echo, "pool_size": 20, "max_overflow": 10, "pool_pre_ping": True}


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        settings = get_settings()
        url = _async_url(settings.database_url)
        _engine = create_async_engine(url, **_engine_options(url, settings.debug))
        logger.info("Database engine ready (%s)", url.split(":", 1)[0])
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(get_engine(), expire_on_commit=False)
    return _session_factory


@asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    """Unit of work: commits on success, rolls back on error."""
    async with get_session_factory()() as db:
        try:
            yield db
            await db.commit()
        except Exception:
            await db.rollback()
            raise


async def init_db():
    """Create missing tables. Runs at startup."""
    from .. import models  # noqa: F401  registers the tables

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema verified")


async def close_db():
    global _engine, _session_factory
    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _session_factory = None
    logger.info("Database engine disposed")
