"""Async engine, session factory and connectivity checks."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, AsyncGenerator

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from licensing_engine.config import get_settings
from licensing_engine.models import Base

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)


def engine_options(database_url: str) -> dict[str, Any]:
    """Pool settings for the backend named in `database_url`.

    SQLite drivers manage a single file handle and reject pool sizing.
    """
    if make_url(database_url).get_backend_name() == "sqlite":
        return {}
    return {"pool_pre_ping": True, "pool_size": 10, "max_overflow": 20}


class Database:
    """Lazily created process-wide engine and session factory."""

    def __init__(self) -> None:
        self.engine: AsyncEngine | None = None
        self.sessions: async_sessionmaker[AsyncSession] | None = None

    def start(self) -> async_sessionmaker[AsyncSession]:
        if self.sessions is None:
            settings = get_settings()
            self.engine = create_async_engine(
                settings.database_url,
                echo=settings.debug,
                **engine_options(settings.database_url),
            )
            self.sessions = async_sessionmaker(
                self.engine,
                class_=AsyncSession,
                expire_on_commit=False,
                autoflush=False,
            )
        return self.sessions

    async def stop(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()
        self.engine = None
        self.sessions = None


db = Database()


async def init_db() -> None:
    """Create missing tables."""
    db.start()
    assert db.engine is not None
    async with db.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema ready")


async def dispose_db() -> None:
    await db.stop()


def async_session_factory() -> AsyncSession:
    """Open a new session; the caller owns commit and close."""
    return db.start()()


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Unit of work: commit on success, roll back on any error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def check_connection(session: AsyncSession) -> tuple[bool, str]:
    """Round-trip a trivial query; never raises."""
    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.warning("Database connectivity check failed: %s", e)
        return False, f"Database connection failed: {e}"
    return True, "Database connection successful"
