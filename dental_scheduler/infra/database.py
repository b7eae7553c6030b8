"""
Database Connection and Session Management

Provides async SQLAlchemy 2.0 engines, session factories and scoped
session helpers. Engines are pooled: a scheduling operation borrows one
connection for the length of its transaction and returns it on exit.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from dental_scheduler.config import settings
from dental_scheduler.models.database import Base

logger = logging.getLogger(__name__)


def create_engine(url: str, echo: Optional[bool] = None) -> AsyncEngine:
    """
    Create a pooled async engine.

    SQLite URLs keep SQLAlchemy's default pool for that dialect; every
    other backend gets a sized queue pool with pre-ping.

    Args:
        url: Async database URL
        echo: Log SQL (defaults to settings.debug)

    Returns:
        AsyncEngine
    """
    kwargs = {"echo": settings.debug if echo is None else echo}
    if not url.startswith("sqlite"):
        kwargs.update(
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_pre_ping=True,
        )
    return create_async_engine(url, **kwargs)


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory used for every scoped transaction on an engine."""
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


# Main database: cabinet registry, plus scheduling data of shared-mode cabinets
engine = create_engine(settings.database_url)

async_session_factory = create_session_factory(engine)


@asynccontextmanager
async def get_db_context(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> AsyncGenerator[AsyncSession, None]:
    """
    Context manager for database sessions.

    Commits on success, rolls back on exception, always closes.

    Usage:
        async with get_db_context() as db:
            result = await db.execute(select(Cabinet))
            cabinets = result.scalars().all()

    Yields:
        AsyncSession: Database session
    """
    session = (session_factory or async_session_factory)()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def init_db(bind: Optional[AsyncEngine] = None) -> None:
    """
    Create all database tables.

    WARNING: This is for development and tests only. In production,
    manage the schema with migrations.
    """
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """
    Close all main database connections.

    Should be called during application shutdown.
    """
    await engine.dispose()


async def check_db_health() -> bool:
    """
    Check database connectivity for health checks.

    Returns:
        bool: True if database is accessible, False otherwise
    """
    try:
        async with get_db_context() as db:
            await db.execute(text("SELECT 1"))
        return True
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"Database health check failed: {e}")
        return False
