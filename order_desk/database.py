"""
Database Connection Module
Builds SQLAlchemy async engines and session factories.

The ordering core never reaches for a process-wide handle: it receives a
session factory at construction. The cached helpers below exist only for
the HTTP layer, which owns the application-level engine.
"""

import logging
from functools import lru_cache
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from order_desk.core.config import get_settings

logger = logging.getLogger(__name__)


# Base class for all our models
class Base(DeclarativeBase):
    pass


def build_engine(database_url: str, echo: bool = False, **kwargs) -> AsyncEngine:
    """
    Create an async engine for the given URL.

    Pool sizing only applies to server databases; SQLite keeps the
    dialect's own pool.
    """
    if not database_url.startswith("sqlite"):
        kwargs.setdefault("pool_size", 5)
        kwargs.setdefault("max_overflow", 10)
        kwargs.setdefault("pool_pre_ping", True)
    return create_async_engine(database_url, echo=echo, **kwargs)


def build_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory - creates new database sessions."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False  # Objects remain accessible after commit
    )


@lru_cache()
def get_engine() -> AsyncEngine:
    settings = get_settings()
    return build_engine(settings.database_url, echo=settings.database_echo)


@lru_cache()
def get_session_maker() -> async_sessionmaker[AsyncSession]:
    return build_session_maker(get_engine())


async def get_db() -> AsyncIterator[AsyncSession]:
    """
    Dependency injection for FastAPI routes.
    Yields a database session and ensures cleanup.
    """
    async with get_session_maker()() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db(engine: AsyncEngine) -> None:
    """
    Create all tables in database.
    Called once at application startup.
    """
    # Register the mapped classes on Base.metadata
    import order_desk.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created successfully")
