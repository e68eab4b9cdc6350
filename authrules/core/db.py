"""
Database connection and session management.

Provides SQLAlchemy engines, session factories, and dependency injection
for FastAPI endpoints.

The registry and generated objects are managed through the admin URL
(DDL needs ownership of the API and claims schemas); applications reading
through the generated objects use their own sessions with `DataApi`.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import sessionmaker

from authrules.core.config import settings

logger = logging.getLogger(__name__)

_engine: Engine | None = None
_sessionmaker: sessionmaker | None = None

_async_engine: AsyncEngine | None = None
_async_sessionmaker: async_sessionmaker | None = None


def _connect_args() -> dict[str, object]:
    return {"connect_timeout": 5, "options": "-c timezone=UTC"}


def get_engine() -> Engine:
    """
    Create and configure the sync SQLAlchemy engine.

    Used for installation scripts and integration test setup.
    """
    global _engine

    if _engine is not None:
        return _engine

    url = settings.sync_url
    if not url:
        raise RuntimeError("DATABASE_URL_ADMIN or DATABASE_URL_APP is required")

    _engine = create_engine(
        url,
        pool_size=5,
        max_overflow=5,
        pool_timeout=30,
        pool_recycle=3600,
        pool_pre_ping=True,
        connect_args=_connect_args(),
        echo=False,
    )
    return _engine


def get_sessionmaker() -> sessionmaker:
    global _sessionmaker
    if _sessionmaker is not None:
        return _sessionmaker
    _sessionmaker = sessionmaker(bind=get_engine(), autoflush=False, autocommit=False)
    return _sessionmaker


def create_fresh_async_engine() -> AsyncEngine:
    """Create a fresh async engine without caching.

    Used for tests to ensure each test gets its own engine bound to its event loop.
    """
    url = settings.async_url
    if not url:
        raise RuntimeError("DATABASE_URL_ADMIN or DATABASE_URL_APP is required")

    return create_async_engine(
        url,
        pool_size=5,
        max_overflow=5,
        pool_pre_ping=True,
        echo=False,
        connect_args=_connect_args(),
    )


def get_async_engine() -> AsyncEngine:
    """
    Create and configure the async SQLAlchemy engine.

    psycopg v3 serves async connections directly; SQLAlchemy picks the
    async adaptation when create_async_engine is called.
    """
    global _async_engine

    if _async_engine is not None:
        return _async_engine

    url = settings.async_url
    if not url:
        raise RuntimeError("DATABASE_URL_ADMIN or DATABASE_URL_APP is required")

    _async_engine = create_async_engine(
        url,
        pool_size=10,
        max_overflow=10,
        pool_timeout=30,
        pool_recycle=3600,
        pool_pre_ping=True,
        echo=False,
        connect_args=_connect_args(),
    )
    return _async_engine


def get_async_sessionmaker() -> async_sessionmaker[AsyncSession]:
    """Get or create the async sessionmaker."""
    global _async_sessionmaker
    if _async_sessionmaker is not None:
        return _async_sessionmaker

    _async_sessionmaker = async_sessionmaker(
        bind=get_async_engine(),
        class_=AsyncSession,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )
    return _async_sessionmaker


async def reset_async_engine() -> None:
    """Dispose the async engine and forget the sessionmaker.

    Useful for tests to ensure fresh connections on new event loops.
    """
    global _async_engine, _async_sessionmaker

    if _async_engine is not None:
        await _async_engine.dispose()
    _async_engine = None
    _async_sessionmaker = None


@asynccontextmanager
async def get_async_db_session() -> AsyncIterator[AsyncSession]:
    """Session scope that commits on success and rolls back on error.

    Usage:
        async with get_async_db_session() as db:
            await ClaimRegistry(...).define_claim(...)
    """
    session_maker = get_async_sessionmaker()
    async with session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
