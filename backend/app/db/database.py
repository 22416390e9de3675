"""
Database connection and session management.

Uses SQLite with aiosqlite for async support.
"""

import os
import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from app.db.models import Base
from app.core.config import settings

logger = logging.getLogger(__name__)

# Database path - create data directory if needed
DATA_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.dirname(__file__))), "data")


def _database_url() -> str:
    if settings.database_url:
        return settings.database_url
    os.makedirs(DATA_DIR, exist_ok=True)
    return f"sqlite+aiosqlite:///{os.path.join(DATA_DIR, 'marketdesk.db')}"


def create_engine_for(url: str) -> AsyncEngine:
    """
    Create an async engine.

    An in-memory SQLite database lives only as long as its connection, so it
    is pinned to one. File databases get a connection per session.
    """
    if url.startswith("sqlite"):
        kwargs = {}
        if ":memory:" in url or "mode=memory" in url:
            kwargs["poolclass"] = StaticPool
        return create_async_engine(
            url,
            echo=False,  # Set to True for SQL debugging
            connect_args={"check_same_thread": False},
            **kwargs,
        )
    return create_async_engine(url, echo=False, pool_pre_ping=True)


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


DATABASE_URL = _database_url()

engine = create_engine_for(DATABASE_URL)

# Session factory
AsyncSessionLocal = create_session_factory(engine)


async def init_db(bind: AsyncEngine = engine) -> None:
    """
    Initialize the database - create all tables.
    Called on application startup.
    """
    try:
        async with bind.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info(f"Database initialized at: {bind.url.render_as_string(hide_password=True)}")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


async def close_db() -> None:
    """
    Close database connections.
    Called on application shutdown.
    """
    await engine.dispose()
    logger.info("Database connections closed")


async def ping_db(session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal) -> bool:
    """True when the database answers a trivial query."""
    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning(f"Database ping failed: {e}")
        return False

