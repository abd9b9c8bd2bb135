"""Database configuration and session management.

Provides async SQLAlchemy engine and session factory. The engine is
created lazily so tests and the CLI can point it at another URL first.
"""

from collections.abc import AsyncGenerator

import structlog
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

from plumbcat.domain.exceptions import StorageUnavailableError
from plumbcat.infrastructure.config import settings

logger = structlog.get_logger()

# Base class for models
Base = declarative_base()

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def configure_engine(database_url: str | None = None, **engine_kwargs) -> AsyncEngine:
    """(Re)create the async engine and session factory.

    Args:
        database_url: Database URL, defaults to ``settings.database_url``.
        **engine_kwargs: Extra keyword arguments for ``create_async_engine``.

    Returns:
        The configured engine.
    """
    global _engine, _session_factory

    url = database_url or settings.database_url
    options = {"echo": settings.debug}
    if not url.startswith("sqlite"):
        options["pool_pre_ping"] = True
    options.update(engine_kwargs)

    _engine = create_async_engine(url, **options)
    _session_factory = async_sessionmaker(
        _engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    return _engine


def get_engine() -> AsyncEngine:
    """Get the current engine, creating it on first use."""
    if _engine is None:
        configure_engine()
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get the current session factory, creating it on first use."""
    if _session_factory is None:
        configure_engine()
    return _session_factory


async def init_models() -> None:
    """Create all tables that do not exist yet.

    Raises:
        StorageUnavailableError: If the database cannot be reached.
    """
    # Register models on Base.metadata
    from plumbcat.catalog import models  # noqa: F401

    try:
        async with get_engine().begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    except (OperationalError, DBAPIError, OSError) as e:
        logger.error("Database unavailable", error=str(e))
        raise StorageUnavailableError(str(e)) from e


async def check_connection() -> bool:
    """Check that the database answers a trivial query."""
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (OperationalError, DBAPIError, OSError) as e:
        logger.warning("Database connectivity check failed", error=str(e))
        return False
    return True


async def dispose_engine() -> None:
    """Close pooled connections."""
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session.

    Yields:
        AsyncSession for database operations.
    """
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
