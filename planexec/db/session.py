"""
Database session management with async SQLAlchemy.

Provides:
- Async engine factory (pooled for server databases, plain for SQLite)
- Session factory for creating database sessions
- Lazily created process-wide engine and factory
- init_db / close_db for application startup and shutdown
"""

from pathlib import Path
from typing import Optional

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from planexec.config import get_settings
from planexec.db.models import Base
from planexec.logging import get_logger

logger = get_logger(__name__)


def create_engine(database_url: Optional[str] = None) -> AsyncEngine:
    """
    Create an async SQLAlchemy engine.

    Pool settings for server databases:
    - pool_size=5: Maintain 5 connections ready in the pool
    - max_overflow=10: Allow up to 10 extra connections under heavy load
    - pool_pre_ping=True: Verify connections are alive before use
    - pool_recycle=3600: Recreate connections after 1 hour

    SQLite gets none of these; its parent directory is created if missing.
    """
    settings = get_settings()
    url = make_url(database_url or settings.database_url)
    echo = settings.log_level.upper() == "DEBUG"  # SQL logging in debug mode

    if url.get_backend_name() == "sqlite":
        if url.database and url.database != ":memory:":
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)
        return create_async_engine(url, echo=echo)

    return create_async_engine(
        url,
        echo=echo,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_recycle=3600,
    )


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False is CRITICAL for async to prevent lazy loading issues
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,  # Objects remain accessible after commit
        autoflush=False,
    )


# Engine and factory are created lazily so importing this module never
# touches the database (tests point the settings elsewhere first).
_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        _engine = create_engine()
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = create_session_factory(get_engine())
    return _session_factory


async def create_tables(bind: AsyncEngine) -> None:
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_db() -> None:
    """
    Initialize the database.

    Called during application startup. Creates missing tables, which
    also verifies connectivity: fail fast on startup if the DB is unreachable.
    """
    await create_tables(get_engine())
    logger.info("database_initialized", url=get_engine().url.render_as_string(hide_password=True))


async def close_db() -> None:
    """
    Close database connections.

    Called during application shutdown to clean up resources.
    """
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        logger.info("database_connections_closed")
    _engine = None
    _session_factory = None
