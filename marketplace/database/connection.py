"""
Ledger store connection management.

The process holds one async engine and one session factory, both created
lazily from settings. Requests get a session through ``get_db``; engine
operations wrap their writes in ``unit_of_work`` so that every lifecycle
transition commits or rolls back as one transaction.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from marketplace.core.config import Settings, get_settings
from marketplace.core.logging import get_logger

logger = get_logger(__name__)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def async_database_url(url: str) -> str:
    """Select the asyncpg driver for bare ``postgresql://`` URLs."""
    scheme, sep, rest = url.partition("://")
    if scheme in ("postgres", "postgresql"):
        return f"postgresql+asyncpg{sep}{rest}"
    return url


def engine_options(settings: Settings) -> dict[str, Any]:
    """
    Keyword arguments for ``create_async_engine``.

    SQLite and the test environment run without a pool. PostgreSQL gets a
    sized pool and a server-side ``lock_timeout`` so that a stuck
    inventory row lock surfaces as an error instead of a hung request.
    """
    options: dict[str, Any] = {"echo": settings.debug}
    if settings.is_sqlite or settings.environment == "test":
        options["poolclass"] = NullPool
        return options

    options.update(
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=True,
        pool_recycle=3600,
        connect_args={
            "server_settings": {
                "application_name": settings.app_name,
                "lock_timeout": f"{settings.inventory_lock_timeout}s",
            },
        },
    )
    return options


def get_engine() -> AsyncEngine:
    global _engine

    if _engine is None:
        settings = get_settings()
        _engine = create_async_engine(
            async_database_url(settings.database_url), **engine_options(settings)
        )
        logger.info(
            "Database engine created",
            environment=settings.environment,
            sqlite=settings.is_sqlite,
        )
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory

    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    return _session_factory


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency yielding a session for one request.

    Anything still open when the request fails is rolled back; the session
    is always closed.
    """
    session = get_session_factory()()
    try:
        yield session
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


@asynccontextmanager
async def unit_of_work(session: AsyncSession) -> AsyncGenerator[AsyncSession, None]:
    """
    Commit the block's writes, or roll all of them back on any exception.

    The exception is re-raised unchanged for the engine to classify.
    """
    try:
        yield session
        await session.commit()
    except BaseException:
        await session.rollback()
        raise


async def check_database_health() -> bool:
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.warning("Database health check failed", error=str(e))
        return False
    return True


async def close_database_connections() -> None:
    """Dispose of the engine on shutdown and forget the cached factory."""
    global _engine, _session_factory

    engine, _engine, _session_factory = _engine, None, None
    if engine is not None:
        await engine.dispose()
        logger.info("Database engine disposed")
