"""
Async engine and session lifecycle.

Request handlers get a session from the get_db dependency, Celery tasks
open one with get_session. Services that hold row locks across several
statements commit or roll back themselves; get_session commits whatever
is still pending when the block exits without an error.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from printshop.core.config import get_settings
from printshop.core.logging import get_logger

logger = get_logger(__name__)

ASYNC_SCHEME = "postgresql+asyncpg://"

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def _convert_database_url_to_async(url: str) -> str:
    """Switch a plain postgresql:// URL to the asyncpg driver."""
    scheme = "postgresql://"
    return ASYNC_SCHEME + url[len(scheme):] if url.startswith(scheme) else url


def _pool_options(settings) -> dict[str, Any]:
    # Each Celery run owns its own event loop, tests have none to share
    if settings.is_test:
        return {"poolclass": NullPool}
    return {
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
        "pool_recycle": 3600,
    }


def create_engine() -> AsyncEngine:
    settings = get_settings()
    engine = create_async_engine(
        _convert_database_url_to_async(settings.database_url),
        echo=settings.debug,
        pool_pre_ping=True,
        connect_args={
            "server_settings": {"application_name": settings.app_name},
            "command_timeout": 60,
            "timeout": 10,
        },
        **_pool_options(settings),
    )
    logger.info(
        "Database engine created",
        environment=settings.environment,
        pooled=not settings.is_test,
    )
    return engine


def get_engine() -> AsyncEngine:
    """
    Return the process-wide engine, creating it on first use.

    Raises:
        RuntimeError: If the engine cannot be created
    """
    global _engine
    if _engine is not None:
        return _engine

    try:
        _engine = create_engine()
    except Exception as e:
        logger.error(
            "Failed to create database engine",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise RuntimeError(f"Database engine initialization failed: {e}") from e
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(),
            expire_on_commit=False,
            autoflush=False,
        )
    return _session_factory


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Session scope: commit on success, roll back on error, always close."""
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.warning(
                "Database session rolled back",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with get_session() as session:
        yield session


async def check_database_health(attempts: int = 3, backoff: float = 1.0) -> bool:
    """
    Run SELECT 1, retrying with exponential backoff.

    Returns:
        True once a probe succeeds, False after the last failed attempt
    """
    for attempt in range(1, attempts + 1):
        try:
            async with get_engine().connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (OperationalError, DBAPIError, OSError) as e:
            logger.warning(
                "Database probe failed",
                attempt=attempt,
                attempts=attempts,
                error_type=type(e).__name__,
            )
            if attempt < attempts:
                await asyncio.sleep(backoff * 2 ** (attempt - 1))
            continue
        return True

    logger.error("Database unreachable", attempts=attempts)
    return False


async def close_database_connections() -> None:
    """Dispose of the engine; the next get_engine call builds a new one."""
    global _engine, _session_factory
    engine, _engine, _session_factory = _engine, None, None
    if engine is not None:
        await engine.dispose()
        logger.info("Database engine disposed")
