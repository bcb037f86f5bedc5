from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncConnection,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from widgetgate.core.clock import utc_now
from widgetgate.core.config import settings
from widgetgate.core.exceptions import DatabaseError
from widgetgate.core.logging import get_structlog_logger

logger = get_structlog_logger(__name__)

# Global engine instance
engine: Optional[AsyncEngine] = None
AsyncSessionLocal: Optional[async_sessionmaker[AsyncSession]] = None


def create_database_engine() -> AsyncEngine:
    """Create and configure the async database engine."""
    global engine, AsyncSessionLocal

    if engine is not None:
        return engine

    if settings.is_testing:
        # Use NullPool for tests to ensure clean state
        engine = create_async_engine(
            settings.database_url,
            poolclass=NullPool,
            echo=settings.debug,
        )
    else:
        engine = create_async_engine(
            settings.database_url,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_timeout=settings.database_pool_timeout,
            pool_recycle=settings.database_pool_recycle,
            pool_pre_ping=True,
            echo=settings.debug,
            connect_args={
                "command_timeout": 60,
                "server_settings": {
                    "application_name": "widgetgate",
                    "statement_timeout": str(settings.database_statement_timeout_ms),
                },
            },
        )

    AsyncSessionLocal = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    logger.info(
        "database.engine.created",
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        testing=settings.is_testing,
    )

    return engine


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session for dependency injection."""
    if AsyncSessionLocal is None:
        create_database_engine()

    session = AsyncSessionLocal()

    try:
        yield session

    except SQLAlchemyError as e:
        logger.error("database.session_error", error=str(e))
        await session.rollback()
        raise DatabaseError(
            message="Database session error",
            details={"error": str(e)},
        ) from e

    finally:
        await session.close()


@asynccontextmanager
async def transaction_session() -> AsyncGenerator[AsyncSession, None]:
    """Context manager for database transactions outside the request cycle."""
    if AsyncSessionLocal is None:
        create_database_engine()

    session = AsyncSessionLocal()

    try:
        await session.begin()
        yield session
        await session.commit()

    except SQLAlchemyError as e:
        await session.rollback()
        logger.error("database.transaction_error", error=str(e))
        raise DatabaseError(
            message="Database transaction failed",
            details={"error": str(e)},
        ) from e

    finally:
        await session.close()


@asynccontextmanager
async def lookup_session() -> AsyncGenerator[AsyncSession, None]:
    """Short-lived read session, separate from the request session."""
    if AsyncSessionLocal is None:
        create_database_engine()

    async with AsyncSessionLocal() as session:
        yield session


@asynccontextmanager
async def get_connection() -> AsyncGenerator[AsyncConnection, None]:
    """Get raw database connection."""
    if engine is None:
        create_database_engine()

    async with engine.connect() as connection:
        yield connection


async def create_all_tables() -> None:
    """Create every table registered on the declarative base."""
    from widgetgate import models  # noqa: F401  (registers tables)
    from widgetgate.db.base import Base

    if engine is None:
        create_database_engine()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("database.tables_created", tables=sorted(Base.metadata.tables))


async def health_check() -> dict:
    """Check database health."""
    try:
        async with get_connection() as conn:
            result = await conn.execute(text("SELECT 1"))
            row = result.fetchone()

            return {
                "status": "healthy" if row and row[0] == 1 else "unhealthy",
                "timestamp": utc_now().isoformat(),
            }

    except Exception as e:
        logger.error("database.health_check_failed", error=str(e))
        return {
            "status": "unhealthy",
            "error": str(e),
            "timestamp": utc_now().isoformat(),
        }


async def dispose_engine() -> None:
    global engine, AsyncSessionLocal

    if engine is not None:
        await engine.dispose()
    engine = None
    AsyncSessionLocal = None


# Initialize engine on module import
create_database_engine()
