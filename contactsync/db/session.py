"""
Database session management.
"""
# contactsync/db/session.py
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Any, Dict, Type, TypeVar

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from fastapi import Depends

from contactsync.core.config import settings
from contactsync.db.base import Base

logger = logging.getLogger("contactsync.db")


def _engine_options(database_url: str) -> Dict[str, Any]:
    """Pool settings for the configured backend. SQLite manages its own pool."""
    if database_url.startswith("sqlite"):
        return {}
    return {
        "pool_size": 20,
        "max_overflow": 30,
        "pool_timeout": 30,
        "pool_recycle": 3600,
        "pool_pre_ping": True,
    }


# Create async engine with optimized pool settings
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    **_engine_options(settings.DATABASE_URL),
)

# Create async session factory
async_session_factory = sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
)


# Context manager for database sessions
@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Context manager for database sessions.

    Automatically handles commit/rollback and ensures session is closed.

    Usage:
        async with get_session() as session:
            # Use session here
    """
    session = async_session_factory()
    try:
        yield session
        await session.commit()
        logger.debug("Database session committed")
    except Exception as e:
        await session.rollback()
        logger.error(f"Database session rolled back due to: {str(e)}")
        raise
    finally:
        await session.close()
        logger.debug("Database session closed")


# Dependency function for FastAPI endpoints
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Get a database session for FastAPI endpoints via dependency injection.
    """
    async with get_session() as session:
        yield session


# Create a type variable for repository types
T = TypeVar('T')


# Factory function for repositories
def get_repository_factory(repo_type: Type[T]):
    """
    Create a repository factory for use with FastAPI dependency injection.

    Usage:
        @router.get("/")
        async def endpoint(repo = Depends(get_repository_factory(LocationRepository))):
            # Use repo here
    """
    async def _get_repo(session: AsyncSession = Depends(get_db)) -> T:
        return repo_type(session)
    return _get_repo


# Context manager for repositories
@asynccontextmanager
async def get_repository_context(repo_type: Type[T]) -> AsyncGenerator[T, None]:
    """
    Get a repository with managed session lifecycle.

    Usage:
        async with get_repository_context(UploadJobRepository) as repo:
            # Use repo here
    """
    async with get_session() as session:
        yield repo_type(session)


async def initialize_database() -> None:
    """
    Initialize the database connection pool and create missing tables.

    This should be called during application startup.
    """
    logger.info("Initializing database connection pool")

    async with engine.begin() as conn:
        await conn.execute(text("SELECT 1"))
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Database initialization complete")


async def close_database_connections() -> None:
    """
    Close all database connections in the pool.

    This should be called during application shutdown.
    """
    logger.info("Closing database connections")

    # Dispose the engine to close all connections in the pool
    await engine.dispose()

    logger.info("Database connections closed")
