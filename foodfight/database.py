"""
foodfight/database.py
Database configuration: async engine, session factory and lifecycle hooks
"""
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import (
    create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
)

from foodfight.config import settings
from foodfight.orm.base import Base
import foodfight.orm  # registers every model on Base.metadata

logger = logging.getLogger(__name__)


def create_engine_for(database_url: str, echo: bool = False) -> AsyncEngine:
    """
    Build an async engine with pool settings suited to the backend.

    SQLite gets a busy timeout so concurrent writers queue on the database
    lock instead of failing immediately.
    """
    if "sqlite" in database_url.lower():
        return create_async_engine(
            database_url,
            echo=echo,
            pool_pre_ping=True,
            connect_args={
                "timeout": 30.0,   # SQLite busy timeout in seconds
            }
        )

    return create_async_engine(
        database_url,
        echo=echo,
        pool_pre_ping=True,
        pool_size=20,
        max_overflow=30,
        pool_timeout=30,
        pool_recycle=3600,
    )


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = create_engine_for(settings.DATABASE_URL)
AsyncSessionLocal = create_session_factory(engine)


async def get_db():
    """Dependency for getting async database session"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db(bind: Optional[AsyncEngine] = None):
    """
    Initialize database: create every missing table.
    Idempotent: safe to run multiple times.
    """
    target = bind or engine
    logger.info("Initializing database...")

    try:
        logger.info(f"Database dialect: {target.url.get_backend_name()}")
        async with target.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database initialization complete")
    except Exception as e:
        logger.error(f"Database initialization failed: {str(e)}")
        raise


async def drop_db(bind: Optional[AsyncEngine] = None):
    """Drop every table. Used by tests and the CLI reset command."""
    target = bind or engine
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    logger.info("Database tables dropped")


async def close_db(bind: Optional[AsyncEngine] = None):
    """Close database connection"""
    await (bind or engine).dispose()
    logger.info("Database connection closed")
