"""
learntrack/database.py
Database engine, session factory and table creation
"""
import logging

from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker

from learntrack.config.settings import settings
from learntrack.orm.base import Base
import learntrack.orm  # registers every model on Base.metadata

logger = logging.getLogger(__name__)


def build_engine(database_url: str) -> AsyncEngine:
    """Async engine with pool settings suited to the backend."""
    if "sqlite" in database_url.lower():
        return create_async_engine(
            database_url,
            echo=False,
            pool_pre_ping=True,
            connect_args={
                "timeout": 30.0,  # SQLite busy timeout in seconds
            }
        )
    return create_async_engine(
        database_url,
        echo=False,
        pool_pre_ping=True,
        pool_size=20,
        max_overflow=30,
        pool_timeout=30,
        pool_recycle=3600,
    )


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = build_engine(settings.database_url)
AsyncSessionLocal = build_session_factory(engine)


async def init_db(bind: AsyncEngine = None):
    """Create missing tables."""
    bind = bind or engine
    logger.info(f"Initializing database ({bind.url.get_backend_name()})...")
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("✓ Database initialization complete")


async def close_db():
    """Close database connection"""
    await engine.dispose()
    logger.info("Database connection closed")
