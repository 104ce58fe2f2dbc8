"""
Database Management and Configuration.

Sets up the asynchronous database connection for the Gallery API using
SQLAlchemy's asyncio extension and SQLModel table metadata.

Key Components:
- `engine`: Async engine built from the `DATABASE_URL` environment variable.
  SQLite through `aiosqlite` for development and tests, PostgreSQL through
  `asyncpg` in production.
- `async_session`: Session factory used by the request dependency.
- `create_db_and_tables`: Startup hook creating all SQLModel tables.
- `get_session`: FastAPI dependency yielding one session per request.
- `get_database_info`: Connectivity report used by the detailed health check.
"""

import os
import logging
from sqlmodel import SQLModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.ext.asyncio import async_sessionmaker

# Get database URL from environment variable
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./gallery.db")

logger = logging.getLogger("core.database")


def build_engine(database_url: str = DATABASE_URL):
    """Create an async engine configured for the database type"""
    if database_url.startswith("sqlite"):
        return create_async_engine(
            database_url,
            connect_args={"check_same_thread": False},
            echo=False,  # Set to True for SQL debugging
        )
    return create_async_engine(
        database_url,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,  # Validate connections before use
        echo=False,
    )


engine = build_engine()

# Create async session factory
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def create_db_and_tables(db_engine=None):
    """
    Initialize the database and create all tables.
    Called during application startup.
    """
    # Make sure the table classes are registered on the metadata
    import core.models  # noqa: F401

    db_engine = db_engine or engine
    try:
        async with db_engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
        logger.info("Gallery database tables created successfully")
    except Exception as e:
        logger.error(f"Failed to create gallery database tables: {e}")
        raise


async def get_session():
    """
    Get an async database session for dependency injection.
    """
    async with async_session() as session:
        yield session


async def get_database_info():
    """
    Get basic database information for health checks.
    """
    try:
        async with async_session() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
            connection_healthy = True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        connection_healthy = False

    return {
        # Hide credentials
        "database_url": DATABASE_URL.split("@")[1] if "@" in DATABASE_URL else "masked",
        "connection_healthy": connection_healthy,
        "database_type": "postgresql" if "postgresql" in DATABASE_URL else "sqlite",
    }
