"""Database configuration and connection management."""

from typing import Any

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from clinic_backend.config import settings

DATABASE_URL = settings.async_database_url


def set_sqlite_pragma(dbapi_conn: Any, connection_record: Any) -> None:
    """Enforce foreign keys on SQLite connections."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_engine_for(url: str, **overrides: Any) -> AsyncEngine:
    """
    Create an async engine with options suited to the URL's backend.

    Args:
        url: Async SQLAlchemy URL
        **overrides: Extra ``create_async_engine`` options, e.g. ``poolclass``

    Returns:
        Configured async engine
    """
    if url.startswith("sqlite"):
        # Busy timeout in seconds: concurrent writers wait for the lock
        options: dict[str, Any] = {"connect_args": {"timeout": 5}}
    else:
        options = {
            "pool_pre_ping": True,
            "pool_size": 10,
            "max_overflow": 20,
            "pool_recycle": 3600,
            "connect_args": {
                "server_settings": {
                    "application_name": settings.app_name,
                },
            },
        }
    options["echo"] = settings.debug
    options.update(overrides)

    async_engine = create_async_engine(url, **options)
    if url.startswith("sqlite"):
        event.listen(async_engine.sync_engine, "connect", set_sqlite_pragma)
    return async_engine


# Create async engine
engine: AsyncEngine = create_engine_for(DATABASE_URL)

# Async session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def check_database_connection() -> bool:
    """Check if database connection is healthy."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False
