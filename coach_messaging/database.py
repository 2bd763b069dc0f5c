"""Database configuration and connection management."""

import logging
from contextlib import contextmanager
from typing import AsyncGenerator, Iterator

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from coach_messaging.errors import TransientServiceError
from coach_messaging.settings import S

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""

    pass


# Create async engine
engine = create_async_engine(S.database_url, echo=S.sql_debug, future=True)

# Create session factory
AsyncSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency to get database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


# Routers depend on this name
db_session = get_db


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Dependency returning the factory used by long-lived conversation sessions."""
    return AsyncSessionLocal


async def init_db() -> None:
    """Initialize database connection on startup."""
    if S.db_create_all:
        # Local runs only; deployed schemas come from alembic
        import coach_messaging.models.db  # noqa: F401

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Created database tables for %s", engine.url.drivername)


async def close_db() -> None:
    """Close database connections on shutdown."""
    await engine.dispose()


@contextmanager
def translate_db_errors(action: str) -> Iterator[None]:
    """Re-raise database and connection failures as ``TransientServiceError``."""
    try:
        yield
    except (SQLAlchemyError, OSError) as e:
        logger.warning("%s failed: %s", action, e)
        raise TransientServiceError(f"{action} failed") from e


async def ping_db() -> bool:
    """Whether the database accepts connections."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        logger.warning("Database ping failed: %s", e)
        return False
    return True
