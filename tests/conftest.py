import os
import tempfile
from pathlib import Path
from typing import Any, AsyncGenerator, Generator
from unittest.mock import AsyncMock, MagicMock

# Settings are read at import time; point the app at a throwaway database
TEST_DB_PATH = Path(tempfile.gettempdir()) / "coach_messaging_test.db"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{TEST_DB_PATH}"
os.environ["DB_CREATE_ALL"] = "true"
os.environ["REDIS_URL"] = ""
os.environ["PROFILE_SERVICE_URL"] = ""
os.environ.setdefault("STORAGE_PROVIDER_API_KEY", "test-storage-key")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from coach_messaging.database import Base  # noqa: E402
from coach_messaging.main import app  # noqa: E402
from coach_messaging.realtime import InProcessChannel  # noqa: E402


@pytest.fixture(scope="function")
async def test_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """A fresh SQLite database per test."""
    import coach_messaging.models.db  # noqa: F401

    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'messages.db'}", future=True
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Clean up
    await engine.dispose()


@pytest.fixture(scope="function")
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture(scope="function")
async def test_db(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """A database session for integration tests."""
    async with session_factory() as session:
        yield session


@pytest.fixture(scope="function")
async def channel() -> AsyncGenerator[InProcessChannel, None]:
    channel = InProcessChannel()
    await channel.start()
    yield channel
    await channel.close()


@pytest.fixture(scope="function")
async def mock_db() -> AsyncGenerator[AsyncMock, None]:
    """Create a mock database session for unit tests."""
    mock_session = AsyncMock()
    mock_session.commit = AsyncMock()
    mock_session.rollback = AsyncMock()
    mock_session.close = AsyncMock()
    mock_session.refresh = AsyncMock()
    mock_session.execute = AsyncMock()
    mock_session.flush = AsyncMock()
    mock_session.add = MagicMock()  # add is sync, not async

    yield mock_session


@pytest.fixture
def client() -> Generator[TestClient, Any, None]:
    """Test client for the FastAPI app, backed by an empty database."""
    # The engine was disposed by the previous client's shutdown
    TEST_DB_PATH.unlink(missing_ok=True)
    with TestClient(app) as test_client:
        yield test_client
