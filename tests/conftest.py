"""Shared fixtures for gator tests."""

import aiosqlite
import pytest
from unittest.mock import AsyncMock, patch

from gator.config import set_config
from gator.storage.database import init_database


@pytest.fixture
def anyio_backend():
    """aiosqlite needs asyncio."""
    return "asyncio"


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Keep tests away from the real ~/.gatorconfig.json and database."""
    monkeypatch.setenv("GATOR_CONFIG_PATH", str(tmp_path / "gatorconfig.json"))
    monkeypatch.setenv("GATOR_DB_PATH", str(tmp_path / "gator.db"))
    monkeypatch.delenv("GATOR_LOG_LEVEL", raising=False)
    set_config(None)
    yield
    set_config(None)


@pytest.fixture
async def in_memory_db():
    """Create an in-memory database for testing."""
    db = await aiosqlite.connect(":memory:")
    db.row_factory = aiosqlite.Row
    await init_database(db)

    # Patch get_database to return our in-memory connection
    with patch("gator.storage.database.get_database", AsyncMock(return_value=db)):
        yield db

    await db.close()
