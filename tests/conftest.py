"""Shared fixtures: temporary SQLite store and test settings."""

from pathlib import Path

import pytest

from mnemo.core.config import Settings
from mnemo.memory.persona import PersonaRegistry
from mnemo.memory.store import SQLiteMemoryStore


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings isolated from the environment, with instant retries."""
    return Settings(
        _env_file=None,
        data_dir=tmp_path,
        embedding_backoff_seconds=0.0,
        embedding_workers=2,
    )


@pytest.fixture
async def memory_store(tmp_path: Path):
    """Create a temporary memory store."""
    store = SQLiteMemoryStore(tmp_path / "test.db")
    await store.connect()
    yield store
    await store.close()


@pytest.fixture
def personas(memory_store: SQLiteMemoryStore) -> PersonaRegistry:
    return PersonaRegistry(memory_store)
