"""Pytest configuration and fixtures."""

from pathlib import Path

import pytest

from polymarket_trade_indexer.storage.database import DatabaseManager


@pytest.fixture
def sample_condition_id() -> str:
    """Sample bytes32 condition id for testing."""
    return "0x" + "ab" * 32


@pytest.fixture
async def db(tmp_path: Path):
    """File-backed SQLite database with the schema created."""
    manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'indexer.db'}")
    await manager.init_schema_async()
    yield manager
    await manager.dispose_async()
