from __future__ import annotations

from pathlib import Path

import pytest
import sqlalchemy as sa
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine

from sqlwire import AsyncDatabase, Database, DatabaseOptions
from tests.utils import CREATE_TEST_TABLE


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    """Create a temporary database path."""
    return tmp_path / "test.db"


@pytest.fixture
def engine(db_path: Path):
    """Create a blocking engine with the test table."""
    engine = sa.create_engine(f"sqlite:///{db_path}")
    with engine.begin() as conn:
        conn.execute(sa.text(CREATE_TEST_TABLE))
    yield engine
    engine.dispose()


@pytest.fixture
def database(engine) -> Database:
    return Database(DatabaseOptions(), lambda: engine)


@pytest.fixture
async def async_engine(db_path: Path):
    """Create an aiosqlite engine with the test table."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    async with engine.begin() as conn:
        await conn.execute(sa.text(CREATE_TEST_TABLE))
    yield engine
    await engine.dispose()


@pytest.fixture
def async_database(async_engine) -> AsyncDatabase:
    return AsyncDatabase(DatabaseOptions(), lambda: async_engine)


@pytest.fixture
def commit_counter(engine) -> list:
    """Record every physical commit issued on the blocking engine."""
    commits: list = []
    event.listen(engine, "commit", lambda conn: commits.append(conn))
    return commits
