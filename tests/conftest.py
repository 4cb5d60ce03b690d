"""
Pytest Configuration and Fixtures for Triviaboard Tests
=======================================================

Purpose
-------
Shared fixtures for the Triviaboard test suite: configuration managers,
leaderboard services, recording subscribers, raw record factories, and an
in-memory SQLite database for feed integration tests.

Architecture Notes
------------------
- Unit tests need no infrastructure; every service gets a fresh
  ConfigManager built from the built-in defaults.
- Integration tests use SQLite in memory through aiosqlite with a
  StaticPool, so every session shares one connection.
- Services are closed after each test so worker threads never leak.
"""

from __future__ import annotations

from typing import AsyncGenerator, Generator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from triviaboard.core.config.manager import ConfigManager
from triviaboard.core.database.base import Base
from triviaboard.core.database.service import build_engine
from triviaboard.database.models import UserScore  # noqa: F401  (registers table)
from triviaboard.features.leaderboard.service import LeaderboardService

from tests.helpers import SnapshotRecorder


# ============================================================================
# SERVICE FIXTURES
# ============================================================================


@pytest.fixture
def config_manager() -> ConfigManager:
    """Fresh manager with built-in defaults only."""
    return ConfigManager()


@pytest.fixture
def service(config_manager: ConfigManager) -> Generator[LeaderboardService, None, None]:
    board = LeaderboardService(config_manager, name="test")
    yield board
    board.close()


@pytest.fixture
def recorder() -> SnapshotRecorder:
    return SnapshotRecorder()


# ============================================================================
# DATABASE FIXTURES
# ============================================================================


@pytest_asyncio.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite engine with the schema created."""
    engine = build_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False)
