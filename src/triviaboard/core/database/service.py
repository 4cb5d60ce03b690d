"""
Database Service - async engine and session management.

Purpose
-------
Own the single AsyncEngine used by the SQL score feed and the console
front end, and hand out sessions through async context managers.

Responsibilities
----------------
- Create the engine from `Config.DATABASE_URL` (or an explicit URL)
- Provide `get_session()` for reads and `get_transaction()` for writes
  (commit on success, rollback on exception)
- Create the schema for development databases (`create_all`)
- Expose a lightweight `health_check()`

Non-Responsibilities
--------------------
- Ranking, parsing, or feed scheduling (see features/leaderboard)
- Migrations

Pool Selection
--------------
- ``sqlite`` in-memory URLs use StaticPool, so every session sees the same
  database.
- Other ``sqlite`` URLs use the dialect default.
- Server databases use QueuePool.

Usage Example
-------------
>>> await DatabaseService.initialize()
>>> async with DatabaseService.get_transaction() as session:
...     session.add(UserScore(id="u1", fullname="Ana", ciudad="Lima", accumulated_score=90))
>>> feed = SqlScoreFeed(DatabaseService.get_session)
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from triviaboard.core.config.config import Config
from triviaboard.core.database.base import Base
from triviaboard.core.exceptions import DatabaseError
from triviaboard.core.logging.logger import get_logger

logger = get_logger(__name__)


class DatabaseInitializationError(RuntimeError):
    """Raised when database engine initialization fails."""


class DatabaseNotInitializedError(RuntimeError):
    """Raised when database operations are attempted before initialization."""


def _url_scheme(url: str) -> str:
    return url.split(":", 1)[0] if ":" in url else "unknown"


def build_engine(url: str, *, echo: bool = False) -> AsyncEngine:
    """Create an AsyncEngine with the pool appropriate for `url`."""
    engine_kwargs: dict[str, Any] = {"echo": echo}

    if url.startswith("sqlite"):
        if ":memory:" in url or url.rstrip("/").endswith("sqlite+aiosqlite:"):
            engine_kwargs["poolclass"] = StaticPool
    else:
        engine_kwargs.update(
            {"pool_size": 5, "max_overflow": 10, "pool_recycle": 1800, "pool_pre_ping": True}
        )

    return create_async_engine(url, **engine_kwargs)


class DatabaseService:
    """
    Centralized async database engine and session management.

    Public API
    ----------
    - initialize(url=None) / shutdown()
    - get_session() / get_transaction()
    - create_all()
    - health_check()
    """

    _engine: Optional[AsyncEngine] = None
    _session_factory: Optional[async_sessionmaker[AsyncSession]] = None
    _init_lock: Optional[asyncio.Lock] = None

    # ========================================================================
    # Initialization & Shutdown
    # ========================================================================

    @classmethod
    def _lock(cls) -> asyncio.Lock:
        if cls._init_lock is None:
            cls._init_lock = asyncio.Lock()
        return cls._init_lock

    @classmethod
    async def initialize(cls, url: Optional[str] = None) -> None:
        """
        Initialize the engine and session factory. Idempotent.

        Raises
        ------
        DatabaseInitializationError
            If the URL is missing or engine creation fails.
        """
        async with cls._lock():
            if cls._engine is not None:
                logger.debug("DatabaseService already initialized; skipping")
                return

            database_url = url or Config.DATABASE_URL
            if not database_url or not isinstance(database_url, str):
                raise DatabaseInitializationError(
                    "DATABASE_URL must be configured as a non-empty string"
                )

            try:
                cls._engine = build_engine(database_url, echo=Config.DATABASE_ECHO)
            except Exception as exc:
                logger.error(
                    "DatabaseService initialization failed",
                    extra={
                        "url_scheme": _url_scheme(database_url),
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                    },
                    exc_info=True,
                )
                raise DatabaseInitializationError(
                    f"Database initialization failed: {exc}"
                ) from exc

            cls._session_factory = async_sessionmaker(
                bind=cls._engine,
                class_=AsyncSession,
                expire_on_commit=False,
            )
            logger.info(
                "DatabaseService initialized",
                extra={"url_scheme": _url_scheme(database_url)},
            )

    @classmethod
    async def shutdown(cls) -> None:
        """Dispose the engine. Safe to call multiple times."""
        async with cls._lock():
            if cls._engine is None:
                return
            try:
                await cls._engine.dispose()
                logger.info("DatabaseService shutdown complete")
            finally:
                cls._engine = None
                cls._session_factory = None

    @classmethod
    def _ensure_initialized(cls) -> async_sessionmaker[AsyncSession]:
        if cls._session_factory is None or cls._engine is None:
            raise DatabaseNotInitializedError(
                "DatabaseService must be initialized before use. "
                "Call DatabaseService.initialize() during startup."
            )
        return cls._session_factory

    @classmethod
    def is_initialized(cls) -> bool:
        return cls._engine is not None

    # ========================================================================
    # Schema & Health
    # ========================================================================

    @classmethod
    async def create_all(cls) -> None:
        """Create every table known to `Base.metadata` if missing."""
        # Registers the model tables on Base.metadata.
        import triviaboard.database.models  # noqa: F401

        cls._ensure_initialized()
        assert cls._engine is not None
        try:
            async with cls._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except (OperationalError, DBAPIError) as exc:
            raise DatabaseError("create_all", exc) from exc
        logger.info(
            "Database schema ensured",
            extra={"tables": sorted(Base.metadata.tables)},
        )

    @classmethod
    async def health_check(cls) -> bool:
        """
        Execute ``SELECT 1``.

        Returns False instead of raising when the database is unreachable.
        """
        if cls._engine is None:
            logger.warning("Health check called on uninitialized DatabaseService")
            return False

        start = time.perf_counter()
        try:
            async with cls._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except (OperationalError, DBAPIError) as exc:
            logger.warning(
                "Database health check failed",
                extra={"error": str(exc), "error_type": type(exc).__name__},
            )
            return False
        finally:
            logger.debug(
                "Database health check completed",
                extra={"duration_ms": (time.perf_counter() - start) * 1000.0},
            )

    # ========================================================================
    # Session & Transaction Context Managers
    # ========================================================================

    @classmethod
    @asynccontextmanager
    async def get_session(cls) -> AsyncGenerator[AsyncSession, None]:
        """
        Session without automatic commit, for read-only work.

        Raises
        ------
        DatabaseNotInitializedError
            If DatabaseService has not been initialized.
        """
        factory = cls._ensure_initialized()
        async with factory() as session:
            yield session

    @classmethod
    @asynccontextmanager
    async def get_transaction(cls) -> AsyncGenerator[AsyncSession, None]:
        """
        Session wrapped in a transaction: commit on success, rollback on error.

        The original exception is re-raised after rollback.
        """
        factory = cls._ensure_initialized()
        start = time.perf_counter()
        async with factory() as session:
            try:
                yield session
                await session.commit()
            except Exception as exc:
                await session.rollback()
                logger.warning(
                    "Database transaction rolled back",
                    extra={"error": str(exc), "error_type": type(exc).__name__},
                )
                raise
            finally:
                logger.debug(
                    "Database transaction finished",
                    extra={"duration_ms": (time.perf_counter() - start) * 1000.0},
                )
