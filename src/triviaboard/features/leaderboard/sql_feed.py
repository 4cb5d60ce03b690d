"""
SqlScoreFeed: polling feed over the ``user_scores`` table.

Each poll selects the top-N rows by score (ties by id so the batch is
stable), converts them to raw feed records, and delivers the batch when it
differs from the previous poll. The first poll always delivers, even when
the table is empty, so subscribers get an initial board.

Database failures never stop the polling loop: they surface as FeedError,
are logged, and the next poll tries again.
"""

from __future__ import annotations

import asyncio
from contextlib import AbstractAsyncContextManager
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from triviaboard.core.config.manager import ConfigManager
from triviaboard.core.exceptions import FeedError
from triviaboard.core.logging.logger import LogContext, get_logger
from triviaboard.database.models.user_score import UserScore
from triviaboard.features.leaderboard.feed import ScoreFeed
from triviaboard.features.leaderboard.ranking import FieldMap

logger = get_logger(__name__)

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


class SqlScoreFeed(ScoreFeed):
    """
    Poll the score table and push top-N batches to bound sinks.

    Args:
        session_factory: Zero-argument callable returning an async context
            manager that yields an AsyncSession (an ``async_sessionmaker`` or
            ``DatabaseService.get_session``).
        limit: Maximum rows per batch; None for no limit.
        poll_interval_seconds: Delay between polls of the running loop.
        fields: Raw record keys to emit.

    Usage:
        >>> feed = SqlScoreFeed(DatabaseService.get_session, limit=25)
        >>> service.attach(feed)
        >>> await feed.start()
    """

    name = "sql"

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        limit: Optional[int] = 25,
        poll_interval_seconds: float = 2.0,
        fields: Optional[FieldMap] = None,
    ) -> None:
        super().__init__()
        if limit is not None and limit < 0:
            raise ValueError(f"limit must be >= 0, got {limit}")
        if poll_interval_seconds <= 0:
            raise ValueError(
                f"poll_interval_seconds must be > 0, got {poll_interval_seconds}"
            )

        self._session_factory = session_factory
        self.limit = limit
        self.poll_interval_seconds = poll_interval_seconds
        self.fields = fields or FieldMap()

        self._last_batch: Optional[List[Dict[str, Any]]] = None
        self._task: Optional[asyncio.Task[None]] = None
        self._polls = 0
        self._failures = 0

    @classmethod
    def from_config(
        cls, session_factory: SessionFactory, config: ConfigManager
    ) -> SqlScoreFeed:
        return cls(
            session_factory,
            limit=config.get_int("leaderboard.feed.limit", 25),
            poll_interval_seconds=config.get_float(
                "leaderboard.feed.poll_interval_seconds", 2.0
            ),
            fields=FieldMap.from_config(config),
        )

    # =========================================================================
    # POLLING
    # =========================================================================

    async def fetch_batch(self) -> List[Dict[str, Any]]:
        """
        Query the current top-N rows as raw records.

        Raises:
            FeedError: if the query fails
        """
        stmt = select(UserScore).order_by(
            UserScore.accumulated_score.desc(), UserScore.id
        )
        if self.limit is not None:
            stmt = stmt.limit(self.limit)

        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                rows = result.scalars().all()
        except SQLAlchemyError as exc:
            raise FeedError(self.name, "score query failed", exc) from exc

        return [row.to_raw(self.fields) for row in rows]

    async def poll_once(self) -> bool:
        """
        Run one poll. Returns True if a batch was delivered.

        Raises:
            FeedError: if the query fails
        """
        self._polls += 1
        batch = await self.fetch_batch()

        if self._last_batch is not None and batch == self._last_batch:
            return False

        self._last_batch = batch
        self._deliver(batch)
        logger.debug(
            "SQL feed delivered batch",
            extra={"feed": self.name, "records": len(batch), "poll": self._polls},
        )
        return True

    async def _run(self) -> None:
        async with LogContext(component="feed", operation="poll", feed=self.name):
            while True:
                try:
                    await self.poll_once()
                except FeedError as exc:
                    self._failures += 1
                    logger.warning(
                        "SQL feed poll failed; retrying next interval",
                        extra={
                            "feed": self.name,
                            "error": str(exc),
                            "failures": self._failures,
                        },
                    )
                await asyncio.sleep(self.poll_interval_seconds)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the background polling task. No-op if already running."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=f"score-feed-{self.name}")
        self._task.add_done_callback(self._on_task_done)
        logger.info(
            "SQL feed started",
            extra={
                "feed": self.name,
                "limit": self.limit,
                "poll_interval_seconds": self.poll_interval_seconds,
            },
        )

    async def stop(self) -> None:
        """Cancel the polling task and wait for it to finish."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info(
            "SQL feed stopped",
            extra={"feed": self.name, "polls": self._polls, "failures": self._failures},
        )

    def _on_task_done(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "SQL feed polling task crashed",
                extra={"feed": self.name, "error": str(exc), "error_type": type(exc).__name__},
                exc_info=(type(exc), exc, exc.__traceback__),
            )

    def get_stats(self) -> Dict[str, Any]:
        return {
            "feed": self.name,
            "running": self.running,
            "polls": self._polls,
            "failures": self._failures,
            "last_batch_size": len(self._last_batch) if self._last_batch is not None else None,
        }
