"""
Score feeds: sources of full-replacement batches of raw score records.

A feed pushes its complete current top-N record set to every bound sink
whenever that set changes. Sinks are usually `LeaderboardService.ingest`.

Sink failures are isolated: one failing sink is logged and the remaining
sinks still receive the batch.
"""

from __future__ import annotations

import math
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Mapping, Optional

from triviaboard.core.logging.logger import get_logger

logger = get_logger(__name__)

BatchSink = Callable[[List[Dict[str, Any]]], Any]


class ScoreFeed(ABC):
    """Base class for feeds delivering raw record batches."""

    name = "feed"

    def __init__(self) -> None:
        self._sinks: List[BatchSink] = []
        self._sinks_lock = threading.Lock()

    def bind(self, sink: BatchSink) -> None:
        with self._sinks_lock:
            self._sinks.append(sink)

    def unbind(self, sink: BatchSink) -> bool:
        with self._sinks_lock:
            try:
                self._sinks.remove(sink)
            except ValueError:
                return False
            return True

    def _deliver(self, batch: List[Dict[str, Any]]) -> int:
        """Hand `batch` to every sink. Returns the number that accepted it."""
        with self._sinks_lock:
            sinks = list(self._sinks)

        accepted = 0
        for sink in sinks:
            try:
                sink(batch)
            except Exception as exc:
                logger.error(
                    "Feed sink failed",
                    extra={
                        "feed": self.name,
                        "records": len(batch),
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                    },
                    exc_info=True,
                )
            else:
                accepted += 1
        return accepted

    @abstractmethod
    async def start(self) -> None:
        """Begin delivering batches."""

    @abstractmethod
    async def stop(self) -> None:
        """Stop delivering batches."""


def _score_sort_key(score_key: str) -> Callable[[Mapping[str, Any]], tuple]:
    def key(record: Mapping[str, Any]) -> tuple:
        value = record.get(score_key)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return (1, 0.0)
        if isinstance(value, float) and math.isnan(value):
            return (1, 0.0)
        return (0, -value)

    return key


class InMemoryScoreFeed(ScoreFeed):
    """
    Push feed over an in-process record set.

    Every change re-delivers the top `limit` records by score (records with
    a non-numeric score last). Handy for tests, demos, and embedding the
    leaderboard in a process that already holds the data.

    Usage:
        >>> feed = InMemoryScoreFeed(limit=25)
        >>> service.attach(feed)
        >>> feed.upsert("u1", {"fullname": "Ana", "ciudad": "Lima",
        ...                    "accumulatedPuntuacion": 90})
    """

    name = "memory"

    def __init__(
        self,
        limit: Optional[int] = None,
        *,
        id_key: str = "id",
        score_key: str = "accumulatedPuntuacion",
    ) -> None:
        super().__init__()
        if limit is not None and limit < 0:
            raise ValueError(f"limit must be >= 0, got {limit}")
        self.limit = limit
        self.id_key = id_key
        self.score_key = score_key
        self._records: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()
        # Reentrant so a sink may change the feed it is called from.
        self._publish_lock = threading.RLock()
        self._running = True

    async def start(self) -> None:
        self._running = True
        self.publish()

    async def stop(self) -> None:
        self._running = False

    def current_batch(self) -> List[Dict[str, Any]]:
        with self._lock:
            records = [
                {**fields, self.id_key: user_id}
                for user_id, fields in self._records.items()
            ]
        records.sort(key=_score_sort_key(self.score_key))
        if self.limit is not None:
            records = records[: self.limit]
        return records

    def publish(self) -> int:
        """Deliver the current batch. Does nothing while stopped."""
        # Building and delivering under one lock keeps the newest state
        # delivered last when several threads change the feed.
        with self._publish_lock:
            if not self._running:
                return 0
            return self._deliver(self.current_batch())

    def replace(self, children: Mapping[str, Mapping[str, Any]]) -> None:
        """Replace the whole record set with a keyed batch."""
        with self._lock:
            self._records = {
                str(key): dict(value) if isinstance(value, Mapping) else {}
                for key, value in children.items()
            }
        self.publish()

    def upsert(self, user_id: str, fields: Mapping[str, Any]) -> None:
        """Insert or update one user's record (fields are merged)."""
        with self._lock:
            self._records.setdefault(user_id, {}).update(fields)
        self.publish()

    def remove(self, user_id: str) -> bool:
        with self._lock:
            removed = self._records.pop(user_id, None) is not None
        if removed:
            self.publish()
        return removed
