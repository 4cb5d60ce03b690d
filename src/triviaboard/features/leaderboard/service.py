"""
LeaderboardService: ingest feed batches, publish ranked snapshots.

Every ingest is a full replacement: the batch is validated, ranked, wrapped
in a new immutable LeaderboardSnapshot, swapped in as the current snapshot,
and handed to every active subscriber exactly once.

Concurrency model:
    - Ingests are serialized by one lock, so snapshot versions increase in
      the order snapshots are published.
    - The current snapshot is replaced by a single reference assignment;
      readers never take the lock and never see a partial snapshot.
    - INLINE subscribers run while the lock is held. An ingest from inside
      one of them would deadlock, so it raises ReentrantIngestError instead
      (and the dispatcher logs it like any other subscriber failure).
"""

from __future__ import annotations

import asyncio
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, Optional

from triviaboard.core.config.manager import ConfigManager
from triviaboard.core.event.dispatcher import SnapshotDispatcher
from triviaboard.core.event.types import DeliveryMode, SnapshotCallback, Subscription
from triviaboard.core.exceptions import ReentrantIngestError
from triviaboard.core.logging.logger import LogContext, get_logger
from triviaboard.domain.models.score import LeaderboardSnapshot
from triviaboard.features.leaderboard.ranking import (
    FieldMap,
    RecordParser,
    prepare_records,
    rank_records,
)

logger = get_logger(__name__)


class LeaderboardService:
    """
    Ranking core of the leaderboard.

    Usage:
        >>> service = LeaderboardService()
        >>> service.subscribe(lambda snapshot: print(len(snapshot)))
        >>> service.ingest([{"id": "u1", "fullname": "Ana", "ciudad": "Lima",
        ...                  "accumulatedPuntuacion": 90}])
        1
        >>> service.current_snapshot()[0].rank
        1
    """

    def __init__(
        self,
        config: Optional[ConfigManager] = None,
        *,
        name: str = "global",
        parser: Optional[RecordParser] = None,
        dispatcher: Optional[SnapshotDispatcher] = None,
    ) -> None:
        self.config = config or ConfigManager()
        self.name = name
        self.parser = parser or RecordParser(FieldMap.from_config(self.config))
        self.dispatcher = dispatcher or SnapshotDispatcher(
            name=name,
            max_workers=self.config.get_int("leaderboard.dispatch.max_workers", 4),
        )

        self._snapshot = LeaderboardSnapshot.empty()
        self._ingest_lock = threading.Lock()
        self._local = threading.local()
        self._feeds: list[Any] = []

        self._ingests = 0
        self._records_seen = 0
        self._records_dropped = 0

    # =========================================================================
    # INGEST
    # =========================================================================

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        if getattr(self._local, "active", False):
            raise ReentrantIngestError(self.name)
        with self._ingest_lock:
            self._local.active = True
            try:
                yield
            finally:
                self._local.active = False

    def ingest(self, records: Iterable[Any]) -> LeaderboardSnapshot:
        """
        Replace the board with `records` and notify subscribers.

        Args:
            records: ScoreRecord instances and/or raw feed mappings. Invalid
                entries are dropped and counted in ``snapshot.dropped``.

        Returns:
            The snapshot that was published.

        Raises:
            ReentrantIngestError: if called from an inline subscriber
        """
        if records is None:
            records = ()

        with self._exclusive(), LogContext(
            component="leaderboard", operation="ingest", board=self.name
        ):
            batch = prepare_records(records, self.parser)
            snapshot = LeaderboardSnapshot(
                entries=rank_records(batch.records),
                version=self._snapshot.version + 1,
                dropped=batch.dropped,
            )
            self._snapshot = snapshot

            self._ingests += 1
            self._records_seen += len(batch.records) + batch.dropped
            self._records_dropped += batch.dropped

            if batch.dropped:
                logger.info(
                    "Dropped invalid feed records",
                    extra={
                        "malformed": batch.malformed,
                        "duplicates": batch.duplicates,
                        "snapshot_version": snapshot.version,
                    },
                )

            delivered = self.dispatcher.dispatch(snapshot)
            logger.debug(
                "Leaderboard snapshot published",
                extra={
                    "snapshot_version": snapshot.version,
                    "entries": len(snapshot),
                    "subscribers": delivered,
                },
            )
            return snapshot

    def current_snapshot(self) -> LeaderboardSnapshot:
        """Most recently published snapshot; empty before the first ingest."""
        return self._snapshot

    # =========================================================================
    # SUBSCRIPTIONS
    # =========================================================================

    def subscribe(
        self,
        callback: SnapshotCallback,
        *,
        mode: DeliveryMode = DeliveryMode.INLINE,
        identifier: Optional[str] = None,
        replay: bool = False,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> Subscription:
        """
        Register `callback` to receive every future snapshot.

        Args:
            callback: Function or coroutine function taking one snapshot.
            mode: INLINE (runs inside ingest) or BACKGROUND (worker pool).
            identifier: Optional unique name; generated when omitted.
            replay: Also deliver the current snapshot right away. The
                replayed snapshot is always older than any snapshot the
                subscriber receives afterwards. Allowed from inside an
                inline subscriber.
            loop: Event loop for coroutine callbacks; defaults to the
                running loop.

        Raises:
            SubscriptionError: if the callback cannot be registered
        """
        if not replay:
            return self.dispatcher.subscribe(
                callback, mode=mode, identifier=identifier, loop=loop
            )

        if getattr(self._local, "active", False):
            # Called from an inline subscriber: this thread already holds the
            # ingest lock and the in-flight dispatch does not include the new
            # subscription.
            return self._subscribe_and_replay(callback, mode, identifier, loop)

        # Holding the ingest lock orders the replay before any later ingest.
        with self._exclusive():
            return self._subscribe_and_replay(callback, mode, identifier, loop)

    def _subscribe_and_replay(
        self,
        callback: SnapshotCallback,
        mode: DeliveryMode,
        identifier: Optional[str],
        loop: Optional[asyncio.AbstractEventLoop],
    ) -> Subscription:
        subscription = self.dispatcher.subscribe(
            callback, mode=mode, identifier=identifier, loop=loop
        )
        self.dispatcher.deliver(subscription, self._snapshot)
        return subscription

    def unsubscribe(self, identifier: str) -> bool:
        return self.dispatcher.unsubscribe(identifier)

    # =========================================================================
    # FEEDS
    # =========================================================================

    def attach(self, feed: Any) -> None:
        """Ingest every batch `feed` delivers from now on."""
        feed.bind(self.ingest)
        self._feeds.append(feed)
        logger.info(
            "Feed attached to leaderboard",
            extra={"feed": getattr(feed, "name", type(feed).__name__), "board": self.name},
        )

    # =========================================================================
    # LIFECYCLE / METRICS
    # =========================================================================

    def wait_for_deliveries(self, timeout: Optional[float] = None) -> bool:
        """Wait for background deliveries; defaults to the configured timeout."""
        if timeout is None:
            timeout = self.config.get_float(
                "leaderboard.dispatch.join_timeout_seconds", 5.0
            )
        return self.dispatcher.join(timeout)

    def close(self, wait: bool = True) -> None:
        self.dispatcher.shutdown(wait=wait)

    def get_metrics_summary(self) -> Dict[str, Any]:
        snapshot = self._snapshot
        return {
            "board": self.name,
            "snapshot_version": snapshot.version,
            "entries": len(snapshot),
            "ingests": self._ingests,
            "records_seen": self._records_seen,
            "records_dropped": self._records_dropped,
            "feeds": len(self._feeds),
            "dispatch": self.dispatcher.get_metrics().get_summary(),
        }

    def __enter__(self) -> LeaderboardService:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
