"""
DispatchMetrics and DispatchMetricsRecorder for snapshot dispatch.

Design Decisions
----------------
- **Immutable snapshots**: DispatchMetrics is frozen; mutations go through
  the recorder
- **Thread-safe recorder**: deliveries happen on ingest threads, worker
  threads, and event loops concurrently, so every mutation takes a lock
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class DispatchMetrics:
    """
    Immutable snapshot of dispatch metrics.

    Examples
    --------
    >>> metrics = DispatchMetrics(
    ...     snapshots_published=40,
    ...     deliveries=78,
    ...     delivery_errors=2,
    ...     discarded=0,
    ...     total_subscribers=2,
    ... )
    >>> metrics.get_summary()["error_rate"]
    2.5
    """

    snapshots_published: int = 0
    deliveries: int = 0
    delivery_errors: int = 0
    discarded: int = 0
    total_subscribers: int = 0

    def get_summary(self) -> dict[str, Any]:
        """
        Generate a formatted summary of metrics.

        `error_rate` is the percentage of delivery attempts that failed.
        """
        attempts = self.deliveries + self.delivery_errors
        error_rate = (self.delivery_errors / max(1, attempts)) * 100.0

        return {
            "total_snapshots_published": self.snapshots_published,
            "total_deliveries": self.deliveries,
            "total_errors": self.delivery_errors,
            "total_discarded": self.discarded,
            "total_subscribers": self.total_subscribers,
            "error_rate": round(error_rate, 2),
        }


class DispatchMetricsRecorder:
    """Mutable, thread-safe metrics recorder for the snapshot dispatcher."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._published = 0
        self._deliveries = 0
        self._errors = 0
        self._discarded = 0
        self._subscribers = 0

    def record_publish(self) -> None:
        with self._lock:
            self._published += 1

    def record_delivery(self) -> None:
        with self._lock:
            self._deliveries += 1

    def record_error(self) -> None:
        with self._lock:
            self._errors += 1

    def record_discarded(self, count: int = 1) -> None:
        with self._lock:
            self._discarded += count

    def increment_subscriber_count(self) -> None:
        with self._lock:
            self._subscribers += 1

    def decrement_subscriber_count(self) -> None:
        with self._lock:
            self._subscribers = max(0, self._subscribers - 1)

    @property
    def total_subscribers(self) -> int:
        with self._lock:
            return self._subscribers

    def snapshot(self) -> DispatchMetrics:
        with self._lock:
            return DispatchMetrics(
                snapshots_published=self._published,
                deliveries=self._deliveries,
                delivery_errors=self._errors,
                discarded=self._discarded,
                total_subscribers=self._subscribers,
            )
