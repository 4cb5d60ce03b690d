"""
Snapshot dispatch: subscriber registry, delivery modes, and the dispatcher
that fans leaderboard snapshots out to subscribers.
"""

from triviaboard.core.event.dispatcher import SnapshotDispatcher
from triviaboard.core.event.metrics import DispatchMetrics, DispatchMetricsRecorder
from triviaboard.core.event.registry import SubscriberRegistry
from triviaboard.core.event.types import DeliveryMode, SnapshotCallback, Subscription

__all__ = [
    "SnapshotDispatcher",
    "SubscriberRegistry",
    "Subscription",
    "SnapshotCallback",
    "DeliveryMode",
    "DispatchMetrics",
    "DispatchMetricsRecorder",
]
