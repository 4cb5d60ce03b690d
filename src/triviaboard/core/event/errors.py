"""
Error handling helpers for snapshot delivery.

Every subscriber failure goes through `handle_subscriber_error`, which logs
with full context and updates metrics. It never raises, which is what keeps
one failing subscriber from affecting the others or the ingest path.
"""

from __future__ import annotations

from logging import Logger
from typing import Optional

from triviaboard.core.event.metrics import DispatchMetricsRecorder
from triviaboard.core.event.types import Subscription
from triviaboard.core.exceptions import get_error_severity


def handle_subscriber_error(
    *,
    logger: Logger,
    subscription: Subscription,
    exc: BaseException,
    snapshot_version: int,
    metrics: Optional[DispatchMetricsRecorder],
) -> None:
    """
    Log subscriber callback error and update metrics.

    Parameters
    ----------
    logger:
        Logger instance to use for error logging.
    subscription:
        The subscription whose callback raised.
    exc:
        The exception that was raised.
    snapshot_version:
        Version of the snapshot being delivered.
    metrics:
        Optional DispatchMetricsRecorder to update. If None, metrics are skipped.
    """
    if metrics is not None:
        metrics.record_error()

    logger.error(
        "Snapshot subscriber error",
        extra={
            "subscriber_id": subscription.identifier,
            "delivery_mode": subscription.mode.name,
            "snapshot_version": snapshot_version,
            "error": str(exc),
            "error_type": type(exc).__name__,
            "severity": get_error_severity(exc).value
            if isinstance(exc, Exception)
            else "error",
        },
        exc_info=(type(exc), exc, exc.__traceback__),
    )
