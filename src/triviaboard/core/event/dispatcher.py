"""
SnapshotDispatcher: fan-out of leaderboard snapshots to subscribers.

Purpose
-------
Deliver every published snapshot to every active subscription exactly once,
isolating subscriber failures from each other and from the publisher.

Delivery Paths
--------------
- INLINE (sync callback): invoked on the publishing thread, in registration
  order, before `dispatch` returns.
- BACKGROUND (sync callback): appended to the subscriber's mailbox; a drain
  job on the shared worker pool delivers the mailbox in FIFO order. At most
  one drain job runs per subscriber, so per-subscriber order is kept while
  different subscribers progress independently.
- Coroutine callback: scheduled on the subscriber's event loop with
  `asyncio.run_coroutine_threadsafe`; the loop runs them in scheduling order.

Cancellation
------------
`Subscription.cancel()` removes the subscription from the registry. Drain
jobs re-check the flag before each delivery, so snapshots still queued for a
cancelled subscriber are discarded rather than delivered.

Thread Safety
-------------
`dispatch` may be called from any thread. Pending-work accounting uses a
condition variable so `join()` can block until background deliveries settle.
Drain jobs run in a copy of the dispatching thread's log context, so
subscriber errors are logged with the ingest's correlation id.
"""

from __future__ import annotations

import asyncio
import inspect
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional

from triviaboard.core.event.errors import handle_subscriber_error
from triviaboard.core.event.metrics import DispatchMetrics, DispatchMetricsRecorder
from triviaboard.core.event.registry import SubscriberRegistry
from triviaboard.core.event.types import DeliveryMode, SnapshotCallback, Subscription
from triviaboard.core.exceptions import SubscriptionError
from triviaboard.core.logging.logger import bind_log_context, get_logger
from triviaboard.domain.models.score import LeaderboardSnapshot

logger = get_logger(__name__)


def _accepts_single_argument(callback: SnapshotCallback) -> bool:
    try:
        signature = inspect.signature(callback)
    except (TypeError, ValueError):
        # Builtins without introspectable signatures; trust the caller.
        return True

    positional = 0
    required = 0
    for param in signature.parameters.values():
        if param.kind is inspect.Parameter.VAR_POSITIONAL:
            return required <= 1
        if param.kind in (
            inspect.Parameter.POSITIONAL_ONLY,
            inspect.Parameter.POSITIONAL_OR_KEYWORD,
        ):
            positional += 1
            if param.default is inspect.Parameter.empty:
                required += 1
        elif (
            param.kind is inspect.Parameter.KEYWORD_ONLY
            and param.default is inspect.Parameter.empty
        ):
            return False
    return positional >= 1 and required <= 1


class SnapshotDispatcher:
    """
    Deliver snapshots to subscribers with per-subscriber error isolation.

    Parameters
    ----------
    name:
        Used for worker thread names and log context.
    max_workers:
        Size of the worker pool used for BACKGROUND deliveries. The pool is
        created lazily on the first background delivery.

    Examples
    --------
    >>> dispatcher = SnapshotDispatcher(name="global")
    >>> subscription = dispatcher.subscribe(print)
    >>> dispatcher.dispatch(snapshot)
    1
    """

    def __init__(
        self,
        *,
        name: str = "leaderboard",
        max_workers: int = 4,
        registry: Optional[SubscriberRegistry] = None,
        metrics: Optional[DispatchMetricsRecorder] = None,
    ) -> None:
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")

        self.name = name
        self._max_workers = max_workers
        self._registry = registry or SubscriberRegistry()
        self._metrics = metrics or DispatchMetricsRecorder()

        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()
        self._closed = False

        self._pending = 0
        self._idle = threading.Condition()

    # ------------------------------------------------------------------
    # Subscription management
    # ------------------------------------------------------------------

    def subscribe(
        self,
        callback: SnapshotCallback,
        *,
        mode: DeliveryMode = DeliveryMode.INLINE,
        identifier: Optional[str] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> Subscription:
        """
        Register a callback and return its subscription handle.

        Raises
        ------
        SubscriptionError:
            If the callback is not callable, cannot take a single snapshot
            argument, the identifier is taken, or a coroutine callback is
            registered with no event loop available.
        """
        label = identifier or getattr(callback, "__qualname__", repr(callback))

        if not callable(callback):
            raise SubscriptionError(label, "callback is not callable")
        if not isinstance(mode, DeliveryMode):
            raise SubscriptionError(label, f"unknown delivery mode {mode!r}")
        if not _accepts_single_argument(callback):
            raise SubscriptionError(
                label, "callback must accept exactly one positional argument (snapshot)"
            )

        is_async = inspect.iscoroutinefunction(callback)
        if is_async and loop is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                raise SubscriptionError(
                    label, "coroutine callbacks need a running event loop"
                ) from None

        subscription = Subscription.from_callback(
            callback,
            mode=mode,
            identifier=identifier,
            is_async=is_async,
            loop=loop if is_async else None,
            on_cancel=self._on_cancel,
        )
        self._registry.add(subscription)
        self._metrics.increment_subscriber_count()

        logger.debug(
            "Subscriber registered",
            extra={
                "subscriber_id": subscription.identifier,
                "delivery_mode": mode.name,
                "is_async": is_async,
                "dispatcher": self.name,
            },
        )
        return subscription

    def unsubscribe(self, identifier: str) -> bool:
        """Cancel the subscription with `identifier`. Returns False if unknown."""
        subscription = self._registry.get(identifier)
        if subscription is None:
            return False
        return subscription.cancel()

    def _on_cancel(self, subscription: Subscription) -> None:
        if self._registry.remove(subscription.identifier) is not None:
            self._metrics.decrement_subscriber_count()
        logger.debug(
            "Subscriber cancelled",
            extra={"subscriber_id": subscription.identifier, "dispatcher": self.name},
        )

    @property
    def subscriber_count(self) -> int:
        return len(self._registry)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def dispatch(self, snapshot: LeaderboardSnapshot) -> int:
        """
        Deliver `snapshot` to every active subscription.

        Inline callbacks have run and background/async deliveries have been
        scheduled by the time this returns. Never raises for subscriber
        failures.

        Returns
        -------
        int:
            Number of subscriptions the snapshot was handed to.
        """
        self._metrics.record_publish()
        handed = 0
        for subscription in self._registry.snapshot():
            if self.deliver(subscription, snapshot):
                handed += 1
        return handed

    def deliver(self, subscription: Subscription, snapshot: LeaderboardSnapshot) -> bool:
        """Deliver one snapshot to one subscription along its delivery path."""
        if not subscription.active:
            return False

        if subscription.is_async:
            return self._schedule_coroutine(subscription, snapshot)
        if subscription.mode is DeliveryMode.INLINE:
            self._invoke(subscription, snapshot)
            return True
        return self._enqueue(subscription, snapshot)

    def _invoke(self, subscription: Subscription, snapshot: LeaderboardSnapshot) -> None:
        try:
            subscription.callback(snapshot)
        except Exception as exc:
            handle_subscriber_error(
                logger=logger,
                subscription=subscription,
                exc=exc,
                snapshot_version=snapshot.version,
                metrics=self._metrics,
            )
        else:
            self._metrics.record_delivery()

    # ------------------------------------------------------------------
    # Background path
    # ------------------------------------------------------------------

    def _enqueue(self, subscription: Subscription, snapshot: LeaderboardSnapshot) -> bool:
        mailbox = subscription.mailbox
        with mailbox.lock:
            if not subscription.active:
                return False
            mailbox.items.append(snapshot)
            self._begin_work()
            if mailbox.draining:
                return True
            mailbox.draining = True

        try:
            self._get_executor().submit(bind_log_context(self._drain), subscription)
        except RuntimeError as exc:
            logger.warning(
                "Background delivery rejected; dispatcher is shut down",
                extra={
                    "subscriber_id": subscription.identifier,
                    "dispatcher": self.name,
                    "error": str(exc),
                },
            )
            self._discard_mailbox(subscription)
            return False
        return True

    def _drain(self, subscription: Subscription) -> None:
        mailbox = subscription.mailbox
        while True:
            with mailbox.lock:
                if not mailbox.items:
                    mailbox.draining = False
                    return
                snapshot = mailbox.items.popleft()
                active = subscription.active

            try:
                if active:
                    self._invoke(subscription, snapshot)
                else:
                    self._metrics.record_discarded()
            finally:
                self._end_work()

    def _discard_mailbox(self, subscription: Subscription) -> None:
        mailbox = subscription.mailbox
        with mailbox.lock:
            discarded = len(mailbox.items)
            mailbox.items.clear()
            mailbox.draining = False
        if discarded:
            self._metrics.record_discarded(discarded)
            self._end_work(discarded)

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._closed:
                raise RuntimeError(f"dispatcher '{self.name}' is shut down")
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._max_workers,
                    thread_name_prefix=f"{self.name}-dispatch",
                )
            return self._executor

    # ------------------------------------------------------------------
    # Coroutine path
    # ------------------------------------------------------------------

    def _schedule_coroutine(
        self, subscription: Subscription, snapshot: LeaderboardSnapshot
    ) -> bool:
        loop = subscription.loop
        if loop is None or loop.is_closed():
            logger.warning(
                "Event loop for coroutine subscriber is closed; cancelling",
                extra={"subscriber_id": subscription.identifier, "dispatcher": self.name},
            )
            subscription.cancel()
            return False

        try:
            coro = subscription.callback(snapshot)
        except Exception as exc:
            handle_subscriber_error(
                logger=logger,
                subscription=subscription,
                exc=exc,
                snapshot_version=snapshot.version,
                metrics=self._metrics,
            )
            return True

        self._begin_work()
        try:
            future = asyncio.run_coroutine_threadsafe(
                self._run_coroutine(subscription, coro), loop
            )
        except RuntimeError as exc:
            coro.close()
            self._end_work()
            handle_subscriber_error(
                logger=logger,
                subscription=subscription,
                exc=exc,
                snapshot_version=snapshot.version,
                metrics=self._metrics,
            )
            return False

        future.add_done_callback(
            lambda done: self._on_coroutine_done(subscription, snapshot, done)
        )
        return True

    @staticmethod
    async def _run_coroutine(subscription: Subscription, coro) -> bool:
        if not subscription.active:
            coro.close()
            return False
        await coro
        return True

    def _on_coroutine_done(
        self,
        subscription: Subscription,
        snapshot: LeaderboardSnapshot,
        future: Future,
    ) -> None:
        try:
            if future.cancelled():
                self._metrics.record_discarded()
                return
            exc = future.exception()
            if exc is None:
                if future.result():
                    self._metrics.record_delivery()
                else:
                    self._metrics.record_discarded()
            else:
                handle_subscriber_error(
                    logger=logger,
                    subscription=subscription,
                    exc=exc,
                    snapshot_version=snapshot.version,
                    metrics=self._metrics,
                )
        finally:
            self._end_work()

    # ------------------------------------------------------------------
    # Pending work, join, shutdown
    # ------------------------------------------------------------------

    def _begin_work(self, count: int = 1) -> None:
        with self._idle:
            self._pending += count

    def _end_work(self, count: int = 1) -> None:
        with self._idle:
            self._pending = max(0, self._pending - count)
            if self._pending == 0:
                self._idle.notify_all()

    @property
    def pending(self) -> int:
        with self._idle:
            return self._pending

    def join(self, timeout: Optional[float] = None) -> bool:
        """
        Block until all scheduled background and coroutine deliveries finish.

        Must not be called from the event loop that runs coroutine
        subscribers, since those deliveries need that loop to progress.

        Returns
        -------
        bool:
            True if all work completed, False on timeout.
        """
        with self._idle:
            return self._idle.wait_for(lambda: self._pending == 0, timeout=timeout)

    def shutdown(self, wait: bool = True) -> None:
        """
        Stop the worker pool and cancel every subscription.

        With `wait=True`, snapshots already queued for background
        subscribers are delivered before the subscriptions are cancelled.
        """
        with self._executor_lock:
            self._closed = True
            executor, self._executor = self._executor, None

        if executor is not None:
            executor.shutdown(wait=wait)

        for subscription in self._registry.snapshot():
            subscription.cancel()

        logger.info(
            "Snapshot dispatcher shut down",
            extra={"dispatcher": self.name, "metrics": self.get_metrics().get_summary()},
        )

    @property
    def closed(self) -> bool:
        return self._closed

    def get_metrics(self) -> DispatchMetrics:
        return self._metrics.snapshot()
