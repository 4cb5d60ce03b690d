"""
Core types for snapshot dispatch.

Purpose
-------
Type definitions shared by the subscriber registry and the dispatcher:
delivery modes, callback types, and the `Subscription` handle returned to
callers of ``subscribe``.

Delivery Modes
--------------
- INLINE: callback runs synchronously inside ``ingest``, in subscription
  order. Use for cheap subscribers (cache refresh, view-model swap).
- BACKGROUND: snapshots are queued per subscriber and delivered in order by
  a worker pool. Use for slow subscribers (network push, disk writes).

Coroutine callbacks are always scheduled on the event loop captured at
subscription time, whatever the mode.
"""

from __future__ import annotations

import asyncio
import itertools
import threading
from collections import deque
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Deque, Optional, Union

if TYPE_CHECKING:
    from triviaboard.domain.models.score import LeaderboardSnapshot


SnapshotCallback = Union[
    Callable[["LeaderboardSnapshot"], Any],
    Callable[["LeaderboardSnapshot"], Awaitable[Any]],
]

_identifier_counter = itertools.count(1)


class DeliveryMode(Enum):
    """How a subscriber receives snapshots."""

    INLINE = "inline"
    BACKGROUND = "background"


class Mailbox:
    """Per-subscriber FIFO of snapshots awaiting background delivery."""

    __slots__ = ("lock", "items", "draining")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.items: Deque["LeaderboardSnapshot"] = deque()
        # True while a drain job is scheduled or running for this mailbox.
        self.draining = False


class Subscription:
    """
    Handle for one registered snapshot callback.

    `cancel()` is idempotent and safe to call from any thread, including
    from inside the callback itself. Once cancelled, the callback is never
    invoked again; snapshots still queued for it are discarded.

    Examples
    --------
    >>> subscription = service.subscribe(render_board)
    >>> subscription.active
    True
    >>> subscription.cancel()
    True
    >>> subscription.cancel()
    False
    """

    __slots__ = (
        "identifier",
        "callback",
        "mode",
        "loop",
        "is_async",
        "mailbox",
        "_active",
        "_lock",
        "_on_cancel",
    )

    def __init__(
        self,
        *,
        identifier: str,
        callback: SnapshotCallback,
        mode: DeliveryMode,
        is_async: bool = False,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        on_cancel: Optional[Callable[["Subscription"], None]] = None,
    ) -> None:
        self.identifier = identifier
        self.callback = callback
        self.mode = mode
        self.is_async = is_async
        self.loop = loop
        self.mailbox = Mailbox()
        self._active = True
        self._lock = threading.Lock()
        self._on_cancel = on_cancel

    @classmethod
    def from_callback(
        cls,
        callback: SnapshotCallback,
        *,
        mode: DeliveryMode,
        identifier: Optional[str] = None,
        is_async: bool = False,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        on_cancel: Optional[Callable[["Subscription"], None]] = None,
    ) -> Subscription:
        """
        Create a subscription, generating an identifier from callback metadata.

        Generated identifiers carry a process-wide counter so the same
        callable can be subscribed more than once.
        """
        if identifier is None:
            module = getattr(callback, "__module__", None) or "unknown"
            qualname = getattr(
                callback, "__qualname__", getattr(callback, "__name__", "callback")
            )
            identifier = f"{module}.{qualname}#{next(_identifier_counter)}"

        return cls(
            identifier=identifier,
            callback=callback,
            mode=mode,
            is_async=is_async,
            loop=loop,
            on_cancel=on_cancel,
        )

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> bool:
        """
        Stop all future deliveries to this subscriber.

        Returns
        -------
        bool:
            True if this call cancelled the subscription, False if it was
            already cancelled.
        """
        with self._lock:
            if not self._active:
                return False
            self._active = False
            on_cancel, self._on_cancel = self._on_cancel, None

        if on_cancel is not None:
            on_cancel(self)
        return True

    def __repr__(self) -> str:
        return (
            f"Subscription(identifier={self.identifier!r}, mode={self.mode.name}, "
            f"async={self.is_async}, active={self._active})"
        )
