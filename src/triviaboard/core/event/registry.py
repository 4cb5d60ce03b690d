"""
SubscriberRegistry: storage and lookup for snapshot subscribers.

Responsibilities
----------------
- Store subscriptions in registration order
- Reject duplicate identifiers
- Hand out an immutable copy of the active subscribers for each dispatch,
  so subscribe/unsubscribe during a dispatch never disturbs it

Thread Safety
-------------
All methods take an internal lock; copies are returned so callers iterate
without holding it.
"""

from __future__ import annotations

import threading
from typing import Dict, Optional, Tuple

from triviaboard.core.event.types import Subscription
from triviaboard.core.exceptions import SubscriptionError


class SubscriberRegistry:
    """
    Registry of snapshot subscriptions, ordered by registration.

    Examples
    --------
    >>> registry = SubscriberRegistry()
    >>> registry.add(subscription)
    >>> registry.snapshot()
    (Subscription(identifier='app.render#1', mode=INLINE, async=False, active=True),)
    >>> registry.remove(subscription.identifier) is subscription
    True
    """

    def __init__(self) -> None:
        self._subscriptions: Dict[str, Subscription] = {}
        self._lock = threading.Lock()

    def add(self, subscription: Subscription) -> None:
        """
        Register a subscription.

        Raises
        ------
        SubscriptionError:
            If another subscription already uses the same identifier.
        """
        with self._lock:
            if subscription.identifier in self._subscriptions:
                raise SubscriptionError(
                    subscription.identifier, "identifier already registered"
                )
            self._subscriptions[subscription.identifier] = subscription

    def remove(self, identifier: str) -> Optional[Subscription]:
        """Remove and return the subscription, or None if unknown."""
        with self._lock:
            return self._subscriptions.pop(identifier, None)

    def get(self, identifier: str) -> Optional[Subscription]:
        with self._lock:
            return self._subscriptions.get(identifier)

    def snapshot(self) -> Tuple[Subscription, ...]:
        """Registered subscriptions in registration order."""
        with self._lock:
            return tuple(self._subscriptions.values())

    def clear(self) -> Tuple[Subscription, ...]:
        """Remove everything and return what was registered."""
        with self._lock:
            removed = tuple(self._subscriptions.values())
            self._subscriptions.clear()
            return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def identifiers(self) -> list[str]:
        with self._lock:
            return list(self._subscriptions)
