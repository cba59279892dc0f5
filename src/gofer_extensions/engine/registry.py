"""In-memory subscription registries, one shape per event-source family."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from datetime import datetime

from gofer_extensions.models.subscription import (
    Subscription,
    SubscriptionKey,
    TimePredicate,
    WebhookFilter,
)

# Subscriptions under this event also answer incoming 'pull_request' webhooks.
PULL_REQUEST = "pull_request"
PULL_REQUEST_WITH_CHECK = "pull_request_with_check"


class AlreadyExistsError(Exception):
    """Raised when a subscription's primary key is already registered."""

    def __init__(self, key: SubscriptionKey) -> None:
        self.key = key
        super().__init__(f"Subscription '{key}' is already registered")


class SubscriptionRegistry:
    """Thread-safe, key-indexed collection of subscriptions."""

    def __init__(self) -> None:
        self._subscriptions: dict[SubscriptionKey, Subscription] = {}
        self._lock = threading.Lock()

    def _check(self, subscription: Subscription) -> None:
        """Hook for subclasses to reject subscriptions of the wrong shape."""

    def _index(self, subscription: Subscription) -> None:
        pass

    def _unindex(self, subscription: Subscription) -> None:
        pass

    def insert(self, subscription: Subscription) -> None:
        self._check(subscription)
        with self._lock:
            if subscription.key in self._subscriptions:
                raise AlreadyExistsError(subscription.key)
            self._subscriptions[subscription.key] = subscription
            self._index(subscription)

    def remove(self, key: SubscriptionKey) -> bool:
        """Remove a subscription. Returns whether anything was removed."""
        with self._lock:
            subscription = self._subscriptions.pop(key, None)
            if subscription is None:
                return False
            self._unindex(subscription)
            return True

    def get(self, key: SubscriptionKey) -> Subscription | None:
        with self._lock:
            return self._subscriptions.get(key)

    def keys(self) -> list[SubscriptionKey]:
        with self._lock:
            return sorted(self._subscriptions)

    def list_all(self) -> list[Subscription]:
        with self._lock:
            return list(self._subscriptions.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def __contains__(self, key: SubscriptionKey) -> bool:
        with self._lock:
            return key in self._subscriptions


class TimeRegistry(SubscriptionRegistry):
    """Flat registry for time-predicate subscriptions; lookups scan every entry."""

    def _check(self, subscription: Subscription) -> None:
        if not isinstance(subscription.condition, TimePredicate):
            raise TypeError("time registry only accepts time-predicate subscriptions")

    def lookup_time(self, now: datetime) -> Iterator[Subscription]:
        """Yield subscriptions whose predicate admits ``now``.

        Entries are snapshotted first so the scan itself runs without the lock.
        """
        for subscription in self.list_all():
            if subscription.condition.admits(now):
                yield subscription


class WebhookRegistry(SubscriptionRegistry):
    """Registry indexed as ``event -> repository -> [subscription]``."""

    def __init__(self) -> None:
        super().__init__()
        self._by_event: dict[str, dict[str, list[Subscription]]] = {}

    def _check(self, subscription: Subscription) -> None:
        if not isinstance(subscription.condition, WebhookFilter):
            raise TypeError("webhook registry only accepts webhook subscriptions")

    def _index(self, subscription: Subscription) -> None:
        flt = subscription.condition
        repos = self._by_event.setdefault(flt.event, {})
        repos.setdefault(flt.repository, []).append(subscription)

    def _unindex(self, subscription: Subscription) -> None:
        flt = subscription.condition
        repos = self._by_event.get(flt.event, {})
        subs = repos.get(flt.repository, [])
        subs[:] = [s for s in subs if s.key != subscription.key]
        if not subs:
            repos.pop(flt.repository, None)
        if not repos:
            self._by_event.pop(flt.event, None)

    def lookup_webhook(self, event: str, repository: str, action: str = "") -> list[Subscription]:
        """Return subscriptions matching the event, repository and action.

        An empty ``action`` matches on event and repository alone. An incoming
        ``pull_request`` also returns subscriptions stored under
        ``pull_request_with_check``.
        """
        events = [event]
        if event == PULL_REQUEST:
            events = [PULL_REQUEST_WITH_CHECK, PULL_REQUEST]

        with self._lock:
            candidates = [
                sub
                for name in events
                for sub in self._by_event.get(name, {}).get(repository, [])
            ]
        return [sub for sub in candidates if sub.condition.matches_action(action)]

    def events(self) -> dict[str, dict[str, int]]:
        """Subscription counts per event and repository."""
        with self._lock:
            return {
                event: {repo: len(subs) for repo, subs in repos.items()}
                for event, repos in self._by_event.items()
            }
