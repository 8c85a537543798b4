"""
Event Publisher
Dispatches marketplace and wallet events to registered callbacks.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List

import structlog

logger = structlog.get_logger(__name__)

Callback = Callable[[str, Dict[str, Any]], None]

ALL_EVENTS = "*"

WALLET_CONNECTED = "wallet.connected"
WALLET_ROLE_CHANGED = "wallet.role_changed"
LISTING_CREATED = "listing.created"
LISTING_UPDATED = "listing.updated"
LISTING_DEACTIVATED = "listing.deactivated"
LISTING_TOKENIZED = "listing.tokenized"
LISTING_LISTED_ON_CHAIN = "listing.listed_on_chain"
TRANSACTION_CREATED = "transaction.created"
TRANSACTION_COMPLETED = "transaction.completed"
TRANSACTION_FAILED = "transaction.failed"


@dataclass(eq=False)
class Subscription:
    event: str
    callback: Callback
    _publisher: "EventPublisher" = field(repr=False)
    active: bool = True

    def unsubscribe(self) -> None:
        if self.active:
            self._publisher._remove(self)
            self.active = False


class EventPublisher:
    """
    Callback registry for marketplace events.

    Subscribers register for one event name (or ``"*"`` for all) and get a
    ``Subscription`` back; calling ``unsubscribe()`` on it is the only way
    to stop delivery. A failing subscriber is logged and skipped.
    """

    def __init__(self) -> None:
        self._subs: Dict[str, List[Subscription]] = {}
        self._lock = threading.Lock()

    def subscribe(self, event: str, callback: Callback) -> Subscription:
        sub = Subscription(event=event, callback=callback, _publisher=self)
        with self._lock:
            self._subs.setdefault(event, []).append(sub)
        return sub

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            subs = self._subs.get(sub.event, [])
            if sub in subs:
                subs.remove(sub)

    def subscriber_count(self, event: str) -> int:
        with self._lock:
            return len(self._subs.get(event, []))

    def publish(self, event: str, data: Dict[str, Any]) -> None:
        with self._lock:
            targets = list(self._subs.get(event, [])) + list(self._subs.get(ALL_EVENTS, []))

        for sub in targets:
            try:
                sub.callback(event, data)
            except Exception:
                logger.exception("event_subscriber_failed", event_name=event)


class NullPublisher(EventPublisher):
    """Publisher used when the caller does not care about events."""

    def publish(self, event: str, data: Dict[str, Any]) -> None:
        return None
