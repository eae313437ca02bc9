"""In-process change feed for realtime session updates.

The row store publishes a ChangeEvent after every successful write; consumers
subscribe per table and session id and receive INSERT / UPDATE notifications.
A cancelled subscription never observes another event once `cancel()` has
returned.
"""

import threading
from typing import Callable, Dict, Iterable, List, Tuple

from loguru import logger

from negotiator.models import ChangeEvent


EventCallback = Callable[[ChangeEvent], None]

ALL_EVENTS = ("INSERT", "UPDATE")


class Subscription:
    """Handle for one registered callback."""

    def __init__(
        self,
        feed: "ChangeFeed",
        table: str,
        session_id: str,
        callback: EventCallback,
        events: Iterable[str]
    ):
        self.feed = feed
        self.table = table
        self.session_id = session_id
        self.callback = callback
        self.events = frozenset(events)
        self._lock = threading.RLock()
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def matches(self, event: ChangeEvent) -> bool:
        return (
            event.table == self.table
            and event.session_id == self.session_id
            and event.event_type in self.events
        )

    def deliver(self, event: ChangeEvent) -> None:
        """Invoke the callback unless the subscription was cancelled.

        Deliveries to one subscription never overlap.
        """
        with self._lock:
            if not self._active:
                return
            self.callback(event)

    def cancel(self) -> None:
        """Stop delivery; waits for an in-flight callback to finish."""
        with self._lock:
            if not self._active:
                return
            self._active = False
        self.feed._remove(self)
        logger.debug(f"Subscription cancelled: {self.table} / {self.session_id}")


class ChangeFeed:
    """Fan-out of row store change events to session-scoped subscribers."""

    def __init__(self):
        self._lock = threading.Lock()
        self._subscriptions: Dict[Tuple[str, str], List[Subscription]] = {}

    def subscribe(
        self,
        table: str,
        session_id: str,
        callback: EventCallback,
        events: Iterable[str] = ALL_EVENTS
    ) -> Subscription:
        """Register a callback for changes to `table` rows of one session.

        Args:
            table: Relation name (sessions, messages, settlement_terms)
            session_id: Session the rows belong to
            callback: Called with each matching ChangeEvent
            events: Event types to deliver

        Returns:
            Subscription handle used to cancel delivery
        """
        subscription = Subscription(self, table, session_id, callback, events)
        with self._lock:
            self._subscriptions.setdefault((table, session_id), []).append(subscription)
        logger.debug(f"Subscribed to {table} changes for session {session_id}")
        return subscription

    def publish(self, event: ChangeEvent) -> None:
        """Deliver an event to every active matching subscription."""
        with self._lock:
            targets = list(self._subscriptions.get((event.table, event.session_id), []))

        for subscription in targets:
            if not subscription.matches(event):
                continue
            try:
                subscription.deliver(event)
            except Exception as e:
                logger.error(
                    f"Change subscriber failed for {event.table} {event.event_type}",
                    session_id=event.session_id,
                    error=str(e),
                    error_type=type(e).__name__
                )

    def subscriber_count(self, table: str, session_id: str) -> int:
        with self._lock:
            return len(self._subscriptions.get((table, session_id), []))

    def _remove(self, subscription: Subscription) -> None:
        key = (subscription.table, subscription.session_id)
        with self._lock:
            remaining = [s for s in self._subscriptions.get(key, []) if s is not subscription]
            if remaining:
                self._subscriptions[key] = remaining
            else:
                self._subscriptions.pop(key, None)
