"""Session Synchronizer - live in-memory mirror of one negotiation session.

Reconciles an initial bulk read of the session, its messages and its
settlement terms with the change feed:

    activate(id) -> subscribe (messages, terms, session) -> bulk read
                 -> replay events buffered during the read -> live

Merging is identity-keyed. Messages keep non-decreasing creation order no
matter when their notifications arrive; a clause update replaces the clause
in place; the last write observed wins (the clause version is not checked).
Switching sessions cancels the old subscriptions and bumps a generation
counter, so a late notification for the previous session is dropped.
"""

import threading
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from negotiator.clause_state import can_ratify, progress
from negotiator.error_handling import NegotiatorError
from negotiator.logging_config import get_session_logger
from negotiator.models import (
    ChangeEvent,
    Message,
    Progress,
    Session,
    SessionSnapshot,
    SettlementTerm,
)
from store.change_feed import ALL_EVENTS, ChangeFeed, Subscription
from store.row_store import MESSAGES, SESSIONS, SETTLEMENT_TERMS, RowStore


Listener = Callable[[SessionSnapshot], None]


class SessionSynchronizer:
    """Owns the session, message and clause collections for one session at a time."""

    def __init__(self, store: RowStore, feed: Optional[ChangeFeed] = None):
        """Initialize the synchronizer.

        Args:
            store: Row store used for the bulk read
            feed: Change feed to subscribe to (defaults to the store's feed)
        """
        self.store = store
        self.feed = feed or store.feed

        self._lock = threading.RLock()
        self._generation = 0
        self._session_id: Optional[str] = None
        self._subscriptions: List[Subscription] = []
        self._listeners: List[Listener] = []

        self._session: Optional[Session] = None
        self._messages: List[Message] = []
        self._terms: List[SettlementTerm] = []
        self._loading = False
        self._buffered: List[ChangeEvent] = []
        self.errors: Dict[str, str] = {}

    # Lifecycle

    @property
    def session_id(self) -> Optional[str]:
        return self._session_id

    @property
    def active(self) -> bool:
        return self._session_id is not None

    def activate(self, session_id: str) -> SessionSnapshot:
        """Start mirroring `session_id`, tearing down any previous session first.

        Returns:
            Snapshot taken once the bulk read has completed
        """
        self.deactivate()

        with self._lock:
            self._generation += 1
            generation = self._generation
            self._session_id = session_id
            self._session = None
            self._messages = []
            self._terms = []
            self._buffered = []
            self.errors = {}
            self._loading = True

        session_logger = get_session_logger(session_id, "synchronizer")
        session_logger.info("Activating session mirror")

        subscriptions = [
            self.feed.subscribe(MESSAGES, session_id, self._handler(generation), ALL_EVENTS),
            self.feed.subscribe(SETTLEMENT_TERMS, session_id, self._handler(generation), ALL_EVENTS),
            self.feed.subscribe(SESSIONS, session_id, self._handler(generation), ("UPDATE",)),
        ]

        with self._lock:
            superseded = generation != self._generation
            if not superseded:
                self._subscriptions = subscriptions

        if superseded:
            for subscription in subscriptions:
                subscription.cancel()
            return self.snapshot()

        self._bulk_read(session_id, generation)
        return self.snapshot()

    def deactivate(self) -> None:
        """Cancel all subscriptions; nothing is applied once this returns."""
        with self._lock:
            subscriptions = self._subscriptions
            previous = self._session_id
            self._subscriptions = []
            self._generation += 1
            self._session_id = None
            self._buffered = []
            self._loading = False

        for subscription in subscriptions:
            subscription.cancel()

        if previous:
            logger.debug(f"Session mirror deactivated: {previous}")

    def _bulk_read(self, session_id: str, generation: int) -> None:
        """Read session, messages and clauses; each read may fail independently."""
        session_logger = get_session_logger(session_id, "synchronizer")
        results: Dict[str, Any] = {"session": None, "messages": [], "terms": []}
        errors: Dict[str, str] = {}

        readers = {
            "session": lambda: self.store.get_session(session_id),
            "messages": lambda: self.store.list_messages(session_id),
            "terms": lambda: self.store.list_terms(session_id),
        }
        for name, read in readers.items():
            try:
                results[name] = read()
            except NegotiatorError as e:
                errors[name] = str(e)
                session_logger.error(f"Bulk read of {name} failed: {e}")

        with self._lock:
            if generation != self._generation:
                session_logger.debug("Bulk read discarded, session switched")
                return

            if results["session"] is not None:
                self._session = results["session"]
            self._messages = list(results["messages"] or [])
            self._terms = list(results["terms"] or [])
            self.errors = errors

            buffered, self._buffered = self._buffered, []
            for event in buffered:
                self._apply(event)
            self._loading = False

        session_logger.info(
            "Session mirror loaded",
            messages=len(self._messages),
            terms=len(self._terms),
            replayed=len(buffered)
        )
        self._notify()

    # Change handling

    def _handler(self, generation: int) -> Callable[[ChangeEvent], None]:
        def on_event(event: ChangeEvent) -> None:
            self._on_event(event, generation)
        return on_event

    def _on_event(self, event: ChangeEvent, generation: int) -> None:
        with self._lock:
            if generation != self._generation or event.session_id != self._session_id:
                logger.debug(
                    f"Dropping stale {event.table} {event.event_type} for session {event.session_id}"
                )
                return
            if self._loading:
                self._buffered.append(event)
                return
            self._apply(event)
        self._notify()

    def _apply(self, event: ChangeEvent) -> None:
        """Merge one change into the collections. Caller holds the lock."""
        if event.table == MESSAGES:
            self._upsert_message(event.record)
        elif event.table == SETTLEMENT_TERMS:
            self._upsert_term(event.record)
        elif event.table == SESSIONS:
            self._session = event.record

    def _upsert_message(self, message: Message) -> None:
        for index, existing in enumerate(self._messages):
            if existing.id == message.id:
                self._messages[index] = message
                return

        position = len(self._messages)
        while position > 0 and self._messages[position - 1].created_at > message.created_at:
            position -= 1
        self._messages.insert(position, message)

    def _upsert_term(self, term: SettlementTerm) -> None:
        for index, existing in enumerate(self._terms):
            if existing.id == term.id:
                self._terms[index] = term
                return
        self._terms.append(term)

    def reflect(self, table: str, record: Any) -> None:
        """Apply the row returned by one of our own writes.

        Duplicates of a later change notification collapse through the
        identity-keyed merge.
        """
        with self._lock:
            generation = self._generation
        event_type = "INSERT" if table != SESSIONS else "UPDATE"
        session_id = record.id if table == SESSIONS else record.session_id
        self._on_event(
            ChangeEvent(table=table, event_type=event_type, session_id=session_id, record=record),
            generation
        )

    # Observers

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Register a callback invoked with a snapshot after each applied change.

        Returns:
            Function that removes the listener
        """
        with self._lock:
            self._listeners.append(listener)

        def remove() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)
        return remove

    def _notify(self) -> None:
        with self._lock:
            listeners = list(self._listeners)
        if not listeners:
            return
        snapshot = self.snapshot()
        for listener in listeners:
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Session listener failed: {e}")

    # Accessors

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def messages(self) -> List[Message]:
        with self._lock:
            return list(self._messages)

    @property
    def terms(self) -> List[SettlementTerm]:
        with self._lock:
            return list(self._terms)

    @property
    def can_ratify(self) -> bool:
        with self._lock:
            return can_ratify(self._terms)

    @property
    def progress(self) -> Progress:
        with self._lock:
            return progress(self._terms)

    def snapshot(self) -> SessionSnapshot:
        with self._lock:
            return SessionSnapshot(
                session=self._session,
                messages=list(self._messages),
                terms=list(self._terms),
                progress=progress(self._terms),
                can_ratify=can_ratify(self._terms),
                loading=self._loading
            )
