"""Store package: SQLite row store and realtime change feed."""

from store.change_feed import ChangeFeed, Subscription
from store.row_store import RowStore, create_row_store, SESSIONS, MESSAGES, SETTLEMENT_TERMS

__all__ = [
    "ChangeFeed",
    "Subscription",
    "RowStore",
    "create_row_store",
    "SESSIONS",
    "MESSAGES",
    "SETTLEMENT_TERMS",
]
