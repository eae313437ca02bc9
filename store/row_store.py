"""Row store for negotiation sessions using SQLite.

This module provides RowStore, the backing store behind every negotiation:
the `sessions`, `messages` and `settlement_terms` relations with
insert-and-return-row, ordered filtered selects and filtered updates.
Each successful write is published on the attached ChangeFeed.
"""

import sqlite3
import threading
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional

from loguru import logger

from negotiator.error_handling import StoreError, handle_errors
from negotiator.models import ChangeEvent, Message, Session, SettlementTerm
from store.change_feed import ChangeFeed


SESSIONS = "sessions"
MESSAGES = "messages"
SETTLEMENT_TERMS = "settlement_terms"

_SESSION_ACTIVE = "EXISTS (SELECT 1 FROM sessions WHERE id = ? AND status = 'active')"


def _session_from_row(row: sqlite3.Row) -> Session:
    return Session(
        id=row["id"],
        case_name=row["case_name"],
        status=row["status"],
        created_at=datetime.fromisoformat(row["created_at"]),
        created_by=row["created_by"]
    )


def _message_from_row(row: sqlite3.Row) -> Message:
    return Message(
        id=row["id"],
        session_id=row["session_id"],
        sender_role=row["sender_role"],
        content_original=row["content_original"],
        content_translated=row["content_translated"],
        language_code=row["language_code"],
        intent=row["intent"],
        created_at=datetime.fromisoformat(row["created_at"])
    )


def _term_from_row(row: sqlite3.Row) -> SettlementTerm:
    return SettlementTerm(
        id=row["id"],
        session_id=row["session_id"],
        clause_title=row["clause_title"],
        clause_content=row["clause_content"],
        status=row["status"],
        version=row["version"],
        proposed_by=row["proposed_by"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"])
    )


class RowStore:
    """SQLite-backed store for sessions, messages and settlement terms."""

    def __init__(self, db_path: str = "negotiator.db", feed: Optional[ChangeFeed] = None):
        """Initialize the row store.

        Args:
            db_path: Path to SQLite database file
            feed: Change feed to publish writes on (a private one if omitted)
        """
        self.db_path = db_path
        self.feed = feed or ChangeFeed()
        self._clock_lock = threading.Lock()
        self._last_timestamp: Optional[datetime] = None
        self._ensure_database_exists()
        logger.info(f"RowStore initialized with db_path={db_path}")

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _ensure_database_exists(self):
        """Create database and tables if they don't exist."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        with self._connect() as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS sessions (
                    id TEXT PRIMARY KEY,
                    case_name TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'active',
                    created_at TEXT NOT NULL,
                    created_by TEXT
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS messages (
                    id TEXT PRIMARY KEY,
                    session_id TEXT NOT NULL REFERENCES sessions(id),
                    sender_role TEXT NOT NULL,
                    content_original TEXT NOT NULL,
                    content_translated TEXT,
                    language_code TEXT NOT NULL,
                    intent TEXT NOT NULL DEFAULT 'inquiry',
                    created_at TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS settlement_terms (
                    id TEXT PRIMARY KEY,
                    session_id TEXT NOT NULL REFERENCES sessions(id),
                    clause_title TEXT NOT NULL,
                    clause_content TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    version INTEGER NOT NULL DEFAULT 1,
                    proposed_by TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_messages_session_created
                ON messages(session_id, created_at)
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_terms_session_created
                ON settlement_terms(session_id, created_at)
            """)

            conn.commit()
            logger.debug("Database schema initialized successfully")

    def _now(self) -> str:
        """Strictly increasing UTC timestamp so creation order is total."""
        with self._clock_lock:
            now = datetime.now(timezone.utc)
            if self._last_timestamp is not None and now <= self._last_timestamp:
                now = self._last_timestamp + timedelta(microseconds=1)
            self._last_timestamp = now
            return now.isoformat(timespec="microseconds")

    def _publish(self, table: str, event_type: str, session_id: str, record) -> None:
        self.feed.publish(ChangeEvent(
            table=table,
            event_type=event_type,
            session_id=session_id,
            record=record
        ))

    # Sessions

    @handle_errors(StoreError)
    def insert_session(self, case_name: str, created_by: Optional[str] = None) -> Session:
        """Insert a new active session and return the stored row."""
        session_id = str(uuid.uuid4())
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO sessions (id, case_name, status, created_at, created_by) VALUES (?, ?, 'active', ?, ?)",
                (session_id, case_name, self._now(), created_by)
            )
            row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
            conn.commit()

        session = _session_from_row(row)
        logger.info(f"Session created: {session_id} ({case_name})")
        self._publish(SESSIONS, "INSERT", session_id, session)
        return session

    @handle_errors(StoreError)
    def get_session(self, session_id: str) -> Optional[Session]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
        if not row:
            logger.debug(f"Session not found: {session_id}")
            return None
        return _session_from_row(row)

    @handle_errors(StoreError)
    def list_sessions(self, limit: int = 20) -> List[Session]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM sessions ORDER BY created_at DESC LIMIT ?", (limit,)
            ).fetchall()
        return [_session_from_row(row) for row in rows]

    @handle_errors(StoreError)
    def update_session_status(
        self,
        session_id: str,
        status: str,
        expected: Optional[str] = None
    ) -> Optional[Session]:
        """Set a session's status.

        Args:
            session_id: Session identifier
            status: New status
            expected: Only update when the current status equals this value

        Returns:
            The updated session, or None when no row changed
        """
        with self._connect() as conn:
            if expected is None:
                cursor = conn.execute(
                    "UPDATE sessions SET status = ? WHERE id = ?", (status, session_id)
                )
            else:
                cursor = conn.execute(
                    "UPDATE sessions SET status = ? WHERE id = ? AND status = ?",
                    (status, session_id, expected)
                )
            if cursor.rowcount == 0:
                return None
            row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
            conn.commit()

        session = _session_from_row(row)
        self._publish(SESSIONS, "UPDATE", session_id, session)
        return session

    @handle_errors(StoreError)
    def ratify_session(self, session_id: str) -> Optional[Session]:
        """Move an active session to ratified in one statement.

        The row only changes while the session is active, has at least one
        clause and every clause is accepted.

        Returns:
            The ratified session, or None when the guard did not hold
        """
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE sessions SET status = 'ratified'
                WHERE id = ? AND status = 'active'
                  AND EXISTS (SELECT 1 FROM settlement_terms WHERE session_id = ?)
                  AND NOT EXISTS (
                      SELECT 1 FROM settlement_terms
                      WHERE session_id = ? AND status != 'accepted'
                  )
                """,
                (session_id, session_id, session_id)
            )
            if cursor.rowcount == 0:
                return None
            row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
            conn.commit()

        session = _session_from_row(row)
        logger.info(f"Session ratified: {session_id}")
        self._publish(SESSIONS, "UPDATE", session_id, session)
        return session

    # Messages

    @handle_errors(StoreError)
    def insert_message(
        self,
        session_id: str,
        sender_role: str,
        content_original: str,
        language_code: str,
        intent: str = "inquiry"
    ) -> Optional[Message]:
        """Append a message to an active session and return the stored row.

        Returns:
            The stored message, or None when the session is missing or no
            longer active
        """
        message_id = str(uuid.uuid4())
        with self._connect() as conn:
            cursor = conn.execute(
                f"""
                INSERT INTO messages (
                    id, session_id, sender_role, content_original,
                    language_code, intent, created_at
                )
                SELECT ?, ?, ?, ?, ?, ?, ?
                WHERE {_SESSION_ACTIVE}
                """,
                (message_id, session_id, sender_role, content_original,
                 language_code, intent, self._now(), session_id)
            )
            if cursor.rowcount == 0:
                return None
            row = conn.execute("SELECT * FROM messages WHERE id = ?", (message_id,)).fetchone()
            conn.commit()

        message = _message_from_row(row)
        self._publish(MESSAGES, "INSERT", session_id, message)
        return message

    @handle_errors(StoreError)
    def list_messages(self, session_id: str) -> List[Message]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM messages WHERE session_id = ? ORDER BY created_at ASC",
                (session_id,)
            ).fetchall()
        return [_message_from_row(row) for row in rows]

    @handle_errors(StoreError)
    def annotate_message(
        self,
        message_id: str,
        content_translated: str,
        intent: str
    ) -> Optional[Message]:
        """Write the translation and classified intent onto a message."""
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE messages SET content_translated = ?, intent = ? WHERE id = ?",
                (content_translated, intent, message_id)
            )
            if cursor.rowcount == 0:
                return None
            row = conn.execute("SELECT * FROM messages WHERE id = ?", (message_id,)).fetchone()
            conn.commit()

        message = _message_from_row(row)
        self._publish(MESSAGES, "UPDATE", message.session_id, message)
        return message

    # Settlement terms

    @handle_errors(StoreError)
    def insert_term(
        self,
        session_id: str,
        clause_title: str,
        clause_content: str,
        proposed_by: str
    ) -> Optional[SettlementTerm]:
        """Insert a pending clause at version 1 and return the stored row.

        Returns None when the session is missing or no longer active.
        """
        term_id = str(uuid.uuid4())
        now = self._now()
        with self._connect() as conn:
            cursor = conn.execute(
                f"""
                INSERT INTO settlement_terms (
                    id, session_id, clause_title, clause_content, status,
                    version, proposed_by, created_at, updated_at
                )
                SELECT ?, ?, ?, ?, 'pending', 1, ?, ?, ?
                WHERE {_SESSION_ACTIVE}
                """,
                (term_id, session_id, clause_title, clause_content, proposed_by, now, now, session_id)
            )
            if cursor.rowcount == 0:
                return None
            row = conn.execute("SELECT * FROM settlement_terms WHERE id = ?", (term_id,)).fetchone()
            conn.commit()

        term = _term_from_row(row)
        self._publish(SETTLEMENT_TERMS, "INSERT", session_id, term)
        return term

    @handle_errors(StoreError)
    def get_term(self, term_id: str) -> Optional[SettlementTerm]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM settlement_terms WHERE id = ?", (term_id,)).fetchone()
        return _term_from_row(row) if row else None

    @handle_errors(StoreError)
    def list_terms(self, session_id: str) -> List[SettlementTerm]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM settlement_terms WHERE session_id = ? ORDER BY created_at ASC",
                (session_id,)
            ).fetchall()
        return [_term_from_row(row) for row in rows]

    @handle_errors(StoreError)
    def update_term_status(
        self,
        term_id: str,
        status: str,
        expected_version: Optional[int] = None,
        expected_status: Optional[str] = None
    ) -> Optional[SettlementTerm]:
        """Change a clause's status, bumping its version.

        Args:
            term_id: Clause identifier
            status: New status
            expected_version: Only update when the stored version equals this
            expected_status: Only update when the stored status equals this

        Returns:
            The updated clause, or None when no row changed
        """
        conditions = ["id = ?"]
        params = [status, self._now(), term_id]
        if expected_version is not None:
            conditions.append("version = ?")
            params.append(expected_version)
        if expected_status is not None:
            conditions.append("status = ?")
            params.append(expected_status)

        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE settlement_terms SET status = ?, version = version + 1, updated_at = ? "
                f"WHERE {' AND '.join(conditions)}",
                params
            )
            if cursor.rowcount == 0:
                return None
            row = conn.execute("SELECT * FROM settlement_terms WHERE id = ?", (term_id,)).fetchone()
            conn.commit()

        term = _term_from_row(row)
        self._publish(SETTLEMENT_TERMS, "UPDATE", term.session_id, term)
        return term


def create_row_store(db_path: Optional[str] = None, feed: Optional[ChangeFeed] = None) -> RowStore:
    """Factory function to create a RowStore with environment-based configuration.

    Args:
        db_path: Optional database path (uses DATABASE_URL if not provided)
        feed: Optional shared change feed

    Returns:
        Configured RowStore instance
    """
    import os

    if db_path is None:
        db_path = os.getenv("DATABASE_URL", "sqlite:///./negotiator.db")
        # Extract file path from SQLite URL
        if db_path.startswith("sqlite:///"):
            db_path = db_path.replace("sqlite:///", "")

    return RowStore(db_path=db_path, feed=feed)
