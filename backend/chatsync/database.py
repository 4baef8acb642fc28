"""DuckDB storage shared by the message store, receipt tracker and room directory.

Database Schema:
    messages:
        - id: BIGINT from messages_seq (monotonic, server-assigned)
        - room_id, sender_id, message_type, content
        - created_at: TIMESTAMP (UTC, naive)
    message_reads:
        - (message_id, user_id) PRIMARY KEY, read_at
    chat_room_members:
        - (room_id, user_id) PRIMARY KEY, hidden, joined_at
    users:
        - user_id PRIMARY KEY, username, profile_image (display metadata only)

Thread Safety:
    A DuckDB connection is NOT thread-safe. Every statement runs under a
    re-entrant lock, so callers may use the same ``Database`` from the event
    loop and from worker threads. Each public store operation is a single
    statement, which makes it an atomic unit on its own.

Usage:
    db = Database(":memory:")
    rows = db.execute("SELECT 1")
    db.close()
"""
import logging
import threading
from datetime import datetime, timezone
from typing import Any, List, Optional, Sequence, Tuple

import duckdb

from .errors import PersistenceError

logger = logging.getLogger(__name__)

_SCHEMA = (
    "CREATE SEQUENCE IF NOT EXISTS messages_seq START 1",
    """
    CREATE TABLE IF NOT EXISTS messages (
        id           BIGINT DEFAULT nextval('messages_seq') PRIMARY KEY,
        room_id      VARCHAR NOT NULL,
        sender_id    VARCHAR NOT NULL,
        message_type VARCHAR NOT NULL,
        content      VARCHAR NOT NULL,
        created_at   TIMESTAMP NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_messages_room ON messages(room_id)",
    """
    CREATE TABLE IF NOT EXISTS message_reads (
        message_id BIGINT NOT NULL,
        user_id    VARCHAR NOT NULL,
        read_at    TIMESTAMP NOT NULL,
        PRIMARY KEY (message_id, user_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS chat_room_members (
        room_id   VARCHAR NOT NULL,
        user_id   VARCHAR NOT NULL,
        hidden    BOOLEAN NOT NULL DEFAULT FALSE,
        joined_at TIMESTAMP NOT NULL,
        PRIMARY KEY (room_id, user_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS users (
        user_id       VARCHAR PRIMARY KEY,
        username      VARCHAR,
        profile_image VARCHAR
    )
    """,
)


def utcnow() -> datetime:
    """Naive UTC timestamp, the form DuckDB TIMESTAMP columns round-trip."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Database:
    """Owns the DuckDB connection and serializes access to it.

    Attributes:
        path: DuckDB file path, or ":memory:".
    """

    def __init__(self, path: str = ":memory:") -> None:
        """Open the database and create the schema if it doesn't exist.

        Args:
            path: Path to the DuckDB file. Defaults to an in-memory database.
        """
        self.path = path
        self._lock = threading.RLock()
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._initialize_db()
        logger.info("[Database] Initialized with db=%s", self.path)

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            self._connection = duckdb.connect(self.path)
        return self._connection

    def _initialize_db(self) -> None:
        """Create tables, sequence and indexes. Safe to call multiple times."""
        with self._lock:
            conn = self._get_connection()
            for statement in _SCHEMA:
                conn.execute(statement)

    def execute(self, sql: str, params: Sequence[Any] = ()) -> List[Tuple]:
        """Run one statement and return all produced rows.

        Raises:
            PersistenceError: If DuckDB rejects or fails the statement.
        """
        with self._lock:
            try:
                cursor = self._get_connection().execute(sql, list(params))
                return cursor.fetchall()
            except duckdb.Error as e:
                logger.error("[Database] Statement failed: %s", e)
                raise PersistenceError("Storage operation failed") from e

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None
