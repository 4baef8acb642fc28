"""Read-Receipt Tracker: per-(message, user) acknowledgments.

Uniqueness is enforced by the ``message_reads`` primary key. Inserts use
``ON CONFLICT DO NOTHING ... RETURNING`` so the existence check and the insert
are one atomic statement; concurrent duplicate calls store exactly one row and
only the call that inserted it sees ``created=True``.

A receipt is never created for the sender of the message.
"""
import logging
from typing import Dict, Iterable, Set

from ..database import Database, utcnow
from ..errors import NotFoundError
from .schemas import ReadResult

logger = logging.getLogger(__name__)


class ReadReceiptTracker:
    """Records which users have read which messages."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def mark_read(self, message_id: int, user_id: str) -> ReadResult:
        """Record that ``user_id`` has read ``message_id``.

        Idempotent: a repeated call returns ``created=False`` instead of
        failing. Marking one's own message is a no-op with ``created=False``.

        Raises:
            NotFoundError: The message does not exist.
        """
        message_id = int(message_id)
        rows = self._db.execute(
            """
            INSERT INTO message_reads (message_id, user_id, read_at)
            SELECT m.id, ?, ?
            FROM messages m
            WHERE m.id = ? AND m.sender_id <> ?
            ON CONFLICT DO NOTHING
            RETURNING message_id
            """,
            [user_id, utcnow(), message_id, user_id],
        )
        if rows:
            return ReadResult(created=True)

        if not self._db.execute("SELECT 1 FROM messages WHERE id = ?", [message_id]):
            raise NotFoundError("Message not found")
        return ReadResult(created=False)

    def mark_all_read(self, room_id: str, user_id: str) -> int:
        """Add a receipt for every message in the room the user has not read.

        Skips the user's own messages. Safe to repeat; never duplicates.

        Returns:
            Number of receipts inserted by this call.
        """
        rows = self._db.execute(
            """
            INSERT INTO message_reads (message_id, user_id, read_at)
            SELECT m.id, ?, ?
            FROM messages m
            WHERE m.room_id = ?
              AND m.sender_id <> ?
              AND NOT EXISTS (
                  SELECT 1 FROM message_reads mr
                  WHERE mr.message_id = m.id AND mr.user_id = ?
              )
            ON CONFLICT DO NOTHING
            RETURNING message_id
            """,
            [user_id, utcnow(), room_id, user_id, user_id],
        )
        if rows:
            logger.debug("[Receipts] %s marked %d message(s) read in room %s", user_id, len(rows), room_id)
        return len(rows)

    def unread_count(self, room_id: str, user_id: str) -> int:
        """Messages in the room sent by others that the user has not read."""
        rows = self._db.execute(
            """
            SELECT COUNT(*)
            FROM messages m
            WHERE m.room_id = ?
              AND m.sender_id <> ?
              AND NOT EXISTS (
                  SELECT 1 FROM message_reads mr
                  WHERE mr.message_id = m.id AND mr.user_id = ?
              )
            """,
            [room_id, user_id, user_id],
        )
        return int(rows[0][0])

    def readers(self, message_ids: Iterable[int]) -> Dict[int, Set[str]]:
        """Receipt holders for each of the given messages.

        Messages without receipts map to an empty set.
        """
        ids = [int(i) for i in message_ids]
        result: Dict[int, Set[str]] = {i: set() for i in ids}
        if not ids:
            return result
        placeholders = ", ".join("?" for _ in ids)
        rows = self._db.execute(
            f"SELECT message_id, user_id FROM message_reads WHERE message_id IN ({placeholders})",
            ids,
        )
        for message_id, user_id in rows:
            result[message_id].add(user_id)
        return result
