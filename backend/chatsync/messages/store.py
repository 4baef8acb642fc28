"""Message Store: durable, append-only per-room message log.

The store is the source of truth for message content and order. Order within
a room is ``(created_at, id)``; ids come from a DuckDB sequence, so they are
monotonic across the whole service and break timestamp ties.
"""
import logging
from typing import List, Optional, Tuple

from ..database import Database, utcnow
from ..errors import NotFoundError, ValidationError
from .schemas import Message, MessageType, SortOrder

logger = logging.getLogger(__name__)

_SELECT = """
    SELECT
        m.id,
        m.room_id,
        m.sender_id,
        u.username,
        u.profile_image,
        m.message_type,
        m.content,
        m.created_at
    FROM messages m
    LEFT JOIN users u ON u.user_id = m.sender_id
"""


def _row_to_message(row: Tuple) -> Message:
    return Message(
        id=row[0],
        room_id=row[1],
        sender_id=row[2],
        sender_username=row[3],
        sender_profile_image=row[4],
        message_type=MessageType(row[5]),
        content=row[6],
        created_at=row[7],
    )


def validate_message_type(message_type) -> MessageType:
    """Coerce a client-supplied type into a MessageType.

    Raises:
        ValidationError: If the type is not text, image or file.
    """
    try:
        return MessageType(message_type)
    except ValueError:
        raise ValidationError("Invalid message_type. Must be text, image, or file") from None


class MessageStore:
    """Append-only message log backed by DuckDB."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def append(
        self,
        room_id: str,
        sender_id: str,
        message_type,
        content: str,
    ) -> Message:
        """Persist a new message and return it with its assigned id and timestamp.

        Args:
            room_id: Target room.
            sender_id: Authenticated sender.
            message_type: One of text, image, file.
            content: Message body; must not be empty or whitespace only.

        Returns:
            The stored Message (without unread_count).

        Raises:
            ValidationError: Missing room, invalid type or empty content.
            PersistenceError: The insert failed; nothing was stored.
        """
        if not room_id:
            raise ValidationError("room_id and content are required")
        if not content or not str(content).strip():
            raise ValidationError("room_id and content are required")
        kind = validate_message_type(message_type)

        rows = self._db.execute(
            """
            INSERT INTO messages (room_id, sender_id, message_type, content, created_at)
            VALUES (?, ?, ?, ?, ?)
            RETURNING id
            """,
            [room_id, sender_id, kind.value, content, utcnow()],
        )
        message_id = rows[0][0]
        logger.debug("[Messages] Appended %s to room %s by %s", message_id, room_id, sender_id)
        return self.fetch_by_id(message_id)

    def fetch_by_id(self, message_id: int) -> Message:
        """Fetch one message.

        Raises:
            NotFoundError: No message with this id.
        """
        rows = self._db.execute(_SELECT + " WHERE m.id = ?", [int(message_id)])
        if not rows:
            raise NotFoundError("Message not found")
        return _row_to_message(rows[0])

    def fetch_range(
        self,
        room_id: str,
        order: SortOrder = SortOrder.ASC,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[Message]:
        """List a room's messages by creation time.

        Messages sharing a timestamp are always ordered by ascending id,
        whichever direction is requested.

        Args:
            room_id: The room to read.
            order: ``asc`` (oldest first) or ``desc`` (newest first).
            limit: Maximum number of messages to return.
            offset: Number of messages to skip in the requested order.
        """
        direction = "DESC" if SortOrder(order) is SortOrder.DESC else "ASC"
        sql = _SELECT + f" WHERE m.room_id = ? ORDER BY m.created_at {direction}, m.id ASC"
        params: list = [room_id]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        if offset:
            sql += " OFFSET ?"
            params.append(int(offset))
        return [_row_to_message(row) for row in self._db.execute(sql, params)]

    def fetch_latest(self, room_id: str) -> Message:
        """Most recent message in a room.

        Raises:
            NotFoundError: The room has no messages.
        """
        rows = self._db.execute(
            _SELECT + " WHERE m.room_id = ? ORDER BY m.created_at DESC, m.id DESC LIMIT 1",
            [room_id],
        )
        if not rows:
            raise NotFoundError("No messages found")
        return _row_to_message(rows[0])
