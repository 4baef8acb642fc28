"""Room Visibility Manager and participant directory.

Rooms themselves are created and named elsewhere; this module only reads the
participant set and reads/writes the per-(room, user) ``hidden`` flag.

Transitions of ``hidden``:
    - false on first membership
    - false when the user opens the room (``show``)
    - false for everyone but the sender when a message arrives (``unhide_for_all``)
    - true only through an explicit ``hide`` call; leaving a room or
      disconnecting never hides it
"""
import logging
from typing import Set

from ..database import Database, utcnow
from ..errors import NotFoundError

logger = logging.getLogger(__name__)


class RoomVisibilityManager:
    """Per-user room visibility plus the room participant directory."""

    def __init__(self, db: Database) -> None:
        self._db = db

    # -----------------------------------------------------------------------
    # Participants
    # -----------------------------------------------------------------------

    def add_participant(self, room_id: str, user_id: str) -> bool:
        """Add a user to a room. Returns False if they were already a member."""
        rows = self._db.execute(
            """
            INSERT INTO chat_room_members (room_id, user_id, hidden, joined_at)
            VALUES (?, ?, FALSE, ?)
            ON CONFLICT DO NOTHING
            RETURNING user_id
            """,
            [room_id, user_id, utcnow()],
        )
        return bool(rows)

    def participants(self, room_id: str) -> Set[str]:
        rows = self._db.execute(
            "SELECT user_id FROM chat_room_members WHERE room_id = ?", [room_id]
        )
        return {row[0] for row in rows}

    def is_participant(self, room_id: str, user_id: str) -> bool:
        rows = self._db.execute(
            "SELECT 1 FROM chat_room_members WHERE room_id = ? AND user_id = ?",
            [room_id, user_id],
        )
        return bool(rows)

    # -----------------------------------------------------------------------
    # Visibility
    # -----------------------------------------------------------------------

    def show(self, room_id: str, user_id: str) -> None:
        """Clear the hidden flag when the user actively opens the room."""
        self._set_hidden(room_id, user_id, False)

    def hide(self, room_id: str, user_id: str) -> None:
        """Hide the room from the user's active list.

        Raises:
            NotFoundError: The user is not a participant of the room.
        """
        if not self._set_hidden(room_id, user_id, True):
            raise NotFoundError("Chat room membership not found")
        logger.info("[Rooms] Room %s hidden for user %s", room_id, user_id)

    def unhide_for_all(self, room_id: str, except_user_id: str) -> int:
        """Resurface the room for every member except the sender.

        Returns:
            Number of memberships that were hidden and are now shown.
        """
        rows = self._db.execute(
            """
            UPDATE chat_room_members
            SET hidden = FALSE
            WHERE room_id = ? AND user_id <> ? AND hidden
            """,
            [room_id, except_user_id],
        )
        changed = int(rows[0][0]) if rows else 0
        if changed:
            logger.info("[Rooms] Room %s unhidden for %d member(s)", room_id, changed)
        return changed

    def is_hidden(self, room_id: str, user_id: str) -> bool:
        """Current flag for the membership.

        Raises:
            NotFoundError: The user is not a participant of the room.
        """
        rows = self._db.execute(
            "SELECT hidden FROM chat_room_members WHERE room_id = ? AND user_id = ?",
            [room_id, user_id],
        )
        if not rows:
            raise NotFoundError("Chat room membership not found")
        return bool(rows[0][0])

    def _set_hidden(self, room_id: str, user_id: str, hidden: bool) -> bool:
        rows = self._db.execute(
            """
            UPDATE chat_room_members
            SET hidden = ?
            WHERE room_id = ? AND user_id = ?
            """,
            [hidden, room_id, user_id],
        )
        return bool(rows and rows[0][0])
