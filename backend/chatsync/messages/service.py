"""ChatService: composes the stores behind one interface.

Both the REST router and the realtime gateway go through this class, so the
pull path answers with exactly the numbers the push path last broadcast.
"""
import logging
from typing import List, Optional

from ..errors import PersistenceError
from ..rooms.visibility import RoomVisibilityManager
from .receipts import ReadReceiptTracker
from .schemas import Message, ReadResult, SortOrder
from .store import MessageStore
from .unread import UnreadAggregator

logger = logging.getLogger(__name__)


class ChatService:

    def __init__(
        self,
        store: MessageStore,
        receipts: ReadReceiptTracker,
        rooms: RoomVisibilityManager,
        unread: UnreadAggregator,
    ) -> None:
        self._store = store
        self._receipts = receipts
        self._rooms = rooms
        self._unread = unread

    def send_message(self, room_id: str, sender_id: str, message_type, content: str) -> Message:
        """Append a message, resurface the room for the others, return it annotated."""
        message = self._store.append(room_id, sender_id, message_type, content)
        try:
            self._rooms.unhide_for_all(room_id, sender_id)
        except PersistenceError as e:
            # The message is committed; visibility catches up on the next send or open.
            logger.error("[Messages] Failed to unhide room %s after %s: %s", room_id, message.id, e)
        return self._unread.annotate([message])[0]

    def fetch_range(
        self,
        room_id: str,
        order: SortOrder = SortOrder.ASC,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        viewer_id: Optional[str] = None,
    ) -> List[Message]:
        messages = self._store.fetch_range(room_id, order=order, limit=limit, offset=offset)
        return self._unread.annotate(messages, viewer_id)

    def fetch_by_id(self, message_id: int) -> Message:
        return self._unread.annotate([self._store.fetch_by_id(message_id)])[0]

    def fetch_latest(self, room_id: str) -> Message:
        return self._unread.annotate([self._store.fetch_latest(room_id)])[0]

    def mark_read(self, message_id: int, user_id: str) -> ReadResult:
        return self._receipts.mark_read(message_id, user_id)

    def mark_all_read(self, room_id: str, user_id: str) -> int:
        return self._receipts.mark_all_read(room_id, user_id)

    def unread_count(self, room_id: str, user_id: str) -> int:
        return self._receipts.unread_count(room_id, user_id)

    def open_room(self, room_id: str, user_id: str) -> int:
        """Show the room to the user and mark everything in it read.

        Returns:
            Number of receipts created.
        """
        self._rooms.show(room_id, user_id)
        return self._receipts.mark_all_read(room_id, user_id)
