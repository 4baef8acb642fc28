"""Unread Aggregator: derives per-message unread counts.

For a message ``m``:

    unread_count(m) = |participants(m.room) - {m.sender}| - |readers(m)|

computed as the number of participants other than the sender who hold no
receipt, so it can never go negative. Counts are the same for every viewer,
which keeps REST responses and WebSocket broadcasts identical for the same
stored state.
"""
from typing import Dict, List, Optional, Sequence, Set

from ..rooms.visibility import RoomVisibilityManager
from .receipts import ReadReceiptTracker
from .schemas import Message


class UnreadAggregator:
    """Read-side composition of the receipt tracker and participant sets."""

    def __init__(self, receipts: ReadReceiptTracker, rooms: RoomVisibilityManager) -> None:
        self._receipts = receipts
        self._rooms = rooms

    def annotate(self, messages: Sequence[Message], user_id: Optional[str] = None) -> List[Message]:
        """Return copies of ``messages`` with ``unread_count`` populated.

        ``user_id`` identifies the viewer; counts do not depend on it.
        """
        if not messages:
            return []
        readers = self._receipts.readers(m.id for m in messages)
        participants: Dict[str, Set[str]] = {}
        annotated = []
        for message in messages:
            if message.room_id not in participants:
                participants[message.room_id] = self._rooms.participants(message.room_id)
            pending = participants[message.room_id] - {message.sender_id} - readers[message.id]
            annotated.append(message.model_copy(update={"unread_count": len(pending)}))
        return annotated
