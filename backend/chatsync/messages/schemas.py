"""Pydantic schemas for the messages module."""
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import AliasChoices, BaseModel, Field


class MessageType(str, Enum):
    """Kind of message content.

    Attributes:
        TEXT: Plain text.
        IMAGE: Reference to an image held by the media collaborator.
        FILE: Reference to a file held by the media collaborator.
    """
    TEXT = "text"
    IMAGE = "image"
    FILE = "file"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


class Message(BaseModel):
    """A persisted message, optionally joined with sender metadata.

    Messages are immutable once created. ``unread_count`` is filled in by the
    unread aggregator and is None on raw store reads.
    """
    id: int
    room_id: str
    sender_id: str
    sender_username: Optional[str] = None
    sender_profile_image: Optional[str] = None
    message_type: MessageType
    content: str
    created_at: datetime
    unread_count: Optional[int] = None

    def to_wire(self) -> dict:
        """JSON-safe representation used by both REST and WebSocket payloads."""
        return self.model_dump(mode="json")


class ReadResult(BaseModel):
    """Outcome of a single mark-read call."""
    created: bool

    @property
    def already_read(self) -> bool:
        return not self.created


class SendMessageRequest(BaseModel):
    """Request body for ``POST /messages/send``.

    ``type`` is accepted as an alias of ``message_type``.
    """
    room_id: str = Field(..., min_length=1)
    message_type: str = Field(
        default=MessageType.TEXT.value,
        validation_alias=AliasChoices("message_type", "type"),
    )
    content: str = ""
