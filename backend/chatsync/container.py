"""Service wiring.

Every collaborator is built once, at application start, and handed to the
components that need it. Routers read the bundle from ``app.state.services``.
"""
from dataclasses import dataclass
from typing import Optional

from .auth.identity import IdentityResolver, UserDirectory
from .config import ChatSyncConfig
from .database import Database
from .messages.receipts import ReadReceiptTracker
from .messages.service import ChatService
from .messages.store import MessageStore
from .messages.unread import UnreadAggregator
from .realtime.gateway import ChatGateway
from .realtime.registry import ConnectionRegistry
from .rooms.visibility import RoomVisibilityManager


@dataclass
class Services:
    config: ChatSyncConfig
    db: Database
    messages: MessageStore
    receipts: ReadReceiptTracker
    rooms: RoomVisibilityManager
    unread: UnreadAggregator
    chat: ChatService
    identities: IdentityResolver
    users: UserDirectory
    registry: ConnectionRegistry
    gateway: ChatGateway

    def close(self) -> None:
        self.db.close()


def build_services(config: ChatSyncConfig, db: Optional[Database] = None) -> Services:
    """Create the stores, the gateway and everything they depend on."""
    db = db or Database(config.database.path)
    messages = MessageStore(db)
    receipts = ReadReceiptTracker(db)
    rooms = RoomVisibilityManager(db)
    unread = UnreadAggregator(receipts, rooms)
    chat = ChatService(messages, receipts, rooms, unread)
    registry = ConnectionRegistry(send_timeout=config.realtime.send_timeout_seconds)
    gateway = ChatGateway(
        chat,
        rooms,
        registry,
        settings=config.realtime,
        require_membership=config.rooms.require_membership,
    )
    return Services(
        config=config,
        db=db,
        messages=messages,
        receipts=receipts,
        rooms=rooms,
        unread=unread,
        chat=chat,
        identities=IdentityResolver(config.secrets.auth),
        users=UserDirectory(db),
        registry=registry,
        gateway=gateway,
    )
