"""Connection and room-channel registry for live WebSocket clients.

The registry is an explicit object created with the application and handed to
the gateway; nothing reaches it through module globals. It tracks:
    - every authenticated connection, by connection id
    - which room channels each connection has joined
    - which connections are joined to each room channel

Entries are added when a connection authenticates and removed when it
disconnects. A connection that fails or times out a send is removed and its
socket is closed with 1011.

Thread Safety:
    Designed for a single asyncio event loop. It is NOT thread-safe.

Performance Notes:
    - Fan-out uses asyncio.gather() for concurrent delivery
    - Each send is bounded by a timeout so a stalled socket cannot hold up a room
"""
import asyncio
import logging
import uuid
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set

from fastapi import WebSocket

from ..auth.identity import Identity

logger = logging.getLogger(__name__)

# Close code sent to a socket that is dropped after a failed or timed-out send.
CLOSE_INTERNAL_ERROR = 1011


class ConnectionState(str, Enum):
    """Lifecycle of a live connection.

    Attributes:
        CONNECTING: Socket opened, credential not yet checked.
        AUTHENTICATED: Credential resolved to an identity.
        CONNECTED: Registered; may join and leave rooms.
        CLOSED: Disconnected; all channel memberships removed.
    """
    CONNECTING = "connecting"
    AUTHENTICATED = "authenticated"
    CONNECTED = "connected"
    CLOSED = "closed"


def envelope(event: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """Wire format shared by inbound and outbound events."""
    return {"event": event, "data": data}


class Connection:
    """One client socket and the rooms it has joined."""

    def __init__(self, websocket: WebSocket, identity: Optional[Identity] = None) -> None:
        self.id = str(uuid.uuid4())
        self.websocket = websocket
        self.identity = identity
        self.state = ConnectionState.AUTHENTICATED if identity else ConnectionState.CONNECTING
        self.rooms: Set[str] = set()

    @property
    def user_id(self) -> str:
        return self.identity.user_id if self.identity else ""

    @property
    def username(self) -> str:
        return self.identity.username if self.identity else ""

    def authenticate(self, identity: Identity) -> None:
        self.identity = identity
        self.state = ConnectionState.AUTHENTICATED

    async def send(self, event: str, data: Dict[str, Any], timeout: Optional[float] = None) -> bool:
        """Send one event. Returns False if the socket is gone or too slow."""
        try:
            await asyncio.wait_for(self.websocket.send_json(envelope(event, data)), timeout)
            return True
        except Exception as e:
            logger.debug(f"Failed to send to connection {self.id}: {e}")
            return False

    async def close(self, code: int = CLOSE_INTERNAL_ERROR) -> None:
        """Close the socket so the client sees the drop and reconnects."""
        try:
            await self.websocket.close(code=code)
        except Exception as e:
            logger.debug(f"Close of connection {self.id} failed: {e}")

    def __repr__(self) -> str:
        return f"<Connection {self.id} user={self.user_id} state={self.state.value}>"


class ConnectionRegistry:
    """Maps live connections to room channels and delivers events to them."""

    def __init__(self, send_timeout: Optional[float] = None) -> None:
        self.send_timeout = send_timeout

        # connection_id -> Connection
        self.connections: Dict[str, Connection] = {}

        # room_id -> set of connection ids joined to that room channel
        self.room_channels: Dict[str, Set[str]] = {}

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def register(self, connection: Connection) -> None:
        """Add an authenticated connection.

        Raises:
            ValueError: The connection has no identity yet.
        """
        if connection.state is not ConnectionState.AUTHENTICATED:
            raise ValueError(f"Cannot register {connection!r}")
        connection.state = ConnectionState.CONNECTED
        self.connections[connection.id] = connection
        logger.info(
            f"[Registry] {connection.username} ({connection.user_id}) connected; "
            f"{len(self.connections)} connection(s) live"
        )

    def unregister(self, connection: Connection) -> Set[str]:
        """Remove a connection and all its channel memberships.

        Returns:
            The rooms the connection had joined.
        """
        rooms = set(connection.rooms)
        for room_id in rooms:
            self._remove_from_channel(room_id, connection)
        connection.rooms.clear()
        connection.state = ConnectionState.CLOSED
        if self.connections.pop(connection.id, None) is not None:
            logger.info(f"[Registry] {connection.username} ({connection.user_id}) disconnected")
        return rooms

    def clear(self) -> None:
        for connection in list(self.connections.values()):
            self.unregister(connection)

    # =========================================================================
    # Channels
    # =========================================================================

    def join(self, connection: Connection, room_id: str) -> bool:
        """Join a room channel. Returns False if already joined or no longer connected."""
        if connection.state is not ConnectionState.CONNECTED or room_id in connection.rooms:
            return False
        connection.rooms.add(room_id)
        self.room_channels.setdefault(room_id, set()).add(connection.id)
        return True

    def leave(self, connection: Connection, room_id: str) -> bool:
        """Leave a room channel. Returns False if the connection wasn't in it."""
        if room_id not in connection.rooms:
            return False
        connection.rooms.discard(room_id)
        self._remove_from_channel(room_id, connection)
        return True

    def _remove_from_channel(self, room_id: str, connection: Connection) -> None:
        members = self.room_channels.get(room_id)
        if members is None:
            return
        members.discard(connection.id)
        if not members:
            del self.room_channels[room_id]

    def room_connections(self, room_id: str) -> List[Connection]:
        return [
            self.connections[cid]
            for cid in self.room_channels.get(room_id, ())
            if cid in self.connections
        ]

    def user_connections(self, user_ids: Iterable[str]) -> List[Connection]:
        wanted = set(user_ids)
        return [conn for conn in self.connections.values() if conn.user_id in wanted]

    def get_room_size(self, room_id: str) -> int:
        """Number of connections joined to a room channel."""
        return len(self.room_channels.get(room_id, ()))

    # =========================================================================
    # Fan-out
    # =========================================================================

    async def emit_to_room(
        self,
        room_id: str,
        event: str,
        data: Dict[str, Any],
        exclude: Optional[Connection] = None,
    ) -> None:
        """Deliver an event to every connection joined to the room."""
        targets = [conn for conn in self.room_connections(room_id) if conn is not exclude]
        await self._deliver(targets, event, data)

    async def emit_global(
        self,
        event: str,
        data: Dict[str, Any],
        user_ids: Optional[Iterable[str]] = None,
    ) -> None:
        """Deliver an event to all connections, or only to those of ``user_ids``."""
        if user_ids is None:
            targets = list(self.connections.values())
        else:
            targets = self.user_connections(user_ids)
        await self._deliver(targets, event, data)

    async def _deliver(self, connections: List[Connection], event: str, data: Dict[str, Any]) -> None:
        if not connections:
            return

        results = await asyncio.gather(
            *[conn.send(event, data, self.send_timeout) for conn in connections],
            return_exceptions=True,
        )

        # Remove failed connections
        failed = [conn for conn, ok in zip(connections, results) if ok is not True]
        for conn in failed:
            await self.drop(conn)

    async def drop(self, connection: Connection) -> None:
        """Unregister a connection whose send failed and close its socket.

        A timed-out send may have left a partial frame on the wire, so the
        socket is never reused.
        """
        if connection.state is ConnectionState.CLOSED:
            return
        logger.debug(f"Removed dead connection {connection.id}")
        self.unregister(connection)
        await connection.close()
