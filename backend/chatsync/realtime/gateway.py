"""Realtime gateway: inbound WebSocket events in, store calls, fan-out out.

Inbound events (``{"event": name, "data": {...}}``):
    - join_room:     join the room channel, show the room, mark everything read
    - leave_room:    leave the room channel (room-list refresh is debounced)
    - send_message:  append, resurface the room, broadcast the stored message
    - message_read:  record a receipt, broadcast the read update
    - typing_start / typing_stop: relay a typing indicator to the rest of the room

Outbound events:
    - connected, receive_message, messages_read, message_read_update,
      chat_room_updated, user_typing, message_error

Ordering:
    Appends to one room and the broadcasts that follow them run under that
    room's lock, so every socket sees the room's messages in store order. A
    broadcast only happens after the append committed; when it fails, only the
    sender hears about it through ``message_error``.

Store calls run in the threadpool and are the only points where an event
handler waits on something other than a socket.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from starlette.concurrency import run_in_threadpool

from ..auth.identity import Identity
from ..config import RealtimeSettings
from ..errors import ChatSyncError, PermissionDeniedError, ValidationError
from ..messages.schemas import Message, MessageType
from ..messages.service import ChatService
from ..rooms.visibility import RoomVisibilityManager
from .registry import Connection, ConnectionRegistry, ConnectionState

logger = logging.getLogger(__name__)

Handler = Callable[[Connection, Any], Awaitable[None]]


class RoomSequencer:
    """One asyncio lock per room, created on demand and dropped when idle."""

    def __init__(self) -> None:
        # room_id -> [lock, number of holders and waiters]
        self._locks: Dict[str, list] = {}

    @asynccontextmanager
    async def hold(self, room_id: str):
        entry = self._locks.setdefault(room_id, [asyncio.Lock(), 0])
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                self._locks.pop(room_id, None)

    def __len__(self) -> int:
        return len(self._locks)


def _field(data: Any, name: str) -> Any:
    """Read a required field from an event payload.

    Room-scoped events may also carry the bare room id as their payload.
    """
    if isinstance(data, dict):
        value = data.get(name)
    elif name == "room_id" and isinstance(data, (str, int)):
        value = data
    else:
        value = None
    if value is None or value == "":
        raise ValidationError(f"{name} is required")
    return value


def _room_id(data: Any) -> str:
    return str(_field(data, "room_id"))


class ChatGateway:
    """Handles live events for every connection.

    Collaborators are injected once at construction; handlers never look
    them up per call.
    """

    def __init__(
        self,
        chat: ChatService,
        rooms: RoomVisibilityManager,
        registry: ConnectionRegistry,
        settings: Optional[RealtimeSettings] = None,
        require_membership: bool = True,
    ) -> None:
        self.chat = chat
        self.rooms = rooms
        self.registry = registry
        self.settings = settings or RealtimeSettings()
        self.require_membership = require_membership
        self.sequencer = RoomSequencer()
        self._pending: Set[asyncio.Task] = set()
        self._handlers: Dict[str, Handler] = {
            "join_room": self.join_room,
            "leave_room": self.leave_room,
            "send_message": self.send_message,
            "message_read": self.message_read,
            "typing_start": self.typing_start,
            "typing_stop": self.typing_stop,
        }

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    async def connect(self, connection: Connection) -> None:
        """Register an authenticated connection and confirm its identity."""
        self.registry.register(connection)
        delivered = await connection.send(
            "connected",
            {"user_id": connection.user_id, "username": connection.username},
            self.settings.send_timeout_seconds,
        )
        if not delivered:
            await self.registry.drop(connection)

    def disconnect(self, connection: Connection) -> None:
        """Drop all channel memberships. Nothing persisted changes."""
        rooms = self.registry.unregister(connection)
        if rooms:
            logger.debug(f"[Gateway] {connection.user_id} dropped from rooms {sorted(rooms)}")

    async def dispatch(self, connection: Connection, message: Any) -> None:
        """Route one inbound event to its handler.

        Errors never escape: they are logged and reported to this connection
        alone as ``message_error``. Events from a connection that is no longer
        registered are dropped.
        """
        if connection.state is not ConnectionState.CONNECTED:
            logger.debug(f"[Gateway] Ignoring event from {connection!r}")
            return

        if not isinstance(message, dict) or not isinstance(message.get("event"), str):
            await self.send_error(connection, "Invalid event format: event is required")
            return

        event = message["event"]
        handler = self._handlers.get(event)
        if handler is None:
            await self.send_error(connection, f"Unknown event: {event}")
            return

        logger.debug("[Gateway] %s from %s", event, connection.user_id)
        try:
            await handler(connection, message.get("data"))
        except ChatSyncError as e:
            logger.info(f"[Gateway] {event} from {connection.user_id} failed: {e.message}")
            await self.send_error(connection, e.message)
        except Exception:
            logger.exception(f"[Gateway] Unhandled error in {event} from {connection.user_id}")
            await self.send_error(connection, "Internal error")

    async def shutdown(self) -> None:
        """Cancel pending debounced notices and forget all connections."""
        for task in list(self._pending):
            task.cancel()
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        self.registry.clear()

    # =========================================================================
    # Event handlers
    # =========================================================================

    async def join_room(self, connection: Connection, data: Any) -> None:
        room_id = _room_id(data)
        user_id = connection.user_id

        if self.require_membership:
            allowed = await run_in_threadpool(self.rooms.is_participant, room_id, user_id)
            if not allowed:
                raise PermissionDeniedError("Not a participant of this chat room")

        joined = self.registry.join(connection, room_id)
        try:
            count = await run_in_threadpool(self.chat.open_room, room_id, user_id)
        except Exception:
            # Not shown and not read: the connection stays out of the channel.
            if joined:
                self.registry.leave(connection, room_id)
            raise
        logger.info(f"[Gateway] {connection.username} joined room {room_id} ({count} marked read)")

        await self.registry.emit_to_room(
            room_id, "messages_read", {"room_id": room_id, "user_id": user_id}
        )
        await self.invalidate_room_list(
            room_id, {"room_id": room_id, "action": "join", "user_id": user_id}
        )

    async def leave_room(self, connection: Connection, data: Any) -> None:
        room_id = _room_id(data)
        if not self.registry.leave(connection, room_id):
            logger.debug(f"[Gateway] {connection.user_id} left room {room_id} without joining it")
            return
        logger.info(f"[Gateway] {connection.username} left room {room_id}")
        self._schedule(
            self._announce_leave(room_id, connection.user_id),
        )

    async def send_message(self, connection: Connection, data: Any) -> None:
        room_id = _room_id(data)
        if room_id not in connection.rooms:
            raise PermissionDeniedError("Join the room before sending messages")

        message_type = MessageType.TEXT.value
        content = ""
        if isinstance(data, dict):
            message_type = data.get("type") or data.get("message_type") or message_type
            content = data.get("content") or ""

        await self.deliver_message(room_id, connection.identity, message_type, content)

    async def message_read(self, connection: Connection, data: Any) -> None:
        message_id = _field(data, "message_id")
        try:
            message_id = int(message_id)
        except (TypeError, ValueError):
            raise ValidationError("message_id must be an integer") from None

        message = await run_in_threadpool(self.chat.fetch_by_id, message_id)
        result = await run_in_threadpool(self.chat.mark_read, message_id, connection.user_id)

        # Sent even when the receipt already existed, so clients converge.
        await self.registry.emit_to_room(
            message.room_id,
            "message_read_update",
            {
                "message_id": message_id,
                "user_id": connection.user_id,
                "room_id": message.room_id,
                "already_read": result.already_read,
            },
        )

    async def typing_start(self, connection: Connection, data: Any) -> None:
        await self._typing(connection, data, True)

    async def typing_stop(self, connection: Connection, data: Any) -> None:
        await self._typing(connection, data, False)

    # =========================================================================
    # Shared paths
    # =========================================================================

    async def deliver_message(
        self,
        room_id: str,
        sender: Identity,
        message_type: Any,
        content: str,
    ) -> Message:
        """Persist a message and broadcast it in room order.

        Used by the ``send_message`` event and by ``POST /messages/send``.

        Raises:
            ValidationError / PersistenceError: Nothing was stored and nothing
                was broadcast.
        """
        async with self.sequencer.hold(room_id):
            message = await run_in_threadpool(
                self.chat.send_message, room_id, sender.user_id, message_type, content
            )
            await self.registry.emit_to_room(room_id, "receive_message", message.to_wire())
        logger.info(f"[Gateway] Message {message.id} broadcast to room {room_id}")

        await self.invalidate_room_list(
            room_id,
            {
                "room_id": room_id,
                "last_message": message.content,
                "last_message_time": message.to_wire()["created_at"],
            },
        )
        return message

    async def invalidate_room_list(self, room_id: str, data: Dict[str, Any]) -> None:
        """Tell clients to re-pull their room list.

        Goes to every connection, or only to the room's participants when
        targeted updates are enabled.
        """
        if self.settings.targeted_room_updates:
            participants = await run_in_threadpool(self.rooms.participants, room_id)
            await self.registry.emit_global("chat_room_updated", data, user_ids=participants)
        else:
            await self.registry.emit_global("chat_room_updated", data)

    async def _typing(self, connection: Connection, data: Any, is_typing: bool) -> None:
        room_id = _room_id(data)
        if room_id not in connection.rooms:
            return
        await self.registry.emit_to_room(
            room_id,
            "user_typing",
            {
                "room_id": room_id,
                "user_id": connection.user_id,
                "username": connection.username,
                "is_typing": is_typing,
            },
            exclude=connection,
        )

    async def _announce_leave(self, room_id: str, user_id: str) -> None:
        await asyncio.sleep(self.settings.leave_debounce_seconds)
        try:
            await self.invalidate_room_list(
                room_id, {"room_id": room_id, "action": "leave", "user_id": user_id}
            )
        except Exception:
            logger.exception(f"[Gateway] Failed to announce leave of {user_id} from room {room_id}")

    def _schedule(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def send_error(self, connection: Connection, error: str) -> None:
        if not await connection.send("message_error", {"error": error}, self.settings.send_timeout_seconds):
            await self.registry.drop(connection)

    @property
    def pending_notices(self) -> List[asyncio.Task]:
        return list(self._pending)
