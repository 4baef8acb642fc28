"""WebSocket endpoint for live room events.

Protocol Flow:
    1. Client connects to /ws?token=<jwt> (or sends Authorization: Bearer <jwt>)
       → invalid or missing token: socket closed with 4401, nothing registered
       → Server sends: {event: "connected", data: {user_id, username}}
    2. Client sends: {event: "join_room", data: {room_id}}
       → room: messages_read; everyone: chat_room_updated
    3. Client sends: {event: "send_message", data: {room_id, content, type}}
       → room: receive_message; everyone: chat_room_updated
       → on failure, sender only: message_error
    4. Client sends: {event: "message_read", data: {message_id, room_id}}
       → room: message_read_update
    5. Client sends: {event: "typing_start" | "typing_stop", data: {room_id}}
       → rest of room: user_typing
    6. Client sends: {event: "leave_room", data: {room_id}}
       → everyone, after a short delay: chat_room_updated
    7. On disconnect → all channel memberships removed
"""
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.concurrency import run_in_threadpool

from ..auth.identity import bearer_token
from ..errors import AuthenticationError, PersistenceError
from .registry import CLOSE_INTERNAL_ERROR, Connection, ConnectionState

logger = logging.getLogger(__name__)

router = APIRouter()

# Application-defined close codes (4000-4999)
CLOSE_UNAUTHORIZED = 4401


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """Authenticate one client, then feed its events to the gateway until it leaves."""
    services = websocket.app.state.services
    connection = Connection(websocket)

    token = websocket.query_params.get("token") or bearer_token(
        websocket.headers.get("authorization")
    )
    try:
        identity = services.identities.resolve(token)
        await run_in_threadpool(services.users.remember, identity)
    except AuthenticationError as e:
        logger.warning(f"[WS] Handshake refused: {e.message}")
        await websocket.close(code=CLOSE_UNAUTHORIZED)
        return
    except PersistenceError:
        logger.error("[WS] Handshake failed: could not record user profile")
        await websocket.close(code=CLOSE_INTERNAL_ERROR)
        return

    connection.authenticate(identity)
    await websocket.accept()

    gateway = services.gateway
    await gateway.connect(connection)
    try:
        while connection.state is ConnectionState.CONNECTED:
            try:
                data = await websocket.receive_json()
            except ValueError:
                await gateway.send_error(connection, "Invalid JSON")
                continue
            await gateway.dispatch(connection, data)
    except WebSocketDisconnect:
        pass
    finally:
        gateway.disconnect(connection)
