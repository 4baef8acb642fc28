"""Messages REST API router (pull surface for reconnecting clients).

Endpoints:
    POST /messages/send                 - Send a message (also broadcast live)
    GET  /messages/room/{room_id}       - Room messages, ascending; descending when paged
    GET  /messages/room/{room_id}/latest - Most recent message in a room
    POST /messages/read/{message_id}    - Mark one message read
    POST /messages/read-all/{room_id}   - Mark every message in a room read
    GET  /messages/unread/{room_id}     - Unread message count for the caller
    GET  /messages/{message_id}         - Single message

Every response carries ``success``; failures add an ``error`` string.
Handlers that only touch the stores are plain ``def``: FastAPI runs them in its
threadpool, off the event loop that serves the live sockets.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from ..auth.dependencies import get_current_identity
from ..auth.identity import Identity
from .schemas import SendMessageRequest, SortOrder

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/messages", tags=["messages"])


def _services(request: Request):
    return request.app.state.services


@router.post("/send", status_code=201)
async def send_message(
    body: SendMessageRequest,
    request: Request,
    identity: Identity = Depends(get_current_identity),
) -> JSONResponse:
    """Persist a message and deliver it to the room's live connections.

    Returns:
        201 with the created message, annotated with its unread count.
    """
    message = await _services(request).gateway.deliver_message(
        body.room_id, identity, body.message_type, body.content
    )
    return JSONResponse({"success": True, "message": message.to_wire()}, status_code=201)


@router.get("/room/{room_id}")
def get_room_messages(
    room_id: str,
    request: Request,
    limit: Optional[int] = Query(None, ge=1, description="Page size; switches to newest-first order"),
    offset: Optional[int] = Query(None, ge=0, description="Messages to skip; switches to newest-first order"),
    identity: Identity = Depends(get_current_identity),
) -> JSONResponse:
    """List a room's messages with unread counts.

    Without paging parameters the whole room is returned oldest first. With
    ``limit`` and/or ``offset`` a page is returned newest first.

    Example:
        GET /messages/room/abc123
        GET /messages/room/abc123?limit=50&offset=50
    """
    services = _services(request)
    if limit is None and offset is None:
        messages = services.chat.fetch_range(room_id, SortOrder.ASC, viewer_id=identity.user_id)
    else:
        pagination = services.config.pagination
        page_size = min(limit or pagination.default_limit, pagination.max_limit)
        messages = services.chat.fetch_range(
            room_id, SortOrder.DESC, limit=page_size, offset=offset or 0, viewer_id=identity.user_id
        )
    return JSONResponse({"success": True, "messages": [m.to_wire() for m in messages]})


@router.get("/room/{room_id}/latest")
def get_latest_message(
    room_id: str,
    request: Request,
    identity: Identity = Depends(get_current_identity),
) -> JSONResponse:
    message = _services(request).chat.fetch_latest(room_id)
    return JSONResponse({"success": True, "message": message.to_wire()})


@router.post("/read-all/{room_id}")
def mark_all_read(
    room_id: str,
    request: Request,
    identity: Identity = Depends(get_current_identity),
) -> JSONResponse:
    affected = _services(request).chat.mark_all_read(room_id, identity.user_id)
    logger.info(f"[Messages] {identity.user_id} marked {affected} message(s) read in room {room_id}")
    return JSONResponse({"success": True, "affected": affected})


@router.post("/read/{message_id}")
def mark_read(
    message_id: int,
    request: Request,
    identity: Identity = Depends(get_current_identity),
) -> JSONResponse:
    result = _services(request).chat.mark_read(message_id, identity.user_id)
    return JSONResponse({"success": True, "already_read": result.already_read})


@router.get("/unread/{room_id}")
def get_unread_count(
    room_id: str,
    request: Request,
    identity: Identity = Depends(get_current_identity),
) -> JSONResponse:
    count = _services(request).chat.unread_count(room_id, identity.user_id)
    return JSONResponse({"success": True, "unread_count": count})


@router.get("/{message_id}")
def get_message(
    message_id: int,
    request: Request,
    identity: Identity = Depends(get_current_identity),
) -> JSONResponse:
    message = _services(request).chat.fetch_by_id(message_id)
    return JSONResponse({"success": True, "message": message.to_wire()})
