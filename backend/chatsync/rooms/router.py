"""Room visibility REST API router.

Endpoints:
    POST /rooms/{room_id}/hide         - Hide the room from the caller's list
    POST /rooms/{room_id}/show         - Show the room in the caller's list again
    GET  /rooms/{room_id}/participants - Participant ids of the room

Hiding is only ever triggered here, by an explicit request; leaving a room
channel or disconnecting does not hide it.
"""
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from ..auth.dependencies import get_current_identity
from ..auth.identity import Identity

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/rooms", tags=["rooms"])


@router.post("/{room_id}/hide")
def hide_room(
    room_id: str,
    request: Request,
    identity: Identity = Depends(get_current_identity),
) -> JSONResponse:
    request.app.state.services.rooms.hide(room_id, identity.user_id)
    return JSONResponse({"success": True, "hidden": True})


@router.post("/{room_id}/show")
def show_room(
    room_id: str,
    request: Request,
    identity: Identity = Depends(get_current_identity),
) -> JSONResponse:
    rooms = request.app.state.services.rooms
    # Raises NotFoundError for non-participants.
    rooms.is_hidden(room_id, identity.user_id)
    rooms.show(room_id, identity.user_id)
    return JSONResponse({"success": True, "hidden": False})


@router.get("/{room_id}/participants")
def list_participants(
    room_id: str,
    request: Request,
    identity: Identity = Depends(get_current_identity),
) -> JSONResponse:
    participants = sorted(request.app.state.services.rooms.participants(room_id))
    return JSONResponse({"success": True, "participants": participants})
