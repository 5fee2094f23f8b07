from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import ValidationError

from backend import get_backend
from backends.base import KVBackend
from errors import InvalidInput
from logging_config import get_logger
from relay import SignalRelay
from schemas.rooms import (
    CreateRoomResponse,
    JoinRoomRequest,
    JoinRoomResponse,
    PollResponse,
    RoomResponse,
    RoomsResponse,
    SignalRequest,
    SuccessResponse,
)

logger = get_logger(__name__)

lan_router = APIRouter(prefix="/lan", tags=["lan"])


def get_relay(backend: KVBackend = Depends(get_backend)) -> SignalRelay:
    return SignalRelay(backend)


def _parse(model, body: dict):
    try:
        return model.model_validate(body)
    except ValidationError as e:
        raise InvalidInput(f"Invalid {body.get('action')} request: {e.errors()[0]['msg']}")


def _parse_cursor(cursor: Optional[str]) -> int:
    if not cursor:
        return 0
    try:
        return int(cursor)
    except ValueError:
        raise InvalidInput("cursor must be an integer timestamp")


@lan_router.post("/signal")
async def post_signal(request: Request, relay: SignalRelay = Depends(get_relay)):
    try:
        body = await request.json()
    except ValueError:
        raise InvalidInput("Invalid JSON body")
    if not isinstance(body, dict):
        raise InvalidInput("Body must be a JSON object")

    action = body.get("action")
    client_host = request.client.host if request.client else "unknown"
    logger.debug(f"Signal POST action={action} from {client_host}")

    if action == "create-room":
        room = await relay.create_room()
        return CreateRoomResponse(room_id=room.id, room=room)

    if action == "join-room":
        join = _parse(JoinRoomRequest, body)
        room, device = await relay.join_room(
            join.room_id, join.device_name, join.device_type.value if join.device_type else None
        )
        return JoinRoomResponse(room=room, device=device)

    if action == "signal":
        signal = _parse(SignalRequest, body)
        await relay.send_signal(
            signal.room_id,
            signal.type.value if signal.type else None,
            signal.from_device,
            signal.to_device,
            signal.data,
        )
        return SuccessResponse()

    raise InvalidInput(f"Unknown action: {action}")


@lan_router.get("/signal")
async def get_signal(
    action: Optional[str] = Query(None),
    room_id: Optional[str] = Query(None, alias="roomId"),
    device_id: Optional[str] = Query(None, alias="deviceId"),
    cursor: Optional[str] = Query(None),
    last_message_id: Optional[str] = Query(None, alias="lastMessageId"),
    relay: SignalRelay = Depends(get_relay),
):
    if action == "poll":
        if not room_id or not device_id:
            raise InvalidInput("roomId and deviceId are required")
        messages = await relay.poll_messages(room_id, device_id, _parse_cursor(cursor or last_message_id))
        return PollResponse(messages=messages)

    if action == "room":
        if not room_id:
            raise InvalidInput("roomId is required")
        return RoomResponse(room=await relay.get_room(room_id))

    if action == "rooms":
        # room codes are the only join credential, so they are never enumerated
        return RoomsResponse(rooms=[])

    raise InvalidInput(f"Unknown action: {action}")


@lan_router.delete("/signal")
async def delete_signal(
    room_id: Optional[str] = Query(None, alias="roomId"),
    device_id: Optional[str] = Query(None, alias="deviceId"),
    relay: SignalRelay = Depends(get_relay),
):
    if not room_id or not device_id:
        raise InvalidInput("roomId and deviceId are required")
    await relay.leave_room(room_id, device_id)
    return SuccessResponse()
