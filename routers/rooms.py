from fastapi import APIRouter, HTTPException, Request
from schemas.rooms import ActiveRoomsResponse, CreateRoomRequest, RoomCreatedResponse, RoomDetailsResponse
from relay.service import ChatRelay, RoomIdUnavailable
from logging_config import get_logger

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/rooms", tags=["rooms"])


def get_relay(request: Request) -> ChatRelay:
    return request.app.state.relay


@rooms_router.get("/", response_model=ActiveRoomsResponse, response_model_by_alias=True)
async def list_active_rooms(request: Request):
    return ActiveRoomsResponse(rooms=get_relay(request).directory.snapshot())


@rooms_router.post("/", response_model=RoomCreatedResponse, response_model_by_alias=True, status_code=201)
async def create_room(room: CreateRoomRequest, request: Request):
    # Same id allocation as the create-room socket event; the room exists once someone joins it
    client_host = request.client.host if request.client else "unknown"
    logger.info(f"Room id request from {client_host}, userName: {room.user_name}")
    try:
        room_id = await get_relay(request).allocate_room_id()
    except RoomIdUnavailable as e:
        logger.error(f"Error allocating room id: {e}")
        raise HTTPException(status_code=503, detail="Could not allocate a room id")
    return RoomCreatedResponse(room_id=room_id, user_name=room.user_name)


@rooms_router.get("/{room_id}", response_model=RoomDetailsResponse, response_model_by_alias=True)
async def get_room_details(room_id: str, request: Request):
    """Occupancy of an active room. Rooms without members do not exist."""
    relay = get_relay(request)
    if not relay.membership.has_room(room_id):
        logger.debug(f"Room details failed: Room {room_id} not active")
        raise HTTPException(status_code=404, detail="Room not found")

    names = relay.membership.members_of(room_id)
    return RoomDetailsResponse(
        room_id=room_id,
        member_count=len(names),
        member_names=names,
        message_count=await relay.backend.count(room_id),
    )


@rooms_router.get("/{room_id}/messages")
async def get_room_messages(room_id: str, request: Request):
    history = await get_relay(request).backend.history(room_id)
    return {
        "roomId": room_id,
        "messages": [message.model_dump(by_alias=True, exclude_none=True) for message in history],
    }
