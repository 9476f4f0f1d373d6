from fastapi import APIRouter, HTTPException, Request
from schemas.rooms import RoomDetailsResponse
from backend import redis_backend
from errors import StoreUnavailable
from logging_config import get_logger

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/rooms", tags=["rooms"])


@rooms_router.get("/{room_id}", response_model=RoomDetailsResponse, response_model_by_alias=True)
async def get_room_details(room_id: str, request: Request = None):
    """
    Read-only room summary.

    Returns:
    - roomId: Room identifier
    - owner: Display name of the creator
    - onlineUsersCount / onlineUsers: Current roster
    - messageCount: Number of stored chat messages
    - videoState: Stored playback state (position as of updatedAt)
    """
    client_host = request.client.host if request and request.client else 'unknown'
    logger.info(f"Room details request for {room_id} from {client_host}")

    try:
        room = await redis_backend.get_room(room_id.strip())
    except StoreUnavailable as e:
        logger.error(f"Room details failed for {room_id}: {e}")
        raise HTTPException(status_code=503, detail="Room store unavailable")

    if not room:
        logger.warning(f"Room details failed: Room {room_id} not found")
        raise HTTPException(status_code=404, detail="Room not found")

    logger.info(f"Room details retrieved for {room_id}: {len(room.users)} users online")

    return RoomDetailsResponse(
        room_id=room.room_id,
        owner=room.owner,
        online_users_count=len(room.users),
        online_users=[user.username for user in room.users],
        message_count=len(room.messages),
        video_state=room.video_state,
    )
