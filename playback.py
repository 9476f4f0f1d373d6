"""
Authoritative playback clock per room.

The stored state is `{url, playing, position, updatedAt}` where `position`
is the position at `updatedAt`. Incremental events are re-broadcast raw so
receivers apply exactly what the sender reported.
"""

from datetime import datetime
from typing import Optional
from backend import RedisBackend
from connections import Connection, ConnectionRegistry
from schemas.rooms import PlaybackState, Room, VideoStateEvent, utcnow
from logging_config import get_logger

logger = get_logger(__name__)


def live_position(state: PlaybackState, now: Optional[datetime] = None) -> float:
    return state.live_position(now)


class PlaybackSynchronizer:
    def __init__(self, store: RedisBackend, registry: ConnectionRegistry):
        self.store = store
        self.registry = registry

    async def set_video(self, conn: Connection, room_id: str, url: str) -> PlaybackState:
        state = PlaybackState(url=url, playing=True, position=0.0, updated_at=utcnow())

        def reset(room: Room) -> PlaybackState:
            room.video_state = state
            return state

        async with self.registry.room_lock(room_id):
            await self.store.update_room(room_id, reset)
            logger.info(f"Room {room_id} switched to video {url} by {conn.connection_id}")
            await self.registry.broadcast(room_id, "change-video", url, exclude=conn.connection_id)
        return state

    async def apply_event(self, conn: Connection, room_id: str, event: VideoStateEvent) -> PlaybackState:
        def apply(room: Room) -> PlaybackState:
            state = room.video_state
            state.playing = True if event.kind == "seek" else event.playing
            state.position = event.position
            state.updated_at = utcnow()
            return state

        async with self.registry.room_lock(room_id):
            _, state = await self.store.update_room(room_id, apply)
            logger.debug(
                f"Room {room_id} {event.kind} from {conn.connection_id}: playing={state.playing} position={state.position:.2f}"
            )
            await self.registry.broadcast(room_id, "video-state", event.dump(), exclude=conn.connection_id)
        return state
