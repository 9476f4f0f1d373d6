import redis.asyncio as redis
from redis.exceptions import RedisError, WatchError
from typing import Callable, Optional, TypeVar
from constants import REDIS_HOST, REDIS_PORT, REDIS_PASSWORD, REDIS_DB, STORE_MAX_RETRIES
from redis_keys import REDIS_ROOM_KEY
from errors import RoomAlreadyExists, RoomNotFound, StoreUnavailable
from schemas.rooms import Room
from logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class RedisBackend:
    """Room store: one JSON document per room with atomic single-document writes."""

    def __init__(self, redis_client: Optional[redis.Redis] = None, max_retries: int = STORE_MAX_RETRIES):
        if redis_client is None:
            logger.info(f"Initializing RedisBackend with connection to {REDIS_HOST}:{REDIS_PORT}")
            redis_client = redis.Redis(
                host=REDIS_HOST, port=REDIS_PORT, password=REDIS_PASSWORD, db=REDIS_DB, decode_responses=True
            )
        self.redis_client = redis_client
        self.max_retries = max_retries

    @staticmethod
    def room_key(room_id: str) -> str:
        return REDIS_ROOM_KEY.format(slug=room_id)

    async def ping(self) -> bool:
        try:
            return bool(await self.redis_client.ping())
        except RedisError as e:
            raise StoreUnavailable("ping", e) from e

    async def create_room(self, room: Room) -> Room:
        """Insert the room document only if no document exists for its id."""
        logger.info(f"Creating room {room.room_id} owned by {room.owner}")
        key = self.room_key(room.room_id)
        try:
            created = await self.redis_client.set(key, room.model_dump_json(by_alias=True), nx=True)
        except RedisError as e:
            logger.error(f"Failed to create room {room.room_id}: {e}", exc_info=True)
            raise StoreUnavailable("create_room", e) from e
        if not created:
            logger.info(f"Room {room.room_id} already exists, refusing to overwrite")
            raise RoomAlreadyExists(room.room_id)
        logger.debug(f"Room {room.room_id} created successfully with key: {key}")
        return room

    async def get_room(self, room_id: str) -> Optional[Room]:
        logger.debug(f"Fetching room {room_id}")
        try:
            raw = await self.redis_client.get(self.room_key(room_id))
        except RedisError as e:
            logger.error(f"Failed to fetch room {room_id}: {e}", exc_info=True)
            raise StoreUnavailable("get_room", e) from e
        if raw is None:
            logger.debug(f"Room {room_id} not found in Redis")
            return None
        return Room.model_validate_json(raw)

    async def update_room(self, room_id: str, mutate: Callable[[Room], T]) -> tuple[Room, T]:
        """
        Read-modify-write one room document under WATCH/MULTI.

        `mutate` changes the room in place and its return value is handed back
        alongside the written room. It may run more than once when a concurrent
        writer touches the same document, so it must not have side effects.
        """
        key = self.room_key(room_id)
        try:
            async with self.redis_client.pipeline(transaction=True) as pipe:
                for attempt in range(1, self.max_retries + 1):
                    try:
                        await pipe.watch(key)
                        raw = await pipe.get(key)
                        if raw is None:
                            await pipe.unwatch()
                            logger.debug(f"Update of room {room_id} skipped: document missing")
                            raise RoomNotFound(room_id)
                        room = Room.model_validate_json(raw)
                        result = mutate(room)
                        pipe.multi()
                        pipe.set(key, room.model_dump_json(by_alias=True))
                        await pipe.execute()
                        logger.debug(f"Room {room_id} updated (attempt {attempt})")
                        return room, result
                    except WatchError:
                        logger.debug(f"Concurrent write on room {room_id}, retrying (attempt {attempt})")
                        continue
        except RedisError as e:
            logger.error(f"Failed to update room {room_id}: {e}", exc_info=True)
            raise StoreUnavailable("update_room", e) from e
        logger.warning(f"Giving up on room {room_id} after {self.max_retries} conflicting writes")
        raise StoreUnavailable("update_room", WatchError(f"{self.max_retries} conflicting writes"))

    async def delete_room(self, room_id: str) -> bool:
        logger.info(f"Deleting room {room_id}")
        try:
            deleted = await self.redis_client.delete(self.room_key(room_id))
        except RedisError as e:
            logger.error(f"Failed to delete room {room_id}: {e}", exc_info=True)
            raise StoreUnavailable("delete_room", e) from e
        logger.debug(f"Room {room_id} deleted: {bool(deleted)}")
        return bool(deleted)

    async def close(self):
        await self.redis_client.aclose()


redis_backend = RedisBackend()
