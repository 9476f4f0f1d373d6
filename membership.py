"""
Room lifecycle and roster reconciliation.

Every roster change is one atomic read-modify-write of the room document,
followed by notifications to the room's broadcast group. Notifications are
always computed from the document as written, never from a cached copy.
"""

from typing import List, Optional
from backend import RedisBackend
from connections import Connection, ConnectionRegistry
from errors import RoomNotFound
from schemas.rooms import Membership, Room, RoomSync
from logging_config import get_logger

logger = get_logger(__name__)


def roster_payload(room: Room) -> List[dict]:
    return [user.dump() for user in room.users]


class MembershipReconciler:
    def __init__(self, store: RedisBackend, registry: ConnectionRegistry):
        self.store = store
        self.registry = registry

    async def create_room(self, conn: Connection, room_id: str, owner: str) -> Room:
        room = Room(
            room_id=room_id,
            owner=owner,
            users=[Membership(username=owner, connection_id=conn.connection_id, is_muted=True)],
        )
        async with self.registry.room_lock(room_id):
            # Raises RoomAlreadyExists for the loser of a create race
            await self.store.create_room(room)
            logger.info(f"User {owner} ({conn.connection_id}) created room {room_id}")

            self.registry.join_group(room_id, conn.connection_id)
            await conn.emit("room-sync", RoomSync.from_room(room).dump())
            await self.registry.broadcast(room_id, "all-users", roster_payload(room))
        return room

    async def join_room(self, conn: Connection, room_id: str, username: str) -> Room:
        connection_id = conn.connection_id

        def upsert(room: Room) -> Membership:
            # A connection is listed once, under the name it joined with last
            room.users = [
                user for user in room.users
                if user.connection_id != connection_id or user.username == username
            ]
            for user in room.users:
                if user.username == username:
                    user.connection_id = connection_id
                    return user
            entry = Membership(username=username, connection_id=connection_id, is_muted=True)
            room.users.append(entry)
            return entry

        async with self.registry.room_lock(room_id):
            # Raises RoomNotFound without writing anything
            room, entry = await self.store.update_room(room_id, upsert)
            logger.info(f"User {username} ({connection_id}) joined room {room_id} ({len(room.users)} members)")

            self.registry.join_group(room_id, connection_id)
            await conn.emit("room-sync", RoomSync.from_room(room).dump())
            await self.registry.broadcast(room_id, "user-connected", entry.dump(), exclude=connection_id)
            await self.registry.broadcast(room_id, "all-users", roster_payload(room))
        return room

    async def leave_room(self, conn: Connection, room_id: str) -> Optional[Room]:
        """Remove the caller's entry. Leaving a room one is not in is a no-op."""
        connection_id = conn.connection_id

        def remove(room: Room) -> bool:
            before = len(room.users)
            room.users = [user for user in room.users if user.connection_id != connection_id]
            return len(room.users) != before

        async with self.registry.room_lock(room_id):
            try:
                room, removed = await self.store.update_room(room_id, remove)
            except RoomNotFound:
                logger.debug(f"Leave of {connection_id} ignored: room {room_id} does not exist")
                return None
            finally:
                self.registry.leave_group(room_id, connection_id)

            if not removed:
                logger.debug(f"Leave of {connection_id} ignored: not a member of room {room_id}")
                return room

            logger.info(f"Connection {connection_id} left room {room_id} ({len(room.users)} members remain)")
            await self.registry.broadcast(room_id, "user-disconnected", connection_id)
            await self.registry.broadcast(room_id, "all-users", roster_payload(room))
        return room

    async def disconnect(self, conn: Connection):
        """Transport closed: leave every room the connection was in, then forget it."""
        try:
            for room_id in conn.rooms:
                try:
                    await self.leave_room(conn, room_id)
                except Exception as e:
                    logger.error(f"Could not remove {conn.connection_id} from room {room_id}: {e}", exc_info=True)
        finally:
            self.registry.unregister(conn.connection_id)

    async def delete_room(self, conn: Connection, room_id: str) -> bool:
        # Ownership is enforced (or not) by the caller, not here
        async with self.registry.room_lock(room_id):
            deleted = await self.store.delete_room(room_id)
            if not deleted:
                logger.info(f"Delete of room {room_id} by {conn.connection_id} ignored: room does not exist")
                return False

            logger.info(f"Room {room_id} deleted by {conn.connection_id}")
            await self.registry.broadcast(room_id, "room-ended")
            self.registry.clear_group(room_id)
        return True

    async def toggle_mute(self, conn: Connection, room_id: str, is_muted: bool) -> Optional[Room]:
        connection_id = conn.connection_id

        def set_muted(room: Room) -> bool:
            user = room.find_user(connection_id)
            if user is None:
                return False
            user.is_muted = is_muted
            return True

        async with self.registry.room_lock(room_id):
            room, updated = await self.store.update_room(room_id, set_muted)
            if not updated:
                logger.debug(f"Mute toggle from {connection_id} ignored: not a member of room {room_id}")
                return room
            logger.debug(f"Connection {connection_id} in room {room_id} is now {'muted' if is_muted else 'unmuted'}")
            await self.registry.broadcast(room_id, "all-users", roster_payload(room))
        return room
