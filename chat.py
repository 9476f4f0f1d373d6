from typing import Optional
from backend import RedisBackend
from connections import Connection, ConnectionRegistry
from schemas.rooms import ChatMessage, Room
from logging_config import get_logger

logger = get_logger(__name__)


class ChatRelay:
    def __init__(self, store: RedisBackend, registry: ConnectionRegistry):
        self.store = store
        self.registry = registry

    async def send_message(self, conn: Connection, room_id: str, author: str, text: str) -> Optional[ChatMessage]:
        """Persist then broadcast to the whole room, sender included, so every client sees one order."""
        if not text.strip():
            logger.debug(f"Ignoring blank message from {conn.connection_id} in room {room_id}")
            return None

        message = ChatMessage(author=author, text=text)

        def append(room: Room) -> ChatMessage:
            room.messages.append(message)
            return message

        async with self.registry.room_lock(room_id):
            await self.store.update_room(room_id, append)
            logger.debug(f"Message from {author} stored in room {room_id}")
            await self.registry.broadcast(room_id, "receive-message", message.dump())
        return message
