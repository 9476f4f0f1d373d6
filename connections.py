from fastapi import WebSocket
import asyncio
import json
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Set
from logging_config import get_logger

logger = get_logger(__name__)


class ConnectionRegistry:
    """
    Live transport sessions and per-room broadcast groups.

    One process owns this registry for every room it serves:
    {connection_id: websocket} and {room_id: {connection_id}}.
    """

    def __init__(self):
        self.connections: Dict[str, WebSocket] = {}
        self.groups: Dict[str, Set[str]] = {}
        self.locks: Dict[str, asyncio.Lock] = {}

    def room_lock(self, room_id: str) -> asyncio.Lock:
        """Serializes store writes and the broadcasts computed from them, per room."""
        lock = self.locks.get(room_id)
        if lock is None:
            lock = self.locks[room_id] = asyncio.Lock()
        return lock

    def register(self, connection_id: str, websocket: WebSocket):
        self.connections[connection_id] = websocket
        logger.debug(f"Registered connection {connection_id} ({len(self.connections)} live)")

    def unregister(self, connection_id: str):
        self.connections.pop(connection_id, None)
        for room_id in list(self.groups_of(connection_id)):
            self.leave_group(room_id, connection_id)
        logger.debug(f"Unregistered connection {connection_id} ({len(self.connections)} live)")

    def is_live(self, connection_id: str) -> bool:
        return connection_id in self.connections

    def join_group(self, room_id: str, connection_id: str):
        self.groups.setdefault(room_id, set()).add(connection_id)
        logger.debug(f"Connection {connection_id} joined group {room_id} ({len(self.groups[room_id])} members)")

    def leave_group(self, room_id: str, connection_id: str):
        members = self.groups.get(room_id)
        if not members:
            return
        members.discard(connection_id)
        if not members:
            del self.groups[room_id]
        logger.debug(f"Connection {connection_id} left group {room_id}")

    def clear_group(self, room_id: str) -> Set[str]:
        """Force every session out of a group and return who was in it."""
        evicted = self.groups.pop(room_id, set())
        logger.debug(f"Cleared group {room_id}, evicted {len(evicted)} connections")
        return evicted

    def members(self, room_id: str) -> Set[str]:
        return set(self.groups.get(room_id, set()))

    def groups_of(self, connection_id: str) -> Iterable[str]:
        return [room_id for room_id, members in self.groups.items() if connection_id in members]

    async def send(self, connection_id: str, event: str, data: Any = None) -> bool:
        """Unicast; a connection that is no longer live is silently skipped."""
        websocket = self.connections.get(connection_id)
        if websocket is None:
            logger.debug(f"Dropping {event} for {connection_id}: no live session")
            return False
        try:
            await websocket.send_text(json.dumps({"event": event, "data": data}))
            return True
        except Exception as e:
            logger.warning(f"Error sending {event} to connection {connection_id}: {e}")
            # Group membership stays until disconnect reconciles it
            self.connections.pop(connection_id, None)
            return False

    async def broadcast(self, room_id: str, event: str, data: Any = None, exclude: Optional[str] = None) -> int:
        targets = [conn_id for conn_id in self.members(room_id) if conn_id != exclude]
        if not targets:
            return 0
        logger.debug(f"Broadcasting {event} to {len(targets)} connections in room {room_id}")
        results = await asyncio.gather(
            *(self.send(conn_id, event, data) for conn_id in targets), return_exceptions=True
        )
        return sum(1 for result in results if result is True)


@dataclass
class Connection:
    """Explicit per-session context handed to every server component."""

    connection_id: str
    registry: ConnectionRegistry

    async def emit(self, event: str, data: Any = None) -> bool:
        return await self.registry.send(self.connection_id, event, data)

    @property
    def rooms(self) -> list:
        return list(self.registry.groups_of(self.connection_id))
