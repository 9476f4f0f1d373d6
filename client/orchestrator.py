"""
Peer mesh orchestration for one local client.

Role assignment needs no coordination: a client that has just joined
initiates towards every member already in the room, and a client that
receives negotiation data from an unknown peer answers it. Members that were
already present never initiate towards a newcomer, so each pair ends up with
exactly one initiator and one responder.
"""

from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Protocol
from client.peers import PeerLink, PeerRegistry, PeerRole
from errors import NegotiationFailure
from logging_config import get_logger

logger = get_logger(__name__)


class PeerConnection(Protocol):
    async def start(self) -> None:
        """Begin negotiation (initiators only; responders wait for data)."""

    async def signal(self, payload: Any) -> None:
        """Feed negotiation data received from the remote peer."""

    async def close(self) -> None:
        """Release every media resource held by the connection."""


# factory(initiator=..., local_stream=..., on_signal=..., on_stream=...)
PeerFactory = Callable[..., PeerConnection]


class PeerOrchestrator:
    def __init__(self, session, peer_factory: PeerFactory, local_stream: Any = None):
        self.session = session
        self.peer_factory = peer_factory
        self.local_stream = local_stream
        self.peers = PeerRegistry()
        self.roster: Dict[str, dict] = {}
        self.listeners: List[Callable[[], Any]] = []
        self.closed = False

    @property
    def self_id(self) -> Optional[str]:
        return self.session.connection_id

    def add_listener(self, listener: Callable[[], Any]):
        self.listeners.append(listener)

    def _notify(self):
        for listener in self.listeners:
            try:
                listener()
            except Exception as e:
                logger.error(f"Peer listener failed: {e}", exc_info=True)

    def _remember_roster(self, users: Iterable[dict]):
        self.roster = {user["connectionId"]: user for user in users}

    def _create_link(self, peer_id: str, role: PeerRole) -> Optional[PeerLink]:
        if self.closed:
            logger.debug(f"Orchestrator closed, not creating a {role.value} link to {peer_id}")
            return None
        if peer_id in self.peers:
            logger.warning(f"Link to {peer_id} already exists, not creating a {role.value} link")
            return None

        async def send_signal(payload: Any):
            await self.session.emit("signal", {"toId": peer_id, "payload": payload})

        def on_stream(stream: Any):
            link = self.peers.get(peer_id)
            # Late callback from a connection that has since been replaced
            if link is None or link.connection is not connection:
                return
            link.remote_stream = stream
            logger.info(f"Receiving media from {link.remote_username} ({peer_id})")
            self._notify()

        try:
            connection = self.peer_factory(
                initiator=role is PeerRole.INITIATOR,
                local_stream=self.local_stream,
                on_signal=send_signal,
                on_stream=on_stream,
            )
        except Exception as e:
            failure = NegotiationFailure(peer_id, e)
            logger.warning(failure.message, exc_info=True)
            return None
        entry = self.roster.get(peer_id, {})
        link = PeerLink(
            peer_id=peer_id,
            role=role,
            connection=connection,
            remote_username=entry.get("username", "Connecting..."),
            remote_muted=entry.get("isMuted", True),
        )
        self.peers.insert_if_absent(link)
        logger.debug(f"Created {role.value} link to {link.remote_username} ({peer_id})")
        self._notify()
        return link

    async def _negotiate(self, link: PeerLink, step: Callable[[], Awaitable[None]]):
        try:
            await step()
        except Exception as e:
            failure = NegotiationFailure(link.peer_id, e)
            logger.warning(failure.message, exc_info=True)
            # Only tear down if the failing connection is still the registered one
            if self.peers.get(link.peer_id) is link:
                await self.destroy(link.peer_id)
            return
        # close() ran while this step was in flight
        if self.closed and self.peers.get(link.peer_id) is link:
            await self.destroy(link.peer_id)

    async def on_room_sync(self, users: List[dict]):
        """We just joined: initiate towards everybody already here."""
        self._remember_roster(users)
        for user in users:
            if self.closed:
                break
            peer_id = user["connectionId"]
            if peer_id == self.self_id:
                continue
            link = self._create_link(peer_id, PeerRole.INITIATOR)
            if link is not None:
                await self._negotiate(link, link.connection.start)

    async def on_signal(self, from_id: str, payload: Any):
        link = self.peers.get(from_id)
        if link is None:
            # Someone new initiated towards us
            link = self._create_link(from_id, PeerRole.RESPONDER)
            if link is None:
                return
        await self._negotiate(link, lambda: link.connection.signal(payload))

    async def on_roster(self, users: List[dict]):
        self._remember_roster(users)
        for link in self.peers:
            entry = self.roster.get(link.peer_id)
            if entry is None:
                await self.destroy(link.peer_id)
                continue
            link.remote_username = entry.get("username", link.remote_username)
            link.remote_muted = entry.get("isMuted", link.remote_muted)
        self._notify()

    async def on_user_disconnected(self, connection_id: str) -> Optional[PeerLink]:
        return await self.destroy(connection_id)

    async def destroy(self, peer_id: str) -> Optional[PeerLink]:
        """Drop the link and release its media before returning."""
        link = self.peers.remove(peer_id)
        if link is None:
            return None
        stop = getattr(link.remote_stream, "stop", None)
        if callable(stop):
            stop()
        try:
            await link.connection.close()
        except Exception as e:
            logger.error(f"Error closing link to {peer_id}: {e}", exc_info=True)
        logger.info(f"Destroyed link to {link.remote_username} ({peer_id})")
        self._notify()
        return link

    async def close(self):
        """Destroy every link. No link is created afterwards, even by in-flight handlers."""
        self.closed = True
        for peer_id in self.peers.ids():
            await self.destroy(peer_id)
