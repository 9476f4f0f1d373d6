import asyncio
from typing import Any, Awaitable, Callable, List, Optional

from client.orchestrator import PeerFactory, PeerOrchestrator
from client.player import EchoGuard, PlaybackController, VideoPlayer
from errors import CaptureUnavailable, RoomAlreadyExists, RoomError, RoomNotFound
from schemas.rooms import ChatMessage, PlaybackState, VideoStateEvent
from logging_config import get_logger

logger = get_logger(__name__)

ROOM_EVENTS = (
    "room-sync",
    "all-users",
    "user-connected",
    "user-disconnected",
    "signal",
    "receive-message",
    "change-video",
    "video-state",
    "room-ended",
    "error-room-not-found",
    "error-room-exists",
)


class RoomClient:
    """
    One participant in one room.

    Wires the session's room events to the peer orchestrator, the playback
    controller and the chat log. Local capture is acquired before the room is
    entered; if it is refused the client continues muted without voice.
    """

    def __init__(
        self,
        session,
        username: str,
        player: VideoPlayer,
        peer_factory: PeerFactory,
        media_factory: Callable[[], Awaitable[Any]],
        join_timeout: float = 10.0,
        guard: Optional[EchoGuard] = None,
    ):
        self.session = session
        self.username = username
        self.player = player
        self.peer_factory = peer_factory
        self.media_factory = media_factory
        self.join_timeout = join_timeout
        self.guard = guard
        self.room_id: Optional[str] = None
        self.owner: Optional[str] = None
        self.users: List[dict] = []
        self.messages: List[dict] = []
        self.local_media: Any = None
        self.voice_available = False
        self.muted = True
        self.ended = False
        self.orchestrator: Optional[PeerOrchestrator] = None
        self.playback: Optional[PlaybackController] = None
        self.on_room_ended: Optional[Callable[[], Any]] = None
        self.on_message: Optional[Callable[[dict], Any]] = None
        self._entered: Optional[asyncio.Future] = None

    @property
    def is_owner(self) -> bool:
        return self.owner is not None and self.owner == self.username

    async def enter(self, room_id: str, create: bool = False):
        """Create or join a room; raises RoomNotFound / RoomAlreadyExists."""
        self.room_id = room_id.strip()

        try:
            self.local_media = await self.media_factory()
            self.voice_available = True
        except CaptureUnavailable as e:
            logger.warning(f"Voice chat unavailable, joining muted: {e.message}")
            self.local_media = None
            self.voice_available = False
        if self.local_media is not None:
            # Members join muted; the roster says so too
            self.local_media.set_muted(True)
        self.muted = True

        self.orchestrator = PeerOrchestrator(self.session, self.peer_factory, self.local_media)
        self.playback = PlaybackController(self.session, self.room_id, self.player, self.guard)
        self._bind()

        self._entered = asyncio.get_running_loop().create_future()
        await self.session.emit(
            "create-room" if create else "join-room",
            {"roomId": self.room_id, "username": self.username},
        )
        try:
            await asyncio.wait_for(self._entered, self.join_timeout)
        except (RoomError, asyncio.TimeoutError):
            await self._release()
            raise
        logger.info(f"{'Created' if create else 'Joined'} room {self.room_id} as {self.username}")

    def _bind(self):
        handlers = {
            "room-sync": self._on_room_sync,
            "all-users": self._on_all_users,
            "user-connected": self._on_user_connected,
            "user-disconnected": self._on_user_disconnected,
            "signal": self._on_signal,
            "receive-message": self._on_receive_message,
            "change-video": self._on_change_video,
            "video-state": self._on_video_state,
            "room-ended": self._on_room_ended,
            "error-room-not-found": self._on_error(RoomNotFound),
            "error-room-exists": self._on_error(RoomAlreadyExists),
        }
        for event, handler in handlers.items():
            self.session.on(event, handler)

    def _unbind(self):
        for event in ROOM_EVENTS:
            self.session.off(event)

    def _on_error(self, error_cls):
        def handler(data: Any):
            if self._entered is not None and not self._entered.done():
                self._entered.set_exception(error_cls(self.room_id))
            else:
                logger.warning(f"Unexpected {error_cls.__name__} for room {self.room_id}")
        return handler

    async def _on_room_sync(self, data: dict):
        self.owner = data.get("owner")
        self.messages = list(data.get("messages") or [])
        self.users = list(data.get("users") or [])
        if data.get("videoState"):
            self.playback.apply_sync(PlaybackState.model_validate(data["videoState"]))
        if self._entered is not None and not self._entered.done():
            self._entered.set_result(True)
        await self.orchestrator.on_room_sync(self.users)

    async def _on_all_users(self, users: List[dict]):
        self.users = list(users)
        await self.orchestrator.on_roster(self.users)

    def _add_message(self, message: dict):
        self.messages.append(message)
        if self.on_message is not None:
            self.on_message(message)

    def _system_message(self, text: str):
        self._add_message({"author": "System", "text": text, "timestamp": None, "isSystem": True})

    def _on_user_connected(self, user: dict):
        self._system_message(f"{user.get('username') or 'Someone'} joined")

    async def _on_user_disconnected(self, connection_id: str):
        link = await self.orchestrator.on_user_disconnected(connection_id)
        self._system_message(f"{link.remote_username if link else 'Someone'} left")

    async def _on_signal(self, data: dict):
        await self.orchestrator.on_signal(data["fromId"], data.get("payload"))

    def _on_receive_message(self, data: dict):
        self._add_message(ChatMessage.model_validate(data).dump())

    def _on_change_video(self, url: str):
        self.playback.apply_change_video(url)

    def _on_video_state(self, data: dict):
        self.playback.apply_remote_event(VideoStateEvent.model_validate(data))

    async def _on_room_ended(self, data: Any = None):
        logger.info(f"Room {self.room_id} was deleted by its owner")
        self.ended = True
        await self._release()
        if self.on_room_ended is not None:
            self.on_room_ended()

    async def send_message(self, text: str):
        if not text.strip():
            return
        await self.session.emit("send-message", {"roomId": self.room_id, "author": self.username, "text": text})

    async def toggle_mute(self) -> bool:
        if self.local_media is None:
            logger.info("No microphone, staying muted")
            return self.muted
        self.muted = not self.muted
        self.local_media.set_muted(self.muted)
        await self.session.emit("toggle-mute", {"roomId": self.room_id, "isMuted": self.muted})
        return self.muted

    async def delete(self):
        """Ask the server to end the room. Only offered to the owner."""
        if not self.is_owner:
            logger.warning(f"{self.username} is not the owner of room {self.room_id}, not deleting")
            return
        await self.session.emit("delete-room", {"roomId": self.room_id})

    async def leave(self):
        """Leave locally right away; the server is told but not waited for."""
        try:
            await self.session.emit("leave-room", {"roomId": self.room_id})
        finally:
            await self._release()

    async def _release(self):
        self._unbind()
        if self.orchestrator is not None:
            await self.orchestrator.close()
        if self.playback is not None:
            self.playback.guard.cancel()
        if self.local_media is not None:
            self.local_media.stop()
            self.local_media = None
        logger.debug(f"Released media for room {self.room_id}")
