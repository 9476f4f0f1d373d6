"""
Local player synchronization.

Applying a remote event makes the local player fire its own state-change
callbacks a moment later. `EchoGuard` drops those local events for a short
window so they are not sent back to the room.
"""

import asyncio
from datetime import datetime
from typing import Optional, Protocol

from constants import ECHO_GUARD_SECONDS
from schemas.rooms import PlaybackState, VideoStateEvent
from logging_config import get_logger

logger = get_logger(__name__)


class VideoPlayer(Protocol):
    def load(self, url: str) -> None: ...

    def play(self) -> None: ...

    def pause(self) -> None: ...

    def seek(self, position: float) -> None: ...

    def current_time(self) -> float: ...


class EchoGuard:
    """Timer-reset flag. Not a lock: nothing waits on it."""

    def __init__(self, window: float = ECHO_GUARD_SECONDS):
        self.window = window
        self._active = False
        self._handle: Optional[asyncio.TimerHandle] = None

    @property
    def active(self) -> bool:
        return self._active

    def arm(self):
        self._active = True
        if self._handle is not None:
            self._handle.cancel()
        self._handle = asyncio.get_running_loop().call_later(self.window, self._clear)

    def _clear(self):
        self._active = False
        self._handle = None

    def cancel(self):
        if self._handle is not None:
            self._handle.cancel()
        self._clear()


class PlaybackController:
    def __init__(self, session, room_id: str, player: VideoPlayer, guard: Optional[EchoGuard] = None):
        self.session = session
        self.room_id = room_id
        self.player = player
        self.guard = guard or EchoGuard()
        self.url = ""
        self.playing = False

    # ---- remote -> local ----

    def apply_sync(self, state: PlaybackState, now: Optional[datetime] = None):
        """Catch up with a freshly received room state (join snapshot)."""
        self.guard.arm()
        if state.url:
            self.url = state.url
            self.player.load(state.url)
        position = state.live_position(now)
        if position:
            self.player.seek(position)
        self._set_playing(state.playing)
        logger.debug(f"Synced player to {state.url or '<no video>'} at {position:.2f}s playing={state.playing}")

    def apply_change_video(self, url: str):
        self.guard.arm()
        self.url = url
        self.player.load(url)
        self.player.seek(0.0)
        self._set_playing(True)
        logger.info(f"Room switched to {url}")

    def apply_remote_event(self, event: VideoStateEvent):
        self.guard.arm()
        if event.kind == "seek":
            self.player.seek(event.position)
        self._set_playing(event.playing)
        logger.debug(f"Applied remote {event.kind}: playing={event.playing} position={event.position:.2f}")

    def _set_playing(self, playing: bool):
        self.playing = playing
        if playing:
            self.player.play()
        else:
            self.player.pause()

    # ---- local -> remote ----

    async def _emit_state(self, kind: str, playing: bool, position: float) -> bool:
        if self.guard.active:
            logger.debug(f"Suppressed local {kind} echo")
            return False
        await self.session.emit(
            "video-state",
            {"roomId": self.room_id, "kind": kind, "playing": playing, "position": position},
        )
        return True

    async def change_video(self, url: str):
        self.url = url
        self.player.load(url)
        self.player.seek(0.0)
        self._set_playing(True)
        await self.session.emit("change-video", {"roomId": self.room_id, "url": url})

    async def toggle_play(self) -> bool:
        playing = not self.playing
        self._set_playing(playing)
        return await self._emit_state("playpause", playing, self.player.current_time())

    async def seek(self, position: float) -> bool:
        self.player.seek(position)
        self._set_playing(True)
        return await self._emit_state("seek", True, position)

    async def on_player_state_change(self, playing: bool) -> bool:
        """Callback from the player itself (user pressed play/pause in its own UI)."""
        if self.guard.active or playing == self.playing:
            return False
        self.playing = playing
        return await self._emit_state("playpause", playing, self.player.current_time())
