"""Headless command-line participant: chat, shared playback control and voice."""

import argparse
import asyncio
import sys
import time
from functools import partial
from typing import Optional, Sequence

import aioconsole

from client.media import AiortcPeer, acquire_local_media
from client.room_client import RoomClient
from client.session import ClientSession
from errors import RoomError
from logging_config import get_logger, setup_logging

logger = get_logger(__name__)


class HeadlessPlayer:
    """A player with no picture: it only keeps the clock a real player would."""

    def __init__(self):
        self.url = ""
        self.playing = False
        self._position = 0.0
        self._since = time.monotonic()

    def load(self, url: str):
        self.url = url
        self._position = 0.0
        self._since = time.monotonic()

    def play(self):
        if not self.playing:
            self._position = self.current_time()
            self._since = time.monotonic()
            self.playing = True

    def pause(self):
        if self.playing:
            self._position = self.current_time()
            self.playing = False

    def seek(self, position: float):
        self._position = position
        self._since = time.monotonic()

    def current_time(self) -> float:
        if not self.playing:
            return self._position
        return self._position + (time.monotonic() - self._since)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Join a watch party room from the terminal")
    parser.add_argument("room", help="Room id to join or create")
    parser.add_argument("--name", required=True, help="Display name (as issued by the login service)")
    parser.add_argument("--url", default="ws://localhost:8000/ws", help="WebSocket URL of the room server")
    parser.add_argument("--create", action="store_true", help="Create the room instead of joining it")
    parser.add_argument("--mic", default="default", help="Capture device passed to ffmpeg")
    parser.add_argument("--mic-format", default="pulse", help="ffmpeg input format of the capture device")
    parser.add_argument("--ice-server", action="append", default=[], help="STUN/TURN url, may be repeated")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level to use",
    )
    return parser.parse_args(argv)


def _print_event(message: str):
    print(f"\r{message}", flush=True)


async def _keyboard_loop(room: RoomClient, player: HeadlessPlayer):
    while not room.ended:
        try:
            line = await aioconsole.ainput()
        except EOFError:
            break
        raw_line = line.strip()
        if not raw_line:
            continue
        keyword, _, rest = raw_line.partition(" ")
        keyword = keyword.lower()
        if keyword in {"quit", "exit", "q", "leave"}:
            break
        if keyword == "say":
            await room.send_message(rest)
        elif keyword == "video" and rest:
            await room.playback.change_video(rest.strip())
        elif keyword in {"toggle", "p"}:
            await room.playback.toggle_play()
        elif keyword == "seek":
            try:
                await room.playback.seek(float(rest))
            except ValueError:
                _print_event("Usage: seek <seconds>")
        elif keyword in {"mute", "m"}:
            muted = await room.toggle_mute()
            _print_event("Muted" if muted else "Unmuted")
        elif keyword == "who":
            for user in room.users:
                _print_event(f"  {user['username']}{' (muted)' if user.get('isMuted') else ''}")
        elif keyword == "peers":
            for link in room.orchestrator.peers:
                _print_event(f"  {link.remote_username}: {link.role.value}, {link.state}")
        elif keyword == "where":
            _print_event(f"{player.url or '<no video>'} at {player.current_time():.1f}s")
        elif keyword == "delete":
            await room.delete()
        else:
            _print_event("Commands: say <text>, video <url>, toggle, seek <s>, mute, who, peers, where, delete, quit")


async def main_async(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(log_level=args.log_level)

    session = ClientSession(args.url)
    player = HeadlessPlayer()
    room = RoomClient(
        session,
        args.name,
        player,
        peer_factory=partial(AiortcPeer, ice_servers=args.ice_server or None),
        media_factory=partial(acquire_local_media, args.mic, args.mic_format),
    )
    room.on_room_ended = lambda: _print_event("The room has been deleted by the owner.")
    room.on_message = lambda message: _print_event(f"[{message['author']}] {message['text']}")

    try:
        await session.connect()
        await room.enter(args.room, create=args.create)
    except RoomError as e:
        _print_event(e.message)
        await session.close()
        return 1
    except (OSError, asyncio.TimeoutError) as e:
        _print_event(f"Could not reach room server: {e}")
        await session.close()
        return 1

    if not room.voice_available:
        _print_event("Could not access microphone! Voice chat will not work.")
    _print_event(f"In room {room.room_id} (owner: {room.owner})")

    try:
        await _keyboard_loop(room, player)
    finally:
        if not room.ended:
            await room.leave()
        await session.close()
    return 0


def main() -> int:
    return asyncio.run(main_async(sys.argv[1:]))


if __name__ == "__main__":
    raise SystemExit(main())
