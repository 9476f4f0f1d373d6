import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from client.player import EchoGuard, PlaybackController
from fakes import FakeSession
from schemas.rooms import PlaybackState, VideoStateEvent


class RecordingPlayer:
    def __init__(self):
        self.calls = []
        self.time = 0.0

    def load(self, url):
        self.calls.append(("load", url))

    def play(self):
        self.calls.append(("play",))

    def pause(self):
        self.calls.append(("pause",))

    def seek(self, position):
        self.time = position
        self.calls.append(("seek", position))

    def current_time(self):
        return self.time


@pytest.fixture
def controller():
    session = FakeSession("me")
    return PlaybackController(session, "movie-night", RecordingPlayer(), EchoGuard(window=0.05))


@pytest.mark.asyncio
async def test_echo_guard_clears_after_window():
    guard = EchoGuard(window=0.05)
    assert guard.active is False

    guard.arm()
    assert guard.active is True

    await asyncio.sleep(0.1)
    assert guard.active is False


@pytest.mark.asyncio
async def test_rearming_extends_the_window():
    guard = EchoGuard(window=0.1)
    guard.arm()
    await asyncio.sleep(0.06)
    guard.arm()
    await asyncio.sleep(0.06)

    assert guard.active is True
    await asyncio.sleep(0.1)
    assert guard.active is False


@pytest.mark.asyncio
async def test_join_snapshot_seeks_to_live_position(controller):
    now = datetime.now(timezone.utc)
    state = PlaybackState(url="https://youtu.be/abc", playing=True, position=10.0, updated_at=now - timedelta(seconds=5))

    controller.apply_sync(state, now=now)

    player = controller.player
    assert player.calls[0] == ("load", "https://youtu.be/abc")
    assert player.calls[1][0] == "seek"
    assert player.calls[1][1] == pytest.approx(15.0)
    assert player.calls[-1] == ("play",)


@pytest.mark.asyncio
async def test_change_video_restarts_from_zero(controller):
    controller.apply_change_video("https://youtu.be/new")

    assert controller.player.calls == [("load", "https://youtu.be/new"), ("seek", 0.0), ("play",)]
    assert controller.url == "https://youtu.be/new"


@pytest.mark.asyncio
async def test_remote_event_is_applied_verbatim(controller):
    controller.apply_remote_event(VideoStateEvent(kind="seek", playing=True, position=95.0))
    controller.apply_remote_event(VideoStateEvent(kind="playpause", playing=False, position=97.0))

    assert controller.player.calls == [("seek", 95.0), ("play",), ("pause",)]


@pytest.mark.asyncio
async def test_local_echo_of_remote_event_is_suppressed(controller):
    controller.apply_remote_event(VideoStateEvent(kind="playpause", playing=False, position=20.0))

    # The player reports the pause we just applied, then the user presses play
    assert await controller.on_player_state_change(False) is False
    assert await controller.toggle_play() is False
    assert controller.session.emitted_events("video-state") == []

    await asyncio.sleep(0.1)
    controller.player.time = 21.0
    assert await controller.toggle_play() is True
    assert controller.session.emitted_events("video-state") == [
        {"roomId": "movie-night", "kind": "playpause", "playing": False, "position": 21.0}
    ]


@pytest.mark.asyncio
async def test_local_actions_are_emitted(controller):
    await controller.change_video("https://youtu.be/mine")
    assert await controller.seek(33.0) is True
    assert await controller.on_player_state_change(False) is True

    session = controller.session
    assert session.emitted_events("change-video") == [{"roomId": "movie-night", "url": "https://youtu.be/mine"}]
    assert [(e["kind"], e["playing"], e["position"]) for e in session.emitted_events("video-state")] == [
        ("seek", True, 33.0),
        ("playpause", False, 33.0),
    ]
