import json
from unittest.mock import AsyncMock

import pytest

from errors import StoreUnavailable
from events import EventRouter


def frame(event, data=None):
    return json.dumps({"event": event, "data": data})


@pytest.fixture
def router(store, registry):
    return EventRouter(store, registry)


@pytest.mark.asyncio
async def test_create_and_join_over_the_channel(router, connect, store):
    alice, alice_ws = connect("c-alice")
    bob, bob_ws = connect("c-bob")

    await router.handle(alice, frame("create-room", {"roomId": "  movie-night ", "username": "alice"}))
    await router.handle(bob, frame("join-room", {"roomId": "movie-night", "username": "bob"}))

    room = await store.get_room("movie-night")
    assert [u.username for u in room.users] == ["alice", "bob"]
    assert bob_ws.names()[0] == "room-sync"
    assert "user-connected" in alice_ws.names()


@pytest.mark.asyncio
async def test_lifecycle_errors_go_back_to_the_caller(router, connect):
    alice, alice_ws = connect("c-alice")
    bob, bob_ws = connect("c-bob")

    await router.handle(bob, frame("join-room", {"roomId": "nowhere", "username": "bob"}))
    assert bob_ws.names() == ["error-room-not-found"]
    assert bob_ws.sent[0]["data"]["error_code"] == "room_not_found"

    await router.handle(alice, frame("create-room", {"roomId": "movie-night", "username": "alice"}))
    bob_ws.clear()
    await router.handle(bob, frame("create-room", {"roomId": "movie-night", "username": "bob"}))
    assert bob_ws.names() == ["error-room-exists"]
    assert "error-room-exists" not in alice_ws.names()


@pytest.mark.asyncio
async def test_malformed_frames_are_rejected_without_closing(router, connect):
    alice, alice_ws = connect("c-alice")

    await router.handle(alice, "not json at all")
    await router.handle(alice, frame("launch-missiles", {}))
    await router.handle(alice, frame("join-room", {"roomId": "   ", "username": "alice"}))
    await router.handle(alice, frame("video-state", {"roomId": "r", "kind": "rewind", "playing": True, "position": 1}))

    assert alice_ws.names() == ["error-invalid-payload"] * 4


@pytest.mark.asyncio
async def test_store_failure_drops_the_event_only(router, connect, store):
    alice, alice_ws = connect("c-alice")
    await router.handle(alice, frame("create-room", {"roomId": "movie-night", "username": "alice"}))
    alice_ws.clear()
    store.update_room = AsyncMock(side_effect=StoreUnavailable("update_room", ConnectionError("down")))

    await router.handle(alice, frame("send-message", {"roomId": "movie-night", "author": "alice", "text": "hi"}))

    assert alice_ws.sent == []
    # Other work on the same connection keeps going
    await router.handle(alice, frame("signal", {"toId": "c-alice", "payload": {"type": "ping"}}))
    assert alice_ws.names() == ["signal"]


@pytest.mark.asyncio
async def test_signal_sender_is_the_calling_connection(router, connect):
    alice, _ = connect("c-alice")
    _, bob_ws = connect("c-bob")

    await router.handle(alice, frame("signal", {"toId": "c-bob", "fromId": "c-spoofed", "payload": {"sdp": "x"}}))

    assert bob_ws.sent == [{"event": "signal", "data": {"fromId": "c-alice", "payload": {"sdp": "x"}}}]


@pytest.mark.asyncio
async def test_full_room_flow(router, connect, store, registry):
    alice, alice_ws = connect("c-alice")
    bob, bob_ws = connect("c-bob")
    await router.handle(alice, frame("create-room", {"roomId": "movie-night", "username": "alice"}))
    await router.handle(bob, frame("join-room", {"roomId": "movie-night", "username": "bob"}))

    await router.handle(alice, frame("change-video", {"roomId": "movie-night", "url": "https://youtu.be/abc"}))
    await router.handle(bob, frame("video-state", {"roomId": "movie-night", "kind": "seek", "playing": False, "position": 30}))
    await router.handle(bob, frame("toggle-mute", {"roomId": "movie-night", "isMuted": False}))
    await router.handle(bob, frame("send-message", {"roomId": "movie-night", "author": "bob", "text": "nice"}))

    room = await store.get_room("movie-night")
    assert room.video_state.url == "https://youtu.be/abc"
    assert (room.video_state.playing, room.video_state.position) == (True, 30.0)
    assert room.find_user("c-bob").is_muted is False
    assert [m.text for m in room.messages] == ["nice"]
    assert [e["data"] for e in bob_ws.events("change-video")] == ["https://youtu.be/abc"]
    assert [e["data"]["kind"] for e in alice_ws.events("video-state")] == ["seek"]

    await router.handle(bob, frame("leave-room", {"roomId": "movie-night"}))
    assert [e["data"] for e in alice_ws.events("user-disconnected")] == ["c-bob"]

    await router.handle(alice, frame("delete-room", {"roomId": "movie-night"}))
    assert len(alice_ws.events("room-ended")) == 1
    assert bob_ws.events("room-ended") == []
    assert await store.get_room("movie-night") is None

    await router.disconnect(alice)
    assert not registry.is_live("c-alice")
