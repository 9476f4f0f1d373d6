import asyncio

import pytest

from client.player import EchoGuard
from client.room_client import ROOM_EVENTS, RoomClient
from errors import CaptureUnavailable, RoomAlreadyExists, RoomNotFound
from fakes import FakePeer, FakeSession


class FakeMedia:
    def __init__(self):
        self.muted = False
        self.stopped = False

    def set_muted(self, muted):
        self.muted = muted

    def stop(self):
        self.stopped = True


class NullPlayer:
    def load(self, url):
        pass

    def play(self):
        pass

    def pause(self):
        pass

    def seek(self, position):
        pass

    def current_time(self):
        return 0.0


def snapshot(owner="alice", users=None, messages=None):
    return {
        "roomId": "movie-night",
        "owner": owner,
        "users": users or [],
        "messages": messages or [],
        "videoState": {"url": "", "playing": False, "position": 0.0, "updatedAt": "2026-01-01T00:00:00Z"},
    }


def user(connection_id, username, is_muted=True):
    return {"connectionId": connection_id, "username": username, "isMuted": is_muted}


def make_client(session, username="bob", media=None, join_timeout=1.0):
    async def media_factory():
        if media is None:
            raise CaptureUnavailable(PermissionError("microphone denied"))
        return media

    return RoomClient(
        session,
        username,
        NullPlayer(),
        FakePeer,
        media_factory,
        join_timeout=join_timeout,
        guard=EchoGuard(window=0.01),
    )


async def until_emitted(session, event):
    for _ in range(100):
        if session.emitted_events(event):
            return session.emitted_events(event)[-1]
        await asyncio.sleep(0)
    raise AssertionError(f"{event} was never emitted")


async def entered(client, session, room_id="movie-night", create=False, data=None):
    task = asyncio.create_task(client.enter(room_id, create=create))
    await until_emitted(session, "create-room" if create else "join-room")
    await session.fire("room-sync", data or snapshot())
    await task


@pytest.mark.asyncio
async def test_join_applies_snapshot_and_initiates_to_members():
    session = FakeSession("c-bob")
    media = FakeMedia()
    client = make_client(session, media=media)
    members = [user("c-alice", "alice"), user("c-bob", "bob")]
    history = [{"author": "alice", "text": "hi", "timestamp": "2026-01-01T00:00:00Z"}]

    await entered(client, session, data=snapshot(users=members, messages=history))

    assert session.emitted_events("join-room") == [{"roomId": "movie-night", "username": "bob"}]
    assert client.owner == "alice"
    assert client.is_owner is False
    assert client.messages == history
    assert client.voice_available is True
    assert media.muted is True
    assert client.orchestrator.peers.ids() == ["c-alice"]
    assert [data["toId"] for data in session.emitted_events("signal")] == ["c-alice"]


@pytest.mark.asyncio
async def test_denied_microphone_still_joins_muted():
    session = FakeSession("c-bob")
    client = make_client(session, media=None)

    await entered(client, session, data=snapshot(users=[user("c-bob", "bob")]))

    assert client.voice_available is False
    assert client.muted is True
    assert await client.toggle_mute() is True
    assert session.emitted_events("toggle-mute") == []


@pytest.mark.asyncio
async def test_missing_room_raises_and_releases_media():
    session = FakeSession("c-bob")
    media = FakeMedia()
    client = make_client(session, media=media)

    task = asyncio.create_task(client.enter("nowhere"))
    await until_emitted(session, "join-room")
    await session.fire("error-room-not-found", None)

    with pytest.raises(RoomNotFound):
        await task
    assert media.stopped is True
    assert set(session.handlers) & set(ROOM_EVENTS) == set()


@pytest.mark.asyncio
async def test_existing_room_rejects_create():
    session = FakeSession("c-bob")
    client = make_client(session, media=FakeMedia())

    task = asyncio.create_task(client.enter("movie-night", create=True))
    await until_emitted(session, "create-room")
    await session.fire("error-room-exists", None)

    with pytest.raises(RoomAlreadyExists):
        await task


@pytest.mark.asyncio
async def test_join_times_out_without_snapshot():
    session = FakeSession("c-bob")
    media = FakeMedia()
    client = make_client(session, media=media, join_timeout=0.05)

    with pytest.raises(asyncio.TimeoutError):
        await client.enter("movie-night")
    assert media.stopped is True


@pytest.mark.asyncio
async def test_room_events_update_chat_and_peers():
    session = FakeSession("c-bob")
    client = make_client(session, media=FakeMedia())
    seen = []
    client.on_message = seen.append
    await entered(client, session, data=snapshot(users=[user("c-alice", "alice"), user("c-bob", "bob")]))

    await session.fire("user-connected", user("c-carol", "carol"))
    await session.fire("receive-message", {"author": "carol", "text": "hey", "timestamp": "2026-01-01T00:00:05Z"})
    await session.fire("user-disconnected", "c-alice")

    assert [m["text"] for m in seen] == ["carol joined", "hey", "alice left"]
    assert seen[0]["isSystem"] is True
    assert "c-alice" not in client.orchestrator.peers


@pytest.mark.asyncio
async def test_toggle_mute_is_announced():
    session = FakeSession("c-bob")
    media = FakeMedia()
    client = make_client(session, media=media)
    await entered(client, session)

    assert await client.toggle_mute() is False
    assert media.muted is False
    assert session.emitted_events("toggle-mute") == [{"roomId": "movie-night", "isMuted": False}]


@pytest.mark.asyncio
async def test_delete_is_only_sent_by_the_owner():
    session = FakeSession("c-bob")
    client = make_client(session, username="bob", media=FakeMedia())
    await entered(client, session, data=snapshot(owner="alice"))

    await client.delete()
    assert session.emitted_events("delete-room") == []

    client.owner = "bob"
    await client.delete()
    assert session.emitted_events("delete-room") == [{"roomId": "movie-night"}]


@pytest.mark.asyncio
async def test_leave_releases_everything():
    session = FakeSession("c-bob")
    media = FakeMedia()
    client = make_client(session, media=media)
    await entered(client, session, data=snapshot(users=[user("c-alice", "alice"), user("c-bob", "bob")]))

    await client.leave()

    assert session.emitted_events("leave-room") == [{"roomId": "movie-night"}]
    assert media.stopped is True
    assert len(client.orchestrator.peers) == 0
    assert all(peer.closed for peer in FakePeer.instances)


@pytest.mark.asyncio
async def test_room_ended_tears_down_and_notifies():
    session = FakeSession("c-bob")
    media = FakeMedia()
    client = make_client(session, media=media)
    ended = []
    client.on_room_ended = lambda: ended.append(True)
    await entered(client, session, data=snapshot(users=[user("c-alice", "alice"), user("c-bob", "bob")]))

    await session.fire("room-ended", None)

    assert client.ended is True
    assert ended == [True]
    assert media.stopped is True
    assert "room-sync" not in session.handlers


class FailingLeaveSession(FakeSession):
    async def emit(self, event, data=None):
        if event == "leave-room":
            raise RuntimeError("transport gone")
        await super().emit(event, data)


@pytest.mark.asyncio
async def test_leave_releases_locally_even_if_notify_fails():
    session = FailingLeaveSession("c-bob")
    media = FakeMedia()
    client = make_client(session, media=media)
    await entered(client, session, data=snapshot(users=[user("c-alice", "alice"), user("c-bob", "bob")]))

    with pytest.raises(RuntimeError):
        await client.leave()

    assert media.stopped is True
    assert len(client.orchestrator.peers) == 0
    assert all(peer.closed for peer in FakePeer.instances)
    assert set(session.handlers) & set(ROOM_EVENTS) == set()
