"""
Shared fixtures: an in-process Redis, a connection registry with recording
sockets, and a clean slate of fake peer connections per test.
"""

import fakeredis
import pytest
import pytest_asyncio

from backend import RedisBackend
from connections import Connection, ConnectionRegistry
from fakes import FakePeer, FakeWebSocket


@pytest_asyncio.fixture
async def redis_client():
    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
def store(redis_client):
    return RedisBackend(redis_client=redis_client)


@pytest.fixture
def registry():
    return ConnectionRegistry()


@pytest.fixture
def connect(registry):
    def _connect(connection_id: str):
        websocket = FakeWebSocket()
        registry.register(connection_id, websocket)
        return Connection(connection_id=connection_id, registry=registry), websocket

    return _connect


@pytest.fixture(autouse=True)
def reset_fake_peers():
    FakePeer.instances.clear()
    yield
    FakePeer.instances.clear()
