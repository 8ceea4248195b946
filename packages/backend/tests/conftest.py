"""Test fixtures — fake realtime channels, isolated settings, ASGI client.

Learn: The Transport takes a connector (url, token) → Connection, so tests
drive it with in-memory FakeConnections instead of a real WebSocket:

    conn = connector.current
    await conn.send_event(EventType.DEAL_UPDATED)   # returns once dispatched
    await conn.drop()                               # simulate a network drop

send_event() waits on the queue's join(): FakeConnection.receive() only
marks the previous frame done when the session asks for the next one,
which is after the previous frame's handlers have all run.
"""

import asyncio
from typing import Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from alpinecrm.client.transport import AuthRejectedError, TransportError
from alpinecrm.config import Settings
from alpinecrm.events.types import DomainEvent, EventType, encode_frame
from alpinecrm.main import app


class FakePubSub:
    def __init__(self, messages):
        self.messages = messages
        self.channels = []
        self.unsubscribed = []
        self.closed = False

    async def subscribe(self, *channels):
        self.channels.extend(channels)

    async def listen(self):
        for data in self.messages:
            yield {"type": "message", "data": data}
        await asyncio.Event().wait()  # stay subscribed until cancelled

    async def unsubscribe(self, *channels):
        self.unsubscribed.extend(channels)

    async def aclose(self):
        self.closed = True


class FakeRedis:
    """Stands in for redis.asyncio.Redis on the publish and subscribe paths."""

    def __init__(self, messages=()):
        self.published = []
        self.pubsubs = []
        self.messages = list(messages)

    async def publish(self, channel, payload):
        self.published.append((channel, payload))
        return 1

    def pubsub(self):
        ps = FakePubSub(self.messages)
        self.pubsubs.append(ps)
        return ps


class FakeConnection:
    def __init__(self):
        self.queue: asyncio.Queue = asyncio.Queue()
        self.closed = False
        self._pending = False

    async def receive(self) -> Optional[str]:
        if self._pending:
            self.queue.task_done()
            self._pending = False
        item = await self.queue.get()
        self._pending = True
        if isinstance(item, Exception):
            raise item
        return item

    async def send_raw(self, text: str) -> None:
        await self.queue.put(text)
        await asyncio.wait_for(self.queue.join(), timeout=2)

    async def send_event(self, event_type: EventType, payload: Optional[dict] = None) -> None:
        await self.send_raw(encode_frame(DomainEvent(type=event_type, payload=payload or {})))

    async def drop(self) -> None:
        """Peer closes the socket."""
        await self.queue.put(None)

    async def fail(self, exc: Exception) -> None:
        await self.queue.put(exc)

    async def close(self) -> None:
        self.closed = True


class FakeConnector:
    """Connector that hands out FakeConnections, or fails on demand."""

    def __init__(self):
        self.connections: list[FakeConnection] = []
        self.calls = 0
        self.tokens: list[str] = []
        self.failures = 0  # next N connects raise TransportError
        self.reject = False  # every connect raises AuthRejectedError

    async def __call__(self, url: str, token: str) -> FakeConnection:
        self.calls += 1
        self.tokens.append(token)
        if self.reject:
            raise AuthRejectedError("bad token")
        if self.failures > 0:
            self.failures -= 1
            raise TransportError("connection refused")
        conn = FakeConnection()
        self.connections.append(conn)
        return conn

    @property
    def current(self) -> FakeConnection:
        return self.connections[-1]


async def eventually(predicate, timeout: float = 2.0) -> None:
    """Poll until predicate() is true (the session loop runs as a task)."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@pytest.fixture()
def connector():
    return FakeConnector()


@pytest.fixture()
def test_settings(tmp_path):
    return Settings(
        token_path=tmp_path / "token.json",
        data_provider="demo",
        socket_url="ws://test/ws",
        reconnection_delay=0,
        reconnection_attempts=3,
    )


@pytest_asyncio.fixture()
async def client():
    """HTTP client against the app (no lifespan → Redis not initialized)."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
