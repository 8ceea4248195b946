"""aiohttp connector against a real server — handshake, close codes, frames.

Learn: The app runs under uvicorn on an ephemeral port, so the production
connector goes through a real WebSocket handshake. Redis is still a fake.
"""

import asyncio
from contextlib import asynccontextmanager

import pytest
import uvicorn
from fastapi import FastAPI, WebSocket

from alpinecrm.auth.jwt import create_access_token
from alpinecrm.client.transport import SessionState, Transport, aiohttp_connector
from alpinecrm.events.types import DomainEvent, EventType, encode_frame
from alpinecrm.main import app
from alpinecrm.realtime import websocket

from conftest import FakeRedis, eventually


@asynccontextmanager
async def running(asgi_app):
    """Serve an ASGI app on 127.0.0.1 and yield its /ws URL."""
    config = uvicorn.Config(
        asgi_app, host="127.0.0.1", port=0, lifespan="off", log_level="warning"
    )
    server = uvicorn.Server(config)
    task = asyncio.create_task(server.serve())
    await eventually(lambda: server.started, timeout=5)
    port = server.servers[0].sockets[0].getsockname()[1]
    try:
        yield f"ws://127.0.0.1:{port}/ws"
    finally:
        server.should_exit = True
        await asyncio.wait_for(task, timeout=5)


def _transport(url, calls):
    async def connector(url, token):
        calls.append(token)
        return await aiohttp_connector(url, token)

    return Transport(url, reconnection_delay=0, reconnection_attempts=3, connector=connector)


@pytest.mark.asyncio
async def test_forged_token_is_not_retried(monkeypatch):
    monkeypatch.setattr(websocket, "get_redis", lambda: FakeRedis())
    calls = []

    async with running(app) as url:
        session = await _transport(url, calls).connect("forged")
        await asyncio.wait_for(session.wait_finished(), timeout=5)

    assert session.state is SessionState.DISCONNECTED
    assert calls == ["forged"]


@pytest.mark.asyncio
async def test_valid_token_receives_published_frame(monkeypatch):
    frame = encode_frame(DomainEvent(type=EventType.TASK_COMPLETED, payload={"id": "t-1"}))
    monkeypatch.setattr(websocket, "get_redis", lambda: FakeRedis(messages=[frame]))
    calls = []
    received = []

    async with running(app) as url:
        transport = _transport(url, calls)
        session = await transport.connect(create_access_token("user-42"))
        session.on(EventType.TASK_COMPLETED, received.append)

        await eventually(lambda: received, timeout=5)
        assert session.connected
        await transport.disconnect(session)

    assert [e.payload for e in received] == [{"id": "t-1"}]
    assert session.state is SessionState.CLOSED
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_binary_frame_then_auth_close_code():
    frame = encode_frame(DomainEvent(type=EventType.DEAL_UPDATED, payload={"id": "d-1"}))
    server_app = FastAPI()

    @server_app.websocket("/ws")
    async def revoke_after_one_frame(ws: WebSocket):
        await ws.accept()
        await ws.send_bytes(frame.encode())
        await ws.close(code=4001)

    calls = []
    received = []

    async with running(server_app) as url:
        session = await _transport(url, calls).connect("tok")
        session.on(EventType.DEAL_UPDATED, received.append)
        await asyncio.wait_for(session.wait_finished(), timeout=5)

    assert [e.payload for e in received] == [{"id": "d-1"}]
    assert session.state is SessionState.DISCONNECTED
    assert calls == ["tok"]
