"""WebSocket endpoint — real-time event delivery to client sessions.

Learn: Each client connects to /ws?token=JWT (or sends the JWT as an
Authorization: Bearer header). The handler:
1. Authenticates once, at connect time
2. Subscribes to the user's channel and the broadcast channel
3. Forwards every Redis message to the WebSocket client as-is
4. Handles client disconnection gracefully

This is a long-lived connection — one per client session.
"""

import asyncio
import json
from typing import Optional

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from alpinecrm.auth.jwt import TokenError, verify_token
from alpinecrm.config import settings
from alpinecrm.realtime.pubsub import BROADCAST_CHANNEL, get_redis, user_channel

logger = structlog.get_logger()
router = APIRouter()

AUTH_FAILED_CODE = 4001


def _extract_token(websocket: WebSocket) -> Optional[str]:
    token = websocket.query_params.get("token")
    if token:
        return token
    header = websocket.headers.get("authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return None


@router.websocket("/ws")
async def events_websocket(websocket: WebSocket):
    """WebSocket endpoint for real-time domain events.

    Learn: Two concurrent tasks run:
    1. Redis listener — reads from pub/sub, sends to WebSocket
    2. Client listener — answers pings, detects disconnects

    When either side finishes, the other is cancelled.

    In development mode an unauthenticated connection is allowed, but it
    only receives broadcast events.
    """
    # ── Authentication ──────────────────────────────────────
    token = _extract_token(websocket)

    if not token and settings.environment != "development":
        await websocket.close(code=AUTH_FAILED_CODE, reason="Authentication required")
        return

    user_id = None
    if token:
        try:
            claims = verify_token(token)
        except TokenError:
            await websocket.close(code=AUTH_FAILED_CODE, reason="Invalid or expired token")
            return
        user_id = claims.get("sub")

    log = logger.bind(user_id=user_id)
    try:
        r = get_redis()
    except RuntimeError:
        # No event source: keep the socket up (pings only) so clients
        # do not reconnect in a loop
        r = None

    # ── Connection accepted ─────────────────────────────────
    await websocket.accept()
    log.info("socket.connected", events=r is not None)

    channels = [BROADCAST_CHANNEL]
    if user_id:
        channels.append(user_channel(user_id))

    pubsub = None
    if r is not None:
        pubsub = r.pubsub()
        await pubsub.subscribe(*channels)

    async def redis_listener():
        """Forward Redis messages to the WebSocket client."""
        try:
            if pubsub is None:
                await asyncio.Event().wait()
            async for message in pubsub.listen():
                if message["type"] == "message":
                    await websocket.send_text(message["data"])
        except asyncio.CancelledError:
            pass

    async def client_listener():
        """Handle incoming frames (keep-alive pings only)."""
        try:
            while True:
                data = await websocket.receive_text()
                try:
                    msg = json.loads(data)
                except json.JSONDecodeError:
                    continue
                if isinstance(msg, dict) and msg.get("event") == "ping":
                    await websocket.send_text(json.dumps({"event": "pong"}))
        except (WebSocketDisconnect, asyncio.CancelledError):
            pass

    redis_task = asyncio.create_task(redis_listener())
    client_task = asyncio.create_task(client_listener())

    try:
        done, pending = await asyncio.wait(
            [redis_task, client_task],
            return_when=asyncio.FIRST_COMPLETED,
        )
        for task in pending:
            task.cancel()
    finally:
        if pubsub is not None:
            await pubsub.unsubscribe(*channels)
            await pubsub.aclose()
        if websocket.client_state == WebSocketState.CONNECTED:
            await websocket.close()
        log.info("socket.disconnected")
