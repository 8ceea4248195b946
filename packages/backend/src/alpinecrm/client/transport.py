"""Transport — the reconnecting, authenticated realtime channel.

Learn: A Session owns two things with different lifetimes:
1. Subscriptions (event type → handlers) — live as long as the Session
2. The underlying WebSocket — replaced on every reconnect

Because handlers hang off the Session, a reconnect re-uses them as-is;
nothing is subscribed twice. Reconnection waits a fixed delay between
attempts and gives up after a bounded number of consecutive failures.
Events sent while disconnected are lost; consumers re-fetch on demand.

Teardown (close) suppresses reconnection, cancels the pending retry
sleep and the receive loop, and drops every handler, so nothing fires
into a cache that has already been disposed.
"""

import asyncio
import inspect
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Protocol

import aiohttp
import structlog

from alpinecrm.config import Settings
from alpinecrm.events.types import DomainEvent, EventType, decode_frame

logger = structlog.get_logger()

AUTH_FAILED_CODE = 4001

Handler = Callable[[DomainEvent], Any]
StateListener = Callable[["SessionState"], None]


class TransportError(Exception):
    """Raised when the realtime channel cannot be opened or is lost."""


class AuthRejectedError(TransportError):
    """The server refused the token. Never retried."""


class SessionState(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    DISCONNECTED = "disconnected"  # gave up, or auth rejected
    CLOSED = "closed"  # torn down on purpose (logout)


class Connection(Protocol):
    """One open channel. receive() returns None once the peer has closed."""

    async def receive(self) -> Optional[str]: ...

    async def close(self) -> None: ...


Connector = Callable[[str, str], Awaitable[Connection]]


# ─── aiohttp WebSocket connection ───────────────────────


class AiohttpConnection:
    """Connection over aiohttp's client WebSocket."""

    def __init__(self, http: aiohttp.ClientSession, ws: aiohttp.ClientWebSocketResponse):
        self._http = http
        self._ws = ws

    async def receive(self) -> Optional[str]:
        while True:
            msg = await self._ws.receive()
            if msg.type == aiohttp.WSMsgType.TEXT:
                return msg.data
            if msg.type == aiohttp.WSMsgType.BINARY:
                return msg.data.decode("utf-8", errors="replace")
            if msg.type in (
                aiohttp.WSMsgType.CLOSE,
                aiohttp.WSMsgType.CLOSING,
                aiohttp.WSMsgType.CLOSED,
                aiohttp.WSMsgType.ERROR,
            ):
                if self._ws.close_code == AUTH_FAILED_CODE:
                    raise AuthRejectedError("Server rejected the token")
                return None

    async def close(self) -> None:
        try:
            await self._ws.close()
        finally:
            await self._http.close()


async def aiohttp_connector(url: str, token: str) -> AiohttpConnection:
    """Open a WebSocket with the bearer token in header and query string."""
    http = aiohttp.ClientSession(headers={"Authorization": f"Bearer {token}"})
    try:
        ws = await http.ws_connect(url, params={"token": token}, heartbeat=30.0)
    except aiohttp.WSServerHandshakeError as e:
        await http.close()
        if e.status in (401, 403):
            raise AuthRejectedError(f"Handshake refused ({e.status})") from e
        raise TransportError(f"Handshake failed ({e.status})") from e
    except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as e:
        await http.close()
        raise TransportError(f"Cannot connect to {url}: {e}") from e
    return AiohttpConnection(http, ws)


# ─── Session ─────────────────────────────────────────────


class Session:
    """One authenticated realtime connection lifecycle.

    Usage:
        session = await transport.connect(token)
        session.on(EventType.DEAL_UPDATED, handler)
        ...
        await transport.disconnect(session)
    """

    def __init__(
        self,
        url: str,
        token: str,
        connector: Connector,
        reconnection_delay: float = 1.0,
        reconnection_attempts: int = 10,
    ):
        self.url = url
        self.token = token
        self.reconnection_delay = reconnection_delay
        self.reconnection_attempts = reconnection_attempts
        self._connector = connector
        self._handlers: dict[EventType, list[Handler]] = {}
        self._state_listeners: list[StateListener] = []
        self._state = SessionState.CONNECTING
        self._connected = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._closing = False
        self.connects = 0  # successful connections, reconnects included

    # ─── Subscriptions ────────────────────────────────────

    def on(self, event_type: EventType, handler: Handler) -> None:
        """Subscribe a handler. Registering the same handler twice is a no-op."""
        if self._closing:
            return
        handlers = self._handlers.setdefault(event_type, [])
        if handler not in handlers:
            handlers.append(handler)

    def off(self, event_type: EventType, handler: Optional[Handler] = None) -> None:
        """Remove one handler, or every handler for the event type."""
        if handler is None:
            self._handlers.pop(event_type, None)
            return
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def handlers(self, event_type: EventType) -> list[Handler]:
        return list(self._handlers.get(event_type, ()))

    def on_state_change(self, listener: StateListener) -> None:
        if listener not in self._state_listeners:
            self._state_listeners.append(listener)

    # ─── State ────────────────────────────────────────────

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is SessionState.CONNECTED

    @property
    def closed(self) -> bool:
        return self._state is SessionState.CLOSED

    def _set_state(self, state: SessionState) -> None:
        if state is self._state:
            return
        self._state = state
        logger.info("transport.state", state=state.value, url=self.url)
        for listener in list(self._state_listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("transport.state_listener_error")

    async def wait_connected(self, timeout: Optional[float] = None) -> bool:
        """Wait until the channel is up. Returns False on timeout."""
        try:
            await asyncio.wait_for(self._connected.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def wait_finished(self) -> None:
        """Wait for the connection loop to end (gave up, rejected or closed)."""
        if self._task is not None:
            await asyncio.shield(self._task)

    # ─── Connection loop ──────────────────────────────────

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run())

    async def _run(self) -> None:
        attempts = 0  # consecutive reconnection attempts since last success
        try:
            while not self._closing:
                try:
                    conn = await self._connector(self.url, self.token)
                except AuthRejectedError as e:
                    logger.warning("transport.auth_rejected", error=str(e))
                    break
                except Exception as e:
                    logger.warning(
                        "transport.connect_failed", error=str(e), attempt=attempts
                    )
                else:
                    attempts = 0
                    try:
                        await self._serve(conn)
                    except AuthRejectedError as e:
                        logger.warning("transport.auth_rejected", error=str(e))
                        break
                    if self._closing:
                        break
                    logger.info("transport.connection_lost", url=self.url)

                if attempts >= self.reconnection_attempts:
                    logger.warning(
                        "transport.gave_up", attempts=self.reconnection_attempts
                    )
                    break
                attempts += 1
                self._set_state(SessionState.RECONNECTING)
                await asyncio.sleep(self.reconnection_delay)
        finally:
            self._connected.clear()
            self._set_state(
                SessionState.CLOSED if self._closing else SessionState.DISCONNECTED
            )

    async def _serve(self, conn: Connection) -> None:
        """Dispatch frames from one open connection until it drops."""
        self.connects += 1
        self._connected.set()
        self._set_state(SessionState.CONNECTED)
        try:
            while True:
                try:
                    text = await conn.receive()
                except AuthRejectedError:
                    raise
                except Exception as e:
                    logger.warning("transport.receive_failed", error=str(e))
                    return
                if text is None:
                    return
                event = decode_frame(text)
                if event is None:
                    logger.debug("transport.frame_ignored", frame=text[:200])
                    continue
                await self._dispatch(event)
                if self._closing:
                    return
        finally:
            self._connected.clear()
            try:
                await conn.close()
            except Exception:
                logger.debug("transport.close_failed", exc_info=True)

    async def _dispatch(self, event: DomainEvent) -> None:
        for handler in self.handlers(event.type):
            if self._closing:
                return
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("transport.handler_error", event=event.type.value)

    # ─── Teardown ─────────────────────────────────────────

    async def close(self) -> None:
        """Tear down: no further reconnection and no further callbacks."""
        self._closing = True
        self._handlers.clear()
        task = self._task
        if task is None:
            self._set_state(SessionState.CLOSED)
            return
        if task is asyncio.current_task():
            # Called from a handler; the loop exits after this dispatch
            return
        if not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._set_state(SessionState.CLOSED)


# ─── Transport ───────────────────────────────────────────


class Transport:
    """Creates and tears down Sessions against one socket URL."""

    def __init__(
        self,
        url: str,
        *,
        reconnection_delay: float = 1.0,
        reconnection_attempts: int = 10,
        connector: Optional[Connector] = None,
    ):
        self.url = url
        self.reconnection_delay = reconnection_delay
        self.reconnection_attempts = reconnection_attempts
        self.connector = connector or aiohttp_connector
        self.session: Optional[Session] = None

    @classmethod
    def from_settings(cls, settings: Settings, connector: Optional[Connector] = None) -> "Transport":
        return cls(
            settings.socket_url,
            reconnection_delay=settings.reconnection_delay,
            reconnection_attempts=settings.reconnection_attempts,
            connector=connector,
        )

    async def connect(self, auth_token: str) -> Session:
        """Open a session for this token (the current one if still open)."""
        if not auth_token:
            raise TransportError("An auth token is required to connect")

        current = self.session
        if current is not None and not current.closed:
            if current.token == auth_token and current.state is not SessionState.DISCONNECTED:
                return current
            await current.close()

        session = Session(
            self.url,
            auth_token,
            self.connector,
            reconnection_delay=self.reconnection_delay,
            reconnection_attempts=self.reconnection_attempts,
        )
        self.session = session
        session.start()
        return session

    async def disconnect(self, session: Optional[Session] = None) -> None:
        session = session or self.session
        if session is None:
            return
        await session.close()
        if session is self.session:
            self.session = None
