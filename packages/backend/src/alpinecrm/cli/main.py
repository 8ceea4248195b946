"""AlpineCRM CLI — log in, watch the realtime stream, manage notifications.

Usage:
    alpinecrm login --token JWT                 # Store the bearer token
    alpinecrm token USER_ID                     # Mint a dev token (shared secret)
    alpinecrm listen                            # Print events + notification alerts
    alpinecrm notifications [--unread]          # List recent notifications
    alpinecrm read ID | --all                   # Mark notifications read
    alpinecrm emit deal:updated --data '{...}'  # Publish an event through Redis
    alpinecrm serve                             # Run the realtime server
    alpinecrm logout                            # Forget the token
"""

from __future__ import annotations

import asyncio
import json
import sys
from typing import Optional

import click

from alpinecrm import __version__
from alpinecrm.client.notifications import Notification
from alpinecrm.client.providers import ProviderError, create_provider
from alpinecrm.client.realtime import RealtimeClient
from alpinecrm.client.token_store import TokenStore
from alpinecrm.client.transport import SessionState
from alpinecrm.config import settings
from alpinecrm.events.types import DomainEvent, EventType

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _token_store() -> TokenStore:
    return TokenStore(settings.token_path)


def _require_token() -> str:
    token = _token_store().load()
    if not token:
        click.secho("Not logged in. Run: alpinecrm login --token JWT", fg="red", err=True)
        sys.exit(1)
    return token


def _state_color(state: SessionState) -> str:
    colors = {
        SessionState.CONNECTING: "white",
        SessionState.CONNECTED: "green",
        SessionState.RECONNECTING: "yellow",
        SessionState.DISCONNECTED: "red",
        SessionState.CLOSED: "white",
    }
    return colors.get(state, "white")


def _print_notification(n: Notification) -> None:
    marker = " " if n.read else click.style("●", fg="cyan")
    when = n.created_at.strftime("%Y-%m-%d %H:%M")
    click.echo(f"{marker} {n.id:<14} {when}  {click.style(n.title, bold=True)}")
    if n.message:
        click.echo(f"  {n.message}")


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="alpinecrm")
def main():
    """AlpineCRM — realtime sync client and event source."""


@main.command()
@click.option("--token", required=True, help="Bearer token issued by the CRM API")
def login(token: str):
    """Store the token; the next `listen` opens a session with it."""
    _token_store().save(token)
    click.secho("Token saved.", fg="green")


@main.command()
def logout():
    """Forget the stored token."""
    _token_store().clear()
    click.echo("Logged out.")


@main.command()
@click.argument("user_id")
@click.option("--email", help="Email claim")
@click.option("--role", default="admin", show_default=True, help="Role claim")
@click.option("--save", is_flag=True, help="Also store it as the current token")
def token(user_id: str, email: Optional[str], role: str, save: bool):
    """Mint a development token signed with ALPINECRM_JWT_SECRET."""
    from alpinecrm.auth.jwt import create_access_token

    jwt_token = create_access_token(user_id, email=email, role=role)
    if save:
        _token_store().save(jwt_token)
    click.echo(jwt_token)


# ---------------------------------------------------------------------------
# alpinecrm listen
# ---------------------------------------------------------------------------


@main.command()
def listen():
    """Connect and print every event until interrupted (Ctrl-C)."""
    _require_token()
    try:
        asyncio.run(_listen_impl())
    except KeyboardInterrupt:
        click.echo("\nStopped.")


async def _listen_impl():
    def alert(n: Notification):
        click.secho(f"🔔 {n.title}", fg="cyan", bold=True)
        if n.message:
            click.echo(f"   {n.message}")

    def echo_event(event: DomainEvent):
        click.echo(f"{click.style(event.type.value, fg='blue')} {json.dumps(event.payload, default=str)[:200]}")

    client = RealtimeClient(settings, alert=alert)
    try:
        session = await client.start()
        if session is None:
            return
        session.on_state_change(
            lambda state: click.secho(f"[{state.value}]", fg=_state_color(state), err=True)
        )
        for event_type in EventType:
            session.on(event_type, echo_event)

        click.echo(f"Unread notifications: {client.notifications.unread_count}")
        await session.wait_finished()
        if session.state is SessionState.DISCONNECTED:
            click.secho("Connection lost; gave up reconnecting.", fg="red", err=True)
            sys.exit(1)
    finally:
        await client.aclose()


# ---------------------------------------------------------------------------
# alpinecrm notifications / read
# ---------------------------------------------------------------------------


@main.command()
@click.option("--limit", "-n", default=20, show_default=True)
@click.option("--unread", is_flag=True, help="Only unread notifications")
def notifications(limit: int, unread: bool):
    """List recent notifications."""
    asyncio.run(_notifications_impl(limit, unread))


async def _notifications_impl(limit: int, unread: bool):
    provider = create_provider(settings, _token_store().load())
    try:
        items = await provider.list_notifications(limit=limit)
        count = await provider.unread_count()
    except ProviderError as e:
        click.secho(f"Error: {e}", fg="red", err=True)
        sys.exit(1)
    finally:
        await provider.aclose()

    click.secho(f"{count} unread", bold=True)
    for n in items:
        if unread and n.read:
            continue
        _print_notification(n)


@main.command()
@click.argument("notification_id", required=False)
@click.option("--all", "all_", is_flag=True, help="Mark every notification read")
def read(notification_id: Optional[str], all_: bool):
    """Mark one notification (or all) as read."""
    if not notification_id and not all_:
        raise click.UsageError("Give a NOTIFICATION_ID or --all")
    asyncio.run(_read_impl(notification_id, all_))


async def _read_impl(notification_id: Optional[str], all_: bool):
    provider = create_provider(settings, _token_store().load())
    try:
        if all_:
            await provider.mark_all_read()
        else:
            await provider.mark_read(notification_id)
    except ProviderError as e:
        click.secho(f"Error: {e}", fg="red", err=True)
        sys.exit(1)
    finally:
        await provider.aclose()
    click.secho("Marked read.", fg="green")


# ---------------------------------------------------------------------------
# Server side: emit / serve
# ---------------------------------------------------------------------------


@main.command()
@click.argument("event_name")
@click.option("--user-id", "-u", help="Deliver to one user (default: broadcast)")
@click.option("--data", "-d", default="{}", help="JSON payload")
def emit(event_name: str, user_id: Optional[str], data: str):
    """Publish EVENT_NAME (e.g. deal:stageChanged) through Redis."""
    event_type = EventType.lookup(event_name)
    if event_type is None:
        names = ", ".join(t.value for t in EventType)
        raise click.BadParameter(f"unknown event; expected one of: {names}")
    try:
        payload = json.loads(data)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"--data is not valid JSON: {e}")
    if not isinstance(payload, dict):
        raise click.BadParameter("--data must be a JSON object")

    receivers = asyncio.run(_emit_impl(DomainEvent(type=event_type, payload=payload), user_id))
    click.echo(f"Published {event_type.value} to {receivers} subscriber(s)")


async def _emit_impl(event: DomainEvent, user_id: Optional[str]) -> int:
    from alpinecrm.realtime.pubsub import close_redis, init_redis, publish_event

    await init_redis()
    try:
        return await publish_event(event, user_id=user_id)
    finally:
        await close_redis()


@main.command()
@click.option("--host", default=settings.host, show_default=True)
@click.option("--port", default=settings.port, show_default=True)
@click.option("--reload", is_flag=True)
def serve(host: str, port: int, reload: bool):
    """Run the realtime server (uvicorn)."""
    import uvicorn

    uvicorn.run("alpinecrm.main:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    main()
