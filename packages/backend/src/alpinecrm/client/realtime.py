"""RealtimeClient — one user context's session, router, cache and log.

Learn: Lifecycle mirrors the user's login:
1. login(token) / start()  → save token, connect, attach a fresh router,
                             load the first notifications page
2. query(key)              → read-through the cache via the provider
3. logout()                → dispose router, close session (no reconnect),
                             clear cache and token

Nothing here raises into the host on a realtime failure: the session
just stops invalidating and data is refreshed on explicit reads.
"""

from typing import Any, Optional

import structlog

from alpinecrm.client.cache import CacheKey, QueryCache
from alpinecrm.client.notifications import NotificationStore
from alpinecrm.client.providers import DataProvider, ProviderError, create_provider
from alpinecrm.client.router import Alert, EventRouter
from alpinecrm.client.token_store import TokenStore
from alpinecrm.client.transport import Connector, Session, Transport
from alpinecrm.config import Settings


class RealtimeClient:
    """Wires Transport, EventRouter, QueryCache and NotificationStore."""

    def __init__(
        self,
        settings: Settings,
        *,
        token_store: Optional[TokenStore] = None,
        provider: Optional[DataProvider] = None,
        connector: Optional[Connector] = None,
        alert: Optional[Alert] = None,
    ):
        self.settings = settings
        self.token_store = token_store or TokenStore(settings.token_path)
        self.transport = Transport.from_settings(settings, connector=connector)
        self.cache = QueryCache()
        self.notifications = NotificationStore(limit=settings.notification_limit)
        self.alert = alert
        self.session: Optional[Session] = None
        self.router: Optional[EventRouter] = None
        self._provider = provider
        self._owns_provider = provider is None
        self.log = structlog.get_logger().bind(component="realtime_client")

    @property
    def provider(self) -> DataProvider:
        if self._provider is None:
            self._provider = create_provider(self.settings, self.token_store.load())
        return self._provider

    # ─── Lifecycle ────────────────────────────────────────

    async def login(self, token: str) -> Session:
        self.token_store.save(token)
        if self._owns_provider and self._provider is not None:
            # Token changed: rebuild so requests carry the new bearer
            await self._provider.aclose()
            self._provider = None
        return await self._open(token)

    async def start(self) -> Optional[Session]:
        """Open a session if a token is stored; otherwise do nothing."""
        token = self.token_store.load()
        if not token:
            self.log.info("realtime.no_token")
            return None
        return await self._open(token)

    async def _open(self, token: str) -> Session:
        await self._teardown()
        # Anything in the log once the first page arrives was pushed meanwhile
        self.notifications.load([])
        session = await self.transport.connect(token)
        router = EventRouter(self.cache, self.notifications, alert=self.alert)
        router.attach(session)
        self.session = session
        self.router = router
        await self.refresh_notifications(keep_pushed=True)
        return session

    async def logout(self) -> None:
        await self._teardown()
        self.cache.clear()
        self.notifications.load([])
        self.token_store.clear()
        if self._owns_provider and self._provider is not None:
            await self._provider.aclose()
            self._provider = None
        self.log.info("realtime.logged_out")

    async def _teardown(self) -> None:
        if self.router is not None:
            self.router.dispose()
            self.router = None
        if self.session is not None:
            await self.transport.disconnect(self.session)
            self.session = None

    async def aclose(self) -> None:
        await self._teardown()
        if self._owns_provider and self._provider is not None:
            await self._provider.aclose()
            self._provider = None

    # ─── Reads ────────────────────────────────────────────

    async def query(self, key: CacheKey) -> Any:
        """Return fresh data for a key, re-fetching if it is stale."""
        return await self.cache.fetch(key, self.provider.fetch)

    async def refresh_notifications(self, keep_pushed: bool = False) -> None:
        """Reload the notification log from the provider (non-fatal).

        With keep_pushed, entries already in the log are kept above the page.
        """
        try:
            items = await self.provider.list_notifications(
                limit=self.settings.notification_page_size
            )
        except ProviderError as e:
            self.log.warning("realtime.notifications_unavailable", error=str(e))
            return
        if keep_pushed:
            self.notifications.merge(items)
        else:
            self.notifications.load(items)

    # ─── Notification writes ──────────────────────────────

    async def mark_read(self, notification_id: str) -> bool:
        await self.provider.mark_read(notification_id)
        return self.notifications.mark_read(notification_id)

    async def mark_all_read(self) -> None:
        await self.provider.mark_all_read()
        self.notifications.mark_all_read()
