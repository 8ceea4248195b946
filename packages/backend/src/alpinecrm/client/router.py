"""Event router — domain events → cache invalidations.

Learn: The whole policy is the INVALIDATIONS table below. Each event marks
whole query kinds stale (every filter/page of "deals", not just the one
deal that changed); consumers re-fetch on their next read.

notification:* events are the exception: they update the notification
log directly instead of invalidating a query.

One router exists per session. attach() subscribes it to every event type
on the session; dispose() detaches it so a torn-down cache is never
touched again.
"""

from typing import Callable, Optional

import structlog
from pydantic import ValidationError

from alpinecrm.client.cache import (
    ACTIVITIES,
    CONTACTS,
    DASHBOARD,
    DEALS,
    TASKS,
    TICKETS,
    QueryCache,
)
from alpinecrm.client.notifications import Notification, NotificationStore
from alpinecrm.client.transport import Session
from alpinecrm.events.types import DomainEvent, EventType

logger = structlog.get_logger()

Alert = Callable[[Notification], None]

INVALIDATIONS: dict[EventType, tuple[str, ...]] = {
    EventType.CONTACT_CREATED: (CONTACTS, DASHBOARD),
    EventType.CONTACT_UPDATED: (CONTACTS,),
    EventType.CONTACT_DELETED: (CONTACTS, DASHBOARD),
    EventType.DEAL_CREATED: (DEALS, DASHBOARD),
    EventType.DEAL_UPDATED: (DEALS, DASHBOARD),
    EventType.DEAL_STAGE_CHANGED: (DEALS, DASHBOARD),
    EventType.DEAL_COMPLETED: (DEALS, DASHBOARD),
    EventType.DEAL_DELETED: (DEALS, DASHBOARD),
    EventType.TASK_CREATED: (TASKS, DASHBOARD),
    EventType.TASK_UPDATED: (TASKS,),
    EventType.TASK_COMPLETED: (TASKS, DASHBOARD),
    EventType.TASK_DELETED: (TASKS, DASHBOARD),
    EventType.TICKET_CREATED: (TICKETS,),
    EventType.TICKET_UPDATED: (TICKETS,),
    EventType.TICKET_DELETED: (TICKETS,),
    EventType.ACTIVITY_CREATED: (DASHBOARD, ACTIVITIES),
    EventType.NOTIFICATION_NEW: (),
    EventType.NOTIFICATION_READ: (),
    EventType.NOTIFICATION_ALL_READ: (),
}


class EventRouter:
    """Applies the invalidation table to one session's cache and log."""

    def __init__(
        self,
        cache: QueryCache,
        notifications: NotificationStore,
        alert: Optional[Alert] = None,
    ):
        self.cache = cache
        self.notifications = notifications
        self.alert = alert
        self._session: Optional[Session] = None
        self._disposed = False

    def on_event(self, event: DomainEvent) -> None:
        if self._disposed:
            return

        for prefix in INVALIDATIONS.get(event.type, ()):
            self.cache.invalidate(prefix)

        if event.type is EventType.NOTIFICATION_NEW:
            self._on_notification(event)
        elif event.type is EventType.NOTIFICATION_READ:
            notification_id = event.payload.get("id")
            if notification_id is not None:
                self.notifications.mark_read(str(notification_id))
        elif event.type is EventType.NOTIFICATION_ALL_READ:
            self.notifications.mark_all_read()

    def _on_notification(self, event: DomainEvent) -> None:
        try:
            notification = Notification.model_validate(event.payload)
        except ValidationError as e:
            logger.warning("router.notification_invalid", errors=e.error_count())
            return
        if not self.notifications.append(notification):
            return
        if self.alert is not None:
            try:
                self.alert(notification)
            except Exception:
                logger.exception("router.alert_failed", notification_id=notification.id)

    def attach(self, session: Session) -> None:
        """Subscribe to every event type on the session (idempotent)."""
        if self._session is not None and self._session is not session:
            self.detach()
        self._session = session
        for event_type in EventType:
            session.on(event_type, self.on_event)

    def detach(self) -> None:
        if self._session is None:
            return
        for event_type in EventType:
            self._session.off(event_type, self.on_event)
        self._session = None

    def dispose(self) -> None:
        self.detach()
        self._disposed = True
