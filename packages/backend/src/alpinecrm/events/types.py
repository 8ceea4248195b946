"""Domain event types and the realtime wire frame.

Learn: Every server-side mutation is announced as "<kind>:<action>"
(e.g. "deal:stageChanged"). Centralizing the names in one closed enum
means an unknown name can only ever decode to None — the client ignores
it instead of comparing strings at every call site.

Wire frame (one WebSocket text message per event):
    {"event": "deal:stageChanged", "data": {...entity payload...}}
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class EntityKind(str, Enum):
    CONTACT = "contact"
    DEAL = "deal"
    TASK = "task"
    TICKET = "ticket"
    NOTIFICATION = "notification"
    ACTIVITY = "activity"


class EventAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    STAGE_CHANGED = "stageChanged"
    COMPLETED = "completed"
    # Notification log actions
    NEW = "new"
    READ = "read"
    ALL_READ = "all-read"


class EventType(str, Enum):
    """Every event name the server emits. Anything else is ignored."""

    # ─── Contacts ────────────────────────────────────────────
    CONTACT_CREATED = "contact:created"
    CONTACT_UPDATED = "contact:updated"
    CONTACT_DELETED = "contact:deleted"

    # ─── Deals ───────────────────────────────────────────────
    DEAL_CREATED = "deal:created"
    DEAL_UPDATED = "deal:updated"
    DEAL_STAGE_CHANGED = "deal:stageChanged"
    DEAL_COMPLETED = "deal:completed"
    DEAL_DELETED = "deal:deleted"

    # ─── Tasks ───────────────────────────────────────────────
    TASK_CREATED = "task:created"
    TASK_UPDATED = "task:updated"
    TASK_COMPLETED = "task:completed"
    TASK_DELETED = "task:deleted"

    # ─── Tickets ─────────────────────────────────────────────
    TICKET_CREATED = "ticket:created"
    TICKET_UPDATED = "ticket:updated"
    TICKET_DELETED = "ticket:deleted"

    # ─── Notifications ───────────────────────────────────────
    NOTIFICATION_NEW = "notification:new"
    NOTIFICATION_READ = "notification:read"
    NOTIFICATION_ALL_READ = "notification:all-read"

    # ─── Activity feed ───────────────────────────────────────
    ACTIVITY_CREATED = "activity:created"

    @property
    def kind(self) -> EntityKind:
        return EntityKind(self.value.split(":", 1)[0])

    @property
    def action(self) -> EventAction:
        return EventAction(self.value.split(":", 1)[1])

    @classmethod
    def lookup(cls, name: str) -> Optional["EventType"]:
        """Return the member for a wire name, or None if it is unknown."""
        try:
            return cls(name)
        except ValueError:
            return None


@dataclass(frozen=True)
class DomainEvent:
    """One entity change, as delivered to a client session."""

    type: EventType
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def kind(self) -> EntityKind:
        return self.type.kind

    @property
    def action(self) -> EventAction:
        return self.type.action


def encode_frame(event: DomainEvent) -> str:
    """Serialize an event into a wire frame."""
    return json.dumps({"event": event.type.value, "data": event.payload}, default=str)


def decode_frame(text: str) -> Optional[DomainEvent]:
    """Parse a wire frame. Malformed or unknown frames decode to None."""
    try:
        msg = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return None
    if not isinstance(msg, dict):
        return None

    name = msg.get("event")
    if not isinstance(name, str):
        return None
    event_type = EventType.lookup(name)
    if event_type is None:
        return None

    data = msg.get("data")
    return DomainEvent(type=event_type, payload=data if isinstance(data, dict) else {})
