"""Notification store — bounded, newest-first log of user notifications.

Learn: The unread counter is maintained incrementally instead of being
recomputed by scanning the log:
- append of an unread entry     → +1
- mark_read flipping an entry   → -1
- eviction of an unread entry   → -1 (keeps the count equal to the log)
- mark_all_read                 → 0

Entries are only ever removed by the size bound, never deleted.
"""

from datetime import datetime, timezone
from typing import Iterable, Optional

import structlog
from pydantic import BaseModel, Field

logger = structlog.get_logger()

DEFAULT_LIMIT = 50


class Notification(BaseModel):
    """One user-facing notification, as sent by the server."""

    id: str
    type: str
    title: str
    message: Optional[str] = None
    read: bool = False
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        alias="createdAt",
    )
    link: Optional[str] = None

    model_config = {"populate_by_name": True, "extra": "ignore"}


class NotificationStore:
    """Newest-first notification log capped at ``limit`` entries."""

    def __init__(self, limit: int = DEFAULT_LIMIT):
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self.limit = limit
        self._items: list[Notification] = []
        self._unread = 0

    @property
    def unread_count(self) -> int:
        return self._unread

    @property
    def notifications(self) -> list[Notification]:
        """Snapshot of the log, newest first."""
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def get(self, notification_id: str) -> Optional[Notification]:
        for n in self._items:
            if n.id == notification_id:
                return n
        return None

    def append(self, notification: Notification) -> bool:
        """Prepend a notification, evicting the oldest beyond the limit.

        Returns False (and changes nothing) if the id is already present.
        """
        if self.get(notification.id) is not None:
            return False

        self._items.insert(0, notification)
        if not notification.read:
            self._unread += 1

        while len(self._items) > self.limit:
            evicted = self._items.pop()
            if not evicted.read:
                self._unread -= 1
        return True

    def mark_read(self, notification_id: str) -> bool:
        """Mark one notification read. Returns True if it was unread."""
        n = self.get(notification_id)
        if n is None or n.read:
            return False
        n.read = True
        self._unread -= 1
        return True

    def mark_all_read(self) -> None:
        for n in self._items:
            n.read = True
        self._unread = 0

    def load(self, notifications: Iterable[Notification]) -> None:
        """Replace the log with a fetched page (newest first)."""
        items: list[Notification] = []
        seen: set[str] = set()
        for n in notifications:
            if n.id in seen:
                continue
            seen.add(n.id)
            items.append(n)
        self._items = items[: self.limit]
        self._unread = sum(1 for n in self._items if not n.read)
        logger.debug("notifications.loaded", count=len(self._items), unread=self._unread)

    def merge(self, notifications: Iterable[Notification]) -> None:
        """Load a fetched page below the entries already in the log.

        Entries pushed while the page was in flight stay on top; a page
        entry with the same id as one of them is dropped.
        """
        self.load([*self._items, *notifications])
