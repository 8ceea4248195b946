"""Derived-state cache — query results keyed by (kind, params).

Learn: Entries are never updated in place from an event. An event only
flips the entry's freshness flag; the next read through fetch() re-runs
the query. Invalidation is coarse: a prefix is the query kind, and every
entry of that kind goes stale whatever its filters.

A lock guards all state so an invalidate() that has returned is visible
to every later read(), even from another thread.
"""

import threading
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, NamedTuple, Optional

import structlog

logger = structlog.get_logger()

# Query kinds used as cache prefixes
CONTACTS = "contacts"
DEALS = "deals"
TASKS = "tasks"
TICKETS = "tickets"
DASHBOARD = "dashboard"
ACTIVITIES = "activities"
APPOINTMENTS = "appointments"
INVOICES = "invoices"
EMAILS = "emails"


@dataclass(frozen=True)
class CacheKey:
    """Identifies one query result: its kind plus normalized parameters."""

    kind: str
    params: tuple[tuple[str, Any], ...] = ()

    @classmethod
    def of(cls, kind: str, **params: Any) -> "CacheKey":
        """Build a key; None params are dropped and order does not matter."""
        items = tuple(sorted((k, v) for k, v in params.items() if v is not None))
        return cls(kind=kind, params=items)

    def param_dict(self) -> dict[str, Any]:
        return dict(self.params)


class CacheRead(NamedTuple):
    data: Any
    is_stale: bool


@dataclass
class _Entry:
    data: Any
    fresh: bool = True


class QueryCache:
    """In-process query cache with prefix invalidation."""

    def __init__(self):
        self._entries: dict[CacheKey, _Entry] = {}
        # Bumped on every invalidate(); lets fetch() detect a race
        self._generations: dict[str, int] = {}
        self._lock = threading.RLock()

    def read(self, key: CacheKey) -> CacheRead:
        """Return (data, is_stale). A missing key reads as (None, True)."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return CacheRead(None, True)
            return CacheRead(entry.data, not entry.fresh)

    def write(self, key: CacheKey, data: Any) -> None:
        """Store a query result and mark it fresh."""
        with self._lock:
            self._entries[key] = _Entry(data=data, fresh=True)

    def invalidate(self, prefix: str) -> int:
        """Mark every entry of this kind stale. Returns how many were fresh."""
        marked = 0
        with self._lock:
            self._generations[prefix] = self._generations.get(prefix, 0) + 1
            for key, entry in self._entries.items():
                if key.kind == prefix and entry.fresh:
                    entry.fresh = False
                    marked += 1
        if marked:
            logger.debug("cache.invalidated", prefix=prefix, entries=marked)
        return marked

    def is_stale(self, key: CacheKey) -> bool:
        return self.read(key).is_stale

    def keys(self, prefix: Optional[str] = None) -> list[CacheKey]:
        with self._lock:
            return [k for k in self._entries if prefix is None or k.kind == prefix]

    def remove(self, prefix: str) -> None:
        with self._lock:
            for key in [k for k in self._entries if k.kind == prefix]:
                del self._entries[key]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    async def fetch(
        self,
        key: CacheKey,
        fetcher: Callable[[CacheKey], Awaitable[Any]],
    ) -> Any:
        """Read-through: return fresh data, re-fetching if stale or missing.

        The lock is not held across the await. If the kind is invalidated
        while the fetch is in flight, the result is stored but stays stale,
        so the next read fetches again.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.fresh:
                return entry.data
            generation = self._generations.get(key.kind, 0)

        data = await fetcher(key)

        with self._lock:
            fresh = self._generations.get(key.kind, 0) == generation
            self._entries[key] = _Entry(data=data, fresh=fresh)
        if not fresh:
            logger.debug("cache.fetch_raced_invalidation", kind=key.kind)
        return data
