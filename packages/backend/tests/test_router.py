"""Event router — the invalidation table and notification handling.

Learn: Every cache kind is populated before each event so the test can
check both sides: the kinds the table names go stale, and nothing else
does.
"""

import random

import pytest

from alpinecrm.client.cache import (
    ACTIVITIES,
    APPOINTMENTS,
    CONTACTS,
    DASHBOARD,
    DEALS,
    TASKS,
    TICKETS,
    CacheKey,
    QueryCache,
)
from alpinecrm.client.notifications import NotificationStore
from alpinecrm.client.router import INVALIDATIONS, EventRouter
from alpinecrm.client.transport import Session
from alpinecrm.events.types import DomainEvent, EventType

ALL_KINDS = (CONTACTS, DEALS, TASKS, TICKETS, DASHBOARD, ACTIVITIES, APPOINTMENTS)

EXPECTED = {
    "contact:created": {CONTACTS, DASHBOARD},
    "contact:updated": {CONTACTS},
    "contact:deleted": {CONTACTS, DASHBOARD},
    "deal:created": {DEALS, DASHBOARD},
    "deal:updated": {DEALS, DASHBOARD},
    "deal:stageChanged": {DEALS, DASHBOARD},
    "deal:completed": {DEALS, DASHBOARD},
    "deal:deleted": {DEALS, DASHBOARD},
    "task:created": {TASKS, DASHBOARD},
    "task:updated": {TASKS},
    "task:completed": {TASKS, DASHBOARD},
    "task:deleted": {TASKS, DASHBOARD},
    "ticket:created": {TICKETS},
    "ticket:updated": {TICKETS},
    "ticket:deleted": {TICKETS},
    "activity:created": {DASHBOARD, ACTIVITIES},
    "notification:new": set(),
    "notification:read": set(),
    "notification:all-read": set(),
}


def _populated_cache():
    cache = QueryCache()
    for kind in ALL_KINDS:
        cache.write(CacheKey.of(kind), f"{kind}-data")
        cache.write(CacheKey.of(kind, search="x", page=2), f"{kind}-filtered")
    return cache


def _stale_kinds(cache):
    return {k.kind for k in cache.keys() if cache.is_stale(k)}


def test_table_covers_every_event_type():
    assert set(INVALIDATIONS) == set(EventType)


@pytest.mark.parametrize("name,expected", sorted(EXPECTED.items()))
def test_each_event_invalidates_exactly_its_kinds(name, expected):
    cache = _populated_cache()
    router = EventRouter(cache, NotificationStore())
    payload = {"id": "n-1", "type": "info", "title": "t"} if name.startswith("notification") else {}

    router.on_event(DomainEvent(type=EventType(name), payload=payload))

    assert _stale_kinds(cache) == expected


def test_deal_stage_change_stales_deals_and_dashboard_only():
    cache = _populated_cache()
    router = EventRouter(cache, NotificationStore())

    router.on_event(DomainEvent(type=EventType.DEAL_STAGE_CHANGED, payload={"id": "d-1"}))
    assert cache.is_stale(CacheKey.of(DEALS))
    assert cache.is_stale(CacheKey.of(DASHBOARD))

    cache.write(CacheKey.of(DEALS), "refetched")
    router.on_event(DomainEvent(type=EventType.TICKET_UPDATED))
    assert not cache.is_stale(CacheKey.of(DEALS))


def test_any_event_sequence_stales_exactly_the_union():
    rng = random.Random(11)
    names = list(EXPECTED)
    for _ in range(50):
        cache = _populated_cache()
        router = EventRouter(cache, NotificationStore())
        sequence = [rng.choice(names) for _ in range(rng.randint(0, 6))]
        expected = set()
        for name in sequence:
            router.on_event(DomainEvent(type=EventType(name), payload={"id": "n-x", "type": "t", "title": "t"}))
            expected |= EXPECTED[name]
        assert _stale_kinds(cache) == expected


def test_notification_new_appends_and_alerts():
    store = NotificationStore()
    alerts = []
    router = EventRouter(QueryCache(), store, alert=alerts.append)

    router.on_event(DomainEvent(
        type=EventType.NOTIFICATION_NEW,
        payload={"id": "n-1", "type": "deal_won", "title": "Deal Won!", "read": False,
                 "createdAt": "2026-10-01T10:00:00Z"},
    ))

    assert store.unread_count == 1
    assert [a.title for a in alerts] == ["Deal Won!"]


def test_invalid_notification_payload_is_ignored():
    store = NotificationStore()
    alerts = []
    router = EventRouter(QueryCache(), store, alert=alerts.append)
    router.on_event(DomainEvent(type=EventType.NOTIFICATION_NEW, payload={"title": "no id"}))
    assert len(store) == 0
    assert alerts == []


def test_failing_alert_does_not_lose_notification():
    store = NotificationStore()

    def broken_alert(n):
        raise RuntimeError("display gone")

    router = EventRouter(QueryCache(), store, alert=broken_alert)
    router.on_event(DomainEvent(type=EventType.NOTIFICATION_NEW, payload={"id": "n-1", "type": "t", "title": "x"}))
    assert store.unread_count == 1


def test_read_events_sync_the_store():
    store = NotificationStore()
    router = EventRouter(QueryCache(), store)
    for i in range(3):
        router.on_event(DomainEvent(type=EventType.NOTIFICATION_NEW, payload={"id": f"n-{i}", "type": "t", "title": "x"}))

    router.on_event(DomainEvent(type=EventType.NOTIFICATION_READ, payload={"id": "n-1"}))
    assert store.unread_count == 2
    router.on_event(DomainEvent(type=EventType.NOTIFICATION_ALL_READ))
    assert store.unread_count == 0


@pytest.mark.asyncio
async def test_attach_is_idempotent_and_dispose_detaches(connector):
    session = Session("ws://test/ws", "tok", connector)
    cache = _populated_cache()
    router = EventRouter(cache, NotificationStore())

    router.attach(session)
    router.attach(session)
    assert session.handlers(EventType.DEAL_UPDATED) == [router.on_event]

    router.dispose()
    assert session.handlers(EventType.DEAL_UPDATED) == []
    router.on_event(DomainEvent(type=EventType.DEAL_UPDATED))
    assert _stale_kinds(cache) == set()
