"""Domain event names and wire frames.

Learn: Unknown or malformed frames must decode to None — the client treats
them as a no-op, so a newer server can add event types safely.
"""

import json

from alpinecrm.events.types import (
    DomainEvent,
    EntityKind,
    EventAction,
    EventType,
    decode_frame,
    encode_frame,
)


def test_event_type_exposes_kind_and_action():
    assert EventType.DEAL_STAGE_CHANGED.kind is EntityKind.DEAL
    assert EventType.DEAL_STAGE_CHANGED.action is EventAction.STAGE_CHANGED
    assert EventType.NOTIFICATION_ALL_READ.kind is EntityKind.NOTIFICATION
    assert EventType.NOTIFICATION_ALL_READ.action is EventAction.ALL_READ


def test_every_event_name_is_kind_colon_action():
    for event_type in EventType:
        kind, action = event_type.value.split(":")
        assert event_type.kind.value == kind
        assert event_type.action.value == action


def test_frame_carries_name_and_payload():
    event = DomainEvent(type=EventType.TICKET_UPDATED, payload={"id": "tk-1", "status": "open"})
    frame = json.loads(encode_frame(event))
    assert frame == {"event": "ticket:updated", "data": {"id": "tk-1", "status": "open"}}
    assert decode_frame(encode_frame(event)) == event


def test_unknown_event_decodes_to_none():
    assert decode_frame(json.dumps({"event": "invoice:paid", "data": {}})) is None
    assert EventType.lookup("invoice:paid") is None


def test_malformed_frames_decode_to_none():
    assert decode_frame("not json") is None
    assert decode_frame(json.dumps(["contact:created", {}])) is None
    assert decode_frame(json.dumps({"data": {}})) is None
    assert decode_frame(json.dumps({"event": 42})) is None


def test_missing_or_non_object_payload_becomes_empty():
    event = decode_frame(json.dumps({"event": "contact:deleted"}))
    assert event.type is EventType.CONTACT_DELETED
    assert event.payload == {}

    event = decode_frame(json.dumps({"event": "contact:deleted", "data": "c-1"}))
    assert event.payload == {}
