"""Tests for the event bus and the timeline audit handlers."""

from __future__ import annotations

from pydantic import BaseModel

from fieldops.domain.bus import EventBus
from fieldops.domain.events import ConflictDetected
from fieldops.domain.handlers import HandlerRegistry
from fieldops.domain.models import TimelineEntryType
from tests.helpers import add_ticket


class _Base(BaseModel):
    name: str


class _Child(_Base):
    pass


def test_handlers_run_in_registration_order():
    bus = EventBus()
    seen: list[str] = []
    bus.subscribe(_Base, lambda e: seen.append(f"first:{e.name}"))
    bus.subscribe(_Base, lambda e: seen.append(f"second:{e.name}"))

    bus.publish(_Base(name="x"))

    assert seen == ["first:x", "second:x"]


def test_base_class_subscribers_receive_subclasses():
    bus = EventBus()
    seen: list[str] = []
    bus.subscribe(_Base, lambda e: seen.append("base"))
    bus.subscribe(_Child, lambda e: seen.append("child"))

    bus.publish(_Child(name="x"))
    bus.publish(_Base(name="y"))

    assert seen == ["child", "base", "base"]


def test_unsubscribe():
    bus = EventBus()
    seen: list[str] = []

    def handler(event):
        seen.append(event.name)

    bus.subscribe(_Base, handler)
    bus.unsubscribe(_Base, handler)
    bus.unsubscribe(_Child, handler)
    bus.publish(_Base(name="x"))

    assert seen == []


def test_audit_entries_skip_unknown_tickets(store):
    bus = EventBus()
    HandlerRegistry(bus=bus, store=store)
    ticket = add_ticket(store, "A")

    bus.publish(ConflictDetected(ticket_id="gone", conflicting_ticket_ids=[]))
    bus.publish(ConflictDetected(ticket_id=ticket.id, conflicting_ticket_ids=["x"]))

    assert store.timeline.list_for_ticket("gone") == []
    [entry] = store.timeline.list_for_ticket(ticket.id)
    assert entry.type == TimelineEntryType.CONFLICT_DETECTED
    assert entry.payload == {"conflicting_ticket_ids": ["x"]}
