"""Readers running alongside writers only ever see committed state."""

from __future__ import annotations

import threading

from fieldops.domain.errors import TransactionFailedError
from fieldops.domain.events import TicketResumed
from fieldops.domain.models import PartsRequestLine, Priority
from tests.helpers import DAY, add_technician, add_ticket, at

_PARTS = [PartsRequestLine(part_id="CAP-45-5", quantity=1)]
_WAIT = 5


def _run(target, errors: list) -> threading.Thread:
    def wrapper():
        try:
            target()
        except Exception as exc:
            errors.append(exc)

    thread = threading.Thread(target=wrapper, daemon=True)
    thread.start()
    return thread


def test_readers_never_see_an_uncommitted_hold(store, services, monkeypatch):
    tech = add_technician(store)
    ticket = add_ticket(store, "A", tech, at(9), duration=120)
    services.time_tracker.start_work(tech.id, ticket.id)

    entered = threading.Event()
    release = threading.Event()

    def paused_add(request):
        entered.set()
        release.wait(_WAIT)
        raise RuntimeError("disk full")

    monkeypatch.setattr(store.parts_requests, "add", paused_add)

    errors: list = []
    writer = _run(
        lambda: services.holds.hold_for_parts(ticket.id, Priority.HIGH, parts=_PARTS),
        errors,
    )
    assert entered.wait(_WAIT)

    # The writer has stopped the timer and flagged the ticket in its own copy.
    seen = store.tickets.get(ticket.id)
    timer = services.time_tracker.get_active_timer(tech.id)
    check = services.detector.check_conflict(tech.id, at(10), at(10, 30))

    release.set()
    writer.join(_WAIT)

    assert (seen.hold_active, timer.has_active_timer) == (False, True)
    assert check.has_conflict is True
    assert len(errors) == 1 and isinstance(errors[0], TransactionFailedError)
    assert store.tickets.get(ticket.id).hold_active is False
    assert services.time_tracker.get_active_timer(tech.id).has_active_timer is True


def test_audit_entry_survives_concurrent_rollback(store, services):
    first = add_ticket(store, "A")
    second = add_ticket(store, "B")

    entered = threading.Event()
    release = threading.Event()

    def failing_unit_of_work():
        with store.transaction() as tx:
            tx.tickets.get(first.id).title = "renamed"
            entered.set()
            release.wait(_WAIT)
            raise RuntimeError("constraint violation")

    errors: list = []
    writer = _run(failing_unit_of_work, errors)
    assert entered.wait(_WAIT)

    auditor = _run(
        lambda: services.bus.publish(
            TicketResumed(ticket_id=second.id, hold_id=None, resolution_notes="ok")
        ),
        errors,
    )
    release.set()
    writer.join(_WAIT)
    auditor.join(_WAIT)

    assert [type(e) for e in errors] == [TransactionFailedError]
    assert store.tickets.get(first.id).title == "Job A"
    assert len(store.timeline.list_for_ticket(second.id)) == 1


def test_reads_tolerate_a_stream_of_writes(store, services):
    tech = add_technician(store)
    tickets = [add_ticket(store, f"T{n}", tech, at(8 + n), duration=90) for n in range(3)]
    done = threading.Event()
    errors: list = []
    torn: list = []

    def write_loop():
        try:
            for _ in range(60):
                for ticket in tickets:
                    services.time_tracker.start_work(tech.id, ticket.id)
                    services.holds.hold_for_parts(ticket.id, Priority.LOW, parts=_PARTS)
                    services.holds.resume(ticket.id)
        finally:
            done.set()

    def read_loop():
        while not done.is_set():
            services.time_tracker.get_active_timer(tech.id)
            services.map_builder.daily_conflict_flags(DAY.date())
            services.holds.hold_metrics()
            for held in store.tickets.list_on_hold():
                if held.active_hold_id is None or held.hold_type is None:
                    torn.append(held.ticket_number)

    writer = _run(write_loop, errors)
    readers = [_run(read_loop, errors) for _ in range(3)]
    writer.join(60)
    for reader in readers:
        reader.join(_WAIT)

    assert errors == []
    assert torn == []
    assert services.time_tracker.get_active_timer(tech.id).has_active_timer is False
    assert len(services.holds.history(tickets[0].id)) == 60


def test_commit_copies_only_touched_rows(store, services):
    tech = add_technician(store)
    held = add_ticket(store, "A", tech, at(9))
    bystander = add_ticket(store, "B", tech, at(13))
    technicians_before = store._committed["technicians"]
    bystander_before = store.tickets.get(bystander.id)

    services.holds.hold_for_parts(held.id, Priority.LOW, parts=_PARTS)

    assert store._committed["technicians"] is technicians_before
    assert store.tickets.get(bystander.id) is bystander_before
    assert store.tickets.get(held.id) is not held
