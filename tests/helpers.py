"""Builders and a controllable clock shared by the test modules."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from fieldops.domain.models import Technician, Ticket, TicketStatus
from fieldops.repos.memory import MemoryStore

DAY = datetime(2026, 6, 1, tzinfo=timezone.utc)


def at(hour: int, minute: int = 0, days: int = 0) -> datetime:
    """A UTC instant on the test day (or *days* after it)."""
    return DAY + timedelta(days=days, hours=hour, minutes=minute)


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: int) -> None:
        self.now += timedelta(minutes=minutes)


def add_technician(store: MemoryStore, name: str = "Alice", **overrides) -> Technician:
    tech = Technician(full_name=name, **overrides)
    store.technicians.add(tech)
    return tech


def add_ticket(
    store: MemoryStore,
    number: str,
    technician: Technician | None = None,
    start: datetime | None = None,
    duration: int | None = None,
    status: TicketStatus = TicketStatus.SCHEDULED,
    **overrides,
) -> Ticket:
    ticket = Ticket(
        ticket_number=number,
        title=f"Job {number}",
        customer_name=f"Customer {number}",
        assigned_to=technician.id if technician else None,
        scheduled_date=start,
        estimated_duration=duration,
        status=status,
        **overrides,
    )
    store.tickets.add(ticket)
    return ticket
