"""Billable work timers: at most one running entry per technician."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from fieldops.domain.bus import EventBus
from fieldops.domain.errors import DispatchValidationError, StateConflictError
from fieldops.domain.events import WorkEnded, WorkStarted
from fieldops.domain.models import ActiveTimer, TicketStatus, TimeEntry
from fieldops.repos.memory import MemoryStore
from fieldops.services.guards import ensure_can_start, require_ticket

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_clock() -> datetime:
    return datetime.now(timezone.utc)


def _minutes_between(start: datetime, end: datetime) -> int:
    return int((end - start).total_seconds() // 60)


class TimeTracker:
    def __init__(
        self,
        store: MemoryStore,
        bus: EventBus | None = None,
        clock: Clock = utc_clock,
    ) -> None:
        self.store = store
        self.bus = bus or EventBus()
        self.clock = clock

    def get_active_timer(self, technician_id: str) -> ActiveTimer:
        entry = self.store.time_entries.open_for_technician(technician_id)
        if entry is None:
            return ActiveTimer()
        ticket = self.store.tickets.get(entry.ticket_id)
        return ActiveTimer(
            has_active_timer=True,
            time_entry_id=entry.id,
            ticket_id=entry.ticket_id,
            ticket_number=ticket.ticket_number if ticket else None,
            started_at=entry.started_at,
            elapsed_minutes=_minutes_between(entry.started_at, self.clock()),
        )

    def start_work(self, technician_id: str, ticket_id: str) -> TimeEntry:
        """Open a timer for the technician on the ticket and mark it in progress."""
        with self.store.transaction() as store:
            ticket = require_ticket(store, ticket_id)
            if store.technicians.get(technician_id) is None:
                raise DispatchValidationError(
                    "technician_id",
                    f"Unknown technician {technician_id}",
                    ticket_id=ticket.id,
                    ticket_number=ticket.ticket_number,
                )
            ensure_can_start(ticket)

            running = store.time_entries.open_for_technician(technician_id)
            if running is not None:
                timed = store.tickets.get(running.ticket_id)
                timed_number = timed.ticket_number if timed else running.ticket_id
                raise StateConflictError(
                    "timer_already_running",
                    f"You are currently timing Ticket {timed_number}. End it first.",
                    ticket_id=ticket.id,
                    ticket_number=ticket.ticket_number,
                )

            entry = TimeEntry(
                technician_id=technician_id,
                ticket_id=ticket.id,
                started_at=self.clock(),
            )
            store.time_entries.add(entry)
            ticket.status = TicketStatus.IN_PROGRESS

        logger.info("Technician %s started work on %s", technician_id, ticket.ticket_number)
        self.bus.publish(
            WorkStarted(
                ticket_id=ticket.id, technician_id=technician_id, time_entry_id=entry.id
            )
        )
        return entry

    def end_work(self, technician_id: str, ticket_id: str) -> TimeEntry:
        with self.store.transaction() as store:
            ticket = require_ticket(store, ticket_id)
            entry = store.time_entries.open_for_technician(technician_id)
            if entry is None or entry.ticket_id != ticket.id:
                raise StateConflictError(
                    "no_active_timer",
                    f"No running timer for ticket {ticket.ticket_number}",
                    ticket_id=ticket.id,
                    ticket_number=ticket.ticket_number,
                )
            entry.stopped_at = self.clock()

        minutes = _minutes_between(entry.started_at, entry.stopped_at)
        logger.info(
            "Technician %s ended work on %s after %d min",
            technician_id,
            ticket.ticket_number,
            minutes,
        )
        self.bus.publish(
            WorkEnded(
                ticket_id=ticket.id,
                technician_id=technician_id,
                time_entry_id=entry.id,
                minutes=minutes,
            )
        )
        return entry

    def stop_for_ticket(self, ticket_id: str) -> list[TimeEntry]:
        """Stop every running entry on the ticket, joining the caller's transaction."""
        with self.store.transaction() as store:
            stopped = store.time_entries.open_for_ticket(ticket_id)
            now = self.clock()
            for entry in stopped:
                entry.stopped_at = now
        return stopped
