"""Ticket status updates that must respect hold and timer state."""

from __future__ import annotations

import logging

from fieldops.domain.bus import EventBus
from fieldops.domain.events import TicketResumed, TicketStatusChanged
from fieldops.domain.models import Ticket, TicketStatus
from fieldops.repos.memory import MemoryStore
from fieldops.services import guards
from fieldops.services.holds import release_hold
from fieldops.services.time_tracking import Clock, TimeTracker, utc_clock

logger = logging.getLogger(__name__)

CANCELLED_HOLD_NOTE = "Ticket cancelled"


class TicketWorkflow:
    def __init__(
        self,
        store: MemoryStore,
        time_tracker: TimeTracker,
        bus: EventBus | None = None,
        clock: Clock = utc_clock,
    ) -> None:
        self.store = store
        self.time_tracker = time_tracker
        self.bus = bus or EventBus()
        self.clock = clock

    def change_status(self, ticket_id: str, status: TicketStatus) -> Ticket:
        """Move a ticket to *status*.

        Completing a held ticket is refused with a ``ticket_on_hold`` state
        error.  Completing or cancelling stops any timer still running on the
        ticket in the same transaction, and cancelling resolves an active hold.
        """
        status = TicketStatus(status)
        released = None
        with self.store.transaction() as store:
            ticket = guards.require_ticket(store, ticket_id)
            previous = ticket.status
            if status == TicketStatus.COMPLETED:
                guards.ensure_can_complete(ticket)
            if status in (TicketStatus.COMPLETED, TicketStatus.CANCELLED):
                self.time_tracker.stop_for_ticket(ticket.id)
            if status == TicketStatus.CANCELLED and ticket.hold_active:
                released = release_hold(store, ticket, self.clock(), CANCELLED_HOLD_NOTE)
            ticket.status = status
            ticket.completed_date = (
                self.clock() if status == TicketStatus.COMPLETED else None
            )

        if released is not None:
            logger.info(
                "Hold %s on ticket %s resolved by cancellation",
                released.id,
                ticket.ticket_number,
            )
            self.bus.publish(
                TicketResumed(
                    ticket_id=ticket.id,
                    hold_id=released.id,
                    resolution_notes=CANCELLED_HOLD_NOTE,
                )
            )
        if previous != status:
            logger.info("Ticket %s: %s -> %s", ticket.ticket_number, previous, status)
            self.bus.publish(
                TicketStatusChanged(
                    ticket_id=ticket.id, previous_status=previous, status=status
                )
            )
        return ticket
