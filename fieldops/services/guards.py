"""State guards shared by the hold, timer and ticket-status transitions."""

from __future__ import annotations

from fieldops.domain.errors import NotFoundError, StateConflictError
from fieldops.domain.models import CLOSED_STATUSES, Ticket
from fieldops.repos.memory import MemoryStore


def require_ticket(store: MemoryStore, ticket_id: str) -> Ticket:
    ticket = store.tickets.get(ticket_id)
    if ticket is None:
        raise NotFoundError(f"Ticket {ticket_id} not found", ticket_id=ticket_id)
    return ticket


def ensure_open(ticket: Ticket, action: str) -> None:
    if ticket.status in CLOSED_STATUSES:
        raise StateConflictError(
            "ticket_closed",
            f"Cannot {action} ticket {ticket.ticket_number}: it is {ticket.status}",
            ticket_id=ticket.id,
            ticket_number=ticket.ticket_number,
        )


def ensure_can_start(ticket: Ticket) -> None:
    """A held or closed ticket is not eligible for "start work"."""
    ensure_open(ticket, "start work on")
    if ticket.hold_active:
        raise StateConflictError(
            "ticket_on_hold",
            f"Ticket {ticket.ticket_number} is on hold ({ticket.hold_type}). "
            "Resume the ticket before starting work.",
            ticket_id=ticket.id,
            ticket_number=ticket.ticket_number,
        )


def ensure_can_complete(ticket: Ticket) -> None:
    if ticket.hold_active:
        raise StateConflictError(
            "ticket_on_hold",
            f"Cannot complete ticket {ticket.ticket_number} while it is on hold. "
            "Resume the ticket first.",
            ticket_id=ticket.id,
            ticket_number=ticket.ticket_number,
        )
