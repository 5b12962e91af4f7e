"""Domain events emitted after a dispatch transition commits."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from fieldops.domain.models import HoldType, TicketStatus


class TicketAssigned(BaseModel):
    """Fired when a ticket is (re)assigned to a technician time slot."""

    ticket_id: str
    technician_id: str
    scheduled_date: datetime
    previous_technician_id: str | None = None
    previous_scheduled_date: datetime | None = None
    overridden: bool = False


class ConflictDetected(BaseModel):
    """Fired when a committed assignment leaves the ticket double-booked."""

    ticket_id: str
    conflicting_ticket_ids: list[str]


class TicketHeld(BaseModel):
    ticket_id: str
    hold_id: str
    hold_type: HoldType
    time_entry_stopped: bool = False


class TicketResumed(BaseModel):
    ticket_id: str
    hold_id: str | None = None
    resolution_notes: str | None = None


class WorkStarted(BaseModel):
    ticket_id: str
    technician_id: str
    time_entry_id: str


class WorkEnded(BaseModel):
    ticket_id: str
    technician_id: str
    time_entry_id: str
    minutes: int


class TicketStatusChanged(BaseModel):
    ticket_id: str
    previous_status: TicketStatus
    status: TicketStatus
