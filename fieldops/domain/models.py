"""Domain models for the dispatch conflict & hold engine."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, computed_field, field_validator, model_validator

DEFAULT_DURATION_MINUTES = 120


class TicketStatus(StrEnum):
    OPEN = "open"
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


CLOSED_STATUSES = frozenset({TicketStatus.COMPLETED, TicketStatus.CANCELLED})


class HoldType(StrEnum):
    PARTS = "parts"
    ISSUE = "issue"


class Priority(StrEnum):
    """Urgency of a parts hold, or severity of a reported issue."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class IssueCategory(StrEnum):
    EQUIPMENT_FAILURE = "equipment_failure"
    ACCESS_DENIED = "access_denied"
    SAFETY_CONCERN = "safety_concern"
    SCOPE_CHANGE = "scope_change"
    CUSTOMER_UNAVAILABLE = "customer_unavailable"
    TECHNICAL_LIMITATION = "technical_limitation"
    OTHER = "other"


class TimelineEntryType(StrEnum):
    ASSIGNED = "assigned"
    CONFLICT_DETECTED = "conflict_detected"
    HOLD_STARTED = "hold_started"
    HOLD_RESUMED = "hold_resumed"
    WORK_STARTED = "work_started"
    WORK_ENDED = "work_ended"
    STATUS_CHANGED = "status_changed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes; aware ones pass through unchanged."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ---------------------------------------------------------------------------
# Core domain models
# ---------------------------------------------------------------------------


class Technician(BaseModel):
    id: str = Field(default_factory=_new_id)
    full_name: str
    is_active: bool = True


class Ticket(BaseModel):
    id: str = Field(default_factory=_new_id)
    ticket_number: str
    title: str
    customer_name: str | None = None
    assigned_to: str | None = None
    scheduled_date: datetime | None = None
    estimated_duration: int | None = Field(default=None, gt=0)
    status: TicketStatus = TicketStatus.OPEN
    hold_active: bool = False
    hold_type: HoldType | None = None
    active_hold_id: str | None = None
    completed_date: datetime | None = None
    created_at: datetime = Field(default_factory=_utcnow)

    @field_validator("scheduled_date")
    @classmethod
    def _scheduled_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value) if value is not None else None


class Commitment(BaseModel):
    """A technician's scheduled window, materialized from an active ticket."""

    ticket_id: str
    ticket_number: str
    title: str
    customer_name: str | None = None
    technician_id: str
    start: datetime
    duration_minutes: int = Field(default=DEFAULT_DURATION_MINUTES, gt=0)
    on_hold: bool = False

    @computed_field
    @property
    def end(self) -> datetime:
        return self.start + timedelta(minutes=self.duration_minutes)

    @classmethod
    def from_ticket(
        cls, ticket: Ticket, default_duration: int = DEFAULT_DURATION_MINUTES
    ) -> Commitment:
        if ticket.assigned_to is None or ticket.scheduled_date is None:
            raise ValueError(f"Ticket {ticket.ticket_number} is not scheduled")
        return cls(
            ticket_id=ticket.id,
            ticket_number=ticket.ticket_number,
            title=ticket.title,
            customer_name=ticket.customer_name,
            technician_id=ticket.assigned_to,
            start=ticket.scheduled_date,
            duration_minutes=ticket.estimated_duration or default_duration,
            on_hold=ticket.hold_active,
        )


class ConflictResult(BaseModel):
    has_conflict: bool = False
    conflicts: list[Commitment] = Field(default_factory=list)
    message: str | None = None

    @classmethod
    def from_overlaps(cls, overlapping: list[Commitment]) -> ConflictResult:
        if not overlapping:
            return cls()
        n = len(overlapping)
        return cls(
            has_conflict=True,
            conflicts=list(overlapping),
            message=(
                f"This time slot overlaps with {n} existing "
                f"ticket{'s' if n > 1 else ''}"
            ),
        )


class Hold(BaseModel):
    id: str = Field(default_factory=_new_id)
    ticket_id: str
    hold_type: HoldType
    priority: Priority
    notes: str = ""
    summary: str
    detail_id: str
    active: bool = True
    started_at: datetime = Field(default_factory=_utcnow)
    resolved_at: datetime | None = None
    resolution_notes: str | None = None


class PartsRequestLine(BaseModel):
    part_id: str = Field(min_length=1)
    quantity: int = Field(gt=0)
    notes: str | None = None
    preferred_source_location_id: str | None = None


class PartsRequest(BaseModel):
    id: str = Field(default_factory=_new_id)
    ticket_id: str
    urgency: Priority
    notes: str = ""
    lines: list[PartsRequestLine]
    created_at: datetime = Field(default_factory=_utcnow)


class IssueReport(BaseModel):
    id: str = Field(default_factory=_new_id)
    ticket_id: str
    category: IssueCategory
    severity: Priority
    description: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)


class TimeEntry(BaseModel):
    id: str = Field(default_factory=_new_id)
    technician_id: str
    ticket_id: str
    started_at: datetime
    stopped_at: datetime | None = None

    @property
    def is_running(self) -> bool:
        return self.stopped_at is None

    @model_validator(mode="after")
    def _stop_after_start(self) -> TimeEntry:
        if self.stopped_at is not None and self.stopped_at < self.started_at:
            raise ValueError("stopped_at must not be before started_at")
        return self


class TimelineEntry(BaseModel):
    id: str = Field(default_factory=_new_id)
    ticket_id: str
    timestamp: datetime = Field(default_factory=_utcnow)
    type: TimelineEntryType
    payload: dict = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Results / read views
# ---------------------------------------------------------------------------


class HoldResult(BaseModel):
    success: bool = True
    hold_id: str | None = None
    request_id: str | None = None
    report_id: str | None = None
    time_entry_stopped: bool = False
    message: str


class ActiveTimer(BaseModel):
    has_active_timer: bool = False
    time_entry_id: str | None = None
    ticket_id: str | None = None
    ticket_number: str | None = None
    started_at: datetime | None = None
    elapsed_minutes: int | None = None


class HoldMetrics(BaseModel):
    total_on_hold: int = 0
    on_hold_parts: int = 0
    on_hold_issue: int = 0
    by_priority: dict[str, int] = Field(default_factory=dict)


class OnHoldTicket(BaseModel):
    ticket: Ticket
    hold: Hold


class AssignmentOutcome(BaseModel):
    committed: bool
    ticket: Ticket
    conflict: ConflictResult = Field(default_factory=ConflictResult)
    refreshed_days: dict[str, dict[str, bool]] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Request DTOs
# ---------------------------------------------------------------------------


class ConflictCheckRequest(BaseModel):
    technician_id: str
    proposed_start: datetime
    proposed_end: datetime
    exclude_ticket_id: str | None = None

    @model_validator(mode="after")
    def _end_not_before_start(self) -> ConflictCheckRequest:
        if self.proposed_end < self.proposed_start:
            raise ValueError("proposed_end must not be before proposed_start")
        return self


class AssignmentRequest(BaseModel):
    technician_id: str
    scheduled_date: datetime
    estimated_duration: int | None = Field(default=None, gt=0)
    override: bool = False


class HoldForPartsRequest(BaseModel):
    urgency: Priority
    notes: str = ""
    summary: str | None = None
    parts: list[PartsRequestLine] = Field(default_factory=list)


class ReportIssueRequest(BaseModel):
    category: IssueCategory
    severity: Priority
    description: str = ""
    summary: str | None = None
    metadata: dict[str, Any] | None = None


class ResumeRequest(BaseModel):
    resolution_notes: str | None = None


class StatusChangeRequest(BaseModel):
    status: TicketStatus


class TimerRequest(BaseModel):
    ticket_id: str
