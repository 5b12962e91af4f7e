"""Hold / resume transitions for tickets waiting on parts or an issue.

Each transition runs as one store transaction: stopping the ticket's timer,
writing the hold and its detail record, and flagging the ticket either all
happen or none do.  A ticket has at most one active hold; switching hold
type requires an explicit resume first.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from fieldops.domain.bus import EventBus
from fieldops.domain.errors import DispatchValidationError, StateConflictError
from fieldops.domain.events import TicketHeld, TicketResumed
from fieldops.domain.models import (
    Hold,
    HoldMetrics,
    HoldResult,
    HoldType,
    IssueCategory,
    IssueReport,
    OnHoldTicket,
    PartsRequest,
    PartsRequestLine,
    Priority,
    Ticket,
)
from fieldops.repos.memory import MemoryStore
from fieldops.services import guards
from fieldops.services.time_tracking import Clock, TimeTracker, utc_clock

logger = logging.getLogger(__name__)

DEFAULT_PARTS_SUMMARY = "Waiting for parts"


def release_hold(
    store: MemoryStore, ticket: Ticket, resolved_at: datetime, notes: str | None
) -> Hold | None:
    """Resolve the ticket's active hold and clear its hold flags; call inside a transaction."""
    hold = store.holds.get(ticket.active_hold_id) if ticket.active_hold_id else None
    if hold is not None:
        hold.active = False
        hold.resolved_at = resolved_at
        hold.resolution_notes = notes
    ticket.hold_active = False
    ticket.hold_type = None
    ticket.active_hold_id = None
    return hold


def _coerce(enum_type, value, field: str, ticket_id: str):
    try:
        return enum_type(value)
    except ValueError as exc:
        allowed = ", ".join(m.value for m in enum_type)
        raise DispatchValidationError(
            field, f"{field} must be one of: {allowed}", ticket_id=ticket_id
        ) from exc


class HoldStateMachine:
    ensure_can_complete = staticmethod(guards.ensure_can_complete)
    ensure_can_start = staticmethod(guards.ensure_can_start)

    def __init__(
        self,
        store: MemoryStore,
        time_tracker: TimeTracker,
        bus: EventBus | None = None,
        clock: Clock = utc_clock,
        parts_summary: str = DEFAULT_PARTS_SUMMARY,
    ) -> None:
        self.store = store
        self.time_tracker = time_tracker
        self.bus = bus or EventBus()
        self.clock = clock
        self.parts_summary = parts_summary

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def hold_for_parts(
        self,
        ticket_id: str,
        urgency: Priority,
        notes: str = "",
        summary: str | None = None,
        parts: list[PartsRequestLine] | None = None,
    ) -> HoldResult:
        """Stop the timer, open a parts hold and file the parts request."""
        if not parts:
            raise DispatchValidationError(
                "parts", "At least one part is required", ticket_id=ticket_id
            )
        try:
            lines = [PartsRequestLine.model_validate(p) for p in parts]
        except ValidationError as exc:
            raise DispatchValidationError(
                "parts", f"Invalid parts list: {exc}", ticket_id=ticket_id
            ) from exc
        urgency = _coerce(Priority, urgency, "urgency", ticket_id)

        with self.store.transaction() as store:
            ticket = self._require_holdable(ticket_id)
            stopped = self.time_tracker.stop_for_ticket(ticket.id)
            request = PartsRequest(
                ticket_id=ticket.id, urgency=urgency, notes=notes, lines=lines
            )
            hold = self._open_hold(
                ticket,
                HoldType.PARTS,
                priority=urgency,
                notes=notes,
                summary=summary or self.parts_summary,
                detail_id=request.id,
            )
            store.parts_requests.add(request)

        logger.info(
            "Ticket %s on hold for parts (%d lines, urgency=%s)",
            ticket.ticket_number,
            len(request.lines),
            urgency,
        )
        self.bus.publish(
            TicketHeld(
                ticket_id=ticket.id,
                hold_id=hold.id,
                hold_type=HoldType.PARTS,
                time_entry_stopped=bool(stopped),
            )
        )
        return HoldResult(
            hold_id=hold.id,
            request_id=request.id,
            time_entry_stopped=bool(stopped),
            message=f"Ticket {ticket.ticket_number} placed on hold for parts",
        )

    def report_issue(
        self,
        ticket_id: str,
        category: IssueCategory,
        severity: Priority,
        description: str,
        summary: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> HoldResult:
        """Stop the timer, open an issue hold and file the issue report."""
        if not description or not description.strip():
            raise DispatchValidationError(
                "description", "Issue description is required", ticket_id=ticket_id
            )
        category = _coerce(IssueCategory, category, "category", ticket_id)
        severity = _coerce(Priority, severity, "severity", ticket_id)

        with self.store.transaction() as store:
            ticket = self._require_holdable(ticket_id)
            stopped = self.time_tracker.stop_for_ticket(ticket.id)
            report = IssueReport(
                ticket_id=ticket.id,
                category=category,
                severity=severity,
                description=description.strip(),
                metadata=metadata or {},
            )
            hold = self._open_hold(
                ticket,
                HoldType.ISSUE,
                priority=severity,
                notes=description.strip(),
                summary=summary or f"Issue reported - {category}",
                detail_id=report.id,
            )
            store.issue_reports.add(report)

        logger.info(
            "Ticket %s on hold for issue %s (severity=%s)",
            ticket.ticket_number,
            category,
            severity,
        )
        self.bus.publish(
            TicketHeld(
                ticket_id=ticket.id,
                hold_id=hold.id,
                hold_type=HoldType.ISSUE,
                time_entry_stopped=bool(stopped),
            )
        )
        return HoldResult(
            hold_id=hold.id,
            report_id=report.id,
            time_entry_stopped=bool(stopped),
            message=f"Issue reported on ticket {ticket.ticket_number}; ticket placed on hold",
        )

    def resume(self, ticket_id: str, resolution_notes: str | None = None) -> HoldResult:
        """Resolve the active hold; the timer is not restarted."""
        with self.store.transaction() as store:
            ticket = guards.require_ticket(store, ticket_id)
            if not ticket.hold_active:
                raise StateConflictError(
                    "not_on_hold",
                    f"Ticket {ticket.ticket_number} is not on hold",
                    ticket_id=ticket.id,
                    ticket_number=ticket.ticket_number,
                )
            hold = release_hold(store, ticket, self.clock(), resolution_notes)

        logger.info("Ticket %s resumed from hold", ticket.ticket_number)
        hold_id = hold.id if hold is not None else None
        self.bus.publish(
            TicketResumed(
                ticket_id=ticket.id, hold_id=hold_id, resolution_notes=resolution_notes
            )
        )
        return HoldResult(
            hold_id=hold_id,
            message=f"Ticket {ticket.ticket_number} resumed",
        )

    def _require_holdable(self, ticket_id: str) -> Ticket:
        ticket = guards.require_ticket(self.store, ticket_id)
        guards.ensure_open(ticket, "hold")
        if ticket.hold_active:
            raise StateConflictError(
                "already_on_hold",
                f"Ticket {ticket.ticket_number} is already on hold "
                f"({ticket.hold_type}); resume it first",
                ticket_id=ticket.id,
                ticket_number=ticket.ticket_number,
            )
        return ticket

    def _open_hold(self, ticket: Ticket, hold_type: HoldType, **fields) -> Hold:
        hold = Hold(
            ticket_id=ticket.id,
            hold_type=hold_type,
            started_at=self.clock(),
            **fields,
        )
        self.store.holds.add(hold)
        ticket.hold_active = True
        ticket.hold_type = hold_type
        ticket.active_hold_id = hold.id
        return hold

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def history(self, ticket_id: str) -> list[Hold]:
        """All holds for the ticket, resolved ones included, oldest first."""
        return self.store.holds.list_for_ticket(ticket_id)

    def list_on_hold(self, hold_type: HoldType | None = None) -> list[OnHoldTicket]:
        """Held tickets with their active hold, most recent hold first."""
        rows: list[OnHoldTicket] = []
        for ticket in self.store.tickets.list_on_hold():
            if hold_type is not None and ticket.hold_type != hold_type:
                continue
            hold = self.store.holds.get(ticket.active_hold_id or "")
            if hold is not None:
                rows.append(OnHoldTicket(ticket=ticket, hold=hold))
        rows.sort(key=lambda row: row.hold.started_at, reverse=True)
        return rows

    def hold_metrics(self) -> HoldMetrics:
        held = self.store.tickets.list_on_hold()
        by_type = Counter(t.hold_type for t in held)
        by_priority = Counter(str(h.priority) for h in self.store.holds.list_active())
        return HoldMetrics(
            total_on_hold=len(held),
            on_hold_parts=by_type[HoldType.PARTS],
            on_hold_issue=by_type[HoldType.ISSUE],
            by_priority=dict(by_priority),
        )
