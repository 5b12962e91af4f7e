"""Assign tickets to technician time slots with a human-confirmed override."""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta

from fieldops.domain.bus import EventBus
from fieldops.domain.errors import ConflictCheckUnavailableError, DispatchValidationError
from fieldops.domain.events import ConflictDetected, TicketAssigned
from fieldops.domain.models import (
    DEFAULT_DURATION_MINUTES,
    AssignmentOutcome,
    Ticket,
    TicketStatus,
    as_utc,
)
from fieldops.repos.memory import MemoryStore
from fieldops.services import guards
from fieldops.services.conflict_map import ConflictMapBuilder
from fieldops.services.conflicts import ConflictDetector, local_day

logger = logging.getLogger(__name__)


class ScheduleAssignmentService:
    """Check-then-commit assignment flow.

    The conflict check is advisory: two dispatchers may still double-book a
    technician concurrently, which then shows up in the conflict maps.
    """

    def __init__(
        self,
        store: MemoryStore,
        detector: ConflictDetector,
        map_builder: ConflictMapBuilder,
        bus: EventBus | None = None,
        default_duration: int = DEFAULT_DURATION_MINUTES,
    ) -> None:
        self.store = store
        self.detector = detector
        self.map_builder = map_builder
        self.bus = bus or EventBus()
        self.default_duration = default_duration

    def request_assignment(
        self,
        ticket_id: str,
        technician_id: str,
        start: datetime,
        duration_minutes: int | None = None,
    ) -> AssignmentOutcome:
        """Commit the assignment unless it collides; collisions are returned, not written."""
        ticket = self._validate(ticket_id, technician_id, duration_minutes)
        start = as_utc(start)
        duration = duration_minutes or ticket.estimated_duration or self.default_duration

        result = self.detector.check_conflict(
            technician_id,
            start,
            start + timedelta(minutes=duration),
            exclude_ticket_id=ticket.id,
        )
        if result.has_conflict:
            logger.warning(
                "Assignment of %s to technician %s held for confirmation: %s",
                ticket.ticket_number,
                technician_id,
                result.message,
            )
            return AssignmentOutcome(committed=False, ticket=ticket, conflict=result)

        return self._commit(ticket_id, technician_id, start, duration_minutes, overridden=False)

    def confirm_override(
        self,
        ticket_id: str,
        technician_id: str,
        start: datetime,
        duration_minutes: int | None = None,
    ) -> AssignmentOutcome:
        """Commit a dispatcher-confirmed assignment without re-checking conflicts."""
        self._validate(ticket_id, technician_id, duration_minutes)
        return self._commit(
            ticket_id, technician_id, as_utc(start), duration_minutes, overridden=True
        )

    def _validate(
        self, ticket_id: str, technician_id: str, duration_minutes: int | None
    ) -> Ticket:
        ticket = guards.require_ticket(self.store, ticket_id)
        technician = self.store.technicians.get(technician_id)
        if technician is None or not technician.is_active:
            raise DispatchValidationError(
                "technician_id",
                f"Unknown or inactive technician {technician_id}",
                ticket_id=ticket.id,
                ticket_number=ticket.ticket_number,
            )
        if duration_minutes is not None and duration_minutes <= 0:
            raise DispatchValidationError(
                "estimated_duration",
                "Duration must be a positive number of minutes",
                ticket_id=ticket.id,
                ticket_number=ticket.ticket_number,
            )
        guards.ensure_open(ticket, "schedule")
        return ticket

    def _commit(
        self,
        ticket_id: str,
        technician_id: str,
        start: datetime,
        duration_minutes: int | None,
        overridden: bool,
    ) -> AssignmentOutcome:
        with self.store.transaction():
            ticket = self._validate(ticket_id, technician_id, duration_minutes)
            previous_technician = ticket.assigned_to
            previous_date = ticket.scheduled_date

            ticket.assigned_to = technician_id
            ticket.scheduled_date = start
            if duration_minutes is not None:
                ticket.estimated_duration = duration_minutes
            if ticket.status != TicketStatus.IN_PROGRESS:
                ticket.status = TicketStatus.SCHEDULED

        logger.info(
            "Ticket %s assigned to technician %s at %s%s",
            ticket.ticket_number,
            technician_id,
            start.isoformat(),
            " (conflict override)" if overridden else "",
        )
        self.bus.publish(
            TicketAssigned(
                ticket_id=ticket.id,
                technician_id=technician_id,
                scheduled_date=start,
                previous_technician_id=previous_technician,
                previous_scheduled_date=previous_date,
                overridden=overridden,
            )
        )

        new_day = local_day(start, self.map_builder.zone)
        days = [new_day]
        if previous_date is not None:
            old_day = local_day(previous_date, self.map_builder.zone)
            if old_day != new_day:
                days.insert(0, old_day)
        refreshed = self._refresh_days(days)

        if refreshed.get(new_day.isoformat(), {}).get(ticket.id):
            self._publish_conflict(ticket, technician_id, new_day)

        return AssignmentOutcome(committed=True, ticket=ticket, refreshed_days=refreshed)

    def _refresh_days(self, days: list[date]) -> dict[str, dict[str, bool]]:
        """Recompute day flags after a commit; a failed read leaves that day out."""
        refreshed: dict[str, dict[str, bool]] = {}
        for day in days:
            try:
                refreshed[day.isoformat()] = self.map_builder.daily_conflict_flags(day)
            except ConflictCheckUnavailableError:
                logger.warning("Conflict map for %s not refreshed after commit", day)
        return refreshed

    def _publish_conflict(self, ticket: Ticket, technician_id: str, day: date) -> None:
        try:
            links = self.map_builder.daily_conflicts_by_technician(technician_id, day)
        except ConflictCheckUnavailableError:
            logger.warning("Could not list conflicts for %s", ticket.ticket_number)
            return
        self.bus.publish(
            ConflictDetected(
                ticket_id=ticket.id, conflicting_ticket_ids=links.get(ticket.id, [])
            )
        )
