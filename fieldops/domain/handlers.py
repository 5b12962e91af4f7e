"""Domain event handlers, wired up at application startup."""

from __future__ import annotations

from fieldops.domain.bus import EventBus
from fieldops.domain.events import (
    ConflictDetected,
    TicketAssigned,
    TicketHeld,
    TicketResumed,
    TicketStatusChanged,
    WorkEnded,
    WorkStarted,
)
from fieldops.domain.models import TimelineEntry, TimelineEntryType
from fieldops.repos.memory import MemoryStore


class HandlerRegistry:
    """Subscribes audit handlers that record each committed transition on the ticket timeline."""

    def __init__(self, bus: EventBus, store: MemoryStore) -> None:
        self.bus = bus
        self.store = store
        self._register()

    def _register(self) -> None:
        self.bus.subscribe(TicketAssigned, self.on_ticket_assigned)
        self.bus.subscribe(ConflictDetected, self.on_conflict_detected)
        self.bus.subscribe(TicketHeld, self.on_ticket_held)
        self.bus.subscribe(TicketResumed, self.on_ticket_resumed)
        self.bus.subscribe(WorkStarted, self.on_work_started)
        self.bus.subscribe(WorkEnded, self.on_work_ended)
        self.bus.subscribe(TicketStatusChanged, self.on_status_changed)

    def _record(self, ticket_id: str, entry_type: TimelineEntryType, **payload) -> None:
        with self.store.transaction() as store:
            if store.tickets.get(ticket_id) is None:
                return
            store.timeline.add(
                TimelineEntry(ticket_id=ticket_id, type=entry_type, payload=payload)
            )

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def on_ticket_assigned(self, event: TicketAssigned) -> None:
        self._record(
            event.ticket_id,
            TimelineEntryType.ASSIGNED,
            technician_id=event.technician_id,
            scheduled_date=event.scheduled_date.isoformat(),
            previous_technician_id=event.previous_technician_id,
            previous_scheduled_date=(
                event.previous_scheduled_date.isoformat()
                if event.previous_scheduled_date
                else None
            ),
            overridden=event.overridden,
        )

    def on_conflict_detected(self, event: ConflictDetected) -> None:
        self._record(
            event.ticket_id,
            TimelineEntryType.CONFLICT_DETECTED,
            conflicting_ticket_ids=event.conflicting_ticket_ids,
        )

    def on_ticket_held(self, event: TicketHeld) -> None:
        self._record(
            event.ticket_id,
            TimelineEntryType.HOLD_STARTED,
            hold_id=event.hold_id,
            hold_type=str(event.hold_type),
            time_entry_stopped=event.time_entry_stopped,
        )

    def on_ticket_resumed(self, event: TicketResumed) -> None:
        self._record(
            event.ticket_id,
            TimelineEntryType.HOLD_RESUMED,
            hold_id=event.hold_id,
            resolution_notes=event.resolution_notes,
        )

    def on_work_started(self, event: WorkStarted) -> None:
        self._record(
            event.ticket_id,
            TimelineEntryType.WORK_STARTED,
            technician_id=event.technician_id,
            time_entry_id=event.time_entry_id,
        )

    def on_work_ended(self, event: WorkEnded) -> None:
        self._record(
            event.ticket_id,
            TimelineEntryType.WORK_ENDED,
            technician_id=event.technician_id,
            time_entry_id=event.time_entry_id,
            minutes=event.minutes,
        )

    def on_status_changed(self, event: TicketStatusChanged) -> None:
        self._record(
            event.ticket_id,
            TimelineEntryType.STATUS_CHANGED,
            previous_status=str(event.previous_status),
            status=str(event.status),
        )
