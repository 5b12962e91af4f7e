"""FastAPI application: entry point for the dispatch conflict & hold service."""

from __future__ import annotations

import logging
from datetime import date

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from fieldops.config import Settings, get_settings
from fieldops.domain.bus import EventBus
from fieldops.domain.errors import DispatchError, NotFoundError
from fieldops.domain.handlers import HandlerRegistry
from fieldops.domain.models import (
    ActiveTimer,
    AssignmentOutcome,
    AssignmentRequest,
    Commitment,
    ConflictCheckRequest,
    ConflictResult,
    HoldForPartsRequest,
    HoldMetrics,
    HoldResult,
    HoldType,
    OnHoldTicket,
    ReportIssueRequest,
    ResumeRequest,
    StatusChangeRequest,
    Ticket,
    TimeEntry,
    TimelineEntry,
    TimerRequest,
)
from fieldops.repos.memory import MemoryStore, create_seeded_store
from fieldops.services.assignment import ScheduleAssignmentService
from fieldops.services.conflict_map import ConflictMapBuilder
from fieldops.services.conflicts import ConflictDetector, resolve_timezone
from fieldops.services.holds import HoldStateMachine
from fieldops.services.tickets import TicketWorkflow
from fieldops.services.time_tracking import Clock, TimeTracker, utc_clock

logger = logging.getLogger(__name__)


class Services:
    """Explicitly wired service graph; one per application instance."""

    def __init__(
        self,
        store: MemoryStore,
        settings: Settings,
        clock: Clock = utc_clock,
    ) -> None:
        zone = resolve_timezone(settings.schedule_timezone)
        self.store = store
        self.bus = EventBus()
        self.handlers = HandlerRegistry(bus=self.bus, store=store)
        self.detector = ConflictDetector(store, zone)
        self.map_builder = ConflictMapBuilder(store, zone)
        self.time_tracker = TimeTracker(store, bus=self.bus, clock=clock)
        self.holds = HoldStateMachine(
            store,
            self.time_tracker,
            bus=self.bus,
            clock=clock,
            parts_summary=settings.parts_hold_summary,
        )
        self.tickets = TicketWorkflow(store, self.time_tracker, bus=self.bus, clock=clock)
        self.assignments = ScheduleAssignmentService(
            store,
            self.detector,
            self.map_builder,
            bus=self.bus,
            default_duration=settings.default_duration_minutes,
        )


def get_services(request: Request) -> Services:
    return request.app.state.services


router = APIRouter()


# ── Conflicts ─────────────────────────────────────────────────────────


@router.post("/conflicts/check", response_model=ConflictResult)
def check_conflict(
    payload: ConflictCheckRequest, services: Services = Depends(get_services)
) -> ConflictResult:
    """Check a proposed slot against the technician's same-day commitments."""
    return services.detector.check_conflict(
        payload.technician_id,
        payload.proposed_start,
        payload.proposed_end,
        exclude_ticket_id=payload.exclude_ticket_id,
    )


@router.get("/conflicts/daily", response_model=dict[str, bool])
def daily_conflicts(day: date, services: Services = Depends(get_services)) -> dict:
    return services.map_builder.daily_conflict_flags(day)


@router.get("/conflicts/range", response_model=dict[str, int])
def range_conflicts(
    start: date, end: date, services: Services = Depends(get_services)
) -> dict:
    """Per-day counts of distinct conflicting tickets for calendar badges."""
    return services.map_builder.range_conflict_counts(start, end)


@router.get("/technicians/{technician_id}/conflicts", response_model=dict[str, list[str]])
def technician_conflicts(
    technician_id: str, day: date, services: Services = Depends(get_services)
) -> dict:
    return services.map_builder.daily_conflicts_by_technician(technician_id, day)


@router.get("/technicians/{technician_id}/schedule", response_model=list[Commitment])
def technician_schedule(
    technician_id: str, day: date, services: Services = Depends(get_services)
) -> list[Commitment]:
    return services.map_builder.technician_schedule(technician_id, day)


# ── Assignment ────────────────────────────────────────────────────────


@router.post("/tickets/{ticket_id}/assign", response_model=AssignmentOutcome)
def assign_ticket(
    ticket_id: str,
    body: AssignmentRequest,
    services: Services = Depends(get_services),
) -> AssignmentOutcome:
    """Assign a ticket; ``override=true`` commits a confirmed double-booking."""
    if body.override:
        return services.assignments.confirm_override(
            ticket_id, body.technician_id, body.scheduled_date, body.estimated_duration
        )
    return services.assignments.request_assignment(
        ticket_id, body.technician_id, body.scheduled_date, body.estimated_duration
    )


# ── Holds ─────────────────────────────────────────────────────────────


@router.post("/tickets/{ticket_id}/hold/parts", response_model=HoldResult)
def hold_for_parts(
    ticket_id: str,
    body: HoldForPartsRequest,
    services: Services = Depends(get_services),
) -> HoldResult:
    return services.holds.hold_for_parts(
        ticket_id,
        urgency=body.urgency,
        notes=body.notes,
        summary=body.summary,
        parts=body.parts,
    )


@router.post("/tickets/{ticket_id}/hold/issue", response_model=HoldResult)
def report_issue(
    ticket_id: str,
    body: ReportIssueRequest,
    services: Services = Depends(get_services),
) -> HoldResult:
    return services.holds.report_issue(
        ticket_id,
        category=body.category,
        severity=body.severity,
        description=body.description,
        summary=body.summary,
        metadata=body.metadata,
    )


@router.post("/tickets/{ticket_id}/resume", response_model=HoldResult)
def resume_ticket(
    ticket_id: str,
    body: ResumeRequest | None = None,
    services: Services = Depends(get_services),
) -> HoldResult:
    notes = body.resolution_notes if body else None
    return services.holds.resume(ticket_id, resolution_notes=notes)


@router.get("/holds", response_model=list[OnHoldTicket])
def list_holds(
    hold_type: HoldType | None = None, services: Services = Depends(get_services)
) -> list[OnHoldTicket]:
    return services.holds.list_on_hold(hold_type)


@router.get("/holds/metrics", response_model=HoldMetrics)
def hold_metrics(services: Services = Depends(get_services)) -> HoldMetrics:
    return services.holds.hold_metrics()


# ── Tickets ───────────────────────────────────────────────────────────


@router.get("/tickets/{ticket_id}", response_model=Ticket)
def get_ticket(ticket_id: str, services: Services = Depends(get_services)) -> Ticket:
    ticket = services.store.tickets.get(ticket_id)
    if ticket is None:
        raise NotFoundError(f"Ticket {ticket_id} not found", ticket_id=ticket_id)
    return ticket


@router.get("/tickets/{ticket_id}/timeline", response_model=list[TimelineEntry])
def get_timeline(
    ticket_id: str, services: Services = Depends(get_services)
) -> list[TimelineEntry]:
    if services.store.tickets.get(ticket_id) is None:
        raise NotFoundError(f"Ticket {ticket_id} not found", ticket_id=ticket_id)
    return services.store.timeline.list_for_ticket(ticket_id)


@router.post("/tickets/{ticket_id}/status", response_model=Ticket)
def change_status(
    ticket_id: str,
    body: StatusChangeRequest,
    services: Services = Depends(get_services),
) -> Ticket:
    return services.tickets.change_status(ticket_id, body.status)


# ── Timers ────────────────────────────────────────────────────────────


@router.get("/technicians/{technician_id}/timer", response_model=ActiveTimer)
def active_timer(
    technician_id: str, services: Services = Depends(get_services)
) -> ActiveTimer:
    return services.time_tracker.get_active_timer(technician_id)


@router.post("/technicians/{technician_id}/timer/start", response_model=TimeEntry)
def start_work(
    technician_id: str, body: TimerRequest, services: Services = Depends(get_services)
) -> TimeEntry:
    return services.time_tracker.start_work(technician_id, body.ticket_id)


@router.post("/technicians/{technician_id}/timer/stop", response_model=TimeEntry)
def end_work(
    technician_id: str, body: TimerRequest, services: Services = Depends(get_services)
) -> TimeEntry:
    return services.time_tracker.end_work(technician_id, body.ticket_id)


# ── Application factory ───────────────────────────────────────────────


async def _dispatch_error_handler(request: Request, exc: DispatchError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app(
    store: MemoryStore | None = None,
    clock: Clock = utc_clock,
    settings: Settings | None = None,
) -> FastAPI:
    """Build the API around an explicit store and clock (tests inject fakes)."""
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if store is None:
        store_kwargs = dict(
            active_statuses=settings.active_statuses,
            default_duration=settings.default_duration_minutes,
        )
        store = (
            create_seeded_store(**store_kwargs)
            if settings.seed_demo_data
            else MemoryStore(**store_kwargs)
        )

    app = FastAPI(title="Dispatch Conflict & Hold Service")
    app.state.services = Services(store, settings, clock=clock)
    app.add_exception_handler(DispatchError, _dispatch_error_handler)
    app.include_router(router)
    logger.info(
        "Dispatch service ready (timezone=%s, default duration=%d min, seeded=%s)",
        settings.schedule_timezone,
        settings.default_duration_minutes,
        settings.seed_demo_data,
    )
    return app


app = create_app()
