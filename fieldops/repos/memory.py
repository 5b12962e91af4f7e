"""In-memory repositories and the transactional store that groups them.

Committed state is never modified in place.  A transaction works on private
copies of the rows it reads or writes; on a clean exit those copies replace
the committed rows in one swap, and on failure they are dropped.  Readers on
other threads take no lock and always see the last committed state.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone

from fieldops.domain.errors import DispatchError, TransactionFailedError
from fieldops.domain.models import (
    DEFAULT_DURATION_MINUTES,
    Commitment,
    Hold,
    IssueReport,
    PartsRequest,
    Technician,
    Ticket,
    TicketStatus,
    TimeEntry,
    TimelineEntry,
)

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = (TicketStatus.OPEN, TicketStatus.SCHEDULED, TicketStatus.IN_PROGRESS)


class _KeyedRepository:
    """One table of models keyed by id, backed by the owning store."""

    def __init__(self, store: MemoryStore, name: str) -> None:
        self._owner = store
        self._name = name

    def _visible(self) -> list:
        committed = self._owner._committed[self._name]
        staged = self._owner._staged_for(self._name)
        if not staged:
            return list(committed.values())
        return list({**committed, **staged}.values())

    def _checkout(self, item):
        """Inside the caller's transaction, swap *item* for its private copy."""
        staged = self._owner._staged_for(self._name)
        if staged is None or item is None:
            return item
        if item.id not in staged:
            staged[item.id] = item.model_copy(deep=True)
        return staged[item.id]

    def _select(self, predicate: Callable[[object], bool]) -> list:
        return [self._checkout(item) for item in self._visible() if predicate(item)]

    def add(self, item) -> None:
        with self._owner.transaction():
            self._owner._staged_for(self._name)[item.id] = item

    def get(self, item_id: str):
        staged = self._owner._staged_for(self._name)
        if staged and item_id in staged:
            return staged[item_id]
        return self._checkout(self._owner._committed[self._name].get(item_id))

    def list_all(self) -> list:
        return self._select(lambda item: True)


class TechnicianRepository(_KeyedRepository):
    def get(self, technician_id: str) -> Technician | None:
        return super().get(technician_id)


class TicketRepository(_KeyedRepository):
    def get(self, ticket_id: str) -> Ticket | None:
        return super().get(ticket_id)

    def list_scheduled(
        self,
        start: datetime,
        end: datetime,
        technician_id: str | None = None,
    ) -> list[Ticket]:
        """Return assigned tickets whose scheduled_date falls in [start, end)."""
        return self._select(
            lambda t: t.assigned_to is not None
            and t.scheduled_date is not None
            and start <= t.scheduled_date < end
            and (technician_id is None or t.assigned_to == technician_id)
        )

    def list_on_hold(self) -> list[Ticket]:
        return self._select(lambda t: t.hold_active)


class HoldRepository(_KeyedRepository):
    def get(self, hold_id: str) -> Hold | None:
        return super().get(hold_id)

    def list_for_ticket(self, ticket_id: str) -> list[Hold]:
        return sorted(
            self._select(lambda h: h.ticket_id == ticket_id),
            key=lambda h: h.started_at,
        )

    def list_active(self) -> list[Hold]:
        return self._select(lambda h: h.active)


class PartsRequestRepository(_KeyedRepository):
    def get(self, request_id: str) -> PartsRequest | None:
        return super().get(request_id)


class IssueReportRepository(_KeyedRepository):
    def get(self, report_id: str) -> IssueReport | None:
        return super().get(report_id)


class TimeEntryRepository(_KeyedRepository):
    def get(self, entry_id: str) -> TimeEntry | None:
        return super().get(entry_id)

    def open_for_technician(self, technician_id: str) -> TimeEntry | None:
        running = self._select(
            lambda e: e.technician_id == technician_id and e.is_running
        )
        return running[0] if running else None

    def open_for_ticket(self, ticket_id: str) -> list[TimeEntry]:
        return self._select(lambda e: e.ticket_id == ticket_id and e.is_running)

    def list_for_ticket(self, ticket_id: str) -> list[TimeEntry]:
        return sorted(
            self._select(lambda e: e.ticket_id == ticket_id),
            key=lambda e: e.started_at,
        )


class TimelineRepository(_KeyedRepository):
    """Append-only audit entries; each add commits on its own."""

    def list_for_ticket(self, ticket_id: str) -> list[TimelineEntry]:
        return sorted(
            self._select(lambda e: e.ticket_id == ticket_id),
            key=lambda e: e.timestamp,
        )


_TABLES: tuple[tuple[str, type[_KeyedRepository]], ...] = (
    ("technicians", TechnicianRepository),
    ("tickets", TicketRepository),
    ("holds", HoldRepository),
    ("parts_requests", PartsRequestRepository),
    ("issue_reports", IssueReportRepository),
    ("time_entries", TimeEntryRepository),
    ("timeline", TimelineRepository),
)


class MemoryStore:
    """All repositories plus an all-or-nothing ``transaction()`` boundary.

    Writers serialize on a re-entrant lock.  Each read call sees one
    committed state; two separate reads may straddle a commit.
    """

    def __init__(
        self,
        active_statuses: Iterable[str] = ACTIVE_STATUSES,
        default_duration: int = DEFAULT_DURATION_MINUTES,
    ) -> None:
        self._committed: dict[str, dict] = {name: {} for name, _ in _TABLES}
        self._staging: dict[str, dict] | None = None
        self._writer: int | None = None
        self._lock = threading.RLock()

        self.technicians = TechnicianRepository(self, "technicians")
        self.tickets = TicketRepository(self, "tickets")
        self.holds = HoldRepository(self, "holds")
        self.parts_requests = PartsRequestRepository(self, "parts_requests")
        self.issue_reports = IssueReportRepository(self, "issue_reports")
        self.time_entries = TimeEntryRepository(self, "time_entries")
        self.timeline = TimelineRepository(self, "timeline")
        self.active_statuses = frozenset(TicketStatus(s) for s in active_statuses)
        self.default_duration = default_duration

    def _staged_for(self, name: str) -> dict | None:
        """This thread's pending rows for *name*, or None outside its transaction."""
        if self._writer != threading.get_ident():
            return None
        return self._staging.setdefault(name, {})

    @contextmanager
    def transaction(self) -> Iterator[MemoryStore]:
        """Run a unit of work; nothing it writes is visible until it exits cleanly.

        Nested calls join the outermost transaction.  Errors that are not
        ``DispatchError``s are re-raised as ``TransactionFailedError``.
        """
        with self._lock:
            if self._writer == threading.get_ident():
                yield self
                return

            self._writer = threading.get_ident()
            self._staging = {}
            try:
                yield self
            except DispatchError:
                raise
            except Exception as exc:
                logger.exception("Transaction rolled back after unexpected error")
                raise TransactionFailedError(
                    f"Operation did not complete and was rolled back: {exc}"
                ) from exc
            else:
                self._publish(self._staging)
            finally:
                self._writer = None
                self._staging = None

    def _publish(self, staging: dict[str, dict]) -> None:
        committed = dict(self._committed)
        for name, rows in staging.items():
            if rows:
                committed[name] = {**committed[name], **rows}
        self._committed = committed

    # ------------------------------------------------------------------
    # Commitment queries
    # ------------------------------------------------------------------

    def is_active(self, ticket: Ticket) -> bool:
        return ticket.status in self.active_statuses

    def commitments(
        self,
        start: datetime,
        end: datetime,
        technician_id: str | None = None,
        include_held: bool = False,
    ) -> list[Commitment]:
        """Materialize commitments starting in [start, end).

        Held tickets count for conflicts only when ``include_held`` is set
        (calendar display keeps their slot).
        """
        return [
            Commitment.from_ticket(t, self.default_duration)
            for t in self.tickets.list_scheduled(start, end, technician_id)
            if self.is_active(t) and (include_held or not t.hold_active)
        ]


# ---------------------------------------------------------------------------
# Seed data – a small board with one double-booking for demos
# ---------------------------------------------------------------------------


def _seed(store: MemoryStore) -> None:
    today = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)

    alice = Technician(full_name="Alice Moreno")
    ben = Technician(full_name="Ben Okafor")
    for tech in (alice, ben, Technician(full_name="Carla Diaz", is_active=False)):
        store.technicians.add(tech)

    store.tickets.add(
        Ticket(
            ticket_number="T-1001",
            title="Rooftop unit not cooling",
            customer_name="Harbor Dental",
            assigned_to=alice.id,
            scheduled_date=today + timedelta(hours=9),
            status=TicketStatus.SCHEDULED,
        )
    )
    store.tickets.add(
        Ticket(
            ticket_number="T-1002",
            title="Quarterly PM visit",
            customer_name="Northside Grocery",
            assigned_to=alice.id,
            scheduled_date=today + timedelta(hours=10),
            estimated_duration=60,
            status=TicketStatus.SCHEDULED,
        )
    )
    store.tickets.add(
        Ticket(
            ticket_number="T-1003",
            title="Thermostat replacement",
            customer_name="Elm St Apartments",
            assigned_to=ben.id,
            scheduled_date=today + timedelta(hours=13),
            estimated_duration=90,
            status=TicketStatus.SCHEDULED,
        )
    )
    store.tickets.add(
        Ticket(
            ticket_number="T-1004",
            title="Water heater leak",
            customer_name="Pine Ridge Cafe",
        )
    )


def create_seeded_store(**kwargs) -> MemoryStore:
    """Return a MemoryStore pre-loaded with sample technicians and tickets."""
    store = MemoryStore(**kwargs)
    _seed(store)
    return store
