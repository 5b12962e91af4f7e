"""Service for detecting technician scheduling conflicts."""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, tzinfo

from dateutil import tz

from fieldops.domain.errors import ConflictCheckUnavailableError, DispatchError
from fieldops.domain.models import Commitment, ConflictResult, as_utc
from fieldops.repos.memory import MemoryStore

logger = logging.getLogger(__name__)


def overlaps(
    start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime
) -> bool:
    """Return True if the half-open intervals [start_a, end_a) and [start_b, end_b) overlap.

    Exact boundary touches (end_a == start_b) are NOT considered conflicts.
    """
    return start_a < end_b and end_a > start_b


def resolve_timezone(name: str) -> tzinfo:
    zone = tz.gettz(name)
    if zone is None:
        raise ValueError(f"Unknown schedule timezone: {name}")
    return zone


def local_day(moment: datetime, zone: tzinfo) -> date:
    """Calendar day of *moment* in the schedule timezone."""
    return as_utc(moment).astimezone(zone).date()


def day_bounds(day: date, zone: tzinfo) -> tuple[datetime, datetime]:
    """Return the [start, end) instants of *day* in the schedule timezone."""
    start = datetime.combine(day, time.min, tzinfo=zone)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=zone)
    return start, end


class ConflictDetector:
    """Checks a proposed technician time slot against that technician's day."""

    def __init__(self, store: MemoryStore, zone: tzinfo | None = None) -> None:
        self.store = store
        self.zone = zone or tz.UTC

    def check_conflict(
        self,
        technician_id: str,
        proposed_start: datetime,
        proposed_end: datetime,
        exclude_ticket_id: str | None = None,
    ) -> ConflictResult:
        """Return every active commitment the proposal collides with.

        Only commitments starting on the proposal's calendar day are
        considered.  An unknown technician yields an empty result.  Raises
        ``ConflictCheckUnavailableError`` when the store cannot be read.
        """
        proposed_start = as_utc(proposed_start)
        proposed_end = as_utc(proposed_end)
        day = local_day(proposed_start, self.zone)
        if proposed_end > proposed_start and local_day(
            proposed_end - timedelta(microseconds=1), self.zone
        ) != day:
            logger.warning(
                "Proposal for technician %s crosses midnight (%s - %s); "
                "checking %s only",
                technician_id,
                proposed_start.isoformat(),
                proposed_end.isoformat(),
                day.isoformat(),
            )

        try:
            if self.store.technicians.get(technician_id) is None:
                logger.info("Conflict check for unknown technician %s", technician_id)
                return ConflictResult()
            start, end = day_bounds(day, self.zone)
            existing = self.store.commitments(start, end, technician_id=technician_id)
        except DispatchError:
            raise
        except Exception as exc:
            logger.exception(
                "Conflict lookup failed for technician %s on %s", technician_id, day
            )
            raise ConflictCheckUnavailableError(
                f"Could not determine conflicts for technician {technician_id} "
                f"on {day.isoformat()}; retry before assigning",
                ticket_id=exclude_ticket_id,
            ) from exc

        overlapping = sorted(
            (
                c
                for c in existing
                if c.ticket_id != exclude_ticket_id
                and overlaps(proposed_start, proposed_end, c.start, c.end)
            ),
            key=_start_key,
        )
        if overlapping:
            logger.warning(
                "Technician %s proposal %s - %s collides with %s",
                technician_id,
                proposed_start.isoformat(),
                proposed_end.isoformat(),
                ", ".join(c.ticket_number for c in overlapping),
            )
        return ConflictResult.from_overlaps(overlapping)


def _start_key(commitment: Commitment) -> tuple:
    return (commitment.start, commitment.end, commitment.ticket_id)
