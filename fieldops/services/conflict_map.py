"""Batch conflict maps for calendar badges and dispatch-board highlighting.

Every map is built from ``sweep_conflicts``: sort one technician-day's
commitments by start, then walk them left to right while keeping a min-heap
of the commitments that are still open (keyed by end time).  Entries whose
end is at or before the current start are evicted; whatever remains
overlaps the current commitment.  This is O(n log n + k) for n commitments
and k conflicting pairs, and yields exactly the all-pairs overlap relation
under half-open interval semantics.
"""

from __future__ import annotations

import heapq
import logging
from collections import defaultdict
from collections.abc import Iterable
from datetime import date, datetime, tzinfo

from dateutil import tz

from fieldops.domain.errors import (
    ConflictCheckUnavailableError,
    DispatchError,
    DispatchValidationError,
)
from fieldops.domain.models import Commitment
from fieldops.repos.memory import MemoryStore
from fieldops.services.conflicts import day_bounds, local_day

logger = logging.getLogger(__name__)


def sweep_conflicts(commitments: Iterable[Commitment]) -> dict[str, list[str]]:
    """Map each conflicting ticket id to the ids it overlaps, in start order.

    Commitments involved in no overlap are absent from the result.  Callers
    pass one technician's commitments; mixing technicians would report
    cross-technician overlaps.
    """
    ordered = sorted(commitments, key=lambda c: (c.start, c.end, c.ticket_id))
    links: dict[str, list[str]] = {}
    open_heap: list[tuple[datetime, int, Commitment]] = []

    for index, current in enumerate(ordered):
        while open_heap and open_heap[0][0] <= current.start:
            heapq.heappop(open_heap)
        for _, _, other in sorted(open_heap, key=lambda item: item[1]):
            links.setdefault(other.ticket_id, []).append(current.ticket_id)
            links.setdefault(current.ticket_id, []).append(other.ticket_id)
        heapq.heappush(open_heap, (current.end, index, current))

    return links


def _group_by(
    commitments: Iterable[Commitment], key
) -> dict[object, list[Commitment]]:
    groups: dict[object, list[Commitment]] = defaultdict(list)
    for commitment in commitments:
        groups[key(commitment)].append(commitment)
    return groups


class ConflictMapBuilder:
    """Read-only conflict maps; recomputed on every call, never cached."""

    def __init__(self, store: MemoryStore, zone: tzinfo | None = None) -> None:
        self.store = store
        self.zone = zone or tz.UTC

    def _read(
        self,
        start: datetime,
        end: datetime,
        technician_id: str | None = None,
        include_held: bool = False,
    ) -> list[Commitment]:
        try:
            return self.store.commitments(
                start, end, technician_id=technician_id, include_held=include_held
            )
        except DispatchError:
            raise
        except Exception as exc:
            logger.exception("Commitment read failed for %s - %s", start, end)
            raise ConflictCheckUnavailableError(
                f"Could not load commitments between {start.isoformat()} and "
                f"{end.isoformat()}; conflict map unavailable"
            ) from exc

    def technician_schedule(self, technician_id: str, day: date) -> list[Commitment]:
        """Calendar view of a technician's day; held tickets keep their slot."""
        start, end = day_bounds(day, self.zone)
        commitments = self._read(start, end, technician_id, include_held=True)
        return sorted(commitments, key=lambda c: (c.start, c.end, c.ticket_id))

    def daily_conflict_flags(self, day: date) -> dict[str, bool]:
        """Flag every active commitment on *day*, across all technicians."""
        start, end = day_bounds(day, self.zone)
        commitments = self._read(start, end)

        flags: dict[str, bool] = {}
        for group in _group_by(commitments, lambda c: c.technician_id).values():
            links = sweep_conflicts(group)
            for commitment in group:
                flags[commitment.ticket_id] = commitment.ticket_id in links
        return flags

    def daily_conflicts_by_technician(
        self, technician_id: str, day: date
    ) -> dict[str, list[str]]:
        start, end = day_bounds(day, self.zone)
        return sweep_conflicts(self._read(start, end, technician_id=technician_id))

    def range_conflict_counts(self, start_day: date, end_day: date) -> dict[str, int]:
        """Count distinct conflicting tickets per ISO day key, inclusive range.

        Days with no conflicts are omitted.
        """
        if end_day < start_day:
            raise DispatchValidationError(
                "end", f"Range end {end_day} is before range start {start_day}"
            )
        start, _ = day_bounds(start_day, self.zone)
        _, end = day_bounds(end_day, self.zone)
        commitments = self._read(start, end)

        counts: dict[str, int] = defaultdict(int)
        groups = _group_by(
            commitments, lambda c: (c.technician_id, local_day(c.start, self.zone))
        )
        for (_, day), group in groups.items():
            conflicting = sweep_conflicts(group)
            if conflicting:
                counts[day.isoformat()] += len(conflicting)
        return dict(sorted(counts.items()))
