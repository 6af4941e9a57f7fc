"""Double-booking detection for riders."""

from __future__ import annotations

import datetime as dt
from typing import TYPE_CHECKING

from .models import Assignment, TimeWindow

if TYPE_CHECKING:
    from ..data.store import DispatchStore


class ConflictDetector:
    """Find a rider's active assignments overlapping a time window.

    The detector only reports; whether a conflict blocks an assignment is
    up to the caller.
    """

    def __init__(self, store: DispatchStore) -> None:
        self.store = store

    def find_conflicts(
        self,
        rider_id: str,
        day: dt.date,
        window: TimeWindow,
        exclude_request: str | None = None,
    ) -> list[Assignment]:
        """Active assignments of ``rider_id`` on ``day`` overlapping ``window``.

        Windows are half-open, so an assignment ending at 11:00 does not
        clash with one starting at 11:00. Assignments on
        ``exclude_request`` are ignored.
        """
        return sorted(
            (
                a
                for a in self.store.assignments_for_rider(rider_id, on=day)
                if a.request_id != exclude_request and a.window.overlaps(window)
            ),
            key=lambda a: (a.start_time, a.assignment_id),
        )
