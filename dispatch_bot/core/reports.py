"""Counts and hours over requests, assignments and riders."""

from __future__ import annotations

import datetime as dt
from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .models import AssignmentStatus, RequestStatus, RiderStatus

if TYPE_CHECKING:
    from ..data.store import DispatchStore


@dataclass
class RiderPerformance:
    rider_id: str
    name: str
    assignments: int = 0
    completed: int = 0
    no_shows: int = 0
    hours: float = 0.0

    @property
    def completion_rate(self) -> int:
        """Completed share of assignments as a whole percentage."""
        if not self.assignments:
            return 0
        return round(self.completed / self.assignments * 100)


@dataclass
class Report:
    start: dt.date
    end: dt.date
    total_requests: int = 0
    completed_requests: int = 0
    requests_by_status: dict[str, int] = field(default_factory=dict)
    active_riders: int = 0
    scheduled_hours: float = 0.0
    completed_hours: float = 0.0
    riders: list[RiderPerformance] = field(default_factory=list)


def _hours(delta: dt.timedelta) -> float:
    return delta.total_seconds() / 3600


def generate_report(store: DispatchStore, start: dt.date, end: dt.date) -> Report:
    """Summarise activity for events dated ``start`` to ``end`` inclusive.

    Cancelled assignments are left out of rider counts and hours. Riders are
    ordered by number of assignments, busiest first.
    """
    if end < start:
        start, end = end, start
    report = Report(start=start, end=end)

    requests = [r for r in store.list_requests() if start <= r.event_date <= end]
    statuses = Counter(r.status.value for r in requests)
    report.total_requests = len(requests)
    report.completed_requests = statuses.get(RequestStatus.COMPLETED.value, 0)
    report.requests_by_status = dict(sorted(statuses.items()))
    report.active_riders = len(store.list_riders(RiderStatus.ACTIVE))

    riders = {r.rider_id: r for r in store.list_riders()}
    performance: dict[str, RiderPerformance] = {}
    for assignment in store.list_assignments():
        if not start <= assignment.event_date <= end:
            continue
        if assignment.status is AssignmentStatus.CANCELLED:
            continue
        rider = riders.get(assignment.rider_id)
        perf = performance.get(assignment.rider_id)
        if perf is None:
            name = rider.name if rider else assignment.rider_name
            perf = performance[assignment.rider_id] = RiderPerformance(
                rider_id=assignment.rider_id, name=name
            )
        perf.assignments += 1
        hours = _hours(assignment.window.duration)
        if assignment.status is AssignmentStatus.COMPLETED:
            perf.completed += 1
            perf.hours += hours
            report.completed_hours += hours
        elif assignment.status is AssignmentStatus.NO_SHOW:
            perf.no_shows += 1
        else:
            report.scheduled_hours += hours

    report.riders = sorted(
        performance.values(), key=lambda p: (-p.assignments, p.name.lower())
    )
    return report
