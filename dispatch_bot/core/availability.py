"""Resolve declared rider availability into concrete windows for a date.

Riders opt in: a date with no ``Available`` entry is unavailable all day.
``Available`` entries add up, whether they come from a weekly recurrence or
a one-off date, and ``Unavailable`` entries are cut out of the result.
"""

from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from .models import AvailabilityEntry, AvailabilityKind, TimeWindow

if TYPE_CHECKING:
    from ..data.store import DispatchStore

log = logging.getLogger(__name__)


def merge_windows(windows: Iterable[TimeWindow]) -> list[TimeWindow]:
    """Union of ``windows`` as a sorted list of disjoint windows.

    Touching windows (``09:00-12:00`` and ``12:00-15:00``) are joined.
    """
    merged: list[TimeWindow] = []
    for window in sorted(windows, key=lambda w: (w.start, w.end)):
        if merged and window.start <= merged[-1].end:
            last = merged[-1]
            if window.end > last.end:
                merged[-1] = TimeWindow(start=last.start, end=window.end)
        else:
            merged.append(window)
    return merged


def subtract_window(window: TimeWindow, hole: TimeWindow) -> list[TimeWindow]:
    """Remove ``hole`` from ``window``, leaving zero, one or two pieces."""
    if not window.overlaps(hole):
        return [window]
    pieces: list[TimeWindow] = []
    if window.start < hole.start:
        pieces.append(TimeWindow(start=window.start, end=hole.start))
    if hole.end < window.end:
        pieces.append(TimeWindow(start=hole.end, end=window.end))
    return pieces


def resolve_windows(entries: Iterable[AvailabilityEntry], day: dt.date) -> list[TimeWindow]:
    """Apply every entry relevant to ``day`` and return the free windows."""
    available: list[TimeWindow] = []
    blocked: list[TimeWindow] = []
    for entry in entries:
        if not entry.applies_to(day):
            continue
        if entry.kind is AvailabilityKind.AVAILABLE:
            available.append(entry.window)
        else:
            blocked.append(entry.window)

    if not available:
        return []

    free = merge_windows(available)
    for hole in merge_windows(blocked):
        free = [piece for window in free for piece in subtract_window(window, hole)]
    return free


class AvailabilityResolver:
    """Answer availability questions from the entries held by a store."""

    def __init__(self, store: DispatchStore) -> None:
        self.store = store

    def get_windows_for_date(self, rider_id: str, day: dt.date) -> list[TimeWindow]:
        """Free windows for ``rider_id`` on ``day``; empty for unknown riders."""
        if self.store.get_rider(rider_id) is None:
            log.debug("No rider %s; treating as unavailable on %s", rider_id, day)
            return []
        return resolve_windows(self.store.availability_for(rider_id), day)

    def is_available(self, rider_id: str, day: dt.date, window: TimeWindow) -> bool:
        """Whether a single free window covers all of ``window``."""
        return any(
            free.contains(window) for free in self.get_windows_for_date(rider_id, day)
        )
