"""Tests for availability resolution."""

import datetime as dt

from dispatch_bot.core.availability import (
    AvailabilityResolver,
    merge_windows,
    resolve_windows,
    subtract_window,
)
from dispatch_bot.core.models import (
    AvailabilityEntry,
    AvailabilityKind,
    Recurrence,
    Rider,
    TimeWindow,
)

MONDAY = dt.date(2024, 1, 15)


def w(start: int, end: int) -> TimeWindow:
    return TimeWindow(start=dt.time(start), end=dt.time(end))


def entry(start=None, end=None, *, kind=AvailabilityKind.AVAILABLE, day=MONDAY, recurrence=None):
    return AvailabilityEntry(
        rider_id="R1",
        date=None if recurrence else day,
        recurrence=recurrence,
        start_time=dt.time(start) if start is not None else None,
        end_time=dt.time(end) if end is not None else None,
        kind=kind,
    )


def test_merge_joins_overlapping_and_touching() -> None:
    assert merge_windows([w(13, 15), w(9, 12), w(12, 13), w(16, 17)]) == [w(9, 15), w(16, 17)]


def test_subtract_splits_window() -> None:
    assert subtract_window(w(9, 17), w(12, 13)) == [w(9, 12), w(13, 17)]
    assert subtract_window(w(9, 17), w(17, 18)) == [w(9, 17)]
    assert subtract_window(w(9, 17), w(8, 18)) == []


def test_no_entries_means_unavailable() -> None:
    assert resolve_windows([], MONDAY) == []
    assert resolve_windows([entry(kind=AvailabilityKind.UNAVAILABLE)], MONDAY) == []


def test_unavailable_cut_out_of_available() -> None:
    entries = [entry(9, 17), entry(12, 13, kind=AvailabilityKind.UNAVAILABLE)]
    assert resolve_windows(entries, MONDAY) == [w(9, 12), w(13, 17)]


def test_recurring_and_one_off_entries_add_up() -> None:
    weekly = Recurrence(weekday=0, start_date=dt.date(2024, 1, 1))
    entries = [entry(9, 12, recurrence=weekly), entry(14, 18)]
    assert resolve_windows(entries, MONDAY) == [w(9, 12), w(14, 18)]
    # next Monday only the recurrence applies
    assert resolve_windows(entries, MONDAY + dt.timedelta(days=7)) == [w(9, 12)]


def test_whole_day_block_wins() -> None:
    weekly = Recurrence(weekday=0, start_date=dt.date(2024, 1, 1))
    entries = [
        entry(9, 17, recurrence=weekly),
        entry(kind=AvailabilityKind.UNAVAILABLE),
    ]
    assert resolve_windows(entries, MONDAY) == []


def test_resolver_is_available(store) -> None:
    store.add_rider(Rider(rider_id="R1", name="Alice"))
    store.add_availability("R1", date=MONDAY, start_time=dt.time(9), end_time=dt.time(17))
    store.add_availability(
        "R1",
        date=MONDAY,
        start_time=dt.time(12),
        end_time=dt.time(13),
        kind=AvailabilityKind.UNAVAILABLE,
    )
    resolver = AvailabilityResolver(store)

    assert resolver.get_windows_for_date("R1", MONDAY) == [w(9, 12), w(13, 17)]
    assert resolver.is_available("R1", MONDAY, w(9, 12))
    assert resolver.is_available("R1", MONDAY, w(14, 16))
    # spans the lunch block
    assert not resolver.is_available("R1", MONDAY, w(11, 14))
    assert not resolver.is_available("R1", MONDAY + dt.timedelta(days=1), w(9, 10))


def test_resolver_unknown_rider(store) -> None:
    resolver = AvailabilityResolver(store)
    assert resolver.get_windows_for_date("nobody", MONDAY) == []
    assert not resolver.is_available("nobody", MONDAY, w(9, 10))
