"""Tests for the pydantic models in :mod:`dispatch_bot.core.models`."""

import datetime as dt

import pytest
from pydantic import ValidationError

from dispatch_bot.core.models import (
    Assignment,
    AssignmentStatus,
    AvailabilityEntry,
    AvailabilityKind,
    EscortRequest,
    Recurrence,
    RequestStatus,
    Rider,
    RiderStatus,
    TimeWindow,
)


def test_time_window_is_half_open() -> None:
    morning = TimeWindow(start=dt.time(9), end=dt.time(11))
    later = TimeWindow(start=dt.time(11), end=dt.time(12))
    inside = TimeWindow(start=dt.time(10), end=dt.time(12))

    assert not morning.overlaps(later)
    assert morning.overlaps(inside)
    assert str(morning) == "09:00-11:00"
    assert morning.duration == dt.timedelta(hours=2)


def test_time_window_rejects_empty_range() -> None:
    with pytest.raises(ValidationError):
        TimeWindow(start=dt.time(10), end=dt.time(10))


def test_recurrence_range_is_inclusive() -> None:
    rule = Recurrence(
        weekday=0, start_date=dt.date(2024, 1, 1), repeat_until=dt.date(2024, 1, 15)
    )
    assert rule.applies_to(dt.date(2024, 1, 1))
    assert rule.applies_to(dt.date(2024, 1, 15))
    assert not rule.applies_to(dt.date(2024, 1, 22))
    assert not rule.applies_to(dt.date(2024, 1, 2))  # a Tuesday


def test_recurrence_until_before_start_rejected() -> None:
    with pytest.raises(ValidationError):
        Recurrence(weekday=0, start_date=dt.date(2024, 1, 8), repeat_until=dt.date(2024, 1, 1))


def test_availability_entry_shape() -> None:
    with pytest.raises(ValidationError):
        AvailabilityEntry(rider_id="R1", start_time=dt.time(9), end_time=dt.time(10))
    with pytest.raises(ValidationError):
        AvailabilityEntry(rider_id="R1", date=dt.date(2024, 1, 15))

    whole_day = AvailabilityEntry(
        rider_id="R1", date=dt.date(2024, 1, 15), kind=AvailabilityKind.UNAVAILABLE
    )
    assert whole_day.window.start == dt.time.min
    assert whole_day.window.end == dt.time.max


def test_rider_cleans_phone_and_checks_email() -> None:
    rider = Rider(rider_id=" R1 ", name="Alice", phone="(555) 123-4567", email="a@example.com")
    assert rider.rider_id == "R1"
    assert rider.phone == "5551234567"
    assert rider.is_active

    with pytest.raises(ValidationError):
        Rider(rider_id="R2", name="Bob", email="not-an-email")
    with pytest.raises(ValidationError):
        Rider(rider_id="R3", name="  ")


def test_rider_round_trips_sheet_headers() -> None:
    rider = Rider.model_validate(
        {"Rider ID": "R9", "Full Name": "Carol", "Status": "Vacation", "Discord ID": 42}
    )
    assert rider.status is RiderStatus.VACATION
    assert rider.discord_id == 42
    assert rider.model_dump(by_alias=True)["Full Name"] == "Carol"


def test_status_helpers() -> None:
    assert RequestStatus.CANCELLED.is_terminal
    assert not RequestStatus.IN_PROGRESS.is_terminal
    assert AssignmentStatus.CONFIRMED.is_active
    assert not AssignmentStatus.NO_SHOW.is_active


def test_request_and_assignment_windows() -> None:
    request = EscortRequest(
        request_id="A-01-24",
        event_date=dt.date(2024, 1, 15),
        start_time=dt.time(10),
        end_time=dt.time(12),
    )
    assert request.status is RequestStatus.NEW
    assert request.window == TimeWindow(start=dt.time(10), end=dt.time(12))

    assignment = Assignment(
        assignment_id="ASG-0001",
        request_id=request.request_id,
        rider_id="R1",
        event_date=request.event_date,
        start_time=request.start_time,
        end_time=request.end_time,
    )
    assert assignment.is_active
    assert assignment.starts_at() == dt.datetime(2024, 1, 15, 10)

    with pytest.raises(ValidationError):
        EscortRequest(
            request_id="A-02-24",
            event_date=dt.date(2024, 1, 15),
            start_time=dt.time(12),
            end_time=dt.time(10),
        )
