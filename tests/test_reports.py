import datetime as dt

from dispatch_bot.core.models import AssignmentStatus, RiderRef
from dispatch_bot.core.reports import generate_report

from conftest import EVENT_DAY


def test_report_counts_and_hours(store, add_rider):
    add_rider("R1", "Alice")
    add_rider("R2", "Bob")
    morning = store.create_request(EVENT_DAY, dt.time(9), dt.time(11))
    evening = store.create_request(EVENT_DAY, dt.time(18), dt.time(19, 30))
    store.create_request(EVENT_DAY + dt.timedelta(days=40), dt.time(9), dt.time(10))

    a1 = store.create_assignment(morning, RiderRef(rider_id="R1", rider_name="Alice"))
    store.create_assignment(evening, RiderRef(rider_id="R1", rider_name="Alice"))
    b1 = store.create_assignment(morning, RiderRef(rider_id="R2", rider_name="Bob"))
    store.transition_assignment(a1.assignment_id, AssignmentStatus.COMPLETED)
    store.transition_assignment(b1.assignment_id, AssignmentStatus.CANCELLED)
    store.complete_request(morning.request_id)

    # reversed range is accepted
    report = generate_report(store, EVENT_DAY + dt.timedelta(days=1), EVENT_DAY - dt.timedelta(days=1))

    assert report.start < report.end
    assert report.total_requests == 2
    assert report.completed_requests == 1
    assert report.requests_by_status == {"Completed": 1, "New": 1}
    assert report.active_riders == 2
    assert report.completed_hours == 2.0
    assert report.scheduled_hours == 1.5

    assert [p.rider_id for p in report.riders] == ["R1"]
    alice = report.riders[0]
    assert alice.assignments == 2
    assert alice.completed == 1
    assert alice.completion_rate == 50
    assert alice.hours == 2.0


def test_empty_report(store):
    report = generate_report(store, EVENT_DAY, EVENT_DAY)
    assert report.total_requests == 0
    assert report.riders == []
