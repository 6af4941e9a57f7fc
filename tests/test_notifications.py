"""Tests for rider notifications and reminders."""

import asyncio
import datetime as dt

from dispatch_bot.adapters.base import Notifier, NotifyResult
from dispatch_bot.core.models import AssignmentStatus, RiderRef
from dispatch_bot.core.notifications import (
    assignments_due_for_reminder,
    assignments_needing_notification,
    format_assignment_message,
    format_time,
    notify_reconcile_result,
    send_pending_notifications,
    send_reminders,
)
from dispatch_bot.core.reconciler import AssignmentReconciler

from conftest import EVENT_DAY


class RecordingNotifier(Notifier):
    def __init__(self, fail_for=()):
        self.sent: list[tuple[str, str]] = []
        self.fail_for = set(fail_for)

    async def notify(self, rider_id: str, message: str) -> NotifyResult:
        if rider_id in self.fail_for:
            return NotifyResult(False, "unreachable")
        self.sent.append((rider_id, message))
        return NotifyResult(True)


def test_format_helpers(store):
    assert format_time(dt.time(9, 5)) == "9:05 AM"
    assert format_time(dt.time(13, 30)) == "1:30 PM"

    request = store.create_request(
        EVENT_DAY,
        dt.time(9),
        dt.time(12),
        start_location="Depot",
        end_location="Stadium",
        courtesy=True,
        notes="Wear dress uniform",
    )
    assignment = store.create_assignment(request, RiderRef(rider_id="R1", rider_name="Alice"))
    message = format_assignment_message(assignment, request)
    assert "01/15/2024" in message
    assert "9:00 AM - 12:00 PM" in message
    assert "📍 Start: Depot" in message
    assert "⭐ COURTESY ⭐" in message
    assert "Wear dress uniform" in message


def test_notify_reconcile_result(store, add_rider):
    add_rider("R1", "Alice")
    add_rider("R2", "Bob")
    request = store.create_request(EVENT_DAY, dt.time(9), dt.time(12), riders_needed=2)
    reconciler = AssignmentReconciler(store)
    reconciler.reconcile(request.request_id, ["R1"])
    result = reconciler.reconcile(request.request_id, ["R2"])

    notifier = RecordingNotifier()
    outcomes = asyncio.run(notify_reconcile_result(store, notifier, result))

    assert [(o.rider_id, o.kind) for o in outcomes] == [
        ("R2", "assignment"),
        ("R1", "cancellation"),
    ]
    assert all(o.success for o in outcomes)
    assert store.get_assignment(result.created[0]).notified_at is not None


def test_failed_delivery_is_reported_not_raised(store, add_rider):
    add_rider("R1", "Alice")
    request = store.create_request(EVENT_DAY, dt.time(9), dt.time(12))
    result = AssignmentReconciler(store).reconcile(request.request_id, ["R1"])

    outcomes = asyncio.run(
        notify_reconcile_result(store, RecordingNotifier(fail_for={"R1"}), result)
    )
    assert outcomes[0].success is False
    assert outcomes[0].error == "unreachable"
    assert store.get_assignment(result.created[0]).notified_at is None


def test_reminders_sent_once(store, add_rider):
    add_rider("R1", "Alice")
    add_rider("R2", "Bob")
    soon = store.create_request(EVENT_DAY, dt.time(9), dt.time(12))
    later = store.create_request(EVENT_DAY + dt.timedelta(days=3), dt.time(9), dt.time(12))
    reconciler = AssignmentReconciler(store, check_availability=False)
    reconciler.reconcile(soon.request_id, ["R1"])
    reconciler.reconcile(later.request_id, ["R2"])

    now = dt.datetime(2024, 1, 14, 12, 0)
    lead = dt.timedelta(hours=24)
    due = assignments_due_for_reminder(store, lead, now)
    assert [a.rider_id for a in due] == ["R1"]

    notifier = RecordingNotifier()
    first = asyncio.run(send_reminders(store, notifier, lead, now=now))
    second = asyncio.run(send_reminders(store, notifier, lead, now=now))
    assert len(first) == 1 and second == []
    assert notifier.sent[0][1].startswith("⏰ Reminder")


def test_cancelled_assignment_not_reminded(store, add_rider):
    add_rider("R1", "Alice")
    request = store.create_request(EVENT_DAY, dt.time(9), dt.time(12))
    result = AssignmentReconciler(store).reconcile(request.request_id, ["R1"])
    store.transition_assignment(result.created[0], AssignmentStatus.CANCELLED)

    now = dt.datetime(2024, 1, 15, 8, 0)
    assert assignments_due_for_reminder(store, dt.timedelta(hours=2), now) == []


def test_failed_notice_is_resent_later(store, add_rider):
    add_rider("R1", "Alice")
    add_rider("R2", "Bob")
    request = store.create_request(EVENT_DAY, dt.time(9), dt.time(12), riders_needed=2)
    result = AssignmentReconciler(store).reconcile(request.request_id, ["R1", "R2"])

    asyncio.run(notify_reconcile_result(store, RecordingNotifier(fail_for={"R2"}), result))
    pending = assignments_needing_notification(store)
    assert [a.rider_id for a in pending] == ["R2"]

    still_down = asyncio.run(send_pending_notifications(store, RecordingNotifier(fail_for={"R2"})))
    assert [o.success for o in still_down] == [False]
    assert [a.rider_id for a in assignments_needing_notification(store)] == ["R2"]

    notifier = RecordingNotifier()
    outcomes = asyncio.run(send_pending_notifications(store, notifier))
    assert [(o.rider_id, o.kind, o.success) for o in outcomes] == [("R2", "assignment", True)]
    assert "ESCORT ASSIGNMENT" in notifier.sent[0][1]
    assert store.get_assignment(result.created[1]).notified_at is not None
    assert assignments_needing_notification(store) == []


def test_pending_notices_skip_confirmed_and_cancelled(store, add_rider):
    add_rider("R1", "Alice")
    add_rider("R2", "Bob")
    request = store.create_request(EVENT_DAY, dt.time(9), dt.time(12), riders_needed=2)
    result = AssignmentReconciler(store).reconcile(request.request_id, ["R1", "R2"])
    store.transition_assignment(result.created[0], AssignmentStatus.CONFIRMED)
    store.transition_assignment(result.created[1], AssignmentStatus.CANCELLED)

    assert assignments_needing_notification(store) == []
