"""Rider-facing messages and their delivery through a notifier.

Delivery never raises: each message yields a :class:`NotificationOutcome`
and failures are logged so they can be retried independently of the
reconcile that produced them.
"""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .models import Assignment, AssignmentStatus, EscortRequest

if TYPE_CHECKING:
    from ..adapters.base import Notifier
    from ..data.store import DispatchStore
    from .reconciler import ReconcileResult

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationOutcome:
    assignment_id: str
    rider_id: str
    kind: str
    success: bool
    error: str | None = None


def format_date(day: dt.date) -> str:
    return f"{day:%m/%d/%Y}"


def format_time(value: dt.time) -> str:
    return f"{value:%I:%M %p}".lstrip("0")


def format_assignment_message(
    assignment: Assignment, request: EscortRequest | None = None
) -> str:
    """Assignment notice with date, time, route, courtesy flag and notes."""
    lines = [
        "🏍️ ESCORT ASSIGNMENT NOTIFICATION",
        "",
        f"Assignment: {assignment.assignment_id}",
        f"Request: {assignment.request_id}",
        f"Rider: {assignment.rider_name or assignment.rider_id}",
        "",
        f"📅 Date: {format_date(assignment.event_date)}",
        f"🕐 Time: {format_time(assignment.start_time)} - {format_time(assignment.end_time)}",
    ]
    if request is not None:
        if request.start_location:
            lines.append(f"📍 Start: {request.start_location}")
        if request.end_location:
            lines.append(f"🏁 End: {request.end_location}")
        if request.courtesy:
            lines += ["", "⭐ COURTESY ⭐"]
        if request.notes.strip():
            lines += ["", f"📝 Notes: {request.notes.strip()}"]
    return "\n".join(lines)


def format_cancellation_message(assignment: Assignment) -> str:
    return (
        f"❌ Assignment {assignment.assignment_id} for request "
        f"{assignment.request_id} on {format_date(assignment.event_date)} "
        f"at {format_time(assignment.start_time)} has been cancelled."
    )


def format_reminder_message(
    assignment: Assignment, request: EscortRequest | None = None
) -> str:
    header = (
        f"⏰ Reminder: escort {assignment.request_id} on "
        f"{format_date(assignment.event_date)} at {format_time(assignment.start_time)}"
    )
    if request is not None and request.start_location:
        header += f", starting at {request.start_location}"
    return header + "."


async def _deliver(
    notifier: Notifier, assignment: Assignment, kind: str, message: str
) -> NotificationOutcome:
    result = await notifier.notify(assignment.rider_id, message)
    if not result.success:
        log.warning(
            "Could not send %s notice for %s to rider %s: %s",
            kind,
            assignment.assignment_id,
            assignment.rider_id,
            result.error,
        )
    return NotificationOutcome(
        assignment_id=assignment.assignment_id,
        rider_id=assignment.rider_id,
        kind=kind,
        success=result.success,
        error=result.error,
    )


async def notify_reconcile_result(
    store: DispatchStore, notifier: Notifier, result: ReconcileResult
) -> list[NotificationOutcome]:
    """Tell riders about the assignments a reconcile created or cancelled.

    Successfully notified new assignments get ``notified_at`` stamped.
    """
    request = store.get_request(result.request_id)
    outcomes: list[NotificationOutcome] = []
    for assignment_id in result.created:
        assignment = store.get_assignment(assignment_id)
        if assignment is None:
            continue
        outcome = await _deliver(
            notifier, assignment, "assignment", format_assignment_message(assignment, request)
        )
        if outcome.success:
            store.mark_notified(assignment_id)
        outcomes.append(outcome)
    for assignment_id in result.cancelled:
        assignment = store.get_assignment(assignment_id)
        if assignment is None:
            continue
        outcomes.append(
            await _deliver(
                notifier, assignment, "cancellation", format_cancellation_message(assignment)
            )
        )
    return outcomes


def assignments_needing_notification(store: DispatchStore) -> list[Assignment]:
    """``Assigned`` rows whose rider has not yet been told about them."""
    pending = [
        a
        for a in store.list_assignments(active_only=True)
        if a.status is AssignmentStatus.ASSIGNED and a.notified_at is None
    ]
    return sorted(pending, key=lambda a: (a.starts_at(), a.assignment_id))


async def send_pending_notifications(
    store: DispatchStore, notifier: Notifier
) -> list[NotificationOutcome]:
    """Re-send assignment notices that never got through.

    Covers deliveries that failed during a reconcile as well as rows created
    while no notifier was configured.
    """
    outcomes: list[NotificationOutcome] = []
    for assignment in assignments_needing_notification(store):
        request = store.get_request(assignment.request_id)
        outcome = await _deliver(
            notifier, assignment, "assignment", format_assignment_message(assignment, request)
        )
        if outcome.success:
            store.mark_notified(assignment.assignment_id)
        outcomes.append(outcome)
    return outcomes


def assignments_due_for_reminder(
    store: DispatchStore, lead: dt.timedelta, now: dt.datetime
) -> list[Assignment]:
    """Active, not yet reminded assignments starting within ``lead`` of ``now``.

    Event dates and times are local wall-clock values, so ``now`` must be a
    naive local datetime too.
    """
    due = [
        a
        for a in store.list_assignments(active_only=True)
        if a.reminded_at is None and now <= a.starts_at() <= now + lead
    ]
    return sorted(due, key=lambda a: (a.starts_at(), a.assignment_id))


async def send_reminders(
    store: DispatchStore,
    notifier: Notifier,
    lead: dt.timedelta,
    now: dt.datetime | None = None,
) -> list[NotificationOutcome]:
    """Send one reminder per due assignment and stamp ``reminded_at`` on success."""
    now = now or dt.datetime.now()
    outcomes: list[NotificationOutcome] = []
    for assignment in assignments_due_for_reminder(store, lead, now):
        request = store.get_request(assignment.request_id)
        outcome = await _deliver(
            notifier, assignment, "reminder", format_reminder_message(assignment, request)
        )
        if outcome.success:
            store.mark_reminded(assignment.assignment_id)
        outcomes.append(outcome)
    return outcomes
