"""Persistence layer for riders, availability, requests and assignments."""

from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Callable
from datetime import UTC
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from ..core.ids import next_assignment_id, next_request_id, normalize_request_id
from ..core.models import (
    Assignment,
    AssignmentStatus,
    AvailabilityEntry,
    AvailabilityKind,
    EscortRequest,
    Recurrence,
    RequestStatus,
    Rider,
    RiderRef,
    RiderStatus,
)
from ..core.storage import JSONStorage, Table
from ..errors import NotFoundError, ValidationError, from_pydantic

log = logging.getLogger(__name__)

RIDERS = "riders"
AVAILABILITY = "availability"
REQUESTS = "requests"
ASSIGNMENTS = "assignments"

TABLES = {
    RIDERS: Table(Rider, "rider_id"),
    AVAILABILITY: Table(AvailabilityEntry, "entry_id"),
    REQUESTS: Table(EscortRequest, "request_id"),
    ASSIGNMENTS: Table(Assignment, "assignment_id"),
}

# Allowed operational moves for an assignment. Terminal states have none.
ASSIGNMENT_TRANSITIONS: dict[AssignmentStatus, frozenset[AssignmentStatus]] = {
    AssignmentStatus.ASSIGNED: frozenset(
        {
            AssignmentStatus.CONFIRMED,
            AssignmentStatus.IN_PROGRESS,
            AssignmentStatus.COMPLETED,
            AssignmentStatus.CANCELLED,
            AssignmentStatus.NO_SHOW,
        }
    ),
    AssignmentStatus.CONFIRMED: frozenset(
        {
            AssignmentStatus.IN_PROGRESS,
            AssignmentStatus.COMPLETED,
            AssignmentStatus.CANCELLED,
            AssignmentStatus.NO_SHOW,
        }
    ),
    AssignmentStatus.IN_PROGRESS: frozenset(
        {AssignmentStatus.COMPLETED, AssignmentStatus.CANCELLED}
    ),
    AssignmentStatus.COMPLETED: frozenset(),
    AssignmentStatus.CANCELLED: frozenset(),
    AssignmentStatus.NO_SHOW: frozenset(),
}

RIDER_DETAIL_FIELDS = frozenset({"name", "phone", "email", "carrier", "discord_id"})

REQUEST_DETAIL_FIELDS = frozenset(
    {
        "event_date",
        "start_time",
        "end_time",
        "riders_needed",
        "requester_name",
        "start_location",
        "end_location",
        "notes",
        "courtesy",
    }
)


class DispatchStore:
    """Typed repository over a :class:`JSONStorage` row store.

    The store validates input before touching storage and generates request
    and assignment IDs while holding the storage lock, so two callers never
    receive the same ID. It never derives request status itself; that is the
    job of :class:`~dispatch_bot.core.reconciler.AssignmentReconciler`.
    """

    def __init__(
        self,
        path: str | None = "dispatch_data.json",
        *,
        storage: JSONStorage | None = None,
        clock: Callable[[], dt.datetime] | None = None,
    ) -> None:
        self.storage = storage or JSONStorage(path, TABLES)
        self.now = clock or (lambda: dt.datetime.now(tz=UTC))

    # ------------------------------------------------------------------
    # Riders
    # ------------------------------------------------------------------
    def add_rider(self, rider: Rider) -> Rider:
        self.storage.insert(RIDERS, rider)
        log.info("Added rider %s (%s)", rider.rider_id, rider.name)
        return rider

    def get_rider(self, rider_id: str) -> Rider | None:
        return self.storage.get(RIDERS, str(rider_id).strip())

    def require_rider(self, rider_id: str) -> Rider:
        rider = self.get_rider(rider_id)
        if rider is None:
            raise NotFoundError(f"Rider {rider_id} not found", entity="rider", entity_id=rider_id)
        return rider

    def list_riders(self, status: RiderStatus | None = None) -> list[Rider]:
        if status is None:
            return self.storage.list(RIDERS)
        return self.storage.list(RIDERS, lambda r: r.status is status)

    def has_active_assignments(self, rider_id: str) -> bool:
        return bool(self.assignments_for_rider(rider_id))

    def update_rider_status(self, rider_id: str, status: RiderStatus) -> Rider:
        """Change a rider's roster status.

        A rider holding active assignments stays ``Active`` until those are
        cancelled or completed.
        """
        rider = self.require_rider(rider_id)
        if status is not RiderStatus.ACTIVE and self.has_active_assignments(rider.rider_id):
            raise ValidationError(
                f"Rider {rider.rider_id} still has active assignments",
                entity="rider",
                entity_id=rider.rider_id,
                field="status",
            )
        updated = self.storage.update(RIDERS, rider.rider_id, {"status": status})
        log.info("Rider %s status set to %s", rider.rider_id, status.value)
        return updated

    def update_rider(self, rider_id: str, **changes: Any) -> Rider:
        """Edit a rider's contact details. Status goes through :meth:`update_rider_status`."""
        rider = self.require_rider(rider_id)
        unknown = set(changes) - RIDER_DETAIL_FIELDS
        if unknown:
            raise ValidationError(
                f"Cannot edit rider fields: {', '.join(sorted(unknown))}",
                entity="rider",
                entity_id=rider.rider_id,
                field=sorted(unknown)[0],
            )
        updated = self.storage.update(RIDERS, rider.rider_id, changes)
        log.info("Updated rider %s: %s", rider.rider_id, ", ".join(sorted(changes)))
        return updated

    def discord_id_for(self, rider_id: str) -> int | None:
        rider = self.get_rider(rider_id)
        return rider.discord_id if rider else None

    # ------------------------------------------------------------------
    # Availability
    # ------------------------------------------------------------------
    def add_availability(
        self,
        rider_id: str,
        *,
        date: dt.date | None = None,
        recurrence: Recurrence | None = None,
        start_time: dt.time | None = None,
        end_time: dt.time | None = None,
        kind: AvailabilityKind = AvailabilityKind.AVAILABLE,
        notes: str = "",
    ) -> AvailabilityEntry:
        """Record availability for a rider.

        An entry for exactly the same date (or recurrence) and time range
        replaces the earlier one's kind and notes instead of adding a second
        row. Overlapping but different ranges coexist and are resolved when
        windows are queried.
        """
        rider = self.require_rider(rider_id)
        try:
            entry = AvailabilityEntry(
                rider_id=rider.rider_id,
                date=date,
                recurrence=recurrence,
                start_time=start_time,
                end_time=end_time,
                kind=kind,
                notes=notes,
            )
        except PydanticValidationError as exc:
            raise from_pydantic(exc, entity="availability", entity_id=rider.rider_id) from exc

        with self.storage.transaction():
            key = entry.slot_key()
            for existing in self.storage.list(AVAILABILITY, lambda e: e.rider_id == rider.rider_id):
                if existing.slot_key() == key:
                    updated = self.storage.update(
                        AVAILABILITY, existing.entry_id, {"kind": kind, "notes": notes}
                    )
                    log.info("Replaced availability %s for rider %s", existing.entry_id, rider.rider_id)
                    return updated
            self.storage.insert(AVAILABILITY, entry)
        log.info("Added %s availability %s for rider %s", kind.value, entry.entry_id, rider.rider_id)
        return entry

    def remove_availability(self, entry_id: str) -> bool:
        removed = self.storage.delete(AVAILABILITY, entry_id)
        if removed:
            log.info("Removed availability %s", entry_id)
        return removed

    def availability_for(self, rider_id: str) -> list[AvailabilityEntry]:
        return self.storage.list(AVAILABILITY, lambda e: e.rider_id == rider_id)

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------
    def create_request(
        self,
        event_date: dt.date,
        start_time: dt.time,
        end_time: dt.time,
        riders_needed: int = 1,
        **details: Any,
    ) -> EscortRequest:
        """Create a ``New`` request with the next ID for the current month."""
        unknown = set(details) - REQUEST_DETAIL_FIELDS
        if unknown:
            raise ValidationError(
                f"Unknown request fields: {', '.join(sorted(unknown))}",
                entity="request",
                field=sorted(unknown)[0],
            )
        now = self.now()
        with self.storage.transaction():
            request_id = next_request_id(self.storage.keys(REQUESTS), now)
            try:
                request = EscortRequest(
                    request_id=request_id,
                    event_date=event_date,
                    start_time=start_time,
                    end_time=end_time,
                    riders_needed=riders_needed,
                    status=RequestStatus.NEW,
                    created_at=now,
                    last_updated=now,
                    **details,
                )
            except PydanticValidationError as exc:
                raise from_pydantic(exc, entity="request", entity_id=request_id) from exc
            self.storage.insert(REQUESTS, request)
        log.info("Created request %s for %s", request.request_id, request.event_date)
        return request

    def get_request(self, request_id: str) -> EscortRequest | None:
        return self.storage.get(REQUESTS, normalize_request_id(request_id))

    def require_request(self, request_id: str) -> EscortRequest:
        request = self.get_request(request_id)
        if request is None:
            raise NotFoundError(
                f"Request {request_id} not found", entity="request", entity_id=request_id
            )
        return request

    def request_version(self, request_id: str) -> int:
        return self.storage.version(REQUESTS, normalize_request_id(request_id))

    def list_requests(self, status: RequestStatus | None = None) -> list[EscortRequest]:
        if status is None:
            return self.storage.list(REQUESTS)
        return self.storage.list(REQUESTS, lambda r: r.status is status)

    def update_request_details(self, request_id: str, **changes: Any) -> EscortRequest:
        """Edit intake details of a request. Status is not editable here."""
        request = self.require_request(request_id)
        unknown = set(changes) - REQUEST_DETAIL_FIELDS
        if unknown:
            raise ValidationError(
                f"Cannot edit request fields: {', '.join(sorted(unknown))}",
                entity="request",
                entity_id=request.request_id,
                field=sorted(unknown)[0],
            )
        changes["last_updated"] = self.now()
        updated = self.storage.update(REQUESTS, request.request_id, changes)
        log.info("Updated request %s details", request.request_id)
        return updated

    def write_request_status(
        self,
        request_id: str,
        status: RequestStatus,
        riders_assigned: str,
        expected_version: int | None = None,
    ) -> EscortRequest:
        """Persist a derived status; only the reconciler should call this."""
        return self.storage.update(
            REQUESTS,
            normalize_request_id(request_id),
            {
                "status": status,
                "riders_assigned": riders_assigned,
                "last_updated": self.now(),
            },
            expected_version=expected_version,
        )

    def close_request(self, request_id: str, status: RequestStatus) -> EscortRequest:
        """Move a request to a terminal status on an operator's say-so."""
        if not status.is_terminal:
            raise ValidationError(
                f"{status.value} is not a terminal status",
                entity="request",
                entity_id=request_id,
                field="status",
            )
        request = self.require_request(request_id)
        if request.status.is_terminal:
            raise ValidationError(
                f"Request {request.request_id} is already {request.status.value}",
                entity="request",
                entity_id=request.request_id,
                field="status",
            )
        updated = self.storage.update(
            REQUESTS, request.request_id, {"status": status, "last_updated": self.now()}
        )
        log.info("Request %s marked %s", request.request_id, status.value)
        return updated

    def complete_request(self, request_id: str) -> EscortRequest:
        return self.close_request(request_id, RequestStatus.COMPLETED)

    def cancel_request(self, request_id: str) -> EscortRequest:
        return self.close_request(request_id, RequestStatus.CANCELLED)

    # ------------------------------------------------------------------
    # Assignments
    # ------------------------------------------------------------------
    def get_assignment(self, assignment_id: str) -> Assignment | None:
        return self.storage.get(ASSIGNMENTS, assignment_id)

    def require_assignment(self, assignment_id: str) -> Assignment:
        assignment = self.get_assignment(assignment_id)
        if assignment is None:
            raise NotFoundError(
                f"Assignment {assignment_id} not found",
                entity="assignment",
                entity_id=assignment_id,
            )
        return assignment

    def list_assignments(self, active_only: bool = False) -> list[Assignment]:
        if active_only:
            return self.storage.list(ASSIGNMENTS, lambda a: a.is_active)
        return self.storage.list(ASSIGNMENTS)

    def assignments_for_request(
        self, request_id: str, active_only: bool = True
    ) -> list[Assignment]:
        rid = normalize_request_id(request_id)
        return self.storage.list(
            ASSIGNMENTS,
            lambda a: a.request_id == rid and (a.is_active or not active_only),
        )

    def assignments_for_rider(
        self, rider_id: str, on: dt.date | None = None, active_only: bool = True
    ) -> list[Assignment]:
        return self.storage.list(
            ASSIGNMENTS,
            lambda a: a.rider_id == rider_id
            and (on is None or a.event_date == on)
            and (a.is_active or not active_only),
        )

    def next_assignment_id(self) -> str:
        with self.storage.lock:
            return next_assignment_id(self.storage.keys(ASSIGNMENTS))

    def create_assignment(
        self, request: EscortRequest, rider: RiderRef, notes: str = ""
    ) -> Assignment:
        """Create an ``Assigned`` row copying the request's date and window.

        Refuses to create a second active assignment for the same request
        and rider.
        """
        with self.storage.transaction():
            for existing in self.assignments_for_request(request.request_id):
                if existing.rider_id == rider.rider_id:
                    raise ValidationError(
                        f"Rider {rider.rider_id} already has active assignment "
                        f"{existing.assignment_id} on {request.request_id}",
                        entity="assignment",
                        entity_id=existing.assignment_id,
                        field="rider_id",
                    )
            assignment = Assignment(
                assignment_id=self.next_assignment_id(),
                request_id=request.request_id,
                rider_id=rider.rider_id,
                rider_name=rider.rider_name,
                event_date=request.event_date,
                start_time=request.start_time,
                end_time=request.end_time,
                status=AssignmentStatus.ASSIGNED,
                created_date=self.now(),
                notes=notes,
            )
            self.storage.insert(ASSIGNMENTS, assignment)
        log.info(
            "Created assignment %s for %s on request %s",
            assignment.assignment_id,
            rider.rider_id,
            request.request_id,
        )
        return assignment

    def transition_assignment(
        self, assignment_id: str, status: AssignmentStatus
    ) -> Assignment:
        """Move an assignment along its lifecycle; terminal rows never move."""
        assignment = self.require_assignment(assignment_id)
        if assignment.status is status:
            return assignment
        if status not in ASSIGNMENT_TRANSITIONS[assignment.status]:
            raise ValidationError(
                f"Assignment {assignment_id} cannot go from "
                f"{assignment.status.value} to {status.value}",
                entity="assignment",
                entity_id=assignment_id,
                field="status",
            )
        updated = self.storage.update(ASSIGNMENTS, assignment_id, {"status": status})
        log.info("Assignment %s is now %s", assignment_id, status.value)
        return updated

    def mark_notified(self, assignment_id: str) -> Assignment:
        return self.storage.update(ASSIGNMENTS, assignment_id, {"notified_at": self.now()})

    def mark_reminded(self, assignment_id: str) -> Assignment:
        return self.storage.update(ASSIGNMENTS, assignment_id, {"reminded_at": self.now()})
