"""Assignment reconciliation: the request/assignment state machine.

:meth:`AssignmentReconciler.reconcile` takes the full set of riders a
request should have, works out which assignments to cancel and which to
create, applies those changes in one transaction and derives the request's
status from the resulting staffing level. It is the only code path that
writes ``EscortRequest.status`` for non-terminal requests.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from ..data.store import DispatchStore
from ..errors import (
    ConcurrencyError,
    ConflictError,
    StaleWriteError,
    ValidationError,
    from_pydantic,
)
from .availability import AvailabilityResolver
from .conflicts import ConflictDetector
from .ids import normalize_request_id
from .models import Assignment, AssignmentStatus, EscortRequest, RequestStatus, RiderRef

log = logging.getLogger(__name__)


class CandidatePolicy(str, Enum):
    """What to do with a new rider who fails the availability/conflict checks.

    ``skip`` leaves the rider out and reports them, ``block`` aborts the
    whole reconcile with :class:`ConflictError`, ``allow`` assigns anyway and
    notes the problem on the assignment.
    """

    SKIP = "skip"
    BLOCK = "block"
    ALLOW = "allow"


@dataclass
class _RequestLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    holders: int = 0


@dataclass
class FlaggedRider:
    rider_id: str
    rider_name: str
    reasons: list[str]
    conflicts: list[str] = field(default_factory=list)
    assigned: bool = False


@dataclass
class ReconcileResult:
    """Outcome of one reconcile, for notification and display."""

    request_id: str
    status: RequestStatus
    created: list[str] = field(default_factory=list)
    cancelled: list[str] = field(default_factory=list)
    flagged: list[FlaggedRider] = field(default_factory=list)
    riders_assigned: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.created or self.cancelled)


def derive_status(
    current: RequestStatus, active_count: int, riders_needed: int
) -> RequestStatus:
    """Status a request should have with ``active_count`` riders assigned.

    Terminal statuses are kept. Partially staffed requests stay
    ``Unassigned``; ``Assigned`` means fully staffed.
    """
    if current.is_terminal:
        return current
    if active_count == 0 or active_count < riders_needed:
        return RequestStatus.UNASSIGNED
    return RequestStatus.ASSIGNED


def _coerce_ref(item: RiderRef | Mapping[str, Any] | str) -> RiderRef:
    if isinstance(item, RiderRef):
        ref = item
    elif isinstance(item, str):
        ref = RiderRef(rider_id=item)
    else:
        data = dict(item)
        if "riderId" in data:
            data.setdefault("rider_id", data.pop("riderId"))
        if "riderName" in data:
            data.setdefault("rider_name", data.pop("riderName"))
        try:
            ref = RiderRef.model_validate(data)
        except PydanticValidationError as exc:
            raise from_pydantic(exc, entity="rider") from exc
    rider_id = ref.rider_id.strip()
    if not rider_id:
        raise ValidationError("Rider id must not be blank", entity="rider", field="rider_id")
    return RiderRef(rider_id=rider_id, rider_name=ref.rider_name.strip())


class AssignmentReconciler:
    """Bring a request's assignments in line with a desired rider set.

    Calls for the same request are serialised by a per-request lock; calls
    for different requests only share the storage lock while committing.
    If the request row changes between the read and the commit, the whole
    reconcile is retried with fresh state, up to ``max_attempts`` times.
    """

    def __init__(
        self,
        store: DispatchStore,
        resolver: AvailabilityResolver | None = None,
        detector: ConflictDetector | None = None,
        *,
        policy: CandidatePolicy = CandidatePolicy.SKIP,
        check_availability: bool = True,
        max_attempts: int = 3,
        backoff: float = 0.05,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.resolver = resolver or AvailabilityResolver(store)
        self.detector = detector or ConflictDetector(store)
        self.policy = CandidatePolicy(policy)
        self.check_availability = check_availability
        self.max_attempts = max(1, max_attempts)
        self.backoff = backoff
        self.sleep = sleep
        self._locks: dict[str, _RequestLock] = {}
        self._locks_guard = threading.Lock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def reconcile(
        self,
        request_id: str,
        desired_riders: Sequence[RiderRef | Mapping[str, Any] | str],
        overrides: Iterable[str] = (),
    ) -> ReconcileResult:
        """Make ``desired_riders`` the active riders of ``request_id``.

        Riders named in ``overrides`` skip the availability and conflict
        checks. Raises :class:`NotFoundError` for unknown requests or new
        riders, :class:`ValidationError` for a rider listed twice,
        :class:`ConflictError` under the ``block`` policy and
        :class:`ConcurrencyError` once retries are exhausted. Nothing is
        written when any of these is raised.
        """
        desired = [_coerce_ref(item) for item in desired_riders]
        seen: set[str] = set()
        for ref in desired:
            if ref.rider_id in seen:
                raise ValidationError(
                    f"Rider {ref.rider_id} listed more than once",
                    entity="request",
                    entity_id=request_id,
                    field="riders",
                )
            seen.add(ref.rider_id)
        override_ids = {str(r).strip() for r in overrides}
        rid = normalize_request_id(request_id)

        with self._request_lock(rid):
            for attempt in range(1, self.max_attempts + 1):
                try:
                    return self._reconcile_once(rid, desired, override_ids)
                except StaleWriteError as exc:
                    if attempt == self.max_attempts:
                        log.error("Giving up reconciling %s after %d attempts", rid, attempt)
                        raise ConcurrencyError(
                            f"Request {rid} kept changing during reconcile; try again",
                            entity="request",
                            entity_id=rid,
                        ) from exc
                    delay = self.backoff * 2 ** (attempt - 1)
                    log.warning(
                        "Reconcile of %s hit a concurrent write (%s); retrying in %.2fs",
                        rid,
                        exc,
                        delay,
                    )
                    self.sleep(delay)
        raise AssertionError("unreachable")  # pragma: no cover

    def refresh_status(self, request_id: str) -> ReconcileResult:
        """Re-derive a request's status from its current active riders."""
        current = self.store.assignments_for_request(request_id)
        refs = [RiderRef(rider_id=a.rider_id, rider_name=a.rider_name) for a in current]
        unique = list({ref.rider_id: ref for ref in refs}.values())
        return self.reconcile(request_id, unique)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    @contextmanager
    def _request_lock(self, request_id: str) -> Iterator[None]:
        """Hold the lock for ``request_id``; it is dropped once nobody waits on it."""
        with self._locks_guard:
            entry = self._locks.get(request_id)
            if entry is None:
                entry = self._locks[request_id] = _RequestLock()
            entry.holders += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._locks_guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._locks[request_id]

    def _reconcile_once(
        self, rid: str, desired: list[RiderRef], overrides: set[str]
    ) -> ReconcileResult:
        request = self.store.require_request(rid)
        version = self.store.request_version(rid)
        current = sorted(
            self.store.assignments_for_request(rid),
            key=lambda a: (a.created_date, a.assignment_id),
        )

        # Keep the oldest active row per rider; any extra is cancelled.
        current_by_rider: dict[str, Assignment] = {}
        duplicates: list[Assignment] = []
        for assignment in current:
            if assignment.rider_id in current_by_rider:
                duplicates.append(assignment)
            else:
                current_by_rider[assignment.rider_id] = assignment

        desired_ids = {ref.rider_id for ref in desired}
        to_cancel = [
            a for rider_id, a in current_by_rider.items() if rider_id not in desired_ids
        ] + duplicates
        to_add = []
        for ref in desired:
            if ref.rider_id in current_by_rider:
                continue
            rider = self.store.require_rider(ref.rider_id)
            to_add.append(RiderRef(rider_id=rider.rider_id, rider_name=ref.rider_name or rider.name))

        accepted, flagged = self._screen(request, to_add, overrides)

        accepted_names = {ref.rider_id: ref.rider_name for ref, _ in accepted}

        active_names = []
        for ref in desired:
            if ref.rider_id in current_by_rider:
                active_names.append(ref.rider_name or current_by_rider[ref.rider_id].rider_name)
            elif ref.rider_id in accepted_names:
                active_names.append(accepted_names[ref.rider_id])
        status = derive_status(request.status, len(active_names), request.riders_needed)
        display = "\n".join(active_names)

        result = ReconcileResult(
            request_id=rid, status=status, flagged=flagged, riders_assigned=active_names
        )
        unchanged = status is request.status and display == request.riders_assigned
        if not to_cancel and not accepted and unchanged:
            log.debug("Request %s already reconciled", rid)
            return result

        with self.store.storage.transaction():
            if self.store.request_version(rid) != version:
                raise StaleWriteError(
                    f"request {rid} changed since it was read", entity="request", entity_id=rid
                )
            for assignment in to_cancel:
                fresh = self.store.get_assignment(assignment.assignment_id)
                if fresh is None or not fresh.is_active:
                    raise StaleWriteError(
                        f"assignment {assignment.assignment_id} changed since it was read",
                        entity="assignment",
                        entity_id=assignment.assignment_id,
                    )
                self.store.transition_assignment(assignment.assignment_id, AssignmentStatus.CANCELLED)
                result.cancelled.append(assignment.assignment_id)
            for ref, note in accepted:
                created = self.store.create_assignment(request, ref, notes=note)
                result.created.append(created.assignment_id)
            self.store.write_request_status(rid, status, display, expected_version=version)

        if request.status.is_terminal and status is request.status:
            log.info(
                "Request %s is %s; assignments changed but status kept",
                rid,
                request.status.value,
            )
        log.info(
            "Reconciled %s: status=%s created=%s cancelled=%s flagged=%s",
            rid,
            status.value,
            result.created,
            result.cancelled,
            [f.rider_id for f in flagged],
        )
        return result

    def _screen(
        self, request: EscortRequest, candidates: list[RiderRef], overrides: set[str]
    ) -> tuple[list[tuple[RiderRef, str]], list[FlaggedRider]]:
        """Split new riders into those to assign (with a note) and flagged ones."""
        accepted: list[tuple[RiderRef, str]] = []
        flagged: list[FlaggedRider] = []
        for ref in candidates:
            if ref.rider_id in overrides:
                accepted.append((ref, "Assigned with override"))
                continue
            reasons, conflicts = self._problems(request, ref)
            if not reasons:
                accepted.append((ref, ""))
                continue
            flag = FlaggedRider(
                rider_id=ref.rider_id,
                rider_name=ref.rider_name,
                reasons=reasons,
                conflicts=conflicts,
            )
            if self.policy is CandidatePolicy.ALLOW:
                flag.assigned = True
                accepted.append((ref, "; ".join(reasons)))
            flagged.append(flag)

        if self.policy is CandidatePolicy.BLOCK and flagged:
            details = "; ".join(f"{f.rider_name or f.rider_id}: {', '.join(f.reasons)}" for f in flagged)
            raise ConflictError(
                f"Cannot assign to {request.request_id}: {details}",
                entity="request",
                entity_id=request.request_id,
                rider_ids=[f.rider_id for f in flagged],
            )
        return accepted, flagged

    def _problems(self, request: EscortRequest, ref: RiderRef) -> tuple[list[str], list[str]]:
        reasons: list[str] = []
        rider = self.store.get_rider(ref.rider_id)
        if rider is not None and not rider.is_active:
            reasons.append(f"rider status is {rider.status.value}")

        if self.check_availability:
            try:
                available = self.resolver.is_available(
                    ref.rider_id, request.event_date, request.window
                )
            except Exception:
                log.exception("Availability lookup failed for rider %s", ref.rider_id)
                available = False
            if not available:
                reasons.append(f"not available {request.event_date} {request.window}")

        try:
            conflicts = self.detector.find_conflicts(
                ref.rider_id,
                request.event_date,
                request.window,
                exclude_request=request.request_id,
            )
        except Exception:
            log.exception("Conflict lookup failed for rider %s", ref.rider_id)
            conflicts = []
        conflict_ids = [a.assignment_id for a in conflicts]
        if conflict_ids:
            reasons.append(f"double-booked with {', '.join(conflict_ids)}")
        return reasons, conflict_ids
