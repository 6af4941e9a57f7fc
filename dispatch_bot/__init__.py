"""Escort dispatch core.

The models, the row store and the assignment reconciler are re-exported so
that callers can import them straight from ``dispatch_bot``.
"""

from .core.availability import AvailabilityResolver
from .core.conflicts import ConflictDetector
from .core.models import (
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
    TimeWindow,
)
from .core.reconciler import AssignmentReconciler, CandidatePolicy, ReconcileResult
from .core.storage import JSONStorage
from .data.store import DispatchStore
from .errors import (
    ConcurrencyError,
    ConflictError,
    DispatchError,
    NotFoundError,
    ValidationError,
)

__all__ = [
    "Assignment",
    "AssignmentReconciler",
    "AssignmentStatus",
    "AvailabilityEntry",
    "AvailabilityKind",
    "AvailabilityResolver",
    "CandidatePolicy",
    "ConcurrencyError",
    "ConflictDetector",
    "ConflictError",
    "DispatchError",
    "DispatchStore",
    "EscortRequest",
    "JSONStorage",
    "NotFoundError",
    "ReconcileResult",
    "Recurrence",
    "RequestStatus",
    "Rider",
    "RiderRef",
    "RiderStatus",
    "TimeWindow",
    "ValidationError",
]
