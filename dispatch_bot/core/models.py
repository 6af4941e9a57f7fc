"""Data models for the escort dispatch core.

The models are implemented using :mod:`pydantic` so that they provide
runtime validation and convenient serialisation to and from dictionaries.
Persisted field names keep the vocabulary of the dispatch sheets
(``Request ID``, ``Event Date`` ...); models can still be constructed with
their Python attribute names.
"""

from __future__ import annotations

import datetime as dt
import re
import uuid
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def _utcnow() -> dt.datetime:
    return dt.datetime.now(tz=dt.UTC)


class RequestStatus(str, Enum):
    NEW = "New"
    UNASSIGNED = "Unassigned"
    ASSIGNED = "Assigned"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RequestStatus.COMPLETED, RequestStatus.CANCELLED)


class AssignmentStatus(str, Enum):
    ASSIGNED = "Assigned"
    CONFIRMED = "Confirmed"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    NO_SHOW = "No Show"

    @property
    def is_active(self) -> bool:
        """Active assignments count for staffing and double-booking checks."""
        return self in ACTIVE_ASSIGNMENT_STATUSES


ACTIVE_ASSIGNMENT_STATUSES = frozenset(
    {AssignmentStatus.ASSIGNED, AssignmentStatus.CONFIRMED, AssignmentStatus.IN_PROGRESS}
)


class AvailabilityKind(str, Enum):
    AVAILABLE = "Available"
    UNAVAILABLE = "Unavailable"


class RiderStatus(str, Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"
    VACATION = "Vacation"
    TRAINING = "Training"
    SUSPENDED = "Suspended"


class TimeWindow(BaseModel):
    """Half-open time range ``[start, end)`` within a single day."""

    model_config = ConfigDict(frozen=True)

    start: dt.time
    end: dt.time

    @model_validator(mode="after")
    def _check_order(self) -> TimeWindow:
        if self.end <= self.start:
            raise ValueError("end must be after start")
        return self

    def overlaps(self, other: TimeWindow) -> bool:
        return self.start < other.end and other.start < self.end

    def contains(self, other: TimeWindow) -> bool:
        return self.start <= other.start and other.end <= self.end

    @property
    def duration(self) -> dt.timedelta:
        day = dt.date.min
        return dt.datetime.combine(day, self.end) - dt.datetime.combine(day, self.start)

    def __str__(self) -> str:
        return f"{self.start:%H:%M}-{self.end:%H:%M}"


class Recurrence(BaseModel):
    """Weekly repetition rule for an availability entry.

    Attributes
    ----------
    weekday:
        ``0`` for Monday through ``6`` for Sunday, as :meth:`datetime.date.weekday`.
    start_date:
        First date the rule may apply to.
    repeat_until:
        Last date (inclusive) the rule applies to. ``None`` means open-ended.

    """

    model_config = ConfigDict(frozen=True)

    weekday: int = Field(ge=0, le=6)
    start_date: dt.date
    repeat_until: dt.date | None = None

    @model_validator(mode="after")
    def _check_range(self) -> Recurrence:
        if self.repeat_until is not None and self.repeat_until < self.start_date:
            raise ValueError("repeat_until must not be before start_date")
        return self

    def applies_to(self, day: dt.date) -> bool:
        if day.weekday() != self.weekday or day < self.start_date:
            return False
        return self.repeat_until is None or day <= self.repeat_until


class AvailabilityEntry(BaseModel):
    """A rider's declared availability or unavailability.

    An entry is either pinned to one ``date`` or repeats weekly via
    ``recurrence``. ``Unavailable`` entries may omit both times to block out
    the whole day.
    """

    entry_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    rider_id: str
    date: dt.date | None = None
    recurrence: Recurrence | None = None
    start_time: dt.time | None = None
    end_time: dt.time | None = None
    kind: AvailabilityKind = AvailabilityKind.AVAILABLE
    notes: str = ""

    @model_validator(mode="after")
    def _check_shape(self) -> AvailabilityEntry:
        if (self.date is None) == (self.recurrence is None):
            raise ValueError("exactly one of date or recurrence is required")
        if (self.start_time is None) != (self.end_time is None):
            raise ValueError("start_time and end_time must be given together")
        if self.start_time is None:
            if self.kind is AvailabilityKind.AVAILABLE:
                raise ValueError("available entries need a start and end time")
        elif self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self

    def applies_to(self, day: dt.date) -> bool:
        if self.date is not None:
            return self.date == day
        return self.recurrence.applies_to(day)

    @property
    def window(self) -> TimeWindow:
        if self.start_time is None:
            return TimeWindow(start=dt.time.min, end=dt.time.max)
        return TimeWindow(start=self.start_time, end=self.end_time)

    def slot_key(self) -> tuple:
        """Key under which a later entry replaces an earlier one."""
        anchor = self.date if self.date is not None else self.recurrence
        return (self.rider_id, anchor, self.start_time, self.end_time)


class Rider(BaseModel):
    """A motorcycle escort rider.

    ``rider_id`` is the stable identity used throughout the core; ``name`` is
    for display only.
    """

    model_config = ConfigDict(populate_by_name=True)

    rider_id: str = Field(alias="Rider ID", min_length=1)
    name: str = Field(alias="Full Name", min_length=1)
    phone: str | None = Field(default=None, alias="Phone Number")
    email: str | None = Field(default=None, alias="Email")
    carrier: str | None = Field(default=None, alias="Carrier")
    discord_id: int | None = Field(default=None, alias="Discord ID")
    status: RiderStatus = Field(default=RiderStatus.ACTIVE, alias="Status")

    @field_validator("rider_id", "name")
    @classmethod
    def _strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("phone")
    @classmethod
    def _clean_phone(cls, value: str | None) -> str | None:
        if not value:
            return None
        digits = re.sub(r"\D", "", value)
        if len(digits) != 10:
            raise ValueError("phone number must be 10 digits")
        return digits

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str | None) -> str | None:
        if not value:
            return None
        value = value.strip()
        if not _EMAIL_RE.match(value):
            raise ValueError("invalid email format")
        return value

    @property
    def is_active(self) -> bool:
        return self.status is RiderStatus.ACTIVE


class RiderRef(BaseModel):
    """A rider as named by a caller: stable id plus display name."""

    model_config = ConfigDict(frozen=True)

    rider_id: str
    rider_name: str = ""


class EscortRequest(BaseModel):
    """An escort request needing ``riders_needed`` riders."""

    model_config = ConfigDict(populate_by_name=True)

    request_id: str = Field(alias="Request ID")
    event_date: dt.date = Field(alias="Event Date")
    start_time: dt.time = Field(alias="Start Time")
    end_time: dt.time = Field(alias="End Time")
    riders_needed: int = Field(default=1, ge=0, alias="Riders Needed")
    status: RequestStatus = Field(default=RequestStatus.NEW, alias="Status")
    riders_assigned: str = Field(default="", alias="Riders Assigned")
    requester_name: str = Field(default="", alias="Requester Name")
    start_location: str = Field(default="", alias="Start Location")
    end_location: str = Field(default="", alias="End Location")
    notes: str = Field(default="", alias="Notes")
    courtesy: bool = Field(default=False, alias="Courtesy")
    created_at: dt.datetime = Field(default_factory=_utcnow, alias="Date Created")
    last_updated: dt.datetime | None = Field(default=None, alias="Last Updated")

    @model_validator(mode="after")
    def _check_window(self) -> EscortRequest:
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self

    @property
    def window(self) -> TimeWindow:
        return TimeWindow(start=self.start_time, end=self.end_time)


class Assignment(BaseModel):
    """A rider assigned to a request.

    The date and time window are copied from the request when the
    assignment is created and are not updated afterwards.
    """

    model_config = ConfigDict(populate_by_name=True)

    assignment_id: str = Field(alias="Assignment ID")
    request_id: str = Field(alias="Request ID")
    rider_id: str = Field(alias="Rider ID")
    rider_name: str = Field(default="", alias="Rider Name")
    event_date: dt.date = Field(alias="Event Date")
    start_time: dt.time = Field(alias="Start Time")
    end_time: dt.time = Field(alias="End Time")
    status: AssignmentStatus = Field(default=AssignmentStatus.ASSIGNED, alias="Status")
    created_date: dt.datetime = Field(default_factory=_utcnow, alias="Created Date")
    notified_at: dt.datetime | None = Field(default=None, alias="Notified")
    reminded_at: dt.datetime | None = Field(default=None, alias="Reminded")
    notes: str = Field(default="", alias="Notes")

    @property
    def window(self) -> TimeWindow:
        return TimeWindow(start=self.start_time, end=self.end_time)

    @property
    def is_active(self) -> bool:
        return self.status.is_active

    def starts_at(self) -> dt.datetime:
        return dt.datetime.combine(self.event_date, self.start_time)
