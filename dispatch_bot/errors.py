"""Error taxonomy shared by the dispatch core and its front ends."""

from __future__ import annotations


class DispatchError(Exception):
    """Base class for every error raised by the dispatch core.

    Attributes
    ----------
    entity:
        Kind of record involved (``"request"``, ``"rider"`` ...).
    entity_id:
        Identifier of the record, when known.

    """

    def __init__(
        self, message: str, *, entity: str | None = None, entity_id: str | None = None
    ) -> None:
        super().__init__(message)
        self.entity = entity
        self.entity_id = entity_id


class NotFoundError(DispatchError):
    """A referenced request, rider or assignment does not exist."""


class ValidationError(DispatchError):
    """Input was rejected before any store mutation."""

    def __init__(
        self,
        message: str,
        *,
        entity: str | None = None,
        entity_id: str | None = None,
        field: str | None = None,
    ) -> None:
        super().__init__(message, entity=entity, entity_id=entity_id)
        self.field = field


class ConflictError(DispatchError):
    """A candidate rider is double-booked or outside declared availability."""

    def __init__(
        self,
        message: str,
        *,
        entity: str | None = None,
        entity_id: str | None = None,
        rider_ids: list[str] | None = None,
    ) -> None:
        super().__init__(message, entity=entity, entity_id=entity_id)
        self.rider_ids = rider_ids or []


class ConcurrencyError(DispatchError):
    """A reconcile kept losing optimistic-concurrency races."""


class StaleWriteError(ConcurrencyError):
    """A versioned update found a newer row than the one it read."""


def from_pydantic(
    exc: Exception, *, entity: str, entity_id: str | None = None
) -> ValidationError:
    """Convert a :class:`pydantic.ValidationError` into a :class:`ValidationError`.

    Only the first reported problem is kept; its location becomes ``field``.
    """
    errors = exc.errors() if hasattr(exc, "errors") else []
    if not errors:
        return ValidationError(str(exc), entity=entity, entity_id=entity_id)
    first = errors[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or None
    message = first.get("msg", str(exc))
    if field:
        message = f"{entity} {field}: {message}"
    else:
        message = f"{entity}: {message}"
    return ValidationError(message, entity=entity, entity_id=entity_id, field=field)
