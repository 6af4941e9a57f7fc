"""JSON-backed row store for the dispatch core.

Each table holds pydantic records keyed by one of their fields. Every row
carries a version number that increases on each update so callers can
detect that somebody else wrote the row since they read it.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from pathlib import Path
from typing import Any, NamedTuple

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..errors import NotFoundError, StaleWriteError, ValidationError, from_pydantic

log = logging.getLogger(__name__)


class Table(NamedTuple):
    model: type[BaseModel]
    key: str


class JSONStorage:
    """Persist typed rows to a single JSON file.

    The storage is intentionally lightweight. Data is persisted to a single
    JSON file after every committed mutation, written atomically through a
    temporary file. Passing ``path=None`` keeps everything in memory.

    All reads and writes are serialised through one re-entrant lock;
    :meth:`transaction` holds it across a group of writes and rolls every
    table back if the block raises.
    """

    def __init__(self, path: Path | str | None, tables: Mapping[str, Table]) -> None:
        """Initialise storage for ``tables`` using JSON file at ``path``."""
        self.path = Path(path) if path is not None else None
        self.tables = dict(tables)
        self._rows: dict[str, dict[str, BaseModel]] = {name: {} for name in self.tables}
        self._versions: dict[str, dict[str, int]] = {name: {} for name in self.tables}
        self._lock = threading.RLock()
        self._depth = 0
        self._dirty = False
        if self.path is not None:
            if self.path.exists():
                self._load()
            else:
                self._save()

    # ------------------------------------------------------------------
    # Internal helpers
    def _table(self, entity: str) -> Table:
        try:
            return self.tables[entity]
        except KeyError:
            raise ValueError(f"Unknown entity type: {entity}") from None

    def _load(self) -> None:
        data = json.loads(self.path.read_text(encoding="utf-8"))
        for name, table in self.tables.items():
            rows: dict[str, BaseModel] = {}
            for item in data.get(name, []):
                row = table.model.model_validate(item)
                rows[getattr(row, table.key)] = row
            self._rows[name] = rows
            self._versions[name] = {key: 1 for key in rows}

    def _save(self) -> None:
        if self.path is None:
            return
        data = {
            name: [
                row.model_dump(mode="json", by_alias=True)
                for row in self._rows[name].values()
            ]
            for name in self.tables
        }
        tmp = self.path.with_name(self.path.name + ".tmp")
        tmp.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp, self.path)

    def _commit(self) -> None:
        if self._depth == 0:
            self._save()
        else:
            self._dirty = True

    # ------------------------------------------------------------------
    # Transactions
    @contextmanager
    def transaction(self) -> Iterator[JSONStorage]:
        """Group writes so they are saved together or not at all."""
        with self._lock:
            outermost = self._depth == 0
            if outermost:
                rows = {name: dict(table) for name, table in self._rows.items()}
                versions = {name: dict(v) for name, v in self._versions.items()}
                self._dirty = False
            self._depth += 1
            try:
                yield self
            except BaseException:
                self._depth -= 1
                if outermost:
                    self._rows = rows
                    self._versions = versions
                    self._dirty = False
                    log.debug("Transaction rolled back")
                raise
            self._depth -= 1
            if outermost and self._dirty:
                self._dirty = False
                self._save()

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    # ------------------------------------------------------------------
    # Row operations
    def list(
        self, entity: str, where: Callable[[Any], bool] | None = None
    ) -> list[Any]:
        """Return copies of the rows of ``entity`` matching ``where``."""
        self._table(entity)
        with self._lock:
            rows = list(self._rows[entity].values())
        return [r.model_copy(deep=True) for r in rows if where is None or where(r)]

    def get(self, entity: str, key: str) -> Any | None:
        """Return a copy of one row or ``None``."""
        self._table(entity)
        with self._lock:
            row = self._rows[entity].get(key)
        return row.model_copy(deep=True) if row is not None else None

    def version(self, entity: str, key: str) -> int:
        """Current version of a row; ``0`` when the row does not exist."""
        self._table(entity)
        with self._lock:
            return self._versions[entity].get(key, 0)

    def keys(self, entity: str) -> list[str]:
        self._table(entity)
        with self._lock:
            return list(self._rows[entity])

    def insert(self, entity: str, row: BaseModel) -> str:
        """Insert ``row`` and return its key."""
        table = self._table(entity)
        if not isinstance(row, table.model):
            raise TypeError(f"{entity} rows must be {table.model.__name__}")
        key = getattr(row, table.key)
        with self._lock:
            if key in self._rows[entity]:
                raise ValidationError(
                    f"{entity} {key} already exists",
                    entity=entity,
                    entity_id=key,
                    field=table.key,
                )
            self._rows[entity][key] = row.model_copy(deep=True)
            self._versions[entity][key] = 1
            self._commit()
        return key

    def update(
        self,
        entity: str,
        key: str,
        patch: Mapping[str, Any],
        expected_version: int | None = None,
    ) -> Any:
        """Apply ``patch`` to a row and return the updated copy.

        When ``expected_version`` is given and the row has moved on since,
        :class:`StaleWriteError` is raised and nothing is written.
        """
        table = self._table(entity)
        if table.key in patch and patch[table.key] != key:
            raise ValidationError(
                f"{entity} key cannot change", entity=entity, entity_id=key, field=table.key
            )
        with self._lock:
            current = self._rows[entity].get(key)
            if current is None:
                raise NotFoundError(f"{entity} {key} not found", entity=entity, entity_id=key)
            version = self._versions[entity][key]
            if expected_version is not None and expected_version != version:
                raise StaleWriteError(
                    f"{entity} {key} changed (expected v{expected_version}, found v{version})",
                    entity=entity,
                    entity_id=key,
                )
            try:
                updated = table.model.model_validate({**current.model_dump(), **patch})
            except PydanticValidationError as exc:
                raise from_pydantic(exc, entity=entity, entity_id=key) from exc
            self._rows[entity][key] = updated
            self._versions[entity][key] = version + 1
            self._commit()
        return updated.model_copy(deep=True)

    def delete(self, entity: str, key: str) -> bool:
        """Remove a row; returns ``False`` when it did not exist."""
        self._table(entity)
        with self._lock:
            if self._rows[entity].pop(key, None) is None:
                return False
            self._versions[entity].pop(key, None)
            self._commit()
        return True
