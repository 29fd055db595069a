from __future__ import annotations

import copy
from collections.abc import Iterator
from contextlib import contextmanager
from threading import RLock
from typing import Any
from uuid import UUID

from pydantic import BaseModel

from salesflow.store.base import ENTITY_TYPES, RecordT, check_entity_type, matches_filters, sort_by_created


class InMemoryEntityStore:
    """Dict-backed store; ``transaction`` snapshots the tables and restores them on error.

    Safe to share between request threads: every call and every outermost
    transaction runs under one re-entrant lock.
    """

    def __init__(self) -> None:
        self._tables: dict[str, dict[UUID, BaseModel]] = {entity_type: {} for entity_type in ENTITY_TYPES}
        self._depth = 0
        self._lock = RLock()

    def get(self, entity_type: str, entity_id: UUID) -> Any | None:
        with self._lock:
            record = self._tables[check_entity_type(entity_type)].get(entity_id)
            if record is None:
                return None
            return record.model_copy(deep=True)

    def list(self, entity_type: str, **filters: Any) -> list[Any]:
        with self._lock:
            table = self._tables[check_entity_type(entity_type)]
            selected = [record.model_copy(deep=True) for record in table.values() if matches_filters(record, filters)]
        return sort_by_created(selected)

    def put(self, entity_type: str, record: RecordT) -> RecordT:
        with self._lock:
            self._tables[check_entity_type(entity_type)][record.id] = record.model_copy(deep=True)  # type: ignore[attr-defined]
        return record

    def remove(self, entity_type: str, entity_id: UUID) -> bool:
        with self._lock:
            return self._tables[check_entity_type(entity_type)].pop(entity_id, None) is not None

    @contextmanager
    def transaction(self) -> Iterator[None]:
        # held until the outermost block ends
        with self._lock:
            if self._depth > 0:
                self._depth += 1
                try:
                    yield
                finally:
                    self._depth -= 1
                return

            snapshot = copy.deepcopy(self._tables)
            self._depth = 1
            try:
                yield
            except BaseException:
                self._tables = snapshot
                raise
            finally:
                self._depth = 0

    def clear(self) -> None:
        with self._lock:
            for table in self._tables.values():
                table.clear()
