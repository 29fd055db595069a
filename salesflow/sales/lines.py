from __future__ import annotations

import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from salesflow.errors import NotFoundError, ValidationError
from salesflow.sales.ledger import priced_line_fields
from salesflow.sales.lifecycle import touch
from salesflow.sales.schemas import LINE_AMOUNT_FIELDS, LineItemCreate, LineItemRecord, LineItemUpdate
from salesflow.store.base import EntityStore


@dataclass(slots=True)
class LineItemBook:
    """Line rows of one header type, kept in ``lineitemnumber`` order."""

    store: EntityStore
    line_type: str
    line_model: type[LineItemRecord]
    parent_field: str

    def list(self, parent_id: uuid.UUID) -> list[Any]:
        lines = self.store.list(self.line_type, **{self.parent_field: parent_id})
        return sorted(lines, key=lambda line: line.lineitemnumber)

    def get(self, parent_id: uuid.UUID, line_id: uuid.UUID) -> Any:
        line = self.store.get(self.line_type, line_id)
        if line is None or getattr(line, self.parent_field) != parent_id:
            raise NotFoundError(self.line_type, line_id)
        return line

    def add(self, parent_id: uuid.UUID, payload: LineItemCreate, owner_id: str | None = None) -> Any:
        amounts = priced_line_fields(
            payload.quantity,
            payload.priceperunit,
            payload.manualdiscountamount,
            payload.volumediscountamount,
            payload.tax,
        )
        line = self.line_model(
            **{self.parent_field: parent_id},
            lineitemnumber=self._next_line_number(parent_id),
            productid=payload.productid,
            productdescription=payload.productdescription,
            ownerid=owner_id,
            **amounts,
        )
        self.store.put(self.line_type, line)
        return line

    def update(self, parent_id: uuid.UUID, line_id: uuid.UUID, payload: LineItemUpdate) -> Any:
        line = self.get(parent_id, line_id)
        changes = payload.model_dump(exclude_unset=True)
        for field in ("productid", "productdescription"):
            if field in changes:
                setattr(line, field, changes[field])

        def pick(field: str) -> Any:
            value = changes.get(field)
            return getattr(line, field) if value is None else value

        amounts = priced_line_fields(
            pick("quantity"),
            pick("priceperunit"),
            pick("manualdiscountamount"),
            pick("volumediscountamount"),
            pick("tax"),
        )
        for field, value in amounts.items():
            setattr(line, field, value)
        self.store.put(self.line_type, touch(line))
        return line

    def remove(self, parent_id: uuid.UUID, line_id: uuid.UUID) -> None:
        self.get(parent_id, line_id)
        self.store.remove(self.line_type, line_id)

    def remove_all(self, parent_id: uuid.UUID) -> int:
        lines = self.list(parent_id)
        for line in lines:
            self.store.remove(self.line_type, line.id)
        return len(lines)

    def reorder(self, parent_id: uuid.UUID, line_ids: list[uuid.UUID]) -> list[Any]:
        lines = {line.id: line for line in self.list(parent_id)}
        if len(set(line_ids)) != len(line_ids) or set(line_ids) != set(lines):
            raise ValidationError(["line_ids must list every line of the header exactly once"])
        reordered = []
        for number, line_id in enumerate(line_ids, start=1):
            line = lines[line_id]
            if line.lineitemnumber != number:
                line.lineitemnumber = number
                self.store.put(self.line_type, touch(line))
            reordered.append(line)
        return reordered

    def copy_from(
        self,
        parent_id: uuid.UUID,
        source_lines: Iterable[LineItemRecord],
        back_reference: str | None = None,
        owner_id: str | None = None,
    ) -> list[Any]:
        copies = []
        for source in sorted(source_lines, key=lambda line: line.lineitemnumber):
            data = {field: getattr(source, field) for field in LINE_AMOUNT_FIELDS}
            if back_reference is not None:
                data[back_reference] = source.id
            line = self.line_model(
                **{self.parent_field: parent_id},
                lineitemnumber=source.lineitemnumber,
                ownerid=owner_id,
                **data,
            )
            self.store.put(self.line_type, line)
            copies.append(line)
        return copies

    def _next_line_number(self, parent_id: uuid.UUID) -> int:
        return max((line.lineitemnumber for line in self.list(parent_id)), default=0) + 1
