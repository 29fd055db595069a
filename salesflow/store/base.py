from __future__ import annotations

from contextlib import AbstractContextManager
from typing import Any, Protocol, TypeVar
from uuid import UUID

from pydantic import BaseModel


LEAD = "lead"
ACCOUNT = "account"
CONTACT = "contact"
OPPORTUNITY = "opportunity"
QUOTE = "quote"
QUOTE_DETAIL = "quotedetail"
SALES_ORDER = "salesorder"
SALES_ORDER_DETAIL = "salesorderdetail"
INVOICE = "invoice"
INVOICE_DETAIL = "invoicedetail"

ENTITY_TYPES: tuple[str, ...] = (
    LEAD,
    ACCOUNT,
    CONTACT,
    OPPORTUNITY,
    QUOTE,
    QUOTE_DETAIL,
    SALES_ORDER,
    SALES_ORDER_DETAIL,
    INVOICE,
    INVOICE_DETAIL,
)

RecordT = TypeVar("RecordT", bound=BaseModel)


class UnknownEntityTypeError(KeyError):
    def __init__(self, entity_type: str) -> None:
        super().__init__(f"unknown entity type '{entity_type}'")
        self.entity_type = entity_type


class EntityStore(Protocol):
    """Keyed persistence per entity type.

    Records go in and come out as detached copies; mutating a returned
    record has no effect until it is passed back to ``put``.
    """

    def get(self, entity_type: str, entity_id: UUID) -> Any | None:
        ...

    def list(self, entity_type: str, **filters: Any) -> list[Any]:
        ...

    def put(self, entity_type: str, record: RecordT) -> RecordT:
        ...

    def remove(self, entity_type: str, entity_id: UUID) -> bool:
        ...

    def transaction(self) -> AbstractContextManager[None]:
        ...


def check_entity_type(entity_type: str) -> str:
    if entity_type not in ENTITY_TYPES:
        raise UnknownEntityTypeError(entity_type)
    return entity_type


def matches_filters(record: BaseModel, filters: dict[str, Any]) -> bool:
    return all(getattr(record, key) == value for key, value in filters.items())


def sort_by_created(records: list[BaseModel]) -> list[Any]:
    return sorted(records, key=lambda record: getattr(record, "createdon"))
