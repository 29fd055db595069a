from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.orm import Session

from salesflow.sales import schemas
from salesflow.store import base
from salesflow.store.base import RecordT, check_entity_type
from salesflow.store.models import (
    AccountRow,
    ContactRow,
    InvoiceDetailRow,
    InvoiceRow,
    LeadRow,
    OpportunityRow,
    QuoteDetailRow,
    QuoteRow,
    SalesOrderDetailRow,
    SalesOrderRow,
)
from salesflow.core.database import Base


ENTITY_MAPPINGS: dict[str, tuple[type[BaseModel], type[Base]]] = {
    base.LEAD: (schemas.Lead, LeadRow),
    base.ACCOUNT: (schemas.Account, AccountRow),
    base.CONTACT: (schemas.Contact, ContactRow),
    base.OPPORTUNITY: (schemas.Opportunity, OpportunityRow),
    base.QUOTE: (schemas.Quote, QuoteRow),
    base.QUOTE_DETAIL: (schemas.QuoteDetail, QuoteDetailRow),
    base.SALES_ORDER: (schemas.SalesOrder, SalesOrderRow),
    base.SALES_ORDER_DETAIL: (schemas.SalesOrderDetail, SalesOrderDetailRow),
    base.INVOICE: (schemas.Invoice, InvoiceRow),
    base.INVOICE_DETAIL: (schemas.InvoiceDetail, InvoiceDetailRow),
}


class SqlEntityStore:
    """EntityStore over a SQLAlchemy session.

    Writes outside ``transaction`` commit immediately; inside, the outermost
    block commits on success and rolls the session back on error.
    """

    def __init__(self, session: Session) -> None:
        self.session = session
        self._depth = 0

    def _mapping(self, entity_type: str) -> tuple[type[BaseModel], type[Base]]:
        return ENTITY_MAPPINGS[check_entity_type(entity_type)]

    def get(self, entity_type: str, entity_id: UUID) -> Any | None:
        record_type, row_type = self._mapping(entity_type)
        row = self.session.get(row_type, entity_id)
        if row is None:
            return None
        return record_type.model_validate(row)

    def list(self, entity_type: str, **filters: Any) -> list[Any]:
        record_type, row_type = self._mapping(entity_type)
        stmt = select(row_type).filter_by(**filters).order_by(row_type.createdon)  # type: ignore[attr-defined]
        return [record_type.model_validate(row) for row in self.session.scalars(stmt)]

    def put(self, entity_type: str, record: RecordT) -> RecordT:
        _, row_type = self._mapping(entity_type)
        self.session.merge(row_type(**record.model_dump(mode="python")))
        self.session.flush()
        self._commit_if_outside_transaction()
        return record

    def remove(self, entity_type: str, entity_id: UUID) -> bool:
        _, row_type = self._mapping(entity_type)
        row = self.session.get(row_type, entity_id)
        if row is None:
            return False
        self.session.delete(row)
        self.session.flush()
        self._commit_if_outside_transaction()
        return True

    @contextmanager
    def transaction(self) -> Iterator[None]:
        self._depth += 1
        try:
            yield
        except BaseException:
            self._depth -= 1
            if self._depth == 0:
                self.session.rollback()
            raise
        self._depth -= 1
        if self._depth == 0:
            self.session.commit()

    def _commit_if_outside_transaction(self) -> None:
        if self._depth == 0:
            self.session.commit()
