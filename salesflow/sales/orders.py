from __future__ import annotations

import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime

from salesflow.errors import NotFoundError
from salesflow.sales.ledger import ZERO, apply_header_totals, q
from salesflow.sales.lifecycle import (
    append_note,
    ensure_state,
    next_number,
    record_transition,
    touch,
    unit_of_work,
)
from salesflow.sales.lines import LineItemBook
from salesflow.sales.schemas import (
    ADDRESS_FIELDS,
    TOTAL_FIELDS,
    LineItemCreate,
    LineItemUpdate,
    OrderStatistics,
    Quote,
    QuoteDetail,
    SalesOrder,
    SalesOrderCreate,
    SalesOrderDetail,
    SalesOrderUpdate,
    SalesOrderWithLines,
    utcnow,
)
from salesflow.store.base import SALES_ORDER, SALES_ORDER_DETAIL, EntityStore


VALID_ORDER_TRANSITIONS: dict[str, set[str]] = {
    "Active": {"Submitted", "Canceled"},
    "Submitted": {"Fulfilled", "Canceled"},
    "Fulfilled": set(),
    "Canceled": set(),
}

LINE_EDITABLE_STATES = {"Active"}
DELETABLE_STATES = {"Active", "Canceled"}

ORDER_ACTIONS: dict[str, str] = {
    "Submitted": "submit",
    "Fulfilled": "fulfill",
    "Canceled": "cancel",
}


@dataclass(slots=True)
class OrderService:
    store: EntityStore
    lines: LineItemBook = field(init=False)

    def __post_init__(self) -> None:
        self.lines = LineItemBook(self.store, SALES_ORDER_DETAIL, SalesOrderDetail, "salesorderid")

    def create(self, payload: SalesOrderCreate) -> SalesOrder:
        data = payload.model_dump(mode="python")
        data["freightamount"] = q(data["freightamount"])
        order = SalesOrder(**data, ordernumber=next_number(self.store, SALES_ORDER, "ordernumber", "ORD"))
        apply_header_totals(order, [])
        self.store.put(SALES_ORDER, order)
        record_transition(SALES_ORDER, order, "created")
        return order

    def create_from_quote(self, quote: Quote, quote_lines: list[QuoteDetail]) -> SalesOrderWithLines:
        with unit_of_work(self.store):
            order = SalesOrder(
                name=quote.name,
                ordernumber=next_number(self.store, SALES_ORDER, "ordernumber", "ORD"),
                quoteid=quote.id,
                opportunityid=quote.opportunityid,
                customerid=quote.customerid,
                customeridtype=quote.customeridtype,
                paymenttermscode=quote.paymenttermscode,
                description=quote.description,
                ownerid=quote.ownerid,
                **{name: getattr(quote, name) for name in ADDRESS_FIELDS},
                **{name: getattr(quote, name) for name in TOTAL_FIELDS},
            )
            self.store.put(SALES_ORDER, order)
            lines = self.lines.copy_from(order.id, quote_lines, back_reference="quotedetailid", owner_id=quote.ownerid)
            record_transition(SALES_ORDER, order, "created", payload={"quote_id": str(quote.id)})
        return SalesOrderWithLines(order=order, lines=lines)

    def get_by_id(self, order_id: uuid.UUID) -> SalesOrder:
        order = self.store.get(SALES_ORDER, order_id)
        if order is None:
            raise NotFoundError(SALES_ORDER, order_id)
        return order

    def get_with_lines(self, order_id: uuid.UUID) -> SalesOrderWithLines:
        order = self.get_by_id(order_id)
        return SalesOrderWithLines(order=order, lines=self.lines.list(order.id))

    def list(self, statecode: str | None = None) -> list[SalesOrder]:
        if statecode is None:
            return self.store.list(SALES_ORDER)
        return self.store.list(SALES_ORDER, statecode=statecode)

    def list_by_quote(self, quote_id: uuid.UUID) -> list[SalesOrder]:
        return self.store.list(SALES_ORDER, quoteid=quote_id)

    def list_by_opportunity(self, opportunity_id: uuid.UUID) -> list[SalesOrder]:
        return self.store.list(SALES_ORDER, opportunityid=opportunity_id)

    def update(self, order_id: uuid.UUID, payload: SalesOrderUpdate) -> SalesOrder:
        order = self.get_by_id(order_id)
        ensure_state(SALES_ORDER, order, {"Active"}, "update")
        before = order.model_copy()

        changes = payload.model_dump(exclude_unset=True)
        if changes.get("freightamount") is not None:
            changes["freightamount"] = q(changes["freightamount"])
        for name, value in changes.items():
            setattr(order, name, value)
        apply_header_totals(order, self.lines.list(order.id))

        self.store.put(SALES_ORDER, touch(order))
        record_transition(SALES_ORDER, order, "updated", before=before)
        return order

    def delete(self, order_id: uuid.UUID) -> None:
        order = self.get_by_id(order_id)
        ensure_state(SALES_ORDER, order, DELETABLE_STATES, "delete")
        with unit_of_work(self.store):
            self.lines.remove_all(order.id)
            self.store.remove(SALES_ORDER, order.id)

    def list_lines(self, order_id: uuid.UUID) -> list[SalesOrderDetail]:
        self.get_by_id(order_id)
        return self.lines.list(order_id)

    def add_line(self, order_id: uuid.UUID, payload: LineItemCreate) -> SalesOrderDetail:
        order = self._get_editable(order_id)
        with unit_of_work(self.store):
            line = self.lines.add(order.id, payload, owner_id=order.ownerid)
            self._recompute(order)
        return line

    def update_line(self, order_id: uuid.UUID, line_id: uuid.UUID, payload: LineItemUpdate) -> SalesOrderDetail:
        order = self._get_editable(order_id)
        with unit_of_work(self.store):
            line = self.lines.update(order.id, line_id, payload)
            self._recompute(order)
        return line

    def remove_line(self, order_id: uuid.UUID, line_id: uuid.UUID) -> SalesOrder:
        order = self._get_editable(order_id)
        with unit_of_work(self.store):
            self.lines.remove(order.id, line_id)
            self._recompute(order)
        return order

    def submit(self, order_id: uuid.UUID) -> SalesOrder:
        return self._transition(order_id, "Submitted", "submitted", submitdate=utcnow())

    def fulfill(self, order_id: uuid.UUID, datefulfilled: datetime | None = None) -> SalesOrder:
        return self._transition(order_id, "Fulfilled", "fulfilled", datefulfilled=datefulfilled or utcnow())

    def cancel(self, order_id: uuid.UUID, reason: str | None = None) -> SalesOrder:
        order = self.get_by_id(order_id)
        description = order.description
        if reason:
            description = append_note(description, f"Cancellation reason: {reason}")
        return self._transition(order_id, "Canceled", "canceled", description=description)

    def get_statistics(self) -> OrderStatistics:
        orders = self.store.list(SALES_ORDER)
        by_state = Counter(order.statecode for order in orders)
        live = [order for order in orders if order.statecode != "Canceled"]
        total_value = q(sum((order.totalamount for order in live), start=ZERO))
        average = q(total_value / len(live)) if live else q(ZERO)
        return OrderStatistics(
            total=len(orders),
            by_state=dict(by_state),
            total_value=total_value,
            average_value=average,
        )

    def _transition(self, order_id: uuid.UUID, target: str, verb: str, **changes: object) -> SalesOrder:
        order = self.get_by_id(order_id)
        allowed = {state for state, targets in VALID_ORDER_TRANSITIONS.items() if target in targets}
        ensure_state(SALES_ORDER, order, allowed, ORDER_ACTIONS[target])
        before = order.model_copy()

        order.statecode = target  # type: ignore[assignment]
        for name, value in changes.items():
            setattr(order, name, value)
        self.store.put(SALES_ORDER, touch(order))
        record_transition(SALES_ORDER, order, verb, before=before)
        return order

    def _get_editable(self, order_id: uuid.UUID) -> SalesOrder:
        order = self.get_by_id(order_id)
        ensure_state(SALES_ORDER, order, LINE_EDITABLE_STATES, "edit lines of")
        return order

    def _recompute(self, order: SalesOrder) -> SalesOrder:
        apply_header_totals(order, self.lines.list(order.id))
        self.store.put(SALES_ORDER, touch(order))
        return order
