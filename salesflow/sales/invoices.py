from __future__ import annotations

import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal

from opentelemetry import trace

from salesflow.errors import NotFoundError, PreconditionError, ValidationError
from salesflow.otel import sales_span
from salesflow.sales.ledger import ZERO, apply_header_totals, q
from salesflow.sales.lifecycle import (
    append_note,
    ensure_state,
    next_number,
    record_transition,
    reject,
    touch,
    unit_of_work,
)
from salesflow.sales.lines import LineItemBook
from salesflow.sales.orders import OrderService
from salesflow.sales.payment_terms import DEFAULT_DUE_DAYS, payment_terms_days
from salesflow.sales.schemas import (
    ADDRESS_FIELDS,
    TOTAL_FIELDS,
    Invoice,
    InvoiceDetail,
    InvoiceStatistics,
    InvoiceUpdate,
    InvoiceWithLines,
    LineItemCreate,
    LineItemUpdate,
    utcnow,
)
from salesflow.store.base import INVOICE, INVOICE_DETAIL, EntityStore


tracer = trace.get_tracer(__name__)

VALID_INVOICE_TRANSITIONS: dict[str, set[str]] = {
    "Active": {"Closed", "Paid", "Canceled"},
    "Closed": {"Paid", "Canceled"},
    "Paid": set(),
    "Canceled": set(),
}

EDITABLE_STATES = {"Active"}
PAYABLE_STATES = {"Active", "Closed"}


def _sources(target: str) -> set[str]:
    return {state for state, targets in VALID_INVOICE_TRANSITIONS.items() if target in targets}


@dataclass(slots=True)
class InvoiceService:
    store: EntityStore
    orders: OrderService
    default_due_days: int = DEFAULT_DUE_DAYS
    lines: LineItemBook = field(init=False)

    def __post_init__(self) -> None:
        self.lines = LineItemBook(self.store, INVOICE_DETAIL, InvoiceDetail, "invoiceid")

    def create_from_order(self, order_id: uuid.UUID) -> InvoiceWithLines:
        order = self.orders.get_by_id(order_id)
        if order.statecode != "Fulfilled":
            reject(INVOICE, "order_not_fulfilled", "order not fulfilled")
        order_lines = self.orders.list_lines(order.id)
        if not order_lines:
            reject(INVOICE, "order_without_lines", "order has no lines", PreconditionError)
        if any(invoice.statecode != "Canceled" for invoice in self.list_by_order(order.id)):
            reject(INVOICE, "order_already_invoiced", "order already has an open invoice", PreconditionError)

        with sales_span(tracer, "sales.invoice.create_from_order", order_id=str(order.id)) as span:
            with unit_of_work(self.store):
                created_on = utcnow()
                invoice = Invoice(
                    name=f"Invoice for {order.name}",
                    invoicenumber=next_number(self.store, INVOICE, "invoicenumber", "INV", created_on),
                    salesorderid=order.id,
                    opportunityid=order.opportunityid,
                    customerid=order.customerid,
                    customeridtype=order.customeridtype,
                    paymenttermscode=order.paymenttermscode,
                    description=order.description,
                    duedate=self.due_date(created_on, order.paymenttermscode),
                    datedelivered=order.datefulfilled,
                    ownerid=order.ownerid,
                    createdon=created_on,
                    modifiedon=created_on,
                    totalpaid=q(ZERO),
                    **{name: getattr(order, name) for name in ADDRESS_FIELDS},
                    **{name: getattr(order, name) for name in TOTAL_FIELDS},
                )
                invoice.totalbalance = q(invoice.totalamount - invoice.totalpaid)
                self.store.put(INVOICE, invoice)
                lines = self.lines.copy_from(
                    invoice.id,
                    order_lines,
                    back_reference="salesorderdetailid",
                    owner_id=order.ownerid,
                )
                record_transition(INVOICE, invoice, "created", payload={"order_id": str(order.id)})
            span.set_attribute("invoice_id", str(invoice.id))

        return InvoiceWithLines(invoice=invoice, lines=lines)

    def due_date(self, created_on: datetime, paymenttermscode: int | None) -> date:
        return created_on.date() + timedelta(days=payment_terms_days(paymenttermscode, self.default_due_days))

    def get_by_id(self, invoice_id: uuid.UUID) -> Invoice:
        invoice = self.store.get(INVOICE, invoice_id)
        if invoice is None:
            raise NotFoundError(INVOICE, invoice_id)
        return invoice

    def get_with_lines(self, invoice_id: uuid.UUID) -> InvoiceWithLines:
        invoice = self.get_by_id(invoice_id)
        return InvoiceWithLines(invoice=invoice, lines=self.lines.list(invoice.id))

    def list(self, statecode: str | None = None) -> list[Invoice]:
        if statecode is None:
            return self.store.list(INVOICE)
        return self.store.list(INVOICE, statecode=statecode)

    def list_by_order(self, order_id: uuid.UUID) -> list[Invoice]:
        return self.store.list(INVOICE, salesorderid=order_id)

    def list_by_opportunity(self, opportunity_id: uuid.UUID) -> list[Invoice]:
        return self.store.list(INVOICE, opportunityid=opportunity_id)

    def list_by_customer(self, customer_id: uuid.UUID) -> list[Invoice]:
        return self.store.list(INVOICE, customerid=customer_id)

    def list_overdue(self, today: date | None = None) -> list[Invoice]:
        today = today or utcnow().date()
        return [
            invoice
            for invoice in self.store.list(INVOICE, statecode="Active")
            if invoice.duedate is not None and invoice.duedate < today
        ]

    def update(self, invoice_id: uuid.UUID, payload: InvoiceUpdate) -> Invoice:
        invoice = self._get_editable(invoice_id, "update")
        before = invoice.model_copy()

        changes = payload.model_dump(exclude_unset=True)
        if changes.get("freightamount") is not None:
            changes["freightamount"] = q(changes["freightamount"])
        for name, value in changes.items():
            setattr(invoice, name, value)
        with unit_of_work(self.store):
            self._recompute(invoice)
            record_transition(INVOICE, invoice, "updated", before=before)
        return invoice

    def list_lines(self, invoice_id: uuid.UUID) -> list[InvoiceDetail]:
        self.get_by_id(invoice_id)
        return self.lines.list(invoice_id)

    def add_line(self, invoice_id: uuid.UUID, payload: LineItemCreate) -> InvoiceDetail:
        invoice = self._get_editable(invoice_id, "edit lines of")
        with unit_of_work(self.store):
            line = self.lines.add(invoice.id, payload, owner_id=invoice.ownerid)
            self._recompute(invoice)
        return line

    def update_line(self, invoice_id: uuid.UUID, line_id: uuid.UUID, payload: LineItemUpdate) -> InvoiceDetail:
        invoice = self._get_editable(invoice_id, "edit lines of")
        with unit_of_work(self.store):
            line = self.lines.update(invoice.id, line_id, payload)
            self._recompute(invoice)
        return line

    def remove_line(self, invoice_id: uuid.UUID, line_id: uuid.UUID) -> Invoice:
        invoice = self._get_editable(invoice_id, "edit lines of")
        with unit_of_work(self.store):
            self.lines.remove(invoice.id, line_id)
            self._recompute(invoice)
        return invoice

    def close(self, invoice_id: uuid.UUID) -> Invoice:
        invoice = self.get_by_id(invoice_id)
        ensure_state(INVOICE, invoice, _sources("Closed"), "close")
        before = invoice.model_copy()

        invoice.statecode = "Closed"
        self.store.put(INVOICE, touch(invoice))
        record_transition(INVOICE, invoice, "closed", before=before)
        return invoice

    def record_payment(self, invoice_id: uuid.UUID, amount: Decimal, paymentdate: datetime | None = None) -> Invoice:
        invoice = self.get_by_id(invoice_id)
        ensure_state(INVOICE, invoice, PAYABLE_STATES, "record a payment on")
        payment = q(amount)
        if payment <= ZERO:
            raise ValidationError(["payment amount must be greater than 0"])
        if payment > invoice.totalbalance:
            raise ValidationError([f"payment of {payment} exceeds the outstanding balance of {invoice.totalbalance}"])
        before = invoice.model_copy()

        invoice.totalpaid = q(invoice.totalpaid + payment)
        invoice.totalbalance = q(invoice.totalamount - invoice.totalpaid)
        invoice.paymentdate = paymentdate or utcnow()
        transition = "payment_recorded"
        if invoice.totalbalance == ZERO:
            invoice.statecode = "Paid"
            transition = "paid"

        self.store.put(INVOICE, touch(invoice))
        record_transition(INVOICE, invoice, transition, before=before, payload={"amount": str(payment)})
        return invoice

    def mark_as_paid(self, invoice_id: uuid.UUID, paymentdate: datetime | None = None) -> Invoice:
        invoice = self.get_by_id(invoice_id)
        ensure_state(INVOICE, invoice, _sources("Paid"), "mark as paid")
        before = invoice.model_copy()

        invoice.statecode = "Paid"
        invoice.totalpaid = q(invoice.totalamount)
        invoice.totalbalance = q(invoice.totalamount - invoice.totalpaid)
        invoice.paymentdate = paymentdate or utcnow()

        self.store.put(INVOICE, touch(invoice))
        record_transition(INVOICE, invoice, "paid", before=before)
        return invoice

    def cancel(self, invoice_id: uuid.UUID, reason: str | None = None) -> Invoice:
        invoice = self.get_by_id(invoice_id)
        ensure_state(INVOICE, invoice, _sources("Canceled"), "cancel")
        before = invoice.model_copy()

        invoice.statecode = "Canceled"
        invoice.description = append_note(invoice.description, f"Canceled: {reason or 'No reason provided'}")

        self.store.put(INVOICE, touch(invoice))
        record_transition(INVOICE, invoice, "canceled", before=before)
        return invoice

    def delete(self, invoice_id: uuid.UUID) -> Invoice:
        return self.cancel(invoice_id, "Deleted by user")

    def get_statistics(self, today: date | None = None) -> InvoiceStatistics:
        invoices = self.store.list(INVOICE)
        overdue = self.list_overdue(today)
        paid = [invoice for invoice in invoices if invoice.statecode == "Paid"]
        payable = [invoice for invoice in invoices if invoice.statecode in PAYABLE_STATES]
        return InvoiceStatistics(
            total=len(invoices),
            by_state=dict(Counter(invoice.statecode for invoice in invoices)),
            overdue=len(overdue),
            total_amount=q(sum((invoice.totalamount for invoice in invoices), start=ZERO)),
            total_paid=q(sum((invoice.totalpaid for invoice in paid + payable), start=ZERO)),
            total_due=q(sum((invoice.totalbalance for invoice in payable), start=ZERO)),
        )

    def _get_editable(self, invoice_id: uuid.UUID, action: str) -> Invoice:
        invoice = self.get_by_id(invoice_id)
        ensure_state(INVOICE, invoice, EDITABLE_STATES, action)
        return invoice

    def _recompute(self, invoice: Invoice) -> Invoice:
        apply_header_totals(invoice, self.lines.list(invoice.id))
        if invoice.totalamount < invoice.totalpaid:
            raise ValidationError(
                [f"invoice total {invoice.totalamount} would fall below the amount already paid {invoice.totalpaid}"]
            )
        invoice.totalbalance = q(invoice.totalamount - invoice.totalpaid)
        self.store.put(INVOICE, touch(invoice))
        return invoice
