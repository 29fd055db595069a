from __future__ import annotations

import logging
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import date

from opentelemetry import trace

from salesflow.errors import NotFoundError, ValidationError
from salesflow.metrics import observe_transition_failure
from salesflow.otel import sales_span
from salesflow.sales.ledger import ZERO, apply_header_totals, q
from salesflow.sales.lifecycle import (
    ensure_state,
    next_number,
    record_transition,
    touch,
    unit_of_work,
)
from salesflow.sales.lines import LineItemBook
from salesflow.sales.opportunities import OpportunityService
from salesflow.sales.orders import OrderService
from salesflow.sales.schemas import (
    ADDRESS_FIELDS,
    CloseOpportunityRequest,
    LineItemCreate,
    LineItemUpdate,
    Opportunity,
    Quote,
    QuoteCreate,
    QuoteDetail,
    QuoteStatistics,
    QuoteUpdate,
    QuoteWinResult,
    QuoteWithLines,
    utcnow,
)
from salesflow.store.base import QUOTE, QUOTE_DETAIL, EntityStore


logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

VALID_QUOTE_TRANSITIONS: dict[str, set[str]] = {
    "Draft": {"Active", "Lost", "Canceled"},
    "Active": {"Won", "Lost", "Canceled", "Draft"},
    "Won": set(),
    "Lost": {"Draft", "Canceled"},
    "Canceled": {"Draft"},
}


def _sources(target: str) -> set[str]:
    return {state for state, targets in VALID_QUOTE_TRANSITIONS.items() if target in targets}


@dataclass(slots=True)
class QuoteService:
    store: EntityStore
    orders: OrderService
    opportunities: OpportunityService
    lines: LineItemBook = field(init=False)

    def __post_init__(self) -> None:
        self.lines = LineItemBook(self.store, QUOTE_DETAIL, QuoteDetail, "quoteid")

    def create(self, payload: QuoteCreate) -> Quote:
        data = payload.model_dump(mode="python")
        data["freightamount"] = q(data["freightamount"])
        if payload.opportunityid is not None:
            opportunity = self.opportunities.get_by_id(payload.opportunityid)
            if data.get("customerid") is None:
                data["customerid"] = opportunity.customerid
                data["customeridtype"] = opportunity.customeridtype
        self._check_effective_dates(data.get("effectivefrom"), data.get("effectiveto"))

        quote = Quote(**data, quotenumber=next_number(self.store, QUOTE, "quotenumber", "QU"))
        apply_header_totals(quote, [])
        self.store.put(QUOTE, quote)
        record_transition(QUOTE, quote, "created")
        return quote

    def get_by_id(self, quote_id: uuid.UUID) -> Quote:
        quote = self.store.get(QUOTE, quote_id)
        if quote is None:
            raise NotFoundError(QUOTE, quote_id)
        return quote

    def get_with_lines(self, quote_id: uuid.UUID) -> QuoteWithLines:
        quote = self.get_by_id(quote_id)
        return QuoteWithLines(quote=quote, lines=self.lines.list(quote.id))

    def list(self, statecode: str | None = None) -> list[Quote]:
        if statecode is None:
            return self.store.list(QUOTE)
        return self.store.list(QUOTE, statecode=statecode)

    def list_by_opportunity(self, opportunity_id: uuid.UUID) -> list[Quote]:
        return self.store.list(QUOTE, opportunityid=opportunity_id)

    def update(self, quote_id: uuid.UUID, payload: QuoteUpdate) -> Quote:
        quote = self.get_by_id(quote_id)
        ensure_state(QUOTE, quote, {"Draft"}, "update")
        before = quote.model_copy()

        changes = payload.model_dump(exclude_unset=True)
        if changes.get("freightamount") is not None:
            changes["freightamount"] = q(changes["freightamount"])
        self._check_effective_dates(
            changes.get("effectivefrom", quote.effectivefrom),
            changes.get("effectiveto", quote.effectiveto),
        )
        for name, value in changes.items():
            setattr(quote, name, value)
        apply_header_totals(quote, self.lines.list(quote.id))

        self.store.put(QUOTE, touch(quote))
        record_transition(QUOTE, quote, "updated", before=before)
        return quote

    def delete(self, quote_id: uuid.UUID) -> None:
        quote = self.get_by_id(quote_id)
        ensure_state(QUOTE, quote, {"Draft"}, "delete")
        with unit_of_work(self.store):
            self.lines.remove_all(quote.id)
            self.store.remove(QUOTE, quote.id)

    def list_lines(self, quote_id: uuid.UUID) -> list[QuoteDetail]:
        self.get_by_id(quote_id)
        return self.lines.list(quote_id)

    def add_line(self, quote_id: uuid.UUID, payload: LineItemCreate) -> QuoteDetail:
        quote = self._get_draft(quote_id)
        with unit_of_work(self.store):
            line = self.lines.add(quote.id, payload, owner_id=quote.ownerid)
            self._recompute(quote)
        return line

    def update_line(self, quote_id: uuid.UUID, line_id: uuid.UUID, payload: LineItemUpdate) -> QuoteDetail:
        quote = self._get_draft(quote_id)
        with unit_of_work(self.store):
            line = self.lines.update(quote.id, line_id, payload)
            self._recompute(quote)
        return line

    def remove_line(self, quote_id: uuid.UUID, line_id: uuid.UUID) -> Quote:
        quote = self._get_draft(quote_id)
        with unit_of_work(self.store):
            self.lines.remove(quote.id, line_id)
            self._recompute(quote)
        return quote

    def reorder_lines(self, quote_id: uuid.UUID, line_ids: list[uuid.UUID]) -> list[QuoteDetail]:
        quote = self._get_draft(quote_id)
        with unit_of_work(self.store):
            return self.lines.reorder(quote.id, line_ids)

    def activate(self, quote_id: uuid.UUID) -> Quote:
        quote = self.get_by_id(quote_id)
        ensure_state(QUOTE, quote, _sources("Active"), "activate")
        if not self.lines.list(quote.id):
            observe_transition_failure(QUOTE, "activate_without_lines")
            raise ValidationError(["quote must have at least one line to be activated"])
        before = quote.model_copy()

        quote.statecode = "Active"
        if quote.effectivefrom is None:
            quote.effectivefrom = utcnow().date()
        self.store.put(QUOTE, touch(quote))
        record_transition(QUOTE, quote, "activated", before=before)
        return quote

    def win(self, quote_id: uuid.UUID, closingnotes: str | None = None) -> QuoteWinResult:
        quote = self.get_by_id(quote_id)
        ensure_state(QUOTE, quote, _sources("Won"), "win")
        before = quote.model_copy()

        with sales_span(tracer, "sales.quote.win", quote_id=str(quote.id)) as span:
            with unit_of_work(self.store):
                quote.statecode = "Won"
                quote.closedon = utcnow()
                if closingnotes:
                    quote.closingnotes = closingnotes
                self.store.put(QUOTE, touch(quote))

                created = self.orders.create_from_quote(quote, self.lines.list(quote.id))
                opportunity = self._close_opportunity_as_won(quote)
                record_transition(QUOTE, quote, "won", before=before, payload={"order_id": str(created.order.id)})
            span.set_attribute("order_id", str(created.order.id))

        return QuoteWinResult(quote=quote, order=created.order, order_lines=created.lines, opportunity=opportunity)

    def lose(self, quote_id: uuid.UUID, closingnotes: str | None = None) -> Quote:
        return self._close(quote_id, "Lost", "lost", "lose", closingnotes)

    def cancel(self, quote_id: uuid.UUID, reason: str | None = None) -> Quote:
        return self._close(quote_id, "Canceled", "canceled", "cancel", reason)

    def revise(self, quote_id: uuid.UUID) -> Quote:
        quote = self.get_by_id(quote_id)
        ensure_state(QUOTE, quote, _sources("Draft"), "revise")
        before = quote.model_copy()

        quote.statecode = "Draft"
        quote.closedon = None
        quote.revisionnumber += 1
        self.store.put(QUOTE, touch(quote))
        record_transition(QUOTE, quote, "revised", before=before)
        return quote

    def clone(self, quote_id: uuid.UUID) -> QuoteWithLines:
        source = self.get_by_id(quote_id)
        with unit_of_work(self.store):
            quote = Quote(
                name=f"{source.name} (Copy)",
                quotenumber=next_number(self.store, QUOTE, "quotenumber", "QU"),
                opportunityid=source.opportunityid,
                customerid=source.customerid,
                customeridtype=source.customeridtype,
                paymenttermscode=source.paymenttermscode,
                description=source.description,
                freightamount=source.freightamount,
                ownerid=source.ownerid,
                **{name: getattr(source, name) for name in ADDRESS_FIELDS},
            )
            self.store.put(QUOTE, quote)
            lines = self.lines.copy_from(quote.id, self.lines.list(source.id), owner_id=source.ownerid)
            self._recompute(quote)
            record_transition(QUOTE, quote, "created", payload={"cloned_from": str(source.id)})
        return QuoteWithLines(quote=quote, lines=lines)

    def get_statistics(self) -> QuoteStatistics:
        quotes = self.store.list(QUOTE)
        by_state = Counter(quote.statecode for quote in quotes)
        won = [quote for quote in quotes if quote.statecode == "Won"]
        won_value = q(sum((quote.totalamount for quote in won), start=ZERO))
        total_value = q(sum((quote.totalamount for quote in quotes), start=ZERO))
        closed = by_state["Won"] + by_state["Lost"]
        return QuoteStatistics(
            total=len(quotes),
            by_state=dict(by_state),
            total_value=total_value,
            won_value=won_value,
            average_won_value=q(won_value / len(won)) if won else q(ZERO),
            win_rate=q(q(by_state["Won"]) * 100 / closed) if closed else q(ZERO),
        )

    def _close(self, quote_id: uuid.UUID, target: str, transition: str, action: str, notes: str | None) -> Quote:
        quote = self.get_by_id(quote_id)
        ensure_state(QUOTE, quote, _sources(target), action)
        before = quote.model_copy()

        quote.statecode = target  # type: ignore[assignment]
        quote.closedon = utcnow()
        if notes:
            quote.closingnotes = notes
        self.store.put(QUOTE, touch(quote))
        record_transition(QUOTE, quote, transition, before=before)
        return quote

    def _close_opportunity_as_won(self, quote: Quote) -> Opportunity | None:
        if quote.opportunityid is None:
            return None
        opportunity = self.opportunities.get_by_id(quote.opportunityid)
        if opportunity.statecode != "Open":
            logger.warning(
                "quote.win.opportunity_not_open",
                extra={
                    "entity_type": QUOTE,
                    "entity_id": str(quote.id),
                    "transition": "won",
                    "opportunity_id": str(opportunity.id),
                    "opportunity_state": opportunity.statecode,
                },
            )
            return opportunity
        return self.opportunities.close(
            opportunity.id,
            CloseOpportunityRequest(statecode="Won", actualvalue=quote.totalamount, closestatus="Won"),
        )

    def _get_draft(self, quote_id: uuid.UUID) -> Quote:
        quote = self.get_by_id(quote_id)
        ensure_state(QUOTE, quote, {"Draft"}, "edit lines of")
        return quote

    def _recompute(self, quote: Quote) -> Quote:
        apply_header_totals(quote, self.lines.list(quote.id))
        self.store.put(QUOTE, touch(quote))
        return quote

    @staticmethod
    def _check_effective_dates(effective_from: date | None, effective_to: date | None) -> None:
        if effective_from is not None and effective_to is not None and effective_to < effective_from:
            raise ValidationError(["effectiveto must not be before effectivefrom"])
