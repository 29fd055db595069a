from __future__ import annotations

import json
import logging
from collections.abc import Generator
from decimal import Decimal

import pytest
from prometheus_client import REGISTRY
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from salesflow import audit, events
from salesflow.context import reset_actor_id, reset_correlation_id, set_actor_id, set_correlation_id
from salesflow.core.config import Settings
from salesflow.core.events import InternalEvent, event_bus
from salesflow.errors import InvalidStateError
from salesflow.logging import JsonLogFormatter, RequestContextFilter
from salesflow.otel import setup_inmemory_otel
from salesflow.sales.engine import SalesEngine, build_sales_engine
from salesflow.sales.lifecycle import next_number
from salesflow.sales.orders import OrderService
from salesflow.sales.schemas import LeadCreate, LineItemCreate, QualifyLeadRequest, QuoteCreate, SalesOrderCreate
from salesflow.store import base as entity
from salesflow.store.memory import InMemoryEntityStore


@pytest.fixture()
def engine() -> SalesEngine:
    return build_sales_engine(InMemoryEntityStore(), Settings())


@pytest.fixture(autouse=True)
def clear_sinks() -> Generator[None, None, None]:
    audit.audit_entries.clear()
    events.published_events.clear()
    yield
    audit.audit_entries.clear()
    events.published_events.clear()


@pytest.fixture()
def span_exporter() -> InMemorySpanExporter:
    exporter = setup_inmemory_otel("salesflow")
    exporter.clear()
    return exporter


def _counter(name: str, **labels: str) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


def test_qualify_publishes_events_with_correlation_and_actor(engine: SalesEngine) -> None:
    received: list[InternalEvent] = []
    event_bus.subscribe("sales.lead.qualified", received.append)
    correlation_token = set_correlation_id("corr-qualify")
    actor_token = set_actor_id("rep-7")
    try:
        lead = engine.leads.create(LeadCreate(firstname="Ana", lastname="Ruiz", companyname="Acme"))
        result = engine.leads.qualify(lead.id, QualifyLeadRequest(create_account=True))
    finally:
        reset_actor_id(actor_token)
        reset_correlation_id(correlation_token)
        event_bus.unsubscribe("sales.lead.qualified", received.append)

    event_types = [envelope["event_type"] for envelope in events.published_events]
    assert event_types == [
        "sales.lead.created",
        "sales.account.created",
        "sales.contact.created",
        "sales.opportunity.created",
        "sales.lead.qualified",
    ]
    qualified = events.published_events[-1]
    assert qualified["correlation_id"] == "corr-qualify"
    assert qualified["actor_user_id"] == "rep-7"
    assert qualified["payload"]["lead_id"] == str(lead.id)
    assert qualified["payload"]["opportunity_id"] == str(result.opportunity.id)
    assert qualified["payload"]["statecode"] == "Qualified"
    assert len(received) == 1

    lead_audit = [entry for entry in audit.audit_entries if entry["transition"] == "qualified"]
    assert lead_audit[0]["before"]["statecode"] == "Open"
    assert lead_audit[0]["after"]["statecode"] == "Qualified"
    assert lead_audit[0]["actor_user_id"] == "rep-7"


def test_failed_unit_of_work_emits_nothing(engine: SalesEngine, monkeypatch: pytest.MonkeyPatch) -> None:
    quote = engine.quotes.create(QuoteCreate(name="Q"))
    engine.quotes.add_line(quote.id, LineItemCreate(quantity=Decimal("1"), priceperunit=Decimal("10")))
    engine.quotes.activate(quote.id)
    audit.audit_entries.clear()
    events.published_events.clear()

    def explode(*args: object, **kwargs: object) -> None:
        raise RuntimeError("boom")

    monkeypatch.setattr(OrderService, "create_from_quote", explode)
    with pytest.raises(RuntimeError):
        engine.quotes.win(quote.id)

    assert audit.audit_entries == []
    assert events.published_events == []


def test_transition_log_record_is_structured(engine: SalesEngine, caplog: pytest.LogCaptureFixture) -> None:
    order = engine.orders.create(SalesOrderCreate(name="Logged"))

    with caplog.at_level(logging.INFO, logger="salesflow.sales"):
        engine.orders.submit(order.id)

    records = [record for record in caplog.records if record.getMessage() == "sales.transition"]
    assert len(records) == 1
    payload = json.loads(JsonLogFormatter().format(records[0]))
    assert payload["logger"] == "salesflow.sales"
    assert payload["fields"]["entity_type"] == "salesorder"
    assert payload["fields"]["transition"] == "submitted"
    assert payload["fields"]["from_state"] == "Active"
    assert payload["fields"]["to_state"] == "Submitted"


def test_log_records_carry_request_context() -> None:
    correlation_token = set_correlation_id("corr-log")
    actor_token = set_actor_id("rep-3")
    try:
        record = logging.makeLogRecord({"name": "salesflow.sales", "msg": "sales.failed", "error": "x" * 600})
        RequestContextFilter().filter(record)
    finally:
        reset_actor_id(actor_token)
        reset_correlation_id(correlation_token)

    payload = json.loads(JsonLogFormatter().format(record))

    assert payload["correlation_id"] == "corr-log"
    assert payload["actor_id"] == "rep-3"
    assert len(payload["fields"]["error"]) == 500


def test_transition_metrics_count_success_and_failure(engine: SalesEngine) -> None:
    order = engine.orders.create(SalesOrderCreate(name="Counted"))
    submitted_before = _counter("sales_transitions_total", entity="salesorder", transition="submitted")
    failed_before = _counter("sales_transition_failures_total", entity="salesorder", reason="submit_from_submitted")

    engine.orders.submit(order.id)
    with pytest.raises(InvalidStateError):
        engine.orders.submit(order.id)

    assert _counter("sales_transitions_total", entity="salesorder", transition="submitted") == submitted_before + 1
    assert (
        _counter("sales_transition_failures_total", entity="salesorder", reason="submit_from_submitted")
        == failed_before + 1
    )


def test_qualify_and_win_are_traced(engine: SalesEngine, span_exporter: InMemorySpanExporter) -> None:
    lead = engine.leads.create(LeadCreate(lastname="Traced"))
    correlation_token = set_correlation_id("corr-traced")
    actor_token = set_actor_id("rep-9")
    try:
        result = engine.leads.qualify(lead.id, QualifyLeadRequest())
    finally:
        reset_actor_id(actor_token)
        reset_correlation_id(correlation_token)
    quote = engine.quotes.create(QuoteCreate(name="Traced", opportunityid=result.opportunity.id))
    engine.quotes.add_line(quote.id, LineItemCreate(quantity=Decimal("1"), priceperunit=Decimal("10")))
    engine.quotes.activate(quote.id)
    engine.quotes.win(quote.id)

    spans = {span.name: span for span in span_exporter.get_finished_spans()}
    assert spans["sales.lead.qualify"].attributes["lead_id"] == str(lead.id)
    assert spans["sales.lead.qualify"].attributes["correlation_id"] == "corr-traced"
    assert spans["sales.lead.qualify"].attributes["actor_id"] == "rep-9"
    assert spans["sales.quote.win"].attributes["quote_id"] == str(quote.id)
    assert "order_id" in spans["sales.quote.win"].attributes


def test_next_number_counts_same_day_records() -> None:
    store = InMemoryEntityStore()
    engine = build_sales_engine(store, Settings())
    for name in ("A", "B", "C"):
        engine.quotes.create(QuoteCreate(name=name))

    numbers = [quote.quotenumber for quote in store.list(entity.QUOTE)]

    assert [number[-3:] for number in numbers] == ["001", "002", "003"]
    assert next_number(store, entity.QUOTE, "quotenumber", "QU").endswith("-004")


def test_prefix_subscription_follows_one_entity_type(engine: SalesEngine) -> None:
    received: list[str] = []

    def collect(event: InternalEvent) -> None:
        received.append(event.name)

    event_bus.subscribe("sales.quote.*", collect)
    try:
        quote = engine.quotes.create(QuoteCreate(name="Followed"))
        engine.quotes.add_line(quote.id, LineItemCreate(quantity=Decimal("1"), priceperunit=Decimal("10")))
        engine.quotes.activate(quote.id)
        engine.leads.create(LeadCreate(lastname="Ignored"))
    finally:
        event_bus.unsubscribe("sales.quote.*", collect)

    assert received == ["sales.quote.created", "sales.quote.activated"]
