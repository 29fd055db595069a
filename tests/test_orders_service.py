from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from salesflow.core.config import Settings
from salesflow.errors import InvalidStateError, NotFoundError
from salesflow.sales.engine import SalesEngine, build_sales_engine
from salesflow.sales.schemas import LineItemCreate, SalesOrderCreate, SalesOrderUpdate
from salesflow.store import base as entity
from salesflow.store.memory import InMemoryEntityStore


@pytest.fixture()
def engine() -> SalesEngine:
    return build_sales_engine(InMemoryEntityStore(), Settings())


def _order(engine: SalesEngine, description: str | None = None):
    order = engine.orders.create(SalesOrderCreate(name="Direct order", description=description))
    engine.orders.add_line(order.id, LineItemCreate(quantity=Decimal("2"), priceperunit=Decimal("100")))
    engine.orders.add_line(order.id, LineItemCreate(quantity=Decimal("1"), priceperunit=Decimal("50")))
    return engine.orders.get_by_id(order.id)


def test_create_numbers_orders_and_totals_lines(engine: SalesEngine) -> None:
    order = _order(engine)

    assert order.ordernumber.startswith("ORD-")
    assert order.ordernumber.endswith("-001")
    assert order.statecode == "Active"
    assert order.totalamount == Decimal("250.000000")


def test_submit_locks_lines(engine: SalesEngine) -> None:
    order = _order(engine)

    submitted = engine.orders.submit(order.id)

    assert submitted.statecode == "Submitted"
    assert submitted.submitdate is not None
    with pytest.raises(InvalidStateError):
        engine.orders.add_line(order.id, LineItemCreate(quantity=Decimal("1"), priceperunit=Decimal("1")))
    with pytest.raises(InvalidStateError):
        engine.orders.update(order.id, SalesOrderUpdate(name="Renamed"))
    assert engine.orders.get_by_id(order.id).totalamount == Decimal("250.000000")


def test_fulfill_requires_submission_and_is_terminal(engine: SalesEngine) -> None:
    order = _order(engine)
    with pytest.raises(InvalidStateError):
        engine.orders.fulfill(order.id)

    engine.orders.submit(order.id)
    fulfilled_at = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)
    fulfilled = engine.orders.fulfill(order.id, fulfilled_at)

    assert fulfilled.statecode == "Fulfilled"
    assert fulfilled.datefulfilled == fulfilled_at
    with pytest.raises(InvalidStateError):
        engine.orders.cancel(order.id, "too late")


def test_cancel_appends_reason(engine: SalesEngine) -> None:
    order = _order(engine, description="Rush delivery")

    canceled = engine.orders.cancel(order.id, "customer withdrew")

    assert canceled.statecode == "Canceled"
    assert canceled.description == "Rush delivery\n\nCancellation reason: customer withdrew"


def test_cancel_without_reason_keeps_description(engine: SalesEngine) -> None:
    order = _order(engine)
    engine.orders.submit(order.id)

    canceled = engine.orders.cancel(order.id)

    assert canceled.statecode == "Canceled"
    assert canceled.description is None


def test_delete_only_active_or_canceled(engine: SalesEngine) -> None:
    order = _order(engine)
    engine.orders.submit(order.id)
    with pytest.raises(InvalidStateError):
        engine.orders.delete(order.id)

    engine.orders.cancel(order.id)
    engine.orders.delete(order.id)

    with pytest.raises(NotFoundError):
        engine.orders.get_by_id(order.id)
    assert engine.store.list(entity.SALES_ORDER_DETAIL) == []


def test_statistics_skip_canceled_value(engine: SalesEngine) -> None:
    kept = _order(engine)
    dropped = _order(engine)
    engine.orders.cancel(dropped.id)

    stats = engine.orders.get_statistics()

    assert stats.total == 2
    assert stats.by_state == {"Active": 1, "Canceled": 1}
    assert stats.total_value == kept.totalamount
    assert stats.average_value == kept.totalamount
