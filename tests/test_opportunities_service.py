from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError as PydanticValidationError

from salesflow.core.config import Settings
from salesflow.errors import InvalidStateError, NotFoundError, ValidationError
from salesflow.sales.engine import SalesEngine, build_sales_engine
from salesflow.sales.schemas import (
    AccountCreate,
    CloseOpportunityRequest,
    LineItemCreate,
    OpportunityCreate,
    OpportunityUpdate,
    QuoteCreate,
)
from salesflow.store.memory import InMemoryEntityStore


@pytest.fixture()
def engine() -> SalesEngine:
    return build_sales_engine(InMemoryEntityStore(), Settings())


def _opportunity(engine: SalesEngine, **overrides: object):
    account = engine.customers.create_account(AccountCreate(name="Acme"))
    data: dict[str, object] = {
        "name": "Acme renewal",
        "customerid": account.id,
        "customeridtype": "account",
        "estimatedvalue": Decimal("5000"),
    }
    data.update(overrides)
    return engine.opportunities.create(OpportunityCreate(**data))


def test_stage_progression_updates_probability(engine: SalesEngine) -> None:
    opportunity = _opportunity(engine)

    seen = [(opportunity.salesstage, opportunity.closeprobability)]
    for _ in range(3):
        moved = engine.opportunities.move_to_next_stage(opportunity.id)
        seen.append((moved.salesstage, moved.closeprobability))

    assert seen == [("Qualify", 25), ("Develop", 50), ("Propose", 75), ("Close", 100)]
    with pytest.raises(InvalidStateError):
        engine.opportunities.move_to_next_stage(opportunity.id)

    back = engine.opportunities.move_to_previous_stage(opportunity.id)
    assert (back.salesstage, back.closeprobability) == ("Propose", 75)


def test_previous_stage_from_first_stage_is_rejected(engine: SalesEngine) -> None:
    opportunity = _opportunity(engine)

    with pytest.raises(InvalidStateError):
        engine.opportunities.move_to_previous_stage(opportunity.id)


def test_close_won_defaults_actual_value_to_estimate(engine: SalesEngine) -> None:
    opportunity = _opportunity(engine)

    closed = engine.opportunities.close(opportunity.id, CloseOpportunityRequest(statecode="Won"))

    assert closed.statecode == "Won"
    assert closed.salesstage == "Close"
    assert closed.closeprobability == 100
    assert closed.actualvalue == Decimal("5000.000000")
    assert closed.actualclosedate is not None
    assert closed.closestatus == "Won"


def test_close_lost_keeps_given_values(engine: SalesEngine) -> None:
    opportunity = _opportunity(engine)

    closed = engine.opportunities.close(
        opportunity.id,
        CloseOpportunityRequest(
            statecode="Lost",
            actualclosedate=date(2026, 3, 1),
            closestatus="Budget cut",
        ),
    )

    assert closed.statecode == "Lost"
    assert closed.closeprobability == 0
    assert closed.actualvalue == Decimal("0.000000")
    assert closed.actualclosedate == date(2026, 3, 1)
    assert closed.closestatus == "Budget cut"


def test_closed_opportunity_cannot_be_closed_or_edited(engine: SalesEngine) -> None:
    opportunity = _opportunity(engine)
    engine.opportunities.close(opportunity.id, CloseOpportunityRequest(statecode="Lost"))

    with pytest.raises(InvalidStateError):
        engine.opportunities.close(opportunity.id, CloseOpportunityRequest(statecode="Won"))
    with pytest.raises(InvalidStateError):
        engine.opportunities.update(opportunity.id, OpportunityUpdate(name="Reopened"))
    with pytest.raises(InvalidStateError):
        engine.opportunities.move_to_next_stage(opportunity.id)


def test_update_cannot_move_the_stage() -> None:
    with pytest.raises(PydanticValidationError):
        OpportunityUpdate(salesstage="Close")


def test_update_keeps_stage_and_probability(engine: SalesEngine) -> None:
    opportunity = _opportunity(engine)

    updated = engine.opportunities.update(opportunity.id, OpportunityUpdate(name="Acme renewal FY27"))

    assert updated.name == "Acme renewal FY27"
    assert (updated.salesstage, updated.closeprobability) == ("Qualify", 25)


def test_customer_must_exist_and_be_typed(engine: SalesEngine) -> None:
    with pytest.raises(NotFoundError):
        engine.opportunities.create(
            OpportunityCreate(name="Ghost", customerid=uuid.uuid4(), customeridtype="account")
        )
    with pytest.raises(ValidationError):
        engine.opportunities.create(OpportunityCreate(name="Untyped", customerid=uuid.uuid4()))


def test_list_by_customer(engine: SalesEngine) -> None:
    opportunity = _opportunity(engine)
    engine.opportunities.create(OpportunityCreate(name="No customer"))

    assert [item.id for item in engine.opportunities.list_by_customer(opportunity.customerid)] == [opportunity.id]
    assert len(engine.opportunities.list(statecode="Open")) == 2


def test_delete_is_rejected_while_quotes_reference_it(engine: SalesEngine) -> None:
    opportunity = _opportunity(engine)
    quote = engine.quotes.create(QuoteCreate(name="Acme Q", opportunityid=opportunity.id))
    engine.quotes.add_line(quote.id, LineItemCreate(quantity=Decimal("1"), priceperunit=Decimal("100")))
    engine.quotes.activate(quote.id)

    with pytest.raises(InvalidStateError) as exc_info:
        engine.opportunities.delete(opportunity.id)

    assert str(exc_info.value) == "opportunity is referenced by quotes"
    result = engine.quotes.win(quote.id)
    assert result.opportunity is not None and result.opportunity.statecode == "Won"


def test_delete_unreferenced_opportunity(engine: SalesEngine) -> None:
    opportunity = _opportunity(engine)

    engine.opportunities.delete(opportunity.id)

    with pytest.raises(NotFoundError):
        engine.opportunities.get_by_id(opportunity.id)
