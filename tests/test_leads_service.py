from __future__ import annotations

import uuid
from decimal import Decimal

import pytest

from salesflow.core.config import Settings
from salesflow.errors import InvalidStateError, NotFoundError, ValidationError
from salesflow.sales.engine import SalesEngine, build_sales_engine
from salesflow.sales.leads import LeadService
from salesflow.sales.schemas import (
    AccountCreate,
    ContactCreate,
    DisqualifyLeadRequest,
    LeadCreate,
    LeadUpdate,
    QualifyLeadRequest,
)
from salesflow.store import base as entity
from salesflow.store.memory import InMemoryEntityStore


@pytest.fixture()
def engine() -> SalesEngine:
    return build_sales_engine(InMemoryEntityStore(), Settings())


def test_create_lead_builds_full_name(engine: SalesEngine) -> None:
    lead = engine.leads.create(LeadCreate(firstname="Ana", lastname="Ruiz", estimatedvalue=Decimal("1200")))

    assert lead.fullname == "Ana Ruiz"
    assert lead.statecode == "Open"
    assert lead.statuscode == "New"
    assert engine.leads.get_by_id(lead.id).estimatedvalue == Decimal("1200.000000")


def test_qualify_b2b_lead_creates_account_contact_and_opportunity(engine: SalesEngine) -> None:
    lead = engine.leads.create(
        LeadCreate(firstname="Ana", lastname="Ruiz", companyname="Acme", emailaddress1="ana@acme.test", ownerid="rep-1")
    )

    result = engine.leads.qualify(lead.id, QualifyLeadRequest(create_account=True))

    assert result.opportunity.salesstage == "Qualify"
    assert result.opportunity.closeprobability == 25
    assert result.opportunity.originatingleadid == lead.id
    assert result.opportunity.name == "Acme - Ana Ruiz"
    assert result.opportunity.customerid == result.account.id
    assert result.opportunity.customeridtype == "account"
    assert result.account is not None and result.account.name == "Acme"
    assert result.contact is not None and result.contact.parentcustomerid == result.account.id

    stored = engine.leads.get_by_id(lead.id)
    assert stored.statecode == "Qualified"
    assert stored.qualifyingopportunityid == result.opportunity.id
    assert stored.parentaccountid == result.account.id
    assert stored.parentcontactid == result.contact.id
    assert len(engine.store.list(entity.ACCOUNT)) == 1


def test_qualify_b2c_lead_creates_no_account(engine: SalesEngine) -> None:
    lead = engine.leads.create(LeadCreate(firstname="Sam", lastname="Lee", estimatedvalue=Decimal("300")))

    result = engine.leads.qualify(lead.id, QualifyLeadRequest())

    assert result.account is None
    assert result.contact is not None
    assert result.opportunity.customerid == result.contact.id
    assert result.opportunity.customeridtype == "contact"
    assert result.opportunity.name == "Sam Lee"
    assert result.opportunity.estimatedvalue == Decimal("300.000000")
    assert engine.store.list(entity.ACCOUNT) == []


def test_qualify_links_existing_account_and_contact(engine: SalesEngine) -> None:
    account = engine.customers.create_account(AccountCreate(name="Globex"))
    contact = engine.customers.create_contact(ContactCreate(lastname="Hank", parentcustomerid=account.id))
    lead = engine.leads.create(LeadCreate(lastname="Hank", companyname="Globex"))

    result = engine.leads.qualify(
        lead.id,
        QualifyLeadRequest(existing_account_id=account.id, create_contact=False, existing_contact_id=contact.id),
    )

    assert result.account is not None and result.account.id == account.id
    assert result.contact is not None and result.contact.id == contact.id
    assert len(engine.store.list(entity.ACCOUNT)) == 1
    assert len(engine.store.list(entity.CONTACT)) == 1


def test_qualify_rejects_conflicting_options_with_all_messages(engine: SalesEngine) -> None:
    lead = engine.leads.create(LeadCreate(lastname="Solo"))

    with pytest.raises(ValidationError) as exc_info:
        engine.leads.qualify(
            lead.id,
            QualifyLeadRequest(create_account=True, create_contact=False),
        )

    assert exc_info.value.messages == [
        "company name is required to create an account",
        "a contact must be created or an existing contact selected",
    ]
    assert engine.leads.get_by_id(lead.id).statecode == "Open"
    assert engine.store.list(entity.OPPORTUNITY) == []


def test_qualify_with_unknown_account_leaves_nothing_behind(engine: SalesEngine) -> None:
    lead = engine.leads.create(LeadCreate(lastname="Ghost", companyname="Nowhere"))

    with pytest.raises(NotFoundError):
        engine.leads.qualify(lead.id, QualifyLeadRequest(existing_account_id=uuid.uuid4()))

    assert engine.leads.get_by_id(lead.id).statecode == "Open"
    assert engine.store.list(entity.CONTACT) == []
    assert engine.store.list(entity.OPPORTUNITY) == []


def test_qualify_without_any_customer_leaves_nothing_behind(engine: SalesEngine, monkeypatch: pytest.MonkeyPatch) -> None:
    lead = engine.leads.create(LeadCreate(lastname="Orphan"))
    monkeypatch.setattr(LeadService, "_resolve_contact", lambda *args: None)

    with pytest.raises(ValidationError) as exc_info:
        engine.leads.qualify(lead.id, QualifyLeadRequest())

    assert exc_info.value.messages == ["qualification needs an account or a contact"]
    assert engine.leads.get_by_id(lead.id).statecode == "Open"
    assert engine.store.list(entity.OPPORTUNITY) == []


def test_qualified_lead_cannot_be_qualified_again(engine: SalesEngine) -> None:
    lead = engine.leads.create(LeadCreate(lastname="Twice"))
    engine.leads.qualify(lead.id, QualifyLeadRequest())

    with pytest.raises(InvalidStateError):
        engine.leads.qualify(lead.id, QualifyLeadRequest())
    with pytest.raises(InvalidStateError):
        engine.leads.update(lead.id, LeadUpdate(jobtitle="CTO"))


def test_disqualify_appends_reason(engine: SalesEngine) -> None:
    lead = engine.leads.create(LeadCreate(lastname="Nope", description="Met at expo"))

    disqualified = engine.leads.disqualify(
        lead.id, DisqualifyLeadRequest(statuscode="NoLongerInterested", reason="went with competitor")
    )

    assert disqualified.statecode == "Disqualified"
    assert disqualified.statuscode == "NoLongerInterested"
    assert disqualified.description == "Met at expo\n\nDisqualified: went with competitor"
    with pytest.raises(InvalidStateError):
        engine.leads.disqualify(lead.id)


def test_search_matches_name_company_and_email(engine: SalesEngine) -> None:
    engine.leads.create(LeadCreate(firstname="Ana", lastname="Ruiz", companyname="Acme"))
    engine.leads.create(LeadCreate(lastname="Other", emailaddress1="someone@initech.test"))

    assert [lead.fullname for lead in engine.leads.search("acme")] == ["Ana Ruiz"]
    assert [lead.fullname for lead in engine.leads.search("INITECH")] == ["Other"]
    assert len(engine.leads.search("  ")) == 2


def test_update_recomputes_full_name(engine: SalesEngine) -> None:
    lead = engine.leads.create(LeadCreate(firstname="Ana", lastname="Ruiz"))

    updated = engine.leads.update(lead.id, LeadUpdate(lastname="Ruiz-Lopez", statuscode="Contacted"))

    assert updated.fullname == "Ana Ruiz-Lopez"
    assert updated.statuscode == "Contacted"


def test_delete_only_open_leads(engine: SalesEngine) -> None:
    lead = engine.leads.create(LeadCreate(lastname="Gone"))
    engine.leads.delete(lead.id)
    with pytest.raises(NotFoundError):
        engine.leads.get_by_id(lead.id)

    kept = engine.leads.create(LeadCreate(lastname="Kept"))
    engine.leads.qualify(kept.id, QualifyLeadRequest())
    with pytest.raises(InvalidStateError):
        engine.leads.delete(kept.id)
