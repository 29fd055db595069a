from __future__ import annotations

import uuid
from dataclasses import dataclass

from opentelemetry import trace

from salesflow.errors import NotFoundError, ValidationError
from salesflow.otel import sales_span
from salesflow.sales.customers import CustomerService, full_name
from salesflow.sales.ledger import q
from salesflow.sales.lifecycle import append_note, ensure_state, record_transition, touch, unit_of_work
from salesflow.sales.opportunities import OpportunityService
from salesflow.sales.schemas import (
    Account,
    AccountCreate,
    Contact,
    ContactCreate,
    DisqualifyLeadRequest,
    Lead,
    LeadCreate,
    LeadUpdate,
    OpportunityCreate,
    QualifyLeadRequest,
    QualifyLeadResult,
)
from salesflow.store.base import LEAD, EntityStore


tracer = trace.get_tracer("salesflow.sales.leads")

_ADDRESS_KEYS = (
    "address1_line1",
    "address1_city",
    "address1_stateorprovince",
    "address1_postalcode",
    "address1_country",
)


def is_b2b(lead: Lead) -> bool:
    return bool(lead.companyname and lead.companyname.strip())


@dataclass(slots=True)
class LeadService:
    store: EntityStore
    customers: CustomerService
    opportunities: OpportunityService

    def create(self, payload: LeadCreate) -> Lead:
        data = payload.model_dump(mode="python")
        data["estimatedvalue"] = q(data["estimatedvalue"])
        lead = Lead(**data, fullname=full_name(payload.firstname, payload.lastname))
        self.store.put(LEAD, lead)
        record_transition(LEAD, lead, "created")
        return lead

    def get_by_id(self, lead_id: uuid.UUID) -> Lead:
        lead = self.store.get(LEAD, lead_id)
        if lead is None:
            raise NotFoundError(LEAD, lead_id)
        return lead

    def list(self, statecode: str | None = None) -> list[Lead]:
        if statecode is None:
            return self.store.list(LEAD)
        return self.store.list(LEAD, statecode=statecode)

    def search(self, query: str) -> list[Lead]:
        needle = query.strip().lower()
        if not needle:
            return self.list()
        return [
            lead
            for lead in self.store.list(LEAD)
            if any(
                needle in (value or "").lower()
                for value in (lead.fullname, lead.companyname, lead.emailaddress1, lead.jobtitle)
            )
        ]

    def update(self, lead_id: uuid.UUID, payload: LeadUpdate) -> Lead:
        lead = self.get_by_id(lead_id)
        ensure_state(LEAD, lead, {"Open"}, "update")
        before = lead.model_copy()

        changes = payload.model_dump(exclude_unset=True)
        if changes.get("estimatedvalue") is not None:
            changes["estimatedvalue"] = q(changes["estimatedvalue"])
        for field, value in changes.items():
            setattr(lead, field, value)
        lead.fullname = full_name(lead.firstname, lead.lastname)

        self.store.put(LEAD, touch(lead))
        record_transition(LEAD, lead, "updated", before=before)
        return lead

    def delete(self, lead_id: uuid.UUID) -> None:
        lead = self.get_by_id(lead_id)
        ensure_state(LEAD, lead, {"Open"}, "delete")
        self.store.remove(LEAD, lead_id)

    def qualify(self, lead_id: uuid.UUID, payload: QualifyLeadRequest) -> QualifyLeadResult:
        lead = self.get_by_id(lead_id)
        ensure_state(LEAD, lead, {"Open"}, "qualify")
        self._validate_qualify_request(lead, payload)
        before = lead.model_copy()

        with sales_span(tracer, "sales.lead.qualify", lead_id=str(lead.id)) as span:
            with unit_of_work(self.store):
                account = self._resolve_account(lead, payload)
                contact = self._resolve_contact(lead, payload, account)

                if account is not None:
                    customer_id, customer_type = account.id, "account"
                elif contact is not None:
                    customer_id, customer_type = contact.id, "contact"
                else:
                    raise ValidationError(["qualification needs an account or a contact"])

                estimated_value = payload.estimated_value if payload.estimated_value is not None else lead.estimatedvalue
                opportunity = self.opportunities.create(
                    OpportunityCreate(
                        name=payload.opportunity_name or self._default_opportunity_name(lead),
                        customerid=customer_id,
                        customeridtype=customer_type,
                        salesstage="Qualify",
                        estimatedvalue=estimated_value,
                        estimatedclosedate=payload.estimated_close_date,
                        description=payload.description or lead.description,
                        originatingleadid=lead.id,
                        ownerid=lead.ownerid,
                    )
                )

                lead.statecode = "Qualified"
                lead.statuscode = "Qualified"
                lead.qualifyingopportunityid = opportunity.id
                lead.parentaccountid = account.id if account is not None else None
                lead.parentcontactid = contact.id if contact is not None else None
                self.store.put(LEAD, touch(lead))
                record_transition(
                    LEAD,
                    lead,
                    "qualified",
                    before=before,
                    payload={"opportunity_id": str(opportunity.id)},
                )
            span.set_attribute("opportunity_id", str(opportunity.id))

        return QualifyLeadResult(lead=lead, opportunity=opportunity, account=account, contact=contact)

    def disqualify(self, lead_id: uuid.UUID, payload: DisqualifyLeadRequest | None = None) -> Lead:
        payload = payload or DisqualifyLeadRequest()
        lead = self.get_by_id(lead_id)
        ensure_state(LEAD, lead, {"Open"}, "disqualify")
        before = lead.model_copy()

        lead.statecode = "Disqualified"
        lead.statuscode = payload.statuscode
        if payload.reason:
            lead.description = append_note(lead.description, f"Disqualified: {payload.reason}")

        self.store.put(LEAD, touch(lead))
        record_transition(LEAD, lead, "disqualified", before=before)
        return lead

    @staticmethod
    def _validate_qualify_request(lead: Lead, payload: QualifyLeadRequest) -> None:
        messages: list[str] = []
        if payload.create_account and not is_b2b(lead):
            messages.append("company name is required to create an account")
        if payload.create_account and payload.existing_account_id is not None:
            messages.append("choose either create_account or existing_account_id, not both")
        if payload.create_contact and payload.existing_contact_id is not None:
            messages.append("choose either create_contact or existing_contact_id, not both")
        if not payload.create_contact and payload.existing_contact_id is None:
            messages.append("a contact must be created or an existing contact selected")
        if messages:
            raise ValidationError(messages)

    def _resolve_account(self, lead: Lead, payload: QualifyLeadRequest) -> Account | None:
        if payload.existing_account_id is not None:
            return self.customers.get_account(payload.existing_account_id)
        if not is_b2b(lead):
            return None
        return self.customers.create_account(
            AccountCreate(
                name=(lead.companyname or "").strip(),
                emailaddress1=lead.emailaddress1,
                telephone1=lead.telephone1,
                websiteurl=lead.websiteurl,
                originatingleadid=lead.id,
                ownerid=lead.ownerid,
                **{key: getattr(lead, key) for key in _ADDRESS_KEYS},
            )
        )

    def _resolve_contact(self, lead: Lead, payload: QualifyLeadRequest, account: Account | None) -> Contact | None:
        if payload.existing_contact_id is not None:
            return self.customers.get_contact(payload.existing_contact_id)
        if not payload.create_contact:
            return None
        return self.customers.create_contact(
            ContactCreate(
                firstname=lead.firstname,
                lastname=lead.lastname,
                jobtitle=lead.jobtitle,
                emailaddress1=lead.emailaddress1,
                telephone1=lead.telephone1,
                mobilephone=lead.mobilephone,
                parentcustomerid=account.id if account is not None else None,
                originatingleadid=lead.id,
                ownerid=lead.ownerid,
                **{key: getattr(lead, key) for key in _ADDRESS_KEYS},
            )
        )

    @staticmethod
    def _default_opportunity_name(lead: Lead) -> str:
        if is_b2b(lead):
            return f"{(lead.companyname or '').strip()} - {lead.fullname}"
        return lead.fullname
