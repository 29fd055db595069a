from __future__ import annotations

import uuid
from dataclasses import dataclass

from salesflow.errors import InvalidStateError, NotFoundError, ValidationError
from salesflow.sales.customers import CustomerService
from salesflow.sales.ledger import q
from salesflow.sales.lifecycle import ensure_state, record_transition, reject, touch
from salesflow.sales.schemas import (
    CloseOpportunityRequest,
    Opportunity,
    OpportunityCreate,
    OpportunityUpdate,
    utcnow,
)
from salesflow.store.base import INVOICE, OPPORTUNITY, QUOTE, SALES_ORDER, EntityStore


SALES_STAGES: tuple[str, ...] = ("Qualify", "Develop", "Propose", "Close")

STAGE_PROBABILITY: dict[str, int] = {
    "Qualify": 25,
    "Develop": 50,
    "Propose": 75,
    "Close": 100,
}

CLOSE_PROBABILITY: dict[str, int] = {
    "Won": 100,
    "Lost": 0,
}


@dataclass(slots=True)
class OpportunityService:
    store: EntityStore
    customers: CustomerService

    def create(self, payload: OpportunityCreate) -> Opportunity:
        data = payload.model_dump(mode="python")
        self._check_customer(data.get("customerid"), data.get("customeridtype"))
        data["estimatedvalue"] = q(data["estimatedvalue"])
        opportunity = Opportunity(**data, closeprobability=STAGE_PROBABILITY[payload.salesstage])
        self.store.put(OPPORTUNITY, opportunity)
        record_transition(OPPORTUNITY, opportunity, "created")
        return opportunity

    def get_by_id(self, opportunity_id: uuid.UUID) -> Opportunity:
        opportunity = self.store.get(OPPORTUNITY, opportunity_id)
        if opportunity is None:
            raise NotFoundError(OPPORTUNITY, opportunity_id)
        return opportunity

    def list(self, statecode: str | None = None) -> list[Opportunity]:
        if statecode is None:
            return self.store.list(OPPORTUNITY)
        return self.store.list(OPPORTUNITY, statecode=statecode)

    def list_by_customer(self, customer_id: uuid.UUID) -> list[Opportunity]:
        return self.store.list(OPPORTUNITY, customerid=customer_id)

    def list_by_lead(self, lead_id: uuid.UUID) -> list[Opportunity]:
        return self.store.list(OPPORTUNITY, originatingleadid=lead_id)

    def update(self, opportunity_id: uuid.UUID, payload: OpportunityUpdate) -> Opportunity:
        opportunity = self.get_by_id(opportunity_id)
        ensure_state(OPPORTUNITY, opportunity, {"Open"}, "update")
        before = opportunity.model_copy()

        changes = payload.model_dump(exclude_unset=True)
        if "customerid" in changes or "customeridtype" in changes:
            self._check_customer(
                changes.get("customerid", opportunity.customerid),
                changes.get("customeridtype", opportunity.customeridtype),
            )
        if changes.get("estimatedvalue") is not None:
            changes["estimatedvalue"] = q(changes["estimatedvalue"])
        for field, value in changes.items():
            setattr(opportunity, field, value)

        self.store.put(OPPORTUNITY, touch(opportunity))
        record_transition(OPPORTUNITY, opportunity, "updated", before=before)
        return opportunity

    def delete(self, opportunity_id: uuid.UUID) -> None:
        self.get_by_id(opportunity_id)
        for entity_type, label in ((QUOTE, "quotes"), (SALES_ORDER, "orders"), (INVOICE, "invoices")):
            if self.store.list(entity_type, opportunityid=opportunity_id):
                raise InvalidStateError(f"opportunity is referenced by {label}")
        self.store.remove(OPPORTUNITY, opportunity_id)

    def move_to_next_stage(self, opportunity_id: uuid.UUID) -> Opportunity:
        return self._move_stage(opportunity_id, 1)

    def move_to_previous_stage(self, opportunity_id: uuid.UUID) -> Opportunity:
        return self._move_stage(opportunity_id, -1)

    def close(self, opportunity_id: uuid.UUID, payload: CloseOpportunityRequest) -> Opportunity:
        opportunity = self.get_by_id(opportunity_id)
        if opportunity.statecode != "Open":
            reject(OPPORTUNITY, "already_closed", f"opportunity is already closed as {opportunity.statecode}")
        before = opportunity.model_copy()

        if payload.actualvalue is not None:
            actual_value = payload.actualvalue
        elif payload.statecode == "Won":
            actual_value = opportunity.estimatedvalue
        else:
            actual_value = opportunity.actualvalue

        opportunity.statecode = payload.statecode
        opportunity.salesstage = "Close"
        opportunity.closeprobability = CLOSE_PROBABILITY[payload.statecode]
        opportunity.actualvalue = q(actual_value)
        opportunity.actualclosedate = payload.actualclosedate or utcnow().date()
        opportunity.closestatus = payload.closestatus or payload.statecode
        if payload.description:
            opportunity.description = payload.description

        self.store.put(OPPORTUNITY, touch(opportunity))
        record_transition(OPPORTUNITY, opportunity, f"closed_{payload.statecode.lower()}", before=before)
        return opportunity

    def _move_stage(self, opportunity_id: uuid.UUID, step: int) -> Opportunity:
        opportunity = self.get_by_id(opportunity_id)
        ensure_state(OPPORTUNITY, opportunity, {"Open"}, "change stage of")

        index = SALES_STAGES.index(opportunity.salesstage) + step
        if index >= len(SALES_STAGES):
            reject(OPPORTUNITY, "stage_at_end", "opportunity is already at the final stage")
        if index < 0:
            reject(OPPORTUNITY, "stage_at_start", "opportunity is already at the first stage")

        before = opportunity.model_copy()
        opportunity.salesstage = SALES_STAGES[index]
        opportunity.closeprobability = STAGE_PROBABILITY[opportunity.salesstage]
        self.store.put(OPPORTUNITY, touch(opportunity))
        record_transition(
            OPPORTUNITY,
            opportunity,
            "stage_changed",
            before=before,
            payload={"from_stage": before.salesstage, "to_stage": opportunity.salesstage},
        )
        return opportunity

    def _check_customer(self, customer_id: uuid.UUID | None, customer_type: str | None) -> None:
        if customer_id is None:
            return
        if customer_type == "account":
            self.customers.get_account(customer_id)
        elif customer_type == "contact":
            self.customers.get_contact(customer_id)
        else:
            raise ValidationError(["customeridtype is required when customerid is set"])
