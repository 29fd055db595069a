from __future__ import annotations

import uuid
from functools import lru_cache
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from salesflow import audit
from salesflow.context import get_correlation_id, set_actor_id
from salesflow.core.access import AccessGate, SalesOperation
from salesflow.core.auth import AuthUser, get_current_user
from salesflow.core.config import get_settings
from salesflow.core.database import get_db
from salesflow.errors import InvalidStateError, NotFoundError, SalesflowError, ValidationError
from salesflow.sales.engine import SalesEngine, build_sales_engine, build_store
from salesflow.sales.schemas import (
    Account,
    AccountCreate,
    AccountUpdate,
    CancelInvoiceRequest,
    CancelRequest,
    CloseOpportunityRequest,
    CloseQuoteRequest,
    Contact,
    ContactCreate,
    ContactUpdate,
    DisqualifyLeadRequest,
    FulfillOrderRequest,
    Invoice,
    InvoiceDetail,
    InvoiceStatistics,
    InvoiceUpdate,
    InvoiceWithLines,
    Lead,
    LeadCreate,
    LeadUpdate,
    LineItemCreate,
    LineItemUpdate,
    MarkPaidRequest,
    Opportunity,
    OpportunityCreate,
    OpportunityUpdate,
    OrderStatistics,
    QualifyLeadRequest,
    QualifyLeadResult,
    Quote,
    QuoteCreate,
    QuoteDetail,
    QuoteStatistics,
    QuoteUpdate,
    QuoteWinResult,
    QuoteWithLines,
    RecordPaymentRequest,
    ReorderLinesRequest,
    SalesOrder,
    SalesOrderCreate,
    SalesOrderDetail,
    SalesOrderUpdate,
    SalesOrderWithLines,
)
from salesflow.store import base as entity
from salesflow.store.memory import InMemoryEntityStore


@lru_cache
def get_memory_store() -> InMemoryEntityStore:
    return InMemoryEntityStore()


@lru_cache
def get_access_gate() -> AccessGate:
    settings = get_settings()
    return AccessGate(
        {
            "sales.admin": {"*"},
            "sales.manager": {"lead.*", "account.*", "contact.*", "opportunity.*", "quote.*", "salesorder.*", "invoice.*"},
            "sales.rep": {
                "lead.*",
                "account.read",
                "account.create",
                "contact.read",
                "contact.create",
                "opportunity.read",
                "opportunity.create",
                "opportunity.update:own",
                "opportunity.transition:own",
                "quote.read",
                "quote.create",
                "quote.update:own",
                "quote.transition:own",
                "salesorder.read",
                "invoice.read",
            },
            "billing": {"salesorder.*", "invoice.*"},
        },
        default_allow=settings.authz_default_allow,
    )


def get_sales_engine(db: Session = Depends(get_db)) -> SalesEngine:
    settings = get_settings()
    if settings.store_backend.lower() == "memory":
        return build_sales_engine(get_memory_store(), settings)
    return build_sales_engine(build_store(settings, db), settings)


async def get_sales_user(user: AuthUser = Depends(get_current_user)) -> AuthUser:
    set_actor_id(user.sub)
    return user


def require_access(
    user: AuthUser,
    entity_type: str,
    operation: SalesOperation,
    owner_id: str | None = None,
) -> None:
    if not get_access_gate().is_allowed(user, entity_type, operation, owner_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Missing permission: {entity_type}.{operation.value}",
        )


def _error_response(status_code: int, exc: SalesflowError, errors: list[str]) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "detail": str(exc),
            "errors": errors,
            "correlation_id": get_correlation_id(),
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(NotFoundError)
    async def _not_found(request: Request, exc: NotFoundError) -> JSONResponse:
        return _error_response(status.HTTP_404_NOT_FOUND, exc, [str(exc)])

    @app.exception_handler(InvalidStateError)
    async def _invalid_state(request: Request, exc: InvalidStateError) -> JSONResponse:
        return _error_response(status.HTTP_409_CONFLICT, exc, [str(exc)])

    @app.exception_handler(ValidationError)
    async def _validation(request: Request, exc: ValidationError) -> JSONResponse:
        return _error_response(status.HTTP_422_UNPROCESSABLE_ENTITY, exc, exc.messages)


READ = SalesOperation.READ
CREATE = SalesOperation.CREATE
UPDATE = SalesOperation.UPDATE
DELETE = SalesOperation.DELETE
TRANSITION = SalesOperation.TRANSITION


leads_router = APIRouter(prefix="/sales/leads", tags=["sales-leads"])
accounts_router = APIRouter(prefix="/sales/accounts", tags=["sales-accounts"])
contacts_router = APIRouter(prefix="/sales/contacts", tags=["sales-contacts"])
opportunities_router = APIRouter(prefix="/sales/opportunities", tags=["sales-opportunities"])
quotes_router = APIRouter(prefix="/sales/quotes", tags=["sales-quotes"])
orders_router = APIRouter(prefix="/sales/orders", tags=["sales-orders"])
invoices_router = APIRouter(prefix="/sales/invoices", tags=["sales-invoices"])
history_router = APIRouter(prefix="/sales/history", tags=["sales-history"])


# Leads


@leads_router.post("", response_model=Lead, status_code=status.HTTP_201_CREATED)
def create_lead(
    payload: LeadCreate,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> Lead:
    require_access(user, entity.LEAD, CREATE)
    if payload.ownerid is None:
        payload.ownerid = user.sub
    return engine.leads.create(payload)


@leads_router.get("", response_model=list[Lead])
def list_leads(
    statecode: str | None = Query(default=None),
    q: str | None = Query(default=None),
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> list[Lead]:
    require_access(user, entity.LEAD, READ)
    if q is not None:
        return engine.leads.search(q)
    return engine.leads.list(statecode)


@leads_router.get("/{lead_id}", response_model=Lead)
def get_lead(
    lead_id: uuid.UUID,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> Lead:
    lead = engine.leads.get_by_id(lead_id)
    require_access(user, entity.LEAD, READ, lead.ownerid)
    return lead


@leads_router.patch("/{lead_id}", response_model=Lead)
def update_lead(
    lead_id: uuid.UUID,
    payload: LeadUpdate,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> Lead:
    require_access(user, entity.LEAD, UPDATE, engine.leads.get_by_id(lead_id).ownerid)
    return engine.leads.update(lead_id, payload)


@leads_router.delete("/{lead_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_lead(
    lead_id: uuid.UUID,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> Response:
    require_access(user, entity.LEAD, DELETE, engine.leads.get_by_id(lead_id).ownerid)
    engine.leads.delete(lead_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@leads_router.post("/{lead_id}/qualify", response_model=QualifyLeadResult)
def qualify_lead(
    lead_id: uuid.UUID,
    payload: QualifyLeadRequest,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> QualifyLeadResult:
    require_access(user, entity.LEAD, TRANSITION, engine.leads.get_by_id(lead_id).ownerid)
    return engine.leads.qualify(lead_id, payload)


@leads_router.post("/{lead_id}/disqualify", response_model=Lead)
def disqualify_lead(
    lead_id: uuid.UUID,
    payload: DisqualifyLeadRequest,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> Lead:
    require_access(user, entity.LEAD, TRANSITION, engine.leads.get_by_id(lead_id).ownerid)
    return engine.leads.disqualify(lead_id, payload)


# Accounts and contacts


@accounts_router.post("", response_model=Account, status_code=status.HTTP_201_CREATED)
def create_account(
    payload: AccountCreate,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> Account:
    require_access(user, entity.ACCOUNT, CREATE)
    return engine.customers.create_account(payload)


@accounts_router.get("", response_model=list[Account])
def list_accounts(
    statecode: str | None = Query(default=None),
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> list[Account]:
    require_access(user, entity.ACCOUNT, READ)
    return engine.customers.list_accounts(statecode)


@accounts_router.get("/{account_id}", response_model=Account)
def get_account(
    account_id: uuid.UUID,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> Account:
    account = engine.customers.get_account(account_id)
    require_access(user, entity.ACCOUNT, READ, account.ownerid)
    return account


@accounts_router.get("/{account_id}/contacts", response_model=list[Contact])
def list_account_contacts(
    account_id: uuid.UUID,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> list[Contact]:
    require_access(user, entity.CONTACT, READ)
    engine.customers.get_account(account_id)
    return engine.customers.list_contacts_by_account(account_id)


@accounts_router.patch("/{account_id}", response_model=Account)
def update_account(
    account_id: uuid.UUID,
    payload: AccountUpdate,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> Account:
    require_access(user, entity.ACCOUNT, UPDATE, engine.customers.get_account(account_id).ownerid)
    return engine.customers.update_account(account_id, payload)


@accounts_router.delete("/{account_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_account(
    account_id: uuid.UUID,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> Response:
    require_access(user, entity.ACCOUNT, DELETE, engine.customers.get_account(account_id).ownerid)
    engine.customers.delete_account(account_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@contacts_router.post("", response_model=Contact, status_code=status.HTTP_201_CREATED)
def create_contact(
    payload: ContactCreate,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> Contact:
    require_access(user, entity.CONTACT, CREATE)
    return engine.customers.create_contact(payload)


@contacts_router.get("", response_model=list[Contact])
def list_contacts(
    statecode: str | None = Query(default=None),
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> list[Contact]:
    require_access(user, entity.CONTACT, READ)
    return engine.customers.list_contacts(statecode)


@contacts_router.get("/{contact_id}", response_model=Contact)
def get_contact(
    contact_id: uuid.UUID,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> Contact:
    contact = engine.customers.get_contact(contact_id)
    require_access(user, entity.CONTACT, READ, contact.ownerid)
    return contact


@contacts_router.patch("/{contact_id}", response_model=Contact)
def update_contact(
    contact_id: uuid.UUID,
    payload: ContactUpdate,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> Contact:
    require_access(user, entity.CONTACT, UPDATE, engine.customers.get_contact(contact_id).ownerid)
    return engine.customers.update_contact(contact_id, payload)


@contacts_router.delete("/{contact_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_contact(
    contact_id: uuid.UUID,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> Response:
    require_access(user, entity.CONTACT, DELETE, engine.customers.get_contact(contact_id).ownerid)
    engine.customers.delete_contact(contact_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Opportunities


@opportunities_router.post("", response_model=Opportunity, status_code=status.HTTP_201_CREATED)
def create_opportunity(
    payload: OpportunityCreate,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> Opportunity:
    require_access(user, entity.OPPORTUNITY, CREATE)
    if payload.ownerid is None:
        payload.ownerid = user.sub
    return engine.opportunities.create(payload)


@opportunities_router.get("", response_model=list[Opportunity])
def list_opportunities(
    statecode: str | None = Query(default=None),
    customer_id: uuid.UUID | None = Query(default=None),
    lead_id: uuid.UUID | None = Query(default=None),
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> list[Opportunity]:
    require_access(user, entity.OPPORTUNITY, READ)
    if customer_id is not None:
        return engine.opportunities.list_by_customer(customer_id)
    if lead_id is not None:
        return engine.opportunities.list_by_lead(lead_id)
    return engine.opportunities.list(statecode)


@opportunities_router.get("/{opportunity_id}", response_model=Opportunity)
def get_opportunity(
    opportunity_id: uuid.UUID,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> Opportunity:
    opportunity = engine.opportunities.get_by_id(opportunity_id)
    require_access(user, entity.OPPORTUNITY, READ, opportunity.ownerid)
    return opportunity


@opportunities_router.patch("/{opportunity_id}", response_model=Opportunity)
def update_opportunity(
    opportunity_id: uuid.UUID,
    payload: OpportunityUpdate,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> Opportunity:
    owner_id = engine.opportunities.get_by_id(opportunity_id).ownerid
    require_access(user, entity.OPPORTUNITY, UPDATE, owner_id)
    return engine.opportunities.update(opportunity_id, payload)


@opportunities_router.delete("/{opportunity_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_opportunity(
    opportunity_id: uuid.UUID,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> Response:
    owner_id = engine.opportunities.get_by_id(opportunity_id).ownerid
    require_access(user, entity.OPPORTUNITY, DELETE, owner_id)
    engine.opportunities.delete(opportunity_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@opportunities_router.post("/{opportunity_id}/next-stage", response_model=Opportunity)
def move_opportunity_to_next_stage(
    opportunity_id: uuid.UUID,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> Opportunity:
    owner_id = engine.opportunities.get_by_id(opportunity_id).ownerid
    require_access(user, entity.OPPORTUNITY, TRANSITION, owner_id)
    return engine.opportunities.move_to_next_stage(opportunity_id)


@opportunities_router.post("/{opportunity_id}/previous-stage", response_model=Opportunity)
def move_opportunity_to_previous_stage(
    opportunity_id: uuid.UUID,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> Opportunity:
    owner_id = engine.opportunities.get_by_id(opportunity_id).ownerid
    require_access(user, entity.OPPORTUNITY, TRANSITION, owner_id)
    return engine.opportunities.move_to_previous_stage(opportunity_id)


@opportunities_router.post("/{opportunity_id}/close", response_model=Opportunity)
def close_opportunity(
    opportunity_id: uuid.UUID,
    payload: CloseOpportunityRequest,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> Opportunity:
    owner_id = engine.opportunities.get_by_id(opportunity_id).ownerid
    require_access(user, entity.OPPORTUNITY, TRANSITION, owner_id)
    return engine.opportunities.close(opportunity_id, payload)


# Quotes


@quotes_router.post("", response_model=Quote, status_code=status.HTTP_201_CREATED)
def create_quote(
    payload: QuoteCreate,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> Quote:
    require_access(user, entity.QUOTE, CREATE)
    if payload.ownerid is None:
        payload.ownerid = user.sub
    return engine.quotes.create(payload)


@quotes_router.get("", response_model=list[Quote])
def list_quotes(
    statecode: str | None = Query(default=None),
    opportunity_id: uuid.UUID | None = Query(default=None),
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> list[Quote]:
    require_access(user, entity.QUOTE, READ)
    if opportunity_id is not None:
        return engine.quotes.list_by_opportunity(opportunity_id)
    return engine.quotes.list(statecode)


@quotes_router.get("/statistics", response_model=QuoteStatistics)
def quote_statistics(
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> QuoteStatistics:
    require_access(user, entity.QUOTE, READ)
    return engine.quotes.get_statistics()


@quotes_router.get("/{quote_id}", response_model=QuoteWithLines)
def get_quote(
    quote_id: uuid.UUID,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> QuoteWithLines:
    result = engine.quotes.get_with_lines(quote_id)
    require_access(user, entity.QUOTE, READ, result.quote.ownerid)
    return result


@quotes_router.patch("/{quote_id}", response_model=Quote)
def update_quote(
    quote_id: uuid.UUID,
    payload: QuoteUpdate,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> Quote:
    require_access(user, entity.QUOTE, UPDATE, engine.quotes.get_by_id(quote_id).ownerid)
    return engine.quotes.update(quote_id, payload)


@quotes_router.delete("/{quote_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_quote(
    quote_id: uuid.UUID,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> Response:
    require_access(user, entity.QUOTE, DELETE, engine.quotes.get_by_id(quote_id).ownerid)
    engine.quotes.delete(quote_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@quotes_router.get("/{quote_id}/lines", response_model=list[QuoteDetail])
def list_quote_lines(
    quote_id: uuid.UUID,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> list[QuoteDetail]:
    require_access(user, entity.QUOTE, READ, engine.quotes.get_by_id(quote_id).ownerid)
    return engine.quotes.list_lines(quote_id)


@quotes_router.post("/{quote_id}/lines", response_model=QuoteDetail, status_code=status.HTTP_201_CREATED)
def add_quote_line(
    quote_id: uuid.UUID,
    payload: LineItemCreate,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> QuoteDetail:
    require_access(user, entity.QUOTE, UPDATE, engine.quotes.get_by_id(quote_id).ownerid)
    return engine.quotes.add_line(quote_id, payload)


@quotes_router.put("/{quote_id}/lines/order", response_model=list[QuoteDetail])
def reorder_quote_lines(
    quote_id: uuid.UUID,
    payload: ReorderLinesRequest,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> list[QuoteDetail]:
    require_access(user, entity.QUOTE, UPDATE, engine.quotes.get_by_id(quote_id).ownerid)
    return engine.quotes.reorder_lines(quote_id, payload.line_ids)


@quotes_router.patch("/{quote_id}/lines/{line_id}", response_model=QuoteDetail)
def update_quote_line(
    quote_id: uuid.UUID,
    line_id: uuid.UUID,
    payload: LineItemUpdate,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> QuoteDetail:
    require_access(user, entity.QUOTE, UPDATE, engine.quotes.get_by_id(quote_id).ownerid)
    return engine.quotes.update_line(quote_id, line_id, payload)


@quotes_router.delete("/{quote_id}/lines/{line_id}", response_model=Quote)
def remove_quote_line(
    quote_id: uuid.UUID,
    line_id: uuid.UUID,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> Quote:
    require_access(user, entity.QUOTE, UPDATE, engine.quotes.get_by_id(quote_id).ownerid)
    return engine.quotes.remove_line(quote_id, line_id)


@quotes_router.post("/{quote_id}/activate", response_model=Quote)
def activate_quote(
    quote_id: uuid.UUID,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> Quote:
    require_access(user, entity.QUOTE, TRANSITION, engine.quotes.get_by_id(quote_id).ownerid)
    return engine.quotes.activate(quote_id)


@quotes_router.post("/{quote_id}/win", response_model=QuoteWinResult)
def win_quote(
    quote_id: uuid.UUID,
    payload: CloseQuoteRequest | None = None,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> QuoteWinResult:
    require_access(user, entity.QUOTE, TRANSITION, engine.quotes.get_by_id(quote_id).ownerid)
    return engine.quotes.win(quote_id, payload.closingnotes if payload else None)


@quotes_router.post("/{quote_id}/lose", response_model=Quote)
def lose_quote(
    quote_id: uuid.UUID,
    payload: CloseQuoteRequest | None = None,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> Quote:
    require_access(user, entity.QUOTE, TRANSITION, engine.quotes.get_by_id(quote_id).ownerid)
    return engine.quotes.lose(quote_id, payload.closingnotes if payload else None)


@quotes_router.post("/{quote_id}/cancel", response_model=Quote)
def cancel_quote(
    quote_id: uuid.UUID,
    payload: CancelRequest | None = None,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> Quote:
    require_access(user, entity.QUOTE, TRANSITION, engine.quotes.get_by_id(quote_id).ownerid)
    return engine.quotes.cancel(quote_id, payload.reason if payload else None)


@quotes_router.post("/{quote_id}/revise", response_model=Quote)
def revise_quote(
    quote_id: uuid.UUID,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> Quote:
    require_access(user, entity.QUOTE, TRANSITION, engine.quotes.get_by_id(quote_id).ownerid)
    return engine.quotes.revise(quote_id)


@quotes_router.post("/{quote_id}/clone", response_model=QuoteWithLines, status_code=status.HTTP_201_CREATED)
def clone_quote(
    quote_id: uuid.UUID,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> QuoteWithLines:
    require_access(user, entity.QUOTE, CREATE)
    return engine.quotes.clone(quote_id)


# Orders


@orders_router.post("", response_model=SalesOrder, status_code=status.HTTP_201_CREATED)
def create_order(
    payload: SalesOrderCreate,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> SalesOrder:
    require_access(user, entity.SALES_ORDER, CREATE)
    if payload.ownerid is None:
        payload.ownerid = user.sub
    return engine.orders.create(payload)


@orders_router.get("", response_model=list[SalesOrder])
def list_orders(
    statecode: str | None = Query(default=None),
    quote_id: uuid.UUID | None = Query(default=None),
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> list[SalesOrder]:
    require_access(user, entity.SALES_ORDER, READ)
    if quote_id is not None:
        return engine.orders.list_by_quote(quote_id)
    return engine.orders.list(statecode)


@orders_router.get("/statistics", response_model=OrderStatistics)
def order_statistics(
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> OrderStatistics:
    require_access(user, entity.SALES_ORDER, READ)
    return engine.orders.get_statistics()


@orders_router.get("/{order_id}", response_model=SalesOrderWithLines)
def get_order(
    order_id: uuid.UUID,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> SalesOrderWithLines:
    result = engine.orders.get_with_lines(order_id)
    require_access(user, entity.SALES_ORDER, READ, result.order.ownerid)
    return result


@orders_router.patch("/{order_id}", response_model=SalesOrder)
def update_order(
    order_id: uuid.UUID,
    payload: SalesOrderUpdate,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> SalesOrder:
    require_access(user, entity.SALES_ORDER, UPDATE, engine.orders.get_by_id(order_id).ownerid)
    return engine.orders.update(order_id, payload)


@orders_router.delete("/{order_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_order(
    order_id: uuid.UUID,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> Response:
    require_access(user, entity.SALES_ORDER, DELETE, engine.orders.get_by_id(order_id).ownerid)
    engine.orders.delete(order_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@orders_router.get("/{order_id}/lines", response_model=list[SalesOrderDetail])
def list_order_lines(
    order_id: uuid.UUID,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> list[SalesOrderDetail]:
    require_access(user, entity.SALES_ORDER, READ, engine.orders.get_by_id(order_id).ownerid)
    return engine.orders.list_lines(order_id)


@orders_router.post("/{order_id}/lines", response_model=SalesOrderDetail, status_code=status.HTTP_201_CREATED)
def add_order_line(
    order_id: uuid.UUID,
    payload: LineItemCreate,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> SalesOrderDetail:
    require_access(user, entity.SALES_ORDER, UPDATE, engine.orders.get_by_id(order_id).ownerid)
    return engine.orders.add_line(order_id, payload)


@orders_router.patch("/{order_id}/lines/{line_id}", response_model=SalesOrderDetail)
def update_order_line(
    order_id: uuid.UUID,
    line_id: uuid.UUID,
    payload: LineItemUpdate,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> SalesOrderDetail:
    require_access(user, entity.SALES_ORDER, UPDATE, engine.orders.get_by_id(order_id).ownerid)
    return engine.orders.update_line(order_id, line_id, payload)


@orders_router.delete("/{order_id}/lines/{line_id}", response_model=SalesOrder)
def remove_order_line(
    order_id: uuid.UUID,
    line_id: uuid.UUID,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> SalesOrder:
    require_access(user, entity.SALES_ORDER, UPDATE, engine.orders.get_by_id(order_id).ownerid)
    return engine.orders.remove_line(order_id, line_id)


@orders_router.post("/{order_id}/submit", response_model=SalesOrder)
def submit_order(
    order_id: uuid.UUID,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> SalesOrder:
    require_access(user, entity.SALES_ORDER, TRANSITION, engine.orders.get_by_id(order_id).ownerid)
    return engine.orders.submit(order_id)


@orders_router.post("/{order_id}/fulfill", response_model=SalesOrder)
def fulfill_order(
    order_id: uuid.UUID,
    payload: FulfillOrderRequest | None = None,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> SalesOrder:
    require_access(user, entity.SALES_ORDER, TRANSITION, engine.orders.get_by_id(order_id).ownerid)
    return engine.orders.fulfill(order_id, payload.datefulfilled if payload else None)


@orders_router.post("/{order_id}/cancel", response_model=SalesOrder)
def cancel_order(
    order_id: uuid.UUID,
    payload: CancelRequest | None = None,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> SalesOrder:
    require_access(user, entity.SALES_ORDER, TRANSITION, engine.orders.get_by_id(order_id).ownerid)
    return engine.orders.cancel(order_id, payload.reason if payload else None)


# Invoices


@invoices_router.post(
    "/from-order/{order_id}",
    response_model=InvoiceWithLines,
    status_code=status.HTTP_201_CREATED,
)
def create_invoice_from_order(
    order_id: uuid.UUID,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> InvoiceWithLines:
    require_access(user, entity.INVOICE, CREATE)
    return engine.invoices.create_from_order(order_id)


@invoices_router.get("", response_model=list[Invoice])
def list_invoices(
    statecode: str | None = Query(default=None),
    order_id: uuid.UUID | None = Query(default=None),
    customer_id: uuid.UUID | None = Query(default=None),
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> list[Invoice]:
    require_access(user, entity.INVOICE, READ)
    if order_id is not None:
        return engine.invoices.list_by_order(order_id)
    if customer_id is not None:
        return engine.invoices.list_by_customer(customer_id)
    return engine.invoices.list(statecode)


@invoices_router.get("/overdue", response_model=list[Invoice])
def list_overdue_invoices(
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> list[Invoice]:
    require_access(user, entity.INVOICE, READ)
    return engine.invoices.list_overdue()


@invoices_router.get("/statistics", response_model=InvoiceStatistics)
def invoice_statistics(
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> InvoiceStatistics:
    require_access(user, entity.INVOICE, READ)
    return engine.invoices.get_statistics()


@invoices_router.get("/{invoice_id}", response_model=InvoiceWithLines)
def get_invoice(
    invoice_id: uuid.UUID,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> InvoiceWithLines:
    result = engine.invoices.get_with_lines(invoice_id)
    require_access(user, entity.INVOICE, READ, result.invoice.ownerid)
    return result


@invoices_router.patch("/{invoice_id}", response_model=Invoice)
def update_invoice(
    invoice_id: uuid.UUID,
    payload: InvoiceUpdate,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> Invoice:
    require_access(user, entity.INVOICE, UPDATE, engine.invoices.get_by_id(invoice_id).ownerid)
    return engine.invoices.update(invoice_id, payload)


@invoices_router.delete("/{invoice_id}", response_model=Invoice)
def delete_invoice(
    invoice_id: uuid.UUID,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> Invoice:
    require_access(user, entity.INVOICE, DELETE, engine.invoices.get_by_id(invoice_id).ownerid)
    return engine.invoices.delete(invoice_id)


@invoices_router.get("/{invoice_id}/lines", response_model=list[InvoiceDetail])
def list_invoice_lines(
    invoice_id: uuid.UUID,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> list[InvoiceDetail]:
    require_access(user, entity.INVOICE, READ, engine.invoices.get_by_id(invoice_id).ownerid)
    return engine.invoices.list_lines(invoice_id)


@invoices_router.post("/{invoice_id}/lines", response_model=InvoiceDetail, status_code=status.HTTP_201_CREATED)
def add_invoice_line(
    invoice_id: uuid.UUID,
    payload: LineItemCreate,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> InvoiceDetail:
    require_access(user, entity.INVOICE, UPDATE, engine.invoices.get_by_id(invoice_id).ownerid)
    return engine.invoices.add_line(invoice_id, payload)


@invoices_router.patch("/{invoice_id}/lines/{line_id}", response_model=InvoiceDetail)
def update_invoice_line(
    invoice_id: uuid.UUID,
    line_id: uuid.UUID,
    payload: LineItemUpdate,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> InvoiceDetail:
    require_access(user, entity.INVOICE, UPDATE, engine.invoices.get_by_id(invoice_id).ownerid)
    return engine.invoices.update_line(invoice_id, line_id, payload)


@invoices_router.delete("/{invoice_id}/lines/{line_id}", response_model=Invoice)
def remove_invoice_line(
    invoice_id: uuid.UUID,
    line_id: uuid.UUID,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> Invoice:
    require_access(user, entity.INVOICE, UPDATE, engine.invoices.get_by_id(invoice_id).ownerid)
    return engine.invoices.remove_line(invoice_id, line_id)


@invoices_router.post("/{invoice_id}/close", response_model=Invoice)
def close_invoice(
    invoice_id: uuid.UUID,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> Invoice:
    require_access(user, entity.INVOICE, TRANSITION, engine.invoices.get_by_id(invoice_id).ownerid)
    return engine.invoices.close(invoice_id)


@invoices_router.post("/{invoice_id}/payments", response_model=Invoice)
def record_invoice_payment(
    invoice_id: uuid.UUID,
    payload: RecordPaymentRequest,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> Invoice:
    require_access(user, entity.INVOICE, TRANSITION, engine.invoices.get_by_id(invoice_id).ownerid)
    return engine.invoices.record_payment(invoice_id, payload.amount, payload.paymentdate)


@invoices_router.post("/{invoice_id}/mark-paid", response_model=Invoice)
def mark_invoice_paid(
    invoice_id: uuid.UUID,
    payload: MarkPaidRequest | None = None,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> Invoice:
    require_access(user, entity.INVOICE, TRANSITION, engine.invoices.get_by_id(invoice_id).ownerid)
    return engine.invoices.mark_as_paid(invoice_id, payload.paymentdate if payload else None)


@invoices_router.post("/{invoice_id}/cancel", response_model=Invoice)
def cancel_invoice(
    invoice_id: uuid.UUID,
    payload: CancelInvoiceRequest | None = None,
    engine: SalesEngine = Depends(get_sales_engine),
    user: AuthUser = Depends(get_sales_user),
) -> Invoice:
    require_access(user, entity.INVOICE, TRANSITION, engine.invoices.get_by_id(invoice_id).ownerid)
    return engine.invoices.cancel(invoice_id, payload.reason if payload else None)


@history_router.get("/{entity_type}/{entity_id}")
def get_record_history(
    entity_type: str,
    entity_id: uuid.UUID,
    user: AuthUser = Depends(get_sales_user),
) -> list[dict[str, Any]]:
    if entity_type not in entity.ENTITY_TYPES:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"unknown entity type '{entity_type}'")
    require_access(user, entity_type, READ)
    return audit.history(entity_type, str(entity_id))


routers = [
    leads_router,
    accounts_router,
    contacts_router,
    opportunities_router,
    quotes_router,
    orders_router,
    invoices_router,
    history_router,
]
