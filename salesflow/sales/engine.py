from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.orm import Session

from salesflow.core.config import Settings, get_settings
from salesflow.sales.customers import CustomerService
from salesflow.sales.invoices import InvoiceService
from salesflow.sales.leads import LeadService
from salesflow.sales.opportunities import OpportunityService
from salesflow.sales.orders import OrderService
from salesflow.sales.quotes import QuoteService
from salesflow.store.base import EntityStore
from salesflow.store.memory import InMemoryEntityStore
from salesflow.store.sql import SqlEntityStore


@dataclass(slots=True)
class SalesEngine:
    store: EntityStore
    customers: CustomerService
    opportunities: OpportunityService
    leads: LeadService
    orders: OrderService
    quotes: QuoteService
    invoices: InvoiceService


def build_sales_engine(store: EntityStore, settings: Settings | None = None) -> SalesEngine:
    settings = settings or get_settings()
    customers = CustomerService(store)
    opportunities = OpportunityService(store, customers)
    leads = LeadService(store, customers, opportunities)
    orders = OrderService(store)
    quotes = QuoteService(store, orders, opportunities)
    invoices = InvoiceService(store, orders, default_due_days=settings.default_payment_terms_days)
    return SalesEngine(
        store=store,
        customers=customers,
        opportunities=opportunities,
        leads=leads,
        orders=orders,
        quotes=quotes,
        invoices=invoices,
    )


def build_store(settings: Settings, session: Session | None = None) -> EntityStore:
    backend = settings.store_backend.lower()
    if backend == "memory":
        return InMemoryEntityStore()
    if backend == "sql":
        if session is None:
            raise ValueError("the sql store backend needs a database session")
        return SqlEntityStore(session)
    raise ValueError(f"unknown store backend '{settings.store_backend}'")
