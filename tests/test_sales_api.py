from __future__ import annotations

import uuid
from collections.abc import Generator
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from salesflow import audit
from salesflow.core.auth import AuthUser, get_current_user
from salesflow.core.config import Settings, get_settings
from salesflow.main import app
from salesflow.sales.api import get_access_gate, get_sales_engine
from salesflow.sales.engine import SalesEngine, build_sales_engine
from salesflow.sales.schemas import LineItemCreate, QuoteCreate
from salesflow.store.memory import InMemoryEntityStore


@pytest.fixture(autouse=True)
def setup_env() -> Generator[None, None, None]:
    get_settings.cache_clear()
    get_access_gate.cache_clear()
    yield
    get_settings.cache_clear()
    get_access_gate.cache_clear()


@pytest.fixture()
def engine() -> SalesEngine:
    return build_sales_engine(InMemoryEntityStore(), Settings())


@pytest.fixture()
def current_user() -> AuthUser:
    return AuthUser(sub="rep-1", roles=["sales.manager"])


@pytest.fixture()
def client(engine: SalesEngine, current_user: AuthUser) -> Generator[TestClient, None, None]:
    async def override_get_current_user() -> AuthUser:
        return current_user

    app.dependency_overrides[get_sales_engine] = lambda: engine
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _fulfilled_order(client: TestClient) -> str:
    order = client.post("/sales/orders", json={"name": "API order"})
    assert order.status_code == 201
    order_id = order.json()["id"]
    for quantity, price in (("2", "100"), ("1", "50")):
        line = client.post(f"/sales/orders/{order_id}/lines", json={"quantity": quantity, "priceperunit": price})
        assert line.status_code == 201
    assert client.post(f"/sales/orders/{order_id}/submit").status_code == 200
    assert client.post(f"/sales/orders/{order_id}/fulfill").status_code == 200
    return order_id


def test_health(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_lead_to_order_flow(client: TestClient) -> None:
    lead = client.post("/sales/leads", json={"firstname": "Ana", "lastname": "Ruiz", "companyname": "Acme"})
    assert lead.status_code == 201
    lead_body = lead.json()
    assert lead_body["ownerid"] == "rep-1"

    qualified = client.post(f"/sales/leads/{lead_body['id']}/qualify", json={"create_account": True})
    assert qualified.status_code == 200
    opportunity = qualified.json()["opportunity"]
    assert opportunity["salesstage"] == "Qualify"
    assert opportunity["closeprobability"] == 25
    assert opportunity["originatingleadid"] == lead_body["id"]

    quote = client.post("/sales/quotes", json={"name": "Acme Q", "opportunityid": opportunity["id"]})
    assert quote.status_code == 201
    quote_id = quote.json()["id"]
    line = client.post(f"/sales/quotes/{quote_id}/lines", json={"quantity": "3", "priceperunit": "40"})
    assert line.status_code == 201
    assert client.post(f"/sales/quotes/{quote_id}/activate").status_code == 200

    won = client.post(f"/sales/quotes/{quote_id}/win", json={"closingnotes": "signed"})
    assert won.status_code == 200
    body = won.json()
    assert body["quote"]["statecode"] == "Won"
    assert body["order"]["quoteid"] == quote_id
    assert body["opportunity"]["statecode"] == "Won"
    assert len(body["order_lines"]) == 1

    detail = client.get(f"/sales/quotes/{quote_id}")
    assert detail.status_code == 200
    assert len(detail.json()["lines"]) == 1


def test_invoice_from_order_and_payment(client: TestClient) -> None:
    order_id = _fulfilled_order(client)

    created = client.post(f"/sales/invoices/from-order/{order_id}")
    assert created.status_code == 201
    invoice = created.json()["invoice"]
    assert float(invoice["totalamount"]) == 250
    assert len(created.json()["lines"]) == 2

    duplicate = client.post(f"/sales/invoices/from-order/{order_id}")
    assert duplicate.status_code == 409
    assert duplicate.json()["detail"] == "order already has an open invoice"

    paid = client.post(f"/sales/invoices/{invoice['id']}/payments", json={"amount": "250"})
    assert paid.status_code == 200
    assert paid.json()["statecode"] == "Paid"

    again = client.post(f"/sales/invoices/{invoice['id']}/mark-paid")
    assert again.status_code == 409

    stats = client.get("/sales/invoices/statistics")
    assert stats.status_code == 200
    assert stats.json()["by_state"] == {"Paid": 1}


def test_domain_errors_map_to_status_codes(client: TestClient) -> None:
    missing = client.get("/sales/quotes/00000000-0000-0000-0000-000000000001")
    assert missing.status_code == 404
    assert "not found" in missing.json()["detail"]

    quote = client.post("/sales/quotes", json={"name": "Empty"}).json()
    activate = client.post(f"/sales/quotes/{quote['id']}/activate")
    assert activate.status_code == 422
    assert activate.json()["errors"] == ["quote must have at least one line to be activated"]

    bad_line = client.post(
        f"/sales/quotes/{quote['id']}/lines",
        json={"quantity": "0", "priceperunit": "-5"},
    )
    assert bad_line.status_code == 422
    assert bad_line.json()["errors"] == [
        "quantity must be greater than 0",
        "unit price must not be negative",
    ]

    order = client.post("/sales/orders", json={"name": "Not yet"}).json()
    not_fulfilled = client.post(f"/sales/invoices/from-order/{order['id']}")
    assert not_fulfilled.status_code == 409


def test_error_body_carries_correlation_id(client: TestClient) -> None:
    response = client.get(
        "/sales/leads/00000000-0000-0000-0000-000000000002",
        headers={"x-correlation-id": "corr-sales-404"},
    )

    assert response.status_code == 404
    assert response.json()["correlation_id"] == "corr-sales-404"
    assert response.headers["x-correlation-id"] == "corr-sales-404"


def test_unsafe_correlation_id_is_replaced(client: TestClient) -> None:
    response = client.get("/health", headers={"x-correlation-id": "bad id <script>"})

    echoed = response.headers["x-correlation-id"]
    assert echoed != "bad id <script>"
    assert uuid.UUID(echoed)


def test_transitions_are_audited_with_the_caller(client: TestClient) -> None:
    audit.audit_entries.clear()

    lead = client.post("/sales/leads", json={"lastname": "Audited"}).json()

    entries = [entry for entry in audit.audit_entries if entry["entity_id"] == lead["id"]]
    assert [entry["transition"] for entry in entries] == ["created"]
    assert entries[0]["actor_user_id"] == "rep-1"


def test_access_denied_without_permission(
    client: TestClient,
    current_user: AuthUser,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("AUTHZ_DEFAULT_ALLOW", "false")
    get_settings.cache_clear()
    get_access_gate.cache_clear()
    current_user.roles = ["sales.rep"]

    assert client.post("/sales/leads", json={"lastname": "Allowed"}).status_code == 201
    denied = client.post("/sales/orders", json={"name": "Nope"})
    assert denied.status_code == 403
    assert denied.json()["detail"] == "Missing permission: salesorder.create"


def test_rep_may_only_transition_own_quotes(
    client: TestClient,
    engine: SalesEngine,
    current_user: AuthUser,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    foreign = engine.quotes.create(QuoteCreate(name="Someone else's", ownerid="rep-2"))
    engine.quotes.add_line(foreign.id, LineItemCreate(quantity=Decimal("1"), priceperunit=Decimal("10")))
    mine = engine.quotes.create(QuoteCreate(name="Mine", ownerid="rep-1"))
    engine.quotes.add_line(mine.id, LineItemCreate(quantity=Decimal("1"), priceperunit=Decimal("10")))

    monkeypatch.setenv("AUTHZ_DEFAULT_ALLOW", "false")
    get_settings.cache_clear()
    get_access_gate.cache_clear()
    current_user.roles = ["sales.rep"]

    assert client.post(f"/sales/quotes/{foreign.id}/activate").status_code == 403
    assert client.post(f"/sales/quotes/{mine.id}/activate").status_code == 200


def test_record_history_lists_committed_transitions(client: TestClient) -> None:
    audit.audit_entries.clear()
    lead = client.post("/sales/leads", json={"lastname": "Traced"}).json()
    client.post(f"/sales/leads/{lead['id']}/disqualify", json={"statuscode": "CannotContact"})

    response = client.get(f"/sales/history/lead/{lead['id']}")

    assert response.status_code == 200
    history = response.json()
    assert [(item["transition"], item["from_state"], item["to_state"]) for item in history] == [
        ("created", None, "Open"),
        ("disqualified", "Open", "Disqualified"),
    ]
    assert "before" not in history[0]
    assert client.get(f"/sales/history/widget/{lead['id']}").status_code == 404


def test_opportunity_patch_cannot_change_stage(client: TestClient) -> None:
    account = client.post("/sales/accounts", json={"name": "Staged"}).json()
    opportunity = client.post(
        "/sales/opportunities",
        json={"name": "Staged deal", "customerid": account["id"], "customeridtype": "account"},
    ).json()

    response = client.patch(f"/sales/opportunities/{opportunity['id']}", json={"salesstage": "Close"})

    assert response.status_code == 422
    assert client.get(f"/sales/opportunities/{opportunity['id']}").json()["salesstage"] == "Qualify"
