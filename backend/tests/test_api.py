# backend/tests/test_api.py
from __future__ import annotations

from datetime import date

import httpx
import pytest
from fastapi.testclient import TestClient

from builders import mk_payment, mk_tenant
from rentledger.clients.extraction import ExtractionClient
from rentledger.clients.notifications import LogNotifier
from rentledger.main import create_app
from rentledger.models import BankAccount
from rentledger.storage import MemoryStorageProvider

OWNER = {"X-User-Email": "owner@example.com"}
INTRUDER = {"X-User-Email": "intruder@example.com"}


def _extraction_handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(
        200,
        json={
            "document_type": "bank_statement",
            "bank_name": "Sparkasse",
            "statement_period": {"start_date": "2024-03-01", "end_date": "2024-03-31"},
            "starting_balance": 0.0,
            "ending_balance": 950.0,
            "transactions": [
                {"date": "2024-03-03", "description": "Miete Schmidt", "amount": 950.0, "type": "income"},
            ],
        },
    )


@pytest.fixture
def provider():
    return MemoryStorageProvider()


@pytest.fixture
def client(provider):
    extraction = ExtractionClient("http://extract.test", transport=httpx.MockTransport(_extraction_handler))
    app = create_app(provider, extraction_client=extraction, notifier=LogNotifier())
    return TestClient(app)


def _owner(client, provider):
    """Provision the owner through the dev header and give them a bank account."""
    assert client.get("/api/categories", headers=OWNER).status_code == 200
    store = provider.store
    user = store.get_user_by_email(OWNER["X-User-Email"])
    with store.atomic():
        account = store.add(BankAccount(user_id=user.id, account_name="Rent", bank_name="Sparkasse", currency="EUR"))
    return user, account


def _statement_payload(account_id):
    return {
        "account_id": account_id,
        "metadata": {
            "start_date": "2024-03-01",
            "end_date": "2024-03-31",
            "starting_balance": 1000.0,
            "ending_balance": 1829.5,
        },
        "transactions": [
            {"date": "2024-03-03", "description": "Miete Schmidt", "amount": 950.0},
            {"date": "2024-03-10", "description": "Stadtwerke Utilities", "amount": -120.5},
            {"date": "oops", "description": "broken", "amount": 1},
        ],
    }


def test_missing_dev_header_is_unauthorized(client):
    assert client.get("/api/categories").status_code == 401


def test_health(client):
    r = client.get("/api/health")
    assert r.status_code == 200
    assert r.json()["storage"] == "MemoryStorageProvider"


def test_first_request_provisions_user_with_default_categories(client):
    r = client.get("/api/categories", headers=OWNER)
    assert r.status_code == 200
    names = {c["name"] for c in r.json()}
    assert {"Rent Income", "Maintenance", "Utilities", "Insurance", "Tax", "Mortgage"} <= names

    again = client.post("/api/categories/seed", headers=OWNER)
    assert len(again.json()) == len(r.json())


def test_ingest_classify_and_summarize(client, provider):
    user, account = _owner(client, provider)
    tenant = mk_tenant(provider.store, user, rent=950.0)
    payment = mk_payment(provider.store, tenant, due=date(2024, 3, 1))

    r = client.post("/api/statements", json=_statement_payload(account.id), headers=OWNER)
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["created"] == 2
    assert body["errors"][0]["index"] == 2
    assert body["validation_errors"] == []
    sid = body["statement"]["id"]

    r = client.post(f"/api/statements/{sid}/classify", headers=OWNER)
    assert r.status_code == 200
    assert r.json()["matched"] == 1
    assert r.json()["processed"] == 1
    assert r.json()["reconciled"] is True

    detail = client.get(f"/api/statements/{sid}", headers=OWNER).json()
    assert [t["status"] for t in detail["transactions"]] == ["matched", "processed"]
    assert detail["transactions"][0]["payment_id"] == payment.id

    s = client.get("/api/ledger/summary", params={"start": "2024-03-01", "end": "2024-03-31"}, headers=OWNER).json()
    assert s["total_income"] == 950.0
    assert s["total_expenses"] == 120.5
    assert s["net_income"] == 829.5


def test_audit_rows_carry_the_request_id(client, provider):
    user, account = _owner(client, provider)
    tenant = mk_tenant(provider.store, user, rent=950.0)
    payment = mk_payment(provider.store, tenant, due=date(2024, 3, 1))

    r = client.post("/api/statements", json=_statement_payload(account.id), headers=OWNER)
    minted = r.headers["X-Request-ID"]
    assert minted
    sid = r.json()["statement"]["id"]

    r = client.post(f"/api/statements/{sid}/classify", headers={**OWNER, "X-Request-ID": "classify-42"})
    assert r.headers["X-Request-ID"] == "classify-42"

    (received,) = provider.store.list_audit_events(entity_type="Payment", entity_id=payment.id)
    assert received.action == "payment.received"
    assert received.request_id == "classify-42"
    created = provider.store.list_audit_events(entity_type="BankStatement", entity_id=sid)
    assert {a.request_id for a in created} == {minted}


def test_statement_of_another_user_is_not_found(client, provider):
    _, account = _owner(client, provider)
    sid = client.post("/api/statements", json=_statement_payload(account.id), headers=OWNER).json()["statement"]["id"]

    r = client.get(f"/api/statements/{sid}", headers=INTRUDER)
    assert r.status_code == 404
    assert r.json()["code"] == "not_found"

    r = client.post("/api/statements", json=_statement_payload(account.id), headers=INTRUDER)
    assert r.status_code == 404


def test_summary_requires_a_window(client):
    r = client.get("/api/ledger/summary", headers=OWNER)
    assert r.status_code == 422
    assert r.json()["code"] == "validation_error"


def test_closing_a_tax_year_twice_conflicts(client):
    ty = client.post("/api/ledger/tax-years", json={"year": 2024}, headers=OWNER).json()

    first = client.post(f"/api/ledger/tax-years/{ty['id']}/close", headers=OWNER)
    assert first.status_code == 200
    assert first.json()["is_closed"] is True

    second = client.post(f"/api/ledger/tax-years/{ty['id']}/close", headers=OWNER)
    assert second.status_code == 409
    assert second.json()["code"] == "conflict"


def test_budget_variance_endpoint(client):
    r = client.post(
        "/api/ledger/budgets",
        json={"name": "Repairs", "amount": 0, "start_date": "2024-01-01"},
        headers=OWNER,
    )
    assert r.status_code == 200

    (v,) = client.get("/api/ledger/budgets/variance", params={"today": "2024-03-15"}, headers=OWNER).json()
    assert v["percent_used"] is None
    assert v["percent_used_defined"] is False

    one = client.get(f"/api/ledger/budgets/{r.json()['id']}/variance", params={"today": "2024-03-15"}, headers=OWNER)
    assert one.json() == v
    assert client.get("/api/ledger/budgets/999999/variance", headers=OWNER).json()["code"] == "not_found"


def test_late_tenants_and_reminders(client, provider):
    user, _ = _owner(client, provider)
    tenant = mk_tenant(provider.store, user)

    late = client.get("/api/tenants/late", params={"today": "2024-03-05"}, headers=OWNER).json()
    assert [(x["tenant"]["id"], x["reason"]) for x in late] == [(tenant.id, "no_payment")]

    scheduled = client.post("/api/reminders/schedule", params={"today": "2024-03-05"}, headers=OWNER).json()
    assert len(scheduled) == 1
    rid = scheduled[0]["id"]

    delivered = client.post("/api/reminders/deliver", headers=OWNER).json()
    assert delivered == {"sent": [rid], "failed": []}

    assert client.post(f"/api/reminders/{rid}/cancel", headers=OWNER).status_code == 409
    r = client.post(f"/api/reminders/{rid}/response", json={"message": "paid"}, headers=OWNER)
    assert r.status_code == 200
    assert r.json()["response_received"] is True


def test_checkout_rotates_gateways(client, provider):
    user, _ = _owner(client, provider)
    tenant = mk_tenant(provider.store, user)
    open_ = mk_payment(provider.store, tenant, due=date(2024, 3, 1))
    paid = mk_payment(provider.store, tenant, due=date(2024, 2, 1), status="received")

    first = client.post(f"/api/payments/{open_.id}/checkout", headers=OWNER).json()
    second = client.post(f"/api/payments/{open_.id}/checkout", headers=OWNER).json()

    assert (first["gateway"], second["gateway"]) == ("paypal", "stripe")
    assert first["amount_minor"] == 95000
    assert first["currency"] == "EUR"
    assert client.post(f"/api/payments/{paid.id}/checkout", headers=OWNER).status_code == 409
    assert client.post(f"/api/payments/{open_.id}/checkout", headers=INTRUDER).status_code == 404


def test_extract_upload_ingests_and_classifies(client, provider):
    _, account = _owner(client, provider)

    r = client.post(
        "/api/statements/extract",
        data={"account_id": str(account.id)},
        files={"file": ("march.pdf", b"%PDF-1.4", "application/pdf")},
        headers=OWNER,
    )

    assert r.status_code == 200, r.text
    body = r.json()
    assert body["ingest"]["created"] == 1
    assert body["ingest"]["statement"]["processed"] is True
    # no tenant rents 950 here, and "Miete" names no category
    assert body["classification"]["needs_review"] == 1
