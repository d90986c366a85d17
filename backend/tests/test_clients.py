# backend/tests/test_clients.py
from __future__ import annotations

import json
from types import SimpleNamespace

import httpx

from rentledger.clients.extraction import ExtractionClient
from rentledger.clients.notifications import HttpNotifier, LogNotifier


def _client(handler, **kw):
    return ExtractionClient("http://extract.test/", api_key="k-123", transport=httpx.MockTransport(handler), **kw)


def test_extraction_success_parses_payload():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("Authorization")
        seen["content_type"] = request.headers.get("Content-Type", "")
        return httpx.Response(
            200,
            json={
                "document_type": "bank_statement",
                "account_number": "DE89 3704",
                "statement_period": {"start_date": "2024-03-01", "end_date": "2024-03-31"},
                "transactions": [{"date": "2024-03-03", "description": "Miete", "amount": 950, "type": "income"}],
            },
        )

    out = _client(handler).extract(b"%PDF", "PDF")

    assert out.ok
    assert seen["url"] == "http://extract.test/extract"
    assert seen["auth"] == "Bearer k-123"
    assert seen["content_type"].startswith("multipart/form-data")
    assert out.account_number == "DE89 3704"
    assert out.transactions[0].amount == 950.0
    assert out.raw["document_type"] == "bank_statement"


def test_extraction_http_error_is_returned_not_raised():
    out = _client(lambda request: httpx.Response(500, text="down")).extract(b"x", "csv")

    assert not out.ok
    assert "500" in out.error
    assert out.transactions == []


def test_extraction_error_payload_and_wrong_document_type():
    err = _client(lambda request: httpx.Response(200, json={"rawText": "...", "extractionError": "unreadable scan"}))
    assert err.extract(b"x", "pdf").error == "unreadable scan"

    invoice = _client(lambda request: httpx.Response(200, json={"document_type": "invoice"}))
    assert invoice.extract(b"x", "pdf").error == "not a bank statement: invoice"


def test_extraction_unconfigured_or_unreachable():
    assert ExtractionClient(base_url="").extract(b"x", "pdf").error == "extraction_base_url not set"

    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    assert _client(refuse).extract(b"x", "pdf").error == "connection refused"


def _reminder(**kw):
    base = dict(
        id=7,
        payment_id=3,
        tenant_id=2,
        delivery_channel="email",
        email_address="anna@example.com",
        phone_number=None,
        subject="Rent Payment Reminder",
        message="Dear Anna Schmidt,",
    )
    base.update(kw)
    return SimpleNamespace(**base)


def test_http_notifier_posts_reminder():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        seen["key"] = request.headers.get("X-Api-Key")
        return httpx.Response(201, json={"id": "n-42"})

    receipt = HttpNotifier("http://notify.test", "secret", transport=httpx.MockTransport(handler)).send(_reminder())

    assert receipt.ok
    assert receipt.notification_id == "n-42"
    assert seen["key"] == "secret"
    assert seen["body"]["to"] == "anna@example.com"
    assert seen["body"]["metadata"] == {"reminder_id": 7, "payment_id": 3}


def test_http_notifier_failures_come_back_in_receipt():
    no_id = HttpNotifier("http://notify.test", transport=httpx.MockTransport(lambda r: httpx.Response(200, json={})))
    assert no_id.send(_reminder()).error == "notification service returned no id"

    down = HttpNotifier("http://notify.test", transport=httpx.MockTransport(lambda r: httpx.Response(503)))
    receipt = down.send(_reminder(delivery_channel="sms", phone_number="+4930123"))
    assert receipt.ok is False
    assert "503" in receipt.error


def test_log_notifier_records_ids():
    n = LogNotifier()
    receipt = n.send(_reminder())
    assert receipt.ok
    assert receipt.notification_id.startswith("log-")
    assert n.sent == [7]
