# backend/tests/test_workers_cli.py
from __future__ import annotations

import base64
import json

from builders import mk_owner, mk_tenant
from rentledger.cli.__main__ import main
from rentledger.db import SessionLocal, init_db
from rentledger.storage import SqlStorage
from rentledger.workers.tasks import process_statement_upload, run_reminder_cycle

# these entrypoints build their own provider from settings, i.e. the shared
# in-memory SQLite engine configured in conftest.py


def _seed(email: str):
    init_db()
    db = SessionLocal()
    try:
        store = SqlStorage(db)
        user, account = mk_owner(store, email=email)
        tenant = mk_tenant(store, user, email=f"tenant-{email}")
        return user.id, account.id, tenant.id
    finally:
        db.close()


def _last_json_line(capsys) -> dict:
    return json.loads(capsys.readouterr().out.strip().splitlines()[-1])


def test_upload_task_without_extraction_service_keeps_failed_statement():
    user_id, account_id, _ = _seed("worker-upload@example.com")

    out = process_statement_upload(user_id, account_id, base64.b64encode(b"%PDF").decode(), "pdf")

    assert out["ok"] is True
    assert out["ingest"]["statement"]["processed"] is False
    assert out["ingest"]["statement"]["processing_error"] == "extraction_base_url not set"
    assert out["classification"] is None


def test_upload_task_reports_domain_errors():
    user_id, _, _ = _seed("worker-missing@example.com")

    out = process_statement_upload(user_id, 999_999, base64.b64encode(b"x").decode(), "csv")

    assert out["ok"] is False
    assert out["code"] == "not_found"


def test_reminder_cycle_task():
    user_id, _, _ = _seed("worker-remind@example.com")

    out = run_reminder_cycle(user_id, "2024-03-05")

    assert out["ok"] is True
    assert len(out["scheduled"]) == 1
    assert out["sent"] == out["scheduled"]

    db = SessionLocal()
    try:
        events = SqlStorage(db).list_audit_events(entity_type="PaymentReminder", entity_id=out["sent"][0])
    finally:
        db.close()
    assert [a.action for a in events] == ["reminder.create", "reminder.sent"]
    # both rows written under the task's own correlation id
    assert len({a.request_id for a in events}) == 1 and events[0].request_id


def test_cli_late_lists_tenants(capsys):
    user_id, _, tenant_id = _seed("cli-late@example.com")

    assert main(["late", "--user-id", str(user_id), "--today", "2024-03-05"]) == 0

    out = _last_json_line(capsys)
    assert out["ok"] is True
    assert [(x["tenant_id"], x["reason"]) for x in out["late"]] == [(tenant_id, "no_payment")]


def test_cli_seed_categories_is_idempotent(capsys):
    user_id, _, _ = _seed("cli-seed@example.com")

    assert main(["seed-categories", "--user-id", str(user_id)]) == 0

    out = _last_json_line(capsys)
    assert len(out["categories"]) == 6
