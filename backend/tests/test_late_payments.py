# backend/tests/test_late_payments.py
from __future__ import annotations

from datetime import date

from builders import mk_owner, mk_payment, mk_tenant
from rentledger.services.late_payment import late_tenants, refresh_payment_statuses

TODAY = date(2024, 3, 20)


def _reasons(store, user, today=TODAY):
    return {lp.tenant.id: lp.reason for lp in late_tenants(store, user.id, today)}


def test_tenant_without_any_payment_is_late(store):
    user, _ = mk_owner(store)
    t = mk_tenant(store, user)

    (lp,) = late_tenants(store, user.id, TODAY)

    assert lp.tenant.id == t.id
    assert lp.reason == "no_payment"
    assert lp.last_payment is None


def test_last_payment_in_previous_month_is_late(store):
    user, _ = mk_owner(store)
    t = mk_tenant(store, user)
    p = mk_payment(store, t, due=date(2024, 2, 1), status="received")

    (lp,) = late_tenants(store, user.id, TODAY)

    assert lp.reason == "not_current_period"
    assert lp.last_payment.id == p.id


def test_received_or_pending_current_payment_is_not_late(store):
    user, _ = mk_owner(store)
    paid = mk_tenant(store, user, first="Paid")
    waiting = mk_tenant(store, user, first="Waiting", email="w@example.com")
    mk_payment(store, paid, due=date(2024, 2, 1), status="received")
    mk_payment(store, paid, due=date(2024, 3, 1), status="received")
    mk_payment(store, waiting, due=date(2024, 3, 1), status="pending")

    assert late_tenants(store, user.id, TODAY) == []


def test_flagged_current_payment_is_late(store):
    user, _ = mk_owner(store)
    t = mk_tenant(store, user)
    mk_payment(store, t, due=date(2024, 3, 1), status="overdue")

    assert _reasons(store, user) == {t.id: "flagged_late"}


def test_inactive_tenants_are_never_listed(store):
    user, _ = mk_owner(store)
    mk_tenant(store, user, active=False)

    assert late_tenants(store, user.id, TODAY) == []


def test_each_tenant_is_listed_once_and_only_for_its_owner(store):
    user, _ = mk_owner(store)
    other, _ = mk_owner(store, email="other@example.com")
    a = mk_tenant(store, user, first="A", email="a@example.com")
    b = mk_tenant(store, user, first="B", email="b@example.com")
    mk_tenant(store, other, first="C", email="c@example.com")
    mk_payment(store, a, due=date(2024, 1, 1), status="received")
    mk_payment(store, a, due=date(2024, 2, 1), status="late")

    assert _reasons(store, user) == {a.id: "not_current_period", b.id: "no_payment"}


def test_refresh_flags_pending_then_overdue(store):
    user, _ = mk_owner(store)
    t = mk_tenant(store, user)
    p = mk_payment(store, t, due=date(2024, 3, 1))
    received = mk_payment(store, t, due=date(2024, 2, 1), status="received")

    assert refresh_payment_statuses(store, user.id, date(2024, 3, 1), grace_days=14) == []

    changed = refresh_payment_statuses(store, user.id, date(2024, 3, 5), grace_days=14)
    assert [c.id for c in changed] == [p.id]
    assert store.get_payment(p.id).status == "late"
    assert _reasons(store, user, date(2024, 3, 5)) == {t.id: "flagged_late"}

    refresh_payment_statuses(store, user.id, date(2024, 3, 20), grace_days=14)
    assert store.get_payment(p.id).status == "overdue"
    assert store.get_payment(received.id).status == "received"

    actions = [e.action for e in store.list_audit_events(entity_type="Payment", entity_id=p.id)]
    assert actions == ["payment.late", "payment.overdue"]
