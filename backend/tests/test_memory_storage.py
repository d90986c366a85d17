# backend/tests/test_memory_storage.py
from __future__ import annotations

from datetime import date

import pytest

from builders import mk_owner, mk_payment, mk_tenant
from rentledger.models import Payment
from rentledger.storage import MemoryStorage


def test_failed_block_restores_values_and_drops_new_rows():
    store = MemoryStorage()
    user, _ = mk_owner(store)
    tenant = mk_tenant(store, user)
    payment = mk_payment(store, tenant, due=date(2024, 3, 1))

    with pytest.raises(RuntimeError):
        with store.atomic():
            payment.status = "received"
            payment.date_paid = date(2024, 3, 2)
            store.add(Payment(user_id=user.id, tenant_id=tenant.id, amount=1.0, due_date=date(2024, 4, 1)))
            raise RuntimeError("boom")

    assert payment.status == "pending"
    assert payment.date_paid is None
    assert [p.id for p in store.list_payments_for_tenant(tenant.id)] == [payment.id]


def test_nested_blocks_roll_back_as_one_unit():
    store = MemoryStorage()
    user, _ = mk_owner(store)
    tenant = mk_tenant(store, user)

    with pytest.raises(ValueError):
        with store.atomic():
            tenant.rent_amount = 1200.0
            with store.atomic():
                tenant.active = False
            raise ValueError("outer failure")

    assert tenant.rent_amount == 950.0
    assert tenant.active is True


def test_add_fills_column_defaults_and_ids():
    store = MemoryStorage()
    user, _ = mk_owner(store)
    tenant = mk_tenant(store, user)

    p = mk_payment(store, tenant, due=date(2024, 3, 1))
    q = mk_payment(store, tenant, due=date(2024, 4, 1))

    assert (p.id, q.id) == (1, 2)
    assert p.reminders_sent == 0
    assert p.created_at is not None


def test_sql_and_memory_agree_on_listing_order(store):
    user, _ = mk_owner(store)
    tenant = mk_tenant(store, user)
    mk_payment(store, tenant, due=date(2024, 4, 1))
    mk_payment(store, tenant, due=date(2024, 2, 1), status="received")
    mk_payment(store, tenant, due=date(2024, 3, 1), status="late")

    assert [p.status for p in store.list_payments(user.id, statuses=("pending", "late"))] == ["late", "pending"]
