# backend/tests/test_gateways.py
from __future__ import annotations

from datetime import date

import pytest

from builders import mk_owner, mk_payment, mk_tenant
from rentledger.errors import ConflictError, NotFoundError
from rentledger.services.payment_gateways import PAYPAL, STRIPE, GatewayRotation, checkout_intent


def test_rotation_alternates_starting_with_paypal():
    r = GatewayRotation()
    assert [r.next() for _ in range(4)] == [PAYPAL, STRIPE, PAYPAL, STRIPE]


def test_rotation_state_is_per_instance():
    a = GatewayRotation()
    b = GatewayRotation(last=PAYPAL)
    a.next()
    assert b.next() == STRIPE
    assert a.last == PAYPAL


def test_rotation_rejects_bad_setup():
    with pytest.raises(ValueError):
        GatewayRotation(gateways=())
    with pytest.raises(ValueError):
        GatewayRotation(last="bitcoin")


def test_checkout_intent_for_open_payment(store):
    user, _ = mk_owner(store)
    tenant = mk_tenant(store, user, rent=812.5)
    payment = mk_payment(store, tenant, due=date(2024, 3, 1))

    intent = checkout_intent(store, GatewayRotation(), payment.id, user_id=user.id)

    assert intent.gateway == PAYPAL
    assert intent.amount == 812.5
    assert intent.amount_minor == 81250
    assert intent.due_date == date(2024, 3, 1)


def test_checkout_refuses_settled_or_foreign_payments(store):
    user, _ = mk_owner(store)
    other, _ = mk_owner(store, email="other@example.com")
    tenant = mk_tenant(store, user)
    waived = mk_payment(store, tenant, due=date(2024, 3, 1), status="waived")
    open_ = mk_payment(store, tenant, due=date(2024, 4, 1))
    rotation = GatewayRotation()

    with pytest.raises(ConflictError):
        checkout_intent(store, rotation, waived.id)
    with pytest.raises(NotFoundError):
        checkout_intent(store, rotation, open_.id, user_id=other.id)
    assert rotation.last is None
