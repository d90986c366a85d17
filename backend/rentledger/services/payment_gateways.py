# backend/rentledger/services/payment_gateways.py
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from ..config import settings
from ..errors import ConflictError
from ..storage.base import Storage
from .ownership import must_get_payment

log = logging.getLogger("rentledger.payments")

STRIPE = "stripe"
PAYPAL = "paypal"

# payments in these states have nothing left to capture
_CLOSED_STATUSES = ("received", "waived")


@dataclass
class GatewayRotation:
    """
    Round-robin choice of payment capture gateway.

    The caller owns the instance (one per app or per worker process) so the
    rotation position is explicit state, not a module global.
    """

    gateways: tuple[str, ...] = (PAYPAL, STRIPE)
    last: Optional[str] = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.gateways:
            raise ValueError("GatewayRotation needs at least one gateway")
        if self.last is not None and self.last not in self.gateways:
            raise ValueError(f"unknown gateway {self.last!r}")

    def next(self) -> str:
        with self._lock:
            if self.last is None:
                self.last = self.gateways[0]
            else:
                i = self.gateways.index(self.last)
                self.last = self.gateways[(i + 1) % len(self.gateways)]
            return self.last


@dataclass(frozen=True)
class CheckoutIntent:
    """What the capture integration needs to collect one payment."""

    payment_id: int
    tenant_id: int
    gateway: str
    amount: float
    amount_minor: int
    currency: str
    due_date: date


def checkout_intent(
    store: Storage,
    rotation: GatewayRotation,
    payment_id: int,
    *,
    user_id: Optional[int] = None,
) -> CheckoutIntent:
    payment = must_get_payment(store, payment_id, user_id=user_id)
    if payment.status in _CLOSED_STATUSES:
        raise ConflictError(
            f"payment is already {payment.status}",
            context={"payment_id": payment.id, "status": payment.status},
        )

    gateway = rotation.next()
    amount = round(float(payment.amount), 2)
    log.info(
        "checkout via %s",
        gateway,
        extra={"payment_id": payment.id, "tenant_id": payment.tenant_id, "user_id": payment.user_id},
    )
    return CheckoutIntent(
        payment_id=int(payment.id),
        tenant_id=int(payment.tenant_id),
        gateway=gateway,
        amount=amount,
        amount_minor=int(round(amount * 100)),
        currency=settings.default_currency.upper(),
        due_date=payment.due_date,
    )
