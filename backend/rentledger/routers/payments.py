# backend/rentledger/routers/payments.py
from __future__ import annotations

from fastapi import APIRouter, Depends

from ..auth import get_principal
from ..deps import get_gateway_rotation, get_storage
from ..schemas import CheckoutIntentOut
from ..services.payment_gateways import GatewayRotation, checkout_intent
from ..storage.base import Storage

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/{payment_id}/checkout", response_model=CheckoutIntentOut)
def checkout(
    payment_id: int,
    store: Storage = Depends(get_storage),
    rotation: GatewayRotation = Depends(get_gateway_rotation),
    p=Depends(get_principal),
):
    return checkout_intent(store, rotation, payment_id, user_id=p.user_id)
