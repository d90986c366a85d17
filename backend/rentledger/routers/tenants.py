# backend/rentledger/routers/tenants.py
from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..auth import get_principal
from ..deps import get_storage
from ..schemas import LateTenantOut, PaymentOut, TenantOut
from ..services.late_payment import late_tenants
from ..storage.base import Storage

router = APIRouter(prefix="/tenants", tags=["tenants"])


@router.get("/late", response_model=list[LateTenantOut])
def list_late_tenants(
    today: Optional[date] = Query(default=None),
    store: Storage = Depends(get_storage),
    p=Depends(get_principal),
):
    return [
        LateTenantOut(
            tenant=TenantOut.model_validate(lp.tenant),
            last_payment=PaymentOut.model_validate(lp.last_payment) if lp.last_payment is not None else None,
            reason=lp.reason,
        )
        for lp in late_tenants(store, p.user_id, today)
    ]
