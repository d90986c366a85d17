# backend/rentledger/routers/bank_transactions.py
from __future__ import annotations

from fastapi import APIRouter, Depends

from ..auth import get_principal
from ..deps import get_storage
from ..schemas import AssignCategoryIn, BankTransactionOut
from ..services.classifier import assign_category, ignore_transaction
from ..storage.base import Storage

router = APIRouter(prefix="/bank-transactions", tags=["bank-transactions"])


@router.post("/{transaction_id}/ignore", response_model=BankTransactionOut)
def ignore(transaction_id: int, store: Storage = Depends(get_storage), p=Depends(get_principal)):
    return ignore_transaction(store, transaction_id, user_id=p.user_id)


@router.post("/{transaction_id}/category", response_model=BankTransactionOut)
def set_category(
    transaction_id: int,
    payload: AssignCategoryIn,
    store: Storage = Depends(get_storage),
    p=Depends(get_principal),
):
    return assign_category(
        store,
        transaction_id,
        payload.category_id,
        user_id=p.user_id,
        property_id=payload.property_id,
    )
