# backend/rentledger/routers/categories.py
from __future__ import annotations

from fastapi import APIRouter, Depends

from ..auth import get_principal
from ..deps import get_storage
from ..schemas import CategoryOut
from ..services.categories import ensure_default_categories
from ..storage.base import Storage

router = APIRouter(prefix="/categories", tags=["categories"])


@router.get("", response_model=list[CategoryOut])
def list_categories(store: Storage = Depends(get_storage), p=Depends(get_principal)):
    return store.list_categories(p.user_id)


@router.post("/seed", response_model=list[CategoryOut])
def seed(store: Storage = Depends(get_storage), p=Depends(get_principal)):
    return ensure_default_categories(store, p.user_id)
