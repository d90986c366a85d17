# backend/rentledger/routers/ledger.py
from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..auth import get_principal
from ..deps import get_storage
from ..errors import ValidationError
from ..schemas import (
    BudgetCreate,
    BudgetOut,
    BudgetVarianceOut,
    LedgerSummaryOut,
    TaxYearCloseIn,
    TaxYearCreate,
    TaxYearOut,
)
from ..services.ledger_service import (
    budget_variance_by_id,
    budget_variances,
    close_tax_year,
    create_budget,
    create_tax_year,
    summarize,
    summarize_timeframe,
)
from ..storage.base import Storage

router = APIRouter(prefix="/ledger", tags=["ledger"])


@router.get("/summary", response_model=LedgerSummaryOut)
def summary(
    start: Optional[date] = Query(default=None),
    end: Optional[date] = Query(default=None),
    timeframe: Optional[str] = Query(default=None, description="month|quarter|year, ending today"),
    property_id: Optional[int] = Query(default=None),
    category_id: Optional[int] = Query(default=None),
    type: Optional[str] = Query(default=None, description="income|expense"),
    store: Storage = Depends(get_storage),
    p=Depends(get_principal),
):
    if timeframe:
        return summarize_timeframe(store, p.user_id, timeframe, property_id=property_id)
    if start is None or end is None:
        raise ValidationError("start and end are required unless timeframe is given")
    return summarize(
        store,
        p.user_id,
        start=start,
        end=end,
        property_id=property_id,
        category_id=category_id,
        txn_type=type,
    )


@router.post("/budgets", response_model=BudgetOut)
def add_budget(payload: BudgetCreate, store: Storage = Depends(get_storage), p=Depends(get_principal)):
    return create_budget(store, p.user_id, payload.model_dump())


def _variance_out(v) -> BudgetVarianceOut:
    return BudgetVarianceOut(
        budget_id=v.budget_id,
        budget_name=v.budget_name,
        budget_amount=v.budget_amount,
        actual_amount=v.actual_amount,
        variance=v.variance,
        percent_used=v.percent_used,
        percent_used_defined=v.percent_used_defined,
        period_start=v.period_start,
        period_end=v.period_end,
    )


@router.get("/budgets/variance", response_model=list[BudgetVarianceOut])
def variance(
    today: Optional[date] = Query(default=None),
    store: Storage = Depends(get_storage),
    p=Depends(get_principal),
):
    return [_variance_out(v) for v in budget_variances(store, p.user_id, today=today)]


@router.get("/budgets/{budget_id}/variance", response_model=BudgetVarianceOut)
def one_variance(
    budget_id: int,
    today: Optional[date] = Query(default=None),
    store: Storage = Depends(get_storage),
    p=Depends(get_principal),
):
    return _variance_out(budget_variance_by_id(store, budget_id, user_id=p.user_id, today=today))


@router.post("/tax-years", response_model=TaxYearOut)
def add_tax_year(payload: TaxYearCreate, store: Storage = Depends(get_storage), p=Depends(get_principal)):
    return create_tax_year(
        store,
        p.user_id,
        year=payload.year,
        start_date=payload.start_date,
        end_date=payload.end_date,
    )


@router.post("/tax-years/{tax_year_id}/close", response_model=TaxYearOut)
def close_year(
    tax_year_id: int,
    payload: Optional[TaxYearCloseIn] = None,
    store: Storage = Depends(get_storage),
    p=Depends(get_principal),
):
    return close_tax_year(
        store,
        tax_year_id,
        user_id=p.user_id,
        tax_rate=payload.tax_rate if payload else None,
    )
