# backend/rentledger/services/ledger_service.py
from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Optional

from ..domain.audit import audit_write, row_snapshot
from ..domain.ledger_math import (
    BudgetVariance,
    DateWindow,
    LedgerSummary,
    budget_variance,
    estimated_tax,
    period_window,
    summarize_entries,
    timeframe_window,
)
from ..errors import ConflictError, ValidationError
from ..models import BUDGET_PERIODS, CATEGORY_TYPES, Budget, TaxYear
from ..storage.base import Storage
from .ownership import must_get_budget, must_get_category, must_get_property, must_get_tax_year

log = logging.getLogger("rentledger.ledger")

_TAX_YEAR_FIELDS = (
    "start_date",
    "end_date",
    "is_closed",
    "total_income",
    "total_expenses",
    "net_income",
    "tax_rate",
    "estimated_tax",
    "closed_at",
)


def _window(start: date, end: date) -> DateWindow:
    try:
        return DateWindow(start, end)
    except ValueError as e:
        raise ValidationError(str(e), context={"start": start, "end": end}) from e


def _check_type(txn_type: Optional[str]) -> Optional[str]:
    if txn_type is None:
        return None
    t = txn_type.strip().lower()
    if t not in CATEGORY_TYPES:
        raise ValidationError(f"type must be one of {CATEGORY_TYPES}", context={"type": txn_type})
    return t


def _check_rate(rate: Optional[float]) -> Optional[float]:
    if rate is None:
        return None
    if not 0.0 <= float(rate) <= 1.0:
        raise ValidationError("tax_rate must be between 0 and 1", context={"tax_rate": rate})
    return float(rate)


def summarize(
    store: Storage,
    user_id: int,
    *,
    start: date,
    end: date,
    property_id: Optional[int] = None,
    category_id: Optional[int] = None,
    txn_type: Optional[str] = None,
) -> LedgerSummary:
    """Income / expense totals and per-category breakdowns over ledger entries dated in [start, end]."""
    window = _window(start, end)
    entries = store.list_ledger_entries(
        user_id,
        start=window.start,
        end=window.end,
        property_id=property_id,
        category_id=category_id,
        txn_type=_check_type(txn_type),
    )
    names = {int(c.id): c.name for c in store.list_categories(user_id)}
    return summarize_entries(entries, names, window)


def summarize_timeframe(
    store: Storage,
    user_id: int,
    timeframe: str,
    *,
    today: Optional[date] = None,
    property_id: Optional[int] = None,
) -> LedgerSummary:
    try:
        window = timeframe_window(timeframe, today or date.today())
    except ValueError as e:
        raise ValidationError(str(e), context={"timeframe": timeframe}) from e
    return summarize(store, user_id, start=window.start, end=window.end, property_id=property_id)


# -----------------------------------------------------------------------------
# Budgets
# -----------------------------------------------------------------------------
def create_budget(store: Storage, user_id: int, data: dict[str, Any]) -> Budget:
    period = (data.get("period") or "monthly").strip().lower()
    if period not in BUDGET_PERIODS:
        raise ValidationError(f"period must be one of {BUDGET_PERIODS}", context={"period": period})
    start = data["start_date"]
    end = data.get("end_date")
    if end is not None:
        _window(start, end)
    if data.get("category_id") is not None:
        must_get_category(store, int(data["category_id"]), user_id=user_id)
    if data.get("property_id") is not None:
        must_get_property(store, int(data["property_id"]), user_id=user_id)

    with store.atomic():
        row = store.add(
            Budget(
                user_id=int(user_id),
                property_id=data.get("property_id"),
                category_id=data.get("category_id"),
                name=str(data["name"]),
                amount=float(data["amount"]),
                type=_check_type(data.get("type") or "expense"),
                period=period,
                start_date=start,
                end_date=end,
            )
        )
        audit_write(
            store,
            user_id=user_id,
            action="budget.create",
            entity_type="Budget",
            entity_id=row.id,
            after=row_snapshot(row, ("name", "amount", "type", "period", "category_id", "property_id")),
        )
    return row


def variance_for_budget(store: Storage, budget: Budget, *, today: Optional[date] = None) -> BudgetVariance:
    """
    Actual spend (or income) for the budget's current period, clipped to the
    budget's own start/end dates. A budget not active today has actual 0.
    A category budget counts that category across all properties; the
    property only narrows budgets without a category.
    """
    current = period_window(budget.period, today or date.today())
    window = current.intersect(budget.start_date, budget.end_date)

    actual = 0.0
    if window is not None:
        entries = store.list_ledger_entries(
            budget.user_id,
            start=window.start,
            end=window.end,
            property_id=budget.property_id if budget.category_id is None else None,
            category_id=budget.category_id,
            txn_type=budget.type,
        )
        actual = sum(abs(float(e.amount or 0.0)) for e in entries)

    return budget_variance(
        budget_id=budget.id,
        budget_name=budget.name,
        budget_amount=budget.amount,
        actual_amount=actual,
        window=window,
    )


def budget_variances(store: Storage, user_id: int, *, today: Optional[date] = None) -> list[BudgetVariance]:
    return [variance_for_budget(store, b, today=today) for b in store.list_budgets(user_id)]


def budget_variance_by_id(
    store: Storage, budget_id: int, *, user_id: Optional[int] = None, today: Optional[date] = None
) -> BudgetVariance:
    return variance_for_budget(store, must_get_budget(store, budget_id, user_id=user_id), today=today)


# -----------------------------------------------------------------------------
# Tax years
# -----------------------------------------------------------------------------
def create_tax_year(
    store: Storage,
    user_id: int,
    *,
    year: int,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    tax_rate: Optional[float] = None,
) -> TaxYear:
    if store.get_tax_year_by_year(user_id, year) is not None:
        raise ConflictError("tax year already exists", context={"year": year})
    window = _window(start_date or date(year, 1, 1), end_date or date(year, 12, 31))

    with store.atomic():
        row = store.add(
            TaxYear(
                user_id=int(user_id),
                year=int(year),
                start_date=window.start,
                end_date=window.end,
                is_closed=False,
                tax_rate=_check_rate(tax_rate),
            )
        )
        audit_write(
            store,
            user_id=user_id,
            action="tax_year.create",
            entity_type="TaxYear",
            entity_id=row.id,
            after=row_snapshot(row, _TAX_YEAR_FIELDS),
        )
    return row


def update_tax_year(
    store: Storage,
    tax_year_id: int,
    *,
    user_id: Optional[int] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    tax_rate: Optional[float] = None,
) -> TaxYear:
    with store.atomic():
        ty = must_get_tax_year(store, tax_year_id, user_id=user_id)
        if ty.is_closed:
            raise ConflictError("tax year is closed", context={"tax_year_id": ty.id})

        before = row_snapshot(ty, _TAX_YEAR_FIELDS)
        window = _window(start_date or ty.start_date, end_date or ty.end_date)
        ty.start_date = window.start
        ty.end_date = window.end
        if tax_rate is not None:
            ty.tax_rate = _check_rate(tax_rate)
        audit_write(
            store,
            user_id=ty.user_id,
            action="tax_year.update",
            entity_type="TaxYear",
            entity_id=ty.id,
            before=before,
            after=row_snapshot(ty, _TAX_YEAR_FIELDS),
        )
    return ty


def close_tax_year(
    store: Storage,
    tax_year_id: int,
    *,
    user_id: Optional[int] = None,
    tax_rate: Optional[float] = None,
    now: Optional[datetime] = None,
) -> TaxYear:
    """
    Snapshot the year's totals and freeze it. The stored totals equal what
    summarize() returns for the same window at closing time.
    """
    with store.atomic():
        ty = must_get_tax_year(store, tax_year_id, user_id=user_id)
        if ty.is_closed:
            raise ConflictError("tax year already closed", context={"tax_year_id": ty.id})

        rate = _check_rate(tax_rate) if tax_rate is not None else ty.tax_rate
        summary = summarize(store, ty.user_id, start=ty.start_date, end=ty.end_date)

        before = row_snapshot(ty, _TAX_YEAR_FIELDS)
        ty.total_income = summary.total_income
        ty.total_expenses = summary.total_expenses
        ty.net_income = summary.net_income
        ty.tax_rate = rate
        ty.estimated_tax = estimated_tax(summary.net_income, rate)
        ty.is_closed = True
        ty.closed_at = now or datetime.utcnow()

        audit_write(
            store,
            user_id=ty.user_id,
            action="tax_year.close",
            entity_type="TaxYear",
            entity_id=ty.id,
            before=before,
            after=row_snapshot(ty, _TAX_YEAR_FIELDS),
        )

    log.info("tax year closed", extra={"tax_year_id": ty.id, "user_id": ty.user_id})
    return ty
