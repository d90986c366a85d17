# backend/rentledger/domain/ledger_math.py
from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Iterable, Optional


@dataclass(frozen=True)
class DateWindow:
    start: date
    end: date

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError("window end is before start")

    def contains(self, d: date) -> bool:
        return self.start <= d <= self.end

    def intersect(self, start: date, end: Optional[date]) -> Optional["DateWindow"]:
        s = max(self.start, start)
        e = min(self.end, end or date.max)
        if e < s:
            return None
        return DateWindow(s, e)


@dataclass(frozen=True)
class CategoryAmount:
    category_id: int
    category_name: str
    amount: float


@dataclass(frozen=True)
class LedgerSummary:
    start: date
    end: date
    total_income: float
    total_expenses: float
    net_income: float
    income_by_category: list[CategoryAmount] = field(default_factory=list)
    expenses_by_category: list[CategoryAmount] = field(default_factory=list)


@dataclass(frozen=True)
class BudgetVariance:
    budget_id: int
    budget_name: str
    budget_amount: float
    actual_amount: float
    variance: float
    # None when budget_amount is 0: there is no meaningful percentage
    percent_used: Optional[float]
    period_start: Optional[date]
    period_end: Optional[date]

    @property
    def percent_used_defined(self) -> bool:
        return self.percent_used is not None


# ---- windows ----
def month_window(d: date) -> DateWindow:
    last = calendar.monthrange(d.year, d.month)[1]
    return DateWindow(date(d.year, d.month, 1), date(d.year, d.month, last))


def quarter_window(d: date) -> DateWindow:
    q_start_month = ((d.month - 1) // 3) * 3 + 1
    q_end_month = q_start_month + 2
    last = calendar.monthrange(d.year, q_end_month)[1]
    return DateWindow(date(d.year, q_start_month, 1), date(d.year, q_end_month, last))


def year_window(d: date) -> DateWindow:
    return DateWindow(date(d.year, 1, 1), date(d.year, 12, 31))


def timeframe_window(timeframe: str, today: date) -> DateWindow:
    """Window from the start of the current month/quarter/year through today."""
    tf = (timeframe or "").strip().lower()
    if tf == "month":
        start = month_window(today).start
    elif tf == "quarter":
        start = quarter_window(today).start
    elif tf == "year":
        start = year_window(today).start
    else:
        raise ValueError(f"unknown timeframe {timeframe!r} (month|quarter|year)")
    return DateWindow(start, today)


def period_window(period: str, today: date) -> DateWindow:
    p = (period or "monthly").strip().lower()
    if p == "monthly":
        return month_window(today)
    if p == "quarterly":
        return quarter_window(today)
    if p == "annual":
        return year_window(today)
    raise ValueError(f"unknown budget period {period!r}")


# ---- sums ----
def summarize_entries(
    entries: Iterable[Any],
    category_names: dict[int, str],
    window: DateWindow,
) -> LedgerSummary:
    """
    Sum ledger entries by type and category.

    Entries outside the window and entries whose type is neither income nor
    expense are ignored. Amounts are summed as stored; nothing is rounded.
    Breakdowns are ordered by category id.
    """
    income: dict[int, float] = {}
    expenses: dict[int, float] = {}
    total_income = 0.0
    total_expenses = 0.0

    for e in entries:
        if not window.contains(e.txn_date):
            continue
        amt = abs(float(e.amount or 0.0))
        typ = (e.txn_type or "").lower()
        if typ == "income":
            total_income += amt
            if e.category_id is not None:
                income[int(e.category_id)] = income.get(int(e.category_id), 0.0) + amt
        elif typ == "expense":
            total_expenses += amt
            if e.category_id is not None:
                expenses[int(e.category_id)] = expenses.get(int(e.category_id), 0.0) + amt

    def _rows(by_cat: dict[int, float]) -> list[CategoryAmount]:
        return [
            CategoryAmount(category_id=cid, category_name=category_names.get(cid, "Unknown"), amount=amt)
            for cid, amt in sorted(by_cat.items())
        ]

    return LedgerSummary(
        start=window.start,
        end=window.end,
        total_income=total_income,
        total_expenses=total_expenses,
        net_income=total_income - total_expenses,
        income_by_category=_rows(income),
        expenses_by_category=_rows(expenses),
    )


def percent_used(actual: float, budget_amount: float) -> Optional[float]:
    if not budget_amount:
        return None
    return float(actual) / float(budget_amount) * 100.0


def budget_variance(
    *,
    budget_id: int,
    budget_name: str,
    budget_amount: float,
    actual_amount: float,
    window: Optional[DateWindow],
) -> BudgetVariance:
    return BudgetVariance(
        budget_id=int(budget_id),
        budget_name=str(budget_name),
        budget_amount=float(budget_amount),
        actual_amount=float(actual_amount),
        variance=float(budget_amount) - float(actual_amount),
        percent_used=percent_used(actual_amount, budget_amount),
        period_start=window.start if window else None,
        period_end=window.end if window else None,
    )


def estimated_tax(net_income: float, tax_rate: Optional[float]) -> Optional[float]:
    """Flat rate on positive net income; a loss year owes nothing."""
    if tax_rate is None:
        return None
    return max(float(net_income), 0.0) * float(tax_rate)
