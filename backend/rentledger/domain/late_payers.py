# backend/rentledger/domain/late_payers.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Optional, Sequence

LATE_STATUSES = ("late", "overdue")


@dataclass(frozen=True)
class LatePayer:
    tenant: Any
    last_payment: Optional[Any]
    reason: str  # no_payment | not_current_period | flagged_late


def most_recent(payments: Sequence[Any]) -> Optional[Any]:
    if not payments:
        return None
    return max(payments, key=lambda p: (p.due_date, p.id))


def late_reason(last_payment: Optional[Any], today: date) -> Optional[str]:
    if last_payment is None:
        return "no_payment"
    due = last_payment.due_date
    if due.year != today.year or due.month != today.month:
        return "not_current_period"
    if (last_payment.status or "") in LATE_STATUSES:
        return "flagged_late"
    return None


def find_late_payers(
    tenants: Sequence[Any],
    payments_for: Callable[[int], Sequence[Any]],
    today: date,
) -> list[LatePayer]:
    """
    Active tenants whose most recent payment (by due date) is missing, belongs
    to another month, or is flagged late/overdue. Inactive tenants are skipped
    whatever their payment state. Each tenant appears at most once.
    """
    out: list[LatePayer] = []
    seen: set[int] = set()
    for t in tenants:
        if not t.active or int(t.id) in seen:
            continue
        seen.add(int(t.id))
        last = most_recent(payments_for(int(t.id)))
        reason = late_reason(last, today)
        if reason:
            out.append(LatePayer(tenant=t, last_payment=last, reason=reason))
    return out


def overdue_status(due: date, today: date, grace_days: int) -> Optional[str]:
    """Status a still-pending payment should carry on `today`; None if not yet due."""
    days = (today - due).days
    if days <= 0:
        return None
    if days > grace_days:
        return "overdue"
    return "late"
