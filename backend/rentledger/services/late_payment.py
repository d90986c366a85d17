# backend/rentledger/services/late_payment.py
from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Optional

from ..config import settings
from ..domain.audit import audit_write
from ..domain.late_payers import LatePayer, find_late_payers, overdue_status
from ..models import Payment
from ..storage.base import Storage

log = logging.getLogger("rentledger.late_payments")


def late_tenants(store: Storage, user_id: int, today: Optional[date] = None) -> list[LatePayer]:
    """Read-only: active tenants with no received payment for today's month."""
    today = today or date.today()
    return find_late_payers(
        store.list_tenants(user_id, active_only=True),
        store.list_payments_for_tenant,
        today,
    )


def refresh_payment_statuses(
    store: Storage,
    user_id: int,
    today: Optional[date] = None,
    *,
    grace_days: Optional[int] = None,
) -> list[Payment]:
    """
    Move pending payments past their due date to late, and late ones past the
    grace period to overdue. Received and waived payments are never touched.
    """
    today = today or date.today()
    grace = settings.reminder_final_grace_days if grace_days is None else int(grace_days)
    changed: list[Payment] = []

    with store.atomic():
        for p in store.list_payments(user_id, statuses=("pending", "late")):
            target = overdue_status(p.due_date, today, grace)
            if target is None or target == p.status:
                continue
            before = p.status
            p.status = target
            p.updated_at = datetime.utcnow()
            audit_write(
                store,
                user_id=user_id,
                action=f"payment.{target}",
                entity_type="Payment",
                entity_id=p.id,
                before={"status": before},
                after={"status": target},
            )
            changed.append(p)

    for p in changed:
        log.info("payment marked %s", p.status, extra={"payment_id": p.id, "tenant_id": p.tenant_id, "user_id": user_id})
    return changed
