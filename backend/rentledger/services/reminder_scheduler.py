# backend/rentledger/services/reminder_scheduler.py
from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional

from ..clients.notifications import DeliveryReceipt, ReminderNotifier
from ..config import settings
from ..domain.audit import audit_write, row_snapshot
from ..domain.late_payers import most_recent
from ..domain.ledger_math import month_window
from ..domain.reminder_policy import ACTIVE_STATUSES, assert_transition, compose_message, reminder_type_for
from ..errors import ConflictError, ValidationError
from ..models import REMINDER_TYPES, Payment, PaymentReminder, Tenant
from ..storage.base import Storage
from .late_payment import late_tenants
from .ownership import must_get_payment, must_get_reminder, must_get_tenant

log = logging.getLogger("rentledger.reminders")

# payments in these states are not chased
SETTLED_STATUSES = ("received", "waived")

_REMINDER_FIELDS = ("reminder_status", "attempts", "sent_date", "last_error", "notification_id")


@dataclass
class DeliveryReport:
    sent: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)


def _due_date_for(today: date, due_day: int) -> date:
    last = calendar.monthrange(today.year, today.month)[1]
    return date(today.year, today.month, max(1, min(int(due_day), last)))


def current_period_payment(
    store: Storage,
    tenant: Tenant,
    today: date,
    *,
    due_day: Optional[int] = None,
) -> Optional[Payment]:
    """
    The payment a reminder for `today` should point at: the most recent
    unsettled payment due this month. A tenant without any payment for this
    month gets a pending one at their rent amount. Returns None when this
    month is already settled or there is no rent amount to charge.
    """
    month = month_window(today)
    in_month = [p for p in store.list_payments_for_tenant(tenant.id) if month.contains(p.due_date)]
    open_ = [p for p in in_month if p.status not in SETTLED_STATUSES]
    if open_:
        return open_[0]
    if in_month or tenant.rent_amount is None:
        return None

    now = datetime.utcnow()
    payment = store.add(
        Payment(
            user_id=int(tenant.user_id),
            tenant_id=int(tenant.id),
            property_id=tenant.property_id,
            amount=float(tenant.rent_amount),
            due_date=_due_date_for(today, settings.rent_due_day if due_day is None else due_day),
            status="pending",
            created_at=now,
            updated_at=now,
        )
    )
    audit_write(
        store,
        user_id=tenant.user_id,
        action="payment.create",
        entity_type="Payment",
        entity_id=payment.id,
        after={"tenant_id": payment.tenant_id, "amount": payment.amount, "due_date": payment.due_date},
    )
    return payment


def _refuse_second_pending(
    store: Storage, payment_id: int, reminder_type: str, *, reminder_id: Optional[int] = None
) -> None:
    """At most one pending reminder per (payment, reminder type)."""
    dup = [
        r
        for r in store.list_reminders_for_payment(payment_id)
        if r.reminder_type == reminder_type and r.reminder_status == "pending" and r.id != reminder_id
    ]
    if dup:
        raise ConflictError(
            "a pending reminder of this type already exists",
            context={"payment_id": payment_id, "reminder_type": reminder_type, "reminder_id": dup[0].id},
        )


def create_reminder(
    store: Storage,
    *,
    payment_id: int,
    reminder_type: str,
    user_id: Optional[int] = None,
    message: Optional[str] = None,
    scheduled_date: Optional[datetime] = None,
    channel: Optional[str] = None,
    now: Optional[datetime] = None,
) -> PaymentReminder:
    if reminder_type not in REMINDER_TYPES:
        raise ValidationError(f"reminder_type must be one of {REMINDER_TYPES}", context={"reminder_type": reminder_type})

    now = now or datetime.utcnow()
    with store.atomic():
        payment = must_get_payment(store, payment_id, user_id=user_id)
        tenant = must_get_tenant(store, payment.tenant_id)

        _refuse_second_pending(store, payment.id, reminder_type)

        received = [p for p in store.list_payments_for_tenant(tenant.id) if p.status == "received"]
        subject, body = compose_message(
            reminder_type=reminder_type,
            tenant=tenant,
            payment=payment,
            last_paid=most_recent(received),
            extra=message,
        )
        row = store.add(
            PaymentReminder(
                payment_id=int(payment.id),
                tenant_id=int(tenant.id),
                user_id=int(payment.user_id),
                reminder_type=reminder_type,
                reminder_status="pending",
                scheduled_date=scheduled_date or now,
                subject=subject,
                message=body,
                delivery_channel=channel or settings.reminder_channel,
                email_address=tenant.email,
                phone_number=tenant.phone,
                attempts=0,
                created_at=now,
                updated_at=now,
            )
        )
        audit_write(
            store,
            user_id=row.user_id,
            action="reminder.create",
            entity_type="PaymentReminder",
            entity_id=row.id,
            after={"payment_id": row.payment_id, "reminder_type": row.reminder_type},
        )
    log.info(
        "%s reminder scheduled",
        reminder_type,
        extra={"reminder_id": row.id, "payment_id": row.payment_id, "tenant_id": row.tenant_id, "user_id": row.user_id},
    )
    return row


def schedule_reminders(
    store: Storage,
    user_id: int,
    today: Optional[date] = None,
    *,
    final_grace_days: Optional[int] = None,
    due_day: Optional[int] = None,
) -> list[PaymentReminder]:
    """
    One reminder per late tenant's current-period payment, unless that
    payment already has a pending or sent reminder.
    """
    today = today or date.today()
    grace = settings.reminder_final_grace_days if final_grace_days is None else int(final_grace_days)
    created: list[PaymentReminder] = []

    for late in late_tenants(store, user_id, today):
        with store.atomic():
            payment = current_period_payment(store, late.tenant, today, due_day=due_day)
            if payment is None:
                continue
            existing = store.list_reminders_for_payment(payment.id)
            if any(r.reminder_status in ACTIVE_STATUSES for r in existing):
                continue
            created.append(
                create_reminder(
                    store,
                    payment_id=payment.id,
                    reminder_type=reminder_type_for(payment.due_date, today, grace),
                    now=datetime.combine(today, datetime.min.time()),
                )
            )
    return created


# -----------------------------------------------------------------------------
# Delivery state machine
# -----------------------------------------------------------------------------
def deliver_reminder(
    store: Storage,
    notifier: ReminderNotifier,
    reminder: PaymentReminder,
    *,
    now: Optional[datetime] = None,
) -> PaymentReminder:
    now = now or datetime.utcnow()
    # only pending reminders go out; checked before anything leaves the process
    assert_transition(reminder.reminder_status, "sent", reminder_id=reminder.id)
    before = row_snapshot(reminder, _REMINDER_FIELDS)

    # the notifier call stays outside atomic(): no lock or open transaction across network I/O
    if reminder.delivery_channel == "email" and not reminder.email_address:
        receipt = DeliveryReceipt(ok=False, error="tenant has no email address")
    elif reminder.delivery_channel != "email" and not reminder.phone_number:
        receipt = DeliveryReceipt(ok=False, error="tenant has no phone number")
    else:
        receipt = notifier.send(reminder)

    with store.atomic():
        reminder.attempts = int(reminder.attempts or 0) + 1
        if receipt.ok:
            reminder.reminder_status = "sent"
            reminder.sent_date = now
            reminder.notification_id = receipt.notification_id
            reminder.last_error = None

            payment = store.get_payment(reminder.payment_id, for_update=True)
            if payment is not None:
                payment.reminders_sent = int(payment.reminders_sent or 0) + 1
                payment.last_reminder_date = now
                payment.updated_at = now
        else:
            reminder.reminder_status = "failed"
            reminder.last_error = receipt.error or "delivery failed"

        reminder.updated_at = now
        audit_write(
            store,
            user_id=reminder.user_id,
            action=f"reminder.{reminder.reminder_status}",
            entity_type="PaymentReminder",
            entity_id=reminder.id,
            before=before,
            after=row_snapshot(reminder, _REMINDER_FIELDS),
        )

    if receipt.ok:
        log.info("reminder sent", extra={"reminder_id": reminder.id, "payment_id": reminder.payment_id})
    else:
        log.warning(
            "reminder delivery failed: %s",
            reminder.last_error,
            extra={"reminder_id": reminder.id, "payment_id": reminder.payment_id},
        )
    return reminder


def deliver_pending(
    store: Storage,
    notifier: ReminderNotifier,
    user_id: int,
    *,
    now: Optional[datetime] = None,
) -> DeliveryReport:
    """Hand every pending reminder whose scheduled time has come to the notifier."""
    now = now or datetime.utcnow()
    report = DeliveryReport()
    for r in store.list_reminders(user_id, status="pending"):
        if r.scheduled_date is not None and r.scheduled_date > now:
            continue
        deliver_reminder(store, notifier, r, now=now)
        (report.sent if r.reminder_status == "sent" else report.failed).append(int(r.id))
    return report


def _transition(
    store: Storage,
    reminder_id: int,
    target: str,
    *,
    user_id: Optional[int],
    now: Optional[datetime],
) -> PaymentReminder:
    now = now or datetime.utcnow()
    with store.atomic():
        r = must_get_reminder(store, reminder_id, user_id=user_id)
        assert_transition(r.reminder_status, target, reminder_id=r.id)
        if target == "pending":
            _refuse_second_pending(store, r.payment_id, r.reminder_type, reminder_id=r.id)
        before = row_snapshot(r, _REMINDER_FIELDS)
        r.reminder_status = target
        if target == "pending":
            r.scheduled_date = now
        r.updated_at = now
        audit_write(
            store,
            user_id=r.user_id,
            action=f"reminder.{target}",
            entity_type="PaymentReminder",
            entity_id=r.id,
            before=before,
            after=row_snapshot(r, _REMINDER_FIELDS),
        )
    return r


def cancel_reminder(
    store: Storage, reminder_id: int, *, user_id: Optional[int] = None, now: Optional[datetime] = None
) -> PaymentReminder:
    return _transition(store, reminder_id, "cancelled", user_id=user_id, now=now)


def retry_reminder(
    store: Storage, reminder_id: int, *, user_id: Optional[int] = None, now: Optional[datetime] = None
) -> PaymentReminder:
    """failed -> pending, rescheduled for now. The last error is kept until the next attempt."""
    return _transition(store, reminder_id, "pending", user_id=user_id, now=now)


def record_response(
    store: Storage,
    reminder_id: int,
    *,
    message: Optional[str] = None,
    user_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> PaymentReminder:
    """Tenant replied to a sent reminder. The status stays sent."""
    now = now or datetime.utcnow()
    with store.atomic():
        r = must_get_reminder(store, reminder_id, user_id=user_id)
        if r.reminder_status != "sent":
            raise ConflictError(
                "only sent reminders can record a response",
                context={"reminder_id": r.id, "status": r.reminder_status},
            )
        r.response_received = True
        r.response_date = now
        r.response_message = message
        r.updated_at = now
        audit_write(
            store,
            user_id=r.user_id,
            action="reminder.response",
            entity_type="PaymentReminder",
            entity_id=r.id,
            after={"response_message": message},
        )
    return r
