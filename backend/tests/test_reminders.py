# backend/tests/test_reminders.py
from __future__ import annotations

from datetime import date, datetime

import pytest

from builders import mk_owner, mk_payment, mk_tenant
from rentledger.clients.notifications import DeliveryReceipt, LogNotifier
from rentledger.domain.reminder_policy import can_transition, reminder_type_for
from rentledger.errors import ConflictError, ValidationError
from rentledger.services.late_payment import refresh_payment_statuses
from rentledger.services.pipelines import run_reminder_cycle
from rentledger.services.reminder_scheduler import (
    cancel_reminder,
    create_reminder,
    deliver_pending,
    record_response,
    retry_reminder,
    schedule_reminders,
)

MORNING = datetime(2024, 3, 5, 9, 0)


class FailingNotifier:
    def __init__(self) -> None:
        self.calls = 0

    def send(self, reminder):
        self.calls += 1
        return DeliveryReceipt(ok=False, error="smtp down")


def test_reminder_type_by_days_past_due():
    due = date(2024, 3, 1)
    assert reminder_type_for(due, date(2024, 2, 27), 14) == "upcoming"
    assert reminder_type_for(due, due, 14) == "due"
    assert reminder_type_for(due, date(2024, 3, 15), 14) == "overdue"
    assert reminder_type_for(due, date(2024, 3, 16), 14) == "final"


def test_transition_table():
    assert can_transition("pending", "sent")
    assert can_transition("failed", "pending")
    assert not can_transition("sent", "pending")
    assert not can_transition("cancelled", "pending")


def test_schedule_creates_current_payment_and_one_reminder(store):
    user, _ = mk_owner(store)
    t = mk_tenant(store, user, rent=950.0)

    (r,) = schedule_reminders(store, user.id, date(2024, 3, 5), due_day=1)

    (payment,) = store.list_payments_for_tenant(t.id)
    assert payment.due_date == date(2024, 3, 1)
    assert payment.amount == 950.0
    assert payment.status == "pending"
    assert r.payment_id == payment.id
    assert r.reminder_type == "overdue"
    assert r.reminder_status == "pending"
    assert r.scheduled_date == datetime(2024, 3, 5)
    assert r.email_address == "anna@example.com"
    assert "950.00" in r.message
    assert "We have not received any payments from you yet." in r.message

    # flagged late now, but the payment already has a pending reminder
    refresh_payment_statuses(store, user.id, date(2024, 3, 5))
    assert schedule_reminders(store, user.id, date(2024, 3, 5), due_day=1) == []


def test_schedule_upcoming_when_due_later_in_month(store):
    user, _ = mk_owner(store)
    mk_tenant(store, user)

    (r,) = schedule_reminders(store, user.id, date(2024, 3, 5), due_day=10)

    assert r.reminder_type == "upcoming"
    assert r.subject == "Upcoming Rent Payment"


def test_schedule_final_notice_for_long_overdue_payment(store):
    user, _ = mk_owner(store)
    t = mk_tenant(store, user)
    mk_payment(store, t, due=date(2024, 2, 1), status="received")
    p = mk_payment(store, t, due=date(2024, 3, 1), status="overdue")

    (r,) = schedule_reminders(store, user.id, date(2024, 3, 20), final_grace_days=14)

    assert r.payment_id == p.id
    assert r.reminder_type == "final"
    assert "Your last payment of 950.00 was received on 2024-02-01." in r.message


def test_tenant_without_rent_amount_is_not_reminded(store):
    user, _ = mk_owner(store)
    mk_tenant(store, user, rent=None)

    assert schedule_reminders(store, user.id, date(2024, 3, 5)) == []


def test_duplicate_pending_reminder_conflicts(store):
    user, _ = mk_owner(store)
    p = mk_payment(store, mk_tenant(store, user), due=date(2024, 3, 1))
    create_reminder(store, payment_id=p.id, reminder_type="custom", message="Please call us.")

    with pytest.raises(ConflictError):
        create_reminder(store, payment_id=p.id, reminder_type="custom")
    with pytest.raises(ValidationError):
        create_reminder(store, payment_id=p.id, reminder_type="shout")
    assert len(store.list_reminders_for_payment(p.id)) == 1


def test_deliver_marks_sent_and_counts_on_payment(store):
    user, _ = mk_owner(store)
    t = mk_tenant(store, user)
    (r,) = schedule_reminders(store, user.id, date(2024, 3, 5))
    notifier = LogNotifier()

    report = deliver_pending(store, notifier, user.id, now=MORNING)

    assert report.sent == [r.id] and report.failed == []
    assert notifier.sent == [r.id]
    sent = store.get_reminder(r.id)
    assert sent.reminder_status == "sent"
    assert sent.sent_date == MORNING
    assert sent.attempts == 1
    assert sent.notification_id.startswith("log-")
    (payment,) = store.list_payments_for_tenant(t.id)
    assert payment.reminders_sent == 1
    assert payment.last_reminder_date == MORNING

    assert deliver_pending(store, notifier, user.id, now=MORNING).sent == []


def test_future_reminders_wait(store):
    user, _ = mk_owner(store)
    p = mk_payment(store, mk_tenant(store, user), due=date(2024, 3, 10))
    create_reminder(store, payment_id=p.id, reminder_type="upcoming", scheduled_date=datetime(2024, 3, 7))

    report = deliver_pending(store, LogNotifier(), user.id, now=MORNING)

    assert (report.sent, report.failed) == ([], [])


def test_failed_delivery_then_retry(store):
    user, _ = mk_owner(store)
    mk_tenant(store, user)
    (r,) = schedule_reminders(store, user.id, date(2024, 3, 5))
    failing = FailingNotifier()

    report = deliver_pending(store, failing, user.id, now=MORNING)

    assert report.failed == [r.id]
    failed = store.get_reminder(r.id)
    assert failed.reminder_status == "failed"
    assert failed.last_error == "smtp down"

    later = datetime(2024, 3, 6, 9, 0)
    retried = retry_reminder(store, r.id, now=later)
    assert retried.reminder_status == "pending"
    assert retried.scheduled_date == later

    report = deliver_pending(store, LogNotifier(), user.id, now=later)
    assert report.sent == [r.id]
    assert store.get_reminder(r.id).attempts == 2
    assert store.get_reminder(r.id).last_error is None


def test_retry_refused_while_a_newer_reminder_of_the_same_type_is_pending(store):
    user, _ = mk_owner(store)
    mk_tenant(store, user)
    (first,) = schedule_reminders(store, user.id, date(2024, 3, 5))
    deliver_pending(store, FailingNotifier(), user.id, now=MORNING)

    refresh_payment_statuses(store, user.id, date(2024, 3, 6))
    (second,) = schedule_reminders(store, user.id, date(2024, 3, 6))
    assert (second.payment_id, second.reminder_type) == (first.payment_id, first.reminder_type)

    with pytest.raises(ConflictError):
        retry_reminder(store, first.id)

    pending = store.list_reminders(user.id, status="pending")
    assert [r.id for r in pending] == [second.id]
    assert store.get_reminder(first.id).reminder_status == "failed"


def test_notifier_runs_outside_the_storage_transaction(store):
    user, _ = mk_owner(store)
    mk_tenant(store, user)
    (r,) = schedule_reminders(store, user.id, date(2024, 3, 5))
    depths = []

    class RecordingNotifier(LogNotifier):
        def send(self, reminder):
            depths.append(store._depth)
            return super().send(reminder)

    deliver_pending(store, RecordingNotifier(), user.id, now=MORNING)

    assert depths == [0]
    assert store.get_reminder(r.id).reminder_status == "sent"


def test_missing_email_fails_without_calling_notifier(store):
    user, _ = mk_owner(store)
    mk_tenant(store, user, email=None)
    (r,) = schedule_reminders(store, user.id, date(2024, 3, 5))
    notifier = FailingNotifier()

    deliver_pending(store, notifier, user.id, now=MORNING)

    assert notifier.calls == 0
    assert store.get_reminder(r.id).last_error == "tenant has no email address"


def test_cancel_and_response_follow_the_state_machine(store):
    user, _ = mk_owner(store)
    t = mk_tenant(store, user)
    a = create_reminder(store, payment_id=mk_payment(store, t, due=date(2024, 3, 1)).id, reminder_type="due")
    b = create_reminder(store, payment_id=mk_payment(store, t, due=date(2024, 4, 1)).id, reminder_type="upcoming")

    with pytest.raises(ConflictError):
        record_response(store, a.id, message="paid yesterday")
    with pytest.raises(ConflictError):
        retry_reminder(store, a.id)

    assert cancel_reminder(store, b.id).reminder_status == "cancelled"
    deliver_pending(store, LogNotifier(), user.id, now=datetime.utcnow())

    with pytest.raises(ConflictError):
        cancel_reminder(store, a.id)

    answered = record_response(store, a.id, message="paid yesterday", now=MORNING)
    assert answered.reminder_status == "sent"
    assert answered.response_received is True
    assert answered.response_message == "paid yesterday"
    assert answered.response_date == MORNING


def test_reminder_cycle_flags_schedules_and_delivers(store):
    user, _ = mk_owner(store)
    t = mk_tenant(store, user)
    mk_payment(store, t, due=date(2024, 2, 1), status="received")
    notifier = LogNotifier()

    cycle = run_reminder_cycle(store, notifier, user.id, today=date(2024, 3, 5), now=MORNING)

    out = cycle.as_dict()
    assert out["refreshed_payments"] == []
    assert len(out["scheduled"]) == 1
    assert out["sent"] == out["scheduled"] == notifier.sent
    assert out["failed"] == []
