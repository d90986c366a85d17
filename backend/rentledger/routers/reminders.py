# backend/rentledger/routers/reminders.py
from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..auth import get_principal
from ..clients.notifications import ReminderNotifier
from ..deps import get_notifier, get_storage
from ..schemas import PaymentReminderOut, ReminderCreateIn, ReminderResponseIn
from ..services.reminder_scheduler import (
    cancel_reminder,
    create_reminder,
    deliver_pending,
    record_response,
    retry_reminder,
    schedule_reminders,
)
from ..storage.base import Storage

router = APIRouter(prefix="/reminders", tags=["reminders"])


@router.post("/schedule", response_model=list[PaymentReminderOut])
def schedule(
    today: Optional[date] = Query(default=None),
    store: Storage = Depends(get_storage),
    p=Depends(get_principal),
):
    return schedule_reminders(store, p.user_id, today)


@router.post("", response_model=PaymentReminderOut)
def create(payload: ReminderCreateIn, store: Storage = Depends(get_storage), p=Depends(get_principal)):
    return create_reminder(
        store,
        payment_id=payload.payment_id,
        reminder_type=payload.reminder_type,
        user_id=p.user_id,
        message=payload.message,
        scheduled_date=payload.scheduled_date,
    )


@router.post("/deliver")
def deliver(
    store: Storage = Depends(get_storage),
    notifier: ReminderNotifier = Depends(get_notifier),
    p=Depends(get_principal),
):
    report = deliver_pending(store, notifier, p.user_id)
    return {"sent": report.sent, "failed": report.failed}


@router.post("/{reminder_id}/cancel", response_model=PaymentReminderOut)
def cancel(reminder_id: int, store: Storage = Depends(get_storage), p=Depends(get_principal)):
    return cancel_reminder(store, reminder_id, user_id=p.user_id)


@router.post("/{reminder_id}/retry", response_model=PaymentReminderOut)
def retry(reminder_id: int, store: Storage = Depends(get_storage), p=Depends(get_principal)):
    return retry_reminder(store, reminder_id, user_id=p.user_id)


@router.post("/{reminder_id}/response", response_model=PaymentReminderOut)
def response(
    reminder_id: int,
    payload: ReminderResponseIn,
    store: Storage = Depends(get_storage),
    p=Depends(get_principal),
):
    return record_response(store, reminder_id, message=payload.message, user_id=p.user_id)
