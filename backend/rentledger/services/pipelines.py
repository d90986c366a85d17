# backend/rentledger/services/pipelines.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Optional

from ..clients.extraction import ExtractionClient
from ..clients.notifications import ReminderNotifier
from ..storage.base import Storage
from .classifier import ClassifyResult, classify
from .late_payment import refresh_payment_statuses
from .reminder_scheduler import DeliveryReport, deliver_pending, schedule_reminders
from .statement_intake import IngestResult, ingest_extracted

log = logging.getLogger("rentledger.pipelines")


@dataclass
class UploadOutcome:
    ingest: IngestResult
    classification: Optional[ClassifyResult] = None


@dataclass
class ReminderCycle:
    refreshed_payments: list[int] = field(default_factory=list)
    scheduled: list[int] = field(default_factory=list)
    delivery: DeliveryReport = field(default_factory=DeliveryReport)

    def as_dict(self) -> dict[str, Any]:
        return {
            "refreshed_payments": self.refreshed_payments,
            "scheduled": self.scheduled,
            "sent": self.delivery.sent,
            "failed": self.delivery.failed,
        }


def process_upload(
    store: Storage,
    client: ExtractionClient,
    *,
    account_id: int,
    file_bytes: bytes,
    file_type: str,
    user_id: Optional[int] = None,
) -> UploadOutcome:
    """Extraction, intake and classification of one uploaded statement file."""
    extraction = client.extract(file_bytes, file_type)
    ingest = ingest_extracted(store, account_id=account_id, extraction=extraction, user_id=user_id)
    if not ingest.statement.processed:
        return UploadOutcome(ingest=ingest)
    return UploadOutcome(ingest=ingest, classification=classify(store, ingest.statement.id, user_id=user_id))


def run_reminder_cycle(
    store: Storage,
    notifier: ReminderNotifier,
    user_id: int,
    *,
    today: Optional[date] = None,
    now: Optional[datetime] = None,
) -> ReminderCycle:
    """Periodic job body: flag late payments, schedule reminders, deliver what is due."""
    today = today or date.today()
    cycle = ReminderCycle()
    cycle.refreshed_payments = [int(p.id) for p in refresh_payment_statuses(store, user_id, today)]
    cycle.scheduled = [int(r.id) for r in schedule_reminders(store, user_id, today)]
    cycle.delivery = deliver_pending(store, notifier, user_id, now=now)
    log.info(
        "reminder cycle done scheduled=%s sent=%s failed=%s",
        len(cycle.scheduled),
        len(cycle.delivery.sent),
        len(cycle.delivery.failed),
        extra={"user_id": user_id},
    )
    return cycle
