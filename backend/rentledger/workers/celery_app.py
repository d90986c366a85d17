# backend/rentledger/workers/celery_app.py
from __future__ import annotations

from celery import Celery

from ..config import settings

BROKER = settings.celery_broker_url or "redis://localhost:6379/0"
BACKEND = settings.celery_result_backend or "redis://localhost:6379/1"

celery_app = Celery(
    "rentledger",
    broker=BROKER,
    backend=BACKEND,
    include=["rentledger.workers.tasks"],
)

celery_app.conf.update(
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_reject_on_worker_lost=True,
    task_track_started=True,
    timezone="UTC",
)

# statement uploads are slow (extraction round trip); reminders are a periodic sweep
celery_app.conf.task_routes = {
    "rentledger.workers.tasks.process_statement_upload": {"queue": "statements"},
    "rentledger.workers.tasks.run_reminder_cycle": {"queue": "reminders"},
}
