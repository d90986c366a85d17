# backend/rentledger/workers/tasks.py
from __future__ import annotations

import base64
import logging
from datetime import date
from functools import lru_cache
from typing import Optional

from ..clients.extraction import ExtractionClient
from ..clients.notifications import build_notifier
from ..config import settings
from ..errors import RentLedgerError
from ..middleware.request_id import bound_request_id
from ..schemas import ClassifyResultOut, IngestResultOut
from ..services import pipelines
from ..storage import StorageProvider, build_storage_provider
from .celery_app import celery_app

log = logging.getLogger("rentledger.workers")


@lru_cache(maxsize=1)
def _storage_provider() -> StorageProvider:
    # one provider per worker process, built on first task
    return build_storage_provider(settings)


@celery_app.task(name="rentledger.workers.tasks.process_statement_upload")
def process_statement_upload(user_id: int, account_id: int, file_b64: str, file_type: str) -> dict:
    """Extraction + intake + classification off the request path. File bytes travel base64-encoded."""
    with bound_request_id(process_statement_upload.request.id), _storage_provider().session() as store:
        try:
            outcome = pipelines.process_upload(
                store,
                ExtractionClient(),
                account_id=int(account_id),
                file_bytes=base64.b64decode(file_b64),
                file_type=file_type,
                user_id=int(user_id),
            )
        except RentLedgerError as e:
            log.warning("statement upload rejected: %s", e.message, extra={"user_id": user_id})
            return {"ok": False, **e.as_dict()}

    return {
        "ok": True,
        "ingest": IngestResultOut.from_result(outcome.ingest).model_dump(mode="json"),
        "classification": (
            ClassifyResultOut.model_validate(outcome.classification).model_dump(mode="json")
            if outcome.classification is not None
            else None
        ),
    }


@celery_app.task(name="rentledger.workers.tasks.run_reminder_cycle")
def run_reminder_cycle(user_id: int, today: Optional[str] = None) -> dict:
    """Periodic detector + scheduler + delivery sweep for one user (driven by beat or cron)."""
    day = date.fromisoformat(today) if today else None
    with bound_request_id(run_reminder_cycle.request.id), _storage_provider().session() as store:
        cycle = pipelines.run_reminder_cycle(store, build_notifier(settings), int(user_id), today=day)
    return {"ok": True, **cycle.as_dict()}
