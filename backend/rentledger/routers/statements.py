# backend/rentledger/routers/statements.py
from __future__ import annotations

import base64

from fastapi import APIRouter, Depends, File, Form, UploadFile

from ..auth import get_principal
from ..clients.extraction import ExtractionClient
from ..deps import get_extraction_client, get_storage
from ..schemas import (
    BankStatementOut,
    BankTransactionOut,
    ClassifyResultOut,
    IngestResultOut,
    IngestStatementIn,
    StatementDetailOut,
)
from ..services.classifier import classify
from ..services.ownership import must_get_statement
from ..services.pipelines import process_upload
from ..services.statement_intake import ingest_statement
from ..storage.base import Storage

router = APIRouter(prefix="/statements", tags=["statements"])


@router.post("", response_model=IngestResultOut)
def ingest(payload: IngestStatementIn, store: Storage = Depends(get_storage), p=Depends(get_principal)):
    result = ingest_statement(
        store,
        account_id=payload.account_id,
        metadata=payload.metadata,
        raw_transactions=payload.transactions,
        user_id=p.user_id,
    )
    return IngestResultOut.from_result(result)


@router.post("/extract")
def extract_and_ingest(
    account_id: int = Form(...),
    file: UploadFile = File(...),
    background: bool = Form(False),
    store: Storage = Depends(get_storage),
    client: ExtractionClient = Depends(get_extraction_client),
    p=Depends(get_principal),
):
    file_type = (file.filename or "").rsplit(".", 1)[-1] if "." in (file.filename or "") else ""
    data = file.file.read()

    if background:
        from ..workers.tasks import process_statement_upload

        job = process_statement_upload.delay(p.user_id, account_id, base64.b64encode(data).decode(), file_type)
        return {"queued": True, "task_id": job.id}

    outcome = process_upload(
        store,
        client,
        account_id=account_id,
        file_bytes=data,
        file_type=file_type,
        user_id=p.user_id,
    )
    return {
        "ingest": IngestResultOut.from_result(outcome.ingest).model_dump(mode="json"),
        "classification": (
            ClassifyResultOut.model_validate(outcome.classification).model_dump(mode="json")
            if outcome.classification is not None
            else None
        ),
    }


@router.get("/{statement_id}", response_model=StatementDetailOut)
def get_statement(statement_id: int, store: Storage = Depends(get_storage), p=Depends(get_principal)):
    stmt = must_get_statement(store, statement_id, user_id=p.user_id)
    return StatementDetailOut(
        statement=BankStatementOut.model_validate(stmt),
        transactions=[BankTransactionOut.model_validate(t) for t in store.list_statement_transactions(stmt.id)],
    )


@router.post("/{statement_id}/classify", response_model=ClassifyResultOut)
def classify_statement(statement_id: int, store: Storage = Depends(get_storage), p=Depends(get_principal)):
    return classify(store, statement_id, user_id=p.user_id)
