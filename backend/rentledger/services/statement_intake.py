# backend/rentledger/services/statement_intake.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError

from ..clients.extraction import ExtractionResult
from ..config import settings
from ..domain.audit import audit_write
from ..errors import ConflictError, ValidationError
from ..models import BankStatement, BankTransaction
from ..schemas import RawTransactionIn, StatementMetadataIn
from ..storage.base import Storage
from .ownership import must_get_account, must_get_statement

log = logging.getLogger("rentledger.intake")


@dataclass(frozen=True)
class RecordError:
    index: int
    error: str


@dataclass
class IngestResult:
    statement: BankStatement
    created: int = 0
    errors: list[RecordError] = field(default_factory=list)
    validation_errors: list[ValidationError] = field(default_factory=list)


def describe_validation_error(e: PydanticValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = ".".join(str(x) for x in err.get("loc", ()) if x != "__root__")
        msg = str(err.get("msg", "invalid"))
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts) or "invalid record"


def parse_records(raw: Sequence[Any]) -> tuple[list[tuple[int, RawTransactionIn]], list[RecordError]]:
    """Validate each raw record on its own; the index is the record's position in the input."""
    good: list[tuple[int, RawTransactionIn]] = []
    bad: list[RecordError] = []
    for i, rec in enumerate(raw or []):
        if isinstance(rec, RawTransactionIn):
            good.append((i, rec))
            continue
        if not isinstance(rec, dict):
            bad.append(RecordError(index=i, error="record is not an object"))
            continue
        try:
            good.append((i, RawTransactionIn.model_validate(rec)))
        except PydanticValidationError as e:
            bad.append(RecordError(index=i, error=describe_validation_error(e)))
    return good, bad


def balance_problems(
    stmt: BankStatement,
    *,
    declared_count: Optional[int],
    tolerance: float,
) -> list[ValidationError]:
    out: list[ValidationError] = []
    expected_end = float(stmt.starting_balance) + float(stmt.total_deposits) - float(stmt.total_withdrawals)
    diff = expected_end - float(stmt.ending_balance)
    # epsilon keeps a difference of exactly the tolerance inside it
    if abs(diff) > tolerance + 1e-9:
        out.append(
            ValidationError(
                "statement balance does not reconcile",
                context={
                    "statement_id": stmt.id,
                    "starting_balance": stmt.starting_balance,
                    "total_deposits": stmt.total_deposits,
                    "total_withdrawals": stmt.total_withdrawals,
                    "ending_balance": stmt.ending_balance,
                    "expected_ending_balance": round(expected_end, 2),
                    "difference": round(diff, 2),
                },
            )
        )
    if declared_count is not None and int(declared_count) != int(stmt.transaction_count):
        out.append(
            ValidationError(
                "declared transaction count does not match persisted records",
                context={
                    "statement_id": stmt.id,
                    "declared": int(declared_count),
                    "persisted": int(stmt.transaction_count),
                },
            )
        )
    return out


def _coerce_metadata(metadata: StatementMetadataIn | dict[str, Any]) -> StatementMetadataIn:
    if isinstance(metadata, StatementMetadataIn):
        return metadata
    try:
        return StatementMetadataIn.model_validate(metadata)
    except PydanticValidationError as e:
        raise ValidationError(f"invalid statement metadata: {describe_validation_error(e)}") from e


def create_statement(
    store: Storage,
    *,
    account_id: int,
    metadata: StatementMetadataIn | dict[str, Any],
    user_id: Optional[int] = None,
) -> BankStatement:
    """Registers an empty, unprocessed statement (records arrive later via ingest_records)."""
    meta = _coerce_metadata(metadata)
    account = must_get_account(store, account_id, user_id=user_id)
    now = datetime.utcnow()
    with store.atomic():
        stmt = store.add(
            BankStatement(
                user_id=int(account.user_id),
                bank_account_id=int(account.id),
                start_date=meta.start_date,
                end_date=meta.end_date,
                starting_balance=float(meta.starting_balance),
                ending_balance=float(meta.ending_balance),
                currency=(meta.currency or account.currency or settings.default_currency).upper(),
                transaction_count=0,
                total_deposits=0.0,
                total_withdrawals=0.0,
                processed=False,
                reconciled=False,
                balance_mismatch=False,
                created_at=now,
                updated_at=now,
            )
        )
        audit_write(
            store,
            user_id=stmt.user_id,
            action="bank_statement.create",
            entity_type="BankStatement",
            entity_id=stmt.id,
            after={"bank_account_id": stmt.bank_account_id, "start_date": stmt.start_date, "end_date": stmt.end_date},
        )
    return stmt


def ingest_records(
    store: Storage,
    statement_id: int,
    raw_transactions: Sequence[Any],
    *,
    declared_count: Optional[int] = None,
    user_id: Optional[int] = None,
    tolerance: Optional[float] = None,
) -> IngestResult:
    """
    Persist the well-formed records of a statement as unprocessed bank
    transactions, fill in the statement totals and mark it processed.

    Malformed records are reported by index and skipped. A balance or count
    mismatch is reported in validation_errors and flags the statement; it
    does not stop the records from being stored.
    """
    tol = settings.balance_tolerance if tolerance is None else float(tolerance)
    records, errors = parse_records(raw_transactions)

    with store.atomic():
        stmt = must_get_statement(store, statement_id, user_id=user_id)
        if stmt.processed:
            raise ConflictError("statement already processed", context={"statement_id": stmt.id})

        deposits = 0.0
        withdrawals = 0.0
        for index, rec in records:
            store.add(
                BankTransaction(
                    statement_id=int(stmt.id),
                    user_id=int(stmt.user_id),
                    bank_account_id=int(stmt.bank_account_id),
                    position=index,
                    transaction_date=rec.transaction_date,
                    description=rec.description,
                    amount=float(rec.amount),
                    is_deposit=bool(rec.is_deposit),
                    balance=rec.balance,
                    reference=rec.reference,
                    counterparty=rec.counterparty,
                    status="unprocessed",
                    reconciled=False,
                )
            )
            if rec.is_deposit:
                deposits += float(rec.amount)
            else:
                withdrawals += float(rec.amount)

        before = {"processed": stmt.processed, "transaction_count": stmt.transaction_count}
        stmt.transaction_count = len(records)
        stmt.total_deposits = deposits
        stmt.total_withdrawals = withdrawals

        problems = balance_problems(stmt, declared_count=declared_count, tolerance=tol)
        stmt.balance_mismatch = bool(problems)
        stmt.processed = True
        stmt.reconciled = False
        stmt.processing_error = None
        stmt.updated_at = datetime.utcnow()

        audit_write(
            store,
            user_id=stmt.user_id,
            action="bank_statement.ingest",
            entity_type="BankStatement",
            entity_id=stmt.id,
            before=before,
            after={
                "processed": True,
                "transaction_count": stmt.transaction_count,
                "balance_mismatch": stmt.balance_mismatch,
                "skipped_records": len(errors),
            },
        )

    for err in errors:
        log.warning(
            "statement record skipped: %s",
            err.error,
            extra={"statement_id": stmt.id, "user_id": stmt.user_id},
        )
    for p in problems:
        log.warning(p.message, extra={"statement_id": stmt.id, "user_id": stmt.user_id})

    log.info(
        "statement ingested",
        extra={"statement_id": stmt.id, "user_id": stmt.user_id},
    )
    return IngestResult(statement=stmt, created=len(records), errors=errors, validation_errors=problems)


def ingest_statement(
    store: Storage,
    *,
    account_id: int,
    metadata: StatementMetadataIn | dict[str, Any],
    raw_transactions: Sequence[Any],
    user_id: Optional[int] = None,
    tolerance: Optional[float] = None,
) -> IngestResult:
    meta = _coerce_metadata(metadata)
    with store.atomic():
        stmt = create_statement(store, account_id=account_id, metadata=meta, user_id=user_id)
        return ingest_records(
            store,
            stmt.id,
            raw_transactions,
            declared_count=meta.transaction_count,
            user_id=user_id,
            tolerance=tolerance,
        )


# -----------------------------------------------------------------------------
# Extraction payloads
# -----------------------------------------------------------------------------
def records_from_extraction(extraction: ExtractionResult) -> list[dict[str, Any]]:
    """Map extractor rows (signed or typed amounts) onto raw intake records."""
    out: list[dict[str, Any]] = []
    for t in extraction.transactions:
        rec: dict[str, Any] = {
            "date": t.date,
            "description": t.description,
            "amount": t.amount,
            "balance": t.balance,
            "reference": t.reference,
            "counterparty": t.counterparty,
        }
        kind = (t.type or "").strip().lower()
        if kind == "income":
            rec["is_deposit"] = True
            rec["amount"] = abs(t.amount) if t.amount is not None else None
        elif kind == "expense":
            rec["is_deposit"] = False
        out.append(rec)
    return out


def _extraction_period(extraction: ExtractionResult, records: list[tuple[int, RawTransactionIn]]) -> tuple[date, date]:
    start = extraction.statement_period.start_date
    end = extraction.statement_period.end_date
    dates = [r.transaction_date for _, r in records]
    if start is None:
        start = min(dates) if dates else date.today()
    if end is None:
        end = max(dates) if dates else start
    return start, max(start, end)


def ingest_extracted(
    store: Storage,
    *,
    account_id: int,
    extraction: ExtractionResult,
    user_id: Optional[int] = None,
    tolerance: Optional[float] = None,
) -> IngestResult:
    """
    Intake for a statement parsed by the extraction service.

    A failed extraction still leaves a statement behind (processed=false,
    processing_error set) so the upload is visible and can be retried.
    """
    raw = records_from_extraction(extraction) if extraction.ok else []
    parsed, _ = parse_records(raw)
    start, end = _extraction_period(extraction, parsed)

    starting = extraction.starting_balance if extraction.starting_balance is not None else 0.0
    ending = extraction.ending_balance
    if ending is None:
        # no declared closing balance: nothing to reconcile against
        ending = starting + sum(r.amount if r.is_deposit else -r.amount for _, r in parsed)

    currency = (extraction.currency or "").strip().upper()
    meta = StatementMetadataIn(
        start_date=start,
        end_date=end,
        starting_balance=starting,
        ending_balance=ending,
        currency=currency if len(currency) == 3 else None,
    )

    if not extraction.ok:
        with store.atomic():
            stmt = create_statement(store, account_id=account_id, metadata=meta, user_id=user_id)
            stmt.processing_error = extraction.error
            stmt.updated_at = datetime.utcnow()
        log.warning(
            "statement extraction failed: %s",
            extraction.error,
            extra={"statement_id": stmt.id, "user_id": stmt.user_id},
        )
        return IngestResult(statement=stmt)

    return ingest_statement(
        store,
        account_id=account_id,
        metadata=meta,
        raw_transactions=raw,
        user_id=user_id,
        tolerance=tolerance,
    )
