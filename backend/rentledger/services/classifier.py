# backend/rentledger/services/classifier.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Sequence

from ..config import settings
from ..domain.audit import audit_write, row_snapshot
from ..domain.classification_rules import (
    DEFAULT_RULES,
    MATCHED,
    NEEDS_REVIEW,
    PROCESSED,
    ClassificationContext,
    Decision,
    Rule,
    evaluate,
    is_terminal,
)
from ..errors import ConflictError
from ..models import BankStatement, BankTransaction, Payment, Transaction, TransactionCategory
from ..storage.base import Storage
from .categories import rent_income_category
from .ownership import must_get_bank_transaction, must_get_category, must_get_property, must_get_statement

log = logging.getLogger("rentledger.classifier")

CLASSIFIABLE_STATUSES = ("unprocessed", NEEDS_REVIEW)

_TXN_FIELDS = ("status", "category_id", "tenant_id", "payment_id", "property_id", "reconciled", "review_reason")
_PAYMENT_FIELDS = ("status", "date_paid", "transaction_id")


@dataclass(frozen=True)
class ClassifyError:
    transaction_id: int
    error: str


@dataclass
class ClassifyResult:
    statement_id: int
    matched: int = 0
    processed: int = 0
    needs_review: int = 0
    skipped: int = 0
    errors: list[ClassifyError] = field(default_factory=list)
    reconciled: bool = False


def build_context(store: Storage, user_id: int, *, tolerance: Optional[float] = None) -> ClassificationContext:
    open_payments: dict[int, list[Payment]] = {}
    for p in store.list_payments(user_id):
        if p.status != "received":
            open_payments.setdefault(int(p.tenant_id), []).append(p)

    rent = rent_income_category(store, user_id)
    return ClassificationContext(
        active_tenants=store.list_tenants(user_id, active_only=True),
        categories=store.list_categories(user_id),
        open_payments=open_payments,
        rent_category_id=int(rent.id) if rent is not None else None,
        tolerance=settings.rent_match_tolerance if tolerance is None else float(tolerance),
    )


def refresh_statement_reconciled(store: Storage, stmt: BankStatement) -> bool:
    """A statement is reconciled when it is processed, balances, and every transaction is reconciled."""
    txns = store.list_statement_transactions(stmt.id)
    ok = bool(stmt.processed) and not stmt.balance_mismatch and all(t.reconciled for t in txns)
    if ok != stmt.reconciled:
        stmt.reconciled = ok
        stmt.updated_at = datetime.utcnow()
    return ok


def upsert_ledger_entry(store: Storage, txn: BankTransaction, category: TransactionCategory) -> Transaction:
    """One ledger entry per classified bank transaction; re-categorizing updates it in place."""
    entry = store.get_ledger_entry_for_bank_transaction(txn.id)
    if entry is None:
        entry = store.add(
            Transaction(
                user_id=int(txn.user_id),
                property_id=txn.property_id,
                category_id=int(category.id),
                bank_account_id=txn.bank_account_id,
                bank_transaction_id=int(txn.id),
                amount=abs(float(txn.amount)),
                txn_date=txn.transaction_date,
                description=txn.description,
                txn_type=category.type,
                reference=txn.reference,
            )
        )
        return entry

    entry.category_id = int(category.id)
    entry.property_id = txn.property_id
    entry.txn_type = category.type
    return entry


def _lock_payment(store: Storage, txn: BankTransaction, decision: Decision, ctx: ClassificationContext, rules):
    """
    Re-read the chosen payment under a row lock. If another statement took it
    in the meantime, mark it claimed and evaluate the rules again.
    """
    while decision.payment_id is not None:
        payment = store.get_payment(decision.payment_id, for_update=True)
        if payment is not None and payment.status != "received" and payment.transaction_id is None:
            return decision, payment
        ctx.claimed_payment_ids.add(int(decision.payment_id))
        decision = evaluate(txn, ctx, rules)
    return decision, None


def _apply(
    store: Storage,
    txn: BankTransaction,
    ctx: ClassificationContext,
    rules: Sequence[Rule],
) -> tuple[Decision, Optional[Payment]]:
    decision, payment = _lock_payment(store, txn, evaluate(txn, ctx, rules), ctx, rules)
    before = row_snapshot(txn, _TXN_FIELDS)

    txn.status = decision.status
    txn.category_id = decision.category_id
    txn.tenant_id = decision.tenant_id
    txn.payment_id = decision.payment_id
    txn.property_id = decision.property_id
    txn.reconciled = decision.reconciled
    txn.review_reason = decision.review_reason

    if payment is not None:
        pay_before = row_snapshot(payment, _PAYMENT_FIELDS)
        payment.status = "received"
        payment.date_paid = txn.transaction_date
        payment.transaction_id = int(txn.id)
        payment.updated_at = datetime.utcnow()
        audit_write(
            store,
            user_id=txn.user_id,
            action="payment.received",
            entity_type="Payment",
            entity_id=payment.id,
            before=pay_before,
            after=row_snapshot(payment, _PAYMENT_FIELDS),
        )

    if decision.category_id is not None:
        category = next((c for c in ctx.categories if int(c.id) == int(decision.category_id)), None)
        if category is None:
            category = must_get_category(store, decision.category_id, user_id=txn.user_id)
        upsert_ledger_entry(store, txn, category)

    audit_write(
        store,
        user_id=txn.user_id,
        action=f"bank_transaction.{decision.rule}",
        entity_type="BankTransaction",
        entity_id=txn.id,
        before=before,
        after=row_snapshot(txn, _TXN_FIELDS),
    )
    return decision, payment


def classify(
    store: Storage,
    statement_id: int,
    *,
    user_id: Optional[int] = None,
    rules: Sequence[Rule] = DEFAULT_RULES,
    tolerance: Optional[float] = None,
) -> ClassifyResult:
    """
    Run every unprocessed or needs_review transaction of a statement through
    the rule chain, in statement order.

    Each transaction commits on its own: its link, the payment it settles,
    the ledger entry and the audit rows land together. A failure on one
    transaction is recorded in the result and the rest still run.
    Transactions already matched, processed or ignored are counted as skipped.
    """
    stmt = must_get_statement(store, statement_id, user_id=user_id)
    if not stmt.processed:
        raise ConflictError("statement has not been ingested", context={"statement_id": stmt.id})

    ctx = build_context(store, stmt.user_id, tolerance=tolerance)
    result = ClassifyResult(statement_id=int(stmt.id))

    for txn in store.list_statement_transactions(stmt.id):
        if is_terminal(txn.status):
            result.skipped += 1
            continue
        txn_id = int(txn.id)
        try:
            with store.atomic():
                decision, payment = _apply(store, txn, ctx, rules)
        except Exception as e:
            log.exception(
                "transaction classification failed",
                extra={"statement_id": stmt.id, "transaction_id": txn_id, "user_id": stmt.user_id},
            )
            result.errors.append(ClassifyError(transaction_id=txn_id, error=str(e)))
            continue

        if payment is not None:
            ctx.claimed_payment_ids.add(int(payment.id))

        if decision.status == MATCHED:
            result.matched += 1
        elif decision.status == PROCESSED:
            result.processed += 1
        else:
            result.needs_review += 1
            log.info(
                "transaction needs review: %s",
                decision.review_reason,
                extra={"statement_id": stmt.id, "transaction_id": txn_id, "user_id": stmt.user_id},
            )

    with store.atomic():
        result.reconciled = refresh_statement_reconciled(store, stmt)

    log.info(
        "statement classified matched=%s processed=%s needs_review=%s skipped=%s errors=%s",
        result.matched,
        result.processed,
        result.needs_review,
        result.skipped,
        len(result.errors),
        extra={"statement_id": stmt.id, "user_id": stmt.user_id},
    )
    return result


# -----------------------------------------------------------------------------
# Manual review resolution
# -----------------------------------------------------------------------------
def ignore_transaction(store: Storage, transaction_id: int, *, user_id: Optional[int] = None) -> BankTransaction:
    """Mark a transaction as deliberately not part of the ledger. Counts as reconciled."""
    with store.atomic():
        txn = must_get_bank_transaction(store, transaction_id, user_id=user_id)
        if txn.status == "ignored":
            return txn
        if txn.status not in CLASSIFIABLE_STATUSES:
            raise ConflictError(
                f"cannot ignore a {txn.status} transaction",
                context={"transaction_id": txn.id, "status": txn.status},
            )

        before = row_snapshot(txn, _TXN_FIELDS)
        txn.status = "ignored"
        txn.category_id = None
        txn.tenant_id = None
        txn.payment_id = None
        txn.property_id = None
        txn.reconciled = True
        txn.review_reason = None
        audit_write(
            store,
            user_id=txn.user_id,
            action="bank_transaction.ignore",
            entity_type="BankTransaction",
            entity_id=txn.id,
            before=before,
            after=row_snapshot(txn, _TXN_FIELDS),
        )
        refresh_statement_reconciled(store, must_get_statement(store, txn.statement_id))
    return txn


def assign_category(
    store: Storage,
    transaction_id: int,
    category_id: int,
    *,
    user_id: Optional[int] = None,
    property_id: Optional[int] = None,
) -> BankTransaction:
    """Resolve a review item (or re-categorize a processed one) by hand."""
    with store.atomic():
        txn = must_get_bank_transaction(store, transaction_id, user_id=user_id)
        if txn.status in (MATCHED, "ignored"):
            raise ConflictError(
                f"cannot re-categorize a {txn.status} transaction",
                context={"transaction_id": txn.id, "status": txn.status},
            )
        category = must_get_category(store, category_id, user_id=txn.user_id)
        if property_id is not None:
            must_get_property(store, property_id, user_id=txn.user_id)

        before = row_snapshot(txn, _TXN_FIELDS)
        txn.status = PROCESSED
        txn.category_id = int(category.id)
        if property_id is not None:
            txn.property_id = int(property_id)
        txn.reconciled = True
        txn.review_reason = None
        upsert_ledger_entry(store, txn, category)
        audit_write(
            store,
            user_id=txn.user_id,
            action="bank_transaction.assign_category",
            entity_type="BankTransaction",
            entity_id=txn.id,
            before=before,
            after=row_snapshot(txn, _TXN_FIELDS),
        )
        refresh_statement_reconciled(store, must_get_statement(store, txn.statement_id))
    return txn
