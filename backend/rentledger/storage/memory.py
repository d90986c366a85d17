# backend/rentledger/storage/memory.py
from __future__ import annotations

import threading
from contextlib import contextmanager
from datetime import date, datetime
from typing import Any, Callable, Iterator, Optional, TypeVar

from sqlalchemy import inspect as sa_inspect

from ..models import (
    AuditEvent,
    BankAccount,
    BankStatement,
    BankTransaction,
    Budget,
    Payment,
    PaymentReminder,
    Property,
    TaxYear,
    Tenant,
    Transaction,
    TransactionCategory,
    User,
)
from .base import Storage

T = TypeVar("T")


def _column_keys(cls: type) -> list[str]:
    return [attr.key for attr in sa_inspect(cls).column_attrs]


def _apply_defaults(row: Any) -> None:
    """Mirror the Python-side column defaults a SQL flush would fill in."""
    for attr in sa_inspect(type(row)).column_attrs:
        if getattr(row, attr.key) is not None:
            continue
        default = attr.columns[0].default
        if default is None:
            continue
        if default.is_scalar:
            setattr(row, attr.key, default.arg)
        elif default.is_callable:
            setattr(row, attr.key, default.arg(None))


class MemoryStorage(Storage):
    """
    Dict-backed storage holding transient ORM rows.

    Used by single-process deployments without a database and by tests.
    atomic() serializes writers on one lock and restores a column snapshot
    of every row if the block raises.
    """

    def __init__(self) -> None:
        self._rows: dict[type, dict[int, Any]] = {}
        self._next_id: dict[type, int] = {}
        self._lock = threading.RLock()
        self._depth = 0

    # ---- units of work ----
    def _snapshot(self) -> dict[type, dict[int, dict[str, Any]]]:
        snap: dict[type, dict[int, dict[str, Any]]] = {}
        for cls, rows in self._rows.items():
            keys = _column_keys(cls)
            snap[cls] = {pk: {k: getattr(row, k) for k in keys} for pk, row in rows.items()}
        return snap

    def _restore(self, snap: dict[type, dict[int, dict[str, Any]]]) -> None:
        for cls, rows in self._rows.items():
            saved = snap.get(cls, {})
            for pk in [pk for pk in rows if pk not in saved]:
                del rows[pk]
            for pk, values in saved.items():
                row = rows[pk]
                for k, v in values.items():
                    setattr(row, k, v)

    @contextmanager
    def atomic(self) -> Iterator["MemoryStorage"]:
        with self._lock:
            outermost = self._depth == 0
            snap = self._snapshot() if outermost else None
            self._depth += 1
            try:
                yield self
            except Exception:
                if snap is not None:
                    self._restore(snap)
                raise
            finally:
                self._depth -= 1

    def add(self, row: T) -> T:
        with self._lock:
            cls = type(row)
            _apply_defaults(row)
            table = self._rows.setdefault(cls, {})
            if getattr(row, "id", None) is None:
                nid = self._next_id.get(cls, 1)
                row.id = nid  # type: ignore[attr-defined]
            self._next_id[cls] = max(self._next_id.get(cls, 1), int(row.id) + 1)  # type: ignore[attr-defined]
            table[int(row.id)] = row  # type: ignore[attr-defined]
            return row

    # ---- helpers ----
    def _get(self, cls: type[T], pk: int) -> Optional[T]:
        return self._rows.get(cls, {}).get(int(pk))

    def _where(self, cls: type[T], pred: Callable[[T], bool]) -> list[T]:
        return [r for r in self._rows.get(cls, {}).values() if pred(r)]

    # ---- users ----
    def get_user(self, user_id: int) -> Optional[User]:
        return self._get(User, user_id)

    def get_user_by_email(self, email: str) -> Optional[User]:
        want = email.strip().lower()
        hits = self._where(User, lambda u: (u.email or "").lower() == want)
        return hits[0] if hits else None

    # ---- properties / tenants / payments ----
    def get_property(self, property_id: int) -> Optional[Property]:
        return self._get(Property, property_id)

    def get_tenant(self, tenant_id: int) -> Optional[Tenant]:
        return self._get(Tenant, tenant_id)

    def list_tenants(self, user_id: int, *, active_only: bool = False) -> list[Tenant]:
        rows = self._where(Tenant, lambda t: t.user_id == int(user_id) and (t.active or not active_only))
        return sorted(rows, key=lambda t: t.id)

    def get_payment(self, payment_id: int, *, for_update: bool = False) -> Optional[Payment]:
        return self._get(Payment, payment_id)

    def list_payments_for_tenant(self, tenant_id: int) -> list[Payment]:
        rows = self._where(Payment, lambda p: p.tenant_id == int(tenant_id))
        return sorted(rows, key=lambda p: (p.due_date, p.id), reverse=True)

    def list_payments(self, user_id: int, *, statuses: Optional[tuple[str, ...]] = None) -> list[Payment]:
        rows = self._where(
            Payment, lambda p: p.user_id == int(user_id) and (not statuses or p.status in statuses)
        )
        return sorted(rows, key=lambda p: (p.due_date, p.id))

    # ---- banking ----
    def get_bank_account(self, account_id: int) -> Optional[BankAccount]:
        return self._get(BankAccount, account_id)

    def get_statement(self, statement_id: int) -> Optional[BankStatement]:
        return self._get(BankStatement, statement_id)

    def list_statement_transactions(self, statement_id: int) -> list[BankTransaction]:
        rows = self._where(BankTransaction, lambda t: t.statement_id == int(statement_id))
        return sorted(rows, key=lambda t: (t.position, t.id))

    def get_bank_transaction(self, transaction_id: int) -> Optional[BankTransaction]:
        return self._get(BankTransaction, transaction_id)

    # ---- categories / ledger ----
    def get_category(self, category_id: int) -> Optional[TransactionCategory]:
        return self._get(TransactionCategory, category_id)

    def list_categories(self, user_id: int) -> list[TransactionCategory]:
        return sorted(self._where(TransactionCategory, lambda c: c.user_id == int(user_id)), key=lambda c: c.id)

    def list_ledger_entries(
        self,
        user_id: int,
        *,
        start: Optional[date] = None,
        end: Optional[date] = None,
        property_id: Optional[int] = None,
        category_id: Optional[int] = None,
        txn_type: Optional[str] = None,
    ) -> list[Transaction]:
        def keep(t: Transaction) -> bool:
            if t.user_id != int(user_id):
                return False
            if start is not None and t.txn_date < start:
                return False
            if end is not None and t.txn_date > end:
                return False
            if property_id is not None and t.property_id != int(property_id):
                return False
            if category_id is not None and t.category_id != int(category_id):
                return False
            if txn_type and t.txn_type != txn_type:
                return False
            return True

        return sorted(self._where(Transaction, keep), key=lambda t: (t.txn_date, t.id), reverse=True)

    def get_ledger_entry_for_bank_transaction(self, bank_transaction_id: int) -> Optional[Transaction]:
        hits = self._where(Transaction, lambda t: t.bank_transaction_id == int(bank_transaction_id))
        return hits[0] if hits else None

    # ---- budgets / tax years ----
    def get_budget(self, budget_id: int) -> Optional[Budget]:
        return self._get(Budget, budget_id)

    def list_budgets(self, user_id: int) -> list[Budget]:
        return sorted(self._where(Budget, lambda b: b.user_id == int(user_id)), key=lambda b: b.id)

    def get_tax_year(self, tax_year_id: int) -> Optional[TaxYear]:
        return self._get(TaxYear, tax_year_id)

    def get_tax_year_by_year(self, user_id: int, year: int) -> Optional[TaxYear]:
        hits = self._where(TaxYear, lambda y: y.user_id == int(user_id) and y.year == int(year))
        return hits[0] if hits else None

    # ---- reminders ----
    def get_reminder(self, reminder_id: int) -> Optional[PaymentReminder]:
        return self._get(PaymentReminder, reminder_id)

    def list_reminders_for_payment(self, payment_id: int) -> list[PaymentReminder]:
        rows = self._where(PaymentReminder, lambda r: r.payment_id == int(payment_id))
        return sorted(rows, key=lambda r: r.id)

    def list_reminders(self, user_id: int, *, status: Optional[str] = None) -> list[PaymentReminder]:
        rows = self._where(
            PaymentReminder,
            lambda r: r.user_id == int(user_id) and (status is None or r.reminder_status == status),
        )
        return sorted(rows, key=lambda r: (r.scheduled_date or datetime.min, r.id))

    # ---- audit ----
    def list_audit_events(
        self, *, entity_type: Optional[str] = None, entity_id: Optional[int] = None
    ) -> list[AuditEvent]:
        rows = self._where(
            AuditEvent,
            lambda a: (not entity_type or a.entity_type == entity_type)
            and (entity_id is None or a.entity_id == str(entity_id)),
        )
        return sorted(rows, key=lambda a: a.id)
