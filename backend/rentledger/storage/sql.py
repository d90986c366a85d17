# backend/rentledger/storage/sql.py
from __future__ import annotations

from contextlib import contextmanager
from datetime import date
from typing import Iterator, Optional, TypeVar

from sqlalchemy import desc, func, select
from sqlalchemy.orm import Session

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


class SqlStorage(Storage):
    """Storage over a SQLAlchemy session (Postgres in deployments, SQLite locally)."""

    def __init__(self, db: Session) -> None:
        self.db = db
        self._depth = 0

    @contextmanager
    def atomic(self) -> Iterator["SqlStorage"]:
        outermost = self._depth == 0
        self._depth += 1
        try:
            yield self
            if outermost:
                self.db.commit()
        except Exception:
            if outermost:
                self.db.rollback()
            raise
        finally:
            self._depth -= 1

    def add(self, row: T) -> T:
        self.db.add(row)
        self.db.flush()
        return row

    # ---- users ----
    def get_user(self, user_id: int) -> Optional[User]:
        return self.db.get(User, int(user_id))

    def get_user_by_email(self, email: str) -> Optional[User]:
        return self.db.scalar(select(User).where(func.lower(User.email) == email.strip().lower()))

    # ---- properties / tenants / payments ----
    def get_property(self, property_id: int) -> Optional[Property]:
        return self.db.get(Property, int(property_id))

    def get_tenant(self, tenant_id: int) -> Optional[Tenant]:
        return self.db.get(Tenant, int(tenant_id))

    def list_tenants(self, user_id: int, *, active_only: bool = False) -> list[Tenant]:
        q = select(Tenant).where(Tenant.user_id == int(user_id))
        if active_only:
            q = q.where(Tenant.active.is_(True))
        return list(self.db.scalars(q.order_by(Tenant.id)).all())

    def get_payment(self, payment_id: int, *, for_update: bool = False) -> Optional[Payment]:
        q = select(Payment).where(Payment.id == int(payment_id))
        if for_update:
            q = q.with_for_update()
        return self.db.scalar(q)

    def list_payments_for_tenant(self, tenant_id: int) -> list[Payment]:
        q = (
            select(Payment)
            .where(Payment.tenant_id == int(tenant_id))
            .order_by(desc(Payment.due_date), desc(Payment.id))
        )
        return list(self.db.scalars(q).all())

    def list_payments(self, user_id: int, *, statuses: Optional[tuple[str, ...]] = None) -> list[Payment]:
        q = select(Payment).where(Payment.user_id == int(user_id))
        if statuses:
            q = q.where(Payment.status.in_(statuses))
        return list(self.db.scalars(q.order_by(Payment.due_date, Payment.id)).all())

    # ---- banking ----
    def get_bank_account(self, account_id: int) -> Optional[BankAccount]:
        return self.db.get(BankAccount, int(account_id))

    def get_statement(self, statement_id: int) -> Optional[BankStatement]:
        return self.db.get(BankStatement, int(statement_id))

    def list_statement_transactions(self, statement_id: int) -> list[BankTransaction]:
        q = (
            select(BankTransaction)
            .where(BankTransaction.statement_id == int(statement_id))
            .order_by(BankTransaction.position, BankTransaction.id)
        )
        return list(self.db.scalars(q).all())

    def get_bank_transaction(self, transaction_id: int) -> Optional[BankTransaction]:
        return self.db.get(BankTransaction, int(transaction_id))

    # ---- categories / ledger ----
    def get_category(self, category_id: int) -> Optional[TransactionCategory]:
        return self.db.get(TransactionCategory, int(category_id))

    def list_categories(self, user_id: int) -> list[TransactionCategory]:
        q = select(TransactionCategory).where(TransactionCategory.user_id == int(user_id))
        return list(self.db.scalars(q.order_by(TransactionCategory.id)).all())

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
        q = select(Transaction).where(Transaction.user_id == int(user_id))
        if start is not None:
            q = q.where(Transaction.txn_date >= start)
        if end is not None:
            q = q.where(Transaction.txn_date <= end)
        if property_id is not None:
            q = q.where(Transaction.property_id == int(property_id))
        if category_id is not None:
            q = q.where(Transaction.category_id == int(category_id))
        if txn_type:
            q = q.where(Transaction.txn_type == txn_type)
        return list(self.db.scalars(q.order_by(desc(Transaction.txn_date), desc(Transaction.id))).all())

    def get_ledger_entry_for_bank_transaction(self, bank_transaction_id: int) -> Optional[Transaction]:
        return self.db.scalar(
            select(Transaction).where(Transaction.bank_transaction_id == int(bank_transaction_id))
        )

    # ---- budgets / tax years ----
    def get_budget(self, budget_id: int) -> Optional[Budget]:
        return self.db.get(Budget, int(budget_id))

    def list_budgets(self, user_id: int) -> list[Budget]:
        return list(self.db.scalars(select(Budget).where(Budget.user_id == int(user_id)).order_by(Budget.id)).all())

    def get_tax_year(self, tax_year_id: int) -> Optional[TaxYear]:
        return self.db.get(TaxYear, int(tax_year_id))

    def get_tax_year_by_year(self, user_id: int, year: int) -> Optional[TaxYear]:
        return self.db.scalar(select(TaxYear).where(TaxYear.user_id == int(user_id), TaxYear.year == int(year)))

    # ---- reminders ----
    def get_reminder(self, reminder_id: int) -> Optional[PaymentReminder]:
        return self.db.get(PaymentReminder, int(reminder_id))

    def list_reminders_for_payment(self, payment_id: int) -> list[PaymentReminder]:
        q = select(PaymentReminder).where(PaymentReminder.payment_id == int(payment_id)).order_by(PaymentReminder.id)
        return list(self.db.scalars(q).all())

    def list_reminders(self, user_id: int, *, status: Optional[str] = None) -> list[PaymentReminder]:
        q = select(PaymentReminder).where(PaymentReminder.user_id == int(user_id))
        if status:
            q = q.where(PaymentReminder.reminder_status == status)
        return list(self.db.scalars(q.order_by(PaymentReminder.scheduled_date, PaymentReminder.id)).all())

    # ---- audit ----
    def list_audit_events(
        self, *, entity_type: Optional[str] = None, entity_id: Optional[int] = None
    ) -> list[AuditEvent]:
        q = select(AuditEvent)
        if entity_type:
            q = q.where(AuditEvent.entity_type == entity_type)
        if entity_id is not None:
            q = q.where(AuditEvent.entity_id == str(entity_id))
        return list(self.db.scalars(q.order_by(AuditEvent.id)).all())
