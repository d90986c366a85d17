# backend/rentledger/storage/base.py
from __future__ import annotations

import abc
from contextlib import AbstractContextManager
from datetime import date
from typing import Optional, TypeVar

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

T = TypeVar("T")


class Storage(abc.ABC):
    """
    Read/write capability set for the reconciliation entities.

    Services receive a Storage instance and never look at which backend sits
    behind it. Rows are the ORM classes from models.py in both backends.

    Mutations to rows returned by a getter are persisted when the enclosing
    atomic() block exits without error; call add() for new rows.
    """

    # ---- units of work ----
    @abc.abstractmethod
    def atomic(self) -> AbstractContextManager["Storage"]:
        """All writes inside the block commit together or not at all. Nests."""

    @abc.abstractmethod
    def add(self, row: T) -> T:
        """Stage a new row and assign its primary key."""

    # ---- users ----
    @abc.abstractmethod
    def get_user(self, user_id: int) -> Optional[User]: ...

    @abc.abstractmethod
    def get_user_by_email(self, email: str) -> Optional[User]: ...

    # ---- properties / tenants / payments ----
    @abc.abstractmethod
    def get_property(self, property_id: int) -> Optional[Property]: ...

    @abc.abstractmethod
    def get_tenant(self, tenant_id: int) -> Optional[Tenant]: ...

    @abc.abstractmethod
    def list_tenants(self, user_id: int, *, active_only: bool = False) -> list[Tenant]: ...

    @abc.abstractmethod
    def get_payment(self, payment_id: int, *, for_update: bool = False) -> Optional[Payment]: ...

    @abc.abstractmethod
    def list_payments_for_tenant(self, tenant_id: int) -> list[Payment]:
        """Newest due_date first (ties broken by id, newest first)."""

    @abc.abstractmethod
    def list_payments(self, user_id: int, *, statuses: Optional[tuple[str, ...]] = None) -> list[Payment]: ...

    # ---- banking ----
    @abc.abstractmethod
    def get_bank_account(self, account_id: int) -> Optional[BankAccount]: ...

    @abc.abstractmethod
    def get_statement(self, statement_id: int) -> Optional[BankStatement]: ...

    @abc.abstractmethod
    def list_statement_transactions(self, statement_id: int) -> list[BankTransaction]:
        """Statement order (position, then id)."""

    @abc.abstractmethod
    def get_bank_transaction(self, transaction_id: int) -> Optional[BankTransaction]: ...

    # ---- categories / ledger ----
    @abc.abstractmethod
    def get_category(self, category_id: int) -> Optional[TransactionCategory]: ...

    @abc.abstractmethod
    def list_categories(self, user_id: int) -> list[TransactionCategory]: ...

    @abc.abstractmethod
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
        """Ledger rows with start <= txn_date <= end, newest first."""

    @abc.abstractmethod
    def get_ledger_entry_for_bank_transaction(self, bank_transaction_id: int) -> Optional[Transaction]: ...

    # ---- budgets / tax years ----
    @abc.abstractmethod
    def get_budget(self, budget_id: int) -> Optional[Budget]: ...

    @abc.abstractmethod
    def list_budgets(self, user_id: int) -> list[Budget]: ...

    @abc.abstractmethod
    def get_tax_year(self, tax_year_id: int) -> Optional[TaxYear]: ...

    @abc.abstractmethod
    def get_tax_year_by_year(self, user_id: int, year: int) -> Optional[TaxYear]: ...

    # ---- reminders ----
    @abc.abstractmethod
    def get_reminder(self, reminder_id: int) -> Optional[PaymentReminder]: ...

    @abc.abstractmethod
    def list_reminders_for_payment(self, payment_id: int) -> list[PaymentReminder]: ...

    @abc.abstractmethod
    def list_reminders(self, user_id: int, *, status: Optional[str] = None) -> list[PaymentReminder]:
        """Oldest scheduled_date first."""

    # ---- audit ----
    @abc.abstractmethod
    def list_audit_events(
        self, *, entity_type: Optional[str] = None, entity_id: Optional[int] = None
    ) -> list[AuditEvent]:
        """Oldest first."""
