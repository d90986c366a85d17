# backend/rentledger/services/ownership.py
from __future__ import annotations

from typing import Any, Optional

from ..errors import NotFoundError
from ..models import (
    BankAccount,
    BankStatement,
    BankTransaction,
    Budget,
    Payment,
    PaymentReminder,
    Property,
    TaxYear,
    Tenant,
    TransactionCategory,
)
from ..storage.base import Storage


def _must(row: Any, entity: str, entity_id: int, user_id: Optional[int]) -> Any:
    # rows owned by another user look exactly like missing rows
    if row is None or (user_id is not None and int(row.user_id) != int(user_id)):
        raise NotFoundError.for_entity(entity, entity_id)
    return row


def must_get_account(store: Storage, account_id: int, *, user_id: Optional[int] = None) -> BankAccount:
    return _must(store.get_bank_account(account_id), "bank_account", account_id, user_id)


def must_get_statement(store: Storage, statement_id: int, *, user_id: Optional[int] = None) -> BankStatement:
    return _must(store.get_statement(statement_id), "bank_statement", statement_id, user_id)


def must_get_bank_transaction(
    store: Storage, transaction_id: int, *, user_id: Optional[int] = None
) -> BankTransaction:
    return _must(store.get_bank_transaction(transaction_id), "bank_transaction", transaction_id, user_id)


def must_get_property(store: Storage, property_id: int, *, user_id: Optional[int] = None) -> Property:
    return _must(store.get_property(property_id), "property", property_id, user_id)


def must_get_tenant(store: Storage, tenant_id: int, *, user_id: Optional[int] = None) -> Tenant:
    return _must(store.get_tenant(tenant_id), "tenant", tenant_id, user_id)


def must_get_payment(
    store: Storage, payment_id: int, *, user_id: Optional[int] = None, for_update: bool = False
) -> Payment:
    return _must(store.get_payment(payment_id, for_update=for_update), "payment", payment_id, user_id)


def must_get_category(store: Storage, category_id: int, *, user_id: Optional[int] = None) -> TransactionCategory:
    return _must(store.get_category(category_id), "category", category_id, user_id)


def must_get_budget(store: Storage, budget_id: int, *, user_id: Optional[int] = None) -> Budget:
    return _must(store.get_budget(budget_id), "budget", budget_id, user_id)


def must_get_tax_year(store: Storage, tax_year_id: int, *, user_id: Optional[int] = None) -> TaxYear:
    return _must(store.get_tax_year(tax_year_id), "tax_year", tax_year_id, user_id)


def must_get_reminder(store: Storage, reminder_id: int, *, user_id: Optional[int] = None) -> PaymentReminder:
    return _must(store.get_reminder(reminder_id), "payment_reminder", reminder_id, user_id)
