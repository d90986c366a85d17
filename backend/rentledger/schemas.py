# backend/rentledger/schemas.py
from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


# -------------------- Statement intake --------------------

class StatementMetadataIn(BaseModel):
    start_date: date
    end_date: date
    starting_balance: float
    ending_balance: float
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    # declared by the extractor; compared against the records actually persisted
    transaction_count: Optional[int] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _period_order(self) -> "StatementMetadataIn":
        if self.end_date < self.start_date:
            raise ValueError("end_date cannot be before start_date")
        return self


class RawTransactionIn(BaseModel):
    """One record as produced by the extraction collaborator."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    transaction_date: date = Field(alias="date")
    description: str = Field(min_length=1)
    amount: float
    is_deposit: Optional[bool] = None
    balance: Optional[float] = None
    reference: Optional[str] = None
    counterparty: Optional[str] = None

    @model_validator(mode="after")
    def _direction(self) -> "RawTransactionIn":
        if self.is_deposit is None:
            self.is_deposit = self.amount >= 0
        elif self.is_deposit and self.amount < 0:
            raise ValueError("negative amount cannot be a deposit")
        self.amount = abs(self.amount)
        self.description = self.description.strip()
        if not self.description:
            raise ValueError("description is blank")
        return self


class IngestStatementIn(BaseModel):
    account_id: int
    metadata: StatementMetadataIn
    # validated record by record so one bad row does not reject the upload
    transactions: list[dict[str, Any]] = Field(default_factory=list)


class BankStatementOut(BaseModel):
    id: int
    user_id: int
    bank_account_id: int
    start_date: date
    end_date: date
    starting_balance: float
    ending_balance: float
    currency: str
    transaction_count: int
    total_deposits: float
    total_withdrawals: float
    processed: bool
    reconciled: bool
    balance_mismatch: bool
    processing_error: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class BankTransactionOut(BaseModel):
    id: int
    statement_id: int
    transaction_date: date
    description: str
    amount: float
    is_deposit: bool
    reference: Optional[str] = None
    counterparty: Optional[str] = None
    status: str
    category_id: Optional[int] = None
    tenant_id: Optional[int] = None
    payment_id: Optional[int] = None
    property_id: Optional[int] = None
    reconciled: bool
    review_reason: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class RecordErrorOut(BaseModel):
    index: int
    error: str
    model_config = ConfigDict(from_attributes=True)


class ValidationIssueOut(BaseModel):
    code: str
    detail: str
    context: dict[str, Any] = Field(default_factory=dict)


class IngestResultOut(BaseModel):
    statement: BankStatementOut
    created: int
    errors: list[RecordErrorOut]
    validation_errors: list[ValidationIssueOut]

    @classmethod
    def from_result(cls, result: Any) -> "IngestResultOut":
        return cls(
            statement=BankStatementOut.model_validate(result.statement),
            created=result.created,
            errors=[RecordErrorOut.model_validate(e) for e in result.errors],
            validation_errors=[ValidationIssueOut(**e.as_dict()) for e in result.validation_errors],
        )


class StatementDetailOut(BaseModel):
    statement: BankStatementOut
    transactions: list[BankTransactionOut]


# -------------------- Classification --------------------

class ClassifyErrorOut(BaseModel):
    transaction_id: int
    error: str
    model_config = ConfigDict(from_attributes=True)


class ClassifyResultOut(BaseModel):
    statement_id: int
    matched: int
    processed: int
    needs_review: int
    skipped: int
    errors: list[ClassifyErrorOut]
    reconciled: bool
    model_config = ConfigDict(from_attributes=True)


class AssignCategoryIn(BaseModel):
    category_id: int
    property_id: Optional[int] = None


# -------------------- Ledger --------------------

class CategoryAmountOut(BaseModel):
    category_id: int
    category_name: str
    amount: float
    model_config = ConfigDict(from_attributes=True)


class LedgerSummaryOut(BaseModel):
    start: date
    end: date
    total_income: float
    total_expenses: float
    net_income: float
    income_by_category: list[CategoryAmountOut]
    expenses_by_category: list[CategoryAmountOut]
    model_config = ConfigDict(from_attributes=True)


class BudgetCreate(BaseModel):
    name: str = Field(min_length=1)
    amount: float = Field(ge=0)
    type: Literal["income", "expense"] = "expense"
    period: Literal["monthly", "quarterly", "annual"] = "monthly"
    start_date: date
    end_date: Optional[date] = None
    category_id: Optional[int] = None
    property_id: Optional[int] = None


class BudgetOut(BudgetCreate):
    id: int
    model_config = ConfigDict(from_attributes=True)


class BudgetVarianceOut(BaseModel):
    budget_id: int
    budget_name: str
    budget_amount: float
    actual_amount: float
    variance: float
    percent_used: Optional[float] = None
    percent_used_defined: bool
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    model_config = ConfigDict(from_attributes=True)


class TaxYearCreate(BaseModel):
    year: int = Field(ge=1900, le=2200)
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class TaxYearCloseIn(BaseModel):
    tax_rate: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class TaxYearOut(BaseModel):
    id: int
    year: int
    start_date: date
    end_date: date
    is_closed: bool
    total_income: float
    total_expenses: float
    net_income: float
    tax_rate: Optional[float] = None
    estimated_tax: Optional[float] = None
    closed_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


# -------------------- Tenants / payments --------------------

class TenantOut(BaseModel):
    id: int
    property_id: Optional[int] = None
    first_name: str
    last_name: str
    email: Optional[str] = None
    rent_amount: Optional[float] = None
    active: bool
    model_config = ConfigDict(from_attributes=True)


class PaymentOut(BaseModel):
    id: int
    tenant_id: int
    property_id: Optional[int] = None
    amount: float
    due_date: date
    date_paid: Optional[date] = None
    status: str
    transaction_id: Optional[int] = None
    reminders_sent: int = 0
    model_config = ConfigDict(from_attributes=True)


class CheckoutIntentOut(BaseModel):
    payment_id: int
    tenant_id: int
    gateway: str
    amount: float
    amount_minor: int
    currency: str
    due_date: date
    model_config = ConfigDict(from_attributes=True)


class LateTenantOut(BaseModel):
    tenant: TenantOut
    last_payment: Optional[PaymentOut] = None
    reason: str
    model_config = ConfigDict(from_attributes=True)


# -------------------- Reminders --------------------

class PaymentReminderOut(BaseModel):
    id: int
    payment_id: int
    tenant_id: int
    reminder_type: str
    reminder_status: str
    scheduled_date: datetime
    sent_date: Optional[datetime] = None
    subject: str
    message: str
    delivery_channel: str
    email_address: Optional[str] = None
    attempts: int = 0
    last_error: Optional[str] = None
    notification_id: Optional[str] = None
    response_received: bool = False
    response_date: Optional[datetime] = None
    response_message: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class ReminderCreateIn(BaseModel):
    payment_id: int
    reminder_type: Literal["upcoming", "due", "overdue", "final", "custom"] = "custom"
    message: Optional[str] = None
    scheduled_date: Optional[datetime] = None


class ReminderResponseIn(BaseModel):
    message: Optional[str] = None


class CategoryOut(BaseModel):
    id: int
    name: str
    type: str
    is_default: bool
    model_config = ConfigDict(from_attributes=True)
