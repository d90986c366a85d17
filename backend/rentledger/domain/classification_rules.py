# backend/rentledger/domain/classification_rules.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Optional, Protocol, Sequence

# -----------------------------------------------------------------------------
# Bank transaction classification rules
# -----------------------------------------------------------------------------
# A transaction is run through an ordered list of rules; the first rule that
# returns a Decision wins. A rule may instead return a Flag, which does not
# stop evaluation but forces the final outcome into manual review.
#
# Rules only read the ClassificationContext; persisting the decision is the
# classifier service's job.
# -----------------------------------------------------------------------------

MATCHED = "matched"
PROCESSED = "processed"
NEEDS_REVIEW = "needs_review"


@dataclass(frozen=True)
class Decision:
    rule: str
    status: str
    category_id: Optional[int] = None
    tenant_id: Optional[int] = None
    payment_id: Optional[int] = None
    property_id: Optional[int] = None
    review_reason: Optional[str] = None

    @property
    def reconciled(self) -> bool:
        return self.category_id is not None


@dataclass(frozen=True)
class Flag:
    rule: str
    reason: str


@dataclass
class ClassificationContext:
    """
    Everything the rules may look at for one user's statement.

    open_payments maps tenant_id -> that tenant's payments that are not yet
    received. claimed_payment_ids grows as earlier transactions of the same
    statement take payments, so one payment is never matched twice.
    """

    active_tenants: Sequence[Any]
    categories: Sequence[Any]
    open_payments: dict[int, list[Any]]
    rent_category_id: Optional[int]
    tolerance: float = 0.01
    claimed_payment_ids: set[int] = field(default_factory=set)


class Rule(Protocol):
    tag: str

    def apply(self, txn: Any, ctx: ClassificationContext) -> Decision | Flag | None: ...


def _same_month(a: date, b: date) -> bool:
    return a.year == b.year and a.month == b.month


class RentPaymentRule:
    """Deposit equal to exactly one active tenant's rent, with an open payment due that month."""

    tag = "rent_match"

    def apply(self, txn: Any, ctx: ClassificationContext) -> Decision | Flag | None:
        if not txn.is_deposit or ctx.rent_category_id is None:
            return None

        amount = abs(float(txn.amount or 0.0))
        candidates = [
            t
            for t in ctx.active_tenants
            if t.rent_amount is not None and abs(float(t.rent_amount) - amount) <= ctx.tolerance
        ]
        if not candidates:
            return None
        if len(candidates) > 1:
            ids = ",".join(str(t.id) for t in candidates)
            return Flag(rule=self.tag, reason=f"ambiguous_rent_amount:{ids}")

        tenant = candidates[0]
        due_this_month = sorted(
            (
                p
                for p in ctx.open_payments.get(int(tenant.id), [])
                if p.status != "received"
                and int(p.id) not in ctx.claimed_payment_ids
                and _same_month(p.due_date, txn.transaction_date)
            ),
            key=lambda p: (p.due_date, p.id),
        )
        if not due_this_month:
            return None

        payment = due_this_month[0]
        return Decision(
            rule=self.tag,
            status=MATCHED,
            category_id=ctx.rent_category_id,
            tenant_id=int(tenant.id),
            payment_id=int(payment.id),
            property_id=payment.property_id if payment.property_id is not None else tenant.property_id,
        )


class DescriptionCategoryRule:
    """Case-insensitive substring match of a category name in the description."""

    tag = "description_match"

    def apply(self, txn: Any, ctx: ClassificationContext) -> Decision | Flag | None:
        text = (txn.description or "").lower()
        if not text:
            return None
        # longest name first so "Rent Income" beats a shorter overlapping name
        for cat in sorted(ctx.categories, key=lambda c: (-len(c.name or ""), c.id)):
            name = (cat.name or "").strip().lower()
            if name and name in text:
                return Decision(rule=self.tag, status=PROCESSED, category_id=int(cat.id))
        return None


class ManualReviewRule:
    tag = "fallback"

    def apply(self, txn: Any, ctx: ClassificationContext) -> Decision | Flag | None:
        return Decision(rule=self.tag, status=NEEDS_REVIEW, review_reason="no_rule_matched")


DEFAULT_RULES: tuple[Rule, ...] = (RentPaymentRule(), DescriptionCategoryRule(), ManualReviewRule())


def evaluate(txn: Any, ctx: ClassificationContext, rules: Sequence[Rule] = DEFAULT_RULES) -> Decision:
    flags: list[Flag] = []
    decision: Optional[Decision] = None

    for rule in rules:
        out = rule.apply(txn, ctx)
        if out is None:
            continue
        if isinstance(out, Flag):
            flags.append(out)
            continue
        decision = out
        break

    if decision is None:
        decision = Decision(rule="none", status=NEEDS_REVIEW, review_reason="no_rule_matched")

    if flags:
        # an ambiguous match never picks a side, whatever later rules suggested
        return Decision(rule=decision.rule, status=NEEDS_REVIEW, review_reason=flags[0].reason)

    return decision


def with_rule_inserted(rule: Rule, *, before: str, rules: Sequence[Rule] = DEFAULT_RULES) -> tuple[Rule, ...]:
    """Return a new rule chain with `rule` placed ahead of the rule tagged `before`."""
    out: list[Rule] = []
    inserted = False
    for r in rules:
        if not inserted and r.tag == before:
            out.append(rule)
            inserted = True
        out.append(r)
    if not inserted:
        raise ValueError(f"no rule tagged {before!r}")
    return tuple(out)


def is_terminal(status: str) -> bool:
    return status in (MATCHED, PROCESSED, "ignored")


__all__ = [
    "Decision",
    "Flag",
    "ClassificationContext",
    "Rule",
    "RentPaymentRule",
    "DescriptionCategoryRule",
    "ManualReviewRule",
    "DEFAULT_RULES",
    "evaluate",
    "with_rule_inserted",
    "is_terminal",
]
