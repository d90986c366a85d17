# backend/rentledger/domain/reminder_policy.py
from __future__ import annotations

from datetime import date
from typing import Any, Optional

from ..errors import ConflictError

# pending --send ok--> sent
# pending --send failed--> failed
# failed  --retry--> pending
# pending --cancel--> cancelled
# sent and cancelled are terminal; sent may still record a tenant response.
TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"sent", "failed", "cancelled"}),
    "failed": frozenset({"pending"}),
    "sent": frozenset(),
    "cancelled": frozenset(),
}

# a payment with one of these reminders is already being chased
ACTIVE_STATUSES = ("pending", "sent")


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def assert_transition(current: str, target: str, *, reminder_id: Optional[int] = None) -> None:
    if not can_transition(current, target):
        raise ConflictError(
            f"reminder cannot move from {current} to {target}",
            context={"reminder_id": reminder_id, "from": current, "to": target},
        )


def reminder_type_for(due: date, today: date, final_grace_days: int) -> str:
    days_past_due = (today - due).days
    if days_past_due < 0:
        return "upcoming"
    if days_past_due == 0:
        return "due"
    if days_past_due > final_grace_days:
        return "final"
    return "overdue"


SUBJECTS = {
    "upcoming": "Upcoming Rent Payment",
    "due": "Rent Payment Due Today",
    "overdue": "Rent Payment Reminder",
    "final": "Final Notice: Outstanding Rent Payment",
    "custom": "Rent Payment Reminder",
}


def compose_message(
    *,
    reminder_type: str,
    tenant: Any,
    payment: Any,
    last_paid: Optional[Any] = None,
    extra: Optional[str] = None,
) -> tuple[str, str]:
    """Subject and plain-text body for a reminder."""
    subject = SUBJECTS.get(reminder_type, SUBJECTS["custom"])
    name = f"{tenant.first_name} {tenant.last_name}".strip()
    due = payment.due_date.isoformat()
    amount = f"{float(payment.amount):.2f}"

    lines = [f"Dear {name},", ""]
    if reminder_type == "upcoming":
        lines.append(f"Your rent payment of {amount} is due on {due}.")
    elif reminder_type == "due":
        lines.append(f"Your rent payment of {amount} is due today ({due}).")
    elif reminder_type == "final":
        lines.append(
            f"Your rent payment of {amount} due on {due} is still outstanding. "
            "This is the final notice before further steps are taken."
        )
    else:
        lines.append(f"Our records show that your rent payment of {amount} due on {due} has not been received.")

    if last_paid is not None and last_paid.date_paid is not None:
        lines.append(f"Your last payment of {float(last_paid.amount):.2f} was received on {last_paid.date_paid.isoformat()}.")
    elif last_paid is None:
        lines.append("We have not received any payments from you yet.")

    if extra:
        lines.extend(["", extra])

    lines.extend(
        [
            "",
            "If you have already made the payment, please disregard this message.",
            "",
            "Best regards,",
            "Your Property Management Team",
        ]
    )
    return subject, "\n".join(lines)
