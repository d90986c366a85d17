# backend/rentledger/clients/notifications.py
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import httpx

from ..config import Settings, settings

log = logging.getLogger("rentledger.notifications")


@dataclass(frozen=True)
class DeliveryReceipt:
    ok: bool
    notification_id: Optional[str] = None
    error: Optional[str] = None


class ReminderNotifier(Protocol):
    """Delivers one reminder. Failures come back in the receipt; send() does not raise."""

    def send(self, reminder: Any) -> DeliveryReceipt: ...


class LogNotifier:
    """Writes reminders to the log instead of delivering them. Used when no service is configured."""

    def __init__(self) -> None:
        self.sent: list[int] = []

    def send(self, reminder: Any) -> DeliveryReceipt:
        nid = f"log-{uuid.uuid4().hex[:12]}"
        log.info(
            "reminder delivered to log",
            extra={"reminder_id": reminder.id, "payment_id": reminder.payment_id, "tenant_id": reminder.tenant_id},
        )
        self.sent.append(int(reminder.id))
        return DeliveryReceipt(ok=True, notification_id=nid)


class HttpNotifier:
    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        *,
        timeout: float = 20.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.base = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    def send(self, reminder: Any) -> DeliveryReceipt:
        url = f"{self.base}/notifications"
        payload: dict[str, Any] = {
            "channel": reminder.delivery_channel,
            "to": reminder.email_address if reminder.delivery_channel == "email" else reminder.phone_number,
            "subject": reminder.subject,
            "body": reminder.message,
            "metadata": {"reminder_id": reminder.id, "payment_id": reminder.payment_id},
        }
        headers = {"X-Api-Key": self.api_key} if self.api_key else {}

        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                r = client.post(url, json=payload, headers=headers)
                r.raise_for_status()
                data = r.json()
        except (httpx.HTTPError, ValueError) as e:
            return DeliveryReceipt(ok=False, error=str(e))

        nid = data.get("id") if isinstance(data, dict) else None
        if not nid:
            return DeliveryReceipt(ok=False, error="notification service returned no id")
        return DeliveryReceipt(ok=True, notification_id=str(nid))


def build_notifier(cfg: Settings = settings) -> ReminderNotifier:
    if cfg.notification_base_url:
        return HttpNotifier(cfg.notification_base_url, cfg.notification_api_key)
    return LogNotifier()
