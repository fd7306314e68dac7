"""
Dispatcher de notifications.

- alertes opérationnelles : file en mémoire ordonnée par priorité
  (1 = la plus haute), vidée par process_pending()
- envoi d'un PO au fournisseur : remise synchrone, le résultat conditionne
  la transition approved -> sent

Chaque remise est rejouée avec backoff exponentiel (2s, 4s, ...) jusqu'à
max_tries tentatives.
"""

from __future__ import annotations

import heapq
import itertools
import json
import logging
import smtplib
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Any

import backoff

from backend.app.core.config import settings
from backend.app.db.models.core_types import AlertType
from backend.app.db.models.models_v1 import PurchaseOrder
from backend.services.documents import render_po_document
from backend.services.email_client import Attachment, EmailClient

logger = logging.getLogger(__name__)

ALERT_PRIORITIES = {
    AlertType.out_of_stock: 1,
    AlertType.failure: 2,
    AlertType.stuck: 3,
    AlertType.reorder_needed: 4,
    AlertType.warning: 5,
    AlertType.success: 8,
}

ALERT_SUBJECTS = {
    AlertType.failure: "Inventory sync failed",
    AlertType.stuck: "Inventory sync appears stuck",
    AlertType.out_of_stock: "Items out of stock",
    AlertType.reorder_needed: "Items need reordering",
    AlertType.warning: "Inventory sync completed with warnings",
    AlertType.success: "Inventory sync recovered",
}

DELIVERY_ERRORS = (smtplib.SMTPException, OSError)

# alertes non remises conservées pour inspection (les plus récentes)
FAILED_HISTORY_SIZE = 100


@dataclass
class AlertRequest:
    type: AlertType
    payload: dict[str, Any] = field(default_factory=dict)
    recipients: list[str] = field(default_factory=list)
    priority: int | None = None

    def __post_init__(self):
        self.type = AlertType(self.type)
        if self.priority is None:
            self.priority = ALERT_PRIORITIES[self.type]


@dataclass
class DispatchStats:
    sent: int = 0
    failed: int = 0
    remaining: int = 0


def format_alert(alert: AlertRequest) -> tuple[str, str]:
    subject = ALERT_SUBJECTS[alert.type]
    lines = [subject, ""]
    for key, value in alert.payload.items():
        if isinstance(value, (list, dict)):
            value = json.dumps(value, default=str, indent=2)
        lines.append(f"{key}: {value}")
    return subject, "\n".join(lines)


class NotificationDispatcher:
    def __init__(
        self,
        email_client: EmailClient | None,
        sender: str,
        default_recipients: list[str] | None = None,
        max_tries: int = 3,
        backoff_seconds: float = 2.0,
        failed_history_size: int = FAILED_HISTORY_SIZE,
    ):
        self.email_client = email_client
        self.sender = sender
        self.default_recipients = list(default_recipients or [])
        self.max_tries = max_tries
        self.backoff_seconds = backoff_seconds
        self._queue: list[tuple[int, int, AlertRequest]] = []
        self._seq = itertools.count()
        # partagé entre les requêtes (enqueue) et les tâches de fond (process_pending)
        self._lock = threading.Lock()
        self.failed: deque[AlertRequest] = deque(maxlen=failed_history_size)

    @classmethod
    def from_settings(cls) -> "NotificationDispatcher":
        return cls(
            email_client=EmailClient.from_settings(),
            sender=settings.EMAIL_SENDER,
            default_recipients=settings.alert_recipients,
            max_tries=settings.NOTIFY_MAX_TRIES,
            backoff_seconds=settings.NOTIFY_BACKOFF_SECONDS,
        )

    # ---------- retry ----------
    def _send(self, recipients: list[str], subject: str, body: str, attachments: list[Attachment] | None = None) -> None:
        if self.email_client is None:
            raise smtplib.SMTPException("SMTP is not configured")

        send = backoff.on_exception(
            backoff.expo,
            DELIVERY_ERRORS,
            max_tries=self.max_tries,
            factor=self.backoff_seconds,
            base=2,
            jitter=None,
            on_backoff=lambda d: logger.warning(
                "Delivery of %r failed (attempt %s), retrying in %.1fs", subject, d["tries"], d["wait"]
            ),
        )(self.email_client.send_email)
        send(self.sender, recipients, subject, body, attachments)

    # ---------- alertes ----------
    def enqueue_alert(self, alert: AlertRequest) -> None:
        with self._lock:
            heapq.heappush(self._queue, (alert.priority, next(self._seq), alert))
        logger.info("Alert queued: %s (priority %s)", alert.type.value, alert.priority)

    @property
    def pending(self) -> list[AlertRequest]:
        with self._lock:
            return [entry[2] for entry in sorted(self._queue)]

    def _pop_next(self) -> AlertRequest | None:
        with self._lock:
            if not self._queue:
                return None
            return heapq.heappop(self._queue)[2]

    def _remaining(self) -> int:
        with self._lock:
            return len(self._queue)

    def process_pending(self, limit: int | None = None) -> DispatchStats:
        """Vide la file par priorité. L'envoi se fait hors du verrou."""
        stats = DispatchStats()
        if self.email_client is None:
            stats.remaining = self._remaining()
            logger.warning("SMTP not configured, %s alerts left in queue", stats.remaining)
            return stats

        while limit is None or stats.sent + stats.failed < limit:
            alert = self._pop_next()
            if alert is None:
                break
            recipients = alert.recipients or self.default_recipients
            if not recipients:
                logger.warning("Alert %s dropped: no recipients configured", alert.type.value)
                self.failed.append(alert)
                stats.failed += 1
                continue

            subject, body = format_alert(alert)
            try:
                self._send(recipients, subject, body)
            except DELIVERY_ERRORS as exc:
                logger.error("Alert %s undeliverable after %s tries: %s", alert.type.value, self.max_tries, exc)
                self.failed.append(alert)
                stats.failed += 1
            else:
                stats.sent += 1

        stats.remaining = self._remaining()
        return stats

    # ---------- bons de commande ----------
    def deliver_purchase_order(self, po: PurchaseOrder, recipient_email: str, attachment_format: str = "pdf") -> bool:
        attachment = render_po_document(po, attachment_format)
        subject = f"Purchase Order {po.po_number}"
        body = (
            f"Please find attached purchase order {po.po_number}.\n\n"
            f"Lines: {len(po.lines)}\n"
            f"Total: {po.total_amount}\n"
        )
        try:
            self._send([recipient_email], subject, body, [attachment])
        except DELIVERY_ERRORS as exc:
            logger.error("Purchase order %s not delivered to %s: %s", po.po_number, recipient_email, exc)
            return False
        logger.info("Purchase order %s delivered to %s", po.po_number, recipient_email)
        return True
