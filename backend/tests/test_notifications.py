import smtplib
import threading
from decimal import Decimal

import pytest

from backend.app.core.errors import ValidationError
from backend.app.db.models.core_types import AlertType
from backend.app.db.models.models_v1 import PurchaseOrder, PurchaseOrderLine
from backend.services.documents import render_po_document
from backend.services.email_client import Attachment, EmailClient
from backend.services.notifications import AlertRequest, NotificationDispatcher, format_alert


class FakeEmailClient:
    """Échoue `failures` fois avant de réussir."""

    def __init__(self, failures=0):
        self.failures = failures
        self.sent = []
        self.attempts = 0

    def send_email(self, sender, recipients, subject, text_body, attachments=None):
        self.attempts += 1
        if self.failures:
            self.failures -= 1
            raise smtplib.SMTPServerDisconnected("connection lost")
        self.sent.append({"to": recipients, "subject": subject, "body": text_body, "attachments": attachments})


def dispatcher(client, **kwargs):
    kwargs.setdefault("default_recipients", ["ops@example.test"])
    return NotificationDispatcher(client, "noreply@example.test", backoff_seconds=0, **kwargs)


def sample_po():
    return PurchaseOrder(
        po_number="PO-2026-000001",
        vendor_name="Acme",
        total_amount=Decimal("45.00"),
        lines=[
            PurchaseOrderLine(sku="A-1", product_name="Widget", quantity=20,
                              unit_cost=Decimal("1.25"), line_total=Decimal("25.00")),
            PurchaseOrderLine(sku="A-2", product_name="Gadget", quantity=5,
                              unit_cost=Decimal("4.00"), line_total=Decimal("20.00")),
        ],
    )


def test_alert_priorities_default_from_type():
    assert AlertRequest(AlertType.out_of_stock).priority == 1
    assert AlertRequest("failure").priority == 2
    assert AlertRequest(AlertType.success).priority == 8


def test_process_pending_in_priority_order():
    client = FakeEmailClient()
    d = dispatcher(client)
    for alert_type in (AlertType.success, AlertType.warning, AlertType.out_of_stock, AlertType.failure):
        d.enqueue_alert(AlertRequest(alert_type, {"sync_log_id": 1}))

    stats = d.process_pending()

    assert stats.sent == 4
    assert stats.remaining == 0
    assert [m["subject"] for m in client.sent] == [
        "Items out of stock",
        "Inventory sync failed",
        "Inventory sync completed with warnings",
        "Inventory sync recovered",
    ]


def test_same_priority_is_fifo():
    d = dispatcher(FakeEmailClient())
    first = AlertRequest(AlertType.warning, {"n": 1})
    second = AlertRequest(AlertType.warning, {"n": 2})
    d.enqueue_alert(first)
    d.enqueue_alert(second)
    assert d.pending == [first, second]


def test_delivery_retried_then_succeeds():
    client = FakeEmailClient(failures=2)
    d = dispatcher(client, max_tries=3)
    d.enqueue_alert(AlertRequest(AlertType.failure))

    stats = d.process_pending()

    assert stats.sent == 1
    assert client.attempts == 3


def test_exhausted_alert_goes_to_failed():
    client = FakeEmailClient(failures=5)
    d = dispatcher(client, max_tries=3)
    alert = AlertRequest(AlertType.stuck)
    d.enqueue_alert(alert)

    stats = d.process_pending()

    assert stats.failed == 1
    assert list(d.failed) == [alert]
    assert client.attempts == 3


def test_failed_history_is_bounded():
    d = dispatcher(FakeEmailClient(failures=100), max_tries=1, failed_history_size=2)
    alerts = [AlertRequest(AlertType.warning, {"n": n}) for n in range(3)]
    for alert in alerts:
        d.enqueue_alert(alert)

    stats = d.process_pending()

    assert stats.failed == 3
    # seules les plus récentes sont conservées
    assert list(d.failed) == alerts[1:]


def test_enqueue_from_several_threads_while_draining():
    """
    GIVEN des requêtes qui empilent des alertes pendant qu'une tâche de fond vide la file
    THEN  aucune alerte n'est perdue ni envoyée deux fois
    """
    client = FakeEmailClient()
    d = dispatcher(client)

    def producer(worker):
        for n in range(50):
            d.enqueue_alert(AlertRequest(AlertType.warning, {"worker": worker, "n": n}))

    threads = [threading.Thread(target=producer, args=(w,)) for w in range(4)]
    drainer = threading.Thread(target=d.process_pending)
    for t in threads:
        t.start()
    drainer.start()
    for t in threads:
        t.join()
    drainer.join()
    d.process_pending()

    assert len(client.sent) == 200
    assert d.pending == []


def test_without_smtp_alerts_stay_queued():
    d = dispatcher(None)
    d.enqueue_alert(AlertRequest(AlertType.failure))
    assert d.process_pending().remaining == 1


def test_process_pending_respects_limit():
    d = dispatcher(FakeEmailClient())
    for _ in range(3):
        d.enqueue_alert(AlertRequest(AlertType.warning))
    stats = d.process_pending(limit=2)
    assert stats.sent == 2
    assert stats.remaining == 1


def test_format_alert_lists_payload():
    subject, body = format_alert(AlertRequest(AlertType.out_of_stock, {"count": 2, "skus": ["A", "B"]}))
    assert subject == "Items out of stock"
    assert "count: 2" in body
    assert '"A"' in body


def test_deliver_purchase_order_attaches_document():
    client = FakeEmailClient()
    ok = dispatcher(client).deliver_purchase_order(sample_po(), "orders@acme.test", "csv")

    assert ok is True
    message = client.sent[0]
    assert message["to"] == ["orders@acme.test"]
    attachment = message["attachments"][0]
    assert attachment.filename == "PO-2026-000001.csv"
    assert attachment.mimetype == "text/csv"


def test_deliver_purchase_order_reports_failure():
    client = FakeEmailClient(failures=10)
    assert dispatcher(client, max_tries=2).deliver_purchase_order(sample_po(), "orders@acme.test") is False
    assert client.attempts == 2


# ---------- documents / email ----------
def test_render_csv_lines():
    doc = render_po_document(sample_po(), "csv")
    lines = doc.content.decode("utf-8").strip().splitlines()
    assert lines[0] == "po_number,sku,product_name,quantity,unit_cost,line_total"
    assert lines[1] == "PO-2026-000001,A-1,Widget,20,1.25,25.00"
    assert len(lines) == 3


def test_render_pdf():
    doc = render_po_document(sample_po(), "pdf")
    assert doc.mimetype == "application/pdf"
    assert doc.content.startswith(b"%PDF")


def test_render_unknown_format():
    with pytest.raises(ValidationError):
        render_po_document(sample_po(), "xlsx")


def test_email_message_keeps_attachment_type():
    msg = EmailClient.build_message(
        "noreply@example.test",
        ["a@example.test", "b@example.test"],
        "Subject",
        "Body",
        [Attachment("po.csv", "text/csv", b"a,b\n1,2\n")],
    )
    parts = msg.get_payload()
    assert msg["To"] == "a@example.test, b@example.test"
    assert parts[1].get_content_type() == "text/csv"
    assert parts[1].get_filename() == "po.csv"
