from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from backend.app.core.errors import DatabaseError, DispatchError, ValidationError
from backend.app.db.models.core_types import POStatus, Urgency
from backend.app.db.models.models_v1 import AuditTrailEntry, InventoryItem, PurchaseOrder, Vendor
from backend.app.schemas.purchase_order import QuantityAdjustment
from backend.services import procurement
from backend.services.inventory import get_item
from backend.services.procurement import (
    apply_adjustments,
    approve_po,
    build_suggestion_line,
    cancel_po,
    create_purchase_order,
    generate_po_number,
    get_audit_trail,
    get_reorder_suggestions,
    receive_po,
    reject_po,
    send_po,
    submit_po,
)

from conftest import FakeDispatcher


@pytest.fixture
def reorder_items(make_item):
    # Acme : 2 items (dont un critique), Globex : 1 item, 1 item sans fournisseur
    make_item("A-1", current_stock=2, reorder_point=10, reorder_quantity=20, vendor="Acme",
              unit_cost=Decimal("1.25"), sales_last_30_days=30)
    make_item("A-2", current_stock=8, reorder_point=10, reorder_quantity=5, vendor="ACME ",
              unit_cost=Decimal("4.00"))
    make_item("G-1", current_stock=15, reorder_point=20, reorder_quantity=10, vendor="Globex",
              unit_cost=Decimal("10.00"), sales_last_30_days=30)
    make_item("N-1", current_stock=0, reorder_point=1, reorder_quantity=3)
    make_item("OK-1", current_stock=50, reorder_point=10, vendor="Acme")


def audit_actions(db, po_id):
    return [e.action for e in get_audit_trail(db, po_id)]


def make_po(db, *, email="orders@acme.test", vendor="Acme"):
    suggestion = next(s for s in get_reorder_suggestions(db) if s.vendor_name == vendor)
    suggestion = suggestion.model_copy(update={"vendor_email": email})
    return create_purchase_order(db, suggestion, actor="buyer", auto_submit=False)


def approved_po(db, **kwargs):
    po = make_po(db, **kwargs)
    submit_po(db, po.id, actor="buyer")
    return approve_po(db, po.id, actor="manager")


# ---------- suggestions ----------
def test_suggestions_grouped_by_vendor(db_session, reorder_items):
    suggestions = get_reorder_suggestions(db_session)
    by_vendor = {s.vendor_name: s for s in suggestions}

    assert set(by_vendor) == {"Acme", "Globex", None}
    acme = by_vendor["Acme"]
    assert sorted(line.sku for line in acme.items) == ["A-1", "A-2"]
    assert acme.total_items == 2
    # A-1 : 2 jours de stock -> critical
    assert acme.urgency_level == Urgency.critical
    assert acme.estimated_stockout_days == 2
    assert acme.total_amount == sum(line.total_cost for line in acme.items)
    # le plus urgent en premier
    assert suggestions[0].vendor_name == "Acme"


def test_suggestion_line_quantity_is_suggested_quantity(db_session, reorder_items):
    acme = next(s for s in get_reorder_suggestions(db_session) if s.vendor_name == "Acme")
    line = next(l for l in acme.items if l.sku == "A-1")
    # max(20, ceil(1/jour * 7 * 1.5) = 11, 1) = 20
    assert line.quantity == 20
    assert line.total_cost == Decimal("25.00")


def test_suggestion_line_orders_at_least_one_unit():
    """
    GIVEN un item sans réappro, sans ventes et sans MOQ exploitable
    THEN la ligne suggérée commande quand même une unité
    """
    item = InventoryItem(
        sku="Z-1", product_name="Zero", current_stock=0, reorder_point=0, reorder_quantity=0,
        min_order_quantity=0, order_increment=0, lead_time_days=7, unit_cost=Decimal("2.00"),
        sales_last_30_days=0, sales_last_90_days=0,
    )
    line = build_suggestion_line(item)
    assert line.quantity == 1
    assert line.total_cost == Decimal("2.00")


def test_suggestions_with_minimal_item_do_not_break_other_vendors(db_session, reorder_items, make_item):
    make_item("Z-1", current_stock=0, reorder_point=0, reorder_quantity=0, vendor="Initech")

    suggestions = {s.vendor_name: s for s in get_reorder_suggestions(db_session)}

    assert suggestions["Initech"].items[0].quantity == 1
    assert "Acme" in suggestions


@pytest.mark.parametrize("field", ["min_order_quantity", "order_increment"])
def test_item_order_constraints_are_enforced(db_session, make_item, field):
    with pytest.raises(IntegrityError):
        make_item("Z-1", **{field: 0})
    db_session.rollback()


def test_adjustments_recompute_totals(db_session, reorder_items):
    acme = next(s for s in get_reorder_suggestions(db_session) if s.vendor_name == "Acme")
    tampered = acme.model_copy(update={"total_amount": Decimal("1.00")})

    adjusted = apply_adjustments(tampered, [QuantityAdjustment(sku="A-2", quantity=7)])

    line = next(l for l in adjusted.items if l.sku == "A-2")
    assert line.quantity == 7
    assert line.total_cost == Decimal("28.00")
    assert adjusted.total_amount == Decimal("53.00")
    # l'original est intact
    assert next(l for l in acme.items if l.sku == "A-2").quantity != 7


@pytest.mark.parametrize(
    "adjustment",
    [QuantityAdjustment(sku="NOPE", quantity=3), QuantityAdjustment(sku="A-1", quantity=0)],
)
def test_invalid_adjustments_rejected(db_session, reorder_items, adjustment):
    acme = next(s for s in get_reorder_suggestions(db_session) if s.vendor_name == "Acme")
    with pytest.raises(ValidationError):
        apply_adjustments(acme, [adjustment])


# ---------- création ----------
def test_create_po_draft_with_audit(db_session, reorder_items):
    po = make_po(db_session)

    assert po.status == POStatus.draft
    assert po.po_number.startswith("PO-")
    assert len(po.po_number.split("-")[2]) == 6
    assert po.vendor_id is not None
    assert po.total_amount == sum(l.line_total for l in po.lines)
    assert audit_actions(db_session, po.id) == ["created"]
    # fournisseur créé au premier PO
    assert db_session.execute(select(Vendor).where(Vendor.name_key == "acme")).scalar_one()


def test_create_po_with_auto_submit(db_session, reorder_items):
    acme = next(s for s in get_reorder_suggestions(db_session) if s.vendor_name == "Acme")
    po = create_purchase_order(db_session, acme, actor="buyer", auto_submit=True)

    assert po.status == POStatus.pending_approval
    assert po.submitted_at is not None
    assert audit_actions(db_session, po.id) == ["created", "submitted"]


def test_po_number_scans_existing_numbers(db_session):
    for number in ("PO-2026-000004", "PO-2026-000012", "PO-2026-MANUAL", "PO-2025-000099"):
        db_session.add(PurchaseOrder(po_number=number))
    db_session.commit()

    assert generate_po_number(db_session, 2026) == "PO-2026-000013"
    assert generate_po_number(db_session, 2027) == "PO-2027-000001"


def test_po_number_collision_is_retried(db_session, reorder_items, monkeypatch):
    """
    GIVEN deux créations qui calculent le même numéro (course)
    THEN  la contrainte unique fait échouer la seconde, qui réalloue
    """
    first = make_po(db_session)
    real = procurement.generate_po_number
    calls = {"n": 0}

    def racing(db, year):
        calls["n"] += 1
        return first.po_number if calls["n"] == 1 else real(db, year)

    monkeypatch.setattr(procurement, "generate_po_number", racing)
    second = make_po(db_session, vendor="Globex")

    assert second.po_number != first.po_number
    assert calls["n"] == 2
    assert db_session.execute(select(func.count()).select_from(PurchaseOrder)).scalar_one() == 2


def test_po_number_collision_gives_up(db_session, reorder_items, monkeypatch):
    first = make_po(db_session)
    monkeypatch.setattr(procurement, "generate_po_number", lambda db, year: first.po_number)

    with pytest.raises(DatabaseError):
        make_po(db_session, vendor="Globex")


# ---------- machine à états ----------
def test_full_lifecycle(db_session, reorder_items):
    dispatcher = FakeDispatcher()
    po = approved_po(db_session)
    assert po.approved_by == "manager"

    po = send_po(db_session, po.id, dispatcher, actor="buyer", attachment_format="csv")
    assert po.status == POStatus.sent
    assert po.sent_at is not None
    assert dispatcher.deliveries == [(po.po_number, "orders@acme.test", "csv")]
    assert get_item(db_session, "A-1").last_ordered_quantity == 20

    po = receive_po(db_session, po.id, complete=False)
    assert po.status == POStatus.partial
    po = receive_po(db_session, po.id, complete=True)
    assert po.status == POStatus.received
    assert po.received_at is not None

    assert audit_actions(db_session, po.id) == [
        "created",
        "submitted",
        "approved",
        "sent",
        "partially_received",
        "received",
    ]


def test_approve_only_from_pending_approval(db_session, reorder_items):
    po = make_po(db_session)
    with pytest.raises(ValidationError):
        approve_po(db_session, po.id, actor="manager")

    db_session.refresh(po)
    assert po.status == POStatus.draft
    assert audit_actions(db_session, po.id) == ["created"]


def test_approve_requires_actor(db_session, reorder_items):
    po = make_po(db_session)
    submit_po(db_session, po.id)
    with pytest.raises(ValidationError):
        approve_po(db_session, po.id, actor="  ")


def test_reject_requires_reason(db_session, reorder_items):
    po = make_po(db_session)
    submit_po(db_session, po.id)

    with pytest.raises(ValidationError):
        reject_po(db_session, po.id, actor="manager", reason="")
    assert audit_actions(db_session, po.id) == ["created", "submitted"]

    po = reject_po(db_session, po.id, actor="manager", reason="Too expensive")
    assert po.status == POStatus.rejected
    assert po.rejection_reason == "Too expensive"
    assert po.rejected_by == "manager"
    rejected = [e for e in get_audit_trail(db_session, po.id) if e.action == "rejected"]
    assert len(rejected) == 1
    assert rejected[0].status == POStatus.rejected


def test_invalid_transition_from_terminal_state(db_session, reorder_items):
    po = make_po(db_session)
    cancel_po(db_session, po.id, actor="admin", reason="duplicate")

    for attempt in (
        lambda: approve_po(db_session, po.id, actor="manager"),
        lambda: submit_po(db_session, po.id),
        lambda: cancel_po(db_session, po.id, actor="admin"),
    ):
        with pytest.raises(ValidationError):
            attempt()
    assert audit_actions(db_session, po.id) == ["created", "cancelled"]


def test_cancel_from_any_non_terminal_state(db_session, reorder_items):
    po = approved_po(db_session)
    po = cancel_po(db_session, po.id, actor="admin")
    assert po.status == POStatus.cancelled
    assert po.cancelled_by == "admin"


def test_send_without_vendor_email_keeps_status(db_session, reorder_items):
    dispatcher = FakeDispatcher()
    po = approved_po(db_session, email=None)

    with pytest.raises(ValidationError):
        send_po(db_session, po.id, dispatcher)

    db_session.refresh(po)
    assert po.status == POStatus.approved
    assert dispatcher.deliveries == []
    assert audit_actions(db_session, po.id)[-1] == "approved"


def test_send_dispatch_failure_keeps_approved(db_session, reorder_items):
    dispatcher = FakeDispatcher(deliver_ok=False)
    po = approved_po(db_session)

    with pytest.raises(DispatchError):
        send_po(db_session, po.id, dispatcher)

    db_session.refresh(po)
    assert po.status == POStatus.approved
    assert po.sent_at is None
    assert get_item(db_session, "A-1").last_ordered_date is None
    assert audit_actions(db_session, po.id)[-1] == "approved"


def test_concurrent_transitions_only_one_wins(db_session, session_factory, reorder_items):
    """
    GIVEN deux sessions qui ont lu le même PO pending_approval
    THEN  la première décision gagne, la seconde voit un état périmé
    """
    po = make_po(db_session)
    submit_po(db_session, po.id)

    other = session_factory()
    try:
        stale = other.get(PurchaseOrder, po.id)
        assert stale.status == POStatus.pending_approval

        approve_po(db_session, po.id, actor="manager")

        with pytest.raises(ValidationError):
            reject_po(other, po.id, actor="other-manager", reason="late")
    finally:
        other.close()

    db_session.refresh(po)
    assert po.status == POStatus.approved
    count = db_session.execute(
        select(func.count()).select_from(AuditTrailEntry).where(AuditTrailEntry.action == "rejected")
    ).scalar_one()
    assert count == 0
