"""
Procurement service.

Suggestions de réappro groupées par fournisseur, création des PO, machine à
états (voir backend.services.po_workflow) et piste d'audit.

Toute la logique de calcul (vélocité, urgence, quantité suggérée) reste dans :
    backend.services.inventory

Règles :
- po_number = PO-{année}-{séquence sur 6 chiffres}, prochaine valeur libre de
  l'année (scan des numéros existants, pas de table compteur)
- chaque transition = UPDATE conditionnel sur le statut attendu + une entrée
  d'audit, dans la même transaction
- les montants sont toujours recalculés (quantité x coût unitaire)
"""

from __future__ import annotations

import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Iterable

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from backend.app.core.clock import utcnow
from backend.app.core.config import settings
from backend.app.core.errors import DatabaseError, DispatchError, NotFoundError, ValidationError
from backend.app.db.models.core_types import POAction, POStatus, URGENCY_RANK, Urgency
from backend.app.db.models.models_v1 import (
    AuditTrailEntry,
    InventoryItem,
    PurchaseOrder,
    PurchaseOrderLine,
)
from backend.app.schemas.purchase_order import POSuggestion, QuantityAdjustment, SuggestionLine
from backend.services.inventory import (
    NO_STOCKOUT_SENTINEL,
    days_until_stockout,
    list_items_needing_reorder,
    record_last_ordered,
    sales_velocity,
    suggested_order_quantity,
    urgency_level,
)
from backend.services.notifications import NotificationDispatcher
from backend.services.po_workflow import resolve_transition
from backend.services.vendors import find_vendor_by_name, get_or_create_vendor, vendor_key

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
PO_NUMBER_MAX_ATTEMPTS = 5


def money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(CENT, rounding=ROUND_HALF_UP)


def line_total(quantity: int, unit_cost) -> Decimal:
    return money(Decimal(int(quantity)) * Decimal(str(unit_cost or 0)))


# ---------- SUGGESTIONS ----------
def build_suggestion_line(item: InventoryItem) -> SuggestionLine:
    # une ligne de PO commande au moins une unité
    quantity = max(suggested_order_quantity(item), 1)
    unit_cost = money(item.unit_cost)
    return SuggestionLine(
        sku=item.sku,
        product_name=item.product_name,
        quantity=quantity,
        unit_cost=unit_cost,
        total_cost=line_total(quantity, unit_cost),
        current_stock=item.current_stock,
        reorder_point=item.reorder_point,
        sales_velocity=round(sales_velocity(item), 4),
        days_until_stockout=days_until_stockout(item),
        urgency=urgency_level(item),
    )


def _summarize(suggestion: POSuggestion, lines: list[SuggestionLine]) -> POSuggestion:
    """Recalcule totaux, urgence (la plus sévère) et rupture estimée (la plus proche)."""
    lines = [
        line.model_copy(update={"total_cost": line_total(line.quantity, line.unit_cost)})
        for line in lines
    ]
    return suggestion.model_copy(
        update={
            "items": lines,
            "total_amount": money(sum((line.total_cost for line in lines), Decimal("0"))),
            "total_items": len(lines),
            "urgency_level": min((line.urgency for line in lines), key=URGENCY_RANK.__getitem__, default=Urgency.low),
            "estimated_stockout_days": min((line.days_until_stockout for line in lines), default=NO_STOCKOUT_SENTINEL),
        }
    )


def get_reorder_suggestions(db: Session) -> list[POSuggestion]:
    """
    Une suggestion par fournisseur (nom insensible à la casse) pour les items
    à réapprovisionner. Les items sans fournisseur forment un groupe à part
    (vendor_name=None). Tri : urgence puis montant décroissant.
    """
    groups: dict[str | None, list[InventoryItem]] = {}
    for item in list_items_needing_reorder(db):
        key = vendor_key(item.vendor) if item.vendor and item.vendor.strip() else None
        groups.setdefault(key, []).append(item)

    suggestions: list[POSuggestion] = []
    for key, items in groups.items():
        vendor = find_vendor_by_name(db, items[0].vendor) if key else None
        lines = [build_suggestion_line(item) for item in items]
        draft = POSuggestion.model_construct(
            vendor_id=vendor.id if vendor else None,
            vendor_name=vendor.name if vendor else (items[0].vendor.strip() if key else None),
            vendor_email=vendor.contact_email if vendor else None,
            items=lines,
        )
        suggestions.append(_summarize(draft, lines))

    suggestions.sort(key=lambda s: (URGENCY_RANK[s.urgency_level], -s.total_amount))
    return suggestions


def apply_adjustments(suggestion: POSuggestion, adjustments: Iterable[QuantityAdjustment]) -> POSuggestion:
    """
    Retourne une nouvelle suggestion avec les quantités surchargées.
    Les totaux sont recalculés pour toutes les lignes, ajustées ou non.
    """
    overrides: dict[str, int] = {}
    for adjustment in adjustments:
        if adjustment.sku in overrides:
            raise ValidationError(f"Duplicate adjustment for sku {adjustment.sku}", {"sku": adjustment.sku})
        if adjustment.quantity <= 0:
            raise ValidationError(
                f"Quantity for sku {adjustment.sku} must be positive",
                {"sku": adjustment.sku, "quantity": adjustment.quantity},
            )
        overrides[adjustment.sku] = adjustment.quantity

    known = {line.sku for line in suggestion.items}
    unknown = sorted(set(overrides) - known)
    if unknown:
        raise ValidationError("Adjustment for sku not in suggestion", {"skus": unknown})

    lines = [
        line.model_copy(update={"quantity": overrides[line.sku]}) if line.sku in overrides else line
        for line in suggestion.items
    ]
    return _summarize(suggestion, lines)


# ---------- CRÉATION ----------
def generate_po_number(db: Session, year: int) -> str:
    prefix = f"PO-{year}-"
    numbers = db.execute(
        select(PurchaseOrder.po_number).where(PurchaseOrder.po_number.like(f"{prefix}%"))
    ).scalars()

    last = 0
    for number in numbers:
        suffix = number[len(prefix):]
        # numéros saisis hors workflow : on ignore ce qui n'est pas numérique
        if suffix.isdigit():
            last = max(last, int(suffix))
    return f"{prefix}{last + 1:06d}"


def _audit(
    db: Session,
    po_id: int,
    action: str,
    status: POStatus,
    actor: str | None,
    origin: str | None,
    details: dict | None = None,
) -> None:
    db.add(
        AuditTrailEntry(
            po_id=po_id,
            action=action,
            status=status,
            actor=actor,
            origin=origin,
            details=details,
            created_at=utcnow(),
        )
    )


def _validate_lines(suggestion: POSuggestion) -> None:
    if not suggestion.items:
        raise ValidationError("A purchase order needs at least one line")
    skus = [line.sku for line in suggestion.items]
    duplicates = sorted({sku for sku in skus if skus.count(sku) > 1})
    if duplicates:
        raise ValidationError("Duplicate sku in purchase order lines", {"skus": duplicates})
    for line in suggestion.items:
        if line.quantity <= 0:
            raise ValidationError(f"Quantity for sku {line.sku} must be positive", {"sku": line.sku})
        if Decimal(line.unit_cost) < 0:
            raise ValidationError(f"Unit cost for sku {line.sku} must not be negative", {"sku": line.sku})


def create_purchase_order(
    db: Session,
    suggestion: POSuggestion,
    adjustments: Iterable[QuantityAdjustment] | None = None,
    *,
    actor: str | None = None,
    origin: str | None = None,
    auto_submit: bool | None = None,
) -> PurchaseOrder:
    """
    PO draft + lignes + audit 'created' dans une seule transaction.

    Si deux créations obtiennent le même numéro, la contrainte unique fait
    échouer la seconde : rollback complet et nouvelle allocation.
    """
    suggestion = apply_adjustments(suggestion, adjustments or [])
    _validate_lines(suggestion)
    if auto_submit is None:
        auto_submit = settings.PO_AUTO_SUBMIT

    notes = (
        f"Generated from reorder suggestion. Urgency: {suggestion.urgency_level.value}. "
        f"Earliest stockout in {suggestion.estimated_stockout_days} days."
    )

    for attempt in range(1, PO_NUMBER_MAX_ATTEMPTS + 1):
        now = utcnow()
        try:
            vendor = None
            if suggestion.vendor_name and suggestion.vendor_name.strip():
                vendor = get_or_create_vendor(db, suggestion.vendor_name, suggestion.vendor_email)

            po = PurchaseOrder(
                po_number=generate_po_number(db, now.year),
                vendor_id=vendor.id if vendor else None,
                vendor_name=vendor.name if vendor else None,
                vendor_email=suggestion.vendor_email or (vendor.contact_email if vendor else None),
                status=POStatus.draft,
                urgency_level=suggestion.urgency_level,
                total_amount=suggestion.total_amount,
                notes=notes,
                created_at=now,
                created_by=actor,
                updated_at=now,
                lines=[
                    PurchaseOrderLine(
                        sku=line.sku,
                        product_name=line.product_name,
                        quantity=line.quantity,
                        unit_cost=money(line.unit_cost),
                        line_total=line.total_cost,
                    )
                    for line in suggestion.items
                ],
            )
            db.add(po)
            db.flush()
            _audit(db, po.id, "created", POStatus.draft, actor, origin, {"po_number": po.po_number})

            if auto_submit:
                transition = resolve_transition(POStatus.draft, POAction.submit)
                for column, value in transition.build_values(actor=actor, reason=None, now=now).items():
                    setattr(po, column, value)
                _audit(db, po.id, transition.audit_action, transition.target, actor, origin)

            db.commit()
        except IntegrityError as exc:
            db.rollback()
            if attempt == PO_NUMBER_MAX_ATTEMPTS:
                raise DatabaseError("create purchase order", "could not allocate a unique PO number", exc) from exc
            logger.warning("PO number collision (attempt %s/%s), retrying", attempt, PO_NUMBER_MAX_ATTEMPTS)
            continue
        except SQLAlchemyError as exc:
            db.rollback()
            raise DatabaseError("create purchase order", str(exc), exc) from exc

        db.refresh(po)
        logger.info("Purchase order %s created (%s lines, total %s)", po.po_number, len(po.lines), po.total_amount)
        return po

    raise DatabaseError("create purchase order", "could not allocate a unique PO number")


# ---------- LECTURES ----------
def get_purchase_order(db: Session, po_id: int) -> PurchaseOrder:
    po = db.get(PurchaseOrder, po_id)
    if not po:
        raise NotFoundError("PurchaseOrder", po_id)
    return po


def list_purchase_orders(
    db: Session,
    status: POStatus | None = None,
    limit: int = 200,
    offset: int = 0,
) -> list[PurchaseOrder]:
    stmt = select(PurchaseOrder).order_by(PurchaseOrder.id.desc()).limit(limit).offset(offset)
    if status:
        stmt = stmt.where(PurchaseOrder.status == POStatus(status))
    return list(db.execute(stmt).scalars().all())


def get_audit_trail(db: Session, po_id: int) -> list[AuditTrailEntry]:
    get_purchase_order(db, po_id)
    return list(
        db.execute(
            select(AuditTrailEntry).where(AuditTrailEntry.po_id == po_id).order_by(AuditTrailEntry.id)
        )
        .scalars()
        .all()
    )


# ---------- TRANSITIONS ----------
def _transition(
    db: Session,
    po_id: int,
    action: POAction,
    *,
    actor: str | None = None,
    reason: str | None = None,
    origin: str | None = None,
    details: dict | None = None,
    on_applied: Callable[[PurchaseOrder], None] | None = None,
) -> PurchaseOrder:
    po = get_purchase_order(db, po_id)
    expected = po.status
    transition = resolve_transition(expected, action)
    now = utcnow()
    values = transition.build_values(actor=actor, reason=reason, now=now)

    try:
        result = db.execute(
            update(PurchaseOrder)
            .where(PurchaseOrder.id == po_id)
            .where(PurchaseOrder.status == expected)
            .values(updated_at=now, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            raise ValidationError(
                f"Purchase order {po.po_number} is no longer {expected.value}",
                {"expected_status": expected.value, "action": POAction(action).value},
            )

        audit_details = dict(details or {})
        if reason:
            audit_details["reason"] = reason.strip()
        _audit(db, po_id, transition.audit_action, transition.target, actor, origin, audit_details or None)
        if on_applied:
            on_applied(po)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise DatabaseError(f"{POAction(action).value} purchase order", str(exc), exc) from exc

    db.refresh(po)
    logger.info("Purchase order %s: %s -> %s (%s)", po.po_number, expected.value, po.status.value, actor or "-")
    return po


def submit_po(db: Session, po_id: int, actor: str | None = None, origin: str | None = None) -> PurchaseOrder:
    return _transition(db, po_id, POAction.submit, actor=actor, origin=origin)


def approve_po(db: Session, po_id: int, actor: str, origin: str | None = None) -> PurchaseOrder:
    return _transition(db, po_id, POAction.approve, actor=actor, origin=origin)


def reject_po(db: Session, po_id: int, actor: str, reason: str | None, origin: str | None = None) -> PurchaseOrder:
    return _transition(db, po_id, POAction.reject, actor=actor, reason=reason, origin=origin)


def send_po(
    db: Session,
    po_id: int,
    dispatcher: NotificationDispatcher,
    actor: str | None = None,
    origin: str | None = None,
    attachment_format: str | None = None,
) -> PurchaseOrder:
    """
    approved -> sent, seulement si la remise au fournisseur a réussi.
    En cas d'échec (pas d'email, remise KO), le PO reste approved.
    """
    po = get_purchase_order(db, po_id)
    resolve_transition(po.status, POAction.send)

    recipient = po.vendor_email or (po.vendor.contact_email if po.vendor else None)
    if not recipient:
        raise ValidationError(f"Purchase order {po.po_number} has no vendor email", {"po_id": po_id})

    fmt = attachment_format or settings.PO_ATTACHMENT_FORMAT
    if not dispatcher.deliver_purchase_order(po, recipient, fmt):
        raise DispatchError(
            f"Purchase order {po.po_number} could not be delivered to {recipient}",
            {"po_id": po_id, "recipient": recipient},
        )

    ordered_on = utcnow().date()
    ordered = [(line.sku, line.quantity) for line in po.lines]
    return _transition(
        db,
        po_id,
        POAction.send,
        actor=actor,
        origin=origin,
        details={"recipient": recipient, "format": fmt},
        on_applied=lambda _po: record_last_ordered(db, ordered, ordered_on),
    )


def receive_po(
    db: Session,
    po_id: int,
    actor: str | None = None,
    complete: bool = True,
    origin: str | None = None,
) -> PurchaseOrder:
    action = POAction.receive if complete else POAction.receive_partial
    return _transition(db, po_id, action, actor=actor, origin=origin)


def cancel_po(
    db: Session,
    po_id: int,
    actor: str,
    reason: str | None = None,
    origin: str | None = None,
) -> PurchaseOrder:
    return _transition(db, po_id, POAction.cancel, actor=actor, reason=reason, origin=origin)
