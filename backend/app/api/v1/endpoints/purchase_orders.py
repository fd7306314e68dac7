from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from backend.app.api.deps import get_db, get_dispatcher, get_origin
from backend.app.db.models.core_types import POStatus
from backend.app.schemas.purchase_order import (
    ActorPayload,
    ApprovePayload,
    CancelPayload,
    PODetailRead,
    PORead,
    POSuggestion,
    POCreate,
    ReceivePayload,
    RejectPayload,
    SendPayload,
)
from backend.services import procurement
from backend.services.notifications import NotificationDispatcher

router = APIRouter(prefix="/purchase-orders")


@router.get("/suggestions", response_model=list[POSuggestion])
def get_suggestions(db: Session = Depends(get_db)):
    return procurement.get_reorder_suggestions(db)


@router.post("", response_model=PODetailRead, status_code=201)
def create_po(
    payload: POCreate,
    db: Session = Depends(get_db),
    origin: str | None = Depends(get_origin),
):
    return procurement.create_purchase_order(
        db,
        payload.suggestion,
        payload.adjustments,
        actor=payload.created_by,
        origin=origin,
        auto_submit=payload.auto_submit,
    )


@router.get("", response_model=list[PORead])
def list_pos(
    status: POStatus | None = None,
    limit: int = Query(default=200, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return procurement.list_purchase_orders(db, status=status, limit=limit, offset=offset)


@router.get("/{po_id}", response_model=PODetailRead)
def get_po(po_id: int, db: Session = Depends(get_db)):
    return procurement.get_purchase_order(db, po_id)


# ---------- TRANSITIONS ----------
@router.post("/{po_id}/submit", response_model=PODetailRead)
def submit_po(
    po_id: int,
    payload: ActorPayload | None = None,
    db: Session = Depends(get_db),
    origin: str | None = Depends(get_origin),
):
    return procurement.submit_po(db, po_id, actor=payload.actor if payload else None, origin=origin)


@router.post("/{po_id}/approve", response_model=PODetailRead)
def approve_po(
    po_id: int,
    payload: ApprovePayload,
    db: Session = Depends(get_db),
    origin: str | None = Depends(get_origin),
):
    return procurement.approve_po(db, po_id, actor=payload.actor, origin=origin)


@router.post("/{po_id}/reject", response_model=PODetailRead)
def reject_po(
    po_id: int,
    payload: RejectPayload,
    db: Session = Depends(get_db),
    origin: str | None = Depends(get_origin),
):
    return procurement.reject_po(db, po_id, actor=payload.actor, reason=payload.reason, origin=origin)


@router.post("/{po_id}/send", response_model=PODetailRead)
def send_po(
    po_id: int,
    payload: SendPayload | None = None,
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    origin: str | None = Depends(get_origin),
):
    payload = payload or SendPayload()
    return procurement.send_po(
        db,
        po_id,
        dispatcher,
        actor=payload.actor,
        origin=origin,
        attachment_format=payload.attachment_format,
    )


@router.post("/{po_id}/receive", response_model=PODetailRead)
def receive_po(
    po_id: int,
    payload: ReceivePayload | None = None,
    db: Session = Depends(get_db),
    origin: str | None = Depends(get_origin),
):
    payload = payload or ReceivePayload()
    return procurement.receive_po(db, po_id, actor=payload.actor, complete=payload.complete, origin=origin)


@router.post("/{po_id}/cancel", response_model=PODetailRead)
def cancel_po(
    po_id: int,
    payload: CancelPayload,
    db: Session = Depends(get_db),
    origin: str | None = Depends(get_origin),
):
    return procurement.cancel_po(db, po_id, actor=payload.actor, reason=payload.reason, origin=origin)
