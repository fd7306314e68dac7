from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field

from backend.app.db.models.core_types import POStatus, Urgency


# ---------- SUGGESTIONS ----------
class SuggestionLine(BaseModel):
    sku: str
    product_name: str | None = None
    quantity: int = Field(gt=0)
    unit_cost: Decimal = Field(ge=0)
    total_cost: Decimal = Decimal("0.00")  # recalculé, jamais repris tel quel
    current_stock: int = 0
    reorder_point: int = 0
    sales_velocity: float = 0.0
    days_until_stockout: int = 999
    urgency: Urgency = Urgency.low


class POSuggestion(BaseModel):
    vendor_id: int | None = None
    vendor_name: str | None = None
    vendor_email: str | None = None
    items: list[SuggestionLine] = Field(min_length=1)
    total_amount: Decimal = Decimal("0.00")
    total_items: int = 0
    urgency_level: Urgency = Urgency.low
    estimated_stockout_days: int = 999


class QuantityAdjustment(BaseModel):
    sku: str = Field(min_length=1)
    quantity: int


class POCreate(BaseModel):
    suggestion: POSuggestion
    adjustments: list[QuantityAdjustment] = Field(default_factory=list)
    created_by: str | None = None
    auto_submit: bool | None = None


# ---------- ACTIONS ----------
class ActorPayload(BaseModel):
    actor: str | None = None


class ApprovePayload(BaseModel):
    actor: str = Field(min_length=1)


class RejectPayload(BaseModel):
    actor: str = Field(min_length=1)
    reason: str | None = None  # validé par la machine à états


class SendPayload(BaseModel):
    actor: str | None = None
    attachment_format: str | None = None


class ReceivePayload(BaseModel):
    actor: str | None = None
    complete: bool = True


class CancelPayload(BaseModel):
    actor: str = Field(min_length=1)
    reason: str | None = None


# ---------- LECTURE ----------
class POLineRead(BaseModel):
    sku: str
    product_name: str | None
    quantity: int
    unit_cost: Decimal
    line_total: Decimal

    class Config:
        from_attributes = True


class AuditEntryRead(BaseModel):
    id: int
    action: str
    status: POStatus
    actor: str | None
    origin: str | None
    details: dict[str, Any] | None
    created_at: datetime

    class Config:
        from_attributes = True


class PORead(BaseModel):
    id: int
    po_number: str
    vendor_id: int | None
    vendor_name: str | None
    vendor_email: str | None
    status: POStatus
    urgency_level: Urgency
    total_amount: Decimal
    notes: str | None
    created_at: datetime
    created_by: str | None
    submitted_at: datetime | None
    approved_at: datetime | None
    approved_by: str | None
    rejected_at: datetime | None
    rejected_by: str | None
    rejection_reason: str | None
    sent_at: datetime | None
    received_at: datetime | None
    cancelled_at: datetime | None
    cancelled_by: str | None
    lines: list[POLineRead] = Field(default_factory=list)

    class Config:
        from_attributes = True


class PODetailRead(PORead):
    audit_trail: list[AuditEntryRead] = Field(default_factory=list)
