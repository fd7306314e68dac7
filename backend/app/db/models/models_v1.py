from __future__ import annotations

from datetime import datetime, date
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    String,
    Integer,
    DateTime,
    Date,
    Boolean,
    ForeignKey,
    Numeric,
    Text,
    Enum,
    JSON,
    UniqueConstraint,
    Index,
    CheckConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.core.clock import utcnow
from backend.app.db.base import Base, BigIntPK
from backend.app.db.models.core_types import (
    SyncType,
    SyncStatus,
    POStatus,
    Urgency,
)


# ---------- MASTER DATA ----------
class Vendor(Base):
    __tablename__ = "vendors"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    # identité insensible à la casse
    name_key: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    contact_name: Mapped[str | None] = mapped_column(String(255))
    contact_email: Mapped[str | None] = mapped_column(String(255))
    phone: Mapped[str | None] = mapped_column(String(64))
    lead_time_days: Mapped[int] = mapped_column(Integer, default=7, nullable=False)
    min_order_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    external_id: Mapped[str | None] = mapped_column(String(64), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("lead_time_days >= 0", name="ck_vendor_lead_time_nonneg"),
        CheckConstraint("min_order_amount >= 0", name="ck_vendor_min_order_nonneg"),
    )


# ---------- INVENTORY ----------
class InventoryItem(Base):
    """
    Une ligne par SKU (agrégée toutes locations confondues).

    Les signaux dérivés (statut, vélocité, rupture, quantité suggérée) ne sont
    jamais stockés : voir backend.services.inventory.
    """

    __tablename__ = "inventory_items"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    sku: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    external_id: Mapped[str | None] = mapped_column(String(64), index=True)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)

    current_stock: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    reserved_stock: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    on_order_stock: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    reorder_point: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    reorder_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_stock: Mapped[int | None] = mapped_column(Integer)
    min_order_quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    order_increment: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    lead_time_days: Mapped[int] = mapped_column(Integer, default=7, nullable=False)

    vendor: Mapped[str | None] = mapped_column(String(255), index=True)
    unit_cost: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0, nullable=False)
    location: Mapped[str] = mapped_column(String(128), default="Default", nullable=False)

    sales_last_30_days: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    sales_last_90_days: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    last_ordered_date: Mapped[date | None] = mapped_column(Date)
    last_ordered_quantity: Mapped[int | None] = mapped_column(Integer)
    discontinued: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("current_stock >= 0", name="ck_item_stock_nonneg"),
        CheckConstraint("reserved_stock >= 0", name="ck_item_reserved_nonneg"),
        CheckConstraint("on_order_stock >= 0", name="ck_item_on_order_nonneg"),
        CheckConstraint("unit_cost >= 0", name="ck_item_unit_cost_nonneg"),
        CheckConstraint("min_order_quantity >= 1", name="ck_item_moq_pos"),
        CheckConstraint("order_increment >= 1", name="ck_item_order_increment_pos"),
        Index("ix_inventory_items_reorder", "current_stock", "reorder_point"),
    )


# ---------- SYNC ----------
class SyncLog(Base):
    __tablename__ = "sync_logs"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    sync_type: Mapped[SyncType] = mapped_column(Enum(SyncType, name="sync_type"), nullable=False)
    status: Mapped[SyncStatus] = mapped_column(
        Enum(SyncStatus, name="sync_status"),
        default=SyncStatus.running,
        nullable=False,
    )
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    items_synced: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    duration_ms: Mapped[int | None] = mapped_column(Integer)
    errors: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)

    __table_args__ = (Index("ix_sync_logs_type_status", "sync_type", "status", "started_at"),)


# ---------- PROCUREMENT ----------
class PurchaseOrder(Base):
    __tablename__ = "purchase_orders"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    # attribué une seule fois, jamais modifié
    po_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    vendor_id: Mapped[int | None] = mapped_column(ForeignKey("vendors.id", ondelete="RESTRICT"))
    vendor_name: Mapped[str | None] = mapped_column(String(255))
    vendor_email: Mapped[str | None] = mapped_column(String(255))

    status: Mapped[POStatus] = mapped_column(Enum(POStatus, name="po_status"), default=POStatus.draft, nullable=False)
    urgency_level: Mapped[Urgency] = mapped_column(Enum(Urgency, name="urgency_level"), default=Urgency.low, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    created_by: Mapped[str | None] = mapped_column(String(128))
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    approved_by: Mapped[str | None] = mapped_column(String(128))
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    rejected_by: Mapped[str | None] = mapped_column(String(128))
    rejection_reason: Mapped[str | None] = mapped_column(Text)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    received_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_by: Mapped[str | None] = mapped_column(String(128))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    vendor: Mapped[Vendor | None] = relationship()
    lines: Mapped[list["PurchaseOrderLine"]] = relationship(
        back_populates="po",
        cascade="all, delete-orphan",
        order_by="PurchaseOrderLine.id",
    )
    audit_trail: Mapped[list["AuditTrailEntry"]] = relationship(
        order_by="AuditTrailEntry.id",
        viewonly=True,
    )

    __table_args__ = (
        CheckConstraint("total_amount >= 0", name="ck_po_total_nonneg"),
        CheckConstraint(
            "status <> 'rejected' OR rejection_reason IS NOT NULL",
            name="ck_po_rejection_reason",
        ),
        Index("ix_purchase_orders_status", "status"),
    )


class PurchaseOrderLine(Base):
    __tablename__ = "purchase_order_lines"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    po_id: Mapped[int] = mapped_column(ForeignKey("purchase_orders.id", ondelete="CASCADE"), nullable=False)
    sku: Mapped[str] = mapped_column(String(64), nullable=False)
    product_name: Mapped[str | None] = mapped_column(String(255))
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_cost: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    line_total: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)

    po: Mapped[PurchaseOrder] = relationship(back_populates="lines")

    __table_args__ = (
        UniqueConstraint("po_id", "sku", name="uq_po_line_sku"),
        CheckConstraint("quantity > 0", name="ck_po_line_qty_pos"),
        CheckConstraint("unit_cost >= 0", name="ck_po_line_unit_cost_nonneg"),
    )


# ---------- AUDIT ----------
class AuditTrailEntry(Base):
    """Append-only : une entrée par transition acceptée, jamais modifiée."""

    __tablename__ = "po_audit_trail"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    po_id: Mapped[int] = mapped_column(ForeignKey("purchase_orders.id", ondelete="RESTRICT"), nullable=False)
    action: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[POStatus] = mapped_column(Enum(POStatus, name="po_status"), nullable=False)
    actor: Mapped[str | None] = mapped_column(String(128))
    origin: Mapped[str | None] = mapped_column(String(64))
    details: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (Index("ix_po_audit_trail_po", "po_id", "created_at"),)
