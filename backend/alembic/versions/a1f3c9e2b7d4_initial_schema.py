"""initial schema: vendors, inventory, sync logs, purchase orders, audit trail

Revision ID: a1f3c9e2b7d4
Revises:
Create Date: 2026-10-19 09:12:41.208113
"""
from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "a1f3c9e2b7d4"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# types créés une seule fois (po_status sert à deux tables)
sync_type = postgresql.ENUM("full", "inventory", "vendors", "smart", name="sync_type", create_type=False)
sync_status = postgresql.ENUM("running", "completed", "failed", name="sync_status", create_type=False)
po_status = postgresql.ENUM(
    "draft",
    "pending_approval",
    "approved",
    "rejected",
    "sent",
    "partial",
    "received",
    "cancelled",
    name="po_status",
    create_type=False,
)
urgency_level = postgresql.ENUM("critical", "high", "medium", "low", name="urgency_level", create_type=False)

ENUMS = (sync_type, sync_status, po_status, urgency_level)


def upgrade() -> None:
    bind = op.get_bind()
    for enum in ENUMS:
        enum.create(bind, checkfirst=True)

    op.create_table(
        "vendors",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False, unique=True),
        sa.Column("name_key", sa.String(255), nullable=False, unique=True),
        sa.Column("contact_name", sa.String(255)),
        sa.Column("contact_email", sa.String(255)),
        sa.Column("phone", sa.String(64)),
        sa.Column("lead_time_days", sa.Integer(), nullable=False, server_default="7"),
        sa.Column("min_order_amount", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("external_id", sa.String(64)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("lead_time_days >= 0", name="ck_vendor_lead_time_nonneg"),
        sa.CheckConstraint("min_order_amount >= 0", name="ck_vendor_min_order_nonneg"),
    )
    op.create_index("ix_vendors_external_id", "vendors", ["external_id"])

    op.create_table(
        "inventory_items",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("sku", sa.String(64), nullable=False, unique=True),
        sa.Column("external_id", sa.String(64)),
        sa.Column("product_name", sa.String(255), nullable=False),
        sa.Column("current_stock", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reserved_stock", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("on_order_stock", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reorder_point", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reorder_quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_stock", sa.Integer()),
        sa.Column("min_order_quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("order_increment", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("lead_time_days", sa.Integer(), nullable=False, server_default="7"),
        sa.Column("vendor", sa.String(255)),
        sa.Column("unit_cost", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("location", sa.String(128), nullable=False, server_default="Default"),
        sa.Column("sales_last_30_days", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("sales_last_90_days", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_ordered_date", sa.Date()),
        sa.Column("last_ordered_quantity", sa.Integer()),
        sa.Column("discontinued", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("last_updated", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("current_stock >= 0", name="ck_item_stock_nonneg"),
        sa.CheckConstraint("reserved_stock >= 0", name="ck_item_reserved_nonneg"),
        sa.CheckConstraint("on_order_stock >= 0", name="ck_item_on_order_nonneg"),
        sa.CheckConstraint("unit_cost >= 0", name="ck_item_unit_cost_nonneg"),
        sa.CheckConstraint("min_order_quantity >= 1", name="ck_item_moq_pos"),
        sa.CheckConstraint("order_increment >= 1", name="ck_item_order_increment_pos"),
    )
    op.create_index("ix_inventory_items_external_id", "inventory_items", ["external_id"])
    op.create_index("ix_inventory_items_vendor", "inventory_items", ["vendor"])
    op.create_index("ix_inventory_items_reorder", "inventory_items", ["current_stock", "reorder_point"])

    op.create_table(
        "sync_logs",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("sync_type", sync_type, nullable=False),
        sa.Column("status", sync_status, nullable=False, server_default="running"),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.Column("items_synced", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("duration_ms", sa.Integer()),
        sa.Column("errors", sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
    )
    op.create_index("ix_sync_logs_type_status", "sync_logs", ["sync_type", "status", "started_at"])

    op.create_table(
        "purchase_orders",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("po_number", sa.String(32), nullable=False, unique=True),
        sa.Column("vendor_id", sa.BigInteger(), sa.ForeignKey("vendors.id", ondelete="RESTRICT")),
        sa.Column("vendor_name", sa.String(255)),
        sa.Column("vendor_email", sa.String(255)),
        sa.Column("status", po_status, nullable=False, server_default="draft"),
        sa.Column("urgency_level", urgency_level, nullable=False, server_default="low"),
        sa.Column("total_amount", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("notes", sa.Text()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("created_by", sa.String(128)),
        sa.Column("submitted_at", sa.DateTime(timezone=True)),
        sa.Column("approved_at", sa.DateTime(timezone=True)),
        sa.Column("approved_by", sa.String(128)),
        sa.Column("rejected_at", sa.DateTime(timezone=True)),
        sa.Column("rejected_by", sa.String(128)),
        sa.Column("rejection_reason", sa.Text()),
        sa.Column("sent_at", sa.DateTime(timezone=True)),
        sa.Column("received_at", sa.DateTime(timezone=True)),
        sa.Column("cancelled_at", sa.DateTime(timezone=True)),
        sa.Column("cancelled_by", sa.String(128)),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("total_amount >= 0", name="ck_po_total_nonneg"),
        sa.CheckConstraint("status <> 'rejected' OR rejection_reason IS NOT NULL", name="ck_po_rejection_reason"),
    )
    op.create_index("ix_purchase_orders_status", "purchase_orders", ["status"])

    op.create_table(
        "purchase_order_lines",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column(
            "po_id",
            sa.BigInteger(),
            sa.ForeignKey("purchase_orders.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("sku", sa.String(64), nullable=False),
        sa.Column("product_name", sa.String(255)),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_cost", sa.Numeric(14, 2), nullable=False),
        sa.Column("line_total", sa.Numeric(14, 2), nullable=False),
        sa.UniqueConstraint("po_id", "sku", name="uq_po_line_sku"),
        sa.CheckConstraint("quantity > 0", name="ck_po_line_qty_pos"),
        sa.CheckConstraint("unit_cost >= 0", name="ck_po_line_unit_cost_nonneg"),
    )

    op.create_table(
        "po_audit_trail",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column(
            "po_id",
            sa.BigInteger(),
            sa.ForeignKey("purchase_orders.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("action", sa.String(32), nullable=False),
        sa.Column("status", po_status, nullable=False),
        sa.Column("actor", sa.String(128)),
        sa.Column("origin", sa.String(64)),
        sa.Column("details", sa.JSON()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_po_audit_trail_po", "po_audit_trail", ["po_id", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_po_audit_trail_po", table_name="po_audit_trail")
    op.drop_table("po_audit_trail")
    op.drop_table("purchase_order_lines")
    op.drop_index("ix_purchase_orders_status", table_name="purchase_orders")
    op.drop_table("purchase_orders")
    op.drop_index("ix_sync_logs_type_status", table_name="sync_logs")
    op.drop_table("sync_logs")
    op.drop_index("ix_inventory_items_reorder", table_name="inventory_items")
    op.drop_index("ix_inventory_items_vendor", table_name="inventory_items")
    op.drop_index("ix_inventory_items_external_id", table_name="inventory_items")
    op.drop_table("inventory_items")
    op.drop_index("ix_vendors_external_id", table_name="vendors")
    op.drop_table("vendors")

    bind = op.get_bind()
    for enum in reversed(ENUMS):
        enum.drop(bind, checkfirst=True)
