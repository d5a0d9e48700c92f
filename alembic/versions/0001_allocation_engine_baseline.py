"""allocation engine baseline: lots, orders, allocation batches/rows, lot ledger, audit

Revision ID: 0001_allocation_engine_baseline
Revises:
Create Date: 2026-10-17
"""

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision = "0001_allocation_engine_baseline"
down_revision = None
branch_labels = None
depends_on = None


def _ts(name: str, *, server_now: bool = False, nullable: bool = True) -> sa.Column:
    if server_now:
        return sa.Column(name, sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False)
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade():
    op.create_table(
        "warehouses",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(32), nullable=False, unique=True),
        sa.Column("name", sa.String(100), nullable=False),
    )

    op.create_table(
        "inventory_lots",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("lot_code", sa.String(64), nullable=False),
        sa.Column("item_kind", sa.String(32), nullable=False, server_default="sku"),
        sa.Column("item_id", sa.Integer, nullable=False),
        sa.Column(
            "warehouse_id",
            sa.Integer,
            sa.ForeignKey("warehouses.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("on_hand_qty", sa.Integer, nullable=False, server_default=sa.text("0")),
        sa.Column("reserved_qty", sa.Integer, nullable=False, server_default=sa.text("0")),
        sa.Column("expiry_date", sa.Date, nullable=True),
        sa.Column("manufacture_date", sa.Date, nullable=True),
        sa.Column("inbound_date", sa.Date, nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="in_stock"),
        sa.Column("unit_cost", sa.Numeric(12, 4), nullable=True),
        _ts("created_at", server_now=True),
        _ts("updated_at"),
        sa.CheckConstraint("reserved_qty >= 0", name="ck_inventory_lots_reserved_nonneg"),
        sa.CheckConstraint("on_hand_qty >= reserved_qty", name="ck_inventory_lots_reserved_le_on_hand"),
        sa.UniqueConstraint(
            "warehouse_id", "item_kind", "item_id", "lot_code", name="uq_inventory_lots_wh_item_code"
        ),
    )
    op.create_index("ix_inventory_lots_warehouse_id", "inventory_lots", ["warehouse_id"])
    op.create_index("ix_inventory_lots_item_status", "inventory_lots", ["item_kind", "item_id", "status"])
    op.create_index("ix_inventory_lots_expiry_date", "inventory_lots", ["expiry_date"])

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("order_no", sa.String(64), nullable=False, unique=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="confirmed"),
    )

    op.create_table(
        "order_items",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("order_id", sa.Integer, sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("item_kind", sa.String(32), nullable=False, server_default="sku"),
        sa.Column("item_id", sa.Integer, nullable=False),
        sa.Column("quantity_ordered", sa.Integer, nullable=False),
        sa.Column("status", sa.String(32), nullable=False, server_default="confirmed"),
    )
    op.create_index("ix_order_items_order_id", "order_items", ["order_id"])

    op.create_table(
        "allocation_batches",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("order_id", sa.Integer, sa.ForeignKey("orders.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("strategy", sa.String(16), nullable=False),
        sa.Column("status", sa.String(32), nullable=False, server_default="pending"),
        sa.Column("trace_id", sa.String(64), nullable=True),
        sa.Column("created_by", sa.String(64), nullable=True),
        _ts("created_at", server_now=True),
        _ts("updated_at"),
    )
    op.create_index("ix_allocation_batches_order_id", "allocation_batches", ["order_id"])
    op.create_index("ix_allocation_batches_order_status", "allocation_batches", ["order_id", "status"])

    op.create_table(
        "inventory_allocations",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "batch_id",
            sa.Integer,
            sa.ForeignKey("allocation_batches.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("order_id", sa.Integer, nullable=False),
        sa.Column(
            "order_item_id",
            sa.Integer,
            sa.ForeignKey("order_items.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "lot_id",
            sa.Integer,
            sa.ForeignKey("inventory_lots.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("warehouse_id", sa.Integer, nullable=False),
        sa.Column("allocated_qty", sa.Integer, nullable=False),
        sa.Column("strategy", sa.String(16), nullable=False),
        sa.Column("status", sa.String(32), nullable=False, server_default="pending"),
        sa.Column("created_by", sa.String(64), nullable=True),
        _ts("created_at", server_now=True),
        _ts("updated_at"),
        sa.CheckConstraint("allocated_qty > 0", name="ck_inventory_allocations_qty_pos"),
    )
    op.create_index("ix_inventory_allocations_batch", "inventory_allocations", ["batch_id"])
    op.create_index("ix_inventory_allocations_order", "inventory_allocations", ["order_id", "order_item_id"])
    op.create_index("ix_inventory_allocations_lot_status", "inventory_allocations", ["lot_id", "status"])
    op.create_index("ix_inventory_allocations_created_at", "inventory_allocations", ["created_at"])

    op.create_table(
        "lot_ledger",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("lot_id", sa.Integer, nullable=False),
        sa.Column("reason", sa.String(32), nullable=False),
        sa.Column("delta_on_hand", sa.Integer, nullable=False, server_default=sa.text("0")),
        sa.Column("delta_reserved", sa.Integer, nullable=False, server_default=sa.text("0")),
        sa.Column("after_on_hand", sa.Integer, nullable=False),
        sa.Column("after_reserved", sa.Integer, nullable=False),
        sa.Column("ref", sa.String(128), nullable=False),
        sa.Column("trace_id", sa.String(64), nullable=True),
        _ts("occurred_at", nullable=False),
        _ts("created_at", server_now=True),
    )
    op.create_index("ix_lot_ledger_lot_occurred", "lot_ledger", ["lot_id", "occurred_at"])
    op.create_index("ix_lot_ledger_ref", "lot_ledger", ["ref"])
    op.create_index("ix_lot_ledger_trace_id", "lot_ledger", ["trace_id"])

    op.create_table(
        "audit_events",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("category", sa.String(64), nullable=False),
        sa.Column("ref", sa.String(128), nullable=False),
        sa.Column("trace_id", sa.String(64), nullable=True),
        _ts("created_at", server_now=True),
        sa.Column("meta", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
    )
    op.create_index("ix_audit_events_cat_ref_time", "audit_events", ["category", "ref", "created_at"])
    op.create_index("ix_audit_events_trace_id", "audit_events", ["trace_id"])


def downgrade():
    op.drop_table("audit_events")
    op.drop_table("lot_ledger")
    op.drop_table("inventory_allocations")
    op.drop_table("allocation_batches")
    op.drop_table("order_items")
    op.drop_table("orders")
    op.drop_table("inventory_lots")
    op.drop_table("warehouses")
