# wmsalloc/models/inventory_allocation.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from wmsalloc.db.base import Base
from wmsalloc.models.enums import AllocationStatus


class InventoryAllocation(Base):
    """
    Decision row: quantity of one order item drawn from one lot.

    Non-cancelled rows against a lot are backed 1:1 by that lot's reserved_qty
    until they are fulfilled (reservation retired) or cancelled (released).
    """

    __tablename__ = "inventory_allocations"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    batch_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("allocation_batches.id", ondelete="CASCADE"), nullable=False
    )
    order_id: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    order_item_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("order_items.id", ondelete="RESTRICT"), nullable=False
    )
    lot_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("inventory_lots.id", ondelete="RESTRICT"), nullable=False
    )
    warehouse_id: Mapped[int] = mapped_column(sa.Integer, nullable=False)

    allocated_qty: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    strategy: Mapped[str] = mapped_column(sa.String(16), nullable=False)
    status: Mapped[str] = mapped_column(
        sa.String(32), nullable=False, default=AllocationStatus.PENDING.value
    )

    created_by: Mapped[Optional[str]] = mapped_column(sa.String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True), nullable=True)

    batch = relationship("AllocationBatch", back_populates="allocations")

    __table_args__ = (
        sa.CheckConstraint("allocated_qty > 0", name="ck_inventory_allocations_qty_pos"),
        sa.Index("ix_inventory_allocations_batch", "batch_id"),
        sa.Index("ix_inventory_allocations_order", "order_id", "order_item_id"),
        sa.Index("ix_inventory_allocations_lot_status", "lot_id", "status"),
        sa.Index("ix_inventory_allocations_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<InventoryAllocation id={self.id} batch={self.batch_id} item={self.order_item_id} "
            f"lot={self.lot_id} qty={self.allocated_qty} status={self.status}>"
        )
