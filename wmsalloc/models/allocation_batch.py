# wmsalloc/models/allocation_batch.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from wmsalloc.db.base import Base
from wmsalloc.models.enums import AllocationStatus


class AllocationBatch(Base):
    """
    One allocation request for one order.

    status drives the review/confirm state machine; the rows in
    inventory_allocations follow it.
    """

    __tablename__ = "allocation_batches"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("orders.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    strategy: Mapped[str] = mapped_column(sa.String(16), nullable=False)
    status: Mapped[str] = mapped_column(
        sa.String(32), nullable=False, default=AllocationStatus.PENDING.value
    )
    trace_id: Mapped[Optional[str]] = mapped_column(sa.String(64), nullable=True)

    created_by: Mapped[Optional[str]] = mapped_column(sa.String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True), nullable=True)

    allocations: Mapped[List["InventoryAllocation"]] = relationship(
        "InventoryAllocation",
        back_populates="batch",
        lazy="selectin",
        order_by="InventoryAllocation.id",
    )

    __table_args__ = (sa.Index("ix_allocation_batches_order_status", "order_id", "status"),)

    def __repr__(self) -> str:
        return f"<AllocationBatch id={self.id} order={self.order_id} status={self.status}>"
