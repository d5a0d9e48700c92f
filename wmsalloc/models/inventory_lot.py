# wmsalloc/models/inventory_lot.py
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from wmsalloc.db.base import Base
from wmsalloc.models.enums import ItemKind, LotStatus


class InventoryLot(Base):
    """
    Lot balance per (warehouse_id, item_kind, item_id, lot_code).

    - on_hand_qty / reserved_qty are the only source of truth for quantities;
      they are mutated exclusively through services.quantity_ledger
    - available = on_hand_qty - reserved_qty
    - 0 <= reserved_qty <= on_hand_qty is enforced by CHECK constraints as well
    """

    __tablename__ = "inventory_lots"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    lot_code: Mapped[str] = mapped_column(sa.String(64), nullable=False)

    item_kind: Mapped[str] = mapped_column(sa.String(32), nullable=False, default=ItemKind.SKU.value)
    item_id: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    warehouse_id: Mapped[int] = mapped_column(
        sa.Integer,
        sa.ForeignKey("warehouses.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    on_hand_qty: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    reserved_qty: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)

    expiry_date: Mapped[date | None] = mapped_column(sa.Date, nullable=True)
    manufacture_date: Mapped[date | None] = mapped_column(sa.Date, nullable=True)
    inbound_date: Mapped[date | None] = mapped_column(sa.Date, nullable=True)

    status: Mapped[str] = mapped_column(sa.String(32), nullable=False, default=LotStatus.IN_STOCK.value)
    unit_cost: Mapped[Decimal | None] = mapped_column(sa.Numeric(12, 4), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)

    __table_args__ = (
        sa.CheckConstraint("reserved_qty >= 0", name="ck_inventory_lots_reserved_nonneg"),
        sa.CheckConstraint("on_hand_qty >= reserved_qty", name="ck_inventory_lots_reserved_le_on_hand"),
        sa.UniqueConstraint(
            "warehouse_id", "item_kind", "item_id", "lot_code", name="uq_inventory_lots_wh_item_code"
        ),
        sa.Index("ix_inventory_lots_item_status", "item_kind", "item_id", "status"),
        sa.Index("ix_inventory_lots_expiry_date", "expiry_date"),
    )

    @property
    def available_qty(self) -> int:
        return max(0, int(self.on_hand_qty or 0) - int(self.reserved_qty or 0))

    def __repr__(self) -> str:
        return (
            f"<InventoryLot id={self.id} code={self.lot_code} wh={self.warehouse_id} "
            f"{self.item_kind}={self.item_id} on_hand={self.on_hand_qty} reserved={self.reserved_qty}>"
        )
