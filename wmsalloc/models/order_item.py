# wmsalloc/models/order_item.py
from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from wmsalloc.db.base import Base
from wmsalloc.models.enums import ItemKind


class OrderItem(Base):
    """Demand line of an order (read-only for the allocation engine)."""

    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    item_kind: Mapped[str] = mapped_column(sa.String(32), nullable=False, default=ItemKind.SKU.value)
    item_id: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    quantity_ordered: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    status: Mapped[str] = mapped_column(sa.String(32), nullable=False, default="confirmed")

    order = relationship("Order", back_populates="items")

    def __repr__(self) -> str:
        return (
            f"<OrderItem id={self.id} order={self.order_id} "
            f"{self.item_kind}={self.item_id} qty={self.quantity_ordered}>"
        )
