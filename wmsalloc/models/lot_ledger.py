# wmsalloc/models/lot_ledger.py
from __future__ import annotations

from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from wmsalloc.db.base import Base


class LotLedger(Base):
    """
    Append-only trail of quantity ledger operations.

    One row per reserve / release / fulfil / receipt / adjustment, with the
    deltas applied and the lot balances right after the change.
    """

    __tablename__ = "lot_ledger"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    lot_id: Mapped[int] = mapped_column(sa.Integer, nullable=False)

    reason: Mapped[str] = mapped_column(sa.String(32), nullable=False)
    delta_on_hand: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    delta_reserved: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    after_on_hand: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    after_reserved: Mapped[int] = mapped_column(sa.Integer, nullable=False)

    ref: Mapped[str] = mapped_column(sa.String(128), nullable=False)
    trace_id: Mapped[str | None] = mapped_column(sa.String(64), nullable=True)

    occurred_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        sa.Index("ix_lot_ledger_lot_occurred", "lot_id", "occurred_at"),
        sa.Index("ix_lot_ledger_ref", "ref"),
        sa.Index("ix_lot_ledger_trace_id", "trace_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<LotLedger {self.reason} lot={self.lot_id} "
            f"d_on_hand={self.delta_on_hand} d_reserved={self.delta_reserved} ref={self.ref}>"
        )
