# wmsalloc/services/lot_ledger_writer.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from wmsalloc.models.inventory_lot import InventoryLot
from wmsalloc.models.lot_ledger import LotLedger


async def write_lot_ledger(
    session: AsyncSession,
    *,
    lot: InventoryLot,
    reason: str,
    delta_on_hand: int,
    delta_reserved: int,
    ref: str,
    trace_id: Optional[str] = None,
    occurred_at: Optional[datetime] = None,
) -> LotLedger:
    """Append one ledger row; balances are read from the (already mutated) lot."""
    row = LotLedger(
        lot_id=int(lot.id),
        reason=str(reason),
        delta_on_hand=int(delta_on_hand),
        delta_reserved=int(delta_reserved),
        after_on_hand=int(lot.on_hand_qty),
        after_reserved=int(lot.reserved_qty),
        ref=str(ref),
        trace_id=trace_id,
        occurred_at=occurred_at or datetime.now(timezone.utc),
    )
    session.add(row)
    return row
