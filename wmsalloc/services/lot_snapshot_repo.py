# wmsalloc/services/lot_snapshot_repo.py
from __future__ import annotations

from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wmsalloc.models.enums import BLOCKED_LOT_STATUSES
from wmsalloc.models.inventory_lot import InventoryLot
from wmsalloc.services.lot_selector import LotCandidate


def to_candidate(lot: InventoryLot) -> LotCandidate:
    return LotCandidate(
        lot_id=int(lot.id),
        lot_code=lot.lot_code,
        item_kind=str(lot.item_kind),
        item_id=int(lot.item_id),
        warehouse_id=int(lot.warehouse_id),
        on_hand_qty=int(lot.on_hand_qty or 0),
        reserved_qty=int(lot.reserved_qty or 0),
        expiry_date=lot.expiry_date,
        manufacture_date=lot.manufacture_date,
        inbound_date=lot.inbound_date,
        status=str(lot.status),
        unit_cost=lot.unit_cost,
    )


async def fetch_lot_snapshot(
    session: AsyncSession,
    *,
    item_kind: str,
    item_id: int,
    warehouse_ids: Optional[Iterable[int]] = None,
) -> List[LotCandidate]:
    """
    Non-locking read of the allocatable lots of one item.

    Rows are re-read from the database on every call (populate_existing), the
    ledger re-validates everything under row locks at commit time.
    """
    stmt = (
        select(InventoryLot)
        .where(InventoryLot.item_kind == str(item_kind))
        .where(InventoryLot.item_id == int(item_id))
        .where(InventoryLot.status.not_in([s.value for s in BLOCKED_LOT_STATUSES]))
        .where(InventoryLot.on_hand_qty > InventoryLot.reserved_qty)
        .order_by(InventoryLot.id)
        .execution_options(populate_existing=True)
    )
    if warehouse_ids is not None:
        stmt = stmt.where(InventoryLot.warehouse_id.in_([int(w) for w in warehouse_ids]))

    rows = (await session.execute(stmt)).scalars().all()
    return [to_candidate(r) for r in rows]
