# wmsalloc/services/allocation_query.py
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from wmsalloc.models.inventory_allocation import InventoryAllocation
from wmsalloc.models.inventory_lot import InventoryLot
from wmsalloc.services.allocation_errors import AllocationValidationError

SORTABLE = {
    "created_at": InventoryAllocation.created_at,
    "allocated_qty": InventoryAllocation.allocated_qty,
    "order_id": InventoryAllocation.order_id,
    "lot_id": InventoryAllocation.lot_id,
}


@dataclass
class AllocationFilters:
    statuses: Optional[Sequence[str]] = None
    warehouse_ids: Optional[Sequence[int]] = None
    lot_ids: Optional[Sequence[int]] = None
    order_id: Optional[int] = None
    created_after: Optional[datetime] = None
    created_before: Optional[datetime] = None


def _apply_filters(stmt, f: AllocationFilters):
    if f.statuses:
        stmt = stmt.where(InventoryAllocation.status.in_([str(s) for s in f.statuses]))
    if f.warehouse_ids:
        stmt = stmt.where(InventoryAllocation.warehouse_id.in_([int(w) for w in f.warehouse_ids]))
    if f.lot_ids:
        stmt = stmt.where(InventoryAllocation.lot_id.in_([int(x) for x in f.lot_ids]))
    if f.order_id is not None:
        stmt = stmt.where(InventoryAllocation.order_id == int(f.order_id))
    if f.created_after is not None:
        stmt = stmt.where(InventoryAllocation.created_at >= f.created_after)
    if f.created_before is not None:
        stmt = stmt.where(InventoryAllocation.created_at <= f.created_before)
    return stmt


async def list_allocations(
    session: AsyncSession,
    filters: AllocationFilters,
    *,
    page: int = 1,
    limit: int = 20,
    sort_by: str = "created_at",
    sort_order: str = "DESC",
    max_limit: int = 100,
) -> Dict[str, Any]:
    if page < 1:
        raise AllocationValidationError("page must be >= 1")
    if limit < 1 or limit > max_limit:
        raise AllocationValidationError(f"limit must be between 1 and {max_limit}")
    col = SORTABLE.get(sort_by)
    if col is None:
        raise AllocationValidationError(
            f"sortBy must be one of {sorted(SORTABLE)}",
            details=[{"type": "validation", "path": "sortBy", "reason": "unknown_sort_field"}],
        )
    direction = str(sort_order or "DESC").upper()
    if direction not in ("ASC", "DESC"):
        raise AllocationValidationError("sortOrder must be ASC or DESC")

    total = (
        await session.execute(
            _apply_filters(select(func.count()).select_from(InventoryAllocation), filters)
        )
    ).scalar_one()

    order = col.asc() if direction == "ASC" else col.desc()
    tiebreak = InventoryAllocation.id.asc() if direction == "ASC" else InventoryAllocation.id.desc()
    stmt = _apply_filters(
        select(InventoryAllocation, InventoryLot.lot_code, InventoryLot.expiry_date).join(
            InventoryLot, InventoryLot.id == InventoryAllocation.lot_id
        ),
        filters,
    )
    stmt = stmt.order_by(order, tiebreak).offset((page - 1) * limit).limit(limit)

    data: List[Dict[str, Any]] = []
    for a, lot_code, expiry in (await session.execute(stmt)).all():
        data.append(
            {
                "id": int(a.id),
                "batch_id": int(a.batch_id),
                "order_id": int(a.order_id),
                "order_item_id": int(a.order_item_id),
                "lot_id": int(a.lot_id),
                "lot_code": lot_code,
                "expiry_date": expiry.isoformat() if expiry else None,
                "warehouse_id": int(a.warehouse_id),
                "allocated_qty": int(a.allocated_qty),
                "strategy": a.strategy,
                "status": a.status,
                "created_by": a.created_by,
                "created_at": a.created_at.isoformat() if a.created_at else None,
                "updated_at": a.updated_at.isoformat() if a.updated_at else None,
            }
        )

    return {
        "data": data,
        "pagination": {
            "page": page,
            "limit": limit,
            "totalRecords": int(total),
            "totalPages": math.ceil(int(total) / limit) if total else 0,
        },
    }


__all__ = ["AllocationFilters", "list_allocations", "SORTABLE"]
