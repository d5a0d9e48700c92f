# wmsalloc/services/allocation_review.py
from __future__ import annotations

from collections import OrderedDict
from typing import Any, Dict, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wmsalloc.models.allocation_batch import AllocationBatch
from wmsalloc.models.inventory_allocation import InventoryAllocation
from wmsalloc.models.inventory_lot import InventoryLot
from wmsalloc.models.order import Order
from wmsalloc.models.warehouse import Warehouse
from wmsalloc.services.allocation_errors import AllocationNotFound
from wmsalloc.services.order_demand_reader import fulfilled_quantities


def _iso(v: Any) -> Optional[str]:
    return v.isoformat() if v is not None else None


async def review_allocations(
    session: AsyncSession,
    order_id: int,
    *,
    allocation_ids: Optional[Sequence[int]] = None,
    warehouse_id: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Review detail for human confirmation: order header, one entry per order
    line, and the lot / warehouse breakdown behind each line.

    Without allocation_ids the rows of the order's latest batch are shown.
    Quantities fulfilled by other batches count against the shortfall.
    """
    order = await session.get(Order, int(order_id))
    if order is None:
        raise AllocationNotFound(f"order {order_id} not found", context={"order_id": int(order_id)})

    stmt = (
        select(InventoryAllocation, InventoryLot, Warehouse)
        .join(InventoryLot, InventoryLot.id == InventoryAllocation.lot_id)
        .join(Warehouse, Warehouse.id == InventoryAllocation.warehouse_id)
        .where(InventoryAllocation.order_id == int(order_id))
        .order_by(InventoryAllocation.order_item_id, InventoryAllocation.id)
    )
    if allocation_ids:
        stmt = stmt.where(InventoryAllocation.id.in_([int(x) for x in allocation_ids]))
    else:
        latest = (
            select(AllocationBatch.id)
            .where(AllocationBatch.order_id == int(order_id))
            .order_by(AllocationBatch.id.desc())
            .limit(1)
            .scalar_subquery()
        )
        stmt = stmt.where(InventoryAllocation.batch_id == latest)
    if warehouse_id is not None:
        stmt = stmt.where(InventoryAllocation.warehouse_id == int(warehouse_id))

    rows = (await session.execute(stmt)).all()
    if not rows:
        raise AllocationNotFound(
            f"no allocations found for order {order_id}",
            context={
                "order_id": int(order_id),
                "allocation_ids": [int(x) for x in allocation_ids or []],
                "warehouse_id": warehouse_id,
            },
        )

    batch_ids = sorted({int(a.batch_id) for a, _, _ in rows})
    batches = {
        b.id: b
        for b in (
            await session.execute(select(AllocationBatch).where(AllocationBatch.id.in_(batch_ids)))
        ).scalars()
    }

    ordered_qty = {int(it.id): int(it.quantity_ordered) for it in order.items}
    shipped = await fulfilled_quantities(session, order_id, exclude_batch_ids=batch_ids)
    kinds = {int(it.id): (str(it.item_kind), int(it.item_id)) for it in order.items}

    lines: "OrderedDict[int, Dict[str, Any]]" = OrderedDict()
    for alloc, lot, wh in rows:
        oid = int(alloc.order_item_id)
        line = lines.get(oid)
        if line is None:
            kind, item_id = kinds.get(oid, (str(lot.item_kind), int(lot.item_id)))
            line = {
                "order_item_id": oid,
                "item_kind": kind,
                "item_id": item_id,
                "quantity_ordered": ordered_qty.get(oid),
                "previously_fulfilled_qty": shipped.get(oid, 0),
                "allocated_qty": 0,
                "shortfall": 0,
                "lots": [],
            }
            lines[oid] = line
        line["allocated_qty"] += int(alloc.allocated_qty)
        line["lots"].append(
            {
                "allocation_id": int(alloc.id),
                "batch_id": int(alloc.batch_id),
                "status": alloc.status,
                "lot_id": int(lot.id),
                "lot_code": lot.lot_code,
                "warehouse_id": int(wh.id),
                "warehouse_code": wh.code,
                "warehouse_name": wh.name,
                "expiry_date": _iso(lot.expiry_date),
                "inbound_date": _iso(lot.inbound_date),
                "allocated_qty": int(alloc.allocated_qty),
            }
        )

    for line in lines.values():
        if line["quantity_ordered"] is not None:
            line["shortfall"] = max(
                0, line["quantity_ordered"] - line["previously_fulfilled_qty"] - line["allocated_qty"]
            )

    return {
        "header": {
            "order_id": int(order.id),
            "order_no": order.order_no,
            "order_status": order.status,
            "batches": [
                {
                    "batch_id": int(b.id),
                    "status": b.status,
                    "strategy": b.strategy,
                    "created_by": b.created_by,
                    "created_at": _iso(b.created_at),
                }
                for b in (batches[i] for i in batch_ids)
            ],
            "total_allocated_qty": sum(l["allocated_qty"] for l in lines.values()),
        },
        "items": list(lines.values()),
    }


__all__ = ["review_allocations"]
