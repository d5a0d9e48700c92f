# wmsalloc/services/order_demand_reader.py
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from wmsalloc.models.enums import AllocationStatus
from wmsalloc.models.inventory_allocation import InventoryAllocation
from wmsalloc.models.order import Order
from wmsalloc.services.allocation_errors import AllocationNotFound, AllocationValidationError
from wmsalloc.services.lot_selector import ItemDemand, validate_quantity


@dataclass(frozen=True)
class OrderDemands:
    order_id: int
    order_no: str
    status: str
    demands: List[ItemDemand]


async def load_order_demands(
    session: AsyncSession,
    order_id: int,
    *,
    for_update: bool = False,
) -> OrderDemands:
    """
    Read an order and its items from the order service tables.

    for_update=True takes a row lock on the order header; allocation uses it so
    that two requests for the same order run one after the other.
    """
    stmt = select(Order).where(Order.id == int(order_id)).execution_options(populate_existing=True)
    if for_update:
        stmt = stmt.with_for_update()
    order = (await session.execute(stmt)).scalar_one_or_none()
    if order is None:
        raise AllocationNotFound(f"order {order_id} not found", context={"order_id": int(order_id)})

    if not order.items:
        raise AllocationValidationError(
            f"order {order_id} has no items",
            context={"order_id": int(order_id)},
            details=[{"type": "validation", "path": "items", "reason": "empty_order"}],
        )

    demands: List[ItemDemand] = []
    for idx, it in enumerate(order.items):
        qty = validate_quantity(it.quantity_ordered, path=f"items[{idx}].quantity_ordered")
        demands.append(
            ItemDemand(
                order_item_id=int(it.id),
                item_kind=str(it.item_kind),
                item_id=int(it.item_id),
                quantity=qty,
            )
        )

    return OrderDemands(
        order_id=int(order.id),
        order_no=order.order_no,
        status=str(order.status),
        demands=demands,
    )


async def fulfilled_quantities(
    session: AsyncSession,
    order_id: int,
    *,
    exclude_batch_ids: Optional[Iterable[int]] = None,
) -> Dict[int, int]:
    """order_item_id -> quantity already shipped by fulfilled allocations."""
    stmt = (
        select(InventoryAllocation.order_item_id, func.sum(InventoryAllocation.allocated_qty))
        .where(InventoryAllocation.order_id == int(order_id))
        .where(InventoryAllocation.status == AllocationStatus.FULFILLED.value)
        .where(InventoryAllocation.order_item_id.is_not(None))
        .group_by(InventoryAllocation.order_item_id)
    )
    if exclude_batch_ids:
        stmt = stmt.where(InventoryAllocation.batch_id.not_in([int(b) for b in exclude_batch_ids]))
    rows = (await session.execute(stmt)).all()
    return {int(item_id): int(qty or 0) for item_id, qty in rows}


def remaining_demands(demands: List[ItemDemand], fulfilled: Dict[int, int]) -> List[ItemDemand]:
    """Drop what earlier fulfilled batches already covered; fully covered lines disappear."""
    out: List[ItemDemand] = []
    for d in demands:
        done = fulfilled.get(int(d.order_item_id), 0) if d.order_item_id is not None else 0
        left = int(d.quantity) - done
        if left > 0:
            out.append(d if done == 0 else replace(d, quantity=left))
    return out


__all__ = ["OrderDemands", "load_order_demands", "fulfilled_quantities", "remaining_demands"]
