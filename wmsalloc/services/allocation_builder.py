# wmsalloc/services/allocation_builder.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wmsalloc.metrics import ALLOC_SHORTFALL
from wmsalloc.models.allocation_batch import AllocationBatch
from wmsalloc.models.enums import TERMINAL_ALLOCATION_STATUSES, AllocationStatus, AllocationStrategy
from wmsalloc.models.inventory_allocation import InventoryAllocation
from wmsalloc.services.allocation_errors import (
    AllocationStateError,
    AllocationValidationError,
    NoStockAvailable,
)
from wmsalloc.services.audit_writer import AuditEventWriter
from wmsalloc.services.lot_selection_service import LotSelector
from wmsalloc.services.lot_selector import (
    ItemDemand,
    LotComparator,
    LotPlan,
    parse_strategy,
    validate_quantity,
)
from wmsalloc.services.quantity_ledger import QuantityLedger

logger = logging.getLogger("wmsalloc.builder")

UTC = timezone.utc


@dataclass
class AllocatedItem:
    order_item_id: Optional[int]
    item_kind: str
    item_id: int
    requested_qty: int
    allocated_qty: int
    shortfall: int
    lots: List[Dict[str, int]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_item_id": self.order_item_id,
            "item_kind": self.item_kind,
            "item_id": self.item_id,
            "requested_qty": self.requested_qty,
            "allocated_qty": self.allocated_qty,
            "shortfall": self.shortfall,
            "lots": [dict(x) for x in self.lots],
        }


@dataclass
class AllocationBatchResult:
    order_id: int
    batch_id: int
    status: str
    strategy: str
    allocation_ids: List[int] = field(default_factory=list)
    items: List[AllocatedItem] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return any(i.shortfall > 0 for i in self.items)

    @property
    def total_shortfall(self) -> int:
        return sum(i.shortfall for i in self.items)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_id": self.order_id,
            "batch_id": self.batch_id,
            "status": self.status,
            "strategy": self.strategy,
            "allocation_ids": list(self.allocation_ids),
            "partial": self.partial,
            "total_shortfall": self.total_shortfall,
            "items": [i.to_dict() for i in self.items],
        }


async def find_live_batch(session: AsyncSession, order_id: int) -> Optional[AllocationBatch]:
    """Latest batch of an order that still holds reservations (not fulfilled, not cancelled)."""
    stmt = (
        select(AllocationBatch)
        .where(AllocationBatch.order_id == int(order_id))
        .where(AllocationBatch.status.not_in([s.value for s in TERMINAL_ALLOCATION_STATUSES]))
        .order_by(AllocationBatch.id.desc())
        .limit(1)
    )
    return (await session.execute(stmt)).scalars().first()


class AllocationRecordBuilder:
    """
    Allocation Record Builder.

    One call = one batch for one order, inside the caller's transaction:

      1) plan every demand line against a non-locking snapshot (LotSelector)
      2) lock every lot the plan touches, in lot id order
      3) reserve + insert one inventory_allocations row per (line, lot)
      4) emit the ALLOCATION/ALLOCATED audit fact

    A reserve failure (InsufficientStock) propagates unchanged; the caller
    rolls the whole transaction back and may re-plan (see TxManager.run_with_retry).
    A planned shortfall is not a failure: the line's rows go in as
    partially_allocated and the shortfall is reported.
    A plan that reserves nothing on any line raises NoStockAvailable and
    writes no batch.
    """

    def __init__(
        self,
        selector: Optional[LotSelector] = None,
        ledger: Optional[QuantityLedger] = None,
    ) -> None:
        self.selector = selector or LotSelector()
        self.ledger = ledger or QuantityLedger()

    async def build_and_persist(
        self,
        session: AsyncSession,
        *,
        order_id: int,
        demands: Sequence[ItemDemand],
        strategy: Union[str, AllocationStrategy],
        warehouse_scope: Optional[Iterable[int]] = None,
        comparator: Optional[LotComparator] = None,
        as_of: Optional[date] = None,
        trace_id: Optional[str] = None,
        created_by: Optional[str] = None,
        attempt: int = 1,
    ) -> AllocationBatchResult:
        if order_id is None:
            raise AllocationValidationError(
                "order id is required",
                details=[{"type": "validation", "path": "order_id", "reason": "missing"}],
            )
        strat = parse_strategy(strategy)
        if not demands:
            raise AllocationValidationError(
                f"order {order_id}: nothing to allocate", context={"order_id": int(order_id)}
            )
        for idx, d in enumerate(demands):
            validate_quantity(d.quantity, path=f"items[{idx}].quantity")
        if strat is AllocationStrategy.CUSTOM and comparator is None:
            raise AllocationValidationError(
                "strategy 'custom' requires a comparator",
                details=[{"type": "validation", "path": "comparator", "reason": "missing_comparator"}],
            )

        live = await find_live_batch(session, order_id)
        if live is not None:
            raise AllocationStateError(
                f"order {order_id} already has allocation batch {live.id} ({live.status})",
                context={"order_id": int(order_id), "batch_id": int(live.id), "status": live.status},
            )

        # 1) plan
        scope = None if warehouse_scope is None else frozenset(int(w) for w in warehouse_scope)
        held: Dict[int, int] = {}
        plans: List[LotPlan] = []
        for d in demands:
            plan = await self.selector.select(
                session,
                d,
                strat,
                warehouse_scope=scope,
                comparator=comparator,
                as_of=as_of,
                held=held,
            )
            for a in plan.allocations:
                held[a.lot_id] = held.get(a.lot_id, 0) + a.quantity
            plans.append(plan)

        if not held:
            raise NoStockAvailable(
                f"order {order_id}: no stock available for any line",
                context={"order_id": int(order_id), "strategy": strat.value},
                details=[
                    {
                        "type": "shortage",
                        "path": f"items[{idx}]",
                        "reason": "no_stock_available",
                        "item_id": p.demand.item_id,
                        "required_qty": int(p.demand.quantity),
                        "available_qty": 0,
                        "short_qty": p.shortfall,
                    }
                    for idx, p in enumerate(plans)
                ],
            )

        # 2) lock in lot id order
        await self.ledger.lock_lots(session, held.keys())

        partial = any(p.shortfall > 0 for p in plans)
        batch_status = AllocationStatus.PARTIALLY_ALLOCATED if partial else AllocationStatus.PENDING
        now = datetime.now(UTC)

        batch = AllocationBatch(
            order_id=int(order_id),
            strategy=strat.value,
            status=batch_status.value,
            trace_id=trace_id,
            created_by=created_by,
            created_at=now,
        )
        session.add(batch)
        await session.flush()
        ref = f"BATCH:{batch.id}"

        # 3) reserve + rows; reservation order follows lot id within each line
        items: List[AllocatedItem] = []
        rows: List[InventoryAllocation] = []
        for plan in plans:
            d = plan.demand
            row_status = AllocationStatus.PENDING if plan.fulfilled else AllocationStatus.PARTIALLY_ALLOCATED
            item = AllocatedItem(
                order_item_id=d.order_item_id,
                item_kind=d.item_kind,
                item_id=d.item_id,
                requested_qty=int(d.quantity),
                allocated_qty=plan.allocated_qty,
                shortfall=plan.shortfall,
            )
            line_rows: List[InventoryAllocation] = []
            for a in sorted(plan.allocations, key=lambda x: x.lot_id):
                await self.ledger.reserve(
                    session, a.lot_id, a.quantity, ref=ref, trace_id=trace_id, occurred_at=now
                )
                row = InventoryAllocation(
                    batch_id=batch.id,
                    order_id=int(order_id),
                    order_item_id=d.order_item_id,
                    lot_id=a.lot_id,
                    warehouse_id=a.warehouse_id,
                    allocated_qty=a.quantity,
                    strategy=strat.value,
                    status=row_status.value,
                    created_by=created_by,
                    created_at=now,
                )
                session.add(row)
                line_rows.append(row)
            await session.flush()

            # report lots in plan (strategy) order
            by_lot = {r.lot_id: r for r in line_rows}
            for a in plan.allocations:
                r = by_lot[a.lot_id]
                item.lots.append(
                    {
                        "allocation_id": int(r.id),
                        "lot_id": a.lot_id,
                        "warehouse_id": a.warehouse_id,
                        "quantity": a.quantity,
                    }
                )
            rows.extend(line_rows)
            items.append(item)

        result = AllocationBatchResult(
            order_id=int(order_id),
            batch_id=int(batch.id),
            status=batch.status,
            strategy=strat.value,
            allocation_ids=sorted(int(r.id) for r in rows),
            items=items,
        )

        # 4) audit
        await AuditEventWriter.write(
            session,
            flow="ALLOCATION",
            event="ALLOCATED",
            ref=f"ORDER:{int(order_id)}",
            trace_id=trace_id,
            meta={
                "batch_id": result.batch_id,
                "strategy": result.strategy,
                "status": result.status,
                "attempt": attempt,
                "items": [i.to_dict() for i in items],
                "total_shortfall": result.total_shortfall,
            },
        )

        if result.total_shortfall:
            ALLOC_SHORTFALL.labels(strategy=strat.value).inc(result.total_shortfall)
        logger.info(
            "allocated order=%s batch=%s strategy=%s rows=%d shortfall=%d attempt=%d",
            order_id,
            result.batch_id,
            strat.value,
            len(rows),
            result.total_shortfall,
            attempt,
        )
        return result


__all__ = [
    "AllocatedItem",
    "AllocationBatchResult",
    "AllocationRecordBuilder",
    "find_live_batch",
]
