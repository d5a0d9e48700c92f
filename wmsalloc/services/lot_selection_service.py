# wmsalloc/services/lot_selection_service.py
from __future__ import annotations

import dataclasses
from datetime import date
from typing import Awaitable, Callable, Iterable, List, Mapping, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from wmsalloc.models.enums import AllocationStrategy
from wmsalloc.services.lot_selector import (
    ItemDemand,
    LotCandidate,
    LotComparator,
    LotPlan,
    parse_strategy,
    plan_lots,
    validate_quantity,
)
from wmsalloc.services.lot_snapshot_repo import fetch_lot_snapshot

SnapshotReader = Callable[..., Awaitable[List[LotCandidate]]]


class LotSelector:
    """
    Lot Selector: snapshot read + greedy plan for one item demand.

    Performs no mutation. The plan is only valid for the snapshot it was
    computed from; QuantityLedger.reserve re-checks it under lock.
    """

    def __init__(self, snapshot_reader: Optional[SnapshotReader] = None) -> None:
        self._read = snapshot_reader or fetch_lot_snapshot

    async def select(
        self,
        session: AsyncSession,
        demand: ItemDemand,
        strategy: Union[str, AllocationStrategy],
        *,
        warehouse_scope: Optional[Iterable[int]] = None,
        comparator: Optional[LotComparator] = None,
        as_of: Optional[date] = None,
        held: Optional[Mapping[int, int]] = None,
    ) -> LotPlan:
        """
        held: quantities already planned against lots earlier in the same batch
        (several lines of one order for the same item); treated as reserved.
        """
        validate_quantity(demand.quantity)
        strat = parse_strategy(strategy)
        scope = None if warehouse_scope is None else frozenset(int(w) for w in warehouse_scope)

        candidates = await self._read(
            session,
            item_kind=demand.item_kind,
            item_id=demand.item_id,
            warehouse_ids=scope,
        )
        if held:
            candidates = [
                dataclasses.replace(c, reserved_qty=c.reserved_qty + int(held[c.lot_id]))
                if c.lot_id in held
                else c
                for c in candidates
            ]
        return plan_lots(
            demand,
            strat,
            candidates,
            warehouse_scope=scope,
            comparator=comparator,
            as_of=as_of,
        )
