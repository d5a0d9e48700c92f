# wmsalloc/services/allocation_service.py
from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wmsalloc.core.config import AppSettings, get_settings
from wmsalloc.core.tx import TxManager
from wmsalloc.metrics import ALLOC_REQUESTS
from wmsalloc.models.allocation_batch import AllocationBatch
from wmsalloc.models.enums import AllocationStrategy
from wmsalloc.services.allocation_builder import (
    AllocationBatchResult,
    AllocationRecordBuilder,
    find_live_batch,
)
from wmsalloc.services.allocation_errors import (
    AllocationError,
    AllocationNotFound,
    AllocationStateError,
    AllocationValidationError,
    InsufficientStock,
)
from wmsalloc.services.allocation_query import AllocationFilters, list_allocations
from wmsalloc.services.allocation_review import review_allocations
from wmsalloc.services.allocation_state_machine import AllocationStateMachine, TransitionResult
from wmsalloc.services.lot_selector import LotComparator, parse_strategy, resolve_comparator
from wmsalloc.services.order_demand_reader import (
    fulfilled_quantities,
    load_order_demands,
    remaining_demands,
)

logger = logging.getLogger("wmsalloc")

UTC = timezone.utc


class AllocationService:
    """
    Entry points used by the HTTP layer. Each public call is one unit of work:
    it owns the transaction (TxManager) and commits or rolls back as a whole.
    """

    def __init__(
        self,
        builder: Optional[AllocationRecordBuilder] = None,
        machine: Optional[AllocationStateMachine] = None,
        settings: Optional[AppSettings] = None,
    ) -> None:
        self.builder = builder or AllocationRecordBuilder()
        self.machine = machine or AllocationStateMachine(self.builder.ledger)
        self.settings = settings or get_settings()

    # ---------------------------------------------------------------
    # allocate
    # ---------------------------------------------------------------
    async def allocate(
        self,
        session: AsyncSession,
        order_id: int,
        *,
        strategy: Optional[str] = None,
        warehouse_ids: Optional[Iterable[int]] = None,
        comparator: Optional[LotComparator] = None,
        comparator_name: Optional[str] = None,
        as_of: Optional[date] = None,
        trace_id: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> AllocationBatchResult:
        strat_label = str(strategy or self.settings.DEFAULT_STRATEGY)
        try:
            strat = parse_strategy(strat_label)
            strat_label = strat.value
            if strat is AllocationStrategy.CUSTOM and comparator is None:
                comparator = resolve_comparator(comparator_name)
            if as_of is None and self.settings.EXCLUDE_EXPIRED:
                as_of = datetime.now(UTC).date()
            scope = None
            if warehouse_ids is not None:
                scope = frozenset(int(w) for w in warehouse_ids) or None

            result = await TxManager.run_with_retry(
                session,
                self._allocate_once,
                attempts=self.settings.RESERVE_MAX_ATTEMPTS,
                retry_on=(InsufficientStock,),
                order_id=int(order_id),
                strategy=strat,
                warehouse_scope=scope,
                comparator=comparator,
                as_of=as_of,
                trace_id=trace_id,
                created_by=created_by,
            )
        except AllocationError as e:
            ALLOC_REQUESTS.labels(strategy=strat_label, outcome=e.error_code).inc()
            if isinstance(e, InsufficientStock):
                logger.warning("allocation order=%s gave up after conflicts: %s", order_id, e.message)
            raise

        ALLOC_REQUESTS.labels(strategy=strat_label, outcome="partial" if result.partial else "ok").inc()
        return result

    async def _allocate_once(
        self,
        *,
        session: AsyncSession,
        order_id: int,
        attempt: int,
        **kwargs: Any,
    ) -> AllocationBatchResult:
        order = await load_order_demands(session, order_id, for_update=True)
        if self.settings.REQUIRE_CONFIRMED_ORDER and order.status != "confirmed":
            raise AllocationValidationError(
                f"order {order_id} must be confirmed before allocation (status={order.status})",
                context={"order_id": order.order_id, "status": order.status},
                details=[{"type": "validation", "path": "order.status", "reason": "order_not_confirmed"}],
            )
        demands = remaining_demands(order.demands, await fulfilled_quantities(session, order.order_id))
        if not demands:
            raise AllocationStateError(
                f"order {order_id} is already fully fulfilled",
                context={"order_id": order.order_id},
                details=[{"type": "state", "path": "order", "reason": "order_fulfilled"}],
            )
        return await self.builder.build_and_persist(
            session,
            order_id=order.order_id,
            demands=demands,
            attempt=attempt,
            **kwargs,
        )

    # ---------------------------------------------------------------
    # review / list (read-only)
    # ---------------------------------------------------------------
    async def review(
        self,
        session: AsyncSession,
        order_id: int,
        *,
        allocation_ids: Optional[Sequence[int]] = None,
        warehouse_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        return await review_allocations(
            session, order_id, allocation_ids=allocation_ids, warehouse_id=warehouse_id
        )

    async def search(
        self,
        session: AsyncSession,
        filters: AllocationFilters,
        **kwargs: Any,
    ) -> Dict[str, Any]:
        kwargs.setdefault("max_limit", self.settings.LIST_MAX_LIMIT)
        return await list_allocations(session, filters, **kwargs)

    # ---------------------------------------------------------------
    # transitions
    # ---------------------------------------------------------------
    async def confirm(self, session: AsyncSession, order_id: int, **kw: Any) -> TransitionResult:
        return await self._transition(session, order_id, "confirm", **kw)

    async def fulfill(self, session: AsyncSession, order_id: int, **kw: Any) -> TransitionResult:
        return await self._transition(session, order_id, "fulfill", **kw)

    async def cancel(self, session: AsyncSession, order_id: int, **kw: Any) -> TransitionResult:
        return await self._transition(session, order_id, "cancel", **kw)

    async def _transition(
        self,
        session: AsyncSession,
        order_id: int,
        action: str,
        *,
        trace_id: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> TransitionResult:
        async def _run(*, session: AsyncSession) -> TransitionResult:
            batch_id = await self._batch_for_order(session, order_id)
            step = getattr(self.machine, action)
            return await step(session, batch_id, trace_id=trace_id, actor=actor)

        return await TxManager.run(session, _run)

    @staticmethod
    async def _batch_for_order(session: AsyncSession, order_id: int) -> int:
        """The live batch of the order; otherwise its latest finished (fulfilled or cancelled) one."""
        live = await find_live_batch(session, order_id)
        if live is not None:
            return int(live.id)
        latest = (
            await session.execute(
                select(AllocationBatch.id)
                .where(AllocationBatch.order_id == int(order_id))
                .order_by(AllocationBatch.id.desc())
                .limit(1)
            )
        ).scalar_one_or_none()
        if latest is None:
            raise AllocationNotFound(
                f"order {order_id} has no allocation batch", context={"order_id": int(order_id)}
            )
        return int(latest)


__all__ = ["AllocationService"]
