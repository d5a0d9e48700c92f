# wmsalloc/services/allocation_state_machine.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wmsalloc.metrics import TRANSITIONS
from wmsalloc.models.allocation_batch import AllocationBatch
from wmsalloc.models.enums import TERMINAL_ALLOCATION_STATUSES, AllocationStatus
from wmsalloc.models.inventory_allocation import InventoryAllocation
from wmsalloc.services.allocation_errors import AllocationNotFound, AllocationStateError
from wmsalloc.services.audit_writer import AuditEventWriter
from wmsalloc.services.quantity_ledger import QuantityLedger

logger = logging.getLogger("wmsalloc.state")

UTC = timezone.utc

S = AllocationStatus

# target -> statuses it may be entered from
_ALLOWED_FROM: Dict[AllocationStatus, FrozenSet[AllocationStatus]] = {
    S.CONFIRMED: frozenset({S.PENDING, S.PARTIALLY_ALLOCATED}),
    S.FULFILLING: frozenset({S.CONFIRMED}),
    S.FULFILLED: frozenset({S.FULFILLING}),
    S.CANCELLED: frozenset({S.PENDING, S.PARTIALLY_ALLOCATED, S.CONFIRMED, S.FULFILLING}),
}


@dataclass
class TransitionResult:
    order_id: int
    batch_id: int
    from_status: str
    to_status: str
    idempotent: bool = False
    allocation_ids: List[int] = field(default_factory=list)
    ledger: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_id": self.order_id,
            "batch_id": self.batch_id,
            "from_status": self.from_status,
            "status": self.to_status,
            "idempotent": self.idempotent,
            "allocation_ids": list(self.allocation_ids),
        }


class AllocationStateMachine:
    """
    Review/Confirm state machine over one allocation batch.

        pending / partially_allocated -> confirmed -> fulfilling -> fulfilled
        any non-terminal              -> cancelled

    The batch row is locked (FOR UPDATE) before its status is read, so two
    concurrent terminal transitions cannot both pass the status check.
    Re-entering the terminal status the batch is already in is a no-op
    reported as idempotent; the ledger is not touched again.
    """

    def __init__(self, ledger: Optional[QuantityLedger] = None) -> None:
        self.ledger = ledger or QuantityLedger()

    async def lock_batch(self, session: AsyncSession, batch_id: int) -> AllocationBatch:
        stmt = (
            select(AllocationBatch)
            .where(AllocationBatch.id == int(batch_id))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        batch = (await session.execute(stmt)).scalar_one_or_none()
        if batch is None:
            raise AllocationNotFound(f"allocation batch {batch_id} not found", context={"batch_id": int(batch_id)})
        return batch

    async def _rows(self, session: AsyncSession, batch_id: int) -> List[InventoryAllocation]:
        stmt = (
            select(InventoryAllocation)
            .where(InventoryAllocation.batch_id == int(batch_id))
            .order_by(InventoryAllocation.lot_id, InventoryAllocation.id)
            .execution_options(populate_existing=True)
        )
        return list((await session.execute(stmt)).scalars().all())

    async def transition(
        self,
        session: AsyncSession,
        batch_id: int,
        target: AllocationStatus,
        *,
        trace_id: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> TransitionResult:
        target = AllocationStatus(target)
        batch = await self.lock_batch(session, batch_id)
        current = AllocationStatus(batch.status)

        if current == target and target in TERMINAL_ALLOCATION_STATUSES:
            logger.info("batch=%s already %s, no-op", batch.id, current.value)
            return TransitionResult(
                order_id=int(batch.order_id),
                batch_id=int(batch.id),
                from_status=current.value,
                to_status=current.value,
                idempotent=True,
                allocation_ids=[int(r.id) for r in await self._rows(session, batch.id)],
            )

        allowed = _ALLOWED_FROM.get(target, frozenset())
        if current not in allowed:
            raise AllocationStateError(
                f"batch {batch.id}: cannot move from {current.value} to {target.value}",
                context={
                    "batch_id": int(batch.id),
                    "order_id": int(batch.order_id),
                    "from_status": current.value,
                    "to_status": target.value,
                },
            )

        rows = await self._rows(session, batch.id)
        if target is S.CONFIRMED and not rows:
            raise AllocationStateError(
                f"batch {batch.id}: nothing was reserved, cannot confirm",
                context={"batch_id": int(batch.id), "order_id": int(batch.order_id)},
                details=[{"type": "state", "path": "batch", "reason": "empty_batch"}],
            )
        ref = f"BATCH:{batch.id}"
        now = datetime.now(UTC)
        ledger_ops: List[Dict[str, Any]] = []

        # rows are ordered by lot id, so the ledger locks go in lot id order too
        if target is S.FULFILLED:
            for r in rows:
                if r.status in TERMINAL_ALLOCATION_STATUSES:
                    continue
                ledger_ops.append(
                    await self.ledger.commit_fulfillment(
                        session, r.lot_id, r.allocated_qty, ref=ref, trace_id=trace_id, occurred_at=now
                    )
                )
        elif target is S.CANCELLED:
            for r in rows:
                if r.status in TERMINAL_ALLOCATION_STATUSES:
                    continue
                ledger_ops.append(
                    await self.ledger.release(
                        session, r.lot_id, r.allocated_qty, ref=ref, trace_id=trace_id, occurred_at=now
                    )
                )

        for r in rows:
            if r.status not in TERMINAL_ALLOCATION_STATUSES:
                r.status = target.value
                r.updated_at = now
        batch.status = target.value
        batch.updated_at = now
        await session.flush()

        await AuditEventWriter.write(
            session,
            flow="ALLOCATION",
            event=target.value.upper(),
            ref=f"ORDER:{int(batch.order_id)}",
            trace_id=trace_id,
            meta={
                "batch_id": int(batch.id),
                "from_status": current.value,
                "to_status": target.value,
                "actor": actor,
                "ledger": ledger_ops,
            },
        )
        TRANSITIONS.labels(from_status=current.value, to_status=target.value).inc()
        logger.info("batch=%s %s -> %s rows=%d", batch.id, current.value, target.value, len(rows))

        return TransitionResult(
            order_id=int(batch.order_id),
            batch_id=int(batch.id),
            from_status=current.value,
            to_status=target.value,
            allocation_ids=[int(r.id) for r in rows],
            ledger=ledger_ops,
        )

    async def confirm(self, session: AsyncSession, batch_id: int, **kw: Any) -> TransitionResult:
        """Review step: pending/partially_allocated -> confirmed, confirmed -> fulfilling."""
        batch = await self.lock_batch(session, batch_id)
        if batch.status == S.CONFIRMED.value:
            return await self.transition(session, batch_id, S.FULFILLING, **kw)
        return await self.transition(session, batch_id, S.CONFIRMED, **kw)

    async def start_fulfillment(self, session: AsyncSession, batch_id: int, **kw: Any) -> TransitionResult:
        return await self.transition(session, batch_id, S.FULFILLING, **kw)

    async def fulfill(self, session: AsyncSession, batch_id: int, **kw: Any) -> TransitionResult:
        return await self.transition(session, batch_id, S.FULFILLED, **kw)

    async def cancel(self, session: AsyncSession, batch_id: int, **kw: Any) -> TransitionResult:
        return await self.transition(session, batch_id, S.CANCELLED, **kw)


__all__ = ["AllocationStateMachine", "TransitionResult"]
