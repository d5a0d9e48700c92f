# wmsalloc/services/quantity_ledger.py
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wmsalloc.metrics import LEDGER_CONFLICTS, LEDGER_OPS
from wmsalloc.models.enums import BLOCKED_LOT_STATUSES, LedgerReason
from wmsalloc.models.inventory_lot import InventoryLot
from wmsalloc.services.allocation_errors import (
    AllocationNotFound,
    AllocationValidationError,
    InsufficientStock,
    LedgerInvariantViolation,
)
from wmsalloc.services.lot_ledger_writer import write_lot_ledger
from wmsalloc.services.lot_selector import validate_quantity

logger = logging.getLogger("wmsalloc.ledger")

UTC = timezone.utc


class QuantityLedger:
    """
    Quantity ledger over inventory_lots (on_hand_qty / reserved_qty).

    Contract:
    ------------------------------------------
    • every mutation locks the lot row first (SELECT ... FOR UPDATE) and
      re-reads it, so concurrent writers on one lot serialize
    • 0 <= reserved_qty <= on_hand_qty holds after every call
    • the caller owns the transaction; nothing here commits
    • multi-lot callers lock through lock_lots(), which goes in lot id order
    ------------------------------------------
    """

    async def lock_lot(self, session: AsyncSession, lot_id: int) -> InventoryLot:
        stmt = (
            select(InventoryLot)
            .where(InventoryLot.id == int(lot_id))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        lot = (await session.execute(stmt)).scalar_one_or_none()
        if lot is None:
            raise AllocationNotFound(f"lot {lot_id} not found", context={"lot_id": int(lot_id)})
        return lot

    async def lock_lots(self, session: AsyncSession, lot_ids: Iterable[int]) -> Dict[int, InventoryLot]:
        """Lock lots one by one in ascending id order (deadlock-free across batches)."""
        out: Dict[int, InventoryLot] = {}
        for lid in sorted({int(x) for x in lot_ids}):
            out[lid] = await self.lock_lot(session, lid)
        return out

    # ---------------------------------------------------------------
    # reserve: available >= qty  →  reserved += qty
    # ---------------------------------------------------------------
    async def reserve(
        self,
        session: AsyncSession,
        lot_id: int,
        quantity: int,
        *,
        ref: str,
        trace_id: Optional[str] = None,
        occurred_at: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        qty = validate_quantity(quantity)
        lot = await self.lock_lot(session, lot_id)

        if lot.status in BLOCKED_LOT_STATUSES:
            LEDGER_CONFLICTS.inc()
            raise InsufficientStock(
                lot_id=lot.id, requested_qty=qty, available_qty=0, reason=f"lot_{lot.status}"
            )

        available = lot.available_qty
        if available < qty:
            LEDGER_CONFLICTS.inc()
            raise InsufficientStock(lot_id=lot.id, requested_qty=qty, available_qty=available)

        before = self._balances(lot)
        lot.reserved_qty = int(lot.reserved_qty) + qty
        lot.updated_at = datetime.now(UTC)
        await write_lot_ledger(
            session,
            lot=lot,
            reason=LedgerReason.RESERVE,
            delta_on_hand=0,
            delta_reserved=qty,
            ref=ref,
            trace_id=trace_id,
            occurred_at=occurred_at,
        )
        await session.flush()
        LEDGER_OPS.labels(op="reserve").inc()
        return self._result(lot, before, op="reserve", qty=qty)

    # ---------------------------------------------------------------
    # release: reserved -= qty (cancellation path)
    # ---------------------------------------------------------------
    async def release(
        self,
        session: AsyncSession,
        lot_id: int,
        quantity: int,
        *,
        ref: str,
        trace_id: Optional[str] = None,
        occurred_at: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        qty = validate_quantity(quantity)
        lot = await self.lock_lot(session, lot_id)

        if qty > int(lot.reserved_qty):
            self._violation("release exceeds reservation", lot, qty, ref)

        before = self._balances(lot)
        lot.reserved_qty = int(lot.reserved_qty) - qty
        lot.updated_at = datetime.now(UTC)
        await write_lot_ledger(
            session,
            lot=lot,
            reason=LedgerReason.RELEASE,
            delta_on_hand=0,
            delta_reserved=-qty,
            ref=ref,
            trace_id=trace_id,
            occurred_at=occurred_at,
        )
        await session.flush()
        LEDGER_OPS.labels(op="release").inc()
        return self._result(lot, before, op="release", qty=qty)

    # ---------------------------------------------------------------
    # commit_fulfillment: on_hand -= qty AND reserved -= qty together
    # ---------------------------------------------------------------
    async def commit_fulfillment(
        self,
        session: AsyncSession,
        lot_id: int,
        quantity: int,
        *,
        ref: str,
        trace_id: Optional[str] = None,
        occurred_at: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        qty = validate_quantity(quantity)
        lot = await self.lock_lot(session, lot_id)

        if qty > int(lot.reserved_qty):
            self._violation("fulfillment exceeds reservation", lot, qty, ref)
        if qty > int(lot.on_hand_qty):
            self._violation("fulfillment exceeds on-hand", lot, qty, ref)

        before = self._balances(lot)
        lot.reserved_qty = int(lot.reserved_qty) - qty
        lot.on_hand_qty = int(lot.on_hand_qty) - qty
        lot.updated_at = datetime.now(UTC)
        await write_lot_ledger(
            session,
            lot=lot,
            reason=LedgerReason.FULFILL,
            delta_on_hand=-qty,
            delta_reserved=-qty,
            ref=ref,
            trace_id=trace_id,
            occurred_at=occurred_at,
        )
        await session.flush()
        LEDGER_OPS.labels(op="commit_fulfillment").inc()
        return self._result(lot, before, op="commit_fulfillment", qty=qty)

    # ---------------------------------------------------------------
    # adjust_on_hand: receipts (+) and write-offs (-); reserved stock is untouchable
    # ---------------------------------------------------------------
    async def adjust_on_hand(
        self,
        session: AsyncSession,
        lot_id: int,
        delta: int,
        *,
        ref: str,
        reason: Optional[LedgerReason] = None,
        trace_id: Optional[str] = None,
        occurred_at: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        if isinstance(delta, bool) or not isinstance(delta, int):
            raise AllocationValidationError(f"delta must be an integer, got {delta!r}")
        if delta == 0:
            return {"lot_id": int(lot_id), "op": "adjust", "applied": False}

        lot = await self.lock_lot(session, lot_id)
        new_on_hand = int(lot.on_hand_qty) + int(delta)
        if new_on_hand < int(lot.reserved_qty):
            LEDGER_CONFLICTS.inc()
            raise InsufficientStock(
                lot_id=lot.id,
                requested_qty=-int(delta),
                available_qty=lot.available_qty,
                reason="reserved_stock_not_adjustable",
            )

        before = self._balances(lot)
        lot.on_hand_qty = new_on_hand
        lot.updated_at = datetime.now(UTC)
        await write_lot_ledger(
            session,
            lot=lot,
            reason=reason or (LedgerReason.RECEIPT if delta > 0 else LedgerReason.ADJUSTMENT),
            delta_on_hand=int(delta),
            delta_reserved=0,
            ref=ref,
            trace_id=trace_id,
            occurred_at=occurred_at,
        )
        await session.flush()
        LEDGER_OPS.labels(op="adjust").inc()
        return self._result(lot, before, op="adjust", qty=int(delta))

    # ---------------------------------------------------------------

    @staticmethod
    def _balances(lot: InventoryLot) -> Dict[str, int]:
        return {"on_hand": int(lot.on_hand_qty), "reserved": int(lot.reserved_qty)}

    @staticmethod
    def _result(lot: InventoryLot, before: Dict[str, int], *, op: str, qty: int) -> Dict[str, Any]:
        return {
            "lot_id": int(lot.id),
            "op": op,
            "qty": int(qty),
            "applied": True,
            "before_on_hand": before["on_hand"],
            "before_reserved": before["reserved"],
            "after_on_hand": int(lot.on_hand_qty),
            "after_reserved": int(lot.reserved_qty),
        }

    @staticmethod
    def _violation(what: str, lot: InventoryLot, qty: int, ref: str) -> None:
        context = {
            "lot_id": int(lot.id),
            "requested_qty": int(qty),
            "on_hand_qty": int(lot.on_hand_qty),
            "reserved_qty": int(lot.reserved_qty),
            "ref": ref,
        }
        logger.error("LEDGER_INVARIANT_VIOLATION %s: %s", what, context)
        raise LedgerInvariantViolation(what, context=context)
