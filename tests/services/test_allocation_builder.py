# tests/services/test_allocation_builder.py
from __future__ import annotations

import dataclasses
from datetime import date

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tests.helpers.allocation import lot_balance, seed_lot, seed_order, seed_warehouse

from wmsalloc.core.config import AppSettings
from wmsalloc.models.allocation_batch import AllocationBatch
from wmsalloc.models.audit_event import AuditEvent
from wmsalloc.models.inventory_allocation import InventoryAllocation
from wmsalloc.services.allocation_builder import AllocationRecordBuilder
from wmsalloc.services.allocation_errors import (
    AllocationNotFound,
    AllocationStateError,
    AllocationValidationError,
    InsufficientStock,
    NoStockAvailable,
)
from wmsalloc.services.allocation_service import AllocationService
from wmsalloc.services.lot_selection_service import LotSelector
from wmsalloc.services.lot_snapshot_repo import fetch_lot_snapshot

pytestmark = pytest.mark.contract


def _service(builder=None, **overrides) -> AllocationService:
    overrides.setdefault("RESERVE_MAX_ATTEMPTS", 3)
    settings = AppSettings(EXCLUDE_EXPIRED=False, **overrides)
    return AllocationService(builder=builder, settings=settings)


class StaleFirstRead:
    """Snapshot reader that serves the first read of each item with every lot looking unreserved."""

    def __init__(self) -> None:
        self.calls = 0
        self._seen = set()

    async def __call__(self, session, **kw):
        self.calls += 1
        fresh = await fetch_lot_snapshot(session, **kw)
        key = (kw["item_kind"], kw["item_id"])
        if key not in self._seen:
            self._seen.add(key)
            return [dataclasses.replace(c, reserved_qty=0) for c in fresh]
        return fresh


async def _count(session: AsyncSession, model) -> int:
    return int((await session.execute(select(func.count()).select_from(model))).scalar_one())


@pytest.mark.asyncio
async def test_full_allocation_reserves_and_records_rows(session: AsyncSession):
    wh = await seed_warehouse(session)
    a = await seed_lot(session, warehouse_id=wh, item_id=7, code="A", on_hand=10, expiry=date(2025, 1, 1))
    b = await seed_lot(session, warehouse_id=wh, item_id=7, code="B", on_hand=10, expiry=date(2025, 6, 1))
    order_id, (line,) = await seed_order(session, order_no="SO-1", lines=[(7, 15)])
    await session.commit()

    res = await _service().allocate(session, order_id, strategy="fefo", trace_id="t_1", created_by="ut")

    assert res.status == "pending" and not res.partial
    (item,) = res.items
    assert item.order_item_id == line
    assert [(x["lot_id"], x["quantity"]) for x in item.lots] == [(a, 10), (b, 5)]
    assert len(res.allocation_ids) == 2
    assert await lot_balance(session, a) == {"on_hand": 10, "reserved": 10}
    assert await lot_balance(session, b) == {"on_hand": 10, "reserved": 5}

    rows = (await session.execute(select(InventoryAllocation))).scalars().all()
    assert {r.status for r in rows} == {"pending"}
    assert {r.strategy for r in rows} == {"fefo"}
    ev = (await session.execute(select(AuditEvent))).scalars().one()
    assert ev.category == "ALLOCATION" and ev.meta["event"] == "ALLOCATED"
    assert ev.meta["batch_id"] == res.batch_id and ev.trace_id == "t_1"


@pytest.mark.asyncio
async def test_planned_shortfall_is_recorded_as_partial(session: AsyncSession):
    wh = await seed_warehouse(session)
    lot = await seed_lot(session, warehouse_id=wh, item_id=7, code="A", on_hand=5, inbound=date(2025, 1, 1))
    order_id, _ = await seed_order(session, order_no="SO-2", lines=[(7, 8)])
    await session.commit()

    res = await _service().allocate(session, order_id, strategy="fifo")

    assert res.partial and res.status == "partially_allocated"
    assert res.items[0].allocated_qty == 5 and res.items[0].shortfall == 3
    assert await lot_balance(session, lot) == {"on_hand": 5, "reserved": 5}
    statuses = (await session.execute(select(InventoryAllocation.status))).scalars().all()
    assert statuses == ["partially_allocated"]


@pytest.mark.asyncio
async def test_competing_request_is_replanned_after_conflict(session: AsyncSession):
    """Two orders of 6 against one lot of 10; the second plans on a stale snapshot."""
    wh = await seed_warehouse(session)
    lot = await seed_lot(session, warehouse_id=wh, item_id=7, code="A", on_hand=10)
    first, _ = await seed_order(session, order_no="SO-A", lines=[(7, 6)])
    second, _ = await seed_order(session, order_no="SO-B", lines=[(7, 6)])
    await session.commit()

    r1 = await _service().allocate(session, first, strategy="fefo")
    assert r1.items[0].allocated_qty == 6

    reader = StaleFirstRead()
    builder = AllocationRecordBuilder(selector=LotSelector(snapshot_reader=reader))
    r2 = await _service(builder=builder).allocate(session, second, strategy="fefo")

    assert reader.calls == 2
    assert r2.items[0].allocated_qty == 4 and r2.items[0].shortfall == 2
    assert await lot_balance(session, lot) == {"on_hand": 10, "reserved": 10}
    # the failed attempt left nothing behind
    assert await _count(session, AllocationBatch) == 2
    assert await _count(session, AuditEvent) == 2


@pytest.mark.asyncio
async def test_conflict_surfaces_once_attempts_are_exhausted(session: AsyncSession):
    wh = await seed_warehouse(session)
    lot = await seed_lot(session, warehouse_id=wh, item_id=7, code="A", on_hand=10, reserved=6)
    order_id, _ = await seed_order(session, order_no="SO-X", lines=[(7, 6)])
    await session.commit()

    builder = AllocationRecordBuilder(selector=LotSelector(snapshot_reader=StaleFirstRead()))
    with pytest.raises(InsufficientStock):
        await _service(builder=builder, RESERVE_MAX_ATTEMPTS=1).allocate(session, order_id, strategy="fefo")

    assert await lot_balance(session, lot) == {"on_hand": 10, "reserved": 6}
    assert await _count(session, AllocationBatch) == 0


@pytest.mark.asyncio
async def test_mid_batch_failure_rolls_back_every_line(session: AsyncSession):
    """Line 1 reserves fine, line 2 hits a conflict: nothing of the batch survives."""
    wh = await seed_warehouse(session)
    good = await seed_lot(session, warehouse_id=wh, item_id=7, code="G", on_hand=10)
    contested = await seed_lot(session, warehouse_id=wh, item_id=8, code="C", on_hand=10, reserved=9)
    order_id, _ = await seed_order(session, order_no="SO-M", lines=[(7, 4), (8, 5)])
    await session.commit()

    builder = AllocationRecordBuilder(selector=LotSelector(snapshot_reader=StaleFirstRead()))
    with pytest.raises(InsufficientStock):
        await _service(builder=builder, RESERVE_MAX_ATTEMPTS=1).allocate(session, order_id, strategy="fefo")

    assert await lot_balance(session, good) == {"on_hand": 10, "reserved": 0}
    assert await lot_balance(session, contested) == {"on_hand": 10, "reserved": 9}
    assert await _count(session, InventoryAllocation) == 0
    assert await _count(session, AuditEvent) == 0


@pytest.mark.asyncio
async def test_order_with_no_stock_at_all_leaves_no_batch(session: AsyncSession):
    wh = await seed_warehouse(session)
    order_id, _ = await seed_order(session, order_no="SO-NIL", lines=[(7, 5)])
    await session.commit()

    svc = _service()
    with pytest.raises(NoStockAvailable) as ei:
        await svc.allocate(session, order_id, strategy="fefo")

    assert ei.value.details[0]["short_qty"] == 5
    assert await _count(session, AllocationBatch) == 0
    assert await _count(session, AuditEvent) == 0

    # the order is still open once stock arrives
    lot = await seed_lot(session, warehouse_id=wh, item_id=7, code="LATE", on_hand=10)
    await session.commit()
    res = await svc.allocate(session, order_id, strategy="fefo")
    assert res.status == "pending" and res.items[0].allocated_qty == 5
    assert await lot_balance(session, lot) == {"on_hand": 10, "reserved": 5}


@pytest.mark.asyncio
async def test_fulfilled_partial_batch_leaves_shortfall_allocatable(session: AsyncSession):
    wh = await seed_warehouse(session)
    await seed_lot(session, warehouse_id=wh, item_id=7, code="A", on_hand=5)
    order_id, (line,) = await seed_order(session, order_no="SO-BO", lines=[(7, 8)])
    await session.commit()

    svc = _service()
    first = await svc.allocate(session, order_id, strategy="fifo")
    assert first.status == "partially_allocated" and first.total_shortfall == 3
    await svc.confirm(session, order_id)
    await svc.confirm(session, order_id)
    await svc.fulfill(session, order_id)

    restock = await seed_lot(session, warehouse_id=wh, item_id=7, code="B", on_hand=10)
    await session.commit()
    second = await svc.allocate(session, order_id, strategy="fifo")

    assert second.batch_id != first.batch_id
    (item,) = second.items
    assert (item.order_item_id, item.requested_qty, item.allocated_qty) == (line, 3, 3)
    assert await lot_balance(session, restock) == {"on_hand": 10, "reserved": 3}
    (reviewed,) = (await svc.review(session, order_id))["items"]
    assert (reviewed["previously_fulfilled_qty"], reviewed["allocated_qty"], reviewed["shortfall"]) == (5, 3, 0)

    await svc.confirm(session, order_id)
    await svc.confirm(session, order_id)
    await svc.fulfill(session, order_id)
    with pytest.raises(AllocationStateError):
        await svc.allocate(session, order_id, strategy="fifo")
    assert (await svc.fulfill(session, order_id)).idempotent


@pytest.mark.asyncio
async def test_lines_for_the_same_item_share_lots_without_overbooking(session: AsyncSession):
    wh = await seed_warehouse(session)
    lot = await seed_lot(session, warehouse_id=wh, item_id=7, code="A", on_hand=10)
    order_id, _ = await seed_order(session, order_no="SO-S", lines=[(7, 6), (7, 6)])
    await session.commit()

    res = await _service().allocate(session, order_id, strategy="fefo")

    assert [i.allocated_qty for i in res.items] == [6, 4]
    assert [i.shortfall for i in res.items] == [0, 2]
    assert await lot_balance(session, lot) == {"on_hand": 10, "reserved": 10}


@pytest.mark.asyncio
async def test_warehouse_scope_limits_candidates(session: AsyncSession):
    w1 = await seed_warehouse(session, code="WH-1")
    w2 = await seed_warehouse(session, code="WH-2")
    await seed_lot(session, warehouse_id=w1, item_id=7, code="A", on_hand=10, expiry=date(2025, 1, 1))
    b = await seed_lot(session, warehouse_id=w2, item_id=7, code="B", on_hand=10, expiry=date(2026, 1, 1))
    order_id, _ = await seed_order(session, order_no="SO-W", lines=[(7, 3)])
    await session.commit()

    res = await _service().allocate(session, order_id, strategy="fefo", warehouse_ids=[w2])

    assert [x["lot_id"] for x in res.items[0].lots] == [b]


@pytest.mark.asyncio
async def test_expired_lots_skipped_when_enabled(session: AsyncSession):
    wh = await seed_warehouse(session)
    await seed_lot(session, warehouse_id=wh, item_id=7, code="OLD", on_hand=10, expiry=date(2025, 1, 1))
    fresh = await seed_lot(session, warehouse_id=wh, item_id=7, code="NEW", on_hand=10, expiry=date(2025, 9, 1))
    order_id, _ = await seed_order(session, order_no="SO-E", lines=[(7, 3)])
    await session.commit()

    res = await _service().allocate(session, order_id, strategy="fefo", as_of=date(2025, 3, 1))

    assert [x["lot_id"] for x in res.items[0].lots] == [fresh]


@pytest.mark.asyncio
async def test_custom_strategy_uses_named_comparator(session: AsyncSession):
    wh = await seed_warehouse(session)
    await seed_lot(session, warehouse_id=wh, item_id=7, code="P", on_hand=5, expiry=date(2025, 1, 1), unit_cost="9")
    cheap = await seed_lot(session, warehouse_id=wh, item_id=7, code="C", on_hand=5, expiry=date(2027, 1, 1), unit_cost="1")
    order_id, _ = await seed_order(session, order_no="SO-C", lines=[(7, 3)])
    await session.commit()

    res = await _service().allocate(session, order_id, strategy="custom", comparator_name="lowest_unit_cost")

    assert res.strategy == "custom"
    assert [x["lot_id"] for x in res.items[0].lots] == [cheap]


@pytest.mark.asyncio
async def test_second_allocation_for_live_order_is_refused(session: AsyncSession):
    wh = await seed_warehouse(session)
    await seed_lot(session, warehouse_id=wh, item_id=7, code="A", on_hand=10)
    order_id, _ = await seed_order(session, order_no="SO-D", lines=[(7, 2)])
    await session.commit()

    svc = _service()
    await svc.allocate(session, order_id, strategy="fefo")
    with pytest.raises(AllocationStateError):
        await svc.allocate(session, order_id, strategy="fefo")


@pytest.mark.asyncio
async def test_order_preconditions(session: AsyncSession):
    wh = await seed_warehouse(session)
    await seed_lot(session, warehouse_id=wh, item_id=7, code="A", on_hand=10)
    draft, _ = await seed_order(session, order_no="SO-DRAFT", lines=[(7, 1)], status="draft")
    empty, _ = await seed_order(session, order_no="SO-EMPTY", lines=[])
    bad_qty, _ = await seed_order(session, order_no="SO-ZERO", lines=[(7, 0)])
    await session.commit()

    svc = _service()
    with pytest.raises(AllocationNotFound):
        await svc.allocate(session, 404, strategy="fefo")
    with pytest.raises(AllocationValidationError):
        await svc.allocate(session, draft, strategy="fefo")
    with pytest.raises(AllocationValidationError):
        await svc.allocate(session, empty, strategy="fefo")
    with pytest.raises(AllocationValidationError):
        await svc.allocate(session, bad_qty, strategy="fefo")
    with pytest.raises(AllocationValidationError):
        await svc.allocate(session, draft, strategy="random")

    relaxed = _service(REQUIRE_CONFIRMED_ORDER=False)
    assert (await relaxed.allocate(session, draft, strategy="fefo")).items[0].allocated_qty == 1
