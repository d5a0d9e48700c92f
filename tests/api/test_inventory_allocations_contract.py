# tests/api/test_inventory_allocations_contract.py
from __future__ import annotations

from datetime import date, timedelta

import httpx
import pytest

from tests.helpers.allocation import lot_balance, seed_lot, seed_order, seed_warehouse

from wmsalloc.api.deps import get_allocation_service, get_session
from wmsalloc.main import app

pytestmark = pytest.mark.contract

TODAY = date.today()


async def _seed(async_session_maker, *, order_lines=((7, 15),), status="confirmed"):
    async with async_session_maker() as s:
        wh = await seed_warehouse(s)
        near = await seed_lot(
            s, warehouse_id=wh, item_id=7, code="NEAR", on_hand=10, expiry=TODAY + timedelta(days=10)
        )
        far = await seed_lot(
            s, warehouse_id=wh, item_id=7, code="FAR", on_hand=10, expiry=TODAY + timedelta(days=90)
        )
        await seed_lot(
            s, warehouse_id=wh, item_id=7, code="GONE", on_hand=50, expiry=TODAY - timedelta(days=5)
        )
        order_id, _ = await seed_order(s, order_no="SO-API", lines=list(order_lines), status=status)
        await s.commit()
    return wh, near, far, order_id


@pytest.mark.asyncio
async def test_allocate_review_confirm_fulfill(client: httpx.AsyncClient, async_session_maker):
    wh, near, far, order_id = await _seed(async_session_maker)

    r = await client.post(
        f"/inventory-allocations/allocate/{order_id}",
        json={"strategy": "fefo", "warehouseId": str(wh)},
        headers={"X-Trace-Id": "t_api_1"},
    )
    assert r.status_code == 201, r.text
    body = r.json()
    assert body["orderId"] == order_id
    assert body["partial"] is False and body["status"] == "pending"
    assert len(body["allocationIds"]) == 2
    lots = body["items"][0]["lots"]
    assert [(x["lotId"], x["quantity"]) for x in lots] == [(near, 10), (far, 5)]

    r = await client.post(
        f"/inventory-allocations/review/{order_id}", json={"allocationIds": body["allocationIds"]}
    )
    assert r.status_code == 200, r.text
    review = r.json()
    assert review["header"]["orderNo"] == "SO-API"
    assert review["items"][0]["lots"][0]["lotCode"] == "NEAR"

    r = await client.post(f"/inventory-allocations/confirm/{order_id}")
    assert r.status_code == 200 and r.json()["status"] == "confirmed"
    r = await client.post(f"/inventory-allocations/confirm/{order_id}", json={"actor": "picker"})
    assert r.json()["status"] == "fulfilling"

    r = await client.post(f"/inventory-allocations/fulfill/{order_id}")
    assert r.json()["status"] == "fulfilled" and r.json()["idempotent"] is False
    r = await client.post(f"/inventory-allocations/fulfill/{order_id}")
    assert r.status_code == 200 and r.json()["idempotent"] is True

    async with async_session_maker() as s:
        assert await lot_balance(s, near) == {"on_hand": 0, "reserved": 0}
        assert await lot_balance(s, far) == {"on_hand": 5, "reserved": 0}


@pytest.mark.asyncio
async def test_partial_allocation_reports_shortfall(client: httpx.AsyncClient, async_session_maker):
    *_, order_id = await _seed(async_session_maker, order_lines=((7, 25),))

    r = await client.post(f"/inventory-allocations/allocate/{order_id}", json={"strategy": "fifo"})

    assert r.status_code == 201, r.text
    body = r.json()
    assert body["partial"] is True and body["status"] == "partially_allocated"
    assert body["totalShortfall"] == 5
    assert body["items"][0]["shortfall"] == 5


@pytest.mark.asyncio
async def test_cancel_is_idempotent_over_http(client: httpx.AsyncClient, async_session_maker):
    _, near, far, order_id = await _seed(async_session_maker)
    await client.post(f"/inventory-allocations/allocate/{order_id}", json={})

    first = await client.post(f"/inventory-allocations/cancel/{order_id}")
    second = await client.post(f"/inventory-allocations/cancel/{order_id}")

    assert first.json()["idempotent"] is False and second.json()["idempotent"] is True
    async with async_session_maker() as s:
        assert (await lot_balance(s, near))["reserved"] == 0
        assert (await lot_balance(s, far))["reserved"] == 0


@pytest.mark.asyncio
async def test_error_shapes(client: httpx.AsyncClient, async_session_maker):
    *_, order_id = await _seed(async_session_maker)

    r = await client.post(f"/inventory-allocations/allocate/{order_id}", json={"strategy": "random"})
    assert r.status_code == 422
    p = r.json()
    assert p["error_code"] == "allocation_validation_error"
    assert p["details"][0]["path"] == "strategy"
    assert p["trace_id"]

    r = await client.post("/inventory-allocations/allocate/99999", json={})
    assert r.status_code == 404 and r.json()["error_code"] == "allocation_not_found"

    r = await client.post(
        f"/inventory-allocations/allocate/{order_id}", json={"strategy": "custom", "comparator": "nope"}
    )
    assert r.status_code == 422

    r = await client.post(f"/inventory-allocations/fulfill/{order_id}")
    assert r.status_code == 404

    assert (await client.post(f"/inventory-allocations/allocate/{order_id}", json={})).status_code == 201
    r = await client.post(f"/inventory-allocations/allocate/{order_id}", json={})
    assert r.status_code == 409 and r.json()["error_code"] == "allocation_state_conflict"

    r = await client.post(f"/inventory-allocations/fulfill/{order_id}")
    assert r.status_code == 409
    assert r.json()["context"]["from_status"] == "pending"

    r = await client.post("/inventory-allocations/allocate/0", json={})
    assert r.status_code == 422 and r.json()["error_code"] == "request_validation_error"


@pytest.mark.asyncio
async def test_unconfirmed_order_is_rejected(client: httpx.AsyncClient, async_session_maker):
    *_, order_id = await _seed(async_session_maker, status="draft")

    r = await client.post(f"/inventory-allocations/allocate/{order_id}", json={})

    assert r.status_code == 422
    assert r.json()["details"][0]["reason"] == "order_not_confirmed"


@pytest.mark.asyncio
async def test_list_endpoint(client: httpx.AsyncClient, async_session_maker):
    wh, near, far, order_id = await _seed(async_session_maker)
    await client.post(f"/inventory-allocations/allocate/{order_id}", json={"strategy": "fefo"})

    r = await client.get(
        "/inventory-allocations",
        params={"orderId": order_id, "sortBy": "allocated_qty", "sortOrder": "ASC", "limit": 1, "page": 2},
    )
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["pagination"] == {"page": 2, "limit": 1, "totalRecords": 2, "totalPages": 2}
    assert body["data"][0]["lotId"] == near and body["data"][0]["allocatedQty"] == 10

    r = await client.get("/inventory-allocations", params=[("statuses", "pending"), ("lotIds", far)])
    assert [x["lotId"] for x in r.json()["data"]] == [far]

    assert (await client.get("/inventory-allocations", params={"limit": 101})).status_code == 422
    assert (await client.get("/inventory-allocations", params={"sortBy": "nope"})).status_code == 422


@pytest.mark.asyncio
async def test_metrics_exposed(client: httpx.AsyncClient):
    r = await client.get("/metrics")
    assert r.status_code == 200
    assert "allocation_requests_total" in r.text


@pytest.mark.asyncio
async def test_order_without_any_stock_is_refused_without_a_batch(client: httpx.AsyncClient, async_session_maker):
    async with async_session_maker() as s:
        order_id, _ = await seed_order(s, order_no="SO-NOSTOCK", lines=[(99, 4)])
        await s.commit()

    r = await client.post(f"/inventory-allocations/allocate/{order_id}", json={})

    assert r.status_code == 409, r.text
    p = r.json()
    assert p["error_code"] == "no_stock_available"
    assert p["details"][0]["short_qty"] == 4
    assert p["next_actions"][0]["action"] == "retry_allocation"
    assert (await client.post(f"/inventory-allocations/confirm/{order_id}")).status_code == 404


@pytest.mark.asyncio
async def test_problems_keep_the_caller_trace_id(client: httpx.AsyncClient):
    r = await client.post(
        "/inventory-allocations/allocate/0", json={}, headers={"X-Trace-Id": "t_caller_1"}
    )
    assert r.status_code == 422 and r.json()["trace_id"] == "t_caller_1"

    r = await client.post("/inventory-allocations/confirm/424242", headers={"X-Trace-Id": "t_caller_2"})
    assert r.status_code == 404 and r.json()["trace_id"] == "t_caller_2"


class _BrokenService:
    async def allocate(self, *a, **kw):
        raise RuntimeError("boom")


@pytest.mark.asyncio
async def test_unhandled_error_is_a_generic_500_with_the_caller_trace_id(async_session_maker):
    async def _session():
        async with async_session_maker() as sess:
            yield sess

    app.dependency_overrides[get_session] = _session
    app.dependency_overrides[get_allocation_service] = lambda: _BrokenService()
    transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
    try:
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
            r = await c.post(
                "/inventory-allocations/allocate/1", json={}, headers={"X-Trace-Id": "t_caller_500"}
            )
    finally:
        app.dependency_overrides.pop(get_session, None)
        app.dependency_overrides.pop(get_allocation_service, None)

    assert r.status_code == 500
    p = r.json()
    assert p["error_code"] == "internal_error" and p["trace_id"] == "t_caller_500"
    assert "boom" not in r.text
