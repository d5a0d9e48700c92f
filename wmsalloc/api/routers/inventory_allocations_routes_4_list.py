# wmsalloc/api/routers/inventory_allocations_routes_4_list.py
from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from wmsalloc.api.deps import get_allocation_service, get_session, get_trace_id
from wmsalloc.api.problem import raise_allocation_problem
from wmsalloc.api.routers.inventory_allocations_schemas import AllocationListResponse
from wmsalloc.services.allocation_errors import AllocationError
from wmsalloc.services.allocation_query import AllocationFilters
from wmsalloc.services.allocation_service import AllocationService


def register(router: APIRouter) -> None:
    @router.get("", response_model=AllocationListResponse)
    async def list_inventory_allocations(
        statuses: Optional[List[str]] = Query(default=None),
        warehouse_ids: Optional[List[int]] = Query(default=None, alias="warehouseIds"),
        lot_ids: Optional[List[int]] = Query(default=None, alias="lotIds"),
        order_id: Optional[int] = Query(default=None, alias="orderId", gt=0),
        created_after: Optional[datetime] = Query(default=None, alias="createdAfter"),
        created_before: Optional[datetime] = Query(default=None, alias="createdBefore"),
        page: int = Query(default=1, ge=1),
        limit: int = Query(default=20, ge=1, le=100),
        sort_by: Literal["created_at", "allocated_qty", "order_id", "lot_id"] = Query(
            default="created_at", alias="sortBy"
        ),
        sort_order: Literal["ASC", "DESC", "asc", "desc"] = Query(default="DESC", alias="sortOrder"),
        session: AsyncSession = Depends(get_session),
        svc: AllocationService = Depends(get_allocation_service),
        trace_id: str = Depends(get_trace_id),
    ):
        filters = AllocationFilters(
            statuses=statuses,
            warehouse_ids=warehouse_ids,
            lot_ids=lot_ids,
            order_id=order_id,
            created_after=created_after,
            created_before=created_before,
        )
        try:
            result = await svc.search(
                session,
                filters,
                page=page,
                limit=limit,
                sort_by=sort_by,
                sort_order=sort_order,
            )
        except AllocationError as e:
            raise_allocation_problem(e, trace_id=trace_id)

        return AllocationListResponse.model_validate(result)
