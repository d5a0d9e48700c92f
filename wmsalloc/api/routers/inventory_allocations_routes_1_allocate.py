# wmsalloc/api/routers/inventory_allocations_routes_1_allocate.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from wmsalloc.api.deps import get_allocation_service, get_session, get_trace_id
from wmsalloc.api.problem import raise_allocation_problem
from wmsalloc.api.routers.inventory_allocations_schemas import AllocateRequest, AllocateResponse
from wmsalloc.services.allocation_errors import AllocationError
from wmsalloc.services.allocation_service import AllocationService


def register(router: APIRouter) -> None:
    @router.post(
        "/allocate/{order_id}",
        response_model=AllocateResponse,
        status_code=201,
    )
    async def allocate_order(
        body: AllocateRequest,
        order_id: int = Path(..., gt=0),
        session: AsyncSession = Depends(get_session),
        svc: AllocationService = Depends(get_allocation_service),
        trace_id: str = Depends(get_trace_id),
    ):
        try:
            result = await svc.allocate(
                session,
                order_id,
                strategy=body.strategy,
                warehouse_ids=body.scope(),
                comparator_name=body.comparator,
                trace_id=trace_id,
                created_by=body.created_by,
            )
        except AllocationError as e:
            raise_allocation_problem(e, trace_id=trace_id)

        return AllocateResponse.model_validate(result.to_dict())
