# wmsalloc/api/routers/inventory_allocations_routes_2_review.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from wmsalloc.api.deps import get_allocation_service, get_session, get_trace_id
from wmsalloc.api.problem import raise_allocation_problem
from wmsalloc.api.routers.inventory_allocations_schemas import ReviewRequest, ReviewResponse
from wmsalloc.services.allocation_errors import AllocationError
from wmsalloc.services.allocation_service import AllocationService


def register(router: APIRouter) -> None:
    @router.post("/review/{order_id}", response_model=ReviewResponse)
    async def review_order_allocations(
        body: ReviewRequest,
        order_id: int = Path(..., gt=0),
        session: AsyncSession = Depends(get_session),
        svc: AllocationService = Depends(get_allocation_service),
        trace_id: str = Depends(get_trace_id),
    ):
        """Read-only: header + lines + lot / warehouse breakdown for confirmation."""
        try:
            detail = await svc.review(
                session,
                order_id,
                allocation_ids=[int(x) for x in body.allocation_ids],
                warehouse_id=body.warehouse_id,
            )
        except AllocationError as e:
            raise_allocation_problem(e, trace_id=trace_id)

        return ReviewResponse.model_validate(detail)
