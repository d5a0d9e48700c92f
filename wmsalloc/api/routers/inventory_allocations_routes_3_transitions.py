# wmsalloc/api/routers/inventory_allocations_routes_3_transitions.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from wmsalloc.api.deps import get_allocation_service, get_session, get_trace_id
from wmsalloc.api.problem import raise_allocation_problem
from wmsalloc.api.routers.inventory_allocations_schemas import (
    TransitionRequest,
    TransitionResponse,
)
from wmsalloc.services.allocation_errors import AllocationError
from wmsalloc.services.allocation_service import AllocationService


async def _run(
    action: str,
    svc: AllocationService,
    session: AsyncSession,
    order_id: int,
    body: Optional[TransitionRequest],
    trace_id: str,
) -> TransitionResponse:
    step = getattr(svc, action)
    try:
        result = await step(
            session,
            order_id,
            trace_id=trace_id,
            actor=body.actor if body else None,
        )
    except AllocationError as e:
        raise_allocation_problem(e, trace_id=trace_id)
    return TransitionResponse.model_validate(result.to_dict())


def register(router: APIRouter) -> None:
    @router.post("/confirm/{order_id}", response_model=TransitionResponse)
    async def confirm_allocation(
        order_id: int = Path(..., gt=0),
        body: Optional[TransitionRequest] = None,
        session: AsyncSession = Depends(get_session),
        svc: AllocationService = Depends(get_allocation_service),
        trace_id: str = Depends(get_trace_id),
    ):
        """pending / partially_allocated -> confirmed; confirmed -> fulfilling."""
        return await _run("confirm", svc, session, order_id, body, trace_id)

    @router.post("/fulfill/{order_id}", response_model=TransitionResponse)
    async def fulfill_allocation(
        order_id: int = Path(..., gt=0),
        body: Optional[TransitionRequest] = None,
        session: AsyncSession = Depends(get_session),
        svc: AllocationService = Depends(get_allocation_service),
        trace_id: str = Depends(get_trace_id),
    ):
        return await _run("fulfill", svc, session, order_id, body, trace_id)

    @router.post("/cancel/{order_id}", response_model=TransitionResponse)
    async def cancel_allocation(
        order_id: int = Path(..., gt=0),
        body: Optional[TransitionRequest] = None,
        session: AsyncSession = Depends(get_session),
        svc: AllocationService = Depends(get_allocation_service),
        trace_id: str = Depends(get_trace_id),
    ):
        return await _run("cancel", svc, session, order_id, body, trace_id)
