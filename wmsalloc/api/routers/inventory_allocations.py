# wmsalloc/api/routers/inventory_allocations.py
from __future__ import annotations

from fastapi import APIRouter

from wmsalloc.api.routers import inventory_allocations_routes_1_allocate
from wmsalloc.api.routers import inventory_allocations_routes_2_review
from wmsalloc.api.routers import inventory_allocations_routes_3_transitions
from wmsalloc.api.routers import inventory_allocations_routes_4_list

router = APIRouter(prefix="/inventory-allocations", tags=["inventory-allocations"])


def _register_all_routes() -> None:
    inventory_allocations_routes_1_allocate.register(router)
    inventory_allocations_routes_2_review.register(router)
    inventory_allocations_routes_3_transitions.register(router)
    inventory_allocations_routes_4_list.register(router)


_register_all_routes()
