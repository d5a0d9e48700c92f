# wmsalloc/api/routers/inventory_allocations_schemas.py
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, conint
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# 1) allocate
# ---------------------------------------------------------------------------


class AllocateRequest(_CamelModel):
    strategy: Optional[str] = Field(default=None, description="fifo | fefo | lifo | custom")
    warehouse_id: Optional[conint(gt=0)] = None
    warehouse_ids: Optional[List[conint(gt=0)]] = None
    comparator: Optional[str] = Field(
        default=None, description="registered comparator name, required for strategy=custom"
    )
    created_by: Optional[str] = Field(default=None, max_length=64)

    def scope(self) -> Optional[List[int]]:
        ids: List[int] = []
        if self.warehouse_id is not None:
            ids.append(int(self.warehouse_id))
        ids.extend(int(w) for w in self.warehouse_ids or [])
        return ids or None


class AllocatedLotOut(_CamelModel):
    allocation_id: int
    lot_id: int
    warehouse_id: int
    quantity: int


class AllocatedItemOut(_CamelModel):
    order_item_id: Optional[int] = None
    item_kind: str
    item_id: int
    requested_qty: int
    allocated_qty: int
    shortfall: int
    lots: List[AllocatedLotOut] = Field(default_factory=list)


class AllocateResponse(_CamelModel):
    order_id: int
    batch_id: int
    status: str
    strategy: str
    allocation_ids: List[int]
    partial: bool
    total_shortfall: int
    items: List[AllocatedItemOut]


# ---------------------------------------------------------------------------
# 2) review
# ---------------------------------------------------------------------------


class ReviewRequest(_CamelModel):
    allocation_ids: List[conint(gt=0)] = Field(default_factory=list)
    warehouse_id: Optional[conint(gt=0)] = None


class ReviewLotOut(_CamelModel):
    allocation_id: int
    batch_id: int
    status: str
    lot_id: int
    lot_code: Optional[str] = None
    warehouse_id: int
    warehouse_code: Optional[str] = None
    warehouse_name: Optional[str] = None
    expiry_date: Optional[str] = None
    inbound_date: Optional[str] = None
    allocated_qty: int


class ReviewItemOut(_CamelModel):
    order_item_id: int
    item_kind: str
    item_id: int
    quantity_ordered: Optional[int] = None
    previously_fulfilled_qty: int = 0
    allocated_qty: int
    shortfall: int
    lots: List[ReviewLotOut]


class ReviewBatchOut(_CamelModel):
    batch_id: int
    status: str
    strategy: str
    created_by: Optional[str] = None
    created_at: Optional[str] = None


class ReviewHeaderOut(_CamelModel):
    order_id: int
    order_no: str
    order_status: str
    batches: List[ReviewBatchOut]
    total_allocated_qty: int


class ReviewResponse(_CamelModel):
    header: ReviewHeaderOut
    items: List[ReviewItemOut]


# ---------------------------------------------------------------------------
# 3) confirm / fulfill / cancel
# ---------------------------------------------------------------------------


class TransitionRequest(_CamelModel):
    actor: Optional[str] = Field(default=None, max_length=64)


class TransitionResponse(_CamelModel):
    order_id: int
    batch_id: int
    from_status: str
    status: str
    idempotent: bool
    allocation_ids: List[int]


# ---------------------------------------------------------------------------
# 4) list
# ---------------------------------------------------------------------------


class AllocationRowOut(_CamelModel):
    id: int
    batch_id: int
    order_id: int
    order_item_id: int
    lot_id: int
    lot_code: Optional[str] = None
    expiry_date: Optional[str] = None
    warehouse_id: int
    allocated_qty: int
    strategy: str
    status: str
    created_by: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class PaginationOut(_CamelModel):
    page: int
    limit: int
    total_records: int
    total_pages: int


class AllocationListResponse(_CamelModel):
    data: List[AllocationRowOut]
    pagination: PaginationOut
