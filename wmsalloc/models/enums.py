# wmsalloc/models/enums.py
from __future__ import annotations

from enum import StrEnum


class ItemKind(StrEnum):
    """What a lot / order item holds: a sellable SKU or a packaging material."""

    SKU = "sku"
    PACKAGING_MATERIAL = "packaging_material"


class LotStatus(StrEnum):
    """
    Lot lifecycle status (owned by receiving / QA, never by the allocator):

    - IN_STOCK       normal, allocatable
    - UNASSIGNED     received without a proper lot assignment, still allocatable
    - OUT_OF_STOCK   depleted
    - DAMAGED / SUSPENDED / EXPIRED / UNAVAILABLE   blocked for allocation
    """

    IN_STOCK = "in_stock"
    UNASSIGNED = "unassigned"
    OUT_OF_STOCK = "out_of_stock"
    DAMAGED = "damaged"
    SUSPENDED = "suspended"
    EXPIRED = "expired"
    UNAVAILABLE = "unavailable"


BLOCKED_LOT_STATUSES = frozenset(
    {LotStatus.DAMAGED, LotStatus.SUSPENDED, LotStatus.EXPIRED, LotStatus.UNAVAILABLE}
)


class AllocationStrategy(StrEnum):
    FIFO = "fifo"
    FEFO = "fefo"
    LIFO = "lifo"
    CUSTOM = "custom"


class AllocationStatus(StrEnum):
    """
    Allocation lifecycle (rows and batches share it):

        pending / partially_allocated -> confirmed -> fulfilling -> fulfilled
        any non-terminal              -> cancelled

    partially_allocated is pending with a recorded shortfall.
    """

    PENDING = "pending"
    PARTIALLY_ALLOCATED = "partially_allocated"
    CONFIRMED = "confirmed"
    FULFILLING = "fulfilling"
    FULFILLED = "fulfilled"
    CANCELLED = "cancelled"


TERMINAL_ALLOCATION_STATUSES = frozenset({AllocationStatus.FULFILLED, AllocationStatus.CANCELLED})


class LedgerReason(StrEnum):
    """lot_ledger.reason values, one per QuantityLedger operation."""

    RESERVE = "RESERVE"
    RELEASE = "RELEASE"
    FULFILL = "FULFILL"
    RECEIPT = "RECEIPT"
    ADJUSTMENT = "ADJUSTMENT"


__all__ = [
    "ItemKind",
    "LotStatus",
    "BLOCKED_LOT_STATUSES",
    "AllocationStrategy",
    "AllocationStatus",
    "TERMINAL_ALLOCATION_STATUSES",
    "LedgerReason",
]
