# wmsalloc/services/lot_selector.py
from __future__ import annotations

import functools
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from wmsalloc.models.enums import BLOCKED_LOT_STATUSES, AllocationStrategy, ItemKind
from wmsalloc.services.allocation_errors import AllocationValidationError

# cmp-style: negative -> a first, positive -> b first, 0 -> tie (lot id decides)
LotComparator = Callable[["LotCandidate", "LotCandidate"], int]


@dataclass(frozen=True)
class LotCandidate:
    """Point-in-time view of a lot. Never written back."""

    lot_id: int
    item_id: int
    warehouse_id: int
    on_hand_qty: int
    reserved_qty: int = 0
    item_kind: str = ItemKind.SKU.value
    lot_code: Optional[str] = None
    expiry_date: Optional[date] = None
    manufacture_date: Optional[date] = None
    inbound_date: Optional[date] = None
    status: str = "in_stock"
    unit_cost: Optional[Decimal] = None

    @property
    def available_qty(self) -> int:
        return max(0, int(self.on_hand_qty) - max(0, int(self.reserved_qty)))


@dataclass(frozen=True)
class ItemDemand:
    order_item_id: Optional[int]
    item_id: int
    quantity: int
    item_kind: str = ItemKind.SKU.value
    warehouse_ids: Optional[frozenset] = None


@dataclass(frozen=True)
class LotAllocation:
    lot_id: int
    warehouse_id: int
    quantity: int


@dataclass(frozen=True)
class LotPlan:
    demand: ItemDemand
    allocations: Tuple[LotAllocation, ...] = field(default_factory=tuple)
    shortfall: int = 0

    @property
    def allocated_qty(self) -> int:
        return sum(a.quantity for a in self.allocations)

    @property
    def fulfilled(self) -> bool:
        return self.shortfall == 0


# ---------------------------------------------------------------
# ordering keys
# ---------------------------------------------------------------


def _fefo_key(lot: LotCandidate):
    # expiry ASC, NULL expiry last
    return (lot.expiry_date is None, lot.expiry_date or date.max, lot.lot_id)


def _fifo_key(lot: LotCandidate):
    return (lot.inbound_date is None, lot.inbound_date or date.max, lot.lot_id)


def _lifo_key(lot: LotCandidate):
    # newest inbound first; lots without an inbound date go last
    newest = -lot.inbound_date.toordinal() if lot.inbound_date else 0
    return (lot.inbound_date is None, newest, lot.lot_id)


_STRATEGY_KEYS: Dict[AllocationStrategy, Callable[[LotCandidate], tuple]] = {
    AllocationStrategy.FEFO: _fefo_key,
    AllocationStrategy.FIFO: _fifo_key,
    AllocationStrategy.LIFO: _lifo_key,
}


def parse_strategy(strategy: Union[str, AllocationStrategy, None]) -> AllocationStrategy:
    if isinstance(strategy, AllocationStrategy):
        return strategy
    raw = str(strategy or "").strip().lower()
    try:
        return AllocationStrategy(raw)
    except ValueError:
        raise AllocationValidationError(
            f"unknown allocation strategy: {strategy!r}",
            details=[{"type": "validation", "path": "strategy", "reason": "unknown_strategy"}],
        ) from None


def validate_quantity(qty: object, *, path: str = "quantity") -> int:
    """Demand must be a positive integer; bools and fractional values are rejected."""
    if isinstance(qty, bool) or not isinstance(qty, (int, Decimal)) or int(qty) != qty or qty <= 0:
        raise AllocationValidationError(
            f"{path} must be a positive integer, got {qty!r}",
            details=[{"type": "validation", "path": path, "reason": "non_positive_quantity"}],
        )
    return int(qty)


def order_candidates(
    candidates: Iterable[LotCandidate],
    strategy: Union[str, AllocationStrategy],
    comparator: Optional[LotComparator] = None,
) -> List[LotCandidate]:
    """Sort lots by strategy; equal primary keys fall back to lot id ascending."""
    strat = parse_strategy(strategy)
    seq = list(candidates)

    if strat is AllocationStrategy.CUSTOM:
        if comparator is None:
            raise AllocationValidationError(
                "strategy 'custom' requires a comparator",
                details=[{"type": "validation", "path": "strategy", "reason": "missing_comparator"}],
            )

        def _cmp(a: LotCandidate, b: LotCandidate) -> int:
            r = comparator(a, b)
            if r:
                return r
            return (a.lot_id > b.lot_id) - (a.lot_id < b.lot_id)

        return sorted(seq, key=functools.cmp_to_key(_cmp))

    return sorted(seq, key=_STRATEGY_KEYS[strat])


def is_eligible(
    lot: LotCandidate,
    *,
    warehouse_scope: Optional[Iterable[int]] = None,
    as_of: Optional[date] = None,
) -> bool:
    if lot.status in BLOCKED_LOT_STATUSES:
        return False
    if lot.available_qty <= 0:
        return False
    if warehouse_scope is not None and lot.warehouse_id not in warehouse_scope:
        return False
    if as_of is not None and lot.expiry_date is not None and lot.expiry_date < as_of:
        return False
    return True


def plan_lots(
    demand: ItemDemand,
    strategy: Union[str, AllocationStrategy],
    candidates: Sequence[LotCandidate],
    *,
    warehouse_scope: Optional[Iterable[int]] = None,
    comparator: Optional[LotComparator] = None,
    as_of: Optional[date] = None,
) -> LotPlan:
    """
    Greedy lot selection against a snapshot. Pure: nothing is reserved here.

    1. keep lots of the demanded item that are allocatable (status not blocked,
       available > 0, inside the warehouse scope, not past as_of expiry)
    2. order them by strategy
    3. take min(remaining, available) from each until demand is met
    4. whatever is left is reported as shortfall, never dropped
    """
    qty = validate_quantity(demand.quantity)

    scope = None
    if warehouse_scope is not None:
        scope = frozenset(int(w) for w in warehouse_scope)
    if demand.warehouse_ids:
        line_scope = frozenset(int(w) for w in demand.warehouse_ids)
        scope = line_scope if scope is None else scope & line_scope

    eligible = [
        lot
        for lot in candidates
        if lot.item_id == demand.item_id
        and lot.item_kind == demand.item_kind
        and is_eligible(lot, warehouse_scope=scope, as_of=as_of)
    ]
    ordered = order_candidates(eligible, strategy, comparator)

    remaining = qty
    taken: List[LotAllocation] = []
    for lot in ordered:
        if remaining <= 0:
            break
        take = min(remaining, lot.available_qty)
        if take <= 0:
            continue
        taken.append(LotAllocation(lot_id=lot.lot_id, warehouse_id=lot.warehouse_id, quantity=take))
        remaining -= take

    return LotPlan(demand=demand, allocations=tuple(taken), shortfall=remaining)


def lowest_unit_cost_first(a: LotCandidate, b: LotCandidate) -> int:
    """Example comparator for 'custom': cheapest lot first, unknown cost last."""
    ca = a.unit_cost if a.unit_cost is not None else Decimal("Infinity")
    cb = b.unit_cost if b.unit_cost is not None else Decimal("Infinity")
    return (ca > cb) - (ca < cb)


# ---------------------------------------------------------------
# named comparators for 'custom' (HTTP callers pass a name, not a callable)
# ---------------------------------------------------------------

_COMPARATORS: Dict[str, LotComparator] = {}


def register_comparator(name: str, comparator: LotComparator) -> None:
    key = str(name).strip().lower()
    if not key:
        raise ValueError("comparator name must not be empty")
    _COMPARATORS[key] = comparator


def resolve_comparator(name: Optional[str]) -> LotComparator:
    key = str(name or "").strip().lower()
    try:
        return _COMPARATORS[key]
    except KeyError:
        raise AllocationValidationError(
            f"unknown comparator for strategy 'custom': {name!r}",
            context={"known": sorted(_COMPARATORS)},
            details=[{"type": "validation", "path": "comparator", "reason": "unknown_comparator"}],
        ) from None


register_comparator("lowest_unit_cost", lowest_unit_cost_first)


__all__ = [
    "LotComparator",
    "LotCandidate",
    "ItemDemand",
    "LotAllocation",
    "LotPlan",
    "parse_strategy",
    "validate_quantity",
    "order_candidates",
    "is_eligible",
    "plan_lots",
    "lowest_unit_cost_first",
    "register_comparator",
    "resolve_comparator",
]
