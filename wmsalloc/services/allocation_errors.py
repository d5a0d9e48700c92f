# wmsalloc/services/allocation_errors.py
from __future__ import annotations

from typing import Any, Dict, List, Optional


class AllocationError(Exception):
    """Base for every condition raised by the allocation engine."""

    error_code = "allocation_error"
    http_status = 400

    def __init__(
        self,
        message: str,
        *,
        context: Optional[Dict[str, Any]] = None,
        details: Optional[List[Dict[str, Any]]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = dict(context or {})
        self.details: List[Dict[str, Any]] = list(details or [])


class AllocationValidationError(AllocationError):
    """Malformed input; rejected before the ledger is touched."""

    error_code = "allocation_validation_error"
    http_status = 422


class AllocationNotFound(AllocationError):
    error_code = "allocation_not_found"
    http_status = 404


class AllocationStateError(AllocationError):
    """Transition not allowed from the current status, or a live batch already exists."""

    error_code = "allocation_state_conflict"
    http_status = 409


class InsufficientStock(AllocationError):
    """
    A reservation could not be placed because the lot no longer has the
    quantity the plan expected (concurrent depletion between snapshot and commit).
    """

    error_code = "insufficient_stock"
    http_status = 409

    def __init__(
        self,
        *,
        lot_id: int,
        requested_qty: int,
        available_qty: int,
        reason: str = "insufficient_stock",
    ) -> None:
        self.lot_id = int(lot_id)
        self.requested_qty = int(requested_qty)
        self.available_qty = int(available_qty)
        short_qty = max(0, self.requested_qty - self.available_qty)
        super().__init__(
            f"lot {self.lot_id}: requested {self.requested_qty}, available {self.available_qty}",
            context={"lot_id": self.lot_id},
            details=[
                {
                    "type": "shortage",
                    "path": f"lots[{self.lot_id}]",
                    "reason": reason,
                    "required_qty": self.requested_qty,
                    "available_qty": self.available_qty,
                    "short_qty": short_qty,
                }
            ],
        )


class NoStockAvailable(AllocationError):
    """
    No line of the order could reserve anything. Nothing is persisted so the
    order stays open for a later allocation.
    """

    error_code = "no_stock_available"
    http_status = 409


class LedgerInvariantViolation(AllocationError):
    """
    The caller asked for something the ledger can never do (release more than
    reserved, fulfil more than on hand, ...). Indicates a bug in the calling
    workflow; the operation is halted and nothing is fixed up.
    """

    error_code = "ledger_invariant_violation"
    http_status = 500


__all__ = [
    "AllocationError",
    "AllocationValidationError",
    "AllocationNotFound",
    "AllocationStateError",
    "InsufficientStock",
    "NoStockAvailable",
    "LedgerInvariantViolation",
]
