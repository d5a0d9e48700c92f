# wmsalloc/api/problem.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, TypedDict

from fastapi import HTTPException

from wmsalloc.services.allocation_errors import (
    AllocationError,
    InsufficientStock,
    LedgerInvariantViolation,
    NoStockAvailable,
)

logger = logging.getLogger("wmsalloc")


class ProblemDetail(TypedDict, total=False):
    type: str  # validation|shortage|state
    path: str  # e.g. items[2].quantity_ordered
    reason: str

    required_qty: int
    available_qty: int
    short_qty: int


class NextAction(TypedDict, total=False):
    action: str
    label: str


@dataclass(frozen=True)
class Problem:
    error_code: str
    message: str
    http_status: int
    context: Optional[Dict[str, Any]] = None
    details: Optional[List[ProblemDetail]] = None
    next_actions: Optional[List[NextAction]] = None
    trace_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "error_code": self.error_code,
            "message": self.message,
            "http_status": int(self.http_status),
        }
        if self.context:
            out["context"] = self.context
        if self.details:
            out["details"] = self.details
        if self.next_actions:
            out["next_actions"] = self.next_actions
        if self.trace_id:
            out["trace_id"] = self.trace_id
        return out


def make_problem(
    *,
    status_code: int,
    error_code: str,
    message: str,
    context: Optional[Dict[str, Any]] = None,
    details: Optional[Sequence[ProblemDetail]] = None,
    next_actions: Optional[Sequence[NextAction]] = None,
    trace_id: Optional[str] = None,
) -> Dict[str, Any]:
    p = Problem(
        error_code=str(error_code),
        message=str(message),
        http_status=int(status_code),
        context=context,
        details=list(details) if details else None,
        next_actions=list(next_actions) if next_actions else None,
        trace_id=trace_id,
    )
    return p.to_dict()


def raise_problem(
    *,
    status_code: int,
    error_code: str,
    message: str,
    context: Optional[Dict[str, Any]] = None,
    details: Optional[Sequence[ProblemDetail]] = None,
    next_actions: Optional[Sequence[NextAction]] = None,
    trace_id: Optional[str] = None,
) -> None:
    raise HTTPException(
        status_code=int(status_code),
        detail=make_problem(
            status_code=int(status_code),
            error_code=error_code,
            message=message,
            context=context,
            details=details,
            next_actions=next_actions,
            trace_id=trace_id,
        ),
    )


def raise_500(error_code: str, message: str, *, trace_id: Optional[str] = None) -> None:
    raise_problem(status_code=500, error_code=error_code, message=message, trace_id=trace_id)


def raise_allocation_problem(exc: AllocationError, *, trace_id: Optional[str] = None) -> None:
    """
    AllocationError -> Problem.

    Ledger invariant violations never leak their context to the client: the
    ledger has already logged it, the caller gets a generic internal_error.
    """
    if isinstance(exc, LedgerInvariantViolation):
        logger.error("allocation halted by invariant violation trace_id=%s: %s", trace_id, exc.context)
        raise_500("internal_error", "internal error, nothing was committed", trace_id=trace_id)

    next_actions: List[NextAction] = []
    if isinstance(exc, InsufficientStock):
        next_actions.append({"action": "retry_allocation", "label": "Re-run allocation"})
    elif isinstance(exc, NoStockAvailable):
        next_actions.append({"action": "retry_allocation", "label": "Re-run allocation after restock"})

    raise_problem(
        status_code=exc.http_status,
        error_code=exc.error_code,
        message=exc.message,
        context=exc.context or None,
        details=exc.details or None,
        next_actions=next_actions or None,
        trace_id=trace_id,
    )
