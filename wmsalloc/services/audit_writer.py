# wmsalloc/services/audit_writer.py
from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from wmsalloc.models.audit_event import AuditEvent

logger = logging.getLogger("wmsalloc.audit")


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(v) for v in value]
    return value


class AuditEventWriter:
    """
    Audit sink: one audit_events row per fact.

    - category = flow (ALLOCATION)
    - ref      = business reference (ORDER:<id> / BATCH:<id>)
    - meta     = JSON, always carries flow + event (+ trace_id when known)

    The row joins the caller's transaction: a rolled-back allocation leaves
    no audit trail behind, a committed one always has it.
    """

    @staticmethod
    async def write(
        session: AsyncSession,
        *,
        flow: str,
        event: str,
        ref: str,
        trace_id: Optional[str] = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> AuditEvent:
        payload: Dict[str, Any] = _jsonable(dict(meta or {}))
        payload.setdefault("flow", flow)
        payload.setdefault("event", event)
        if trace_id:
            payload.setdefault("trace_id", trace_id)

        ev = AuditEvent(category=flow, ref=ref, trace_id=trace_id, meta=payload)
        session.add(ev)
        logger.debug("audit %s/%s ref=%s trace_id=%s", flow, event, ref, trace_id)
        return ev
