# wmsalloc/metrics.py
from __future__ import annotations

import os

from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    generate_latest,
    multiprocess,
)

ALLOC_REQUESTS = Counter(
    "allocation_requests_total", "Allocation requests", ["strategy", "outcome"]
)
ALLOC_SHORTFALL = Counter(
    "allocation_shortfall_units_total", "Units left unallocated (shortfall)", ["strategy"]
)
LEDGER_OPS = Counter("ledger_operations_total", "Quantity ledger mutations", ["op"])
LEDGER_CONFLICTS = Counter(
    "ledger_conflicts_total", "Reservations rejected by the locked re-check"
)
TRANSITIONS = Counter(
    "allocation_transitions_total", "Allocation batch transitions", ["from_status", "to_status"]
)

router = APIRouter()


@router.get("/metrics")
def metrics() -> Response:
    """
    Single process: export the default REGISTRY.
    Multi process (PROMETHEUS_MULTIPROC_DIR set): merge the shards first.
    """
    if os.environ.get("PROMETHEUS_MULTIPROC_DIR"):
        registry = CollectorRegistry()
        multiprocess.MultiProcessCollector(registry)
        payload = generate_latest(registry)
    else:
        payload = generate_latest(REGISTRY)
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)
