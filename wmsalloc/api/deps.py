# wmsalloc/api/deps.py
from __future__ import annotations

import uuid
from typing import AsyncGenerator, Optional

from fastapi import Header
from sqlalchemy.ext.asyncio import AsyncSession

from wmsalloc.db.session import get_session as _get_session
from wmsalloc.services.allocation_service import AllocationService


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async for session in _get_session():
        yield session


def get_allocation_service() -> AllocationService:
    return AllocationService()


def resolve_trace_id(raw: Optional[str]) -> str:
    """Caller-supplied trace id (trimmed to the column width), or a fresh one."""
    tid = (raw or "").strip()
    return tid[:64] if tid else f"t_{uuid.uuid4().hex[:12]}"


def get_trace_id(x_trace_id: Optional[str] = Header(default=None)) -> str:
    return resolve_trace_id(x_trace_id)


__all__ = ("get_session", "get_allocation_service", "get_trace_id", "resolve_trace_id")
