# wmsalloc/models/audit_event.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, BigInteger, DateTime, Index, Integer, String, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from wmsalloc.db.base import Base


class AuditEvent(Base):
    """
    audit_events:
      - category: flow, e.g. ALLOCATION
      - ref:      business reference (order / batch)
      - trace_id: cross-table trace key
      - meta:     JSON facts; always carries flow + event
    """

    __tablename__ = "audit_events"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    category: Mapped[str] = mapped_column(String(64), nullable=False)
    ref: Mapped[str] = mapped_column(String(128), nullable=False)
    trace_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    meta: Mapped[dict] = mapped_column(JSON().with_variant(JSONB, "postgresql"), nullable=False)

    __table_args__ = (
        Index("ix_audit_events_cat_ref_time", "category", "ref", "created_at"),
        Index("ix_audit_events_trace_id", "trace_id"),
    )

    def __repr__(self) -> str:
        return f"<AuditEvent id={self.id} category={self.category} ref={self.ref} trace_id={self.trace_id}>"
