from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.schema import Index, UniqueConstraint

from rota.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EventOutbox(Base):
    __tablename__ = "event_outbox"

    id = Column(Integer, primary_key=True)

    company_id = Column(Integer, nullable=False, index=True)

    event_type = Column(String, nullable=False, index=True)
    idempotency_key = Column(String, nullable=False)

    payload = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False)

    processed = Column(Boolean, nullable=False, default=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    retry_count = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        UniqueConstraint(
            "company_id",
            "event_type",
            "idempotency_key",
            name="uq_event_outbox_idempotency",
        ),
        Index("ix_event_outbox_company_event", "company_id", "event_type"),
        Index("ix_event_outbox_processed", "processed", "created_at"),
    )
