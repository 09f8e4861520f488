from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String, text
from sqlalchemy.schema import Index

from rota.database import Base

ACTIVE_ALLOCATION_STATUSES = ("allocated", "confirmed", "in_progress")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ShiftAllocation(Base):
    __tablename__ = "shift_allocations"

    id = Column(Integer, primary_key=True, index=True)

    company_id = Column(Integer, nullable=False, index=True)
    shift_id = Column(Integer, ForeignKey("shifts.id"), nullable=False, index=True)
    worker_id = Column(Integer, nullable=False, index=True)

    allocation_type = Column(String, nullable=False, default="direct")  # direct|accepted
    status = Column(String, nullable=False, default="allocated", index=True)

    invite_id = Column(Integer, ForeignKey("shift_invites.id"), nullable=True)
    allocated_by = Column(String, nullable=True)
    allocated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        CheckConstraint(
            "status IN ('allocated', 'confirmed', 'in_progress', 'completed', 'cancelled')",
            name="ck_shift_allocations_status",
        ),
        Index(
            "uq_shift_allocations_live",
            "shift_id",
            "worker_id",
            unique=True,
            postgresql_where=text("status <> 'cancelled'"),
            sqlite_where=text("status <> 'cancelled'"),
        ),
    )
