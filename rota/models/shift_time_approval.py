from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String, Text, text
from sqlalchemy.schema import Index

from rota.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ShiftTimeApproval(Base):
    __tablename__ = "shift_time_approvals"

    id = Column(String, primary_key=True, index=True)

    company_id = Column(Integer, nullable=False, index=True)
    timekeeping_record_id = Column(
        String,
        ForeignKey("timekeeping_records.id"),
        nullable=False,
        index=True,
    )

    requested_start = Column(DateTime(timezone=True), nullable=False)
    requested_end = Column(DateTime(timezone=True), nullable=False)
    original_shift_start = Column(DateTime(timezone=True), nullable=False)
    original_shift_end = Column(DateTime(timezone=True), nullable=False)
    reason = Column(Text, nullable=True)

    status = Column(String, nullable=False, default="pending", index=True)
    actual_start = Column(DateTime(timezone=True), nullable=True)
    actual_end = Column(DateTime(timezone=True), nullable=True)
    manager_notes = Column(Text, nullable=True)
    reviewed_by = Column(String, nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'modified')",
            name="ck_shift_time_approvals_status",
        ),
        CheckConstraint(
            "requested_end > requested_start",
            name="ck_shift_time_approvals_requested_range",
        ),
        Index(
            "uq_shift_time_approvals_live",
            "timekeeping_record_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )
