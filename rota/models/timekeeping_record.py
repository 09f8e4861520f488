from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, Float, ForeignKey, Integer, String, Text, text
from sqlalchemy.schema import Index

from rota.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimekeepingRecord(Base):
    __tablename__ = "timekeeping_records"

    id = Column(String, primary_key=True, index=True)

    company_id = Column(Integer, nullable=False, index=True)
    shift_id = Column(Integer, ForeignKey("shifts.id"), nullable=False, index=True)
    worker_id = Column(Integer, nullable=False, index=True)
    venue_id = Column(Integer, nullable=False, index=True)

    # Raw capture. clock_out is only rewritten by the approval engine.
    clock_in = Column(DateTime(timezone=True), nullable=True, index=True)
    clock_out = Column(DateTime(timezone=True), nullable=True)
    clock_in_location = Column(String, nullable=True)
    clock_out_location = Column(String, nullable=True)

    manual_entry_status = Column(String, nullable=False, default="none", index=True)
    proposed_clock_in = Column(DateTime(timezone=True), nullable=True)
    proposed_clock_out = Column(DateTime(timezone=True), nullable=True)
    reason = Column(Text, nullable=True)
    submitted_at = Column(DateTime(timezone=True), nullable=True)

    status = Column(String, nullable=False, default="pending", index=True)
    total_hours = Column(Float, nullable=True)
    notes = Column(Text, nullable=True)

    approved_by = Column(String, nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        CheckConstraint(
            "manual_entry_status IN ('none', 'auto_clocked', 'pending', 'approved', 'rejected', 'modified')",
            name="ck_timekeeping_records_manual_entry_status",
        ),
        CheckConstraint(
            "status IN ('pending', 'approved', 'disputed', 'rejected')",
            name="ck_timekeeping_records_status",
        ),
        CheckConstraint(
            "total_hours IS NULL OR total_hours >= 0",
            name="ck_timekeeping_records_total_hours_nonnegative",
        ),
        Index(
            "uq_timekeeping_records_open",
            "shift_id",
            "worker_id",
            unique=True,
            postgresql_where=text("clock_in IS NOT NULL AND clock_out IS NULL"),
            sqlite_where=text("clock_in IS NOT NULL AND clock_out IS NULL"),
        ),
        Index(
            "uq_timekeeping_records_manual_pending",
            "shift_id",
            "worker_id",
            unique=True,
            postgresql_where=text("manual_entry_status = 'pending'"),
            sqlite_where=text("manual_entry_status = 'pending'"),
        ),
        Index("ix_timekeeping_records_company_venue_status", "company_id", "venue_id", "status"),
    )
