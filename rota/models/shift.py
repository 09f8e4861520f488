from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, Date, DateTime, Integer, String, Text, Time
from sqlalchemy.schema import Index

from rota.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Shift(Base):
    __tablename__ = "shifts"

    id = Column(Integer, primary_key=True, index=True)

    company_id = Column(Integer, nullable=False, index=True)
    venue_id = Column(Integer, nullable=False, index=True)
    role_id = Column(Integer, nullable=False, index=True)

    shift_date = Column(Date, nullable=False, index=True)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    timezone = Column(String, nullable=False)

    headcount_needed = Column(Integer, nullable=False, default=1)
    # Materialised count of non-cancelled allocations; the guarded increment on
    # this column is what serializes concurrent accepts for the same shift.
    filled_count = Column(Integer, nullable=False, default=0)

    status = Column(String, nullable=False, default="draft", index=True)
    notes = Column(Text, nullable=True)

    created_by = Column(String, nullable=True)
    published_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="ck_shifts_end_after_start"),
        CheckConstraint("headcount_needed >= 1", name="ck_shifts_headcount_positive"),
        CheckConstraint(
            "filled_count >= 0 AND filled_count <= headcount_needed",
            name="ck_shifts_filled_within_headcount",
        ),
        CheckConstraint(
            "status IN ('draft', 'published', 'cancelled')",
            name="ck_shifts_status",
        ),
        Index("ix_shifts_company_venue_date", "company_id", "venue_id", "shift_date"),
    )
