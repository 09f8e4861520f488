from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from rota.models.timekeeping_record import TimekeepingRecord
from rota.services.time_rules import as_utc

COUNTED_STATUSES = ("approved", "pending")


def list_records(
    *,
    company_id: int,
    db: Session,
    date_start: Optional[datetime] = None,
    date_end: Optional[datetime] = None,
    venue_id: Optional[int] = None,
    worker_id: Optional[int] = None,
    status: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
) -> list[TimekeepingRecord]:
    """
    Read-only listing.

    Semantics:
      clock_in >= date_start AND clock_in < date_end (either bound optional)
    Ordering:
      clock_in desc, id desc
    """
    date_start = as_utc(date_start)
    date_end = as_utc(date_end)
    q = db.query(TimekeepingRecord).filter(TimekeepingRecord.company_id == int(company_id))

    if date_start is not None:
        q = q.filter(TimekeepingRecord.clock_in >= date_start)
    if date_end is not None:
        q = q.filter(TimekeepingRecord.clock_in < date_end)
    if venue_id is not None:
        q = q.filter(TimekeepingRecord.venue_id == int(venue_id))
    if worker_id is not None:
        q = q.filter(TimekeepingRecord.worker_id == int(worker_id))
    if status is not None:
        q = q.filter(TimekeepingRecord.status == str(status))

    return (
        q.order_by(TimekeepingRecord.clock_in.desc(), TimekeepingRecord.id.desc())
        .offset(int(offset))
        .limit(int(limit))
        .all()
    )


def hours_totals(
    *,
    company_id: int,
    date_start: datetime,
    date_end: datetime,
    db: Session,
    venue_id: Optional[int] = None,
    worker_id: Optional[int] = None,
) -> dict[str, Any]:
    """
    Read-only reporting query.

    Semantics:
      clock_in >= date_start AND clock_in < date_end, closed records only
      rejected and disputed records contribute nothing
    Grouping:
      worker_id, with approved and pending hours summed separately
    """
    date_start = as_utc(date_start)
    date_end = as_utc(date_end)

    approved_hours = func.coalesce(
        func.sum(case((TimekeepingRecord.status == "approved", TimekeepingRecord.total_hours), else_=0.0)),
        0.0,
    )
    pending_hours = func.coalesce(
        func.sum(case((TimekeepingRecord.status == "pending", TimekeepingRecord.total_hours), else_=0.0)),
        0.0,
    )

    q = (
        db.query(
            TimekeepingRecord.worker_id.label("worker_id"),
            func.count(TimekeepingRecord.id).label("record_count"),
            approved_hours.label("approved_hours"),
            pending_hours.label("pending_hours"),
        )
        .filter(TimekeepingRecord.company_id == int(company_id))
        .filter(TimekeepingRecord.clock_in >= date_start)
        .filter(TimekeepingRecord.clock_in < date_end)
        .filter(TimekeepingRecord.clock_out.isnot(None))
        .filter(TimekeepingRecord.total_hours.isnot(None))
        .filter(TimekeepingRecord.status.in_(COUNTED_STATUSES))
    )

    if venue_id is not None:
        q = q.filter(TimekeepingRecord.venue_id == int(venue_id))
    if worker_id is not None:
        q = q.filter(TimekeepingRecord.worker_id == int(worker_id))

    rows = q.group_by(TimekeepingRecord.worker_id).order_by(TimekeepingRecord.worker_id.asc()).all()

    return {
        "company_id": int(company_id),
        "date_start": date_start.isoformat(),
        "date_end": date_end.isoformat(),
        "filters": {
            "venue_id": venue_id,
            "worker_id": worker_id,
        },
        "workers": [
            {
                "worker_id": int(r.worker_id),
                "record_count": int(r.record_count),
                "approved_hours": float(r.approved_hours),
                "pending_hours": float(r.pending_hours),
                "total_hours": float(r.approved_hours) + float(r.pending_hours),
            }
            for r in rows
        ],
    }
