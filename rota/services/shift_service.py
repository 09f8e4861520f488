import logging
from datetime import date, datetime, time, timezone
from typing import Optional, Tuple

import pytz
from sqlalchemy.orm import Session

from rota.core.errors import Conflict, InvalidRange, InvalidRequest, NotFound, ShiftNotOpen
from rota.core.policy import default_timezone
from rota.database import session_scope
from rota.models.shift import Shift
from rota.models.shift_allocation import ShiftAllocation
from rota.models.shift_invite import ShiftInvite
from rota.services import time_rules

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def get_shift(db: Session, company_id: int, shift_id: int, *, for_update: bool = False) -> Shift:
    q = db.query(Shift).filter(Shift.id == int(shift_id), Shift.company_id == int(company_id))
    if for_update:
        q = q.with_for_update()
    shift = q.first()
    if shift is None:
        raise NotFound("Shift not found")
    return shift


def open_slots(shift: Shift) -> int:
    if shift.status != "published":
        return 0
    return max(0, int(shift.headcount_needed) - int(shift.filled_count or 0))


def shift_bounds(shift: Shift) -> Tuple[datetime, datetime]:
    return time_rules.shift_bounds(shift.shift_date, shift.start_time, shift.end_time, shift.timezone)


def create_shift(
    company_id: int,
    venue_id: int,
    role_id: int,
    shift_date: date,
    start_time: time,
    end_time: time,
    headcount_needed: int = 1,
    *,
    timezone_name: Optional[str] = None,
    notes: Optional[str] = None,
    created_by: Optional[str] = None,
    publish: bool = False,
    now: Optional[datetime] = None,
    db: Optional[Session] = None,
) -> Shift:
    if end_time <= start_time:
        raise InvalidRange("Shift end time must be after start time")
    if int(headcount_needed) < 1:
        raise InvalidRequest("Headcount needed must be at least 1")

    tz_name = timezone_name or default_timezone()
    try:
        pytz.timezone(tz_name)
    except pytz.UnknownTimeZoneError as exc:
        raise InvalidRequest(f"Unknown timezone: {tz_name}") from exc

    now = time_rules.as_utc(now or _utcnow())

    with session_scope(db) as s:
        shift = Shift(
            company_id=int(company_id),
            venue_id=int(venue_id),
            role_id=int(role_id),
            shift_date=shift_date,
            start_time=start_time,
            end_time=end_time,
            timezone=tz_name,
            headcount_needed=int(headcount_needed),
            filled_count=0,
            status="published" if publish else "draft",
            published_at=now if publish else None,
            notes=notes,
            created_by=created_by,
            created_at=now,
        )
        s.add(shift)
        s.flush()

        logger.info(
            "Shift created",
            extra={"shift_id": shift.id, "company_id": int(company_id), "status": shift.status},
        )
        return shift


def publish_shift(
    company_id: int,
    shift_id: int,
    *,
    now: Optional[datetime] = None,
    db: Optional[Session] = None,
) -> Shift:
    with session_scope(db) as s:
        shift = get_shift(s, company_id, shift_id, for_update=True)
        if shift.status == "published":
            return shift
        if shift.status == "cancelled":
            raise ShiftNotOpen("Cancelled shifts cannot be published")

        shift.status = "published"
        shift.published_at = time_rules.as_utc(now or _utcnow())
        s.flush()

        logger.info("Shift published", extra={"shift_id": shift.id})
        return shift


def cancel_shift(
    company_id: int,
    shift_id: int,
    *,
    now: Optional[datetime] = None,
    db: Optional[Session] = None,
) -> Shift:
    """
    Cancel a shift that has not started: pending invites become cancelled and
    outstanding allocations are released.
    """
    now = time_rules.as_utc(now or _utcnow())

    with session_scope(db) as s:
        shift = get_shift(s, company_id, shift_id, for_update=True)
        if shift.status == "cancelled":
            return shift

        started = (
            s.query(ShiftAllocation)
            .filter(
                ShiftAllocation.shift_id == shift.id,
                ShiftAllocation.status.in_(("in_progress", "completed")),
            )
            .count()
        )
        if started:
            raise Conflict("Shift already has workers clocked in")

        invites_cancelled = (
            s.query(ShiftInvite)
            .filter(ShiftInvite.shift_id == shift.id, ShiftInvite.status == "pending")
            .update({ShiftInvite.status: "cancelled", ShiftInvite.responded_at: now}, synchronize_session=False)
        )
        allocations_cancelled = (
            s.query(ShiftAllocation)
            .filter(
                ShiftAllocation.shift_id == shift.id,
                ShiftAllocation.status.in_(("allocated", "confirmed")),
            )
            .update({ShiftAllocation.status: "cancelled"}, synchronize_session=False)
        )

        shift.status = "cancelled"
        shift.filled_count = 0
        s.flush()

        logger.info(
            "Shift cancelled",
            extra={
                "shift_id": shift.id,
                "invites_cancelled": int(invites_cancelled),
                "allocations_cancelled": int(allocations_cancelled),
            },
        )
        return shift
