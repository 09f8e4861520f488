"""
Time rules shared by the capture and approval engines.

All instants handed to the database are timezone-aware UTC. Naive datetimes
coming back from the store (SQLite drops tzinfo) are treated as UTC.
Shift times are wall-clock values in the shift's timezone.
"""
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple

import pytz

from rota.core.errors import (
    ExceedsMaxDuration,
    InvalidRange,
    OutsideShiftWindow,
    ReasonRequired,
)
from rota.core.policy import TimePolicy


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def localize(day: date, at: time, tz_name: str) -> datetime:
    """Wall-clock date + time in tz_name, as an aware UTC datetime."""
    tz = pytz.timezone(tz_name)
    local = tz.localize(datetime.combine(day, at.replace(tzinfo=None)))
    return local.astimezone(timezone.utc)


def shift_bounds(shift_date: date, start_time: time, end_time: time, tz_name: str) -> Tuple[datetime, datetime]:
    return localize(shift_date, start_time, tz_name), localize(shift_date, end_time, tz_name)


def local_date(now: datetime, tz_name: str) -> date:
    tz = pytz.timezone(tz_name)
    return as_utc(now).astimezone(tz).date()


def hours_between(start: datetime, end: datetime) -> float:
    seconds = (as_utc(end) - as_utc(start)).total_seconds()
    if seconds <= 0:
        return 0.0
    return seconds / 3600.0


def deviation(actual: datetime, scheduled: datetime) -> timedelta:
    return abs(as_utc(actual) - as_utc(scheduled))


def needs_reason(
    requested_start: datetime,
    requested_end: datetime,
    scheduled_start: datetime,
    scheduled_end: datetime,
    policy: TimePolicy,
) -> bool:
    threshold = policy.reason_threshold
    start_dev = deviation(requested_start, scheduled_start)
    end_dev = deviation(requested_end, scheduled_end)
    if start_dev > threshold or end_dev > threshold:
        return True
    # Small drifts at both ends still add up to a quarter hour of paid time.
    return start_dev + end_dev >= threshold


def validate_manual_times(
    *,
    requested_start: datetime,
    requested_end: datetime,
    scheduled_start: datetime,
    scheduled_end: datetime,
    reason: Optional[str],
    policy: TimePolicy,
) -> None:
    """
    Checks applied, in order, to a worker's manual submission:

      1. end after start                         -> InvalidRange
      2. duration within policy.max_shift_hours  -> ExceedsMaxDuration
      3. both ends within policy.window_hours of
         the scheduled shift                     -> OutsideShiftWindow
      4. deviation beyond the reason threshold
         needs a non-blank reason                -> ReasonRequired
    """
    start = as_utc(requested_start)
    end = as_utc(requested_end)
    sched_start = as_utc(scheduled_start)
    sched_end = as_utc(scheduled_end)

    if end <= start:
        raise InvalidRange()

    if end - start > policy.max_duration:
        raise ExceedsMaxDuration(
            f"Shift length cannot exceed {policy.max_shift_hours} hours"
        )

    earliest = sched_start - policy.window
    latest = sched_end + policy.window
    for instant in (start, end):
        if instant < earliest or instant > latest:
            raise OutsideShiftWindow(
                f"Submitted time must be within {policy.window_hours} hours of the scheduled shift"
            )

    if needs_reason(start, end, sched_start, sched_end, policy) and not (reason or "").strip():
        raise ReasonRequired(
            "Please provide a reason when your times differ from the scheduled shift "
            f"by more than {policy.reason_threshold_minutes} minutes"
        )
