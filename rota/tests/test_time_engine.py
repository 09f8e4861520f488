from datetime import time

import pytest
from sqlalchemy.exc import IntegrityError

from rota.core.errors import (
    AlreadyClockedIn,
    AlreadyClockedOut,
    AlreadyPending,
    NotAllocated,
    NotFound,
    RecordNotFound,
    ShiftNotToday,
)
from rota.database import SessionLocal
from rota.models.event_outbox import EventOutbox
from rota.models.shift_allocation import ShiftAllocation
from rota.models.timekeeping_record import TimekeepingRecord
from rota.services import time_engine
from rota.tests.helpers import on_shift_day, utc


def _allocation_status(shift_id: int, worker_id: int) -> str:
    db = SessionLocal()
    try:
        return (
            db.query(ShiftAllocation)
            .filter(ShiftAllocation.shift_id == shift_id, ShiftAllocation.worker_id == worker_id)
            .one()
            .status
        )
    finally:
        db.close()


def test_clock_in_then_out_records_hours(shift_factory, allocation_factory):
    shift = shift_factory()
    allocation_factory(shift, 101)

    record = time_engine.clock_in_auto(shift.company_id, shift.id, 101, "front door", now=on_shift_day(8, 55))
    assert record.manual_entry_status == "auto_clocked"
    assert record.status == "pending"
    assert record.clock_out is None
    assert record.venue_id == shift.venue_id
    assert _allocation_status(shift.id, 101) == "in_progress"

    closed = time_engine.clock_out_auto(shift.company_id, record.id, 101, now=on_shift_day(17, 25))
    assert closed.clock_out is not None
    assert closed.total_hours == pytest.approx(8.5)
    assert _allocation_status(shift.id, 101) == "completed"

    db = SessionLocal()
    try:
        event = db.query(EventOutbox).filter(EventOutbox.event_type == "TIME_CLOCKED_OUT").one()
        assert event.payload["record_id"] == record.id
        assert event.payload["total_hours"] == pytest.approx(8.5)
    finally:
        db.close()


def test_clock_in_unknown_shift_is_not_found(shift_factory):
    with pytest.raises(NotFound):
        time_engine.clock_in_auto(1, 424242, 101, now=on_shift_day(9))


def test_clock_in_without_allocation_is_rejected(shift_factory):
    shift = shift_factory()
    with pytest.raises(NotAllocated):
        time_engine.clock_in_auto(shift.company_id, shift.id, 101, now=on_shift_day(9))


def test_clock_in_future_and_past_days(shift_factory, allocation_factory):
    shift = shift_factory()
    allocation_factory(shift, 101)

    with pytest.raises(ShiftNotToday) as exc:
        time_engine.clock_in_auto(shift.company_id, shift.id, 101, now=utc(2026, 3, 9, 12))
    assert exc.value.when == "future"

    with pytest.raises(ShiftNotToday) as exc:
        time_engine.clock_in_auto(shift.company_id, shift.id, 101, now=utc(2026, 3, 11, 8))
    assert exc.value.when == "past"


def test_clock_in_after_shift_end_points_to_manual_entry(shift_factory, allocation_factory):
    shift = shift_factory()
    allocation_factory(shift, 101)

    with pytest.raises(ShiftNotToday) as exc:
        time_engine.clock_in_auto(shift.company_id, shift.id, 101, now=on_shift_day(17, 0))
    assert exc.value.when == "past"
    assert "Submit your times" in str(exc.value)


def test_clock_in_uses_shift_timezone_for_today(shift_factory, allocation_factory):
    # 00:30 on the 10th in Berlin is still the 9th in UTC.
    shift = shift_factory(start_time=time(0, 15), end_time=time(8, 0), timezone_name="Europe/Berlin")
    allocation_factory(shift, 101)

    record = time_engine.clock_in_auto(shift.company_id, shift.id, 101, now=utc(2026, 3, 9, 23, 30))
    assert record.clock_in is not None


def test_double_clock_in_is_rejected(shift_factory, allocation_factory):
    shift = shift_factory()
    allocation_factory(shift, 101)
    time_engine.clock_in_auto(shift.company_id, shift.id, 101, now=on_shift_day(9))

    with pytest.raises(AlreadyClockedIn):
        time_engine.clock_in_auto(shift.company_id, shift.id, 101, now=on_shift_day(9, 5))


def test_clock_in_after_completion_is_already_clocked_out(shift_factory, allocation_factory):
    shift = shift_factory()
    allocation_factory(shift, 101)
    record = time_engine.clock_in_auto(shift.company_id, shift.id, 101, now=on_shift_day(9))
    time_engine.clock_out_auto(shift.company_id, record.id, 101, now=on_shift_day(12))

    with pytest.raises(AlreadyClockedOut):
        time_engine.clock_in_auto(shift.company_id, shift.id, 101, now=on_shift_day(13))


def test_clock_out_twice_is_rejected(shift_factory, allocation_factory):
    shift = shift_factory()
    allocation_factory(shift, 101)
    record = time_engine.clock_in_auto(shift.company_id, shift.id, 101, now=on_shift_day(9))
    time_engine.clock_out_auto(shift.company_id, record.id, 101, now=on_shift_day(17))

    with pytest.raises(AlreadyClockedOut):
        time_engine.clock_out_auto(shift.company_id, record.id, 101, now=on_shift_day(17, 5))

    db = SessionLocal()
    try:
        assert db.query(EventOutbox).filter(EventOutbox.event_type == "TIME_CLOCKED_OUT").count() == 1
    finally:
        db.close()


def test_clock_out_of_someone_elses_record_is_not_found(shift_factory, allocation_factory):
    shift = shift_factory(headcount_needed=2)
    allocation_factory(shift, 101)
    allocation_factory(shift, 102)
    record = time_engine.clock_in_auto(shift.company_id, shift.id, 101, now=on_shift_day(9))

    with pytest.raises(RecordNotFound):
        time_engine.clock_out_auto(shift.company_id, record.id, 102, now=on_shift_day(17))
    with pytest.raises(RecordNotFound):
        time_engine.clock_out_auto(shift.company_id, "missing-record", 101, now=on_shift_day(17))


def test_clock_out_before_clock_in_yields_zero_hours(shift_factory, allocation_factory):
    shift = shift_factory()
    allocation_factory(shift, 101)
    record = time_engine.clock_in_auto(shift.company_id, shift.id, 101, now=on_shift_day(10))

    closed = time_engine.clock_out_auto(shift.company_id, record.id, 101, now=on_shift_day(9, 59))
    assert closed.total_hours == 0.0


def test_clock_in_blocked_while_manual_entry_pending(shift_factory, allocation_factory):
    shift = shift_factory()
    allocation_factory(shift, 101)
    time_engine.submit_manual_entry(
        shift.company_id,
        shift.id,
        101,
        on_shift_day(9),
        on_shift_day(17),
        now=on_shift_day(8),
    )

    with pytest.raises(AlreadyPending):
        time_engine.clock_in_auto(shift.company_id, shift.id, 101, now=on_shift_day(9))


def test_date_checks_come_before_pending_manual_entry(shift_factory, allocation_factory):
    shift = shift_factory()
    allocation_factory(shift, 101)
    time_engine.submit_manual_entry(
        shift.company_id, shift.id, 101, on_shift_day(9), on_shift_day(17), now=on_shift_day(8)
    )

    with pytest.raises(ShiftNotToday) as exc:
        time_engine.clock_in_auto(shift.company_id, shift.id, 101, now=utc(2026, 3, 11, 9))
    assert exc.value.when == "past"

    with pytest.raises(ShiftNotToday) as exc:
        time_engine.clock_in_auto(shift.company_id, shift.id, 101, now=on_shift_day(17, 30))
    assert exc.value.when == "past"


def test_open_record_index_blocks_second_open_row(shift_factory, allocation_factory):
    shift = shift_factory()
    allocation_factory(shift, 101)
    time_engine.clock_in_auto(shift.company_id, shift.id, 101, now=on_shift_day(9))

    db = SessionLocal()
    try:
        db.add(
            TimekeepingRecord(
                id="duplicate-open",
                company_id=shift.company_id,
                shift_id=shift.id,
                worker_id=101,
                venue_id=shift.venue_id,
                clock_in=on_shift_day(9, 1),
                manual_entry_status="auto_clocked",
                status="pending",
            )
        )
        with pytest.raises(IntegrityError):
            db.commit()
    finally:
        db.rollback()
        db.close()


def test_get_shift_for_clock_returns_latest_record(shift_factory, allocation_factory):
    shift = shift_factory()
    allocation_factory(shift, 101)

    ctx = time_engine.get_shift_for_clock(shift.company_id, shift.id, 101)
    assert ctx.shift.id == shift.id
    assert ctx.allocation.status == "allocated"
    assert ctx.record is None

    record = time_engine.clock_in_auto(shift.company_id, shift.id, 101, now=on_shift_day(9))
    ctx = time_engine.get_shift_for_clock(shift.company_id, shift.id, 101)
    assert ctx.record.id == record.id

    with pytest.raises(NotAllocated):
        time_engine.get_shift_for_clock(shift.company_id, shift.id, 999)
