from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from rota import database
from rota.database import SessionLocal
from rota.models.event_outbox import EventOutbox
from rota.services import time_engine
from rota.services.outbox_processor import _retry_wait, process_outbox_batch
from rota.tests.helpers import on_shift_day


def _insert_event(db, *, company_id: int, event_type: str, key: str, payload: dict, **fields) -> EventOutbox:
    row = EventOutbox(
        company_id=company_id,
        event_type=event_type,
        idempotency_key=key,
        payload=payload,
        **fields,
    )
    db.add(row)
    db.flush()
    db.refresh(row)
    return row


def _seed(**kwargs) -> None:
    seed = SessionLocal()
    try:
        _insert_event(seed, **kwargs)
        seed.commit()
    finally:
        seed.close()


def test_retry_wait_contract():
    assert _retry_wait(0) == timedelta(seconds=0)
    assert _retry_wait(1) == timedelta(seconds=2)
    assert _retry_wait(2) == timedelta(seconds=4)
    assert _retry_wait(3) == timedelta(seconds=8)
    assert _retry_wait(10) == timedelta(seconds=60)


def test_process_outbox_marks_processed_on_success():
    _seed(company_id=1, event_type="TIME_CLOCKED_OUT", key="k1", payload={"hello": "world"})

    def handler(row: EventOutbox, db):
        assert row.payload["hello"] == "world"
        assert row.processed is False

    db = SessionLocal()
    try:
        result = process_outbox_batch(
            db=db,
            now=datetime.now(timezone.utc),
            batch_size=10,
            max_retries=10,
            handlers={"TIME_CLOCKED_OUT": handler},
        )
        db.commit()

        fresh = db.query(EventOutbox).filter(EventOutbox.idempotency_key == "k1").one()
        assert fresh.processed is True
        assert fresh.processed_at is not None
        assert int(fresh.retry_count) == 0
        assert result.processed == 1
        assert result.failed == 0
    finally:
        db.close()


def test_process_outbox_increments_retry_on_failure():
    _seed(company_id=1, event_type="TIME_CLOCKED_OUT", key="k2", payload={"x": 1})

    def handler(_row: EventOutbox, _db):
        raise RuntimeError("boom")

    db = SessionLocal()
    try:
        result = process_outbox_batch(
            db=db,
            now=datetime.now(timezone.utc),
            batch_size=10,
            max_retries=10,
            handlers={"TIME_CLOCKED_OUT": handler},
        )
        db.commit()

        fresh = db.query(EventOutbox).filter(EventOutbox.idempotency_key == "k2").one()
        assert fresh.processed is False
        assert fresh.processed_at is None
        assert int(fresh.retry_count) == 1
        assert result.failed == 1
    finally:
        db.close()


def test_unknown_event_type_counts_as_failure():
    _seed(company_id=1, event_type="SOMETHING_ELSE", key="k3", payload={})

    db = SessionLocal()
    try:
        result = process_outbox_batch(db=db, now=datetime.now(timezone.utc), handlers={})
        db.commit()

        fresh = db.query(EventOutbox).filter(EventOutbox.idempotency_key == "k3").one()
        assert result.failed == 1
        assert int(fresh.retry_count) == 1
        assert fresh.processed is False
    finally:
        db.close()


def test_row_is_parked_after_max_retries():
    now = datetime.now(timezone.utc)
    _seed(
        company_id=1,
        event_type="TIME_CLOCKED_OUT",
        key="k4",
        payload={},
        retry_count=2,
        created_at=now - timedelta(minutes=5),
    )

    def handler(_row, _db):
        raise RuntimeError("still broken")

    db = SessionLocal()
    try:
        result = process_outbox_batch(db=db, now=now, max_retries=3, handlers={"TIME_CLOCKED_OUT": handler})
        db.commit()

        fresh = db.query(EventOutbox).filter(EventOutbox.idempotency_key == "k4").one()
        assert result.failed == 1
        assert int(fresh.retry_count) == 3
        assert fresh.processed is True
        assert fresh.processed_at is not None
    finally:
        db.close()


def test_due_filter_prevents_starvation():
    """
    The earliest unprocessed row is still backing off and batch_size is 1.
    A later row that is due must still be picked up.
    """
    now = datetime.now(timezone.utc)
    _seed(
        company_id=1,
        event_type="TIME_CLOCKED_OUT",
        key="starve-not-due",
        payload={},
        retry_count=3,
        created_at=now,
    )
    _seed(
        company_id=1,
        event_type="TIME_CLOCKED_OUT",
        key="starve-due",
        payload={},
        retry_count=0,
        created_at=now - timedelta(seconds=10),
    )

    def _noop(_row, _db):
        return None

    db = SessionLocal()
    try:
        result = process_outbox_batch(db=db, now=now, batch_size=1, handlers={"TIME_CLOCKED_OUT": _noop})
        db.commit()

        assert result.processed == 1
        assert result.failed == 0

        not_due = db.query(EventOutbox).filter(EventOutbox.idempotency_key == "starve-not-due").one()
        due = db.query(EventOutbox).filter(EventOutbox.idempotency_key == "starve-due").one()
        assert not_due.processed is False
        assert due.processed is True
    finally:
        db.close()


def test_default_handlers_dispatch_domain_events(shift_factory, allocation_factory):
    shift = shift_factory()
    allocation_factory(shift, 101)
    record = time_engine.clock_in_auto(shift.company_id, shift.id, 101, now=on_shift_day(9))
    time_engine.clock_out_auto(shift.company_id, record.id, 101, now=on_shift_day(17))

    # Outbox rows are stamped with the wall clock, so process against it.
    result = process_outbox_batch(now=datetime.now(timezone.utc))
    assert result.processed == 1
    assert result.failed == 0

    db = SessionLocal()
    try:
        key = f"timekeeping_record:{record.id}:clock_out"
        row = db.query(EventOutbox).filter(EventOutbox.idempotency_key == key).one()
        assert row.processed is True
    finally:
        db.close()

    assert process_outbox_batch(now=datetime.now(timezone.utc)).processed == 0


@pytest.mark.skipif(
    database.engine.dialect.name != "postgresql",
    reason="SKIP LOCKED requires PostgreSQL",
)
def test_process_outbox_uses_skip_locked():
    _seed(company_id=1, event_type="TIME_CLOCKED_OUT", key="k5", payload={"y": 2})

    a = SessionLocal()
    b = SessionLocal()
    try:
        a.begin()
        a.query(EventOutbox).filter(
            EventOutbox.idempotency_key == "k5", EventOutbox.processed.is_(False)
        ).with_for_update().one()

        b.begin()
        result = process_outbox_batch(
            db=b,
            now=datetime.now(timezone.utc),
            handlers={"TIME_CLOCKED_OUT": lambda _row, _db: None},
        )
        b.commit()

        assert result.processed == 0
        assert result.failed == 0

        a.rollback()
    finally:
        b.close()
        a.close()
