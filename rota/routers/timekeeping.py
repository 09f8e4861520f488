from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from rota.core.authorization import Role, require_role
from rota.core.errors import InvalidRange, RotaError, to_http_exception
from rota.database import SessionLocal
from rota.deps.auth import resolve_worker_id
from rota.schemas.shift import AllocationResponse, ShiftResponse
from rota.schemas.timekeeping import (
    ClockInRequest,
    ClockOutRequest,
    ManualEntryRequest,
    ManualEntryResponse,
    TimekeepingRecordResponse,
)
from rota.services import shift_service, time_engine, timesheet_reporting_service

router = APIRouter(
    prefix="/timekeeping",
    tags=["Timekeeping"],
)


class ClockPageResponse(BaseModel):
    shift: ShiftResponse
    allocation: Optional[AllocationResponse]
    record: Optional[TimekeepingRecordResponse]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@router.post("/clock_in", response_model=TimekeepingRecordResponse)
def clock_in_endpoint(
    payload: ClockInRequest,
    request: Request,
    _role=Depends(require_role(Role.EMPLOYEE)),
):
    worker = resolve_worker_id(request, payload.worker_id)

    db = SessionLocal()
    try:
        record = time_engine.clock_in_auto(
            int(request.state.company_id),
            payload.shift_id,
            worker,
            payload.location,
            now=_utcnow(),
            db=db,
        )
        db.commit()
        return record
    except RotaError as exc:
        db.rollback()
        raise to_http_exception(exc) from exc
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@router.post("/clock_out", response_model=TimekeepingRecordResponse)
def clock_out_endpoint(
    payload: ClockOutRequest,
    request: Request,
    _role=Depends(require_role(Role.EMPLOYEE)),
):
    worker = resolve_worker_id(request, payload.worker_id)

    db = SessionLocal()
    try:
        record = time_engine.clock_out_auto(
            int(request.state.company_id),
            payload.record_id,
            worker,
            payload.location,
            now=_utcnow(),
            db=db,
        )
        db.commit()
        return record
    except RotaError as exc:
        db.rollback()
        raise to_http_exception(exc) from exc
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@router.post("/manual", response_model=ManualEntryResponse)
def submit_manual_entry_endpoint(
    payload: ManualEntryRequest,
    request: Request,
    _role=Depends(require_role(Role.EMPLOYEE)),
):
    worker = resolve_worker_id(request, payload.worker_id)

    db = SessionLocal()
    try:
        result = time_engine.submit_manual_entry(
            int(request.state.company_id),
            payload.shift_id,
            worker,
            payload.requested_start,
            payload.requested_end,
            payload.reason,
            now=_utcnow(),
            db=db,
        )
        db.commit()
        return ManualEntryResponse(record_id=result.record_id, approval_id=result.approval_id)
    except RotaError as exc:
        db.rollback()
        raise to_http_exception(exc) from exc
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@router.get("/shift/{shift_id}", response_model=ClockPageResponse)
def get_shift_for_clock_endpoint(
    shift_id: int,
    request: Request,
    worker_id: Optional[int] = None,
    _role=Depends(require_role(Role.EMPLOYEE)),
):
    worker = resolve_worker_id(request, worker_id)

    db = SessionLocal()
    try:
        ctx = time_engine.get_shift_for_clock(int(request.state.company_id), shift_id, worker, db=db)
        shift = ShiftResponse.model_validate(ctx.shift)
        shift.open_slots = shift_service.open_slots(ctx.shift)
        return ClockPageResponse(
            shift=shift,
            allocation=None if ctx.allocation is None else AllocationResponse.model_validate(ctx.allocation),
            record=None if ctx.record is None else TimekeepingRecordResponse.model_validate(ctx.record),
        )
    except RotaError as exc:
        raise to_http_exception(exc) from exc
    finally:
        db.close()


@router.get("", response_model=list[TimekeepingRecordResponse])
def list_records_endpoint(
    request: Request,
    date_start: Optional[datetime] = None,
    date_end: Optional[datetime] = None,
    venue_id: Optional[int] = None,
    worker_id: Optional[int] = None,
    status: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    _role=Depends(require_role(Role.MANAGER)),
):
    db = SessionLocal()
    try:
        return timesheet_reporting_service.list_records(
            company_id=int(request.state.company_id),
            db=db,
            date_start=date_start,
            date_end=date_end,
            venue_id=venue_id,
            worker_id=worker_id,
            status=status,
            limit=limit,
            offset=offset,
        )
    finally:
        db.close()


@router.get("/totals")
def hours_totals_endpoint(
    request: Request,
    date_start: datetime,
    date_end: datetime,
    venue_id: Optional[int] = None,
    worker_id: Optional[int] = None,
    _role=Depends(require_role(Role.MANAGER)),
):
    if date_end <= date_start:
        raise to_http_exception(InvalidRange("date_end must be after date_start"))

    db = SessionLocal()
    try:
        return timesheet_reporting_service.hours_totals(
            company_id=int(request.state.company_id),
            date_start=date_start,
            date_end=date_end,
            db=db,
            venue_id=venue_id,
            worker_id=worker_id,
        )
    finally:
        db.close()
