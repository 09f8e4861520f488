from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request

from rota.core.authorization import Role, require_role
from rota.core.errors import RotaError, to_http_exception
from rota.database import SessionLocal
from rota.schemas.approval import TimesheetReviewRequest
from rota.schemas.timekeeping import TimekeepingRecordResponse
from rota.services import approval_service

router = APIRouter(prefix="/timesheets", tags=["Timesheets"])


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@router.get("/pending", response_model=List[TimekeepingRecordResponse])
def list_pending_timesheets_endpoint(
    request: Request,
    venue_id: Optional[int] = None,
    worker_id: Optional[int] = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    _role=Depends(require_role(Role.MANAGER)),
):
    db = SessionLocal()
    try:
        return approval_service.list_pending_timesheets(
            int(request.state.company_id),
            venue_id,
            worker_id,
            limit=limit,
            offset=offset,
            db=db,
        )
    finally:
        db.close()


@router.post("/{record_id}/approve", response_model=TimekeepingRecordResponse)
def approve_timesheet_endpoint(
    record_id: str,
    request: Request,
    payload: Optional[TimesheetReviewRequest] = None,
    _role=Depends(require_role(Role.MANAGER)),
):
    db = SessionLocal()
    try:
        record = approval_service.approve_timesheet(
            int(request.state.company_id),
            record_id,
            request.state.user_id,
            payload.notes if payload else None,
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


@router.post("/{record_id}/request_edit", response_model=TimekeepingRecordResponse)
def request_timesheet_edit_endpoint(
    record_id: str,
    payload: TimesheetReviewRequest,
    request: Request,
    _role=Depends(require_role(Role.MANAGER)),
):
    db = SessionLocal()
    try:
        record = approval_service.request_timesheet_edit(
            int(request.state.company_id),
            record_id,
            request.state.user_id,
            payload.notes,
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
