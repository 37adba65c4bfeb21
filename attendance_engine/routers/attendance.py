from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from attendance_engine.audit import audit_request
from attendance_engine.db import get_db
from attendance_engine.schemas import (
    ClockInResponse,
    ClockOutRequest,
    ClockOutResponse,
    TodayShiftResponse,
)
from attendance_engine.security import Principal, ensure_can_act_for, require_principal
from attendance_engine.services.attendance import get_today_shift, request_clock_in, request_clock_out
from attendance_engine.services.local_day import normalize_ts

router = APIRouter(tags=["attendance"])


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@router.get("/api/attendance/{employee_id}/today", response_model=TodayShiftResponse)
def today_shift(
    employee_id: int,
    request: Request,
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db),
) -> TodayShiftResponse:
    ensure_can_act_for(principal, employee_id)
    request.state.employee_id = employee_id
    shift = get_today_shift(db, employee_id, _utcnow())
    log = shift.log
    return TodayShiftResponse(
        employee_id=employee_id,
        local_day=shift.local_day,
        state=shift.state,
        log_id=log.id if log is not None else None,
        clock_in=normalize_ts(log.clock_in) if log is not None else None,
        clock_out=normalize_ts(log.clock_out) if log is not None and log.clock_out is not None else None,
        closed_by=log.closed_by if log is not None else None,
    )


@router.post(
    "/api/attendance/{employee_id}/clock-in",
    response_model=ClockInResponse,
    status_code=status.HTTP_201_CREATED,
)
def clock_in(
    employee_id: int,
    request: Request,
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db),
) -> ClockInResponse:
    ensure_can_act_for(principal, employee_id)
    request.state.employee_id = employee_id
    result = request_clock_in(db, employee_id, _utcnow())
    request.state.log_id = result.log_id
    audit_request(
        db,
        request,
        principal=principal,
        action="ATTENDANCE_CLOCK_IN",
        entity_type="attendance_log",
        entity_id=result.log_id,
        details={"employee_id": employee_id, "clock_in": result.clock_in.isoformat()},
    )
    return ClockInResponse(log_id=result.log_id, clock_in=result.clock_in)


@router.post("/api/attendance/{employee_id}/clock-out", response_model=ClockOutResponse)
def clock_out(
    employee_id: int,
    request: Request,
    payload: ClockOutRequest | None = None,
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db),
) -> ClockOutResponse:
    ensure_can_act_for(principal, employee_id)
    request.state.employee_id = employee_id
    result = request_clock_out(
        db,
        employee_id,
        _utcnow(),
        log_id=payload.log_id if payload is not None else None,
    )
    request.state.log_id = result.log_id
    if not result.already_closed:
        audit_request(
            db,
            request,
            principal=principal,
            action="ATTENDANCE_CLOCK_OUT",
            entity_type="attendance_log",
            entity_id=result.log_id,
            details={"employee_id": employee_id, "clock_out": result.clock_out.isoformat()},
        )
    return ClockOutResponse(
        log_id=result.log_id,
        clock_out=result.clock_out,
        already_closed=result.already_closed,
    )
