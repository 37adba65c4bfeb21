from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from attendance_engine.audit import audit_request
from attendance_engine.db import get_db
from attendance_engine.models import LeaveRequestStatus
from attendance_engine.schemas import LeaveBalanceRead, LeaveRequestCreate, LeaveRequestRead
from attendance_engine.security import (
    REVIEWER_ROLES,
    Principal,
    ensure_can_act_for,
    require_principal,
)
from attendance_engine.services.leaves import create_leave_request, list_balances, list_leave_requests
from attendance_engine.services.local_day import local_day_of, resolve_timezone

router = APIRouter(tags=["leaves"])


def _current_year() -> int:
    return local_day_of(datetime.now(timezone.utc), resolve_timezone(None)).year


@router.post(
    "/api/leaves/{employee_id}/requests",
    response_model=LeaveRequestRead,
    status_code=status.HTTP_201_CREATED,
)
def submit_leave_request(
    employee_id: int,
    payload: LeaveRequestCreate,
    request: Request,
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db),
) -> LeaveRequestRead:
    ensure_can_act_for(principal, employee_id)
    request.state.employee_id = employee_id
    leave_request = create_leave_request(db, employee_id=employee_id, payload=payload, year=_current_year())
    audit_request(
        db,
        request,
        principal=principal,
        action="LEAVE_REQUEST_SUBMITTED",
        entity_type="leave_request",
        entity_id=leave_request.id,
        details={
            "employee_id": employee_id,
            "leave_type_id": leave_request.leave_type_id,
            "start_date": leave_request.start_date.isoformat(),
            "end_date": leave_request.end_date.isoformat(),
        },
    )
    return leave_request


@router.get("/api/leaves/{employee_id}/requests", response_model=list[LeaveRequestRead])
def list_own_leave_requests(
    employee_id: int,
    status_filter: LeaveRequestStatus | None = Query(default=None, alias="status"),
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db),
) -> list[LeaveRequestRead]:
    ensure_can_act_for(principal, employee_id, allow_roles=REVIEWER_ROLES)
    return list_leave_requests(db, employee_id=employee_id, status=status_filter)


@router.get("/api/leaves/{employee_id}/balances", response_model=list[LeaveBalanceRead])
def list_own_balances(
    employee_id: int,
    year: int | None = Query(default=None, ge=1970, le=9999),
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db),
) -> list[LeaveBalanceRead]:
    ensure_can_act_for(principal, employee_id, allow_roles=REVIEWER_ROLES)
    return list_balances(db, employee_id=employee_id, year=year or _current_year())
