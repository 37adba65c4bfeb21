from datetime import date, datetime, timezone

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.orm import Session

from attendance_engine.audit import audit_request
from attendance_engine.db import get_db
from attendance_engine.errors import ApiError, NotFound
from attendance_engine.models import Employee, LeaveRequestStatus
from attendance_engine.schemas import (
    DailyStatusItem,
    DailyStatusResponse,
    DailySummaryResponse,
    EmployeeCreate,
    EmployeeRead,
    EmployeeTimezoneUpdate,
    HolidayCreate,
    HolidayRead,
    LeaveAllocationUpsert,
    LeaveApplyDefaultsRequest,
    LeaveApplyDefaultsResponse,
    LeaveApprovalResponse,
    LeaveBalanceRead,
    LeaveDecisionRequest,
    LeaveRequestRead,
    LeaveTypeCreate,
    LeaveTypeRead,
    LeaveTypeUpdate,
    ReconcileRequest,
    ReconcileResponse,
    WeekendConfigRead,
    WeekendConfigUpsert,
)
from attendance_engine.security import ROLE_ADMIN, ROLE_HR, Principal, require_roles
from attendance_engine.services.calendar_store import (
    create_holiday,
    delete_holiday,
    get_weekend_days,
    list_holidays,
    register_employee,
    replace_weekend_days,
    set_employee_timezone,
    update_holiday,
)
from attendance_engine.services.daily_status import get_daily_status, summarize_daily_status
from attendance_engine.services.leaves import (
    apply_default_allocations,
    approve_leave_request,
    create_leave_type,
    delete_leave_type,
    ensure_system_leave_types,
    list_leave_requests,
    list_leave_types,
    reject_leave_request,
    update_leave_type_default,
    upsert_allocation,
)
from attendance_engine.services.local_day import local_day_of, resolve_timezone
from attendance_engine.services.reconciler import reconcile_all_stale, reconcile_stale

router = APIRouter(tags=["admin"])

require_reviewer = require_roles(ROLE_ADMIN, ROLE_HR)

MAX_STATUS_BATCH = 500


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _default_today(now_utc: datetime) -> date:
    return local_day_of(now_utc, resolve_timezone(None))


def _normalize_employee_ids(employee_ids: list[int]) -> list[int]:
    ids = sorted(set(employee_ids))
    if not ids:
        raise ApiError(status_code=422, code="VALIDATION_ERROR", message="employee_ids must not be empty.")
    if len(ids) > MAX_STATUS_BATCH:
        raise ApiError(
            status_code=422,
            code="VALIDATION_ERROR",
            message=f"At most {MAX_STATUS_BATCH} employees can be resolved per request.",
        )
    if any(item < 1 for item in ids):
        raise ApiError(status_code=422, code="VALIDATION_ERROR", message="employee_ids must be positive.")
    return ids


# Daily status


@router.get(
    "/api/admin/attendance/daily-status",
    response_model=DailyStatusResponse,
    dependencies=[Depends(require_reviewer)],
)
def daily_status(
    employee_ids: list[int] = Query(...),
    day: date | None = Query(default=None),
    db: Session = Depends(get_db),
) -> DailyStatusResponse:
    ids = _normalize_employee_ids(employee_ids)
    now_utc = _utcnow()
    target_day = day or _default_today(now_utc)

    reconcile_all_stale(db, now_utc, employee_ids=ids)
    statuses = get_daily_status(db, ids, target_day)
    return DailyStatusResponse(
        day=target_day,
        items=[DailyStatusItem(employee_id=employee_id, status=statuses[employee_id]) for employee_id in ids],
    )


@router.get(
    "/api/admin/attendance/daily-summary",
    response_model=DailySummaryResponse,
    dependencies=[Depends(require_reviewer)],
)
def daily_summary(
    employee_ids: list[int] = Query(...),
    day: date | None = Query(default=None),
    db: Session = Depends(get_db),
) -> DailySummaryResponse:
    ids = _normalize_employee_ids(employee_ids)
    now_utc = _utcnow()
    target_day = day or _default_today(now_utc)

    reconcile_all_stale(db, now_utc, employee_ids=ids)
    statuses = get_daily_status(db, ids, target_day)
    return DailySummaryResponse(day=target_day, total=len(ids), counts=summarize_daily_status(statuses))


@router.post("/api/admin/attendance/{employee_id}/reconcile", response_model=ReconcileResponse)
def reconcile_employee(
    employee_id: int,
    request: Request,
    payload: ReconcileRequest | None = None,
    principal: Principal = Depends(require_reviewer),
    db: Session = Depends(get_db),
) -> ReconcileResponse:
    employee = db.get(Employee, employee_id)
    if employee is None:
        raise NotFound("employee", employee_id)
    today = local_day_of(_utcnow(), resolve_timezone(employee.timezone))
    as_of = payload.as_of_local_day if payload is not None else None
    if as_of is None:
        as_of = today
    elif as_of > today:
        raise ApiError(
            status_code=422,
            code="AS_OF_DAY_IN_FUTURE",
            message="as_of_local_day cannot be later than the employee's local today.",
            details={"as_of_local_day": as_of.isoformat(), "today": today.isoformat()},
        )

    closed = reconcile_stale(db, employee_id, as_of)
    if closed:
        audit_request(
            db,
            request,
            principal=principal,
            action="ATTENDANCE_RECONCILED",
            entity_type="employee",
            entity_id=employee_id,
            details={"as_of_local_day": as_of.isoformat(), "closed": closed},
        )
    return ReconcileResponse(employee_id=employee_id, as_of_local_day=as_of, closed=closed)


# Employees


@router.post(
    "/api/admin/employees",
    response_model=EmployeeRead,
    status_code=status.HTTP_201_CREATED,
)
def create_employee(
    payload: EmployeeCreate,
    request: Request,
    principal: Principal = Depends(require_reviewer),
    db: Session = Depends(get_db),
) -> EmployeeRead:
    employee = register_employee(db, payload)
    audit_request(
        db,
        request,
        principal=principal,
        action="EMPLOYEE_REGISTERED",
        entity_type="employee",
        entity_id=employee.id,
        details={"timezone": employee.timezone},
    )
    return employee


@router.patch("/api/admin/employees/{employee_id}/timezone", response_model=EmployeeRead)
def update_employee_timezone(
    employee_id: int,
    payload: EmployeeTimezoneUpdate,
    request: Request,
    principal: Principal = Depends(require_reviewer),
    db: Session = Depends(get_db),
) -> EmployeeRead:
    employee = set_employee_timezone(db, employee_id, payload.timezone)
    audit_request(
        db,
        request,
        principal=principal,
        action="EMPLOYEE_TIMEZONE_UPDATED",
        entity_type="employee",
        entity_id=employee_id,
        details={"timezone": employee.timezone},
    )
    return employee


@router.get(
    "/api/admin/employees/{employee_id}/weekend",
    response_model=WeekendConfigRead,
    dependencies=[Depends(require_reviewer)],
)
def read_weekend(employee_id: int, db: Session = Depends(get_db)) -> WeekendConfigRead:
    if db.get(Employee, employee_id) is None:
        raise NotFound("employee", employee_id)
    return WeekendConfigRead(employee_id=employee_id, weekend_days=get_weekend_days(db, employee_id))


@router.put("/api/admin/employees/{employee_id}/weekend", response_model=WeekendConfigRead)
def put_weekend(
    employee_id: int,
    payload: WeekendConfigUpsert,
    request: Request,
    principal: Principal = Depends(require_reviewer),
    db: Session = Depends(get_db),
) -> WeekendConfigRead:
    config = replace_weekend_days(db, employee_id, payload.weekend_days)
    audit_request(
        db,
        request,
        principal=principal,
        action="WEEKEND_CONFIG_UPDATED",
        entity_type="employee",
        entity_id=employee_id,
        details={"weekend_days": list(config.weekend_days)},
    )
    return WeekendConfigRead(employee_id=employee_id, weekend_days=list(config.weekend_days))


# Holidays


@router.get(
    "/api/admin/holidays",
    response_model=list[HolidayRead],
    dependencies=[Depends(require_reviewer)],
)
def read_holidays(
    start: date | None = Query(default=None),
    end: date | None = Query(default=None),
    db: Session = Depends(get_db),
) -> list[HolidayRead]:
    return list_holidays(db, start=start, end=end)


@router.post(
    "/api/admin/holidays",
    response_model=HolidayRead,
    status_code=status.HTTP_201_CREATED,
)
def add_holiday(
    payload: HolidayCreate,
    request: Request,
    principal: Principal = Depends(require_reviewer),
    db: Session = Depends(get_db),
) -> HolidayRead:
    holiday = create_holiday(db, payload, today=_default_today(_utcnow()))
    audit_request(
        db,
        request,
        principal=principal,
        action="HOLIDAY_CREATED",
        entity_type="calendar_holiday",
        entity_id=holiday.id,
        details={"holiday_date": holiday.holiday_date.isoformat(), "label": holiday.label},
    )
    return holiday


@router.put("/api/admin/holidays/{holiday_id}", response_model=HolidayRead)
def edit_holiday(
    holiday_id: int,
    payload: HolidayCreate,
    request: Request,
    principal: Principal = Depends(require_reviewer),
    db: Session = Depends(get_db),
) -> HolidayRead:
    holiday = update_holiday(db, holiday_id, payload, today=_default_today(_utcnow()))
    audit_request(
        db,
        request,
        principal=principal,
        action="HOLIDAY_UPDATED",
        entity_type="calendar_holiday",
        entity_id=holiday.id,
        details={"holiday_date": holiday.holiday_date.isoformat(), "label": holiday.label},
    )
    return holiday


@router.delete("/api/admin/holidays/{holiday_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_holiday(
    holiday_id: int,
    request: Request,
    principal: Principal = Depends(require_reviewer),
    db: Session = Depends(get_db),
) -> Response:
    delete_holiday(db, holiday_id, today=_default_today(_utcnow()))
    audit_request(
        db,
        request,
        principal=principal,
        action="HOLIDAY_DELETED",
        entity_type="calendar_holiday",
        entity_id=holiday_id,
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Leave types and allocations


@router.get(
    "/api/admin/leave-types",
    response_model=list[LeaveTypeRead],
    dependencies=[Depends(require_reviewer)],
)
def read_leave_types(db: Session = Depends(get_db)) -> list[LeaveTypeRead]:
    return list_leave_types(db)


@router.post(
    "/api/admin/leave-types",
    response_model=LeaveTypeRead,
    status_code=status.HTTP_201_CREATED,
)
def add_leave_type(
    payload: LeaveTypeCreate,
    request: Request,
    principal: Principal = Depends(require_reviewer),
    db: Session = Depends(get_db),
) -> LeaveTypeRead:
    leave_type = create_leave_type(db, payload)
    audit_request(
        db,
        request,
        principal=principal,
        action="LEAVE_TYPE_CREATED",
        entity_type="leave_type",
        entity_id=leave_type.id,
        details={"name": leave_type.name, "default_balance": leave_type.default_balance},
    )
    return leave_type


@router.post("/api/admin/leave-types/seed-system", response_model=list[LeaveTypeRead])
def seed_system_leave_types(
    request: Request,
    principal: Principal = Depends(require_reviewer),
    db: Session = Depends(get_db),
) -> list[LeaveTypeRead]:
    created = ensure_system_leave_types(db)
    if created:
        audit_request(
            db,
            request,
            principal=principal,
            action="LEAVE_TYPES_SEEDED",
            entity_type="leave_type",
            entity_id=",".join(str(item.id) for item in created),
            details={"names": [item.name for item in created]},
        )
    return list_leave_types(db)


@router.patch("/api/admin/leave-types/{leave_type_id}", response_model=LeaveTypeRead)
def edit_leave_type(
    leave_type_id: int,
    payload: LeaveTypeUpdate,
    request: Request,
    principal: Principal = Depends(require_reviewer),
    db: Session = Depends(get_db),
) -> LeaveTypeRead:
    leave_type = update_leave_type_default(db, leave_type_id, payload.default_balance)
    audit_request(
        db,
        request,
        principal=principal,
        action="LEAVE_TYPE_UPDATED",
        entity_type="leave_type",
        entity_id=leave_type_id,
        details={"default_balance": leave_type.default_balance},
    )
    return leave_type


@router.delete("/api/admin/leave-types/{leave_type_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_leave_type(
    leave_type_id: int,
    request: Request,
    principal: Principal = Depends(require_reviewer),
    db: Session = Depends(get_db),
) -> Response:
    delete_leave_type(db, leave_type_id)
    audit_request(
        db,
        request,
        principal=principal,
        action="LEAVE_TYPE_DELETED",
        entity_type="leave_type",
        entity_id=leave_type_id,
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/api/admin/leave-allocations", response_model=LeaveBalanceRead)
def put_leave_allocation(
    payload: LeaveAllocationUpsert,
    request: Request,
    principal: Principal = Depends(require_reviewer),
    db: Session = Depends(get_db),
) -> LeaveBalanceRead:
    balance = upsert_allocation(
        db,
        employee_id=payload.employee_id,
        leave_type_id=payload.leave_type_id,
        year=payload.year,
        allocated=payload.allocated,
    )
    audit_request(
        db,
        request,
        principal=principal,
        action="LEAVE_ALLOCATION_SET",
        entity_type="leave_balance",
        entity_id=balance.id,
        details={
            "employee_id": payload.employee_id,
            "leave_type_id": payload.leave_type_id,
            "year": payload.year,
            "allocated": payload.allocated,
        },
    )
    return balance


@router.post("/api/admin/leave-allocations/apply-defaults", response_model=LeaveApplyDefaultsResponse)
def post_apply_defaults(
    payload: LeaveApplyDefaultsRequest,
    request: Request,
    principal: Principal = Depends(require_reviewer),
    db: Session = Depends(get_db),
) -> LeaveApplyDefaultsResponse:
    created = apply_default_allocations(db, leave_type_id=payload.leave_type_id, year=payload.year)
    audit_request(
        db,
        request,
        principal=principal,
        action="LEAVE_DEFAULTS_APPLIED",
        entity_type="leave_type",
        entity_id=payload.leave_type_id,
        details={"year": payload.year, "created": created},
    )
    return LeaveApplyDefaultsResponse(leave_type_id=payload.leave_type_id, year=payload.year, created=created)


# Leave requests


@router.get(
    "/api/admin/leave-requests",
    response_model=list[LeaveRequestRead],
    dependencies=[Depends(require_reviewer)],
)
def read_leave_requests(
    employee_id: int | None = Query(default=None, ge=1),
    status_filter: LeaveRequestStatus | None = Query(default=None, alias="status"),
    db: Session = Depends(get_db),
) -> list[LeaveRequestRead]:
    return list_leave_requests(db, employee_id=employee_id, status=status_filter)


@router.post("/api/admin/leave-requests/{request_id}/approve", response_model=LeaveApprovalResponse)
def approve_request(
    request_id: int,
    request: Request,
    payload: LeaveDecisionRequest | None = None,
    principal: Principal = Depends(require_reviewer),
    db: Session = Depends(get_db),
) -> LeaveApprovalResponse:
    payload = payload or LeaveDecisionRequest()
    now_utc = _utcnow()
    year = payload.year or _default_today(now_utc).year
    result = approve_leave_request(db, request_id, payload.comment, year=year, now_utc=now_utc)
    audit_request(
        db,
        request,
        principal=principal,
        action="LEAVE_REQUEST_APPROVED",
        entity_type="leave_request",
        entity_id=request_id,
        details={
            "year": result.year,
            "days": result.days,
            "balance_id": result.balance_id,
            "new_used": result.new_used,
        },
    )
    return LeaveApprovalResponse(
        request_id=result.request_id,
        year=result.year,
        days=result.days,
        allocated=result.allocated,
        new_used=result.new_used,
        new_remaining=result.new_remaining,
    )


@router.post("/api/admin/leave-requests/{request_id}/reject", response_model=LeaveRequestRead)
def reject_request(
    request_id: int,
    request: Request,
    payload: LeaveDecisionRequest | None = None,
    principal: Principal = Depends(require_reviewer),
    db: Session = Depends(get_db),
) -> LeaveRequestRead:
    payload = payload or LeaveDecisionRequest()
    leave_request = reject_leave_request(db, request_id, payload.comment, now_utc=_utcnow())
    audit_request(
        db,
        request,
        principal=principal,
        action="LEAVE_REQUEST_REJECTED",
        entity_type="leave_request",
        entity_id=request_id,
        details={"comment": payload.comment},
    )
    return leave_request
