from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy import exists, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from attendance_engine.errors import ApiError, BalanceCapExceeded, NotFound, NotPending
from attendance_engine.models import (
    Employee,
    LeaveBalance,
    LeaveRequest,
    LeaveRequestStatus,
    LeaveType,
)
from attendance_engine.schemas import LeaveRequestCreate, LeaveTypeCreate
from attendance_engine.services.local_day import normalize_ts
from attendance_engine.settings import get_settings

logger = logging.getLogger("attendance_engine.leaves")

SYSTEM_LEAVE_TYPES: tuple[tuple[str, int], ...] = (
    ("Casual", 0),
    ("Medical", 0),
    ("Half Day", 0),
)


@dataclass(frozen=True, slots=True)
class LeaveApprovalResult:
    request_id: int
    balance_id: int
    year: int
    days: int
    allocated: int
    new_used: int
    new_remaining: int


def requested_days(start_date: date, end_date: date) -> int:
    return max((end_date - start_date).days + 1, 1)


def remaining_balance(allocated: int, used: int) -> int:
    return max(allocated - used, 0)


def is_half_day_type(leave_type: LeaveType) -> bool:
    return "half" in (leave_type.name or "").lower()


def _get_leave_type(db: Session, leave_type_id: int) -> LeaveType:
    leave_type = db.get(LeaveType, leave_type_id)
    if leave_type is None:
        raise NotFound("leave_type", leave_type_id)
    return leave_type


def _ensure_employee_exists(db: Session, employee_id: int) -> Employee:
    employee = db.get(Employee, employee_id)
    if employee is None:
        raise NotFound("employee", employee_id)
    return employee


# Leave types


def list_leave_types(db: Session) -> list[LeaveType]:
    return list(db.scalars(select(LeaveType).order_by(LeaveType.name.asc())).all())


def ensure_system_leave_types(db: Session) -> list[LeaveType]:
    existing_names = {name.lower() for name in db.scalars(select(LeaveType.name)).all()}
    created: list[LeaveType] = []
    for name, default_balance in SYSTEM_LEAVE_TYPES:
        if name.lower() in existing_names:
            continue
        leave_type = LeaveType(name=name, default_balance=default_balance, is_system=True)
        db.add(leave_type)
        created.append(leave_type)
    if created:
        db.commit()
        for leave_type in created:
            db.refresh(leave_type)
    return created


def create_leave_type(db: Session, payload: LeaveTypeCreate) -> LeaveType:
    name = payload.name.strip()
    duplicate = db.scalar(select(LeaveType).where(LeaveType.name == name))
    if duplicate is not None:
        raise ApiError(status_code=409, code="LEAVE_TYPE_EXISTS", message="Leave type name already exists.")

    leave_type = LeaveType(name=name, default_balance=payload.default_balance, is_system=False)
    db.add(leave_type)
    db.commit()
    db.refresh(leave_type)
    return leave_type


def update_leave_type_default(db: Session, leave_type_id: int, default_balance: int) -> LeaveType:
    leave_type = _get_leave_type(db, leave_type_id)
    leave_type.default_balance = default_balance
    db.commit()
    db.refresh(leave_type)
    return leave_type


def delete_leave_type(db: Session, leave_type_id: int) -> None:
    leave_type = _get_leave_type(db, leave_type_id)
    if leave_type.is_system:
        raise ApiError(
            status_code=409,
            code="SYSTEM_LEAVE_TYPE_PROTECTED",
            message="System leave types cannot be deleted.",
        )
    in_use = db.scalar(
        select(
            exists().where(LeaveRequest.leave_type_id == leave_type_id)
            | exists().where(LeaveBalance.leave_type_id == leave_type_id)
        )
    )
    if in_use:
        raise ApiError(
            status_code=409,
            code="LEAVE_TYPE_IN_USE",
            message="Leave type is referenced by balances or requests.",
        )
    db.delete(leave_type)
    db.commit()


# Allocations and balances


def upsert_allocation(
    db: Session,
    *,
    employee_id: int,
    leave_type_id: int,
    year: int,
    allocated: int,
) -> LeaveBalance:
    _ensure_employee_exists(db, employee_id)
    _get_leave_type(db, leave_type_id)

    balance = db.scalar(
        select(LeaveBalance)
        .where(
            LeaveBalance.employee_id == employee_id,
            LeaveBalance.leave_type_id == leave_type_id,
            LeaveBalance.year == year,
        )
        .with_for_update()
    )
    if balance is None:
        balance = LeaveBalance(
            employee_id=employee_id,
            leave_type_id=leave_type_id,
            year=year,
            allocated=allocated,
            used=0,
        )
        db.add(balance)
    else:
        balance.allocated = allocated
    db.commit()
    db.refresh(balance)
    return balance


def apply_default_allocations(db: Session, *, leave_type_id: int, year: int) -> int:
    leave_type = _get_leave_type(db, leave_type_id)
    missing_employee_ids = list(
        db.scalars(
            select(Employee.id)
            .where(
                Employee.is_active.is_(True),
                ~exists().where(
                    LeaveBalance.employee_id == Employee.id,
                    LeaveBalance.leave_type_id == leave_type_id,
                    LeaveBalance.year == year,
                ),
            )
            .order_by(Employee.id.asc())
        ).all()
    )
    for employee_id in missing_employee_ids:
        db.add(
            LeaveBalance(
                employee_id=employee_id,
                leave_type_id=leave_type_id,
                year=year,
                allocated=leave_type.default_balance,
                used=0,
            )
        )
    db.commit()
    return len(missing_employee_ids)


def list_balances(db: Session, *, employee_id: int, year: int) -> list[LeaveBalance]:
    return list(
        db.scalars(
            select(LeaveBalance)
            .options(selectinload(LeaveBalance.leave_type))
            .where(LeaveBalance.employee_id == employee_id, LeaveBalance.year == year)
            .order_by(LeaveBalance.leave_type_id.asc())
        ).all()
    )


def _lock_or_create_balance(
    db: Session,
    *,
    employee_id: int,
    leave_type_id: int,
    year: int,
) -> LeaveBalance:
    stmt = (
        select(LeaveBalance)
        .where(
            LeaveBalance.employee_id == employee_id,
            LeaveBalance.leave_type_id == leave_type_id,
            LeaveBalance.year == year,
        )
        .with_for_update()
    )
    balance = db.scalar(stmt)
    if balance is not None:
        return balance

    leave_type = _get_leave_type(db, leave_type_id)
    balance = LeaveBalance(
        employee_id=employee_id,
        leave_type_id=leave_type_id,
        year=year,
        allocated=leave_type.default_balance,
        used=0,
    )
    try:
        with db.begin_nested():
            db.add(balance)
    except IntegrityError:
        # Lost the race against a concurrent creator; use its row.
        balance = db.scalar(stmt)
        if balance is None:
            raise
    return balance


# Requests


def create_leave_request(
    db: Session,
    *,
    employee_id: int,
    payload: LeaveRequestCreate,
    year: int,
) -> LeaveRequest:
    _ensure_employee_exists(db, employee_id)
    leave_type = _get_leave_type(db, payload.leave_type_id)

    if payload.end_date < payload.start_date:
        raise ApiError(
            status_code=422,
            code="INVALID_DATE_RANGE",
            message="end_date must be greater than or equal to start_date",
        )
    if is_half_day_type(leave_type) and payload.half_day_part is None:
        raise ApiError(
            status_code=422,
            code="HALF_DAY_PART_REQUIRED",
            message="Select the first or second half for a half-day leave.",
        )
    if not is_half_day_type(leave_type) and payload.half_day_part is not None:
        raise ApiError(
            status_code=422,
            code="HALF_DAY_PART_NOT_ALLOWED",
            message="half_day_part is only accepted for half-day leave types.",
        )

    # Submission-time check only; approval does not reserve or re-check balance.
    balance = db.scalar(
        select(LeaveBalance).where(
            LeaveBalance.employee_id == employee_id,
            LeaveBalance.leave_type_id == leave_type.id,
            LeaveBalance.year == year,
        )
    )
    if balance is not None:
        remaining = remaining_balance(balance.allocated, balance.used)
    else:
        remaining = remaining_balance(leave_type.default_balance, 0)
    if remaining <= 0:
        raise ApiError(
            status_code=409,
            code="LEAVE_BALANCE_EXHAUSTED",
            message=f"{leave_type.name} leave is exhausted, talk to admin.",
        )

    leave_request = LeaveRequest(
        employee_id=employee_id,
        leave_type_id=leave_type.id,
        start_date=payload.start_date,
        end_date=payload.end_date,
        half_day_part=payload.half_day_part,
        status=LeaveRequestStatus.PENDING,
        reason=payload.reason,
    )
    db.add(leave_request)
    db.commit()
    db.refresh(leave_request)
    return leave_request


def list_leave_requests(
    db: Session,
    *,
    employee_id: int | None = None,
    status: LeaveRequestStatus | None = None,
) -> list[LeaveRequest]:
    stmt = select(LeaveRequest).order_by(LeaveRequest.created_at.desc(), LeaveRequest.id.desc())
    if employee_id is not None:
        stmt = stmt.where(LeaveRequest.employee_id == employee_id)
    if status is not None:
        stmt = stmt.where(LeaveRequest.status == status)
    return list(db.scalars(stmt).all())


def _raise_for_undecidable(db: Session, request_id: int) -> None:
    current_status = db.scalar(select(LeaveRequest.status).where(LeaveRequest.id == request_id))
    if current_status is None:
        raise NotFound("leave_request", request_id)
    raise NotPending(request_id=request_id, status=LeaveRequestStatus(current_status).value)


def _decide(
    db: Session,
    *,
    request_id: int,
    new_status: LeaveRequestStatus,
    comment: str | None,
    decided_at: datetime,
) -> LeaveRequest:
    result = db.execute(
        update(LeaveRequest)
        .where(
            LeaveRequest.id == request_id,
            LeaveRequest.status == LeaveRequestStatus.PENDING,
        )
        .values(status=new_status, decision_comment=comment, decided_at=decided_at)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        _raise_for_undecidable(db, request_id)
    return db.get(LeaveRequest, request_id, populate_existing=True)


def approve_leave_request(
    db: Session,
    request_id: int,
    comment: str | None,
    *,
    year: int,
    now_utc: datetime,
    enforce_cap: bool | None = None,
) -> LeaveApprovalResult:
    """Approve a pending request and deduct its days from the yearly balance.

    The status change and the ledger increment commit together or not at all.
    """
    if enforce_cap is None:
        enforce_cap = get_settings().leave_enforce_balance_cap

    try:
        leave_request = _decide(
            db,
            request_id=request_id,
            new_status=LeaveRequestStatus.APPROVED,
            comment=comment,
            decided_at=normalize_ts(now_utc),
        )
        days = requested_days(leave_request.start_date, leave_request.end_date)
        balance = _lock_or_create_balance(
            db,
            employee_id=leave_request.employee_id,
            leave_type_id=leave_request.leave_type_id,
            year=year,
        )
        if enforce_cap and balance.used + days > balance.allocated:
            raise BalanceCapExceeded(allocated=balance.allocated, used=balance.used, requested_days=days)

        db.execute(
            update(LeaveBalance)
            .where(LeaveBalance.id == balance.id)
            .values(used=LeaveBalance.used + days)
            .execution_options(synchronize_session=False)
        )
        db.refresh(balance)
        result = LeaveApprovalResult(
            request_id=leave_request.id,
            balance_id=balance.id,
            year=year,
            days=days,
            allocated=balance.allocated,
            new_used=balance.used,
            new_remaining=remaining_balance(balance.allocated, balance.used),
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    if result.new_used > result.allocated:
        logger.warning(
            "leave_balance_over_allocated",
            extra={
                "request_id": request_id,
                "employee_id": leave_request.employee_id,
                "leave_type_id": leave_request.leave_type_id,
                "year": year,
                "allocated": result.allocated,
                "used": result.new_used,
            },
        )
    logger.info(
        "leave_request_approved",
        extra={"request_id": request_id, "days": days, "year": year, "used": result.new_used},
    )
    return result


def reject_leave_request(
    db: Session,
    request_id: int,
    comment: str | None,
    *,
    now_utc: datetime,
) -> LeaveRequest:
    try:
        leave_request = _decide(
            db,
            request_id=request_id,
            new_status=LeaveRequestStatus.REJECTED,
            comment=comment,
            decided_at=normalize_ts(now_utc),
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("leave_request_rejected", extra={"request_id": request_id})
    return leave_request
