from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from attendance_engine.errors import AlreadyClockedIn, ClockInBlocked, NoOpenShift, NotFound
from attendance_engine.models import AttendanceLog, Employee, ShiftCloseSource, ShiftState
from attendance_engine.services.daily_status import find_clock_in_block, load_day_facts
from attendance_engine.services.local_day import (
    local_day_bounds_utc,
    local_day_of,
    normalize_ts,
    resolve_timezone,
)
from attendance_engine.services.reconciler import reconcile_stale

logger = logging.getLogger("attendance_engine.attendance")


@dataclass(frozen=True, slots=True)
class ClockInResult:
    log_id: int
    clock_in: datetime


@dataclass(frozen=True, slots=True)
class ClockOutResult:
    log_id: int
    clock_out: datetime
    already_closed: bool = False


@dataclass(frozen=True, slots=True)
class TodayShift:
    employee_id: int
    local_day: date
    state: ShiftState
    log: AttendanceLog | None


def _get_employee(db: Session, employee_id: int) -> Employee:
    employee = db.get(Employee, employee_id)
    if employee is None:
        raise NotFound("employee", employee_id)
    return employee


def _resolve_day_shift(db: Session, *, employee_id: int, day_start: datetime, day_end: datetime) -> AttendanceLog | None:
    return db.scalar(
        select(AttendanceLog)
        .where(
            AttendanceLog.employee_id == employee_id,
            AttendanceLog.clock_in >= day_start,
            AttendanceLog.clock_in < day_end,
        )
        .order_by(AttendanceLog.clock_in.desc(), AttendanceLog.id.desc())
        .limit(1)
    )


def _resolve_open_shift(db: Session, employee_id: int) -> AttendanceLog | None:
    return db.scalar(
        select(AttendanceLog)
        .where(
            AttendanceLog.employee_id == employee_id,
            AttendanceLog.clock_out.is_(None),
        )
        .order_by(AttendanceLog.clock_in.desc(), AttendanceLog.id.desc())
        .limit(1)
        .with_for_update()
    )


def get_today_shift(db: Session, employee_id: int, now_utc: datetime) -> TodayShift:
    employee = _get_employee(db, employee_id)
    tz = resolve_timezone(employee.timezone)
    today = local_day_of(now_utc, tz)
    reconcile_stale(db, employee_id, today)

    day_start, day_end = local_day_bounds_utc(today, tz)
    log = _resolve_day_shift(db, employee_id=employee_id, day_start=day_start, day_end=day_end)
    if log is None:
        state = ShiftState.NO_SHIFT
    elif log.clock_out is None:
        state = ShiftState.SHIFT_OPEN
    else:
        state = ShiftState.SHIFT_CLOSED
    return TodayShift(employee_id=employee_id, local_day=today, state=state, log=log)


def request_clock_in(db: Session, employee_id: int, now_utc: datetime) -> ClockInResult:
    now = normalize_ts(now_utc)
    employee = _get_employee(db, employee_id)
    tz = resolve_timezone(employee.timezone)
    today = local_day_of(now, tz)

    reconcile_stale(db, employee_id, today)

    facts = load_day_facts(db, [employee_id], today)[employee_id]
    blocked_by = find_clock_in_block(facts)
    if blocked_by is not None:
        logger.info(
            "clock_in_blocked",
            extra={"employee_id": employee_id, "day": today.isoformat(), "reason": blocked_by.value},
        )
        raise ClockInBlocked(blocked_by.value)

    if facts.shift is not None:
        raise AlreadyClockedIn(log_id=facts.shift.id, shift_closed=facts.shift.clock_out is not None)

    log = AttendanceLog(employee_id=employee_id, clock_in=now, clock_out=None)
    db.add(log)
    try:
        db.commit()
    except IntegrityError as exc:
        # Another request opened a shift between the check and the insert.
        db.rollback()
        existing = _resolve_open_shift(db, employee_id)
        raise AlreadyClockedIn(log_id=existing.id if existing is not None else None) from exc
    db.refresh(log)

    logger.info(
        "clock_in_recorded",
        extra={"employee_id": employee_id, "log_id": log.id, "clock_in": now},
    )
    return ClockInResult(log_id=log.id, clock_in=now)


def request_clock_out(
    db: Session,
    employee_id: int,
    now_utc: datetime,
    *,
    log_id: int | None = None,
) -> ClockOutResult:
    """Close the employee's open shift of the current local day.

    Shifts left open from earlier local days are reconciled first and closed at
    the end of their own day, so a late clock-out never stretches them.
    When ``log_id`` names a shift of this employee that is already closed, the
    call is treated as a retry and the recorded ``clock_out`` is returned.
    """
    now = normalize_ts(now_utc)
    employee = _get_employee(db, employee_id)
    reconcile_stale(db, employee_id, local_day_of(now, resolve_timezone(employee.timezone)))

    if log_id is not None:
        target = db.get(AttendanceLog, log_id)
        if target is None or target.employee_id != employee_id:
            raise NotFound("attendance_log", log_id)
        if target.clock_out is not None:
            return ClockOutResult(log_id=target.id, clock_out=normalize_ts(target.clock_out), already_closed=True)

    open_shift = _resolve_open_shift(db, employee_id)
    if open_shift is None:
        raise NoOpenShift()

    open_shift.clock_out = now
    open_shift.closed_by = ShiftCloseSource.USER
    db.commit()

    logger.info(
        "clock_out_recorded",
        extra={"employee_id": employee_id, "log_id": open_shift.id, "clock_out": now},
    )
    return ClockOutResult(log_id=open_shift.id, clock_out=now)
