from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable
from datetime import date, datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from attendance_engine.models import AttendanceLog, Employee, ShiftCloseSource
from attendance_engine.services.local_day import (
    end_of_local_day_utc,
    local_day_bounds_utc,
    local_day_of,
    normalize_ts,
    resolve_timezone,
)

logger = logging.getLogger("attendance_engine.reconciler")


def _employee_timezone_name(db: Session, employee_id: int) -> str | None:
    return db.scalar(select(Employee.timezone).where(Employee.id == employee_id))


def _close_if_still_open(db: Session, log: AttendanceLog, clock_out: datetime) -> bool:
    # A row closed by anyone since it was read keeps its clock_out.
    result = db.execute(
        update(AttendanceLog)
        .where(AttendanceLog.id == log.id, AttendanceLog.clock_out.is_(None))
        .values(clock_out=clock_out, closed_by=ShiftCloseSource.RECONCILER)
        .execution_options(synchronize_session=False)
    )
    db.expire(log, ["clock_out", "closed_by"])
    return result.rowcount == 1


def _close_stale(db: Session, log: AttendanceLog, tz_name: str | None) -> bool:
    clock_in = normalize_ts(log.clock_in)
    clock_out = end_of_local_day_utc(clock_in, resolve_timezone(tz_name))
    if not _close_if_still_open(db, log, clock_out):
        logger.info(
            "attendance_stale_shift_already_closed",
            extra={"employee_id": log.employee_id, "log_id": log.id},
        )
        return False
    logger.info(
        "attendance_stale_shift_closed",
        extra={
            "employee_id": log.employee_id,
            "log_id": log.id,
            "clock_in": clock_in,
            "clock_out": clock_out,
        },
    )
    return True


def _repair_duplicate_open_shifts(db: Session, employee_id: int) -> int:
    open_logs = list(
        db.scalars(
            select(AttendanceLog)
            .where(
                AttendanceLog.employee_id == employee_id,
                AttendanceLog.clock_out.is_(None),
            )
            .order_by(AttendanceLog.clock_in.desc(), AttendanceLog.id.desc())
            .with_for_update()
        ).all()
    )
    if len(open_logs) <= 1:
        return 0

    logger.error(
        "attendance_duplicate_open_shifts",
        extra={
            "employee_id": employee_id,
            "log_ids": [log.id for log in open_logs],
            "kept_log_id": open_logs[0].id,
        },
    )
    repaired = 0
    newer = open_logs[0]
    for older in open_logs[1:]:
        if _close_if_still_open(db, older, normalize_ts(newer.clock_in)):
            repaired += 1
        newer = older
    return repaired


def reconcile_stale(db: Session, employee_id: int, as_of_local_day: date, *, commit: bool = True) -> int:
    """Close the employee's open shifts that started before ``as_of_local_day``.

    Each stale shift is closed at 23:59:59.999 local time of the day it started,
    never at the reconciliation time. Rows that are already closed are never
    touched, so repeated runs are no-ops.
    """
    tz_name = _employee_timezone_name(db, employee_id)
    day_start_utc, _ = local_day_bounds_utc(as_of_local_day, resolve_timezone(tz_name))
    stale_logs = db.scalars(
        select(AttendanceLog)
        .where(
            AttendanceLog.employee_id == employee_id,
            AttendanceLog.clock_out.is_(None),
            AttendanceLog.clock_in < day_start_utc,
        )
        .order_by(AttendanceLog.clock_in.asc(), AttendanceLog.id.asc())
        .with_for_update()
    ).all()

    closed = sum(1 for log in stale_logs if _close_stale(db, log, tz_name))
    _repair_duplicate_open_shifts(db, employee_id)

    if commit:
        db.commit()
    return closed


def reconcile_all_stale(
    db: Session,
    now_utc: datetime,
    *,
    employee_ids: Iterable[int] | None = None,
) -> dict[int, int]:
    """Sweep open shifts left over from earlier local days, per employee time zone."""
    now = normalize_ts(now_utc)
    stmt = (
        select(AttendanceLog, Employee.timezone)
        .outerjoin(Employee, Employee.id == AttendanceLog.employee_id)
        .where(
            AttendanceLog.clock_out.is_(None),
            AttendanceLog.clock_in < now,
        )
        .order_by(AttendanceLog.employee_id.asc(), AttendanceLog.clock_in.asc())
        .with_for_update(of=AttendanceLog)
    )
    if employee_ids is not None:
        scoped_ids = sorted(set(employee_ids))
        if not scoped_ids:
            return {}
        stmt = stmt.where(AttendanceLog.employee_id.in_(scoped_ids))

    closed_by_employee: dict[int, int] = defaultdict(int)
    for log, tz_name in db.execute(stmt).all():
        tz = resolve_timezone(tz_name)
        if local_day_of(log.clock_in, tz) >= local_day_of(now, tz):
            continue
        if _close_stale(db, log, tz_name):
            closed_by_employee[log.employee_id] += 1

    for employee_id in closed_by_employee:
        _repair_duplicate_open_shifts(db, employee_id)
    db.commit()

    if closed_by_employee:
        logger.info(
            "attendance_stale_sweep_complete",
            extra={
                "employees": len(closed_by_employee),
                "closed": sum(closed_by_employee.values()),
            },
        )
    return dict(closed_by_employee)
