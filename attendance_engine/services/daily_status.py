from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import Session

from attendance_engine.models import (
    AttendanceLog,
    CalendarHoliday,
    DailyStatus,
    Employee,
    LeaveRequest,
    LeaveRequestStatus,
    WeekendConfig,
)
from attendance_engine.services.local_day import (
    local_day_bounds_utc,
    normalize_ts,
    resolve_timezone,
    weekday_number,
)

logger = logging.getLogger("attendance_engine.daily_status")


@dataclass(frozen=True, slots=True)
class DayFacts:
    employee_id: int
    day: date
    is_holiday: bool
    on_leave: bool
    weekend_days: frozenset[int]
    shift: AttendanceLog | None

    @property
    def is_week_off(self) -> bool:
        return weekday_number(self.day) in self.weekend_days


@dataclass(frozen=True, slots=True)
class StatusRule:
    status: DailyStatus
    applies: Callable[[DayFacts], bool]
    blocks_clock_in: bool = False


def _has_no_shift(facts: DayFacts) -> bool:
    return facts.shift is None


def _has_open_shift(facts: DayFacts) -> bool:
    return facts.shift is not None and facts.shift.clock_out is None


def _has_closed_shift(facts: DayFacts) -> bool:
    return facts.shift is not None and facts.shift.clock_out is not None


# Evaluated top-down, first match wins.
STATUS_RULES: tuple[StatusRule, ...] = (
    StatusRule(DailyStatus.HOLIDAY, lambda facts: facts.is_holiday, blocks_clock_in=True),
    StatusRule(DailyStatus.ON_LEAVE, lambda facts: facts.on_leave, blocks_clock_in=True),
    StatusRule(DailyStatus.WEEK_OFF, lambda facts: facts.is_week_off, blocks_clock_in=True),
    StatusRule(DailyStatus.NOT_CLOCKED_IN, _has_no_shift),
    StatusRule(DailyStatus.ACTIVE, _has_open_shift),
    StatusRule(DailyStatus.CLOCKED_OUT, _has_closed_shift),
)


def _check_rule_table(rules: tuple[StatusRule, ...]) -> None:
    statuses = [rule.status for rule in rules]
    if len(statuses) != len(set(statuses)) or set(statuses) != set(DailyStatus):
        raise RuntimeError("Every DailyStatus must be produced by exactly one status rule.")
    blocking = [rule.blocks_clock_in for rule in rules]
    if blocking != sorted(blocking, reverse=True):
        raise RuntimeError("Clock-in blocking rules must precede attendance rules.")


_check_rule_table(STATUS_RULES)


def resolve_status(facts: DayFacts) -> DailyStatus:
    for rule in STATUS_RULES:
        if rule.applies(facts):
            return rule.status
    raise RuntimeError(f"No status rule matched employee {facts.employee_id} on {facts.day}")


def find_clock_in_block(facts: DayFacts) -> DailyStatus | None:
    for rule in STATUS_RULES:
        if not rule.blocks_clock_in:
            return None
        if rule.applies(facts):
            return rule.status
    return None


def _pick_day_shift(employee_id: int, day: date, rows: list[AttendanceLog]) -> AttendanceLog | None:
    if not rows:
        return None
    ordered = sorted(rows, key=lambda row: (normalize_ts(row.clock_in), row.id), reverse=True)
    if len(ordered) > 1:
        logger.warning(
            "daily_status_duplicate_shift_rows",
            extra={
                "employee_id": employee_id,
                "day": day.isoformat(),
                "log_ids": [row.id for row in ordered],
                "picked_log_id": ordered[0].id,
            },
        )
    return ordered[0]


def load_day_facts(db: Session, employee_ids: Iterable[int], day: date) -> dict[int, DayFacts]:
    ids = sorted(set(employee_ids))
    if not ids:
        return {}

    is_holiday = (
        db.scalar(select(CalendarHoliday.id).where(CalendarHoliday.holiday_date == day).limit(1))
        is not None
    )
    timezone_names: dict[int, str | None] = {
        row.id: row.timezone
        for row in db.execute(select(Employee.id, Employee.timezone).where(Employee.id.in_(ids))).all()
    }
    weekend_days_by_employee: dict[int, frozenset[int]] = {
        config.employee_id: frozenset(int(item) for item in (config.weekend_days or []))
        for config in db.scalars(select(WeekendConfig).where(WeekendConfig.employee_id.in_(ids))).all()
    }
    on_leave_ids = set(
        db.scalars(
            select(LeaveRequest.employee_id).where(
                LeaveRequest.employee_id.in_(ids),
                LeaveRequest.status == LeaveRequestStatus.APPROVED,
                LeaveRequest.start_date <= day,
                LeaveRequest.end_date >= day,
            )
        ).all()
    )

    windows = {
        employee_id: local_day_bounds_utc(day, resolve_timezone(timezone_names.get(employee_id)))
        for employee_id in ids
    }
    scan_start = min(start for start, _ in windows.values())
    scan_end = max(end for _, end in windows.values())
    rows_by_employee: dict[int, list[AttendanceLog]] = {employee_id: [] for employee_id in ids}
    for log in db.scalars(
        select(AttendanceLog).where(
            AttendanceLog.employee_id.in_(ids),
            AttendanceLog.clock_in >= scan_start,
            AttendanceLog.clock_in < scan_end,
        )
    ).all():
        window_start, window_end = windows[log.employee_id]
        if window_start <= normalize_ts(log.clock_in) < window_end:
            rows_by_employee[log.employee_id].append(log)

    return {
        employee_id: DayFacts(
            employee_id=employee_id,
            day=day,
            is_holiday=is_holiday,
            on_leave=employee_id in on_leave_ids,
            weekend_days=weekend_days_by_employee.get(employee_id, frozenset()),
            shift=_pick_day_shift(employee_id, day, rows_by_employee[employee_id]),
        )
        for employee_id in ids
    }


def get_daily_status(db: Session, employee_ids: Iterable[int], day: date) -> dict[int, DailyStatus]:
    facts_by_employee = load_day_facts(db, employee_ids, day)
    return {employee_id: resolve_status(facts) for employee_id, facts in facts_by_employee.items()}


def summarize_daily_status(statuses: Mapping[int, DailyStatus]) -> dict[str, int]:
    counts = {status.value: 0 for status in DailyStatus}
    for status in statuses.values():
        counts[status.value] += 1
    return counts
