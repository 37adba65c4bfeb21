from __future__ import annotations

from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import Session

from attendance_engine.errors import ApiError, NotFound
from attendance_engine.models import CalendarHoliday, Employee, WeekendConfig
from attendance_engine.schemas import EmployeeCreate, HolidayCreate
from attendance_engine.services.local_day import is_valid_timezone


def _ensure_not_past(holiday_date: date, today: date) -> None:
    if holiday_date < today:
        raise ApiError(
            status_code=409,
            code="HOLIDAY_IN_PAST",
            message="Past holidays are kept for audit and cannot be changed.",
        )


def _ensure_date_free(db: Session, holiday_date: date, *, exclude_id: int | None = None) -> None:
    stmt = select(CalendarHoliday.id).where(CalendarHoliday.holiday_date == holiday_date)
    if exclude_id is not None:
        stmt = stmt.where(CalendarHoliday.id != exclude_id)
    if db.scalar(stmt) is not None:
        raise ApiError(
            status_code=409,
            code="HOLIDAY_DATE_EXISTS",
            message="A holiday already exists on this date.",
        )


def list_holidays(db: Session, *, start: date | None = None, end: date | None = None) -> list[CalendarHoliday]:
    if start is not None and end is not None and end < start:
        raise ApiError(status_code=422, code="INVALID_DATE_RANGE", message="end must not be before start.")
    stmt = select(CalendarHoliday).order_by(CalendarHoliday.holiday_date.asc())
    if start is not None:
        stmt = stmt.where(CalendarHoliday.holiday_date >= start)
    if end is not None:
        stmt = stmt.where(CalendarHoliday.holiday_date <= end)
    return list(db.scalars(stmt).all())


def create_holiday(db: Session, payload: HolidayCreate, *, today: date) -> CalendarHoliday:
    _ensure_not_past(payload.holiday_date, today)
    _ensure_date_free(db, payload.holiday_date)
    holiday = CalendarHoliday(holiday_date=payload.holiday_date, label=payload.label.strip())
    db.add(holiday)
    db.commit()
    db.refresh(holiday)
    return holiday


def update_holiday(db: Session, holiday_id: int, payload: HolidayCreate, *, today: date) -> CalendarHoliday:
    holiday = db.get(CalendarHoliday, holiday_id)
    if holiday is None:
        raise NotFound("holiday", holiday_id)
    _ensure_not_past(holiday.holiday_date, today)
    _ensure_not_past(payload.holiday_date, today)
    _ensure_date_free(db, payload.holiday_date, exclude_id=holiday.id)

    holiday.holiday_date = payload.holiday_date
    holiday.label = payload.label.strip()
    db.commit()
    db.refresh(holiday)
    return holiday


def delete_holiday(db: Session, holiday_id: int, *, today: date) -> None:
    holiday = db.get(CalendarHoliday, holiday_id)
    if holiday is None:
        raise NotFound("holiday", holiday_id)
    _ensure_not_past(holiday.holiday_date, today)
    db.delete(holiday)
    db.commit()


def get_weekend_days(db: Session, employee_id: int) -> list[int]:
    config = db.scalar(select(WeekendConfig).where(WeekendConfig.employee_id == employee_id))
    if config is None:
        return []
    return sorted(int(item) for item in config.weekend_days or [])


def replace_weekend_days(db: Session, employee_id: int, weekend_days: list[int]) -> WeekendConfig:
    if db.get(Employee, employee_id) is None:
        raise NotFound("employee", employee_id)
    invalid = [item for item in weekend_days if item < 0 or item > 6]
    if invalid:
        raise ApiError(
            status_code=422,
            code="INVALID_WEEKDAY",
            message="Weekend days must be between 0 (Sunday) and 6 (Saturday).",
        )
    normalized = sorted(set(weekend_days))

    config = db.scalar(select(WeekendConfig).where(WeekendConfig.employee_id == employee_id))
    if config is None:
        config = WeekendConfig(employee_id=employee_id, weekend_days=normalized)
        db.add(config)
    else:
        config.weekend_days = normalized
    db.commit()
    db.refresh(config)
    return config


def register_employee(db: Session, payload: EmployeeCreate) -> Employee:
    if payload.timezone is not None and not is_valid_timezone(payload.timezone):
        raise ApiError(status_code=422, code="INVALID_TIMEZONE", message="Unknown time zone.")
    if payload.id is not None and db.get(Employee, payload.id) is not None:
        raise ApiError(status_code=409, code="EMPLOYEE_EXISTS", message="Employee already registered.")

    employee = Employee(
        id=payload.id,
        full_name=payload.full_name.strip(),
        timezone=payload.timezone,
        is_active=payload.is_active,
    )
    db.add(employee)
    db.commit()
    db.refresh(employee)
    return employee


def set_employee_timezone(db: Session, employee_id: int, timezone_name: str | None) -> Employee:
    employee = db.get(Employee, employee_id)
    if employee is None:
        raise NotFound("employee", employee_id)
    if timezone_name is not None and not is_valid_timezone(timezone_name):
        raise ApiError(status_code=422, code="INVALID_TIMEZONE", message="Unknown time zone.")
    employee.timezone = timezone_name
    db.commit()
    db.refresh(employee)
    return employee
