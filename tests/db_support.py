from __future__ import annotations

from collections.abc import Generator
from datetime import date, datetime, timezone

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from attendance_engine.db import Base
from attendance_engine.models import (
    AttendanceLog,
    CalendarHoliday,
    Employee,
    LeaveBalance,
    LeaveRequest,
    LeaveRequestStatus,
    LeaveType,
    WeekendConfig,
)

KOLKATA = "Asia/Kolkata"


def make_engine() -> Engine:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite needs explicit BEGIN for SAVEPOINT to behave.
    @event.listens_for(engine, "connect")
    def _disable_driver_transactions(dbapi_connection, _record):  # type: ignore[no-untyped-def]
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(connection):  # type: ignore[no-untyped-def]
        connection.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    return engine


def make_session(engine: Engine) -> Session:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, class_=Session)()


def override_get_db(engine: Engine):  # type: ignore[no-untyped-def]
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, class_=Session)

    def _override() -> Generator[Session, None, None]:
        db = factory()
        try:
            yield db
        finally:
            db.close()

    return _override


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def add_employee(
    db: Session,
    employee_id: int,
    *,
    tz_name: str | None = KOLKATA,
    weekend_days: list[int] | None = None,
) -> Employee:
    employee = Employee(id=employee_id, full_name=f"Employee {employee_id}", timezone=tz_name, is_active=True)
    db.add(employee)
    if weekend_days is not None:
        db.add(WeekendConfig(employee_id=employee_id, weekend_days=weekend_days))
    db.commit()
    return employee


def add_holiday(db: Session, holiday_date: date, label: str = "Holiday") -> CalendarHoliday:
    holiday = CalendarHoliday(holiday_date=holiday_date, label=label)
    db.add(holiday)
    db.commit()
    return holiday


def add_leave_type(db: Session, name: str = "Casual", default_balance: int = 0) -> LeaveType:
    leave_type = LeaveType(name=name, default_balance=default_balance, is_system=False)
    db.add(leave_type)
    db.commit()
    return leave_type


def add_balance(
    db: Session,
    *,
    employee_id: int,
    leave_type_id: int,
    year: int,
    allocated: int,
    used: int = 0,
) -> LeaveBalance:
    balance = LeaveBalance(
        employee_id=employee_id,
        leave_type_id=leave_type_id,
        year=year,
        allocated=allocated,
        used=used,
    )
    db.add(balance)
    db.commit()
    return balance


def add_leave_request(
    db: Session,
    *,
    employee_id: int,
    leave_type_id: int,
    start_date: date,
    end_date: date,
    status: LeaveRequestStatus = LeaveRequestStatus.PENDING,
) -> LeaveRequest:
    leave_request = LeaveRequest(
        employee_id=employee_id,
        leave_type_id=leave_type_id,
        start_date=start_date,
        end_date=end_date,
        status=status,
    )
    db.add(leave_request)
    db.commit()
    return leave_request


def add_log(
    db: Session,
    *,
    employee_id: int,
    clock_in: datetime,
    clock_out: datetime | None = None,
) -> AttendanceLog:
    log = AttendanceLog(employee_id=employee_id, clock_in=clock_in, clock_out=clock_out)
    db.add(log)
    db.commit()
    return log
