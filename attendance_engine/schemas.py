from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator

from attendance_engine.models import (
    DailyStatus,
    HalfDayPart,
    LeaveRequestStatus,
    ShiftCloseSource,
    ShiftState,
)


class EmployeeCreate(BaseModel):
    id: int | None = Field(default=None, ge=1)
    full_name: str = Field(min_length=1, max_length=255)
    timezone: str | None = Field(default=None, max_length=64)
    is_active: bool = True


class EmployeeTimezoneUpdate(BaseModel):
    timezone: str | None = Field(default=None, max_length=64)


class EmployeeRead(BaseModel):
    id: int
    full_name: str
    timezone: str | None
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class HolidayCreate(BaseModel):
    holiday_date: date
    label: str = Field(min_length=1, max_length=255)


class HolidayRead(BaseModel):
    id: int
    holiday_date: date
    label: str

    model_config = ConfigDict(from_attributes=True)


class WeekendConfigUpsert(BaseModel):
    weekend_days: list[int] = Field(default_factory=list, max_length=7)


class WeekendConfigRead(BaseModel):
    employee_id: int
    weekend_days: list[int]


class LeaveTypeCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    default_balance: int = Field(default=0, ge=0)


class LeaveTypeUpdate(BaseModel):
    default_balance: int = Field(ge=0)


class LeaveTypeRead(BaseModel):
    id: int
    name: str
    default_balance: int
    is_system: bool

    model_config = ConfigDict(from_attributes=True)


class LeaveAllocationUpsert(BaseModel):
    employee_id: int = Field(ge=1)
    leave_type_id: int = Field(ge=1)
    year: int = Field(ge=1970, le=9999)
    allocated: int = Field(ge=0)


class LeaveApplyDefaultsRequest(BaseModel):
    leave_type_id: int = Field(ge=1)
    year: int = Field(ge=1970, le=9999)


class LeaveApplyDefaultsResponse(BaseModel):
    leave_type_id: int
    year: int
    created: int


class LeaveBalanceRead(BaseModel):
    id: int
    employee_id: int
    leave_type_id: int
    year: int
    allocated: int
    used: int
    remaining: int

    model_config = ConfigDict(from_attributes=True)


class LeaveRequestCreate(BaseModel):
    leave_type_id: int = Field(ge=1)
    start_date: date
    end_date: date
    half_day_part: HalfDayPart | None = None
    reason: str | None = Field(default=None, max_length=1000)

    @model_validator(mode="after")
    def validate_date_order(self) -> "LeaveRequestCreate":
        if self.end_date < self.start_date:
            raise ValueError("end_date must be greater than or equal to start_date")
        return self


class LeaveRequestRead(BaseModel):
    id: int
    employee_id: int
    leave_type_id: int
    start_date: date
    end_date: date
    half_day_part: HalfDayPart | None
    status: LeaveRequestStatus
    reason: str | None
    decision_comment: str | None
    created_at: datetime | None = None
    decided_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class LeaveDecisionRequest(BaseModel):
    comment: str | None = Field(default=None, max_length=1000)
    year: int | None = Field(default=None, ge=1970, le=9999)


class LeaveApprovalResponse(BaseModel):
    request_id: int
    status: LeaveRequestStatus = LeaveRequestStatus.APPROVED
    year: int
    days: int
    allocated: int
    new_used: int
    new_remaining: int


class ClockOutRequest(BaseModel):
    log_id: int | None = Field(default=None, ge=1)


class ClockInResponse(BaseModel):
    log_id: int
    clock_in: datetime


class ClockOutResponse(BaseModel):
    log_id: int
    clock_out: datetime
    already_closed: bool = False


class TodayShiftResponse(BaseModel):
    employee_id: int
    local_day: date
    state: ShiftState
    log_id: int | None = None
    clock_in: datetime | None = None
    clock_out: datetime | None = None
    closed_by: ShiftCloseSource | None = None


class DailyStatusItem(BaseModel):
    employee_id: int
    status: DailyStatus


class DailyStatusResponse(BaseModel):
    day: date
    items: list[DailyStatusItem]


class DailySummaryResponse(BaseModel):
    day: date
    total: int
    counts: dict[str, int]


class ReconcileRequest(BaseModel):
    as_of_local_day: date | None = None


class ReconcileResponse(BaseModel):
    employee_id: int
    as_of_local_day: date
    closed: int


class StaleSweepResponse(BaseModel):
    closed: int
    employees: int

