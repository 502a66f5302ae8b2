from __future__ import annotations

from datetime import date, datetime, time
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer

from shiftledger.models import CalculationMode, ShiftKind, ShiftSource

# Figures are stored exactly and rounded to two decimals only when rendered.
Rounded = Annotated[float, PlainSerializer(lambda value: round(value, 2), return_type=float)]


class EmployeeActionRequest(BaseModel):
    employee_id: int = Field(gt=0)


class BreakStartRequest(EmployeeActionRequest):
    reason: str = Field(min_length=1, max_length=500)


class EmployeeCreate(BaseModel):
    full_name: str = Field(min_length=1, max_length=255)
    position: str | None = Field(default=None, max_length=100)


class EmployeeRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    full_name: str
    position: str | None
    is_active: bool


class ShiftWrite(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    kind: ShiftKind = ShiftKind.CUSTOM
    start_time_local: time
    end_time_local: time
    position: str | None = Field(default=None, max_length=100)
    all_time_overtime: bool = False


class ShiftRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    kind: ShiftKind
    start_time_local: time
    end_time_local: time
    position: str | None
    all_time_overtime: bool
    is_active: bool
    replaced_by_shift_id: int | None


class ShiftAssignmentWrite(BaseModel):
    employee_id: int = Field(gt=0)
    work_date: date
    shift_id: int | None = None
    is_day_off: bool = False
    note: str | None = Field(default=None, max_length=1000)


class ShiftAssignmentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    employee_id: int
    work_date: date
    shift_id: int | None
    is_day_off: bool
    assigned_by: str
    note: str | None


class BreakSessionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    attendance_record_id: int
    start_time: datetime
    end_time: datetime | None
    reason: str
    auto_closed: bool
    duration_minutes: Rounded = 0.0


class AttendanceRecordRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    employee_id: int
    work_date: date
    shift_id: int | None
    shift_source: ShiftSource
    check_in_time: datetime
    check_out_time: datetime | None
    total_break_minutes: Rounded
    is_on_break: bool
    current_break_reason: str | None
    auto_closed: bool
    needs_review: bool


class DailyLedgerRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    employee_id: int
    work_date: date
    shift_id: int | None
    attendance_record_id: int | None
    check_in_time: datetime | None
    check_out_time: datetime | None
    regular_hours: Rounded
    overtime_hours: Rounded
    worked_hours: Rounded
    expected_hours: Rounded | None
    raw_lateness_minutes: Rounded
    delay_minutes: Rounded
    early_checkout_penalty_hours: Rounded
    total_break_minutes: Rounded
    is_day_off: bool
    calculation_mode: CalculationMode
    needs_review: bool


class CheckInResponse(BaseModel):
    record: AttendanceRecordRead
    shift_resolution: str
    minutes_late: Rounded
    ledger: DailyLedgerRead


class WorkDayRead(BaseModel):
    work_date: date
    work_day_start: datetime
    work_day_end: datetime
    reset_time: time
    is_fallback: bool


class AttendanceStatusRead(BaseModel):
    employee_id: int
    state: str
    work_day: WorkDayRead
    record: AttendanceRecordRead | None
    open_break: BreakSessionRead | None


class MonthlySummaryRead(BaseModel):
    employee_id: int
    start_date: date
    end_date: date
    regular_hours: Rounded
    overtime_hours: Rounded
    delay_hours: Rounded
    net_overtime_hours: Rounded
    net_delay_hours: Rounded
    working_days: int
    day_off_days: int
    needs_review_days: int
    average_hours_per_day: Rounded


class ShiftAssignmentResponse(BaseModel):
    assignment: ShiftAssignmentRead | None
    ledger: DailyLedgerRead | None


class RecalculateRequest(BaseModel):
    employee_id: int = Field(gt=0)
    start_date: date
    end_date: date


class DayRecalculationRead(BaseModel):
    work_date: date
    outcome: str
    error: str | None


class RecalculationReportRead(BaseModel):
    employee_id: int
    start_date: date
    end_date: date
    ok: bool
    failed_count: int
    days: list[DayRecalculationRead]
