from __future__ import annotations

from calendar import monthrange
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date

from sqlalchemy.orm import Session

from shiftledger.errors import ApiError
from shiftledger.models import MonthlyShift
from shiftledger.services.daily_ledger import list_ledger_rows
from shiftledger.services.shift_calc import offset_overtime_against_delay


@dataclass(frozen=True)
class PeriodSummary:
    employee_id: int
    start_date: date
    end_date: date
    regular_hours: float
    overtime_hours: float
    delay_hours: float
    net_overtime_hours: float
    net_delay_hours: float
    working_days: int
    day_off_days: int
    needs_review_days: int
    average_hours_per_day: float


def month_bounds(year: int, month: int) -> tuple[date, date]:
    if not 1 <= month <= 12:
        raise ApiError(status_code=422, code="INVALID_DATE_RANGE", message="Month must be between 1 and 12.")
    return date(year, month, 1), date(year, month, monthrange(year, month)[1])


def summarize_ledger_rows(
    rows: Iterable[MonthlyShift],
    *,
    employee_id: int,
    start_date: date,
    end_date: date,
) -> PeriodSummary:
    regular = 0.0
    overtime = 0.0
    delay_minutes = 0.0
    working_days = 0
    day_off_days = 0
    needs_review_days = 0

    for row in rows:
        if row.is_day_off:
            day_off_days += 1
            continue
        regular += row.regular_hours or 0.0
        overtime += row.overtime_hours or 0.0
        delay_minutes += row.delay_minutes or 0.0
        if row.check_in_time is not None:
            working_days += 1
        if row.needs_review:
            needs_review_days += 1

    delay_hours = delay_minutes / 60
    net_overtime, net_delay = offset_overtime_against_delay(overtime, delay_hours)
    average = (regular + overtime) / working_days if working_days else 0.0
    return PeriodSummary(
        employee_id=employee_id,
        start_date=start_date,
        end_date=end_date,
        regular_hours=regular,
        overtime_hours=overtime,
        delay_hours=delay_hours,
        net_overtime_hours=net_overtime,
        net_delay_hours=net_delay,
        working_days=working_days,
        day_off_days=day_off_days,
        needs_review_days=needs_review_days,
        average_hours_per_day=average,
    )


def get_period_summary(db: Session, *, employee_id: int, start_date: date, end_date: date) -> PeriodSummary:
    if end_date < start_date:
        raise ApiError(status_code=422, code="INVALID_DATE_RANGE", message="end_date must not precede start_date.")
    rows = list_ledger_rows(db, employee_id=employee_id, start_date=start_date, end_date=end_date)
    return summarize_ledger_rows(rows, employee_id=employee_id, start_date=start_date, end_date=end_date)


def get_monthly_summary(db: Session, *, employee_id: int, year: int, month: int) -> PeriodSummary:
    start_date, end_date = month_bounds(year, month)
    return get_period_summary(db, employee_id=employee_id, start_date=start_date, end_date=end_date)
