from __future__ import annotations

import logging
from datetime import date, time
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session

from shiftledger.models import AttendanceRecord, CalculationMode, MonthlyShift, Shift
from shiftledger.services.shift_assignments import (
    ShiftResolutionStatus,
    get_shift_assignment,
    resolve_recorded_shift,
)
from shiftledger.services.shift_calc import (
    OvertimePolicy,
    ShiftComputation,
    calculate_checkin_metrics,
    calculate_shift_metrics,
)
from shiftledger.services.work_day import attendance_timezone, normalize_ts, parse_hhmm
from shiftledger.settings import get_settings

logger = logging.getLogger("shiftledger.ledger")


def _parse_optional_window(start: str | None, end: str | None, *, name: str) -> tuple[time, time] | None:
    if not (start or "").strip() and not (end or "").strip():
        return None
    try:
        return parse_hhmm(start or ""), parse_hhmm(end or "")
    except ValueError:
        logger.warning("overtime_window_invalid", extra={"window": name, "start": start, "end": end})
        return None


def get_overtime_policy() -> OvertimePolicy:
    settings = get_settings()
    return OvertimePolicy(
        day_expected_hours=settings.day_shift_expected_hours,
        night_expected_hours=settings.night_shift_expected_hours,
        custom_default_hours=settings.custom_shift_default_hours,
        day_overtime_window=_parse_optional_window(
            settings.day_overtime_window_start,
            settings.day_overtime_window_end,
            name="day_overtime_window",
        ),
        night_overtime_band=_parse_optional_window(
            settings.night_overtime_band_start,
            settings.night_overtime_band_end,
            name="night_overtime_band",
        ),
        checkin_tolerance_minutes=settings.checkin_early_tolerance_minutes,
    )


def get_daily_ledger(db: Session, *, employee_id: int, work_date: date) -> MonthlyShift | None:
    return db.scalar(
        select(MonthlyShift).where(
            MonthlyShift.employee_id == employee_id,
            MonthlyShift.work_date == work_date,
        )
    )


def _upsert_row(db: Session, *, employee_id: int, work_date: date) -> MonthlyShift:
    row = get_daily_ledger(db, employee_id=employee_id, work_date=work_date)
    if row is None:
        row = MonthlyShift(employee_id=employee_id, work_date=work_date)
        db.add(row)
    return row


def _apply_computation(
    row: MonthlyShift,
    computation: ShiftComputation,
    *,
    record: AttendanceRecord | None,
    shift: Shift | None,
    needs_review: bool,
) -> MonthlyShift:
    row.shift_id = shift.id if shift is not None else None
    row.attendance_record_id = record.id if record is not None else None
    row.check_in_time = record.check_in_time if record is not None else None
    row.check_out_time = record.check_out_time if record is not None else None
    row.regular_hours = computation.regular_hours
    row.overtime_hours = computation.overtime_hours
    row.worked_hours = computation.worked_hours
    row.expected_hours = computation.expected_hours
    row.raw_lateness_minutes = computation.raw_lateness_minutes
    row.delay_minutes = computation.delay_minutes
    row.early_checkout_penalty_hours = computation.early_checkout_penalty_hours
    row.total_break_minutes = computation.break_minutes
    row.is_day_off = computation.mode == CalculationMode.DAY_OFF
    row.calculation_mode = computation.mode
    row.needs_review = needs_review or computation.needs_review
    return row


def _day_off_computation() -> ShiftComputation:
    return ShiftComputation(
        mode=CalculationMode.DAY_OFF,
        gross_minutes=0.0,
        break_minutes=0.0,
        worked_minutes=0.0,
        regular_hours=0.0,
        overtime_hours=0.0,
        expected_hours=None,
        raw_lateness_minutes=0.0,
        delay_minutes=0.0,
        early_checkout_penalty_hours=0.0,
    )


def compute_ledger_for_record(
    db: Session,
    *,
    record: AttendanceRecord,
    tz: ZoneInfo | None = None,
    policy: OvertimePolicy | None = None,
) -> MonthlyShift:
    """Upserts the ledger row for ``record`` without committing.

    Open records are computed in check-in mode, closed ones in full mode.
    """
    zone = tz or attendance_timezone()
    active_policy = policy or get_overtime_policy()
    resolution = resolve_recorded_shift(db, record=record, tz=zone)
    row = _upsert_row(db, employee_id=record.employee_id, work_date=record.work_date)

    if resolution.status == ShiftResolutionStatus.DAY_OFF:
        # Attendance on a day later marked off keeps its timestamps but earns nothing.
        computation = _day_off_computation()
        _apply_computation(row, computation, record=record, shift=None, needs_review=True)
        logger.warning(
            "ledger_attendance_on_day_off",
            extra={"employee_id": record.employee_id, "work_date": record.work_date.isoformat()},
        )
        return row

    shift = resolution.shift
    check_in = normalize_ts(record.check_in_time)
    if record.check_out_time is None:
        computation = calculate_checkin_metrics(
            check_in=check_in,
            shift=shift,
            work_date=record.work_date,
            tz=zone,
            policy=active_policy,
        )
    else:
        computation = calculate_shift_metrics(
            check_in=check_in,
            check_out=normalize_ts(record.check_out_time),
            shift=shift,
            total_break_minutes=record.total_break_minutes,
            work_date=record.work_date,
            tz=zone,
            policy=active_policy,
        )
        if computation.mode == CalculationMode.BASIC:
            logger.warning(
                "ledger_basic_mode",
                extra={
                    "employee_id": record.employee_id,
                    "work_date": record.work_date.isoformat(),
                    "attendance_record_id": record.id,
                    "shift_resolution": resolution.status.value,
                },
            )

    needs_review = record.needs_review or resolution.status == ShiftResolutionStatus.AMBIGUOUS
    return _apply_computation(row, computation, record=record, shift=shift, needs_review=needs_review)


def recalculate_work_day(db: Session, *, employee_id: int, work_date: date) -> MonthlyShift | None:
    """Rebuilds the ledger row of one work day from persisted inputs, without committing.

    Raw attendance timestamps are never touched. Returns None when the day
    ends up with no ledger row.
    """
    record = db.scalar(
        select(AttendanceRecord).where(
            AttendanceRecord.employee_id == employee_id,
            AttendanceRecord.work_date == work_date,
        )
    )
    if record is not None:
        return compute_ledger_for_record(db, record=record)

    assignment = get_shift_assignment(db, employee_id=employee_id, work_date=work_date)
    if assignment is not None and assignment.is_day_off:
        row = _upsert_row(db, employee_id=employee_id, work_date=work_date)
        return _apply_computation(row, _day_off_computation(), record=None, shift=None, needs_review=False)

    row = get_daily_ledger(db, employee_id=employee_id, work_date=work_date)
    if row is not None:
        db.delete(row)
        db.flush()
    return None


def list_ledger_rows(
    db: Session,
    *,
    employee_id: int,
    start_date: date,
    end_date: date,
) -> list[MonthlyShift]:
    return list(
        db.scalars(
            select(MonthlyShift)
            .where(
                MonthlyShift.employee_id == employee_id,
                MonthlyShift.work_date >= start_date,
                MonthlyShift.work_date <= end_date,
            )
            .order_by(MonthlyShift.work_date.asc())
        ).all()
    )
