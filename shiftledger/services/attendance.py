from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from shiftledger.errors import ApiError
from shiftledger.models import AttendanceRecord, BreakSession, Employee, MonthlyShift
from shiftledger.services.breaks import (
    close_break_session,
    find_open_break,
    start_break,
    stop_break,
    total_break_minutes,
)
from shiftledger.services.daily_ledger import compute_ledger_for_record
from shiftledger.services.shift_assignments import (
    ShiftResolution,
    ShiftResolutionStatus,
    is_within_checkin_window,
    resolve_shift,
)
from shiftledger.services.shift_calc import occurrence_admits
from shiftledger.services.work_day import (
    WorkDayBoundary,
    attendance_timezone,
    boundary_for_work_date,
    local_minutes_of_day,
    normalize_ts,
)
from shiftledger.settings import get_settings

logger = logging.getLogger("shiftledger.attendance")


class AttendanceState(str, enum.Enum):
    NO_SESSION = "NO_SESSION"
    CHECKED_IN = "CHECKED_IN"
    ON_BREAK = "ON_BREAK"
    CHECKED_OUT = "CHECKED_OUT"


@dataclass(frozen=True)
class CheckInResult:
    record: AttendanceRecord
    ledger: MonthlyShift
    resolution: ShiftResolution


@dataclass(frozen=True)
class AttendanceStatus:
    employee_id: int
    boundary: WorkDayBoundary
    state: AttendanceState
    record: AttendanceRecord | None
    open_break: BreakSession | None


def resolve_employee(db: Session, employee_id: int, *, require_active: bool = True) -> Employee:
    employee = db.get(Employee, employee_id)
    if employee is None:
        raise ApiError(status_code=404, code="EMPLOYEE_NOT_FOUND", message="Employee not found.")
    if require_active and not employee.is_active:
        raise ApiError(status_code=403, code="EMPLOYEE_INACTIVE", message="Employee is inactive.")
    return employee


def find_open_record(db: Session, *, employee_id: int, for_update: bool = False) -> AttendanceRecord | None:
    stmt = select(AttendanceRecord).where(
        AttendanceRecord.employee_id == employee_id,
        AttendanceRecord.check_out_time.is_(None),
    )
    if for_update:
        stmt = stmt.with_for_update()
    return db.scalar(stmt.order_by(AttendanceRecord.check_in_time.desc()))


def _record_for_work_date(db: Session, *, employee_id: int, work_date: date) -> AttendanceRecord | None:
    return db.scalar(
        select(AttendanceRecord).where(
            AttendanceRecord.employee_id == employee_id,
            AttendanceRecord.work_date == work_date,
        )
    )


def attendance_state(record: AttendanceRecord | None) -> AttendanceState:
    if record is None:
        return AttendanceState.NO_SESSION
    if record.check_out_time is not None:
        return AttendanceState.CHECKED_OUT
    if record.is_on_break:
        return AttendanceState.ON_BREAK
    return AttendanceState.CHECKED_IN


def _already_checked_in(message: str) -> ApiError:
    return ApiError(status_code=409, code="ALREADY_CHECKED_IN", message=message)


def _close_record(
    db: Session,
    record: AttendanceRecord,
    *,
    checkout_at: datetime,
    auto_closed: bool,
) -> MonthlyShift:
    check_in = normalize_ts(record.check_in_time)
    checkout_ts = max(check_in, normalize_ts(checkout_at))

    open_break = find_open_break(record)
    if open_break is not None:
        close_break_session(record, open_break, end_time=checkout_ts, auto_closed=True)
        logger.warning(
            "break_auto_closed",
            extra={
                "attendance_record_id": record.id,
                "employee_id": record.employee_id,
                "break_session_id": open_break.id,
                "closed_at": checkout_ts.isoformat(),
            },
        )

    record.check_out_time = checkout_ts
    record.total_break_minutes = total_break_minutes(record.break_sessions)
    record.is_on_break = False
    record.current_break_reason = None
    if auto_closed:
        record.auto_closed = True
        record.needs_review = True

    return compute_ledger_for_record(db, record=record)


def close_stale_session(
    db: Session,
    record: AttendanceRecord,
    *,
    reset_time: time,
    now_utc: datetime | None = None,
) -> MonthlyShift:
    """Closes a session left open past the end of its work day and commits."""
    now = normalize_ts(now_utc)
    record_boundary = boundary_for_work_date(record.work_date, reset_time=reset_time, tz=attendance_timezone())
    checkout_at = min(now, record_boundary.work_day_end)
    ledger = _close_record(db, record, checkout_at=checkout_at, auto_closed=True)
    db.commit()
    db.refresh(ledger)
    logger.warning(
        "attendance_auto_checkout",
        extra={
            "attendance_record_id": record.id,
            "employee_id": record.employee_id,
            "work_date": record.work_date.isoformat(),
            "check_out_time": checkout_at.isoformat(),
        },
    )
    return ledger


def auto_checkout_stale_sessions(
    db: Session,
    *,
    boundary: WorkDayBoundary,
    now_utc: datetime | None = None,
) -> list[MonthlyShift]:
    stale_records = list(
        db.scalars(
            select(AttendanceRecord)
            .where(
                AttendanceRecord.check_out_time.is_(None),
                AttendanceRecord.work_date < boundary.work_date,
            )
            .order_by(AttendanceRecord.work_date.asc(), AttendanceRecord.id.asc())
        ).all()
    )
    closed: list[MonthlyShift] = []
    for record in stale_records:
        try:
            closed.append(close_stale_session(db, record, reset_time=boundary.reset_time, now_utc=now_utc))
        except StaleDataError:
            db.rollback()
            logger.info(
                "attendance_auto_checkout_skipped",
                extra={"attendance_record_id": record.id, "reason": "closed_concurrently"},
            )
    return closed


def _resolve_check_in_day(
    db: Session,
    *,
    employee: Employee,
    boundary: WorkDayBoundary,
    now: datetime,
    tz: ZoneInfo,
    tolerance_minutes: int,
) -> tuple[date, ShiftResolution]:
    """Work date and shift a check-in is booked under.

    The reset boundary decides, except in the last ``tolerance_minutes`` of the
    work day: an early arrival there for a shift of the next work date, one
    starting right at the reset time, is booked on that next date.
    """
    resolution = resolve_shift(db, employee=employee, work_date=boundary.work_date, instant_utc=now, tz=tz)
    if resolution.shift is not None and occurrence_admits(
        now, resolution.shift, boundary.work_date, tz, tolerance_minutes=tolerance_minutes
    ):
        return boundary.work_date, resolution
    if now < boundary.work_day_end - timedelta(minutes=max(0, tolerance_minutes)):
        return boundary.work_date, resolution

    next_date = boundary.work_date + timedelta(days=1)
    upcoming = resolve_shift(db, employee=employee, work_date=next_date, instant_utc=now, tz=tz)
    if upcoming.shift is None or not occurrence_admits(
        now, upcoming.shift, next_date, tz, tolerance_minutes=tolerance_minutes
    ):
        return boundary.work_date, resolution

    logger.info(
        "attendance_work_date_advanced",
        extra={
            "employee_id": employee.id,
            "boundary_work_date": boundary.work_date.isoformat(),
            "work_date": next_date.isoformat(),
            "shift_id": upcoming.shift.id,
        },
    )
    return next_date, upcoming


def check_in(
    db: Session,
    *,
    employee_id: int,
    boundary: WorkDayBoundary,
    now_utc: datetime | None = None,
) -> CheckInResult:
    now = normalize_ts(now_utc)
    employee = resolve_employee(db, employee_id)

    open_record = find_open_record(db, employee_id=employee.id)
    if open_record is not None:
        if open_record.work_date >= boundary.work_date:
            raise _already_checked_in("Employee is already checked in.")
        close_stale_session(db, open_record, reset_time=boundary.reset_time, now_utc=now)

    tz = attendance_timezone()
    tolerance = get_settings().checkin_early_tolerance_minutes
    work_date, resolution = _resolve_check_in_day(
        db,
        employee=employee,
        boundary=boundary,
        now=now,
        tz=tz,
        tolerance_minutes=tolerance,
    )

    if _record_for_work_date(db, employee_id=employee.id, work_date=work_date) is not None:
        raise _already_checked_in("Attendance for this work day is already completed.")

    if resolution.is_day_off:
        raise ApiError(status_code=409, code="DAY_OFF", message="Employee has a day off on this work day.")

    shift = resolution.shift
    if shift is not None and not is_within_checkin_window(
        local_minutes_of_day(now, tz),
        shift,
        tolerance_minutes=tolerance,
    ):
        raise ApiError(
            status_code=422,
            code="OUTSIDE_SHIFT_WINDOW",
            message="Check-in is outside the assigned shift window.",
        )

    record = AttendanceRecord(
        employee_id=employee.id,
        work_date=work_date,
        shift=shift,
        shift_source=resolution.source,
        check_in_time=now,
        needs_review=resolution.status == ShiftResolutionStatus.AMBIGUOUS,
    )
    db.add(record)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise _already_checked_in("Employee is already checked in.") from exc

    ledger = compute_ledger_for_record(db, record=record, tz=tz)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise _already_checked_in("Employee is already checked in.") from exc
    db.refresh(record)
    db.refresh(ledger)

    logger.info(
        "attendance_checked_in",
        extra={
            "employee_id": employee.id,
            "attendance_record_id": record.id,
            "work_date": record.work_date.isoformat(),
            "shift_id": record.shift_id,
            "shift_source": resolution.source.value,
            "boundary_fallback": boundary.is_fallback,
        },
    )
    if ledger.raw_lateness_minutes > 0:
        logger.info(
            "attendance_lateness_detected",
            extra={
                "employee_id": employee.id,
                "attendance_record_id": record.id,
                "work_date": record.work_date.isoformat(),
                "shift_id": record.shift_id,
                "minutes_late": round(ledger.raw_lateness_minutes, 2),
            },
        )
    return CheckInResult(record=record, ledger=ledger, resolution=resolution)


def check_out(
    db: Session,
    *,
    employee_id: int,
    now_utc: datetime | None = None,
) -> MonthlyShift:
    employee = resolve_employee(db, employee_id, require_active=False)
    record = find_open_record(db, employee_id=employee.id, for_update=True)
    if record is None:
        raise ApiError(status_code=409, code="NO_OPEN_SESSION", message="There is no open attendance session.")

    ledger = _close_record(db, record, checkout_at=normalize_ts(now_utc), auto_closed=False)
    try:
        db.commit()
    except StaleDataError as exc:
        db.rollback()
        raise ApiError(
            status_code=409,
            code="NO_OPEN_SESSION",
            message="There is no open attendance session.",
        ) from exc
    db.refresh(ledger)

    logger.info(
        "attendance_checked_out",
        extra={
            "employee_id": employee.id,
            "attendance_record_id": record.id,
            "work_date": record.work_date.isoformat(),
            "calculation_mode": ledger.calculation_mode.value,
            "regular_hours": round(ledger.regular_hours, 2),
            "overtime_hours": round(ledger.overtime_hours, 2),
            "delay_minutes": round(ledger.delay_minutes, 2),
            "needs_review": ledger.needs_review,
        },
    )
    return ledger


def _require_open_record(db: Session, employee_id: int) -> AttendanceRecord:
    resolve_employee(db, employee_id)
    record = find_open_record(db, employee_id=employee_id)
    if record is None:
        raise ApiError(status_code=409, code="NO_OPEN_SESSION", message="There is no open attendance session.")
    return record


def start_employee_break(
    db: Session,
    *,
    employee_id: int,
    reason: str | None,
    now_utc: datetime | None = None,
) -> BreakSession:
    record = _require_open_record(db, employee_id)
    return start_break(db, record=record, reason=reason, now_utc=now_utc)


def stop_employee_break(
    db: Session,
    *,
    employee_id: int,
    now_utc: datetime | None = None,
) -> BreakSession:
    record = _require_open_record(db, employee_id)
    return stop_break(db, record=record, now_utc=now_utc)


def get_attendance_status(
    db: Session,
    *,
    employee_id: int,
    boundary: WorkDayBoundary,
) -> AttendanceStatus:
    resolve_employee(db, employee_id, require_active=False)
    record = find_open_record(db, employee_id=employee_id)
    if record is None:
        record = _record_for_work_date(db, employee_id=employee_id, work_date=boundary.work_date)
    return AttendanceStatus(
        employee_id=employee_id,
        boundary=boundary,
        state=attendance_state(record),
        record=record,
        open_break=find_open_break(record) if record is not None else None,
    )

