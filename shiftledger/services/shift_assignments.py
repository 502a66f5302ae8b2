from __future__ import annotations

import enum
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime
from zoneinfo import ZoneInfo

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from shiftledger.errors import ApiError
from shiftledger.models import AttendanceRecord, Employee, Shift, ShiftAssignment, ShiftSource
from shiftledger.services.work_day import (
    attendance_timezone,
    circular_minutes_diff,
    local_minutes_of_day,
    minutes_of_day,
)
from shiftledger.settings import get_settings

logger = logging.getLogger("shiftledger.shift_assignments")


class ShiftResolutionStatus(str, enum.Enum):
    ASSIGNED = "ASSIGNED"
    DAY_OFF = "DAY_OFF"
    INFERRED = "INFERRED"
    UNASSIGNED = "UNASSIGNED"
    AMBIGUOUS = "AMBIGUOUS"


@dataclass(frozen=True)
class ShiftResolution:
    status: ShiftResolutionStatus
    shift: Shift | None = None
    candidate_shift_ids: tuple[int, ...] = ()

    @property
    def is_day_off(self) -> bool:
        return self.status == ShiftResolutionStatus.DAY_OFF

    @property
    def source(self) -> ShiftSource:
        if self.status == ShiftResolutionStatus.ASSIGNED:
            return ShiftSource.ASSIGNED
        if self.status == ShiftResolutionStatus.INFERRED:
            return ShiftSource.INFERRED
        if self.status == ShiftResolutionStatus.AMBIGUOUS:
            return ShiftSource.AMBIGUOUS
        return ShiftSource.UNASSIGNED


def is_within_checkin_window(local_minutes: int, shift: Shift, *, tolerance_minutes: int) -> bool:
    """Whether a local minute-of-day lies in [start - tolerance, end], wrapping past midnight."""
    start = minutes_of_day(shift.start_time_local)
    end = minutes_of_day(shift.end_time_local)
    if start == end:
        return True

    tolerance = max(0, tolerance_minutes)
    window_length = (end - start) % 1440 + tolerance
    if window_length >= 1440:
        return True
    window_start = (start - tolerance) % 1440
    return (local_minutes - window_start) % 1440 <= window_length


def infer_shift_by_time(
    shifts: Iterable[Shift],
    *,
    local_minutes: int,
    tolerance_minutes: int,
) -> ShiftResolution:
    matches = [
        shift
        for shift in shifts
        if is_within_checkin_window(local_minutes, shift, tolerance_minutes=tolerance_minutes)
    ]
    if not matches:
        return ShiftResolution(status=ShiftResolutionStatus.UNASSIGNED)
    if len(matches) == 1:
        return ShiftResolution(status=ShiftResolutionStatus.INFERRED, shift=matches[0])

    ranked = sorted(
        matches,
        key=lambda item: (circular_minutes_diff(local_minutes, minutes_of_day(item.start_time_local)), item.id),
    )
    best_distance = circular_minutes_diff(local_minutes, minutes_of_day(ranked[0].start_time_local))
    tied = [
        item
        for item in ranked
        if circular_minutes_diff(local_minutes, minutes_of_day(item.start_time_local)) == best_distance
    ]
    if len(tied) > 1:
        return ShiftResolution(
            status=ShiftResolutionStatus.AMBIGUOUS,
            candidate_shift_ids=tuple(item.id for item in tied),
        )
    return ShiftResolution(status=ShiftResolutionStatus.INFERRED, shift=ranked[0])


def get_shift_assignment(db: Session, *, employee_id: int, work_date: date) -> ShiftAssignment | None:
    return db.scalar(
        select(ShiftAssignment).where(
            ShiftAssignment.employee_id == employee_id,
            ShiftAssignment.work_date == work_date,
        )
    )


def list_candidate_shifts(db: Session, *, position: str | None) -> list[Shift]:
    stmt = select(Shift).where(Shift.is_active.is_(True))
    if position:
        stmt = stmt.where(or_(Shift.position.is_(None), Shift.position == position))
    else:
        stmt = stmt.where(Shift.position.is_(None))
    return list(db.scalars(stmt.order_by(Shift.id.asc())).all())


def _resolution_from_assignment(assignment: ShiftAssignment) -> ShiftResolution | None:
    if assignment.is_day_off:
        return ShiftResolution(status=ShiftResolutionStatus.DAY_OFF)
    if assignment.shift is not None:
        return ShiftResolution(status=ShiftResolutionStatus.ASSIGNED, shift=assignment.shift)
    return None


def resolve_shift(
    db: Session,
    *,
    employee: Employee,
    work_date: date,
    instant_utc: datetime,
    tz: ZoneInfo | None = None,
) -> ShiftResolution:
    assignment = get_shift_assignment(db, employee_id=employee.id, work_date=work_date)
    if assignment is not None:
        resolution = _resolution_from_assignment(assignment)
        if resolution is not None:
            return resolution

    zone = tz or attendance_timezone()
    resolution = infer_shift_by_time(
        list_candidate_shifts(db, position=employee.position),
        local_minutes=local_minutes_of_day(instant_utc, zone),
        tolerance_minutes=get_settings().checkin_early_tolerance_minutes,
    )
    if resolution.status == ShiftResolutionStatus.AMBIGUOUS:
        logger.warning(
            "shift_resolution_ambiguous",
            extra={
                "employee_id": employee.id,
                "work_date": work_date.isoformat(),
                "candidate_shift_ids": list(resolution.candidate_shift_ids),
            },
        )
    return resolution


def resolve_recorded_shift(
    db: Session,
    *,
    record: AttendanceRecord,
    tz: ZoneInfo | None = None,
) -> ShiftResolution:
    """Shift used when computing a stored record: an explicit assignment wins,
    otherwise the resolution cached at check-in.

    A cached assignment that has since been cleared is not trusted; the shift
    is inferred again from the check-in time.
    """
    assignment = get_shift_assignment(db, employee_id=record.employee_id, work_date=record.work_date)
    if assignment is not None:
        resolution = _resolution_from_assignment(assignment)
        if resolution is not None:
            return resolution

    if record.shift_source == ShiftSource.ASSIGNED:
        employee = db.get(Employee, record.employee_id)
        zone = tz or attendance_timezone()
        resolution = infer_shift_by_time(
            list_candidate_shifts(db, position=employee.position if employee is not None else None),
            local_minutes=local_minutes_of_day(record.check_in_time, zone),
            tolerance_minutes=get_settings().checkin_early_tolerance_minutes,
        )
        logger.info(
            "shift_assignment_cleared_reinferred",
            extra={
                "attendance_record_id": record.id,
                "employee_id": record.employee_id,
                "work_date": record.work_date.isoformat(),
                "cached_shift_id": record.shift_id,
                "status": resolution.status.value,
                "shift_id": resolution.shift.id if resolution.shift is not None else None,
            },
        )
        return resolution

    if record.shift is not None:
        return ShiftResolution(status=ShiftResolutionStatus.INFERRED, shift=record.shift)
    if record.shift_source == ShiftSource.AMBIGUOUS:
        return ShiftResolution(status=ShiftResolutionStatus.AMBIGUOUS)
    return ShiftResolution(status=ShiftResolutionStatus.UNASSIGNED)


def upsert_shift_assignment(
    db: Session,
    *,
    employee: Employee,
    work_date: date,
    shift_id: int | None,
    is_day_off: bool,
    assigned_by: str,
    note: str | None = None,
) -> ShiftAssignment | None:
    """Writes the assignment without committing; returns None when it was cleared."""
    if is_day_off and shift_id is not None:
        raise ApiError(
            status_code=422,
            code="INVALID_ASSIGNMENT",
            message="A day off cannot also carry a shift.",
        )

    if shift_id is not None:
        shift = db.get(Shift, shift_id)
        if shift is None:
            raise ApiError(status_code=404, code="SHIFT_NOT_FOUND", message="Shift not found.")
        if not shift.is_active:
            raise ApiError(status_code=422, code="SHIFT_INACTIVE", message="Shift is not active.")
        if shift.position and employee.position and shift.position != employee.position:
            raise ApiError(
                status_code=422,
                code="SHIFT_POSITION_MISMATCH",
                message="Shift does not belong to the employee's position.",
            )

    assignment = get_shift_assignment(db, employee_id=employee.id, work_date=work_date)
    if shift_id is None and not is_day_off:
        if assignment is not None:
            db.delete(assignment)
            db.flush()
        return None

    if assignment is None:
        assignment = ShiftAssignment(employee_id=employee.id, work_date=work_date)
        db.add(assignment)

    assignment.shift_id = shift_id
    assignment.is_day_off = is_day_off
    assignment.assigned_by = assigned_by
    assignment.note = note.strip() if note and note.strip() else None
    db.flush()
    db.refresh(assignment)
    return assignment


def list_shift_assignments(
    db: Session,
    *,
    employee_id: int | None,
    start_date: date,
    end_date: date,
) -> list[ShiftAssignment]:
    stmt = select(ShiftAssignment).where(
        ShiftAssignment.work_date >= start_date,
        ShiftAssignment.work_date <= end_date,
    )
    if employee_id is not None:
        stmt = stmt.where(ShiftAssignment.employee_id == employee_id)
    return list(
        db.scalars(stmt.order_by(ShiftAssignment.work_date.asc(), ShiftAssignment.employee_id.asc())).all()
    )
