from __future__ import annotations

import logging
from datetime import time

from sqlalchemy import exists, or_, select
from sqlalchemy.orm import Session

from shiftledger.errors import ApiError
from shiftledger.models import AttendanceRecord, Employee, MonthlyShift, Shift, ShiftAssignment, ShiftKind

logger = logging.getLogger("shiftledger.shifts")


def _validate_times(start_time_local: time, end_time_local: time) -> None:
    if start_time_local == end_time_local:
        raise ApiError(
            status_code=422,
            code="INVALID_SHIFT_TIMES",
            message="Shift start and end must differ.",
        )


def _normalize_position(position: str | None) -> str | None:
    normalized = (position or "").strip()
    return normalized or None


def create_shift(
    db: Session,
    *,
    name: str,
    kind: ShiftKind,
    start_time_local: time,
    end_time_local: time,
    position: str | None = None,
    all_time_overtime: bool = False,
) -> Shift:
    _validate_times(start_time_local, end_time_local)
    shift = Shift(
        name=name.strip(),
        kind=kind,
        start_time_local=start_time_local.replace(second=0, microsecond=0),
        end_time_local=end_time_local.replace(second=0, microsecond=0),
        position=_normalize_position(position),
        all_time_overtime=all_time_overtime or kind == ShiftKind.ALL_TIME_OVERTIME,
        is_active=True,
    )
    db.add(shift)
    db.commit()
    db.refresh(shift)
    logger.info("shift_created", extra={"shift_id": shift.id, "kind": shift.kind.value})
    return shift


def list_shifts(db: Session, *, include_inactive: bool = False, position: str | None = None) -> list[Shift]:
    stmt = select(Shift)
    if not include_inactive:
        stmt = stmt.where(Shift.is_active.is_(True))
    if position:
        stmt = stmt.where(or_(Shift.position.is_(None), Shift.position == position))
    return list(db.scalars(stmt.order_by(Shift.id.asc())).all())


def _get_shift(db: Session, shift_id: int) -> Shift:
    shift = db.get(Shift, shift_id)
    if shift is None:
        raise ApiError(status_code=404, code="SHIFT_NOT_FOUND", message="Shift not found.")
    return shift


def is_shift_referenced(db: Session, shift_id: int) -> bool:
    return bool(
        db.scalar(
            select(
                or_(
                    exists().where(AttendanceRecord.shift_id == shift_id),
                    exists().where(MonthlyShift.shift_id == shift_id),
                    exists().where(ShiftAssignment.shift_id == shift_id),
                )
            )
        )
    )


def revise_shift(
    db: Session,
    *,
    shift_id: int,
    name: str,
    kind: ShiftKind,
    start_time_local: time,
    end_time_local: time,
    position: str | None = None,
    all_time_overtime: bool = False,
) -> Shift:
    """Edits a shift. A shift already used by history is retired and replaced by a new row."""
    current = _get_shift(db, shift_id)
    if not current.is_active:
        raise ApiError(status_code=422, code="SHIFT_INACTIVE", message="Shift is not active.")
    _validate_times(start_time_local, end_time_local)

    if not is_shift_referenced(db, shift_id):
        current.name = name.strip()
        current.kind = kind
        current.start_time_local = start_time_local.replace(second=0, microsecond=0)
        current.end_time_local = end_time_local.replace(second=0, microsecond=0)
        current.position = _normalize_position(position)
        current.all_time_overtime = all_time_overtime or kind == ShiftKind.ALL_TIME_OVERTIME
        db.commit()
        db.refresh(current)
        logger.info("shift_updated", extra={"shift_id": current.id})
        return current

    replacement = Shift(
        name=name.strip(),
        kind=kind,
        start_time_local=start_time_local.replace(second=0, microsecond=0),
        end_time_local=end_time_local.replace(second=0, microsecond=0),
        position=_normalize_position(position),
        all_time_overtime=all_time_overtime or kind == ShiftKind.ALL_TIME_OVERTIME,
        is_active=True,
    )
    db.add(replacement)
    db.flush()
    current.is_active = False
    current.replaced_by_shift_id = replacement.id
    db.commit()
    db.refresh(replacement)
    logger.info(
        "shift_replaced",
        extra={"shift_id": current.id, "replacement_shift_id": replacement.id},
    )
    return replacement


def deactivate_shift(db: Session, *, shift_id: int) -> Shift:
    shift = _get_shift(db, shift_id)
    if shift.is_active:
        shift.is_active = False
        db.commit()
        db.refresh(shift)
        logger.info("shift_deactivated", extra={"shift_id": shift.id})
    return shift


def create_employee(db: Session, *, full_name: str, position: str | None = None) -> Employee:
    employee = Employee(
        full_name=full_name.strip(),
        position=_normalize_position(position),
        is_active=True,
    )
    db.add(employee)
    db.commit()
    db.refresh(employee)
    return employee


def list_employees(db: Session, *, include_inactive: bool = False) -> list[Employee]:
    stmt = select(Employee)
    if not include_inactive:
        stmt = stmt.where(Employee.is_active.is_(True))
    return list(db.scalars(stmt.order_by(Employee.id.asc())).all())
