from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import Session

from shiftledger.errors import ApiError
from shiftledger.models import AttendanceRecord, MonthlyShift, ShiftAssignment
from shiftledger.services.attendance import resolve_employee
from shiftledger.services.daily_ledger import recalculate_work_day
from shiftledger.services.shift_assignments import upsert_shift_assignment

logger = logging.getLogger("shiftledger.recalculation")

MAX_RECALCULATION_DAYS = 366


class RecalculationOutcome(str, enum.Enum):
    OK = "OK"
    REMOVED = "REMOVED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class DayRecalculation:
    work_date: date
    outcome: RecalculationOutcome
    error: str | None = None


@dataclass
class RecalculationReport:
    employee_id: int
    start_date: date
    end_date: date
    days: list[DayRecalculation] = field(default_factory=list)

    @property
    def failed_count(self) -> int:
        return sum(1 for item in self.days if item.outcome == RecalculationOutcome.FAILED)

    @property
    def ok(self) -> bool:
        return self.failed_count == 0


@dataclass(frozen=True)
class AssignmentChange:
    assignment: ShiftAssignment | None
    ledger: MonthlyShift | None


def _dates_with_inputs(db: Session, *, employee_id: int, start_date: date, end_date: date) -> list[date]:
    found: set[date] = set()
    for model in (AttendanceRecord, MonthlyShift, ShiftAssignment):
        found.update(
            db.scalars(
                select(model.work_date).where(
                    model.employee_id == employee_id,
                    model.work_date >= start_date,
                    model.work_date <= end_date,
                )
            ).all()
        )
    return sorted(found)


def recalculate_range(db: Session, *, employee_id: int, start_date: date, end_date: date) -> RecalculationReport:
    """Recomputes every work day of the range that has any input.

    Each day commits on its own; a failing day is reported and does not
    block the others.
    """
    if end_date < start_date:
        raise ApiError(status_code=422, code="INVALID_DATE_RANGE", message="end_date must not precede start_date.")
    if (end_date - start_date).days >= MAX_RECALCULATION_DAYS:
        raise ApiError(
            status_code=422,
            code="INVALID_DATE_RANGE",
            message=f"Recalculation is limited to {MAX_RECALCULATION_DAYS} days.",
        )
    resolve_employee(db, employee_id, require_active=False)

    report = RecalculationReport(employee_id=employee_id, start_date=start_date, end_date=end_date)
    for work_date in _dates_with_inputs(db, employee_id=employee_id, start_date=start_date, end_date=end_date):
        try:
            row = recalculate_work_day(db, employee_id=employee_id, work_date=work_date)
            db.commit()
        except Exception as exc:
            db.rollback()
            logger.exception(
                "recalculation_day_failed",
                extra={"employee_id": employee_id, "work_date": work_date.isoformat()},
            )
            report.days.append(
                DayRecalculation(
                    work_date=work_date,
                    outcome=RecalculationOutcome.FAILED,
                    error=exc.__class__.__name__,
                )
            )
            continue
        outcome = RecalculationOutcome.OK if row is not None else RecalculationOutcome.REMOVED
        report.days.append(DayRecalculation(work_date=work_date, outcome=outcome))

    logger.info(
        "recalculation_complete",
        extra={
            "employee_id": employee_id,
            "start_date": start_date.isoformat(),
            "end_date": end_date.isoformat(),
            "day_count": len(report.days),
            "failed_count": report.failed_count,
        },
    )
    return report


def set_shift_assignment(
    db: Session,
    *,
    employee_id: int,
    work_date: date,
    shift_id: int | None,
    is_day_off: bool,
    assigned_by: str,
    note: str | None = None,
) -> AssignmentChange:
    """Writes or clears an assignment and recomputes the affected work day."""
    employee = resolve_employee(db, employee_id, require_active=False)
    assignment = upsert_shift_assignment(
        db,
        employee=employee,
        work_date=work_date,
        shift_id=shift_id,
        is_day_off=is_day_off,
        assigned_by=assigned_by,
        note=note,
    )
    ledger = recalculate_work_day(db, employee_id=employee.id, work_date=work_date)
    db.commit()
    if assignment is not None:
        db.refresh(assignment)
    if ledger is not None:
        db.refresh(ledger)

    logger.info(
        "shift_assignment_set",
        extra={
            "employee_id": employee.id,
            "work_date": work_date.isoformat(),
            "shift_id": shift_id,
            "is_day_off": is_day_off,
            "cleared": assignment is None,
            "ledger_recalculated": ledger is not None,
        },
    )
    return AssignmentChange(assignment=assignment, ledger=ledger)
