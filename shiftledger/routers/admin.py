from datetime import date
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from shiftledger.audit import audit_request
from shiftledger.db import get_db
from shiftledger.models import AuditActorType
from shiftledger.schemas import (
    DailyLedgerRead,
    DayRecalculationRead,
    EmployeeCreate,
    EmployeeRead,
    RecalculateRequest,
    RecalculationReportRead,
    ShiftAssignmentRead,
    ShiftAssignmentResponse,
    ShiftAssignmentWrite,
    ShiftRead,
    ShiftWrite,
)
from shiftledger.security import require_admin
from shiftledger.services.recalculation import recalculate_range, set_shift_assignment
from shiftledger.services.shift_assignments import list_shift_assignments
from shiftledger.services.shifts import (
    create_employee,
    create_shift,
    deactivate_shift,
    list_employees,
    list_shifts,
    revise_shift,
)
from shiftledger.services.work_day import WorkDayBoundaryCache, get_work_day_cache

router = APIRouter(prefix="/api/admin", tags=["admin"])


def _admin_id(claims: dict[str, Any]) -> str:
    return str(claims.get("sub") or "admin")


@router.get("/employees", response_model=list[EmployeeRead])
def get_employees(
    include_inactive: bool = Query(default=False),
    _claims: dict[str, Any] = Depends(require_admin),
    db: Session = Depends(get_db),
) -> list[EmployeeRead]:
    return [EmployeeRead.model_validate(item) for item in list_employees(db, include_inactive=include_inactive)]


@router.post("/employees", response_model=EmployeeRead, status_code=201)
def post_employee(
    payload: EmployeeCreate,
    request: Request,
    claims: dict[str, Any] = Depends(require_admin),
    db: Session = Depends(get_db),
) -> EmployeeRead:
    employee = EmployeeRead.model_validate(create_employee(db, full_name=payload.full_name, position=payload.position))
    audit_request(
        db,
        request,
        actor_type=AuditActorType.ADMIN,
        actor_id=_admin_id(claims),
        action="EMPLOYEE_CREATED",
        entity_type="employee",
        entity_id=str(employee.id),
        details={"position": employee.position},
    )
    return employee


@router.get("/shifts", response_model=list[ShiftRead])
def get_shifts(
    include_inactive: bool = Query(default=False),
    position: str | None = Query(default=None),
    _claims: dict[str, Any] = Depends(require_admin),
    db: Session = Depends(get_db),
) -> list[ShiftRead]:
    shifts = list_shifts(db, include_inactive=include_inactive, position=position)
    return [ShiftRead.model_validate(item) for item in shifts]


@router.post("/shifts", response_model=ShiftRead, status_code=201)
def post_shift(
    payload: ShiftWrite,
    request: Request,
    claims: dict[str, Any] = Depends(require_admin),
    db: Session = Depends(get_db),
    cache: WorkDayBoundaryCache = Depends(get_work_day_cache),
) -> ShiftRead:
    shift = ShiftRead.model_validate(create_shift(db, **payload.model_dump()))
    cache.invalidate()
    audit_request(
        db,
        request,
        actor_type=AuditActorType.ADMIN,
        actor_id=_admin_id(claims),
        action="SHIFT_CREATED",
        entity_type="shift",
        entity_id=str(shift.id),
        details=payload.model_dump(mode="json"),
    )
    return shift


@router.put("/shifts/{shift_id}", response_model=ShiftRead)
def put_shift(
    shift_id: int,
    payload: ShiftWrite,
    request: Request,
    claims: dict[str, Any] = Depends(require_admin),
    db: Session = Depends(get_db),
    cache: WorkDayBoundaryCache = Depends(get_work_day_cache),
) -> ShiftRead:
    shift = ShiftRead.model_validate(revise_shift(db, shift_id=shift_id, **payload.model_dump()))
    cache.invalidate()
    audit_request(
        db,
        request,
        actor_type=AuditActorType.ADMIN,
        actor_id=_admin_id(claims),
        action="SHIFT_REVISED",
        entity_type="shift",
        entity_id=str(shift_id),
        details={"result_shift_id": shift.id, **payload.model_dump(mode="json")},
    )
    return shift


@router.delete("/shifts/{shift_id}", response_model=ShiftRead)
def delete_shift(
    shift_id: int,
    request: Request,
    claims: dict[str, Any] = Depends(require_admin),
    db: Session = Depends(get_db),
    cache: WorkDayBoundaryCache = Depends(get_work_day_cache),
) -> ShiftRead:
    shift = ShiftRead.model_validate(deactivate_shift(db, shift_id=shift_id))
    cache.invalidate()
    audit_request(
        db,
        request,
        actor_type=AuditActorType.ADMIN,
        actor_id=_admin_id(claims),
        action="SHIFT_DEACTIVATED",
        entity_type="shift",
        entity_id=str(shift_id),
    )
    return shift


@router.get("/shift-assignments", response_model=list[ShiftAssignmentRead])
def get_shift_assignments(
    start_date: date = Query(),
    end_date: date = Query(),
    employee_id: int | None = Query(default=None, gt=0),
    _claims: dict[str, Any] = Depends(require_admin),
    db: Session = Depends(get_db),
) -> list[ShiftAssignmentRead]:
    assignments = list_shift_assignments(db, employee_id=employee_id, start_date=start_date, end_date=end_date)
    return [ShiftAssignmentRead.model_validate(item) for item in assignments]


@router.put("/shift-assignments", response_model=ShiftAssignmentResponse)
def put_shift_assignment(
    payload: ShiftAssignmentWrite,
    request: Request,
    claims: dict[str, Any] = Depends(require_admin),
    db: Session = Depends(get_db),
) -> ShiftAssignmentResponse:
    change = set_shift_assignment(
        db,
        employee_id=payload.employee_id,
        work_date=payload.work_date,
        shift_id=payload.shift_id,
        is_day_off=payload.is_day_off,
        assigned_by=_admin_id(claims),
        note=payload.note,
    )
    response = ShiftAssignmentResponse(
        assignment=ShiftAssignmentRead.model_validate(change.assignment) if change.assignment is not None else None,
        ledger=DailyLedgerRead.model_validate(change.ledger) if change.ledger is not None else None,
    )
    audit_request(
        db,
        request,
        actor_type=AuditActorType.ADMIN,
        actor_id=_admin_id(claims),
        action="SHIFT_ASSIGNMENT_SET",
        entity_type="employee",
        entity_id=str(payload.employee_id),
        details=payload.model_dump(mode="json"),
    )
    return response


@router.post("/recalculate", response_model=RecalculationReportRead)
def post_recalculate(
    payload: RecalculateRequest,
    request: Request,
    claims: dict[str, Any] = Depends(require_admin),
    db: Session = Depends(get_db),
) -> RecalculationReportRead:
    report = recalculate_range(
        db,
        employee_id=payload.employee_id,
        start_date=payload.start_date,
        end_date=payload.end_date,
    )
    audit_request(
        db,
        request,
        actor_type=AuditActorType.ADMIN,
        actor_id=_admin_id(claims),
        action="LEDGER_RECALCULATED",
        entity_type="employee",
        entity_id=str(payload.employee_id),
        details={
            "start_date": payload.start_date.isoformat(),
            "end_date": payload.end_date.isoformat(),
            "failed_count": report.failed_count,
        },
    )
    return RecalculationReportRead(
        employee_id=report.employee_id,
        start_date=report.start_date,
        end_date=report.end_date,
        ok=report.ok,
        failed_count=report.failed_count,
        days=[
            DayRecalculationRead(work_date=item.work_date, outcome=item.outcome.value, error=item.error)
            for item in report.days
        ],
    )
