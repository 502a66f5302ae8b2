from datetime import date, datetime, timezone

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from shiftledger.audit import audit_request
from shiftledger.db import get_db
from shiftledger.errors import ApiError
from shiftledger.models import AuditActorType
from shiftledger.schemas import (
    AttendanceRecordRead,
    AttendanceStatusRead,
    BreakSessionRead,
    BreakStartRequest,
    CheckInResponse,
    DailyLedgerRead,
    EmployeeActionRequest,
    MonthlySummaryRead,
    WorkDayRead,
)
from shiftledger.services.attendance import (
    check_in,
    check_out,
    get_attendance_status,
    resolve_employee,
    start_employee_break,
    stop_employee_break,
)
from shiftledger.services.daily_ledger import get_daily_ledger, list_ledger_rows
from shiftledger.services.monthly import get_monthly_summary, month_bounds
from shiftledger.services.work_day import WorkDayBoundary, WorkDayBoundaryCache, get_work_day_cache

router = APIRouter(tags=["attendance"])


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _work_day_read(boundary: WorkDayBoundary) -> WorkDayRead:
    return WorkDayRead(
        work_date=boundary.work_date,
        work_day_start=boundary.work_day_start,
        work_day_end=boundary.work_day_end,
        reset_time=boundary.reset_time,
        is_fallback=boundary.is_fallback,
    )


@router.get("/api/work-day", response_model=WorkDayRead)
def current_work_day(
    db: Session = Depends(get_db),
    cache: WorkDayBoundaryCache = Depends(get_work_day_cache),
) -> WorkDayRead:
    return _work_day_read(cache.resolve(db, _utcnow()))


@router.post("/api/attendance/checkin", response_model=CheckInResponse)
def checkin(
    payload: EmployeeActionRequest,
    request: Request,
    db: Session = Depends(get_db),
    cache: WorkDayBoundaryCache = Depends(get_work_day_cache),
) -> CheckInResponse:
    request.state.actor = "employee"
    request.state.employee_id = payload.employee_id
    now = _utcnow()
    result = check_in(
        db,
        employee_id=payload.employee_id,
        boundary=cache.resolve(db, now),
        now_utc=now,
    )
    response = CheckInResponse(
        record=AttendanceRecordRead.model_validate(result.record),
        shift_resolution=result.resolution.status.value,
        minutes_late=result.ledger.raw_lateness_minutes,
        ledger=DailyLedgerRead.model_validate(result.ledger),
    )
    audit_request(
        db,
        request,
        actor_type=AuditActorType.EMPLOYEE,
        actor_id=str(payload.employee_id),
        action="ATTENDANCE_CHECKED_IN",
        entity_type="attendance_record",
        entity_id=str(response.record.id),
        details={"work_date": response.record.work_date.isoformat(), "shift_id": response.record.shift_id},
    )
    return response


@router.post("/api/attendance/checkout", response_model=DailyLedgerRead)
def checkout(
    payload: EmployeeActionRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> DailyLedgerRead:
    request.state.actor = "employee"
    request.state.employee_id = payload.employee_id
    ledger = DailyLedgerRead.model_validate(check_out(db, employee_id=payload.employee_id, now_utc=_utcnow()))
    audit_request(
        db,
        request,
        actor_type=AuditActorType.EMPLOYEE,
        actor_id=str(payload.employee_id),
        action="ATTENDANCE_CHECKED_OUT",
        entity_type="attendance_record",
        entity_id=str(ledger.attendance_record_id),
        details={"work_date": ledger.work_date.isoformat(), "calculation_mode": ledger.calculation_mode.value},
    )
    return ledger


@router.post("/api/attendance/break/start", response_model=BreakSessionRead)
def break_start(
    payload: BreakStartRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> BreakSessionRead:
    request.state.actor = "employee"
    request.state.employee_id = payload.employee_id
    session = BreakSessionRead.model_validate(
        start_employee_break(db, employee_id=payload.employee_id, reason=payload.reason, now_utc=_utcnow())
    )
    audit_request(
        db,
        request,
        actor_type=AuditActorType.EMPLOYEE,
        actor_id=str(payload.employee_id),
        action="BREAK_STARTED",
        entity_type="break_session",
        entity_id=str(session.id),
        details={"reason": session.reason},
    )
    return session


@router.post("/api/attendance/break/stop", response_model=BreakSessionRead)
def break_stop(
    payload: EmployeeActionRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> BreakSessionRead:
    request.state.actor = "employee"
    request.state.employee_id = payload.employee_id
    session = BreakSessionRead.model_validate(
        stop_employee_break(db, employee_id=payload.employee_id, now_utc=_utcnow())
    )
    audit_request(
        db,
        request,
        actor_type=AuditActorType.EMPLOYEE,
        actor_id=str(payload.employee_id),
        action="BREAK_STOPPED",
        entity_type="break_session",
        entity_id=str(session.id),
        details={"duration_minutes": round(session.duration_minutes, 2)},
    )
    return session


@router.get("/api/attendance/status", response_model=AttendanceStatusRead)
def attendance_status(
    employee_id: int = Query(gt=0),
    db: Session = Depends(get_db),
    cache: WorkDayBoundaryCache = Depends(get_work_day_cache),
) -> AttendanceStatusRead:
    status = get_attendance_status(db, employee_id=employee_id, boundary=cache.resolve(db, _utcnow()))
    return AttendanceStatusRead(
        employee_id=status.employee_id,
        state=status.state.value,
        work_day=_work_day_read(status.boundary),
        record=AttendanceRecordRead.model_validate(status.record) if status.record is not None else None,
        open_break=BreakSessionRead.model_validate(status.open_break) if status.open_break is not None else None,
    )


@router.get("/api/ledger/daily", response_model=DailyLedgerRead)
def daily_ledger(
    employee_id: int = Query(gt=0),
    work_date: date = Query(),
    db: Session = Depends(get_db),
) -> DailyLedgerRead:
    row = get_daily_ledger(db, employee_id=employee_id, work_date=work_date)
    if row is None:
        raise ApiError(status_code=404, code="LEDGER_NOT_FOUND", message="No ledger entry for this work day.")
    return DailyLedgerRead.model_validate(row)


@router.get("/api/ledger/monthly", response_model=list[DailyLedgerRead])
def monthly_ledger(
    employee_id: int = Query(gt=0),
    year: int = Query(ge=2000, le=2100),
    month: int = Query(ge=1, le=12),
    db: Session = Depends(get_db),
) -> list[DailyLedgerRead]:
    resolve_employee(db, employee_id, require_active=False)
    start_date, end_date = month_bounds(year, month)
    rows = list_ledger_rows(db, employee_id=employee_id, start_date=start_date, end_date=end_date)
    return [DailyLedgerRead.model_validate(row) for row in rows]


@router.get("/api/ledger/monthly-summary", response_model=MonthlySummaryRead)
def monthly_summary(
    employee_id: int = Query(gt=0),
    year: int = Query(ge=2000, le=2100),
    month: int = Query(ge=1, le=12),
    db: Session = Depends(get_db),
) -> MonthlySummaryRead:
    resolve_employee(db, employee_id, require_active=False)
    summary = get_monthly_summary(db, employee_id=employee_id, year=year, month=month)
    return MonthlySummaryRead(
        employee_id=summary.employee_id,
        start_date=summary.start_date,
        end_date=summary.end_date,
        regular_hours=summary.regular_hours,
        overtime_hours=summary.overtime_hours,
        delay_hours=summary.delay_hours,
        net_overtime_hours=summary.net_overtime_hours,
        net_delay_hours=summary.net_delay_hours,
        working_days=summary.working_days,
        day_off_days=summary.day_off_days,
        needs_review_days=summary.needs_review_days,
        average_hours_per_day=summary.average_hours_per_day,
    )
