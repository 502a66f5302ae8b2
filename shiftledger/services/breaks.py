from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from shiftledger.errors import ApiError
from shiftledger.models import AttendanceRecord, BreakSession
from shiftledger.services.work_day import normalize_ts

logger = logging.getLogger("shiftledger.breaks")

BREAK_REASON_MAX_LENGTH = 500


def total_break_minutes(sessions: Iterable[BreakSession]) -> float:
    return sum(session.duration_minutes for session in sessions)


def find_open_break(record: AttendanceRecord) -> BreakSession | None:
    for session in record.break_sessions:
        if session.end_time is None:
            return session
    return None


def _normalize_reason(reason: str | None) -> str:
    normalized = (reason or "").strip()
    if not normalized:
        raise ApiError(
            status_code=422,
            code="BREAK_REASON_REQUIRED",
            message="A break reason is required.",
        )
    return normalized[:BREAK_REASON_MAX_LENGTH]


def _ensure_record_open(record: AttendanceRecord) -> None:
    if record.check_out_time is not None:
        raise ApiError(
            status_code=409,
            code="NO_OPEN_SESSION",
            message="Breaks can only be taken during an open attendance session.",
        )


def close_break_session(
    record: AttendanceRecord,
    session: BreakSession,
    *,
    end_time: datetime,
    auto_closed: bool = False,
) -> BreakSession:
    """Closes ``session`` in memory and refreshes the cached totals on ``record``."""
    start = normalize_ts(session.start_time)
    session.end_time = max(start, normalize_ts(end_time))
    session.auto_closed = auto_closed
    record.is_on_break = False
    record.current_break_reason = None
    record.total_break_minutes = total_break_minutes(record.break_sessions)
    return session


def start_break(
    db: Session,
    *,
    record: AttendanceRecord,
    reason: str | None,
    now_utc: datetime | None = None,
) -> BreakSession:
    _ensure_record_open(record)
    normalized_reason = _normalize_reason(reason)
    if record.is_on_break or find_open_break(record) is not None:
        raise ApiError(
            status_code=409,
            code="BREAK_ALREADY_OPEN",
            message="A break is already in progress.",
        )

    started_at = normalize_ts(now_utc)
    session = BreakSession(start_time=started_at, reason=normalized_reason)
    record.break_sessions.append(session)
    record.is_on_break = True
    record.current_break_reason = normalized_reason
    try:
        db.commit()
    except (IntegrityError, StaleDataError) as exc:
        db.rollback()
        raise ApiError(
            status_code=409,
            code="BREAK_ALREADY_OPEN",
            message="A break is already in progress.",
        ) from exc

    db.refresh(session)
    logger.info(
        "break_started",
        extra={
            "attendance_record_id": record.id,
            "employee_id": record.employee_id,
            "break_session_id": session.id,
            "reason": normalized_reason,
        },
    )
    return session


def stop_break(
    db: Session,
    *,
    record: AttendanceRecord,
    now_utc: datetime | None = None,
) -> BreakSession:
    _ensure_record_open(record)
    session = find_open_break(record)
    if session is None:
        raise ApiError(
            status_code=409,
            code="NO_BREAK_OPEN",
            message="There is no break in progress.",
        )

    close_break_session(record, session, end_time=normalize_ts(now_utc))
    try:
        db.commit()
    except StaleDataError as exc:
        db.rollback()
        raise ApiError(
            status_code=409,
            code="NO_BREAK_OPEN",
            message="There is no break in progress.",
        ) from exc

    db.refresh(session)
    logger.info(
        "break_stopped",
        extra={
            "attendance_record_id": record.id,
            "employee_id": record.employee_id,
            "break_session_id": session.id,
            "duration_minutes": session.duration_minutes,
            "total_break_minutes": record.total_break_minutes,
        },
    )
    return session
