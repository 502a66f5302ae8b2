from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo

from fastapi import Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from shiftledger.models import Shift
from shiftledger.settings import get_settings

logger = logging.getLogger("shiftledger.work_day")

MIDNIGHT = time(0, 0)


@dataclass(frozen=True, slots=True)
class WorkDayBoundary:
    work_date: date
    work_day_start: datetime
    work_day_end: datetime
    reset_time: time
    is_fallback: bool = False

    def contains(self, ts_utc: datetime) -> bool:
        normalized = normalize_ts(ts_utc)
        return self.work_day_start <= normalized < self.work_day_end


def normalize_ts(ts_utc: datetime | None) -> datetime:
    if ts_utc is None:
        return datetime.now(timezone.utc)

    if ts_utc.tzinfo is None:
        return ts_utc.replace(tzinfo=timezone.utc)

    return ts_utc.astimezone(timezone.utc)


@lru_cache
def attendance_timezone() -> ZoneInfo:
    raw_name = (get_settings().attendance_timezone or "").strip() or "UTC"
    try:
        return ZoneInfo(raw_name)
    except Exception:
        logger.warning("attendance_timezone_invalid", extra={"timezone": raw_name})
        return ZoneInfo("UTC")


def parse_hhmm(value: str) -> time:
    raw = (value or "").strip()
    parts = raw.split(":")
    if len(parts) != 2 or not all(part.isdigit() for part in parts):
        raise ValueError(f"Invalid HH:MM value: {value!r}")
    hour, minute = int(parts[0]), int(parts[1])
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Invalid HH:MM value: {value!r}")
    return time(hour, minute)


def minutes_of_day(value: time) -> int:
    return value.hour * 60 + value.minute


def local_minutes_of_day(ts_utc: datetime, tz: ZoneInfo) -> int:
    local = normalize_ts(ts_utc).astimezone(tz)
    return local.hour * 60 + local.minute


def circular_minutes_diff(a: int, b: int) -> int:
    raw = abs(a - b) % 1440
    return min(raw, 1440 - raw)


def derive_reset_time(shifts: Iterable[Shift]) -> time:
    """Latest end time among active shifts crossing midnight, else midnight.

    A shift ending exactly at 00:00 does not cross into the next day.
    """
    latest: int | None = None
    for shift in shifts:
        if not shift.is_active or not shift.crosses_midnight:
            continue
        end_minutes = minutes_of_day(shift.end_time_local)
        if latest is None or end_minutes > latest:
            latest = end_minutes
    if latest is None:
        return MIDNIGHT
    return time(latest // 60, latest % 60)


def boundary_for_work_date(
    work_date: date,
    *,
    reset_time: time,
    tz: ZoneInfo,
    is_fallback: bool = False,
) -> WorkDayBoundary:
    local_start = datetime.combine(work_date, reset_time, tzinfo=tz)
    local_end = datetime.combine(work_date + timedelta(days=1), reset_time, tzinfo=tz)
    return WorkDayBoundary(
        work_date=work_date,
        work_day_start=local_start.astimezone(timezone.utc),
        work_day_end=local_end.astimezone(timezone.utc),
        reset_time=reset_time,
        is_fallback=is_fallback,
    )


def resolve_work_day_boundaries(
    now_utc: datetime | None,
    *,
    reset_time: time = MIDNIGHT,
    tz: ZoneInfo | None = None,
    is_fallback: bool = False,
) -> WorkDayBoundary:
    zone = tz or attendance_timezone()
    local_now = normalize_ts(now_utc).astimezone(zone)
    work_date = local_now.date()
    if local_now.time() < reset_time:
        work_date -= timedelta(days=1)
    return boundary_for_work_date(work_date, reset_time=reset_time, tz=zone, is_fallback=is_fallback)


class WorkDayBoundaryCache:
    """Holds the reset time derived from the shift catalogue.

    The catalogue changes rarely, so the derived value is reloaded only after
    ``ttl_seconds`` or an explicit ``invalidate``.
    """

    def __init__(self, *, ttl_seconds: int, configured_reset_time: str | None = None):
        self._ttl = timedelta(seconds=max(0, ttl_seconds))
        self._configured_reset_time = (configured_reset_time or "").strip() or None
        self._lock = threading.Lock()
        self._reset_time: time | None = None
        self._loaded_at: datetime | None = None

    def invalidate(self) -> None:
        with self._lock:
            self._reset_time = None
            self._loaded_at = None

    def refresh(self, db: Session, now_utc: datetime | None = None) -> time:
        if self._configured_reset_time is not None:
            return parse_hhmm(self._configured_reset_time)

        shifts = list(db.scalars(select(Shift).where(Shift.is_active.is_(True))).all())
        reset_time = derive_reset_time(shifts)
        with self._lock:
            self._reset_time = reset_time
            self._loaded_at = normalize_ts(now_utc)
        return reset_time

    def reset_time(self, db: Session, now_utc: datetime | None = None) -> time:
        if self._configured_reset_time is not None:
            return parse_hhmm(self._configured_reset_time)

        now = normalize_ts(now_utc)
        with self._lock:
            cached = self._reset_time
            loaded_at = self._loaded_at
        if cached is not None and loaded_at is not None and now - loaded_at < self._ttl:
            return cached
        return self.refresh(db, now)

    def resolve(self, db: Session, now_utc: datetime | None = None) -> WorkDayBoundary:
        now = normalize_ts(now_utc)
        tz = attendance_timezone()
        try:
            reset_time = self.reset_time(db, now)
            return resolve_work_day_boundaries(now, reset_time=reset_time, tz=tz)
        except Exception:
            db.rollback()
            logger.exception(
                "work_day_boundary_fallback",
                extra={"now_utc": now.isoformat(), "timezone": str(tz)},
            )
            return resolve_work_day_boundaries(now, reset_time=MIDNIGHT, tz=tz, is_fallback=True)


def build_work_day_cache() -> WorkDayBoundaryCache:
    settings = get_settings()
    return WorkDayBoundaryCache(
        ttl_seconds=settings.work_day_boundary_refresh_seconds,
        configured_reset_time=settings.work_day_reset_time,
    )


def get_work_day_cache(request: Request) -> WorkDayBoundaryCache:
    cache = getattr(request.app.state, "work_day_cache", None)
    if cache is None:
        cache = build_work_day_cache()
        request.app.state.work_day_cache = cache
    return cache
