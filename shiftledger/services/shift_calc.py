from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from shiftledger.models import CalculationMode, Shift, ShiftKind
from shiftledger.services.work_day import minutes_of_day, normalize_ts

DEFAULT_CHECKIN_TOLERANCE_MINUTES = 30


@dataclass(frozen=True, slots=True)
class OvertimePolicy:
    day_expected_hours: float = 7.0
    night_expected_hours: float = 8.0
    custom_default_hours: float = 8.0
    # None means the shift's own start/end is the regular window.
    day_overtime_window: tuple[time, time] | None = None
    night_overtime_band: tuple[time, time] | None = None
    checkin_tolerance_minutes: int = DEFAULT_CHECKIN_TOLERANCE_MINUTES


@dataclass(frozen=True)
class ShiftComputation:
    mode: CalculationMode
    gross_minutes: float
    break_minutes: float
    worked_minutes: float
    regular_hours: float
    overtime_hours: float
    expected_hours: float | None
    raw_lateness_minutes: float
    delay_minutes: float
    early_checkout_penalty_hours: float

    @property
    def worked_hours(self) -> float:
        return self.worked_minutes / 60

    @property
    def needs_review(self) -> bool:
        return self.mode == CalculationMode.BASIC


def _minutes_between(start: datetime, end: datetime) -> float:
    return (normalize_ts(end) - normalize_ts(start)).total_seconds() / 60


def _overlap_minutes(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> float:
    start = max(a_start, b_start)
    end = min(a_end, b_end)
    return max(0.0, (end - start).total_seconds() / 60)


def shift_duration_minutes(start: time | None, end: time | None) -> int | None:
    """Wrap-aware duration; ``None`` when the pair cannot describe a shift."""
    if start is None or end is None:
        return None
    start_minutes = minutes_of_day(start)
    end_minutes = minutes_of_day(end)
    if start_minutes == end_minutes:
        return None
    if end_minutes < start_minutes:
        return 1440 - start_minutes + end_minutes
    return end_minutes - start_minutes


def expected_hours_for_shift(shift: Shift, policy: OvertimePolicy) -> float:
    kind = shift.effective_kind
    if kind == ShiftKind.DAY:
        return policy.day_expected_hours
    if kind == ShiftKind.NIGHT:
        return policy.night_expected_hours
    duration = shift_duration_minutes(shift.start_time_local, shift.end_time_local)
    if duration is None:
        return policy.custom_default_hours
    return duration / 60


def effective_worked_minutes(
    check_in: datetime,
    check_out: datetime,
    total_break_minutes: float,
) -> tuple[float, float]:
    gross = max(0.0, _minutes_between(check_in, check_out))
    return gross, max(0.0, gross - max(0.0, total_break_minutes))


def shift_window_utc(
    work_date: date,
    *,
    start: time,
    end: time,
    tz: ZoneInfo,
) -> tuple[datetime, datetime]:
    local_start = datetime.combine(work_date, start, tzinfo=tz)
    local_end = datetime.combine(work_date, end, tzinfo=tz)
    if local_end <= local_start:
        local_end = datetime.combine(work_date + timedelta(days=1), end, tzinfo=tz)
    return local_start.astimezone(timezone.utc), local_end.astimezone(timezone.utc)


def occurrence_admits(
    instant: datetime,
    shift: Shift,
    occurrence_date: date,
    tz: ZoneInfo,
    *,
    tolerance_minutes: int,
) -> bool:
    """Whether ``instant`` lies in [start - tolerance, end] of the shift as scheduled on ``occurrence_date``."""
    start, end = shift_window_utc(
        occurrence_date,
        start=shift.start_time_local,
        end=shift.end_time_local,
        tz=tz,
    )
    opens = start - timedelta(minutes=max(0, tolerance_minutes))
    return opens <= normalize_ts(instant) <= end


def shift_occurrence_date(
    check_in: datetime,
    shift: Shift,
    work_date: date,
    tz: ZoneInfo,
    *,
    tolerance_minutes: int,
) -> date:
    """Calendar date of the shift occurrence a check-in belongs to.

    The work date's own occurrence wins. A check-in in the early band before a
    start just past midnight belongs to the next day's occurrence, and a late
    arrival after midnight to the previous day's. Without a match the work date
    is kept.
    """
    for candidate in (work_date, work_date + timedelta(days=1), work_date - timedelta(days=1)):
        if occurrence_admits(check_in, shift, candidate, tz, tolerance_minutes=tolerance_minutes):
            return candidate
    return work_date


def _band_after(window_start_utc: datetime, band: tuple[time, time], tz: ZoneInfo) -> tuple[datetime, datetime]:
    # The band is anchored at the first occurrence of its start at or after the shift start.
    local_window_start = window_start_utc.astimezone(tz)
    band_start = datetime.combine(local_window_start.date(), band[0], tzinfo=tz)
    if band_start < local_window_start:
        band_start = datetime.combine(local_window_start.date() + timedelta(days=1), band[0], tzinfo=tz)
    band_end = datetime.combine(band_start.date(), band[1], tzinfo=tz)
    if band_end <= band_start:
        band_end = datetime.combine(band_start.date() + timedelta(days=1), band[1], tzinfo=tz)
    return band_start.astimezone(timezone.utc), band_end.astimezone(timezone.utc)


def split_regular_and_overtime(
    *,
    check_in: datetime,
    check_out: datetime,
    shift: Shift,
    total_break_minutes: float,
    work_date: date,
    tz: ZoneInfo,
    policy: OvertimePolicy,
) -> tuple[float, float]:
    """Regular and overtime minutes, breaks already deducted."""
    check_in = normalize_ts(check_in)
    check_out = normalize_ts(check_out)
    gross, worked = effective_worked_minutes(check_in, check_out, total_break_minutes)
    kind = shift.effective_kind

    if kind == ShiftKind.ALL_TIME_OVERTIME:
        return 0.0, worked

    if kind == ShiftKind.CUSTOM:
        duration = expected_hours_for_shift(shift, policy) * 60
        return min(worked, duration), max(0.0, worked - duration)

    window = (shift.start_time_local, shift.end_time_local)
    if kind == ShiftKind.DAY and policy.day_overtime_window is not None:
        window = policy.day_overtime_window
    anchor = shift_occurrence_date(
        check_in, shift, work_date, tz, tolerance_minutes=policy.checkin_tolerance_minutes
    )
    window_start, window_end = shift_window_utc(anchor, start=window[0], end=window[1], tz=tz)

    inside = _overlap_minutes(check_in, check_out, window_start, window_end)
    if kind == ShiftKind.NIGHT and policy.night_overtime_band is not None:
        band_start, band_end = _band_after(window_start, policy.night_overtime_band, tz)
        inside -= _overlap_minutes(
            check_in,
            check_out,
            max(window_start, band_start),
            min(window_end, band_end),
        )
    inside = max(0.0, inside)
    outside = max(0.0, gross - inside)

    breaks = max(0.0, total_break_minutes)
    regular = max(0.0, inside - breaks)
    spill = max(0.0, breaks - inside)
    overtime = max(0.0, outside - spill)
    return regular, overtime


def raw_lateness_minutes(
    check_in: datetime,
    shift: Shift,
    work_date: date,
    tz: ZoneInfo,
    *,
    tolerance_minutes: int = DEFAULT_CHECKIN_TOLERANCE_MINUTES,
) -> float:
    anchor = shift_occurrence_date(check_in, shift, work_date, tz, tolerance_minutes=tolerance_minutes)
    scheduled_start = datetime.combine(anchor, shift.start_time_local, tzinfo=tz)
    return max(0.0, _minutes_between(scheduled_start, check_in))


def reconcile_delay(
    *,
    worked_hours: float,
    expected_hours: float,
    raw_lateness_minutes: float,
    overtime_hours: float,
) -> tuple[float, float]:
    """Returns (delay_minutes, early_checkout_penalty_hours).

    A short day owes the whole shortfall; a full day owes only the lateness
    its overtime did not cover.
    """
    penalty = max(0.0, expected_hours - worked_hours)
    if worked_hours < expected_hours:
        return (expected_hours - worked_hours) * 60, penalty
    return max(0.0, raw_lateness_minutes - overtime_hours * 60), penalty


def offset_overtime_against_delay(overtime_hours: float, delay_hours: float) -> tuple[float, float]:
    """Nets aggregated overtime against aggregated delay: (net_overtime, net_delay)."""
    overtime = max(0.0, overtime_hours)
    delay = max(0.0, delay_hours)
    return max(0.0, overtime - delay), max(0.0, delay - overtime)


def calculate_checkin_metrics(
    *,
    check_in: datetime,
    shift: Shift | None,
    work_date: date,
    tz: ZoneInfo,
    policy: OvertimePolicy,
) -> ShiftComputation:
    lateness = 0.0
    expected: float | None = None
    if shift is not None:
        expected = expected_hours_for_shift(shift, policy)
        if shift.effective_kind != ShiftKind.ALL_TIME_OVERTIME:
            lateness = raw_lateness_minutes(
                check_in, shift, work_date, tz, tolerance_minutes=policy.checkin_tolerance_minutes
            )
    return ShiftComputation(
        mode=CalculationMode.CHECK_IN,
        gross_minutes=0.0,
        break_minutes=0.0,
        worked_minutes=0.0,
        regular_hours=0.0,
        overtime_hours=0.0,
        expected_hours=expected,
        raw_lateness_minutes=lateness,
        delay_minutes=lateness,
        early_checkout_penalty_hours=0.0,
    )


def calculate_shift_metrics(
    *,
    check_in: datetime,
    check_out: datetime,
    shift: Shift | None,
    total_break_minutes: float,
    work_date: date,
    tz: ZoneInfo,
    policy: OvertimePolicy,
) -> ShiftComputation:
    gross, worked = effective_worked_minutes(check_in, check_out, total_break_minutes)
    breaks = max(0.0, total_break_minutes)

    if shift is None:
        return ShiftComputation(
            mode=CalculationMode.BASIC,
            gross_minutes=gross,
            break_minutes=breaks,
            worked_minutes=worked,
            regular_hours=worked / 60,
            overtime_hours=0.0,
            expected_hours=None,
            raw_lateness_minutes=0.0,
            delay_minutes=0.0,
            early_checkout_penalty_hours=0.0,
        )

    expected = expected_hours_for_shift(shift, policy)
    regular_minutes, overtime_minutes = split_regular_and_overtime(
        check_in=check_in,
        check_out=check_out,
        shift=shift,
        total_break_minutes=breaks,
        work_date=work_date,
        tz=tz,
        policy=policy,
    )

    if shift.effective_kind == ShiftKind.ALL_TIME_OVERTIME:
        return ShiftComputation(
            mode=CalculationMode.FULL,
            gross_minutes=gross,
            break_minutes=breaks,
            worked_minutes=worked,
            regular_hours=0.0,
            overtime_hours=worked / 60,
            expected_hours=expected,
            raw_lateness_minutes=0.0,
            delay_minutes=0.0,
            early_checkout_penalty_hours=0.0,
        )

    lateness = raw_lateness_minutes(
        check_in, shift, work_date, tz, tolerance_minutes=policy.checkin_tolerance_minutes
    )
    worked_hours = (regular_minutes + overtime_minutes) / 60
    overtime_hours = overtime_minutes / 60
    delay, penalty = reconcile_delay(
        worked_hours=worked_hours,
        expected_hours=expected,
        raw_lateness_minutes=lateness,
        overtime_hours=overtime_hours,
    )
    return ShiftComputation(
        mode=CalculationMode.FULL,
        gross_minutes=gross,
        break_minutes=breaks,
        worked_minutes=worked,
        regular_hours=regular_minutes / 60,
        overtime_hours=overtime_hours,
        expected_hours=expected,
        raw_lateness_minutes=lateness,
        delay_minutes=delay,
        early_checkout_penalty_hours=penalty,
    )
