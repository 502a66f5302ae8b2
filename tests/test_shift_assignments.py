from __future__ import annotations

from datetime import date, time
import unittest
from zoneinfo import ZoneInfo

from ledger_fixtures import add_assignment, add_employee, add_shift, build_session_factory, utc
from shiftledger.errors import ApiError
from shiftledger.models import AttendanceRecord, Shift, ShiftKind, ShiftSource
from shiftledger.services.shift_assignments import (
    ShiftResolutionStatus,
    infer_shift_by_time,
    is_within_checkin_window,
    resolve_recorded_shift,
    resolve_shift,
    upsert_shift_assignment,
)

UTC = ZoneInfo("UTC")
WORK_DATE = date(2026, 3, 2)


def _shift(shift_id: int, start: time, end: time) -> Shift:
    return Shift(
        id=shift_id,
        name=f"shift-{shift_id}",
        kind=ShiftKind.CUSTOM,
        start_time_local=start,
        end_time_local=end,
        all_time_overtime=False,
        is_active=True,
    )


class CheckinWindowTests(unittest.TestCase):
    def test_day_window_includes_early_tolerance(self) -> None:
        shift = _shift(1, time(9, 0), time(17, 0))

        self.assertTrue(is_within_checkin_window(8 * 60 + 30, shift, tolerance_minutes=30))
        self.assertFalse(is_within_checkin_window(8 * 60 + 29, shift, tolerance_minutes=30))
        self.assertTrue(is_within_checkin_window(17 * 60, shift, tolerance_minutes=30))
        self.assertFalse(is_within_checkin_window(17 * 60 + 1, shift, tolerance_minutes=30))

    def test_overnight_window_wraps_midnight(self) -> None:
        shift = _shift(1, time(22, 0), time(6, 0))

        self.assertTrue(is_within_checkin_window(21 * 60 + 30, shift, tolerance_minutes=30))
        self.assertTrue(is_within_checkin_window(23 * 60 + 59, shift, tolerance_minutes=30))
        self.assertTrue(is_within_checkin_window(5 * 60 + 59, shift, tolerance_minutes=30))
        self.assertFalse(is_within_checkin_window(6 * 60 + 1, shift, tolerance_minutes=30))
        self.assertFalse(is_within_checkin_window(12 * 60, shift, tolerance_minutes=30))

    def test_tolerance_wrapping_before_midnight(self) -> None:
        shift = _shift(1, time(0, 0), time(8, 0))

        self.assertTrue(is_within_checkin_window(23 * 60 + 45, shift, tolerance_minutes=30))
        self.assertFalse(is_within_checkin_window(23 * 60, shift, tolerance_minutes=30))


class InferShiftTests(unittest.TestCase):
    def test_overnight_shift_inferred_on_both_sides_of_midnight(self) -> None:
        day = _shift(1, time(9, 0), time(17, 0))
        night = _shift(2, time(22, 0), time(6, 0))

        evening = infer_shift_by_time([day, night], local_minutes=23 * 60 + 45, tolerance_minutes=30)
        morning = infer_shift_by_time([day, night], local_minutes=5 * 60 + 30, tolerance_minutes=30)

        self.assertEqual(evening.status, ShiftResolutionStatus.INFERRED)
        self.assertEqual(evening.shift, night)
        self.assertEqual(morning.shift, night)

    def test_nearest_start_wins_among_overlapping_shifts(self) -> None:
        early = _shift(1, time(8, 0), time(16, 0))
        regular = _shift(2, time(9, 0), time(17, 0))

        resolution = infer_shift_by_time([early, regular], local_minutes=8 * 60 + 50, tolerance_minutes=30)

        self.assertEqual(resolution.status, ShiftResolutionStatus.INFERRED)
        self.assertEqual(resolution.shift, regular)

    def test_equal_distance_is_ambiguous(self) -> None:
        first = _shift(1, time(9, 0), time(17, 0))
        second = _shift(2, time(9, 0), time(13, 0))

        resolution = infer_shift_by_time([first, second], local_minutes=9 * 60 + 10, tolerance_minutes=30)

        self.assertEqual(resolution.status, ShiftResolutionStatus.AMBIGUOUS)
        self.assertIsNone(resolution.shift)
        self.assertEqual(resolution.candidate_shift_ids, (1, 2))
        self.assertEqual(resolution.source, ShiftSource.AMBIGUOUS)

    def test_no_matching_window_is_unassigned(self) -> None:
        resolution = infer_shift_by_time([_shift(1, time(9, 0), time(17, 0))], local_minutes=3 * 60, tolerance_minutes=30)

        self.assertEqual(resolution.status, ShiftResolutionStatus.UNASSIGNED)
        self.assertEqual(resolution.source, ShiftSource.UNASSIGNED)


class ResolveShiftTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = build_session_factory()()
        self.employee = add_employee(self.db, position="cashier")
        self.day = add_shift(self.db, name="Day", kind=ShiftKind.DAY, start=time(9, 0), end=time(17, 0))
        self.evening = add_shift(
            self.db,
            name="Evening",
            kind=ShiftKind.CUSTOM,
            start=time(14, 0),
            end=time(22, 0),
            position="cashier",
        )
        self.kitchen = add_shift(
            self.db,
            name="Kitchen",
            kind=ShiftKind.CUSTOM,
            start=time(6, 0),
            end=time(14, 0),
            position="cook",
        )

    def tearDown(self) -> None:
        self.db.close()

    def test_explicit_assignment_wins_over_time_inference(self) -> None:
        add_assignment(self.db, employee=self.employee, work_date=WORK_DATE, shift=self.evening)

        resolution = resolve_shift(self.db, employee=self.employee, work_date=WORK_DATE, instant_utc=utc(2026, 3, 2, 9, 0))

        self.assertEqual(resolution.status, ShiftResolutionStatus.ASSIGNED)
        self.assertEqual(resolution.shift.id, self.evening.id)

    def test_day_off_assignment(self) -> None:
        add_assignment(self.db, employee=self.employee, work_date=WORK_DATE, is_day_off=True)

        resolution = resolve_shift(self.db, employee=self.employee, work_date=WORK_DATE, instant_utc=utc(2026, 3, 2, 9, 0))

        self.assertTrue(resolution.is_day_off)

    def test_inference_ignores_other_positions(self) -> None:
        resolution = resolve_shift(self.db, employee=self.employee, work_date=WORK_DATE, instant_utc=utc(2026, 3, 2, 6, 0))

        self.assertEqual(resolution.status, ShiftResolutionStatus.UNASSIGNED)

    def test_inference_uses_shared_and_position_shifts(self) -> None:
        resolution = resolve_shift(self.db, employee=self.employee, work_date=WORK_DATE, instant_utc=utc(2026, 3, 2, 13, 50))

        self.assertEqual(resolution.status, ShiftResolutionStatus.INFERRED)
        self.assertEqual(resolution.shift.id, self.evening.id)

    def test_recorded_shift_yields_to_later_assignment(self) -> None:
        record = AttendanceRecord(
            employee_id=self.employee.id,
            work_date=WORK_DATE,
            shift=self.day,
            shift_source=ShiftSource.INFERRED,
            check_in_time=utc(2026, 3, 2, 9, 0),
        )
        self.db.add(record)
        self.db.commit()

        cached = resolve_recorded_shift(self.db, record=record)
        add_assignment(self.db, employee=self.employee, work_date=WORK_DATE, shift=self.evening)
        overridden = resolve_recorded_shift(self.db, record=record)

        self.assertEqual(cached.shift.id, self.day.id)
        self.assertEqual(cached.status, ShiftResolutionStatus.INFERRED)
        self.assertEqual(overridden.status, ShiftResolutionStatus.ASSIGNED)
        self.assertEqual(overridden.shift.id, self.evening.id)

    def _assigned_record(self, shift: Shift, check_in_hour: int) -> AttendanceRecord:
        record = AttendanceRecord(
            employee_id=self.employee.id,
            work_date=WORK_DATE,
            shift=shift,
            shift_source=ShiftSource.ASSIGNED,
            check_in_time=utc(2026, 3, 2, check_in_hour, 0),
        )
        self.db.add(record)
        self.db.commit()
        return record

    def test_cleared_assignment_is_inferred_again(self) -> None:
        record = self._assigned_record(self.evening, 14)

        resolution = resolve_recorded_shift(self.db, record=record, tz=UTC)

        self.assertEqual(resolution.status, ShiftResolutionStatus.INFERRED)
        self.assertEqual(resolution.shift.id, self.evening.id)

    def test_cleared_assignment_without_matching_shift_is_unassigned(self) -> None:
        record = self._assigned_record(self.kitchen, 3)

        resolution = resolve_recorded_shift(self.db, record=record, tz=UTC)

        self.assertEqual(resolution.status, ShiftResolutionStatus.UNASSIGNED)
        self.assertIsNone(resolution.shift)

    def test_upsert_rejects_shift_of_other_position(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            upsert_shift_assignment(
                self.db,
                employee=self.employee,
                work_date=WORK_DATE,
                shift_id=self.kitchen.id,
                is_day_off=False,
                assigned_by="admin",
            )

        self.assertEqual(ctx.exception.code, "SHIFT_POSITION_MISMATCH")

    def test_upsert_clears_assignment(self) -> None:
        add_assignment(self.db, employee=self.employee, work_date=WORK_DATE, shift=self.day)

        result = upsert_shift_assignment(
            self.db,
            employee=self.employee,
            work_date=WORK_DATE,
            shift_id=None,
            is_day_off=False,
            assigned_by="admin",
        )
        self.db.commit()

        self.assertIsNone(result)
        resolution = resolve_shift(self.db, employee=self.employee, work_date=WORK_DATE, instant_utc=utc(2026, 3, 2, 3, 0))
        self.assertEqual(resolution.status, ShiftResolutionStatus.UNASSIGNED)


if __name__ == "__main__":
    unittest.main()
