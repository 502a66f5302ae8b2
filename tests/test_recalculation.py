from __future__ import annotations

from datetime import date, time
import unittest
from unittest.mock import patch
from zoneinfo import ZoneInfo

from ledger_fixtures import add_employee, add_shift, build_session_factory, utc
from shiftledger.errors import ApiError
from shiftledger.models import CalculationMode, ShiftKind
from shiftledger.services import recalculation
from shiftledger.services.attendance import check_in, check_out
from shiftledger.services.daily_ledger import get_daily_ledger
from shiftledger.services.recalculation import (
    RecalculationOutcome,
    recalculate_range,
    set_shift_assignment,
)
from shiftledger.services.work_day import resolve_work_day_boundaries

UTC = ZoneInfo("UTC")


class RecalculationTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = build_session_factory()()
        self.employee = add_employee(self.db)
        self.shift = add_shift(self.db, name="Office", kind=ShiftKind.CUSTOM, start=time(9, 0), end=time(17, 0))

    def tearDown(self) -> None:
        self.db.close()

    def _work(self, day: int, *, start_hour: int = 9, end_hour: int = 17) -> None:
        checkin_at = utc(2026, 3, day, start_hour, 0)
        check_in(
            self.db,
            employee_id=self.employee.id,
            boundary=resolve_work_day_boundaries(checkin_at, tz=UTC),
            now_utc=checkin_at,
        )
        check_out(self.db, employee_id=self.employee.id, now_utc=utc(2026, 3, day, end_hour, 0))

    def _ledger(self, day: int):  # type: ignore[no-untyped-def]
        return get_daily_ledger(self.db, employee_id=self.employee.id, work_date=date(2026, 3, day))

    def test_day_off_without_attendance_creates_and_clears_row(self) -> None:
        change = set_shift_assignment(
            self.db,
            employee_id=self.employee.id,
            work_date=date(2026, 3, 5),
            shift_id=None,
            is_day_off=True,
            assigned_by="admin",
        )

        self.assertEqual(change.ledger.calculation_mode, CalculationMode.DAY_OFF)
        self.assertTrue(change.ledger.is_day_off)

        cleared = set_shift_assignment(
            self.db,
            employee_id=self.employee.id,
            work_date=date(2026, 3, 5),
            shift_id=None,
            is_day_off=False,
            assigned_by="admin",
        )

        self.assertIsNone(cleared.assignment)
        self.assertIsNone(cleared.ledger)
        self.assertIsNone(self._ledger(5))

    def test_late_assignment_upgrades_basic_row(self) -> None:
        # Check-in at 07:00 falls outside the office window, so the session is unassigned.
        self._work(2, start_hour=7, end_hour=15)
        self.assertEqual(self._ledger(2).calculation_mode, CalculationMode.BASIC)

        change = set_shift_assignment(
            self.db,
            employee_id=self.employee.id,
            work_date=date(2026, 3, 2),
            shift_id=self.shift.id,
            is_day_off=False,
            assigned_by="admin",
        )

        self.assertEqual(change.ledger.calculation_mode, CalculationMode.FULL)
        self.assertEqual(change.ledger.shift_id, self.shift.id)
        self.assertAlmostEqual(change.ledger.worked_hours, 8.0)
        self.assertAlmostEqual(change.ledger.delay_minutes, 0.0)

    def test_cleared_assignment_drops_the_assigned_shift(self) -> None:
        evening = add_shift(
            self.db,
            name="Evening",
            kind=ShiftKind.CUSTOM,
            start=time(14, 0),
            end=time(22, 0),
            position="cashier",
        )
        set_shift_assignment(
            self.db,
            employee_id=self.employee.id,
            work_date=date(2026, 3, 2),
            shift_id=evening.id,
            is_day_off=False,
            assigned_by="admin",
        )
        self._work(2, start_hour=16, end_hour=22)
        self.assertEqual(self._ledger(2).shift_id, evening.id)

        cleared = set_shift_assignment(
            self.db,
            employee_id=self.employee.id,
            work_date=date(2026, 3, 2),
            shift_id=None,
            is_day_off=False,
            assigned_by="admin",
        )

        # Only the shared office shift is open to an employee without a position.
        self.assertIsNone(cleared.assignment)
        self.assertEqual(cleared.ledger.shift_id, self.shift.id)
        self.assertEqual(cleared.ledger.calculation_mode, CalculationMode.FULL)
        self.assertAlmostEqual(cleared.ledger.regular_hours, 6.0)
        self.assertAlmostEqual(cleared.ledger.delay_minutes, 120.0)

    def test_day_off_assigned_after_attendance_flags_row(self) -> None:
        self._work(2)

        change = set_shift_assignment(
            self.db,
            employee_id=self.employee.id,
            work_date=date(2026, 3, 2),
            shift_id=None,
            is_day_off=True,
            assigned_by="admin",
        )

        self.assertEqual(change.ledger.calculation_mode, CalculationMode.DAY_OFF)
        self.assertTrue(change.ledger.needs_review)
        self.assertIsNotNone(change.ledger.check_in_time)
        self.assertEqual(change.ledger.regular_hours, 0.0)

    def test_recalculating_twice_gives_same_rows(self) -> None:
        self._work(2)
        self._work(3, end_hour=15)

        first = recalculate_range(
            self.db,
            employee_id=self.employee.id,
            start_date=date(2026, 3, 1),
            end_date=date(2026, 3, 31),
        )
        snapshot = [(row.regular_hours, row.overtime_hours, row.delay_minutes) for row in (self._ledger(2), self._ledger(3))]
        second = recalculate_range(
            self.db,
            employee_id=self.employee.id,
            start_date=date(2026, 3, 1),
            end_date=date(2026, 3, 31),
        )

        self.assertTrue(first.ok)
        self.assertEqual([item.work_date for item in second.days], [date(2026, 3, 2), date(2026, 3, 3)])
        self.assertEqual(
            [(row.regular_hours, row.overtime_hours, row.delay_minutes) for row in (self._ledger(2), self._ledger(3))],
            snapshot,
        )

    def test_failing_day_does_not_block_the_rest(self) -> None:
        self._work(2)
        self._work(3)
        original = recalculation.recalculate_work_day

        def flaky(db, *, employee_id, work_date):  # type: ignore[no-untyped-def]
            if work_date == date(2026, 3, 2):
                raise RuntimeError("boom")
            return original(db, employee_id=employee_id, work_date=work_date)

        with patch("shiftledger.services.recalculation.recalculate_work_day", side_effect=flaky):
            with self.assertLogs("shiftledger.recalculation", level="ERROR"):
                report = recalculate_range(
                    self.db,
                    employee_id=self.employee.id,
                    start_date=date(2026, 3, 1),
                    end_date=date(2026, 3, 31),
                )

        outcomes = {item.work_date: item.outcome for item in report.days}
        self.assertEqual(outcomes[date(2026, 3, 2)], RecalculationOutcome.FAILED)
        self.assertEqual(outcomes[date(2026, 3, 3)], RecalculationOutcome.OK)
        self.assertEqual(report.failed_count, 1)
        self.assertFalse(report.ok)
        self.assertIsNotNone(self._ledger(2))

    def test_invalid_ranges(self) -> None:
        for start_date, end_date in (
            (date(2026, 3, 31), date(2026, 3, 1)),
            (date(2025, 1, 1), date(2026, 1, 2)),
        ):
            with self.assertRaises(ApiError) as ctx:
                recalculate_range(self.db, employee_id=self.employee.id, start_date=start_date, end_date=end_date)
            self.assertEqual(ctx.exception.code, "INVALID_DATE_RANGE")

    def test_day_off_with_shift_is_invalid(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            set_shift_assignment(
                self.db,
                employee_id=self.employee.id,
                work_date=date(2026, 3, 2),
                shift_id=self.shift.id,
                is_day_off=True,
                assigned_by="admin",
            )

        self.assertEqual(ctx.exception.code, "INVALID_ASSIGNMENT")


if __name__ == "__main__":
    unittest.main()
