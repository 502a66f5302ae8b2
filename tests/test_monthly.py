from __future__ import annotations

from datetime import date
import unittest

from ledger_fixtures import add_employee, build_session_factory, utc
from shiftledger.errors import ApiError
from shiftledger.models import CalculationMode, MonthlyShift
from shiftledger.services.monthly import get_monthly_summary, month_bounds, summarize_ledger_rows


def _row(
    day: int,
    *,
    regular: float = 0.0,
    overtime: float = 0.0,
    delay_minutes: float = 0.0,
    is_day_off: bool = False,
    needs_review: bool = False,
) -> MonthlyShift:
    return MonthlyShift(
        employee_id=1,
        work_date=date(2026, 3, day),
        check_in_time=None if is_day_off else utc(2026, 3, day, 9, 0),
        regular_hours=regular,
        overtime_hours=overtime,
        worked_hours=regular + overtime,
        delay_minutes=delay_minutes,
        is_day_off=is_day_off,
        calculation_mode=CalculationMode.DAY_OFF if is_day_off else CalculationMode.FULL,
        needs_review=needs_review,
    )


class MonthlySummaryTests(unittest.TestCase):
    def _summarize(self, rows: list[MonthlyShift]):  # type: ignore[no-untyped-def]
        return summarize_ledger_rows(
            rows,
            employee_id=1,
            start_date=date(2026, 3, 1),
            end_date=date(2026, 3, 31),
        )

    def test_overtime_offsets_delay(self) -> None:
        summary = self._summarize(
            [
                _row(2, regular=8.0, overtime=5.0),
                _row(3, regular=5.0, delay_minutes=180.0),
            ]
        )

        self.assertAlmostEqual(summary.overtime_hours, 5.0)
        self.assertAlmostEqual(summary.delay_hours, 3.0)
        self.assertAlmostEqual(summary.net_overtime_hours, 2.0)
        self.assertAlmostEqual(summary.net_delay_hours, 0.0)

    def test_delay_larger_than_overtime_remains(self) -> None:
        summary = self._summarize(
            [
                _row(2, regular=7.0, overtime=1.0),
                _row(3, regular=4.0, delay_minutes=240.0),
            ]
        )

        self.assertAlmostEqual(summary.net_overtime_hours, 0.0)
        self.assertAlmostEqual(summary.net_delay_hours, 3.0)

    def test_day_off_rows_are_counted_separately(self) -> None:
        summary = self._summarize(
            [
                _row(2, regular=8.0),
                _row(3, is_day_off=True),
                _row(4, regular=6.0, overtime=2.0, needs_review=True),
            ]
        )

        self.assertEqual(summary.working_days, 2)
        self.assertEqual(summary.day_off_days, 1)
        self.assertEqual(summary.needs_review_days, 1)
        self.assertAlmostEqual(summary.regular_hours, 14.0)
        self.assertAlmostEqual(summary.average_hours_per_day, 8.0)

    def test_empty_period(self) -> None:
        summary = self._summarize([])

        self.assertEqual(summary.working_days, 0)
        self.assertEqual(summary.average_hours_per_day, 0.0)
        self.assertEqual(summary.net_overtime_hours, 0.0)

    def test_month_bounds(self) -> None:
        self.assertEqual(month_bounds(2028, 2), (date(2028, 2, 1), date(2028, 2, 29)))
        self.assertEqual(month_bounds(2026, 12), (date(2026, 12, 1), date(2026, 12, 31)))
        with self.assertRaises(ApiError) as ctx:
            month_bounds(2026, 13)
        self.assertEqual(ctx.exception.code, "INVALID_DATE_RANGE")

    def test_monthly_summary_reads_persisted_rows_of_that_month_only(self) -> None:
        db = build_session_factory()()
        self.addCleanup(db.close)
        employee = add_employee(db)
        for work_date, overtime in ((date(2026, 2, 28), 4.0), (date(2026, 3, 1), 1.5), (date(2026, 3, 31), 0.5)):
            db.add(
                MonthlyShift(
                    employee_id=employee.id,
                    work_date=work_date,
                    check_in_time=utc(work_date.year, work_date.month, work_date.day, 9, 0),
                    regular_hours=8.0,
                    overtime_hours=overtime,
                    worked_hours=8.0 + overtime,
                    calculation_mode=CalculationMode.FULL,
                )
            )
        db.commit()

        summary = get_monthly_summary(db, employee_id=employee.id, year=2026, month=3)

        self.assertEqual(summary.working_days, 2)
        self.assertAlmostEqual(summary.overtime_hours, 2.0)
        self.assertEqual(summary.start_date, date(2026, 3, 1))
        self.assertEqual(summary.end_date, date(2026, 3, 31))


if __name__ == "__main__":
    unittest.main()
