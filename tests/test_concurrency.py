from __future__ import annotations

import os
import tempfile
import unittest
from unittest.mock import patch
from zoneinfo import ZoneInfo

from sqlalchemy import func, select

from ledger_fixtures import add_employee, build_file_session_factory, utc
from shiftledger.errors import ApiError
from shiftledger.models import AttendanceRecord, BreakSession, MonthlyShift
from shiftledger.services.attendance import check_in, find_open_record
from shiftledger.services.breaks import start_break
from shiftledger.services.work_day import normalize_ts, resolve_work_day_boundaries

UTC = ZoneInfo("UTC")


class TwoSessionRaceTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmpdir = tempfile.TemporaryDirectory()
        self.session_factory = build_file_session_factory(os.path.join(self._tmpdir.name, "ledger.db"))
        with self.session_factory() as db:
            self.employee_id = add_employee(db, full_name="Can Yilmaz").id
        self.first = self.session_factory()
        self.second = self.session_factory()

    def tearDown(self) -> None:
        self.first.close()
        self.second.close()
        self.session_factory.kw["bind"].dispose()
        self._tmpdir.cleanup()

    def _check_in(self, db, now):  # type: ignore[no-untyped-def]
        return check_in(
            db,
            employee_id=self.employee_id,
            boundary=resolve_work_day_boundaries(now, tz=UTC),
            now_utc=now,
        )

    def _count(self, model) -> int:  # type: ignore[no-untyped-def]
        with self.session_factory() as db:
            return db.scalar(select(func.count()).select_from(model))

    def test_only_one_of_two_racing_break_starts_wins(self) -> None:
        self._check_in(self.first, utc(2026, 3, 2, 9, 0))
        record_first = find_open_record(self.first, employee_id=self.employee_id)
        record_second = find_open_record(self.second, employee_id=self.employee_id)
        # Both sessions saw the record without a break before either started one.
        self.assertEqual(record_second.break_sessions, [])
        self.assertFalse(record_second.is_on_break)

        start_break(self.first, record=record_first, reason="lunch", now_utc=utc(2026, 3, 2, 12, 0))
        with self.assertRaises(ApiError) as ctx:
            start_break(self.second, record=record_second, reason="call", now_utc=utc(2026, 3, 2, 12, 0, 5))

        self.assertEqual(ctx.exception.code, "BREAK_ALREADY_OPEN")
        self.assertEqual(ctx.exception.status_code, 409)
        self.assertEqual(self._count(BreakSession), 1)
        with self.session_factory() as db:
            stored = db.scalar(select(AttendanceRecord))
            self.assertTrue(stored.is_on_break)
            self.assertEqual(stored.current_break_reason, "lunch")

    def test_duplicate_check_in_losing_the_insert_is_already_checked_in(self) -> None:
        self._check_in(self.first, utc(2026, 3, 2, 9, 0))

        # The second request read no session before the first one committed.
        with patch("shiftledger.services.attendance.find_open_record", return_value=None), patch(
            "shiftledger.services.attendance._record_for_work_date", return_value=None
        ):
            with self.assertRaises(ApiError) as ctx:
                self._check_in(self.second, utc(2026, 3, 2, 9, 0, 2))

        self.assertEqual(ctx.exception.code, "ALREADY_CHECKED_IN")
        self.assertEqual(ctx.exception.status_code, 409)
        self.assertEqual(self._count(AttendanceRecord), 1)
        self.assertEqual(self._count(MonthlyShift), 1)

    def test_session_recovers_after_losing_a_race(self) -> None:
        self._check_in(self.first, utc(2026, 3, 2, 9, 0))
        with patch("shiftledger.services.attendance.find_open_record", return_value=None), patch(
            "shiftledger.services.attendance._record_for_work_date", return_value=None
        ):
            with self.assertRaises(ApiError):
                self._check_in(self.second, utc(2026, 3, 2, 9, 0, 2))

        record = find_open_record(self.second, employee_id=self.employee_id)

        self.assertIsNotNone(record)
        self.assertEqual(normalize_ts(record.check_in_time), utc(2026, 3, 2, 9, 0))


if __name__ == "__main__":
    unittest.main()
