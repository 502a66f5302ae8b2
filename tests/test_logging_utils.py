from __future__ import annotations

import json
import logging
import sys
import unittest
from datetime import date

from shiftledger.logging_utils import JsonFormatter


def _record(msg: str, *, extra: dict[str, object] | None = None, exc_info=None) -> logging.LogRecord:  # type: ignore[no-untyped-def]
    record = logging.LogRecord("shiftledger.ledger", logging.WARNING, __file__, 10, msg, None, exc_info)
    for key, value in (extra or {}).items():
        setattr(record, key, value)
    return record


class JsonFormatterTests(unittest.TestCase):
    def test_extras_become_top_level_keys(self) -> None:
        line = JsonFormatter().format(
            _record("ledger_basic_mode", extra={"employee_id": 7, "work_date": date(2026, 3, 2)})
        )
        payload = json.loads(line)

        self.assertEqual(payload["message"], "ledger_basic_mode")
        self.assertEqual(payload["level"], "WARNING")
        self.assertEqual(payload["logger"], "shiftledger.ledger")
        self.assertEqual(payload["employee_id"], 7)
        self.assertEqual(payload["work_date"], "2026-03-02")
        self.assertNotIn("lineno", payload)

    def test_exception_is_rendered(self) -> None:
        try:
            raise ValueError("bad reset time")
        except ValueError:
            exc_info = sys.exc_info()

        payload = json.loads(JsonFormatter().format(_record("work_day_boundary_fallback", exc_info=exc_info)))

        self.assertIn("ValueError: bad reset time", payload["exception"])


if __name__ == "__main__":
    unittest.main()
