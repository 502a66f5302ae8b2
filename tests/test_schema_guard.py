from __future__ import annotations

import unittest
from unittest.mock import patch

from sqlalchemy import create_engine, text
from sqlalchemy.pool import StaticPool

from shiftledger.db import Base
from shiftledger.services.schema_guard import REQUIRED_TABLE_COLUMNS, verify_runtime_schema


class _FakeResult:
    def __init__(self, value):
        self._value = value

    def scalar(self):  # type: ignore[no-untyped-def]
        return self._value


class _FakeConnection:
    def __init__(self, version_value):
        self._version_value = version_value

    def __enter__(self):  # type: ignore[no-untyped-def]
        return self

    def __exit__(self, exc_type, exc, tb):  # type: ignore[no-untyped-def]
        return False

    def execute(self, _statement):  # type: ignore[no-untyped-def]
        return _FakeResult(self._version_value)


class _FakeEngine:
    def __init__(self, version_value):
        self._version_value = version_value

    def connect(self):  # type: ignore[no-untyped-def]
        return _FakeConnection(self._version_value)


class _FakeInspector:
    def __init__(
        self,
        *,
        columns_by_table: dict[str, set[str]],
        indexes_by_table: dict[str, set[str]],
        enums: list[dict[str, object]],
    ):
        self._columns_by_table = columns_by_table
        self._indexes_by_table = indexes_by_table
        self._enums = enums

    def get_columns(self, table_name: str):  # type: ignore[no-untyped-def]
        columns = self._columns_by_table[table_name]
        return [{"name": item} for item in columns]

    def get_indexes(self, table_name: str):  # type: ignore[no-untyped-def]
        return [{"name": item} for item in self._indexes_by_table.get(table_name, set())]

    def get_enums(self):  # type: ignore[no-untyped-def]
        return self._enums


_COMPLETE_INDEXES = {
    "attendance_records": {"uq_attendance_records_open_session", "ix_attendance_records_employee_id"},
    "break_sessions": {"uq_break_sessions_open_per_record"},
}

_COMPLETE_ENUMS = [
    {"name": "shift_kind", "labels": ["DAY", "NIGHT", "CUSTOM", "ALL_TIME_OVERTIME"]},
    {"name": "ledger_calculation_mode", "labels": ["CHECK_IN", "FULL", "BASIC", "DAY_OFF"]},
]


class SchemaGuardTests(unittest.TestCase):
    def test_verify_runtime_schema_ok_when_required_objects_exist(self) -> None:
        fake_inspector = _FakeInspector(
            columns_by_table={name: set(columns) | {"created_at"} for name, columns in REQUIRED_TABLE_COLUMNS.items()},
            indexes_by_table=_COMPLETE_INDEXES,
            enums=_COMPLETE_ENUMS,
        )
        fake_engine = _FakeEngine("0001_initial")

        with patch("shiftledger.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(fake_engine)  # type: ignore[arg-type]

        self.assertTrue(result.ok)
        self.assertEqual(result.issues, [])
        self.assertEqual(result.warnings, [])

    def test_verify_runtime_schema_reports_missing_objects(self) -> None:
        columns = {name: set(columns) for name, columns in REQUIRED_TABLE_COLUMNS.items()}
        columns["attendance_records"] = {"id", "employee_id", "work_date", "check_in_time", "check_out_time"}
        columns["shifts"] = {"id", "kind", "start_time_local", "end_time_local", "is_active"}
        fake_inspector = _FakeInspector(
            columns_by_table=columns,
            indexes_by_table={"attendance_records": {"ix_attendance_records_employee_id"}},
            enums=[
                {"name": "shift_kind", "labels": ["DAY", "NIGHT", "CUSTOM"]},
                {"name": "ledger_calculation_mode", "labels": ["CHECK_IN", "FULL", "BASIC", "DAY_OFF"]},
            ],
        )
        fake_engine = _FakeEngine("")

        with patch("shiftledger.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(fake_engine)  # type: ignore[arg-type]

        self.assertFalse(result.ok)
        self.assertIn("MISSING_COLUMNS:attendance_records:version_id", result.issues)
        self.assertIn("MISSING_COLUMNS:shifts:all_time_overtime", result.issues)
        self.assertIn("MISSING_INDEXES:attendance_records:uq_attendance_records_open_session", result.issues)
        self.assertIn("MISSING_INDEXES:break_sessions:uq_break_sessions_open_per_record", result.issues)
        self.assertIn("MISSING_ENUM_VALUES:shift_kind:ALL_TIME_OVERTIME", result.issues)
        self.assertIn("ALEMBIC_VERSION_EMPTY", result.issues)
        self.assertEqual(result.to_dict()["issue_count"], len(result.issues))

    def test_missing_enum_is_only_a_warning(self) -> None:
        fake_inspector = _FakeInspector(
            columns_by_table={name: set(columns) for name, columns in REQUIRED_TABLE_COLUMNS.items()},
            indexes_by_table=_COMPLETE_INDEXES,
            enums=[],
        )

        with patch("shiftledger.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(_FakeEngine("0001_initial"))  # type: ignore[arg-type]

        self.assertTrue(result.ok)
        self.assertIn("ENUM_NOT_FOUND:shift_kind", result.warnings)

    def test_metadata_schema_passes_on_sqlite(self) -> None:
        engine = create_engine("sqlite+pysqlite://", poolclass=StaticPool)
        Base.metadata.create_all(engine)
        with engine.begin() as connection:
            connection.execute(text("CREATE TABLE alembic_version (version_num VARCHAR(32) NOT NULL)"))
            connection.execute(text("INSERT INTO alembic_version (version_num) VALUES ('0001_initial')"))

        result = verify_runtime_schema(engine)

        self.assertTrue(result.ok, result.issues)


if __name__ == "__main__":
    unittest.main()
