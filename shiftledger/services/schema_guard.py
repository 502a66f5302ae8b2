from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine


@dataclass(frozen=True, slots=True)
class SchemaGuardResult:
    ok: bool
    checked_at_utc: datetime
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "checked_at_utc": self.checked_at_utc.isoformat(),
            "issues": list(self.issues),
            "warnings": list(self.warnings),
            "issue_count": len(self.issues),
            "warning_count": len(self.warnings),
        }


REQUIRED_TABLE_COLUMNS: dict[str, set[str]] = {
    "employees": {"id", "position", "is_active"},
    "shifts": {"id", "kind", "start_time_local", "end_time_local", "all_time_overtime", "is_active"},
    "shift_assignments": {"employee_id", "work_date", "shift_id", "is_day_off"},
    "attendance_records": {"id", "employee_id", "work_date", "check_in_time", "check_out_time", "version_id"},
    "break_sessions": {"id", "attendance_record_id", "start_time", "end_time", "reason"},
    "monthly_shifts": {"employee_id", "work_date", "regular_hours", "overtime_hours", "delay_minutes"},
    "alembic_version": {"version_num"},
}

REQUIRED_INDEXES: dict[str, set[str]] = {
    "attendance_records": {"uq_attendance_records_open_session"},
    "break_sessions": {"uq_break_sessions_open_per_record"},
}

REQUIRED_ENUM_VALUES: dict[str, set[str]] = {
    "shift_kind": {"DAY", "NIGHT", "CUSTOM", "ALL_TIME_OVERTIME"},
    "ledger_calculation_mode": {"CHECK_IN", "FULL", "BASIC", "DAY_OFF"},
}


def verify_runtime_schema(engine: Engine) -> SchemaGuardResult:
    issues: list[str] = []
    warnings: list[str] = []
    checked_at_utc = datetime.now(timezone.utc)
    inspector = inspect(engine)

    for table_name, required_columns in REQUIRED_TABLE_COLUMNS.items():
        try:
            column_names = {str(item.get("name")) for item in inspector.get_columns(table_name)}
        except Exception as exc:  # pragma: no cover - depends on driver
            issues.append(f"TABLE_UNREADABLE:{table_name}:{exc.__class__.__name__}")
            continue

        missing_columns = sorted(item for item in required_columns if item not in column_names)
        if missing_columns:
            issues.append(f"MISSING_COLUMNS:{table_name}:{','.join(missing_columns)}")

    for table_name, required_indexes in REQUIRED_INDEXES.items():
        try:
            index_names = {str(item.get("name")) for item in inspector.get_indexes(table_name)}
        except Exception as exc:  # pragma: no cover - depends on driver
            warnings.append(f"INDEX_INSPECTION_FAILED:{table_name}:{exc.__class__.__name__}")
            continue
        missing_indexes = sorted(item for item in required_indexes if item not in index_names)
        if missing_indexes:
            issues.append(f"MISSING_INDEXES:{table_name}:{','.join(missing_indexes)}")

    try:
        enums = inspector.get_enums() or []
    except Exception as exc:
        # Only some dialects expose named enums.
        warnings.append(f"ENUM_INSPECTION_FAILED:{exc.__class__.__name__}")
        enums = []

    enum_values_by_name: dict[str, set[str]] = {}
    for enum_item in enums:
        name = str(enum_item.get("name") or "").strip()
        labels = enum_item.get("labels")
        if name and isinstance(labels, list):
            enum_values_by_name[name] = {str(label) for label in labels}

    for enum_name, required_values in REQUIRED_ENUM_VALUES.items():
        if enum_name not in enum_values_by_name:
            warnings.append(f"ENUM_NOT_FOUND:{enum_name}")
            continue
        missing_values = sorted(item for item in required_values if item not in enum_values_by_name[enum_name])
        if missing_values:
            issues.append(f"MISSING_ENUM_VALUES:{enum_name}:{','.join(missing_values)}")

    try:
        with engine.connect() as connection:
            row = connection.execute(text("SELECT version_num FROM alembic_version LIMIT 1")).scalar()
            if not (str(row).strip() if row is not None else ""):
                issues.append("ALEMBIC_VERSION_EMPTY")
    except Exception as exc:  # pragma: no cover - depends on driver
        issues.append(f"ALEMBIC_VERSION_CHECK_FAILED:{exc.__class__.__name__}")

    return SchemaGuardResult(
        ok=len(issues) == 0,
        checked_at_utc=checked_at_utc,
        issues=issues,
        warnings=warnings,
    )
