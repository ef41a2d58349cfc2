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
    "members": {"id", "photo_url", "role", "group_id", "department_id"},
    "departments": {"id", "location", "geofence_radius_m", "start_time", "end_time"},
    "groups": {"id", "location", "geofence_radius_m", "start_time", "end_time"},
    "attendance": {"id", "member_id", "attendance_date", "check_in_time", "check_out_time", "status"},
    "attendance_history": {"id", "attendance_id", "attendance_date", "archived_at"},
    "alembic_version": {"version_num"},
}

REQUIRED_ENUM_VALUES: dict[str, set[str]] = {
    "attendance_status": {"present", "late", "early_out", "no_checkout", "absent"},
}


# Ledger invariants rely on these keys: one live row per member-day and one
# history row per archived live row.
REQUIRED_UNIQUE_KEYS: dict[str, list[frozenset[str]]] = {
    "attendance": [frozenset({"member_id", "attendance_date"})],
    "attendance_history": [frozenset({"attendance_id"})],
}


def _check_columns(inspector: Any, issues: list[str]) -> None:
    for table_name, required_columns in REQUIRED_TABLE_COLUMNS.items():
        try:
            column_names = {str(item.get("name")) for item in inspector.get_columns(table_name)}
        except Exception as exc:
            issues.append(f"TABLE_UNREADABLE:{table_name}:{exc.__class__.__name__}")
            continue

        missing_columns = sorted(item for item in required_columns if item not in column_names)
        if missing_columns:
            issues.append(f"MISSING_COLUMNS:{table_name}:{','.join(missing_columns)}")


def _check_unique_keys(inspector: Any, issues: list[str], warnings: list[str]) -> None:
    for table_name, required_keys in REQUIRED_UNIQUE_KEYS.items():
        try:
            constraints = inspector.get_unique_constraints(table_name) or []
            indexes = inspector.get_indexes(table_name) or []
        except Exception as exc:
            warnings.append(f"UNIQUE_INSPECTION_FAILED:{table_name}:{exc.__class__.__name__}")
            continue

        present = {frozenset(item.get("column_names") or []) for item in constraints}
        present.update(
            frozenset(item.get("column_names") or [])
            for item in indexes
            if item.get("unique")
        )
        for key in required_keys:
            if key not in present:
                issues.append(f"MISSING_UNIQUE_KEY:{table_name}:{','.join(sorted(key))}")


def _check_enums(inspector: Any, issues: list[str], warnings: list[str]) -> None:
    try:
        enums = inspector.get_enums() or []
    except Exception as exc:
        # Only PostgreSQL exposes named enums.
        warnings.append(f"ENUM_INSPECTION_FAILED:{exc.__class__.__name__}")
        return

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


def _check_alembic_version(engine: Engine, issues: list[str]) -> None:
    try:
        with engine.connect() as connection:
            row = connection.execute(text("SELECT version_num FROM alembic_version LIMIT 1")).scalar()
    except Exception as exc:
        issues.append(f"ALEMBIC_VERSION_CHECK_FAILED:{exc.__class__.__name__}")
        return
    if not (str(row).strip() if row is not None else ""):
        issues.append("ALEMBIC_VERSION_EMPTY")


def verify_runtime_schema(engine: Engine) -> SchemaGuardResult:
    issues: list[str] = []
    warnings: list[str] = []
    checked_at_utc = datetime.now(timezone.utc)
    inspector = inspect(engine)

    _check_columns(inspector, issues)
    _check_unique_keys(inspector, issues, warnings)
    _check_enums(inspector, issues, warnings)
    _check_alembic_version(engine, issues)

    return SchemaGuardResult(
        ok=len(issues) == 0,
        checked_at_utc=checked_at_utc,
        issues=issues,
        warnings=warnings,
    )
