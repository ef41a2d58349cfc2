from __future__ import annotations

import unittest
from unittest.mock import patch

from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from attendance_engine.db import Base
from attendance_engine.services.schema_guard import REQUIRED_TABLE_COLUMNS, verify_runtime_schema


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
        enums: list[dict[str, object]],
        unique_by_table: dict[str, list[list[str]]] | None = None,
    ):
        self._columns_by_table = columns_by_table
        self._enums = enums
        self._unique_by_table = unique_by_table or {}

    def get_columns(self, table_name: str):  # type: ignore[no-untyped-def]
        columns = self._columns_by_table[table_name]
        return [{"name": item} for item in columns]

    def get_unique_constraints(self, table_name: str):  # type: ignore[no-untyped-def]
        return [{"column_names": names} for names in self._unique_by_table.get(table_name, [])]

    def get_indexes(self, _table_name: str):  # type: ignore[no-untyped-def]
        return []

    def get_enums(self):  # type: ignore[no-untyped-def]
        return self._enums


ALL_ENUM_LABELS = ["present", "late", "early_out", "no_checkout", "absent"]
ALL_UNIQUE_KEYS = {
    "attendance": [["member_id", "attendance_date"]],
    "attendance_history": [["attendance_id"]],
}


class SchemaGuardTests(unittest.TestCase):
    def test_verify_runtime_schema_ok_when_required_columns_exist(self) -> None:
        fake_inspector = _FakeInspector(
            columns_by_table={name: set(columns) for name, columns in REQUIRED_TABLE_COLUMNS.items()},
            enums=[{"name": "attendance_status", "labels": ALL_ENUM_LABELS}],
            unique_by_table=ALL_UNIQUE_KEYS,
        )
        fake_engine = _FakeEngine("0001_initial")

        with patch("attendance_engine.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(fake_engine)  # type: ignore[arg-type]

        self.assertTrue(result.ok)
        self.assertEqual(result.issues, [])
        self.assertEqual(result.warnings, [])

    def test_verify_runtime_schema_reports_missing_columns_keys_and_enum_values(self) -> None:
        columns = {name: set(columns) for name, columns in REQUIRED_TABLE_COLUMNS.items()}
        columns["attendance"] = {"id", "member_id", "attendance_date", "status"}
        columns["attendance_history"] = {"id", "attendance_date"}
        fake_inspector = _FakeInspector(
            columns_by_table=columns,
            enums=[{"name": "attendance_status", "labels": ["present", "late", "absent"]}],
            unique_by_table={"attendance_history": [["attendance_id"]]},
        )
        fake_engine = _FakeEngine("")

        with patch("attendance_engine.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(fake_engine)  # type: ignore[arg-type]

        self.assertFalse(result.ok)
        self.assertIn("MISSING_COLUMNS:attendance:check_in_time,check_out_time", result.issues)
        self.assertIn("MISSING_COLUMNS:attendance_history:archived_at,attendance_id", result.issues)
        self.assertIn("MISSING_UNIQUE_KEY:attendance:attendance_date,member_id", result.issues)
        self.assertIn("MISSING_ENUM_VALUES:attendance_status:early_out,no_checkout", result.issues)
        self.assertIn("ALEMBIC_VERSION_EMPTY", result.issues)

    def test_models_satisfy_guard_on_sqlite(self) -> None:
        engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(engine)
        with engine.begin() as connection:
            connection.exec_driver_sql("CREATE TABLE alembic_version (version_num VARCHAR(32) NOT NULL)")
            connection.exec_driver_sql("INSERT INTO alembic_version (version_num) VALUES ('0001_initial')")

        result = verify_runtime_schema(engine)

        self.assertTrue(result.ok, result.issues)
        # SQLite has no named enum types.
        self.assertTrue(all(item.startswith("ENUM_") for item in result.warnings))
        engine.dispose()


if __name__ == "__main__":
    unittest.main()
