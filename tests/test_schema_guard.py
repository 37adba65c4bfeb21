from __future__ import annotations

import unittest
from types import SimpleNamespace
from unittest.mock import patch

from db_support import make_engine
from sqlalchemy import text

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
    def __init__(self, version_value, dialect_name: str = "postgresql"):
        self._version_value = version_value
        self.dialect = SimpleNamespace(name=dialect_name)

    def connect(self):  # type: ignore[no-untyped-def]
        return _FakeConnection(self._version_value)


class _FakeInspector:
    def __init__(
        self,
        *,
        columns_by_table: dict[str, set[str]],
        enums: list[dict[str, object]],
        indexes: list[dict[str, object]],
    ):
        self._columns_by_table = columns_by_table
        self._enums = enums
        self._indexes = indexes

    def get_columns(self, table_name: str):  # type: ignore[no-untyped-def]
        return [{"name": item} for item in self._columns_by_table[table_name]]

    def get_indexes(self, _table_name: str):  # type: ignore[no-untyped-def]
        return self._indexes

    def get_enums(self):  # type: ignore[no-untyped-def]
        return self._enums


HEALTHY_ENUMS = [
    {"name": "leave_request_status", "labels": ["pending", "approved", "rejected"]},
    {"name": "shift_close_source", "labels": ["user", "reconciler"]},
]
OPEN_SHIFT_INDEX = [{"name": "uq_attendance_logs_open_shift", "unique": True, "column_names": ["employee_id"]}]


class SchemaGuardTests(unittest.TestCase):
    def test_verify_runtime_schema_ok_when_schema_is_complete(self) -> None:
        fake_inspector = _FakeInspector(
            columns_by_table={name: set(columns) for name, columns in REQUIRED_TABLE_COLUMNS.items()},
            enums=HEALTHY_ENUMS,
            indexes=OPEN_SHIFT_INDEX,
        )

        with patch("attendance_engine.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(_FakeEngine("0001_initial"))  # type: ignore[arg-type]

        self.assertTrue(result.ok)
        self.assertEqual(result.issues, [])
        self.assertEqual(result.warnings, [])

    def test_verify_runtime_schema_reports_drift(self) -> None:
        columns = {name: set(columns) for name, columns in REQUIRED_TABLE_COLUMNS.items()}
        columns["employees"] = {"id"}
        columns["attendance_logs"] = {"id", "employee_id", "clock_in", "clock_out"}
        fake_inspector = _FakeInspector(
            columns_by_table=columns,
            enums=[{"name": "leave_request_status", "labels": ["pending", "approved"]}],
            indexes=[{"name": "uq_attendance_logs_open_shift", "unique": False}],
        )

        with patch("attendance_engine.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(_FakeEngine(""))  # type: ignore[arg-type]

        self.assertFalse(result.ok)
        self.assertIn("MISSING_COLUMNS:employees:timezone", result.issues)
        self.assertIn("MISSING_COLUMNS:attendance_logs:closed_by", result.issues)
        self.assertIn("INDEX_NOT_UNIQUE:attendance_logs:uq_attendance_logs_open_shift", result.issues)
        self.assertIn("MISSING_ENUM_VALUES:leave_request_status:rejected", result.issues)
        self.assertIn("ENUM_NOT_FOUND:shift_close_source", result.warnings)
        self.assertIn("ALEMBIC_VERSION_EMPTY", result.issues)

    def test_missing_open_shift_index_is_an_issue(self) -> None:
        fake_inspector = _FakeInspector(
            columns_by_table={name: set(columns) for name, columns in REQUIRED_TABLE_COLUMNS.items()},
            enums=HEALTHY_ENUMS,
            indexes=[],
        )

        with patch("attendance_engine.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(_FakeEngine("0001_initial"))  # type: ignore[arg-type]

        self.assertEqual(result.issues, ["MISSING_INDEX:attendance_logs:uq_attendance_logs_open_shift"])

    def test_sqlite_schema_from_models_passes_once_stamped(self) -> None:
        engine = make_engine()
        try:
            with engine.begin() as connection:
                connection.execute(text("CREATE TABLE alembic_version (version_num VARCHAR(32) NOT NULL)"))
                connection.execute(text("INSERT INTO alembic_version (version_num) VALUES ('0001_initial')"))

            result = verify_runtime_schema(engine)
        finally:
            engine.dispose()

        self.assertTrue(result.ok, result.issues)
        self.assertEqual(result.to_dict()["issue_count"], 0)


if __name__ == "__main__":
    unittest.main()
