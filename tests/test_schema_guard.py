from __future__ import annotations

import unittest
from unittest.mock import patch

from sqlalchemy import text

from guardpost.services.schema_guard import verify_runtime_schema
from tests.db_fixtures import build_sqlite_engine


class _FakeInspector:
    def __init__(self, *, columns_by_table: dict[str, set[str]], enums: list[dict[str, object]]):
        self._columns_by_table = columns_by_table
        self._enums = enums

    def get_columns(self, table_name: str):  # type: ignore[no-untyped-def]
        return [{"name": item} for item in self._columns_by_table.get(table_name, set())]

    def get_enums(self):  # type: ignore[no-untyped-def]
        return self._enums


class SchemaGuardTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = build_sqlite_engine()

    def tearDown(self) -> None:
        self.engine.dispose()

    def _stamp(self, version: str) -> None:
        with self.engine.begin() as connection:
            connection.execute(text("CREATE TABLE alembic_version (version_num VARCHAR(32) NOT NULL)"))
            connection.execute(text("INSERT INTO alembic_version (version_num) VALUES (:v)"), {"v": version})

    def test_migrated_schema_passes(self) -> None:
        self._stamp("0001_initial")

        result = verify_runtime_schema(self.engine)

        self.assertTrue(result.ok)
        self.assertEqual(result.issues, [])
        self.assertEqual(result.to_dict()["issue_count"], 0)

    def test_unstamped_schema_fails(self) -> None:
        result = verify_runtime_schema(self.engine)

        self.assertFalse(result.ok)
        table_issues = [item for item in result.issues if item.startswith(("TABLE_UNREADABLE", "MISSING_COLUMNS"))]
        self.assertTrue(any("alembic_version" in item for item in table_issues))
        self.assertTrue(any(item.startswith("ALEMBIC_VERSION_CHECK_FAILED") for item in result.issues))

    def test_empty_version_is_reported(self) -> None:
        self._stamp("")

        result = verify_runtime_schema(self.engine)

        self.assertIn("ALEMBIC_VERSION_EMPTY", result.issues)

    def test_missing_columns_and_enum_values_are_reported(self) -> None:
        self._stamp("0001_initial")
        fake_inspector = _FakeInspector(
            columns_by_table={
                "guards": {"id", "employee_code", "status"},
                "site_posts": {"id", "site_id", "status"},
                "shift_types": {"id", "name", "start_time", "end_time"},
                "guard_assignments": {"id", "guard_id", "site_post_id", "shift_type_id", "effective_from", "status"},
                "attendance_records": {"id", "guard_id", "attendance_date", "status"},
                "audit_logs": {"id", "actor_type", "action", "details"},
                "alembic_version": {"version_num"},
            },
            enums=[
                {"name": "assignment_status", "labels": ["ACTIVE", "CANCELLED"]},
                {"name": "attendance_status", "labels": ["PRESENT", "LATE", "ABSENT"]},
            ],
        )

        with patch("guardpost.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(self.engine)

        self.assertFalse(result.ok)
        self.assertIn("MISSING_COLUMNS:guard_assignments:effective_to", result.issues)
        self.assertTrue(any(item.startswith("MISSING_COLUMNS:attendance_records:") for item in result.issues))
        self.assertIn("MISSING_ENUM_VALUES:attendance_status:EARLY_LEAVE,MISSED_CHECKOUT", result.issues)


if __name__ == "__main__":
    unittest.main()
