"""
tests/test_models.py - テーブル定義とスキーマ作成スクリプトのテスト
"""

from sqlalchemy.dialects import postgresql
from sqlalchemy.schema import CreateTable

from app.models import Base
from migrations.run_migration import missing_tables

EXPECTED_TABLES = {
    "users",
    "department_teams",
    "department_permissions",
    "goals",
    "goal_assignees",
    "goal_support",
    "goal_tasks",
    "goal_comments",
    "goal_attachments",
    "goal_ai_analysis",
    "workflow_rules",
    "workflow_configurations",
    "ai_configurations",
    "notifications",
    "audit_logs",
}


def test_all_tables_are_defined():
    assert set(Base.metadata.tables) == EXPECTED_TABLES


def test_every_table_is_tenant_scoped():
    for name, table in Base.metadata.tables.items():
        assert "organization_id" in table.columns, name


def test_tables_compile_for_postgresql():
    dialect = postgresql.dialect()
    for table in Base.metadata.sorted_tables:
        ddl = str(CreateTable(table).compile(dialect=dialect))
        assert ddl.startswith(f"\nCREATE TABLE {table.name}")


def test_missing_tables():
    existing = ["users", "goals", "unrelated"]
    missing = missing_tables(existing)
    assert "users" not in missing
    assert "goal_tasks" in missing
    assert "unrelated" not in missing
    assert len(missing) == len(EXPECTED_TABLES) - 2
