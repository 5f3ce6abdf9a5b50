"""
tests/test_admin_export.py - エクスポートのシート生成テスト
"""

from datetime import date, datetime

import pytest

from lib.admin_export import (
    AdminExportService,
    AssignmentExportOptions,
    GoalExportFilters,
    assignee_rows,
    assignment_summary_rows,
    department_overview_rows,
    distribution_rows,
    goal_rows,
    goal_statistics_rows,
    overdue_rows,
    overdue_severity,
    performance_rows,
    team_detail_rows,
    user_assignment_rows,
    workload_rows,
)
from lib.errors import PermissionDeniedError, ValidationError

TODAY = date(2025, 6, 10)


def _users():
    return [
        {
            "id": "u-1",
            "full_name": "山田",
            "email": "yamada@example.com",
            "department": "営業部",
            "team": "第一課",
            "role": "Head",
            "is_active": True,
            "goals": [{"task_status": "completed"}, {"task_status": "pending"}],
            "tasks": [
                {
                    "title": "見積もり",
                    "status": "completed",
                    "pdca_phase": "Plan",
                    "due_date": "2025-06-01",
                    "completed_at": datetime(2025, 5, 30, 12, 0),
                    "created_at": datetime(2025, 5, 28, 12, 0),
                    "estimated_hours": 4,
                    "actual_hours": 5,
                },
                {
                    "title": "訪問",
                    "status": "pending",
                    "pdca_phase": "Do",
                    "priority": "High",
                    "goal_subject": "売上拡大",
                    "due_date": "2025-05-01",
                    "estimated_hours": 6,
                    "actual_hours": 0,
                },
            ],
        },
        {
            "id": "u-2",
            "full_name": "佐藤",
            "email": "sato@example.com",
            "department": None,
            "role": "Employee",
            "is_active": False,
            "goals": [],
            "tasks": [],
        },
    ]


@pytest.mark.parametrize("days,expected", [(1, "Low"), (7, "Low"), (8, "Medium"), (15, "High"), (31, "Critical")])
def test_overdue_severity(days, expected):
    assert overdue_severity(days) == expected


def test_filters_from_dict_ignores_unknown_keys():
    filters = GoalExportFilters.from_dict({"departments": ["営業部"], "foo": 1})
    assert filters.departments == ["営業部"]
    assert filters.statuses == []


class TestGoalSheets:
    def test_goal_rows(self):
        rows = goal_rows([{
            "id": "g-1",
            "subject": "売上拡大",
            "teams": ["第一課", "第二課"],
            "owner_email": "owner@example.com",
            "target_date": date(2025, 3, 31),
            "created_at": datetime(2025, 1, 2, 9, 30),
            "assignees": [{"task_status": "completed"}, {"task_status": "pending"}],
        }])
        row = rows[0]
        assert row["Teams"] == "第一課, 第二課"
        assert row["Owner"] == "owner@example.com"
        assert row["Target Date"] == "2025-03-31"
        assert row["Created"] == "2025-01-02"
        assert row["Start Date"] == ""
        assert row["Total Assignees"] == 2
        assert row["Completed Assignees"] == 1
        assert row["Progress %"] == 0

    def test_assignee_rows_flattens_goals(self):
        rows = assignee_rows([
            {"id": "g-1", "subject": "A", "assignees": [{"email": "a@example.com", "task_status": "pending"}]},
            {"id": "g-2", "subject": "B", "assignees": []},
        ])
        assert len(rows) == 1
        assert rows[0]["Assignee"] == "a@example.com"


class TestDepartmentSheets:
    def test_overview_counts(self):
        teams = [
            {"department": "開発部", "team": "General", "is_active": True, "description": "開発部 department"},
            {"department": "開発部", "team": "基盤", "is_active": False},
            {"department": "営業部", "team": "General", "is_active": True},
        ]
        users = [
            {"department": "開発部", "role": "Head", "team": "基盤"},
            {"department": "開発部", "role": "Employee", "team": "基盤"},
            {"department": "人事部", "role": "Employee"},
        ]
        rows = department_overview_rows(teams, users)
        assert [r["Department"] for r in rows] == ["営業部", "開発部"]
        dev = rows[1]
        assert dev["Teams"] == 2
        assert dev["Active Teams"] == 1
        assert dev["Users"] == 2
        assert dev["Heads"] == 1
        assert dev["Description"] == "開発部 department"

        details = team_detail_rows(teams, users)
        assert details[1]["User Count"] == 2
        assert details[1]["Is Active"] == "No"

    def test_user_assignment_rows(self):
        rows = user_assignment_rows(
            [{"id": "u-1", "full_name": "山田", "is_active": True}],
            [{"user_id": "u-1", "department": "開発部"}, {"user_id": "u-1", "department": "人事部"}],
        )
        assert rows[0]["Additional Permissions"] == "開発部, 人事部"
        assert rows[0]["Is Active"] == "Yes"

    def test_goal_statistics(self):
        rows = goal_statistics_rows([
            {"department": "営業部", "status": "Completed", "priority": "High"},
            {"department": "営業部", "status": "Do", "priority": "Critical"},
            {"department": "営業部", "status": "On Hold", "priority": "Low"},
            {"department": None, "status": "Plan"},
        ])
        sales = rows[1] if rows[0]["Department"] == "Unassigned" else rows[0]
        assert sales["Total Goals"] == 3
        assert sales["Completed Goals"] == 1
        assert sales["In Progress Goals"] == 1
        assert sales["High Priority Goals"] == 1
        assert sales["Critical Priority Goals"] == 1
        assert sales["Completion Rate %"] == 33


class TestAssignmentSheets:
    def test_summary(self):
        rows = {r["Metric"]: r["Value"] for r in assignment_summary_rows(_users())}
        assert rows["Total Users"] == 2
        assert rows["Active Users"] == 1
        assert rows["Total Task Assignments"] == 2
        assert rows["Average Tasks per User"] == 2
        assert rows["Unassigned Department Users"] == 1

    def test_workload(self):
        row = workload_rows(_users(), AssignmentExportOptions())[0]
        assert row["Goal Completion Rate %"] == 50
        assert row["Task Completion Rate %"] == 50
        assert row["Plan Tasks"] == 1
        assert row["Do Tasks"] == 1
        assert row["Estimated Hours"] == 10
        assert row["Actual Hours"] == 5
        assert row["Time Variance %"] == -50

    def test_workload_without_breakdown(self):
        options = AssignmentExportOptions(pdca_breakdown=False, time_tracking=False)
        row = workload_rows(_users(), options)[0]
        assert "Plan Tasks" not in row
        assert "Estimated Hours" not in row

    def test_performance(self):
        row = performance_rows(_users(), TODAY)[0]
        assert row["Completed"] == 1
        assert row["Overdue"] == 1
        assert row["On Time Completion %"] == 100
        assert row["Average Days to Complete"] == 2
        assert row["Productivity Score"] == 54

    def test_overdue(self):
        rows = overdue_rows(_users(), TODAY)
        assert len(rows) == 1
        assert rows[0]["Task"] == "訪問"
        assert rows[0]["Days Overdue"] == 40
        assert rows[0]["Severity"] == "Critical"

    def test_distribution(self):
        rows = distribution_rows(_users())
        departments = [r for r in rows if r["Category"] == "Department"]
        assert {r["Name"] for r in departments} == {"営業部", "Unassigned"}
        roles = {r["Name"]: r for r in rows if r["Category"] == "Role"}
        assert roles["Head"]["Avg Tasks per User"] == 2


class TestAdminExportService:
    def test_non_admin_is_rejected(self, mock_db_pool, employee_user):
        with pytest.raises(PermissionDeniedError):
            AdminExportService(pool=mock_db_pool).export_goals(employee_user)

    def test_unsupported_format(self, mock_db_pool, admin_user):
        with pytest.raises(ValidationError):
            AdminExportService(pool=mock_db_pool).export_assignments(admin_user, file_format="json")

    def test_assignments_csv(self, mock_db_pool, admin_user, monkeypatch):
        service = AdminExportService(pool=mock_db_pool)
        monkeypatch.setattr(service, "load_assignment_data", lambda org_id, include_inactive: _users())
        export = service.export_assignments(admin_user, file_format="csv", today=TODAY)
        assert export.filename == "user-assignments-2025-06-10.csv"
        assert export.content_type.startswith("text/csv")
        lines = export.content.decode("utf-8").splitlines()
        assert lines[0].startswith("User,Email,Department")
        assert len(lines) == 3
