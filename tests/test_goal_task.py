"""
tests/test_goal_task.py - PDCA タスクのテスト
"""

from unittest.mock import MagicMock

import pytest

import lib.goal_task as goal_task_module
from lib.errors import PermissionDeniedError, ValidationError
from lib.goal import Goal
from lib.goal_task import GoalTask, GoalTaskService, build_task_stats, percentage


@pytest.mark.parametrize("part,total,expected", [
    (0, 0, 0),
    (1, 3, 33),
    (2, 3, 67),
    (1, 8, 13),
    (1, 200, 1),
    (3, 3, 100),
])
def test_percentage_rounds_half_up(part, total, expected):
    assert percentage(part, total) == expected


def test_build_task_stats():
    assert build_task_stats(total=8, completed=5, pending=2, in_progress=1) == {
        "total": 8,
        "completed": 5,
        "pending": 2,
        "in_progress": 1,
        "completion_percentage": 63,
    }


class TestTaskValidation:
    @pytest.mark.parametrize("data", [
        {"title": "  "},
        {"title": "A", "priority": "Urgent"},
        {"title": "A", "status": "done"},
        {"title": "A", "pdca_phase": "Review"},
        {"title": "A", "start_date": "2025-06-10", "due_date": "2025-06-01"},
    ])
    def test_invalid_task_is_rejected_before_db_access(self, mock_db_pool, employee_user, data):
        with pytest.raises(ValidationError):
            GoalTaskService(pool=mock_db_pool).create_task(employee_user, "g-1", data)
        mock_db_pool.connect.assert_not_called()

    def test_bulk_requires_tasks(self, mock_db_pool, employee_user):
        with pytest.raises(ValidationError):
            GoalTaskService(pool=mock_db_pool).bulk_create_tasks(employee_user, "g-1", [])


class TestCompleteTask:
    def test_only_assignee_can_complete(self, mock_db_pool, employee_user, monkeypatch):
        service = GoalTaskService(pool=mock_db_pool)
        task = GoalTask(id="t-1", goal_id="g-1", title="訪問", assigned_to="someone-else")
        monkeypatch.setattr(service, "_fetch_task", lambda conn, org_id, task_id: task)
        with pytest.raises(PermissionDeniedError):
            service.complete_task(employee_user, "t-1")


# ================================================================
# サービス（履歴と通知）
# ================================================================


def _goal(**overrides):
    values = {
        "id": "g-1",
        "organization_id": "org_test",
        "subject": "売上拡大",
        "description": "新規顧客を増やす",
        "owner_id": "owner-001",
        "department": "営業部",
        "status": "Do",
    }
    values.update(overrides)
    return Goal(**values)


def _history_entry():
    return goal_task_module.append_history.call_args.args[2][0]


@pytest.fixture
def service(mock_db_pool, monkeypatch):
    monkeypatch.setattr(goal_task_module, "fetch_goal", lambda conn, org_id, goal_id: _goal())
    monkeypatch.setattr(goal_task_module, "fetch_assignee_ids", lambda conn, org_id, goal_id: ["emp-001"])
    monkeypatch.setattr(goal_task_module, "append_history", MagicMock())
    monkeypatch.setattr(goal_task_module, "get_department_heads", lambda conn, org_id, department: ["head-001"])
    return GoalTaskService(pool=mock_db_pool, notifications=MagicMock())


def _use_task(service, monkeypatch, task):
    monkeypatch.setattr(service, "_fetch_task", lambda conn, org_id, task_id: task)


class TestCreateTask:
    def test_history_and_notifications(self, service, employee_user, mock_db_conn, monkeypatch):
        mock_db_conn.execute.return_value.scalar.return_value = 3
        _use_task(service, monkeypatch, GoalTask(id="t-1", goal_id="g-1", title="訪問", assigned_to="emp-002"))
        monkeypatch.setattr(service, "_user_department", lambda org_id, user_id: "開発部")

        service.create_task(employee_user, "g-1", {"title": " 訪問 ", "assigned_to": "emp-002"})

        insert = next(
            c.args[1] for c in mock_db_conn.execute.call_args_list
            if "INSERT INTO goal_tasks" in str(c.args[0])
        )
        assert insert["title"] == "訪問"
        assert insert["pdca_phase"] == "Do"
        assert insert["order_index"] == 3
        assert _history_entry()["action"] == "task_created"
        assert _history_entry()["comment"] == 'Task created: "訪問"'
        mock_db_conn.commit.assert_called_once()

        notifications = service.notifications
        assert notifications.notify_users.call_args.args[1] == ["emp-002"]
        assert notifications.notify_department_heads.call_args.args[1] == "開発部"
        assert notifications.notify_goal_stakeholders.call_args.kwargs["exclude"] == ["emp-002"]

    def test_unrelated_user_cannot_create(self, service, head_user, mock_db_conn, monkeypatch):
        monkeypatch.setattr(goal_task_module, "fetch_goal", lambda conn, org_id, goal_id: _goal(department="開発部"))
        with pytest.raises(PermissionDeniedError):
            service.create_task(head_user, "g-1", {"title": "訪問"})
        mock_db_conn.commit.assert_not_called()


class TestStartTask:
    def test_start_records_previous_status(self, service, employee_user, mock_db_conn, monkeypatch):
        _use_task(service, monkeypatch, GoalTask(id="t-1", goal_id="g-1", title="訪問", assigned_to="emp-001"))
        task = service.start_task(employee_user, "t-1")

        assert task.status == "in_progress"
        assert "status = 'in_progress'" in str(mock_db_conn.execute.call_args.args[0])
        entry = _history_entry()
        assert entry["action"] == "task_started"
        assert entry["details"]["previous_status"] == "pending"
        mock_db_conn.commit.assert_called_once()

    def test_completed_task_cannot_start(self, service, employee_user, monkeypatch):
        _use_task(service, monkeypatch, GoalTask(id="t-1", goal_id="g-1", title="訪問", status="completed"))
        with pytest.raises(ValidationError):
            service.start_task(employee_user, "t-1")

    def test_other_users_task(self, service, employee_user, monkeypatch):
        _use_task(service, monkeypatch, GoalTask(id="t-1", goal_id="g-1", title="訪問", assigned_to="emp-002"))
        with pytest.raises(PermissionDeniedError):
            service.start_task(employee_user, "t-1")


class TestCompleteTaskNotifications:
    def test_notifies_owner_assigner_and_heads(self, service, employee_user, mock_db_conn, monkeypatch):
        _use_task(service, monkeypatch, GoalTask(
            id="t-1", goal_id="g-1", title="訪問", assigned_to="emp-001", assigned_by="head-002",
        ))
        service.complete_task(employee_user, "t-1", completion_notes="3社訪問", actual_hours=4)

        params = next(
            c.args[1] for c in mock_db_conn.execute.call_args_list
            if "completed_by = :user_id" in str(c.args[0])
        )
        assert params["user_id"] == "emp-001"
        assert params["actual_hours"] == 4
        assert _history_entry()["action"] == "task_completed"

        call = service.notifications.notify_users.call_args
        assert call.args[1] == ["owner-001", "head-002", "head-001"]
        assert call.kwargs["exclude"] == ["emp-001"]
        assert call.args[4].endswith("with notes: 3社訪問")


class TestUpdateTask:
    def test_completion_sets_completed_fields(self, service, employee_user, mock_db_conn, monkeypatch):
        _use_task(service, monkeypatch, GoalTask(id="t-1", goal_id="g-1", title="訪問", assigned_to="emp-001"))
        service.update_task(employee_user, "t-1", {"status": "completed"})

        call = next(c for c in mock_db_conn.execute.call_args_list if "UPDATE goal_tasks" in str(c.args[0]))
        assert "completed_at = CURRENT_TIMESTAMP" in str(call.args[0])
        assert call.args[1]["completed_by"] == "emp-001"
        assert _history_entry()["details"]["changes"] == {"status": "completed"}

    def test_reopening_clears_completed_fields(self, service, employee_user, mock_db_conn, monkeypatch):
        _use_task(service, monkeypatch, GoalTask(
            id="t-1", goal_id="g-1", title="訪問", assigned_to="emp-001", status="completed",
        ))
        service.update_task(employee_user, "t-1", {"status": "in_progress"})

        call = next(c for c in mock_db_conn.execute.call_args_list if "UPDATE goal_tasks" in str(c.args[0]))
        assert "completed_at = NULL, completed_by = NULL" in str(call.args[0])
        assert "completed_by" not in call.args[1]

    def test_reassignment_notifies_new_assignee(self, service, employee_user, monkeypatch):
        _use_task(service, monkeypatch, GoalTask(id="t-1", goal_id="g-1", title="訪問", assigned_to="emp-001"))
        service.update_task(employee_user, "t-1", {"assigned_to": "emp-003", "title": "再訪問"})

        assert _history_entry()["comment"] == 'Task edited: "再訪問"'
        call = service.notifications.notify_users.call_args
        assert call.args[1] == ["emp-003"]
        assert call.args[3] == "Task Reassigned"

    def test_no_fields(self, service, employee_user, mock_db_pool):
        with pytest.raises(ValidationError):
            service.update_task(employee_user, "t-1", {"unknown": "x", "title": None})
        mock_db_pool.connect.assert_not_called()


class TestDeleteTask:
    def test_delete_records_history(self, service, employee_user, mock_db_conn, monkeypatch):
        _use_task(service, monkeypatch, GoalTask(id="t-1", goal_id="g-1", title="訪問"))
        service.delete_task(employee_user, "t-1")

        assert "DELETE FROM goal_tasks" in str(mock_db_conn.execute.call_args.args[0])
        assert _history_entry()["action"] == "task_deleted"
        mock_db_conn.commit.assert_called_once()

    def test_unrelated_user_cannot_delete(self, service, head_user, mock_db_conn, monkeypatch):
        monkeypatch.setattr(goal_task_module, "fetch_goal", lambda conn, org_id, goal_id: _goal(department="開発部"))
        _use_task(service, monkeypatch, GoalTask(id="t-1", goal_id="g-1", title="訪問"))
        with pytest.raises(PermissionDeniedError):
            service.delete_task(head_user, "t-1")
        mock_db_conn.commit.assert_not_called()
