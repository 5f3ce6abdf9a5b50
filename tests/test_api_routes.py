"""
tests/test_api_routes.py - API ルートのテスト

認証は dependency_overrides で差し替え、サービスはファクトリ関数をパッチする。
ドメイン例外から HTTP ステータスへの変換を中心に確認する。
"""

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.api.v1 import router as v1_router
from app.deps.auth import get_current_user
from lib.errors import InvalidTransitionError, NotFoundError, PermissionDeniedError, ValidationError


def _client(user):
    app = FastAPI()
    app.include_router(v1_router, prefix="/api")
    app.dependency_overrides[get_current_user] = lambda: user
    return TestClient(app)


@pytest.fixture
def employee_client(employee_user):
    return _client(employee_user)


@pytest.fixture
def admin_client(admin_user):
    return _client(admin_user)


def _goal(**values):
    goal = MagicMock()
    goal.to_dict.return_value = {"id": "g-1", "subject": "売上拡大", **values}
    for key, value in values.items():
        setattr(goal, key, value)
    return goal


# ================================================================
# 目標
# ================================================================


class TestGoalRoutes:
    def test_list_goals_passes_filters(self, employee_client, employee_user):
        service = MagicMock()
        service.list_goals.return_value.to_dict.return_value = {"goals": [], "total_count": 0}
        with patch("app.api.v1.goals.get_goal_service", return_value=service):
            response = employee_client.get("/api/v1/goals", params={"status": "Do", "page": 2})

        assert response.status_code == 200
        assert response.json() == {"status": "success", "goals": [], "total_count": 0}
        user, filters, pagination = service.list_goals.call_args.args
        assert user is employee_user
        assert filters["status"] == "Do"
        assert pagination.page == 2

    def test_get_goal_not_found(self, employee_client):
        service = MagicMock()
        service.get_goal.side_effect = NotFoundError("Goal not found")
        with patch("app.api.v1.goals.get_goal_service", return_value=service):
            response = employee_client.get("/api/v1/goals/missing")

        assert response.status_code == 404
        assert response.json()["detail"] == {
            "status": "failed",
            "error_code": "NOT_FOUND",
            "error_message": "Goal not found",
        }

    def test_create_goal_forbidden_for_employee(self, employee_client):
        service = MagicMock()
        service.create_goal.side_effect = PermissionDeniedError("Only Head or Admin can create goals")
        with patch("app.api.v1.goals.get_goal_service", return_value=service):
            response = employee_client.post("/api/v1/goals", json={
                "subject": "売上拡大",
                "description": "新規顧客を増やす",
                "department": "営業部",
            })

        assert response.status_code == 403
        assert response.json()["detail"]["error_code"] == "INSUFFICIENT_PERMISSION"

    def test_status_change_conflict(self, employee_client):
        service = MagicMock()
        service.update_goal_status.side_effect = InvalidTransitionError(
            "Cannot move from Plan phase until all Plan tasks are completed."
        )
        with patch("app.api.v1.goals.get_goal_service", return_value=service):
            response = employee_client.post("/api/v1/goals/g-1/status", json={"status": "Do"})

        assert response.status_code == 409
        assert response.json()["detail"]["error_code"] == "INVALID_TRANSITION"

    def test_status_change_success(self, employee_client, employee_user):
        service = MagicMock()
        service.update_goal_status.return_value = _goal(status="Do", previous_status="Plan")
        with patch("app.api.v1.goals.get_goal_service", return_value=service):
            response = employee_client.post(
                "/api/v1/goals/g-1/status",
                json={"status": "Do", "current_assignee_id": "u-9"},
            )

        assert response.status_code == 200
        assert response.json()["goal"]["status"] == "Do"
        service.update_goal_status.assert_called_once_with(employee_user, "g-1", "Do", "u-9")

    def test_progress_out_of_range_is_rejected(self, employee_client):
        response = employee_client.put("/api/v1/goals/g-1/progress", json={"progress_percentage": 120})
        assert response.status_code == 422

    def test_unexpected_error_is_masked(self, employee_client):
        service = MagicMock()
        service.get_dashboard_stats.side_effect = RuntimeError("db down")
        with patch("app.api.v1.goals.get_goal_service", return_value=service):
            response = employee_client.get("/api/v1/goals/dashboard/stats")

        assert response.status_code == 500
        assert response.json()["detail"]["error_code"] == "INTERNAL_ERROR"
        assert "db down" not in response.text


# ================================================================
# 通知
# ================================================================


class TestNotificationRoutes:
    def test_unread_count(self, employee_client):
        service = MagicMock()
        service.unread_count.return_value = 3
        with patch("app.api.v1.notifications.get_notification_service", return_value=service):
            response = employee_client.get("/api/v1/notifications/unread-count")
        assert response.json() == {"status": "success", "count": 3}

    def test_mark_missing_notification(self, employee_client):
        service = MagicMock()
        service.mark_read.return_value = False
        with patch("app.api.v1.notifications.get_notification_service", return_value=service):
            response = employee_client.post("/api/v1/notifications/n-404/read")
        assert response.status_code == 404
        assert response.json()["detail"]["error_code"] == "NOT_FOUND"


# ================================================================
# 管理 API
# ================================================================


class TestAdminRoutes:
    def test_employee_is_rejected(self, employee_client):
        response = employee_client.get("/api/v1/admin/workflow/rules")
        assert response.status_code == 403

    def test_import_preview(self, admin_client, admin_user):
        service = MagicMock()
        service.preview_goals.return_value.to_dict.return_value = {"total_rows": 1}
        content = "subject,description,department,owner_email\n売上拡大,説明,営業部,a@example.com\n"
        with patch("app.api.v1.admin.import_routes.get_admin_import_service", return_value=service):
            response = admin_client.post(
                "/api/v1/admin/import/goals/preview",
                files={"file": ("goals.csv", content.encode("utf-8"), "text/csv")},
                data={"options": '{"generate_tasks": true}'},
            )

        assert response.status_code == 200
        assert response.json()["preview"] == {"total_rows": 1}
        user, rows, options = service.preview_goals.call_args.args
        assert user is admin_user
        assert rows[0]["subject"] == "売上拡大"
        assert options.generate_tasks is True

    def test_import_options_must_be_an_object(self, admin_client):
        response = admin_client.post(
            "/api/v1/admin/import/goals/preview",
            files={"file": ("goals.csv", b"subject\nA\n", "text/csv")},
            data={"options": "[1, 2]"},
        )
        assert response.status_code == 400
        assert response.json()["detail"]["error_code"] == "VALIDATION_ERROR"

    def test_import_validation_error(self, admin_client):
        service = MagicMock()
        service.preview_users.side_effect = ValidationError("No valid data found in file", error_code="EMPTY_IMPORT")
        with patch("app.api.v1.admin.import_routes.get_admin_import_service", return_value=service):
            response = admin_client.post(
                "/api/v1/admin/import/users/preview",
                files={"file": ("users.csv", b"email\nx@example.com\n", "text/csv")},
            )
        assert response.status_code == 400
        assert response.json()["detail"]["error_code"] == "EMPTY_IMPORT"

    def test_export_assignments_download(self, admin_client):
        service = MagicMock()
        service.export_assignments.return_value = SimpleNamespace(
            content=b"User,Email\n",
            filename="user-assignments-2025-06-10.csv",
            content_type="text/csv; charset=utf-8",
        )
        with patch("app.api.v1.admin.export_routes.get_admin_export_service", return_value=service):
            response = admin_client.post("/api/v1/admin/export/assignments", json={"format": "csv"})

        assert response.status_code == 200
        assert response.content == b"User,Email\n"
        assert "user-assignments-2025-06-10.csv" in response.headers["content-disposition"]
