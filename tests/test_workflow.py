"""
tests/test_workflow.py - PDCA ワークフローのテスト

- ステータス遷移の検証
- ロール別の遷移先候補
- 履歴エントリ・変更追跡
- ワークフロー設定サービス（DBモック）
"""

from datetime import date

import pytest

from lib.errors import InvalidTransitionError, NotFoundError, PermissionDeniedError, ValidationError
from lib.workflow import (
    DEFAULT_TRANSITIONS,
    WorkflowAction,
    WorkflowConfigService,
    allowed_next_statuses,
    build_update_entry,
    default_configuration,
    describe_changes,
    format_incomplete_tasks_message,
    is_forward_progression,
    make_history_entry,
    normalize_date,
    track_goal_changes,
    validate_transition,
)


# ================================================================
# 状態遷移
# ================================================================


class TestValidateTransition:
    @pytest.mark.parametrize("from_status,to_status", [
        ("Plan", "Do"),
        ("Do", "Check"),
        ("Check", "Do"),
        ("Act", "Plan"),
        ("On Hold", "Check"),
    ])
    def test_allowed(self, from_status, to_status):
        validate_transition(from_status, to_status)

    def test_skipping_a_phase_is_rejected(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            validate_transition("Plan", "Check")
        assert exc_info.value.http_status == 409
        assert "Allowed transitions: Do, On Hold" in exc_info.value.message

    def test_terminal_status(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            validate_transition("Completed", "Plan")
        assert "Allowed transitions: none" in exc_info.value.message

    def test_unknown_status(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_transition("Plan", "Done")
        assert exc_info.value.error_code == "INVALID_STATUS"

    def test_custom_transitions(self):
        validate_transition("Plan", "Completed", {"Plan": ["Completed"]})


class TestForwardProgression:
    def test_forward(self):
        assert is_forward_progression("Plan", "Do")
        assert is_forward_progression("Act", "Completed")

    def test_backward_and_hold_are_not_forward(self):
        assert not is_forward_progression("Check", "Do")
        assert not is_forward_progression("Plan", "On Hold")


class TestAllowedNextStatuses:
    def test_admin_gets_all_candidates(self):
        config = default_configuration()
        assert allowed_next_statuses(config, "Admin", "Check") == ["Act", "Do", "On Hold"]

    def test_employee_is_filtered(self):
        config = default_configuration()
        assert allowed_next_statuses(config, "Employee", "Plan") == ["Do"]

    def test_unknown_role_is_not_filtered(self):
        config = default_configuration()
        assert allowed_next_statuses(config, "Guest", "Do") == ["Check", "On Hold"]


def test_default_configuration_is_a_copy():
    config = default_configuration()
    config.transitions["Plan"].append("Completed")
    assert "Completed" not in DEFAULT_TRANSITIONS["Plan"]


def test_incomplete_tasks_message():
    message = format_incomplete_tasks_message("Plan", [
        {"title": "要件定義", "assignee_name": "山田"},
        {"title": "見積もり"},
    ])
    assert message.startswith("Cannot move from Plan phase until all Plan tasks are completed.")
    assert "• 要件定義 (山田)" in message
    assert "• 見積もり (Unassigned)" in message


# ================================================================
# 履歴・変更追跡
# ================================================================


class TestHistory:
    def test_make_history_entry(self):
        entry = make_history_entry(
            action=WorkflowAction.STATUS_CHANGE,
            user_id="u-1",
            user_name="山田",
            from_status="Plan",
            to_status="Do",
        )
        assert entry["action"] == "status_change"
        assert entry["from_status"] == "Plan"
        assert entry["to_status"] == "Do"
        assert entry["id"].startswith("history-")
        assert "details" not in entry

    def test_optional_keys_are_omitted(self):
        entry = make_history_entry(action="task_created", user_id="u-1")
        assert "from_status" not in entry
        assert "to_status" not in entry


class TestTrackGoalChanges:
    def test_same_date_in_different_format_is_not_a_change(self):
        changes = track_goal_changes(
            {"target_date": date(2025, 3, 31)},
            {"target_date": "2025-03-31T00:00:00Z"},
        )
        assert changes == []

    def test_none_values_are_ignored(self):
        assert track_goal_changes({"subject": "A"}, {"subject": None}) == []

    def test_detects_changes(self):
        changes = track_goal_changes(
            {"subject": "旧", "progress_percentage": 10},
            {"subject": "新", "progress_percentage": 40},
        )
        assert [c["field"] for c in changes] == ["subject", "progress_percentage"]
        assert describe_changes(changes) == "Subject: 旧 → 新; Progress Percentage: 10% → 40%"

    def test_long_text_is_truncated(self):
        changes = track_goal_changes({"description": "a"}, {"description": "x" * 60})
        assert describe_changes(changes).endswith("x" * 50 + "...")

    def test_build_update_entry(self):
        assert build_update_entry([], "u-1", "山田") is None
        changes = track_goal_changes({"priority": "Low"}, {"priority": "High"})
        entry = build_update_entry(changes, "u-1", "山田")
        assert entry["action"] == "goal_updated"
        assert entry["details"] == {"fields_changed": ["priority"], "change_count": 1}
        assert entry["comment"] == "Goal details updated: Priority: Low → High"

    def test_normalize_date(self):
        assert normalize_date("2025-01-05") == "2025-01-05"
        assert normalize_date("") is None
        assert normalize_date("not a date") is None


# ================================================================
# WorkflowConfigService
# ================================================================


class TestWorkflowConfigService:
    def test_non_admin_is_rejected(self, mock_db_pool, head_user):
        service = WorkflowConfigService(pool=mock_db_pool)
        with pytest.raises(PermissionDeniedError):
            service.list_rules(head_user)
        mock_db_pool.connect.assert_not_called()

    def test_create_rule_validates_type(self, mock_db_pool, admin_user):
        service = WorkflowConfigService(pool=mock_db_pool)
        with pytest.raises(ValidationError):
            service.create_rule(admin_user, {"name": "閾値", "rule_type": "unknown"})

    def test_create_rule(self, mock_db_pool, mock_db_conn, admin_user):
        service = WorkflowConfigService(pool=mock_db_pool)
        rule = service.create_rule(admin_user, {
            "name": "Plan 完了率",
            "rule_type": "phase_completion_threshold",
            "phase": "Plan",
            "configuration": {"threshold": 80},
        })
        assert rule.is_active is True
        assert rule.configuration == {"threshold": 80}
        assert rule.created_by == admin_user.user_id
        mock_db_conn.commit.assert_called_once()

    def test_active_configuration_falls_back_to_default(self, mock_db_pool, mock_db_conn):
        mock_db_conn.execute.return_value.fetchone.return_value = None
        config = WorkflowConfigService(pool=mock_db_pool).get_active_configuration("org_test")
        assert config.id == "default-config"
        assert config.transitions == DEFAULT_TRANSITIONS

    def test_delete_missing_rule(self, mock_db_pool, mock_db_conn, admin_user):
        mock_db_conn.execute.return_value.fetchone.return_value = None
        with pytest.raises(NotFoundError):
            WorkflowConfigService(pool=mock_db_pool).delete_rule(admin_user, "missing")

    def test_configuration_with_unknown_status_is_rejected(self, mock_db_pool, admin_user):
        with pytest.raises(ValidationError):
            WorkflowConfigService(pool=mock_db_pool).create_configuration(admin_user, {
                "name": "カスタム",
                "transitions": {"Plan": ["Done"]},
            })


def _configuration_row(config_id="cfg-1", is_active=False, is_default=False):
    return (
        config_id, "カスタム", None, '{"Plan": ["Do"], "Do": ["Check"]}', {}, {}, {},
        is_active, is_default, "admin-001", None, None,
    )


class TestWorkflowConfigurationLifecycle:
    def test_activate_switches_default(self, mock_db_pool, mock_db_conn, admin_user):
        mock_db_conn.execute.return_value.fetchone.return_value = _configuration_row()
        WorkflowConfigService(pool=mock_db_pool).activate_configuration(admin_user, "cfg-1")

        statements = [" ".join(str(c.args[0]).split()) for c in mock_db_conn.execute.call_args_list]
        assert "SET is_active = FALSE, is_default = FALSE" in statements[1]
        assert "id != :id" in statements[1]
        assert "SET is_active = TRUE, is_default = TRUE" in statements[2]
        assert "INSERT INTO audit_logs" in statements[3]
        assert mock_db_conn.execute.call_args_list[3].args[1]["action"] == "activate"
        mock_db_conn.commit.assert_called_once()

    def test_activate_missing_configuration(self, mock_db_pool, mock_db_conn, admin_user):
        mock_db_conn.execute.return_value.fetchone.return_value = None
        with pytest.raises(NotFoundError):
            WorkflowConfigService(pool=mock_db_pool).activate_configuration(admin_user, "missing")
        mock_db_conn.commit.assert_not_called()

    def test_default_configuration_cannot_be_deleted(self, mock_db_pool, mock_db_conn, admin_user):
        mock_db_conn.execute.return_value.fetchone.return_value = _configuration_row(
            is_active=True, is_default=True
        )
        with pytest.raises(ValidationError) as exc_info:
            WorkflowConfigService(pool=mock_db_pool).delete_configuration(admin_user, "cfg-1")
        assert exc_info.value.error_code == "DEFAULT_CONFIGURATION"
        assert mock_db_conn.execute.call_count == 1
        mock_db_conn.commit.assert_not_called()

    def test_delete_configuration(self, mock_db_pool, mock_db_conn, admin_user):
        mock_db_conn.execute.return_value.fetchone.return_value = _configuration_row()
        WorkflowConfigService(pool=mock_db_pool).delete_configuration(admin_user, "cfg-1")
        assert "DELETE FROM workflow_configurations" in str(mock_db_conn.execute.call_args_list[1].args[0])
        mock_db_conn.commit.assert_called_once()

    def test_active_configuration_from_row(self, mock_db_pool, mock_db_conn):
        mock_db_conn.execute.return_value.fetchone.return_value = _configuration_row(is_active=True)
        config = WorkflowConfigService(pool=mock_db_pool).get_active_configuration("org_test")
        assert config.id == "cfg-1"
        assert config.transitions == {"Plan": ["Do"], "Do": ["Check"]}
