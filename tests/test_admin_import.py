"""
tests/test_admin_import.py - 一括インポートの行検証テスト

- 目標行 / 部署行 / ユーザー行の検証
- オプションの生成
- 既定日付・is_active の正規化
- サービスの権限チェック
"""

from datetime import date
from unittest.mock import MagicMock

import pytest

import lib.admin_import as admin_import_module
from lib.admin_import import (
    DEFAULT_IMPORT_PASSWORD,
    AdminImportService,
    DepartmentImportOptions,
    GoalImportOptions,
    ImportMode,
    ReferenceData,
    UserImportOptions,
    add_months,
    normalize_active,
    validate_department_row,
    validate_goal_row,
    validate_user_row,
)
from lib.errors import PermissionDeniedError, ValidationError


@pytest.fixture
def ref():
    return ReferenceData(
        users_by_email={
            "owner@example.com": {"id": "u-1", "email": "owner@example.com", "full_name": "Owner"},
            "member@example.com": {"id": "u-2", "email": "member@example.com", "full_name": "Member"},
        },
        departments={"営業部", "開発部"},
        teams={"営業部": ["第一課"], "開発部": ["基盤"]},
    )


def _goal_row(**overrides):
    row = {
        "subject": "売上拡大",
        "description": "新規顧客を増やす",
        "department": "営業部",
        "owner_email": "Owner@Example.com",
    }
    row.update(overrides)
    return row


# ================================================================
# オプション・ヘルパー
# ================================================================


class TestOptions:
    def test_from_dict_ignores_unknown_keys(self):
        options = GoalImportOptions.from_dict({"generate_tasks": True, "unknown": True})
        assert options.generate_tasks is True
        assert options.auto_assign_owner is True

    def test_from_dict_coerces_to_bool(self):
        options = UserImportOptions.from_dict({"strict_mode": 1, "validate_email_format": 0})
        assert options.strict_mode is True
        assert options.validate_email_format is False

    def test_from_none(self):
        assert DepartmentImportOptions.from_dict(None) == DepartmentImportOptions()


class TestAddMonths:
    def test_simple(self):
        assert add_months(date(2025, 1, 15), 3) == date(2025, 4, 15)

    def test_year_rollover(self):
        assert add_months(date(2025, 11, 1), 3) == date(2026, 2, 1)

    def test_end_of_month_is_clamped(self):
        assert add_months(date(2025, 11, 30), 3) == date(2026, 2, 28)


class TestNormalizeActive:
    @pytest.mark.parametrize("raw,expected", [("true", True), ("1", True), ("YES", True), ("no", False), ("0", False)])
    def test_known_values(self, raw, expected):
        assert normalize_active({"is_active": raw}, 2, True, []) is expected

    def test_empty_uses_default(self):
        assert normalize_active({}, 2, False, []) is False

    def test_invalid_value_warns_and_defaults_to_true(self):
        warnings = []
        assert normalize_active({"is_active": "maybe"}, 5, False, warnings) is True
        assert warnings == ["Row 5: Invalid is_active value 'maybe', defaulting to true"]


# ================================================================
# 目標行
# ================================================================


class TestValidateGoalRow:
    def test_valid_row_gets_defaults(self, ref):
        result = validate_goal_row(_goal_row(), 0, GoalImportOptions(), ref)
        assert result.valid
        assert result.row_number == 2
        assert result.data["owner_email"] == "owner@example.com"
        assert result.data["priority"] == "Medium"
        assert result.data["goal_type"] == "Team"
        assert result.data["start_date"] is None

    def test_missing_required_fields(self, ref):
        result = validate_goal_row({"subject": "  "}, 3, GoalImportOptions(), ref)
        assert "Row 5: Missing required field 'subject'" in result.errors
        assert "Row 5: Missing required field 'owner_email'" in result.errors

    def test_unknown_owner_with_auto_assign_is_a_warning(self, ref):
        result = validate_goal_row(_goal_row(owner_email="ghost@example.com"), 0, GoalImportOptions(), ref)
        assert result.valid
        assert result.warnings == [
            "Row 2: Owner email 'ghost@example.com' not found, will use importing user"
        ]

    def test_unknown_owner_without_auto_assign_is_an_error(self, ref):
        options = GoalImportOptions(auto_assign_owner=False)
        result = validate_goal_row(_goal_row(owner_email="ghost@example.com"), 0, options, ref)
        assert result.errors == ["Row 2: Owner email 'ghost@example.com' not found"]

    def test_assignees(self, ref):
        row = _goal_row(assignee_emails="member@example.com, nobody@example.com, broken")
        result = validate_goal_row(row, 0, GoalImportOptions(), ref)
        assert result.data["assignee_emails"] == ["member@example.com", "nobody@example.com", "broken"]
        assert "Row 2: Assignee email 'nobody@example.com' not found" in result.errors
        assert "Row 2: Invalid assignee email format: broken" in result.errors

    def test_missing_department(self, ref):
        result = validate_goal_row(_goal_row(department="人事部"), 0, GoalImportOptions(), ref)
        assert result.errors == ["Row 2: Department '人事部' does not exist"]

        options = GoalImportOptions(create_missing_departments=True)
        result = validate_goal_row(_goal_row(department="人事部"), 0, options, ref)
        assert result.valid
        assert result.warnings == ["Row 2: Department '人事部' will be created"]

    def test_missing_team(self, ref):
        result = validate_goal_row(_goal_row(teams="第一課, 第二課"), 0, GoalImportOptions(), ref)
        assert result.errors == ["Row 2: Team '第二課' does not exist in department '営業部'"]

    def test_invalid_date(self, ref):
        result = validate_goal_row(_goal_row(target_date="31/12/2025"), 0, GoalImportOptions(), ref)
        assert result.errors == ["Row 2: Invalid target_date format. Use YYYY-MM-DD"]

    def test_start_after_target(self, ref):
        row = _goal_row(start_date="2025-06-01", target_date="2025-05-01")
        result = validate_goal_row(row, 0, GoalImportOptions(), ref)
        assert result.errors == ["Row 2: start_date cannot be later than target_date"]

    def test_invalid_priority_and_type_fall_back(self, ref):
        result = validate_goal_row(_goal_row(priority="Urgent", goal_type="Weird"), 0, GoalImportOptions(), ref)
        assert result.valid
        assert result.data["priority"] == "Medium"
        assert result.data["goal_type"] == "Team"
        assert len(result.warnings) == 2

    def test_default_dates(self, ref):
        options = GoalImportOptions(set_default_dates=True)
        result = validate_goal_row(_goal_row(), 0, options, ref, today=date(2025, 11, 30))
        assert result.data["start_date"] == "2025-11-30"
        assert result.data["target_date"] == "2026-02-28"
        assert "Row 2: Setting default start_date to today" in result.warnings


# ================================================================
# 部署行
# ================================================================


class TestValidateDepartmentRow:
    def test_missing_department(self, ref):
        result = validate_department_row({"team": "A"}, 0, DepartmentImportOptions(), ref)
        assert result.errors == ["Row 2: Missing required field 'department'"]

    def test_default_descriptions(self, ref):
        result = validate_department_row({"department": "人事部"}, 0, DepartmentImportOptions(), ref)
        assert result.data["description"] == "人事部 department"
        assert result.data["team"] is None
        assert result.data["is_active"] is True

        result = validate_department_row({"department": "人事部", "team": "採用"}, 0, DepartmentImportOptions(), ref)
        assert result.data["description"] == "採用 team in 人事部 department"

    def test_existing_department_and_team(self, ref):
        options = DepartmentImportOptions(set_default_descriptions=False)
        result = validate_department_row({"department": "営業部"}, 0, options, ref)
        assert result.warnings == ["Row 2: Department '営業部' already exists, will skip updates"]

        options = DepartmentImportOptions(set_default_descriptions=False, update_descriptions=True)
        result = validate_department_row({"department": "営業部", "team": "第一課"}, 0, options, ref)
        assert result.warnings == ["Row 2: Team '第一課' already exists, will update if different"]

    def test_duplicate_team_name_in_other_department(self, ref):
        options = DepartmentImportOptions(allow_duplicate_team_names=False, set_default_descriptions=False)
        result = validate_department_row({"department": "人事部", "team": "基盤"}, 0, options, ref)
        assert result.warnings == ["Row 2: Team '基盤' already exists in department '開発部'"]


# ================================================================
# ユーザー行
# ================================================================


def _user_row(**overrides):
    row = {
        "full_name": "新人 太郎",
        "email": "New@Example.com",
        "role": "Employee",
        "password": "Passw0rdX",
    }
    row.update(overrides)
    return row


class TestValidateUserRow:
    def test_valid_row(self, ref):
        result = validate_user_row(_user_row(), 0, UserImportOptions(), ref)
        assert result.valid
        assert result.data["email"] == "new@example.com"
        assert result.data["skills"] == ["Task Execution", "Communication"]
        assert result.data["is_active"] is True

    def test_invalid_role(self, ref):
        result = validate_user_row(_user_row(role="Boss"), 0, UserImportOptions(), ref)
        assert result.errors == ["Row 2: Invalid role 'Boss'. Must be Employee, Head, or Admin"]

    def test_short_password(self, ref):
        result = validate_user_row(_user_row(password="Ab1"), 0, UserImportOptions(), ref)
        assert result.errors == ["Row 2: Password must be at least 8 characters long"]

    def test_weak_password_is_a_warning(self, ref):
        result = validate_user_row(_user_row(password="alllowercase"), 0, UserImportOptions(), ref)
        assert result.valid
        assert "Row 2: Password should contain uppercase, lowercase, and numbers" in result.warnings

    def test_password_required_for_new_user(self, ref):
        result = validate_user_row(_user_row(password=""), 0, UserImportOptions(), ref)
        assert "Row 2: Password is required" in result.errors

    def test_existing_user_keeps_password(self, ref):
        row = _user_row(email="member@example.com", password="")
        result = validate_user_row(row, 0, UserImportOptions(), ref)
        assert result.valid
        assert "Row 2: User with email 'member@example.com' already exists" in result.warnings

    def test_default_password(self, ref):
        options = UserImportOptions(set_default_passwords=True)
        result = validate_user_row(_user_row(password=""), 0, options, ref)
        assert result.data["password"] == DEFAULT_IMPORT_PASSWORD

    def test_unknown_department_and_team(self, ref):
        result = validate_user_row(_user_row(department="営業部", team="第九課"), 0, UserImportOptions(), ref)
        assert result.errors == ["Row 2: Team '第九課' does not exist in department '営業部'"]

    def test_skills_from_row(self, ref):
        result = validate_user_row(_user_row(skills="Python, SQL"), 0, UserImportOptions(), ref)
        assert result.data["skills"] == ["Python", "SQL"]


# ================================================================
# サービス
# ================================================================


class TestAdminImportService:
    def test_non_admin_is_rejected(self, mock_db_pool, head_user):
        service = AdminImportService(pool=mock_db_pool)
        with pytest.raises(PermissionDeniedError):
            service.preview_goals(head_user, [_goal_row()])
        mock_db_pool.connect.assert_not_called()

    def test_empty_rows(self, mock_db_pool, admin_user):
        service = AdminImportService(pool=mock_db_pool)
        with pytest.raises(ValidationError) as exc_info:
            service.preview_users(admin_user, [])
        assert exc_info.value.error_code == "EMPTY_IMPORT"


def _statements(mock_db_conn):
    return [" ".join(str(c.args[0]).split()) for c in mock_db_conn.execute.call_args_list]


def _inserts(mock_db_conn, table):
    return [
        c.args[1] for c in mock_db_conn.execute.call_args_list
        if f"INSERT INTO {table} " in " ".join(str(c.args[0]).split())
    ]


@pytest.fixture
def import_service(mock_db_pool, ref, monkeypatch):
    service = AdminImportService(pool=mock_db_pool, notifications=MagicMock())
    monkeypatch.setattr(service, "load_reference", lambda organization_id: ref)
    monkeypatch.setattr(service, "_existing_goals", lambda organization_id: [{
        "id": "g-existing",
        "subject": "売上拡大",
        "description": "新規顧客を増やす",
        "department": "営業部",
        "owner_email": "owner@example.com",
    }])
    monkeypatch.setattr(admin_import_module, "hash_password", lambda password: f"hashed:{password}")
    return service


class TestImportGoals:
    def test_exact_duplicate_is_skipped_and_similar_is_created(self, import_service, admin_user, mock_db_conn):
        rows = [_goal_row(), _goal_row(subject="売上拡大（改）")]

        preview = import_service.preview_goals(admin_user, rows)
        assert [(d["row_number"], d["match_type"]) for d in preview.duplicates] == [(2, "exact"), (3, "similar")]

        result = import_service.import_goals(admin_user, rows)
        assert result.created == 1
        assert result.skipped == 1
        assert result.errors == ["Row 2: Skipped duplicate of an existing goal"]
        assert [g["subject"] for g in _inserts(mock_db_conn, "goals")] == ["売上拡大（改）"]

    def test_skip_duplicate_check_imports_everything(self, import_service, admin_user, mock_db_conn):
        result = import_service.import_goals(
            admin_user, [_goal_row()], GoalImportOptions(skip_duplicate_check=True)
        )
        assert result.created == 1
        assert result.skipped == 0

    def test_strict_mode_aborts_before_writing(self, import_service, admin_user, mock_db_pool):
        rows = [_goal_row(subject="採用強化"), _goal_row(description="")]
        with pytest.raises(ValidationError) as exc_info:
            import_service.import_goals(admin_user, rows, GoalImportOptions(strict_mode=True))
        assert exc_info.value.error_code == "IMPORT_VALIDATION_FAILED"
        mock_db_pool.connect.assert_not_called()

    def test_invalid_rows_are_left_out_without_strict_mode(self, import_service, admin_user, mock_db_conn):
        rows = [_goal_row(subject="採用強化"), _goal_row(description="")]
        result = import_service.import_goals(admin_user, rows)
        assert result.created == 1
        assert [g["subject"] for g in _inserts(mock_db_conn, "goals")] == ["採用強化"]

    def test_no_valid_rows(self, import_service, admin_user):
        with pytest.raises(ValidationError) as exc_info:
            import_service.import_goals(admin_user, [_goal_row(department="")])
        assert exc_info.value.error_code == "NO_VALID_ROWS"

    def test_generate_tasks_and_notify_assignees(self, import_service, admin_user, mock_db_conn):
        options = GoalImportOptions(skip_duplicate_check=True, generate_tasks=True, notify_assignees=True)
        result = import_service.import_goals(
            admin_user, [_goal_row(assignee_emails="member@example.com, owner@example.com")], options
        )

        assert result.created == 1
        tasks = _inserts(mock_db_conn, "goal_tasks")
        assert [t["pdca_phase"] for t in tasks] == ["Plan", "Do", "Check", "Act"]
        assert [t["order_index"] for t in tasks] == [0, 1, 2, 3]
        assert {t["department"] for t in tasks} == {"営業部"}
        assert [a["user_id"] for a in _inserts(mock_db_conn, "goal_assignees")] == ["u-1", "u-2"]
        assert import_service.notifications.notify_users.call_args.args[1] == ["u-1", "u-2"]

    def test_unknown_owner_falls_back_to_importer(self, import_service, admin_user, mock_db_conn):
        result = import_service.import_goals(
            admin_user,
            [_goal_row(owner_email="nobody@example.com")],
            GoalImportOptions(skip_duplicate_check=True),
        )
        assert result.created == 1
        assert _inserts(mock_db_conn, "goals")[0]["owner_id"] == "admin-001"

    def test_missing_department_is_created_once(self, import_service, admin_user, mock_db_conn):
        options = GoalImportOptions(skip_duplicate_check=True, create_missing_departments=True)
        rows = [_goal_row(department="法務部"), _goal_row(subject="契約整備", department="法務部")]
        result = import_service.import_goals(admin_user, rows, options)

        assert result.created == 2
        assert result.details["departments_created"] == 1
        teams = _inserts(mock_db_conn, "department_teams")
        assert [(t["department"], t["team"]) for t in teams] == [("法務部", "General")]

    def test_failed_row_is_reported(self, import_service, admin_user, mock_db_conn):
        mock_db_conn.execute.side_effect = RuntimeError("connection reset")
        result = import_service.import_goals(
            admin_user, [_goal_row()], GoalImportOptions(skip_duplicate_check=True)
        )
        assert result.created == 0
        assert result.skipped == 1
        assert result.errors == ["Row 2: Failed to create goal - connection reset"]
        mock_db_conn.commit.assert_not_called()


class TestImportDepartments:
    def test_create_and_update(self, import_service, admin_user, mock_db_conn):
        rows = [
            {"department": "営業部", "team": "第二課"},
            {"department": "人事部"},
            {"department": "開発部", "team": "基盤", "description": "共通基盤の開発"},
        ]
        result = import_service.import_departments(
            admin_user, rows, DepartmentImportOptions(update_descriptions=True)
        )

        assert (result.created, result.updated, result.skipped) == (2, 1, 0)
        assert result.details == {
            "departments_created": 1,
            "teams_created": 1,
            "departments_updated": 0,
            "teams_updated": 1,
        }
        teams = _inserts(mock_db_conn, "department_teams")
        assert [(t["department"], t["team"]) for t in teams] == [("営業部", "第二課"), ("人事部", "General")]
        assert teams[1]["description"] == "人事部 department"
        update = next(
            c.args[1] for c in mock_db_conn.execute.call_args_list
            if "UPDATE department_teams" in str(c.args[0])
        )
        assert update["description"] == "共通基盤の開発"
        assert mock_db_conn.commit.call_count == 3

    def test_new_team_creates_missing_department(self, import_service, admin_user, mock_db_conn):
        result = import_service.import_departments(admin_user, [{"department": "法務部", "team": "契約"}])
        assert result.created == 1
        assert result.details["departments_created"] == 1
        assert result.details["teams_created"] == 1
        teams = _inserts(mock_db_conn, "department_teams")
        assert [(t["department"], t["team"]) for t in teams] == [("法務部", "General"), ("法務部", "契約")]

    def test_update_existing_mode_skips_new_rows(self, import_service, admin_user, mock_db_conn):
        result = import_service.import_departments(
            admin_user, [{"department": "人事部"}], mode=ImportMode.UPDATE_EXISTING
        )
        assert (result.created, result.skipped) == (0, 1)
        assert _inserts(mock_db_conn, "department_teams") == []

    def test_create_only_mode_skips_existing_rows(self, import_service, admin_user, mock_db_conn):
        result = import_service.import_departments(
            admin_user,
            [{"department": "開発部", "team": "基盤", "description": "更新"}],
            DepartmentImportOptions(update_descriptions=True),
            mode=ImportMode.CREATE_ONLY,
        )
        assert (result.updated, result.skipped) == (0, 1)
        mock_db_conn.commit.assert_not_called()

    def test_existing_row_without_changes_is_skipped(self, import_service, admin_user):
        result = import_service.import_departments(admin_user, [{"department": "開発部", "team": "基盤"}])
        assert (result.updated, result.skipped) == (0, 1)

    def test_invalid_mode(self, import_service, admin_user):
        with pytest.raises(ValidationError):
            import_service.import_departments(admin_user, [{"department": "人事部"}], mode="replace")

    def test_strict_mode(self, import_service, admin_user, mock_db_conn):
        with pytest.raises(ValidationError) as exc_info:
            import_service.import_departments(
                admin_user,
                [{"department": "人事部"}, {"team": "孤立チーム"}],
                DepartmentImportOptions(strict_mode=True),
            )
        assert exc_info.value.error_code == "IMPORT_VALIDATION_FAILED"
        mock_db_conn.execute.assert_not_called()


def _user_row(**overrides):
    row = {"full_name": "新人 一郎", "email": "new@example.com", "role": "Employee", "password": "Passw0rd!"}
    row.update(overrides)
    return row


class TestImportUsers:
    def test_create_only_skips_existing(self, import_service, admin_user, mock_db_conn):
        rows = [_user_row(), _user_row(full_name="Member", email="member@example.com", password="")]
        result = import_service.import_users(admin_user, rows)

        assert (result.created, result.updated, result.skipped) == (1, 0, 1)
        users = _inserts(mock_db_conn, "users")
        assert [u["email"] for u in users] == ["new@example.com"]
        assert users[0]["password_hash"] == "hashed:Passw0rd!"

    def test_same_email_twice_in_file(self, import_service, admin_user, mock_db_conn):
        result = import_service.import_users(admin_user, [_user_row(), _user_row(full_name="別人")])
        assert (result.created, result.skipped) == (1, 1)
        assert len(_inserts(mock_db_conn, "users")) == 1

    def test_update_existing_keeps_password(self, import_service, admin_user, mock_db_conn):
        rows = [_user_row(), _user_row(full_name="Member", email="member@example.com", role="Head")]
        result = import_service.import_users(admin_user, rows, mode=ImportMode.UPDATE_EXISTING)

        assert (result.created, result.updated, result.skipped) == (0, 1, 1)
        update = next(c for c in mock_db_conn.execute.call_args_list if "UPDATE users SET" in str(c.args[0]))
        assert update.args[1]["role"] == "Head"
        assert update.args[1]["email"] == "member@example.com"
        assert "password_hash" not in update.args[1]
        assert _inserts(mock_db_conn, "users") == []

    def test_create_and_update_replaces_password_when_not_preserved(self, import_service, admin_user, mock_db_conn):
        rows = [_user_row(), _user_row(full_name="Member", email="member@example.com", password="N3wPassword")]
        options = UserImportOptions(preserve_existing_passwords=False)
        result = import_service.import_users(admin_user, rows, options, mode=ImportMode.CREATE_AND_UPDATE)

        assert (result.created, result.updated) == (1, 1)
        update = next(c for c in mock_db_conn.execute.call_args_list if "UPDATE users SET" in str(c.args[0]))
        assert "password_hash = :password_hash" in str(update.args[0])
        assert update.args[1]["password_hash"] == "hashed:N3wPassword"

    def test_existing_profiles_left_alone(self, import_service, admin_user, mock_db_conn):
        options = UserImportOptions(update_existing_profiles=False)
        result = import_service.import_users(
            admin_user,
            [_user_row(full_name="Member", email="member@example.com")],
            options,
            mode=ImportMode.UPDATE_EXISTING,
        )
        assert (result.updated, result.skipped) == (0, 1)
        mock_db_conn.commit.assert_not_called()

    def test_missing_structure_is_created_first(self, import_service, admin_user, mock_db_conn):
        options = UserImportOptions(create_missing_departments=True, create_missing_teams=True)
        result = import_service.import_users(
            admin_user, [_user_row(department="法務部", team="契約")], options
        )

        assert result.created == 1
        statements = _statements(mock_db_conn)
        assert [s.split(" (")[0] for s in statements if s.startswith("INSERT")] == [
            "INSERT INTO department_teams",
            "INSERT INTO department_teams",
            "INSERT INTO users",
            "INSERT INTO audit_logs",
        ]

    def test_strict_mode(self, import_service, admin_user, mock_db_conn):
        with pytest.raises(ValidationError) as exc_info:
            import_service.import_users(
                admin_user,
                [_user_row(), _user_row(email="bad@example.com", role="Owner")],
                UserImportOptions(strict_mode=True),
            )
        assert exc_info.value.error_code == "IMPORT_VALIDATION_FAILED"
        mock_db_conn.execute.assert_not_called()
