"""
tests/test_department.py - 部署・チーム管理のテスト

- 削除時のガード（所属ユーザー・目標・最後のチーム）
- 部署名変更の参照更新
"""

import pytest

from lib.department import DepartmentService
from lib.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError


def _statements(mock_db_conn):
    return [" ".join(str(c.args[0]).split()) for c in mock_db_conn.execute.call_args_list]


class TestDeleteDepartment:
    def test_requires_admin(self, mock_db_pool, head_user):
        with pytest.raises(PermissionDeniedError):
            DepartmentService(pool=mock_db_pool).delete_department(head_user, "営業部")
        mock_db_pool.connect.assert_not_called()

    def test_users_still_assigned(self, mock_db_pool, mock_db_conn, admin_user):
        mock_db_conn.execute.return_value.scalar.side_effect = [2]
        with pytest.raises(ValidationError, match="users are still assigned"):
            DepartmentService(pool=mock_db_pool).delete_department(admin_user, "営業部")
        mock_db_conn.commit.assert_not_called()

    def test_goals_still_assigned(self, mock_db_pool, mock_db_conn, admin_user):
        mock_db_conn.execute.return_value.scalar.side_effect = [0, 5]
        with pytest.raises(ValidationError, match="goals are still assigned"):
            DepartmentService(pool=mock_db_pool).delete_department(admin_user, "営業部")
        mock_db_conn.commit.assert_not_called()

    def test_removes_teams_and_permissions(self, mock_db_pool, mock_db_conn, admin_user):
        mock_db_conn.execute.return_value.scalar.side_effect = [0, 0]
        DepartmentService(pool=mock_db_pool).delete_department(admin_user, "営業部")

        statements = _statements(mock_db_conn)
        assert any(s.startswith("DELETE FROM department_teams") for s in statements)
        assert any(s.startswith("DELETE FROM department_permissions") for s in statements)
        mock_db_conn.commit.assert_called_once()


class TestDeleteTeam:
    def test_users_still_assigned(self, mock_db_pool, mock_db_conn, admin_user):
        mock_db_conn.execute.return_value.scalar.side_effect = [1]
        with pytest.raises(ValidationError, match="users are still assigned"):
            DepartmentService(pool=mock_db_pool).delete_team(admin_user, "営業部", "第一チーム")

    def test_last_team_is_kept(self, mock_db_pool, mock_db_conn, admin_user):
        mock_db_conn.execute.return_value.scalar.side_effect = [0, 1]
        with pytest.raises(ValidationError, match="last team"):
            DepartmentService(pool=mock_db_pool).delete_team(admin_user, "営業部", "General")
        mock_db_conn.commit.assert_not_called()

    def test_missing_team(self, mock_db_pool, mock_db_conn, admin_user):
        mock_db_conn.execute.return_value.scalar.side_effect = [0, 3]
        mock_db_conn.execute.return_value.rowcount = 0
        with pytest.raises(NotFoundError):
            DepartmentService(pool=mock_db_pool).delete_team(admin_user, "営業部", "存在しないチーム")
        mock_db_conn.commit.assert_not_called()

    def test_deletes_team(self, mock_db_pool, mock_db_conn, admin_user):
        mock_db_conn.execute.return_value.scalar.side_effect = [0, 3]
        mock_db_conn.execute.return_value.rowcount = 1
        DepartmentService(pool=mock_db_pool).delete_team(admin_user, "営業部", "第一チーム")
        assert _statements(mock_db_conn)[-1].startswith("DELETE FROM department_teams")
        mock_db_conn.commit.assert_called_once()


class TestRename:
    def test_department_rename_updates_references(self, mock_db_pool, mock_db_conn, admin_user):
        mock_db_conn.execute.return_value.fetchone.return_value = None
        DepartmentService(pool=mock_db_pool).rename_department(admin_user, "営業部", " 第一営業部 ")

        statements = _statements(mock_db_conn)
        for table in ("department_teams", "users", "goals", "goal_tasks", "department_permissions"):
            assert any(s.startswith(f"UPDATE {table} SET department = :new") for s in statements)
        assert any("UPDATE goal_support SET support_name = :new" in s and "'Department'" in s for s in statements)
        assert any("UPDATE goal_support SET support_department = :new" in s for s in statements)

        params = mock_db_conn.execute.call_args_list[1].args[1]
        assert params == {"org_id": "org_test", "old": "営業部", "new": "第一営業部"}
        mock_db_conn.commit.assert_called_once()

    def test_department_rename_to_existing_name(self, mock_db_pool, mock_db_conn, admin_user):
        mock_db_conn.execute.return_value.fetchone.return_value = (1,)
        with pytest.raises(ConflictError):
            DepartmentService(pool=mock_db_pool).rename_department(admin_user, "営業部", "開発部")
        mock_db_conn.commit.assert_not_called()

    def test_department_rename_to_same_name(self, mock_db_pool, admin_user):
        with pytest.raises(ValidationError):
            DepartmentService(pool=mock_db_pool).rename_department(admin_user, "営業部", "営業部")
        mock_db_pool.connect.assert_not_called()

    def test_team_rename_updates_team_support(self, mock_db_pool, mock_db_conn, admin_user):
        mock_db_conn.execute.return_value.fetchone.return_value = None
        DepartmentService(pool=mock_db_pool).rename_team(admin_user, "開発部", "基盤チーム", "インフラチーム")

        statements = _statements(mock_db_conn)
        assert any("UPDATE goal_support SET support_name = :new" in s and "'Team'" in s for s in statements)
        mock_db_conn.commit.assert_called_once()
