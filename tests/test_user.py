"""
tests/test_user.py - ユーザー・パスワードのテスト
"""

import pytest

from lib.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from lib.user import UserService, hash_password, is_valid_email, verify_password


class TestPassword:
    def test_hash_and_verify(self):
        hashed = hash_password("secret123")
        assert hashed != "secret123"
        assert verify_password("secret123", hashed)
        assert not verify_password("wrong", hashed)

    def test_missing_or_broken_hash(self):
        assert not verify_password("secret123", None)
        assert not verify_password("secret123", "not-a-bcrypt-hash")


@pytest.mark.parametrize("email,expected", [
    ("user@example.com", True),
    (" user@example.co.jp ", True),
    ("user@example", False),
    ("user example@x.com", False),
    ("", False),
    (None, False),
])
def test_is_valid_email(email, expected):
    assert is_valid_email(email) is expected


class TestCreateUser:
    def test_defaults(self, mock_db_pool, mock_db_conn):
        mock_db_conn.execute.return_value.fetchone.return_value = None
        user = UserService(pool=mock_db_pool).create_user(
            organization_id="org_test",
            email=" New@Example.com ",
            full_name=" 新人 ",
            password="secret1",
            role="Head",
        )
        assert user.email == "new@example.com"
        assert user.full_name == "新人"
        assert user.skills == ["Leadership", "Team Management"]
        assert user.is_active is True
        params = mock_db_conn.execute.call_args.args[1]
        assert params["password_hash"] != "secret1"
        mock_db_conn.commit.assert_called_once()

    def test_short_password(self, mock_db_pool):
        with pytest.raises(ValidationError) as exc_info:
            UserService(pool=mock_db_pool).create_user("org_test", "a@example.com", "A", "12345")
        assert "at least 6 characters" in exc_info.value.message

    def test_invalid_role(self, mock_db_pool):
        with pytest.raises(ValidationError):
            UserService(pool=mock_db_pool).create_user("org_test", "a@example.com", "A", "secret1", role="Owner")

    def test_duplicate_email(self, mock_db_pool, mock_db_conn):
        mock_db_conn.execute.return_value.fetchone.return_value = (
            "u-1", "org_test", "a@example.com", "A", "Employee", None, None, [], True, None, None,
        )
        with pytest.raises(ConflictError) as exc_info:
            UserService(pool=mock_db_pool).create_user("org_test", "a@example.com", "A", "secret1")
        assert exc_info.value.error_code == "EMAIL_EXISTS"


class TestUpdateRole:
    def test_non_admin(self, mock_db_pool, head_user):
        with pytest.raises(PermissionDeniedError):
            UserService(pool=mock_db_pool).update_role(head_user, "u-1", "Admin")

    def test_missing_user(self, mock_db_pool, mock_db_conn, admin_user):
        mock_db_conn.execute.return_value.rowcount = 0
        with pytest.raises(NotFoundError):
            UserService(pool=mock_db_pool).update_role(admin_user, "missing", "Head")


class TestChangePassword:
    def test_wrong_current_password(self, mock_db_pool, mock_db_conn, employee_user):
        mock_db_conn.execute.return_value.fetchone.return_value = (hash_password("current1"),)
        with pytest.raises(ValidationError) as exc_info:
            UserService(pool=mock_db_pool).change_password(employee_user, "nope", "newpass1")
        assert exc_info.value.error_code == "INVALID_PASSWORD"

    def test_success(self, mock_db_pool, mock_db_conn, employee_user):
        mock_db_conn.execute.return_value.fetchone.return_value = (hash_password("current1"),)
        UserService(pool=mock_db_pool).change_password(employee_user, "current1", "newpass1")
        mock_db_conn.commit.assert_called_once()
