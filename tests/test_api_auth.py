"""
tests/test_api_auth.py - JWT認証テスト

- JWT生成・検証
- 無効トークン / 期限切れ / 必須claims不足で401
- 正常トークンでUserContext取得（role / dept / perms）
- require_admin による管理者チェック
- エンドポイントレベルの 401 / 403
"""

import datetime
from unittest.mock import patch

import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials
from jose import jwt

import app.deps.auth as auth_module
from app.deps.auth import (
    _get_jwt_secret,
    create_access_token,
    decode_jwt,
    get_current_user,
    require_admin,
)

# テスト用JWT秘密鍵
TEST_JWT_SECRET = "test-secret-key-for-unit-tests-only"


@pytest.fixture(autouse=True)
def set_jwt_secret(monkeypatch):
    """テスト用のJWT秘密鍵を設定（環境変数＋キャッシュリセット）"""
    monkeypatch.setenv("GOALFLOW_JWT_SECRET", TEST_JWT_SECRET)
    monkeypatch.setattr(auth_module, "_cached_secret", None)


def _make_token(
    user_id="user-001",
    org_id="org-001",
    role="Employee",
    expires_minutes=60,
    secret=TEST_JWT_SECRET,
    extra_claims=None,
):
    """テスト用JWTトークンを生成"""
    now = datetime.datetime.now(datetime.timezone.utc)
    payload = {
        "sub": user_id,
        "org_id": org_id,
        "role": role,
        "iat": now,
        "exp": now + datetime.timedelta(minutes=expires_minutes),
    }
    if extra_claims:
        payload.update(extra_claims)
    return jwt.encode(payload, secret, algorithm="HS256")


def _creds(token):
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


# ================================================================
# decode_jwt テスト
# ================================================================


class TestDecodeJwt:
    """decode_jwt関数のテスト"""

    def test_valid_token(self):
        payload = decode_jwt(_make_token(user_id="u-123", org_id="o-456", role="Admin"))
        assert payload["sub"] == "u-123"
        assert payload["org_id"] == "o-456"
        assert payload["role"] == "Admin"

    def test_invalid_token_raises_401(self):
        with pytest.raises(HTTPException) as exc_info:
            decode_jwt("invalid-token-string")
        assert exc_info.value.status_code == 401
        assert "Invalid or expired token" in exc_info.value.detail

    def test_expired_token_raises_401(self):
        with pytest.raises(HTTPException) as exc_info:
            decode_jwt(_make_token(expires_minutes=-10))
        assert exc_info.value.status_code == 401

    def test_wrong_secret_raises_401(self):
        with pytest.raises(HTTPException) as exc_info:
            decode_jwt(_make_token(secret="wrong-secret-key"))
        assert exc_info.value.status_code == 401

    def test_missing_sub_raises_401(self):
        with pytest.raises(HTTPException) as exc_info:
            decode_jwt(_make_token(user_id=""))
        assert "sub" in exc_info.value.detail

    def test_missing_org_id_raises_401(self):
        with pytest.raises(HTTPException) as exc_info:
            decode_jwt(_make_token(org_id=None))
        assert "org_id" in exc_info.value.detail

    def test_unknown_role_raises_401(self):
        with pytest.raises(HTTPException) as exc_info:
            decode_jwt(_make_token(role="superuser"))
        assert exc_info.value.status_code == 401
        assert "role" in exc_info.value.detail


# ================================================================
# get_current_user テスト
# ================================================================


class TestGetCurrentUser:
    """get_current_user依存関数のテスト"""

    @pytest.mark.asyncio
    async def test_no_credentials_raises_401(self):
        with pytest.raises(HTTPException) as exc_info:
            await get_current_user(credentials=None)
        assert exc_info.value.status_code == 401
        assert "Authentication required" in exc_info.value.detail

    @pytest.mark.asyncio
    async def test_claims_are_mapped(self):
        token = _make_token(
            user_id="u-head",
            org_id="o-test",
            role="Head",
            extra_claims={"dept": "営業部", "name": "営業 部長", "perms": ["開発部"]},
        )
        user = await get_current_user(credentials=_creds(token))

        assert user.user_id == "u-head"
        assert user.organization_id == "o-test"
        assert user.role == "Head"
        assert user.department == "営業部"
        assert user.full_name == "営業 部長"
        assert user.permitted_departments == ["開発部"]

    @pytest.mark.asyncio
    async def test_default_role_is_employee(self):
        now = datetime.datetime.now(datetime.timezone.utc)
        token = jwt.encode(
            {"sub": "u-norole", "org_id": "o-test", "iat": now, "exp": now + datetime.timedelta(hours=1)},
            TEST_JWT_SECRET,
            algorithm="HS256",
        )
        user = await get_current_user(credentials=_creds(token))
        assert user.role == "Employee"
        assert user.department is None
        assert user.permitted_departments == []


class TestRequireAdmin:
    def test_admin_passes(self, admin_user):
        assert require_admin(admin_user) is admin_user

    def test_head_is_rejected(self, head_user):
        with pytest.raises(HTTPException) as exc_info:
            require_admin(head_user)
        assert exc_info.value.status_code == 403
        assert exc_info.value.detail["error_code"] == "INSUFFICIENT_PERMISSION"


# ================================================================
# create_access_token テスト
# ================================================================


class TestCreateAccessToken:
    """create_access_token関数のテスト"""

    def test_create_and_decode(self):
        token = create_access_token(
            user_id="u-rt",
            organization_id="o-rt",
            role="Head",
            department="営業部",
            email="head@example.com",
            permitted_departments=["開発部", "人事部"],
        )
        payload = decode_jwt(token)
        assert payload["sub"] == "u-rt"
        assert payload["dept"] == "営業部"
        assert payload["email"] == "head@example.com"
        assert payload["perms"] == ["開発部", "人事部"]

    def test_optional_claims_are_omitted(self):
        payload = decode_jwt(create_access_token(user_id="u-nd", organization_id="o-nd"))
        assert payload["role"] == "Employee"
        assert "dept" not in payload
        assert "perms" not in payload

    def test_custom_expiry(self):
        payload = decode_jwt(create_access_token(user_id="u-exp", organization_id="o-exp", expires_minutes=5))
        exp = datetime.datetime.fromtimestamp(payload["exp"], tz=datetime.timezone.utc)
        diff = (exp - datetime.datetime.now(datetime.timezone.utc)).total_seconds()
        assert 180 < diff < 360


# ================================================================
# _get_jwt_secret テスト
# ================================================================


class TestGetJwtSecret:
    def test_env_var_priority(self):
        assert _get_jwt_secret() == TEST_JWT_SECRET

    def test_secret_manager_fallback(self, monkeypatch):
        monkeypatch.setenv("GOALFLOW_JWT_SECRET", "")
        with patch("lib.secrets.get_secret_cached", return_value="from-secret-manager") as mock_get:
            assert auth_module._get_jwt_secret() == "from-secret-manager"
        mock_get.assert_called_once_with("goalflow-jwt-secret")

    def test_no_secret_raises_500(self, monkeypatch):
        monkeypatch.setenv("GOALFLOW_JWT_SECRET", "")
        with patch("lib.secrets.get_secret_cached", side_effect=RuntimeError("no access")):
            with pytest.raises(HTTPException) as exc_info:
                auth_module._get_jwt_secret()
        assert exc_info.value.status_code == 500


# ================================================================
# API統合テスト: エンドポイントレベルのJWT認証検証
# ================================================================


class TestEndpointAuth:
    @pytest.fixture
    def client(self):
        from fastapi import FastAPI
        from fastapi.testclient import TestClient
        from app.api.v1 import router

        app = FastAPI()
        app.include_router(router, prefix="/api")
        return TestClient(app)

    def test_goals_without_jwt_returns_401(self, client):
        response = client.get("/api/v1/goals")
        assert response.status_code == 401

    def test_admin_route_with_employee_token_returns_403(self, client):
        token = _make_token(role="Employee")
        response = client.get("/api/v1/admin/users", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 403
        assert response.json()["detail"]["error_code"] == "INSUFFICIENT_PERMISSION"
