"""
pytest 共通フィクスチャ

テスト全体で共有するフィクスチャを定義します。
"""

import os
import sys
import pytest
from unittest.mock import MagicMock

# プロジェクトルートをパスに追加
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, project_root)
# api/app のインポート用にapiディレクトリも追加
sys.path.insert(0, os.path.join(project_root, "api"))

from lib.permissions import UserContext  # noqa: E402

TEST_ORG_ID = "org_test"


# ================================================================
# 環境変数のモック
# ================================================================

@pytest.fixture(autouse=True)
def mock_env_vars(monkeypatch):
    """テスト用の環境変数を設定"""
    monkeypatch.setenv("PROJECT_ID", "test-project")
    monkeypatch.setenv("DB_HOST", "localhost")
    monkeypatch.setenv("DB_NAME", "test_db")
    monkeypatch.setenv("DB_USER", "test_user")
    monkeypatch.setenv("OLLAMA_API_URL", "http://ollama.test:11434")
    monkeypatch.setenv("OLLAMA_DEFAULT_MODEL", "llama3")
    monkeypatch.setenv("ENVIRONMENT", "test")
    monkeypatch.setenv("DEBUG", "true")


# ================================================================
# データベースモック
# ================================================================

@pytest.fixture
def mock_db_conn():
    """DBコネクションのモック"""
    return MagicMock()


@pytest.fixture
def mock_db_pool(mock_db_conn):
    """DBプールのモック（pool.connect() のコンテキストで mock_db_conn を返す）"""
    pool = MagicMock()
    pool.connect.return_value.__enter__ = MagicMock(return_value=mock_db_conn)
    pool.connect.return_value.__exit__ = MagicMock(return_value=None)
    return pool


# ================================================================
# ユーザーコンテキスト
# ================================================================

@pytest.fixture
def admin_user():
    return UserContext(
        user_id="admin-001",
        organization_id=TEST_ORG_ID,
        role="Admin",
        department="管理部",
        full_name="管理 太郎",
        email="admin@example.com",
    )


@pytest.fixture
def head_user():
    return UserContext(
        user_id="head-001",
        organization_id=TEST_ORG_ID,
        role="Head",
        department="営業部",
        full_name="営業 部長",
        email="head@example.com",
    )


@pytest.fixture
def employee_user():
    return UserContext(
        user_id="emp-001",
        organization_id=TEST_ORG_ID,
        role="Employee",
        department="営業部",
        full_name="営業 花子",
        email="emp@example.com",
    )
