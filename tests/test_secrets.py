"""
シークレット取得のテスト（Secret Manager はモック）
"""

from unittest.mock import MagicMock, patch

import pytest

import lib.secrets as secrets_module
from lib.config import get_settings
from lib.secrets import env_var_name, get_secret


@pytest.fixture(autouse=True)
def fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_env_var_name():
    assert env_var_name("goalflow-db-password") == "GOALFLOW_DB_PASSWORD"


def test_env_var_overrides_secret_manager(monkeypatch):
    monkeypatch.setenv("GOALFLOW_JWT_SECRET", "from-env")
    with patch.object(secrets_module, "_secret_manager") as manager:
        assert get_secret("goalflow-jwt-secret") == "from-env"
    manager.assert_not_called()


def test_direct_connection_requires_password_env(monkeypatch):
    monkeypatch.delenv("GOALFLOW_DB_PASSWORD", raising=False)
    with pytest.raises(ValueError, match="GOALFLOW_DB_PASSWORD"):
        get_secret("goalflow-db-password")


def test_secret_manager_lookup(monkeypatch):
    monkeypatch.delenv("DB_HOST", raising=False)
    monkeypatch.delenv("GOALFLOW_JWT_SECRET", raising=False)
    client = MagicMock()
    client.access_secret_version.return_value.payload.data = b"from-manager"
    with patch.object(secrets_module, "_secret_manager", return_value=client):
        assert get_secret("goalflow-jwt-secret") == "from-manager"
    client.access_secret_version.assert_called_once_with(
        request={"name": "projects/test-project/secrets/goalflow-jwt-secret/versions/latest"}
    )
