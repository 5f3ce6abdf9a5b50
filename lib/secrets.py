"""
シークレット管理モジュール

DB パスワードや JWT 秘密鍵を GCP Secret Manager から取得する。
同名の環境変数（goalflow-db-password → GOALFLOW_DB_PASSWORD）があればそちらを優先する。

使用例:
    from lib.secrets import get_secret_cached

    password = get_secret_cached("goalflow-db-password")
"""

import os
import threading
from functools import lru_cache
from typing import Optional

from lib.config import get_settings

_client = None
_client_lock = threading.Lock()


def _secret_manager():
    global _client
    with _client_lock:
        if _client is None:
            # Cloud Run 以外では環境変数だけで動くので遅延インポート
            from google.cloud import secretmanager
            _client = secretmanager.SecretManagerServiceClient()
    return _client


def env_var_name(secret_id: str) -> str:
    return secret_id.upper().replace("-", "_")


def get_secret(
    secret_id: str,
    version: str = "latest",
    project_id: Optional[str] = None,
) -> str:
    """
    シークレットを取得

    Raises:
        ValueError: 直接接続（DB_HOST あり）でパスワードの環境変数が無い
    """
    override = os.getenv(env_var_name(secret_id))
    if override:
        return override

    settings = get_settings()
    if settings.DB_HOST and "password" in secret_id:
        raise ValueError(f"Set {env_var_name(secret_id)} for direct database connections")

    name = f"projects/{project_id or settings.PROJECT_ID}/secrets/{secret_id}/versions/{version}"
    response = _secret_manager().access_secret_version(request={"name": name})
    return response.payload.data.decode("utf-8")


@lru_cache(maxsize=32)
def get_secret_cached(
    secret_id: str,
    version: str = "latest",
    project_id: Optional[str] = None,
) -> str:
    """get_secret のプロセス内キャッシュ。ローテーション後は再起動する"""
    return get_secret(secret_id, version, project_id)
