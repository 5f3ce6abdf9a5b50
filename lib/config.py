"""
設定管理モジュール

環境変数とデフォルト値を一元管理する。
DB接続、AIサービス（Ollama / Open WebUI / OpenAI互換）、添付ファイル保存先、
認証、ログレベルの設定をここに集約する。

使用例:
    from lib.config import get_settings

    settings = get_settings()
    print(settings.OLLAMA_API_URL)

テストで環境変数を差し替えた後は get_settings.cache_clear() を呼ぶこと。
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional
from functools import lru_cache


def _env(name: str, default: Optional[str] = None):
    return field(default_factory=lambda: os.getenv(name, default))


def _env_int(name: str, default: int):
    return field(default_factory=lambda: int(os.getenv(name, str(default))))


def _env_float(name: str, default: float):
    return field(default_factory=lambda: float(os.getenv(name, str(default))))


def _env_bool(name: str, default: bool):
    return field(default_factory=lambda: os.getenv(name, str(default)).lower() in ("1", "true", "yes"))


@dataclass(frozen=True)
class Settings:
    """
    アプリケーション設定

    frozen=True の不変オブジェクト。インスタンス生成時に環境変数を読む。
    """

    # GCP
    PROJECT_ID: str = _env("PROJECT_ID", "goalflow-production")

    # Cloud SQL（DB_HOST があれば直接接続）
    INSTANCE_CONNECTION_NAME: str = _env(
        "INSTANCE_CONNECTION_NAME", "goalflow-production:asia-northeast1:goalflow-db"
    )
    DB_NAME: str = _env("DB_NAME", "goalflow")
    DB_USER: str = _env("DB_USER", "goalflow_user")
    DB_HOST: Optional[str] = _env("DB_HOST")
    DB_PORT: int = _env_int("DB_PORT", 5432)

    # コネクションプール
    DB_POOL_SIZE: int = _env_int("DB_POOL_SIZE", 5)
    DB_MAX_OVERFLOW: int = _env_int("DB_MAX_OVERFLOW", 2)
    DB_POOL_TIMEOUT: int = _env_int("DB_POOL_TIMEOUT", 30)
    DB_POOL_RECYCLE: int = _env_int("DB_POOL_RECYCLE", 1800)

    # AIサービス。組織ごとの AI 設定が無い場合の既定値
    OLLAMA_API_URL: str = _env("OLLAMA_API_URL", "http://localhost:11434")
    OLLAMA_DEFAULT_MODEL: str = _env("OLLAMA_DEFAULT_MODEL", "llama3.2")
    OLLAMA_API_KEY: Optional[str] = _env("OLLAMA_API_KEY")
    AI_TIMEOUT_SECONDS: float = _env_float("AI_TIMEOUT_SECONDS", 120.0)
    AI_MAX_RETRIES: int = _env_int("AI_MAX_RETRIES", 3)
    AI_MAX_TOKENS: int = _env_int("AI_MAX_TOKENS", 100000)

    # 添付ファイル（Cloud Storage）
    ATTACHMENT_BUCKET: str = _env("ATTACHMENT_BUCKET", "goalflow-attachments")
    ATTACHMENT_MAX_BYTES: int = _env_int("ATTACHMENT_MAX_BYTES", 5 * 1024 * 1024)
    ATTACHMENT_SIGNED_URL_MINUTES: int = _env_int("ATTACHMENT_SIGNED_URL_MINUTES", 60)

    # 認証（8時間）
    JWT_EXPIRES_MINUTES: int = _env_int("JWT_EXPIRES_MINUTES", 480)

    # 環境・ログ
    ENVIRONMENT: str = _env("ENVIRONMENT", "development")
    DEBUG: bool = _env_bool("DEBUG", True)
    LOG_LEVEL: Optional[str] = _env("LOG_LEVEL")

    @property
    def CORS_ORIGINS(self) -> List[str]:
        origins = os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:8080")
        return [o.strip() for o in origins.split(",") if o.strip()]

    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    def is_cloud_run(self) -> bool:
        """Cloud Run 上で動作しているか（K_SERVICE が設定される）"""
        return os.getenv("K_SERVICE") is not None


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """設定を取得（プロセス内で1インスタンスを共有）"""
    return Settings()
