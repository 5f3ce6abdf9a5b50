"""
データベース接続モジュール

SQLAlchemy の同期コネクションプール（pg8000）を提供する。
クエリはすべて sqlalchemy.text + バインドパラメータで書き、
WHERE 句に organization_id を必ず含める。

使用例:
    from sqlalchemy import text
    from lib.db import get_db_pool

    with get_db_pool().connect() as conn:
        rows = conn.execute(
            text("SELECT id, subject FROM goals WHERE organization_id = :org_id"),
            {"org_id": org_id},
        ).fetchall()

DB_HOST があれば直接接続、無ければ Cloud SQL Connector 経由で接続する。
"""

import threading
from contextlib import contextmanager
from typing import Optional, TYPE_CHECKING

import sqlalchemy
from sqlalchemy import text
from sqlalchemy.pool import QueuePool

from .config import Settings, get_settings
from .secrets import get_secret_cached

if TYPE_CHECKING:
    from google.cloud.sql.connector import Connector

DB_PASSWORD_SECRET = "goalflow-db-password"

_connector: Optional["Connector"] = None
_pool: Optional[sqlalchemy.Engine] = None
_lock = threading.Lock()


def _pool_options(settings: Settings) -> dict:
    return {
        "poolclass": QueuePool,
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
        "pool_timeout": settings.DB_POOL_TIMEOUT,
        "pool_recycle": settings.DB_POOL_RECYCLE,
        "pool_pre_ping": True,
    }


def _create_direct_engine(settings: Settings) -> sqlalchemy.Engine:
    url = sqlalchemy.engine.URL.create(
        "postgresql+pg8000",
        username=settings.DB_USER,
        password=get_secret_cached(DB_PASSWORD_SECRET),
        host=settings.DB_HOST,
        port=settings.DB_PORT,
        database=settings.DB_NAME,
    )
    return sqlalchemy.create_engine(url, **_pool_options(settings))


def _create_connector_engine(settings: Settings) -> sqlalchemy.Engine:
    global _connector
    # ローカル開発では不要なので遅延インポート
    from google.cloud.sql.connector import Connector

    if _connector is None:
        _connector = Connector()
    connector = _connector

    def getconn():
        return connector.connect(
            settings.INSTANCE_CONNECTION_NAME,
            "pg8000",
            user=settings.DB_USER,
            password=get_secret_cached(DB_PASSWORD_SECRET),
            db=settings.DB_NAME,
        )

    return sqlalchemy.create_engine("postgresql+pg8000://", creator=getconn, **_pool_options(settings))


def get_db_pool() -> sqlalchemy.Engine:
    """
    プロセス共有のコネクションプールを取得

    Returns:
        sqlalchemy.Engine
    """
    global _pool
    if _pool is None:
        with _lock:
            if _pool is None:
                settings = get_settings()
                if settings.DB_HOST:
                    _pool = _create_direct_engine(settings)
                else:
                    _pool = _create_connector_engine(settings)
    return _pool


@contextmanager
def get_db_session():
    """コネクションを with で借りる（commit は呼び出し側）"""
    with get_db_pool().connect() as conn:
        yield conn


def close_all_connections() -> None:
    """プールと Connector を破棄する（シャットダウン時）"""
    global _pool, _connector
    with _lock:
        if _pool is not None:
            _pool.dispose()
            _pool = None
        if _connector is not None:
            _connector.close()
            _connector = None


def health_check() -> bool:
    """SELECT 1 が通るか"""
    try:
        with get_db_pool().connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False
