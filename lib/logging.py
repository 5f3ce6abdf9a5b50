"""
構造化ログモジュール

ロガーのキーワード引数をそのままログのフィールドにする。
Cloud Run 上では Cloud Logging が解釈できる JSON 1 行、ローカルでは人が読む形式で出力し、
現在のテナント（organization_id）を自動で付与する。

使用例:
    from lib.logging import get_logger

    logger = get_logger(__name__)
    logger.info("Goal created", goal_id=goal_id, user_id=user_id)

出力例（Cloud Run）:
    {"severity": "INFO", "message": "Goal created", "goal_id": "...",
     "organization_id": "org_default", "time": "2026-01-17T10:00:00+00:00", ...}
"""

import json
import logging
import sys
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Dict, Optional, cast

from lib.config import get_settings
from lib.tenant import get_current_tenant

_FIELDS_ATTR = "goalflow_fields"


class StructuredFormatter(logging.Formatter):
    """Cloud Logging 互換の JSON フォーマッター"""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "severity": record.levelname,
            "message": record.getMessage(),
            "time": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "logger": record.name,
        }
        organization_id = get_current_tenant()
        if organization_id:
            entry["organization_id"] = organization_id
        entry.update(getattr(record, _FIELDS_ATTR, {}))
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        if record.levelno >= logging.WARNING:
            entry["logging.googleapis.com/sourceLocation"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }
        return json.dumps(entry, ensure_ascii=False, default=str)


class ConsoleFormatter(logging.Formatter):
    """ローカル開発用。フィールドは key=value で末尾に並べる"""

    def __init__(self):
        super().__init__("%(asctime)s | %(levelname)-8s | %(name)s | %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = getattr(record, _FIELDS_ATTR, {})
        if fields:
            line += " | " + " ".join(f"{k}={v}" for k, v in fields.items())
        return line


class StructuredLogger(logging.Logger):
    """
    構造化ログ対応のロガー

    debug/info/warning/error/exception/critical の追加キーワード引数を
    フィールドとして LogRecord に載せる。
    """

    def _log(  # type: ignore[override]
        self,
        level: int,
        msg: object,
        args,
        exc_info: Any = None,
        extra: Optional[Dict[str, Any]] = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        **fields: Any,
    ) -> None:
        merged = dict(extra or {})
        merged[_FIELDS_ATTR] = fields
        # 呼び出し元の位置を記録するため、このフレーム分を飛ばす
        super()._log(
            level,
            msg,
            args,
            exc_info=exc_info,
            extra=merged,
            stack_info=stack_info,
            stacklevel=stacklevel + 1,
        )


logging.setLoggerClass(StructuredLogger)


def _resolve_level(settings) -> int:
    if settings.LOG_LEVEL:
        return logging.getLevelName(settings.LOG_LEVEL.upper())
    return logging.DEBUG if settings.DEBUG else logging.INFO


@lru_cache(maxsize=128)
def get_logger(name: str) -> StructuredLogger:
    """
    構造化ロガーを取得

    Args:
        name: ロガー名（通常は __name__）
    """
    settings = get_settings()
    logger = logging.getLogger(name)
    if logger.handlers:
        return cast(StructuredLogger, logger)

    level = _resolve_level(settings)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter() if settings.is_cloud_run() else ConsoleFormatter())
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False
    return cast(StructuredLogger, logger)


# =============================================================================
# 便利関数
# =============================================================================

def log_api_request(
    logger: StructuredLogger,
    method: str,
    path: str,
    status_code: int,
    duration_ms: float,
    **extra
):
    """APIリクエストを記録（5xx は ERROR、4xx は WARNING）"""
    if status_code >= 500:
        level = logging.ERROR
    elif status_code >= 400:
        level = logging.WARNING
    else:
        level = logging.INFO
    logger.log(
        level,
        f"{method} {path} -> {status_code}",
        method=method,
        path=path,
        status_code=status_code,
        duration_ms=duration_ms,
        **extra
    )


def log_external_api_call(
    logger: StructuredLogger,
    service: str,
    method: str,
    endpoint: str,
    status_code: int,
    duration_ms: float,
    **extra
):
    """外部API（AI サービスなど）の呼び出しを記録"""
    logger.info(
        f"External API: {service} {method} {endpoint} -> {status_code}",
        service=service,
        method=method,
        endpoint=endpoint,
        status_code=status_code,
        duration_ms=duration_ms,
        **extra
    )


def log_audit_event(
    logger: StructuredLogger,
    action: str,
    resource_type: str,
    resource_id: str,
    user_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
):
    """
    管理操作をログに記録

    DB に残す監査ログは lib.audit.log_audit を使う。こちらは Cloud Logging 向け。
    """
    logger.info(
        f"Audit: {action} {resource_type}/{resource_id}",
        audit=True,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        user_id=user_id,
        details=details or {},
    )
