"""
API v1 - Shared Dependencies

全ルートファイルで共有するエラー変換・依存関数を集約。
"""

from typing import NoReturn

from fastapi import HTTPException, status

from lib.errors import GoalFlowError
from lib.logging import get_logger, log_audit_event
from lib.permissions import UserContext
from app.deps.auth import get_current_user, require_admin

logger = get_logger(__name__)

__all__ = [
    "UserContext",
    "get_current_user",
    "require_admin",
    "internal_error",
    "log_audit_event",
    "raise_http_error",
]


def raise_http_error(e: GoalFlowError) -> NoReturn:
    """ドメイン例外を HTTPException に変換して送出"""
    raise HTTPException(
        status_code=e.http_status,
        detail={
            "status": "failed",
            "error_code": e.error_code,
            "error_message": e.message,
        },
    )


def internal_error() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={
            "status": "failed",
            "error_code": "INTERNAL_ERROR",
            "error_message": "内部エラーが発生しました",
        },
    )
