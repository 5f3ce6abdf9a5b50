"""
ドメイン例外

サービス層（lib/）が送出する例外。API層で HTTP ステータスに変換される。
"""

from typing import Any, Dict, Optional


class GoalFlowError(Exception):
    """ドメインエラーの基底クラス"""

    http_status = 400
    default_code = "BAD_REQUEST"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_code
        self.details = details or {}
        super().__init__(message)


class ValidationError(GoalFlowError):
    """入力値エラー"""

    http_status = 400
    default_code = "VALIDATION_ERROR"


class NotFoundError(GoalFlowError):
    """対象リソースが存在しない"""

    http_status = 404
    default_code = "NOT_FOUND"


class PermissionDeniedError(GoalFlowError):
    """操作権限がない"""

    http_status = 403
    default_code = "INSUFFICIENT_PERMISSION"


class InvalidTransitionError(GoalFlowError):
    """ワークフロー上許可されていないステータス遷移"""

    http_status = 409
    default_code = "INVALID_TRANSITION"


class ConflictError(GoalFlowError):
    """一意制約などの競合"""

    http_status = 409
    default_code = "CONFLICT"
