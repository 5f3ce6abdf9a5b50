"""
GoalFlow 共通ライブラリ

このモジュールは以下を提供します:
- config: 環境変数・設定管理
- secrets: GCP Secret Manager
- db: データベース接続（Cloud SQL Connector / 直接接続）
- logging: 構造化ログ
- tenant: テナントコンテキスト管理
- errors: ドメイン例外（HTTP ステータス付き）
- permissions: ロールと目標ごとのアクセス判定
- goal / goal_task / goal_comment / attachment: 目標・PDCA タスク・コメント・添付
- workflow: ステータス遷移と履歴
- goal_notification: アプリ内通知
- admin_import / admin_export: CSV / XLSX の一括取込・出力
- ai_service / ai_prompt / goal_analysis: Ollama 互換 API による目標分析

使用例（FastAPI）:
    from lib import get_db_pool, get_settings
    from lib.goal import get_goal_service

全サービスは organization_id（テナントID）でデータを分離する。
"""

__version__ = "1.0.0"

# 設定
from lib.config import (
    Settings,
    get_settings,
)

# シークレット管理
from lib.secrets import (
    get_secret,
    get_secret_cached,
)

# データベース
from lib.db import (
    get_db_pool,
    get_db_session,
    health_check,
)

# テナント管理
from lib.tenant import (
    TenantContext,
    get_current_tenant,
    get_current_or_default_tenant,
)

# ロギング
from lib.logging import (
    get_logger,
    log_audit_event,
)

# 例外
from lib.errors import (
    GoalFlowError,
    ValidationError,
    NotFoundError,
    PermissionDeniedError,
    InvalidTransitionError,
    ConflictError,
)

__all__ = [
    "__version__",
    "Settings",
    "get_settings",
    "get_secret",
    "get_secret_cached",
    "get_db_pool",
    "get_db_session",
    "health_check",
    "TenantContext",
    "get_current_tenant",
    "get_current_or_default_tenant",
    "get_logger",
    "log_audit_event",
    "GoalFlowError",
    "ValidationError",
    "NotFoundError",
    "PermissionDeniedError",
    "InvalidTransitionError",
    "ConflictError",
]
