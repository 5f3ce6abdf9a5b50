"""
監査ログモジュール

設定変更・権限変更・インポートなどの管理操作を audit_logs テーブルに記録する。

使用例:
    from lib.audit import log_audit, AuditAction, AuditResourceType

    with pool.connect() as conn:
        ...
        log_audit(
            conn,
            organization_id=org_id,
            action=AuditAction.UPDATE,
            resource_type=AuditResourceType.WORKFLOW_RULE,
            resource_id=rule_id,
            user_id=user_id,
            old_data=old_row,
            new_data=new_row,
        )
        conn.commit()

記録失敗は本処理を止めない（SAVEPOINT内で実行し、失敗時は警告ログのみ）。
"""

import json
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import text

from lib.logging import get_logger

logger = get_logger(__name__)


class AuditAction(str, Enum):
    """監査アクション"""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    ACTIVATE = "activate"
    IMPORT = "import"
    EXPORT = "export"
    GRANT = "grant"
    REVOKE = "revoke"


class AuditResourceType(str, Enum):
    """リソースタイプ"""
    GOAL = "goal"
    USER = "user"
    DEPARTMENT_TEAM = "department_team"
    DEPARTMENT_PERMISSION = "department_permission"
    WORKFLOW_RULE = "workflow_rule"
    WORKFLOW_CONFIGURATION = "workflow_configuration"
    AI_CONFIGURATION = "ai_configuration"


def _to_json(data: Optional[Dict[str, Any]]) -> Optional[str]:
    if data is None:
        return None
    return json.dumps(data, ensure_ascii=False, default=str)


def log_audit(
    conn,
    organization_id: str,
    action: str,
    resource_type: str,
    resource_id: Optional[str] = None,
    user_id: Optional[str] = None,
    old_data: Optional[Dict[str, Any]] = None,
    new_data: Optional[Dict[str, Any]] = None,
) -> bool:
    """
    監査ログをDBに記録する

    commit は呼び出し側の責務。

    Returns:
        True: 成功, False: 失敗（本処理は継続）
    """
    action_value = action.value if isinstance(action, Enum) else action
    resource_value = resource_type.value if isinstance(resource_type, Enum) else resource_type
    try:
        with conn.begin_nested():
            conn.execute(
                text("""
                    INSERT INTO audit_logs (
                        organization_id, user_id, action, resource_type,
                        resource_id, old_data, new_data, created_at
                    ) VALUES (
                        :organization_id, :user_id, :action, :resource_type,
                        :resource_id, CAST(:old_data AS jsonb), CAST(:new_data AS jsonb),
                        CURRENT_TIMESTAMP
                    )
                """),
                {
                    "organization_id": organization_id,
                    "user_id": user_id,
                    "action": action_value,
                    "resource_type": resource_value,
                    "resource_id": resource_id,
                    "old_data": _to_json(old_data),
                    "new_data": _to_json(new_data),
                },
            )
        return True
    except Exception as e:
        logger.warning(
            "Audit log failed (non-blocking)",
            action=action_value,
            resource_type=resource_value,
            resource_id=resource_id,
            error=str(e),
        )
        return False
