"""
PDCA ワークフロー

目標ステータスの状態遷移、ワークフロー履歴エントリ、変更追跡、
およびワークフロー設定（ルール・遷移設定）の管理を提供する。

ステータス遷移（デフォルト）:
    Plan     → Do, On Hold
    Do       → Check, On Hold
    Check    → Act, Do, On Hold
    Act      → Completed, Plan, On Hold
    On Hold  → Plan, Do, Check, Act
    Completed / Cancelled → （終端）

前進遷移（Plan→Do, Do→Check, Check→Act, Act→Completed）は
現フェーズのタスクが全て完了している場合のみ許可される。

使用例:
    from lib.workflow import validate_transition, make_history_entry

    validate_transition("Plan", "Do", transitions)
    entry = make_history_entry(
        action=WorkflowAction.STATUS_CHANGE,
        user_id=user.user_id,
        user_name=user.full_name,
        from_status="Plan",
        to_status="Do",
    )
"""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from sqlalchemy import text

from lib.audit import AuditAction, AuditResourceType, log_audit
from lib.db import get_db_pool
from lib.errors import (
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from lib.logging import get_logger
from lib.permissions import UserContext, is_admin

logger = get_logger(__name__)


# =============================================================================
# 定数定義
# =============================================================================

class GoalStatus(str, Enum):
    """目標ステータス（PDCA + 保留・完了・中止）"""
    PLAN = "Plan"
    DO = "Do"
    CHECK = "Check"
    ACT = "Act"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    ON_HOLD = "On Hold"


STATUS_VALUES = [s.value for s in GoalStatus]
PDCA_PHASES = ["Plan", "Do", "Check", "Act"]
CLOSED_STATUSES = {"Completed", "Cancelled"}

DEFAULT_TRANSITIONS: Dict[str, List[str]] = {
    "Plan": ["Do", "On Hold"],
    "Do": ["Check", "On Hold"],
    "Check": ["Act", "Do", "On Hold"],
    "Act": ["Completed", "Plan", "On Hold"],
    "On Hold": ["Plan", "Do", "Check", "Act"],
    "Completed": [],
    "Cancelled": [],
}

# タスク完了チェックが必要な前進遷移
FORWARD_PROGRESSIONS = {
    ("Plan", "Do"),
    ("Do", "Check"),
    ("Check", "Act"),
    ("Act", "Completed"),
}

DEFAULT_ROLE_PERMISSIONS: Dict[str, List[str]] = {
    "Admin": ["*"],
    "Head": ["Plan", "Do", "Check", "Act", "On Hold"],
    "Employee": ["Do", "Check"],
}

DEFAULT_STATUS_COLORS: Dict[str, str] = {
    "Plan": "#3b82f6",
    "Do": "#f59e0b",
    "Check": "#10b981",
    "Act": "#8b5cf6",
    "On Hold": "#6b7280",
    "Completed": "#22c55e",
    "Cancelled": "#ef4444",
}

DEFAULT_STATUS_ICONS: Dict[str, str] = {
    "Plan": "clipboard-list",
    "Do": "play",
    "Check": "search",
    "Act": "check-circle",
    "On Hold": "pause",
    "Completed": "check-circle-2",
    "Cancelled": "x-circle",
}


class WorkflowAction(str, Enum):
    """ワークフロー履歴のアクション種別"""
    STATUS_CHANGE = "status_change"
    GOAL_UPDATED = "goal_updated"
    START_DATE_SET = "start_date_set"
    TARGET_DATE_SET = "target_date_set"
    SUPPORT_ADDED = "support_added"
    TASK_CREATED = "task_created"
    TASK_STARTED = "task_started"
    TASK_COMPLETED = "task_completed"
    TASK_EDITED = "task_edited"
    TASK_DELETED = "task_deleted"
    TASKS_BULK_CREATED = "tasks_bulk_created"


class RuleType(str, Enum):
    """ワークフロールール種別"""
    PHASE_COMPLETION_THRESHOLD = "phase_completion_threshold"
    MANDATORY_FIELDS = "mandatory_fields"
    VALIDATION_RULE = "validation_rule"
    NOTIFICATION_RULE = "notification_rule"
    DURATION_LIMIT = "duration_limit"


RULE_PHASES = ["Plan", "Do", "Check", "Act", "All"]


# =============================================================================
# データクラス
# =============================================================================

@dataclass
class WorkflowConfiguration:
    """ワークフロー設定（遷移・ロール権限・表示色・アイコン）"""

    name: str
    transitions: Dict[str, List[str]]
    role_permissions: Dict[str, List[str]]
    status_colors: Dict[str, str] = field(default_factory=dict)
    status_icons: Dict[str, str] = field(default_factory=dict)
    description: Optional[str] = None
    is_active: bool = False
    is_default: bool = False
    id: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "transitions": self.transitions,
            "role_permissions": self.role_permissions,
            "status_colors": self.status_colors,
            "status_icons": self.status_icons,
            "is_active": self.is_active,
            "is_default": self.is_default,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass
class WorkflowRule:
    """ワークフロールール"""

    name: str
    rule_type: str
    phase: Optional[str]
    configuration: Dict[str, Any]
    description: Optional[str] = None
    is_active: bool = True
    id: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "rule_type": self.rule_type,
            "phase": self.phase,
            "configuration": self.configuration,
            "is_active": self.is_active,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


def default_configuration() -> WorkflowConfiguration:
    """組み込みのデフォルトPDCA設定（DBに設定が無い場合に使用）"""
    return WorkflowConfiguration(
        id="default-config",
        name="Default PDCA Workflow",
        description="Standard Plan-Do-Check-Act workflow",
        transitions=copy.deepcopy(DEFAULT_TRANSITIONS),
        role_permissions=copy.deepcopy(DEFAULT_ROLE_PERMISSIONS),
        status_colors=dict(DEFAULT_STATUS_COLORS),
        status_icons=dict(DEFAULT_STATUS_ICONS),
        is_active=True,
        is_default=True,
    )


# =============================================================================
# 状態遷移
# =============================================================================

def is_forward_progression(from_status: str, to_status: str) -> bool:
    return (from_status, to_status) in FORWARD_PROGRESSIONS


def validate_transition(
    from_status: str,
    to_status: str,
    transitions: Optional[Dict[str, List[str]]] = None,
) -> None:
    """
    ステータス遷移を検証する

    Raises:
        ValidationError: 未知のステータス
        InvalidTransitionError: 遷移表に無い遷移
    """
    transitions = transitions or DEFAULT_TRANSITIONS
    if to_status not in STATUS_VALUES:
        raise ValidationError(f"Invalid status: {to_status}", error_code="INVALID_STATUS")

    allowed = transitions.get(from_status, [])
    if to_status not in allowed:
        allowed_text = ", ".join(allowed) if allowed else "none"
        raise InvalidTransitionError(
            f"Invalid status transition from {from_status} to {to_status}. "
            f"Allowed transitions: {allowed_text}",
            details={"from_status": from_status, "to_status": to_status, "allowed": allowed},
        )


def allowed_next_statuses(
    config: WorkflowConfiguration,
    role: str,
    current_status: str,
) -> List[str]:
    """
    ロールに応じた遷移先候補（UI表示用）

    role_permissions に "*" を持つロールは遷移表どおり全て。
    """
    candidates = config.transitions.get(current_status, [])
    permitted = config.role_permissions.get(role)
    if permitted is None or "*" in permitted:
        return list(candidates)
    return [s for s in candidates if s in permitted]


def format_incomplete_tasks_message(phase: str, incomplete_tasks: List[Dict[str, Any]]) -> str:
    """フェーズ未完了タスクのエラーメッセージ"""
    lines = []
    for task in incomplete_tasks:
        assignee = task.get("assignee_name") or "Unassigned"
        lines.append(f"• {task.get('title')} ({assignee})")
    return (
        f"Cannot move from {phase} phase until all {phase} tasks are completed. "
        f"Incomplete tasks:\n" + "\n".join(lines)
    )


# =============================================================================
# ワークフロー履歴
# =============================================================================

def make_history_entry(
    action: str,
    user_id: Optional[str],
    user_name: Optional[str] = None,
    comment: Optional[str] = None,
    from_status: Optional[str] = None,
    to_status: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """workflow_history に追加するエントリを生成"""
    entry: Dict[str, Any] = {
        "id": f"history-{uuid4().hex}",
        "action": action.value if isinstance(action, Enum) else action,
        "user_id": user_id,
        "user_name": user_name,
        "comment": comment,
        "created_at": datetime.now(timezone.utc).isoformat(),
    }
    if from_status is not None:
        entry["from_status"] = from_status
    if to_status is not None:
        entry["to_status"] = to_status
    if details:
        entry["details"] = details
    return entry


def append_history(conn, goal_id: str, entries: List[Dict[str, Any]]) -> None:
    """goals.workflow_history（jsonb配列）にエントリを追記"""
    if not entries:
        return
    conn.execute(
        text("""
            UPDATE goals
            SET workflow_history = COALESCE(workflow_history, '[]'::jsonb) || CAST(:entries AS jsonb),
                updated_at = CURRENT_TIMESTAMP
            WHERE id = :goal_id
        """),
        {"goal_id": goal_id, "entries": json.dumps(entries, ensure_ascii=False, default=str)},
    )


# =============================================================================
# 変更追跡（目標詳細の編集）
# =============================================================================

TRACKED_FIELDS: List[Tuple[str, str]] = [
    ("subject", "Subject"),
    ("description", "Description"),
    ("priority", "Priority"),
    ("target_date", "Target Date"),
    ("adjusted_target_date", "Adjusted Target Date"),
    ("target_metrics", "Target Metrics"),
    ("success_criteria", "Success Criteria"),
    ("progress_percentage", "Progress Percentage"),
]

DATE_FIELDS = {"target_date", "adjusted_target_date", "start_date"}


def normalize_date(value: Any) -> Optional[str]:
    """日付を YYYY-MM-DD に正規化（解釈できない場合は None）"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).date().isoformat()
    except ValueError:
        return None


def truncate_text(value: Any, max_len: int = 50) -> str:
    text_value = str(value)
    return text_value[:max_len] + "..." if len(text_value) > max_len else text_value


def track_goal_changes(current: Dict[str, Any], updates: Dict[str, Any]) -> List[Dict[str, Any]]:
    """
    変更されたフィールドを抽出

    日付は正規化して比較、None（未指定）のキーは比較しない。

    Returns:
        [{"field", "label", "old", "new"}, ...]
    """
    changes = []
    for field_name, label in TRACKED_FIELDS:
        if field_name not in updates or updates[field_name] is None:
            continue
        new_value = updates[field_name]
        old_value = current.get(field_name)
        if field_name in DATE_FIELDS:
            if normalize_date(new_value) == normalize_date(old_value):
                continue
        elif new_value == old_value:
            continue
        changes.append({"field": field_name, "label": label, "old": old_value, "new": new_value})
    return changes


def describe_changes(changes: List[Dict[str, Any]]) -> str:
    """変更内容を "Label: old → new; ..." 形式に整形"""
    parts = []
    for change in changes:
        if change["field"] in DATE_FIELDS:
            old = normalize_date(change["old"]) or "None"
            new = normalize_date(change["new"]) or "None"
        elif change["field"] == "progress_percentage":
            old = f"{change['old'] or 0}%"
            new = f"{change['new']}%"
        else:
            old = truncate_text(change["old"] or "None")
            new = truncate_text(change["new"] or "None")
        parts.append(f"{change['label']}: {old} → {new}")
    return "; ".join(parts)


def build_update_entry(
    changes: List[Dict[str, Any]],
    user_id: str,
    user_name: Optional[str],
) -> Optional[Dict[str, Any]]:
    """変更がある場合のみ goal_updated エントリを生成"""
    if not changes:
        return None
    return make_history_entry(
        action=WorkflowAction.GOAL_UPDATED,
        user_id=user_id,
        user_name=user_name,
        comment=f"Goal details updated: {describe_changes(changes)}",
        details={
            "fields_changed": [c["field"] for c in changes],
            "change_count": len(changes),
        },
    )


# =============================================================================
# ワークフロー設定サービス
# =============================================================================

def _loads(value: Any, default: Any) -> Any:
    if value is None:
        return default
    if isinstance(value, (dict, list)):
        return value
    return json.loads(value)


def _dumps(value: Any) -> Optional[str]:
    return None if value is None else json.dumps(value, ensure_ascii=False)


class WorkflowConfigService:
    """
    ワークフロールール・遷移設定の管理（Admin専用）

    全ての変更操作は audit_logs に旧値・新値を記録する。
    """

    def __init__(self, pool=None):
        self._pool = pool

    @property
    def pool(self):
        if self._pool is None:
            self._pool = get_db_pool()
        return self._pool

    @staticmethod
    def _require_admin(user: UserContext) -> None:
        if not is_admin(user):
            raise PermissionDeniedError("Admin access required")

    # -------------------------------------------------------------------------
    # ルール
    # -------------------------------------------------------------------------

    def list_rules(self, user: UserContext) -> List[WorkflowRule]:
        self._require_admin(user)
        with self.pool.connect() as conn:
            rows = conn.execute(
                text("""
                    SELECT id, name, description, rule_type, phase, configuration,
                           is_active, created_by, created_at, updated_at
                    FROM workflow_rules
                    WHERE organization_id = :org_id
                    ORDER BY created_at DESC
                """),
                {"org_id": user.organization_id},
            ).fetchall()
        return [self._row_to_rule(r) for r in rows]

    def get_active_rules(self, organization_id: str, phase: Optional[str] = None) -> List[WorkflowRule]:
        """有効なルール（phase 指定時はそのフェーズと All）"""
        params: Dict[str, Any] = {"org_id": organization_id}
        phase_sql = ""
        if phase:
            phase_sql = "AND (phase = :phase OR phase = 'All')"
            params["phase"] = phase
        with self.pool.connect() as conn:
            rows = conn.execute(
                text(f"""
                    SELECT id, name, description, rule_type, phase, configuration,
                           is_active, created_by, created_at, updated_at
                    FROM workflow_rules
                    WHERE organization_id = :org_id AND is_active = TRUE {phase_sql}
                    ORDER BY rule_type ASC
                """),
                params,
            ).fetchall()
        return [self._row_to_rule(r) for r in rows]

    def create_rule(self, user: UserContext, data: Dict[str, Any]) -> WorkflowRule:
        self._require_admin(user)
        self._validate_rule(data)
        rule_id = str(uuid4())
        with self.pool.connect() as conn:
            conn.execute(
                text("""
                    INSERT INTO workflow_rules (
                        id, organization_id, name, description, rule_type, phase,
                        configuration, is_active, created_by
                    ) VALUES (
                        :id, :org_id, :name, :description, :rule_type, :phase,
                        CAST(:configuration AS jsonb), :is_active, :created_by
                    )
                """),
                {
                    "id": rule_id,
                    "org_id": user.organization_id,
                    "name": data["name"],
                    "description": data.get("description"),
                    "rule_type": data["rule_type"],
                    "phase": data.get("phase"),
                    "configuration": _dumps(data.get("configuration") or {}),
                    "is_active": data.get("is_active", True),
                    "created_by": user.user_id,
                },
            )
            log_audit(
                conn,
                organization_id=user.organization_id,
                action=AuditAction.CREATE,
                resource_type=AuditResourceType.WORKFLOW_RULE,
                resource_id=rule_id,
                user_id=user.user_id,
                new_data=data,
            )
            conn.commit()
        logger.info("Workflow rule created", rule_id=rule_id, rule_type=data["rule_type"])
        return WorkflowRule(
            id=rule_id,
            name=data["name"],
            description=data.get("description"),
            rule_type=data["rule_type"],
            phase=data.get("phase"),
            configuration=data.get("configuration") or {},
            is_active=data.get("is_active", True),
            created_by=user.user_id,
        )

    def update_rule(self, user: UserContext, rule_id: str, updates: Dict[str, Any]) -> WorkflowRule:
        self._require_admin(user)
        with self.pool.connect() as conn:
            current = self._fetch_rule(conn, user.organization_id, rule_id)
            merged = {**current.to_dict(), **{k: v for k, v in updates.items() if v is not None}}
            self._validate_rule(merged)
            conn.execute(
                text("""
                    UPDATE workflow_rules
                    SET name = :name, description = :description, rule_type = :rule_type,
                        phase = :phase, configuration = CAST(:configuration AS jsonb),
                        is_active = :is_active, updated_at = CURRENT_TIMESTAMP
                    WHERE id = :id AND organization_id = :org_id
                """),
                {
                    "id": rule_id,
                    "org_id": user.organization_id,
                    "name": merged["name"],
                    "description": merged.get("description"),
                    "rule_type": merged["rule_type"],
                    "phase": merged.get("phase"),
                    "configuration": _dumps(merged.get("configuration") or {}),
                    "is_active": merged.get("is_active", True),
                },
            )
            log_audit(
                conn,
                organization_id=user.organization_id,
                action=AuditAction.UPDATE,
                resource_type=AuditResourceType.WORKFLOW_RULE,
                resource_id=rule_id,
                user_id=user.user_id,
                old_data=current.to_dict(),
                new_data=updates,
            )
            conn.commit()
        return WorkflowRule(
            id=rule_id,
            name=merged["name"],
            description=merged.get("description"),
            rule_type=merged["rule_type"],
            phase=merged.get("phase"),
            configuration=merged.get("configuration") or {},
            is_active=merged.get("is_active", True),
            created_by=current.created_by,
            created_at=current.created_at,
        )

    def delete_rule(self, user: UserContext, rule_id: str) -> None:
        self._require_admin(user)
        with self.pool.connect() as conn:
            current = self._fetch_rule(conn, user.organization_id, rule_id)
            conn.execute(
                text("DELETE FROM workflow_rules WHERE id = :id AND organization_id = :org_id"),
                {"id": rule_id, "org_id": user.organization_id},
            )
            log_audit(
                conn,
                organization_id=user.organization_id,
                action=AuditAction.DELETE,
                resource_type=AuditResourceType.WORKFLOW_RULE,
                resource_id=rule_id,
                user_id=user.user_id,
                old_data=current.to_dict(),
            )
            conn.commit()

    @staticmethod
    def _validate_rule(data: Dict[str, Any]) -> None:
        if not data.get("name"):
            raise ValidationError("Rule name is required")
        if data.get("rule_type") not in [r.value for r in RuleType]:
            raise ValidationError(f"Invalid rule type: {data.get('rule_type')}")
        if data.get("phase") is not None and data["phase"] not in RULE_PHASES:
            raise ValidationError(f"Invalid phase: {data['phase']}")

    def _fetch_rule(self, conn, organization_id: str, rule_id: str) -> WorkflowRule:
        row = conn.execute(
            text("""
                SELECT id, name, description, rule_type, phase, configuration,
                       is_active, created_by, created_at, updated_at
                FROM workflow_rules
                WHERE id = :id AND organization_id = :org_id
            """),
            {"id": rule_id, "org_id": organization_id},
        ).fetchone()
        if row is None:
            raise NotFoundError("Workflow rule not found")
        return self._row_to_rule(row)

    # -------------------------------------------------------------------------
    # 遷移設定
    # -------------------------------------------------------------------------

    def list_configurations(self, user: UserContext) -> List[WorkflowConfiguration]:
        self._require_admin(user)
        with self.pool.connect() as conn:
            rows = conn.execute(
                text("""
                    SELECT id, name, description, transitions, role_permissions,
                           status_colors, status_icons, is_active, is_default,
                           created_by, created_at, updated_at
                    FROM workflow_configurations
                    WHERE organization_id = :org_id
                    ORDER BY name ASC
                """),
                {"org_id": user.organization_id},
            ).fetchall()
        if not rows:
            return [default_configuration()]
        return [self._row_to_configuration(r) for r in rows]

    def get_active_configuration(self, organization_id: str) -> WorkflowConfiguration:
        """
        有効な設定を取得

        優先順位: デフォルトかつ有効 → 任意の有効 → 組み込みデフォルト
        """
        with self.pool.connect() as conn:
            row = conn.execute(
                text("""
                    SELECT id, name, description, transitions, role_permissions,
                           status_colors, status_icons, is_active, is_default,
                           created_by, created_at, updated_at
                    FROM workflow_configurations
                    WHERE organization_id = :org_id AND is_active = TRUE
                    ORDER BY is_default DESC, updated_at DESC NULLS LAST
                    LIMIT 1
                """),
                {"org_id": organization_id},
            ).fetchone()
        if row is None:
            return default_configuration()
        return self._row_to_configuration(row)

    def create_configuration(self, user: UserContext, data: Dict[str, Any]) -> WorkflowConfiguration:
        self._require_admin(user)
        self._validate_configuration(data)
        config_id = str(uuid4())
        config = WorkflowConfiguration(
            id=config_id,
            name=data["name"],
            description=data.get("description"),
            transitions=data["transitions"],
            role_permissions=data.get("role_permissions") or copy.deepcopy(DEFAULT_ROLE_PERMISSIONS),
            status_colors=data.get("status_colors") or dict(DEFAULT_STATUS_COLORS),
            status_icons=data.get("status_icons") or dict(DEFAULT_STATUS_ICONS),
            is_active=False,
            is_default=False,
            created_by=user.user_id,
        )
        with self.pool.connect() as conn:
            conn.execute(
                text("""
                    INSERT INTO workflow_configurations (
                        id, organization_id, name, description, transitions, role_permissions,
                        status_colors, status_icons, is_active, is_default, created_by
                    ) VALUES (
                        :id, :org_id, :name, :description, CAST(:transitions AS jsonb),
                        CAST(:role_permissions AS jsonb), CAST(:status_colors AS jsonb),
                        CAST(:status_icons AS jsonb), FALSE, FALSE, :created_by
                    )
                """),
                {
                    "id": config_id,
                    "org_id": user.organization_id,
                    "name": config.name,
                    "description": config.description,
                    "transitions": _dumps(config.transitions),
                    "role_permissions": _dumps(config.role_permissions),
                    "status_colors": _dumps(config.status_colors),
                    "status_icons": _dumps(config.status_icons),
                    "created_by": user.user_id,
                },
            )
            log_audit(
                conn,
                organization_id=user.organization_id,
                action=AuditAction.CREATE,
                resource_type=AuditResourceType.WORKFLOW_CONFIGURATION,
                resource_id=config_id,
                user_id=user.user_id,
                new_data=config.to_dict(),
            )
            conn.commit()
        return config

    def update_configuration(
        self, user: UserContext, config_id: str, updates: Dict[str, Any]
    ) -> WorkflowConfiguration:
        self._require_admin(user)
        with self.pool.connect() as conn:
            current = self._fetch_configuration(conn, user.organization_id, config_id)
            merged = {**current.to_dict(), **{k: v for k, v in updates.items() if v is not None}}
            self._validate_configuration(merged)
            conn.execute(
                text("""
                    UPDATE workflow_configurations
                    SET name = :name, description = :description,
                        transitions = CAST(:transitions AS jsonb),
                        role_permissions = CAST(:role_permissions AS jsonb),
                        status_colors = CAST(:status_colors AS jsonb),
                        status_icons = CAST(:status_icons AS jsonb),
                        updated_at = CURRENT_TIMESTAMP
                    WHERE id = :id AND organization_id = :org_id
                """),
                {
                    "id": config_id,
                    "org_id": user.organization_id,
                    "name": merged["name"],
                    "description": merged.get("description"),
                    "transitions": _dumps(merged["transitions"]),
                    "role_permissions": _dumps(merged.get("role_permissions") or {}),
                    "status_colors": _dumps(merged.get("status_colors") or {}),
                    "status_icons": _dumps(merged.get("status_icons") or {}),
                },
            )
            log_audit(
                conn,
                organization_id=user.organization_id,
                action=AuditAction.UPDATE,
                resource_type=AuditResourceType.WORKFLOW_CONFIGURATION,
                resource_id=config_id,
                user_id=user.user_id,
                old_data=current.to_dict(),
                new_data=updates,
            )
            conn.commit()
        return WorkflowConfiguration(
            id=config_id,
            name=merged["name"],
            description=merged.get("description"),
            transitions=merged["transitions"],
            role_permissions=merged.get("role_permissions") or {},
            status_colors=merged.get("status_colors") or {},
            status_icons=merged.get("status_icons") or {},
            is_active=current.is_active,
            is_default=current.is_default,
            created_by=current.created_by,
            created_at=current.created_at,
        )

    def activate_configuration(self, user: UserContext, config_id: str) -> None:
        """他の設定を無効化し、指定設定を有効かつデフォルトにする"""
        self._require_admin(user)
        with self.pool.connect() as conn:
            current = self._fetch_configuration(conn, user.organization_id, config_id)
            conn.execute(
                text("""
                    UPDATE workflow_configurations
                    SET is_active = FALSE, is_default = FALSE, updated_at = CURRENT_TIMESTAMP
                    WHERE organization_id = :org_id AND id != :id
                """),
                {"id": config_id, "org_id": user.organization_id},
            )
            conn.execute(
                text("""
                    UPDATE workflow_configurations
                    SET is_active = TRUE, is_default = TRUE, updated_at = CURRENT_TIMESTAMP
                    WHERE organization_id = :org_id AND id = :id
                """),
                {"id": config_id, "org_id": user.organization_id},
            )
            log_audit(
                conn,
                organization_id=user.organization_id,
                action=AuditAction.ACTIVATE,
                resource_type=AuditResourceType.WORKFLOW_CONFIGURATION,
                resource_id=config_id,
                user_id=user.user_id,
                old_data={"is_active": current.is_active, "is_default": current.is_default},
                new_data={"is_active": True, "is_default": True},
            )
            conn.commit()

    def delete_configuration(self, user: UserContext, config_id: str) -> None:
        self._require_admin(user)
        with self.pool.connect() as conn:
            current = self._fetch_configuration(conn, user.organization_id, config_id)
            if current.is_default:
                raise ValidationError(
                    "Cannot delete the default workflow configuration",
                    error_code="DEFAULT_CONFIGURATION",
                )
            conn.execute(
                text("DELETE FROM workflow_configurations WHERE id = :id AND organization_id = :org_id"),
                {"id": config_id, "org_id": user.organization_id},
            )
            log_audit(
                conn,
                organization_id=user.organization_id,
                action=AuditAction.DELETE,
                resource_type=AuditResourceType.WORKFLOW_CONFIGURATION,
                resource_id=config_id,
                user_id=user.user_id,
                old_data=current.to_dict(),
            )
            conn.commit()

    @staticmethod
    def _validate_configuration(data: Dict[str, Any]) -> None:
        if not data.get("name"):
            raise ValidationError("Configuration name is required")
        transitions = data.get("transitions")
        if not isinstance(transitions, dict):
            raise ValidationError("Transitions must be an object of status → [statuses]")
        for source, targets in transitions.items():
            if source not in STATUS_VALUES:
                raise ValidationError(f"Unknown status in transitions: {source}")
            if not isinstance(targets, list) or any(t not in STATUS_VALUES for t in targets):
                raise ValidationError(f"Invalid transition targets for {source}")

    def _fetch_configuration(self, conn, organization_id: str, config_id: str) -> WorkflowConfiguration:
        row = conn.execute(
            text("""
                SELECT id, name, description, transitions, role_permissions,
                       status_colors, status_icons, is_active, is_default,
                       created_by, created_at, updated_at
                FROM workflow_configurations
                WHERE id = :id AND organization_id = :org_id
            """),
            {"id": config_id, "org_id": organization_id},
        ).fetchone()
        if row is None:
            raise NotFoundError("Workflow configuration not found")
        return self._row_to_configuration(row)

    # -------------------------------------------------------------------------
    # 行変換
    # -------------------------------------------------------------------------

    @staticmethod
    def _row_to_rule(row) -> WorkflowRule:
        return WorkflowRule(
            id=str(row[0]),
            name=row[1],
            description=row[2],
            rule_type=row[3],
            phase=row[4],
            configuration=_loads(row[5], {}),
            is_active=bool(row[6]),
            created_by=str(row[7]) if row[7] else None,
            created_at=row[8],
            updated_at=row[9],
        )

    @staticmethod
    def _row_to_configuration(row) -> WorkflowConfiguration:
        return WorkflowConfiguration(
            id=str(row[0]),
            name=row[1],
            description=row[2],
            transitions=_loads(row[3], {}),
            role_permissions=_loads(row[4], {}),
            status_colors=_loads(row[5], {}),
            status_icons=_loads(row[6], {}),
            is_active=bool(row[7]),
            is_default=bool(row[8]),
            created_by=str(row[9]) if row[9] else None,
            created_at=row[10],
            updated_at=row[11],
        )


def get_workflow_config_service(pool=None) -> WorkflowConfigService:
    """WorkflowConfigServiceのファクトリ関数"""
    return WorkflowConfigService(pool=pool)
