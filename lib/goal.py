"""
Goal Management Service

PDCA サイクルで進める目標の作成・取得・更新・削除、
担当者・支援部署の管理、ステータス遷移を提供するサービス層。

目標は Plan で作成され、ワークフロー設定の遷移表に従って Do → Check → Act → Completed と進む。
前進遷移は現フェーズのタスクが全て完了している場合のみ許可される（lib/workflow.py）。

使用例:
    from lib.goal import get_goal_service

    service = get_goal_service()
    goal = service.create_goal(user, {
        "subject": "新規顧客獲得プロセスの改善",
        "description": "問い合わせから契約までのリードタイムを短縮する",
        "department": "営業部",
        "priority": "High",
        "target_date": "2026-03-31",
    })
    service.update_goal_status(user, goal.id, "Do")
"""

from __future__ import annotations

import json
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import text

from lib.db import get_db_pool
from lib.errors import InvalidTransitionError, NotFoundError, PermissionDeniedError, ValidationError
from lib.goal_notification import NotificationType, get_notification_service
from lib.logging import get_logger
from lib.overdue import get_overdue_info
from lib.pagination import PaginatedResult, PaginationParams
from lib.permissions import (
    UserContext,
    can_assign_goal,
    can_change_status,
    can_create_goals,
    can_delete_goal,
    can_edit_goal,
    can_view_goal,
    is_admin,
    is_head,
)
from lib.workflow import (
    GoalStatus,
    WorkflowAction,
    append_history,
    build_update_entry,
    format_incomplete_tasks_message,
    get_workflow_config_service,
    is_forward_progression,
    make_history_entry,
    normalize_date,
    track_goal_changes,
    validate_transition,
)

logger = get_logger(__name__)


# =============================================================================
# 定数定義
# =============================================================================

class GoalType(str, Enum):
    """目標タイプ"""
    PERSONAL = "Personal"
    TEAM = "Team"
    DEPARTMENT = "Department"
    COMPANY = "Company"


class Priority(str, Enum):
    """優先度"""
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class AssigneeTaskStatus(str, Enum):
    """担当者ごとの完了状態"""
    PENDING = "pending"
    COMPLETED = "completed"


class SupportType(str, Enum):
    """支援種別"""
    DEPARTMENT = "Department"
    TEAM = "Team"


GOAL_TYPE_VALUES = [t.value for t in GoalType]
PRIORITY_VALUES = [p.value for p in Priority]

# ダッシュボード等で並び順に使う優先度の重み
PRIORITY_ORDER = {"Low": 1, "Medium": 2, "High": 3, "Critical": 4}


# =============================================================================
# データクラス
# =============================================================================

class Goal:
    """目標データクラス"""

    def __init__(
        self,
        id: str,
        organization_id: str,
        subject: str,
        description: Optional[str],
        owner_id: str,
        department: Optional[str] = None,
        goal_type: str = GoalType.TEAM.value,
        priority: str = Priority.MEDIUM.value,
        status: str = GoalStatus.PLAN.value,
        previous_status: Optional[str] = None,
        teams: Optional[List[str]] = None,
        progress_percentage: int = 0,
        target_metrics: Optional[str] = None,
        success_criteria: Optional[str] = None,
        current_assignee_id: Optional[str] = None,
        start_date: Optional[date] = None,
        target_date: Optional[date] = None,
        adjusted_target_date: Optional[date] = None,
        workflow_history: Optional[List[Dict[str, Any]]] = None,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
        owner_name: Optional[str] = None,
        owner_email: Optional[str] = None,
    ):
        self.id = id
        self.organization_id = organization_id
        self.subject = subject
        self.description = description
        self.owner_id = owner_id
        self.department = department
        self.goal_type = goal_type
        self.priority = priority
        self.status = status
        self.previous_status = previous_status
        self.teams = teams or []
        self.progress_percentage = progress_percentage or 0
        self.target_metrics = target_metrics
        self.success_criteria = success_criteria
        self.current_assignee_id = current_assignee_id
        self.start_date = start_date
        self.target_date = target_date
        self.adjusted_target_date = adjusted_target_date
        self.workflow_history = workflow_history or []
        self.created_at = created_at
        self.updated_at = updated_at
        self.owner_name = owner_name
        self.owner_email = owner_email
        # get_goal で読み込む関連データ
        self.assignees: List[GoalAssignee] = []
        self.support: List[GoalSupport] = []

    @property
    def is_overdue(self) -> bool:
        return get_overdue_info(self).is_overdue

    def to_dict(self) -> Dict[str, Any]:
        overdue = get_overdue_info(self)
        return {
            "id": self.id,
            "subject": self.subject,
            "description": self.description,
            "goal_type": self.goal_type,
            "priority": self.priority,
            "status": self.status,
            "previous_status": self.previous_status,
            "department": self.department,
            "teams": self.teams,
            "progress_percentage": self.progress_percentage,
            "target_metrics": self.target_metrics,
            "success_criteria": self.success_criteria,
            "owner_id": self.owner_id,
            "owner_name": self.owner_name,
            "owner_email": self.owner_email,
            "current_assignee_id": self.current_assignee_id,
            "start_date": _iso(self.start_date),
            "target_date": _iso(self.target_date),
            "adjusted_target_date": _iso(self.adjusted_target_date),
            "is_overdue": overdue.is_overdue,
            "days_overdue": overdue.days_overdue,
            "workflow_history": self.workflow_history,
            "assignees": [a.to_dict() for a in self.assignees],
            "support": [s.to_dict() for s in self.support],
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class GoalAssignee:
    """目標担当者"""

    def __init__(
        self,
        id: str,
        goal_id: str,
        user_id: str,
        task_status: str = AssigneeTaskStatus.PENDING.value,
        assigned_by: Optional[str] = None,
        notes: Optional[str] = None,
        completed_at: Optional[datetime] = None,
        assigned_at: Optional[datetime] = None,
        full_name: Optional[str] = None,
        email: Optional[str] = None,
        department: Optional[str] = None,
    ):
        self.id = id
        self.goal_id = goal_id
        self.user_id = user_id
        self.task_status = task_status
        self.assigned_by = assigned_by
        self.notes = notes
        self.completed_at = completed_at
        self.assigned_at = assigned_at
        self.full_name = full_name
        self.email = email
        self.department = department

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "goal_id": self.goal_id,
            "user_id": self.user_id,
            "full_name": self.full_name,
            "email": self.email,
            "department": self.department,
            "task_status": self.task_status,
            "assigned_by": self.assigned_by,
            "notes": self.notes,
            "completed_at": _iso(self.completed_at),
            "assigned_at": _iso(self.assigned_at),
        }


class GoalSupport:
    """支援部署・チーム"""

    def __init__(
        self,
        id: str,
        goal_id: str,
        support_type: str,
        support_name: str,
        support_department: Optional[str] = None,
        requested_by: Optional[str] = None,
        notes: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ):
        self.id = id
        self.goal_id = goal_id
        self.support_type = support_type
        self.support_name = support_name
        self.support_department = support_department
        self.requested_by = requested_by
        self.notes = notes
        self.created_at = created_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "goal_id": self.goal_id,
            "support_type": self.support_type,
            "support_name": self.support_name,
            "support_department": self.support_department,
            "requested_by": self.requested_by,
            "notes": self.notes,
            "created_at": _iso(self.created_at),
        }


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_date(value: Any, field_name: str) -> Optional[date]:
    if value is None or value == "":
        return None
    normalized = normalize_date(value)
    if normalized is None:
        raise ValidationError(f"Invalid date for {field_name}: {value}")
    return date.fromisoformat(normalized)


def _loads(value: Any, default: Any) -> Any:
    if value is None:
        return default
    if isinstance(value, (list, dict)):
        return value
    return json.loads(value)


# =============================================================================
# SQL 断片・行取得ヘルパー
# =============================================================================

_GOAL_SELECT = """
    SELECT g.id, g.organization_id, g.subject, g.description, g.owner_id,
           g.department, g.goal_type, g.priority, g.status, g.previous_status,
           g.teams, g.progress_percentage, g.target_metrics, g.success_criteria,
           g.current_assignee_id, g.start_date, g.target_date, g.adjusted_target_date,
           g.workflow_history, g.created_at, g.updated_at,
           o.full_name AS owner_name, o.email AS owner_email
    FROM goals g
    LEFT JOIN users o ON o.id = g.owner_id
"""


def row_to_goal(row) -> Goal:
    return Goal(
        id=str(row[0]),
        organization_id=str(row[1]),
        subject=row[2],
        description=row[3],
        owner_id=str(row[4]) if row[4] else None,
        department=row[5],
        goal_type=row[6],
        priority=row[7],
        status=row[8],
        previous_status=row[9],
        teams=_loads(row[10], []),
        progress_percentage=row[11],
        target_metrics=row[12],
        success_criteria=row[13],
        current_assignee_id=str(row[14]) if row[14] else None,
        start_date=row[15],
        target_date=row[16],
        adjusted_target_date=row[17],
        workflow_history=_loads(row[18], []),
        created_at=row[19],
        updated_at=row[20],
        owner_name=row[21],
        owner_email=row[22],
    )


def fetch_goal(conn, organization_id: str, goal_id: str) -> Goal:
    """目標を1件取得（存在しなければ NotFoundError）"""
    row = conn.execute(
        text(f"{_GOAL_SELECT} WHERE g.id = :id AND g.organization_id = :org_id"),
        {"id": goal_id, "org_id": organization_id},
    ).fetchone()
    if row is None:
        raise NotFoundError("Goal not found")
    return row_to_goal(row)


def fetch_assignee_ids(conn, organization_id: str, goal_id: str) -> List[str]:
    rows = conn.execute(
        text("""
            SELECT user_id FROM goal_assignees
            WHERE goal_id = :goal_id AND organization_id = :org_id
        """),
        {"goal_id": goal_id, "org_id": organization_id},
    ).fetchall()
    return [str(r[0]) for r in rows]


def insert_assignee(
    conn,
    organization_id: str,
    goal_id: str,
    user_id: str,
    assigned_by: str,
) -> str:
    assignee_id = str(uuid4())
    conn.execute(
        text("""
            INSERT INTO goal_assignees (
                id, organization_id, goal_id, user_id, assigned_by, task_status, assigned_at
            ) VALUES (
                :id, :org_id, :goal_id, :user_id, :assigned_by, 'pending', CURRENT_TIMESTAMP
            )
        """),
        {
            "id": assignee_id,
            "org_id": organization_id,
            "goal_id": goal_id,
            "user_id": user_id,
            "assigned_by": assigned_by,
        },
    )
    return assignee_id


def insert_support(
    conn,
    organization_id: str,
    goal_id: str,
    support_type: str,
    support_name: str,
    requested_by: str,
    support_department: Optional[str] = None,
    notes: Optional[str] = None,
) -> GoalSupport:
    support = GoalSupport(
        id=str(uuid4()),
        goal_id=goal_id,
        support_type=support_type,
        support_name=support_name,
        support_department=support_department,
        requested_by=requested_by,
        notes=notes,
    )
    conn.execute(
        text("""
            INSERT INTO goal_support (
                id, organization_id, goal_id, support_type, support_name,
                support_department, requested_by, notes
            ) VALUES (
                :id, :org_id, :goal_id, :support_type, :support_name,
                :support_department, :requested_by, :notes
            )
        """),
        {
            "id": support.id,
            "org_id": organization_id,
            "goal_id": goal_id,
            "support_type": support_type,
            "support_name": support_name,
            "support_department": support_department,
            "requested_by": requested_by,
            "notes": notes,
        },
    )
    return support


def _visibility_clause(user: UserContext, params: Dict[str, Any]) -> str:
    """Admin 以外の閲覧範囲: オーナー・担当者・所属部署・権限付与部署"""
    if is_admin(user):
        return ""
    params["viewer_id"] = user.user_id
    params["viewer_departments"] = [d for d in [user.department, *user.permitted_departments] if d]
    return """
        AND (
            g.owner_id = :viewer_id
            OR EXISTS (
                SELECT 1 FROM goal_assignees va
                WHERE va.goal_id = g.id AND va.user_id = :viewer_id
            )
            OR g.department = ANY(:viewer_departments)
        )
    """


# =============================================================================
# サービス
# =============================================================================

class GoalService:
    """
    目標管理サービス

    全てのクエリは organization_id でテナント分離する。
    権限判定は lib/permissions.py の純粋関数で行い、
    違反時は PermissionDeniedError を投げる。
    """

    def __init__(self, pool=None, notifications=None):
        self._pool = pool
        self._notifications = notifications

    @property
    def pool(self):
        if self._pool is None:
            self._pool = get_db_pool()
        return self._pool

    @property
    def notifications(self):
        if self._notifications is None:
            self._notifications = get_notification_service(self.pool)
        return self._notifications

    # -------------------------------------------------------------------------
    # 作成
    # -------------------------------------------------------------------------

    def create_goal(self, user: UserContext, data: Dict[str, Any]) -> Goal:
        """
        目標を作成する

        Args:
            user: 作成者（Head / Admin）
            data: subject, description, department は必須。
                  任意: goal_type, priority, teams, start_date, target_date,
                  target_metrics, success_criteria, progress_percentage,
                  assignee_ids, support（[{department, teams}]）, tasks

        Returns:
            作成された Goal
        """
        if not can_create_goals(user):
            raise PermissionDeniedError("Access denied. Only department heads and admins can create goals.")

        subject = (data.get("subject") or "").strip()
        description = (data.get("description") or "").strip()
        department = (data.get("department") or "").strip()
        if not subject or not description:
            raise ValidationError("Subject and description are required")
        if not department:
            raise ValidationError("Department is required")

        start_date = _parse_date(data.get("start_date"), "start_date")
        target_date = _parse_date(data.get("target_date"), "target_date")
        if start_date and target_date and start_date > target_date:
            raise ValidationError("Start date cannot be later than target date")

        goal_type = data.get("goal_type") or GoalType.TEAM.value
        priority = data.get("priority") or Priority.MEDIUM.value
        if goal_type not in GOAL_TYPE_VALUES:
            raise ValidationError(f"Invalid goal type: {goal_type}")
        if priority not in PRIORITY_VALUES:
            raise ValidationError(f"Invalid priority: {priority}")
        progress = int(data.get("progress_percentage") or 0)
        if not 0 <= progress <= 100:
            raise ValidationError("Progress must be between 0 and 100")

        user_name = user.full_name or user.email
        history = [
            make_history_entry(
                action=WorkflowAction.STATUS_CHANGE,
                user_id=user.user_id,
                user_name=user_name,
                to_status=GoalStatus.PLAN.value,
                comment="Goal created and entered Plan phase",
            )
        ]
        if start_date:
            history.append(make_history_entry(
                action=WorkflowAction.START_DATE_SET,
                user_id=user.user_id,
                user_name=user_name,
                comment=f"Owner set start date to {start_date.isoformat()}",
                details={"new_start_date": start_date.isoformat()},
            ))
        if target_date:
            history.append(make_history_entry(
                action=WorkflowAction.TARGET_DATE_SET,
                user_id=user.user_id,
                user_name=user_name,
                comment=f"Owner set target date to {target_date.isoformat()}",
                details={"target_date_type": "initial", "new_target_date": target_date.isoformat()},
            ))

        goal = Goal(
            id=str(uuid4()),
            organization_id=user.organization_id,
            subject=subject,
            description=description,
            owner_id=user.user_id,
            department=department,
            goal_type=goal_type,
            priority=priority,
            status=GoalStatus.PLAN.value,
            teams=list(data.get("teams") or []),
            progress_percentage=progress,
            target_metrics=data.get("target_metrics") or None,
            success_criteria=data.get("success_criteria") or None,
            start_date=start_date,
            target_date=target_date,
            workflow_history=history,
            owner_name=user.full_name,
            owner_email=user.email,
        )

        # 作成者を担当者に含める
        assignee_ids = [user.user_id]
        for assignee_id in data.get("assignee_ids") or []:
            if assignee_id and assignee_id not in assignee_ids:
                assignee_ids.append(assignee_id)

        support_departments: List[str] = []
        created_tasks: List[Dict[str, Any]] = []
        with self.pool.connect() as conn:
            self.insert_goal(conn, goal)
            for assignee_id in assignee_ids:
                insert_assignee(conn, user.organization_id, goal.id, assignee_id, user.user_id)

            for requirement in data.get("support") or []:
                support_dept = requirement.get("department")
                if not support_dept:
                    continue
                goal.support.append(insert_support(
                    conn, user.organization_id, goal.id,
                    SupportType.DEPARTMENT.value, support_dept, user.user_id,
                ))
                support_departments.append(support_dept)
                for team in requirement.get("teams") or []:
                    goal.support.append(insert_support(
                        conn, user.organization_id, goal.id,
                        SupportType.TEAM.value, team, user.user_id,
                        support_department=support_dept,
                    ))

            tasks = data.get("tasks") or []
            if tasks:
                from lib.goal_task import insert_task

                for index, task in enumerate(tasks):
                    task_id = insert_task(
                        conn,
                        organization_id=user.organization_id,
                        goal_id=goal.id,
                        data=task,
                        assigned_by=user.user_id,
                        default_phase=GoalStatus.PLAN.value,
                        order_index=index,
                    )
                    created_tasks.append({"id": task_id, **task})
            conn.commit()

        logger.info(
            "Goal created",
            goal_id=goal.id,
            department=department,
            assignees=len(assignee_ids),
            tasks=len(created_tasks),
        )

        self.notifications.notify_users(
            user.organization_id,
            assignee_ids,
            NotificationType.ASSIGNMENT,
            "New Goal Assigned",
            f'You have been assigned to goal "{subject}"',
            goal_id=goal.id,
            action_data={"goal_id": goal.id},
            exclude=[user.user_id],
        )
        for support_dept in support_departments:
            self.notifications.notify_department_heads(
                user.organization_id,
                support_dept,
                user.user_id,
                NotificationType.SUPPORT_REQUEST,
                "Support Requested",
                f'Your department has been asked to support goal "{subject}"',
                goal_id=goal.id,
                action_data={"goal_id": goal.id, "department": support_dept},
            )
        for task in created_tasks:
            assigned_to = task.get("assigned_to")
            if assigned_to and assigned_to != "unassigned":
                self.notifications.notify_users(
                    user.organization_id,
                    [assigned_to],
                    NotificationType.TASK_ASSIGNED,
                    "New Task Assigned",
                    f'You have been assigned a new task in goal "{subject}": "{task.get("title")}"',
                    goal_id=goal.id,
                    action_data={"task_id": task["id"], "task_title": task.get("title"), "goal_id": goal.id},
                    exclude=[user.user_id],
                )
        return goal

    def insert_goal(self, conn, goal: Goal) -> None:
        """goals への INSERT（commit は呼び出し側）"""
        conn.execute(
            text("""
                INSERT INTO goals (
                    id, organization_id, subject, description, goal_type, priority,
                    status, department, teams, progress_percentage, target_metrics,
                    success_criteria, owner_id, start_date, target_date, workflow_history
                ) VALUES (
                    :id, :org_id, :subject, :description, :goal_type, :priority,
                    :status, :department, CAST(:teams AS jsonb), :progress, :target_metrics,
                    :success_criteria, :owner_id, :start_date, :target_date,
                    CAST(:workflow_history AS jsonb)
                )
            """),
            {
                "id": goal.id,
                "org_id": goal.organization_id,
                "subject": goal.subject,
                "description": goal.description,
                "goal_type": goal.goal_type,
                "priority": goal.priority,
                "status": goal.status,
                "department": goal.department,
                "teams": json.dumps(goal.teams, ensure_ascii=False),
                "progress": goal.progress_percentage,
                "target_metrics": goal.target_metrics,
                "success_criteria": goal.success_criteria,
                "owner_id": goal.owner_id,
                "start_date": goal.start_date,
                "target_date": goal.target_date,
                "workflow_history": json.dumps(goal.workflow_history, ensure_ascii=False, default=str),
            },
        )

    # -------------------------------------------------------------------------
    # 取得
    # -------------------------------------------------------------------------

    def get_goal(self, user: UserContext, goal_id: str) -> Goal:
        """目標詳細（担当者・支援を含む）を取得"""
        with self.pool.connect() as conn:
            goal = fetch_goal(conn, user.organization_id, goal_id)
            goal.assignees = self._fetch_assignees(conn, user.organization_id, goal_id)
            if not can_view_goal(user, goal, [a.user_id for a in goal.assignees]):
                raise PermissionDeniedError("You don't have permission to view this goal")
            goal.support = self._fetch_support(conn, user.organization_id, goal_id)
        return goal

    def list_goals(
        self,
        user: UserContext,
        filters: Optional[Dict[str, Any]] = None,
        pagination: Optional[PaginationParams] = None,
    ) -> PaginatedResult[Goal]:
        """
        目標一覧（閲覧可能な範囲のみ）

        filters: status, department, priority, goal_type, search, owner_id, assignee_id
        """
        filters = filters or {}
        pagination = pagination or PaginationParams()
        params: Dict[str, Any] = {"org_id": user.organization_id}
        where = ["g.organization_id = :org_id"]

        for key in ("status", "department", "priority", "goal_type", "owner_id"):
            if filters.get(key):
                where.append(f"g.{key} = :{key}")
                params[key] = filters[key]
        if filters.get("assignee_id"):
            where.append("""
                EXISTS (
                    SELECT 1 FROM goal_assignees fa
                    WHERE fa.goal_id = g.id AND fa.user_id = :assignee_id
                )
            """)
            params["assignee_id"] = filters["assignee_id"]
        if filters.get("search"):
            where.append("(g.subject ILIKE :search OR g.description ILIKE :search)")
            params["search"] = f"%{_escape_like(filters['search'])}%"

        where_sql = " AND ".join(where) + _visibility_clause(user, params)

        with self.pool.connect() as conn:
            total = conn.execute(
                text(f"SELECT COUNT(*) FROM goals g WHERE {where_sql}"),
                params,
            ).scalar()
            rows = conn.execute(
                text(f"""
                    {_GOAL_SELECT}
                    WHERE {where_sql}
                    ORDER BY g.created_at DESC
                    LIMIT :limit OFFSET :offset
                """),
                {**params, "limit": pagination.page_size, "offset": pagination.offset},
            ).fetchall()

        return PaginatedResult.build([row_to_goal(r) for r in rows], int(total or 0), pagination)

    def get_assignees(self, user: UserContext, goal_id: str) -> List[GoalAssignee]:
        return self.get_goal(user, goal_id).assignees

    def list_support(self, user: UserContext, goal_id: str) -> List[GoalSupport]:
        return self.get_goal(user, goal_id).support

    # -------------------------------------------------------------------------
    # 更新
    # -------------------------------------------------------------------------

    def update_goal_details(self, user: UserContext, goal_id: str, updates: Dict[str, Any]) -> Goal:
        """
        目標の詳細を更新し、変更内容を goal_updated 履歴として記録する

        更新可能: subject, description, priority, target_date, adjusted_target_date,
                  target_metrics, success_criteria, progress_percentage
        """
        updates = dict(updates)
        if updates.get("priority") is not None and updates["priority"] not in PRIORITY_VALUES:
            raise ValidationError(f"Invalid priority: {updates['priority']}")
        progress = updates.get("progress_percentage")
        if progress is not None and not 0 <= int(progress) <= 100:
            raise ValidationError("Progress must be between 0 and 100")
        for field_name in ("target_date", "adjusted_target_date"):
            if updates.get(field_name) is not None:
                updates[field_name] = _parse_date(updates[field_name], field_name)

        with self.pool.connect() as conn:
            goal = fetch_goal(conn, user.organization_id, goal_id)
            if not can_edit_goal(user, goal):
                raise PermissionDeniedError("You don't have permission to edit this goal")

            changes = track_goal_changes(goal.to_dict(), updates)
            if not changes:
                return goal

            set_parts = []
            params: Dict[str, Any] = {"id": goal_id, "org_id": user.organization_id}
            for change in changes:
                set_parts.append(f"{change['field']} = :{change['field']}")
                params[change["field"]] = change["new"]
            conn.execute(
                text(f"""
                    UPDATE goals SET {", ".join(set_parts)}, updated_at = CURRENT_TIMESTAMP
                    WHERE id = :id AND organization_id = :org_id
                """),
                params,
            )
            entry = build_update_entry(changes, user.user_id, user.full_name or user.email)
            append_history(conn, goal_id, [entry])
            conn.commit()
            for change in changes:
                setattr(goal, change["field"], change["new"])
            goal.workflow_history.append(entry)

        self.notifications.notify_goal_stakeholders(
            user.organization_id,
            goal_id,
            user.user_id,
            NotificationType.GOAL_UPDATED,
            "Goal Updated",
            entry["comment"],
        )
        return goal

    def update_progress(self, user: UserContext, goal_id: str, progress: int) -> Goal:
        if progress is None or not 0 <= int(progress) <= 100:
            raise ValidationError("Progress must be between 0 and 100")
        return self.update_goal_details(user, goal_id, {"progress_percentage": int(progress)})

    def update_goal_status(
        self,
        user: UserContext,
        goal_id: str,
        new_status: str,
        current_assignee_id: Optional[str] = None,
    ) -> Goal:
        """
        ステータスを遷移させる

        1. 変更権限（Admin / 部署権限 / オーナー / 担当者）
        2. 有効なワークフロー設定の遷移表で検証
        3. 前進遷移なら現フェーズのタスク完了を確認
        """
        from lib.goal_task import get_incomplete_tasks_for_phase

        config = get_workflow_config_service(self.pool).get_active_configuration(user.organization_id)
        with self.pool.connect() as conn:
            goal = fetch_goal(conn, user.organization_id, goal_id)
            old_status = goal.status
            assignee_ids = fetch_assignee_ids(conn, user.organization_id, goal_id)
            if not can_change_status(user, goal, assignee_ids):
                raise PermissionDeniedError("You don't have permission to change this goal's status")
            validate_transition(old_status, new_status, config.transitions)

            if is_forward_progression(old_status, new_status):
                incomplete = get_incomplete_tasks_for_phase(conn, user.organization_id, goal_id, old_status)
                if incomplete:
                    raise InvalidTransitionError(
                        format_incomplete_tasks_message(old_status, incomplete),
                        error_code="PHASE_TASKS_INCOMPLETE",
                        details={"phase": old_status, "incomplete_tasks": incomplete},
                    )

            previous_status = old_status if new_status == GoalStatus.ON_HOLD.value else None
            entry = make_history_entry(
                action=WorkflowAction.STATUS_CHANGE,
                user_id=user.user_id,
                user_name=user.full_name or user.email,
                from_status=old_status,
                to_status=new_status,
                comment=f"Status changed from {old_status} to {new_status}",
                details={"previous_status": previous_status} if previous_status else None,
            )
            conn.execute(
                text("""
                    UPDATE goals
                    SET status = :status,
                        previous_status = COALESCE(:previous_status, previous_status),
                        current_assignee_id = COALESCE(:current_assignee_id, current_assignee_id),
                        updated_at = CURRENT_TIMESTAMP
                    WHERE id = :id AND organization_id = :org_id
                """),
                {
                    "id": goal_id,
                    "org_id": user.organization_id,
                    "status": new_status,
                    "previous_status": previous_status,
                    "current_assignee_id": current_assignee_id,
                },
            )
            append_history(conn, goal_id, [entry])
            conn.commit()

        logger.info("Goal status changed", goal_id=goal_id, from_status=old_status, to_status=new_status)

        goal.status = new_status
        if previous_status:
            goal.previous_status = previous_status
        if current_assignee_id:
            goal.current_assignee_id = current_assignee_id
        goal.workflow_history.append(entry)

        self.notifications.notify_goal_stakeholders(
            user.organization_id,
            goal_id,
            user.user_id,
            NotificationType.STATUS_CHANGE,
            "Goal Status Updated",
            f'Goal "{goal.subject}" moved from {old_status} to {new_status}',
            action_data={"from_status": old_status, "to_status": new_status},
        )
        return goal

    # -------------------------------------------------------------------------
    # 削除
    # -------------------------------------------------------------------------

    def get_deletion_impact(self, user: UserContext, goal_id: str) -> Dict[str, Any]:
        """削除時に一緒に消える関連データの件数"""
        with self.pool.connect() as conn:
            goal = fetch_goal(conn, user.organization_id, goal_id)
            if not can_delete_goal(user, goal):
                raise PermissionDeniedError("You don't have permission to delete this goal")
            params = {"goal_id": goal_id, "org_id": user.organization_id}
            counts = {}
            for key, table in (
                ("tasks", "goal_tasks"),
                ("comments", "goal_comments"),
                ("attachments", "goal_attachments"),
                ("assignees", "goal_assignees"),
                ("support", "goal_support"),
            ):
                counts[key] = int(conn.execute(
                    text(f"SELECT COUNT(*) FROM {table} WHERE goal_id = :goal_id AND organization_id = :org_id"),
                    params,
                ).scalar() or 0)
        return {"goal_id": goal_id, "subject": goal.subject, "status": goal.status, **counts}

    def delete_goal(self, user: UserContext, goal_id: str) -> None:
        """目標と関連データを削除（添付ファイルの実体は削除しない）"""
        with self.pool.connect() as conn:
            goal = fetch_goal(conn, user.organization_id, goal_id)
            if not can_delete_goal(user, goal):
                raise PermissionDeniedError("You don't have permission to delete this goal")
            params = {"goal_id": goal_id, "org_id": user.organization_id}
            for table in (
                "goal_attachments",
                "goal_comments",
                "goal_tasks",
                "goal_assignees",
                "goal_support",
                "goal_ai_analysis",
                "notifications",
            ):
                conn.execute(
                    text(f"DELETE FROM {table} WHERE goal_id = :goal_id AND organization_id = :org_id"),
                    params,
                )
            conn.execute(
                text("DELETE FROM goals WHERE id = :goal_id AND organization_id = :org_id"),
                params,
            )
            conn.commit()
        logger.info("Goal deleted", goal_id=goal_id, deleted_by=user.user_id)

    # -------------------------------------------------------------------------
    # 担当者
    # -------------------------------------------------------------------------

    def assign_assignees(self, user: UserContext, goal_id: str, assignee_ids: List[str]) -> List[GoalAssignee]:
        """担当者を指定リストで置き換える。新たに追加されたユーザーに通知"""
        unique_ids: List[str] = []
        for assignee_id in assignee_ids:
            if assignee_id and assignee_id not in unique_ids:
                unique_ids.append(assignee_id)

        with self.pool.connect() as conn:
            goal = fetch_goal(conn, user.organization_id, goal_id)
            if not can_assign_goal(user, goal):
                raise PermissionDeniedError(
                    "Only admins, department heads, and users with department permissions can assign goals"
                )
            existing = set(fetch_assignee_ids(conn, user.organization_id, goal_id))
            conn.execute(
                text("DELETE FROM goal_assignees WHERE goal_id = :goal_id AND organization_id = :org_id"),
                {"goal_id": goal_id, "org_id": user.organization_id},
            )
            for assignee_id in unique_ids:
                insert_assignee(conn, user.organization_id, goal_id, assignee_id, user.user_id)
            conn.commit()
            assignees = self._fetch_assignees(conn, user.organization_id, goal_id)

        added = [a for a in unique_ids if a not in existing]
        self.notifications.notify_users(
            user.organization_id,
            added,
            NotificationType.ASSIGNMENT,
            "New Goal Assigned",
            f'You have been assigned to goal "{goal.subject}"',
            goal_id=goal_id,
            action_data={"goal_id": goal_id, "assigned_by": user.user_id},
            exclude=[user.user_id],
        )
        return assignees

    def complete_assignee_task(
        self,
        user: UserContext,
        goal_id: str,
        assignee_user_id: str,
        notes: Optional[str] = None,
    ) -> None:
        """担当者の完了報告（本人、または Admin / Head）"""
        if user.user_id != assignee_user_id and not (is_admin(user) or is_head(user)):
            raise PermissionDeniedError("You can only complete your own tasks")
        with self.pool.connect() as conn:
            goal = fetch_goal(conn, user.organization_id, goal_id)
            result = conn.execute(
                text("""
                    UPDATE goal_assignees
                    SET task_status = 'completed', notes = :notes, completed_at = CURRENT_TIMESTAMP
                    WHERE goal_id = :goal_id AND user_id = :user_id AND organization_id = :org_id
                """),
                {
                    "goal_id": goal_id,
                    "user_id": assignee_user_id,
                    "org_id": user.organization_id,
                    "notes": notes,
                },
            )
            if result.rowcount == 0:
                raise NotFoundError("Assignee not found")
            conn.commit()

        self.notifications.notify_goal_stakeholders(
            user.organization_id,
            goal_id,
            user.user_id,
            NotificationType.TASK_COMPLETED,
            "Assignee Completed Work",
            f'{user.full_name or user.email} completed their work on goal "{goal.subject}"',
            action_data={"assignee_id": assignee_user_id, "notes": notes},
        )

    def are_all_assignees_complete(self, organization_id: str, goal_id: str) -> bool:
        with self.pool.connect() as conn:
            row = conn.execute(
                text("""
                    SELECT COUNT(*),
                           COUNT(*) FILTER (WHERE task_status = 'completed')
                    FROM goal_assignees
                    WHERE goal_id = :goal_id AND organization_id = :org_id
                """),
                {"goal_id": goal_id, "org_id": organization_id},
            ).fetchone()
        total, completed = int(row[0] or 0), int(row[1] or 0)
        return total > 0 and total == completed

    # -------------------------------------------------------------------------
    # 支援部署・チーム
    # -------------------------------------------------------------------------

    def add_support(
        self,
        user: UserContext,
        goal_id: str,
        requirements: List[Dict[str, Any]],
    ) -> List[GoalSupport]:
        """
        支援部署・チームを追加する

        requirements: [{"department": "開発部", "teams": ["基盤チーム"]}, ...]
        """
        added: List[GoalSupport] = []
        departments: List[str] = []
        with self.pool.connect() as conn:
            goal = fetch_goal(conn, user.organization_id, goal_id)
            if not can_edit_goal(user, goal):
                raise PermissionDeniedError(
                    "You don't have permission to edit this goal's support requirements"
                )
            for requirement in requirements:
                department = requirement.get("department")
                if not department:
                    continue
                added.append(insert_support(
                    conn, user.organization_id, goal_id,
                    SupportType.DEPARTMENT.value, department, user.user_id,
                    notes=requirement.get("notes"),
                ))
                departments.append(department)
                for team in requirement.get("teams") or []:
                    added.append(insert_support(
                        conn, user.organization_id, goal_id,
                        SupportType.TEAM.value, team, user.user_id,
                        support_department=department,
                    ))
            if added:
                support_list = "; ".join(
                    f"{r['department']} ({', '.join(r['teams'])})" if r.get("teams") else r["department"]
                    for r in requirements if r.get("department")
                )
                append_history(conn, goal_id, [make_history_entry(
                    action=WorkflowAction.SUPPORT_ADDED,
                    user_id=user.user_id,
                    user_name=user.full_name or user.email,
                    comment=f"Added supporting departments: {support_list}",
                    details={"support_added": len(added)},
                )])
            conn.commit()

        for department in departments:
            self.notifications.notify_department_heads(
                user.organization_id,
                department,
                user.user_id,
                NotificationType.SUPPORT_REQUEST,
                "Support Requested",
                f'Your department has been asked to support goal "{goal.subject}"',
                goal_id=goal_id,
                action_data={"goal_id": goal_id, "department": department},
            )
        return added

    def remove_support(self, user: UserContext, goal_id: str, support_id: str) -> None:
        with self.pool.connect() as conn:
            goal = fetch_goal(conn, user.organization_id, goal_id)
            if not can_edit_goal(user, goal):
                raise PermissionDeniedError(
                    "You don't have permission to edit this goal's support requirements"
                )
            result = conn.execute(
                text("""
                    DELETE FROM goal_support
                    WHERE id = :id AND goal_id = :goal_id AND organization_id = :org_id
                """),
                {"id": support_id, "goal_id": goal_id, "org_id": user.organization_id},
            )
            if result.rowcount == 0:
                raise NotFoundError("Support requirement not found")
            conn.commit()

    def remove_team_support(self, user: UserContext, goal_id: str, department: str, team: str) -> None:
        with self.pool.connect() as conn:
            goal = fetch_goal(conn, user.organization_id, goal_id)
            if not can_edit_goal(user, goal):
                raise PermissionDeniedError(
                    "You don't have permission to edit this goal's support requirements"
                )
            result = conn.execute(
                text("""
                    DELETE FROM goal_support
                    WHERE goal_id = :goal_id AND organization_id = :org_id
                      AND support_type = 'Team' AND support_name = :team
                      AND support_department = :department
                """),
                {"goal_id": goal_id, "org_id": user.organization_id, "team": team, "department": department},
            )
            if result.rowcount == 0:
                raise NotFoundError("Team support not found")
            conn.commit()

    # -------------------------------------------------------------------------
    # ダッシュボード
    # -------------------------------------------------------------------------

    def get_dashboard_stats(self, user: UserContext) -> Dict[str, Any]:
        """閲覧可能な目標のステータス別・優先度別件数、期限超過数、平均進捗"""
        params: Dict[str, Any] = {"org_id": user.organization_id}
        where_sql = "g.organization_id = :org_id" + _visibility_clause(user, params)
        with self.pool.connect() as conn:
            rows = conn.execute(
                text(f"""
                    SELECT g.status, g.priority, g.progress_percentage,
                           g.target_date, g.adjusted_target_date
                    FROM goals g
                    WHERE {where_sql}
                """),
                params,
            ).fetchall()

        by_status: Dict[str, int] = {}
        by_priority: Dict[str, int] = {}
        overdue = 0
        progress_total = 0
        for status, priority, progress, target_date, adjusted in rows:
            by_status[status] = by_status.get(status, 0) + 1
            by_priority[priority] = by_priority.get(priority, 0) + 1
            progress_total += progress or 0
            if get_overdue_info({
                "status": status,
                "target_date": target_date,
                "adjusted_target_date": adjusted,
            }).is_overdue:
                overdue += 1

        total = len(rows)
        return {
            "total": total,
            "by_status": by_status,
            "by_priority": by_priority,
            "overdue": overdue,
            "average_progress": round(progress_total / total) if total else 0,
        }

    def list_overdue_goals(self, user: UserContext) -> List[Goal]:
        params: Dict[str, Any] = {"org_id": user.organization_id}
        where_sql = (
            "g.organization_id = :org_id "
            "AND g.status NOT IN ('Completed', 'Cancelled') "
            "AND COALESCE(g.adjusted_target_date, g.target_date) < CURRENT_DATE"
        ) + _visibility_clause(user, params)
        with self.pool.connect() as conn:
            rows = conn.execute(
                text(f"""
                    {_GOAL_SELECT}
                    WHERE {where_sql}
                    ORDER BY COALESCE(g.adjusted_target_date, g.target_date) ASC
                """),
                params,
            ).fetchall()
        return [g for g in (row_to_goal(r) for r in rows) if g.is_overdue]

    # -------------------------------------------------------------------------
    # 内部ヘルパー
    # -------------------------------------------------------------------------

    def _fetch_assignees(self, conn, organization_id: str, goal_id: str) -> List[GoalAssignee]:
        rows = conn.execute(
            text("""
                SELECT ga.id, ga.goal_id, ga.user_id, ga.task_status, ga.assigned_by,
                       ga.notes, ga.completed_at, ga.assigned_at,
                       u.full_name, u.email, u.department
                FROM goal_assignees ga
                LEFT JOIN users u ON u.id = ga.user_id
                WHERE ga.goal_id = :goal_id AND ga.organization_id = :org_id
                ORDER BY ga.assigned_at ASC
            """),
            {"goal_id": goal_id, "org_id": organization_id},
        ).fetchall()
        return [
            GoalAssignee(
                id=str(r[0]),
                goal_id=str(r[1]),
                user_id=str(r[2]),
                task_status=r[3],
                assigned_by=str(r[4]) if r[4] else None,
                notes=r[5],
                completed_at=r[6],
                assigned_at=r[7],
                full_name=r[8],
                email=r[9],
                department=r[10],
            )
            for r in rows
        ]

    def _fetch_support(self, conn, organization_id: str, goal_id: str) -> List[GoalSupport]:
        rows = conn.execute(
            text("""
                SELECT id, goal_id, support_type, support_name, support_department,
                       requested_by, notes, created_at
                FROM goal_support
                WHERE goal_id = :goal_id AND organization_id = :org_id
                ORDER BY created_at ASC
            """),
            {"goal_id": goal_id, "org_id": organization_id},
        ).fetchall()
        return [
            GoalSupport(
                id=str(r[0]),
                goal_id=str(r[1]),
                support_type=r[2],
                support_name=r[3],
                support_department=r[4],
                requested_by=str(r[5]) if r[5] else None,
                notes=r[6],
                created_at=r[7],
            )
            for r in rows
        ]


def _escape_like(value: str) -> str:
    """ILIKE のワイルドカードをエスケープ"""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def get_goal_service(pool=None) -> GoalService:
    """GoalServiceのファクトリ関数"""
    return GoalService(pool=pool)
