"""
目標タスク管理

目標配下のタスク（goal_tasks）の作成・着手・完了・編集・削除と、
フェーズ別の未完了タスク取得（PDCA前進遷移のゲート）を提供する。

タスクは pdca_phase を持ち、未指定時は目標の現在フェーズになる。
操作ごとに目標の workflow_history にエントリを追記する。
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import text

from lib.db import get_db_pool
from lib.department import get_department_heads
from lib.errors import NotFoundError, PermissionDeniedError, ValidationError
from lib.goal import PRIORITY_VALUES, Goal, fetch_assignee_ids, fetch_goal
from lib.goal_notification import NotificationType, get_notification_service
from lib.logging import get_logger
from lib.permissions import UserContext, can_manage_tasks, can_view_goal
from lib.workflow import (
    PDCA_PHASES,
    WorkflowAction,
    append_history,
    make_history_entry,
    normalize_date,
)

logger = get_logger(__name__)


class TaskStatus(str, Enum):
    """タスクステータス"""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TASK_STATUS_VALUES = [s.value for s in TaskStatus]
UNASSIGNED = "unassigned"

# インポートの generate_tasks で作成するフェーズ別タスク
DEFAULT_PDCA_TASKS = [
    {"title": "Plan: Define approach and milestones", "pdca_phase": "Plan", "priority": "High"},
    {"title": "Do: Execute planned activities", "pdca_phase": "Do", "priority": "Medium"},
    {"title": "Check: Review results against targets", "pdca_phase": "Check", "priority": "Medium"},
    {"title": "Act: Standardize improvements and next steps", "pdca_phase": "Act", "priority": "Medium"},
]

UPDATABLE_FIELDS = (
    "title",
    "description",
    "priority",
    "status",
    "assigned_to",
    "department",
    "start_date",
    "due_date",
    "estimated_hours",
    "actual_hours",
    "completion_notes",
    "pdca_phase",
)


@dataclass
class GoalTask:
    """目標タスク"""

    id: str
    goal_id: str
    title: str
    description: Optional[str] = None
    priority: str = "Medium"
    status: str = TaskStatus.PENDING.value
    pdca_phase: Optional[str] = None
    assigned_to: Optional[str] = None
    assigned_by: Optional[str] = None
    department: Optional[str] = None
    start_date: Optional[date] = None
    due_date: Optional[date] = None
    estimated_hours: Optional[float] = None
    actual_hours: Optional[float] = None
    order_index: int = 0
    completion_notes: Optional[str] = None
    completed_at: Optional[datetime] = None
    completed_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    assignee_name: Optional[str] = None
    goal_subject: Optional[str] = None
    goal_status: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "goal_id": self.goal_id,
            "title": self.title,
            "description": self.description,
            "priority": self.priority,
            "status": self.status,
            "pdca_phase": self.pdca_phase,
            "assigned_to": self.assigned_to,
            "assignee_name": self.assignee_name,
            "assigned_by": self.assigned_by,
            "department": self.department,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "estimated_hours": self.estimated_hours,
            "actual_hours": self.actual_hours,
            "order_index": self.order_index,
            "completion_notes": self.completion_notes,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "completed_by": self.completed_by,
            "goal_subject": self.goal_subject,
            "goal_status": self.goal_status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


def _assignee_or_none(value: Optional[str]) -> Optional[str]:
    return value if value and value != UNASSIGNED else None


def _phase_for_goal(goal: Goal) -> str:
    """目標の現在フェーズ（保留中は保留前のフェーズ）"""
    if goal.status in PDCA_PHASES:
        return goal.status
    if goal.previous_status in PDCA_PHASES:
        return goal.previous_status
    return "Plan"


def _validate_task_data(data: Dict[str, Any], require_title: bool = True) -> None:
    if require_title and not (data.get("title") or "").strip():
        raise ValidationError("Task title is required")
    if data.get("priority") and data["priority"] not in PRIORITY_VALUES:
        raise ValidationError(f"Invalid priority: {data['priority']}")
    if data.get("status") and data["status"] not in TASK_STATUS_VALUES:
        raise ValidationError(f"Invalid task status: {data['status']}")
    if data.get("pdca_phase") and data["pdca_phase"] not in PDCA_PHASES:
        raise ValidationError(f"Invalid PDCA phase: {data['pdca_phase']}")
    start = normalize_date(data.get("start_date"))
    due = normalize_date(data.get("due_date"))
    if start and due and start > due:
        raise ValidationError("Task start date cannot be later than due date")


def insert_task(
    conn,
    organization_id: str,
    goal_id: str,
    data: Dict[str, Any],
    assigned_by: str,
    default_phase: str,
    order_index: int = 0,
) -> str:
    """goal_tasks への INSERT（commit は呼び出し側）"""
    task_id = str(uuid4())
    conn.execute(
        text("""
            INSERT INTO goal_tasks (
                id, organization_id, goal_id, title, description, priority, status,
                pdca_phase, assigned_to, assigned_by, department, start_date, due_date,
                estimated_hours, actual_hours, order_index
            ) VALUES (
                :id, :org_id, :goal_id, :title, :description, :priority, 'pending',
                :pdca_phase, :assigned_to, :assigned_by, :department, :start_date, :due_date,
                :estimated_hours, 0, :order_index
            )
        """),
        {
            "id": task_id,
            "org_id": organization_id,
            "goal_id": goal_id,
            "title": data["title"].strip(),
            "description": data.get("description") or None,
            "priority": data.get("priority") or "Medium",
            "pdca_phase": data.get("pdca_phase") or default_phase,
            "assigned_to": _assignee_or_none(data.get("assigned_to")),
            "assigned_by": assigned_by,
            "department": data.get("department") or None,
            "start_date": normalize_date(data.get("start_date")),
            "due_date": normalize_date(data.get("due_date")),
            "estimated_hours": data.get("estimated_hours"),
            "order_index": order_index,
        },
    )
    return task_id


def get_incomplete_tasks_for_phase(conn, organization_id: str, goal_id: str, phase: str) -> List[Dict[str, Any]]:
    """指定フェーズの未完了タスク（id, title, status, assignee_name）"""
    rows = conn.execute(
        text("""
            SELECT t.id, t.title, t.status, u.full_name
            FROM goal_tasks t
            LEFT JOIN users u ON u.id = t.assigned_to
            WHERE t.goal_id = :goal_id AND t.organization_id = :org_id
              AND t.pdca_phase = :phase AND t.status != 'completed'
            ORDER BY t.order_index ASC, t.created_at ASC
        """),
        {"goal_id": goal_id, "org_id": organization_id, "phase": phase},
    ).fetchall()
    return [
        {"id": str(r[0]), "title": r[1], "status": r[2], "assignee_name": r[3]}
        for r in rows
    ]


_TASK_SELECT = """
    SELECT t.id, t.goal_id, t.title, t.description, t.priority, t.status, t.pdca_phase,
           t.assigned_to, t.assigned_by, t.department, t.start_date, t.due_date,
           t.estimated_hours, t.actual_hours, t.order_index, t.completion_notes,
           t.completed_at, t.completed_by, t.created_at, t.updated_at,
           u.full_name AS assignee_name, g.subject AS goal_subject, g.status AS goal_status
    FROM goal_tasks t
    LEFT JOIN users u ON u.id = t.assigned_to
    LEFT JOIN goals g ON g.id = t.goal_id
"""

_PHASE_ORDER_SQL = """
    CASE t.pdca_phase WHEN 'Plan' THEN 1 WHEN 'Do' THEN 2 WHEN 'Check' THEN 3 WHEN 'Act' THEN 4 ELSE 5 END
"""

_PRIORITY_ORDER_SQL = """
    CASE t.priority WHEN 'Critical' THEN 4 WHEN 'High' THEN 3 WHEN 'Medium' THEN 2 WHEN 'Low' THEN 1 ELSE 0 END
"""


class GoalTaskService:
    """目標タスク管理サービス"""

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

    def create_task(self, user: UserContext, goal_id: str, data: Dict[str, Any]) -> GoalTask:
        _validate_task_data(data)
        with self.pool.connect() as conn:
            goal, _ = self._load_goal_for_tasks(conn, user, goal_id)
            next_index = conn.execute(
                text("""
                    SELECT COALESCE(MAX(order_index) + 1, 0) FROM goal_tasks
                    WHERE goal_id = :goal_id AND organization_id = :org_id
                """),
                {"goal_id": goal_id, "org_id": user.organization_id},
            ).scalar()
            task_id = insert_task(
                conn, user.organization_id, goal_id, data, user.user_id,
                default_phase=_phase_for_goal(goal),
                order_index=int(next_index or 0),
            )
            append_history(conn, goal_id, [make_history_entry(
                action=WorkflowAction.TASK_CREATED,
                user_id=user.user_id,
                user_name=user.full_name or user.email,
                comment=f'Task created: "{data["title"].strip()}"',
                details={"task_id": task_id, "task_title": data["title"].strip()},
            )])
            conn.commit()
            task = self._fetch_task(conn, user.organization_id, task_id)

        self._notify_task_created(user, goal, task)
        return task

    def bulk_create_tasks(self, user: UserContext, goal_id: str, tasks: List[Dict[str, Any]]) -> List[GoalTask]:
        if not tasks:
            raise ValidationError("At least one task is required")
        for task in tasks:
            _validate_task_data(task)
        with self.pool.connect() as conn:
            goal, _ = self._load_goal_for_tasks(conn, user, goal_id)
            phase = _phase_for_goal(goal)
            task_ids = [
                insert_task(conn, user.organization_id, goal_id, task, user.user_id, phase, index)
                for index, task in enumerate(tasks)
            ]
            titles = [t["title"].strip() for t in tasks]
            append_history(conn, goal_id, [make_history_entry(
                action=WorkflowAction.TASKS_BULK_CREATED,
                user_id=user.user_id,
                user_name=user.full_name or user.email,
                comment=f"{len(task_ids)} tasks created",
                details={"task_count": len(task_ids), "task_titles": titles},
            )])
            conn.commit()
            created = [self._fetch_task(conn, user.organization_id, task_id) for task_id in task_ids]

        for task in created:
            if task.assigned_to:
                self.notifications.notify_users(
                    user.organization_id,
                    [task.assigned_to],
                    NotificationType.TASK_ASSIGNED,
                    "New Task Assigned",
                    f'You have been assigned a new task in goal "{goal.subject}": "{task.title}"',
                    goal_id=goal_id,
                    action_data={"task_id": task.id, "task_title": task.title, "goal_id": goal_id},
                    exclude=[user.user_id],
                )
        return created

    # -------------------------------------------------------------------------
    # 状態変更
    # -------------------------------------------------------------------------

    def start_task(self, user: UserContext, task_id: str) -> GoalTask:
        """着手（担当者、または未割当タスクなら誰でも）"""
        with self.pool.connect() as conn:
            task = self._fetch_task(conn, user.organization_id, task_id)
            if task.assigned_to and task.assigned_to != user.user_id:
                raise PermissionDeniedError("You can only start tasks assigned to you")
            if task.status == TaskStatus.COMPLETED.value:
                raise ValidationError("Task is already completed")
            conn.execute(
                text("""
                    UPDATE goal_tasks SET status = 'in_progress', updated_at = CURRENT_TIMESTAMP
                    WHERE id = :id AND organization_id = :org_id
                """),
                {"id": task_id, "org_id": user.organization_id},
            )
            append_history(conn, task.goal_id, [make_history_entry(
                action=WorkflowAction.TASK_STARTED,
                user_id=user.user_id,
                user_name=user.full_name or user.email,
                comment=f'Task started: "{task.title}"',
                details={
                    "task_id": task_id,
                    "task_title": task.title,
                    "previous_status": task.status,
                    "new_status": TaskStatus.IN_PROGRESS.value,
                },
            )])
            conn.commit()
        task.status = TaskStatus.IN_PROGRESS.value
        return task

    def complete_task(
        self,
        user: UserContext,
        task_id: str,
        completion_notes: Optional[str] = None,
        actual_hours: Optional[float] = None,
    ) -> GoalTask:
        """完了（担当者のみ。未割当タスクは完了者に割り当てる）"""
        with self.pool.connect() as conn:
            task = self._fetch_task(conn, user.organization_id, task_id)
            if task.assigned_to and task.assigned_to != user.user_id:
                raise PermissionDeniedError("You can only complete tasks assigned to you")
            goal = fetch_goal(conn, user.organization_id, task.goal_id)
            conn.execute(
                text("""
                    UPDATE goal_tasks
                    SET status = 'completed',
                        completion_notes = :notes,
                        actual_hours = COALESCE(:actual_hours, actual_hours),
                        completed_at = CURRENT_TIMESTAMP,
                        completed_by = :user_id,
                        assigned_to = COALESCE(assigned_to, :user_id),
                        updated_at = CURRENT_TIMESTAMP
                    WHERE id = :id AND organization_id = :org_id
                """),
                {
                    "id": task_id,
                    "org_id": user.organization_id,
                    "notes": completion_notes or None,
                    "actual_hours": actual_hours,
                    "user_id": user.user_id,
                },
            )
            append_history(conn, task.goal_id, [make_history_entry(
                action=WorkflowAction.TASK_COMPLETED,
                user_id=user.user_id,
                user_name=user.full_name or user.email,
                comment=f'Task completed: "{task.title}"',
                details={"task_id": task_id, "task_title": task.title, "completion_notes": completion_notes},
            )])
            heads = get_department_heads(conn, user.organization_id, goal.department)
            conn.commit()
            task = self._fetch_task(conn, user.organization_id, task_id)

        notes_suffix = f" with notes: {completion_notes}" if completion_notes else ""
        self.notifications.notify_users(
            user.organization_id,
            [goal.owner_id, task.assigned_by, *heads],
            NotificationType.TASK_COMPLETED,
            "Task Completed",
            f'Task "{task.title}" has been completed in goal "{goal.subject}"{notes_suffix}',
            goal_id=goal.id,
            action_data={
                "task_id": task_id,
                "task_title": task.title,
                "goal_subject": goal.subject,
                "completed_by": user.full_name or user.email,
                "completion_notes": completion_notes,
            },
            exclude=[user.user_id],
        )
        return task

    def update_task(self, user: UserContext, task_id: str, updates: Dict[str, Any]) -> GoalTask:
        """編集（目標オーナー・担当者・タスク担当者・Admin・同一部署Head）"""
        changes = {k: v for k, v in updates.items() if k in UPDATABLE_FIELDS and v is not None}
        if not changes:
            raise ValidationError("No fields to update")
        if "assigned_to" in changes:
            changes["assigned_to"] = _assignee_or_none(changes["assigned_to"])
        for field_name in ("start_date", "due_date"):
            if field_name in changes:
                changes[field_name] = normalize_date(changes[field_name])
        if "title" in changes and not str(changes["title"]).strip():
            raise ValidationError("Task title is required")

        with self.pool.connect() as conn:
            task = self._fetch_task(conn, user.organization_id, task_id)
            goal = fetch_goal(conn, user.organization_id, task.goal_id)
            assignee_ids = fetch_assignee_ids(conn, user.organization_id, task.goal_id)
            if task.assigned_to != user.user_id and not can_manage_tasks(user, goal, assignee_ids):
                raise PermissionDeniedError("You don't have permission to update this task")

            merged = {**task.to_dict(), **changes}
            _validate_task_data(merged)

            set_sql = ", ".join(f"{k} = :{k}" for k in changes)
            params = {**changes, "id": task_id, "org_id": user.organization_id}
            new_status = changes.get("status")
            if new_status == TaskStatus.COMPLETED.value and task.status != TaskStatus.COMPLETED.value:
                set_sql += ", completed_at = CURRENT_TIMESTAMP, completed_by = :completed_by"
                params["completed_by"] = user.user_id
            elif new_status and new_status != TaskStatus.COMPLETED.value and task.status == TaskStatus.COMPLETED.value:
                # 完了を取り消したら完了情報もクリア
                set_sql += ", completed_at = NULL, completed_by = NULL"
            conn.execute(
                text(f"""
                    UPDATE goal_tasks SET {set_sql}, updated_at = CURRENT_TIMESTAMP
                    WHERE id = :id AND organization_id = :org_id
                """),
                params,
            )
            append_history(conn, task.goal_id, [make_history_entry(
                action=WorkflowAction.TASK_EDITED,
                user_id=user.user_id,
                user_name=user.full_name or user.email,
                comment=f'Task edited: "{changes.get("title", task.title)}"',
                details={
                    "task_id": task_id,
                    "task_title": changes.get("title", task.title),
                    "changes": changes,
                },
            )])
            conn.commit()
            updated = self._fetch_task(conn, user.organization_id, task_id)

        new_assignee = changes.get("assigned_to")
        if new_assignee and new_assignee != task.assigned_to:
            self.notifications.notify_users(
                user.organization_id,
                [new_assignee],
                NotificationType.TASK_ASSIGNED,
                "Task Reassigned",
                f'A task has been reassigned to you: "{updated.title}"',
                goal_id=updated.goal_id,
                action_data={"task_id": task_id, "goal_id": updated.goal_id},
                exclude=[user.user_id],
            )
        return updated

    def delete_task(self, user: UserContext, task_id: str) -> None:
        with self.pool.connect() as conn:
            task = self._fetch_task(conn, user.organization_id, task_id)
            goal = fetch_goal(conn, user.organization_id, task.goal_id)
            assignee_ids = fetch_assignee_ids(conn, user.organization_id, task.goal_id)
            if not can_manage_tasks(user, goal, assignee_ids):
                raise PermissionDeniedError("You don't have permission to delete this task")
            conn.execute(
                text("DELETE FROM goal_tasks WHERE id = :id AND organization_id = :org_id"),
                {"id": task_id, "org_id": user.organization_id},
            )
            append_history(conn, task.goal_id, [make_history_entry(
                action=WorkflowAction.TASK_DELETED,
                user_id=user.user_id,
                user_name=user.full_name or user.email,
                comment=f'Task deleted: "{task.title}"',
                details={"task_id": task_id, "task_title": task.title},
            )])
            conn.commit()

    # -------------------------------------------------------------------------
    # 取得
    # -------------------------------------------------------------------------

    def list_tasks_for_goal(self, user: UserContext, goal_id: str) -> List[GoalTask]:
        """フェーズ順 → order_index 順"""
        with self.pool.connect() as conn:
            goal = fetch_goal(conn, user.organization_id, goal_id)
            assignee_ids = fetch_assignee_ids(conn, user.organization_id, goal_id)
            if not can_view_goal(user, goal, assignee_ids):
                raise PermissionDeniedError("You don't have permission to view this goal")
            rows = conn.execute(
                text(f"""
                    {_TASK_SELECT}
                    WHERE t.goal_id = :goal_id AND t.organization_id = :org_id
                    ORDER BY {_PHASE_ORDER_SQL}, t.order_index ASC, t.created_at ASC
                """),
                {"goal_id": goal_id, "org_id": user.organization_id},
            ).fetchall()
        return [self._row_to_task(r) for r in rows]

    def get_my_tasks(self, user: UserContext, status: Optional[str] = None) -> List[GoalTask]:
        """自分に割り当てられたタスク（期限昇順 → 優先度降順 → 作成日降順）"""
        params: Dict[str, Any] = {"org_id": user.organization_id, "user_id": user.user_id}
        status_sql = ""
        if status:
            if status not in TASK_STATUS_VALUES:
                raise ValidationError(f"Invalid task status: {status}")
            status_sql = "AND t.status = :status"
            params["status"] = status
        with self.pool.connect() as conn:
            rows = conn.execute(
                text(f"""
                    {_TASK_SELECT}
                    WHERE t.organization_id = :org_id AND t.assigned_to = :user_id {status_sql}
                    ORDER BY t.due_date ASC NULLS LAST, {_PRIORITY_ORDER_SQL} DESC, t.created_at DESC
                """),
                params,
            ).fetchall()
        return [self._row_to_task(r) for r in rows]

    def get_task_stats(self, organization_id: str, goal_id: str) -> Dict[str, int]:
        with self.pool.connect() as conn:
            row = conn.execute(
                text("""
                    SELECT COUNT(*),
                           COUNT(*) FILTER (WHERE status = 'completed'),
                           COUNT(*) FILTER (WHERE status = 'pending'),
                           COUNT(*) FILTER (WHERE status = 'in_progress')
                    FROM goal_tasks
                    WHERE goal_id = :goal_id AND organization_id = :org_id
                """),
                {"goal_id": goal_id, "org_id": organization_id},
            ).fetchone()
        return build_task_stats(*(int(v or 0) for v in row))

    def get_incomplete_tasks_for_phase(self, organization_id: str, goal_id: str, phase: str) -> List[Dict[str, Any]]:
        with self.pool.connect() as conn:
            return get_incomplete_tasks_for_phase(conn, organization_id, goal_id, phase)

    # -------------------------------------------------------------------------
    # 内部ヘルパー
    # -------------------------------------------------------------------------

    def _load_goal_for_tasks(self, conn, user: UserContext, goal_id: str):
        goal = fetch_goal(conn, user.organization_id, goal_id)
        assignee_ids = fetch_assignee_ids(conn, user.organization_id, goal_id)
        if not can_manage_tasks(user, goal, assignee_ids):
            raise PermissionDeniedError(
                "Only goal owners, assignees, admins, and department heads can create tasks"
            )
        return goal, assignee_ids

    def _fetch_task(self, conn, organization_id: str, task_id: str) -> GoalTask:
        row = conn.execute(
            text(f"{_TASK_SELECT} WHERE t.id = :id AND t.organization_id = :org_id"),
            {"id": task_id, "org_id": organization_id},
        ).fetchone()
        if row is None:
            raise NotFoundError("Task not found")
        return self._row_to_task(row)

    def _notify_task_created(self, user: UserContext, goal: Goal, task: GoalTask) -> None:
        if task.assigned_to and task.assigned_to != user.user_id:
            self.notifications.notify_users(
                user.organization_id,
                [task.assigned_to],
                NotificationType.TASK_ASSIGNED,
                "New Task Assigned",
                f'You have been assigned a new task: "{task.title}"',
                goal_id=goal.id,
                action_data={"task_id": task.id, "task_title": task.title, "goal_id": goal.id},
            )
            assignee_department = self._user_department(user.organization_id, task.assigned_to)
            self.notifications.notify_department_heads(
                user.organization_id,
                assignee_department,
                user.user_id,
                NotificationType.TASK_ASSIGNED,
                "Department Task Assignment",
                f'A task has been assigned to a member of your department: "{task.title}"',
                goal_id=goal.id,
                action_data={"task_id": task.id, "assigned_to": task.assigned_to},
            )

        self.notifications.notify_goal_stakeholders(
            user.organization_id,
            goal.id,
            user.user_id,
            NotificationType.TASK_CREATED,
            "New Task Created",
            f'New task "{task.title}" has been created in goal "{goal.subject}"',
            action_data={
                "task_id": task.id,
                "task_title": task.title,
                "goal_subject": goal.subject,
                "created_by": user.full_name or user.email,
            },
            exclude=[task.assigned_to],
        )

    def _user_department(self, organization_id: str, user_id: str) -> Optional[str]:
        try:
            with self.pool.connect() as conn:
                row = conn.execute(
                    text("SELECT department FROM users WHERE id = :id AND organization_id = :org_id"),
                    {"id": user_id, "org_id": organization_id},
                ).fetchone()
        except Exception as e:
            logger.warning("Assignee department lookup failed (non-blocking)", user_id=user_id, error=str(e))
            return None
        return row[0] if row else None

    @staticmethod
    def _row_to_task(row) -> GoalTask:
        return GoalTask(
            id=str(row[0]),
            goal_id=str(row[1]),
            title=row[2],
            description=row[3],
            priority=row[4],
            status=row[5],
            pdca_phase=row[6],
            assigned_to=str(row[7]) if row[7] else None,
            assigned_by=str(row[8]) if row[8] else None,
            department=row[9],
            start_date=row[10],
            due_date=row[11],
            estimated_hours=float(row[12]) if row[12] is not None else None,
            actual_hours=float(row[13]) if row[13] is not None else None,
            order_index=row[14] or 0,
            completion_notes=row[15],
            completed_at=row[16],
            completed_by=str(row[17]) if row[17] else None,
            created_at=row[18],
            updated_at=row[19],
            assignee_name=row[20],
            goal_subject=row[21],
            goal_status=row[22],
        )


def percentage(part: int, total: int) -> int:
    """part / total を四捨五入した整数%（total=0 は 0）"""
    if not total:
        return 0
    return int((Decimal(part) * 100 / Decimal(total)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def build_task_stats(total: int, completed: int, pending: int, in_progress: int) -> Dict[str, int]:
    """タスク統計（完了率は四捨五入した整数%）"""
    return {
        "total": total,
        "completed": completed,
        "pending": pending,
        "in_progress": in_progress,
        "completion_percentage": percentage(completed, total),
    }


def get_goal_task_service(pool=None) -> GoalTaskService:
    """GoalTaskServiceのファクトリ関数"""
    return GoalTaskService(pool=pool)
