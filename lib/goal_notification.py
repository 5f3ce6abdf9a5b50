"""
目標通知サービス

notifications テーブルへのアプリ内通知の作成・取得・既読化と、
目標の関係者（オーナー・担当者・支援部署のHead）への通知ファンアウトを提供する。

既読化は行の削除で表現する（未読一覧 = 残っている行）。

通知の送信失敗は呼び出し元の処理を止めない（警告ログのみ）。

使用例:
    from lib.goal_notification import get_notification_service, NotificationType

    service = get_notification_service()
    service.notify_goal_stakeholders(
        organization_id=org_id,
        goal_id=goal_id,
        actor_id=user.user_id,
        notification_type=NotificationType.STATUS_CHANGE,
        title="Goal Status Updated",
        description='Goal "売上改善" moved from Plan to Do',
    )
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set
from uuid import uuid4

from sqlalchemy import text

from lib.db import get_db_pool
from lib.department import get_department_heads
from lib.logging import get_logger
from lib.overdue import get_overdue_info
from lib.permissions import UserContext

logger = get_logger(__name__)

DEFAULT_LIST_LIMIT = 50
DEFAULT_DEADLINE_DAYS_AHEAD = 3


class NotificationType(str, Enum):
    """通知タイプ"""
    ASSIGNMENT = "assignment"
    TASK_ASSIGNED = "task_assigned"
    TASK_CREATED = "task_created"
    TASK_COMPLETED = "task_completed"
    COMMENT = "comment"
    STATUS_CHANGE = "status_change"
    DEADLINE = "deadline"
    SUPPORT_REQUEST = "support_request"
    GOAL_UPDATED = "goal_updated"


NOTIFICATION_TYPE_VALUES = [t.value for t in NotificationType]


@dataclass
class Notification:
    """通知データクラス"""

    user_id: str
    type: str
    title: str
    description: Optional[str] = None
    goal_id: Optional[str] = None
    action_data: Dict[str, Any] = field(default_factory=dict)
    is_read: bool = False
    id: Optional[str] = None
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "goal_id": self.goal_id,
            "type": self.type,
            "title": self.title,
            "description": self.description,
            "action_data": self.action_data,
            "is_read": self.is_read,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


def _type_value(notification_type) -> str:
    return notification_type.value if isinstance(notification_type, Enum) else notification_type


def insert_notification(
    conn,
    organization_id: str,
    user_id: str,
    notification_type: str,
    title: str,
    description: Optional[str] = None,
    goal_id: Optional[str] = None,
    action_data: Optional[Dict[str, Any]] = None,
) -> str:
    """notifications への INSERT（commit は呼び出し側）"""
    notification_id = str(uuid4())
    conn.execute(
        text("""
            INSERT INTO notifications (
                id, organization_id, user_id, goal_id, type, title,
                description, action_data, is_read
            ) VALUES (
                :id, :org_id, :user_id, :goal_id, :type, :title,
                :description, CAST(:action_data AS jsonb), FALSE
            )
        """),
        {
            "id": notification_id,
            "org_id": organization_id,
            "user_id": user_id,
            "goal_id": goal_id,
            "type": _type_value(notification_type),
            "title": title,
            "description": description,
            "action_data": json.dumps(action_data or {}, ensure_ascii=False, default=str),
        },
    )
    return notification_id


def get_goal_stakeholders(conn, organization_id: str, goal_id: str) -> Set[str]:
    """目標の関係者: オーナー、担当者、支援部署のHead"""
    params = {"org_id": organization_id, "goal_id": goal_id}
    stakeholders: Set[str] = set()

    owner = conn.execute(
        text("SELECT owner_id FROM goals WHERE id = :goal_id AND organization_id = :org_id"),
        params,
    ).fetchone()
    if owner and owner[0]:
        stakeholders.add(str(owner[0]))

    assignees = conn.execute(
        text("""
            SELECT user_id FROM goal_assignees
            WHERE goal_id = :goal_id AND organization_id = :org_id
        """),
        params,
    ).fetchall()
    stakeholders.update(str(r[0]) for r in assignees if r[0])

    support_departments = conn.execute(
        text("""
            SELECT DISTINCT COALESCE(support_department, support_name)
            FROM goal_support
            WHERE goal_id = :goal_id AND organization_id = :org_id
        """),
        params,
    ).fetchall()
    for row in support_departments:
        stakeholders.update(get_department_heads(conn, organization_id, row[0]))

    return stakeholders


class NotificationService:
    """アプリ内通知サービス"""

    def __init__(self, pool=None):
        self._pool = pool

    @property
    def pool(self):
        if self._pool is None:
            self._pool = get_db_pool()
        return self._pool

    # -------------------------------------------------------------------------
    # 作成
    # -------------------------------------------------------------------------

    def create(
        self,
        organization_id: str,
        user_id: str,
        notification_type: str,
        title: str,
        description: Optional[str] = None,
        goal_id: Optional[str] = None,
        action_data: Optional[Dict[str, Any]] = None,
    ) -> Notification:
        with self.pool.connect() as conn:
            notification_id = insert_notification(
                conn, organization_id, user_id, notification_type,
                title, description, goal_id, action_data,
            )
            conn.commit()
        return Notification(
            id=notification_id,
            user_id=user_id,
            type=_type_value(notification_type),
            title=title,
            description=description,
            goal_id=goal_id,
            action_data=action_data or {},
        )

    def create_bulk(self, organization_id: str, notifications: Iterable[Notification]) -> int:
        count = 0
        with self.pool.connect() as conn:
            for n in notifications:
                insert_notification(
                    conn, organization_id, n.user_id, n.type,
                    n.title, n.description, n.goal_id, n.action_data,
                )
                count += 1
            conn.commit()
        return count

    def notify_users(
        self,
        organization_id: str,
        user_ids: Iterable[str],
        notification_type: str,
        title: str,
        description: Optional[str] = None,
        goal_id: Optional[str] = None,
        action_data: Optional[Dict[str, Any]] = None,
        exclude: Iterable[Optional[str]] = (),
    ) -> int:
        """
        複数ユーザーへ同じ通知を送る（重複排除・除外あり）

        失敗しても例外は投げず 0 を返す。
        """
        excluded = {str(e) for e in exclude if e}
        recipients = sorted({str(u) for u in user_ids if u} - excluded)
        if not recipients:
            return 0
        try:
            return self.create_bulk(
                organization_id,
                [
                    Notification(
                        user_id=user_id,
                        type=_type_value(notification_type),
                        title=title,
                        description=description,
                        goal_id=goal_id,
                        action_data=action_data or {},
                    )
                    for user_id in recipients
                ],
            )
        except Exception as e:
            logger.warning(
                "Notification fan-out failed (non-blocking)",
                notification_type=_type_value(notification_type),
                goal_id=goal_id,
                recipients=len(recipients),
                error=str(e),
            )
            return 0

    def notify_goal_stakeholders(
        self,
        organization_id: str,
        goal_id: str,
        actor_id: Optional[str],
        notification_type: str,
        title: str,
        description: Optional[str] = None,
        action_data: Optional[Dict[str, Any]] = None,
        exclude: Iterable[Optional[str]] = (),
    ) -> int:
        """目標の関係者全員に通知（操作者は除く）"""
        try:
            with self.pool.connect() as conn:
                stakeholders = get_goal_stakeholders(conn, organization_id, goal_id)
        except Exception as e:
            logger.warning("Stakeholder lookup failed (non-blocking)", goal_id=goal_id, error=str(e))
            return 0
        return self.notify_users(
            organization_id,
            stakeholders,
            notification_type,
            title,
            description,
            goal_id=goal_id,
            action_data={"goal_id": goal_id, **(action_data or {})},
            exclude=[actor_id, *exclude],
        )

    def notify_department_heads(
        self,
        organization_id: str,
        department: Optional[str],
        actor_id: Optional[str],
        notification_type: str,
        title: str,
        description: Optional[str] = None,
        goal_id: Optional[str] = None,
        action_data: Optional[Dict[str, Any]] = None,
    ) -> int:
        if not department:
            return 0
        try:
            with self.pool.connect() as conn:
                heads = get_department_heads(conn, organization_id, department)
        except Exception as e:
            logger.warning("Department head lookup failed (non-blocking)", department=department, error=str(e))
            return 0
        return self.notify_users(
            organization_id, heads, notification_type, title, description,
            goal_id=goal_id, action_data=action_data, exclude=[actor_id],
        )

    # -------------------------------------------------------------------------
    # 取得・既読化
    # -------------------------------------------------------------------------

    def list_unread(self, user: UserContext, limit: int = DEFAULT_LIST_LIMIT) -> List[Notification]:
        with self.pool.connect() as conn:
            rows = conn.execute(
                text("""
                    SELECT id, user_id, goal_id, type, title, description,
                           action_data, is_read, created_at
                    FROM notifications
                    WHERE organization_id = :org_id AND user_id = :user_id AND is_read = FALSE
                    ORDER BY created_at DESC
                    LIMIT :limit
                """),
                {"org_id": user.organization_id, "user_id": user.user_id, "limit": limit},
            ).fetchall()
        return [self._row_to_notification(r) for r in rows]

    def unread_count(self, user: UserContext) -> int:
        with self.pool.connect() as conn:
            count = conn.execute(
                text("""
                    SELECT COUNT(*) FROM notifications
                    WHERE organization_id = :org_id AND user_id = :user_id AND is_read = FALSE
                """),
                {"org_id": user.organization_id, "user_id": user.user_id},
            ).scalar()
        return int(count or 0)

    def mark_read(self, user: UserContext, notification_id: str) -> bool:
        """既読化（本人の通知のみ削除）。削除できたら True"""
        with self.pool.connect() as conn:
            result = conn.execute(
                text("""
                    DELETE FROM notifications
                    WHERE id = :id AND organization_id = :org_id AND user_id = :user_id
                """),
                {"id": notification_id, "org_id": user.organization_id, "user_id": user.user_id},
            )
            conn.commit()
        return result.rowcount > 0

    def mark_all_read(self, user: UserContext) -> int:
        with self.pool.connect() as conn:
            result = conn.execute(
                text("""
                    DELETE FROM notifications
                    WHERE organization_id = :org_id AND user_id = :user_id AND is_read = FALSE
                """),
                {"org_id": user.organization_id, "user_id": user.user_id},
            )
            conn.commit()
        return result.rowcount

    # -------------------------------------------------------------------------
    # 期限通知
    # -------------------------------------------------------------------------

    def check_deadlines(
        self,
        organization_id: str,
        days_ahead: int = DEFAULT_DEADLINE_DAYS_AHEAD,
        today: Optional[date] = None,
    ) -> int:
        """
        期限が近い・超過した目標の関係者に deadline 通知を作成

        同じ目標について未読の deadline 通知が残っているユーザーには再送しない。

        Returns:
            作成した通知数
        """
        today = today or date.today()
        horizon = today + timedelta(days=days_ahead)
        created = 0
        with self.pool.connect() as conn:
            goals = conn.execute(
                text("""
                    SELECT id, subject, status, target_date, adjusted_target_date, owner_id
                    FROM goals
                    WHERE organization_id = :org_id
                      AND status NOT IN ('Completed', 'Cancelled')
                      AND COALESCE(adjusted_target_date, target_date) IS NOT NULL
                      AND COALESCE(adjusted_target_date, target_date) <= :horizon
                """),
                {"org_id": organization_id, "horizon": horizon},
            ).fetchall()

            for goal in goals:
                goal_id = str(goal[0])
                info = get_overdue_info(
                    {"status": goal[2], "target_date": goal[3], "adjusted_target_date": goal[4]},
                    today,
                )
                if info.is_overdue:
                    title = "Goal Overdue"
                    description = f'Goal "{goal[1]}" is {info.days_overdue} day(s) overdue'
                else:
                    title = "Goal Deadline Approaching"
                    description = f'Goal "{goal[1]}" is due on {info.deadline.isoformat()}'

                already = {
                    str(r[0]) for r in conn.execute(
                        text("""
                            SELECT user_id FROM notifications
                            WHERE organization_id = :org_id AND goal_id = :goal_id
                              AND type = 'deadline' AND is_read = FALSE
                        """),
                        {"org_id": organization_id, "goal_id": goal_id},
                    ).fetchall()
                }
                recipients = get_goal_stakeholders(conn, organization_id, goal_id) - already
                for user_id in sorted(recipients):
                    insert_notification(
                        conn, organization_id, user_id, NotificationType.DEADLINE,
                        title, description, goal_id,
                        {
                            "goal_id": goal_id,
                            "deadline": info.deadline.isoformat() if info.deadline else None,
                            "days_overdue": info.days_overdue,
                        },
                    )
                    created += 1
            conn.commit()

        logger.info("Deadline check completed", goals=len(goals), notifications=created)
        return created

    @staticmethod
    def _row_to_notification(row) -> Notification:
        action_data = row[6]
        if isinstance(action_data, str):
            action_data = json.loads(action_data)
        return Notification(
            id=str(row[0]),
            user_id=str(row[1]),
            goal_id=str(row[2]) if row[2] else None,
            type=row[3],
            title=row[4],
            description=row[5],
            action_data=action_data or {},
            is_read=bool(row[7]),
            created_at=row[8],
        )


def get_notification_service(pool=None) -> NotificationService:
    """NotificationServiceのファクトリ関数"""
    return NotificationService(pool=pool)
