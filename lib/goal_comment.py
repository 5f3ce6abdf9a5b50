"""
目標コメントサービス

コメントの追加・返信・スレッド表示・削除を提供する。
非公開コメントは投稿者・目標オーナー・Admin のみ閲覧できる。
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import text

from lib.comment_utils import (
    build_comment_threads,
    format_comment_for_storage,
    get_thread_comment_ids,
    parse_comment,
    validate_comment_text,
)
from lib.db import get_db_pool
from lib.errors import NotFoundError, PermissionDeniedError, ValidationError
from lib.goal import Goal, fetch_assignee_ids, fetch_goal
from lib.goal_notification import NotificationType, get_notification_service
from lib.logging import get_logger
from lib.permissions import UserContext, can_view_goal, is_admin

logger = get_logger(__name__)


def can_see_comment(user: UserContext, goal: Goal, comment: Dict[str, Any]) -> bool:
    if not comment.get("is_private"):
        return True
    return (
        is_admin(user)
        or str(comment.get("user_id")) == user.user_id
        or str(goal.owner_id) == user.user_id
    )


class GoalCommentService:
    """目標コメントサービス"""

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

    def add_comment(
        self,
        user: UserContext,
        goal_id: str,
        comment_text: str,
        parent_id: Optional[str] = None,
        is_private: bool = False,
    ) -> Dict[str, Any]:
        error = validate_comment_text(comment_text)
        if error:
            raise ValidationError(error, error_code="INVALID_COMMENT")

        with self.pool.connect() as conn:
            goal = self._load_visible_goal(conn, user, goal_id)
            if parent_id:
                parent = conn.execute(
                    text("""
                        SELECT id FROM goal_comments
                        WHERE id = :id AND goal_id = :goal_id AND organization_id = :org_id
                    """),
                    {"id": parent_id, "goal_id": goal_id, "org_id": user.organization_id},
                ).fetchone()
                if parent is None:
                    raise NotFoundError("Parent comment not found")

            comment_id = str(uuid4())
            stored = format_comment_for_storage(comment_text, parent_id)
            row = conn.execute(
                text("""
                    INSERT INTO goal_comments (id, organization_id, goal_id, user_id, comment, is_private)
                    VALUES (:id, :org_id, :goal_id, :user_id, :comment, :is_private)
                    RETURNING created_at
                """),
                {
                    "id": comment_id,
                    "org_id": user.organization_id,
                    "goal_id": goal_id,
                    "user_id": user.user_id,
                    "comment": stored,
                    "is_private": is_private,
                },
            ).fetchone()
            conn.commit()

        comment = parse_comment({
            "id": comment_id,
            "goal_id": goal_id,
            "user_id": user.user_id,
            "user_name": user.full_name,
            "comment": stored,
            "is_private": is_private,
            "created_at": row[0].isoformat() if row and row[0] else None,
        })

        if not is_private:
            title = "New Reply" if parent_id else "New Comment"
            self.notifications.notify_goal_stakeholders(
                user.organization_id,
                goal_id,
                user.user_id,
                NotificationType.COMMENT,
                title,
                f'{user.full_name or user.email} commented on goal "{goal.subject}"',
                action_data={"comment_id": comment_id, "parent_id": parent_id},
            )
        return comment

    def list_comments(self, user: UserContext, goal_id: str) -> List[Dict[str, Any]]:
        """スレッド構造のコメント一覧"""
        with self.pool.connect() as conn:
            goal = self._load_visible_goal(conn, user, goal_id)
            rows = conn.execute(
                text("""
                    SELECT c.id, c.goal_id, c.user_id, c.comment, c.is_private,
                           c.created_at, c.updated_at, u.full_name, u.email
                    FROM goal_comments c
                    LEFT JOIN users u ON u.id = c.user_id
                    WHERE c.goal_id = :goal_id AND c.organization_id = :org_id
                    ORDER BY c.created_at ASC
                """),
                {"goal_id": goal_id, "org_id": user.organization_id},
            ).fetchall()

        comments = [
            {
                "id": str(r[0]),
                "goal_id": str(r[1]),
                "user_id": str(r[2]),
                "comment": r[3],
                "is_private": bool(r[4]),
                "created_at": r[5].isoformat() if r[5] else None,
                "updated_at": r[6].isoformat() if r[6] else None,
                "user_name": r[7],
                "user_email": r[8],
            }
            for r in rows
        ]
        visible = [c for c in comments if can_see_comment(user, goal, c)]
        return build_comment_threads(visible)

    def delete_comment(self, user: UserContext, comment_id: str) -> List[str]:
        """コメントとその返信スレッドを削除（投稿者または Admin）"""
        with self.pool.connect() as conn:
            row = conn.execute(
                text("""
                    SELECT id, goal_id, user_id FROM goal_comments
                    WHERE id = :id AND organization_id = :org_id
                """),
                {"id": comment_id, "org_id": user.organization_id},
            ).fetchone()
            if row is None:
                raise NotFoundError("Comment not found")
            if str(row[2]) != user.user_id and not is_admin(user):
                raise PermissionDeniedError("You can only delete your own comments")

            goal_id = str(row[1])
            siblings = conn.execute(
                text("""
                    SELECT id, comment FROM goal_comments
                    WHERE goal_id = :goal_id AND organization_id = :org_id
                """),
                {"goal_id": goal_id, "org_id": user.organization_id},
            ).fetchall()
            thread_ids = get_thread_comment_ids(
                [{"id": str(s[0]), "comment": s[1]} for s in siblings],
                comment_id,
            )
            params = {"ids": thread_ids, "org_id": user.organization_id}
            conn.execute(
                text("""
                    UPDATE goal_attachments SET comment_id = NULL
                    WHERE comment_id = ANY(:ids) AND organization_id = :org_id
                """),
                params,
            )
            conn.execute(
                text("DELETE FROM goal_comments WHERE id = ANY(:ids) AND organization_id = :org_id"),
                params,
            )
            conn.commit()
        logger.info("Comment thread deleted", comment_id=comment_id, deleted=len(thread_ids))
        return thread_ids

    def _load_visible_goal(self, conn, user: UserContext, goal_id: str) -> Goal:
        goal = fetch_goal(conn, user.organization_id, goal_id)
        if not can_view_goal(user, goal, fetch_assignee_ids(conn, user.organization_id, goal_id)):
            raise PermissionDeniedError("You don't have permission to view this goal")
        return goal


def get_goal_comment_service(pool=None) -> GoalCommentService:
    """GoalCommentServiceのファクトリ関数"""
    return GoalCommentService(pool=pool)
