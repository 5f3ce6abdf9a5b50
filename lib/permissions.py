"""
ロールと権限判定

ロール:
    - Employee: 一般社員（担当タスクの実行）
    - Head: 部署責任者（部署目標の作成・管理）
    - Admin: 管理者（全目標・設定の管理）

目標単位の判定は、目標オブジェクト（owner_id / department 属性を持つもの）、
操作ユーザー、担当者IDリスト、追加の部署権限リストを受け取る純粋関数。
DBアクセスは行わない。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional


class Role(str, Enum):
    """ユーザーロール"""
    EMPLOYEE = "Employee"
    HEAD = "Head"
    ADMIN = "Admin"


ROLE_VALUES = [r.value for r in Role]


@dataclass
class UserContext:
    """認証済みユーザーのコンテキスト"""

    user_id: str
    organization_id: str
    role: str = Role.EMPLOYEE.value
    department: Optional[str] = None
    full_name: Optional[str] = None
    email: Optional[str] = None
    # 所属以外にアクセスできる部署（department_permissions）
    permitted_departments: List[str] = field(default_factory=list)


def is_admin(user: Optional[UserContext]) -> bool:
    return user is not None and user.role == Role.ADMIN.value


def is_head(user: Optional[UserContext]) -> bool:
    return user is not None and user.role == Role.HEAD.value


def can_create_goals(user: Optional[UserContext]) -> bool:
    """目標作成は Head / Admin のみ"""
    return is_admin(user) or is_head(user)


def can_manage_all_goals(user: Optional[UserContext]) -> bool:
    return is_admin(user)


def can_manage_department_goals(user: Optional[UserContext]) -> bool:
    return is_admin(user) or is_head(user)


def _same_department(user: UserContext, goal) -> bool:
    return bool(user.department) and user.department == goal.department


def _has_department_permission(user: UserContext, goal) -> bool:
    return goal.department in (user.permitted_departments or [])


def _is_assignee(user: UserContext, assignee_ids: Iterable[str]) -> bool:
    return user.user_id in {str(a) for a in assignee_ids or []}


# =============================================================================
# 目標単位の権限
# =============================================================================

def can_view_goal(user: UserContext, goal, assignee_ids: Iterable[str] = ()) -> bool:
    """閲覧: Admin / オーナー / 担当者 / 同一部署 / 部署権限"""
    return (
        is_admin(user)
        or str(goal.owner_id) == user.user_id
        or _is_assignee(user, assignee_ids)
        or _same_department(user, goal)
        or _has_department_permission(user, goal)
    )


def can_edit_goal(user: UserContext, goal) -> bool:
    """編集: Admin / 同一部署のHead / オーナー / 部署権限"""
    return (
        is_admin(user)
        or (is_head(user) and _same_department(user, goal))
        or str(goal.owner_id) == user.user_id
        or _has_department_permission(user, goal)
    )


def can_delete_goal(user: UserContext, goal) -> bool:
    """削除: Admin / オーナー / 同一部署のHead"""
    return (
        is_admin(user)
        or str(goal.owner_id) == user.user_id
        or (is_head(user) and _same_department(user, goal))
    )


def can_change_status(user: UserContext, goal, assignee_ids: Iterable[str] = ()) -> bool:
    """ステータス変更: Admin / 部署権限 / オーナー / 担当者"""
    return (
        is_admin(user)
        or _has_department_permission(user, goal)
        or str(goal.owner_id) == user.user_id
        or _is_assignee(user, assignee_ids)
    )


def can_assign_goal(user: UserContext, goal) -> bool:
    """担当者割当: Admin / 同一部署のHead / 部署権限"""
    return (
        is_admin(user)
        or (is_head(user) and _same_department(user, goal))
        or _has_department_permission(user, goal)
    )


def can_manage_tasks(user: UserContext, goal, assignee_ids: Iterable[str] = ()) -> bool:
    """タスク作成・編集・削除: オーナー / 担当者 / Admin / 同一部署のHead"""
    return (
        str(goal.owner_id) == user.user_id
        or _is_assignee(user, assignee_ids)
        or is_admin(user)
        or (is_head(user) and _same_department(user, goal))
    )
