"""
SQLAlchemy Models for GoalFlow API

テーブル定義。migrations/run_migration.py が Base.metadata.create_all に使う。
"""

from app.models.base import Base
from app.models.user import User, DepartmentTeam, DepartmentPermission
from app.models.goal import (
    Goal,
    GoalAssignee,
    GoalSupport,
    GoalTask,
    GoalComment,
    GoalAttachment,
    GoalAIAnalysis,
)
from app.models.settings import (
    WorkflowRule,
    WorkflowConfiguration,
    AIConfiguration,
    Notification,
    AuditLog,
)

__all__ = [
    "Base",
    "User",
    "DepartmentTeam",
    "DepartmentPermission",
    "Goal",
    "GoalAssignee",
    "GoalSupport",
    "GoalTask",
    "GoalComment",
    "GoalAttachment",
    "GoalAIAnalysis",
    "WorkflowRule",
    "WorkflowConfiguration",
    "AIConfiguration",
    "Notification",
    "AuditLog",
]
