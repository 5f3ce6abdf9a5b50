"""
Goal Models

目標・担当者・支援・タスク・コメント・添付のモデル定義

ステータス（PDCA）:
    Plan → Do → Check → Act → Completed
    On Hold / Cancelled は任意のフェーズから
"""

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID

from app.models.base import Base, TenantMixin, TimestampMixin, uuid_pk


def _created_at():
    return Column(
        DateTime(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False,
    )


class Goal(Base, TenantMixin, TimestampMixin):
    """目標

    goal_type: Personal / Team / Department / Company
    priority:  Low / Medium / High / Critical
    workflow_history: ステータス変更・更新の履歴エントリ（JSON配列）
    """

    __tablename__ = "goals"
    __table_args__ = (
        Index("idx_goals_org_status", "organization_id", "status"),
        Index("idx_goals_org_department", "organization_id", "department"),
    )

    id = uuid_pk()
    subject = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    goal_type = Column(String(20), nullable=False, server_default="Team")
    priority = Column(String(20), nullable=False, server_default="Medium")
    status = Column(String(20), nullable=False, server_default="Plan")
    previous_status = Column(String(20), nullable=True)
    department = Column(String(255), nullable=True)
    teams = Column(JSONB, nullable=True, server_default=text("'[]'::jsonb"))
    progress_percentage = Column(Integer, nullable=False, server_default=text("0"))
    target_metrics = Column(Text, nullable=True)
    success_criteria = Column(Text, nullable=True)
    owner_id = Column(UUID(as_uuid=False), ForeignKey("users.id"), nullable=False, index=True)
    current_assignee_id = Column(UUID(as_uuid=False), ForeignKey("users.id"), nullable=True)
    start_date = Column(Date, nullable=True)
    target_date = Column(Date, nullable=True)
    adjusted_target_date = Column(Date, nullable=True)
    workflow_history = Column(JSONB, nullable=True, server_default=text("'[]'::jsonb"))


class GoalAssignee(Base, TenantMixin):
    """目標担当者（担当者ごとの完了状態を持つ）"""

    __tablename__ = "goal_assignees"
    __table_args__ = (
        UniqueConstraint("goal_id", "user_id", name="uq_goal_assignees"),
    )

    id = uuid_pk()
    goal_id = Column(UUID(as_uuid=False), ForeignKey("goals.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(UUID(as_uuid=False), ForeignKey("users.id"), nullable=False, index=True)
    assigned_by = Column(UUID(as_uuid=False), ForeignKey("users.id"), nullable=True)
    task_status = Column(String(20), nullable=False, server_default="pending")
    notes = Column(Text, nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    assigned_at = _created_at()


class GoalSupport(Base, TenantMixin):
    """支援部署・チーム"""

    __tablename__ = "goal_support"

    id = uuid_pk()
    goal_id = Column(UUID(as_uuid=False), ForeignKey("goals.id", ondelete="CASCADE"), nullable=False)
    support_type = Column(String(20), nullable=False)  # Department / Team
    support_name = Column(String(255), nullable=False)
    support_department = Column(String(255), nullable=True)
    requested_by = Column(UUID(as_uuid=False), ForeignKey("users.id"), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = _created_at()


class GoalTask(Base, TenantMixin, TimestampMixin):
    """目標タスク（PDCAフェーズごと）"""

    __tablename__ = "goal_tasks"
    __table_args__ = (
        Index("idx_goal_tasks_goal_phase", "goal_id", "pdca_phase"),
    )

    id = uuid_pk()
    goal_id = Column(UUID(as_uuid=False), ForeignKey("goals.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    priority = Column(String(20), nullable=False, server_default="Medium")
    status = Column(String(20), nullable=False, server_default="pending")
    pdca_phase = Column(String(10), nullable=True)
    assigned_to = Column(UUID(as_uuid=False), ForeignKey("users.id"), nullable=True, index=True)
    assigned_by = Column(UUID(as_uuid=False), ForeignKey("users.id"), nullable=True)
    department = Column(String(255), nullable=True)
    start_date = Column(Date, nullable=True)
    due_date = Column(Date, nullable=True)
    estimated_hours = Column(Numeric(8, 2), nullable=True)
    actual_hours = Column(Numeric(8, 2), nullable=True)
    order_index = Column(Integer, nullable=False, server_default=text("0"))
    completion_notes = Column(Text, nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    completed_by = Column(UUID(as_uuid=False), ForeignKey("users.id"), nullable=True)


class GoalComment(Base, TenantMixin, TimestampMixin):
    """目標コメント（is_private はオーナー・管理者・投稿者のみ閲覧）"""

    __tablename__ = "goal_comments"

    id = uuid_pk()
    goal_id = Column(UUID(as_uuid=False), ForeignKey("goals.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(UUID(as_uuid=False), ForeignKey("users.id"), nullable=False)
    comment = Column(Text, nullable=False)
    is_private = Column(Boolean, nullable=False, server_default=text("FALSE"))


class GoalAttachment(Base, TenantMixin):
    """添付ファイル（本体は Cloud Storage、file_path はオブジェクト名）"""

    __tablename__ = "goal_attachments"

    id = uuid_pk()
    goal_id = Column(UUID(as_uuid=False), ForeignKey("goals.id", ondelete="CASCADE"), nullable=False, index=True)
    comment_id = Column(UUID(as_uuid=False), ForeignKey("goal_comments.id", ondelete="SET NULL"), nullable=True)
    filename = Column(String(500), nullable=False)
    file_path = Column(String(1000), nullable=False)
    file_size = Column(Integer, nullable=False)
    content_type = Column(String(255), nullable=True)
    uploaded_by = Column(UUID(as_uuid=False), ForeignKey("users.id"), nullable=True)
    created_at = _created_at()


class GoalAIAnalysis(Base, TenantMixin):
    """AI 分析結果"""

    __tablename__ = "goal_ai_analysis"

    id = uuid_pk()
    goal_id = Column(UUID(as_uuid=False), ForeignKey("goals.id", ondelete="CASCADE"), nullable=False, index=True)
    ai_config_id = Column(UUID(as_uuid=False), ForeignKey("ai_configurations.id", ondelete="SET NULL"), nullable=True)
    analysis_type = Column(String(50), nullable=False)
    prompt_used = Column(Text, nullable=True)
    analysis_result = Column(Text, nullable=True)
    tokens_used = Column(Integer, nullable=True)
    processing_time_ms = Column(Integer, nullable=True)
    requested_by = Column(UUID(as_uuid=False), ForeignKey("users.id"), nullable=True)
    created_at = _created_at()
