"""
Settings & Log Models

ワークフロー設定、AI 設定、通知、監査ログのモデル定義
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID

from app.models.base import Base, TenantMixin, TimestampMixin, uuid_pk


class WorkflowRule(Base, TenantMixin, TimestampMixin):
    """ワークフロールール（承認・通知・エスカレーション等）"""

    __tablename__ = "workflow_rules"

    id = uuid_pk()
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    rule_type = Column(String(50), nullable=False)
    phase = Column(String(10), nullable=True)
    configuration = Column(JSONB, nullable=True)
    is_active = Column(Boolean, nullable=False, server_default=text("TRUE"))
    created_by = Column(UUID(as_uuid=False), ForeignKey("users.id"), nullable=True)


class WorkflowConfiguration(Base, TenantMixin, TimestampMixin):
    """ステータス遷移設定（有効な設定は組織に 1 件）"""

    __tablename__ = "workflow_configurations"

    id = uuid_pk()
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    transitions = Column(JSONB, nullable=False)
    role_permissions = Column(JSONB, nullable=True)
    status_colors = Column(JSONB, nullable=True)
    status_icons = Column(JSONB, nullable=True)
    is_active = Column(Boolean, nullable=False, server_default=text("FALSE"))
    is_default = Column(Boolean, nullable=False, server_default=text("FALSE"))
    created_by = Column(UUID(as_uuid=False), ForeignKey("users.id"), nullable=True)


class AIConfiguration(Base, TenantMixin, TimestampMixin):
    """AI 接続設定（有効な設定は組織に 1 件）"""

    __tablename__ = "ai_configurations"

    id = uuid_pk()
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    ollama_url = Column(String(1000), nullable=False)
    model_name = Column(String(255), nullable=False)
    system_prompt = Column(Text, nullable=True)
    temperature = Column(Numeric(3, 2), nullable=False, server_default=text("0.7"))
    max_tokens = Column(Integer, nullable=False, server_default=text("1000"))
    is_active = Column(Boolean, nullable=False, server_default=text("FALSE"))


class Notification(Base, TenantMixin):
    """アプリ内通知（既読にすると行を削除する）"""

    __tablename__ = "notifications"
    __table_args__ = (
        Index("idx_notifications_user_unread", "organization_id", "user_id", "is_read"),
    )

    id = uuid_pk()
    user_id = Column(UUID(as_uuid=False), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    goal_id = Column(UUID(as_uuid=False), ForeignKey("goals.id", ondelete="CASCADE"), nullable=True)
    type = Column(String(50), nullable=False)
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    action_data = Column(JSONB, nullable=True)
    is_read = Column(Boolean, nullable=False, server_default=text("FALSE"))
    created_at = Column(
        DateTime(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False,
    )


class AuditLog(Base, TenantMixin):
    """監査ログ"""

    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(100), nullable=True)
    action = Column(String(50), nullable=False)
    resource_type = Column(String(50), nullable=False)
    resource_id = Column(String(100), nullable=True)
    old_data = Column(JSONB, nullable=True)
    new_data = Column(JSONB, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False,
    )
