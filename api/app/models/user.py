"""
User & Department Models

ユーザー、部署・チーム、部署アクセス権限のモデル定義
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import ARRAY, UUID

from app.models.base import Base, TenantMixin, TimestampMixin, uuid_pk


class User(Base, TenantMixin, TimestampMixin):
    """ユーザーマスタ

    ロール:
        Employee = 一般社員
        Head     = 部署責任者
        Admin    = 管理者
    """

    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("organization_id", "email", name="uq_users_org_email"),
    )

    id = uuid_pk()
    email = Column(String(255), nullable=False)
    full_name = Column(String(255), nullable=False)
    password_hash = Column(String(255), nullable=True)
    role = Column(String(20), nullable=False, server_default="Employee")
    department = Column(String(255), nullable=True, index=True)
    team = Column(String(255), nullable=True)
    skills = Column(ARRAY(Text), nullable=True)
    is_active = Column(Boolean, nullable=False, server_default=text("TRUE"))


class DepartmentTeam(Base, TenantMixin):
    """部署・チーム

    部署だけの行は持たず、部署作成時に "General" チームを作る。
    """

    __tablename__ = "department_teams"
    __table_args__ = (
        UniqueConstraint("organization_id", "department", "team", name="uq_department_teams"),
    )

    id = uuid_pk()
    department = Column(String(255), nullable=False)
    team = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, server_default=text("TRUE"))
    created_at = Column(
        DateTime(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False,
    )


class DepartmentPermission(Base, TenantMixin):
    """所属以外の部署へのアクセス権限"""

    __tablename__ = "department_permissions"
    __table_args__ = (
        UniqueConstraint("organization_id", "user_id", "department", name="uq_department_permissions"),
    )

    id = uuid_pk()
    user_id = Column(UUID(as_uuid=False), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    department = Column(String(255), nullable=False)
    granted_by = Column(UUID(as_uuid=False), ForeignKey("users.id"), nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False,
    )
