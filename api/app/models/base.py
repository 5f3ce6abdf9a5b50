"""
SQLAlchemy Base Model

全テーブル共通のベースとカラム定義。
クエリは lib/ の raw SQL で行い、ここのモデルはスキーマ定義（create_all）に使う。
"""

from uuid import uuid4

from sqlalchemy import Column, DateTime, String, func, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class TenantMixin:
    """テナント分離カラム（全テーブル）"""

    organization_id = Column(String(100), nullable=False, index=True)


class TimestampMixin:
    """作成・更新日時。updated_at は lib/ の UPDATE 文でも CURRENT_TIMESTAMP を入れる"""

    created_at = Column(
        DateTime(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False,
    )
    updated_at = Column(
        DateTime(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=func.now(),
        nullable=True,
    )


def generate_uuid() -> str:
    return str(uuid4())


def uuid_pk() -> Column:
    """文字列で扱う UUID 主キー"""
    return Column(UUID(as_uuid=False), primary_key=True, default=generate_uuid)
