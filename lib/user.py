"""
ユーザー管理サービス

ユーザーの取得・作成・ロール変更・パスワード管理を提供する。
パスワードは bcrypt でハッシュ化して保存する。

使用例:
    from lib.user import get_user_service

    service = get_user_service()
    user = service.authenticate(org_id, "taro@example.com", "secret123")
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional
from uuid import uuid4

import bcrypt
from sqlalchemy import text

from lib.db import get_db_pool
from lib.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from lib.logging import get_logger
from lib.permissions import ROLE_VALUES, Role, UserContext, is_admin

logger = get_logger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_PASSWORD_LENGTH = 6

# ロール別のデフォルトスキル
DEFAULT_SKILLS: Dict[str, List[str]] = {
    Role.ADMIN.value: ["Administration", "Project Management"],
    Role.HEAD.value: ["Leadership", "Team Management"],
    Role.EMPLOYEE.value: ["Task Execution", "Communication"],
}


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # 不正なハッシュ形式
        return False


def is_valid_email(email: Optional[str]) -> bool:
    return bool(email) and EMAIL_PATTERN.match(email.strip()) is not None


@dataclass
class User:
    """ユーザーデータクラス"""

    id: str
    organization_id: str
    email: str
    full_name: str
    role: str = Role.EMPLOYEE.value
    department: Optional[str] = None
    team: Optional[str] = None
    skills: List[str] = field(default_factory=list)
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role,
            "department": self.department,
            "team": self.team,
            "skills": self.skills,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def to_context(self, permitted_departments: Optional[List[str]] = None) -> UserContext:
        return UserContext(
            user_id=self.id,
            organization_id=self.organization_id,
            role=self.role,
            department=self.department,
            full_name=self.full_name,
            email=self.email,
            permitted_departments=permitted_departments or [],
        )


_USER_COLUMNS = """
    id, organization_id, email, full_name, role, department, team,
    skills, is_active, created_at, updated_at
"""


class UserService:
    """ユーザー管理サービス"""

    def __init__(self, pool=None):
        self._pool = pool

    @property
    def pool(self):
        if self._pool is None:
            self._pool = get_db_pool()
        return self._pool

    # -------------------------------------------------------------------------
    # 取得
    # -------------------------------------------------------------------------

    def get_user(self, organization_id: str, user_id: str) -> Optional[User]:
        with self.pool.connect() as conn:
            row = conn.execute(
                text(f"SELECT {_USER_COLUMNS} FROM users WHERE id = :id AND organization_id = :org_id"),
                {"id": user_id, "org_id": organization_id},
            ).fetchone()
        return self._row_to_user(row) if row else None

    def get_user_by_email(self, organization_id: str, email: str) -> Optional[User]:
        with self.pool.connect() as conn:
            row = conn.execute(
                text(f"""
                    SELECT {_USER_COLUMNS} FROM users
                    WHERE organization_id = :org_id AND LOWER(email) = LOWER(:email)
                """),
                {"org_id": organization_id, "email": email.strip()},
            ).fetchone()
        return self._row_to_user(row) if row else None

    def get_users_by_emails(self, organization_id: str, emails: Iterable[str]) -> Dict[str, User]:
        """メールアドレス（小文字）→ User の辞書"""
        normalized = sorted({e.strip().lower() for e in emails if e})
        if not normalized:
            return {}
        with self.pool.connect() as conn:
            rows = conn.execute(
                text(f"""
                    SELECT {_USER_COLUMNS} FROM users
                    WHERE organization_id = :org_id AND LOWER(email) = ANY(:emails)
                """),
                {"org_id": organization_id, "emails": normalized},
            ).fetchall()
        return {u.email.lower(): u for u in (self._row_to_user(r) for r in rows)}

    def list_users(
        self,
        organization_id: str,
        role: Optional[str] = None,
        department: Optional[str] = None,
        include_inactive: bool = False,
    ) -> List[User]:
        where = ["organization_id = :org_id"]
        params: Dict[str, Any] = {"org_id": organization_id}
        if role:
            where.append("role = :role")
            params["role"] = role
        if department:
            where.append("department = :department")
            params["department"] = department
        if not include_inactive:
            where.append("is_active = TRUE")
        with self.pool.connect() as conn:
            rows = conn.execute(
                text(f"""
                    SELECT {_USER_COLUMNS} FROM users
                    WHERE {" AND ".join(where)}
                    ORDER BY department ASC NULLS LAST, full_name ASC
                """),
                params,
            ).fetchall()
        return [self._row_to_user(r) for r in rows]

    # -------------------------------------------------------------------------
    # 認証・パスワード
    # -------------------------------------------------------------------------

    def authenticate(self, organization_id: str, email: str, password: str) -> Optional[User]:
        """メール・パスワードで認証（失敗時は None）"""
        with self.pool.connect() as conn:
            row = conn.execute(
                text(f"""
                    SELECT {_USER_COLUMNS}, password_hash FROM users
                    WHERE organization_id = :org_id AND LOWER(email) = LOWER(:email)
                      AND is_active = TRUE
                """),
                {"org_id": organization_id, "email": email.strip()},
            ).fetchone()
        if row is None or not verify_password(password, row[11]):
            return None
        return self._row_to_user(row)

    def change_password(self, user: UserContext, current_password: str, new_password: str) -> None:
        if not current_password or not new_password:
            raise ValidationError("Current password and new password are required")
        if len(new_password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"New password must be at least {MIN_PASSWORD_LENGTH} characters long"
            )
        with self.pool.connect() as conn:
            row = conn.execute(
                text("SELECT password_hash FROM users WHERE id = :id AND organization_id = :org_id"),
                {"id": user.user_id, "org_id": user.organization_id},
            ).fetchone()
            if row is None:
                raise NotFoundError("User not found")
            if not verify_password(current_password, row[0]):
                raise ValidationError("Current password is incorrect", error_code="INVALID_PASSWORD")
            conn.execute(
                text("""
                    UPDATE users SET password_hash = :password_hash, updated_at = CURRENT_TIMESTAMP
                    WHERE id = :id AND organization_id = :org_id
                """),
                {
                    "id": user.user_id,
                    "org_id": user.organization_id,
                    "password_hash": hash_password(new_password),
                },
            )
            conn.commit()
        logger.info("Password changed", user_id=user.user_id)

    # -------------------------------------------------------------------------
    # 作成・更新
    # -------------------------------------------------------------------------

    def create_user(
        self,
        organization_id: str,
        email: str,
        full_name: str,
        password: str,
        role: str = Role.EMPLOYEE.value,
        department: Optional[str] = None,
        team: Optional[str] = None,
        skills: Optional[List[str]] = None,
        is_active: bool = True,
    ) -> User:
        email = (email or "").strip().lower()
        if not full_name or not email or not password or not role:
            raise ValidationError("All required fields must be filled")
        if not is_valid_email(email):
            raise ValidationError("Please enter a valid email address")
        if role not in ROLE_VALUES:
            raise ValidationError("Invalid role selected")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
        if self.get_user_by_email(organization_id, email):
            raise ConflictError("An account with this email already exists", error_code="EMAIL_EXISTS")

        user = User(
            id=str(uuid4()),
            organization_id=organization_id,
            email=email,
            full_name=full_name.strip(),
            role=role,
            department=department or None,
            team=team or None,
            skills=skills if skills is not None else list(DEFAULT_SKILLS.get(role, [])),
            is_active=is_active,
        )
        with self.pool.connect() as conn:
            self.insert_user(conn, user, hash_password(password))
            conn.commit()
        logger.info("User created", user_id=user.id, role=role)
        return user

    def insert_user(self, conn, user: User, password_hash: str) -> None:
        """users への INSERT（commit は呼び出し側）"""
        conn.execute(
            text("""
                INSERT INTO users (
                    id, organization_id, email, full_name, password_hash, role,
                    department, team, skills, is_active
                ) VALUES (
                    :id, :org_id, :email, :full_name, :password_hash, :role,
                    :department, :team, :skills, :is_active
                )
            """),
            {
                "id": user.id,
                "org_id": user.organization_id,
                "email": user.email,
                "full_name": user.full_name,
                "password_hash": password_hash,
                "role": user.role,
                "department": user.department,
                "team": user.team,
                "skills": user.skills,
                "is_active": user.is_active,
            },
        )

    def update_role(self, actor: UserContext, user_id: str, new_role: str) -> None:
        """ロール変更（Admin専用）"""
        if not is_admin(actor):
            raise PermissionDeniedError("Admin access required")
        if new_role not in ROLE_VALUES:
            raise ValidationError("Invalid role selected")
        with self.pool.connect() as conn:
            result = conn.execute(
                text("""
                    UPDATE users SET role = :role, updated_at = CURRENT_TIMESTAMP
                    WHERE id = :id AND organization_id = :org_id
                """),
                {"id": user_id, "org_id": actor.organization_id, "role": new_role},
            )
            if result.rowcount == 0:
                raise NotFoundError("User not found")
            conn.commit()
        logger.info("User role updated", user_id=user_id, role=new_role, updated_by=actor.user_id)

    def update_profile(self, actor: UserContext, user_id: str, updates: Dict[str, Any]) -> None:
        """部署・チーム・有効状態・スキルの更新（Admin専用）"""
        if not is_admin(actor):
            raise PermissionDeniedError("Admin access required")
        allowed = {k: v for k, v in updates.items()
                   if k in ("full_name", "department", "team", "is_active", "skills") and v is not None}
        if not allowed:
            return
        set_sql = ", ".join(f"{k} = :{k}" for k in allowed)
        with self.pool.connect() as conn:
            result = conn.execute(
                text(f"""
                    UPDATE users SET {set_sql}, updated_at = CURRENT_TIMESTAMP
                    WHERE id = :id AND organization_id = :org_id
                """),
                {**allowed, "id": user_id, "org_id": actor.organization_id},
            )
            if result.rowcount == 0:
                raise NotFoundError("User not found")
            conn.commit()

    @staticmethod
    def _row_to_user(row) -> User:
        return User(
            id=str(row[0]),
            organization_id=str(row[1]),
            email=row[2],
            full_name=row[3],
            role=row[4],
            department=row[5],
            team=row[6],
            skills=list(row[7] or []),
            is_active=bool(row[8]),
            created_at=row[9],
            updated_at=row[10],
        )


def get_user_service(pool=None) -> UserService:
    """UserServiceのファクトリ関数"""
    return UserService(pool=pool)
