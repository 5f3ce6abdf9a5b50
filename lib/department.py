"""
部署・チーム管理と部署権限

department_teams テーブルで部署とチームの構成を、
department_permissions テーブルで所属外部署へのアクセス権を管理する。

部署は独立したテーブルを持たず、department_teams の department 列の集合として表現する。
新規部署は "General" チームを1つ持った状態で作成される。
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import text

from lib.audit import AuditAction, AuditResourceType, log_audit
from lib.db import get_db_pool
from lib.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from lib.logging import get_logger
from lib.permissions import UserContext, is_admin

logger = get_logger(__name__)

DEFAULT_TEAM_NAME = "General"


@dataclass
class DepartmentTeam:
    """部署チーム"""

    id: str
    department: str
    team: str
    description: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "department": self.department,
            "team": self.team,
            "description": self.description,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


def get_user_departments(conn, organization_id: str, user_id: str) -> List[str]:
    """ユーザーが追加でアクセスできる部署一覧"""
    rows = conn.execute(
        text("""
            SELECT department FROM department_permissions
            WHERE organization_id = :org_id AND user_id = :user_id
            ORDER BY department
        """),
        {"org_id": organization_id, "user_id": user_id},
    ).fetchall()
    return [r[0] for r in rows]


def get_department_heads(conn, organization_id: str, department: Optional[str]) -> List[str]:
    """部署の Head ユーザーID一覧"""
    if not department:
        return []
    rows = conn.execute(
        text("""
            SELECT id FROM users
            WHERE organization_id = :org_id AND department = :department
              AND role = 'Head' AND is_active = TRUE
        """),
        {"org_id": organization_id, "department": department},
    ).fetchall()
    return [str(r[0]) for r in rows]


class DepartmentService:
    """部署・チーム・部署権限の管理サービス"""

    def __init__(self, pool=None):
        self._pool = pool

    @property
    def pool(self):
        if self._pool is None:
            self._pool = get_db_pool()
        return self._pool

    @staticmethod
    def _require_admin(user: UserContext) -> None:
        if not is_admin(user):
            raise PermissionDeniedError("Unauthorized: Admin access required")

    # -------------------------------------------------------------------------
    # 参照
    # -------------------------------------------------------------------------

    def list_departments(self, organization_id: str) -> List[str]:
        """チーム定義とユーザー所属から部署名を重複なしで取得"""
        with self.pool.connect() as conn:
            rows = conn.execute(
                text("""
                    SELECT department FROM department_teams
                    WHERE organization_id = :org_id AND is_active = TRUE
                    UNION
                    SELECT department FROM users
                    WHERE organization_id = :org_id AND department IS NOT NULL
                    ORDER BY 1
                """),
                {"org_id": organization_id},
            ).fetchall()
        return [r[0] for r in rows if r[0]]

    def list_teams(
        self,
        organization_id: str,
        department: Optional[str] = None,
        include_inactive: bool = False,
    ) -> List[DepartmentTeam]:
        where = ["organization_id = :org_id"]
        params: Dict[str, Any] = {"org_id": organization_id}
        if department:
            where.append("department = :department")
            params["department"] = department
        if not include_inactive:
            where.append("is_active = TRUE")
        with self.pool.connect() as conn:
            rows = conn.execute(
                text(f"""
                    SELECT id, department, team, description, is_active, created_at
                    FROM department_teams
                    WHERE {" AND ".join(where)}
                    ORDER BY department ASC, team ASC
                """),
                params,
            ).fetchall()
        return [self._row_to_team(r) for r in rows]

    def get_structure(self, user: UserContext) -> List[Dict[str, Any]]:
        """部署 → チーム（所属人数付き）の構造"""
        self._require_admin(user)
        teams = self.list_teams(user.organization_id, include_inactive=True)
        with self.pool.connect() as conn:
            counts = conn.execute(
                text("""
                    SELECT department, team, COUNT(*) FROM users
                    WHERE organization_id = :org_id AND department IS NOT NULL
                    GROUP BY department, team
                """),
                {"org_id": user.organization_id},
            ).fetchall()
        user_counts = {(r[0], r[1]): int(r[2]) for r in counts}

        structure: Dict[str, Dict[str, Any]] = {}
        for team in teams:
            dept = structure.setdefault(team.department, {
                "department": team.department,
                "description": None,
                "teams": [],
                "user_count": 0,
            })
            count = user_counts.get((team.department, team.team), 0)
            dept["teams"].append({**team.to_dict(), "user_count": count})
            dept["user_count"] += count
            if team.description and not dept["description"]:
                dept["description"] = team.description
        return list(structure.values())

    def department_exists(self, conn, organization_id: str, department: str) -> bool:
        row = conn.execute(
            text("""
                SELECT 1 FROM department_teams
                WHERE organization_id = :org_id AND department = :department
                LIMIT 1
            """),
            {"org_id": organization_id, "department": department},
        ).fetchone()
        return row is not None

    def team_exists(self, conn, organization_id: str, department: str, team: str) -> bool:
        row = conn.execute(
            text("""
                SELECT 1 FROM department_teams
                WHERE organization_id = :org_id AND department = :department AND team = :team
                LIMIT 1
            """),
            {"org_id": organization_id, "department": department, "team": team},
        ).fetchone()
        return row is not None

    # -------------------------------------------------------------------------
    # 部署・チームの変更（Admin）
    # -------------------------------------------------------------------------

    def insert_team(
        self,
        conn,
        organization_id: str,
        department: str,
        team: str,
        description: Optional[str] = None,
        is_active: bool = True,
    ) -> str:
        team_id = str(uuid4())
        conn.execute(
            text("""
                INSERT INTO department_teams (id, organization_id, department, team, description, is_active)
                VALUES (:id, :org_id, :department, :team, :description, :is_active)
            """),
            {
                "id": team_id,
                "org_id": organization_id,
                "department": department,
                "team": team,
                "description": description,
                "is_active": is_active,
            },
        )
        return team_id

    def create_department(self, user: UserContext, department: str, description: Optional[str] = None) -> str:
        self._require_admin(user)
        department = (department or "").strip()
        if not department:
            raise ValidationError("Department name is required")
        with self.pool.connect() as conn:
            if self.department_exists(conn, user.organization_id, department):
                raise ConflictError("Department already exists")
            team_id = self.insert_team(
                conn, user.organization_id, department, DEFAULT_TEAM_NAME, description
            )
            log_audit(
                conn,
                organization_id=user.organization_id,
                action=AuditAction.CREATE,
                resource_type=AuditResourceType.DEPARTMENT_TEAM,
                resource_id=team_id,
                user_id=user.user_id,
                new_data={"department": department, "team": DEFAULT_TEAM_NAME},
            )
            conn.commit()
        return team_id

    def create_team(
        self,
        user: UserContext,
        department: str,
        team: str,
        description: Optional[str] = None,
    ) -> str:
        self._require_admin(user)
        department, team = (department or "").strip(), (team or "").strip()
        if not department or not team:
            raise ValidationError("Department and team name are required")
        with self.pool.connect() as conn:
            if self.team_exists(conn, user.organization_id, department, team):
                raise ConflictError("Team already exists in this department")
            team_id = self.insert_team(conn, user.organization_id, department, team, description)
            log_audit(
                conn,
                organization_id=user.organization_id,
                action=AuditAction.CREATE,
                resource_type=AuditResourceType.DEPARTMENT_TEAM,
                resource_id=team_id,
                user_id=user.user_id,
                new_data={"department": department, "team": team},
            )
            conn.commit()
        return team_id

    def update_department_description(self, user: UserContext, department: str, description: str) -> None:
        self._require_admin(user)
        if not (department or "").strip():
            raise ValidationError("Department name is required")
        with self.pool.connect() as conn:
            conn.execute(
                text("""
                    UPDATE department_teams SET description = :description
                    WHERE organization_id = :org_id AND department = :department
                """),
                {
                    "org_id": user.organization_id,
                    "department": department.strip(),
                    "description": (description or "").strip() or None,
                },
            )
            conn.commit()

    def set_team_active(self, user: UserContext, team_id: str, is_active: bool) -> None:
        self._require_admin(user)
        with self.pool.connect() as conn:
            result = conn.execute(
                text("""
                    UPDATE department_teams SET is_active = :is_active
                    WHERE id = :id AND organization_id = :org_id
                """),
                {"id": team_id, "org_id": user.organization_id, "is_active": is_active},
            )
            if result.rowcount == 0:
                raise NotFoundError("Team not found")
            conn.commit()

    def delete_department(self, user: UserContext, department: str) -> None:
        """所属ユーザー・目標が無い部署のみ削除可能"""
        self._require_admin(user)
        with self.pool.connect() as conn:
            params = {"org_id": user.organization_id, "department": department}
            users = conn.execute(
                text("SELECT COUNT(*) FROM users WHERE organization_id = :org_id AND department = :department"),
                params,
            ).scalar()
            if users:
                raise ValidationError("Cannot delete department: users are still assigned to it")
            goals = conn.execute(
                text("SELECT COUNT(*) FROM goals WHERE organization_id = :org_id AND department = :department"),
                params,
            ).scalar()
            if goals:
                raise ValidationError("Cannot delete department: goals are still assigned to it")
            conn.execute(
                text("DELETE FROM department_teams WHERE organization_id = :org_id AND department = :department"),
                params,
            )
            conn.execute(
                text("DELETE FROM department_permissions WHERE organization_id = :org_id AND department = :department"),
                params,
            )
            log_audit(
                conn,
                organization_id=user.organization_id,
                action=AuditAction.DELETE,
                resource_type=AuditResourceType.DEPARTMENT_TEAM,
                resource_id=department,
                user_id=user.user_id,
                old_data={"department": department},
            )
            conn.commit()

    def delete_team(self, user: UserContext, department: str, team: str) -> None:
        """所属ユーザーが無く、部署の最後のチームでない場合のみ削除可能"""
        self._require_admin(user)
        params = {"org_id": user.organization_id, "department": department, "team": team}
        with self.pool.connect() as conn:
            users = conn.execute(
                text("""
                    SELECT COUNT(*) FROM users
                    WHERE organization_id = :org_id AND department = :department AND team = :team
                """),
                params,
            ).scalar()
            if users:
                raise ValidationError("Cannot delete team: users are still assigned to it")
            teams = conn.execute(
                text("""
                    SELECT COUNT(*) FROM department_teams
                    WHERE organization_id = :org_id AND department = :department
                """),
                params,
            ).scalar()
            if (teams or 0) <= 1:
                raise ValidationError("Cannot delete the last team in a department")
            result = conn.execute(
                text("""
                    DELETE FROM department_teams
                    WHERE organization_id = :org_id AND department = :department AND team = :team
                """),
                params,
            )
            if result.rowcount == 0:
                raise NotFoundError("Team not found")
            conn.commit()

    def rename_department(self, user: UserContext, old_name: str, new_name: str) -> None:
        """部署名を変更し、ユーザー・目標・タスク・権限・支援部署の参照も更新する"""
        self._require_admin(user)
        old_name, new_name = (old_name or "").strip(), (new_name or "").strip()
        if not old_name or not new_name:
            raise ValidationError("Old and new department names are required")
        if old_name == new_name:
            raise ValidationError("New department name must be different from the current name")
        params = {"org_id": user.organization_id, "old": old_name, "new": new_name}
        with self.pool.connect() as conn:
            if self.department_exists(conn, user.organization_id, new_name):
                raise ConflictError("A department with this name already exists")
            for table in ("department_teams", "users", "goals", "goal_tasks", "department_permissions"):
                conn.execute(
                    text(f"""
                        UPDATE {table} SET department = :new
                        WHERE organization_id = :org_id AND department = :old
                    """),
                    params,
                )
            # 支援部署名とチーム支援の所属部署
            conn.execute(
                text("""
                    UPDATE goal_support SET support_name = :new
                    WHERE organization_id = :org_id AND support_type = 'Department' AND support_name = :old
                """),
                params,
            )
            conn.execute(
                text("""
                    UPDATE goal_support SET support_department = :new
                    WHERE organization_id = :org_id AND support_department = :old
                """),
                params,
            )
            log_audit(
                conn,
                organization_id=user.organization_id,
                action=AuditAction.UPDATE,
                resource_type=AuditResourceType.DEPARTMENT_TEAM,
                resource_id=old_name,
                user_id=user.user_id,
                old_data={"department": old_name},
                new_data={"department": new_name},
            )
            conn.commit()

    def rename_team(self, user: UserContext, department: str, old_name: str, new_name: str) -> None:
        self._require_admin(user)
        if not department or not old_name or not new_name:
            raise ValidationError("Department, old team name, and new team name are required")
        if old_name == new_name:
            raise ValidationError("New team name must be different from the current name")
        params = {"org_id": user.organization_id, "department": department, "old": old_name, "new": new_name}
        with self.pool.connect() as conn:
            if self.team_exists(conn, user.organization_id, department, new_name):
                raise ConflictError("A team with this name already exists in this department")
            for table in ("department_teams", "users"):
                conn.execute(
                    text(f"""
                        UPDATE {table} SET team = :new
                        WHERE organization_id = :org_id AND department = :department AND team = :old
                    """),
                    params,
                )
            conn.execute(
                text("""
                    UPDATE goal_support SET support_name = :new
                    WHERE organization_id = :org_id AND support_type = 'Team'
                      AND support_department = :department AND support_name = :old
                """),
                params,
            )
            conn.commit()

    def assign_user(self, user: UserContext, user_id: str, department: str, team: Optional[str] = None) -> None:
        """ユーザーの所属部署・チームを変更（存在チェックあり）"""
        self._require_admin(user)
        if not user_id or not department:
            raise ValidationError("User ID and department are required")
        with self.pool.connect() as conn:
            if not self.department_exists(conn, user.organization_id, department):
                raise ValidationError("Department does not exist")
            if team and not self.team_exists(conn, user.organization_id, department, team):
                raise ValidationError("Team does not exist in this department")
            result = conn.execute(
                text("""
                    UPDATE users SET department = :department, team = :team, updated_at = CURRENT_TIMESTAMP
                    WHERE id = :id AND organization_id = :org_id
                """),
                {"id": user_id, "org_id": user.organization_id, "department": department, "team": team},
            )
            if result.rowcount == 0:
                raise NotFoundError("User not found")
            conn.commit()

    # -------------------------------------------------------------------------
    # 部署権限
    # -------------------------------------------------------------------------

    def permitted_departments(self, organization_id: str, user_id: str) -> List[str]:
        """ログイン時のトークン発行用（権限チェックなし）"""
        with self.pool.connect() as conn:
            return get_user_departments(conn, organization_id, user_id)

    def get_permissions(self, user: UserContext, user_id: str) -> List[str]:
        self._require_admin(user)
        with self.pool.connect() as conn:
            return get_user_departments(conn, user.organization_id, user_id)

    def grant_permission(self, user: UserContext, user_id: str, department: str) -> List[str]:
        self._require_admin(user)
        department = (department or "").strip()
        if not department:
            raise ValidationError("Department is required")
        with self.pool.connect() as conn:
            current = get_user_departments(conn, user.organization_id, user_id)
            if department in current:
                return current
            conn.execute(
                text("""
                    INSERT INTO department_permissions (id, organization_id, user_id, department, granted_by)
                    VALUES (:id, :org_id, :user_id, :department, :granted_by)
                """),
                {
                    "id": str(uuid4()),
                    "org_id": user.organization_id,
                    "user_id": user_id,
                    "department": department,
                    "granted_by": user.user_id,
                },
            )
            log_audit(
                conn,
                organization_id=user.organization_id,
                action=AuditAction.GRANT,
                resource_type=AuditResourceType.DEPARTMENT_PERMISSION,
                resource_id=user_id,
                user_id=user.user_id,
                new_data={"department": department},
            )
            conn.commit()
        return sorted([*current, department])

    def revoke_permission(self, user: UserContext, user_id: str, department: str) -> None:
        self._require_admin(user)
        with self.pool.connect() as conn:
            result = conn.execute(
                text("""
                    DELETE FROM department_permissions
                    WHERE organization_id = :org_id AND user_id = :user_id AND department = :department
                """),
                {"org_id": user.organization_id, "user_id": user_id, "department": department},
            )
            if result.rowcount == 0:
                raise NotFoundError("Department permission not found")
            log_audit(
                conn,
                organization_id=user.organization_id,
                action=AuditAction.REVOKE,
                resource_type=AuditResourceType.DEPARTMENT_PERMISSION,
                resource_id=user_id,
                user_id=user.user_id,
                old_data={"department": department},
            )
            conn.commit()

    def set_permissions(self, user: UserContext, user_id: str, departments: List[str]) -> List[str]:
        """ユーザーの部署権限を指定リストで置き換える"""
        self._require_admin(user)
        unique = sorted({d.strip() for d in departments if d and d.strip()})
        with self.pool.connect() as conn:
            old = get_user_departments(conn, user.organization_id, user_id)
            conn.execute(
                text("""
                    DELETE FROM department_permissions
                    WHERE organization_id = :org_id AND user_id = :user_id
                """),
                {"org_id": user.organization_id, "user_id": user_id},
            )
            for department in unique:
                conn.execute(
                    text("""
                        INSERT INTO department_permissions (id, organization_id, user_id, department, granted_by)
                        VALUES (:id, :org_id, :user_id, :department, :granted_by)
                    """),
                    {
                        "id": str(uuid4()),
                        "org_id": user.organization_id,
                        "user_id": user_id,
                        "department": department,
                        "granted_by": user.user_id,
                    },
                )
            log_audit(
                conn,
                organization_id=user.organization_id,
                action=AuditAction.GRANT,
                resource_type=AuditResourceType.DEPARTMENT_PERMISSION,
                resource_id=user_id,
                user_id=user.user_id,
                old_data={"departments": old},
                new_data={"departments": unique},
            )
            conn.commit()
        return unique

    def list_users_with_permissions(self, user: UserContext) -> List[Dict[str, Any]]:
        self._require_admin(user)
        with self.pool.connect() as conn:
            rows = conn.execute(
                text("""
                    SELECT u.id, u.full_name, u.email, u.role, u.department,
                           ARRAY_AGG(dp.department ORDER BY dp.department) AS departments
                    FROM department_permissions dp
                    JOIN users u ON u.id = dp.user_id
                    WHERE dp.organization_id = :org_id
                    GROUP BY u.id, u.full_name, u.email, u.role, u.department
                    ORDER BY u.full_name
                """),
                {"org_id": user.organization_id},
            ).fetchall()
        return [
            {
                "user_id": str(r[0]),
                "full_name": r[1],
                "email": r[2],
                "role": r[3],
                "primary_department": r[4],
                "departments": list(r[5] or []),
            }
            for r in rows
        ]

    @staticmethod
    def _row_to_team(row) -> DepartmentTeam:
        return DepartmentTeam(
            id=str(row[0]),
            department=row[1],
            team=row[2],
            description=row[3],
            is_active=bool(row[4]),
            created_at=row[5],
        )


def get_department_service(pool=None) -> DepartmentService:
    """DepartmentServiceのファクトリ関数"""
    return DepartmentService(pool=pool)
