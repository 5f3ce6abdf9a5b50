"""
管理者向け一括インポート

CSV / XLSX から目標・ユーザー・部署構成を取り込む。
各インポートは preview（検証結果のみ）と import（書き込み）の2段階。

行番号はヘッダー行を含むスプレッドシート上の行（index + 2）で報告する。
行単位の失敗は errors に記録して次の行へ進む。
"""

from __future__ import annotations

import calendar
import re
from dataclasses import asdict, dataclass, field, fields
from datetime import date
from typing import Any, Dict, List, Optional, Set, Tuple
from uuid import uuid4

from sqlalchemy import text

from lib.audit import AuditAction, AuditResourceType, log_audit
from lib.db import get_db_pool
from lib.department import DEFAULT_TEAM_NAME, get_department_service
from lib.duplicate_detector import detect_duplicates, detect_internal_duplicates
from lib.errors import NotFoundError, PermissionDeniedError, ValidationError
from lib.excel_utils import split_list
from lib.goal import (
    GOAL_TYPE_VALUES,
    PRIORITY_VALUES,
    Goal,
    GoalType,
    Priority,
    get_goal_service,
    insert_assignee,
)
from lib.goal_notification import NotificationType, get_notification_service
from lib.goal_task import DEFAULT_PDCA_TASKS, insert_task
from lib.logging import get_logger
from lib.permissions import ROLE_VALUES, Role, UserContext, can_create_goals, is_admin
from lib.user import DEFAULT_SKILLS, User, get_user_service, hash_password, is_valid_email
from lib.workflow import GoalStatus, WorkflowAction, make_history_entry, normalize_date

logger = get_logger(__name__)

DEFAULT_IMPORT_PASSWORD = "temp123"
MIN_IMPORT_PASSWORD_LENGTH = 8
SAMPLE_SIZE = 5

STRONG_PASSWORD_PATTERN = re.compile(r"(?=.*[a-z])(?=.*[A-Z])(?=.*\d)")
TRUE_VALUES = {"true", "1", "yes"}
BOOLEAN_VALUES = TRUE_VALUES | {"false", "0", "no"}


class ImportMode:
    CREATE_ONLY = "create_only"
    UPDATE_EXISTING = "update_existing"
    CREATE_AND_UPDATE = "create_and_update"


IMPORT_MODES = [ImportMode.CREATE_ONLY, ImportMode.UPDATE_EXISTING, ImportMode.CREATE_AND_UPDATE]


# =============================================================================
# オプション
# =============================================================================

class _Options:
    """dict からの生成（未知のキーは無視）"""

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]] = None):
        names = {f.name for f in fields(cls)}
        return cls(**{k: bool(v) for k, v in (data or {}).items() if k in names})


@dataclass
class GoalImportOptions(_Options):
    skip_duplicate_check: bool = False
    auto_assign_owner: bool = True
    set_default_dates: bool = False
    validate_assignees: bool = True
    create_missing_departments: bool = False
    create_missing_teams: bool = False
    notify_assignees: bool = False
    generate_tasks: bool = False
    strict_mode: bool = False


@dataclass
class DepartmentImportOptions(_Options):
    create_missing_parents: bool = True
    allow_duplicate_team_names: bool = True
    set_default_descriptions: bool = True
    activate_by_default: bool = True
    update_descriptions: bool = False
    sync_active_status: bool = False
    strict_mode: bool = False


@dataclass
class UserImportOptions(_Options):
    validate_email_format: bool = True
    require_strong_passwords: bool = True
    set_default_passwords: bool = False
    activate_by_default: bool = True
    create_missing_departments: bool = False
    create_missing_teams: bool = False
    assign_default_skills: bool = True
    update_existing_profiles: bool = True
    preserve_existing_passwords: bool = True
    strict_mode: bool = False


# =============================================================================
# 検証結果
# =============================================================================

@dataclass
class RowValidation:
    row_number: int
    data: Dict[str, Any]
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


@dataclass
class ImportPreview:
    total_rows: int
    valid_rows: int
    invalid_rows: int
    warnings: List[str]
    errors: List[str]
    sample_data: List[Dict[str, Any]]
    duplicates: List[Dict[str, Any]] = field(default_factory=list)
    summary: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ImportResult:
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)
    details: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ReferenceData:
    """検証に使う既存データ"""

    users_by_email: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    departments: Set[str] = field(default_factory=set)
    teams: Dict[str, List[str]] = field(default_factory=dict)

    def has_team(self, department: str, team: str) -> bool:
        return team in self.teams.get(department, [])


def _summarize(validations: List[RowValidation]) -> Tuple[List[RowValidation], List[str], List[str]]:
    valid = [v for v in validations if v.valid]
    errors = [e for v in validations for e in v.errors]
    warnings = [w for v in validations for w in v.warnings]
    return valid, errors, warnings


def _abort_if_strict(strict: bool, errors: List[str]) -> None:
    if strict and errors:
        raise ValidationError(
            f"Validation failed with {len(errors)} errors. Fix all errors before importing.",
            error_code="IMPORT_VALIDATION_FAILED",
        )


def add_months(base: date, months: int) -> date:
    month_index = base.month - 1 + months
    year = base.year + month_index // 12
    month = month_index % 12 + 1
    day = min(base.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def normalize_active(
    row: Dict[str, Any],
    row_number: int,
    activate_by_default: bool,
    warnings: List[str],
) -> bool:
    """is_active を true/false に正規化（true/1/yes が有効）"""
    raw = str(row.get("is_active") or "").strip()
    if not raw:
        return activate_by_default
    value = raw.lower()
    if value not in BOOLEAN_VALUES:
        warnings.append(f"Row {row_number}: Invalid is_active value '{raw}', defaulting to true")
        return True
    return value in TRUE_VALUES


# =============================================================================
# 行の検証（純粋関数）
# =============================================================================

def validate_goal_row(
    row: Dict[str, Any],
    index: int,
    options: GoalImportOptions,
    ref: ReferenceData,
    today: Optional[date] = None,
) -> RowValidation:
    row_number = index + 2
    data = {k: (v.strip() if isinstance(v, str) else v) for k, v in row.items()}
    result = RowValidation(row_number=row_number, data=data)
    errors, warnings = result.errors, result.warnings

    for required in ("subject", "description", "department", "owner_email"):
        if not data.get(required):
            errors.append(f"Row {row_number}: Missing required field '{required}'")

    owner_email = (data.get("owner_email") or "").lower()
    data["owner_email"] = owner_email
    if owner_email:
        if not is_valid_email(owner_email):
            errors.append(f"Row {row_number}: Invalid owner email format")
        elif owner_email not in ref.users_by_email:
            if options.auto_assign_owner:
                warnings.append(f"Row {row_number}: Owner email '{owner_email}' not found, will use importing user")
            else:
                errors.append(f"Row {row_number}: Owner email '{owner_email}' not found")

    assignee_emails = [e.lower() for e in split_list(data.get("assignee_emails"))]
    data["assignee_emails"] = assignee_emails
    for email in assignee_emails:
        if not is_valid_email(email):
            errors.append(f"Row {row_number}: Invalid assignee email format: {email}")
        elif options.validate_assignees and email not in ref.users_by_email:
            errors.append(f"Row {row_number}: Assignee email '{email}' not found")

    department = data.get("department")
    if department and department not in ref.departments:
        if options.create_missing_departments:
            warnings.append(f"Row {row_number}: Department '{department}' will be created")
        else:
            errors.append(f"Row {row_number}: Department '{department}' does not exist")

    teams = split_list(data.get("teams"))
    data["teams"] = teams
    for team in teams:
        if department and not ref.has_team(department, team):
            if options.create_missing_teams:
                warnings.append(f"Row {row_number}: Team '{team}' will be created in department '{department}'")
            else:
                errors.append(f"Row {row_number}: Team '{team}' does not exist in department '{department}'")

    for date_field in ("start_date", "target_date"):
        raw = data.get(date_field)
        if raw:
            normalized = normalize_date(raw)
            if normalized is None:
                errors.append(f"Row {row_number}: Invalid {date_field} format. Use YYYY-MM-DD")
            data[date_field] = normalized
        else:
            data[date_field] = None

    if data.get("priority") and data["priority"] not in PRIORITY_VALUES:
        warnings.append(f"Row {row_number}: Invalid priority '{data['priority']}', defaulting to 'Medium'")
        data["priority"] = Priority.MEDIUM.value
    data["priority"] = data.get("priority") or Priority.MEDIUM.value

    if data.get("goal_type") and data["goal_type"] not in GOAL_TYPE_VALUES:
        warnings.append(f"Row {row_number}: Invalid goal_type '{data['goal_type']}', defaulting to 'Team'")
        data["goal_type"] = GoalType.TEAM.value
    data["goal_type"] = data.get("goal_type") or GoalType.TEAM.value

    if options.set_default_dates:
        today = today or date.today()
        if not data["start_date"]:
            data["start_date"] = today.isoformat()
            warnings.append(f"Row {row_number}: Setting default start_date to today")
        if not data["target_date"]:
            data["target_date"] = add_months(today, 3).isoformat()
            warnings.append(f"Row {row_number}: Setting default target_date to 3 months from now")

    if data["start_date"] and data["target_date"] and data["start_date"] > data["target_date"]:
        errors.append(f"Row {row_number}: start_date cannot be later than target_date")

    return result


def validate_department_row(
    row: Dict[str, Any],
    index: int,
    options: DepartmentImportOptions,
    ref: ReferenceData,
) -> RowValidation:
    row_number = index + 2
    data = {k: (v.strip() if isinstance(v, str) else v) for k, v in row.items()}
    result = RowValidation(row_number=row_number, data=data)
    errors, warnings = result.errors, result.warnings

    department = data.get("department")
    team = data.get("team") or None
    data["team"] = team
    if not department:
        errors.append(f"Row {row_number}: Missing required field 'department'")

    data["is_active"] = normalize_active(row, row_number, options.activate_by_default, warnings)

    if team and not options.allow_duplicate_team_names:
        for other_department, teams in ref.teams.items():
            if other_department != department and team in teams:
                warnings.append(f"Row {row_number}: Team '{team}' already exists in department '{other_department}'")

    if options.set_default_descriptions and not data.get("description") and department:
        if team:
            data["description"] = f"{team} team in {department} department"
            warnings.append(f"Row {row_number}: Setting default description for team '{team}'")
        else:
            data["description"] = f"{department} department"
            warnings.append(f"Row {row_number}: Setting default description for department '{department}'")

    update_note = "will update if different" if options.update_descriptions else "will skip updates"
    if department in ref.departments and not team:
        warnings.append(f"Row {row_number}: Department '{department}' already exists, {update_note}")
    if team and ref.has_team(department, team):
        warnings.append(f"Row {row_number}: Team '{team}' already exists, {update_note}")
    return result


def validate_user_row(
    row: Dict[str, Any],
    index: int,
    options: UserImportOptions,
    ref: ReferenceData,
) -> RowValidation:
    row_number = index + 2
    data = {k: (v.strip() if isinstance(v, str) else v) for k, v in row.items()}
    result = RowValidation(row_number=row_number, data=data)
    errors, warnings = result.errors, result.warnings

    for required in ("full_name", "email", "role"):
        if not data.get(required):
            errors.append(f"Row {row_number}: Missing required field '{required}'")

    email = (data.get("email") or "").lower()
    data["email"] = email
    if email and options.validate_email_format and not is_valid_email(email):
        errors.append(f"Row {row_number}: Invalid email format")
    if email in ref.users_by_email:
        warnings.append(f"Row {row_number}: User with email '{email}' already exists")

    role = data.get("role")
    if role and role not in ROLE_VALUES:
        errors.append(f"Row {row_number}: Invalid role '{role}'. Must be Employee, Head, or Admin")

    password = data.get("password")
    if password:
        if options.require_strong_passwords:
            if len(password) < MIN_IMPORT_PASSWORD_LENGTH:
                errors.append(
                    f"Row {row_number}: Password must be at least {MIN_IMPORT_PASSWORD_LENGTH} characters long"
                )
            if not STRONG_PASSWORD_PATTERN.match(password):
                warnings.append(f"Row {row_number}: Password should contain uppercase, lowercase, and numbers")
    elif options.set_default_passwords:
        data["password"] = DEFAULT_IMPORT_PASSWORD
        warnings.append(f"Row {row_number}: Setting default password '{DEFAULT_IMPORT_PASSWORD}'")
    elif email not in ref.users_by_email or not options.preserve_existing_passwords:
        errors.append(f"Row {row_number}: Password is required")

    department = data.get("department") or None
    team = data.get("team") or None
    data["department"], data["team"] = department, team
    if department:
        if department not in ref.departments:
            if options.create_missing_departments:
                warnings.append(f"Row {row_number}: Department '{department}' will be created")
            else:
                errors.append(f"Row {row_number}: Department '{department}' does not exist")
        if team and not ref.has_team(department, team):
            if options.create_missing_teams:
                warnings.append(f"Row {row_number}: Team '{team}' will be created in department '{department}'")
            else:
                errors.append(f"Row {row_number}: Team '{team}' does not exist in department '{department}'")

    data["is_active"] = normalize_active(row, row_number, options.activate_by_default, warnings)

    skills = split_list(data.get("skills"))
    if not skills and options.assign_default_skills and role in DEFAULT_SKILLS:
        skills = list(DEFAULT_SKILLS[role])
        warnings.append(f"Row {row_number}: Assigned default skills for role '{role}'")
    data["skills"] = skills
    return result


def _public_sample(validations: List[RowValidation]) -> List[Dict[str, Any]]:
    sample = []
    for v in validations[:SAMPLE_SIZE]:
        sample.append({k: val for k, val in v.data.items() if k != "password"})
    return sample


# =============================================================================
# サービス
# =============================================================================

class AdminImportService:
    """管理者インポートサービス（Admin専用）"""

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

    @staticmethod
    def _require_admin(user: UserContext) -> None:
        if not is_admin(user):
            raise PermissionDeniedError("Admin access required")

    @staticmethod
    def _require_rows(rows: List[Dict[str, Any]]) -> None:
        if not rows:
            raise ValidationError("No valid data found in file", error_code="EMPTY_IMPORT")

    def load_reference(self, organization_id: str) -> ReferenceData:
        ref = ReferenceData()
        with self.pool.connect() as conn:
            users = conn.execute(
                text("""
                    SELECT id, email, full_name, department, role FROM users
                    WHERE organization_id = :org_id
                """),
                {"org_id": organization_id},
            ).fetchall()
            teams = conn.execute(
                text("""
                    SELECT department, team FROM department_teams
                    WHERE organization_id = :org_id
                """),
                {"org_id": organization_id},
            ).fetchall()
            goal_departments = conn.execute(
                text("SELECT DISTINCT department FROM goals WHERE organization_id = :org_id"),
                {"org_id": organization_id},
            ).fetchall()

        for r in users:
            ref.users_by_email[(r[1] or "").lower()] = {
                "id": str(r[0]),
                "email": r[1],
                "full_name": r[2],
                "department": r[3],
                "role": r[4],
            }
        for department, team in teams:
            ref.departments.add(department)
            if team:
                ref.teams.setdefault(department, []).append(team)
        ref.departments.update(r[0] for r in goal_departments if r[0])
        return ref

    def _existing_goals(self, organization_id: str) -> List[Dict[str, Any]]:
        with self.pool.connect() as conn:
            rows = conn.execute(
                text("""
                    SELECT g.id, g.subject, g.description, g.department, u.email
                    FROM goals g
                    LEFT JOIN users u ON u.id = g.owner_id
                    WHERE g.organization_id = :org_id
                """),
                {"org_id": organization_id},
            ).fetchall()
        return [
            {
                "id": str(r[0]),
                "subject": r[1],
                "description": r[2],
                "department": r[3],
                "owner_email": r[4],
            }
            for r in rows
        ]

    # -------------------------------------------------------------------------
    # 目標
    # -------------------------------------------------------------------------

    def _validate_goals(
        self,
        user: UserContext,
        rows: List[Dict[str, Any]],
        options: GoalImportOptions,
        today: Optional[date],
    ) -> Tuple[ReferenceData, List[RowValidation], List[Dict[str, Any]], List[str]]:
        ref = self.load_reference(user.organization_id)
        validations = [validate_goal_row(row, i, options, ref, today) for i, row in enumerate(rows)]

        duplicates: List[Dict[str, Any]] = []
        internal_warnings: List[str] = []
        if not options.skip_duplicate_check:
            detection = detect_duplicates([v.data for v in validations], self._existing_goals(user.organization_id))
            duplicates = [d.to_dict() for d in detection.duplicates]
            for group in detect_internal_duplicates([v.data for v in validations]):
                rows_label = ", ".join(str(n) for n in group["rows"])
                internal_warnings.append(f"Rows {rows_label}: {group['reason']}")
        return ref, validations, duplicates, internal_warnings

    def preview_goals(
        self,
        user: UserContext,
        rows: List[Dict[str, Any]],
        options: Optional[GoalImportOptions] = None,
        today: Optional[date] = None,
    ) -> ImportPreview:
        self._require_admin(user)
        self._require_rows(rows)
        options = options or GoalImportOptions()
        _, validations, duplicates, internal_warnings = self._validate_goals(user, rows, options, today)
        valid, errors, warnings = _summarize(validations)
        return ImportPreview(
            total_rows=len(rows),
            valid_rows=len(valid),
            invalid_rows=len(validations) - len(valid),
            warnings=warnings + internal_warnings,
            errors=errors,
            sample_data=_public_sample(valid),
            duplicates=duplicates,
        )

    def import_goals(
        self,
        user: UserContext,
        rows: List[Dict[str, Any]],
        options: Optional[GoalImportOptions] = None,
        import_for_user_id: Optional[str] = None,
        today: Optional[date] = None,
    ) -> ImportResult:
        """
        目標を一括作成する

        import_for_user_id を指定すると全行のオーナーをそのユーザーにする。
        既存目標と完全一致する行はスキップする（skip_duplicate_check で無効化）。
        """
        self._require_admin(user)
        self._require_rows(rows)
        options = options or GoalImportOptions()

        importer = self._resolve_importer(user, import_for_user_id)
        ref, validations, duplicates, _ = self._validate_goals(user, rows, options, today)
        valid, errors, _ = _summarize(validations)
        _abort_if_strict(options.strict_mode, errors)
        if not valid:
            raise ValidationError("No valid rows to import", error_code="NO_VALID_ROWS")

        exact_rows = {d["row_number"] for d in duplicates if d["match_type"] == "exact"}
        result = ImportResult()
        goal_service = get_goal_service(self.pool)
        department_service = get_department_service(self.pool)
        created_departments: Set[str] = set()
        created_teams: Set[Tuple[str, str]] = set()

        for validation in valid:
            data = validation.data
            row_number = validation.row_number
            if row_number in exact_rows:
                result.skipped += 1
                result.errors.append(f"Row {row_number}: Skipped duplicate of an existing goal")
                continue

            owner = ref.users_by_email.get(data["owner_email"])
            owner_id = importer["id"] if import_for_user_id else (owner["id"] if owner else importer["id"])
            assignee_ids = [owner_id]
            for email in data["assignee_emails"]:
                assignee = ref.users_by_email.get(email)
                if assignee and assignee["id"] not in assignee_ids:
                    assignee_ids.append(assignee["id"])

            goal = Goal(
                id=str(uuid4()),
                organization_id=user.organization_id,
                subject=data["subject"],
                description=data["description"],
                owner_id=owner_id,
                department=data["department"],
                goal_type=data["goal_type"],
                priority=data["priority"],
                status=GoalStatus.PLAN.value,
                teams=data["teams"],
                target_metrics=data.get("target_metrics") or None,
                success_criteria=data.get("success_criteria") or None,
                start_date=date.fromisoformat(data["start_date"]) if data["start_date"] else None,
                target_date=date.fromisoformat(data["target_date"]) if data["target_date"] else None,
                workflow_history=[
                    make_history_entry(
                        action=WorkflowAction.STATUS_CHANGE,
                        user_id=user.user_id,
                        user_name=user.full_name or user.email,
                        to_status=GoalStatus.PLAN.value,
                        comment="Goal imported and entered Plan phase",
                    )
                ],
            )

            try:
                with self.pool.connect() as conn:
                    department = data["department"]
                    if (
                        options.create_missing_departments
                        and department not in ref.departments
                        and department not in created_departments
                    ):
                        department_service.insert_team(
                            conn, user.organization_id, department, DEFAULT_TEAM_NAME, f"{department} department"
                        )
                        created_departments.add(department)
                    if options.create_missing_teams:
                        for team in data["teams"]:
                            key = (department, team)
                            if not ref.has_team(department, team) and key not in created_teams:
                                department_service.insert_team(
                                    conn, user.organization_id, department, team,
                                    f"{team} team in {department} department",
                                )
                                created_teams.add(key)

                    goal_service.insert_goal(conn, goal)
                    for assignee_id in assignee_ids:
                        insert_assignee(conn, user.organization_id, goal.id, assignee_id, user.user_id)
                    if options.generate_tasks:
                        for order, task in enumerate(DEFAULT_PDCA_TASKS):
                            insert_task(
                                conn,
                                organization_id=user.organization_id,
                                goal_id=goal.id,
                                data={**task, "department": department},
                                assigned_by=user.user_id,
                                default_phase=task["pdca_phase"],
                                order_index=order,
                            )
                    log_audit(
                        conn,
                        organization_id=user.organization_id,
                        action=AuditAction.IMPORT,
                        resource_type=AuditResourceType.GOAL,
                        resource_id=goal.id,
                        user_id=user.user_id,
                        new_data={"subject": goal.subject, "row": row_number},
                    )
                    conn.commit()
            except Exception as e:
                logger.warning("Goal import row failed", row=row_number, error=str(e))
                result.errors.append(f"Row {row_number}: Failed to create goal - {e}")
                result.skipped += 1
                continue

            result.created += 1
            if options.notify_assignees:
                self.notifications.notify_users(
                    user.organization_id,
                    assignee_ids,
                    NotificationType.ASSIGNMENT,
                    "New Goal Assigned",
                    f'You have been assigned to goal "{goal.subject}"',
                    goal_id=goal.id,
                    action_data={"goal_id": goal.id, "source": "import"},
                    exclude=[user.user_id],
                )

        result.details = {
            "departments_created": len(created_departments),
            "teams_created": len(created_teams),
        }
        logger.info(
            "Goals imported",
            organization_id=user.organization_id,
            created=result.created,
            skipped=result.skipped,
        )
        return result

    def _resolve_importer(self, user: UserContext, import_for_user_id: Optional[str]) -> Dict[str, Any]:
        """目標オーナーの既定値となるユーザー（Head / Admin のみ可）"""
        if not import_for_user_id:
            return {"id": user.user_id, "role": user.role}
        with self.pool.connect() as conn:
            row = conn.execute(
                text("SELECT id, role FROM users WHERE id = :id AND organization_id = :org_id"),
                {"id": import_for_user_id, "org_id": user.organization_id},
            ).fetchone()
        if row is None:
            raise NotFoundError("Selected user not found")
        target = UserContext(user_id=str(row[0]), organization_id=user.organization_id, role=row[1])
        if not can_create_goals(target):
            raise ValidationError(
                "Selected user does not have permission to create goals. "
                "Only Head and Admin users can create goals."
            )
        return {"id": str(row[0]), "role": row[1]}

    # -------------------------------------------------------------------------
    # 部署構成
    # -------------------------------------------------------------------------

    def preview_departments(
        self,
        user: UserContext,
        rows: List[Dict[str, Any]],
        options: Optional[DepartmentImportOptions] = None,
    ) -> ImportPreview:
        self._require_admin(user)
        self._require_rows(rows)
        options = options or DepartmentImportOptions()
        ref = self.load_reference(user.organization_id)
        validations = [validate_department_row(row, i, options, ref) for i, row in enumerate(rows)]
        valid, errors, warnings = _summarize(validations)
        return ImportPreview(
            total_rows=len(rows),
            valid_rows=len(valid),
            invalid_rows=len(validations) - len(valid),
            warnings=warnings,
            errors=errors,
            sample_data=_public_sample(valid),
            summary={
                "department_count": len({v.data["department"] for v in valid}),
                "team_count": len({(v.data["department"], v.data["team"]) for v in valid if v.data["team"]}),
            },
        )

    def import_departments(
        self,
        user: UserContext,
        rows: List[Dict[str, Any]],
        options: Optional[DepartmentImportOptions] = None,
        mode: str = ImportMode.CREATE_AND_UPDATE,
    ) -> ImportResult:
        """
        部署・チームを一括登録する

        team が空の行は部署行として扱い、既定チーム（General）に説明を持たせる。
        """
        self._require_admin(user)
        self._require_rows(rows)
        if mode not in IMPORT_MODES:
            raise ValidationError(f"Invalid import mode: {mode}")
        options = options or DepartmentImportOptions()
        ref = self.load_reference(user.organization_id)
        validations = [validate_department_row(row, i, options, ref) for i, row in enumerate(rows)]
        valid, errors, _ = _summarize(validations)
        _abort_if_strict(options.strict_mode, errors)
        if not valid:
            raise ValidationError("No valid rows to import", error_code="NO_VALID_ROWS")

        result = ImportResult()
        counts = {"departments_created": 0, "teams_created": 0, "departments_updated": 0, "teams_updated": 0}
        department_service = get_department_service(self.pool)
        known_departments = set(ref.departments)
        known_teams = {(d, t) for d, teams in ref.teams.items() for t in teams}

        for validation in valid:
            data = validation.data
            department = data["department"]
            team = data["team"] or DEFAULT_TEAM_NAME
            is_department_row = not data["team"]
            if is_department_row:
                exists = department in known_departments
            else:
                exists = (department, team) in known_teams
            kind = "departments" if is_department_row else "teams"
            try:
                with self.pool.connect() as conn:
                    if not exists:
                        if mode == ImportMode.UPDATE_EXISTING:
                            result.skipped += 1
                            continue
                        if (
                            not is_department_row
                            and department not in known_departments
                            and options.create_missing_parents
                        ):
                            department_service.insert_team(
                                conn, user.organization_id, department, DEFAULT_TEAM_NAME,
                                f"{department} department",
                            )
                            known_teams.add((department, DEFAULT_TEAM_NAME))
                            counts["departments_created"] += 1
                        department_service.insert_team(
                            conn, user.organization_id, department, team,
                            data.get("description") or None, data["is_active"],
                        )
                        known_teams.add((department, team))
                        known_departments.add(department)
                        counts[f"{kind}_created"] += 1
                        result.created += 1
                    elif mode == ImportMode.CREATE_ONLY:
                        result.skipped += 1
                        continue
                    else:
                        assignments = []
                        params: Dict[str, Any] = {
                            "org_id": user.organization_id,
                            "department": department,
                            "team": team,
                        }
                        if options.update_descriptions and data.get("description"):
                            assignments.append("description = :description")
                            params["description"] = data["description"]
                        if options.sync_active_status:
                            assignments.append("is_active = :is_active")
                            params["is_active"] = data["is_active"]
                        if not assignments:
                            result.skipped += 1
                            continue
                        conn.execute(
                            text(f"""
                                UPDATE department_teams SET {", ".join(assignments)}
                                WHERE organization_id = :org_id AND department = :department AND team = :team
                            """),
                            params,
                        )
                        counts[f"{kind}_updated"] += 1
                        result.updated += 1
                    log_audit(
                        conn,
                        organization_id=user.organization_id,
                        action=AuditAction.IMPORT,
                        resource_type=AuditResourceType.DEPARTMENT_TEAM,
                        user_id=user.user_id,
                        new_data={"department": department, "team": team, "row": validation.row_number},
                    )
                    conn.commit()
            except Exception as e:
                logger.warning("Department import row failed", row=validation.row_number, error=str(e))
                result.errors.append(f"Row {validation.row_number}: Failed to import '{department}/{team}' - {e}")
                result.skipped += 1

        result.details = counts
        logger.info("Departments imported", organization_id=user.organization_id, **counts)
        return result

    # -------------------------------------------------------------------------
    # ユーザー
    # -------------------------------------------------------------------------

    def preview_users(
        self,
        user: UserContext,
        rows: List[Dict[str, Any]],
        options: Optional[UserImportOptions] = None,
    ) -> ImportPreview:
        self._require_admin(user)
        self._require_rows(rows)
        options = options or UserImportOptions()
        ref = self.load_reference(user.organization_id)
        validations = [validate_user_row(row, i, options, ref) for i, row in enumerate(rows)]
        valid, errors, warnings = _summarize(validations)

        role_distribution: Dict[str, int] = {}
        department_distribution: Dict[str, int] = {}
        for v in valid:
            role_distribution[v.data["role"]] = role_distribution.get(v.data["role"], 0) + 1
            if v.data["department"]:
                department_distribution[v.data["department"]] = (
                    department_distribution.get(v.data["department"], 0) + 1
                )
        return ImportPreview(
            total_rows=len(rows),
            valid_rows=len(valid),
            invalid_rows=len(validations) - len(valid),
            warnings=warnings,
            errors=errors,
            sample_data=_public_sample(valid),
            summary={
                "role_distribution": role_distribution,
                "department_distribution": department_distribution,
            },
        )

    def import_users(
        self,
        user: UserContext,
        rows: List[Dict[str, Any]],
        options: Optional[UserImportOptions] = None,
        mode: str = ImportMode.CREATE_ONLY,
    ) -> ImportResult:
        """ユーザーを一括登録・更新する（パスワードは bcrypt で保存）"""
        self._require_admin(user)
        self._require_rows(rows)
        if mode not in IMPORT_MODES:
            raise ValidationError(f"Invalid import mode: {mode}")
        options = options or UserImportOptions()
        ref = self.load_reference(user.organization_id)
        validations = [validate_user_row(row, i, options, ref) for i, row in enumerate(rows)]
        valid, errors, _ = _summarize(validations)
        _abort_if_strict(options.strict_mode, errors)
        if not valid:
            raise ValidationError("No valid rows to import", error_code="NO_VALID_ROWS")

        self._create_missing_structure(user, valid, options, ref)

        user_service = get_user_service(self.pool)
        result = ImportResult()
        seen: Set[str] = set()

        for validation in valid:
            data = validation.data
            row_number = validation.row_number
            email = data["email"]
            exists = email in ref.users_by_email or email in seen
            if exists and mode == ImportMode.CREATE_ONLY:
                result.skipped += 1
                continue
            if not exists and mode == ImportMode.UPDATE_EXISTING:
                result.skipped += 1
                continue

            try:
                with self.pool.connect() as conn:
                    if exists:
                        if not options.update_existing_profiles:
                            result.skipped += 1
                            continue
                        params: Dict[str, Any] = {
                            "org_id": user.organization_id,
                            "email": email,
                            "full_name": data["full_name"],
                            "role": data["role"],
                            "department": data["department"],
                            "team": data["team"],
                            "skills": data["skills"],
                            "is_active": data["is_active"],
                        }
                        password_clause = ""
                        if data.get("password") and not options.preserve_existing_passwords:
                            password_clause = ", password_hash = :password_hash"
                            params["password_hash"] = hash_password(data["password"])
                        conn.execute(
                            text(f"""
                                UPDATE users SET
                                    full_name = :full_name, role = :role, department = :department,
                                    team = :team, skills = :skills, is_active = :is_active,
                                    updated_at = CURRENT_TIMESTAMP{password_clause}
                                WHERE organization_id = :org_id AND LOWER(email) = :email
                            """),
                            params,
                        )
                        action = AuditAction.UPDATE
                        result.updated += 1
                    else:
                        new_user = User(
                            id=str(uuid4()),
                            organization_id=user.organization_id,
                            email=email,
                            full_name=data["full_name"],
                            role=data["role"] or Role.EMPLOYEE.value,
                            department=data["department"],
                            team=data["team"],
                            skills=data["skills"],
                            is_active=data["is_active"],
                        )
                        user_service.insert_user(conn, new_user, hash_password(data["password"]))
                        seen.add(email)
                        action = AuditAction.CREATE
                        result.created += 1
                    log_audit(
                        conn,
                        organization_id=user.organization_id,
                        action=action,
                        resource_type=AuditResourceType.USER,
                        user_id=user.user_id,
                        new_data={"email": email, "role": data["role"], "source": "import"},
                    )
                    conn.commit()
            except Exception as e:
                logger.warning("User import row failed", row=row_number, error=str(e))
                result.errors.append(f"Row {row_number}: Failed to import user - {e}")
                result.skipped += 1

        logger.info(
            "Users imported",
            organization_id=user.organization_id,
            created=result.created,
            updated=result.updated,
            skipped=result.skipped,
        )
        return result

    def _create_missing_structure(
        self,
        user: UserContext,
        validations: List[RowValidation],
        options: UserImportOptions,
        ref: ReferenceData,
    ) -> None:
        if not (options.create_missing_departments or options.create_missing_teams):
            return
        department_service = get_department_service(self.pool)
        new_departments: List[str] = []
        new_teams: List[Tuple[str, str]] = []
        for v in validations:
            department, team = v.data["department"], v.data["team"]
            if not department:
                continue
            if (
                options.create_missing_departments
                and department not in ref.departments
                and department not in new_departments
            ):
                new_departments.append(department)
            if (
                options.create_missing_teams
                and team
                and not ref.has_team(department, team)
                and (department, team) not in new_teams
            ):
                new_teams.append((department, team))

        if not new_departments and not new_teams:
            return
        with self.pool.connect() as conn:
            for department in new_departments:
                department_service.insert_team(
                    conn, user.organization_id, department, DEFAULT_TEAM_NAME, f"{department} department"
                )
            for department, team in new_teams:
                department_service.insert_team(
                    conn, user.organization_id, department, team, f"{team} team in {department} department"
                )
            conn.commit()
        logger.info("Created missing structure", departments=len(new_departments), teams=len(new_teams))


def get_admin_import_service(pool=None) -> AdminImportService:
    """AdminImportServiceのファクトリ関数"""
    return AdminImportService(pool=pool)
