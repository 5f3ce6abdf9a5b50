"""
管理者向けエクスポート

- 目標エクスポート（xlsx）: Goals シート + 任意の関連シート
- 部署構成エクスポート（xlsx / csv / json）
- ユーザー割当エクスポート（xlsx / csv）

シート生成は純粋関数（*_rows）に分け、サービスは DB 取得と組み立てのみ行う。
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, fields
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import text

from lib.db import get_db_pool
from lib.errors import PermissionDeniedError, ValidationError
from lib.excel_utils import XLSX_CONTENT_TYPE, Sheet, build_workbook, rows_to_csv
from lib.goal_task import percentage
from lib.logging import get_logger
from lib.permissions import UserContext, is_admin
from lib.workflow import PDCA_PHASES

logger = get_logger(__name__)

EXPORT_FORMATS = ("xlsx", "csv", "json")


@dataclass
class ExportFile:
    content: bytes
    filename: str
    content_type: str


class _FromDict:
    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]] = None):
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (data or {}).items() if k in names})


@dataclass
class GoalExportFilters(_FromDict):
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    departments: List[str] = field(default_factory=list)
    statuses: List[str] = field(default_factory=list)
    priorities: List[str] = field(default_factory=list)
    goal_types: List[str] = field(default_factory=list)


@dataclass
class GoalExportOptions(_FromDict):
    tasks: bool = True
    assignees: bool = True
    comments: bool = False
    attachments: bool = False
    support_requests: bool = False


@dataclass
class DepartmentExportOptions(_FromDict):
    include_inactive: bool = False
    team_details: bool = True
    user_details: bool = True
    department_permissions: bool = True
    goal_counts: bool = True


@dataclass
class AssignmentExportOptions(_FromDict):
    include_inactive_users: bool = False
    workload_summary: bool = True
    pdca_breakdown: bool = True
    time_tracking: bool = True
    performance_analysis: bool = False
    assignment_distribution: bool = False
    overdue_analysis: bool = False
    detailed_tasks: bool = False


# =============================================================================
# 共通ヘルパー
# =============================================================================

def _d(value: Any) -> str:
    """日付セル（YYYY-MM-DD）"""
    if value is None or value == "":
        return ""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value)[:10]


def _as_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _yes_no(value: Any) -> str:
    return "Yes" if value else "No"


def _ratio(numerator: float, denominator: float) -> float:
    return round(numerator / denominator, 2) if denominator else 0


def _today_stamp(today: Optional[date] = None) -> str:
    return (today or date.today()).isoformat()


def overdue_severity(days_overdue: int) -> str:
    if days_overdue > 30:
        return "Critical"
    if days_overdue > 14:
        return "High"
    if days_overdue > 7:
        return "Medium"
    return "Low"


def _sheet_from_dicts(title: str, rows: List[Dict[str, Any]], headers: Optional[List[str]] = None) -> Sheet:
    headers = headers or (list(rows[0].keys()) if rows else [])
    return title, headers, [[row.get(h) for h in headers] for row in rows]


# =============================================================================
# 目標エクスポートのシート
# =============================================================================

GOAL_HEADERS = [
    "Goal ID", "Type", "Subject", "Description", "Priority", "Status", "Department",
    "Teams", "Owner", "Owner Email", "Current Assignee", "Progress %", "Start Date",
    "Target Date", "Adjusted Target Date", "Target Metrics", "Success Criteria",
    "Total Assignees", "Completed Assignees", "Created", "Updated",
]


def goal_rows(goals: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    rows = []
    for goal in goals:
        assignees = goal.get("assignees") or []
        rows.append({
            "Goal ID": goal["id"],
            "Type": goal.get("goal_type"),
            "Subject": goal.get("subject"),
            "Description": goal.get("description"),
            "Priority": goal.get("priority"),
            "Status": goal.get("status"),
            "Department": goal.get("department"),
            "Teams": ", ".join(goal.get("teams") or []),
            "Owner": goal.get("owner_name") or goal.get("owner_email") or "Unknown",
            "Owner Email": goal.get("owner_email") or "",
            "Current Assignee": goal.get("current_assignee_name") or "",
            "Progress %": goal.get("progress_percentage") or 0,
            "Start Date": _d(goal.get("start_date")),
            "Target Date": _d(goal.get("target_date")),
            "Adjusted Target Date": _d(goal.get("adjusted_target_date")),
            "Target Metrics": goal.get("target_metrics") or "",
            "Success Criteria": goal.get("success_criteria") or "",
            "Total Assignees": len(assignees),
            "Completed Assignees": sum(1 for a in assignees if a.get("task_status") == "completed"),
            "Created": _d(goal.get("created_at")),
            "Updated": _d(goal.get("updated_at")),
        })
    return rows


def task_rows(tasks: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {
            "Task ID": t["id"],
            "Goal ID": t["goal_id"],
            "Title": t.get("title"),
            "Description": t.get("description") or "",
            "Priority": t.get("priority"),
            "Status": t.get("status"),
            "PDCA Phase": t.get("pdca_phase"),
            "Assigned To": t.get("assigned_to_name") or "Unassigned",
            "Assigned By": t.get("assigned_by_name") or "",
            "Department": t.get("department") or "",
            "Start Date": _d(t.get("start_date")),
            "Due Date": _d(t.get("due_date")),
            "Estimated Hours": t.get("estimated_hours") or 0,
            "Actual Hours": t.get("actual_hours") or 0,
            "Completion Notes": t.get("completion_notes") or "",
            "Completed At": _d(t.get("completed_at")),
            "Created": _d(t.get("created_at")),
        }
        for t in tasks
    ]


def assignee_rows(goals: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    rows = []
    for goal in goals:
        for a in goal.get("assignees") or []:
            rows.append({
                "Goal ID": goal["id"],
                "Goal Subject": goal.get("subject"),
                "Assignee": a.get("full_name") or a.get("email") or "Unknown",
                "Assignee Email": a.get("email") or "",
                "Department": a.get("department") or "",
                "Task Status": a.get("task_status"),
                "Notes": a.get("notes") or "",
                "Completed At": _d(a.get("completed_at")),
                "Assigned At": _d(a.get("assigned_at")),
            })
    return rows


def comment_rows(comments: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {
            "Comment ID": c["id"],
            "Goal ID": c["goal_id"],
            "Author": c.get("user_name") or "Unknown",
            "Comment": c.get("comment"),
            "Is Private": _yes_no(c.get("is_private")),
            "Created": _d(c.get("created_at")),
        }
        for c in comments
    ]


def attachment_rows(attachments: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {
            "Attachment ID": a["id"],
            "Goal ID": a["goal_id"],
            "Filename": a.get("filename"),
            "File Size": a.get("file_size") or 0,
            "Content Type": a.get("content_type") or "",
            "Uploaded By": a.get("uploader_name") or "Unknown",
            "File Path": a.get("file_path") or "",
            "Created": _d(a.get("created_at")),
        }
        for a in attachments
    ]


def support_rows(supports: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {
            "Support ID": s["id"],
            "Goal ID": s["goal_id"],
            "Support Type": s.get("support_type"),
            "Support Name": s.get("support_name"),
            "Support Department": s.get("support_department") or "",
            "Requested By": s.get("requested_by_name") or "Unknown",
            "Notes": s.get("notes") or "",
            "Created": _d(s.get("created_at")),
        }
        for s in supports
    ]


# =============================================================================
# 部署構成のシート
# =============================================================================

def department_overview_rows(
    teams: List[Dict[str, Any]],
    users: List[Dict[str, Any]],
) -> List[Dict[str, Any]]:
    overview: Dict[str, Dict[str, Any]] = {}
    for team in teams:
        entry = overview.setdefault(team["department"], {
            "Department": team["department"],
            "Description": "",
            "Teams": 0,
            "Active Teams": 0,
            "Users": 0,
            "Heads": 0,
        })
        entry["Teams"] += 1
        if team.get("is_active"):
            entry["Active Teams"] += 1
        if team.get("description") and not entry["Description"]:
            entry["Description"] = team["description"]
    for u in users:
        entry = overview.get(u.get("department"))
        if entry is not None:
            entry["Users"] += 1
            if u.get("role") == "Head":
                entry["Heads"] += 1
    return sorted(overview.values(), key=lambda e: e["Department"])


def team_detail_rows(teams: List[Dict[str, Any]], users: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {
            "Department": t["department"],
            "Team": t["team"],
            "Description": t.get("description") or "",
            "Is Active": _yes_no(t.get("is_active")),
            "User Count": sum(
                1 for u in users if u.get("department") == t["department"] and u.get("team") == t["team"]
            ),
            "Created": _d(t.get("created_at")),
        }
        for t in teams
    ]


def user_assignment_rows(
    users: List[Dict[str, Any]],
    permissions: List[Dict[str, Any]],
) -> List[Dict[str, Any]]:
    by_user: Dict[str, List[str]] = {}
    for p in permissions:
        by_user.setdefault(p["user_id"], []).append(p["department"])
    return [
        {
            "User ID": u["id"],
            "Full Name": u.get("full_name"),
            "Email": u.get("email"),
            "Role": u.get("role"),
            "Primary Department": u.get("department") or "",
            "Team": u.get("team") or "",
            "Is Active": _yes_no(u.get("is_active")),
            "Additional Permissions": ", ".join(by_user.get(u["id"], [])),
            "Joined": _d(u.get("created_at")),
        }
        for u in users
    ]


def permission_matrix_rows(permissions: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {
            "User": p.get("full_name") or "Unknown",
            "User Email": p.get("email") or "",
            "User Role": p.get("role") or "",
            "Primary Department": p.get("primary_department") or "",
            "Additional Access To": p["department"],
        }
        for p in permissions
    ]


def goal_statistics_rows(goals: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    stats: Dict[str, Dict[str, Any]] = {}
    for g in goals:
        entry = stats.setdefault(g.get("department") or "Unassigned", {
            "Department": g.get("department") or "Unassigned",
            "Total Goals": 0,
            "Completed Goals": 0,
            "In Progress Goals": 0,
            "High Priority Goals": 0,
            "Critical Priority Goals": 0,
        })
        entry["Total Goals"] += 1
        if g.get("status") == "Completed":
            entry["Completed Goals"] += 1
        elif g.get("status") in PDCA_PHASES:
            entry["In Progress Goals"] += 1
        if g.get("priority") == "High":
            entry["High Priority Goals"] += 1
        elif g.get("priority") == "Critical":
            entry["Critical Priority Goals"] += 1
    for entry in stats.values():
        entry["Completion Rate %"] = percentage(entry["Completed Goals"], entry["Total Goals"])
    return sorted(stats.values(), key=lambda e: e["Department"])


# =============================================================================
# ユーザー割当のシート
# =============================================================================

def _is_task_overdue(task: Dict[str, Any], today: date) -> bool:
    due = _as_date(task.get("due_date"))
    return due is not None and due < today and task.get("status") not in ("completed", "cancelled")


def assignment_summary_rows(users: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    active = [u for u in users if u.get("is_active")]
    total_goals = sum(len(u.get("goals") or []) for u in users)
    total_tasks = sum(len(u.get("tasks") or []) for u in users)
    rows = [
        {"Metric": "Total Users", "Value": len(users)},
        {"Metric": "Active Users", "Value": len(active)},
        {"Metric": "Total Goal Assignments", "Value": total_goals},
        {"Metric": "Total Task Assignments", "Value": total_tasks},
        {"Metric": "Average Goals per User", "Value": _ratio(total_goals, len(active))},
        {"Metric": "Average Tasks per User", "Value": _ratio(total_tasks, len(active))},
    ]
    department_users: Dict[str, int] = {}
    for u in users:
        key = u.get("department") or "Unassigned"
        department_users[key] = department_users.get(key, 0) + 1
    for department, count in sorted(department_users.items()):
        rows.append({"Metric": f"{department} Department Users", "Value": count})
    return rows


def workload_rows(users: List[Dict[str, Any]], options: AssignmentExportOptions) -> List[Dict[str, Any]]:
    rows = []
    for u in users:
        goals = u.get("goals") or []
        tasks = u.get("tasks") or []
        completed_goals = sum(1 for g in goals if g.get("task_status") == "completed")
        completed_tasks = sum(1 for t in tasks if t.get("status") == "completed")
        row: Dict[str, Any] = {
            "User": u.get("full_name"),
            "Email": u.get("email"),
            "Department": u.get("department") or "",
            "Team": u.get("team") or "",
            "Role": u.get("role"),
            "Active": _yes_no(u.get("is_active")),
            "Total Goals": len(goals),
            "Completed Goals": completed_goals,
            "Total Tasks": len(tasks),
            "Completed Tasks": completed_tasks,
            "Goal Completion Rate %": percentage(completed_goals, len(goals)),
            "Task Completion Rate %": percentage(completed_tasks, len(tasks)),
        }
        if options.pdca_breakdown:
            for phase in PDCA_PHASES:
                row[f"{phase} Tasks"] = sum(1 for t in tasks if t.get("pdca_phase") == phase)
        if options.time_tracking:
            estimated = sum(float(t.get("estimated_hours") or 0) for t in tasks)
            actual = sum(float(t.get("actual_hours") or 0) for t in tasks)
            row["Estimated Hours"] = estimated
            row["Actual Hours"] = actual
            row["Time Variance %"] = round((actual - estimated) / estimated * 100) if estimated else 0
        rows.append(row)
    return rows


def performance_rows(users: List[Dict[str, Any]], today: date) -> List[Dict[str, Any]]:
    rows = []
    for u in users:
        tasks = u.get("tasks") or []
        completed = [t for t in tasks if t.get("status") == "completed"]
        overdue = [t for t in tasks if _is_task_overdue(t, today)]
        on_time = 0
        total_days = 0.0
        for t in completed:
            due = _as_date(t.get("due_date"))
            done = _as_date(t.get("completed_at"))
            if due is None or (done is not None and done <= due):
                on_time += 1
            created = t.get("created_at")
            finished = t.get("completed_at")
            if isinstance(created, datetime) and isinstance(finished, datetime):
                total_days += max(0.0, (finished - created).total_seconds() / 86400)
        overdue_score = 100 if not overdue else max(0, 100 - len(overdue) * 10)
        rows.append({
            "User": u.get("full_name"),
            "Department": u.get("department") or "",
            "Total Assignments": len(tasks),
            "Completed": len(completed),
            "In Progress": sum(1 for t in tasks if t.get("status") == "in_progress"),
            "Overdue": len(overdue),
            "On Time Completion %": percentage(on_time, len(completed)),
            "Average Days to Complete": round(total_days / len(completed)) if completed else 0,
            "Productivity Score": round(len(completed) * 0.4 + overdue_score * 0.6),
        })
    return rows


def distribution_rows(users: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    rows = []
    for category, key in (("Department", "department"), ("Role", "role")):
        groups: Dict[str, Dict[str, int]] = {}
        for u in users:
            name = u.get(key) or "Unassigned"
            entry = groups.setdefault(name, {"users": 0, "goals": 0, "tasks": 0})
            entry["users"] += 1
            entry["goals"] += len(u.get("goals") or [])
            entry["tasks"] += len(u.get("tasks") or [])
        for name, entry in sorted(groups.items()):
            rows.append({
                "Category": category,
                "Name": name,
                "Users": entry["users"],
                "Total Goals": entry["goals"],
                "Total Tasks": entry["tasks"],
                "Avg Goals per User": _ratio(entry["goals"], entry["users"]),
                "Avg Tasks per User": _ratio(entry["tasks"], entry["users"]),
            })
    return rows


def overdue_rows(users: List[Dict[str, Any]], today: date) -> List[Dict[str, Any]]:
    rows = []
    for u in users:
        for t in u.get("tasks") or []:
            if not _is_task_overdue(t, today):
                continue
            days = (today - _as_date(t["due_date"])).days
            rows.append({
                "User": u.get("full_name"),
                "Department": u.get("department") or "",
                "Goal": t.get("goal_subject") or "Unknown Goal",
                "Task": t.get("title"),
                "Priority": t.get("priority"),
                "PDCA Phase": t.get("pdca_phase"),
                "Due Date": _d(t.get("due_date")),
                "Days Overdue": days,
                "Severity": overdue_severity(days),
            })
    rows.sort(key=lambda r: r["Days Overdue"], reverse=True)
    return rows


def detailed_task_rows(users: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {
            "User": u.get("full_name"),
            "User Email": u.get("email"),
            "Department": u.get("department") or "",
            "Role": u.get("role"),
            "Goal": t.get("goal_subject") or "",
            "Task Title": t.get("title"),
            "Status": t.get("status"),
            "Priority": t.get("priority"),
            "PDCA Phase": t.get("pdca_phase"),
            "Due Date": _d(t.get("due_date")),
            "Completed Date": _d(t.get("completed_at")),
            "Estimated Hours": t.get("estimated_hours") or 0,
            "Actual Hours": t.get("actual_hours") or 0,
        }
        for u in users
        for t in u.get("tasks") or []
    ]


# =============================================================================
# サービス
# =============================================================================

class AdminExportService:
    """管理者エクスポートサービス（Admin専用）"""

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
            raise PermissionDeniedError("Admin access required")

    # -------------------------------------------------------------------------
    # 目標
    # -------------------------------------------------------------------------

    def export_goals(
        self,
        user: UserContext,
        filters: Optional[GoalExportFilters] = None,
        options: Optional[GoalExportOptions] = None,
        today: Optional[date] = None,
    ) -> ExportFile:
        self._require_admin(user)
        filters = filters or GoalExportFilters()
        options = options or GoalExportOptions()
        org_id = user.organization_id

        where = ["g.organization_id = :org_id"]
        params: Dict[str, Any] = {"org_id": org_id}
        if filters.start_date:
            where.append("g.created_at >= :start_date")
            params["start_date"] = filters.start_date
        if filters.end_date:
            where.append("g.created_at < CAST(:end_date AS date) + INTERVAL '1 day'")
            params["end_date"] = filters.end_date
        for column, values in (
            ("department", filters.departments),
            ("status", filters.statuses),
            ("priority", filters.priorities),
            ("goal_type", filters.goal_types),
        ):
            if values:
                where.append(f"g.{column} = ANY(:{column}_list)")
                params[f"{column}_list"] = list(values)

        with self.pool.connect() as conn:
            goal_result = conn.execute(
                text(f"""
                    SELECT g.id, g.goal_type, g.subject, g.description, g.priority, g.status,
                           g.department, g.teams, o.full_name, o.email, ca.full_name,
                           g.progress_percentage, g.start_date, g.target_date,
                           g.adjusted_target_date, g.target_metrics, g.success_criteria,
                           g.created_at, g.updated_at
                    FROM goals g
                    LEFT JOIN users o ON o.id = g.owner_id
                    LEFT JOIN users ca ON ca.id = g.current_assignee_id
                    WHERE {" AND ".join(where)}
                    ORDER BY g.created_at DESC
                """),
                params,
            ).fetchall()
            goals = [
                {
                    "id": str(r[0]), "goal_type": r[1], "subject": r[2], "description": r[3],
                    "priority": r[4], "status": r[5], "department": r[6],
                    "teams": r[7] if isinstance(r[7], list) else json.loads(r[7] or "[]"),
                    "owner_name": r[8], "owner_email": r[9], "current_assignee_name": r[10],
                    "progress_percentage": r[11], "start_date": r[12], "target_date": r[13],
                    "adjusted_target_date": r[14], "target_metrics": r[15],
                    "success_criteria": r[16], "created_at": r[17], "updated_at": r[18],
                    "assignees": [],
                }
                for r in goal_result
            ]
            goal_ids = [g["id"] for g in goals]
            by_id = {g["id"]: g for g in goals}
            related: Dict[str, List[Dict[str, Any]]] = {}

            if goal_ids:
                id_params = {"org_id": org_id, "goal_ids": goal_ids}
                for r in conn.execute(
                    text("""
                        SELECT a.goal_id, u.full_name, u.email, u.department,
                               a.task_status, a.notes, a.completed_at, a.assigned_at
                        FROM goal_assignees a
                        LEFT JOIN users u ON u.id = a.user_id
                        WHERE a.organization_id = :org_id AND a.goal_id = ANY(:goal_ids)
                    """),
                    id_params,
                ).fetchall():
                    by_id[str(r[0])]["assignees"].append({
                        "full_name": r[1], "email": r[2], "department": r[3],
                        "task_status": r[4], "notes": r[5], "completed_at": r[6], "assigned_at": r[7],
                    })

                if options.tasks:
                    related["tasks"] = [
                        {
                            "id": str(r[0]), "goal_id": str(r[1]), "title": r[2], "description": r[3],
                            "priority": r[4], "status": r[5], "pdca_phase": r[6],
                            "assigned_to_name": r[7], "assigned_by_name": r[8], "department": r[9],
                            "start_date": r[10], "due_date": r[11], "estimated_hours": r[12],
                            "actual_hours": r[13], "completion_notes": r[14],
                            "completed_at": r[15], "created_at": r[16],
                        }
                        for r in conn.execute(
                            text("""
                                SELECT t.id, t.goal_id, t.title, t.description, t.priority, t.status,
                                       t.pdca_phase, ua.full_name, ub.full_name, t.department,
                                       t.start_date, t.due_date, t.estimated_hours, t.actual_hours,
                                       t.completion_notes, t.completed_at, t.created_at
                                FROM goal_tasks t
                                LEFT JOIN users ua ON ua.id = t.assigned_to
                                LEFT JOIN users ub ON ub.id = t.assigned_by
                                WHERE t.organization_id = :org_id AND t.goal_id = ANY(:goal_ids)
                                ORDER BY t.created_at DESC
                            """),
                            id_params,
                        ).fetchall()
                    ]
                if options.comments:
                    related["comments"] = [
                        {
                            "id": str(r[0]), "goal_id": str(r[1]), "user_name": r[2],
                            "comment": r[3], "is_private": r[4], "created_at": r[5],
                        }
                        for r in conn.execute(
                            text("""
                                SELECT c.id, c.goal_id, u.full_name, c.comment, c.is_private, c.created_at
                                FROM goal_comments c
                                LEFT JOIN users u ON u.id = c.user_id
                                WHERE c.organization_id = :org_id AND c.goal_id = ANY(:goal_ids)
                                ORDER BY c.created_at DESC
                            """),
                            id_params,
                        ).fetchall()
                    ]
                if options.attachments:
                    related["attachments"] = [
                        {
                            "id": str(r[0]), "goal_id": str(r[1]), "filename": r[2], "file_size": r[3],
                            "content_type": r[4], "uploader_name": r[5], "file_path": r[6],
                            "created_at": r[7],
                        }
                        for r in conn.execute(
                            text("""
                                SELECT a.id, a.goal_id, a.filename, a.file_size, a.content_type,
                                       u.full_name, a.file_path, a.created_at
                                FROM goal_attachments a
                                LEFT JOIN users u ON u.id = a.uploaded_by
                                WHERE a.organization_id = :org_id AND a.goal_id = ANY(:goal_ids)
                                ORDER BY a.created_at DESC
                            """),
                            id_params,
                        ).fetchall()
                    ]
                if options.support_requests:
                    related["support"] = [
                        {
                            "id": str(r[0]), "goal_id": str(r[1]), "support_type": r[2],
                            "support_name": r[3], "support_department": r[4],
                            "requested_by_name": r[5], "notes": r[6], "created_at": r[7],
                        }
                        for r in conn.execute(
                            text("""
                                SELECT s.id, s.goal_id, s.support_type, s.support_name,
                                       s.support_department, u.full_name, s.notes, s.created_at
                                FROM goal_support s
                                LEFT JOIN users u ON u.id = s.requested_by
                                WHERE s.organization_id = :org_id AND s.goal_id = ANY(:goal_ids)
                                ORDER BY s.created_at DESC
                            """),
                            id_params,
                        ).fetchall()
                    ]

        sheets = [_sheet_from_dicts("Goals", goal_rows(goals), GOAL_HEADERS)]
        if options.tasks and related.get("tasks"):
            sheets.append(_sheet_from_dicts("Tasks", task_rows(related["tasks"])))
        if options.assignees:
            rows = assignee_rows(goals)
            if rows:
                sheets.append(_sheet_from_dicts("Assignees", rows))
        if options.comments and related.get("comments"):
            sheets.append(_sheet_from_dicts("Comments", comment_rows(related["comments"])))
        if options.attachments and related.get("attachments"):
            sheets.append(_sheet_from_dicts("Attachments", attachment_rows(related["attachments"])))
        if options.support_requests and related.get("support"):
            sheets.append(_sheet_from_dicts("Support Requests", support_rows(related["support"])))

        logger.info("Goals exported", organization_id=org_id, goals=len(goals), sheets=len(sheets))
        return ExportFile(
            content=build_workbook(sheets),
            filename=f"goals-export-{_today_stamp(today)}.xlsx",
            content_type=XLSX_CONTENT_TYPE,
        )

    # -------------------------------------------------------------------------
    # 部署構成
    # -------------------------------------------------------------------------

    def _load_users(self, conn, org_id: str, include_inactive: bool) -> List[Dict[str, Any]]:
        active_clause = "" if include_inactive else "AND is_active = TRUE"
        rows = conn.execute(
            text(f"""
                SELECT id, full_name, email, role, department, team, is_active, created_at
                FROM users
                WHERE organization_id = :org_id {active_clause}
                ORDER BY department ASC NULLS LAST, full_name ASC
            """),
            {"org_id": org_id},
        ).fetchall()
        return [
            {
                "id": str(r[0]), "full_name": r[1], "email": r[2], "role": r[3],
                "department": r[4], "team": r[5], "is_active": bool(r[6]), "created_at": r[7],
            }
            for r in rows
        ]

    def export_departments(
        self,
        user: UserContext,
        file_format: str = "xlsx",
        options: Optional[DepartmentExportOptions] = None,
        today: Optional[date] = None,
    ) -> ExportFile:
        self._require_admin(user)
        if file_format not in EXPORT_FORMATS:
            raise ValidationError(f"Unsupported export format: {file_format}")
        options = options or DepartmentExportOptions()
        org_id = user.organization_id
        active_clause = "" if options.include_inactive else "AND is_active = TRUE"

        with self.pool.connect() as conn:
            teams = [
                {
                    "id": str(r[0]), "department": r[1], "team": r[2],
                    "description": r[3], "is_active": bool(r[4]), "created_at": r[5],
                }
                for r in conn.execute(
                    text(f"""
                        SELECT id, department, team, description, is_active, created_at
                        FROM department_teams
                        WHERE organization_id = :org_id {active_clause}
                        ORDER BY department ASC, team ASC
                    """),
                    {"org_id": org_id},
                ).fetchall()
            ]
            users = self._load_users(conn, org_id, options.include_inactive)
            permissions = [
                {
                    "user_id": str(r[0]), "department": r[1], "full_name": r[2],
                    "email": r[3], "role": r[4], "primary_department": r[5],
                }
                for r in conn.execute(
                    text("""
                        SELECT p.user_id, p.department, u.full_name, u.email, u.role, u.department
                        FROM department_permissions p
                        LEFT JOIN users u ON u.id = p.user_id
                        WHERE p.organization_id = :org_id
                        ORDER BY u.full_name ASC
                    """),
                    {"org_id": org_id},
                ).fetchall()
            ]
            goals = [
                {"department": r[0], "status": r[1], "priority": r[2]}
                for r in conn.execute(
                    text("SELECT department, status, priority FROM goals WHERE organization_id = :org_id"),
                    {"org_id": org_id},
                ).fetchall()
            ] if options.goal_counts else []

        stamp = _today_stamp(today)
        if file_format == "json":
            structure: Dict[str, Dict[str, Any]] = {}
            for t in teams:
                dept = structure.setdefault(t["department"], {"department": t["department"], "teams": []})
                dept["teams"].append({
                    "team": t["team"],
                    "description": t["description"],
                    "is_active": t["is_active"],
                    "users": [
                        u["email"] for u in users
                        if u["department"] == t["department"] and u["team"] == t["team"]
                    ],
                })
            payload = {
                "departments": list(structure.values()),
                "users": users if options.user_details else None,
                "permissions": permissions if options.department_permissions else None,
                "goal_statistics": goal_statistics_rows(goals) if options.goal_counts else None,
                "export_metadata": {
                    "exported_at": datetime.utcnow().isoformat() + "Z",
                    "exported_by": user.full_name or user.email,
                    "options": asdict(options),
                },
            }
            return ExportFile(
                content=json.dumps(payload, ensure_ascii=False, default=str, indent=2).encode("utf-8"),
                filename=f"department-structure-{stamp}.json",
                content_type="application/json",
            )

        if file_format == "csv":
            headers = ["Department", "Team", "Description", "Is Active", "User Count", "Created"]
            rows = team_detail_rows(teams, users)
            return ExportFile(
                content=rows_to_csv(headers, [[r[h] for h in headers] for r in rows]).encode("utf-8"),
                filename=f"department-structure-{stamp}.csv",
                content_type="text/csv; charset=utf-8",
            )

        sheets = [_sheet_from_dicts("Departments Overview", department_overview_rows(teams, users))]
        if options.team_details:
            sheets.append(_sheet_from_dicts("Teams Details", team_detail_rows(teams, users)))
        if options.user_details:
            sheets.append(_sheet_from_dicts("User Assignments", user_assignment_rows(users, permissions)))
        if options.department_permissions:
            sheets.append(_sheet_from_dicts("Permissions Matrix", permission_matrix_rows(permissions)))
        if options.goal_counts:
            sheets.append(_sheet_from_dicts("Goal Statistics", goal_statistics_rows(goals)))
        return ExportFile(
            content=build_workbook(sheets),
            filename=f"department-structure-{stamp}.xlsx",
            content_type=XLSX_CONTENT_TYPE,
        )

    # -------------------------------------------------------------------------
    # ユーザー割当
    # -------------------------------------------------------------------------

    def load_assignment_data(self, organization_id: str, include_inactive: bool) -> List[Dict[str, Any]]:
        """ユーザーごとの担当目標・担当タスク"""
        with self.pool.connect() as conn:
            users = self._load_users(conn, organization_id, include_inactive)
            by_id = {u["id"]: {**u, "goals": [], "tasks": []} for u in users}
            for r in conn.execute(
                text("""
                    SELECT a.user_id, a.goal_id, a.task_status, a.completed_at,
                           g.subject, g.status, g.priority, g.target_date, g.progress_percentage
                    FROM goal_assignees a
                    JOIN goals g ON g.id = a.goal_id
                    WHERE a.organization_id = :org_id
                """),
                {"org_id": organization_id},
            ).fetchall():
                entry = by_id.get(str(r[0]))
                if entry is not None:
                    entry["goals"].append({
                        "goal_id": str(r[1]), "task_status": r[2], "completed_at": r[3],
                        "subject": r[4], "status": r[5], "priority": r[6],
                        "target_date": r[7], "progress_percentage": r[8],
                    })
            for r in conn.execute(
                text("""
                    SELECT t.assigned_to, t.id, t.title, t.status, t.priority, t.pdca_phase,
                           t.due_date, t.estimated_hours, t.actual_hours, t.completed_at,
                           t.created_at, g.subject
                    FROM goal_tasks t
                    JOIN goals g ON g.id = t.goal_id
                    WHERE t.organization_id = :org_id AND t.assigned_to IS NOT NULL
                """),
                {"org_id": organization_id},
            ).fetchall():
                entry = by_id.get(str(r[0]))
                if entry is not None:
                    entry["tasks"].append({
                        "id": str(r[1]), "title": r[2], "status": r[3], "priority": r[4],
                        "pdca_phase": r[5], "due_date": r[6], "estimated_hours": r[7],
                        "actual_hours": r[8], "completed_at": r[9], "created_at": r[10],
                        "goal_subject": r[11],
                    })
        return list(by_id.values())

    def export_assignments(
        self,
        user: UserContext,
        file_format: str = "xlsx",
        options: Optional[AssignmentExportOptions] = None,
        today: Optional[date] = None,
    ) -> ExportFile:
        self._require_admin(user)
        if file_format not in ("xlsx", "csv"):
            raise ValidationError(f"Unsupported export format: {file_format}")
        options = options or AssignmentExportOptions()
        today = today or date.today()
        users = self.load_assignment_data(user.organization_id, options.include_inactive_users)
        stamp = _today_stamp(today)

        if file_format == "csv":
            rows = workload_rows(users, options)
            headers = list(rows[0].keys()) if rows else ["User", "Email"]
            return ExportFile(
                content=rows_to_csv(headers, [[r.get(h) for h in headers] for r in rows]).encode("utf-8"),
                filename=f"user-assignments-{stamp}.csv",
                content_type="text/csv; charset=utf-8",
            )

        sheets = [_sheet_from_dicts("Summary Dashboard", assignment_summary_rows(users), ["Metric", "Value"])]
        if options.workload_summary:
            sheets.append(_sheet_from_dicts("Workload Summary", workload_rows(users, options)))
        if options.performance_analysis:
            sheets.append(_sheet_from_dicts("Performance Analysis", performance_rows(users, today)))
        if options.assignment_distribution:
            sheets.append(_sheet_from_dicts("Assignment Distribution", distribution_rows(users)))
        if options.overdue_analysis:
            sheets.append(_sheet_from_dicts("Overdue Analysis", overdue_rows(users, today)))
        if options.detailed_tasks:
            sheets.append(_sheet_from_dicts("Detailed Tasks", detailed_task_rows(users)))
        return ExportFile(
            content=build_workbook(sheets),
            filename=f"user-assignments-{stamp}.xlsx",
            content_type=XLSX_CONTENT_TYPE,
        )


def get_admin_export_service(pool=None) -> AdminExportService:
    """AdminExportServiceのファクトリ関数"""
    return AdminExportService(pool=pool)
