"""
期限超過判定

期限は adjusted_target_date を優先し、無ければ target_date を使う。
比較は日単位（どちらも当日の終わり同士）で行うため、期限当日はまだ超過ではない。
Completed / Cancelled の目標は超過にならない。
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Iterable, List, Optional

from lib.workflow import CLOSED_STATUSES


@dataclass
class OverdueInfo:
    is_overdue: bool = False
    days_overdue: int = 0
    deadline: Optional[date] = None
    deadline_type: str = "none"  # adjusted / target / none


def _to_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00")).date()


def _get(goal: Any, name: str) -> Any:
    if isinstance(goal, dict):
        return goal.get(name)
    return getattr(goal, name, None)


def get_overdue_info(goal: Any, today: Optional[date] = None) -> OverdueInfo:
    """目標（dict または属性を持つオブジェクト）の期限超過情報"""
    if _get(goal, "status") in CLOSED_STATUSES:
        return OverdueInfo()

    today = today or date.today()
    for attr, deadline_type in (("adjusted_target_date", "adjusted"), ("target_date", "target")):
        deadline = _to_date(_get(goal, attr))
        if deadline is None:
            continue
        diff_days = (today - deadline).days
        return OverdueInfo(
            is_overdue=diff_days > 0,
            days_overdue=max(0, diff_days),
            deadline=deadline,
            deadline_type=deadline_type,
        )
    return OverdueInfo()


def is_goal_overdue(goal: Any, today: Optional[date] = None) -> bool:
    return get_overdue_info(goal, today).is_overdue


def get_overdue_goals(goals: Iterable[Any], today: Optional[date] = None) -> List[Any]:
    return [g for g in goals if is_goal_overdue(g, today)]


def get_overdue_count(goals: Iterable[Any], today: Optional[date] = None) -> int:
    return len(get_overdue_goals(goals, today))


def format_overdue_status(goal: Any, today: Optional[date] = None) -> str:
    info = get_overdue_info(goal, today)
    if not info.is_overdue:
        return ""
    if info.days_overdue == 0:
        return "Due Today"
    if info.days_overdue == 1:
        return "1 Day Overdue"
    return f"{info.days_overdue} Days Overdue"
