"""
目標分析用プロンプトの組み立て

goal_data は Goal.to_dict() に以下を加えた dict:
    tasks:    [{"title", "status", "pdca_phase", "completion_notes"}]
    comments: [{"user_name", "created_at", "comment"}]
    assignees / support は Goal.to_dict() のもの
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from lib.overdue import is_goal_overdue


class AnalysisType:
    RISK_ASSESSMENT = "risk_assessment"
    OPTIMIZATION_SUGGESTIONS = "optimization_suggestions"
    PROGRESS_REVIEW = "progress_review"
    TASK_BREAKDOWN = "task_breakdown"
    CUSTOM = "custom"


ANALYSIS_TYPE_VALUES = [
    AnalysisType.RISK_ASSESSMENT,
    AnalysisType.OPTIMIZATION_SUGGESTIONS,
    AnalysisType.PROGRESS_REVIEW,
    AnalysisType.TASK_BREAKDOWN,
    AnalysisType.CUSTOM,
]

ANALYSIS_INSTRUCTIONS = {
    AnalysisType.RISK_ASSESSMENT: [
        "Please provide a comprehensive risk assessment for this goal, including:",
        "Identified risks and potential blockers",
        "Risk severity and likelihood",
        "Mitigation strategies",
        "Early warning indicators to monitor",
    ],
    AnalysisType.OPTIMIZATION_SUGGESTIONS: [
        "Please analyze this goal and provide optimization suggestions:",
        "Areas for improvement in goal structure or approach",
        "Task organization and sequencing recommendations",
        "Resource allocation suggestions",
        "Timeline optimization opportunities",
    ],
    AnalysisType.PROGRESS_REVIEW: [
        "Please provide a detailed progress review:",
        "Current progress assessment against timeline",
        "Task completion analysis by PDCA phase",
        "Identification of bottlenecks or delays",
        "Recommendations for acceleration",
    ],
    AnalysisType.TASK_BREAKDOWN: [
        "Please suggest additional tasks or task improvements:",
        "Missing tasks for successful goal completion",
        "Task dependencies and sequencing",
        "PDCA phase alignment recommendations",
        "Resource and timeline estimates for new tasks",
    ],
    AnalysisType.CUSTOM: [
        "Please provide a comprehensive analysis of this goal including:",
        "Overall assessment of goal structure and progress",
        "Risk identification and mitigation strategies",
        "Optimization opportunities and recommendations",
        "Next steps and action items for improved success",
    ],
}


def _short_date(value: Any) -> str:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if value:
        return str(value)[:10]
    return ""


def _format_tasks(tasks: List[Dict[str, Any]]) -> str:
    if not tasks:
        return "No tasks defined"
    lines = []
    for index, task in enumerate(tasks, start=1):
        line = f"{index}. [{str(task.get('status') or '').upper()}] {task.get('title')} ({task.get('pdca_phase')} phase)"
        if task.get("completion_notes"):
            line += f" - {task['completion_notes']}"
        lines.append(line)
    return "\n".join(lines)


def _format_comments(comments: List[Dict[str, Any]]) -> str:
    if not comments:
        return "No comments"
    return "\n".join(
        f"{index}. {c.get('user_name') or 'Unknown'} ({_short_date(c.get('created_at'))}): {c.get('comment')}"
        for index, c in enumerate(comments, start=1)
    )


def _names(items: List[Dict[str, Any]], key: str) -> str:
    names = [str(item.get(key)) for item in items or [] if item.get(key)]
    return ", ".join(names) if names else "None"


def build_goal_data(goal_data: Dict[str, Any], today: Optional[date] = None) -> str:
    """分析指示を含まない目標データブロック"""
    today = today or date.today()
    tasks = goal_data.get("tasks") or []
    comments = goal_data.get("comments") or []

    lines = [
        "GOAL ANALYSIS REQUEST",
        "",
        f"Goal: {goal_data.get('subject')}",
        f"Department: {goal_data.get('department')}",
        f"Status: {goal_data.get('status')}",
        f"Priority: {goal_data.get('priority')}",
        f"Start Date: {goal_data.get('start_date') or 'Not set'}",
        f"Target Date: {goal_data.get('target_date') or 'Not set'}",
        f"Current Date: {today.isoformat()}",
    ]
    if is_goal_overdue(goal_data, today):
        lines.append("⚠️ OVERDUE")
    lines += ["", f"Description: {goal_data.get('description') or ''}", ""]
    if goal_data.get("target_metrics"):
        lines.append(f"Target Metrics: {goal_data['target_metrics']}")
    if goal_data.get("success_criteria"):
        lines.append(f"Success Criteria: {goal_data['success_criteria']}")
    lines += [
        "",
        f"Tasks ({len(tasks)}):",
        _format_tasks(tasks),
        "",
        f"Comments & Updates ({len(comments)}):",
        _format_comments(comments),
        "",
        "Team:",
        f"- Owner: {goal_data.get('owner_name') or 'Unknown'}",
        f"- Assignees: {_names(goal_data.get('assignees'), 'full_name')}",
        f"- Supporting Departments: {_names(goal_data.get('support'), 'support_name')}",
    ]
    return "\n".join(lines).strip()


def build_analysis_prompt(
    goal_data: Dict[str, Any],
    analysis_type: str,
    custom_prompt: Optional[str] = None,
    today: Optional[date] = None,
) -> str:
    """
    分析種別ごとの指示を付けたプロンプト

    custom で custom_prompt が与えられた場合はその指示を使う。
    未知の種別は custom の既定指示になる。
    """
    base = build_goal_data(goal_data, today)
    if analysis_type == AnalysisType.CUSTOM and custom_prompt and custom_prompt.strip():
        return f"{base}\n\n{custom_prompt.strip()}"

    heading, *asks = ANALYSIS_INSTRUCTIONS.get(analysis_type, ANALYSIS_INSTRUCTIONS[AnalysisType.CUSTOM])
    numbered = "\n".join(f"{i}. {ask}" for i, ask in enumerate(asks, start=1))
    return f"{base}\n\n{heading}\n{numbered}"


def build_meta_analysis_data(analyses: List[Dict[str, Any]], today: Optional[date] = None) -> str:
    """複数の分析結果を横断分析用に 1 つのテキストにまとめる"""
    today = today or date.today()
    blocks = []
    for index, analysis in enumerate(analyses, start=1):
        blocks.append("\n".join([
            f"ANALYSIS {index}:",
            f"Goal: {analysis.get('goal_subject') or 'Unknown Goal'}",
            f"Department: {analysis.get('goal_department') or 'Unknown'}",
            f"Status: {analysis.get('goal_status') or 'Unknown'}",
            f"Analysis Type: {analysis.get('analysis_type')}",
            f"Date: {_short_date(analysis.get('created_at'))}",
            "",
            "Analysis Content:",
            str(analysis.get("analysis_result") or ""),
            "",
            "---",
        ]))

    return "\n".join([
        "META-ANALYSIS REQUEST",
        "",
        f"Total Analyses: {len(analyses)}",
        f"Generated: {today.isoformat()}",
        "",
        "\n".join(blocks),
        "",
        "END OF ANALYSIS DATA",
    ])
