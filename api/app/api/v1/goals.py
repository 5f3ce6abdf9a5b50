"""
Goals API

目標の CRUD、ステータス遷移、進捗、担当者、支援部署、削除影響、
ダッシュボード統計、期限超過一覧。
閲覧範囲と操作権限は lib/permissions.py の判定に従う。
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from lib.errors import GoalFlowError
from lib.goal import get_goal_service
from lib.goal_analysis import get_goal_analysis_service
from lib.logging import log_audit_event
from lib.pagination import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, PaginationParams
from app.schemas.common import ERROR_RESPONSES
from app.schemas.goal import (
    AssigneeCompleteRequest,
    AssigneesRequest,
    GoalCreateRequest,
    GoalUpdateRequest,
    ProgressRequest,
    StatusChangeRequest,
    SupportRequest,
)

from .deps import UserContext, get_current_user, internal_error, logger, raise_http_error

router = APIRouter(prefix="/goals", tags=["goals"])


@router.get("", responses=ERROR_RESPONSES, summary="目標一覧")
async def list_goals(
    user: UserContext = Depends(get_current_user),
    status_filter: Optional[str] = Query(None, alias="status", description="ステータス"),
    department: Optional[str] = Query(None, description="部署"),
    priority: Optional[str] = Query(None, description="優先度"),
    goal_type: Optional[str] = Query(None, description="目標種別"),
    owner_id: Optional[str] = Query(None, description="オーナー"),
    assignee_id: Optional[str] = Query(None, description="担当者"),
    search: Optional[str] = Query(None, description="件名・説明の部分一致"),
    page: int = Query(1, ge=1),
    page_size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
):
    filters = {
        "status": status_filter,
        "department": department,
        "priority": priority,
        "goal_type": goal_type,
        "owner_id": owner_id,
        "assignee_id": assignee_id,
        "search": search,
    }
    try:
        result = get_goal_service().list_goals(user, filters, PaginationParams(page=page, page_size=page_size))
        return {"status": "success", **result.to_dict()}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("List goals error", user_id=user.user_id)
        raise internal_error()


@router.post("", status_code=status.HTTP_201_CREATED, responses=ERROR_RESPONSES, summary="目標作成")
async def create_goal(body: GoalCreateRequest, user: UserContext = Depends(get_current_user)):
    """Head / Admin のみ。担当者・支援部署・初期タスクも同時に登録する"""
    try:
        data = body.model_dump(exclude_none=True)
        data["support"] = [s.model_dump() for s in body.support]
        goal = get_goal_service().create_goal(user, data)
        log_audit_event(
            logger=logger, action="create_goal",
            resource_type="goal", resource_id=goal.id,
            user_id=user.user_id, details={"department": goal.department},
        )
        return {"status": "success", "goal": goal.to_dict()}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Create goal error", user_id=user.user_id)
        raise internal_error()


@router.get("/dashboard/stats", responses=ERROR_RESPONSES, summary="ダッシュボード統計")
async def get_dashboard_stats(user: UserContext = Depends(get_current_user)):
    try:
        return {"status": "success", "stats": get_goal_service().get_dashboard_stats(user)}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Dashboard stats error", user_id=user.user_id)
        raise internal_error()


@router.get("/overdue", responses=ERROR_RESPONSES, summary="期限超過目標一覧")
async def list_overdue_goals(user: UserContext = Depends(get_current_user)):
    try:
        goals = get_goal_service().list_overdue_goals(user)
        return {"status": "success", "goals": [g.to_dict() for g in goals], "total_count": len(goals)}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("List overdue goals error", user_id=user.user_id)
        raise internal_error()


@router.get("/{goal_id}", responses=ERROR_RESPONSES, summary="目標詳細")
async def get_goal(goal_id: str, user: UserContext = Depends(get_current_user)):
    try:
        goal = get_goal_service().get_goal(user, goal_id)
        return {"status": "success", "goal": goal.to_dict()}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Get goal error", goal_id=goal_id)
        raise internal_error()


@router.patch("/{goal_id}", responses=ERROR_RESPONSES, summary="目標更新")
async def update_goal(goal_id: str, body: GoalUpdateRequest, user: UserContext = Depends(get_current_user)):
    try:
        updates = body.model_dump(exclude_none=True)
        goal = get_goal_service().update_goal_details(user, goal_id, updates)
        log_audit_event(
            logger=logger, action="update_goal",
            resource_type="goal", resource_id=goal_id,
            user_id=user.user_id, details={"fields": sorted(updates)},
        )
        return {"status": "success", "goal": goal.to_dict()}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Update goal error", goal_id=goal_id)
        raise internal_error()


@router.get("/{goal_id}/deletion-impact", responses=ERROR_RESPONSES, summary="削除影響")
async def get_deletion_impact(goal_id: str, user: UserContext = Depends(get_current_user)):
    try:
        return {"status": "success", "impact": get_goal_service().get_deletion_impact(user, goal_id)}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Deletion impact error", goal_id=goal_id)
        raise internal_error()


@router.delete("/{goal_id}", responses=ERROR_RESPONSES, summary="目標削除")
async def delete_goal(goal_id: str, user: UserContext = Depends(get_current_user)):
    try:
        get_goal_service().delete_goal(user, goal_id)
        log_audit_event(
            logger=logger, action="delete_goal",
            resource_type="goal", resource_id=goal_id,
            user_id=user.user_id,
        )
        return {"status": "success"}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Delete goal error", goal_id=goal_id)
        raise internal_error()


@router.post("/{goal_id}/status", responses=ERROR_RESPONSES, summary="ステータス変更")
async def change_status(goal_id: str, body: StatusChangeRequest, user: UserContext = Depends(get_current_user)):
    """前進遷移は現フェーズのタスクが全て完了している必要がある（409）"""
    try:
        goal = get_goal_service().update_goal_status(user, goal_id, body.status, body.current_assignee_id)
        log_audit_event(
            logger=logger, action="change_goal_status",
            resource_type="goal", resource_id=goal_id,
            user_id=user.user_id, details={"status": goal.status, "previous_status": goal.previous_status},
        )
        return {"status": "success", "goal": goal.to_dict()}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Change goal status error", goal_id=goal_id)
        raise internal_error()


@router.put("/{goal_id}/progress", responses=ERROR_RESPONSES, summary="進捗更新")
async def update_progress(goal_id: str, body: ProgressRequest, user: UserContext = Depends(get_current_user)):
    try:
        goal = get_goal_service().update_progress(user, goal_id, body.progress_percentage)
        log_audit_event(
            logger=logger, action="update_goal_progress",
            resource_type="goal", resource_id=goal_id,
            user_id=user.user_id, details={"progress_percentage": body.progress_percentage},
        )
        return {"status": "success", "goal": goal.to_dict()}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Update progress error", goal_id=goal_id)
        raise internal_error()


@router.get("/{goal_id}/assignees", responses=ERROR_RESPONSES, summary="担当者一覧")
async def list_assignees(goal_id: str, user: UserContext = Depends(get_current_user)):
    try:
        assignees = get_goal_service().get_assignees(user, goal_id)
        return {"status": "success", "assignees": [a.to_dict() for a in assignees]}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("List assignees error", goal_id=goal_id)
        raise internal_error()


@router.put("/{goal_id}/assignees", responses=ERROR_RESPONSES, summary="担当者設定")
async def assign_assignees(goal_id: str, body: AssigneesRequest, user: UserContext = Depends(get_current_user)):
    try:
        assignees = get_goal_service().assign_assignees(user, goal_id, body.assignee_ids)
        log_audit_event(
            logger=logger, action="assign_goal",
            resource_type="goal", resource_id=goal_id,
            user_id=user.user_id, details={"assignee_count": len(assignees)},
        )
        return {"status": "success", "assignees": [a.to_dict() for a in assignees]}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Assign goal error", goal_id=goal_id)
        raise internal_error()


@router.post("/{goal_id}/assignees/{assignee_user_id}/complete", responses=ERROR_RESPONSES, summary="担当分の完了")
async def complete_assignee_task(
    goal_id: str,
    assignee_user_id: str,
    body: AssigneeCompleteRequest,
    user: UserContext = Depends(get_current_user),
):
    try:
        service = get_goal_service()
        service.complete_assignee_task(user, goal_id, assignee_user_id, body.notes)
        log_audit_event(
            logger=logger, action="complete_assignee_task",
            resource_type="goal", resource_id=goal_id,
            user_id=user.user_id, details={"assignee_user_id": assignee_user_id},
        )
        return {
            "status": "success",
            "all_assignees_complete": service.are_all_assignees_complete(user.organization_id, goal_id),
        }
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Complete assignee task error", goal_id=goal_id)
        raise internal_error()


@router.get("/{goal_id}/support", responses=ERROR_RESPONSES, summary="支援部署一覧")
async def list_support(goal_id: str, user: UserContext = Depends(get_current_user)):
    try:
        support = get_goal_service().list_support(user, goal_id)
        return {"status": "success", "support": [s.to_dict() for s in support]}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("List support error", goal_id=goal_id)
        raise internal_error()


@router.post("/{goal_id}/support", responses=ERROR_RESPONSES, summary="支援部署追加")
async def add_support(goal_id: str, body: SupportRequest, user: UserContext = Depends(get_current_user)):
    try:
        added = get_goal_service().add_support(user, goal_id, [r.model_dump() for r in body.requirements])
        log_audit_event(
            logger=logger, action="add_goal_support",
            resource_type="goal", resource_id=goal_id,
            user_id=user.user_id, details={"added": len(added)},
        )
        return {"status": "success", "support": [s.to_dict() for s in added]}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Add support error", goal_id=goal_id)
        raise internal_error()


@router.delete("/{goal_id}/support/{support_id}", responses=ERROR_RESPONSES, summary="支援部署削除")
async def remove_support(goal_id: str, support_id: str, user: UserContext = Depends(get_current_user)):
    try:
        get_goal_service().remove_support(user, goal_id, support_id)
        log_audit_event(
            logger=logger, action="remove_goal_support",
            resource_type="goal", resource_id=goal_id,
            user_id=user.user_id, details={"support_id": support_id},
        )
        return {"status": "success"}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Remove support error", goal_id=goal_id)
        raise internal_error()


@router.get("/{goal_id}/analyses", responses=ERROR_RESPONSES, summary="AI 分析履歴")
async def list_analyses(goal_id: str, user: UserContext = Depends(get_current_user)):
    try:
        return {"status": "success", "analyses": get_goal_analysis_service().list_analyses(user, goal_id)}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("List analyses error", goal_id=goal_id)
        raise internal_error()
