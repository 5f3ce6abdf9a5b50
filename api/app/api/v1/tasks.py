"""
Tasks API

目標配下の PDCA タスク。作成・一括作成・更新・開始・完了・削除、
ログインユーザーの担当タスク一覧、目標ごとのタスク統計。
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from lib.errors import GoalFlowError
from lib.goal import get_goal_service
from lib.goal_task import get_goal_task_service
from lib.logging import log_audit_event
from app.schemas.common import ERROR_RESPONSES
from app.schemas.task import (
    TaskBulkCreateRequest,
    TaskCompleteRequest,
    TaskCreateRequest,
    TaskUpdateRequest,
)

from .deps import UserContext, get_current_user, internal_error, logger, raise_http_error

router = APIRouter(tags=["tasks"])


@router.get("/tasks/me", responses=ERROR_RESPONSES, summary="自分の担当タスク")
async def get_my_tasks(
    user: UserContext = Depends(get_current_user),
    status_filter: Optional[str] = Query(None, alias="status", description="タスクステータス"),
):
    try:
        tasks = get_goal_task_service().get_my_tasks(user, status_filter)
        return {"status": "success", "tasks": [t.to_dict() for t in tasks], "total_count": len(tasks)}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Get my tasks error", user_id=user.user_id)
        raise internal_error()


@router.get("/goals/{goal_id}/tasks", responses=ERROR_RESPONSES, summary="目標のタスク一覧")
async def list_tasks(goal_id: str, user: UserContext = Depends(get_current_user)):
    try:
        tasks = get_goal_task_service().list_tasks_for_goal(user, goal_id)
        return {"status": "success", "tasks": [t.to_dict() for t in tasks]}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("List tasks error", goal_id=goal_id)
        raise internal_error()


@router.get("/goals/{goal_id}/tasks/stats", responses=ERROR_RESPONSES, summary="タスク統計")
async def get_task_stats(goal_id: str, user: UserContext = Depends(get_current_user)):
    try:
        # 閲覧権限の確認
        get_goal_service().get_goal(user, goal_id)
        stats = get_goal_task_service().get_task_stats(user.organization_id, goal_id)
        return {"status": "success", "stats": stats}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Task stats error", goal_id=goal_id)
        raise internal_error()


@router.post(
    "/goals/{goal_id}/tasks",
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
    summary="タスク作成",
)
async def create_task(goal_id: str, body: TaskCreateRequest, user: UserContext = Depends(get_current_user)):
    try:
        task = get_goal_task_service().create_task(user, goal_id, body.model_dump(exclude_none=True))
        log_audit_event(
            logger=logger, action="create_task",
            resource_type="goal_task", resource_id=task.id,
            user_id=user.user_id, details={"goal_id": goal_id},
        )
        return {"status": "success", "task": task.to_dict()}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Create task error", goal_id=goal_id)
        raise internal_error()


@router.post(
    "/goals/{goal_id}/tasks/bulk",
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
    summary="タスク一括作成",
)
async def bulk_create_tasks(goal_id: str, body: TaskBulkCreateRequest, user: UserContext = Depends(get_current_user)):
    try:
        tasks = get_goal_task_service().bulk_create_tasks(
            user, goal_id, [t.model_dump(exclude_none=True) for t in body.tasks]
        )
        log_audit_event(
            logger=logger, action="bulk_create_tasks",
            resource_type="goal", resource_id=goal_id,
            user_id=user.user_id, details={"count": len(tasks)},
        )
        return {"status": "success", "tasks": [t.to_dict() for t in tasks]}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Bulk create tasks error", goal_id=goal_id)
        raise internal_error()


@router.patch("/tasks/{task_id}", responses=ERROR_RESPONSES, summary="タスク更新")
async def update_task(task_id: str, body: TaskUpdateRequest, user: UserContext = Depends(get_current_user)):
    try:
        updates = body.model_dump(exclude_none=True)
        task = get_goal_task_service().update_task(user, task_id, updates)
        log_audit_event(
            logger=logger, action="update_task",
            resource_type="goal_task", resource_id=task_id,
            user_id=user.user_id, details={"fields": sorted(updates)},
        )
        return {"status": "success", "task": task.to_dict()}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Update task error", task_id=task_id)
        raise internal_error()


@router.post("/tasks/{task_id}/start", responses=ERROR_RESPONSES, summary="タスク開始")
async def start_task(task_id: str, user: UserContext = Depends(get_current_user)):
    try:
        task = get_goal_task_service().start_task(user, task_id)
        return {"status": "success", "task": task.to_dict()}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Start task error", task_id=task_id)
        raise internal_error()


@router.post("/tasks/{task_id}/complete", responses=ERROR_RESPONSES, summary="タスク完了")
async def complete_task(task_id: str, body: TaskCompleteRequest, user: UserContext = Depends(get_current_user)):
    try:
        task = get_goal_task_service().complete_task(user, task_id, body.completion_notes, body.actual_hours)
        log_audit_event(
            logger=logger, action="complete_task",
            resource_type="goal_task", resource_id=task_id,
            user_id=user.user_id, details={"goal_id": task.goal_id},
        )
        return {"status": "success", "task": task.to_dict()}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Complete task error", task_id=task_id)
        raise internal_error()


@router.delete("/tasks/{task_id}", responses=ERROR_RESPONSES, summary="タスク削除")
async def delete_task(task_id: str, user: UserContext = Depends(get_current_user)):
    try:
        get_goal_task_service().delete_task(user, task_id)
        log_audit_event(
            logger=logger, action="delete_task",
            resource_type="goal_task", resource_id=task_id,
            user_id=user.user_id,
        )
        return {"status": "success"}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Delete task error", task_id=task_id)
        raise internal_error()
