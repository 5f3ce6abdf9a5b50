"""
Departments / Directory API

目標作成画面の選択肢用。部署・チーム・在籍ユーザーの参照のみ（全ロール）。
構造の編集は /admin/departments 配下。
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from lib.department import get_department_service
from lib.errors import GoalFlowError
from lib.user import get_user_service
from app.schemas.common import ERROR_RESPONSES

from .deps import UserContext, get_current_user, internal_error, logger, raise_http_error

router = APIRouter(tags=["directory"])


@router.get("/departments", responses=ERROR_RESPONSES, summary="部署一覧")
async def list_departments(user: UserContext = Depends(get_current_user)):
    try:
        departments = get_department_service().list_departments(user.organization_id)
        return {"status": "success", "departments": departments}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("List departments error", user_id=user.user_id)
        raise internal_error()


@router.get("/departments/teams", responses=ERROR_RESPONSES, summary="チーム一覧")
async def list_teams(
    user: UserContext = Depends(get_current_user),
    department: Optional[str] = Query(None, description="部署で絞り込み"),
):
    try:
        teams = get_department_service().list_teams(user.organization_id, department)
        return {"status": "success", "teams": [t.to_dict() for t in teams]}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("List teams error", user_id=user.user_id)
        raise internal_error()


@router.get("/users", responses=ERROR_RESPONSES, summary="ユーザー一覧（担当者選択用）")
async def list_users(
    user: UserContext = Depends(get_current_user),
    department: Optional[str] = Query(None, description="部署で絞り込み"),
):
    try:
        users = get_user_service().list_users(user.organization_id, department=department)
        return {
            "status": "success",
            "users": [
                {
                    "id": u.id,
                    "full_name": u.full_name,
                    "email": u.email,
                    "role": u.role,
                    "department": u.department,
                    "team": u.team,
                }
                for u in users
            ],
        }
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("List users error", user_id=user.user_id)
        raise internal_error()
