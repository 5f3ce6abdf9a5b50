"""
Admin - Users

ユーザー一覧・作成・ロール変更・プロフィール更新。
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from lib.errors import GoalFlowError
from lib.user import get_user_service
from app.schemas.admin import RoleUpdateRequest, UserCreateRequest, UserProfileUpdateRequest
from app.schemas.common import ERROR_RESPONSES

from .deps import (
    UserContext,
    internal_error,
    log_audit_event,
    logger,
    raise_http_error,
    require_admin,
)

router = APIRouter()


@router.get("/users", responses=ERROR_RESPONSES, summary="ユーザー一覧")
async def list_users(
    user: UserContext = Depends(require_admin),
    role: Optional[str] = Query(None, description="ロール"),
    department: Optional[str] = Query(None, description="部署"),
    include_inactive: bool = Query(False, description="無効ユーザーを含める"),
):
    try:
        users = get_user_service().list_users(user.organization_id, role, department, include_inactive)
        return {"status": "success", "users": [u.to_dict() for u in users], "total_count": len(users)}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Admin list users error", user_id=user.user_id)
        raise internal_error()


@router.post("/users", status_code=status.HTTP_201_CREATED, responses=ERROR_RESPONSES, summary="ユーザー作成")
async def create_user(body: UserCreateRequest, user: UserContext = Depends(require_admin)):
    try:
        created = get_user_service().create_user(
            organization_id=user.organization_id,
            email=body.email,
            full_name=body.full_name,
            password=body.password,
            role=body.role,
            department=body.department,
            team=body.team,
            skills=body.skills,
            is_active=body.is_active,
        )
        log_audit_event(
            logger=logger, action="create_user",
            resource_type="user", resource_id=created.id,
            user_id=user.user_id, details={"role": created.role},
        )
        return {"status": "success", "user": created.to_dict()}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Admin create user error", user_id=user.user_id)
        raise internal_error()


@router.put("/users/{user_id}/role", responses=ERROR_RESPONSES, summary="ロール変更")
async def update_role(user_id: str, body: RoleUpdateRequest, user: UserContext = Depends(require_admin)):
    """変更は対象ユーザーの次回ログインからトークンに反映される"""
    try:
        get_user_service().update_role(user, user_id, body.role)
        log_audit_event(
            logger=logger, action="update_user_role",
            resource_type="user", resource_id=user_id,
            user_id=user.user_id, details={"role": body.role},
        )
        return {"status": "success"}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Admin update role error", target_user_id=user_id)
        raise internal_error()


@router.patch("/users/{user_id}", responses=ERROR_RESPONSES, summary="プロフィール更新")
async def update_profile(user_id: str, body: UserProfileUpdateRequest, user: UserContext = Depends(require_admin)):
    try:
        updates = body.model_dump(exclude_none=True)
        get_user_service().update_profile(user, user_id, updates)
        log_audit_event(
            logger=logger, action="update_user_profile",
            resource_type="user", resource_id=user_id,
            user_id=user.user_id, details={"fields": sorted(updates)},
        )
        return {"status": "success"}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Admin update profile error", target_user_id=user_id)
        raise internal_error()
