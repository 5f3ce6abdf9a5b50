"""
Admin - Departments

部署・チーム構造の管理、ユーザーの所属変更、部署閲覧権限の付与・取消。
部署は department_teams の department 列で表し、独立したテーブルを持たない。
"""

from fastapi import APIRouter, Depends, HTTPException, status

from lib.department import get_department_service
from lib.errors import GoalFlowError
from app.schemas.admin import (
    AssignUserRequest,
    DepartmentCreateRequest,
    DepartmentPermissionsRequest,
    DepartmentUpdateRequest,
    RenameRequest,
    TeamActiveRequest,
    TeamCreateRequest,
)
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


# =============================================================================
# 構造
# =============================================================================


@router.get("/departments", responses=ERROR_RESPONSES, summary="部署構造")
async def get_structure(user: UserContext = Depends(require_admin)):
    try:
        return {"status": "success", "departments": get_department_service().get_structure(user)}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Department structure error", user_id=user.user_id)
        raise internal_error()


@router.post("/departments", status_code=status.HTTP_201_CREATED, responses=ERROR_RESPONSES, summary="部署作成")
async def create_department(body: DepartmentCreateRequest, user: UserContext = Depends(require_admin)):
    """既定チーム（General）を作って部署を登録する"""
    try:
        team_id = get_department_service().create_department(user, body.department, body.description)
        log_audit_event(
            logger=logger, action="create_department",
            resource_type="department", resource_id=body.department,
            user_id=user.user_id,
        )
        return {"status": "success", "team_id": team_id}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Create department error", department=body.department)
        raise internal_error()


@router.patch("/departments/{department}", responses=ERROR_RESPONSES, summary="部署説明の更新")
async def update_department(department: str, body: DepartmentUpdateRequest, user: UserContext = Depends(require_admin)):
    try:
        get_department_service().update_department_description(user, department, body.description)
        return {"status": "success"}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Update department error", department=department)
        raise internal_error()


@router.post("/departments/{department}/rename", responses=ERROR_RESPONSES, summary="部署名変更")
async def rename_department(department: str, body: RenameRequest, user: UserContext = Depends(require_admin)):
    try:
        get_department_service().rename_department(user, department, body.new_name)
        log_audit_event(
            logger=logger, action="rename_department",
            resource_type="department", resource_id=department,
            user_id=user.user_id, details={"new_name": body.new_name},
        )
        return {"status": "success"}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Rename department error", department=department)
        raise internal_error()


@router.delete("/departments/{department}", responses=ERROR_RESPONSES, summary="部署削除")
async def delete_department(department: str, user: UserContext = Depends(require_admin)):
    """所属ユーザーがいる部署は削除できない（409）"""
    try:
        get_department_service().delete_department(user, department)
        log_audit_event(
            logger=logger, action="delete_department",
            resource_type="department", resource_id=department,
            user_id=user.user_id,
        )
        return {"status": "success"}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Delete department error", department=department)
        raise internal_error()


# =============================================================================
# チーム
# =============================================================================


@router.post(
    "/departments/{department}/teams",
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
    summary="チーム作成",
)
async def create_team(department: str, body: TeamCreateRequest, user: UserContext = Depends(require_admin)):
    try:
        team_id = get_department_service().create_team(user, department, body.team, body.description)
        log_audit_event(
            logger=logger, action="create_team",
            resource_type="department", resource_id=department,
            user_id=user.user_id, details={"team": body.team},
        )
        return {"status": "success", "team_id": team_id}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Create team error", department=department)
        raise internal_error()


@router.post("/departments/{department}/teams/{team}/rename", responses=ERROR_RESPONSES, summary="チーム名変更")
async def rename_team(department: str, team: str, body: RenameRequest, user: UserContext = Depends(require_admin)):
    try:
        get_department_service().rename_team(user, department, team, body.new_name)
        log_audit_event(
            logger=logger, action="rename_team",
            resource_type="department", resource_id=department,
            user_id=user.user_id, details={"team": team, "new_name": body.new_name},
        )
        return {"status": "success"}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Rename team error", department=department)
        raise internal_error()


@router.delete("/departments/{department}/teams/{team}", responses=ERROR_RESPONSES, summary="チーム削除")
async def delete_team(department: str, team: str, user: UserContext = Depends(require_admin)):
    try:
        get_department_service().delete_team(user, department, team)
        log_audit_event(
            logger=logger, action="delete_team",
            resource_type="department", resource_id=department,
            user_id=user.user_id, details={"team": team},
        )
        return {"status": "success"}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Delete team error", department=department)
        raise internal_error()


@router.put("/teams/{team_id}/active", responses=ERROR_RESPONSES, summary="チームの有効・無効")
async def set_team_active(team_id: str, body: TeamActiveRequest, user: UserContext = Depends(require_admin)):
    try:
        get_department_service().set_team_active(user, team_id, body.is_active)
        return {"status": "success"}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Set team active error", team_id=team_id)
        raise internal_error()


@router.post("/departments/assign-user", responses=ERROR_RESPONSES, summary="ユーザーの所属変更")
async def assign_user(body: AssignUserRequest, user: UserContext = Depends(require_admin)):
    try:
        get_department_service().assign_user(user, body.user_id, body.department, body.team)
        log_audit_event(
            logger=logger, action="assign_user_department",
            resource_type="user", resource_id=body.user_id,
            user_id=user.user_id, details={"department": body.department, "team": body.team},
        )
        return {"status": "success"}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Assign user error", target_user_id=body.user_id)
        raise internal_error()


# =============================================================================
# 部署閲覧権限
# =============================================================================


@router.get("/department-permissions", responses=ERROR_RESPONSES, summary="権限付与済みユーザー一覧")
async def list_department_permissions(user: UserContext = Depends(require_admin)):
    try:
        return {"status": "success", "users": get_department_service().list_users_with_permissions(user)}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("List department permissions error", user_id=user.user_id)
        raise internal_error()


@router.get("/users/{user_id}/department-permissions", responses=ERROR_RESPONSES, summary="ユーザーの部署権限")
async def get_permissions(user_id: str, user: UserContext = Depends(require_admin)):
    try:
        return {"status": "success", "departments": get_department_service().get_permissions(user, user_id)}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Get department permissions error", target_user_id=user_id)
        raise internal_error()


@router.put("/users/{user_id}/department-permissions", responses=ERROR_RESPONSES, summary="部署権限の置き換え")
async def set_permissions(user_id: str, body: DepartmentPermissionsRequest, user: UserContext = Depends(require_admin)):
    """変更は対象ユーザーの次回ログインからトークンに反映される"""
    try:
        departments = get_department_service().set_permissions(user, user_id, body.departments)
        return {"status": "success", "departments": departments}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Set department permissions error", target_user_id=user_id)
        raise internal_error()


@router.post(
    "/users/{user_id}/department-permissions/{department}",
    responses=ERROR_RESPONSES,
    summary="部署権限の付与",
)
async def grant_permission(user_id: str, department: str, user: UserContext = Depends(require_admin)):
    try:
        departments = get_department_service().grant_permission(user, user_id, department)
        return {"status": "success", "departments": departments}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Grant department permission error", target_user_id=user_id)
        raise internal_error()


@router.delete(
    "/users/{user_id}/department-permissions/{department}",
    responses=ERROR_RESPONSES,
    summary="部署権限の取消",
)
async def revoke_permission(user_id: str, department: str, user: UserContext = Depends(require_admin)):
    try:
        get_department_service().revoke_permission(user, user_id, department)
        return {"status": "success"}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Revoke department permission error", target_user_id=user_id)
        raise internal_error()
