"""
Admin - Export

目標・部署構造・ユーザー割当を XLSX / CSV / JSON で出力する。
"""

from fastapi import APIRouter, Depends, HTTPException

from lib.admin_export import (
    AssignmentExportOptions,
    DepartmentExportOptions,
    GoalExportFilters,
    GoalExportOptions,
    get_admin_export_service,
)
from lib.errors import GoalFlowError
from app.schemas.admin import FormatExportRequest, GoalExportRequest
from app.schemas.common import ERROR_RESPONSES

from .deps import (
    UserContext,
    file_response,
    internal_error,
    log_audit_event,
    logger,
    raise_http_error,
    require_admin,
)

router = APIRouter(prefix="/export")


@router.post("/goals", responses=ERROR_RESPONSES, summary="目標エクスポート（XLSX）")
async def export_goals(body: GoalExportRequest, user: UserContext = Depends(require_admin)):
    try:
        export = get_admin_export_service().export_goals(
            user,
            GoalExportFilters.from_dict(body.filters),
            GoalExportOptions.from_dict(body.options),
        )
        log_audit_event(
            logger=logger, action="export_goals",
            resource_type="goal", resource_id="export",
            user_id=user.user_id, details={"filename": export.filename},
        )
        return file_response(export.content, export.filename, export.content_type)
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Goal export error", user_id=user.user_id)
        raise internal_error()


@router.post("/departments", responses=ERROR_RESPONSES, summary="部署構造エクスポート")
async def export_departments(body: FormatExportRequest, user: UserContext = Depends(require_admin)):
    try:
        export = get_admin_export_service().export_departments(
            user, body.format, DepartmentExportOptions.from_dict(body.options)
        )
        log_audit_event(
            logger=logger, action="export_departments",
            resource_type="department", resource_id="export",
            user_id=user.user_id, details={"filename": export.filename},
        )
        return file_response(export.content, export.filename, export.content_type)
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Department export error", user_id=user.user_id)
        raise internal_error()


@router.post("/assignments", responses=ERROR_RESPONSES, summary="ユーザー割当エクスポート")
async def export_assignments(body: FormatExportRequest, user: UserContext = Depends(require_admin)):
    try:
        export = get_admin_export_service().export_assignments(
            user, body.format, AssignmentExportOptions.from_dict(body.options)
        )
        log_audit_event(
            logger=logger, action="export_assignments",
            resource_type="user", resource_id="export",
            user_id=user.user_id, details={"filename": export.filename},
        )
        return file_response(export.content, export.filename, export.content_type)
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Assignment export error", user_id=user.user_id)
        raise internal_error()
