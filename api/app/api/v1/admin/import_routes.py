"""
Admin - Bulk Import

CSV / XLSX による目標・部署・ユーザーの一括登録。
プレビュー（検証のみ）と取り込みは同じ multipart 形式:
    file: アップロードファイル
    options: オプションの JSON 文字列
    mode: create_only / update_existing / create_and_update（部署・ユーザーのみ）
"""

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile

from lib.admin_import import (
    DepartmentImportOptions,
    GoalImportOptions,
    ImportMode,
    UserImportOptions,
    get_admin_import_service,
)
from lib.errors import GoalFlowError
from lib.excel_utils import build_template
from app.schemas.common import ERROR_RESPONSES

from .deps import (
    UserContext,
    file_response,
    internal_error,
    log_audit_event,
    logger,
    parse_options,
    raise_http_error,
    read_upload_rows,
    require_admin,
)

router = APIRouter(prefix="/import")


@router.get("/templates/{kind}", responses=ERROR_RESPONSES, summary="インポートテンプレート")
async def download_template(
    kind: str,
    file_format: str = Query("xlsx", alias="format", description="xlsx / csv"),
    user: UserContext = Depends(require_admin),
):
    try:
        content, filename, content_type = build_template(kind, file_format)
        return file_response(content, filename, content_type)
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Import template error", kind=kind)
        raise internal_error()


# =============================================================================
# 目標
# =============================================================================


@router.post("/goals/preview", responses=ERROR_RESPONSES, summary="目標インポートのプレビュー")
async def preview_goals(
    file: UploadFile = File(...),
    options: Optional[str] = Form(None),
    user: UserContext = Depends(require_admin),
):
    try:
        rows = await read_upload_rows(file)
        preview = get_admin_import_service().preview_goals(
            user, rows, GoalImportOptions.from_dict(parse_options(options))
        )
        return {"status": "success", "preview": preview.to_dict()}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Goal import preview error", user_id=user.user_id)
        raise internal_error()


@router.post("/goals", responses=ERROR_RESPONSES, summary="目標インポート")
async def import_goals(
    file: UploadFile = File(...),
    options: Optional[str] = Form(None),
    import_for_user_id: Optional[str] = Form(None, description="オーナーにするユーザー（省略時は実行者）"),
    user: UserContext = Depends(require_admin),
):
    try:
        rows = await read_upload_rows(file)
        result = get_admin_import_service().import_goals(
            user, rows, GoalImportOptions.from_dict(parse_options(options)), import_for_user_id
        )
        log_audit_event(
            logger=logger, action="import_goals",
            resource_type="goal", resource_id="bulk",
            user_id=user.user_id, details={"created": result.created, "skipped": result.skipped},
        )
        return {"status": "success", "result": result.to_dict()}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Goal import error", user_id=user.user_id)
        raise internal_error()


# =============================================================================
# 部署
# =============================================================================


@router.post("/departments/preview", responses=ERROR_RESPONSES, summary="部署インポートのプレビュー")
async def preview_departments(
    file: UploadFile = File(...),
    options: Optional[str] = Form(None),
    user: UserContext = Depends(require_admin),
):
    try:
        rows = await read_upload_rows(file)
        preview = get_admin_import_service().preview_departments(
            user, rows, DepartmentImportOptions.from_dict(parse_options(options))
        )
        return {"status": "success", "preview": preview.to_dict()}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Department import preview error", user_id=user.user_id)
        raise internal_error()


@router.post("/departments", responses=ERROR_RESPONSES, summary="部署インポート")
async def import_departments(
    file: UploadFile = File(...),
    options: Optional[str] = Form(None),
    mode: str = Form(ImportMode.CREATE_AND_UPDATE),
    user: UserContext = Depends(require_admin),
):
    try:
        rows = await read_upload_rows(file)
        result = get_admin_import_service().import_departments(
            user, rows, DepartmentImportOptions.from_dict(parse_options(options)), mode
        )
        log_audit_event(
            logger=logger, action="import_departments",
            resource_type="department", resource_id="bulk",
            user_id=user.user_id, details={"created": result.created, "updated": result.updated, "mode": mode},
        )
        return {"status": "success", "result": result.to_dict()}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Department import error", user_id=user.user_id)
        raise internal_error()


# =============================================================================
# ユーザー
# =============================================================================


@router.post("/users/preview", responses=ERROR_RESPONSES, summary="ユーザーインポートのプレビュー")
async def preview_users(
    file: UploadFile = File(...),
    options: Optional[str] = Form(None),
    user: UserContext = Depends(require_admin),
):
    try:
        rows = await read_upload_rows(file)
        preview = get_admin_import_service().preview_users(
            user, rows, UserImportOptions.from_dict(parse_options(options))
        )
        return {"status": "success", "preview": preview.to_dict()}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("User import preview error", user_id=user.user_id)
        raise internal_error()


@router.post("/users", responses=ERROR_RESPONSES, summary="ユーザーインポート")
async def import_users(
    file: UploadFile = File(...),
    options: Optional[str] = Form(None),
    mode: str = Form(ImportMode.CREATE_ONLY),
    user: UserContext = Depends(require_admin),
):
    try:
        rows = await read_upload_rows(file)
        result = get_admin_import_service().import_users(
            user, rows, UserImportOptions.from_dict(parse_options(options)), mode
        )
        log_audit_event(
            logger=logger, action="import_users",
            resource_type="user", resource_id="bulk",
            user_id=user.user_id, details={"created": result.created, "updated": result.updated, "mode": mode},
        )
        return {"status": "success", "result": result.to_dict()}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("User import error", user_id=user.user_id)
        raise internal_error()
