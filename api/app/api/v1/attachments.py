"""
Goal Attachments API

multipart でアップロードし Cloud Storage に保存する。
ダウンロードは v4 署名付き URL を返す。
"""

import asyncio
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status

from lib.attachment import get_attachment_service
from lib.errors import GoalFlowError
from lib.logging import log_audit_event
from app.schemas.common import ERROR_RESPONSES

from .deps import UserContext, get_current_user, internal_error, logger, raise_http_error

router = APIRouter(tags=["attachments"])


@router.get("/goals/{goal_id}/attachments", responses=ERROR_RESPONSES, summary="添付ファイル一覧")
async def list_attachments(goal_id: str, user: UserContext = Depends(get_current_user)):
    try:
        attachments = get_attachment_service().list_attachments(user, goal_id)
        return {"status": "success", "attachments": [a.to_dict() for a in attachments]}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("List attachments error", goal_id=goal_id)
        raise internal_error()


@router.post(
    "/goals/{goal_id}/attachments",
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
    summary="添付ファイルアップロード",
)
async def upload_attachment(
    goal_id: str,
    file: UploadFile = File(..., description="アップロードするファイル"),
    comment_id: Optional[str] = Form(None, description="紐づけるコメントID"),
    user: UserContext = Depends(get_current_user),
):
    filename = file.filename or "unknown"
    content_type = file.content_type or ""
    content = await file.read()
    try:
        # Cloud Storage クライアントは同期I/Oのため to_thread 経由
        attachment = await asyncio.to_thread(
            get_attachment_service().upload,
            user, goal_id, filename, content, content_type, comment_id,
        )
        log_audit_event(
            logger=logger, action="upload_attachment",
            resource_type="goal_attachment", resource_id=attachment.id,
            user_id=user.user_id, details={"goal_id": goal_id, "file_size": len(content)},
        )
        return {"status": "success", "attachment": attachment.to_dict()}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Upload attachment error", goal_id=goal_id)
        raise internal_error()


@router.get("/attachments/{attachment_id}/download", responses=ERROR_RESPONSES, summary="ダウンロードURL発行")
async def get_download_url(attachment_id: str, user: UserContext = Depends(get_current_user)):
    try:
        result = await asyncio.to_thread(get_attachment_service().get_download_url, user, attachment_id)
        return {"status": "success", **result}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Attachment download URL error", attachment_id=attachment_id)
        raise internal_error()


@router.delete("/attachments/{attachment_id}", responses=ERROR_RESPONSES, summary="添付ファイル削除")
async def delete_attachment(attachment_id: str, user: UserContext = Depends(get_current_user)):
    try:
        get_attachment_service().delete(user, attachment_id)
        log_audit_event(
            logger=logger, action="delete_attachment",
            resource_type="goal_attachment", resource_id=attachment_id,
            user_id=user.user_id,
        )
        return {"status": "success"}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Delete attachment error", attachment_id=attachment_id)
        raise internal_error()
