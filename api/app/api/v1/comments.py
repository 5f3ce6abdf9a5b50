"""
Goal Comments API

コメントはスレッド構造で返す。非公開コメントは投稿者・目標オーナー・Admin のみ閲覧可。
"""

from fastapi import APIRouter, Depends, HTTPException, status

from lib.errors import GoalFlowError
from lib.goal_comment import get_goal_comment_service
from lib.logging import log_audit_event
from app.schemas.common import ERROR_RESPONSES
from app.schemas.goal import CommentCreateRequest

from .deps import UserContext, get_current_user, internal_error, logger, raise_http_error

router = APIRouter(tags=["comments"])


@router.get("/goals/{goal_id}/comments", responses=ERROR_RESPONSES, summary="コメント一覧")
async def list_comments(goal_id: str, user: UserContext = Depends(get_current_user)):
    try:
        comments = get_goal_comment_service().list_comments(user, goal_id)
        return {"status": "success", "comments": comments}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("List comments error", goal_id=goal_id)
        raise internal_error()


@router.post(
    "/goals/{goal_id}/comments",
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
    summary="コメント投稿",
)
async def add_comment(goal_id: str, body: CommentCreateRequest, user: UserContext = Depends(get_current_user)):
    try:
        comment = get_goal_comment_service().add_comment(
            user, goal_id, body.comment, body.parent_id, body.is_private
        )
        log_audit_event(
            logger=logger, action="add_comment",
            resource_type="goal_comment", resource_id=comment.get("id"),
            user_id=user.user_id, details={"goal_id": goal_id, "is_reply": bool(body.parent_id)},
        )
        return {"status": "success", "comment": comment}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Add comment error", goal_id=goal_id)
        raise internal_error()


@router.delete("/comments/{comment_id}", responses=ERROR_RESPONSES, summary="コメント削除")
async def delete_comment(comment_id: str, user: UserContext = Depends(get_current_user)):
    """返信スレッドごと削除する"""
    try:
        deleted_ids = get_goal_comment_service().delete_comment(user, comment_id)
        log_audit_event(
            logger=logger, action="delete_comment",
            resource_type="goal_comment", resource_id=comment_id,
            user_id=user.user_id, details={"deleted_count": len(deleted_ids)},
        )
        return {"status": "success", "deleted_ids": deleted_ids}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Delete comment error", comment_id=comment_id)
        raise internal_error()
