"""
Notifications API

ログインユーザー宛の未読通知。既読化は通知の削除として扱う。
"""

from fastapi import APIRouter, Depends, HTTPException, Query

from lib.errors import GoalFlowError
from lib.goal_notification import DEFAULT_LIST_LIMIT, get_notification_service
from app.schemas.common import ERROR_RESPONSES

from .deps import UserContext, get_current_user, internal_error, logger, raise_http_error

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", responses=ERROR_RESPONSES, summary="未読通知一覧")
async def list_notifications(
    user: UserContext = Depends(get_current_user),
    limit: int = Query(DEFAULT_LIST_LIMIT, ge=1, le=200),
):
    try:
        notifications = get_notification_service().list_unread(user, limit)
        return {"status": "success", "notifications": [n.to_dict() for n in notifications]}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("List notifications error", user_id=user.user_id)
        raise internal_error()


@router.get("/unread-count", responses=ERROR_RESPONSES, summary="未読件数")
async def get_unread_count(user: UserContext = Depends(get_current_user)):
    try:
        return {"status": "success", "count": get_notification_service().unread_count(user)}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Unread count error", user_id=user.user_id)
        raise internal_error()


@router.post("/read-all", responses=ERROR_RESPONSES, summary="全件既読")
async def mark_all_read(user: UserContext = Depends(get_current_user)):
    try:
        return {"status": "success", "count": get_notification_service().mark_all_read(user)}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Mark all read error", user_id=user.user_id)
        raise internal_error()


@router.post("/{notification_id}/read", responses=ERROR_RESPONSES, summary="既読")
async def mark_read(notification_id: str, user: UserContext = Depends(get_current_user)):
    try:
        if not get_notification_service().mark_read(user, notification_id):
            raise HTTPException(
                status_code=404,
                detail={
                    "status": "failed",
                    "error_code": "NOT_FOUND",
                    "error_message": "通知が見つかりません",
                },
            )
        return {"status": "success"}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Mark read error", notification_id=notification_id)
        raise internal_error()
