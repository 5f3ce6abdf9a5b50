"""
Admin - Notifications

期限通知のスイープ（Cloud Scheduler からの定期実行を想定）。
"""

from fastapi import APIRouter, Depends, HTTPException

from lib.errors import GoalFlowError
from lib.goal_notification import get_notification_service
from app.schemas.admin import DeadlineSweepRequest
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


@router.post("/notifications/check-deadlines", responses=ERROR_RESPONSES, summary="期限通知の作成")
async def check_deadlines(body: DeadlineSweepRequest, user: UserContext = Depends(require_admin)):
    try:
        created = get_notification_service().check_deadlines(user.organization_id, body.days_ahead)
        log_audit_event(
            logger=logger, action="check_deadlines",
            resource_type="notification", resource_id="deadline",
            user_id=user.user_id, details={"created": created, "days_ahead": body.days_ahead},
        )
        return {"status": "success", "created": created}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Deadline sweep error", user_id=user.user_id)
        raise internal_error()
