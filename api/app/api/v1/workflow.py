"""
Workflow API

画面表示用に、有効なワークフロー設定（遷移・ロール権限・表示色・アイコン）を返す。
"""

from fastapi import APIRouter, Depends, HTTPException

from lib.errors import GoalFlowError
from lib.workflow import get_workflow_config_service
from app.schemas.common import ERROR_RESPONSES

from .deps import UserContext, get_current_user, internal_error, logger, raise_http_error

router = APIRouter(prefix="/workflow", tags=["workflow"])


@router.get("/configuration", responses=ERROR_RESPONSES, summary="有効なワークフロー設定")
async def get_active_configuration(user: UserContext = Depends(get_current_user)):
    try:
        config = get_workflow_config_service().get_active_configuration(user.organization_id)
        return {"status": "success", "configuration": config.to_dict()}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Get workflow configuration error", user_id=user.user_id)
        raise internal_error()
