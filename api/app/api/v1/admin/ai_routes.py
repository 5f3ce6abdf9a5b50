"""
Admin - AI Analysis

AI 接続設定の管理、接続確認、モデル一覧、目標分析、横断分析用テキストの生成。
AI 側の失敗は AIServiceError（502）として返す。
"""

from fastapi import APIRouter, Depends, HTTPException, status

from lib.errors import GoalFlowError
from lib.goal_analysis import get_goal_analysis_service
from app.schemas.admin import AIConfigRequest, AIConnectionRequest, GoalAnalysisRequest, MetaAnalysisRequest
from app.schemas.common import ERROR_RESPONSES

from .deps import (
    UserContext,
    internal_error,
    log_audit_event,
    logger,
    raise_http_error,
    require_admin,
)

router = APIRouter(prefix="/ai")


# =============================================================================
# 設定
# =============================================================================


@router.get("/configs", responses=ERROR_RESPONSES, summary="AI 設定一覧")
async def list_configs(user: UserContext = Depends(require_admin)):
    try:
        configs = get_goal_analysis_service().list_configs(user)
        return {"status": "success", "configs": [c.to_dict() for c in configs]}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("List AI configs error", user_id=user.user_id)
        raise internal_error()


@router.post("/configs", status_code=status.HTTP_201_CREATED, responses=ERROR_RESPONSES, summary="AI 設定作成")
async def create_config(body: AIConfigRequest, user: UserContext = Depends(require_admin)):
    try:
        config = get_goal_analysis_service().save_config(user, body.model_dump())
        log_audit_event(
            logger=logger, action="create_ai_config",
            resource_type="ai_configuration", resource_id=config.id,
            user_id=user.user_id, details={"is_active": config.is_active},
        )
        return {"status": "success", "config": config.to_dict()}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Create AI config error", user_id=user.user_id)
        raise internal_error()


@router.put("/configs/{config_id}", responses=ERROR_RESPONSES, summary="AI 設定更新")
async def update_config(config_id: str, body: AIConfigRequest, user: UserContext = Depends(require_admin)):
    try:
        config = get_goal_analysis_service().save_config(user, body.model_dump(), config_id=config_id)
        log_audit_event(
            logger=logger, action="update_ai_config",
            resource_type="ai_configuration", resource_id=config_id,
            user_id=user.user_id, details={"is_active": config.is_active},
        )
        return {"status": "success", "config": config.to_dict()}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Update AI config error", config_id=config_id)
        raise internal_error()


@router.delete("/configs/{config_id}", responses=ERROR_RESPONSES, summary="AI 設定削除")
async def delete_config(config_id: str, user: UserContext = Depends(require_admin)):
    try:
        get_goal_analysis_service().delete_config(user, config_id)
        log_audit_event(
            logger=logger, action="delete_ai_config",
            resource_type="ai_configuration", resource_id=config_id,
            user_id=user.user_id,
        )
        return {"status": "success"}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Delete AI config error", config_id=config_id)
        raise internal_error()


# =============================================================================
# 接続確認
# =============================================================================


@router.post("/test-connection", responses=ERROR_RESPONSES, summary="接続確認")
async def test_connection(body: AIConnectionRequest, user: UserContext = Depends(require_admin)):
    """失敗時も 200 で success=false と error_code を返す"""
    try:
        result = await get_goal_analysis_service().test_connection(user, body.model_dump(exclude_none=True))
        return {"status": "success", **result}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("AI test connection error", user_id=user.user_id)
        raise internal_error()


@router.post("/models", responses=ERROR_RESPONSES, summary="モデル一覧")
async def list_models(body: AIConnectionRequest, user: UserContext = Depends(require_admin)):
    try:
        models = await get_goal_analysis_service().list_models(user, body.model_dump(exclude_none=True))
        return {"status": "success", "models": models}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("AI list models error", user_id=user.user_id)
        raise internal_error()


# =============================================================================
# 分析
# =============================================================================


@router.get("/goals", responses=ERROR_RESPONSES, summary="分析状況付き目標一覧")
async def list_goals_with_analysis(user: UserContext = Depends(require_admin)):
    try:
        result = get_goal_analysis_service().list_goals_with_analysis(user)
        return {"status": "success", **result}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("List goals with analysis error", user_id=user.user_id)
        raise internal_error()


@router.post("/goals/{goal_id}/analyze", status_code=status.HTTP_201_CREATED, responses=ERROR_RESPONSES, summary="目標分析")
async def analyze_goal(goal_id: str, body: GoalAnalysisRequest, user: UserContext = Depends(require_admin)):
    try:
        analysis = await get_goal_analysis_service().analyze_goal(
            user, goal_id, body.analysis_type, body.custom_prompt, body.config_id
        )
        log_audit_event(
            logger=logger, action="analyze_goal",
            resource_type="goal", resource_id=goal_id,
            user_id=user.user_id, details={"analysis_type": body.analysis_type},
        )
        return {"status": "success", "analysis": analysis}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Analyze goal error", goal_id=goal_id)
        raise internal_error()


@router.post("/meta-analysis", responses=ERROR_RESPONSES, summary="横断分析用テキスト")
async def build_meta_analysis(body: MetaAnalysisRequest, user: UserContext = Depends(require_admin)):
    try:
        text = get_goal_analysis_service().build_meta_analysis(user, body.analysis_ids)
        return {"status": "success", "content": text}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Meta analysis error", user_id=user.user_id)
        raise internal_error()
