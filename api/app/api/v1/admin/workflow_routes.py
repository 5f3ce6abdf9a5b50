"""
Admin - Workflow

ワークフロールールと遷移設定（ステータス遷移・ロール権限・表示色・アイコン）。
有効な設定は組織に 1 件。無い場合は組み込みの PDCA 既定設定を使う。
"""

from fastapi import APIRouter, Depends, HTTPException, status

from lib.errors import GoalFlowError
from lib.workflow import get_workflow_config_service
from app.schemas.admin import WorkflowConfigurationRequest, WorkflowRuleRequest
from app.schemas.common import ERROR_RESPONSES

from .deps import (
    UserContext,
    internal_error,
    log_audit_event,
    logger,
    raise_http_error,
    require_admin,
)

router = APIRouter(prefix="/workflow")


# =============================================================================
# ルール
# =============================================================================


@router.get("/rules", responses=ERROR_RESPONSES, summary="ルール一覧")
async def list_rules(user: UserContext = Depends(require_admin)):
    try:
        rules = get_workflow_config_service().list_rules(user)
        return {"status": "success", "rules": [r.to_dict() for r in rules]}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("List workflow rules error", user_id=user.user_id)
        raise internal_error()


@router.post("/rules", status_code=status.HTTP_201_CREATED, responses=ERROR_RESPONSES, summary="ルール作成")
async def create_rule(body: WorkflowRuleRequest, user: UserContext = Depends(require_admin)):
    try:
        rule = get_workflow_config_service().create_rule(user, body.model_dump(exclude_none=True))
        log_audit_event(
            logger=logger, action="create_workflow_rule",
            resource_type="workflow_rule", resource_id=rule.id,
            user_id=user.user_id,
        )
        return {"status": "success", "rule": rule.to_dict()}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Create workflow rule error", user_id=user.user_id)
        raise internal_error()


@router.patch("/rules/{rule_id}", responses=ERROR_RESPONSES, summary="ルール更新")
async def update_rule(rule_id: str, body: WorkflowRuleRequest, user: UserContext = Depends(require_admin)):
    try:
        rule = get_workflow_config_service().update_rule(user, rule_id, body.model_dump(exclude_none=True))
        log_audit_event(
            logger=logger, action="update_workflow_rule",
            resource_type="workflow_rule", resource_id=rule_id,
            user_id=user.user_id,
        )
        return {"status": "success", "rule": rule.to_dict()}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Update workflow rule error", rule_id=rule_id)
        raise internal_error()


@router.delete("/rules/{rule_id}", responses=ERROR_RESPONSES, summary="ルール削除")
async def delete_rule(rule_id: str, user: UserContext = Depends(require_admin)):
    try:
        get_workflow_config_service().delete_rule(user, rule_id)
        log_audit_event(
            logger=logger, action="delete_workflow_rule",
            resource_type="workflow_rule", resource_id=rule_id,
            user_id=user.user_id,
        )
        return {"status": "success"}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Delete workflow rule error", rule_id=rule_id)
        raise internal_error()


# =============================================================================
# 遷移設定
# =============================================================================


@router.get("/configurations", responses=ERROR_RESPONSES, summary="設定一覧")
async def list_configurations(user: UserContext = Depends(require_admin)):
    try:
        configs = get_workflow_config_service().list_configurations(user)
        return {"status": "success", "configurations": [c.to_dict() for c in configs]}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("List workflow configurations error", user_id=user.user_id)
        raise internal_error()


@router.post("/configurations", status_code=status.HTTP_201_CREATED, responses=ERROR_RESPONSES, summary="設定作成")
async def create_configuration(body: WorkflowConfigurationRequest, user: UserContext = Depends(require_admin)):
    try:
        config = get_workflow_config_service().create_configuration(user, body.model_dump(exclude_none=True))
        log_audit_event(
            logger=logger, action="create_workflow_configuration",
            resource_type="workflow_configuration", resource_id=config.id,
            user_id=user.user_id,
        )
        return {"status": "success", "configuration": config.to_dict()}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Create workflow configuration error", user_id=user.user_id)
        raise internal_error()


@router.patch("/configurations/{config_id}", responses=ERROR_RESPONSES, summary="設定更新")
async def update_configuration(
    config_id: str,
    body: WorkflowConfigurationRequest,
    user: UserContext = Depends(require_admin),
):
    try:
        config = get_workflow_config_service().update_configuration(
            user, config_id, body.model_dump(exclude_none=True)
        )
        log_audit_event(
            logger=logger, action="update_workflow_configuration",
            resource_type="workflow_configuration", resource_id=config_id,
            user_id=user.user_id,
        )
        return {"status": "success", "configuration": config.to_dict()}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Update workflow configuration error", config_id=config_id)
        raise internal_error()


@router.post("/configurations/{config_id}/activate", responses=ERROR_RESPONSES, summary="設定の有効化")
async def activate_configuration(config_id: str, user: UserContext = Depends(require_admin)):
    """他の設定は全て無効になる"""
    try:
        get_workflow_config_service().activate_configuration(user, config_id)
        log_audit_event(
            logger=logger, action="activate_workflow_configuration",
            resource_type="workflow_configuration", resource_id=config_id,
            user_id=user.user_id,
        )
        return {"status": "success"}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Activate workflow configuration error", config_id=config_id)
        raise internal_error()


@router.delete("/configurations/{config_id}", responses=ERROR_RESPONSES, summary="設定削除")
async def delete_configuration(config_id: str, user: UserContext = Depends(require_admin)):
    try:
        get_workflow_config_service().delete_configuration(user, config_id)
        log_audit_event(
            logger=logger, action="delete_workflow_configuration",
            resource_type="workflow_configuration", resource_id=config_id,
            user_id=user.user_id,
        )
        return {"status": "success"}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Delete workflow configuration error", config_id=config_id)
        raise internal_error()
