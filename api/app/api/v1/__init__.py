"""
API v1 Routes

目標・タスク・コメント・添付・通知・部署参照・ワークフロー設定・認証と、
/admin 配下の管理 API をまとめる。
"""

from fastapi import APIRouter

from . import (
    attachments,
    auth,
    comments,
    departments,
    goals,
    health,
    notifications,
    tasks,
    workflow,
)
from .admin import router as admin_router

router = APIRouter(prefix="/v1")
router.include_router(health.router)
router.include_router(auth.router)
router.include_router(goals.router)
router.include_router(tasks.router)
router.include_router(comments.router)
router.include_router(attachments.router)
router.include_router(notifications.router)
router.include_router(departments.router)
router.include_router(workflow.router)
router.include_router(admin_router)
