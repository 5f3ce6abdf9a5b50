"""
Admin API

管理者向けエンドポイント（ユーザー・部署・ワークフロー・AI 分析・一括取込・出力・通知）。

セキュリティ:
    - 全エンドポイントに JWT 認証と Admin ロールが必須
    - 全クエリに organization_id フィルタ
    - SQL は全てパラメータ化
"""

from fastapi import APIRouter

from .users_routes import router as users_router
from .departments_routes import router as departments_router
from .workflow_routes import router as workflow_router
from .ai_routes import router as ai_router
from .import_routes import router as import_router
from .export_routes import router as export_router
from .notifications_routes import router as notifications_router

router = APIRouter(prefix="/admin", tags=["admin"])

# Include all sub-routers (no tags — routes already have full paths)
router.include_router(users_router)
router.include_router(departments_router)
router.include_router(workflow_router)
router.include_router(ai_router)
router.include_router(import_router)
router.include_router(export_router)
router.include_router(notifications_router)
