"""
Health Check Endpoint

ヘルスチェック用のエンドポイント
"""

from fastapi import APIRouter

from lib.db import health_check as db_health_check
from app.limiter import limiter

router = APIRouter(tags=["health"])

API_VERSION = "1.0.0"


@router.get("/health")
@limiter.exempt
async def health_check():
    """
    ヘルスチェック

    Returns:
        status: サービス状態
        db: データベース接続状態
    """
    return {
        "status": "healthy",
        "db": "healthy" if db_health_check() else "unhealthy",
        "version": API_VERSION,
    }
