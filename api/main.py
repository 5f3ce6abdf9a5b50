"""
GoalFlow API - FastAPI Entry Point

PDCA 目標管理 API

使用方法（ローカル開発）:
    cd api && uvicorn main:app --reload --port 8080

使用方法（Cloud Run）:
    gunicorn main:app -k uvicorn.workers.UvicornWorker
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
import time

from lib.config import get_settings
from lib.db import close_all_connections
from lib.errors import GoalFlowError
from lib.logging import get_logger, log_api_request
from lib.tenant import TenantContext, get_current_or_default_tenant
from app.api.v1 import router as v1_router
from app.api.v1.health import API_VERSION
from app.limiter import limiter

logger = get_logger(__name__)
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """アプリケーションのライフサイクル管理"""
    logger.info("GoalFlow API starting up...", environment=settings.ENVIRONMENT)
    yield
    close_all_connections()
    logger.info("GoalFlow API shutting down...")


app = FastAPI(
    title="GoalFlow API",
    description="PDCA ワークフローによる目標・タスク管理 API",
    version=API_VERSION,
    lifespan=lifespan,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
)

# レート制限（slowapi）
# SlowAPIMiddleware が全ルートに default_limits=["100/minute"] を適用
# 認証系エンドポイントは auth.py で @limiter.limit("10/minute") を追加
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

# CORS設定
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_tenant_context(request: Request, call_next):
    """リクエストにテナントコンテキストを設定（JWT優先）"""
    tenant_id = None

    # JWT Bearer tokenからorg_idを取得（認証エラーはルートハンドラで処理）
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        try:
            from app.deps.auth import decode_jwt
            payload = decode_jwt(auth_header[7:])
            tenant_id = payload.get("org_id")
        except Exception as e:
            logger.debug("JWT decode in tenant middleware failed", error=type(e).__name__)

    # フォールバック: ヘッダー → デフォルト
    if not tenant_id:
        tenant_id = request.headers.get("X-Tenant-ID") or get_current_or_default_tenant()

    with TenantContext(tenant_id):
        response = await call_next(request)

    return response


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """リクエストログ"""
    start_time = time.time()

    response = await call_next(request)

    log_api_request(
        logger,
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round((time.time() - start_time) * 1000, 2),
    )
    return response


@app.exception_handler(GoalFlowError)
async def domain_exception_handler(request: Request, exc: GoalFlowError):
    """ルートで捕捉されなかったドメイン例外は http_status をそのまま返す"""
    logger.warning(
        "Unhandled domain error",
        path=request.url.path,
        error_code=exc.error_code,
    )
    return JSONResponse(
        status_code=exc.http_status,
        content={
            "detail": {
                "status": "failed",
                "error_code": exc.error_code,
                "error_message": exc.message,
            }
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """グローバル例外ハンドラー"""
    logger.error(
        f"Unhandled exception: {type(exc).__name__}",
        exc_info=True,
        path=request.url.path,
    )
    return JSONResponse(
        status_code=500,
        content={
            "status": "failed",
            "error_code": "INTERNAL_ERROR",
            "error_message": "内部エラーが発生しました",
        },
    )


# API v1 ルーターを登録
app.include_router(v1_router, prefix="/api")


@app.get("/")
async def root():
    """ルートエンドポイント"""
    return {
        "name": "GoalFlow API",
        "version": API_VERSION,
        "status": "running",
    }
