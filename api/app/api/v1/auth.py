"""
Authentication Endpoints

メール + パスワードでのログイン（JWT 発行）、登録、ユーザー情報、パスワード変更。
組織はテナントミドルウェアが決めたテナント（X-Tenant-ID / 既定）を使う。
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status

from lib.config import get_settings
from lib.department import get_department_service
from lib.errors import GoalFlowError
from lib.logging import log_audit_event
from lib.permissions import Role
from lib.tenant import get_current_or_default_tenant
from lib.user import get_user_service
from app.deps.auth import create_access_token
from app.limiter import AUTH_RATE_LIMIT, limiter
from app.schemas.auth import ChangePasswordRequest, LoginRequest, RegisterRequest, TokenResponse
from app.schemas.common import ERROR_RESPONSES, ErrorResponse

from .deps import UserContext, get_current_user, internal_error, logger, raise_http_error

router = APIRouter(prefix="/auth", tags=["auth"])


def _issue_token(user) -> TokenResponse:
    expires_minutes = get_settings().JWT_EXPIRES_MINUTES
    permitted = get_department_service().permitted_departments(user.organization_id, user.id)
    token = create_access_token(
        user_id=user.id,
        organization_id=user.organization_id,
        role=user.role,
        department=user.department,
        full_name=user.full_name,
        email=user.email,
        permitted_departments=permitted,
        expires_minutes=expires_minutes,
    )
    return TokenResponse(access_token=token, expires_in=expires_minutes * 60)


@router.post(
    "/login",
    response_model=TokenResponse,
    responses={401: {"model": ErrorResponse, "description": "認証失敗"}},
    summary="ログイン",
)
@limiter.limit(AUTH_RATE_LIMIT)
async def login(request: Request, body: LoginRequest):
    """メールアドレスとパスワードを検証して JWT を発行"""
    organization_id = get_current_or_default_tenant()
    try:
        user = get_user_service().authenticate(organization_id, body.email, body.password)
        if user is None:
            logger.warning("Login failed", organization_id=organization_id)
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail={
                    "status": "failed",
                    "error_code": "INVALID_CREDENTIALS",
                    "error_message": "メールアドレスまたはパスワードが正しくありません",
                },
            )
        response = _issue_token(user)
        log_audit_event(
            logger=logger, action="login",
            resource_type="user", resource_id=user.id,
            user_id=user.id,
        )
        return response
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Login error", organization_id=organization_id)
        raise internal_error()


@router.post(
    "/register",
    response_model=TokenResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
    summary="ユーザー登録",
)
@limiter.limit(AUTH_RATE_LIMIT)
async def register(request: Request, body: RegisterRequest):
    """Employee として登録し、そのままログイン状態のトークンを返す"""
    organization_id = get_current_or_default_tenant()
    try:
        user = get_user_service().create_user(
            organization_id=organization_id,
            email=body.email,
            full_name=body.full_name,
            password=body.password,
            role=Role.EMPLOYEE.value,
            department=body.department,
            team=body.team,
            skills=body.skills,
        )
        log_audit_event(
            logger=logger, action="register",
            resource_type="user", resource_id=user.id,
            user_id=user.id,
        )
        return _issue_token(user)
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Register error", organization_id=organization_id)
        raise internal_error()


@router.get("/me", responses=ERROR_RESPONSES, summary="ログインユーザー情報")
async def get_me(user: UserContext = Depends(get_current_user)):
    try:
        record = get_user_service().get_user(user.organization_id, user.user_id)
        if record is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={
                    "status": "failed",
                    "error_code": "USER_NOT_FOUND",
                    "error_message": "ユーザーが見つかりません",
                },
            )
        return {
            "status": "success",
            "user": record.to_dict(),
            "permitted_departments": user.permitted_departments,
        }
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Get me error", user_id=user.user_id)
        raise internal_error()


@router.post("/change-password", responses=ERROR_RESPONSES, summary="パスワード変更")
@limiter.limit(AUTH_RATE_LIMIT)
async def change_password(
    request: Request,
    body: ChangePasswordRequest,
    user: UserContext = Depends(get_current_user),
):
    try:
        get_user_service().change_password(user, body.current_password, body.new_password)
        log_audit_event(
            logger=logger, action="change_password",
            resource_type="user", resource_id=user.user_id,
            user_id=user.user_id,
        )
        return {"status": "success"}
    except GoalFlowError as e:
        raise_http_error(e)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Change password error", user_id=user.user_id)
        raise internal_error()
