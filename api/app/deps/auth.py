"""api/app/deps/auth.py - JWT認証依存モジュール

Bearer token からユーザーコンテキストを取得する。
ログインで発行したトークンに role / dept / 権限付与部署を含めるため、
リクエストごとの DB 参照は行わない。
"""

import datetime
import os
from typing import List, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from lib.config import get_settings
from lib.logging import get_logger
from lib.permissions import ROLE_VALUES, Role, UserContext, is_admin

logger = get_logger(__name__)

# JWT設定
JWT_SECRET_ENV = "GOALFLOW_JWT_SECRET"
JWT_SECRET_ID = "goalflow-jwt-secret"
JWT_ALGORITHM = "HS256"

_bearer_scheme = HTTPBearer(auto_error=False)

# 遅延初期化キャッシュ（Cold Start後の環境変数設定に対応）
_cached_secret: Optional[str] = None


def _get_jwt_secret() -> str:
    """JWT秘密鍵を取得。環境変数→Secret Manager の優先順位。

    一度取得した秘密鍵はキャッシュする。
    """
    global _cached_secret
    if _cached_secret:
        return _cached_secret

    secret = os.getenv(JWT_SECRET_ENV, "")
    if secret:
        _cached_secret = secret
        return secret

    try:
        from lib.secrets import get_secret_cached
        secret = get_secret_cached(JWT_SECRET_ID)
    except Exception as e:
        logger.error("Failed to retrieve JWT secret", error=type(e).__name__)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="JWT secret key is not configured",
        )
    _cached_secret = secret
    return secret


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=message,
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_jwt(token: str) -> dict:
    """JWTトークンをデコード・検証する。

    Returns:
        dict: JWT claims (sub, org_id, role, dept, perms, name, email, exp, iat)

    Raises:
        HTTPException(401): トークンが無効・期限切れ・必須 claim 不足
    """
    secret = _get_jwt_secret()
    try:
        payload = jwt.decode(token, secret, algorithms=[JWT_ALGORITHM])
    except JWTError:
        raise _unauthorized("Invalid or expired token")

    if not payload.get("sub"):
        raise _unauthorized("Token missing required claim: sub")
    if not payload.get("org_id"):
        raise _unauthorized("Token missing required claim: org_id")
    if payload.get("role", Role.EMPLOYEE.value) not in ROLE_VALUES:
        raise _unauthorized("Token has invalid role")

    return payload


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> UserContext:
    """JWT Bearer tokenからユーザーコンテキストを取得する。

    Raises:
        HTTPException(401): トークンなし/無効/期限切れ
    """
    if credentials is None:
        raise _unauthorized("Authentication required")

    payload = decode_jwt(credentials.credentials)
    return UserContext(
        user_id=payload["sub"],
        organization_id=payload["org_id"],
        role=payload.get("role", Role.EMPLOYEE.value),
        department=payload.get("dept"),
        full_name=payload.get("name"),
        email=payload.get("email"),
        permitted_departments=list(payload.get("perms") or []),
    )


def require_admin(user: UserContext = Depends(get_current_user)) -> UserContext:
    """Admin ロールを要求する依存関数（/admin 配下の全ルート）"""
    if not is_admin(user):
        logger.warning("Admin access denied", user_id=user.user_id, role=user.role)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "status": "failed",
                "error_code": "INSUFFICIENT_PERMISSION",
                "error_message": "管理者権限が必要です",
            },
        )
    return user


def create_access_token(
    user_id: str,
    organization_id: str,
    role: str = Role.EMPLOYEE.value,
    department: Optional[str] = None,
    full_name: Optional[str] = None,
    email: Optional[str] = None,
    permitted_departments: Optional[List[str]] = None,
    expires_minutes: Optional[int] = None,
) -> str:
    """JWTアクセストークンを生成する。

    expires_minutes 省略時は JWT_EXPIRES_MINUTES。
    """
    if expires_minutes is None:
        expires_minutes = get_settings().JWT_EXPIRES_MINUTES
    now = datetime.datetime.now(datetime.timezone.utc)
    payload = {
        "sub": user_id,
        "org_id": organization_id,
        "role": role,
        "iat": now,
        "exp": now + datetime.timedelta(minutes=expires_minutes),
    }
    if department:
        payload["dept"] = department
    if full_name:
        payload["name"] = full_name
    if email:
        payload["email"] = email
    if permitted_departments:
        payload["perms"] = list(permitted_departments)

    return jwt.encode(payload, _get_jwt_secret(), algorithm=JWT_ALGORITHM)
