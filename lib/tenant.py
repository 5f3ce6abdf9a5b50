"""
テナントコンテキスト

リクエスト中の organization_id を ContextVar に保持する。
api/main.py のミドルウェアが JWT の org_id から設定し、構造化ログが参照する。
サービス層のクエリは ContextVar ではなく UserContext.organization_id を明示的に渡す。

使用例:
    from lib.tenant import TenantContext, get_current_tenant

    with TenantContext("org_acme"):
        get_current_tenant()  # "org_acme"
"""

from contextvars import ContextVar, Token
from typing import Optional

DEFAULT_TENANT_ID = "org_default"

_organization_id: ContextVar[Optional[str]] = ContextVar("organization_id", default=None)


class TenantContext:
    """with / async with の間だけ現在の organization_id を差し替える"""

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        self._token: Optional[Token] = None

    def __enter__(self) -> "TenantContext":
        self._token = _organization_id.set(self.tenant_id)
        return self

    def __exit__(self, *exc_info) -> bool:
        if self._token is not None:
            _organization_id.reset(self._token)
            self._token = None
        return False

    async def __aenter__(self) -> "TenantContext":
        return self.__enter__()

    async def __aexit__(self, *exc_info) -> bool:
        return self.__exit__(*exc_info)


def get_current_tenant() -> Optional[str]:
    return _organization_id.get()


def get_current_or_default_tenant() -> str:
    return get_current_tenant() or DEFAULT_TENANT_ID
