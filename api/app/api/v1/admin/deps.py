"""
Admin - Shared Dependencies

全adminルートファイルで共有する依存関数・ヘルパーを集約。
/admin 配下は全て Admin ロール必須（require_admin）。
"""

import json
import urllib.parse
from typing import Any, Dict, List, Optional

from fastapi import HTTPException, UploadFile, status
from fastapi.responses import StreamingResponse

from lib.excel_utils import read_rows
from lib.logging import get_logger, log_audit_event
from app.deps.auth import require_admin

from ..deps import UserContext, internal_error, raise_http_error

logger = get_logger(__name__)

__all__ = [
    "UserContext",
    "file_response",
    "internal_error",
    "log_audit_event",
    "logger",
    "parse_options",
    "raise_http_error",
    "read_upload_rows",
    "require_admin",
]


def _bad_request(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={
            "status": "failed",
            "error_code": "VALIDATION_ERROR",
            "error_message": message,
        },
    )


def parse_options(raw: Optional[str]) -> Dict[str, Any]:
    """multipart の options フィールド（JSON 文字列）を dict に変換"""
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except ValueError:
        raise _bad_request("options must be a JSON object")
    if not isinstance(value, dict):
        raise _bad_request("options must be a JSON object")
    return value


async def read_upload_rows(file: UploadFile) -> List[Dict[str, str]]:
    """アップロードされた CSV / XLSX を行 dict のリストに変換"""
    content = await file.read()
    if not content:
        raise _bad_request("空のファイルはアップロードできません")
    return read_rows(content, file.filename or "")


def file_response(content: bytes, filename: str, content_type: str) -> StreamingResponse:
    """ダウンロード用レスポンス（ファイル名は RFC 5987 形式でエンコード）"""
    safe_name = filename.replace('"', "").replace("\n", "").replace("\r", "")
    encoded_name = urllib.parse.quote(safe_name, safe="")
    return StreamingResponse(
        iter([content]),
        media_type=content_type,
        headers={
            "Content-Disposition": f"attachment; filename*=UTF-8''{encoded_name}",
        },
    )
