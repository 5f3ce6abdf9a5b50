"""
共通スキーマ
"""

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """API エラーレスポンス（HTTPException の detail）"""

    status: str = Field("failed", description="ステータス")
    error_code: str = Field(..., description="エラーコード")
    error_message: str = Field(..., description="エラーメッセージ")


ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "バリデーションエラー"},
    403: {"model": ErrorResponse, "description": "権限エラー"},
    404: {"model": ErrorResponse, "description": "対象が存在しない"},
    409: {"model": ErrorResponse, "description": "状態の競合"},
    500: {"model": ErrorResponse, "description": "サーバーエラー"},
}
