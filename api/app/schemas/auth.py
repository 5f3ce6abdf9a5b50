"""
認証スキーマ
"""

from typing import List, Optional

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    email: str = Field(..., description="メールアドレス")
    password: str = Field(..., min_length=1, description="パスワード")


class RegisterRequest(BaseModel):
    email: str = Field(..., description="メールアドレス")
    password: str = Field(..., description="パスワード（6文字以上）")
    full_name: str = Field(..., min_length=1, description="氏名")
    department: Optional[str] = Field(None, description="所属部署")
    team: Optional[str] = Field(None, description="所属チーム")
    skills: Optional[List[str]] = Field(None, description="スキル")


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., description="現在のパスワード")
    new_password: str = Field(..., description="新しいパスワード（6文字以上）")


class TokenResponse(BaseModel):
    status: str = Field("success", description="ステータス")
    access_token: str = Field(..., description="JWT アクセストークン")
    token_type: str = Field("bearer", description="トークンタイプ")
    expires_in: int = Field(..., description="有効期限（秒）")
