"""
Admin API Schemas

ユーザー・部署・ワークフロー・AI 設定・エクスポート・通知スイープのリクエスト定義。
インポートは multipart（file + options の JSON 文字列）で受けるためスキーマを持たない。
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# =============================================================================
# ユーザー
# =============================================================================


class UserCreateRequest(BaseModel):
    email: str
    full_name: str = Field(..., min_length=1)
    password: str
    role: str = "Employee"
    department: Optional[str] = None
    team: Optional[str] = None
    skills: Optional[List[str]] = None
    is_active: bool = True


class RoleUpdateRequest(BaseModel):
    role: str = Field(..., description="Employee / Head / Admin")


class UserProfileUpdateRequest(BaseModel):
    full_name: Optional[str] = None
    skills: Optional[List[str]] = None
    is_active: Optional[bool] = None


# =============================================================================
# 部署
# =============================================================================


class DepartmentCreateRequest(BaseModel):
    department: str = Field(..., min_length=1)
    description: Optional[str] = None


class DepartmentUpdateRequest(BaseModel):
    description: str


class TeamCreateRequest(BaseModel):
    team: str = Field(..., min_length=1)
    description: Optional[str] = None


class TeamActiveRequest(BaseModel):
    is_active: bool


class RenameRequest(BaseModel):
    new_name: str = Field(..., min_length=1)


class AssignUserRequest(BaseModel):
    user_id: str
    department: str
    team: Optional[str] = None


class DepartmentPermissionsRequest(BaseModel):
    departments: List[str] = Field(default_factory=list)


# =============================================================================
# ワークフロー
# =============================================================================


class WorkflowRuleRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    rule_type: Optional[str] = None
    phase: Optional[str] = None
    configuration: Optional[Dict[str, Any]] = None
    is_active: Optional[bool] = None


class WorkflowConfigurationRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    transitions: Optional[Dict[str, List[str]]] = None
    role_permissions: Optional[Dict[str, Any]] = None
    status_colors: Optional[Dict[str, str]] = None
    status_icons: Optional[Dict[str, str]] = None


# =============================================================================
# AI
# =============================================================================


class AIConfigRequest(BaseModel):
    name: str
    description: Optional[str] = None
    ollama_url: str
    model_name: str
    system_prompt: Optional[str] = None
    temperature: Optional[float] = Field(None, description="0〜2（既定 0.7）")
    max_tokens: Optional[int] = Field(None, description="既定 1000")
    is_active: bool = False


class AIConnectionRequest(BaseModel):
    api_url: Optional[str] = None
    model: Optional[str] = None
    api_key: Optional[str] = None


class GoalAnalysisRequest(BaseModel):
    analysis_type: str = Field(
        ..., description="risk_assessment / optimization_suggestions / progress_review / task_breakdown / custom"
    )
    custom_prompt: Optional[str] = None
    config_id: Optional[str] = None


class MetaAnalysisRequest(BaseModel):
    analysis_ids: Optional[List[str]] = None


# =============================================================================
# エクスポート・通知
# =============================================================================


class GoalExportRequest(BaseModel):
    filters: Dict[str, Any] = Field(default_factory=dict)
    options: Dict[str, Any] = Field(default_factory=dict)


class FormatExportRequest(BaseModel):
    format: str = Field("xlsx", description="xlsx / csv / json")
    options: Dict[str, Any] = Field(default_factory=dict)


class DeadlineSweepRequest(BaseModel):
    days_ahead: int = Field(3, ge=0, le=60)
