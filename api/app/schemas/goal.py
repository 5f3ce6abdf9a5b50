"""
目標・コメントスキーマ
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class SupportRequirement(BaseModel):
    department: str = Field(..., description="支援部署")
    teams: List[str] = Field(default_factory=list, description="支援チーム（空なら部署全体）")
    notes: Optional[str] = None


class GoalCreateRequest(BaseModel):
    subject: str = Field(..., description="件名")
    description: str = Field(..., description="説明")
    department: str = Field(..., description="部署")
    goal_type: Optional[str] = Field(None, description="Personal / Team / Department / Company")
    priority: Optional[str] = Field(None, description="Low / Medium / High / Critical")
    teams: List[str] = Field(default_factory=list)
    start_date: Optional[str] = None
    target_date: Optional[str] = None
    target_metrics: Optional[str] = None
    success_criteria: Optional[str] = None
    progress_percentage: Optional[int] = Field(None, ge=0, le=100)
    assignee_ids: List[str] = Field(default_factory=list)
    support: List[SupportRequirement] = Field(default_factory=list)
    tasks: Optional[List[Dict[str, Any]]] = Field(None, description="初期タスク（省略時は PDCA 既定タスク）")


class GoalUpdateRequest(BaseModel):
    subject: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[str] = None
    target_date: Optional[str] = None
    adjusted_target_date: Optional[str] = None
    target_metrics: Optional[str] = None
    success_criteria: Optional[str] = None
    progress_percentage: Optional[int] = Field(None, ge=0, le=100)


class StatusChangeRequest(BaseModel):
    status: str = Field(..., description="遷移先ステータス")
    current_assignee_id: Optional[str] = None


class ProgressRequest(BaseModel):
    progress_percentage: int = Field(..., ge=0, le=100)


class AssigneesRequest(BaseModel):
    assignee_ids: List[str] = Field(..., description="担当者ユーザーID")


class AssigneeCompleteRequest(BaseModel):
    notes: Optional[str] = None


class SupportRequest(BaseModel):
    requirements: List[SupportRequirement]


class CommentCreateRequest(BaseModel):
    comment: str = Field(..., min_length=1)
    parent_id: Optional[str] = Field(None, description="返信先コメントID")
    is_private: bool = False
