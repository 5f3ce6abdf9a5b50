"""
タスクスキーマ
"""

from typing import List, Optional

from pydantic import BaseModel, Field


class TaskCreateRequest(BaseModel):
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    priority: Optional[str] = None
    pdca_phase: Optional[str] = Field(None, description="省略時は目標の現在フェーズ")
    assigned_to: Optional[str] = Field(None, description="ユーザーID または unassigned")
    department: Optional[str] = None
    start_date: Optional[str] = None
    due_date: Optional[str] = None
    estimated_hours: Optional[float] = Field(None, ge=0)


class TaskBulkCreateRequest(BaseModel):
    tasks: List[TaskCreateRequest] = Field(..., min_length=1)


class TaskUpdateRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[str] = None
    status: Optional[str] = None
    pdca_phase: Optional[str] = None
    assigned_to: Optional[str] = None
    department: Optional[str] = None
    start_date: Optional[str] = None
    due_date: Optional[str] = None
    estimated_hours: Optional[float] = Field(None, ge=0)
    actual_hours: Optional[float] = Field(None, ge=0)
    completion_notes: Optional[str] = None


class TaskCompleteRequest(BaseModel):
    completion_notes: Optional[str] = None
    actual_hours: Optional[float] = Field(None, ge=0)
