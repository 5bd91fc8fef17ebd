from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List

class TaskResponse(BaseModel):
    id: int
    project_id: int
    title: str
    description: Optional[str]
    assignee_id: int
    status: str
    priority: str
    estimated_hours: Optional[float]
    due_date: Optional[datetime]
    completed_at: Optional[datetime]
    progress_percentage: int
    manager_validated_percentage: Optional[int]
    effective_percentage: int
    validated_by: Optional[int]
    validated_at: Optional[datetime]
    validation_comment: Optional[str]
    created_at: Optional[datetime]

    model_config = {"from_attributes": True}

class OwnedTaskResponse(BaseModel):
    task: TaskResponse
    share_percentage: int

class TaskValidationRequest(BaseModel):
    # Range and comment length are enforced by the validation service so the
    # caller gets the precise reason
    new_percentage: float
    validation_comment: str

class TaskValidationResponse(BaseModel):
    task_id: int
    old_percentage: int
    new_percentage: int

class ValidationHistoryItem(BaseModel):
    id: int
    task_id: int
    old_percentage: int
    new_percentage: int
    validated_by: Optional[int]
    validator_name: Optional[str]
    validator_email: Optional[str]
    validation_comment: str
    created_at: Optional[datetime]

class ImportResult(BaseModel):
    imported: int
    skipped: int
    users: int
