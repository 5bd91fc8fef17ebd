from pydantic import BaseModel, Field, field_validator
from datetime import datetime
from typing import List, Literal, Optional

FeedbackCategory = Literal["communication", "delivery", "collaboration"]

class FeedbackCreate(BaseModel):
    to_user_id: int
    rating: int = Field(..., ge=1, le=5)
    category: List[FeedbackCategory] = Field(..., min_length=1)
    comment: str = Field(..., min_length=10, max_length=500)

    @field_validator("comment", mode="before")
    @classmethod
    def strip_comment(cls, value):
        # Length limits apply to the trimmed text
        return value.strip() if isinstance(value, str) else value

class FeedbackResponse(BaseModel):
    id: int
    from_user_id: int
    to_user_id: int
    rating: int
    category: List[str]
    comment: str
    created_at: Optional[datetime]

    model_config = {"from_attributes": True}

class ReceivedFeedbackItem(FeedbackResponse):
    from_user_name: Optional[str] = None
    from_user_email: Optional[str] = None
