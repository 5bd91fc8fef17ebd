from pydantic import BaseModel, Field
from datetime import datetime
from typing import Dict, List, Optional

class SubscriptionSettings(BaseModel):
    daily_enabled: bool = False
    weekly_enabled: bool = False

class DeliveryLogItem(BaseModel):
    id: int
    subscription_id: int
    recipient_email: str
    report_type: str
    status: str
    message_id: Optional[str]
    error_message: Optional[str]
    sent_at: Optional[datetime]

    model_config = {"from_attributes": True}

class DailySchedule(BaseModel):
    hour: int = Field(..., ge=0, le=23)
    minute: int = Field(..., ge=0, le=59)

class WeeklySchedule(DailySchedule):
    day: int = Field(..., ge=0, le=6, description="0 = Sunday")

class ReportSchedule(BaseModel):
    daily: DailySchedule
    weekly: WeeklySchedule

class UserPerformance(BaseModel):
    score: float
    previous_score: float
    trend: str
    components: Dict
    tasks_completed: int
    tasks_total: int
    feedback_count: int
    avg_feedback_rating: float

class TopPerformer(BaseModel):
    user_id: int
    name: str
    department: Optional[str]
    score: float
    trend: str

class TeamPerformance(BaseModel):
    top_performers: List[TopPerformer]
    average_score: float
    total_employees: int
    improvement_rate: float

class ReportResponse(BaseModel):
    report_type: str
    date: str
    user: Dict
    performance: Optional[UserPerformance] = None
    team: Optional[TeamPerformance] = None

class ReportSendResponse(BaseModel):
    report_type: str
    date: str
    sent: int
    failed: int
