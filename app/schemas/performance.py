from pydantic import BaseModel
from datetime import date, datetime
from typing import Dict, List, Optional

class ScoreResponse(BaseModel):
    id: int
    user_id: int
    date: date
    score_value: float
    components: Dict
    created_at: Optional[datetime]

    model_config = {"from_attributes": True}

class ScoreHistoryResponse(BaseModel):
    user_id: int
    latest: Optional[ScoreResponse]
    history: List[ScoreResponse]

class ScorePreviewResponse(BaseModel):
    user_id: int
    date: date
    score_value: float
    components: Dict

class ScoreGenerationResponse(BaseModel):
    date: str
    generated: int
    skipped: int
    failed: List[int]
