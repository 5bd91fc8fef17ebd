from pydantic import BaseModel
from datetime import datetime
from typing import Dict, List, Optional

class SyncLogResponse(BaseModel):
    id: int
    sync_type: str
    status: str
    items_processed: int
    errors: Optional[List[Dict]]
    started_at: Optional[datetime]
    completed_at: Optional[datetime]

    model_config = {"from_attributes": True}

class SyncRunResponse(BaseModel):
    projects: int
    tasks: int
    skipped: int
    users: int
