from pydantic import BaseModel, Field, model_validator
from typing import Dict

class ScoringWeights(BaseModel):
    taskCompletion: int = Field(..., ge=0, le=100)
    timeliness: int = Field(..., ge=0, le=100)
    efficiency: int = Field(..., ge=0, le=100)
    progressQuality: int = Field(..., ge=0, le=100)
    priorityFocus: int = Field(..., ge=0, le=100)

    @model_validator(mode="after")
    def check_total(self):
        total = sum(self.model_dump().values())
        if total != 100:
            raise ValueError(f"Weights must sum to 100 (got {total})")
        return self

class ScoringWeightsResponse(BaseModel):
    weights: Dict[str, int]
    normalized: Dict[str, float]

class SyncIntervalUpdate(BaseModel):
    minutes: int = Field(..., ge=1, le=1440)

class DataRetentionUpdate(BaseModel):
    days: int = Field(..., ge=30, le=3650)

class AllSettingsResponse(BaseModel):
    scoring_weights: Dict[str, int]
    sync_interval: SyncIntervalUpdate
    data_retention: DataRetentionUpdate
