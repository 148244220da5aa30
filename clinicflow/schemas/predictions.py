from pydantic import BaseModel
from typing import List, Optional

class NoShowPrediction(BaseModel):
    no_show_probability: float
    risk_level: str
    confidence_score: Optional[float] = None
    recommendation: Optional[str] = None

class WaitTimePrediction(BaseModel):
    estimated_wait_time: float
    queue_position: Optional[int] = None
    estimated_service_start: Optional[str] = None
    confidence_score: Optional[float] = None

class PriorityClassification(BaseModel):
    priority_level: str
    priority_score: float
    urgency_factors: List[str] = []
    recommendation: Optional[str] = None
