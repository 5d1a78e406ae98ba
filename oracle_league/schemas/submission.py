from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class SubmissionCreate(BaseModel):
    choice_index: int
    confidence: int
    rationale: Optional[str] = None


class SubmissionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    prediction_id: str
    user_id: int
    choice_index: int
    confidence: int
    rationale: Optional[str] = None
    submitted_at: datetime
    is_correct: Optional[bool] = None
    points_earned: int
    confidence_accuracy: Optional[float] = None
