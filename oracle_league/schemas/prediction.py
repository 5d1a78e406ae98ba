from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from oracle_league.db.models.prediction import PredictionStatus, PredictionType


# Los rangos (opciones, confianza, semana...) los valida el store y
# devuelve InvalidSpec; aquí solo tipos.
class PredictionCreate(BaseModel):
    season: int
    week: int
    type: PredictionType = PredictionType.GAME_OUTCOME
    question: str
    options: list[str]
    oracle_choice_index: int
    oracle_confidence: int
    oracle_rationale: str = ""
    data_points: list[str] = Field(default_factory=list)
    expires_at: datetime


class PredictionUpdate(BaseModel):
    season: Optional[int] = None
    week: Optional[int] = None
    type: Optional[PredictionType] = None
    question: Optional[str] = None
    options: Optional[list[str]] = None
    oracle_choice_index: Optional[int] = None
    oracle_confidence: Optional[int] = None
    oracle_rationale: Optional[str] = None
    data_points: Optional[list[str]] = None
    expires_at: Optional[datetime] = None


class PredictionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    season: int
    week: int
    type: PredictionType
    question: str
    options: list[str]
    oracle_choice_index: int
    oracle_confidence: int
    oracle_rationale: str
    data_points: list[str]
    status: PredictionStatus
    expires_at: datetime
    actual_result_index: Optional[int] = None
    resolved_at: Optional[datetime] = None
    participant_count: int
    submission_count: int


class ResolveRequest(BaseModel):
    actual_result_index: int


class ConsensusOut(BaseModel):
    prediction_id: str
    choice_index: Optional[int] = None
    average_confidence: Optional[float] = None
    backers: int = 0
    total_submissions: int = 0
