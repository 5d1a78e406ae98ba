from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class UserStatisticsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: int
    season: int
    week: int
    total_predictions: int
    correct_predictions: int
    accuracy_rate: float
    average_confidence: float
    total_points: int
    oracle_beats: int
    current_streak: int
    best_streak: int
    weeks_participated: int
    updated_at: Optional[datetime] = None


class LeaderboardEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    rank: int
    user_id: int
    username: str
    display_name: Optional[str] = None
    total_points: int
    accuracy_rate: float
    accuracy_percent: float
    total_predictions: int
    correct_predictions: int
    oracle_beats: int
    current_streak: int
    best_streak: int
    tier: str
    badges: list[str]


class TypeComparisonOut(BaseModel):
    predictions: int
    user_accuracy: float
    oracle_accuracy: float


class OracleComparisonOut(BaseModel):
    user_id: int
    season: int
    predictions: int
    user_correct: int
    oracle_correct: int
    user_accuracy: float
    oracle_accuracy: float
    user_beats_oracle: int
    oracle_beats_user: int
    average_user_confidence: float
    average_oracle_confidence: float
    by_type: dict[str, TypeComparisonOut]


class ResolutionOut(BaseModel):
    prediction_id: str
    actual_result_index: Optional[int] = None
    already_resolved: bool = False
    scored: int = 0
    correct: int = 0
    stats_applied: int = 0
