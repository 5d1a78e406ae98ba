# oracle_league/db/models/user_statistics.py
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from oracle_league.core.clock import utcnow
from oracle_league.db.session import Base

# week = 0 representa la temporada completa
SEASON_WIDE = 0


class UserStatistics(Base):
    __tablename__ = "user_statistics"
    __table_args__ = (
        UniqueConstraint("user_id", "season", "week", name="uq_user_stats_scope"),
        CheckConstraint("correct_predictions <= total_predictions", name="ck_correct_le_total"),
        CheckConstraint("accuracy_rate >= 0 AND accuracy_rate <= 1", name="ck_accuracy_range"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    season: Mapped[int] = mapped_column(Integer, nullable=False)
    week: Mapped[int] = mapped_column(Integer, nullable=False, default=SEASON_WIDE)

    # --- PRECISIÓN ---
    total_predictions: Mapped[int] = mapped_column(Integer, default=0)
    correct_predictions: Mapped[int] = mapped_column(Integer, default=0)
    accuracy_rate: Mapped[float] = mapped_column(Float, default=0.0)
    average_confidence: Mapped[float] = mapped_column(Float, default=0.0)

    # --- PUNTOS ---
    total_points: Mapped[int] = mapped_column(Integer, default=0)
    oracle_beats: Mapped[int] = mapped_column(Integer, default=0)

    # --- RACHAS (en orden de envío, no de resolución) ---
    current_streak: Mapped[int] = mapped_column(Integer, default=0)
    best_streak: Mapped[int] = mapped_column(Integer, default=0)

    weeks_participated: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User")


class UserPredictionStats(Base):
    """
    Guarda lo que un usuario consiguió en una predicción concreta.
    Es la marca de "delta ya aplicado": evita contar dos veces el mismo
    resultado y permite recalcular rachas en orden de envío.
    """
    __tablename__ = "user_prediction_stats"

    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), primary_key=True)
    prediction_id: Mapped[str] = mapped_column(String(32), ForeignKey("predictions.id"), primary_key=True)

    season: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    week: Mapped[int] = mapped_column(Integer, nullable=False)
    is_correct: Mapped[bool] = mapped_column(Boolean, nullable=False)
    beat_oracle: Mapped[bool] = mapped_column(Boolean, default=False)
    points: Mapped[int] = mapped_column(Integer, default=0)
    confidence: Mapped[int] = mapped_column(Integer, nullable=False)
    submitted_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    applied_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
