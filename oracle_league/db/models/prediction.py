# oracle_league/db/models/prediction.py
import enum
import uuid
from datetime import datetime
from typing import List, TYPE_CHECKING

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum as SqEnum,
    Integer,
    JSON,
    String,
    Text,
    event,
    inspect,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from oracle_league.core.clock import utcnow
from oracle_league.core.errors import ImmutableRecord
from oracle_league.db.session import Base

if TYPE_CHECKING:
    from oracle_league.db.models.submission import Submission


class PredictionStatus(str, enum.Enum):
    OPEN = "OPEN"
    RESOLVED = "RESOLVED"


class PredictionType(str, enum.Enum):
    GAME_OUTCOME = "GAME_OUTCOME"
    PLAYER_PERFORMANCE = "PLAYER_PERFORMANCE"
    TEAM_STAT = "TEAM_STAT"
    PROP_BET = "PROP_BET"
    SEASON_LONG = "SEASON_LONG"


def _new_prediction_id() -> str:
    return uuid.uuid4().hex


class Prediction(Base):
    __tablename__ = "predictions"
    __table_args__ = (
        CheckConstraint("oracle_confidence >= 0 AND oracle_confidence <= 100", name="ck_oracle_confidence"),
        CheckConstraint("oracle_choice_index >= 0", name="ck_oracle_choice"),
        # actual_result_index existe si y solo si está resuelta
        CheckConstraint(
            "(status = 'RESOLVED' AND actual_result_index IS NOT NULL AND resolved_at IS NOT NULL)"
            " OR (status = 'OPEN' AND actual_result_index IS NULL AND resolved_at IS NULL)",
            name="ck_resolution_consistency",
        ),
        CheckConstraint("participant_count >= 0 AND submission_count >= 0", name="ck_counters"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_prediction_id)

    # --- ÁMBITO ---
    season: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    week: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    type: Mapped[PredictionType] = mapped_column(SqEnum(PredictionType), default=PredictionType.GAME_OUTCOME)

    # --- CONTENIDO ---
    question: Mapped[str] = mapped_column(Text, nullable=False)
    options: Mapped[list[str]] = mapped_column(JSON, nullable=False)
    oracle_choice_index: Mapped[int] = mapped_column(Integer, nullable=False)
    oracle_confidence: Mapped[int] = mapped_column(Integer, nullable=False)
    oracle_rationale: Mapped[str] = mapped_column(Text, default="")
    data_points: Mapped[list[str]] = mapped_column(JSON, default=list)

    # --- CICLO DE VIDA ---
    status: Mapped[PredictionStatus] = mapped_column(
        SqEnum(PredictionStatus), default=PredictionStatus.OPEN, nullable=False, index=True
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    actual_result_index: Mapped[int | None] = mapped_column(Integer, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    # --- CONTADORES (solo se tocan con UPDATE atómico junto al insert) ---
    participant_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    submission_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    submissions: Mapped[List["Submission"]] = relationship(
        "Submission", back_populates="prediction", order_by="Submission.submitted_at"
    )

    @property
    def is_resolved(self) -> bool:
        return self.status == PredictionStatus.RESOLVED

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


# Campos congelados una vez resuelta
FROZEN_FIELDS = (
    "season", "week", "type", "question", "options", "oracle_choice_index",
    "oracle_confidence", "oracle_rationale", "data_points",
    "status", "actual_result_index", "resolved_at", "expires_at",
)


@event.listens_for(Prediction, "before_update")
def _guard_resolved_prediction(mapper, connection, target):
    state = inspect(target)
    status_history = state.attrs.status.history
    was_resolved = (
        PredictionStatus.RESOLVED in (status_history.deleted or ())
        or (not status_history.has_changes() and target.status == PredictionStatus.RESOLVED)
    )
    if not was_resolved:
        return

    changed = [f for f in FROZEN_FIELDS if state.attrs[f].history.has_changes()]
    if changed:
        raise ImmutableRecord(
            "Una predicción resuelta no se puede modificar",
            prediction_id=target.id,
            fields=changed,
        )
