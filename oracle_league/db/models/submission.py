# oracle_league/db/models/submission.py
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
    inspect,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from oracle_league.core.clock import utcnow
from oracle_league.core.errors import ImmutableRecord
from oracle_league.db.session import Base

if TYPE_CHECKING:
    from oracle_league.db.models.prediction import Prediction
    from oracle_league.db.models.user import User


class Submission(Base):
    __tablename__ = "submissions"
    __table_args__ = (
        # Un usuario solo puede responder 1 vez por predicción
        UniqueConstraint("prediction_id", "user_id", name="uq_submission_prediction_user"),
        CheckConstraint("confidence >= 0 AND confidence <= 100", name="ck_submission_confidence"),
        CheckConstraint("choice_index >= 0", name="ck_submission_choice"),
        CheckConstraint("points_earned >= 0", name="ck_submission_points"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    prediction_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("predictions.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    choice_index: Mapped[int] = mapped_column(Integer, nullable=False)
    confidence: Mapped[int] = mapped_column(Integer, nullable=False)
    rationale: Mapped[str | None] = mapped_column(Text, nullable=True)
    submitted_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    # --- DERIVADOS (solo los escribe la resolución, una única vez) ---
    is_correct: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    points_earned: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    confidence_accuracy: Mapped[float | None] = mapped_column(Float, nullable=True)
    scored_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    prediction: Mapped["Prediction"] = relationship("Prediction", back_populates="submissions")
    user: Mapped["User"] = relationship("User", back_populates="submissions")

    @property
    def is_scored(self) -> bool:
        return self.is_correct is not None


IMMUTABLE_FIELDS = ("prediction_id", "user_id", "choice_index", "confidence", "submitted_at")
DERIVED_FIELDS = ("is_correct", "points_earned", "confidence_accuracy", "scored_at")


@event.listens_for(Submission, "before_update")
def _guard_submission(mapper, connection, target):
    state = inspect(target)

    changed = [f for f in IMMUTABLE_FIELDS if state.attrs[f].history.has_changes()]
    if changed:
        raise ImmutableRecord(
            "El contenido de una respuesta no se puede modificar",
            submission_id=target.id,
            fields=changed,
        )

    # Derivados: se permiten solo si antes estaban sin puntuar
    history = state.attrs.is_correct.history
    previously_scored = any(v is not None for v in (history.deleted or ())) or (
        not history.has_changes() and target.is_correct is not None
    )
    if previously_scored and any(state.attrs[f].history.has_changes() for f in DERIVED_FIELDS):
        raise ImmutableRecord(
            "La puntuación de una respuesta ya está fijada",
            submission_id=target.id,
        )
