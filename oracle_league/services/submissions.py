import logging
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from oracle_league.core.clock import resolve_now
from oracle_league.core.config import settings
from oracle_league.core.errors import (
    DuplicateSubmission,
    InvalidChoice,
    InvalidConfidence,
    InvalidSpec,
    PredictionClosed,
    UserNotFound,
)
from oracle_league.core.retry import retry_transient
from oracle_league.db.models.prediction import Prediction, PredictionStatus
from oracle_league.db.models.submission import Submission
from oracle_league.db.models.user import User
from oracle_league.db.session import atomic
from oracle_league.services.prediction_store import get_prediction

logger = logging.getLogger(__name__)


# ==============================================================================
# 1. REGLAS DE ADMISIÓN (puras, sin DB)
# ==============================================================================

def check_open(prediction: Prediction, now: datetime) -> None:
    if prediction.status == PredictionStatus.RESOLVED:
        raise PredictionClosed(prediction.id, reason="resolved")
    if prediction.is_expired(now):
        raise PredictionClosed(prediction.id, reason="expired")


def check_choice(prediction: Prediction, choice_index: int) -> None:
    if not (0 <= choice_index < len(prediction.options)):
        raise InvalidChoice(
            "Opción fuera de rango",
            choice_index=choice_index,
            options=len(prediction.options),
        )


def check_confidence(confidence: int) -> None:
    if not (settings.CONFIDENCE_MIN <= confidence <= settings.CONFIDENCE_MAX):
        raise InvalidConfidence(
            f"La confianza debe estar entre {settings.CONFIDENCE_MIN} y {settings.CONFIDENCE_MAX}",
            confidence=confidence,
        )


def check_rationale(rationale: str | None) -> None:
    if rationale is not None and len(rationale) > settings.MAX_RATIONALE_LENGTH:
        raise InvalidSpec(
            f"El razonamiento admite como máximo {settings.MAX_RATIONALE_LENGTH} caracteres",
            length=len(rationale),
        )


# ==============================================================================
# 2. ENVÍO
# ==============================================================================

@retry_transient
def submit(
    db: Session,
    prediction_id: str,
    user_id: int,
    choice_index: int,
    confidence: int,
    rationale: str | None = None,
    now: datetime | None = None,
) -> Submission:
    """
    Registra la respuesta de un usuario.

    Las comprobaciones previas solo sirven para dar el error más útil; la
    admisión real la deciden dos cosas dentro de la misma transacción:
      - el UPDATE condicional de contadores (sigue OPEN y sin caducar)
      - la restricción única (prediction_id, user_id) al insertar
    Así dos envíos simultáneos, o un envío contra una resolución, acaban
    siempre en un único resultado.
    """
    now = resolve_now(now)

    prediction = get_prediction(db, prediction_id)
    check_open(prediction, now)
    check_choice(prediction, choice_index)
    check_confidence(confidence)
    check_rationale(rationale)

    if not db.get(User, user_id):
        raise UserNotFound(user_id)

    try:
        with atomic(db):
            result = db.execute(
                update(Prediction)
                .where(
                    Prediction.id == prediction_id,
                    Prediction.status == PredictionStatus.OPEN,
                    Prediction.expires_at >= now,
                )
                .values(
                    participant_count=Prediction.participant_count + 1,
                    submission_count=Prediction.submission_count + 1,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise PredictionClosed(prediction_id, reason="closed")

            submission = Submission(
                prediction_id=prediction_id,
                user_id=user_id,
                choice_index=choice_index,
                confidence=confidence,
                rationale=rationale,
                submitted_at=now,
            )
            db.add(submission)
            db.flush()
    except IntegrityError as e:
        logger.info(
            f"Respuesta duplicada rechazada ({prediction_id}, {user_id})",
            extra={"prediction_id": prediction_id, "user_id": user_id},
        )
        raise DuplicateSubmission(prediction_id, user_id) from e

    logger.info(
        f"Respuesta aceptada ({prediction_id}, {user_id})",
        extra={"prediction_id": prediction_id, "user_id": user_id, "choice_index": choice_index},
    )
    return submission


# ==============================================================================
# 3. CONSULTAS
# ==============================================================================

def get_submission(db: Session, prediction_id: str, user_id: int) -> Submission | None:
    return db.scalars(
        select(Submission).where(
            Submission.prediction_id == prediction_id,
            Submission.user_id == user_id,
        )
        .execution_options(populate_existing=True)
    ).first()


def list_submissions(db: Session, prediction_id: str) -> list[Submission]:
    get_prediction(db, prediction_id)
    return list(
        db.scalars(
            select(Submission)
            .where(Submission.prediction_id == prediction_id)
            .order_by(Submission.submitted_at.asc(), Submission.id.asc())
            .execution_options(populate_existing=True)
        ).all()
    )
