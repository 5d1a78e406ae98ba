import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import and_, func, select, update
from sqlalchemy.orm import Session

from oracle_league.core.clock import resolve_now
from oracle_league.core.config import settings
from oracle_league.core.errors import PartiallyScored, PredictionNotResolved
from oracle_league.core.retry import retry_transient
from oracle_league.db.models.prediction import Prediction
from oracle_league.db.models.submission import Submission
from oracle_league.db.models.user_statistics import UserPredictionStats
from oracle_league.db.session import atomic
from oracle_league.services import prediction_store
from oracle_league.services.leaderboard import leaderboard_cache
from oracle_league.services.scoring import score_submission
from oracle_league.services.user_stats import ResolutionDelta, apply_resolution_deltas

logger = logging.getLogger(__name__)


@dataclass
class ResolutionReport:
    prediction_id: str
    actual_result_index: int
    scored: int = 0
    correct: int = 0
    stats_applied: int = 0
    deltas: list[ResolutionDelta] = field(default_factory=list)


# ==============================================================================
# 1. PUNTUACIÓN DE RESPUESTAS
# ==============================================================================

@retry_transient
def score_pending_submissions(db: Session, prediction: Prediction, now: datetime) -> int:
    """
    Puntúa las respuestas que aún no tienen resultado. Con
    SCORING_BATCH_SIZE = 0 todo va en una transacción; con N > 0 se
    confirma cada lote de N y un fallo deja el resto pendiente.

    Cada UPDATE exige is_correct IS NULL, así que repetir la llamada
    nunca vuelve a puntuar una respuesta.
    """
    batch_size = settings.SCORING_BATCH_SIZE
    scored = 0

    while True:
        with atomic(db):
            query = (
                select(Submission.id, Submission.choice_index, Submission.confidence)
                .where(
                    Submission.prediction_id == prediction.id,
                    Submission.is_correct.is_(None),
                )
                .order_by(Submission.id.asc())
            )
            if batch_size > 0:
                query = query.limit(batch_size)
            pending = db.execute(query).all()

            for row in pending:
                score = score_submission(
                    row.choice_index,
                    row.confidence,
                    prediction.oracle_choice_index,
                    prediction.actual_result_index,
                )
                result = db.execute(
                    update(Submission)
                    .where(Submission.id == row.id, Submission.is_correct.is_(None))
                    .values(
                        is_correct=score.is_correct,
                        points_earned=score.points_earned,
                        confidence_accuracy=score.confidence_accuracy,
                        scored_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                scored += result.rowcount

        if batch_size <= 0 or len(pending) < batch_size:
            return scored


def count_unscored(db: Session, prediction_id: str) -> int:
    return db.scalar(
        select(func.count(Submission.id)).where(
            Submission.prediction_id == prediction_id,
            Submission.is_correct.is_(None),
        )
    ) or 0


def build_deltas(db: Session, prediction: Prediction) -> list[ResolutionDelta]:
    """Un delta por cada respuesta ya puntuada de la predicción."""
    rows = db.execute(
        select(
            Submission.user_id,
            Submission.is_correct,
            Submission.points_earned,
            Submission.confidence,
            Submission.submitted_at,
        )
        .where(
            Submission.prediction_id == prediction.id,
            Submission.is_correct.is_not(None),
        )
        .order_by(Submission.submitted_at.asc(), Submission.id.asc())
    ).all()

    oracle_missed = prediction.oracle_choice_index != prediction.actual_result_index
    return [
        ResolutionDelta(
            user_id=r.user_id,
            prediction_id=prediction.id,
            season=prediction.season,
            week=prediction.week,
            is_correct=r.is_correct,
            points_earned=r.points_earned,
            confidence=r.confidence,
            beat_oracle=bool(r.is_correct and oracle_missed),
            submitted_at=r.submitted_at,
        )
        for r in rows
    ]


def _score_or_fail(db: Session, prediction: Prediction, now: datetime) -> int:
    try:
        return score_pending_submissions(db, prediction, now)
    except Exception as e:
        db.rollback()
        pending = count_unscored(db, prediction.id)
        logger.error(
            f"❌ Predicción {prediction.id} resuelta con {pending} respuestas sin puntuar: {e}",
            extra={"prediction_id": prediction.id, "pending": pending},
        )
        raise PartiallyScored(prediction.id, pending=pending) from e


def count_unapplied(db: Session, prediction_id: str) -> int:
    """Respuestas puntuadas cuyo delta aún no está en las estadísticas."""
    return db.scalar(
        select(func.count(Submission.id))
        .outerjoin(
            UserPredictionStats,
            and_(
                UserPredictionStats.user_id == Submission.user_id,
                UserPredictionStats.prediction_id == Submission.prediction_id,
            ),
        )
        .where(
            Submission.prediction_id == prediction_id,
            Submission.is_correct.is_not(None),
            UserPredictionStats.prediction_id.is_(None),
        )
    ) or 0


def _publish(db: Session, prediction: Prediction, report: ResolutionReport, apply_stats: bool, now: datetime):
    report.deltas = build_deltas(db, prediction)
    report.correct = sum(1 for d in report.deltas if d.is_correct)

    try:
        if apply_stats:
            report.stats_applied = apply_resolution_deltas(db, report.deltas, now)
    except Exception as e:
        db.rollback()
        unapplied = count_unapplied(db, prediction.id)
        logger.error(
            f"❌ Predicción {prediction.id} puntuada con {unapplied} deltas sin aplicar: {e}",
            extra={"prediction_id": prediction.id, "unapplied": unapplied},
        )
        raise PartiallyScored(prediction.id, pending=0, unapplied=unapplied) from e
    finally:
        # Los deltas que sí entraron ya cambian la clasificación
        leaderboard_cache.invalidate(prediction.season)


# ==============================================================================
# 2. RESOLUCIÓN
# ==============================================================================

def resolve_and_score(
    db: Session,
    prediction_id: str,
    actual_result_index: int,
    now: datetime | None = None,
    apply_stats: bool = True,
) -> ResolutionReport:
    """
    Resuelve la predicción, puntúa todas sus respuestas y pasa los deltas
    al agregador de estadísticas.

    Una segunda llamada lanza AlreadyResolved (no vuelve a puntuar).
    Si la puntuación o el envío de deltas falla después de resolver, se
    lanza PartiallyScored y la recuperación es rescore_unresolved_submissions.
    """
    now = resolve_now(now)

    prediction = prediction_store.resolve_prediction(db, prediction_id, actual_result_index, now)
    report = ResolutionReport(prediction_id=prediction_id, actual_result_index=actual_result_index)

    report.scored = _score_or_fail(db, prediction, now)
    _publish(db, prediction, report, apply_stats, now)

    logger.info(
        f"✅ Predicción {prediction_id} puntuada: {report.scored} respuestas, {report.correct} aciertos",
        extra={"prediction_id": prediction_id, "scored": report.scored, "correct": report.correct},
    )
    return report


# ==============================================================================
# 3. RECUPERACIÓN
# ==============================================================================

def rescore_unresolved_submissions(
    db: Session,
    prediction_id: str,
    now: datetime | None = None,
    apply_stats: bool = True,
) -> ResolutionReport:
    """
    Puntúa lo que quedó pendiente de una predicción ya resuelta y vuelve a
    emitir los deltas de todas sus respuestas (el agregador descarta los
    que ya estaban aplicados). Se puede ejecutar cuantas veces haga falta.
    """
    now = resolve_now(now)

    prediction = prediction_store.get_prediction(db, prediction_id)
    if not prediction.is_resolved:
        raise PredictionNotResolved(prediction_id)

    report = ResolutionReport(prediction_id=prediction_id, actual_result_index=prediction.actual_result_index)
    report.scored = _score_or_fail(db, prediction, now)
    _publish(db, prediction, report, apply_stats, now)

    logger.info(
        f"🔧 Recuperación de {prediction_id}: {report.scored} respuestas puntuadas, {report.stats_applied} deltas nuevos",
        extra={"prediction_id": prediction_id, "scored": report.scored, "stats_applied": report.stats_applied},
    )
    return report


def recover_partially_scored(db: Session, now: datetime | None = None) -> list[ResolutionReport]:
    """Ejecuta la recuperación sobre todas las predicciones resueltas a medias."""
    reports = []
    for prediction_id in prediction_store.find_partially_scored(db):
        reports.append(rescore_unresolved_submissions(db, prediction_id, now))
    return reports
