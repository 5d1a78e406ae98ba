import logging
import threading
import weakref
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from oracle_league.core.clock import resolve_now
from oracle_league.core.errors import UserNotFound
from oracle_league.core.retry import retry_transient
from oracle_league.db.models.prediction import Prediction, PredictionStatus
from oracle_league.db.models.submission import Submission
from oracle_league.db.models.user import User
from oracle_league.db.models.user_statistics import (
    SEASON_WIDE,
    UserPredictionStats,
    UserStatistics,
)
from oracle_league.db.session import atomic
from oracle_league.services.leaderboard import leaderboard_cache

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolutionDelta:
    """Lo que una respuesta puntuada aporta a las estadísticas de su usuario."""
    user_id: int
    prediction_id: str
    season: int
    week: int
    is_correct: bool
    points_earned: int
    confidence: int
    beat_oracle: bool
    submitted_at: datetime


# ==============================================================================
# 1. SERIALIZACIÓN POR USUARIO
# ==============================================================================

# Cada lock desaparece cuando nadie lo retiene
_user_locks: "weakref.WeakValueDictionary[int, threading.Lock]" = weakref.WeakValueDictionary()
_registry_lock = threading.Lock()


def _lock_for(user_id: int) -> threading.Lock:
    with _registry_lock:
        lock = _user_locks.get(user_id)
        if lock is None:
            lock = _user_locks[user_id] = threading.Lock()
        return lock


# ==============================================================================
# 2. CÁLCULO DE AGREGADOS (lógica pura)
# ==============================================================================

def compute_aggregates(rows) -> dict:
    """
    Calcula los agregados a partir de los resultados de un usuario YA
    ordenados por momento de envío. Las rachas se reproducen en ese orden,
    así da igual en qué orden llegaron las resoluciones.
    """
    total = correct = points = beats = confidence_sum = 0
    current = best = 0
    weeks = set()

    for row in rows:
        total += 1
        points += row.points
        confidence_sum += row.confidence
        weeks.add(row.week)

        if row.is_correct:
            correct += 1
            current += 1
            if row.beat_oracle:
                beats += 1
        else:
            current = 0
        best = max(best, current)

    return {
        "total_predictions": total,
        "correct_predictions": correct,
        "accuracy_rate": (correct / total) if total else 0.0,
        "average_confidence": (confidence_sum / total) if total else 0.0,
        "total_points": points,
        "oracle_beats": beats,
        "current_streak": current,
        "best_streak": best,
        "weeks_participated": len(weeks),
    }


def _recompute_scope(db: Session, user_id: int, season: int, week: int, now: datetime) -> UserStatistics:
    query = select(UserPredictionStats).where(
        UserPredictionStats.user_id == user_id,
        UserPredictionStats.season == season,
    )
    if week != SEASON_WIDE:
        query = query.where(UserPredictionStats.week == week)
    query = query.order_by(
        UserPredictionStats.submitted_at.asc(),
        UserPredictionStats.prediction_id.asc(),
    )
    rows = db.scalars(query).all()

    stats = db.scalars(
        select(UserStatistics)
        .where(
            UserStatistics.user_id == user_id,
            UserStatistics.season == season,
            UserStatistics.week == week,
        )
        .execution_options(populate_existing=True)
    ).first()
    if not stats:
        stats = UserStatistics(user_id=user_id, season=season, week=week)
        db.add(stats)

    for field, value in compute_aggregates(rows).items():
        setattr(stats, field, value)
    stats.updated_at = now
    return stats


# ==============================================================================
# 3. APLICAR DELTAS (idempotente por (user_id, prediction_id))
# ==============================================================================

def apply_resolution_delta(db: Session, delta: ResolutionDelta, now: datetime | None = None) -> UserStatistics:
    """
    Aplica el resultado de una respuesta a las estadísticas del usuario.

    La marca UserPredictionStats se inserta en la misma transacción que el
    recálculo: si ya existía, el delta se ignora. Los agregados de temporada
    y de semana se recalculan desde las marcas ordenadas por envío.
    """
    now = resolve_now(now)
    with _lock_for(delta.user_id):
        # Un IntegrityError aquí es otra escritura concurrente (otro proceso)
        # que insertó la marca o la fila de estadísticas antes que nosotros.
        for attempt in range(2):
            try:
                return _apply_locked(db, delta, now)
            except IntegrityError:
                if attempt:
                    raise
                logger.info(
                    f"Conflicto aplicando delta ({delta.user_id}, {delta.prediction_id}), reintentando",
                    extra={"user_id": delta.user_id, "prediction_id": delta.prediction_id},
                )


@retry_transient
def _apply_locked(db: Session, delta: ResolutionDelta, now: datetime) -> UserStatistics:
    with atomic(db):
        marker = db.get(UserPredictionStats, (delta.user_id, delta.prediction_id), populate_existing=True)
        if marker is not None:
            logger.debug(
                f"Delta ya aplicado ({delta.user_id}, {delta.prediction_id})",
                extra={"user_id": delta.user_id, "prediction_id": delta.prediction_id},
            )
            stats = get_user_statistics(db, delta.user_id, delta.season)
            if stats is not None:
                return stats
            return _recompute_scope(db, delta.user_id, delta.season, SEASON_WIDE, now)

        db.add(
            UserPredictionStats(
                user_id=delta.user_id,
                prediction_id=delta.prediction_id,
                season=delta.season,
                week=delta.week,
                is_correct=delta.is_correct,
                beat_oracle=delta.is_correct and delta.beat_oracle,
                points=delta.points_earned,
                confidence=delta.confidence,
                submitted_at=delta.submitted_at,
                applied_at=now,
            )
        )
        db.flush()

        season_stats = _recompute_scope(db, delta.user_id, delta.season, SEASON_WIDE, now)
        _recompute_scope(db, delta.user_id, delta.season, delta.week, now)

    return season_stats


def apply_resolution_deltas(db: Session, deltas, now: datetime | None = None) -> int:
    """Aplica una lista de deltas. Devuelve cuántos eran nuevos."""
    applied = 0
    for delta in deltas:
        before = db.get(UserPredictionStats, (delta.user_id, delta.prediction_id), populate_existing=True)
        apply_resolution_delta(db, delta, now)
        if before is None:
            applied += 1
    return applied


# ==============================================================================
# 4. RECONSTRUCCIÓN COMPLETA
# ==============================================================================

def rebuild_user_statistics(db: Session, user_id: int, season: int, now: datetime | None = None) -> UserStatistics | None:
    """
    Borra marcas y agregados del usuario en la temporada y los vuelve a
    generar a partir de sus respuestas puntuadas. Devuelve el agregado de
    temporada, o None si el usuario no tiene nada puntuado.
    """
    now = resolve_now(now)
    if not db.get(User, user_id):
        raise UserNotFound(user_id)

    with _lock_for(user_id):
        stats = _rebuild_locked(db, user_id, season, now)

    leaderboard_cache.invalidate(season)
    return stats


@retry_transient
def _rebuild_locked(db: Session, user_id: int, season: int, now: datetime) -> UserStatistics | None:
    rows = db.execute(
        select(Submission, Prediction)
        .join(Prediction, Submission.prediction_id == Prediction.id)
        .where(
            Submission.user_id == user_id,
            Submission.is_correct.is_not(None),
            Prediction.season == season,
            Prediction.status == PredictionStatus.RESOLVED,
        )
        .execution_options(populate_existing=True)
    ).all()

    with atomic(db):
        db.execute(
            delete(UserPredictionStats).where(
                UserPredictionStats.user_id == user_id,
                UserPredictionStats.season == season,
            )
        )
        db.execute(
            delete(UserStatistics).where(
                UserStatistics.user_id == user_id,
                UserStatistics.season == season,
            )
        )
        db.expire_all()

        if not rows:
            logger.info(f"Sin respuestas puntuadas para {user_id} en {season}", extra={"user_id": user_id})
            return None

        weeks = set()
        for submission, prediction in rows:
            weeks.add(prediction.week)
            db.add(
                UserPredictionStats(
                    user_id=user_id,
                    prediction_id=prediction.id,
                    season=season,
                    week=prediction.week,
                    is_correct=submission.is_correct,
                    beat_oracle=bool(
                        submission.is_correct
                        and prediction.oracle_choice_index != prediction.actual_result_index
                    ),
                    points=submission.points_earned,
                    confidence=submission.confidence,
                    submitted_at=submission.submitted_at,
                    applied_at=now,
                )
            )
        db.flush()

        season_stats = _recompute_scope(db, user_id, season, SEASON_WIDE, now)
        for week in sorted(weeks):
            _recompute_scope(db, user_id, season, week, now)

    logger.info(
        f"🔁 Estadísticas reconstruidas para {user_id} (temporada {season}, {len(rows)} respuestas)",
        extra={"user_id": user_id, "season": season},
    )
    return season_stats


# ==============================================================================
# 5. CONSULTAS
# ==============================================================================

def get_user_statistics(db: Session, user_id: int, season: int, week: int = SEASON_WIDE) -> UserStatistics | None:
    return db.scalars(
        select(UserStatistics)
        .where(
            UserStatistics.user_id == user_id,
            UserStatistics.season == season,
            UserStatistics.week == week,
        )
        .execution_options(populate_existing=True)
    ).first()


def list_user_statistics(db: Session, user_id: int, season: int) -> list[UserStatistics]:
    """Fila de temporada primero y después una por semana jugada."""
    return list(
        db.scalars(
            select(UserStatistics)
            .where(UserStatistics.user_id == user_id, UserStatistics.season == season)
            .order_by(UserStatistics.week.asc())
            .execution_options(populate_existing=True)
        ).all()
    )


def _accuracy(correct: int, total: int) -> float:
    return round(correct / total, 4) if total else 0.0


def get_oracle_comparison(db: Session, user_id: int, season: int) -> dict:
    """
    Usuario contra Oráculo sobre las mismas predicciones resueltas en las
    que el usuario participó.
    """
    if not db.get(User, user_id):
        raise UserNotFound(user_id)

    rows = db.execute(
        select(
            Submission.choice_index,
            Submission.confidence,
            Submission.is_correct,
            Prediction.type,
            Prediction.oracle_choice_index,
            Prediction.oracle_confidence,
            Prediction.actual_result_index,
        )
        .join(Prediction, Submission.prediction_id == Prediction.id)
        .where(
            Submission.user_id == user_id,
            Submission.is_correct.is_not(None),
            Prediction.season == season,
            Prediction.status == PredictionStatus.RESOLVED,
        )
    ).all()

    user_correct = oracle_correct = user_beats = oracle_beats = 0
    user_conf = oracle_conf = 0
    by_type = defaultdict(lambda: {"predictions": 0, "user_correct": 0, "oracle_correct": 0})

    for r in rows:
        oracle_hit = r.oracle_choice_index == r.actual_result_index
        user_hit = bool(r.is_correct)

        user_correct += user_hit
        oracle_correct += oracle_hit
        if user_hit and not oracle_hit:
            user_beats += 1
        if oracle_hit and not user_hit:
            oracle_beats += 1
        user_conf += r.confidence
        oracle_conf += r.oracle_confidence

        key = r.type.value if hasattr(r.type, "value") else str(r.type)
        bucket = by_type[key]
        bucket["predictions"] += 1
        bucket["user_correct"] += user_hit
        bucket["oracle_correct"] += oracle_hit

    total = len(rows)
    return {
        "user_id": user_id,
        "season": season,
        "predictions": total,
        "user_correct": user_correct,
        "oracle_correct": oracle_correct,
        "user_accuracy": _accuracy(user_correct, total),
        "oracle_accuracy": _accuracy(oracle_correct, total),
        "user_beats_oracle": user_beats,
        "oracle_beats_user": oracle_beats,
        "average_user_confidence": round(user_conf / total, 2) if total else 0.0,
        "average_oracle_confidence": round(oracle_conf / total, 2) if total else 0.0,
        "by_type": {
            t: {
                "predictions": b["predictions"],
                "user_accuracy": _accuracy(b["user_correct"], b["predictions"]),
                "oracle_accuracy": _accuracy(b["oracle_correct"], b["predictions"]),
            }
            for t, b in sorted(by_type.items())
        },
    }
