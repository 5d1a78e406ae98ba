import logging
from collections import Counter
from datetime import datetime

from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.orm import Session

from oracle_league.core.clock import as_naive_utc, resolve_now
from oracle_league.core.config import settings
from oracle_league.core.errors import (
    AlreadyResolved,
    InvalidSpec,
    OutOfRange,
    PredictionLocked,
    PredictionNotFound,
)
from oracle_league.core.retry import retry_transient
from oracle_league.db.models.prediction import Prediction, PredictionStatus, PredictionType
from oracle_league.db.models.submission import Submission
from oracle_league.db.models.user_statistics import UserPredictionStats
from oracle_league.db.session import atomic
from oracle_league.schemas.prediction import PredictionCreate, PredictionUpdate

logger = logging.getLogger(__name__)

MAX_OPTION_LENGTH = 200


# ==============================================================================
# 1. VALIDACIÓN DE CONTENIDO
# ==============================================================================

def collect_spec_problems(data: dict, now: datetime) -> list[str]:
    """Devuelve la lista de problemas del contenido (vacía si es válido)."""
    problems = []

    options = data.get("options") or []
    if not (settings.MIN_OPTIONS <= len(options) <= settings.MAX_OPTIONS):
        problems.append(
            f"options debe tener entre {settings.MIN_OPTIONS} y {settings.MAX_OPTIONS} elementos"
        )
    if any(not str(o).strip() or len(str(o)) > MAX_OPTION_LENGTH for o in options):
        problems.append(f"cada opción debe tener entre 1 y {MAX_OPTION_LENGTH} caracteres")

    rationale = data.get("oracle_rationale") or ""
    if len(rationale) > settings.MAX_RATIONALE_LENGTH:
        problems.append(f"oracle_rationale no puede superar {settings.MAX_RATIONALE_LENGTH} caracteres")

    choice = data.get("oracle_choice_index")
    if choice is None or not (0 <= choice < len(options)):
        problems.append("oracle_choice_index fuera de rango")

    confidence = data.get("oracle_confidence")
    if confidence is None or not (0 <= confidence <= 100):
        problems.append("oracle_confidence debe estar entre 0 y 100")

    week = data.get("week")
    if week is None or not (settings.MIN_WEEK <= week <= settings.MAX_WEEK):
        problems.append(f"week debe estar entre {settings.MIN_WEEK} y {settings.MAX_WEEK}")

    if not data.get("season") or data["season"] <= 0:
        problems.append("season debe ser positivo")

    if not str(data.get("question") or "").strip():
        problems.append("question no puede estar vacía")

    expires_at = data.get("expires_at")
    if expires_at is None or as_naive_utc(expires_at) <= now:
        problems.append("expires_at debe estar en el futuro")

    return problems


def validate_prediction_spec(data: dict, now: datetime) -> None:
    problems = collect_spec_problems(data, now)
    if problems:
        raise InvalidSpec("Predicción inválida", problems=problems)


# ==============================================================================
# 2. LECTURAS
# ==============================================================================

def get_prediction(db: Session, prediction_id: str) -> Prediction:
    # populate_existing: leemos siempre el estado vigente, no el de la identity map
    prediction = db.get(Prediction, prediction_id, populate_existing=True)
    if not prediction:
        raise PredictionNotFound(prediction_id)
    return prediction


def list_open_predictions(
    db: Session,
    season: int | None = None,
    week: int | None = None,
    type: PredictionType | None = None,
    accepting_only: bool = False,
    now: datetime | None = None,
) -> list[Prediction]:
    """
    Predicciones en estado OPEN del ámbito. Con accepting_only=True se
    excluyen las ya caducadas (abiertas pero de solo lectura).
    """
    query = select(Prediction).where(Prediction.status == PredictionStatus.OPEN)

    if season is not None:
        query = query.where(Prediction.season == season)
    if week is not None:
        query = query.where(Prediction.week == week)
    if type is not None:
        query = query.where(Prediction.type == type)
    if accepting_only:
        query = query.where(Prediction.expires_at >= resolve_now(now))

    query = query.order_by(Prediction.expires_at.asc(), Prediction.id.asc())
    return list(db.scalars(query).all())


def get_consensus(db: Session, prediction_id: str) -> dict:
    """
    Opción más elegida por los usuarios (empate -> índice más bajo) y la
    confianza media de quienes la eligieron.
    """
    get_prediction(db, prediction_id)

    rows = db.execute(
        select(Submission.choice_index, Submission.confidence)
        .where(Submission.prediction_id == prediction_id)
    ).all()

    result = {
        "prediction_id": prediction_id,
        "choice_index": None,
        "average_confidence": None,
        "backers": 0,
        "total_submissions": len(rows),
    }
    if not rows:
        return result

    counts = Counter(r.choice_index for r in rows)
    choice, backers = min(counts.items(), key=lambda kv: (-kv[1], kv[0]))
    confidences = [r.confidence for r in rows if r.choice_index == choice]

    result.update(
        choice_index=choice,
        average_confidence=round(sum(confidences) / len(confidences), 2),
        backers=backers,
    )
    return result


def find_partially_scored(db: Session) -> list[str]:
    """
    IDs de predicciones resueltas con trabajo pendiente: respuestas sin
    puntuar o respuestas puntuadas cuyo delta no llegó a las estadísticas.
    """
    # Una respuesta sin puntuar tampoco tiene marca, así que basta con la marca
    query = (
        select(Prediction.id)
        .join(Submission, Submission.prediction_id == Prediction.id)
        .outerjoin(
            UserPredictionStats,
            and_(
                UserPredictionStats.user_id == Submission.user_id,
                UserPredictionStats.prediction_id == Submission.prediction_id,
            ),
        )
        .where(
            Prediction.status == PredictionStatus.RESOLVED,
            UserPredictionStats.prediction_id.is_(None),
        )
        .group_by(Prediction.id)
        .order_by(func.min(Prediction.resolved_at).asc())
    )
    return list(db.scalars(query).all())


# ==============================================================================
# 3. ESCRITURAS
# ==============================================================================

@retry_transient
def create_prediction(db: Session, spec: PredictionCreate, now: datetime | None = None) -> Prediction:
    now = resolve_now(now)
    data = spec.model_dump()
    validate_prediction_spec(data, now)

    data["expires_at"] = as_naive_utc(data["expires_at"])
    prediction = Prediction(**data, status=PredictionStatus.OPEN, created_at=now)

    with atomic(db):
        db.add(prediction)

    logger.info(
        f"Predicción creada {prediction.id}",
        extra={"prediction_id": prediction.id, "season": prediction.season, "week": prediction.week},
    )
    return prediction


@retry_transient
def update_prediction(
    db: Session,
    prediction_id: str,
    changes: PredictionUpdate,
    now: datetime | None = None,
) -> Prediction:
    """
    Edición administrativa. Solo mientras está OPEN y nadie ha respondido:
    la condición se comprueba en el propio UPDATE para no competir con Submit.
    """
    now = resolve_now(now)
    prediction = get_prediction(db, prediction_id)

    if prediction.is_resolved or prediction.submission_count > 0:
        raise PredictionLocked(prediction_id)

    values = changes.model_dump(exclude_unset=True, exclude_none=True)
    if not values:
        return prediction

    merged = {
        "season": prediction.season,
        "week": prediction.week,
        "question": prediction.question,
        "options": prediction.options,
        "oracle_choice_index": prediction.oracle_choice_index,
        "oracle_confidence": prediction.oracle_confidence,
        "oracle_rationale": prediction.oracle_rationale,
        "expires_at": prediction.expires_at,
        **values,
    }
    validate_prediction_spec(merged, now)
    if "expires_at" in values:
        values["expires_at"] = as_naive_utc(values["expires_at"])

    with atomic(db):
        result = db.execute(
            update(Prediction)
            .where(
                Prediction.id == prediction_id,
                Prediction.status == PredictionStatus.OPEN,
                Prediction.submission_count == 0,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise PredictionLocked(prediction_id)

    db.refresh(prediction)
    return prediction


@retry_transient
def delete_prediction(db: Session, prediction_id: str) -> None:
    prediction = get_prediction(db, prediction_id)

    with atomic(db):
        result = db.execute(
            delete(Prediction)
            .where(
                Prediction.id == prediction_id,
                Prediction.status == PredictionStatus.OPEN,
                Prediction.submission_count == 0,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise PredictionLocked(prediction_id)

    db.expunge(prediction)
    logger.info(f"Predicción eliminada {prediction_id}", extra={"prediction_id": prediction_id})


@retry_transient
def resolve_prediction(
    db: Session,
    prediction_id: str,
    actual_result_index: int,
    now: datetime | None = None,
) -> Prediction:
    """
    OPEN -> RESOLVED mediante compare-and-set sobre la fila. Si otra
    resolución ganó la carrera, el UPDATE no afecta filas y devolvemos
    AlreadyResolved sin tocar resolved_at.
    """
    now = resolve_now(now)
    prediction = get_prediction(db, prediction_id)

    if prediction.status == PredictionStatus.RESOLVED:
        raise AlreadyResolved(prediction_id)

    if not (0 <= actual_result_index < len(prediction.options)):
        raise OutOfRange(
            "actual_result_index fuera de rango",
            prediction_id=prediction_id,
            actual_result_index=actual_result_index,
            options=len(prediction.options),
        )

    with atomic(db):
        result = db.execute(
            update(Prediction)
            .where(
                Prediction.id == prediction_id,
                Prediction.status == PredictionStatus.OPEN,
            )
            .values(
                status=PredictionStatus.RESOLVED,
                actual_result_index=actual_result_index,
                resolved_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise AlreadyResolved(prediction_id)

    db.refresh(prediction)
    logger.info(
        f"🏁 Predicción {prediction_id} resuelta con opción {actual_result_index}",
        extra={"prediction_id": prediction_id, "actual_result_index": actual_result_index},
    )
    return prediction
