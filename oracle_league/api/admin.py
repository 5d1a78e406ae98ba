from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from oracle_league.core.deps import get_db, require_admin
from oracle_league.core.errors import AlreadyResolved
from oracle_league.schemas.prediction import (
    PredictionCreate,
    PredictionOut,
    PredictionUpdate,
    ResolveRequest,
)
from oracle_league.schemas.stats import ResolutionOut, UserStatisticsOut
from oracle_league.schemas.submission import SubmissionOut
from oracle_league.services import prediction_store, resolution, submissions, user_stats

router = APIRouter(prefix="/admin", tags=["Admin"], dependencies=[Depends(require_admin)])


# -----------------------
# Predicciones
# -----------------------
@router.post("/predictions", response_model=PredictionOut, status_code=201)
def create_prediction(payload: PredictionCreate, db: Session = Depends(get_db)):
    return prediction_store.create_prediction(db, payload)


@router.patch("/predictions/{prediction_id}", response_model=PredictionOut)
def update_prediction(prediction_id: str, payload: PredictionUpdate, db: Session = Depends(get_db)):
    return prediction_store.update_prediction(db, prediction_id, payload)


@router.delete("/predictions/{prediction_id}")
def delete_prediction(prediction_id: str, db: Session = Depends(get_db)):
    prediction_store.delete_prediction(db, prediction_id)
    return {"message": "Predicción eliminada"}


@router.get("/predictions/{prediction_id}/submissions", response_model=List[SubmissionOut])
def list_prediction_submissions(prediction_id: str, db: Session = Depends(get_db)):
    return submissions.list_submissions(db, prediction_id)


# -----------------------
# Resolución
# -----------------------
@router.post("/predictions/{prediction_id}/resolve", response_model=ResolutionOut)
def resolve_prediction(prediction_id: str, payload: ResolveRequest, db: Session = Depends(get_db)):
    try:
        report = resolution.resolve_and_score(db, prediction_id, payload.actual_result_index)
    except AlreadyResolved:
        # Reintentar una resolución no es un error: no se vuelve a puntuar
        prediction = prediction_store.get_prediction(db, prediction_id)
        return ResolutionOut(
            prediction_id=prediction_id,
            actual_result_index=prediction.actual_result_index,
            already_resolved=True,
        )

    return ResolutionOut(
        prediction_id=report.prediction_id,
        actual_result_index=report.actual_result_index,
        scored=report.scored,
        correct=report.correct,
        stats_applied=report.stats_applied,
    )


@router.post("/predictions/{prediction_id}/rescore", response_model=ResolutionOut)
def rescore_prediction(prediction_id: str, db: Session = Depends(get_db)):
    report = resolution.rescore_unresolved_submissions(db, prediction_id)
    return ResolutionOut(
        prediction_id=report.prediction_id,
        actual_result_index=report.actual_result_index,
        scored=report.scored,
        correct=report.correct,
        stats_applied=report.stats_applied,
    )


@router.get("/partially-scored", response_model=List[str])
def list_partially_scored(db: Session = Depends(get_db)):
    return prediction_store.find_partially_scored(db)


# -----------------------
# Estadísticas
# -----------------------
@router.post("/users/{user_id}/stats/rebuild", response_model=UserStatisticsOut | None)
def rebuild_stats(user_id: int, season: int, db: Session = Depends(get_db)):
    return user_stats.rebuild_user_statistics(db, user_id, season)
