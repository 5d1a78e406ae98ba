from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from oracle_league.core.deps import get_current_user, get_db
from oracle_league.db.models.prediction import PredictionType
from oracle_league.db.models.user import User
from oracle_league.schemas.prediction import ConsensusOut, PredictionOut
from oracle_league.schemas.submission import SubmissionCreate, SubmissionOut
from oracle_league.services import prediction_store, submissions

router = APIRouter(prefix="/predictions", tags=["Predictions"])


@router.get("/", response_model=List[PredictionOut])
def list_open_predictions(
    season: Optional[int] = None,
    week: Optional[int] = None,
    type: Optional[PredictionType] = None,
    accepting_only: bool = False,
    db: Session = Depends(get_db),
):
    return prediction_store.list_open_predictions(
        db, season=season, week=week, type=type, accepting_only=accepting_only
    )


@router.get("/{prediction_id}", response_model=PredictionOut)
def get_prediction(prediction_id: str, db: Session = Depends(get_db)):
    return prediction_store.get_prediction(db, prediction_id)


@router.get("/{prediction_id}/consensus", response_model=ConsensusOut)
def get_consensus(prediction_id: str, db: Session = Depends(get_db)):
    return prediction_store.get_consensus(db, prediction_id)


# 🎯 Enviar respuesta (una por usuario y predicción)
@router.post("/{prediction_id}/submissions", response_model=SubmissionOut, status_code=201)
def submit_prediction(
    prediction_id: str,
    payload: SubmissionCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return submissions.submit(
        db,
        prediction_id,
        current_user.id,
        payload.choice_index,
        payload.confidence,
        payload.rationale,
    )


@router.get("/{prediction_id}/me", response_model=SubmissionOut)
def get_my_submission(
    prediction_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    prediction_store.get_prediction(db, prediction_id)
    submission = submissions.get_submission(db, prediction_id, current_user.id)
    if not submission:
        raise HTTPException(status_code=404, detail="Todavía no has respondido a esta predicción")
    return submission
