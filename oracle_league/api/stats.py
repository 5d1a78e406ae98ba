from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from oracle_league.core.deps import get_current_user, get_db
from oracle_league.core.errors import UserNotFound
from oracle_league.db.models.user import User
from oracle_league.db.models.user_statistics import SEASON_WIDE
from oracle_league.schemas.stats import OracleComparisonOut, UserStatisticsOut
from oracle_league.services import user_stats

router = APIRouter(prefix="/stats", tags=["Stats"])


@router.get("/me", response_model=List[UserStatisticsOut])
def my_stats(
    season: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return user_stats.list_user_statistics(db, current_user.id, season)


@router.get("/me/oracle-comparison", response_model=OracleComparisonOut)
def my_oracle_comparison(
    season: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return user_stats.get_oracle_comparison(db, current_user.id, season)


@router.get("/users/{user_id}", response_model=UserStatisticsOut)
def user_statistics(user_id: int, season: int, week: int = SEASON_WIDE, db: Session = Depends(get_db)):
    if not db.get(User, user_id):
        raise UserNotFound(user_id)

    stats = user_stats.get_user_statistics(db, user_id, season, week)
    if not stats:
        raise HTTPException(status_code=404, detail="Sin estadísticas en este ámbito")
    return stats


@router.get("/users/{user_id}/oracle-comparison", response_model=OracleComparisonOut)
def user_oracle_comparison(user_id: int, season: int, db: Session = Depends(get_db)):
    return user_stats.get_oracle_comparison(db, user_id, season)
