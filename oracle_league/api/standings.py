from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from oracle_league.core.deps import get_db
from oracle_league.db.models.user_statistics import SEASON_WIDE
from oracle_league.schemas.stats import LeaderboardEntryOut
from oracle_league.services.leaderboard import get_leaderboard

router = APIRouter(prefix="/standings", tags=["Standings"])


@router.get("/season/{season}", response_model=List[LeaderboardEntryOut])
def season_standings(
    season: int,
    week: int = SEASON_WIDE,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    return get_leaderboard(db, season, week=week, limit=limit, offset=offset)
