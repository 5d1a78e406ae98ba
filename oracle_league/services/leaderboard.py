import logging
import threading
import time
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.orm import Session

from oracle_league.core.config import settings
from oracle_league.db.models.user import User
from oracle_league.db.models.user_statistics import SEASON_WIDE, UserStatistics

logger = logging.getLogger(__name__)

# --- INSIGNIAS ---
ORACLE_MASTER = "Oracle Master"
EXPERT_PREDICTOR = "Expert Predictor"
ORACLE_CHALLENGER = "Oracle Challenger"
DEDICATED_PLAYER = "Dedicated Player"
STREAK_MASTER = "Streak Master"
SEASON_VETERAN = "Season Veteran"


@dataclass(frozen=True)
class LeaderboardEntry:
    rank: int
    user_id: int
    username: str
    display_name: str | None
    total_points: int
    accuracy_rate: float
    total_predictions: int
    correct_predictions: int
    oracle_beats: int
    current_streak: int
    best_streak: int
    tier: str
    badges: list[str] = field(default_factory=list)

    @property
    def accuracy_percent(self) -> float:
        return round(self.accuracy_rate * 100, 1)


# ==============================================================================
# 1. TIERS E INSIGNIAS (funciones puras sobre los agregados)
# ==============================================================================

def assign_tier(
    accuracy_rate: float,
    total_predictions: int,
    thresholds: list[tuple[str, float]] | None = None,
    min_volume: int | None = None,
) -> str:
    thresholds = settings.TIER_THRESHOLDS if thresholds is None else thresholds
    min_volume = settings.MIN_VOLUME if min_volume is None else min_volume

    if total_predictions < min_volume:
        return settings.ROOKIE_TIER

    for name, floor in sorted(thresholds, key=lambda t: t[1], reverse=True):
        if accuracy_rate >= floor:
            return name
    return settings.ROOKIE_TIER


def assign_badges(stats) -> list[str]:
    """Cada insignia se evalúa por separado; se puede tener cualquier combinación."""
    badges = []

    # --- PRECISIÓN ---
    if stats.accuracy_rate >= 0.90: badges.append(ORACLE_MASTER)
    if stats.accuracy_rate >= 0.80: badges.append(EXPERT_PREDICTOR)

    # --- CONTRA EL ORÁCULO ---
    if stats.oracle_beats >= 10: badges.append(ORACLE_CHALLENGER)

    # --- VOLUMEN Y CONSTANCIA ---
    if stats.total_predictions >= 100: badges.append(DEDICATED_PLAYER)
    if stats.best_streak >= 10: badges.append(STREAK_MASTER)
    if stats.weeks_participated >= 10: badges.append(SEASON_VETERAN)

    return badges


# ==============================================================================
# 2. RANKING
# ==============================================================================

def rank(
    db: Session,
    season: int,
    week: int = SEASON_WIDE,
    limit: int | None = None,
    offset: int = 0,
    min_volume: int | None = None,
) -> list[LeaderboardEntry]:
    """
    Clasificación del ámbito (season, week). Orden total:
    puntos DESC, precisión DESC, volumen DESC, user_id ASC.
    Los usuarios por debajo del volumen mínimo no aparecen.
    """
    min_volume = settings.MIN_VOLUME if min_volume is None else min_volume

    query = (
        select(UserStatistics, User)
        .join(User, UserStatistics.user_id == User.id)
        .where(
            UserStatistics.season == season,
            UserStatistics.week == week,
            UserStatistics.total_predictions >= min_volume,
        )
        .order_by(
            UserStatistics.total_points.desc(),
            UserStatistics.accuracy_rate.desc(),
            UserStatistics.total_predictions.desc(),
            UserStatistics.user_id.asc(),
        )
        .offset(offset)
        .execution_options(populate_existing=True)
    )
    if limit is not None:
        query = query.limit(limit)

    entries = []
    for position, (stats, user) in enumerate(db.execute(query).all(), start=offset + 1):
        entries.append(
            LeaderboardEntry(
                rank=position,
                user_id=user.id,
                username=user.username,
                display_name=user.display_name,
                total_points=stats.total_points,
                accuracy_rate=stats.accuracy_rate,
                total_predictions=stats.total_predictions,
                correct_predictions=stats.correct_predictions,
                oracle_beats=stats.oracle_beats,
                current_streak=stats.current_streak,
                best_streak=stats.best_streak,
                tier=assign_tier(stats.accuracy_rate, stats.total_predictions, min_volume=min_volume),
                badges=assign_badges(stats),
            )
        )
    return entries


# ==============================================================================
# 3. CACHÉ (consistencia eventual, caducidad acotada)
# ==============================================================================

class LeaderboardCache:
    """
    Caché en memoria del proceso. Una entrada vive como mucho
    LEADERBOARD_CACHE_SECONDS y cada resolución invalida su temporada.
    """

    def __init__(self, ttl: float | None = None):
        self._ttl = ttl
        self._entries: dict[tuple, tuple[float, list[LeaderboardEntry]]] = {}
        self._lock = threading.Lock()

    @property
    def ttl(self) -> float:
        return settings.LEADERBOARD_CACHE_SECONDS if self._ttl is None else self._ttl

    def get(self, key: tuple) -> list[LeaderboardEntry] | None:
        with self._lock:
            hit = self._entries.get(key)
            if hit is None:
                return None
            expires_at, entries = hit
            if time.monotonic() >= expires_at:
                del self._entries[key]
                return None
            return entries

    def put(self, key: tuple, entries: list[LeaderboardEntry]) -> None:
        if self.ttl <= 0:
            return
        with self._lock:
            self._entries[key] = (time.monotonic() + self.ttl, entries)

    def invalidate(self, season: int | None = None) -> None:
        with self._lock:
            if season is None:
                self._entries.clear()
            else:
                for key in [k for k in self._entries if k[0] == season]:
                    del self._entries[key]


leaderboard_cache = LeaderboardCache()


def get_leaderboard(
    db: Session,
    season: int,
    week: int = SEASON_WIDE,
    limit: int | None = 50,
    offset: int = 0,
) -> list[LeaderboardEntry]:
    key = (season, week, limit, offset, settings.MIN_VOLUME)
    cached = leaderboard_cache.get(key)
    if cached is not None:
        return cached

    entries = rank(db, season, week=week, limit=limit, offset=offset)
    leaderboard_cache.put(key, entries)
    logger.debug(f"Clasificación calculada ({season}, {week}): {len(entries)} entradas")
    return entries
