import itertools
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from types import SimpleNamespace

import pytest

from oracle_league.core.config import settings
from oracle_league.core.errors import UserNotFound
from oracle_league.db.models.prediction import PredictionType
from oracle_league.db.models.user_statistics import UserPredictionStats
from oracle_league.services import resolution, submissions, user_stats
from oracle_league.services.leaderboard import get_leaderboard
from oracle_league.services.user_stats import (
    ResolutionDelta,
    apply_resolution_delta,
    compute_aggregates,
    get_oracle_comparison,
    get_user_statistics,
    list_user_statistics,
    rebuild_user_statistics,
)

from conftest import NOW


def _delta(user_id, prediction_id, is_correct, minutes, points=None, week=1, beat_oracle=False, confidence=60):
    return ResolutionDelta(
        user_id=user_id,
        prediction_id=prediction_id,
        season=2026,
        week=week,
        is_correct=is_correct,
        points_earned=points if points is not None else (16 if is_correct else 0),
        confidence=confidence,
        beat_oracle=beat_oracle,
        submitted_at=NOW + timedelta(minutes=minutes),
    )


def _row(is_correct, week=1, points=0, confidence=50, beat_oracle=False):
    return SimpleNamespace(
        is_correct=is_correct, week=week, points=points, confidence=confidence, beat_oracle=beat_oracle
    )


def test_compute_aggregates_streaks_in_given_order():
    rows = [_row(True), _row(True), _row(False), _row(True)]

    result = compute_aggregates(rows)

    assert result["current_streak"] == 1
    assert result["best_streak"] == 2
    assert result["accuracy_rate"] == 0.75


def test_compute_aggregates_empty():
    result = compute_aggregates([])

    assert result["total_predictions"] == 0
    assert result["accuracy_rate"] == 0.0
    assert result["average_confidence"] == 0.0


def test_apply_delta_updates_season_and_week(db, make_user, make_prediction):
    user = make_user()
    prediction = make_prediction(week=4)

    stats = apply_resolution_delta(
        db, _delta(user.id, prediction.id, True, 0, points=33, week=4, beat_oracle=True, confidence=80)
    )

    assert stats.week == 0
    assert stats.total_predictions == 1
    assert stats.correct_predictions == 1
    assert stats.accuracy_rate == 1.0
    assert stats.total_points == 33
    assert stats.oracle_beats == 1
    assert stats.average_confidence == 80.0
    assert stats.weeks_participated == 1

    week_stats = get_user_statistics(db, user.id, 2026, week=4)
    assert week_stats.total_points == 33


def test_apply_same_delta_twice_does_not_double_count(db, make_user, make_prediction):
    user = make_user()
    prediction = make_prediction()
    delta = _delta(user.id, prediction.id, True, 0)

    apply_resolution_delta(db, delta)
    stats = apply_resolution_delta(db, delta)

    assert stats.total_predictions == 1
    assert stats.total_points == 16
    assert db.query(UserPredictionStats).count() == 1


def test_beat_oracle_only_counts_when_correct(db, make_user, make_prediction):
    user = make_user()
    prediction = make_prediction()

    stats = apply_resolution_delta(db, _delta(user.id, prediction.id, False, 0, beat_oracle=True))

    assert stats.oracle_beats == 0


@pytest.mark.parametrize("order", list(itertools.permutations(range(4))))
def test_streak_is_independent_of_resolution_order(db, make_user, make_prediction, order):
    user = make_user()
    outcomes = [True, True, False, True]
    predictions = [make_prediction() for _ in outcomes]
    deltas = [
        _delta(user.id, p.id, correct, minutes=i * 10)
        for i, (p, correct) in enumerate(zip(predictions, outcomes))
    ]

    for i in order:
        stats = apply_resolution_delta(db, deltas[i])

    assert stats.current_streak == 1
    assert stats.best_streak == 2
    assert stats.total_predictions == 4
    assert stats.correct_predictions == 3
    assert stats.correct_predictions <= stats.total_predictions
    assert 0 <= stats.accuracy_rate <= 1


def test_streak_follows_submission_time_through_resolution(db, make_user, make_prediction):
    user = make_user()
    outcomes = [True, True, False, True]
    predictions = [make_prediction(options=["Sí", "No"]) for _ in outcomes]
    for i, p in enumerate(predictions):
        submissions.submit(db, p.id, user.id, 0, 70, now=NOW + timedelta(minutes=i))

    # Se resuelven en orden inverso al de envío
    for p, correct in reversed(list(zip(predictions, outcomes))):
        resolution.resolve_and_score(db, p.id, 0 if correct else 1, now=NOW + timedelta(hours=1))

    stats = get_user_statistics(db, user.id, 2026)
    assert stats.current_streak == 1
    assert stats.best_streak == 2


def test_concurrent_deltas_for_one_user(session_factory, make_user, make_prediction, patient_storage):
    user = make_user()
    predictions = [make_prediction() for _ in range(8)]
    deltas = [_delta(user.id, p.id, i % 3 != 0, minutes=i) for i, p in enumerate(predictions)]

    def apply(delta):
        session = session_factory()
        try:
            apply_resolution_delta(session, delta)
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=4) as pool:
        list(pool.map(apply, deltas + deltas))

    check = session_factory()
    try:
        stats = get_user_statistics(check, user.id, 2026)
        assert stats.total_predictions == 8
        assert stats.correct_predictions == 5
        assert stats.best_streak == 2
        assert stats.current_streak == 1
    finally:
        check.close()


def test_weeks_participated_counts_distinct_weeks(db, make_user, make_prediction):
    user = make_user()
    for i, week in enumerate([1, 1, 2, 5]):
        p = make_prediction(week=week)
        apply_resolution_delta(db, _delta(user.id, p.id, True, i, week=week))

    rows = list_user_statistics(db, user.id, 2026)

    assert [r.week for r in rows] == [0, 1, 2, 5]
    assert rows[0].weeks_participated == 3
    assert rows[1].total_predictions == 2


def test_rebuild_matches_incremental_aggregates(db, make_user, make_prediction):
    user = make_user()
    for i, correct in enumerate([True, False, True, True]):
        p = make_prediction(week=1 + i % 2)
        submissions.submit(db, p.id, user.id, 0, 55 + i, now=NOW + timedelta(minutes=i))
        resolution.resolve_and_score(db, p.id, 0 if correct else 1, now=NOW)

    incremental = {
        r.week: (r.total_predictions, r.correct_predictions, r.total_points, r.best_streak, r.current_streak)
        for r in list_user_statistics(db, user.id, 2026)
    }

    rebuilt = rebuild_user_statistics(db, user.id, 2026)

    assert rebuilt.total_predictions == 4
    after = {
        r.week: (r.total_predictions, r.correct_predictions, r.total_points, r.best_streak, r.current_streak)
        for r in list_user_statistics(db, user.id, 2026)
    }
    assert after == incremental


def test_rebuild_without_scored_submissions(db, make_user):
    user = make_user()

    assert rebuild_user_statistics(db, user.id, 2026) is None
    assert list_user_statistics(db, user.id, 2026) == []


def test_rebuild_unknown_user(db):
    with pytest.raises(UserNotFound):
        rebuild_user_statistics(db, 12345, 2026)


def test_oracle_comparison(db, make_user, make_prediction):
    user = make_user()
    # El Oráculo elige siempre la opción 0
    game = make_prediction(type=PredictionType.GAME_OUTCOME, oracle_confidence=80)
    prop = make_prediction(type=PredictionType.PROP_BET, oracle_confidence=60)
    submissions.submit(db, game.id, user.id, 1, 70, now=NOW)
    submissions.submit(db, prop.id, user.id, 1, 50, now=NOW)

    resolution.resolve_and_score(db, game.id, 1, now=NOW)   # usuario acierta, Oráculo falla
    resolution.resolve_and_score(db, prop.id, 0, now=NOW)   # usuario falla, Oráculo acierta

    comparison = get_oracle_comparison(db, user.id, 2026)

    assert comparison["predictions"] == 2
    assert comparison["user_accuracy"] == 0.5
    assert comparison["oracle_accuracy"] == 0.5
    assert comparison["user_beats_oracle"] == 1
    assert comparison["oracle_beats_user"] == 1
    assert comparison["average_user_confidence"] == 60.0
    assert comparison["average_oracle_confidence"] == 70.0
    assert comparison["by_type"]["GAME_OUTCOME"] == {
        "predictions": 1, "user_accuracy": 1.0, "oracle_accuracy": 0.0,
    }
    assert comparison["by_type"]["PROP_BET"]["oracle_accuracy"] == 1.0


def test_oracle_comparison_without_data(db, make_user):
    user = make_user()

    comparison = get_oracle_comparison(db, user.id, 2026)

    assert comparison["predictions"] == 0
    assert comparison["by_type"] == {}


def test_user_locks_are_dropped_when_unused():
    lock = user_stats._lock_for(4242)
    assert user_stats._lock_for(4242) is lock

    del lock

    assert 4242 not in user_stats._user_locks


def test_rebuild_refreshes_cached_leaderboard(db, make_user, make_prediction, monkeypatch):
    monkeypatch.setattr(settings, "MIN_VOLUME", 1)
    user = make_user()
    prediction = make_prediction()
    submissions.submit(db, prediction.id, user.id, 0, 60, now=NOW)
    resolution.resolve_and_score(db, prediction.id, 0, now=NOW)
    real_points = submissions.get_submission(db, prediction.id, user.id).points_earned

    # Agregado corrupto que acaba en la caché
    stats = get_user_statistics(db, user.id, 2026)
    stats.total_points = 999
    db.commit()
    assert get_leaderboard(db, 2026)[0].total_points == 999

    rebuild_user_statistics(db, user.id, 2026)

    assert get_leaderboard(db, 2026)[0].total_points == real_points
