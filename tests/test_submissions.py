from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta, timezone

import pytest

from oracle_league.core.errors import (
    DuplicateSubmission,
    ImmutableRecord,
    InvalidChoice,
    InvalidConfidence,
    InvalidSpec,
    OracleError,
    PredictionClosed,
    PredictionNotFound,
    UserNotFound,
)
from oracle_league.services import prediction_store, submissions
from oracle_league.services.resolution import resolve_and_score

from conftest import NOW


def test_submit_persists_and_increments_counters(db, make_prediction, make_user):
    prediction = make_prediction()
    user = make_user()

    submission = submissions.submit(db, prediction.id, user.id, 1, 80, "Visitante en racha", now=NOW)

    assert submission.id is not None
    assert submission.submitted_at == NOW
    assert submission.is_correct is None
    assert submission.points_earned == 0
    assert submission.confidence_accuracy is None

    stored = prediction_store.get_prediction(db, prediction.id)
    assert stored.participant_count == 1
    assert stored.submission_count == 1


def test_submit_unknown_prediction(db, make_user):
    with pytest.raises(PredictionNotFound):
        submissions.submit(db, "no-existe", make_user().id, 0, 50, now=NOW)


def test_submit_unknown_user(db, make_prediction):
    prediction = make_prediction()

    with pytest.raises(UserNotFound):
        submissions.submit(db, prediction.id, 999, 0, 50, now=NOW)


def test_submit_after_deadline_is_closed(db, make_prediction, make_user):
    prediction = make_prediction(expires_at=NOW + timedelta(hours=1))

    with pytest.raises(PredictionClosed) as exc:
        submissions.submit(db, prediction.id, make_user().id, 0, 50, now=NOW + timedelta(hours=1, seconds=1))

    assert exc.value.context["reason"] == "expired"
    assert prediction_store.get_prediction(db, prediction.id).submission_count == 0


def test_submit_exactly_at_deadline_is_accepted(db, make_prediction, make_user):
    prediction = make_prediction(expires_at=NOW + timedelta(hours=1))

    submission = submissions.submit(db, prediction.id, make_user().id, 0, 50, now=NOW + timedelta(hours=1))

    assert submission.id is not None


def test_submit_after_resolution_is_closed(db, make_prediction, make_user):
    prediction = make_prediction()
    prediction_store.resolve_prediction(db, prediction.id, 0, now=NOW)

    with pytest.raises(PredictionClosed) as exc:
        submissions.submit(db, prediction.id, make_user().id, 0, 50, now=NOW)

    assert exc.value.context["reason"] == "resolved"


@pytest.mark.parametrize("choice", [-1, 2, 7])
def test_submit_invalid_choice(db, make_prediction, make_user, choice):
    prediction = make_prediction()

    with pytest.raises(InvalidChoice):
        submissions.submit(db, prediction.id, make_user().id, choice, 50, now=NOW)


@pytest.mark.parametrize("confidence", [-1, 101, 500])
def test_submit_invalid_confidence(db, make_prediction, make_user, confidence):
    prediction = make_prediction()

    with pytest.raises(InvalidConfidence):
        submissions.submit(db, prediction.id, make_user().id, 0, confidence, now=NOW)


@pytest.mark.parametrize("confidence", [0, 100])
def test_submit_confidence_bounds_are_inclusive(db, make_prediction, make_user, confidence):
    prediction = make_prediction()

    submission = submissions.submit(db, prediction.id, make_user().id, 0, confidence, now=NOW)

    assert submission.confidence == confidence


def test_submit_rationale_too_long(db, make_prediction, make_user):
    prediction = make_prediction()

    with pytest.raises(InvalidSpec):
        submissions.submit(db, prediction.id, make_user().id, 0, 50, "x" * 1001, now=NOW)


def test_duplicate_submission_keeps_first_answer(db, make_prediction, make_user):
    prediction = make_prediction()
    user = make_user()
    first = submissions.submit(db, prediction.id, user.id, 1, 80, now=NOW)

    with pytest.raises(DuplicateSubmission):
        submissions.submit(db, prediction.id, user.id, 0, 20, now=NOW + timedelta(minutes=5))

    stored = submissions.get_submission(db, prediction.id, user.id)
    assert stored.id == first.id
    assert stored.choice_index == 1
    assert stored.confidence == 80
    assert prediction_store.get_prediction(db, prediction.id).submission_count == 1


def test_submission_content_is_immutable(db, make_prediction, make_user):
    prediction = make_prediction()
    submission = submissions.submit(db, prediction.id, make_user().id, 1, 80, now=NOW)

    submission.choice_index = 0
    with pytest.raises(ImmutableRecord):
        db.commit()
    db.rollback()


def test_scored_fields_are_write_once(db, make_prediction, make_user):
    prediction = make_prediction()
    user = make_user()
    submissions.submit(db, prediction.id, user.id, 1, 80, now=NOW)
    resolve_and_score(db, prediction.id, 1, now=NOW)

    submission = submissions.get_submission(db, prediction.id, user.id)
    submission.points_earned = 999
    with pytest.raises(ImmutableRecord):
        db.commit()
    db.rollback()

    assert submissions.get_submission(db, prediction.id, user.id).points_earned == 33


def test_concurrent_duplicate_submissions_exactly_one_wins(
    session_factory, make_prediction, make_user, patient_storage
):
    prediction = make_prediction()
    user = make_user()

    def attempt(confidence):
        session = session_factory()
        try:
            submissions.submit(session, prediction.id, user.id, 0, confidence, now=NOW)
            return "ok"
        except OracleError as e:
            return e.kind
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=8) as pool:
        outcomes = list(pool.map(attempt, range(50, 66)))

    assert outcomes.count("ok") == 1
    assert outcomes.count("DuplicateSubmission") == len(outcomes) - 1

    check = session_factory()
    try:
        stored = prediction_store.get_prediction(check, prediction.id)
        assert stored.submission_count == 1
        assert stored.participant_count == 1
        assert len(submissions.list_submissions(check, prediction.id)) == 1
    finally:
        check.close()


def test_submit_racing_resolution_has_single_outcome(
    session_factory, make_prediction, make_user, patient_storage
):
    prediction = make_prediction()
    users = [make_user() for _ in range(12)]

    def do_submit(user_id):
        session = session_factory()
        try:
            submissions.submit(session, prediction.id, user_id, user_id % 2, 70, now=NOW)
            return ("submit", user_id, "ok")
        except OracleError as e:
            return ("submit", user_id, e.kind)
        finally:
            session.close()

    def do_resolve():
        session = session_factory()
        try:
            resolve_and_score(session, prediction.id, 1, now=NOW)
            return ("resolve", None, "ok")
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=6) as pool:
        futures = [pool.submit(do_submit, u.id) for u in users[:6]]
        futures.append(pool.submit(do_resolve))
        futures += [pool.submit(do_submit, u.id) for u in users[6:]]
        outcomes = [f.result() for f in futures]

    accepted = {user_id for kind, user_id, result in outcomes if kind == "submit" and result == "ok"}
    rejected = [result for kind, _, result in outcomes if kind == "submit" and result != "ok"]
    assert set(rejected) <= {"PredictionClosed"}

    check = session_factory()
    try:
        stored = submissions.list_submissions(check, prediction.id)
        assert {s.user_id for s in stored} == accepted
        # Todo lo aceptado antes de resolver queda puntuado; nada queda a medias
        assert all(s.is_correct is not None for s in stored)
        assert prediction_store.get_prediction(check, prediction.id).submission_count == len(accepted)
    finally:
        check.close()


def test_submit_accepts_timezone_aware_now(db, make_prediction, make_user):
    prediction = make_prediction()
    madrid = timezone(timedelta(hours=2))

    submission = submissions.submit(
        db, prediction.id, make_user().id, 0, 50, now=NOW.replace(tzinfo=timezone.utc).astimezone(madrid)
    )

    assert submission.submitted_at == NOW
    assert submission.submitted_at.tzinfo is None


def test_submit_timezone_aware_now_after_deadline(db, make_prediction, make_user):
    prediction = make_prediction(expires_at=NOW + timedelta(hours=1))
    later = (NOW + timedelta(hours=2)).replace(tzinfo=timezone.utc)

    with pytest.raises(PredictionClosed):
        submissions.submit(db, prediction.id, make_user().id, 0, 50, now=later)
