import random
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from conftest import boolean_questions
from quizplatform import attempts
from quizplatform.errors import NotFound
from quizplatform.models import Attempt, Question, User
from quizplatform.schemas import AnswerIn
from quizplatform.stats import (
    build_leaderboard,
    build_user_stats,
    compute_user_totals,
    recompute_user_stats,
)


def _answers(db, quiz_id, correct):
    questions = db.query(Question).filter(Question.quiz_id == quiz_id).order_by(Question.order_index).all()
    return [AnswerIn(question_id=q.id, answer=idx < correct) for idx, q in enumerate(questions)]


def _expected_totals(db, user_id):
    completed = db.query(Attempt).filter(Attempt.user_id == user_id, Attempt.status == "completed").all()
    latest = {}
    for attempt in completed:
        current = latest.get(attempt.quiz_id)
        if current is None or (attempt.completed_at, attempt.id) > (current.completed_at, current.id):
            latest[attempt.quiz_id] = attempt
    return sum(a.xp_awarded for a in latest.values()), len(latest)


def test_compute_user_totals_keeps_latest_attempt_per_quiz():
    now = datetime(2026, 1, 1, 12, 0)
    rows = [
        SimpleNamespace(id=1, quiz_id=10, xp_awarded=165, completed_at=now),
        SimpleNamespace(id=2, quiz_id=10, xp_awarded=40, completed_at=now + timedelta(hours=1)),
        SimpleNamespace(id=3, quiz_id=11, xp_awarded=300, completed_at=now - timedelta(days=1)),
    ]

    totals = compute_user_totals(rows)

    assert totals.total_xp == 340
    assert totals.quizzes_completed == 2


def test_compute_user_totals_breaks_timestamp_ties_by_id():
    now = datetime(2026, 1, 1, 12, 0)
    rows = [
        SimpleNamespace(id=5, quiz_id=10, xp_awarded=50, completed_at=now),
        SimpleNamespace(id=4, quiz_id=10, xp_awarded=70, completed_at=now),
    ]
    assert compute_user_totals(rows).total_xp == 50


def test_recompute_is_idempotent_and_self_heals(db, user_factory, quiz_factory):
    user_factory(1)
    quiz = quiz_factory(questions=boolean_questions(10), difficulty="easy")
    attempt, _ = attempts.start_attempt(db, 1, quiz.id)
    attempts.submit_attempt(db, attempt.id, 1, _answers(db, quiz.id, 8))

    user = db.query(User).filter(User.id == 1).first()
    user.total_xp = 9999
    user.quizzes_completed = 42
    db.commit()

    first = recompute_user_stats(db, 1)
    second = recompute_user_stats(db, 1)

    assert first == second
    assert (first.total_xp, first.quizzes_completed) == (165, 1)


def test_recompute_unknown_user(db):
    with pytest.raises(NotFound):
        recompute_user_stats(db, 404)


@pytest.mark.parametrize("seed", [3, 17, 2026])
def test_totals_never_drift_across_operation_sequences(db, user_factory, quiz_factory, seed):
    rng = random.Random(seed)
    user_factory(1)
    quizzes = [
        quiz_factory(questions=boolean_questions(4), difficulty=difficulty, title=f"Quiz {difficulty}")
        for difficulty in ("easy", "medium", "hard")
    ]

    for _ in range(25):
        operation = rng.choice(["submit", "submit", "reset", "delete"])
        completed = db.query(Attempt).filter(Attempt.user_id == 1, Attempt.status == "completed").all()
        if operation == "submit":
            quiz = rng.choice(quizzes)
            attempt, _ = attempts.start_attempt(db, 1, quiz.id)
            attempts.submit_attempt(db, attempt.id, 1, _answers(db, quiz.id, rng.randint(0, 4)))
        elif operation == "reset" and completed:
            target = rng.choice(completed)
            in_progress = (
                db.query(Attempt)
                .filter(Attempt.user_id == 1, Attempt.quiz_id == target.quiz_id, Attempt.status == "in_progress")
                .first()
            )
            if in_progress:
                attempts.delete_attempt(db, in_progress.id)
            attempts.reset_attempt(db, target.id)
        elif operation == "delete" and completed:
            attempts.delete_attempt(db, rng.choice(completed).id)

        user = db.query(User).filter(User.id == 1).first()
        db.refresh(user)
        stored = (user.total_xp, user.quizzes_completed)
        assert stored == _expected_totals(db, 1)
        recomputed = recompute_user_stats(db, 1)
        assert (recomputed.total_xp, recomputed.quizzes_completed) == stored


def test_user_stats_view(db, user_factory, quiz_factory):
    user_factory(1)
    user_factory(2)
    easy = quiz_factory(questions=boolean_questions(10), difficulty="easy")
    hard = quiz_factory(questions=boolean_questions(10), difficulty="hard")

    for quiz, correct, spent in ((easy, 8, 30), (hard, 5, 60)):
        attempt, _ = attempts.start_attempt(db, 1, quiz.id)
        attempts.submit_attempt(db, attempt.id, 1, _answers(db, quiz.id, correct), time_spent=spent)

    view = build_user_stats(db, 1)

    assert view["total_xp"] == 165 + 220
    assert view["quizzes_completed"] == 2
    assert view["rank"] == 1
    assert view["average_percentage"] == 65.0
    assert view["total_time_spent"] == 90
    assert view["difficulty_stats"]["easy"] == {"count": 1, "average_percentage": 80.0}
    assert view["difficulty_stats"]["medium"] == {"count": 0, "average_percentage": 0.0}
    assert len(view["recent_attempts"]) == 2

    assert build_user_stats(db, 2)["rank"] == 2


def test_leaderboard_ordering(db, user_factory):
    for user_id, name, xp, completed in [
        (1, "carol", 100, 2),
        (2, "alice", 300, 1),
        (3, "bob", 100, 3),
        (4, "aaron", 100, 2),
    ]:
        user = user_factory(user_id, display_name=name)
        user.total_xp = xp
        user.quizzes_completed = completed
    db.commit()

    board = build_leaderboard(db, limit=3)

    assert [row["display_name"] for row in board] == ["alice", "bob", "aaron"]
    assert [row["rank"] for row in board] == [1, 2, 3]
