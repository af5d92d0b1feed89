"""Attempt lifecycle.

Legal transitions::

    in_progress -> completed     (submit)
    in_progress -> abandoned     (stale attempt cleanup)
    completed   -> in_progress   (administrative reset)

No row locks are taken. Every transition is an UPDATE guarded on the current
status, and the affected row count decides which of two racing requests wins.
"""

import json
import logging
import os
from datetime import datetime, timedelta
from typing import Iterable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from quizplatform.errors import Forbidden, InvalidState, MaxAttemptsReached, NotFound, RetryNotAllowed
from quizplatform.models import Assignment, Attempt, Question, Quiz
from quizplatform.schemas import AnswerIn
from quizplatform.scoring import calculate_xp, compute_percentage, is_passing, is_perfect, score_answers
from quizplatform.stats import refresh_user_stats

logger = logging.getLogger(__name__)

IN_PROGRESS = "in_progress"
COMPLETED = "completed"
ABANDONED = "abandoned"


def get_attempt(db: Session, attempt_id: int) -> Attempt:
    attempt = db.query(Attempt).filter(Attempt.id == attempt_id).first()
    if not attempt:
        raise NotFound("Attempt not found")
    return attempt


def _ensure_owner(attempt: Attempt, user_id: int):
    if attempt.user_id != user_id:
        raise Forbidden("Attempt belongs to another user")


def _guarded_update(db: Session, attempt_id: int, expected_status: str, values: dict) -> bool:
    updated = (
        db.query(Attempt)
        .filter(Attempt.id == attempt_id, Attempt.status == expected_status)
        .update(values, synchronize_session=False)
    )
    return updated == 1


def _find_in_progress(db: Session, user_id: int, quiz_id: int) -> Attempt | None:
    return (
        db.query(Attempt)
        .filter(Attempt.user_id == user_id, Attempt.quiz_id == quiz_id, Attempt.status == IN_PROGRESS)
        .first()
    )


def _completed_count(db: Session, user_id: int, quiz_id: int, exclude_attempt_id: int | None = None) -> int:
    query = db.query(Attempt).filter(
        Attempt.user_id == user_id, Attempt.quiz_id == quiz_id, Attempt.status == COMPLETED
    )
    if exclude_attempt_id is not None:
        query = query.filter(Attempt.id != exclude_attempt_id)
    return query.count()


def list_user_attempts(db: Session, user_id: int, quiz_id: int) -> list[Attempt]:
    return (
        db.query(Attempt)
        .filter(Attempt.user_id == user_id, Attempt.quiz_id == quiz_id)
        .order_by(Attempt.started_at.desc(), Attempt.id.desc())
        .all()
    )


def start_attempt(db: Session, user_id: int, quiz_id: int) -> tuple[Attempt, bool]:
    """Open an attempt, or return the learner's open one. The flag tells whether it was created."""
    quiz = db.query(Quiz).filter(Quiz.id == quiz_id).first()
    if not quiz:
        raise NotFound("Quiz not found")
    if quiz.status != "published":
        raise InvalidState("Quiz is not published")
    if quiz.visibility != "visible":
        raise InvalidState("Quiz is not visible")

    completed_count = _completed_count(db, user_id, quiz_id)
    if not quiz.allow_retries and completed_count:
        raise RetryNotAllowed("Retries are not allowed for this quiz")
    if quiz.max_attempts is not None and completed_count >= quiz.max_attempts:
        raise MaxAttemptsReached(f"Maximum of {quiz.max_attempts} attempts reached for this quiz")

    existing = _find_in_progress(db, user_id, quiz_id)
    if existing:
        logger.info("Resuming attempt %s (user=%s, quiz=%s)", existing.id, user_id, quiz_id)
        return existing, False

    attempt = Attempt(
        user_id=user_id,
        quiz_id=quiz_id,
        status=IN_PROGRESS,
        max_score=quiz.total_points,
        answers_json="[]",
    )
    db.add(attempt)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        existing = _find_in_progress(db, user_id, quiz_id)
        if existing is None:
            raise
        logger.warning("Concurrent start for user=%s quiz=%s resolved to attempt %s", user_id, quiz_id, existing.id)
        return existing, False

    db.refresh(attempt)
    logger.info(
        "Started attempt %s (user=%s, quiz=%s, max_score=%s)", attempt.id, user_id, quiz_id, attempt.max_score
    )
    return attempt, True


def save_progress(db: Session, attempt_id: int, user_id: int, answers: Iterable[AnswerIn]) -> Attempt:
    attempt = get_attempt(db, attempt_id)
    _ensure_owner(attempt, user_id)
    if attempt.status != IN_PROGRESS:
        raise InvalidState("Cannot update an attempt that is not in progress")

    snapshot = json.dumps([a.model_dump() for a in answers])
    if not _guarded_update(db, attempt_id, IN_PROGRESS, {"answers_json": snapshot}):
        db.rollback()
        raise InvalidState("Cannot update an attempt that is not in progress")
    db.commit()
    db.refresh(attempt)
    return attempt


def submit_attempt(
    db: Session,
    attempt_id: int,
    user_id: int,
    answers: Iterable[AnswerIn],
    time_spent: int | None = None,
) -> dict:
    attempt = get_attempt(db, attempt_id)
    _ensure_owner(attempt, user_id)
    if attempt.status != IN_PROGRESS:
        raise InvalidState("Attempt already completed")

    quiz = db.query(Quiz).filter(Quiz.id == attempt.quiz_id).first()
    questions = db.query(Question).filter(Question.quiz_id == attempt.quiz_id).order_by(Question.order_index).all()

    scored = score_answers(questions, answers)
    score = sum(a.points_earned for a in scored)
    percentage = compute_percentage(score, attempt.max_score)
    passed = is_passing(score, attempt.max_score, quiz.passing_score)
    is_first_attempt = _completed_count(db, attempt.user_id, attempt.quiz_id, exclude_attempt_id=attempt.id) == 0
    xp_awarded = calculate_xp(
        quiz.question_count,
        quiz.difficulty,
        passed,
        is_perfect(score, attempt.max_score),
        is_first_attempt,
    )
    completed_at = datetime.utcnow()

    won = _guarded_update(
        db,
        attempt_id,
        IN_PROGRESS,
        {
            "status": COMPLETED,
            "score": score,
            "percentage": percentage,
            "is_passed": passed,
            "time_spent": time_spent,
            "xp_awarded": xp_awarded,
            "answers_json": json.dumps([a.model_dump() for a in scored]),
            "completed_at": completed_at,
        },
    )
    if not won:
        db.rollback()
        logger.warning("Lost submit race for attempt %s", attempt_id)
        raise InvalidState("Attempt already completed")

    assignment = (
        db.query(Assignment)
        .filter(
            Assignment.quiz_id == attempt.quiz_id,
            Assignment.user_id == attempt.user_id,
            Assignment.status == "pending",
        )
        .order_by(Assignment.id.asc())
        .first()
    )
    if assignment:
        assignment.status = "completed"
        assignment.completed_at = completed_at
        assignment.score = percentage
        assignment.attempt_id = attempt_id

    db.commit()
    logger.info(
        "Submitted attempt %s (score=%s/%s, percentage=%s, passed=%s, xp=%s, first_attempt=%s)",
        attempt_id,
        score,
        attempt.max_score,
        percentage,
        passed,
        xp_awarded,
        is_first_attempt,
    )

    refresh_user_stats(db, attempt.user_id)

    return {
        "attempt_id": attempt_id,
        "score": score,
        "max_score": attempt.max_score,
        "percentage": percentage,
        "is_passed": passed,
        "xp_awarded": xp_awarded,
        "answers": scored,
    }


def reset_attempt(db: Session, attempt_id: int) -> Attempt:
    attempt = get_attempt(db, attempt_id)
    if attempt.status != COMPLETED:
        raise InvalidState("Only completed attempts can be reset")
    user_id = attempt.user_id

    values = {
        "status": IN_PROGRESS,
        "score": 0,
        "percentage": 0.0,
        "is_passed": False,
        "xp_awarded": None,
        "time_spent": None,
        "answers_json": "[]",
        "started_at": datetime.utcnow(),
        "completed_at": None,
    }
    try:
        won = _guarded_update(db, attempt_id, COMPLETED, values)
    except IntegrityError as exc:
        db.rollback()
        raise InvalidState("Learner already has an attempt in progress for this quiz") from exc
    if not won:
        db.rollback()
        raise InvalidState("Only completed attempts can be reset")

    reverted = (
        db.query(Assignment)
        .filter(Assignment.attempt_id == attempt_id, Assignment.status == "completed")
        .update(
            {"status": "pending", "score": None, "completed_at": None, "attempt_id": None},
            synchronize_session=False,
        )
    )
    db.commit()
    logger.info("Reset attempt %s (user=%s, reverted_assignments=%s)", attempt_id, user_id, reverted)

    refresh_user_stats(db, user_id)
    db.refresh(attempt)
    return attempt


def delete_attempt(db: Session, attempt_id: int):
    attempt = get_attempt(db, attempt_id)
    was_completed = attempt.status == COMPLETED
    user_id = attempt.user_id

    db.query(Assignment).filter(Assignment.attempt_id == attempt_id).update(
        {"attempt_id": None}, synchronize_session=False
    )
    db.delete(attempt)
    db.commit()
    logger.info("Deleted attempt %s (user=%s, was_completed=%s)", attempt_id, user_id, was_completed)

    if was_completed:
        refresh_user_stats(db, user_id)


def abandon_stale_attempts(db: Session, older_than: timedelta | None = None, now: datetime | None = None) -> int:
    if older_than is None:
        older_than = timedelta(days=int(os.getenv("QUIZPLATFORM_ABANDON_AFTER_DAYS", "7")))
    cutoff = (now or datetime.utcnow()) - older_than
    abandoned = (
        db.query(Attempt)
        .filter(Attempt.status == IN_PROGRESS, Attempt.started_at < cutoff)
        .update({"status": ABANDONED}, synchronize_session=False)
    )
    db.commit()
    logger.info("Abandoned %s attempts started before %s", abandoned, cutoff.isoformat())
    return abandoned
