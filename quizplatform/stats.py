import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from quizplatform.errors import NotFound
from quizplatform.models import Attempt, Quiz, User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserTotals:
    total_xp: int
    quizzes_completed: int


def compute_user_totals(completed_attempts) -> UserTotals:
    """Totals from completed attempts; a retry replaces, not adds to, its quiz's XP."""
    ordered = sorted(
        completed_attempts,
        key=lambda a: (a.completed_at or datetime.min, a.id),
        reverse=True,
    )
    latest_by_quiz = {}
    for attempt in ordered:
        latest_by_quiz.setdefault(attempt.quiz_id, attempt)
    total_xp = sum(a.xp_awarded or 0 for a in latest_by_quiz.values())
    return UserTotals(total_xp=total_xp, quizzes_completed=len(latest_by_quiz))


def recompute_user_stats(db: Session, user_id: int) -> UserTotals:
    """Overwrite a user's XP and completion count from their completed attempts.

    Safe to call any number of times. Commits its own transaction.
    """
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFound("User not found")

    completed = (
        db.query(Attempt)
        .filter(Attempt.user_id == user_id, Attempt.status == "completed")
        .order_by(Attempt.completed_at.desc(), Attempt.id.desc())
        .all()
    )
    totals = compute_user_totals(completed)
    user.total_xp = totals.total_xp
    user.quizzes_completed = totals.quizzes_completed
    db.commit()
    logger.info(
        "Recomputed stats for user %s (total_xp=%s, quizzes_completed=%s)",
        user_id,
        totals.total_xp,
        totals.quizzes_completed,
    )
    return totals


def refresh_user_stats(db: Session, user_id: int) -> UserTotals | None:
    """Recompute after a committed transition; a failure here never undoes the transition."""
    try:
        return recompute_user_stats(db, user_id)
    except Exception:
        db.rollback()
        logger.exception("Stats recompute failed for user %s; totals will reconcile on the next recompute", user_id)
        return None


def build_user_stats(db: Session, user_id: int) -> dict:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFound("User not found")

    users_above = (
        db.query(User)
        .filter(
            or_(
                User.total_xp > user.total_xp,
                and_(User.total_xp == user.total_xp, User.quizzes_completed > user.quizzes_completed),
            )
        )
        .count()
    )

    rows = (
        db.query(Attempt, Quiz.difficulty)
        .join(Quiz, Quiz.id == Attempt.quiz_id)
        .filter(Attempt.user_id == user_id, Attempt.status == "completed")
        .order_by(Attempt.completed_at.desc(), Attempt.id.desc())
        .all()
    )

    total_time_spent = sum(attempt.time_spent or 0 for attempt, _ in rows)
    average = sum(attempt.percentage for attempt, _ in rows) / len(rows) if rows else 0.0

    by_difficulty = defaultdict(list)
    for attempt, difficulty in rows:
        by_difficulty[difficulty].append(attempt.percentage)
    difficulty_stats = {}
    for difficulty in ("easy", "medium", "hard"):
        scores = by_difficulty.get(difficulty, [])
        difficulty_stats[difficulty] = {
            "count": len(scores),
            "average_percentage": round(sum(scores) / len(scores), 2) if scores else 0.0,
        }

    return {
        "total_xp": user.total_xp,
        "quizzes_completed": user.quizzes_completed,
        "rank": users_above + 1,
        "average_percentage": round(average, 2),
        "total_time_spent": total_time_spent,
        "difficulty_stats": difficulty_stats,
        "recent_attempts": [
            {
                "quiz_id": attempt.quiz_id,
                "percentage": attempt.percentage,
                "difficulty": difficulty,
                "completed_at": attempt.completed_at,
            }
            for attempt, difficulty in rows[:10]
        ],
    }


def build_leaderboard(db: Session, limit: int = 50) -> list[dict]:
    users = (
        db.query(User)
        .order_by(User.total_xp.desc(), User.quizzes_completed.desc(), User.display_name.asc(), User.id.asc())
        .limit(limit)
        .all()
    )
    return [
        {
            "rank": idx,
            "user_id": user.id,
            "display_name": user.display_name,
            "total_xp": user.total_xp,
            "quizzes_completed": user.quizzes_completed,
        }
        for idx, user in enumerate(users, start=1)
    ]
