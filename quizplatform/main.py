import logging
import os

from fastapi import Depends, FastAPI, HTTPException, Response
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from quizplatform import analytics, attempts, catalog, stats
from quizplatform.auth import Principal, get_principal, require_admin
from quizplatform.database import Base, engine, get_db
from quizplatform.errors import Forbidden, NotFound, QuizPlatformError
from quizplatform.models import Assignment, Attempt, Question, Quiz
from quizplatform.rate_limit import build_rate_limiter
from quizplatform.schemas import (
    AbandonAttemptsResponse,
    AssignmentCreate,
    AssignmentOut,
    AttemptOut,
    AttemptSummaryOut,
    LeaderboardResponse,
    OverdueAssignmentsResponse,
    QuestionCreate,
    QuestionOut,
    QuestionUpdate,
    QuizCreate,
    QuizOut,
    QuizReport,
    SaveProgressRequest,
    SubmitAttemptRequest,
    SubmitAttemptResponse,
    UserStatsResponse,
)

app = FastAPI(title="Quiz Platform")
logging.basicConfig(
    level=os.getenv("QUIZPLATFORM_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)
rate_limiter = build_rate_limiter()

Base.metadata.create_all(bind=engine)


@app.exception_handler(QuizPlatformError)
def handle_platform_error(request, exc: QuizPlatformError):
    if exc.status_code >= 500:
        logger.error("Unhandled platform error on %s: %s", request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "error": type(exc).__name__})


def enforce_rate_limit(principal: Principal = Depends(get_principal)) -> Principal:
    result = rate_limiter.hit(f"user:{principal.user_id}")
    if not result.allowed:
        raise HTTPException(status_code=429, detail="Rate limit exceeded")
    return principal


def _quiz_out(quiz: Quiz) -> dict:
    return {
        "id": quiz.id,
        "title": quiz.title,
        "description": quiz.description,
        "status": quiz.status,
        "visibility": quiz.visibility,
        "difficulty": quiz.difficulty,
        "passing_score": quiz.passing_score,
        "allow_retries": quiz.allow_retries,
        "max_attempts": quiz.max_attempts,
        "question_count": quiz.question_count,
        "total_points": quiz.total_points,
    }


def _question_out(question: Question) -> dict:
    return {
        "id": question.id,
        "quiz_id": question.quiz_id,
        "order_index": question.order_index,
        "type": question.type,
        "prompt": question.prompt,
        "points": question.points,
        "answer_key": question.answer_key.model_dump(),
        "options": question.options,
        "explanation": question.explanation,
    }


def _attempt_out(attempt: Attempt) -> dict:
    return {
        "id": attempt.id,
        "user_id": attempt.user_id,
        "quiz_id": attempt.quiz_id,
        "status": attempt.status,
        "max_score": attempt.max_score,
        "score": attempt.score,
        "percentage": attempt.percentage,
        "is_passed": attempt.is_passed,
        "time_spent": attempt.time_spent,
        "xp_awarded": attempt.xp_awarded,
        "answers": attempt.answers,
        "started_at": attempt.started_at,
        "completed_at": attempt.completed_at,
    }


def _assignment_out(assignment: Assignment) -> dict:
    return {
        "id": assignment.id,
        "user_id": assignment.user_id,
        "quiz_id": assignment.quiz_id,
        "status": assignment.status,
        "due_date": assignment.due_date,
        "score": assignment.score,
        "attempt_id": assignment.attempt_id,
        "completed_at": assignment.completed_at,
    }


@app.get("/api/health")
def health(db: Session = Depends(get_db)):
    db.execute(text("SELECT 1"))
    return {"status": "ok"}


@app.post("/api/quizzes", response_model=QuizOut, status_code=201)
def create_quiz(payload: QuizCreate, db: Session = Depends(get_db), _: Principal = Depends(require_admin)):
    return _quiz_out(catalog.create_quiz(db, payload))


@app.get("/api/quizzes/{quiz_id}", response_model=QuizOut)
def get_quiz(quiz_id: int, db: Session = Depends(get_db), _: Principal = Depends(get_principal)):
    return _quiz_out(catalog.get_quiz(db, quiz_id))


@app.post("/api/quizzes/{quiz_id}/questions", response_model=QuestionOut, status_code=201)
def add_question(
    quiz_id: int,
    payload: QuestionCreate,
    db: Session = Depends(get_db),
    _: Principal = Depends(require_admin),
):
    return _question_out(catalog.add_question(db, quiz_id, payload))


@app.patch("/api/quizzes/{quiz_id}/questions/{question_id}", response_model=QuestionOut)
def update_question(
    quiz_id: int,
    question_id: int,
    payload: QuestionUpdate,
    db: Session = Depends(get_db),
    _: Principal = Depends(require_admin),
):
    return _question_out(catalog.update_question(db, quiz_id, question_id, payload))


@app.delete("/api/quizzes/{quiz_id}/questions/{question_id}", status_code=204)
def delete_question(
    quiz_id: int,
    question_id: int,
    db: Session = Depends(get_db),
    _: Principal = Depends(require_admin),
):
    catalog.delete_question(db, quiz_id, question_id)
    return Response(status_code=204)


@app.post("/api/quizzes/{quiz_id}/publish", response_model=QuizOut)
def publish_quiz(quiz_id: int, db: Session = Depends(get_db), _: Principal = Depends(require_admin)):
    return _quiz_out(catalog.publish_quiz(db, quiz_id))


@app.post("/api/quizzes/{quiz_id}/attempts", response_model=AttemptOut)
def start_attempt(
    quiz_id: int,
    response: Response,
    db: Session = Depends(get_db),
    principal: Principal = Depends(enforce_rate_limit),
):
    attempt, created = attempts.start_attempt(db, principal.user_id, quiz_id)
    response.status_code = 201 if created else 200
    return _attempt_out(attempt)


@app.get("/api/quizzes/{quiz_id}/attempts", response_model=list[AttemptSummaryOut])
def list_my_attempts(quiz_id: int, db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    return [
        {"id": a.id, "status": a.status, "percentage": a.percentage, "completed_at": a.completed_at}
        for a in attempts.list_user_attempts(db, principal.user_id, quiz_id)
    ]


@app.get("/api/attempts/{attempt_id}", response_model=AttemptOut)
def get_attempt(attempt_id: int, db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    attempt = attempts.get_attempt(db, attempt_id)
    if not principal.is_admin and attempt.user_id != principal.user_id:
        raise Forbidden("Attempt belongs to another user")
    return _attempt_out(attempt)


@app.patch("/api/attempts/{attempt_id}", response_model=AttemptOut)
def save_progress(
    attempt_id: int,
    payload: SaveProgressRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    return _attempt_out(attempts.save_progress(db, attempt_id, principal.user_id, payload.answers))


@app.post("/api/attempts/{attempt_id}/submit", response_model=SubmitAttemptResponse)
def submit_attempt(
    attempt_id: int,
    payload: SubmitAttemptRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(enforce_rate_limit),
):
    return attempts.submit_attempt(db, attempt_id, principal.user_id, payload.answers, payload.time_spent)


@app.post("/api/attempts/{attempt_id}/reset", response_model=AttemptOut)
def reset_attempt(attempt_id: int, db: Session = Depends(get_db), _: Principal = Depends(require_admin)):
    return _attempt_out(attempts.reset_attempt(db, attempt_id))


@app.delete("/api/attempts/{attempt_id}", status_code=204)
def delete_attempt(attempt_id: int, db: Session = Depends(get_db), _: Principal = Depends(require_admin)):
    attempts.delete_attempt(db, attempt_id)
    return Response(status_code=204)


@app.get("/api/quizzes/{quiz_id}/report", response_model=QuizReport)
def get_quiz_report(quiz_id: int, db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    quiz = catalog.get_quiz(db, quiz_id)
    completed = (
        db.query(Attempt)
        .filter(Attempt.quiz_id == quiz_id, Attempt.status == attempts.COMPLETED)
        .order_by(Attempt.completed_at.desc())
        .all()
    )
    if not principal.is_admin and not any(a.user_id == principal.user_id for a in completed):
        raise Forbidden("You must complete the quiz before viewing results")

    questions = db.query(Question).filter(Question.quiz_id == quiz_id).order_by(Question.order_index).all()
    return analytics.build_report(quiz, questions, completed)


@app.post("/api/assignments", response_model=AssignmentOut, status_code=201)
def create_assignment(payload: AssignmentCreate, db: Session = Depends(get_db), _: Principal = Depends(require_admin)):
    return _assignment_out(catalog.create_assignment(db, payload))


@app.get("/api/assignments/{assignment_id}", response_model=AssignmentOut)
def get_assignment(assignment_id: int, db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    assignment = db.query(Assignment).filter(Assignment.id == assignment_id).first()
    if not assignment:
        raise NotFound("Assignment not found")
    if not principal.is_admin and assignment.user_id != principal.user_id:
        raise Forbidden("Assignment belongs to another user")
    return _assignment_out(assignment)


@app.get("/api/users/me/stats", response_model=UserStatsResponse)
def get_my_stats(db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    return stats.build_user_stats(db, principal.user_id)


@app.get("/api/leaderboard", response_model=LeaderboardResponse)
def get_leaderboard(limit: int = 50, db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    limit = max(1, min(limit, 200))
    return {"current_user_id": principal.user_id, "leaderboard": stats.build_leaderboard(db, limit)}


@app.post("/api/maintenance/abandon-stale-attempts", response_model=AbandonAttemptsResponse)
def abandon_stale_attempts(db: Session = Depends(get_db), _: Principal = Depends(require_admin)):
    return {"abandoned": attempts.abandon_stale_attempts(db)}


@app.post("/api/maintenance/overdue-assignments", response_model=OverdueAssignmentsResponse)
def mark_overdue_assignments(db: Session = Depends(get_db), _: Principal = Depends(require_admin)):
    return {"updated": catalog.mark_overdue_assignments(db)}
