import json
import logging
from datetime import datetime

from sqlalchemy import func
from sqlalchemy.orm import Session

from quizplatform.errors import InvalidState, NotFound
from quizplatform.models import Assignment, Question, Quiz, User
from quizplatform.schemas import AssignmentCreate, QuestionCreate, QuestionUpdate, QuizCreate

logger = logging.getLogger(__name__)


def get_quiz(db: Session, quiz_id: int) -> Quiz:
    quiz = db.query(Quiz).filter(Quiz.id == quiz_id).first()
    if not quiz:
        raise NotFound("Quiz not found")
    return quiz


def get_question(db: Session, quiz_id: int, question_id: int) -> Question:
    question = db.query(Question).filter(Question.id == question_id, Question.quiz_id == quiz_id).first()
    if not question:
        raise NotFound("Question not found")
    return question


def create_quiz(db: Session, payload: QuizCreate) -> Quiz:
    quiz = Quiz(**payload.model_dump(), status="draft", question_count=0, total_points=0)
    db.add(quiz)
    db.commit()
    db.refresh(quiz)
    logger.info("Created quiz %s (%r, difficulty=%s)", quiz.id, quiz.title, quiz.difficulty)
    return quiz


def add_question(db: Session, quiz_id: int, payload: QuestionCreate) -> Question:
    quiz = get_quiz(db, quiz_id)
    order_index = payload.order_index
    if order_index is None:
        last = db.query(func.max(Question.order_index)).filter(Question.quiz_id == quiz_id).scalar()
        order_index = 0 if last is None else last + 1

    question = Question(
        quiz_id=quiz.id,
        order_index=order_index,
        type=payload.answer_key.type,
        prompt=payload.prompt,
        points=payload.points,
        answer_key_json=payload.answer_key.model_dump_json(),
        options_json=json.dumps([o.model_dump() for o in payload.options]),
        explanation=payload.explanation,
    )
    db.add(question)
    quiz.question_count += 1
    quiz.total_points += payload.points
    db.commit()
    db.refresh(question)
    return question


def update_question(db: Session, quiz_id: int, question_id: int, payload: QuestionUpdate) -> Question:
    quiz = get_quiz(db, quiz_id)
    question = get_question(db, quiz_id, question_id)
    if payload.points is not None:
        quiz.total_points += payload.points - question.points
        question.points = payload.points
    if payload.prompt is not None:
        question.prompt = payload.prompt
    if payload.explanation is not None:
        question.explanation = payload.explanation
    db.commit()
    db.refresh(question)
    return question


def delete_question(db: Session, quiz_id: int, question_id: int):
    quiz = get_quiz(db, quiz_id)
    question = get_question(db, quiz_id, question_id)
    quiz.question_count -= 1
    quiz.total_points -= question.points
    db.delete(question)
    db.commit()
    logger.info("Deleted question %s from quiz %s", question_id, quiz_id)


def publish_quiz(db: Session, quiz_id: int) -> Quiz:
    quiz = get_quiz(db, quiz_id)
    if not quiz.question_count:
        raise InvalidState("Cannot publish quiz without questions")
    quiz.status = "published"
    db.commit()
    db.refresh(quiz)
    logger.info("Published quiz %s", quiz_id)
    return quiz


def create_assignment(db: Session, payload: AssignmentCreate) -> Assignment:
    get_quiz(db, payload.quiz_id)
    if not db.query(User).filter(User.id == payload.user_id).first():
        raise NotFound("User not found")
    assignment = Assignment(quiz_id=payload.quiz_id, user_id=payload.user_id, due_date=payload.due_date)
    db.add(assignment)
    db.commit()
    db.refresh(assignment)
    return assignment


def mark_overdue_assignments(db: Session, now: datetime | None = None) -> int:
    now = now or datetime.utcnow()
    updated = (
        db.query(Assignment)
        .filter(Assignment.status == "pending", Assignment.due_date.is_not(None), Assignment.due_date < now)
        .update({"status": "overdue"}, synchronize_session=False)
    )
    db.commit()
    logger.info("Marked %s assignments overdue", updated)
    return updated
