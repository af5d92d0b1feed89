import os
import tempfile
from pathlib import Path

os.environ.setdefault("DATABASE_URL", f"sqlite:///{Path(tempfile.gettempdir()) / 'quizplatform-tests.db'}")
os.environ.setdefault("QUIZPLATFORM_LOG_LEVEL", "WARNING")

import pytest

from quizplatform import catalog
from quizplatform.database import Base, SessionLocal, engine
from quizplatform.models import Question, User
from quizplatform.schemas import (
    BooleanKey,
    FreeTextKey,
    MultiSelectKey,
    OptionPayload,
    OrderedSequenceKey,
    QuestionCreate,
    QuizCreate,
    SingleChoiceKey,
)


def make_question(question_id, key, points=1, options=None, question_type=None):
    """Transient question row for evaluator tests; never added to a session."""
    return Question(
        id=question_id,
        quiz_id=1,
        order_index=question_id,
        type=question_type or key.type,
        prompt=f"Question {question_id}",
        points=points,
        answer_key_json=key.model_dump_json(),
        options_json="[]" if options is None else options,
        explanation="",
    )


def mixed_questions():
    return [
        QuestionCreate(
            prompt="Which planet is known as the red planet?",
            points=2,
            answer_key=SingleChoiceKey(option_id="mars"),
            options=[
                OptionPayload(id="venus", text="Venus"),
                OptionPayload(id="mars", text="Mars"),
                OptionPayload(id="jupiter", text="Jupiter"),
            ],
        ),
        QuestionCreate(
            prompt="Select the prime numbers",
            points=2,
            answer_key=MultiSelectKey(option_ids=["two", "three"]),
            options=[
                OptionPayload(id="two", text="2"),
                OptionPayload(id="three", text="3"),
                OptionPayload(id="four", text="4"),
            ],
        ),
        QuestionCreate(prompt="Water boils at 100C at sea level", points=1, answer_key=BooleanKey(value=True)),
        QuestionCreate(
            prompt="Order the steps of the scientific method",
            points=3,
            answer_key=OrderedSequenceKey(item_ids=["observe", "hypothesize", "test"]),
            options=[
                OptionPayload(id="test", text="Test"),
                OptionPayload(id="observe", text="Observe"),
                OptionPayload(id="hypothesize", text="Hypothesize"),
            ],
        ),
        QuestionCreate(
            prompt="Name the process plants use to make food",
            points=2,
            answer_key=FreeTextKey(text="photosynthesis"),
        ),
    ]


def boolean_questions(count, points=1):
    return [
        QuestionCreate(prompt=f"Statement {idx}", points=points, answer_key=BooleanKey(value=True))
        for idx in range(count)
    ]


@pytest.fixture
def db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def user_factory(db):
    def _make(user_id, role="learner", display_name=None):
        user = User(id=user_id, role=role, display_name=display_name or f"user-{user_id}")
        db.add(user)
        db.commit()
        return user

    return _make


@pytest.fixture
def quiz_factory(db):
    def _make(questions=None, publish=True, **settings):
        quiz = catalog.create_quiz(db, QuizCreate(title=settings.pop("title", "Sample quiz"), **settings))
        for question in questions if questions is not None else mixed_questions():
            catalog.add_question(db, quiz.id, question)
        if publish:
            catalog.publish_quiz(db, quiz.id)
        db.refresh(quiz)
        return quiz

    return _make
